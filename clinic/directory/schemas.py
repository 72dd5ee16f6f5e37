"""Directory value types: the tagged entity reference and its resolved record."""

from __future__ import annotations

import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict

from clinic.common.constants import EntityKind


class EntityRef(BaseModel):
    """Tagged reference to a leave applicant: ``{kind, id}``."""

    model_config = ConfigDict(frozen=True)

    kind: EntityKind
    id: uuid.UUID

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


class EntityRecord(BaseModel):
    """Minimal view of an applicant as the leave engine needs it."""

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID
    kind: EntityKind
    display_name: str
    email: Optional[str] = None
    owner_user_id: Optional[uuid.UUID] = None
    is_active: bool = True

    @property
    def ref(self) -> EntityRef:
        return EntityRef(kind=self.kind, id=self.id)
