"""Entity directory: resolves ``EntityRef`` values to applicant records.

One adapter per entity kind, selected by the ref's tag. The leave engine
only ever talks to :func:`resolve` and the helpers below.
"""

from __future__ import annotations

import uuid
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic.common.constants import EntityKind, UserRole
from clinic.common.exceptions import NotFoundException
from clinic.directory.models import Doctor, Staff, User
from clinic.directory.schemas import EntityRecord, EntityRef


# ── Adapters ────────────────────────────────────────────────────────


class EntityDirectory:
    """Look up one kind of applicant by id."""

    kind: EntityKind
    model: Any
    label: str

    def _owner_user_id(self, row: Any) -> Optional[uuid.UUID]:
        return getattr(row, "linked_user_id", None)

    def to_record(self, row: Any) -> EntityRecord:
        return EntityRecord(
            id=row.id,
            kind=self.kind,
            display_name=row.display_name,
            email=row.email,
            owner_user_id=self._owner_user_id(row),
            is_active=row.is_active,
        )

    async def resolve(self, db: AsyncSession, entity_id: uuid.UUID) -> EntityRecord:
        row = await db.get(self.model, entity_id)
        if row is None:
            raise NotFoundException(self.label, str(entity_id))
        return self.to_record(row)

    async def owned_by(self, db: AsyncSession, user_id: uuid.UUID) -> list[EntityRef]:
        result = await db.execute(
            select(self.model.id).where(self.model.linked_user_id == user_id)
        )
        return [EntityRef(kind=self.kind, id=row_id) for row_id in result.scalars()]

    async def active_ids(self, db: AsyncSession) -> list[uuid.UUID]:
        result = await db.execute(
            select(self.model.id).where(self.model.is_active.is_(True))
        )
        return list(result.scalars().all())


class StaffDirectory(EntityDirectory):
    kind = EntityKind.staff
    model = Staff
    label = "Staff"


class DoctorDirectory(EntityDirectory):
    kind = EntityKind.doctor
    model = Doctor
    label = "Doctor"


class UserDirectory(EntityDirectory):
    kind = EntityKind.user
    model = User
    label = "User"

    def _owner_user_id(self, row: User) -> Optional[uuid.UUID]:
        # A generic user owns their own leave
        return row.id

    async def owned_by(self, db: AsyncSession, user_id: uuid.UUID) -> list[EntityRef]:
        return [EntityRef(kind=self.kind, id=user_id)]


_DIRECTORIES: dict[EntityKind, EntityDirectory] = {
    EntityKind.staff: StaffDirectory(),
    EntityKind.doctor: DoctorDirectory(),
    EntityKind.user: UserDirectory(),
}


# ── Public helpers ──────────────────────────────────────────────────


def get_directory(kind: EntityKind) -> EntityDirectory:
    return _DIRECTORIES[EntityKind(kind)]


async def resolve(db: AsyncSession, ref: EntityRef) -> EntityRecord:
    """Resolve *ref* to its record, raising ``NotFoundException`` when missing."""
    return await get_directory(ref.kind).resolve(db, ref.id)


async def owned_refs(db: AsyncSession, user_id: uuid.UUID) -> list[EntityRef]:
    """Every applicant the given user may act for in self-service."""
    refs: list[EntityRef] = []
    for directory in _DIRECTORIES.values():
        refs.extend(await directory.owned_by(db, user_id))
    return refs


async def active_refs(db: AsyncSession) -> list[EntityRef]:
    """Every active applicant across all kinds."""
    refs: list[EntityRef] = []
    for kind, directory in _DIRECTORIES.items():
        refs.extend(
            EntityRef(kind=kind, id=entity_id)
            for entity_id in await directory.active_ids(db)
        )
    return refs


async def admin_emails(db: AsyncSession) -> list[str]:
    """E-mail addresses of all active administrators."""
    result = await db.execute(
        select(User.email).where(
            User.role == UserRole.admin,
            User.is_active.is_(True),
        )
    )
    return [email for email in result.scalars().all() if email]
