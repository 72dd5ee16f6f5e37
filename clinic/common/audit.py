"""Append-only audit log for leave types, leave requests and balance overrides.

Entries are flushed inside the caller's transaction, so a transition that
rolls back leaves no audit row behind. Update entries store only the keys
whose values actually changed.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from sqlalchemy import DateTime, Index, String, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from clinic.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditTrail(Base):
    """One recorded change: who did what to which leave entity, and when."""

    __tablename__ = "audit_trail"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    # Null for system actions such as yearly initialization from a job
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    action: Mapped[str] = mapped_column(String(50))
    entity_type: Mapped[str] = mapped_column(String(50))
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True))
    old_values: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB)
    new_values: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=text("NOW()"),
    )

    __table_args__ = (
        Index("ix_audit_trail_entity", "entity_type", "entity_id"),
        Index("ix_audit_trail_actor_id", "actor_id"),
        Index("ix_audit_trail_action", "action"),
        Index("ix_audit_trail_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditTrail {self.entity_type}:{self.action} {self.entity_id}>"


def _changed_keys(
    before: Mapping[str, Any], after: Mapping[str, Any],
) -> tuple[dict[str, Any], dict[str, Any]]:
    keys = [k for k in after if before.get(k) != after[k]]
    keys += [k for k in before if k not in after]
    return (
        {k: before.get(k) for k in keys},
        {k: after.get(k) for k in keys},
    )


async def create_audit_entry(
    session: AsyncSession,
    *,
    action: str,
    entity_type: str,
    entity_id: uuid.UUID,
    actor_id: Optional[uuid.UUID] = None,
    old_values: Optional[Mapping[str, Any]] = None,
    new_values: Optional[Mapping[str, Any]] = None,
) -> AuditTrail:
    """Add an audit row to ``session`` and flush it.

    ``old_values`` and ``new_values`` must be JSON-safe (dates as ISO
    strings, decimals as strings). When both are given, only the keys
    that differ are kept.
    """
    if old_values is not None and new_values is not None:
        old_values, new_values = _changed_keys(old_values, new_values)

    entry = AuditTrail(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        old_values=dict(old_values) if old_values is not None else None,
        new_values=dict(new_values) if new_values is not None else None,
    )
    session.add(entry)
    await session.flush()
    return entry
