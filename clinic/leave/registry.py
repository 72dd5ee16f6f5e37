"""Leave type registry: CRUD over leave categories."""

from __future__ import annotations

import logging
import uuid
from typing import Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic.common.audit import create_audit_entry
from clinic.common.exceptions import ConflictError, ConflictException, NotFoundException
from clinic.leave.models import LeaveBalanceEntry, LeaveRequest, LeaveType
from clinic.leave.schemas import LeaveTypeCreate, LeaveTypeOut, LeaveTypeUpdate

logger = logging.getLogger(__name__)


def _snapshot(leave_type: LeaveType) -> dict:
    return {
        "name": leave_type.name,
        "description": leave_type.description,
        "default_days": str(leave_type.default_days),
        "color_tag": leave_type.color_tag,
        "is_active": leave_type.is_active,
    }


class LeaveTypeRegistry:
    """Async leave type operations."""

    @staticmethod
    async def _get(db: AsyncSession, leave_type_id: uuid.UUID) -> LeaveType:
        leave_type = await db.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise NotFoundException("LeaveType", str(leave_type_id))
        return leave_type

    @staticmethod
    async def _ensure_unique_name(
        db: AsyncSession,
        name: str,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        query = select(LeaveType.id).where(func.lower(LeaveType.name) == name.lower())
        if exclude_id is not None:
            query = query.where(LeaveType.id != exclude_id)
        if (await db.execute(query)).first() is not None:
            raise ConflictError("name", name)

    @staticmethod
    async def _flush_unique(db: AsyncSession, name: str) -> None:
        try:
            await db.flush()
        except IntegrityError as exc:
            await db.rollback()
            raise ConflictError("name", name) from exc

    # ── Reads ───────────────────────────────────────────────────────

    @staticmethod
    async def list_types(
        db: AsyncSession,
        *,
        active_only: bool = False,
    ) -> list[LeaveTypeOut]:
        query = select(LeaveType).order_by(LeaveType.name)
        if active_only:
            query = query.where(LeaveType.is_active.is_(True))
        rows: Sequence[LeaveType] = (await db.execute(query)).scalars().all()
        return [LeaveTypeOut.model_validate(row) for row in rows]

    @staticmethod
    async def get_leave_type(db: AsyncSession, leave_type_id: uuid.UUID) -> LeaveTypeOut:
        return LeaveTypeOut.model_validate(await LeaveTypeRegistry._get(db, leave_type_id))

    # ── Writes ──────────────────────────────────────────────────────

    @staticmethod
    async def create_leave_type(
        db: AsyncSession,
        data: LeaveTypeCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveTypeOut:
        name = data.name.strip()
        await LeaveTypeRegistry._ensure_unique_name(db, name)

        leave_type = LeaveType(
            name=name,
            description=data.description,
            default_days=data.default_days,
            color_tag=data.color_tag,
            is_active=data.is_active,
        )
        db.add(leave_type)
        await LeaveTypeRegistry._flush_unique(db, name)

        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_type",
            entity_id=leave_type.id,
            actor_id=actor_id,
            new_values=_snapshot(leave_type),
        )
        return LeaveTypeOut.model_validate(leave_type)

    @staticmethod
    async def update_leave_type(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        data: LeaveTypeUpdate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveTypeOut:
        leave_type = await LeaveTypeRegistry._get(db, leave_type_id)
        old_values = _snapshot(leave_type)

        changes = data.model_dump(exclude_unset=True)
        if changes.get("name") is not None:
            changes["name"] = changes["name"].strip()
            await LeaveTypeRegistry._ensure_unique_name(
                db, changes["name"], exclude_id=leave_type.id,
            )
        for field, value in changes.items():
            if value is None and field in ("name", "default_days", "color_tag", "is_active"):
                continue
            setattr(leave_type, field, value)

        await LeaveTypeRegistry._flush_unique(db, leave_type.name)
        await create_audit_entry(
            db,
            action="update",
            entity_type="leave_type",
            entity_id=leave_type.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=_snapshot(leave_type),
        )
        return LeaveTypeOut.model_validate(leave_type)

    @staticmethod
    async def set_active(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        is_active: bool,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveTypeOut:
        """Activate or deactivate a type; existing balances keep their entries."""
        leave_type = await LeaveTypeRegistry._get(db, leave_type_id)
        if leave_type.is_active != is_active:
            leave_type.is_active = is_active
            await db.flush()
            await create_audit_entry(
                db,
                action="activate" if is_active else "deactivate",
                entity_type="leave_type",
                entity_id=leave_type.id,
                actor_id=actor_id,
                new_values={"is_active": is_active},
            )
        return LeaveTypeOut.model_validate(leave_type)

    @staticmethod
    async def delete_leave_type(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Delete a type that no leave request references.

        Balance entries for the type are removed with it.
        """
        leave_type = await LeaveTypeRegistry._get(db, leave_type_id)

        request_count = (
            await db.execute(
                select(func.count())
                .select_from(LeaveRequest)
                .where(LeaveRequest.leave_type_id == leave_type.id)
            )
        ).scalar_one()
        if request_count:
            raise ConflictException(
                f"Leave type '{leave_type.name}' is referenced by "
                f"{request_count} leave request(s); deactivate it instead.",
            )

        entry_count = (
            await db.execute(
                select(func.count())
                .select_from(LeaveBalanceEntry)
                .where(LeaveBalanceEntry.leave_type_id == leave_type.id)
            )
        ).scalar_one()
        if entry_count:
            logger.warning(
                "Deleting leave type %s removes %d balance entr(ies)",
                leave_type.name, entry_count,
            )
            await db.execute(
                delete(LeaveBalanceEntry).where(
                    LeaveBalanceEntry.leave_type_id == leave_type.id
                )
            )

        old_values = _snapshot(leave_type)
        await db.delete(leave_type)
        await db.flush()
        await create_audit_entry(
            db,
            action="delete",
            entity_type="leave_type",
            entity_id=leave_type_id,
            actor_id=actor_id,
            old_values=old_values,
        )
