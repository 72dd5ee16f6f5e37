"""Tests for the leave type registry.

Covers:
  - Create with defaults, case-insensitive duplicate names
  - Update, activate / deactivate, listing order and active filter
  - Delete: blocked while requests reference the type, removes entries
  - Audit trail entries for writes
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from clinic.common.audit import AuditTrail
from clinic.common.exceptions import ConflictException, NotFoundException
from clinic.leave.models import LeaveBalanceEntry, LeaveType
from clinic.leave.registry import LeaveTypeRegistry
from clinic.leave.schemas import LeaveRequestCreate, LeaveTypeCreate, LeaveTypeUpdate
from clinic.leave.service import LeaveService
from tests.conftest import _seed_balance, _seed_leave_type


class TestCreateLeaveType:

    async def test_create_with_defaults(self, db):
        out = await LeaveTypeRegistry.create_leave_type(
            db, LeaveTypeCreate(name="Maternity Leave"),
        )
        assert out.name == "Maternity Leave"
        assert out.default_days == Decimal("0")
        assert out.color_tag == "#3498db"
        assert out.is_active is True

    async def test_name_is_trimmed(self, db):
        out = await LeaveTypeRegistry.create_leave_type(
            db, LeaveTypeCreate(name="  Sick Leave  ", default_days=Decimal("10")),
        )
        assert out.name == "Sick Leave"

    async def test_duplicate_name_case_insensitive(self, db):
        await _seed_leave_type(db, name="Annual Leave")
        with pytest.raises(ConflictException) as exc_info:
            await LeaveTypeRegistry.create_leave_type(
                db, LeaveTypeCreate(name="annual leave"),
            )
        assert exc_info.value.status_code == 409
        assert "name" in exc_info.value.errors

    async def test_create_writes_audit_entry(self, db, admin_user):
        out = await LeaveTypeRegistry.create_leave_type(
            db, LeaveTypeCreate(name="Study Leave"), actor_id=admin_user["id"],
        )
        audit = (
            await db.execute(
                select(AuditTrail).where(AuditTrail.entity_id == out.id)
            )
        ).scalars().one()
        assert audit.action == "create"
        assert audit.entity_type == "leave_type"
        assert audit.actor_id == admin_user["id"]


class TestUpdateLeaveType:

    async def test_partial_update(self, db):
        lt = await _seed_leave_type(db, name="Annual Leave")
        out = await LeaveTypeRegistry.update_leave_type(
            db, lt["id"], LeaveTypeUpdate(default_days=Decimal("25")),
        )
        assert out.default_days == Decimal("25")
        assert out.name == "Annual Leave"

    async def test_rename_to_existing_name_conflicts(self, db):
        await _seed_leave_type(db, name="Annual Leave")
        sick = await _seed_leave_type(db, name="Sick Leave")
        with pytest.raises(ConflictException):
            await LeaveTypeRegistry.update_leave_type(
                db, sick["id"], LeaveTypeUpdate(name="ANNUAL LEAVE"),
            )

    async def test_rename_keeping_own_name(self, db):
        lt = await _seed_leave_type(db, name="Annual Leave")
        out = await LeaveTypeRegistry.update_leave_type(
            db, lt["id"], LeaveTypeUpdate(name="annual leave"),
        )
        assert out.name == "annual leave"

    async def test_update_missing_type(self, db):
        with pytest.raises(NotFoundException):
            await LeaveTypeRegistry.update_leave_type(
                db, uuid.uuid4(), LeaveTypeUpdate(description="x"),
            )

    async def test_deactivate_and_filter(self, db):
        annual = await _seed_leave_type(db, name="Annual Leave")
        await _seed_leave_type(db, name="Sick Leave")

        out = await LeaveTypeRegistry.set_active(db, annual["id"], False)
        assert out.is_active is False

        active = await LeaveTypeRegistry.list_types(db, active_only=True)
        assert [t.name for t in active] == ["Sick Leave"]
        everything = await LeaveTypeRegistry.list_types(db)
        assert [t.name for t in everything] == ["Annual Leave", "Sick Leave"]


class TestDeleteLeaveType:

    async def test_delete_unused_type(self, db):
        lt = await _seed_leave_type(db)
        await LeaveTypeRegistry.delete_leave_type(db, lt["id"])
        await db.commit()
        assert await db.get(LeaveType, lt["id"]) is None

    async def test_delete_removes_balance_entries(self, db, staff_ref):
        lt = await _seed_leave_type(db)
        await _seed_balance(db, staff_ref, 2025, lt["id"])

        await LeaveTypeRegistry.delete_leave_type(db, lt["id"])
        await db.commit()

        remaining = (
            await db.execute(
                select(func.count())
                .select_from(LeaveBalanceEntry)
                .where(LeaveBalanceEntry.leave_type_id == lt["id"])
            )
        ).scalar_one()
        assert remaining == 0

    async def test_delete_referenced_type_conflicts(self, db, staff_user, staff_ref):
        lt = await _seed_leave_type(db)
        await LeaveService.create_leave_request(
            db,
            staff_user["id"],
            LeaveRequestCreate(
                leave_type_id=lt["id"],
                staff_id=staff_ref.id,
                start_date=date(2025, 5, 5),
                end_date=date(2025, 5, 6),
                reason="Family trip",
            ),
        )

        with pytest.raises(ConflictException) as exc_info:
            await LeaveTypeRegistry.delete_leave_type(db, lt["id"])
        assert "deactivate" in exc_info.value.detail

    async def test_delete_missing_type(self, db):
        with pytest.raises(NotFoundException):
            await LeaveTypeRegistry.delete_leave_type(db, uuid.uuid4())
