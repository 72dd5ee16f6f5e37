"""Leave ORM models: LeaveType, LeaveBalance, LeaveBalanceEntry, LeaveRequest."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic.common.audit import utcnow
from clinic.common.constants import (
    DEFAULT_LEAVE_COLOR,
    MAX_BALANCE_YEAR,
    MIN_BALANCE_YEAR,
    EntityKind,
    LeaveStatus,
)
from clinic.database import Base

ZERO = Decimal("0")

# Days are stored with one decimal place
DayCount = sa.Numeric(6, 1)


class LeaveType(Base):
    __tablename__ = "leave_types"
    __table_args__ = (
        sa.CheckConstraint("default_days >= 0", name="ck_leave_type_default_days"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(100), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    default_days: Mapped[Decimal] = mapped_column(
        DayCount, nullable=False, default=ZERO, server_default=sa.text("0")
    )
    color_tag: Mapped[str] = mapped_column(
        sa.String(20), nullable=False, default=DEFAULT_LEAVE_COLOR,
    )
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=True, server_default=sa.text("TRUE")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=sa.func.now(),
    )


class LeaveBalance(Base):
    """Per (entity, year) ledger document; counters live in ``entries``."""

    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint(
            "entity_kind", "entity_id", "year", name="uq_leave_balance_entity_year"
        ),
        sa.CheckConstraint(
            f"year BETWEEN {MIN_BALANCE_YEAR} AND {MAX_BALANCE_YEAR}",
            name="ck_leave_balance_year",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    entity_kind: Mapped[EntityKind] = mapped_column(
        sa.Enum(EntityKind, name="entity_kind"), nullable=False
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    version_id: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )

    entries: Mapped[list[LeaveBalanceEntry]] = relationship(
        back_populates="balance",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def entry_for(self, leave_type_id: uuid.UUID) -> Optional[LeaveBalanceEntry]:
        for entry in self.entries:
            if entry.leave_type_id == leave_type_id:
                return entry
        return None


class LeaveBalanceEntry(Base):
    __tablename__ = "leave_balance_entries"
    __table_args__ = (
        sa.UniqueConstraint(
            "balance_id", "leave_type_id", name="uq_leave_balance_entry_type"
        ),
        sa.CheckConstraint(
            "allocated >= 0 AND used >= 0 AND pending >= 0 AND carry_forward >= 0",
            name="ck_leave_balance_entry_non_negative",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    balance_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_balances.id", ondelete="CASCADE"),
        nullable=False,
    )
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    allocated: Mapped[Decimal] = mapped_column(DayCount, nullable=False, default=ZERO)
    used: Mapped[Decimal] = mapped_column(DayCount, nullable=False, default=ZERO)
    pending: Mapped[Decimal] = mapped_column(DayCount, nullable=False, default=ZERO)
    carry_forward: Mapped[Decimal] = mapped_column(
        DayCount, nullable=False, default=ZERO
    )

    balance: Mapped[LeaveBalance] = relationship(back_populates="entries")
    leave_type: Mapped[LeaveType] = relationship(lazy="selectin")

    @property
    def available(self) -> Decimal:
        return (
            Decimal(self.allocated)
            + Decimal(self.carry_forward)
            - Decimal(self.used)
            - Decimal(self.pending)
        )


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.CheckConstraint("end_date >= start_date", name="ck_leave_request_dates"),
        sa.Index("ix_leave_requests_entity", "entity_kind", "entity_id", "status"),
        sa.Index("ix_leave_requests_requested_by", "requested_by"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    entity_kind: Mapped[EntityKind] = mapped_column(
        sa.Enum(EntityKind, name="entity_kind"), nullable=False
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    leave_type_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_types.id"), nullable=False
    )
    requested_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False
    )
    # Covering interval; for discrete dates these are the min and max date
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    # ISO dates when the request lists discrete days, NULL for a plain range
    dates: Mapped[Optional[list]] = mapped_column(JSONB)
    total_days: Mapped[Decimal] = mapped_column(DayCount, nullable=False)
    balance_year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)
    contact_details: Mapped[Optional[str]] = mapped_column(sa.Text)
    # [{"name", "path", "mime_type", "uploaded_at"}], NULL when none were sent
    attachments: Mapped[Optional[list]] = mapped_column(JSONB)
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status"),
        nullable=False,
        default=LeaveStatus.pending,
    )
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id")
    )
    review_date: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    review_notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=sa.func.now(),
    )

    leave_type: Mapped[LeaveType] = relationship(lazy="selectin")
