"""Leave Pydantic v2 schemas: request / response validation.

Naming conventions:
  - *Create / *Update / *Request  → request bodies (write)
  - *Out                          → response bodies (read)
  - *Brief                        → compact embedded representations
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from clinic.common.constants import (
    DEFAULT_LEAVE_COLOR,
    MAX_BALANCE_YEAR,
    MIN_BALANCE_YEAR,
    EntityKind,
    LeaveStatus,
)
from clinic.common.exceptions import ValidationException
from clinic.directory.schemas import EntityRef

_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


# ═════════════════════════════════════════════════════════════════════
# Leave Type
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeBrief(BaseModel):
    """Minimal leave type info embedded in leave responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    color_tag: str = DEFAULT_LEAVE_COLOR


class LeaveTypeOut(BaseModel):
    """Full leave type representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: Optional[str] = None
    default_days: Decimal
    color_tag: str
    is_active: bool = True
    created_at: datetime
    updated_at: datetime


class LeaveTypeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    default_days: Decimal = Field(Decimal("0"), ge=0, le=366)
    color_tag: str = Field(DEFAULT_LEAVE_COLOR, pattern=_COLOR_PATTERN)
    is_active: bool = True


class LeaveTypeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    default_days: Optional[Decimal] = Field(None, ge=0, le=366)
    color_tag: Optional[str] = Field(None, pattern=_COLOR_PATTERN)
    is_active: Optional[bool] = None


class LeaveTypeStatusUpdate(BaseModel):
    is_active: bool


# ═════════════════════════════════════════════════════════════════════
# Leave Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceEntryOut(BaseModel):
    """Counters for one leave type within a balance document."""

    model_config = ConfigDict(from_attributes=True)

    leave_type_id: uuid.UUID
    leave_type: Optional[LeaveTypeBrief] = None
    allocated: Decimal
    used: Decimal
    pending: Decimal
    carry_forward: Decimal
    available: Decimal


class LeaveBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    entity_kind: EntityKind
    entity_id: uuid.UUID
    year: int
    entries: list[LeaveBalanceEntryOut]
    created_at: datetime
    updated_at: datetime


class AllocationUpdate(BaseModel):
    year: int = Field(..., ge=MIN_BALANCE_YEAR, le=MAX_BALANCE_YEAR)
    leave_type_id: uuid.UUID
    allocated: Decimal = Field(..., ge=0)


class CarryForwardUpdate(BaseModel):
    year: int = Field(..., ge=MIN_BALANCE_YEAR, le=MAX_BALANCE_YEAR)
    leave_type_id: uuid.UUID
    carry_forward: Decimal = Field(..., ge=0)


class BalanceInitializeRequest(BaseModel):
    year: int = Field(..., ge=MIN_BALANCE_YEAR, le=MAX_BALANCE_YEAR)


class BalanceInitializeOut(BaseModel):
    year: int
    initialized: int
    skipped: int


# ═════════════════════════════════════════════════════════════════════
# Leave Request
# ═════════════════════════════════════════════════════════════════════


class LeaveAttachment(BaseModel):
    """A supporting document kept alongside a request, e.g. a medical note."""

    name: str = Field(..., min_length=1, max_length=255)
    path: str = Field(..., min_length=1, max_length=1000)
    mime_type: Optional[str] = Field(None, max_length=100)
    uploaded_at: Optional[datetime] = None


class LeaveRequestCreate(BaseModel):
    """Apply for leave on behalf of exactly one staff member, doctor or user.

    Dates are either ``start_date``/``end_date`` (inclusive) or a list of
    discrete ``dates``; the service rejects both or neither.
    """

    leave_type_id: uuid.UUID
    staff_id: Optional[uuid.UUID] = None
    doctor_id: Optional[uuid.UUID] = None
    user_id: Optional[uuid.UUID] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    dates: Optional[list[date]] = None
    reason: str = Field(..., min_length=1, max_length=1000)
    contact_details: Optional[str] = Field(None, max_length=500)
    attachments: Optional[list[LeaveAttachment]] = None

    def entity_ref(self) -> EntityRef:
        """The single applicant named by ``staff_id``/``doctor_id``/``user_id``."""
        candidates = [
            EntityRef(kind=kind, id=value)
            for kind, value in (
                (EntityKind.staff, self.staff_id),
                (EntityKind.doctor, self.doctor_id),
                (EntityKind.user, self.user_id),
            )
            if value is not None
        ]
        if len(candidates) != 1:
            raise ValidationException(
                {"entity": ["Exactly one of staff_id, doctor_id or user_id is required."]}
            )
        return candidates[0]


class LeaveRequestUpdate(BaseModel):
    """Partial update of a pending request; omitted fields are kept."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    dates: Optional[list[date]] = None
    reason: Optional[str] = Field(None, min_length=1, max_length=1000)
    contact_details: Optional[str] = Field(None, max_length=500)
    attachments: Optional[list[LeaveAttachment]] = None


class LeaveApproveRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=500)


class LeaveRejectRequest(BaseModel):
    notes: str = Field(..., min_length=1, max_length=500)


class LeaveCancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class LeaveRequestOut(BaseModel):
    """Full leave request representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    entity_kind: EntityKind
    entity_id: uuid.UUID
    leave_type_id: uuid.UUID
    leave_type: Optional[LeaveTypeBrief] = None
    requested_by: uuid.UUID
    start_date: date
    end_date: date
    dates: Optional[list[date]] = None
    total_days: Decimal
    balance_year: int
    reason: str
    contact_details: Optional[str] = None
    attachments: Optional[list[LeaveAttachment]] = None
    status: LeaveStatus
    reviewed_by: Optional[uuid.UUID] = None
    review_date: Optional[datetime] = None
    review_notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class LeaveRequestFilters(BaseModel):
    """Filter composition shared by every list query."""

    status: Optional[LeaveStatus] = None
    leave_type_id: Optional[uuid.UUID] = None
    entity_kind: Optional[EntityKind] = None
    entity_id: Optional[uuid.UUID] = None
    from_date: Optional[date] = None
    to_date: Optional[date] = None
