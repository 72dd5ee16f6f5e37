"""Enums and constants for the clinic leave service: matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    admin = "admin"
    doctor = "doctor"
    staff = "staff"


# ── Entity directory ────────────────────────────────────────────────

class EntityKind(str, enum.Enum):
    """Applicant kinds that can hold leave balances and file requests."""

    staff = "staff"
    doctor = "doctor"
    user = "user"


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


# Statuses that hold days against the ledger and block overlapping dates
ACTIVE_LEAVE_STATUSES: tuple[LeaveStatus, ...] = (
    LeaveStatus.pending,
    LeaveStatus.approved,
)

# Allowed transitions of the request state machine
LEAVE_TRANSITIONS: dict[LeaveStatus, frozenset[LeaveStatus]] = {
    LeaveStatus.pending: frozenset(
        {LeaveStatus.approved, LeaveStatus.rejected, LeaveStatus.cancelled}
    ),
    LeaveStatus.approved: frozenset({LeaveStatus.cancelled}),
    LeaveStatus.rejected: frozenset(),
    LeaveStatus.cancelled: frozenset(),
}

DEFAULT_LEAVE_COLOR = "#3498db"
MIN_BALANCE_YEAR = 2020
MAX_BALANCE_YEAR = 2100


# ── Misc ────────────────────────────────────────────────────────────

DATE_FORMAT = "%Y-%m-%d"
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
