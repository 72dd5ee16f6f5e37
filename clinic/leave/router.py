"""Leave routers - leave types, leave balances, leave requests.

All endpoints require authentication; writes on types and balances and
request reviews are admin-only.

Routes:
    /leave-types                         - List, create leave types
    /leave-types/{id}                    - Get, update, delete a leave type
    /leave-types/{id}/status             - Activate / deactivate
    /leave-balances                      - Every applicant's balance for a year
    /leave-balances/my                   - Caller's own balances
    /leave-balances/initialize           - Seed a year for every applicant
    /leave-balances/{kind}/{id}          - Balance of one applicant
    /leave-balances/{kind}/{id}/history  - All years of one applicant
    /leave-balances/{kind}/{id}/allocation, /carry-forward - Admin overrides
    /leave-requests                      - List (admin), apply
    /leave-requests/my                   - Caller's requests
    /leave-requests/entity/{kind}/{id}   - Requests of one applicant
    /leave-requests/{id}                 - Get, update
    /leave-requests/{id}/cancel, /approve, /reject - Transitions
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status as http_status
from sqlalchemy.ext.asyncio import AsyncSession

from clinic.auth.dependencies import get_current_user, is_admin, require_role
from clinic.common.constants import (
    MAX_BALANCE_YEAR,
    MIN_BALANCE_YEAR,
    EntityKind,
    LeaveStatus,
    UserRole,
)
from clinic.common.pagination import PageRequest, PaginatedResponse, page_request
from clinic.common.rate_limit import WRITE_LIMIT, limiter
from clinic.database import get_db
from clinic.directory.models import User
from clinic.directory.schemas import EntityRef
from clinic.leave.registry import LeaveTypeRegistry
from clinic.leave.schemas import (
    AllocationUpdate,
    BalanceInitializeOut,
    BalanceInitializeRequest,
    CarryForwardUpdate,
    LeaveApproveRequest,
    LeaveBalanceOut,
    LeaveCancelRequest,
    LeaveRejectRequest,
    LeaveRequestCreate,
    LeaveRequestFilters,
    LeaveRequestOut,
    LeaveRequestUpdate,
    LeaveTypeCreate,
    LeaveTypeOut,
    LeaveTypeStatusUpdate,
    LeaveTypeUpdate,
)
from clinic.leave.service import LeaveService


# ═════════════════════════════════════════════════════════════════════
# Routers
# ═════════════════════════════════════════════════════════════════════

types_router = APIRouter(prefix="", tags=["leave-types"])
balances_router = APIRouter(prefix="", tags=["leave-balances"])
requests_router = APIRouter(prefix="", tags=["leave-requests"])


def _filters(
    status: Optional[LeaveStatus] = Query(None),
    leave_type_id: Optional[uuid.UUID] = Query(None),
    entity_kind: Optional[EntityKind] = Query(None),
    entity_id: Optional[uuid.UUID] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
) -> LeaveRequestFilters:
    return LeaveRequestFilters(
        status=status,
        leave_type_id=leave_type_id,
        entity_kind=entity_kind,
        entity_id=entity_id,
        from_date=from_date,
        to_date=to_date,
    )


def _current_year() -> int:
    return date.today().year


# ═════════════════════════════════════════════════════════════════════
# Leave types
# ═════════════════════════════════════════════════════════════════════


# ── GET / ───────────────────────────────────────────────────────────

@types_router.get("", response_model=list[LeaveTypeOut])
async def list_leave_types(
    active_only: bool = Query(False),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List leave types, optionally only active ones."""
    return await LeaveTypeRegistry.list_types(db, active_only=active_only)


# ── POST / ──────────────────────────────────────────────────────────

@types_router.post("", response_model=LeaveTypeOut, status_code=http_status.HTTP_201_CREATED)
async def create_leave_type(
    body: LeaveTypeCreate,
    admin: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveTypeRegistry.create_leave_type(db, body, actor_id=admin.id)


# ── GET /{id} ───────────────────────────────────────────────────────

@types_router.get("/{leave_type_id}", response_model=LeaveTypeOut)
async def get_leave_type(
    leave_type_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveTypeRegistry.get_leave_type(db, leave_type_id)


# ── PATCH /{id} ─────────────────────────────────────────────────────

@types_router.patch("/{leave_type_id}", response_model=LeaveTypeOut)
async def update_leave_type(
    leave_type_id: uuid.UUID,
    body: LeaveTypeUpdate,
    admin: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveTypeRegistry.update_leave_type(
        db, leave_type_id, body, actor_id=admin.id,
    )


# ── PATCH /{id}/status ──────────────────────────────────────────────

@types_router.patch("/{leave_type_id}/status", response_model=LeaveTypeOut)
async def set_leave_type_status(
    leave_type_id: uuid.UUID,
    body: LeaveTypeStatusUpdate,
    admin: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveTypeRegistry.set_active(
        db, leave_type_id, body.is_active, actor_id=admin.id,
    )


# ── DELETE /{id} ────────────────────────────────────────────────────

@types_router.delete("/{leave_type_id}", status_code=http_status.HTTP_204_NO_CONTENT)
async def delete_leave_type(
    leave_type_id: uuid.UUID,
    admin: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    """Delete an unused leave type; types with requests must be deactivated."""
    await LeaveTypeRegistry.delete_leave_type(db, leave_type_id, actor_id=admin.id)


# ═════════════════════════════════════════════════════════════════════
# Leave balances
# ═════════════════════════════════════════════════════════════════════


# ── GET / ───────────────────────────────────────────────────────────

@balances_router.get("", response_model=PaginatedResponse[LeaveBalanceOut])
async def list_balances(
    year: Optional[int] = Query(None, ge=MIN_BALANCE_YEAR, le=MAX_BALANCE_YEAR),
    entity_kind: Optional[EntityKind] = Query(None),
    pagination: PageRequest = Depends(page_request),
    admin: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    """Balances of every applicant for *year* (default: the current year)."""
    return await LeaveService.list_balances(
        db,
        year or _current_year(),
        entity_kind=entity_kind,
        page=pagination.page,
        page_size=pagination.page_size,
        sort=pagination.sort,
    )


# ── GET /my ─────────────────────────────────────────────────────────

@balances_router.get("/my", response_model=list[LeaveBalanceOut])
async def my_balances(
    year: Optional[int] = Query(None, ge=MIN_BALANCE_YEAR, le=MAX_BALANCE_YEAR),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Balances of the caller and of any staff/doctor record linked to them."""
    return await LeaveService.get_my_balances(db, user.id, year or _current_year())


# ── POST /initialize ────────────────────────────────────────────────

@balances_router.post("/initialize", response_model=BalanceInitializeOut)
async def initialize_balances(
    body: BalanceInitializeRequest,
    admin: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.initialize_yearly_balances(db, body.year)


# ── GET /{kind}/{id} ────────────────────────────────────────────────

@balances_router.get("/{kind}/{entity_id}", response_model=LeaveBalanceOut)
async def get_balance(
    kind: EntityKind,
    entity_id: uuid.UUID,
    year: Optional[int] = Query(None, ge=2020, le=2100),
    admin: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    ref = EntityRef(kind=kind, id=entity_id)
    return await LeaveService.get_balance(db, ref, year or _current_year())


# ── GET /{kind}/{id}/history ────────────────────────────────────────

@balances_router.get("/{kind}/{entity_id}/history", response_model=list[LeaveBalanceOut])
async def balance_history(
    kind: EntityKind,
    entity_id: uuid.UUID,
    admin: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.balance_history(db, EntityRef(kind=kind, id=entity_id))


# ── PATCH /{kind}/{id}/allocation ───────────────────────────────────

@balances_router.patch("/{kind}/{entity_id}/allocation", response_model=LeaveBalanceOut)
async def set_allocation(
    kind: EntityKind,
    entity_id: uuid.UUID,
    body: AllocationUpdate,
    admin: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.adjust_allocation(
        db, EntityRef(kind=kind, id=entity_id), body, actor_id=admin.id,
    )


# ── PATCH /{kind}/{id}/carry-forward ────────────────────────────────

@balances_router.patch("/{kind}/{entity_id}/carry-forward", response_model=LeaveBalanceOut)
async def set_carry_forward(
    kind: EntityKind,
    entity_id: uuid.UUID,
    body: CarryForwardUpdate,
    admin: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.adjust_carry_forward(
        db, EntityRef(kind=kind, id=entity_id), body, actor_id=admin.id,
    )


# ═════════════════════════════════════════════════════════════════════
# Leave requests
# ═════════════════════════════════════════════════════════════════════


# ── GET / ───────────────────────────────────────────────────────────

@requests_router.get("", response_model=PaginatedResponse[LeaveRequestOut])
async def list_leave_requests(
    filters: LeaveRequestFilters = Depends(_filters),
    pagination: PageRequest = Depends(page_request),
    admin: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.list_all(
        db,
        filters,
        page=pagination.page,
        page_size=pagination.page_size,
        sort=pagination.sort,
    )


# ── POST / ──────────────────────────────────────────────────────────

@requests_router.post("", response_model=LeaveRequestOut, status_code=http_status.HTTP_201_CREATED)
@limiter.limit(WRITE_LIMIT)
async def create_leave_request(
    request: Request,
    body: LeaveRequestCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Apply for leave. Validates dates, overlap and available balance."""
    return await LeaveService.create_leave_request(db, user.id, body)


# ── GET /my ─────────────────────────────────────────────────────────

@requests_router.get("/my", response_model=PaginatedResponse[LeaveRequestOut])
async def my_leave_requests(
    filters: LeaveRequestFilters = Depends(_filters),
    pagination: PageRequest = Depends(page_request),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.list_for_user(
        db,
        user.id,
        filters,
        page=pagination.page,
        page_size=pagination.page_size,
        sort=pagination.sort,
    )


# ── GET /entity/{kind}/{applicant_id} ───────────────────────────────

@requests_router.get(
    "/entity/{kind}/{applicant_id}",
    response_model=PaginatedResponse[LeaveRequestOut],
)
async def entity_leave_requests(
    kind: EntityKind,
    applicant_id: uuid.UUID,
    filters: LeaveRequestFilters = Depends(_filters),
    pagination: PageRequest = Depends(page_request),
    admin: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.list_by_entity(
        db,
        EntityRef(kind=kind, id=applicant_id),
        filters,
        page=pagination.page,
        page_size=pagination.page_size,
        sort=pagination.sort,
    )


# ── GET /{id} ───────────────────────────────────────────────────────

@requests_router.get("/{request_id}", response_model=LeaveRequestOut)
async def get_leave_request(
    request_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_leave_request(
        db, request_id, viewer_id=None if is_admin(user) else user.id,
    )


# ── PATCH /{id} ─────────────────────────────────────────────────────

@requests_router.patch("/{request_id}", response_model=LeaveRequestOut)
@limiter.limit(WRITE_LIMIT)
async def update_leave_request(
    request: Request,
    request_id: uuid.UUID,
    body: LeaveRequestUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Edit a pending request. Only the requester or the applicant may edit."""
    return await LeaveService.update_leave_request(db, request_id, user.id, body)


# ── PATCH /{id}/cancel ──────────────────────────────────────────────

@requests_router.patch("/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_leave_request(
    request_id: uuid.UUID,
    body: LeaveCancelRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.cancel_leave_request(db, request_id, user.id, body.reason)


# ── PATCH /{id}/approve ─────────────────────────────────────────────

@requests_router.patch("/{request_id}/approve", response_model=LeaveRequestOut)
async def approve_leave_request(
    request_id: uuid.UUID,
    body: LeaveApproveRequest,
    admin: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.approve_leave(db, request_id, admin.id, body.notes)


# ── PATCH /{id}/reject ──────────────────────────────────────────────

@requests_router.patch("/{request_id}/reject", response_model=LeaveRequestOut)
async def reject_leave_request(
    request_id: uuid.UUID,
    body: LeaveRejectRequest,
    admin: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.reject_leave(db, request_id, admin.id, body.notes)
