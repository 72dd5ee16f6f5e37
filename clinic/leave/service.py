"""Leave service layer: request lifecycle, balance administration, queries.

Business logic:
  - Day counting over inclusive ranges or discrete dates
  - Overlap exclusion per applicant across pending/approved requests
  - Create / update / cancel / approve / reject with ledger reservation
  - Balance reads, admin allocation overrides and yearly initialization

Every transition runs under the ledger lock of each (applicant, year) it
touches. The overlap check, the balance check, the counter change, the
request write and the audit entry are committed together, and any
failure rolls all of them back. Notifications go out after the commit.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from clinic.common.audit import create_audit_entry, utcnow
from clinic.common.constants import (
    ACTIVE_LEAVE_STATUSES,
    LEAVE_TRANSITIONS,
    EntityKind,
    LeaveStatus,
)
from clinic.common.exceptions import (
    ConflictException,
    ForbiddenException,
    InsufficientBalanceException,
    NotFoundException,
    ValidationException,
)
from clinic.common.pagination import PaginatedResponse, paginate
from clinic.config import settings
from clinic.directory.schemas import EntityRecord, EntityRef
from clinic.directory.service import active_refs, owned_refs, resolve
from clinic.leave.ledger import LeaveLedger, LedgerContention
from clinic.leave.models import LeaveBalance, LeaveRequest, LeaveType
from clinic.leave.schemas import (
    AllocationUpdate,
    BalanceInitializeOut,
    CarryForwardUpdate,
    LeaveAttachment,
    LeaveBalanceOut,
    LeaveRequestCreate,
    LeaveRequestFilters,
    LeaveRequestOut,
    LeaveRequestUpdate,
)
from clinic.leave.span import LeaveSpan
from clinic.notifications.service import (
    notify_leave_approved,
    notify_leave_cancelled,
    notify_leave_rejected,
    notify_leave_request,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SORTABLE_FIELDS = {"start_date", "end_date", "created_at", "updated_at", "status", "total_days"}


def _ref_of(leave_request: LeaveRequest) -> EntityRef:
    return EntityRef(kind=leave_request.entity_kind, id=leave_request.entity_id)


def _required_reason(value: str) -> str:
    reason = value.strip()
    if not reason:
        raise ValidationException({"reason": ["A reason is required."]})
    return reason


def _stored_attachments(attachments: Optional[list[LeaveAttachment]]) -> Optional[list]:
    if attachments is None:
        return None
    now = utcnow()
    return [
        {**item.model_dump(mode="json"), "uploaded_at": (item.uploaded_at or now).isoformat()}
        for item in attachments
    ]


def _snapshot(leave_request: LeaveRequest) -> dict:
    return {
        "status": leave_request.status.value,
        "start_date": leave_request.start_date.isoformat(),
        "end_date": leave_request.end_date.isoformat(),
        "dates": leave_request.dates,
        "total_days": str(leave_request.total_days),
        "balance_year": leave_request.balance_year,
        "reason": leave_request.reason,
        "contact_details": leave_request.contact_details,
        "attachments": leave_request.attachments,
    }


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave operations: requests, approvals, balances."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _run_transition(
        db: AsyncSession,
        ref: EntityRef,
        years: Iterable[int],
        work: Callable[[], Awaitable[T]],
    ) -> T:
        """Run *work* under the ledger locks and commit it as one unit.

        ``StaleDataError`` and ``LedgerContention`` mean another connection
        changed the same balance; the transaction is rolled back and *work*
        re-runs against fresh rows, up to ``BALANCE_UPDATE_RETRIES`` times.
        """
        years = sorted(set(years))
        attempts = max(1, settings.BALANCE_UPDATE_RETRIES)
        for attempt in range(1, attempts + 1):
            try:
                async with LeaveLedger.guard(ref, *years):
                    result = await work()
                    await db.commit()
                    return result
            except (StaleDataError, LedgerContention) as exc:
                await db.rollback()
                logger.warning(
                    "Leave balance contention for %s (attempt %d/%d): %s",
                    ref, attempt, attempts, exc,
                )
            except Exception:
                await db.rollback()
                raise
        raise ConflictException(
            "The leave balance was modified concurrently. Please retry."
        )

    @staticmethod
    async def _get_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> LeaveRequest:
        query = (
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        leave_request = (await db.execute(query)).scalars().first()
        if leave_request is None:
            raise NotFoundException("LeaveRequest", str(request_id))
        return leave_request

    @staticmethod
    async def _lookup(db: AsyncSession, ref: EntityRef) -> Optional[EntityRecord]:
        """Resolve *ref* for display purposes; missing entities yield ``None``."""
        try:
            return await resolve(db, ref)
        except NotFoundException:
            logger.warning("%s is no longer in the directory", ref)
            return None

    @staticmethod
    async def _ensure_can_modify(
        db: AsyncSession,
        leave_request: LeaveRequest,
        requester_id: uuid.UUID,
    ) -> None:
        """Only whoever filed the request or the applicant themself may edit it."""
        if leave_request.requested_by == requester_id:
            return
        applicant = await LeaveService._lookup(db, _ref_of(leave_request))
        if applicant is not None and applicant.owner_user_id == requester_id:
            return
        raise ForbiddenException(
            "Only the requester or the applicant can modify this leave request."
        )

    @staticmethod
    def _ensure_transition(leave_request: LeaveRequest, target: LeaveStatus) -> None:
        if target not in LEAVE_TRANSITIONS[leave_request.status]:
            raise ConflictException(
                f"Cannot move a {leave_request.status.value} leave request "
                f"to {target.value}.",
            )

    @staticmethod
    async def _ensure_no_overlap(
        db: AsyncSession,
        ref: EntityRef,
        span: LeaveSpan,
        *,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Fail if *span* shares a day with the applicant's pending/approved leave."""
        query = select(LeaveRequest).where(
            LeaveRequest.entity_kind == ref.kind,
            LeaveRequest.entity_id == ref.id,
            LeaveRequest.status.in_(ACTIVE_LEAVE_STATUSES),
            LeaveRequest.start_date <= span.end,
            LeaveRequest.end_date >= span.start,
        )
        if exclude_id is not None:
            query = query.where(LeaveRequest.id != exclude_id)

        for existing in (await db.execute(query)).scalars().all():
            if span.overlaps(LeaveSpan.of_request(existing)):
                raise ConflictException(
                    f"Overlapping leave request exists from {existing.start_date} "
                    f"to {existing.end_date} (status: {existing.status.value}).",
                    errors={"dates": ["Overlaps an existing leave request."]},
                )

    @staticmethod
    def _updated_span(
        current: LeaveSpan,
        data: LeaveRequestUpdate,
    ) -> Optional[LeaveSpan]:
        """New span for a partial update, or ``None`` when no date field was sent."""
        fields = data.model_fields_set
        touches_range = (
            ("start_date" in fields and data.start_date is not None)
            or ("end_date" in fields and data.end_date is not None)
        )
        touches_dates = "dates" in fields and data.dates is not None
        if touches_range and touches_dates:
            raise ValidationException(
                {"dates": ["Provide either start_date/end_date or dates, not both."]}
            )
        if touches_dates:
            return LeaveSpan.from_dates(data.dates)
        if not touches_range:
            return None

        if current.is_discrete and (data.start_date is None or data.end_date is None):
            raise ValidationException(
                {"start_date": ["Both start_date and end_date are required to replace discrete dates."]}
            )
        return LeaveSpan.from_range(
            data.start_date or current.start,
            data.end_date or current.end,
            max_days=settings.LEAVE_MAX_SPAN_DAYS,
        )

    # ─────────────────────────────────────────────────────────────────
    # Create
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def create_leave_request(
        db: AsyncSession,
        requested_by: uuid.UUID,
        data: LeaveRequestCreate,
    ) -> LeaveRequestOut:
        """File a leave request and reserve its days against the ledger."""
        ref = data.entity_ref()
        applicant = await resolve(db, ref)
        if not applicant.is_active:
            raise ValidationException(
                {"entity": [f"{applicant.display_name} is inactive and cannot apply for leave."]}
            )
        requester = await resolve(db, EntityRef(kind=EntityKind.user, id=requested_by))

        leave_type = await db.get(LeaveType, data.leave_type_id)
        if leave_type is None:
            raise NotFoundException("LeaveType", str(data.leave_type_id))
        if not leave_type.is_active:
            raise ValidationException(
                {"leave_type_id": [f"Leave type '{leave_type.name}' is not active."]}
            )
        leave_type_id = leave_type.id
        leave_type_name = leave_type.name
        reason = _required_reason(data.reason)

        span = LeaveSpan.from_input(
            data.start_date,
            data.end_date,
            data.dates,
            max_days=settings.LEAVE_MAX_SPAN_DAYS,
        )
        days = span.days
        year = span.year

        async def work() -> LeaveRequest:
            await LeaveService._ensure_no_overlap(db, ref, span)
            await LeaveLedger.get_or_initialize(db, ref, year)
            await LeaveLedger.reserve(db, ref, year, leave_type_id, days)

            leave_request = LeaveRequest(
                entity_kind=ref.kind,
                entity_id=ref.id,
                leave_type_id=leave_type_id,
                leave_type=await db.get(LeaveType, leave_type_id),
                requested_by=requested_by,
                start_date=span.start,
                end_date=span.end,
                dates=span.stored_dates(),
                total_days=days,
                balance_year=year,
                reason=reason,
                contact_details=data.contact_details,
                attachments=_stored_attachments(data.attachments),
                status=LeaveStatus.pending,
            )
            db.add(leave_request)
            await db.flush()

            await create_audit_entry(
                db,
                action="create",
                entity_type="leave_request",
                entity_id=leave_request.id,
                actor_id=requested_by,
                new_values=_snapshot(leave_request),
            )
            return leave_request

        leave_request = await LeaveService._run_transition(db, ref, span.years, work)
        logger.info(
            "Leave request %s created for %s: %s day(s) of %s",
            leave_request.id, ref, days, leave_type_name,
        )

        await notify_leave_request(
            db,
            leave_request,
            leave_type_name=leave_type_name,
            applicant=applicant,
            requester=requester,
        )
        return LeaveRequestOut.model_validate(leave_request)

    # ─────────────────────────────────────────────────────────────────
    # Update
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def update_leave_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        requester_id: uuid.UUID,
        data: LeaveRequestUpdate,
    ) -> LeaveRequestOut:
        """Edit a pending request; date changes re-run overlap and balance checks."""
        leave_request = await LeaveService._get_request(db, request_id)
        await LeaveService._ensure_can_modify(db, leave_request, requester_id)
        if leave_request.status != LeaveStatus.pending:
            raise ConflictException(
                f"Only pending leave requests can be edited "
                f"(current status: {leave_request.status.value}).",
            )

        ref = _ref_of(leave_request)
        leave_type_id = leave_request.leave_type_id
        old_span = LeaveSpan.of_request(leave_request)
        new_span = LeaveService._updated_span(old_span, data)
        if new_span == old_span:
            new_span = None
        years = old_span.years + (new_span.years if new_span else [])
        fields = data.model_fields_set
        reason = None
        if "reason" in fields and data.reason is not None:
            reason = _required_reason(data.reason)

        async def work() -> LeaveRequest:
            current = await LeaveService._get_request(db, request_id, for_update=True)
            if current.status != LeaveStatus.pending:
                raise ConflictException(
                    f"Only pending leave requests can be edited "
                    f"(current status: {current.status.value}).",
                )
            if LeaveSpan.of_request(current) != old_span:
                # Locked years were derived from the dates read before locking
                raise ConflictException(
                    "The leave request was changed by another update. Please retry."
                )
            old_values = _snapshot(current)

            if new_span is not None:
                await LeaveService._ensure_no_overlap(
                    db, ref, new_span, exclude_id=current.id,
                )
                old_days = Decimal(current.total_days)
                old_year = current.balance_year
                new_days = new_span.days
                new_year = new_span.year

                balance = await LeaveLedger.get_or_initialize(db, ref, new_year)
                available = await LeaveLedger.available_for(db, balance, leave_type_id)
                if new_year == old_year:
                    # The request's own reservation counts as available
                    capacity = available + old_days
                    if new_days > capacity:
                        raise InsufficientBalanceException(capacity, new_days)
                    delta = new_days - old_days
                    if delta > 0:
                        await LeaveLedger.reserve(db, ref, new_year, leave_type_id, delta)
                    elif delta < 0:
                        await LeaveLedger.release(db, ref, new_year, leave_type_id, -delta)
                else:
                    if new_days > available:
                        raise InsufficientBalanceException(available, new_days)
                    await LeaveLedger.release(db, ref, old_year, leave_type_id, old_days)
                    await LeaveLedger.reserve(db, ref, new_year, leave_type_id, new_days)

                current.start_date = new_span.start
                current.end_date = new_span.end
                current.dates = new_span.stored_dates()
                current.total_days = new_days
                current.balance_year = new_year

            if reason is not None:
                current.reason = reason
            if "contact_details" in fields:
                current.contact_details = data.contact_details
            if "attachments" in fields:
                current.attachments = _stored_attachments(data.attachments)

            await db.flush()
            await create_audit_entry(
                db,
                action="update",
                entity_type="leave_request",
                entity_id=current.id,
                actor_id=requester_id,
                old_values=old_values,
                new_values=_snapshot(current),
            )
            return current

        leave_request = await LeaveService._run_transition(db, ref, years, work)
        return LeaveRequestOut.model_validate(leave_request)

    # ─────────────────────────────────────────────────────────────────
    # Cancel
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def cancel_leave_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        requester_id: uuid.UUID,
        reason: str,
    ) -> LeaveRequestOut:
        """Withdraw a pending or approved request and give its days back."""
        reason = (reason or "").strip()
        if not reason:
            raise ValidationException({"reason": ["A cancellation reason is required."]})

        leave_request = await LeaveService._get_request(db, request_id)
        await LeaveService._ensure_can_modify(db, leave_request, requester_id)
        LeaveService._ensure_transition(leave_request, LeaveStatus.cancelled)
        ref = _ref_of(leave_request)

        async def work() -> LeaveRequest:
            current = await LeaveService._get_request(db, request_id, for_update=True)
            LeaveService._ensure_transition(current, LeaveStatus.cancelled)
            previous = current.status

            if previous == LeaveStatus.pending:
                await LeaveLedger.release(
                    db, ref, current.balance_year, current.leave_type_id, current.total_days,
                )
            else:
                await LeaveLedger.reverse_used(
                    db, ref, current.balance_year, current.leave_type_id, current.total_days,
                )

            current.status = LeaveStatus.cancelled
            current.reviewed_by = requester_id
            current.review_date = utcnow()
            current.review_notes = reason
            await db.flush()

            await create_audit_entry(
                db,
                action="cancel",
                entity_type="leave_request",
                entity_id=current.id,
                actor_id=requester_id,
                old_values={"status": previous.value},
                new_values={"status": current.status.value, "review_notes": reason},
            )
            return current

        leave_request = await LeaveService._run_transition(
            db, ref, [leave_request.balance_year], work,
        )
        logger.info("Leave request %s cancelled by %s", leave_request.id, requester_id)

        applicant = await LeaveService._lookup(db, ref)
        requester = await LeaveService._lookup(
            db, EntityRef(kind=EntityKind.user, id=requester_id),
        )
        if applicant is not None and requester is not None:
            await notify_leave_cancelled(
                db,
                leave_request,
                leave_type_name=leave_request.leave_type.name,
                applicant=applicant,
                requester=requester,
            )
        return LeaveRequestOut.model_validate(leave_request)

    # ─────────────────────────────────────────────────────────────────
    # Approve / Reject
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def approve_leave(
        db: AsyncSession,
        request_id: uuid.UUID,
        admin_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> LeaveRequestOut:
        """Approve a pending request, moving its days from pending to used."""
        leave_request = await LeaveService._get_request(db, request_id)
        LeaveService._ensure_transition(leave_request, LeaveStatus.approved)
        ref = _ref_of(leave_request)
        notes = notes.strip() if notes else None

        async def work() -> LeaveRequest:
            current = await LeaveService._get_request(db, request_id, for_update=True)
            LeaveService._ensure_transition(current, LeaveStatus.approved)

            await LeaveLedger.commit(
                db, ref, current.balance_year, current.leave_type_id, current.total_days,
            )
            current.status = LeaveStatus.approved
            current.reviewed_by = admin_id
            current.review_date = utcnow()
            current.review_notes = notes
            await db.flush()

            await create_audit_entry(
                db,
                action="approve",
                entity_type="leave_request",
                entity_id=current.id,
                actor_id=admin_id,
                old_values={"status": LeaveStatus.pending.value},
                new_values={"status": current.status.value, "review_notes": notes},
            )
            return current

        leave_request = await LeaveService._run_transition(
            db, ref, [leave_request.balance_year], work,
        )
        logger.info("Leave request %s approved by %s", leave_request.id, admin_id)

        applicant = await LeaveService._lookup(db, ref)
        if applicant is not None:
            await notify_leave_approved(
                leave_request,
                leave_type_name=leave_request.leave_type.name,
                applicant=applicant,
                reviewer=await LeaveService._lookup(
                    db, EntityRef(kind=EntityKind.user, id=admin_id),
                ),
            )
        return LeaveRequestOut.model_validate(leave_request)

    @staticmethod
    async def reject_leave(
        db: AsyncSession,
        request_id: uuid.UUID,
        admin_id: uuid.UUID,
        notes: str,
    ) -> LeaveRequestOut:
        """Reject a pending request and release its reserved days."""
        notes = (notes or "").strip()
        if not notes:
            raise ValidationException({"notes": ["A rejection reason is required."]})

        leave_request = await LeaveService._get_request(db, request_id)
        LeaveService._ensure_transition(leave_request, LeaveStatus.rejected)
        ref = _ref_of(leave_request)

        async def work() -> LeaveRequest:
            current = await LeaveService._get_request(db, request_id, for_update=True)
            LeaveService._ensure_transition(current, LeaveStatus.rejected)

            await LeaveLedger.release(
                db, ref, current.balance_year, current.leave_type_id, current.total_days,
            )
            current.status = LeaveStatus.rejected
            current.reviewed_by = admin_id
            current.review_date = utcnow()
            current.review_notes = notes
            await db.flush()

            await create_audit_entry(
                db,
                action="reject",
                entity_type="leave_request",
                entity_id=current.id,
                actor_id=admin_id,
                old_values={"status": LeaveStatus.pending.value},
                new_values={"status": current.status.value, "review_notes": notes},
            )
            return current

        leave_request = await LeaveService._run_transition(
            db, ref, [leave_request.balance_year], work,
        )
        logger.info("Leave request %s rejected by %s", leave_request.id, admin_id)

        applicant = await LeaveService._lookup(db, ref)
        if applicant is not None:
            await notify_leave_rejected(
                leave_request,
                leave_type_name=leave_request.leave_type.name,
                applicant=applicant,
                reviewer=await LeaveService._lookup(
                    db, EntityRef(kind=EntityKind.user, id=admin_id),
                ),
            )
        return LeaveRequestOut.model_validate(leave_request)

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_leave_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        viewer_id: Optional[uuid.UUID] = None,
    ) -> LeaveRequestOut:
        """Fetch one request; a non-admin *viewer_id* must own or have filed it."""
        leave_request = await LeaveService._get_request(db, request_id)
        if viewer_id is not None and leave_request.requested_by != viewer_id:
            refs = await owned_refs(db, viewer_id)
            if _ref_of(leave_request) not in refs:
                raise ForbiddenException("You can only view your own leave requests.")
        return LeaveRequestOut.model_validate(leave_request)

    @staticmethod
    async def _page(
        db: AsyncSession,
        query,
        filters: Optional[LeaveRequestFilters],
        *,
        page: int,
        page_size: int,
        sort: Optional[str],
    ) -> PaginatedResponse[LeaveRequestOut]:
        if filters is not None:
            if filters.status is not None:
                query = query.where(LeaveRequest.status == filters.status)
            if filters.leave_type_id is not None:
                query = query.where(LeaveRequest.leave_type_id == filters.leave_type_id)
            if filters.entity_kind is not None:
                query = query.where(LeaveRequest.entity_kind == filters.entity_kind)
            if filters.entity_id is not None:
                query = query.where(LeaveRequest.entity_id == filters.entity_id)
            if filters.from_date is not None:
                query = query.where(LeaveRequest.end_date >= filters.from_date)
            if filters.to_date is not None:
                query = query.where(LeaveRequest.start_date <= filters.to_date)

        if sort and sort.lstrip("-") not in _SORTABLE_FIELDS:
            raise ValidationException(
                {"sort": [f"Sort must be one of: {', '.join(sorted(_SORTABLE_FIELDS))}."]}
            )

        query = query.order_by(LeaveRequest.start_date.desc(), LeaveRequest.created_at.desc())
        rows, meta = await paginate(
            db, query, page=page, page_size=page_size, sort=sort, model=LeaveRequest,
        )
        return PaginatedResponse[LeaveRequestOut](
            data=[LeaveRequestOut.model_validate(row) for row in rows],
            meta=meta,
        )

    @staticmethod
    async def list_all(
        db: AsyncSession,
        filters: Optional[LeaveRequestFilters] = None,
        *,
        page: int = 1,
        page_size: int = 50,
        sort: Optional[str] = None,
    ) -> PaginatedResponse[LeaveRequestOut]:
        return await LeaveService._page(
            db, select(LeaveRequest), filters, page=page, page_size=page_size, sort=sort,
        )

    @staticmethod
    async def list_by_entity(
        db: AsyncSession,
        ref: EntityRef,
        filters: Optional[LeaveRequestFilters] = None,
        *,
        page: int = 1,
        page_size: int = 50,
        sort: Optional[str] = None,
    ) -> PaginatedResponse[LeaveRequestOut]:
        await resolve(db, ref)
        query = select(LeaveRequest).where(
            LeaveRequest.entity_kind == ref.kind,
            LeaveRequest.entity_id == ref.id,
        )
        return await LeaveService._page(
            db, query, filters, page=page, page_size=page_size, sort=sort,
        )

    @staticmethod
    async def list_for_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        filters: Optional[LeaveRequestFilters] = None,
        *,
        page: int = 1,
        page_size: int = 50,
        sort: Optional[str] = None,
    ) -> PaginatedResponse[LeaveRequestOut]:
        """Requests the user filed or that belong to an applicant they own."""
        conditions = [LeaveRequest.requested_by == user_id]
        conditions.extend(
            and_(LeaveRequest.entity_kind == ref.kind, LeaveRequest.entity_id == ref.id)
            for ref in await owned_refs(db, user_id)
        )
        query = select(LeaveRequest).where(or_(*conditions))
        return await LeaveService._page(
            db, query, filters, page=page, page_size=page_size, sort=sort,
        )

    # ─────────────────────────────────────────────────────────────────
    # Balances
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_balance(db: AsyncSession, ref: EntityRef, year: int) -> LeaveBalanceOut:
        """Balance for (ref, year), initialized on first access."""
        await resolve(db, ref)
        balance = await LeaveService._run_transition(
            db, ref, [year], lambda: LeaveLedger.get_or_initialize(db, ref, year),
        )
        return LeaveBalanceOut.model_validate(balance)

    @staticmethod
    async def get_my_balances(
        db: AsyncSession,
        user_id: uuid.UUID,
        year: int,
    ) -> list[LeaveBalanceOut]:
        """Balances of every applicant the user owns (their own user record first)."""
        return [
            await LeaveService.get_balance(db, ref, year)
            for ref in await owned_refs(db, user_id)
        ]

    @staticmethod
    async def list_balances(
        db: AsyncSession,
        year: int,
        *,
        entity_kind: Optional[EntityKind] = None,
        page: int = 1,
        page_size: int = 50,
        sort: Optional[str] = None,
    ) -> PaginatedResponse[LeaveBalanceOut]:
        """Every stored balance for *year*; balances are not initialized here."""
        query = select(LeaveBalance).where(LeaveBalance.year == year)
        if entity_kind is not None:
            query = query.where(LeaveBalance.entity_kind == entity_kind)
        query = query.order_by(LeaveBalance.entity_kind, LeaveBalance.entity_id)
        rows, meta = await paginate(
            db, query, page=page, page_size=page_size, sort=sort, model=LeaveBalance,
        )
        return PaginatedResponse[LeaveBalanceOut](
            data=[LeaveBalanceOut.model_validate(row) for row in rows],
            meta=meta,
        )

    @staticmethod
    async def balance_history(db: AsyncSession, ref: EntityRef) -> list[LeaveBalanceOut]:
        await resolve(db, ref)
        return [
            LeaveBalanceOut.model_validate(balance)
            for balance in await LeaveLedger.history(db, ref)
        ]

    @staticmethod
    async def adjust_allocation(
        db: AsyncSession,
        ref: EntityRef,
        data: AllocationUpdate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalanceOut:
        """Admin override of the allocated days for one leave type."""
        await resolve(db, ref)

        async def work():
            balance = await LeaveLedger.set_allocation(
                db, ref, data.year, data.leave_type_id, data.allocated,
            )
            await create_audit_entry(
                db,
                action="allocate",
                entity_type="leave_balance",
                entity_id=balance.id,
                actor_id=actor_id,
                new_values={
                    "leave_type_id": str(data.leave_type_id),
                    "allocated": str(data.allocated),
                },
            )
            return balance

        balance = await LeaveService._run_transition(db, ref, [data.year], work)
        return LeaveBalanceOut.model_validate(balance)

    @staticmethod
    async def adjust_carry_forward(
        db: AsyncSession,
        ref: EntityRef,
        data: CarryForwardUpdate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalanceOut:
        """Admin override of the carried-forward days for one leave type."""
        await resolve(db, ref)

        async def work():
            balance = await LeaveLedger.set_carry_forward(
                db, ref, data.year, data.leave_type_id, data.carry_forward,
            )
            await create_audit_entry(
                db,
                action="carry_forward",
                entity_type="leave_balance",
                entity_id=balance.id,
                actor_id=actor_id,
                new_values={
                    "leave_type_id": str(data.leave_type_id),
                    "carry_forward": str(data.carry_forward),
                },
            )
            return balance

        balance = await LeaveService._run_transition(db, ref, [data.year], work)
        return LeaveBalanceOut.model_validate(balance)

    @staticmethod
    async def initialize_yearly_balances(db: AsyncSession, year: int) -> BalanceInitializeOut:
        """Create the *year* balance for every active staff member, doctor and user."""
        initialized = skipped = 0
        for ref in await active_refs(db):
            if await LeaveLedger.find(db, ref, year) is not None:
                skipped += 1
                continue
            await LeaveService._run_transition(
                db, ref, [year],
                lambda ref=ref: LeaveLedger.get_or_initialize(db, ref, year),
            )
            initialized += 1

        logger.info(
            "Yearly leave balances for %d: %d initialized, %d already present",
            year, initialized, skipped,
        )
        return BalanceInitializeOut(year=year, initialized=initialized, skipped=skipped)
