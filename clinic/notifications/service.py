"""Leave notification dispatchers.

Every helper is best-effort: delivery or lookup failures are logged and
swallowed so a committed leave transition is never undone by e-mail.
Callers invoke these after the transaction has been committed.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from clinic.common.constants import DATE_FORMAT
from clinic.common.exceptions import format_days
from clinic.directory.schemas import EntityRecord
from clinic.directory.service import admin_emails
from clinic.notifications.mailer import get_notifier
from clinic.notifications.templates import TemplateKey

logger = logging.getLogger(__name__)


def _fmt_date(value: Any) -> str:
    return value.strftime(DATE_FORMAT) if value is not None else ""


def _fmt_dates(values: Optional[Sequence[Any]]) -> str:
    # Discrete days are stored as ISO strings
    if not values:
        return ""
    return ", ".join(
        _fmt_date(date.fromisoformat(v) if isinstance(v, str) else v) for v in values
    )


def _request_data(
    leave_request: Any,
    *,
    leave_type_name: str,
    applicant: EntityRecord,
) -> dict[str, str]:
    return {
        "entityType": applicant.kind.value,
        "entityName": applicant.display_name,
        "entityEmail": applicant.email or "",
        "leaveType": leave_type_name,
        "startDate": _fmt_date(leave_request.start_date),
        "endDate": _fmt_date(leave_request.end_date),
        "dates": _fmt_dates(getattr(leave_request, "dates", None)),
        "days": format_days(leave_request.total_days),
        "reason": leave_request.reason or "",
    }


def _review_data(leave_request: Any, reviewer: Optional[EntityRecord]) -> dict[str, str]:
    return {
        "adminName": reviewer.display_name if reviewer else "",
        "reviewDate": _fmt_date(leave_request.review_date),
        "reviewNotes": leave_request.review_notes or "",
    }


async def _dispatch(
    recipients: Sequence[str],
    template_key: TemplateKey,
    data: Mapping[str, str],
) -> bool:
    if not recipients:
        logger.warning("No recipients for %s; notification skipped", template_key.value)
        return False
    await get_notifier().send(recipients, template_key, data)
    return True


# ── Dispatchers ─────────────────────────────────────────────────────


async def notify_leave_request(
    db: AsyncSession,
    leave_request: Any,
    *,
    leave_type_name: str,
    applicant: EntityRecord,
    requester: EntityRecord,
) -> bool:
    """Tell every administrator that a new request is waiting for review."""
    try:
        data = _request_data(
            leave_request, leave_type_name=leave_type_name, applicant=applicant,
        )
        data.update(
            requestorName=requester.display_name,
            requestorEmail=requester.email or "",
            date=datetime.now(timezone.utc).strftime(DATE_FORMAT),
        )
        return await _dispatch(
            await admin_emails(db), TemplateKey.leave_request_notification, data,
        )
    except Exception:
        logger.exception("Failed to send leave request notification for %s", leave_request.id)
        return False


async def notify_leave_approved(
    leave_request: Any,
    *,
    leave_type_name: str,
    applicant: EntityRecord,
    reviewer: Optional[EntityRecord],
) -> bool:
    """Tell the applicant their request was approved."""
    try:
        data = _request_data(
            leave_request, leave_type_name=leave_type_name, applicant=applicant,
        )
        data.update(_review_data(leave_request, reviewer))
        recipients = [applicant.email] if applicant.email else []
        return await _dispatch(recipients, TemplateKey.leave_approved, data)
    except Exception:
        logger.exception("Failed to send approval notification for %s", leave_request.id)
        return False


async def notify_leave_rejected(
    leave_request: Any,
    *,
    leave_type_name: str,
    applicant: EntityRecord,
    reviewer: Optional[EntityRecord],
) -> bool:
    """Tell the applicant their request was rejected."""
    try:
        data = _request_data(
            leave_request, leave_type_name=leave_type_name, applicant=applicant,
        )
        data.update(_review_data(leave_request, reviewer))
        recipients = [applicant.email] if applicant.email else []
        return await _dispatch(recipients, TemplateKey.leave_rejected, data)
    except Exception:
        logger.exception("Failed to send rejection notification for %s", leave_request.id)
        return False


async def notify_leave_cancelled(
    db: AsyncSession,
    leave_request: Any,
    *,
    leave_type_name: str,
    applicant: EntityRecord,
    requester: EntityRecord,
) -> bool:
    """Tell administrators that a request was withdrawn."""
    try:
        data = _request_data(
            leave_request, leave_type_name=leave_type_name, applicant=applicant,
        )
        data.update(_review_data(leave_request, None))
        data.update(requestorName=requester.display_name)
        return await _dispatch(
            await admin_emails(db), TemplateKey.leave_cancelled, data,
        )
    except Exception:
        logger.exception("Failed to send cancellation notification for %s", leave_request.id)
        return False
