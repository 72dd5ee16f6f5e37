"""Leave day spans: a contiguous date range or a set of discrete dates."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from clinic.common.exceptions import ValidationException


@dataclass(frozen=True)
class LeaveSpan:
    """The days a leave request covers.

    A span is either the inclusive range ``start..end`` (``dates`` is
    ``None``) or an explicit set of days, in which case ``start`` and
    ``end`` are the earliest and latest of them.
    """

    start: date
    end: date
    dates: Optional[tuple[date, ...]] = None

    # ── Construction ────────────────────────────────────────────────

    @classmethod
    def from_range(cls, start: date, end: date, *, max_days: Optional[int] = None) -> LeaveSpan:
        if end < start:
            raise ValidationException(
                {"end_date": ["end_date must be on or after start_date."]}
            )
        span = cls(start=start, end=end)
        if max_days is not None and span.days > max_days:
            raise ValidationException(
                {"end_date": [f"A leave range cannot exceed {max_days} days."]}
            )
        return span

    @classmethod
    def from_dates(cls, dates: Iterable[date]) -> LeaveSpan:
        values = list(dates)
        if not values:
            raise ValidationException({"dates": ["At least one date is required."]})
        unique = set(values)
        if len(unique) != len(values):
            raise ValidationException({"dates": ["Dates must not contain duplicates."]})
        ordered = tuple(sorted(unique))
        return cls(start=ordered[0], end=ordered[-1], dates=ordered)

    @classmethod
    def from_input(
        cls,
        start: Optional[date],
        end: Optional[date],
        dates: Optional[Sequence[date]],
        *,
        max_days: Optional[int] = None,
    ) -> LeaveSpan:
        """Build a span from request fields; exactly one representation is allowed."""
        has_range = start is not None or end is not None
        if has_range and dates is not None:
            raise ValidationException(
                {"dates": ["Provide either start_date/end_date or dates, not both."]}
            )
        if dates is not None:
            return cls.from_dates(dates)
        if start is None or end is None:
            raise ValidationException(
                {"start_date": ["start_date and end_date (or dates) are required."]}
            )
        return cls.from_range(start, end, max_days=max_days)

    @classmethod
    def of_request(cls, leave_request: Any) -> LeaveSpan:
        """Rebuild the span stored on a ``LeaveRequest`` row."""
        if leave_request.dates:
            return cls.from_dates(date.fromisoformat(d) for d in leave_request.dates)
        return cls(start=leave_request.start_date, end=leave_request.end_date)

    # ── Derived values ──────────────────────────────────────────────

    @property
    def is_discrete(self) -> bool:
        return self.dates is not None

    @property
    def days(self) -> Decimal:
        """Inclusive day count; discrete spans count each distinct date once."""
        if self.dates is not None:
            return Decimal(len(self.dates))
        return Decimal((self.end - self.start).days + 1)

    @property
    def year(self) -> int:
        """Ledger year the span is charged to: the year of its first day."""
        return self.start.year

    @property
    def years(self) -> list[int]:
        return list(range(self.start.year, self.end.year + 1))

    def day_set(self) -> frozenset[date]:
        if self.dates is not None:
            return frozenset(self.dates)
        return frozenset(
            self.start + timedelta(days=offset)
            for offset in range((self.end - self.start).days + 1)
        )

    def overlaps(self, other: LeaveSpan) -> bool:
        if self.start > other.end or other.start > self.end:
            return False
        if self.dates is None and other.dates is None:
            return True
        return not self.day_set().isdisjoint(other.day_set())

    def stored_dates(self) -> Optional[list[str]]:
        """JSON-safe form for the ``dates`` column."""
        if self.dates is None:
            return None
        return [d.isoformat() for d in self.dates]
