"""Leave balance ledger: the only mutation path for leave counters.

Each (entity, year) pair owns one ``LeaveBalance`` document whose entries
hold ``allocated``, ``used``, ``pending`` and ``carry_forward`` per leave
type. Mutations re-read the document, change the counters and flush the
whole document together, bumping its version so a concurrent writer on
another connection fails with ``StaleDataError`` instead of overwriting.

Within the process, writers for the same (entity, year) are serialized
by :attr:`LeaveLedger.locks`; callers that need several ledger steps and
a request write to be atomic hold :meth:`LeaveLedger.guard` around them
and commit before releasing it.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Hashable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinic.common.audit import utcnow
from clinic.common.constants import MAX_BALANCE_YEAR, MIN_BALANCE_YEAR
from clinic.common.exceptions import (
    InsufficientBalanceException,
    NotFoundException,
    ValidationException,
)
from clinic.directory.schemas import EntityRef
from clinic.leave.models import ZERO, LeaveBalance, LeaveBalanceEntry, LeaveType

logger = logging.getLogger(__name__)


class LedgerContention(Exception):
    """Another writer changed the same balance document; roll back and retry."""


# ═════════════════════════════════════════════════════════════════════
# Keyed lock
# ═════════════════════════════════════════════════════════════════════


class KeyedLock:
    """One ``asyncio.Lock`` per key, re-entrant for the task that holds it.

    Keys are dropped once nobody holds or waits on them, so the registry
    only grows with the number of concurrently contended keys.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._owners: dict[Hashable, asyncio.Task] = {}
        self._refs: dict[Hashable, int] = {}

    def locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        task = asyncio.current_task()
        if task is not None and self._owners.get(key) is task:
            yield
            return

        lock = self._locks.setdefault(key, asyncio.Lock())
        self._refs[key] = self._refs.get(key, 0) + 1
        try:
            async with lock:
                self._owners[key] = task
                try:
                    yield
                finally:
                    self._owners.pop(key, None)
        finally:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                del self._locks[key]


def _key(ref: EntityRef, year: int) -> tuple[str, uuid.UUID, int]:
    return (ref.kind.value, ref.id, year)


def _as_days(value: Decimal | int | float) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _check_year(year: int) -> None:
    if not MIN_BALANCE_YEAR <= year <= MAX_BALANCE_YEAR:
        raise ValidationException(
            {"year": [f"Year must be between {MIN_BALANCE_YEAR} and {MAX_BALANCE_YEAR}."]}
        )


# ═════════════════════════════════════════════════════════════════════
# LeaveLedger
# ═════════════════════════════════════════════════════════════════════


class LeaveLedger:
    """Async ledger operations over ``LeaveBalance`` documents."""

    locks = KeyedLock()

    @classmethod
    @asynccontextmanager
    async def guard(cls, ref: EntityRef, *years: int) -> AsyncIterator[None]:
        """Hold the writer lock for every (ref, year); acquired in year order."""
        async with _hold_all(cls.locks, sorted(set(years)), ref):
            yield

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _load(
        db: AsyncSession,
        ref: EntityRef,
        year: int,
        *,
        for_update: bool = False,
    ) -> Optional[LeaveBalance]:
        query = (
            select(LeaveBalance)
            .where(
                LeaveBalance.entity_kind == ref.kind,
                LeaveBalance.entity_id == ref.id,
                LeaveBalance.year == year,
            )
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalars().first()

    @staticmethod
    async def find(db: AsyncSession, ref: EntityRef, year: int) -> Optional[LeaveBalance]:
        """Return the balance for (ref, year) without creating it."""
        return await LeaveLedger._load(db, ref, year)

    @staticmethod
    async def history(db: AsyncSession, ref: EntityRef) -> Sequence[LeaveBalance]:
        """All balance documents of an entity, newest year first."""
        result = await db.execute(
            select(LeaveBalance)
            .where(
                LeaveBalance.entity_kind == ref.kind,
                LeaveBalance.entity_id == ref.id,
            )
            .order_by(LeaveBalance.year.desc())
        )
        return result.scalars().all()

    # ─────────────────────────────────────────────────────────────────
    # Initialization
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_or_initialize(
        db: AsyncSession,
        ref: EntityRef,
        year: int,
    ) -> LeaveBalance:
        """Return the balance for (ref, year), seeding it from active leave types.

        Seeded entries get ``allocated = default_days`` and zero counters.
        A concurrent insert by another connection surfaces as
        ``LedgerContention``; the caller rolls back and retries, and the
        retry reads the winner's row.
        """
        _check_year(year)
        async with LeaveLedger.locks.hold(_key(ref, year)):
            balance = await LeaveLedger._load(db, ref, year, for_update=True)
            if balance is not None:
                return balance

            types = (
                await db.execute(
                    select(LeaveType)
                    .where(LeaveType.is_active.is_(True))
                    .order_by(LeaveType.name)
                )
            ).scalars().all()

            balance = LeaveBalance(
                entity_kind=ref.kind,
                entity_id=ref.id,
                year=year,
                entries=[
                    LeaveBalanceEntry(
                        leave_type_id=lt.id,
                        leave_type=lt,
                        allocated=_as_days(lt.default_days),
                        used=ZERO,
                        pending=ZERO,
                        carry_forward=ZERO,
                    )
                    for lt in types
                ],
            )
            db.add(balance)
            try:
                await db.flush()
            except IntegrityError as exc:
                raise LedgerContention(
                    f"Leave balance {ref}/{year} was initialized concurrently."
                ) from exc

            logger.info(
                "Initialized leave balance for %s/%d with %d leave type(s)",
                ref, year, len(types),
            )
            return balance

    # ─────────────────────────────────────────────────────────────────
    # Entry access
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _entry(
        db: AsyncSession,
        balance: LeaveBalance,
        leave_type_id: uuid.UUID,
    ) -> LeaveBalanceEntry:
        """Return the entry for *leave_type_id*, adding it for a newer active type."""
        entry = balance.entry_for(leave_type_id)
        if entry is not None:
            return entry

        leave_type = await db.get(LeaveType, leave_type_id)
        if leave_type is None or not leave_type.is_active:
            raise NotFoundException("LeaveBalanceEntry", str(leave_type_id))

        entry = LeaveBalanceEntry(
            leave_type_id=leave_type.id,
            leave_type=leave_type,
            allocated=_as_days(leave_type.default_days),
            used=ZERO,
            pending=ZERO,
            carry_forward=ZERO,
        )
        balance.entries.append(entry)
        balance.updated_at = utcnow()
        await db.flush()
        logger.info(
            "Added %s entry to leave balance %s/%d",
            leave_type.name,
            f"{balance.entity_kind.value}:{balance.entity_id}",
            balance.year,
        )
        return entry

    @staticmethod
    async def available_for(
        db: AsyncSession,
        balance: LeaveBalance,
        leave_type_id: uuid.UUID,
    ) -> Decimal:
        """``allocated + carry_forward - used - pending`` for one leave type."""
        entry = await LeaveLedger._entry(db, balance, leave_type_id)
        return entry.available

    # ─────────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _mutable_entry(
        db: AsyncSession,
        ref: EntityRef,
        year: int,
        leave_type_id: uuid.UUID,
    ) -> tuple[LeaveBalance, LeaveBalanceEntry]:
        balance = await LeaveLedger.get_or_initialize(db, ref, year)
        entry = await LeaveLedger._entry(db, balance, leave_type_id)
        return balance, entry

    @staticmethod
    async def _save(db: AsyncSession, balance: LeaveBalance) -> LeaveBalance:
        # Touching the parent row bumps version_id for every counter change
        balance.updated_at = utcnow()
        await db.flush()
        return balance

    @staticmethod
    async def reserve(
        db: AsyncSession,
        ref: EntityRef,
        year: int,
        leave_type_id: uuid.UUID,
        days: Decimal,
    ) -> LeaveBalance:
        """Hold *days* as pending; fails when they exceed the available balance."""
        days = _as_days(days)
        async with LeaveLedger.locks.hold(_key(ref, year)):
            balance, entry = await LeaveLedger._mutable_entry(db, ref, year, leave_type_id)
            available = entry.available
            if days > available:
                raise InsufficientBalanceException(available, days)
            entry.pending = Decimal(entry.pending) + days
            return await LeaveLedger._save(db, balance)

    @staticmethod
    async def commit(
        db: AsyncSession,
        ref: EntityRef,
        year: int,
        leave_type_id: uuid.UUID,
        days: Decimal,
    ) -> LeaveBalance:
        """Move *days* from pending to used."""
        days = _as_days(days)
        async with LeaveLedger.locks.hold(_key(ref, year)):
            balance, entry = await LeaveLedger._mutable_entry(db, ref, year, leave_type_id)
            entry.pending = max(ZERO, Decimal(entry.pending) - days)
            entry.used = Decimal(entry.used) + days
            return await LeaveLedger._save(db, balance)

    @staticmethod
    async def release(
        db: AsyncSession,
        ref: EntityRef,
        year: int,
        leave_type_id: uuid.UUID,
        days: Decimal,
    ) -> LeaveBalance:
        """Drop *days* from pending (rejected or withdrawn pending requests)."""
        days = _as_days(days)
        async with LeaveLedger.locks.hold(_key(ref, year)):
            balance, entry = await LeaveLedger._mutable_entry(db, ref, year, leave_type_id)
            entry.pending = max(ZERO, Decimal(entry.pending) - days)
            return await LeaveLedger._save(db, balance)

    @staticmethod
    async def reverse_used(
        db: AsyncSession,
        ref: EntityRef,
        year: int,
        leave_type_id: uuid.UUID,
        days: Decimal,
    ) -> LeaveBalance:
        """Give back *days* of used leave (cancelled approved requests)."""
        days = _as_days(days)
        async with LeaveLedger.locks.hold(_key(ref, year)):
            balance, entry = await LeaveLedger._mutable_entry(db, ref, year, leave_type_id)
            entry.used = max(ZERO, Decimal(entry.used) - days)
            return await LeaveLedger._save(db, balance)

    @staticmethod
    async def set_allocation(
        db: AsyncSession,
        ref: EntityRef,
        year: int,
        leave_type_id: uuid.UUID,
        allocated: Decimal,
    ) -> LeaveBalance:
        allocated = _as_days(allocated)
        if allocated < ZERO:
            raise ValidationException({"allocated": ["Allocation cannot be negative."]})
        async with LeaveLedger.locks.hold(_key(ref, year)):
            balance, entry = await LeaveLedger._mutable_entry(db, ref, year, leave_type_id)
            entry.allocated = allocated
            return await LeaveLedger._save(db, balance)

    @staticmethod
    async def set_carry_forward(
        db: AsyncSession,
        ref: EntityRef,
        year: int,
        leave_type_id: uuid.UUID,
        carry_forward: Decimal,
    ) -> LeaveBalance:
        carry_forward = _as_days(carry_forward)
        if carry_forward < ZERO:
            raise ValidationException(
                {"carry_forward": ["Carry-forward cannot be negative."]}
            )
        async with LeaveLedger.locks.hold(_key(ref, year)):
            balance, entry = await LeaveLedger._mutable_entry(db, ref, year, leave_type_id)
            entry.carry_forward = carry_forward
            return await LeaveLedger._save(db, balance)


@asynccontextmanager
async def _hold_all(locks: KeyedLock, years: list[int], ref: EntityRef) -> AsyncIterator[None]:
    if not years:
        yield
        return
    async with locks.hold(_key(ref, years[0])):
        async with _hold_all(locks, years[1:], ref):
            yield
