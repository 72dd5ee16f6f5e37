"""Fixtures for the leave engine tests.

Every test runs against a fresh in-memory SQLite schema (aiosqlite, one
shared connection). Postgres-only column types are compiled to SQLite
equivalents below. Seed helpers commit and hand back plain dicts, so tests
never hold ORM instances across a service rollback.
"""

from __future__ import annotations

import os

# pydantic-settings reads JWT_SECRET when clinic.config is first imported
os.environ.setdefault("JWT_SECRET", "leave-tests-only-secret")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncIterator, Mapping, Optional, Sequence

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.pool import StaticPool

import clinic.common.audit  # noqa: F401  (registers audit_trail on Base.metadata)
import clinic.directory.models  # noqa: F401
import clinic.leave.models  # noqa: F401
from clinic.auth.service import create_access_token
from clinic.common.constants import EntityKind, UserRole
from clinic.common.rate_limit import limiter
from clinic.database import Base, get_db
from clinic.directory.schemas import EntityRef
from clinic.main import create_app
from clinic.notifications.mailer import Notifier, set_notifier
from clinic.notifications.templates import TemplateKey, render


@compiles(JSONB, "sqlite")
def _jsonb_as_text(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_as_char(element, compiler, **kw):
    return "CHAR(36)"


# ═════════════════════════════════════════════════════════════════════
# Database
# ═════════════════════════════════════════════════════════════════════

engine = create_async_engine(
    "sqlite+aiosqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine.sync_engine, "connect")
def _add_postgres_functions(dbapi_conn, _record):
    # server_default expressions in the models call these
    dbapi_conn.create_function("NOW", 0, lambda: datetime.now(timezone.utc).isoformat())
    dbapi_conn.create_function("gen_random_uuid", 0, lambda: str(uuid.uuid4()))


TestSessionFactory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(autouse=True)
async def _setup_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    limiter.reset()
    yield


async def _override_get_db() -> AsyncIterator[AsyncSession]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@pytest.fixture
async def db() -> AsyncIterator[AsyncSession]:
    """A session for arranging data and inspecting results directly."""
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ═════════════════════════════════════════════════════════════════════
# Notifications
# ═════════════════════════════════════════════════════════════════════


class RecordingNotifier(Notifier):
    """Captures rendered messages instead of delivering them.

    Set ``fail`` to make every send raise, as an unreachable mail server would.
    """

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.fail = False

    async def send(
        self,
        recipients: Sequence[str],
        template_key: TemplateKey,
        data: Mapping[str, str],
    ) -> None:
        if self.fail:
            raise RuntimeError("mail server unavailable")
        self.sent.append({
            "recipients": list(recipients),
            "template": template_key,
            "data": dict(data),
            "message": render(template_key, data),
        })

    def of(self, template_key: TemplateKey) -> list[dict]:
        return [m for m in self.sent if m["template"] == template_key]


@pytest.fixture(autouse=True)
def notifier() -> RecordingNotifier:
    recorder = RecordingNotifier()
    set_notifier(recorder)
    yield recorder
    set_notifier(None)


# ═════════════════════════════════════════════════════════════════════
# HTTP
# ═════════════════════════════════════════════════════════════════════


@pytest.fixture
async def app():
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://clinic.test") as ac:
        yield ac


def auth_headers(user_id: uuid.UUID, *, expired: bool = False) -> dict[str, str]:
    """Bearer headers for ``user_id``; ``expired`` signs a token that lapsed an hour ago."""
    token = create_access_token(
        user_id, expires_delta=timedelta(hours=-1) if expired else None,
    )
    return {"Authorization": f"Bearer {token}"}


# ═════════════════════════════════════════════════════════════════════
# Factories and seeds
# ═════════════════════════════════════════════════════════════════════


def _stamp() -> datetime:
    return datetime.now(timezone.utc)


def _make_user(
    *,
    email: Optional[str] = None,
    first_name: str = "Test",
    last_name: str = "User",
    role: UserRole = UserRole.staff,
    is_active: bool = True,
) -> dict:
    return {
        "id": uuid.uuid4(),
        "first_name": first_name,
        "last_name": last_name,
        "email": email or f"user-{uuid.uuid4().hex[:8]}@clinic.test",
        "role": role,
        "is_active": is_active,
        "created_at": _stamp(),
    }


def _make_person(
    *,
    first_name: str = "Sam",
    last_name: str = "Carter",
    email: Optional[str] = None,
    linked_user_id: Optional[uuid.UUID] = None,
    is_active: bool = True,
) -> dict:
    """Column values shared by Staff and Doctor rows."""
    return {
        "id": uuid.uuid4(),
        "first_name": first_name,
        "last_name": last_name,
        "email": email or f"person-{uuid.uuid4().hex[:8]}@clinic.test",
        "linked_user_id": linked_user_id,
        "is_active": is_active,
        "created_at": _stamp(),
    }


def _make_leave_type(
    *,
    name: str = "Annual Leave",
    default_days: Decimal = Decimal("20"),
    is_active: bool = True,
) -> dict:
    return {
        "id": uuid.uuid4(),
        "name": name,
        "description": f"{name} entitlement",
        "default_days": default_days,
        "color_tag": "#3498db",
        "is_active": is_active,
        "created_at": _stamp(),
        "updated_at": _stamp(),
    }


async def _persist(db: AsyncSession, model, data: dict) -> dict:
    db.add(model(**data))
    await db.commit()
    return data


async def _seed_user(db: AsyncSession, **kwargs) -> dict:
    from clinic.directory.models import User

    return await _persist(db, User, _make_user(**kwargs))


async def _seed_staff(db: AsyncSession, **kwargs) -> dict:
    from clinic.directory.models import Staff

    return await _persist(db, Staff, _make_person(**kwargs))


async def _seed_doctor(db: AsyncSession, **kwargs) -> dict:
    from clinic.directory.models import Doctor

    return await _persist(db, Doctor, _make_person(**kwargs))


async def _seed_leave_type(db: AsyncSession, **kwargs) -> dict:
    from clinic.leave.models import LeaveType

    return await _persist(db, LeaveType, _make_leave_type(**kwargs))


async def _seed_balance(
    db: AsyncSession,
    ref: EntityRef,
    year: int,
    leave_type_id: uuid.UUID,
    *,
    allocated: Decimal = Decimal("20"),
    used: Decimal = Decimal("0"),
    pending: Decimal = Decimal("0"),
    carry_forward: Decimal = Decimal("0"),
) -> uuid.UUID:
    """Insert a balance with a single entry and return the balance id."""
    from clinic.leave.models import LeaveBalance, LeaveBalanceEntry

    balance = LeaveBalance(
        id=uuid.uuid4(),
        entity_kind=ref.kind,
        entity_id=ref.id,
        year=year,
        entries=[
            LeaveBalanceEntry(
                leave_type_id=leave_type_id,
                allocated=allocated,
                used=used,
                pending=pending,
                carry_forward=carry_forward,
            )
        ],
    )
    db.add(balance)
    await db.commit()
    return balance.id


# ═════════════════════════════════════════════════════════════════════
# Common cast: an admin, a staff member with a login, one leave type
# ═════════════════════════════════════════════════════════════════════


@pytest.fixture
async def admin_user(db) -> dict:
    return await _seed_user(
        db, first_name="Alice", last_name="Admin", email="admin@clinic.test", role=UserRole.admin,
    )


@pytest.fixture
async def staff_user(db) -> dict:
    return await _seed_user(db, first_name="Sam", last_name="Carter", email="sam.carter@clinic.test")


@pytest.fixture
async def staff_member(db, staff_user) -> dict:
    """The Staff row ``staff_user`` manages through self-service."""
    return await _seed_staff(
        db,
        first_name="Sam",
        last_name="Carter",
        email="sam.carter@clinic.test",
        linked_user_id=staff_user["id"],
    )


@pytest.fixture
def staff_ref(staff_member) -> EntityRef:
    return EntityRef(kind=EntityKind.staff, id=staff_member["id"])


@pytest.fixture
async def annual_leave(db) -> dict:
    return await _seed_leave_type(db)
