"""001 – Initial schema: directory, leave types, balances, requests, audit trail.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-16 10:00:00.000000+00:00
"""

from alembic import op

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("user_role", ["admin", "doctor", "staff"]),
    ("entity_kind", ["staff", "doctor", "user"]),
    ("leave_status", ["pending", "approved", "rejected", "cancelled"]),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. users ──────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE users (
            id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            first_name  VARCHAR(100) NOT NULL,
            last_name   VARCHAR(100) NOT NULL,
            email       VARCHAR(255) NOT NULL UNIQUE,
            role        user_role NOT NULL DEFAULT 'staff',
            is_active   BOOLEAN DEFAULT TRUE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 2. staff / doctors ────────────────────────────────────────────────
    for table in ("staff", "doctors"):
        op.execute(f"""
            CREATE TABLE {table} (
                id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                first_name      VARCHAR(100) NOT NULL,
                last_name       VARCHAR(100) NOT NULL,
                email           VARCHAR(255),
                linked_user_id  UUID REFERENCES users(id),
                is_active       BOOLEAN DEFAULT TRUE,
                created_at      TIMESTAMPTZ DEFAULT NOW()
            )
        """)
        op.execute(
            f"CREATE INDEX ix_{table}_linked_user_id ON {table} (linked_user_id)"
        )

    # ── 3. leave_types ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_types (
            id            UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name          VARCHAR(100) NOT NULL UNIQUE,
            description   TEXT,
            default_days  NUMERIC(6,1) NOT NULL DEFAULT 0,
            color_tag     VARCHAR(20) NOT NULL DEFAULT '#3498db',
            is_active     BOOLEAN NOT NULL DEFAULT TRUE,
            created_at    TIMESTAMPTZ DEFAULT NOW(),
            updated_at    TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_type_default_days CHECK (default_days >= 0)
        )
    """)

    # ── 4. leave_balances ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balances (
            id           UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            entity_kind  entity_kind NOT NULL,
            entity_id    UUID NOT NULL,
            year         INTEGER NOT NULL,
            version_id   INTEGER NOT NULL,
            created_at   TIMESTAMPTZ DEFAULT NOW(),
            updated_at   TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_leave_balance_entity_year UNIQUE (entity_kind, entity_id, year),
            CONSTRAINT ck_leave_balance_year CHECK (year BETWEEN 2020 AND 2100)
        )
    """)

    # ── 5. leave_balance_entries ──────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_balance_entries (
            id             UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            balance_id     UUID NOT NULL REFERENCES leave_balances(id) ON DELETE CASCADE,
            leave_type_id  UUID NOT NULL REFERENCES leave_types(id),
            allocated      NUMERIC(6,1) NOT NULL DEFAULT 0,
            used           NUMERIC(6,1) NOT NULL DEFAULT 0,
            pending        NUMERIC(6,1) NOT NULL DEFAULT 0,
            carry_forward  NUMERIC(6,1) NOT NULL DEFAULT 0,
            CONSTRAINT uq_leave_balance_entry_type UNIQUE (balance_id, leave_type_id),
            CONSTRAINT ck_leave_balance_entry_non_negative
                CHECK (allocated >= 0 AND used >= 0 AND pending >= 0 AND carry_forward >= 0)
        )
    """)

    # ── 6. leave_requests ─────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE leave_requests (
            id               UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            entity_kind      entity_kind NOT NULL,
            entity_id        UUID NOT NULL,
            leave_type_id    UUID NOT NULL REFERENCES leave_types(id),
            requested_by     UUID NOT NULL REFERENCES users(id),
            start_date       DATE NOT NULL,
            end_date         DATE NOT NULL,
            dates            JSONB,
            total_days       NUMERIC(6,1) NOT NULL,
            balance_year     INTEGER NOT NULL,
            reason           TEXT NOT NULL,
            contact_details  TEXT,
            attachments      JSONB,
            status           leave_status NOT NULL DEFAULT 'pending',
            reviewed_by      UUID REFERENCES users(id),
            review_date      TIMESTAMPTZ,
            review_notes     TEXT,
            created_at       TIMESTAMPTZ DEFAULT NOW(),
            updated_at       TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_leave_request_dates CHECK (end_date >= start_date)
        )
    """)
    op.execute(
        "CREATE INDEX ix_leave_requests_entity "
        "ON leave_requests (entity_kind, entity_id, status)"
    )
    op.execute(
        "CREATE INDEX ix_leave_requests_requested_by ON leave_requests (requested_by)"
    )

    # ── 7. audit_trail ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_trail (
            id           UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            actor_id     UUID,
            action       VARCHAR(50) NOT NULL,
            entity_type  VARCHAR(50) NOT NULL,
            entity_id    UUID NOT NULL,
            old_values   JSONB,
            new_values   JSONB,
            created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX ix_audit_trail_actor_id ON audit_trail (actor_id)")
    op.execute(
        "CREATE INDEX ix_audit_trail_entity ON audit_trail (entity_type, entity_id)"
    )
    op.execute("CREATE INDEX ix_audit_trail_created_at ON audit_trail (created_at)")
    op.execute("CREATE INDEX ix_audit_trail_action ON audit_trail (action)")


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "audit_trail",
        "leave_requests",
        "leave_balance_entries",
        "leave_balances",
        "leave_types",
        "doctors",
        "staff",
        "users",
    ]
    for table in tables:
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
