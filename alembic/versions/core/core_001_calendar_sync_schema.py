"""calendar sync baseline schema

Revision ID: core_001
Revises:
Create Date: 2026-10-01 00:00:00.000000

Creates the property, feed, reservation, block and cleaning tables. Ids are
text so externally generated identifiers can be stored unchanged.
"""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "core_001"
down_revision = None
branch_labels = ("core",)
depends_on = None

_ID_DEFAULT = "DEFAULT gen_random_uuid()::text"


def upgrade() -> None:
    op.execute(
        f"""
        CREATE TABLE IF NOT EXISTS host_accounts (
            id TEXT PRIMARY KEY {_ID_DEFAULT},
            name TEXT NOT NULL,
            export_token TEXT UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """
    )
    op.execute(
        f"""
        CREATE TABLE IF NOT EXISTS properties (
            id TEXT PRIMARY KEY {_ID_DEFAULT},
            host_id TEXT REFERENCES host_accounts(id) ON DELETE SET NULL,
            name TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """
    )
    op.execute(
        f"""
        CREATE TABLE IF NOT EXISTS calendar_sources (
            id TEXT PRIMARY KEY {_ID_DEFAULT},
            property_id TEXT NOT NULL REFERENCES properties(id) ON DELETE CASCADE,
            url TEXT NOT NULL,
            channel TEXT,
            active BOOLEAN NOT NULL DEFAULT true,
            last_sync_at TIMESTAMPTZ,
            last_status TEXT
                CHECK (last_status IN ('ok', 'fetch_error', 'parse_error', 'store_error')),
            last_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_calendar_sources_property_active "
        "ON calendar_sources (property_id) WHERE active"
    )
    op.execute(
        f"""
        CREATE TABLE IF NOT EXISTS reservations (
            id TEXT PRIMARY KEY {_ID_DEFAULT},
            property_id TEXT NOT NULL REFERENCES properties(id) ON DELETE CASCADE,
            source_id TEXT REFERENCES calendar_sources(id) ON DELETE SET NULL,
            external_uid TEXT NOT NULL,
            guest_name VARCHAR(120),
            guest_count INTEGER NOT NULL DEFAULT 2 CHECK (guest_count > 0),
            check_in TIMESTAMP NOT NULL,
            check_out TIMESTAMP NOT NULL,
            status TEXT NOT NULL DEFAULT 'booked' CHECK (status IN ('booked', 'canceled')),
            channel TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_reservations_property_external_uid UNIQUE (property_id, external_uid)
        )
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_reservations_property_check_in "
        "ON reservations (property_id, check_in)"
    )
    op.execute(
        f"""
        CREATE TABLE IF NOT EXISTS calendar_blocks (
            id TEXT PRIMARY KEY {_ID_DEFAULT},
            property_id TEXT NOT NULL REFERENCES properties(id) ON DELETE CASCADE,
            start_date DATE NOT NULL,
            end_date DATE NOT NULL,
            reason TEXT,
            active BOOLEAN NOT NULL DEFAULT true,
            created_by TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CHECK (end_date >= start_date)
        )
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_calendar_blocks_property_start "
        "ON calendar_blocks (property_id, start_date) WHERE active"
    )
    op.execute(
        f"""
        CREATE TABLE IF NOT EXISTS cleaning_tasks (
            id TEXT PRIMARY KEY {_ID_DEFAULT},
            property_id TEXT NOT NULL REFERENCES properties(id) ON DELETE CASCADE,
            reservation_id TEXT REFERENCES reservations(id) ON DELETE SET NULL,
            task_type TEXT NOT NULL DEFAULT 'turnover',
            scheduled_start TIMESTAMP NOT NULL,
            status TEXT NOT NULL DEFAULT 'todo' CHECK (status IN ('todo', 'assigned', 'done')),
            assigned_cleaner_id TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_cleaning_tasks_unassigned "
        "ON cleaning_tasks (property_id, scheduled_start) "
        "WHERE status = 'todo' AND assigned_cleaner_id IS NULL"
    )
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS cleaner_assignments (
            property_id TEXT NOT NULL REFERENCES properties(id) ON DELETE CASCADE,
            cleaner_id TEXT NOT NULL,
            weight INTEGER NOT NULL DEFAULT 1 CHECK (weight >= 0),
            active BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (property_id, cleaner_id)
        )
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS cleaner_assignments")
    op.execute("DROP INDEX IF EXISTS ix_cleaning_tasks_unassigned")
    op.execute("DROP TABLE IF EXISTS cleaning_tasks")
    op.execute("DROP INDEX IF EXISTS ix_calendar_blocks_property_start")
    op.execute("DROP TABLE IF EXISTS calendar_blocks")
    op.execute("DROP INDEX IF EXISTS ix_reservations_property_check_in")
    op.execute("DROP TABLE IF EXISTS reservations")
    op.execute("DROP INDEX IF EXISTS ix_calendar_sources_property_active")
    op.execute("DROP TABLE IF EXISTS calendar_sources")
    op.execute("DROP TABLE IF EXISTS properties")
    op.execute("DROP TABLE IF EXISTS host_accounts")
