"""Initial schema: families, children, completions, points ledger, achievements.

The points ledger is append-only. A trigger rejects any insert whose
balance_after is not the running sum, and UPDATE / DELETE on the ledger
are refused outright.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Families ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS families (
            id VARCHAR(36) PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS family_settings (
            family_id VARCHAR(36) PRIMARY KEY REFERENCES families(id) ON DELETE CASCADE,
            streak_grace_period_hours INTEGER NOT NULL DEFAULT 4
                CHECK (streak_grace_period_hours BETWEEN 0 AND 12),
            minimum_tasks_per_day INTEGER NOT NULL DEFAULT 1 CHECK (minimum_tasks_per_day >= 1),
            timezone VARCHAR(64) NOT NULL DEFAULT 'UTC',
            week_start_day VARCHAR(8) NOT NULL DEFAULT 'sunday'
                CHECK (week_start_day IN ('sunday', 'monday')),
            enable_leaderboard BOOLEAN NOT NULL DEFAULT true
        )
    """)

    # --- Children ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS children (
            id VARCHAR(36) PRIMARY KEY,
            family_id VARCHAR(36) NOT NULL REFERENCES families(id) ON DELETE CASCADE,
            display_name VARCHAR(64) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            deleted_at TIMESTAMPTZ
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_children_family_id ON children(family_id)")

    # --- Task completions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS task_completions (
            id BIGSERIAL PRIMARY KEY,
            child_id VARCHAR(36) NOT NULL REFERENCES children(id) ON DELETE CASCADE,
            task_id VARCHAR(64) NOT NULL,
            approved_at TIMESTAMPTZ NOT NULL,
            difficulty VARCHAR(16) NOT NULL DEFAULT 'medium',
            category VARCHAR(64),
            due_date TIMESTAMPTZ,
            CONSTRAINT task_completions_child_task_approved_key UNIQUE (child_id, task_id, approved_at)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_task_completions_child_id ON task_completions(child_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_task_completions_approved_at ON task_completions(approved_at)")

    # --- Points ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS points_ledger (
            id BIGSERIAL PRIMARY KEY,
            child_id VARCHAR(36) NOT NULL REFERENCES children(id) ON DELETE CASCADE,
            transaction_type VARCHAR(16) NOT NULL
                CHECK (transaction_type IN ('earned', 'redeemed', 'bonus', 'penalty', 'adjustment')),
            points_amount INTEGER NOT NULL,
            balance_after BIGINT NOT NULL CHECK (balance_after >= 0),
            breakdown JSONB NOT NULL DEFAULT '{}',
            reference_type VARCHAR(32),
            reference_id VARCHAR(64),
            description VARCHAR(256),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_points_ledger_child_id ON points_ledger(child_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_points_ledger_created_at ON points_ledger(created_at)")

    op.execute("""
        CREATE OR REPLACE FUNCTION points_ledger_check_balance() RETURNS trigger AS $$
        DECLARE
            prior BIGINT;
        BEGIN
            SELECT COALESCE(SUM(points_amount), 0) INTO prior
            FROM points_ledger WHERE child_id = NEW.child_id;
            IF NEW.balance_after <> prior + NEW.points_amount THEN
                RAISE EXCEPTION 'points_ledger balance mismatch for child %: expected %, got %',
                    NEW.child_id, prior + NEW.points_amount, NEW.balance_after;
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER points_ledger_balance_check
        BEFORE INSERT ON points_ledger
        FOR EACH ROW EXECUTE FUNCTION points_ledger_check_balance()
    """)
    op.execute("""
        CREATE OR REPLACE FUNCTION points_ledger_append_only() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'points_ledger is append-only';
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER points_ledger_no_update
        BEFORE UPDATE OR DELETE ON points_ledger
        FOR EACH ROW EXECUTE FUNCTION points_ledger_append_only()
    """)

    # --- Counter projection ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS child_gamification (
            child_id VARCHAR(36) PRIMARY KEY REFERENCES children(id) ON DELETE CASCADE,
            total_points_earned BIGINT NOT NULL DEFAULT 0,
            total_tasks_completed INTEGER NOT NULL DEFAULT 0,
            total_xp BIGINT NOT NULL DEFAULT 0,
            current_streak_days INTEGER NOT NULL DEFAULT 0,
            longest_streak_days INTEGER NOT NULL DEFAULT 0,
            last_streak_date DATE,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Achievements ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievement_definitions (
            id VARCHAR(64) PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            criteria_type VARCHAR(32) NOT NULL,
            criteria_value INTEGER NOT NULL,
            criteria_config JSONB NOT NULL DEFAULT '{}',
            tier VARCHAR(16) NOT NULL DEFAULT 'bronze',
            points_reward INTEGER NOT NULL DEFAULT 0,
            xp_reward INTEGER NOT NULL DEFAULT 0,
            sort_order INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS unlocked_achievements (
            id BIGSERIAL PRIMARY KEY,
            child_id VARCHAR(36) NOT NULL REFERENCES children(id) ON DELETE CASCADE,
            achievement_id VARCHAR(64) NOT NULL REFERENCES achievement_definitions(id),
            unlocked_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT unlocked_achievements_child_achievement_key UNIQUE (child_id, achievement_id)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_unlocked_achievements_child_id ON unlocked_achievements(child_id)")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS unlocked_achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS achievement_definitions CASCADE")
    op.execute("DROP TABLE IF EXISTS child_gamification CASCADE")
    op.execute("DROP TABLE IF EXISTS points_ledger CASCADE")
    op.execute("DROP FUNCTION IF EXISTS points_ledger_check_balance()")
    op.execute("DROP FUNCTION IF EXISTS points_ledger_append_only()")
    op.execute("DROP TABLE IF EXISTS task_completions CASCADE")
    op.execute("DROP TABLE IF EXISTS children CASCADE")
    op.execute("DROP TABLE IF EXISTS family_settings CASCADE")
    op.execute("DROP TABLE IF EXISTS families CASCADE")
