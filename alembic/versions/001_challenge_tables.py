"""Challenge tables.

Creates challenges, challenge_bets and challenge_rewards. The users and bets
tables belong to the account and betting services; they are only created
here (minimal columns) when missing, e.g. on a fresh development database.

Revision ID: 001_challenge_tables
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_challenge_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- External tables (no-op when present) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            email VARCHAR(320) UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS bets (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            odds_decimal DOUBLE PRECISION NOT NULL,
            stake DOUBLE PRECISION NOT NULL DEFAULT 0,
            selection VARCHAR(256),
            result VARCHAR(16) NOT NULL DEFAULT 'pending',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            settled_at TIMESTAMPTZ
        )
    """)

    # --- Challenges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS challenges (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            tier INTEGER NOT NULL,
            difficulty VARCHAR(16) NOT NULL DEFAULT 'beginner',
            min_odds DOUBLE PRECISION NOT NULL,
            cost INTEGER NOT NULL,
            reset_fee INTEGER NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'active',
            current_streak INTEGER NOT NULL DEFAULT 0,
            current_level INTEGER NOT NULL DEFAULT 1,
            level_flags INTEGER NOT NULL DEFAULT 0,
            total_rewards_earned INTEGER NOT NULL DEFAULT 0,
            active_slot INTEGER,
            purchased_at TIMESTAMPTZ NOT NULL,
            expires_at TIMESTAMPTZ NOT NULL,
            completed_at TIMESTAMPTZ,
            reset_at TIMESTAMPTZ,
            updated_at TIMESTAMPTZ,
            CONSTRAINT ck_challenges_streak_non_negative CHECK (current_streak >= 0),
            CONSTRAINT ck_challenges_level_range CHECK (current_level BETWEEN 1 AND 4),
            CONSTRAINT ck_challenges_level_flags CHECK (level_flags IN (0, 1, 3, 7, 15))
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_challenges_user_status
        ON challenges(user_id, status)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_challenges_status_expires
        ON challenges(status, expires_at)
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_challenges_user_active_slot
        ON challenges(user_id, active_slot)
        WHERE status = 'active'
    """)

    # --- Challenge Bets ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS challenge_bets (
            id BIGSERIAL PRIMARY KEY,
            challenge_id BIGINT NOT NULL REFERENCES challenges(id) ON DELETE CASCADE,
            bet_id BIGINT NOT NULL REFERENCES bets(id) ON DELETE CASCADE,
            streak_before INTEGER NOT NULL,
            level_before INTEGER NOT NULL,
            result VARCHAR(16),
            streak_after INTEGER,
            level_after INTEGER,
            level_completed INTEGER,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            settled_at TIMESTAMPTZ,
            CONSTRAINT uq_challenge_bets_challenge_bet UNIQUE (challenge_id, bet_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_challenge_bets_bet
        ON challenge_bets(bet_id)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_challenge_bets_unsettled
        ON challenge_bets(bet_id)
        WHERE result IS NULL
    """)

    # --- Challenge Rewards ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS challenge_rewards (
            id BIGSERIAL PRIMARY KEY,
            challenge_id BIGINT NOT NULL REFERENCES challenges(id) ON DELETE CASCADE,
            level INTEGER NOT NULL,
            amount INTEGER NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            earned_at TIMESTAMPTZ NOT NULL,
            paid_at TIMESTAMPTZ,
            CONSTRAINT uq_challenge_rewards_challenge_level UNIQUE (challenge_id, level),
            CONSTRAINT ck_challenge_rewards_level_range CHECK (level BETWEEN 1 AND 4)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_challenge_rewards_pending
        ON challenge_rewards(challenge_id)
        WHERE status = 'pending'
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS challenge_rewards CASCADE")
    op.execute("DROP TABLE IF EXISTS challenge_bets CASCADE")
    op.execute("DROP TABLE IF EXISTS challenges CASCADE")
