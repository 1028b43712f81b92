"""ORM models for the challenge store.

``users`` and ``bets`` are owned by the account and betting subsystems; only
the columns the engine reads are mapped here.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from streakbet.challenges.progress import LevelProgress
from streakbet.db.base import Base, BigIntPK

# ---------------------------------------------------------------------------
# Status / result vocabularies
# ---------------------------------------------------------------------------

CHALLENGE_ACTIVE = "active"
CHALLENGE_COMPLETED = "completed"
CHALLENGE_EXPIRED = "expired"
CHALLENGE_CANCELLED = "cancelled"

RESULT_WON = "won"
RESULT_LOST = "lost"
RESULT_PUSH = "push"
RESULT_VOID = "void"
RESULT_PENDING = "pending"

REWARD_PENDING = "pending"
REWARD_PAID = "paid"
REWARD_REJECTED = "rejected"


# ---------------------------------------------------------------------------
# External: Users / Bets
# ---------------------------------------------------------------------------


class User(Base):
    """Maps to the 'users' table."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    challenges: Mapped[list[Challenge]] = relationship("Challenge", back_populates="user")


class Bet(Base):
    """Maps to the 'bets' table. Graded by the settlement collaborator."""

    __tablename__ = "bets"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    odds_decimal: Mapped[float] = mapped_column(Float, nullable=False)
    stake: Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    selection: Mapped[str | None] = mapped_column(String(256), nullable=True)
    result: Mapped[str] = mapped_column(String(16), nullable=False, server_default=RESULT_PENDING)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


class Challenge(Base):
    """One purchased streak contract."""

    __tablename__ = "challenges"
    __table_args__ = (
        CheckConstraint("current_streak >= 0", name="ck_challenges_streak_non_negative"),
        CheckConstraint("current_level BETWEEN 1 AND 4", name="ck_challenges_level_range"),
        # Levels complete in order, so only prefix masks are valid.
        CheckConstraint("level_flags IN (0, 1, 3, 7, 15)", name="ck_challenges_level_flags"),
        Index("idx_challenges_user_status", "user_id", "status"),
        Index("idx_challenges_status_expires", "status", "expires_at"),
        # At most one active challenge per (user, slot); slots run 1..max_active.
        Index(
            "uq_challenges_user_active_slot",
            "user_id",
            "active_slot",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    tier: Mapped[int] = mapped_column(Integer, nullable=False)
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False, server_default="beginner")
    min_odds: Mapped[float] = mapped_column(Float, nullable=False)
    cost: Mapped[int] = mapped_column(Integer, nullable=False)
    reset_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default=CHALLENGE_ACTIVE)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    level_flags: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    total_rewards_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    active_slot: Mapped[int | None] = mapped_column(Integer, nullable=True)
    purchased_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reset_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    user: Mapped[User] = relationship("User", back_populates="challenges")
    rewards: Mapped[list[ChallengeReward]] = relationship(
        "ChallengeReward", back_populates="challenge", order_by="ChallengeReward.level"
    )
    bets: Mapped[list[ChallengeBet]] = relationship("ChallengeBet", back_populates="challenge")

    @property
    def progress(self) -> LevelProgress:
        return LevelProgress(self.level_flags)

    def apply_progress(self, progress: LevelProgress) -> None:
        """Store level flags and keep current_level derived from them."""
        self.level_flags = progress.mask
        self.current_level = progress.current_level


class ChallengeBet(Base):
    """Link between a challenge and a wager with before/after snapshots."""

    __tablename__ = "challenge_bets"
    __table_args__ = (
        UniqueConstraint("challenge_id", "bet_id", name="uq_challenge_bets_challenge_bet"),
        Index("idx_challenge_bets_bet", "bet_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False
    )
    bet_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("bets.id", ondelete="CASCADE"), nullable=False)
    streak_before: Mapped[int] = mapped_column(Integer, nullable=False)
    level_before: Mapped[int] = mapped_column(Integer, nullable=False)
    result: Mapped[str | None] = mapped_column(String(16), nullable=True)
    streak_after: Mapped[int | None] = mapped_column(Integer, nullable=True)
    level_after: Mapped[int | None] = mapped_column(Integer, nullable=True)
    level_completed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    challenge: Mapped[Challenge] = relationship("Challenge", back_populates="bets")
    bet: Mapped[Bet] = relationship("Bet")

    @property
    def is_settled(self) -> bool:
        return self.result is not None


class ChallengeReward(Base):
    """A level reward, pending until the payout collaborator acts on it."""

    __tablename__ = "challenge_rewards"
    __table_args__ = (
        UniqueConstraint("challenge_id", "level", name="uq_challenge_rewards_challenge_level"),
        CheckConstraint("level BETWEEN 1 AND 4", name="ck_challenge_rewards_level_range"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    challenge_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("challenges.id", ondelete="CASCADE"), nullable=False
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default=REWARD_PENDING)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    challenge: Mapped[Challenge] = relationship("Challenge", back_populates="rewards")
