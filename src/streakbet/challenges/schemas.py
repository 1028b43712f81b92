"""Pydantic result models returned by the challenge engine."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class CreateStatus(BaseModel):
    allowed: bool
    current: int
    max_allowed: int


class SettlementOutcome(BaseModel):
    challenge_id: int
    streak: int
    level: int
    level_completed: int | None = None


class LevelTarget(BaseModel):
    level: int
    target: int


class ChallengeSummary(BaseModel):
    """Read model for a challenge card."""

    model_config = {"from_attributes": True}

    id: int
    tier: int
    tier_label: str
    difficulty: str
    min_odds: float
    status: str
    current_streak: int
    current_level: int
    level_flags: list[bool]
    completed_levels: int
    total_rewards_earned: int
    tier_rewards: list[int] = []
    next_level_target: LevelTarget | None = None
    days_remaining: int
    expires_at: datetime


class BatchReport(BaseModel):
    """Outcome of one settlement batch run."""

    settled: int = 0
    failed: int = 0
    outcomes: list[SettlementOutcome] = []
