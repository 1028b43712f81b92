"""Challenge tier and level catalog.

Pure lookups over immutable tables. Misses return None or 0, never raise.
The catalog is passed into the lifecycle and settlement components so tests
can swap in alternate tables.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from streakbet.challenges.progress import MAX_LEVEL

BEGINNER = "beginner"
PRO = "pro"


@dataclass(frozen=True)
class TierDef:
    size: int
    cost: int
    label: str
    reset_fee: int
    rewards: tuple[int, int, int, int]


@dataclass(frozen=True)
class LevelRequirement:
    level: int
    streak_required: int
    name: str


@dataclass(frozen=True)
class DifficultyDef:
    key: str
    name: str
    min_odds: float
    levels: tuple[LevelRequirement, ...]
    tiers: tuple[TierDef, ...]


@dataclass(frozen=True)
class Catalog:
    """Loaded-once tier/level configuration keyed by difficulty."""

    difficulties: Mapping[str, DifficultyDef]
    max_level: int = field(default=MAX_LEVEL)

    def __post_init__(self) -> None:
        object.__setattr__(self, "difficulties", MappingProxyType(dict(self.difficulties)))
        for diff in self.difficulties.values():
            _validate_difficulty(diff, self.max_level)

    def difficulty(self, key: str) -> DifficultyDef | None:
        return self.difficulties.get(key)

    def tiers(self, difficulty: str) -> tuple[TierDef, ...]:
        diff = self.difficulty(difficulty)
        return diff.tiers if diff else ()

    def tier_by_size(self, size: int, difficulty: str) -> TierDef | None:
        """Cost, reset fee and reward ladder for a stake size, or None."""
        for tier in self.tiers(difficulty):
            if tier.size == size:
                return tier
        return None

    def min_odds(self, difficulty: str) -> float | None:
        diff = self.difficulty(difficulty)
        return diff.min_odds if diff else None

    def level_requirements(self, difficulty: str) -> tuple[LevelRequirement, ...]:
        diff = self.difficulty(difficulty)
        return diff.levels if diff else ()

    def streak_required(self, level: int, difficulty: str) -> int | None:
        for req in self.level_requirements(difficulty):
            if req.level == level:
                return req.streak_required
        return None

    def reward_for_level(self, tier_size: int, level: int, difficulty: str) -> int:
        tier = self.tier_by_size(tier_size, difficulty)
        if tier is None or level < 1 or level > self.max_level:
            return 0
        return tier.rewards[level - 1]

    def level_for_streak(self, streak: int, difficulty: str) -> int:
        """Highest level whose requirement the streak meets (0 for none)."""
        reached = 0
        for req in self.level_requirements(difficulty):
            if streak >= req.streak_required:
                reached = req.level
        return reached

    def next_level_target(self, streak: int, difficulty: str) -> LevelRequirement | None:
        """First level the streak has not reached yet, or None."""
        for req in self.level_requirements(difficulty):
            if streak < req.streak_required:
                return req
        return None

    def total_rewards_for_tier(self, tier_size: int, difficulty: str) -> int:
        tier = self.tier_by_size(tier_size, difficulty)
        return sum(tier.rewards) if tier else 0


def _validate_difficulty(diff: DifficultyDef, max_level: int) -> None:
    """Levels must be 1..max_level with strictly increasing streak requirements.

    A single win raises a streak by one, so strictly increasing thresholds mean
    at most one level can complete per settled wager.
    """
    numbers = [req.level for req in diff.levels]
    if numbers != list(range(1, max_level + 1)):
        raise ValueError(f"{diff.key}: levels must be 1..{max_level}, got {numbers}")
    streaks = [req.streak_required for req in diff.levels]
    if streaks[0] < 1 or any(b <= a for a, b in zip(streaks, streaks[1:])):
        raise ValueError(f"{diff.key}: streak requirements must strictly increase, got {streaks}")
    sizes = [tier.size for tier in diff.tiers]
    if len(set(sizes)) != len(sizes):
        raise ValueError(f"{diff.key}: duplicate tier sizes {sizes}")
    for tier in diff.tiers:
        if len(tier.rewards) != max_level:
            raise ValueError(f"{diff.key}: tier {tier.size} needs {max_level} rewards")


# ---------------------------------------------------------------------------
# Production tables
# ---------------------------------------------------------------------------

_LEVEL_NAMES = ("Bronze", "Silver", "Gold", "Diamond")

# (size, cost, label, reset_fee)
_TIER_PRICING = (
    (1000, 20, "€1K", 10),
    (5000, 99, "€5K", 49),
    (10000, 199, "€10K", 99),
    (25000, 399, "€25K", 199),
    (50000, 699, "€50K", 349),
    (100000, 999, "€100K", 499),
)

BEGINNER_REWARDS = (
    (3, 100, 500, 1000),
    (20, 500, 2000, 5000),
    (60, 1000, 4500, 10000),
    (100, 2000, 10000, 25000),
    (150, 3500, 20000, 50000),
    (250, 5000, 30000, 100000),
)

# Pro pays more for levels 2 and 3
PRO_REWARDS = (
    (3, 120, 550, 1000),
    (20, 600, 2200, 5000),
    (60, 1200, 4950, 10000),
    (100, 2400, 11000, 25000),
    (150, 4200, 22000, 50000),
    (250, 6000, 33000, 100000),
)


def _levels(*streaks: int) -> tuple[LevelRequirement, ...]:
    return tuple(
        LevelRequirement(level=i + 1, streak_required=s, name=_LEVEL_NAMES[i])
        for i, s in enumerate(streaks)
    )


def _tiers(rewards: tuple[tuple[int, int, int, int], ...]) -> tuple[TierDef, ...]:
    return tuple(
        TierDef(size=size, cost=cost, label=label, reset_fee=fee, rewards=ladder)
        for (size, cost, label, fee), ladder in zip(_TIER_PRICING, rewards)
    )


DEFAULT_CATALOG = Catalog(
    difficulties={
        BEGINNER: DifficultyDef(
            key=BEGINNER,
            name="Beginner",
            min_odds=1.5,
            levels=_levels(3, 6, 10, 15),
            tiers=_tiers(BEGINNER_REWARDS),
        ),
        PRO: DifficultyDef(
            key=PRO,
            name="Pro",
            min_odds=2.0,
            levels=_levels(2, 4, 6, 9),
            tiers=_tiers(PRO_REWARDS),
        ),
    }
)
