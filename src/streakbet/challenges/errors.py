"""Challenge engine error taxonomy."""

from __future__ import annotations

from typing import Any


class ChallengeError(Exception):
    """Base class for errors surfaced to engine callers."""


class InvalidTier(ChallengeError):
    def __init__(self, tier_size: int, difficulty: str) -> None:
        self.tier_size = tier_size
        self.difficulty = difficulty
        super().__init__(f"Invalid challenge tier: {tier_size} ({difficulty})")


class LimitExceeded(ChallengeError):
    def __init__(self, current: int, max_allowed: int) -> None:
        self.current = current
        self.max_allowed = max_allowed
        super().__init__(
            f"Maximum {max_allowed} active challenges allowed. You currently have {current}."
        )


class NotEligible(ChallengeError):
    def __init__(self, entity_id: int, reason: str) -> None:
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"{entity_id} not eligible: {reason}")


class NotFound(ChallengeError):
    def __init__(self, entity: str, entity_id: int) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvalidTransition(ChallengeError):
    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid transition: {current} -> {target}")


class SettlementIncomplete(ChallengeError):
    """One or more per-challenge settlement transactions failed.

    The remaining challenges linked to the wager were committed; ``outcomes``
    holds their results. Retrying ``settle`` for the same wager only touches
    the failed rows.
    """

    def __init__(self, bet_id: int, failed_challenge_ids: list[int], outcomes: list[Any]) -> None:
        self.bet_id = bet_id
        self.failed_challenge_ids = failed_challenge_ids
        self.outcomes = outcomes
        super().__init__(
            f"Settlement of bet {bet_id} failed for challenges {failed_challenge_ids}"
        )
