"""Level completion state as an ordered bitmask.

Bit ``n - 1`` is set when level ``n`` is complete. Levels complete in strict
order, so a valid mask is always of the form ``0b0..01..1``.
"""

from __future__ import annotations

from streakbet.challenges.errors import InvalidTransition

MAX_LEVEL = 4


class LevelProgress:
    """Immutable view of which of the four levels a challenge has completed."""

    __slots__ = ("_mask",)

    def __init__(self, mask: int = 0) -> None:
        if mask < 0 or mask >= 1 << MAX_LEVEL or mask & (mask + 1):
            raise ValueError(f"Invalid level mask: {mask:#06b}")
        self._mask = mask

    @classmethod
    def from_flags(cls, flags: list[bool] | tuple[bool, ...]) -> LevelProgress:
        """Build from per-level booleans, level 1 first."""
        mask = 0
        for i, done in enumerate(flags):
            if done:
                mask |= 1 << i
        return cls(mask)

    @property
    def mask(self) -> int:
        return self._mask

    @property
    def flags(self) -> tuple[bool, ...]:
        return tuple(self.completed(level) for level in range(1, MAX_LEVEL + 1))

    @property
    def highest_completed(self) -> int:
        return self._mask.bit_length()

    @property
    def next_level(self) -> int | None:
        """The next level that can be completed, or None when all are done."""
        if self.is_complete:
            return None
        return self.highest_completed + 1

    @property
    def current_level(self) -> int:
        return min(self.highest_completed + 1, MAX_LEVEL)

    @property
    def is_complete(self) -> bool:
        return self.highest_completed == MAX_LEVEL

    def completed(self, level: int) -> bool:
        if level < 1 or level > MAX_LEVEL:
            return False
        return bool(self._mask & (1 << (level - 1)))

    def complete(self, level: int) -> LevelProgress:
        """Return a new progress with ``level`` completed.

        Raises InvalidTransition unless ``level`` is the next level in order.
        """
        if level != self.next_level:
            raise InvalidTransition(f"level {self.highest_completed}", f"level {level}")
        return LevelProgress(self._mask | (1 << (level - 1)))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LevelProgress):
            return NotImplemented
        return self._mask == other._mask

    def __hash__(self) -> int:
        return hash(self._mask)

    def __repr__(self) -> str:
        return f"LevelProgress(completed={self.highest_completed}, current={self.current_level})"
