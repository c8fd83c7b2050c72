from __future__ import annotations


class StreakGate:
    """Counts consecutive correct probes; any miss starts the count over."""

    def __init__(self, required_streak: int) -> None:
        if required_streak < 1:
            raise ValueError("required_streak must be >= 1")
        self._required = int(required_streak)
        self._consecutive = 0

    @property
    def required_streak(self) -> int:
        return self._required

    @property
    def consecutive_correct(self) -> int:
        return self._consecutive

    def on_outcome(self, hit: bool) -> bool:
        """Record one probe outcome. Returns True once the gate is satisfied."""

        if hit:
            self._consecutive += 1
        else:
            self._consecutive = 0
        return self.is_satisfied()

    def is_satisfied(self) -> bool:
        return self._consecutive >= self._required

    def reset(self) -> None:
        self._consecutive = 0
