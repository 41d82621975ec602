"""Per-sweep action budget.

Every mutating sweep action (mark or unassign) must reserve an attempt
immediately before it touches GitHub. Attempts are never released: a failed
API call still consumes its slot, so one sweep can never retry its way past
the ceiling.
"""

from __future__ import annotations

MAX_ACTIONS_PER_RUN = 30


class RunBudget:
    """Countdown of mutating attempts left in one sweep."""

    def __init__(self, limit: int = MAX_ACTIONS_PER_RUN):
        if limit < 0:
            raise ValueError(f"budget limit must not be negative, got {limit}")
        self.limit = limit
        self._remaining = limit

    def reserve(self) -> bool:
        """Take one attempt if any are left.

        Check and decrement happen with no await in between, so callers in
        the same event loop cannot interleave.
        """
        if self._remaining <= 0:
            return False
        self._remaining -= 1
        return True

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def used(self) -> int:
        return self.limit - self._remaining

    @property
    def exhausted(self) -> bool:
        return self._remaining == 0

    def __repr__(self) -> str:
        return f"RunBudget(remaining={self._remaining}, limit={self.limit})"
