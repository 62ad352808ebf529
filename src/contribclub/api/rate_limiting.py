from time import time

# Fixed window during which no upstream call is attempted after a 403/429
COOLDOWN_SECONDS = 60 * 15


class RateLimitGuard:
    """Process-wide cooldown window shared by every aggregation pass.

    The window only ever moves forward: tripping it or observing a persisted
    ``until`` from another process never shortens an active cooldown.
    """

    def __init__(self, *, cooldown: float = COOLDOWN_SECONDS, until: float = 0.0):
        self.cooldown = cooldown
        self._until = until

    @property
    def until(self) -> float:
        return self._until

    def is_cooling_down(self, now: float | None = None) -> bool:
        now = time() if now is None else now
        return now < self._until

    def trip(self, now: float | None = None) -> float:
        now = time() if now is None else now
        self._until = max(self._until, now + self.cooldown)
        return self._until

    def observe(self, until: float | None) -> None:
        """Fold in a cooldown deadline read from the persisted store."""
        if until:
            self._until = max(self._until, float(until))
