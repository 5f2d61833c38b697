import time
from collections.abc import Callable


class DeafWindow:
    def __init__(
        self,
        duration_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._duration_seconds = duration_seconds
        self._clock = clock
        self._deaf_until: float | None = None

    @property
    def deaf_until(self) -> float | None:
        return self._deaf_until

    def arm(self) -> None:
        self._deaf_until = self._clock() + self._duration_seconds

    def clear(self) -> None:
        self._deaf_until = None

    def is_deaf(self) -> bool:
        return self._deaf_until is not None and self._clock() < self._deaf_until

    def remaining_seconds(self) -> float:
        if self._deaf_until is None:
            return 0.0
        return max(0.0, self._deaf_until - self._clock())
