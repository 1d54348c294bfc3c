"""Process-wide execution budget shared by every long-running loop."""

import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class ExecutionDeadline:
    """Tracks elapsed run time against a maximum duration minus a save buffer.

    Every loop in the crawl calls `should_stop()` at its head. Once the remaining
    time drops to or below the buffer the deadline trips, logs once, and keeps
    returning True so callers can checkpoint and return.
    """

    def __init__(
        self,
        max_duration: float,
        buffer: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_duration = max_duration
        self.buffer = buffer
        self._clock = clock
        self._start: float | None = None
        self.timed_out = False

    def start(self) -> None:
        self._start = self._clock()
        self.timed_out = False
        logger.info("Execution timeout set to %.0f minutes", self.max_duration / 60)

    @property
    def elapsed(self) -> float:
        if self._start is None:
            return 0.0
        return self._clock() - self._start

    def remaining(self) -> float:
        """Seconds of usable work time left, excluding the save buffer."""
        if self._start is None:
            return self.max_duration
        return max(0.0, self.max_duration - self.elapsed - self.buffer)

    def should_stop(self) -> bool:
        if self._start is None:
            return False
        if self.max_duration - self.elapsed > self.buffer:
            return False
        if not self.timed_out:
            self.timed_out = True
            logger.warning(
                "Execution timeout approaching (%dmin elapsed). Stopping to save results...",
                int(self.elapsed // 60),
            )
        return True

    def __call__(self) -> bool:
        return self.should_stop()
