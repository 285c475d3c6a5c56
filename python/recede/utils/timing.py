"""
Wall-clock timing against an injectable clock.
"""

import time
from typing import Callable, Optional

Clock = Callable[[], float]


class TimeProfiler:
    """
    Stopwatch measuring elapsed seconds since the last ``start``.

    Args:
        clock: Monotonic time source in seconds (``time.perf_counter``
            by default). Tests inject a fake clock here.

    Example:
        >>> profiler = TimeProfiler()
        >>> profiler.start()
        >>> ...
        >>> profiler.elapsed()
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self.clock = clock if clock is not None else time.perf_counter
        self._start: Optional[float] = None

    def start(self) -> float:
        """Start (or restart) the stopwatch and return the start time."""
        self._start = self.clock()
        return self._start

    @property
    def started(self) -> bool:
        return self._start is not None

    @property
    def start_time(self) -> Optional[float]:
        return self._start

    def elapsed(self) -> float:
        """Seconds since ``start``; zero if never started."""
        if self._start is None:
            return 0.0
        return self.clock() - self._start

    def lap(self) -> float:
        """Return the elapsed time and restart."""
        now = self.clock()
        elapsed = 0.0 if self._start is None else now - self._start
        self._start = now
        return elapsed

    def reset(self) -> None:
        self._start = None
