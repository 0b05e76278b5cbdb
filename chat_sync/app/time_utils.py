import time
from typing import Callable


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


class MonotonicClock:
    """
    Hands out non-decreasing epoch-millisecond timestamps for one writer.

    The wall clock can step backwards (NTP adjustments, VM migrations); a writer
    must never stamp a message earlier than one it already stamped.
    """

    def __init__(self, source: Callable[[], int] = now_ms):
        self._source = source
        self._last = 0

    def now(self) -> int:
        value = max(int(self._source()), self._last)
        self._last = value
        return value
