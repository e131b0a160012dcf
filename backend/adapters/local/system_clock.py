"""SystemClock — wall-clock time source."""

import time

from ports.clock import ClockPort


class SystemClock(ClockPort):
    def now_ms(self) -> float:
        return time.time() * 1000
