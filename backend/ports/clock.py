"""ClockPort — abstract time source, injectable so timing policy is testable."""

from abc import ABC, abstractmethod


class ClockPort(ABC):
    @abstractmethod
    def now_ms(self) -> float:
        """Current wall-clock time in milliseconds."""
