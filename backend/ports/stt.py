"""STTPort — abstract interface for streaming speech-to-text providers."""

from abc import ABC, abstractmethod
from typing import Optional

from domain.models import AudioChunk, STTResult

STATUS_CONNECTED = "connected"
STATUS_DISCONNECTED = "disconnected"


class STTListener(ABC):
    @abstractmethod
    def on_result(self, result: STTResult) -> None:
        """Receive an interim or final result."""

    @abstractmethod
    def on_status(self, status: str, detail: Optional[str] = None) -> None:
        """Receive a link status change: 'connected' or 'disconnected'."""

    @abstractmethod
    def on_error(self, error: Exception) -> None:
        """Receive a provider error that did not drop the link."""


class STTPort(ABC):
    @abstractmethod
    def attach(self, listener: Optional[STTListener]) -> None:
        """Route provider events to listener, replacing any previous one."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the streaming link. Raises on failure."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the streaming link."""

    @abstractmethod
    def submit(self, chunk: AudioChunk) -> None:
        """Send one audio chunk. Results arrive later through the listener."""

    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the link is open."""

    async def finalize(self) -> None:
        """Ask the provider to flush pending interim results as finals."""

    def set_api_key(self, key: str) -> None:
        """Replace the provider credential used by the next connect()."""
