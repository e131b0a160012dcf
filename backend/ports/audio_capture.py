"""AudioCapturePort — abstract interface for microphone and system audio capture."""

from abc import ABC, abstractmethod
from typing import Optional

from domain.models import AudioChunk, AudioSource


class AudioChunkListener(ABC):
    @abstractmethod
    def on_chunk(self, chunk: AudioChunk) -> None:
        """Receive one captured chunk."""

    @abstractmethod
    def on_capture_error(self, source: AudioSource, error: Exception) -> None:
        """A running source failed. PermissionError means it will not recover."""


class AudioCapturePort(ABC):
    @abstractmethod
    def attach(self, listener: Optional[AudioChunkListener]) -> None:
        """Route chunk events to listener, replacing any previous one."""

    @abstractmethod
    def start_mic(self) -> bool:
        """Start microphone capture. Raises PermissionError if access is denied."""

    @abstractmethod
    def stop_mic(self) -> bool:
        """Stop microphone capture."""

    @abstractmethod
    def start_system(self) -> bool:
        """Start system (loopback) capture. Raises PermissionError if access is denied."""

    @abstractmethod
    def stop_system(self) -> bool:
        """Stop system capture."""

    def start_all(self) -> dict[AudioSource, bool]:
        return {AudioSource.MIC: self.start_mic(), AudioSource.SYSTEM: self.start_system()}

    def stop_all(self) -> dict[AudioSource, bool]:
        return {AudioSource.MIC: self.stop_mic(), AudioSource.SYSTEM: self.stop_system()}
