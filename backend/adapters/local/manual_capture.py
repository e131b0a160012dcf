"""ManualCaptureAdapter — capture provider fed by the caller instead of a device.

Used by the local engine and tests: the command API (or a test) pushes PCM16
payloads, and the adapter stamps them into AudioChunks with per-source
sequence numbers.
"""

import logging
from typing import Iterable, Optional

from domain.models import AudioChunk, AudioSource
from ports.audio_capture import AudioCapturePort, AudioChunkListener
from ports.clock import ClockPort
from adapters.local.system_clock import SystemClock

logger = logging.getLogger(__name__)


class ManualCaptureAdapter(AudioCapturePort):
    def __init__(self, denied: Iterable[AudioSource] = (), clock: Optional[ClockPort] = None):
        self._listener: Optional[AudioChunkListener] = None
        self._clock = clock or SystemClock()
        self._denied = set(denied)
        self._running = {source: False for source in AudioSource}
        self._sequence = {source: 0 for source in AudioSource}

    def attach(self, listener: Optional[AudioChunkListener]) -> None:
        self._listener = listener

    def start_mic(self) -> bool:
        return self._start(AudioSource.MIC)

    def stop_mic(self) -> bool:
        return self._stop(AudioSource.MIC)

    def start_system(self) -> bool:
        return self._start(AudioSource.SYSTEM)

    def stop_system(self) -> bool:
        return self._stop(AudioSource.SYSTEM)

    def _start(self, source: AudioSource) -> bool:
        if source in self._denied:
            raise PermissionError(f"{source.value} capture not permitted")
        self._running[source] = True
        return True

    def _stop(self, source: AudioSource) -> bool:
        self._running[source] = False
        return True

    def is_running(self, source: AudioSource) -> bool:
        return self._running[source]

    def push(self, source: AudioSource, payload: bytes, timestamp: Optional[float] = None) -> AudioChunk:
        """Deliver one payload to the attached listener as the next chunk of source."""
        self._sequence[source] += 1
        chunk = AudioChunk(
            source=source,
            sequence=self._sequence[source],
            payload=payload,
            capture_timestamp=timestamp if timestamp is not None else self._clock.now_ms(),
        )
        if self._listener is not None:
            self._listener.on_chunk(chunk)
        return chunk

    def revoke(self, source: AudioSource) -> None:
        """Simulate the OS withdrawing capture permission for a running source."""
        self._running[source] = False
        self._denied.add(source)
        logger.warning(f"{source.value} capture permission revoked")
        if self._listener is not None:
            self._listener.on_capture_error(source, PermissionError(f"{source.value} capture revoked"))
