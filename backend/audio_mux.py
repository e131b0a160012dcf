"""AudioStreamMux — merges mic and system chunk streams into one ingestion stream.

Chunks are forwarded unmodified in arrival order per source. Nothing is
buffered: a chunk for a stopped source, or any chunk while paused, is counted
and dropped.
"""

import logging
import math
from dataclasses import dataclass, asdict
from typing import Callable, Optional

import numpy as np

from domain.errors import CapturePermissionError, Outcome, ProviderDisconnected
from domain.models import AudioChunk, AudioLevel, AudioSource
from events import EventBus, EventKind
from ports.audio_capture import AudioCapturePort, AudioChunkListener

logger = logging.getLogger(__name__)

# dBFS floor for the level meter
SILENCE_DB = -60.0


@dataclass
class SourceStats:
    active: bool = False
    forwarded: int = 0
    dropped_stopped: int = 0
    dropped_paused: int = 0
    last_sequence: Optional[int] = None
    sequence_regressions: int = 0


def _to_db(value: float) -> float:
    if value <= 0:
        return SILENCE_DB
    return max(SILENCE_DB, min(0.0, 20 * math.log10(value)))


def compute_level(chunk: AudioChunk) -> AudioLevel:
    """RMS and peak of a PCM16 little-endian payload, normalised to [0, 1]."""
    usable = len(chunk.payload) - (len(chunk.payload) % 2)
    samples = np.frombuffer(chunk.payload[:usable], dtype="<i2").astype(np.float32) / 32768.0
    if samples.size == 0:
        return AudioLevel(chunk.source, 0.0, 0.0, SILENCE_DB, SILENCE_DB)
    rms = float(np.sqrt(np.mean(np.square(samples))))
    peak = float(np.max(np.abs(samples)))
    return AudioLevel(chunk.source, rms, peak, _to_db(rms), _to_db(peak))


class AudioStreamMux(AudioChunkListener):
    def __init__(
        self,
        capture: AudioCapturePort,
        sink: Callable[[AudioChunk], None],
        bus: Optional[EventBus] = None,
        on_source_lost: Optional[Callable[[AudioSource, Exception], None]] = None,
    ):
        self._capture = capture
        self._sink = sink
        self._bus = bus
        self._on_source_lost = on_source_lost
        self._paused = False
        self._stats = {source: SourceStats() for source in AudioSource}
        capture.attach(self)

    # -- per-source control -------------------------------------------------

    def start_mic(self) -> Outcome:
        return self._start(AudioSource.MIC, self._capture.start_mic)

    def stop_mic(self) -> Outcome:
        return self._stop(AudioSource.MIC, self._capture.stop_mic)

    def start_system(self) -> Outcome:
        return self._start(AudioSource.SYSTEM, self._capture.start_system)

    def stop_system(self) -> Outcome:
        return self._stop(AudioSource.SYSTEM, self._capture.stop_system)

    def start_all(self) -> dict[AudioSource, Outcome]:
        """Start both sources. One failing does not prevent the other."""
        return {AudioSource.MIC: self.start_mic(), AudioSource.SYSTEM: self.start_system()}

    def stop_all(self) -> dict[AudioSource, Outcome]:
        return {AudioSource.MIC: self.stop_mic(), AudioSource.SYSTEM: self.stop_system()}

    def start(self, source: AudioSource) -> Outcome:
        return self.start_mic() if source is AudioSource.MIC else self.start_system()

    def stop(self, source: AudioSource) -> Outcome:
        return self.stop_mic() if source is AudioSource.MIC else self.stop_system()

    def _start(self, source: AudioSource, start_fn: Callable[[], bool]) -> Outcome:
        stats = self._stats[source]
        if stats.active:
            return Outcome.success(source.value)
        try:
            started = start_fn()
        except PermissionError as e:
            logger.warning(f"{source.value} capture permission denied: {e}")
            return Outcome.from_error(CapturePermissionError(str(e) or "permission denied"), value=source.value)
        except Exception as e:
            logger.warning(f"{source.value} capture failed to start: {e}")
            return Outcome.from_error(ProviderDisconnected(str(e) or "capture failed"), value=source.value)
        if not started:
            logger.warning(f"{source.value} capture did not start")
            return Outcome.from_error(ProviderDisconnected(f"{source.value} capture did not start"), value=source.value)
        stats.active = True
        stats.last_sequence = None
        logger.info(f"{source.value} capture started")
        return Outcome.success(source.value)

    def _stop(self, source: AudioSource, stop_fn: Callable[[], bool]) -> Outcome:
        stats = self._stats[source]
        # Mark inactive first so chunks racing the provider's stop are dropped.
        was_active = stats.active
        stats.active = False
        if not was_active:
            return Outcome.success(source.value)
        try:
            stop_fn()
        except Exception as e:
            logger.warning(f"{source.value} capture failed to stop cleanly: {e}")
            return Outcome.from_error(ProviderDisconnected(str(e) or "capture failed to stop"), value=source.value)
        logger.info(f"{source.value} capture stopped")
        return Outcome.success(source.value)

    # -- pause --------------------------------------------------------------

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    @property
    def paused(self) -> bool:
        return self._paused

    def is_active(self, source: AudioSource) -> bool:
        return self._stats[source].active

    def any_active(self) -> bool:
        return any(stats.active for stats in self._stats.values())

    # -- ingestion ----------------------------------------------------------

    def submit(self, chunk: AudioChunk) -> bool:
        """Accept one chunk. Returns True if it was forwarded downstream."""
        stats = self._stats[chunk.source]
        if not stats.active:
            stats.dropped_stopped += 1
            return False
        if self._paused:
            stats.dropped_paused += 1
            return False

        if stats.last_sequence is not None and chunk.sequence <= stats.last_sequence:
            stats.sequence_regressions += 1
            logger.debug(
                f"{chunk.source.value} chunk sequence {chunk.sequence} after {stats.last_sequence}"
            )
        stats.last_sequence = chunk.sequence
        stats.forwarded += 1

        self._sink(chunk)
        if self._bus is not None:
            self._bus.publish(EventKind.AUDIO_LEVEL, compute_level(chunk))
        return True

    def on_chunk(self, chunk: AudioChunk) -> None:
        self.submit(chunk)

    def on_capture_error(self, source: AudioSource, error: Exception) -> None:
        logger.warning(f"{source.value} capture error: {error}")
        if isinstance(error, PermissionError):
            self._stats[source].active = False
            if self._on_source_lost is not None:
                self._on_source_lost(source, error)

    def detach(self) -> None:
        self._capture.attach(None)

    def stats(self) -> dict:
        return {source.value: asdict(stats) for source, stats in self._stats.items()}
