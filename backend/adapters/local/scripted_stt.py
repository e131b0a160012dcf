"""ScriptedSTTAdapter — STT provider whose results are driven by the caller.

Records every submitted chunk and exposes emit_* helpers that deliver
results, status changes and errors exactly as a streaming provider would.
"""

import logging
from typing import Optional

from domain.models import AudioChunk, AudioSource, STTResult
from ports.clock import ClockPort
from ports.stt import STATUS_CONNECTED, STATUS_DISCONNECTED, STTListener, STTPort
from adapters.local.system_clock import SystemClock

logger = logging.getLogger(__name__)


class ScriptedSTTAdapter(STTPort):
    def __init__(self, fail_connects: int = 0, clock: Optional[ClockPort] = None):
        self._listener: Optional[STTListener] = None
        self._clock = clock or SystemClock()
        self._connected = False
        self._fail_connects = fail_connects
        self.api_key: Optional[str] = None
        self.submitted: list[AudioChunk] = []
        self.connect_calls = 0
        self.finalize_calls = 0

    def attach(self, listener: Optional[STTListener]) -> None:
        self._listener = listener

    async def connect(self) -> None:
        self.connect_calls += 1
        if self._fail_connects > 0:
            self._fail_connects -= 1
            raise ConnectionError("scripted connect failure")
        self._connected = True
        self.emit_status(STATUS_CONNECTED)

    async def disconnect(self) -> None:
        was_connected = self._connected
        self._connected = False
        if was_connected:
            self.emit_status(STATUS_DISCONNECTED, "closed")

    async def finalize(self) -> None:
        self.finalize_calls += 1

    def submit(self, chunk: AudioChunk) -> None:
        if not self._connected:
            raise ConnectionError("not connected")
        self.submitted.append(chunk)

    def is_connected(self) -> bool:
        return self._connected

    def set_api_key(self, key: str) -> None:
        self.api_key = key
        logger.info("STT API key updated")

    # -- scripting ----------------------------------------------------------

    def emit_result(
        self,
        utterance_key: str,
        text: str,
        is_final: bool = False,
        timestamp: Optional[float] = None,
        source: AudioSource = AudioSource.MIC,
        confidence: Optional[float] = None,
    ) -> None:
        if self._listener is None:
            return
        self._listener.on_result(STTResult(
            utterance_key=utterance_key,
            text=text,
            is_final=is_final,
            timestamp=timestamp if timestamp is not None else self._clock.now_ms(),
            source=source,
            confidence=confidence,
        ))

    def emit_status(self, status: str, detail: Optional[str] = None) -> None:
        if self._listener is not None:
            self._listener.on_status(status, detail)

    def emit_error(self, error: Exception) -> None:
        if self._listener is not None:
            self._listener.on_error(error)

    def drop_connection(self, detail: str = "network error") -> None:
        self._connected = False
        self.emit_status(STATUS_DISCONNECTED, detail)
