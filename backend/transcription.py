"""TranscriptionCoordinator — feeds audio to the STT provider and reconciles its results.

Provider results carry an utterance key. Interim revisions replace each other
in place; the final revision replaces the interim one and is never touched
again. Keys are namespaced by connection generation and source, and the
generation moves forward after every reconnect so keys reused by a fresh
provider connection cannot collide with earlier ones.

Non-speech tags that providers emit for background sound ("[Music]",
"*sigh*") are stripped before text reaches the store.
"""

import asyncio
import contextlib
import logging
import re
import uuid
from collections import OrderedDict
from dataclasses import replace
from typing import Optional

from domain.errors import ErrorKind, Outcome, ProviderDisconnected
from domain.models import AudioChunk, STTResult, TranscriptSegment
from events import EventBus, EventKind
from context_store import ContextStore
from ports.clock import ClockPort
from ports.stt import STATUS_CONNECTED, STATUS_DISCONNECTED, STTListener, STTPort

logger = logging.getLogger(__name__)

STATUS_CONNECTION_LOST = "connection-lost"
STATUS_RECONNECT_FAILED = "reconnect-failed"
STATUS_ERROR = "error"

DEFAULT_FINALIZED_KEY_LIMIT = 2048

NON_SPEECH_KEYWORDS = (
    "music", "sigh", "singing", "sings", "laughing", "laugh",
    "applause", "inaudible", "blank_audio", "clicking", "noise",
    "clapping", "coughing", "silence", "background", "static",
)
TAG_ONLY_RE = re.compile(r"^\s*[\[*]([^\]*]+)[\]*]\s*$")
INLINE_TAG_RE = re.compile(r"\[[\w\s]+\]|\*[\w\s]+\*|♪")


def clean_transcript_text(text: str) -> Optional[str]:
    """Strip non-speech tags. Returns None when no spoken text is left."""
    if not text:
        return None
    normalized = text.strip().lower()
    match = TAG_ONLY_RE.match(normalized)
    if match and any(keyword in match.group(1) for keyword in NON_SPEECH_KEYWORDS):
        return None
    if normalized in NON_SPEECH_KEYWORDS:
        return None
    cleaned = " ".join(INLINE_TAG_RE.sub("", text).split())
    if len(cleaned) < 2:
        return None
    return cleaned


class TranscriptionCoordinator(STTListener):
    def __init__(
        self,
        provider: STTPort,
        store: ContextStore,
        clock: ClockPort,
        bus: Optional[EventBus] = None,
        reconnect_attempts: int = 3,
        reconnect_delay_ms: int = 1000,
        filter_non_speech: bool = True,
        finalized_key_limit: int = DEFAULT_FINALIZED_KEY_LIMIT,
    ):
        self._provider = provider
        self._store = store
        self._clock = clock
        self._bus = bus
        self._reconnect_attempts = reconnect_attempts
        self._reconnect_delay_ms = reconnect_delay_ms
        self._generation = 0
        self._connected = False
        self._lost = False
        self._running = False
        self._filter_non_speech = filter_non_speech
        self._finalized_key_limit = finalized_key_limit
        self._finalized: "OrderedDict[str, None]" = OrderedDict()
        self._reconnect_task: Optional[asyncio.Task] = None
        self._stats = {
            "submitted": 0,
            "dropped_disconnected": 0,
            "submit_errors": 0,
            "results": 0,
            "out_of_order": 0,
            "filtered": 0,
            "provider_errors": 0,
        }
        provider.attach(self)

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> Outcome:
        self._running = True
        try:
            await self._provider.connect()
        except Exception as e:
            logger.warning(f"STT provider failed to connect: {e}")
            self._link_lost(str(e))
            return Outcome.from_error(ProviderDisconnected(str(e) or "connect failed"))
        self._link_up()
        return Outcome.success(self._generation)

    async def stop(self) -> int:
        """Stop ingestion, promote pending interim segments to final and disconnect.

        Returns the number of interim segments flushed.
        """
        await self._cancel_reconnect()
        if self._connected:
            try:
                await self._provider.finalize()
            except Exception as e:
                logger.warning(f"STT finalize failed, flushing locally: {e}")
        flushed = self.flush_interim()
        self._running = False
        try:
            await self._provider.disconnect()
        except Exception as e:
            logger.warning(f"STT disconnect failed: {e}")
        self._connected = False
        self._provider.attach(None)
        return flushed

    def flush_interim(self) -> int:
        now = self._clock.now_ms()
        flushed = 0
        for segment in self._store.interim_segments():
            final = replace(segment, is_final=True, end_timestamp=now)
            if self._store.add_segment(final) is not None:
                self._mark_finalized(segment.utterance_key)
                flushed += 1
        if flushed:
            logger.info(f"Flushed {flushed} interim segments to final")
        return flushed

    # -- ingestion ----------------------------------------------------------

    def ingest(self, chunk: AudioChunk) -> None:
        if not self._connected:
            self._stats["dropped_disconnected"] += 1
            return
        try:
            self._provider.submit(chunk)
        except Exception as e:
            self._stats["submit_errors"] += 1
            logger.warning(f"STT submit failed for {chunk.source.value} chunk {chunk.sequence}: {e}")
            self._publish_status(STATUS_ERROR, str(e))
            return
        self._stats["submitted"] += 1

    # -- provider events ----------------------------------------------------

    def on_result(self, result: STTResult) -> None:
        if not self._running:
            logger.debug(f"Dropping STT result after stop: {result.utterance_key}")
            return
        self._stats["results"] += 1
        key = self.namespaced_key(result)
        if key in self._finalized:
            self._out_of_order(key)
            return

        existing = self._store.get(key)
        text = clean_transcript_text(result.text) if self._filter_non_speech else result.text
        if text is None:
            self._stats["filtered"] += 1
            logger.debug(f"Filtered non-speech result for {key}: {result.text!r}")
            if not result.is_final:
                return
            if existing is None:
                self._mark_finalized(key)
                return
            # The utterance ended on noise; its last spoken revision becomes final.
            text = existing.text

        segment = TranscriptSegment(
            id=existing.id if existing else uuid.uuid4().hex[:12],
            utterance_key=key,
            text=text,
            is_final=result.is_final,
            start_timestamp=existing.start_timestamp if existing else result.timestamp,
            end_timestamp=result.timestamp if result.is_final else None,
            source=result.source,
            confidence=result.confidence,
        )
        if self._store.add_segment(segment) is None:
            self._out_of_order(key)
            return
        if result.is_final:
            self._mark_finalized(key)

    def on_status(self, status: str, detail: Optional[str] = None) -> None:
        if status == STATUS_CONNECTED:
            self._link_up()
        elif status == STATUS_DISCONNECTED:
            self._link_lost(detail)
        else:
            logger.debug(f"Ignoring unknown STT status {status!r}")

    def on_error(self, error: Exception) -> None:
        self._stats["provider_errors"] += 1
        logger.warning(f"STT provider error: {error}")
        self._publish_status(STATUS_ERROR, str(error))

    def namespaced_key(self, result: STTResult) -> str:
        return f"{self._generation}:{result.source.value}:{result.utterance_key}"

    def _out_of_order(self, key: str) -> None:
        self._stats["out_of_order"] += 1
        logger.warning(f"{ErrorKind.OUT_OF_ORDER_RESULT.value}: result for final utterance {key} dropped")

    def _mark_finalized(self, key: str) -> None:
        self._finalized[key] = None
        while len(self._finalized) > self._finalized_key_limit:
            self._finalized.popitem(last=False)

    # -- link state ---------------------------------------------------------

    def _link_up(self) -> None:
        if self._connected:
            return
        if self._lost:
            self._generation += 1
            self._lost = False
            # Keys of earlier generations can no longer be produced.
            self._finalized.clear()
        self._connected = True
        logger.info(f"STT connected (generation {self._generation})")
        self._publish_status(STATUS_CONNECTED)

    def _link_lost(self, detail: Optional[str] = None) -> None:
        was_connected = self._connected
        self._connected = False
        if not self._running or (self._lost and not was_connected):
            return
        self._lost = True
        if was_connected:
            # Utterances of the old connection can never be completed.
            self.flush_interim()
        logger.warning(f"STT connection lost: {detail or 'no detail'}")
        self._publish_status(STATUS_CONNECTION_LOST, detail)
        if self._running:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, STT reconnect left to the caller")
            return
        self._reconnect_task = loop.create_task(self.reconnect())

    async def reconnect(self) -> bool:
        for attempt in range(1, self._reconnect_attempts + 1):
            if not self._running:
                return False
            if self._connected:
                return True
            try:
                await self._provider.connect()
            except Exception as e:
                logger.warning(f"STT reconnect attempt {attempt}/{self._reconnect_attempts} failed: {e}")
                if attempt < self._reconnect_attempts:
                    await asyncio.sleep(self._reconnect_delay_ms / 1000)
                continue
            self._link_up()
            return True
        self._publish_status(STATUS_RECONNECT_FAILED)
        return False

    async def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @property
    def reconnect_task(self) -> Optional[asyncio.Task]:
        return self._reconnect_task

    # -- status -------------------------------------------------------------

    def _publish_status(self, status: str, detail: Optional[str] = None) -> None:
        if self._bus is not None:
            self._bus.publish(
                EventKind.STATUS,
                {"component": "stt", "status": status, "detail": detail},
            )

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def generation(self) -> int:
        return self._generation

    def state(self) -> dict:
        return {
            "connected": self._connected,
            "generation": self._generation,
            "running": self._running,
            "finalized_keys": len(self._finalized),
            **self._stats,
        }
