"""SessionController — the single owner of session state and its components.

Accepts all collaborator ports via dependency injection and builds a fresh
AudioStreamMux / TranscriptionCoordinator / ContextStore / AutoSuggestEngine /
AIActionOrchestrator set for every session. State-changing commands are
serialized by one asyncio.Lock. Every public command returns an Outcome.
"""

import asyncio
import contextlib
import logging
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Optional

from ai_orchestrator import DEFAULT_TIMEOUT_MS, AIActionOrchestrator
from audio_mux import AudioStreamMux
from auto_suggest import AutoSuggestEngine
from context_store import (
    DEFAULT_KEY_POINT_INTERVAL,
    DEFAULT_MAX_CONTEXT_DURATION_MS,
    DEFAULT_MAX_SEGMENTS,
    ContextStore,
)
from domain.errors import (
    AlreadyActiveError,
    CapturePermissionError,
    CoreError,
    ErrorKind,
    InvalidArgument,
    Outcome,
)
from domain.models import (
    AudioChunk,
    AudioSource,
    AutoSuggestConfig,
    ContextSnapshot,
    RequestStatus,
    Session,
    SessionMeta,
    SessionState,
    TranscriptSegment,
)
from events import EventBus, EventKind
from ports.ai_backend import AIBackendPort
from ports.audio_capture import AudioCapturePort
from ports.clock import ClockPort
from ports.stt import STTPort
from transcription import TranscriptionCoordinator
from adapters.local.system_clock import SystemClock

logger = logging.getLogger(__name__)

API_KEY_PROVIDERS = ("stt", "ai")


@dataclass
class SessionSettings:
    """Tunables handed to the per-session components."""
    ai_timeout_ms: int = DEFAULT_TIMEOUT_MS
    timeout_sweep_interval_ms: int = 1000
    max_segments: int = DEFAULT_MAX_SEGMENTS
    max_context_duration_ms: float = DEFAULT_MAX_CONTEXT_DURATION_MS
    key_point_interval: int = DEFAULT_KEY_POINT_INTERVAL
    stt_reconnect_attempts: int = 3
    stt_reconnect_delay_ms: int = 1000
    stt_filter_non_speech: bool = True
    auto_suggest: AutoSuggestConfig = field(default_factory=AutoSuggestConfig)


class SessionController:
    def __init__(
        self,
        capture: AudioCapturePort,
        stt: STTPort,
        ai_backend: AIBackendPort,
        clock: Optional[ClockPort] = None,
        bus: Optional[EventBus] = None,
        settings: Optional[SessionSettings] = None,
    ):
        self._capture = capture
        self._stt = stt
        self._ai_backend = ai_backend
        self._clock = clock or SystemClock()
        self.bus = bus or EventBus()
        self._settings = settings or SessionSettings()
        # Shared by every per-session engine so configuration survives restarts.
        self._auto_config = self._settings.auto_suggest
        self._state = SessionState.IDLE
        self._session: Optional[Session] = None
        self._lock = asyncio.Lock()
        self._pending_toggle: Optional[SessionState] = None
        self._watchdog: Optional[asyncio.Task] = None
        self._source_lost_stop: Optional[asyncio.Task] = None
        self._build_components()
        self._auto.suspend()

    # -- component lifecycle ------------------------------------------------

    def _build_components(self) -> None:
        previous_auto = getattr(self, "_auto", None)
        if previous_auto is not None:
            previous_auto.detach()

        self._store = ContextStore(
            self._clock,
            bus=self.bus,
            max_segments=self._settings.max_segments,
            key_point_interval=self._settings.key_point_interval,
            max_context_duration_ms=self._settings.max_context_duration_ms,
        )
        self._coordinator = TranscriptionCoordinator(
            self._stt,
            self._store,
            self._clock,
            bus=self.bus,
            reconnect_attempts=self._settings.stt_reconnect_attempts,
            reconnect_delay_ms=self._settings.stt_reconnect_delay_ms,
            filter_non_speech=self._settings.stt_filter_non_speech,
        )
        self._orchestrator = AIActionOrchestrator(
            self._ai_backend, self._clock, bus=self.bus, timeout_ms=self._settings.ai_timeout_ms,
        )
        self._mux = AudioStreamMux(
            self._capture, self._coordinator.ingest, bus=self.bus, on_source_lost=self._on_source_lost,
        )
        self._auto = AutoSuggestEngine(
            self._store, self._orchestrator.submit, self._clock, config=self._auto_config,
        )

    def _start_watchdog(self) -> None:
        interval = self._settings.timeout_sweep_interval_ms / 1000

        async def watch() -> None:
            while True:
                await asyncio.sleep(interval)
                self._orchestrator.sweep_timeouts()

        self._watchdog = asyncio.get_running_loop().create_task(watch())

    async def _stop_watchdog(self) -> None:
        task = self._watchdog
        self._watchdog = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    # -- lifecycle commands -------------------------------------------------

    async def start(self) -> Outcome:
        async with self._lock:
            if self._state in (SessionState.ACTIVE, SessionState.PAUSED):
                return Outcome.from_error(
                    AlreadyActiveError(f"session {self._session.id} is {self._state.value}"),
                    value=self._session.id,
                )

            self._build_components()
            session = Session(id=uuid.uuid4().hex[:12], state=SessionState.ACTIVE, started_at=self._clock.now_ms())
            self._session = session
            self._state = SessionState.ACTIVE
            self._store.start_session(session.id)

            stt = await self._coordinator.start()
            capture = self._mux.start_all()
            if all(outcome.error is ErrorKind.CAPTURE_PERMISSION for outcome in capture.values()):
                logger.warning(f"Session {session.id} aborted: no capture source permitted")
                await self._teardown()
                return Outcome.from_error(
                    CapturePermissionError("no capture source is permitted"), value=session.id,
                )

            self._auto.reset()
            self._auto.resume()
            self._start_watchdog()

        logger.info(f"Session {session.id} started")
        self.bus.publish(EventKind.SESSION_STARTED, {
            "session_id": session.id,
            "started_at": session.started_at,
            "stt_connected": stt.ok,
            "capture": {source.value: outcome.ok for source, outcome in capture.items()},
        })
        return Outcome.success(session.id)

    async def stop(self) -> Outcome:
        async with self._lock:
            if self._state not in (SessionState.ACTIVE, SessionState.PAUSED):
                return Outcome.failure(
                    ErrorKind.INVALID_STATE_TRANSITION,
                    detail=f"no session to stop ({self._state.value})",
                    value=self._state.value,
                )
            summary = await self._teardown()

        logger.info(f"Session {summary['session_id']} stopped")
        self.bus.publish(EventKind.SESSION_ENDED, summary)
        return Outcome.success(summary)

    async def _teardown(self) -> dict:
        """Stop ingestion, flush, cancel AI work and close the session, in that order."""
        self._auto.suspend()
        self._mux.stop_all()
        self._mux.resume()
        await self._stop_watchdog()
        flushed = await self._coordinator.stop()
        cancelled = self._orchestrator.cancel_all()
        self._store.end_session()

        self._session.ended_at = self._clock.now_ms()
        self._session.state = SessionState.STOPPED
        self._state = SessionState.STOPPED
        return {
            **self._store.summary(),
            "flushed_interim": flushed,
            "cancelled_requests": cancelled,
        }

    async def toggle_pause(self) -> Outcome:
        if self._state not in (SessionState.ACTIVE, SessionState.PAUSED):
            return Outcome.failure(
                ErrorKind.INVALID_STATE_TRANSITION,
                detail=f"cannot pause or resume from {self._state.value}",
                value=self._state.value,
            )
        target = SessionState.PAUSED if self._state is SessionState.ACTIVE else SessionState.ACTIVE
        if self._pending_toggle is target:
            return Outcome.success(target.value)

        self._pending_toggle = target
        try:
            async with self._lock:
                if self._state not in (SessionState.ACTIVE, SessionState.PAUSED):
                    return Outcome.failure(
                        ErrorKind.INVALID_STATE_TRANSITION,
                        detail=f"session ended before toggle ({self._state.value})",
                        value=self._state.value,
                    )
                if self._state is not target:
                    self._apply_pause(target is SessionState.PAUSED)
        finally:
            self._pending_toggle = None
        return Outcome.success(self._state.value)

    def _apply_pause(self, paused: bool) -> None:
        if paused:
            self._mux.pause()
            self._auto.suspend()
            self._state = SessionState.PAUSED
        else:
            self._mux.resume()
            self._auto.resume()
            self._state = SessionState.ACTIVE
        self._session.state = self._state
        logger.info(f"Session {self._session.id} {'paused' if paused else 'resumed'}")
        self.bus.publish(EventKind.STATUS, {
            "component": "session",
            "status": "paused" if paused else "resumed",
            "detail": self._session.id,
        })

    async def shutdown(self) -> None:
        if self._state in (SessionState.ACTIVE, SessionState.PAUSED):
            await self.stop()
        task = self._source_lost_stop
        if task is not None and not task.done():
            await task

    def _on_source_lost(self, source: AudioSource, error: Exception) -> None:
        if self._mux.any_active() or self._state not in (SessionState.ACTIVE, SessionState.PAUSED):
            return
        logger.warning(f"Last capture source ({source.value}) lost permission, ending session")
        self.bus.publish(EventKind.STATUS, {
            "component": "capture",
            "status": ErrorKind.CAPTURE_PERMISSION.value,
            "detail": str(error),
        })
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("No running event loop, session left for an explicit stop()")
            return
        self._source_lost_stop = loop.create_task(self.stop())

    # -- audio commands -----------------------------------------------------

    def start_source(self, source: Any) -> Outcome:
        try:
            return self._mux.start(AudioSource(source))
        except ValueError:
            return Outcome.from_error(InvalidArgument(f"Unknown audio source {source!r}"))

    def stop_source(self, source: Any) -> Outcome:
        try:
            return self._mux.stop(AudioSource(source))
        except ValueError:
            return Outcome.from_error(InvalidArgument(f"Unknown audio source {source!r}"))

    def submit_audio(
        self,
        source: Any,
        payload: bytes,
        sequence: int,
        timestamp: Optional[float] = None,
    ) -> Outcome:
        try:
            chunk = AudioChunk(
                source=AudioSource(source),
                sequence=sequence,
                payload=payload,
                capture_timestamp=timestamp if timestamp is not None else self._clock.now_ms(),
            )
        except ValueError:
            return Outcome.from_error(InvalidArgument(f"Unknown audio source {source!r}"))
        return Outcome.success(self._mux.submit(chunk))

    # -- AI commands --------------------------------------------------------

    def trigger_action(
        self,
        action_type: Any,
        metadata: Optional[dict] = None,
        mock_context: Optional[Iterable[str]] = None,
    ) -> Outcome:
        """Manual trigger. Bypasses the auto-suggest policy but not slot discipline."""
        try:
            if mock_context is not None:
                snapshot = self._mock_snapshot(mock_context)
            else:
                snapshot = self._store.get_snapshot(last_n=self._auto_config.options.get("context_segments"))
            request = self._orchestrator.submit(action_type, snapshot, {**(metadata or {}), "origin": "manual"})
        except CoreError as e:
            return Outcome.from_error(e)
        if request.status is RequestStatus.FAILED:
            return Outcome.failure(ErrorKind.REQUEST_FAILED, detail=request.error, value=request.request_id)
        return Outcome.success(request.request_id)

    def _mock_snapshot(self, texts: Iterable[str]) -> ContextSnapshot:
        now = self._clock.now_ms()
        segments = tuple(
            TranscriptSegment(
                id=uuid.uuid4().hex[:12],
                utterance_key=f"mock:{i}",
                text=text,
                is_final=True,
                start_timestamp=now,
                end_timestamp=now,
                source=AudioSource.MIC,
            )
            for i, text in enumerate(texts)
        )
        meta = SessionMeta(
            session_id=self._session.id if self._session else None,
            started_at=self._session.started_at if self._session else None,
            ended_at=self._session.ended_at if self._session else None,
            active=self._state in (SessionState.ACTIVE, SessionState.PAUSED),
        )
        return ContextSnapshot(segments=segments, key_points=(), session_meta=meta, taken_at=now)

    # -- context commands ---------------------------------------------------

    def get_snapshot(
        self,
        last_n: Optional[int] = None,
        since_ms: Optional[float] = None,
        until_ms: Optional[float] = None,
        final_only: bool = False,
    ) -> Outcome:
        if last_n is not None and last_n < 0:
            return Outcome.from_error(InvalidArgument(f"last_n must be >= 0, got {last_n}"))
        return Outcome.success(self._store.get_snapshot(
            last_n=last_n, since_ms=since_ms, until_ms=until_ms, final_only=final_only,
        ))

    def add_key_point(self, text: str, metadata: Optional[dict] = None) -> Outcome:
        if not text or not text.strip():
            return Outcome.from_error(InvalidArgument("key point text must not be empty"))
        return Outcome.success(self._store.add_key_point(text, metadata))

    def clear(self) -> Outcome:
        return Outcome.success(self._store.clear())

    def get_state(self) -> Outcome:
        return Outcome.success({
            "state": self._state.value,
            "session": asdict(self._session) if self._session else None,
            "audio": {"paused": self._mux.paused, "sources": self._mux.stats()},
            "stt": self._coordinator.state(),
            "context": self._store.summary(),
            "auto_suggest": self._auto.state(),
            "ai": self._orchestrator.state(),
            "watchdog_running": self._watchdog is not None and not self._watchdog.done(),
        })

    # -- settings commands --------------------------------------------------

    def set_auto_suggest(self, enabled: bool) -> Outcome:
        self._auto.set_enabled(enabled)
        return Outcome.success(asdict(self._auto.config))

    def set_auto_suggest_config(self, **options: Any) -> Outcome:
        try:
            config = self._auto.configure(**options)
        except CoreError as e:
            return Outcome.from_error(e)
        return Outcome.success(asdict(config))

    def set_api_key(self, provider: str, key: str) -> Outcome:
        if provider not in API_KEY_PROVIDERS:
            return Outcome.from_error(InvalidArgument(f"Unknown provider {provider!r}"))
        if not key:
            return Outcome.from_error(InvalidArgument("API key must not be empty"))
        port = self._stt if provider == "stt" else self._ai_backend
        port.set_api_key(key)
        return Outcome.success(provider)

    # -- reads --------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def store(self) -> ContextStore:
        return self._store

    @property
    def orchestrator(self) -> AIActionOrchestrator:
        return self._orchestrator

    @property
    def coordinator(self) -> TranscriptionCoordinator:
        return self._coordinator

    @property
    def mux(self) -> AudioStreamMux:
        return self._mux
