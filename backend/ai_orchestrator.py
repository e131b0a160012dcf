"""AIActionOrchestrator — one live AI request per action slot.

A new request for a busy slot cancels the old one (last request wins); stale
suggestions are dropped rather than queued. Stream events are matched against
the live request of their slot, so chunks that belong to a cancelled, failed
or finished request are ignored. Failures stay within their slot.
"""

import logging
import uuid
from typing import Any, Optional

from domain.errors import InvalidArgument, RequestFailed, RequestTimeout
from domain.models import ActionType, ContextSnapshot, RequestStatus, SuggestionRequest
from events import EventBus, EventKind
from ports.ai_backend import AIBackendListener, AIBackendPort
from ports.clock import ClockPort
from suggestion_parsing import build_result, extract_partial

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 20000

SLOT_BY_ACTION = {
    ActionType.TALKING_POINT: "talking-points",
    ActionType.FOLLOW_UP_ACTION: "follow-up-actions",
    ActionType.CUSTOM: "custom",
}


def slot_for(action_type: ActionType, metadata: Optional[dict] = None) -> str:
    if metadata and metadata.get("slot"):
        return str(metadata["slot"])
    return SLOT_BY_ACTION[action_type]


class AIActionOrchestrator(AIBackendListener):
    def __init__(
        self,
        backend: AIBackendPort,
        clock: ClockPort,
        bus: Optional[EventBus] = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ):
        self._backend = backend
        self._clock = clock
        self._bus = bus
        self._timeout_ms = timeout_ms
        self._live: dict[str, SuggestionRequest] = {}
        self._by_id: dict[str, SuggestionRequest] = {}
        self._stats = {
            "submitted": 0,
            "completed": 0,
            "failed": 0,
            "timed_out": 0,
            "cancelled": 0,
            "stale_events": 0,
        }
        backend.attach(self)

    # -- commands -----------------------------------------------------------

    def submit(
        self,
        action_type: Any,
        context: ContextSnapshot,
        metadata: Optional[dict] = None,
    ) -> SuggestionRequest:
        try:
            action_type = ActionType(action_type)
        except ValueError:
            raise InvalidArgument(f"Unknown action type {action_type!r}")
        self.sweep_timeouts()

        metadata = dict(metadata or {})
        slot = slot_for(action_type, metadata)
        previous = self._live.get(slot)
        if previous is not None:
            self._cancel(previous)

        now = self._clock.now_ms()
        request = SuggestionRequest(
            request_id=uuid.uuid4().hex[:12],
            action_type=action_type,
            slot=slot,
            triggering_context=context,
            metadata=metadata,
            submitted_at=now,
            last_activity_at=now,
        )
        self._live[slot] = request
        self._by_id[request.request_id] = request
        self._stats["submitted"] += 1
        logger.info(f"[{request.request_id}] {action_type.value} submitted to slot {slot}")

        try:
            backend_id = self._backend.invoke(request.request_id, action_type, context, metadata)
        except Exception as e:
            logger.warning(f"[{request.request_id}] AI backend invoke failed: {e}")
            self._fail(request, RequestFailed(str(e)))
            return request

        if backend_id and backend_id != request.request_id and request.status is RequestStatus.PENDING:
            self._by_id.pop(request.request_id, None)
            request.request_id = backend_id
            self._by_id[backend_id] = request
        return request

    def cancel_all(self) -> int:
        live = list(self._live.values())
        for request in live:
            self._cancel(request)
        return len(live)

    def sweep_timeouts(self) -> int:
        """Fail live requests with no activity inside the timeout window."""
        now = self._clock.now_ms()
        expired = [
            request for request in self._live.values()
            if now - request.last_activity_at >= self._timeout_ms
        ]
        for request in expired:
            self._stats["timed_out"] += 1
            self._safe_backend_cancel(request)
            self._fail(request, RequestTimeout(f"no activity within {self._timeout_ms}ms"))
        return len(expired)

    # -- backend events -----------------------------------------------------

    def on_stream_start(self, request_id: str) -> None:
        request = self._live_request(request_id)
        if request is None:
            return
        request.status = RequestStatus.STREAMING
        request.last_activity_at = self._clock.now_ms()
        self._publish(request, "start")

    def on_stream_chunk(self, request_id: str, data: Any) -> None:
        request = self._live_request(request_id)
        if request is None:
            return
        request.status = RequestStatus.STREAMING
        request.last_activity_at = self._clock.now_ms()
        request.chunks.append(data)
        extra = {}
        if all(isinstance(c, str) for c in request.chunks):
            partial = extract_partial("".join(request.chunks))
            if any(partial.values()):
                extra["partial"] = partial
        self._publish(request, "chunk", data=data, index=len(request.chunks) - 1, **extra)

    def on_stream_end(self, request_id: str, result: Any) -> None:
        request = self._live_request(request_id)
        if request is None:
            return
        if result is None and request.chunks and all(isinstance(c, str) for c in request.chunks):
            result = "".join(request.chunks)
        request.result = build_result(result)
        request.status = RequestStatus.COMPLETED
        request.last_activity_at = self._clock.now_ms()
        self._retire(request)
        self._stats["completed"] += 1
        logger.info(f"[{request.request_id}] {request.action_type.value} completed")
        self._publish(request, "completed", result=request.result)

    def on_error(self, request_id: str, cause: Any) -> None:
        request = self._live_request(request_id)
        if request is None:
            return
        logger.warning(f"[{request_id}] AI backend error: {cause}")
        self._fail(request, RequestFailed(str(cause)))

    # -- internals ----------------------------------------------------------

    def _live_request(self, request_id: str) -> Optional[SuggestionRequest]:
        request = self._by_id.get(request_id)
        if request is None or self._live.get(request.slot) is not request:
            self._stats["stale_events"] += 1
            logger.debug(f"[{request_id}] ignoring event for a request that is not live")
            return None
        return request

    def _retire(self, request: SuggestionRequest) -> None:
        self._by_id.pop(request.request_id, None)
        if self._live.get(request.slot) is request:
            del self._live[request.slot]

    def _cancel(self, request: SuggestionRequest) -> None:
        request.status = RequestStatus.CANCELLED
        self._retire(request)
        self._stats["cancelled"] += 1
        self._safe_backend_cancel(request)
        logger.debug(f"[{request.request_id}] cancelled in slot {request.slot}")

    def _fail(self, request: SuggestionRequest, error: RequestFailed) -> None:
        request.status = RequestStatus.FAILED
        request.error = str(error)
        self._retire(request)
        self._stats["failed"] += 1
        self._publish(request, "failed", error=request.error, error_kind=error.kind.value)

    def _safe_backend_cancel(self, request: SuggestionRequest) -> None:
        try:
            self._backend.cancel(request.request_id)
        except Exception as e:
            logger.warning(f"[{request.request_id}] AI backend cancel failed: {e}")

    def _publish(self, request: SuggestionRequest, phase: str, **extra: Any) -> None:
        if self._bus is None:
            return
        payload = {
            "request_id": request.request_id,
            "slot": request.slot,
            "action_type": request.action_type.value,
            "status": request.status.value,
            "origin": request.metadata.get("origin", "manual"),
            "phase": phase,
        }
        payload.update(extra)
        self._bus.publish(EventKind.SUGGESTION, payload)

    # -- reads --------------------------------------------------------------

    def live_request(self, slot: str) -> Optional[SuggestionRequest]:
        return self._live.get(slot)

    def state(self) -> dict:
        return {
            "live": {
                slot: {"request_id": r.request_id, "status": r.status.value}
                for slot, r in self._live.items()
            },
            **self._stats,
        }
