"""ContextStore — the rolling transcript and key points for the live session.

Segments are held in an OrderedDict keyed by utterance key, so replacing an
interim revision keeps its position and appending a new key goes to the end.
A final segment stays in its slot unless that would put finals out of start
order, in which case it moves in front of the first final that starts later.
Every write (add_segment, add_key_point, clear) runs under one lock and is
published only after it has been fully applied, so readers never see a
half-applied write.
"""

import logging
import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Iterable, Optional

from domain.models import ContextSnapshot, KeyPoint, SessionMeta, TranscriptSegment
from events import EventBus, EventKind
from ports.clock import ClockPort

logger = logging.getLogger(__name__)

DEFAULT_MAX_SEGMENTS = 500
DEFAULT_KEY_POINT_INTERVAL = 20
DEFAULT_MAX_CONTEXT_DURATION_MS = 30 * 60 * 1000
KEY_POINT_PREVIEW_CHARS = 200


@dataclass(frozen=True)
class SegmentChange:
    """Change notification for one add_segment call."""
    segment: TranscriptSegment
    is_final: bool
    replaced: bool


SegmentListener = Callable[[SegmentChange], None]


class ContextStore:
    def __init__(
        self,
        clock: ClockPort,
        bus: Optional[EventBus] = None,
        max_segments: int = DEFAULT_MAX_SEGMENTS,
        key_point_interval: int = DEFAULT_KEY_POINT_INTERVAL,
        max_context_duration_ms: float = DEFAULT_MAX_CONTEXT_DURATION_MS,
    ):
        self._clock = clock
        self._bus = bus
        self._max_segments = max_segments
        self._key_point_interval = key_point_interval
        self._max_context_duration_ms = max_context_duration_ms
        self._lock = threading.RLock()
        self._segments: "OrderedDict[str, TranscriptSegment]" = OrderedDict()
        self._key_points: list[KeyPoint] = []
        self._listeners: list[SegmentListener] = []
        self._finals_since_key_point = 0
        self._session_id: Optional[str] = None
        self._started_at: Optional[float] = None
        self._ended_at: Optional[float] = None
        self._active = False

    # -- observers ----------------------------------------------------------

    def subscribe(self, listener: SegmentListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # -- session bracket ----------------------------------------------------

    def start_session(self, session_id: str) -> None:
        with self._lock:
            if self._active:
                return
            self._session_id = session_id
            self._started_at = self._clock.now_ms()
            self._ended_at = None
            self._active = True
        logger.info(f"Context session {session_id} started")

    def end_session(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
            self._ended_at = self._clock.now_ms()
        logger.info(f"Context session {self._session_id} ended")

    @property
    def session_active(self) -> bool:
        return self._active

    # -- writes -------------------------------------------------------------

    def add_segment(self, segment: TranscriptSegment) -> Optional[SegmentChange]:
        """Replace the segment with the same utterance key, or append.

        Returns None without changing anything when that key is already final.
        """
        auto_point = None
        with self._lock:
            existing = self._segments.get(segment.utterance_key)
            if existing is not None and existing.is_final:
                return None

            # Assigning to an existing key keeps its position in the OrderedDict.
            self._segments[segment.utterance_key] = segment
            if segment.is_final:
                self._order_final(segment)
            self._prune(keep=segment.utterance_key)

            change = SegmentChange(
                segment=segment,
                is_final=segment.is_final,
                replaced=existing is not None,
            )
            if segment.is_final:
                auto_point = self._maybe_extract_key_point()

        if self._bus is not None:
            self._bus.publish(EventKind.TRANSCRIPT, change)
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception(f"Context listener failed for {segment.utterance_key}")
        if auto_point is not None and self._bus is not None:
            self._bus.publish(EventKind.KEY_POINT, auto_point)
        return change

    def add_key_point(
        self,
        text: str,
        metadata: Optional[dict] = None,
        source_segment_ids: Iterable[str] = (),
    ) -> KeyPoint:
        """Append a key point. Duplicate texts are kept as distinct points."""
        meta = {"source": "manual"}
        meta.update(metadata or {})
        with self._lock:
            point = self._append_key_point(text, meta, source_segment_ids)
        if self._bus is not None:
            self._bus.publish(EventKind.KEY_POINT, point)
        return point

    def clear(self) -> dict:
        with self._lock:
            summary = self.summary()
            self._segments = OrderedDict()
            self._key_points = []
            self._finals_since_key_point = 0
        logger.info("Context cleared")
        return summary

    def _append_key_point(self, text: str, metadata: dict, source_segment_ids: Iterable[str]) -> KeyPoint:
        point = KeyPoint(
            id=uuid.uuid4().hex[:12],
            text=text,
            created_at=self._clock.now_ms(),
            metadata=MappingProxyType(dict(metadata)),
            source_segment_ids=frozenset(source_segment_ids),
        )
        self._key_points.append(point)
        return point

    def _maybe_extract_key_point(self) -> Optional[KeyPoint]:
        if self._key_point_interval <= 0:
            return None
        self._finals_since_key_point += 1
        if self._finals_since_key_point < self._key_point_interval:
            return None
        self._finals_since_key_point = 0

        finals = [seg for seg in self._segments.values() if seg.is_final]
        recent = finals[-self._key_point_interval:]
        combined = " ".join(seg.text.strip() for seg in recent)
        preview = combined[:KEY_POINT_PREVIEW_CHARS]
        if len(combined) > KEY_POINT_PREVIEW_CHARS:
            preview += "..."
        point = self._append_key_point(preview, {"source": "auto"}, (seg.id for seg in recent))
        logger.debug(f"Extracted key point {point.id} from {len(recent)} segments")
        return point

    def _order_final(self, segment: TranscriptSegment) -> None:
        items = list(self._segments.items())
        position = next(i for i, (key, _) in enumerate(items) if key == segment.utterance_key)
        start = segment.start_timestamp
        if all(s.start_timestamp <= start for _, s in items[:position] if s.is_final) and all(
            s.start_timestamp >= start for _, s in items[position + 1:] if s.is_final
        ):
            return

        del items[position]
        target = next(
            (i for i, (_, s) in enumerate(items) if s.is_final and s.start_timestamp > start),
            len(items),
        )
        items.insert(target, (segment.utterance_key, segment))
        self._segments = OrderedDict(items)
        logger.debug(f"Moved final {segment.utterance_key} to keep finals in start order")

    def _prune(self, keep: Optional[str] = None) -> None:
        removed = 0
        if self._max_context_duration_ms > 0:
            cutoff = self._clock.now_ms() - self._max_context_duration_ms
            expired = [
                key for key, seg in self._segments.items()
                if key != keep and seg.is_final and (seg.end_timestamp or seg.start_timestamp) < cutoff
            ]
            for key in expired:
                del self._segments[key]
            removed += len(expired)
        while len(self._segments) > self._max_segments:
            self._segments.popitem(last=False)
            removed += 1
        if removed:
            logger.debug(f"Pruned {removed} old segments")

    # -- reads --------------------------------------------------------------

    def get(self, utterance_key: str) -> Optional[TranscriptSegment]:
        with self._lock:
            return self._segments.get(utterance_key)

    def interim_segments(self) -> list[TranscriptSegment]:
        with self._lock:
            return [seg for seg in self._segments.values() if not seg.is_final]

    def get_snapshot(
        self,
        last_n: Optional[int] = None,
        since_ms: Optional[float] = None,
        until_ms: Optional[float] = None,
        final_only: bool = False,
    ) -> ContextSnapshot:
        """Copy-on-read view, optionally limited to the last N segments or a time window."""
        with self._lock:
            segments = list(self._segments.values())
            key_points = tuple(self._key_points)
            meta = SessionMeta(
                session_id=self._session_id,
                started_at=self._started_at,
                ended_at=self._ended_at,
                active=self._active,
            )
        if final_only:
            segments = [seg for seg in segments if seg.is_final]
        if since_ms is not None:
            segments = [seg for seg in segments if seg.start_timestamp >= since_ms]
        if until_ms is not None:
            segments = [seg for seg in segments if seg.start_timestamp <= until_ms]
        if last_n is not None:
            segments = segments[-last_n:] if last_n > 0 else []
        return ContextSnapshot(
            segments=tuple(segments),
            key_points=key_points,
            session_meta=meta,
            taken_at=self._clock.now_ms(),
        )

    def summary(self) -> dict:
        with self._lock:
            finals = [seg for seg in self._segments.values() if seg.is_final]
            if self._started_at is None:
                duration = 0.0
            else:
                duration = (self._ended_at or self._clock.now_ms()) - self._started_at
            return {
                "session_id": self._session_id,
                "duration_ms": duration,
                "segment_count": len(self._segments),
                "final_segment_count": len(finals),
                "key_point_count": len(self._key_points),
                "total_words": sum(seg.word_count for seg in finals),
            }

    def __len__(self) -> int:
        return len(self._segments)
