"""Domain -> DTO mappers.

Converts core dataclasses (segments, key points, snapshots, outcomes and bus
event payloads) into Pydantic DTOs or JSON-ready dicts for the API layer.
"""

from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any

from context_store import SegmentChange
from domain.errors import Outcome
from domain.models import ContextSnapshot, KeyPoint, TranscriptSegment
from events import EventKind
from models import KeyPointOut, OutcomeOut, SegmentOut, SessionMetaOut, SnapshotOut


def segment_to_dto(seg: TranscriptSegment) -> SegmentOut:
    return SegmentOut(
        id=seg.id,
        utterance_key=seg.utterance_key,
        text=seg.text,
        is_final=seg.is_final,
        start=seg.start_timestamp,
        end=seg.end_timestamp,
        source=seg.source.value,
        confidence=seg.confidence,
    )


def key_point_to_dto(point: KeyPoint) -> KeyPointOut:
    return KeyPointOut(
        id=point.id,
        text=point.text,
        created_at=point.created_at,
        metadata=dict(point.metadata),
        source_segment_ids=sorted(point.source_segment_ids),
    )


def snapshot_to_dto(snapshot: ContextSnapshot) -> SnapshotOut:
    """Convert a ContextSnapshot, preserving segment order."""
    meta = snapshot.session_meta
    return SnapshotOut(
        segments=[segment_to_dto(seg) for seg in snapshot.segments],
        key_points=[key_point_to_dto(p) for p in snapshot.key_points],
        session=SessionMetaOut(
            session_id=meta.session_id,
            started_at=meta.started_at,
            ended_at=meta.ended_at,
            active=meta.active,
        ),
        taken_at=snapshot.taken_at,
        transcript=snapshot.transcript,
    )


def to_jsonable(value: Any) -> Any:
    """Recursively turn core values into plain JSON types."""
    if isinstance(value, ContextSnapshot):
        return snapshot_to_dto(value).model_dump()
    if isinstance(value, TranscriptSegment):
        return segment_to_dto(value).model_dump()
    if isinstance(value, KeyPoint):
        return key_point_to_dto(value).model_dump()
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(asdict(value))
    if isinstance(value, dict):
        return {str(to_jsonable(k)): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, bytes):
        return len(value)
    return value


def outcome_to_dto(outcome: Outcome) -> OutcomeOut:
    return OutcomeOut(
        ok=outcome.ok,
        value=to_jsonable(outcome.value),
        error=outcome.error.value if outcome.error else None,
        detail=outcome.detail,
    )


def event_to_message(kind: EventKind, payload: Any) -> dict:
    """Shape a bus event as a websocket message: {"event": ..., "data": ...}."""
    if isinstance(payload, SegmentChange):
        data = {
            "segment": segment_to_dto(payload.segment).model_dump(),
            "is_final": payload.is_final,
            "replaced": payload.replaced,
        }
    else:
        data = to_jsonable(payload)
    return {"event": kind.value, "data": data}
