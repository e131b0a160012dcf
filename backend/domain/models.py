"""Framework-agnostic domain models for cuecard.

Plain dataclasses shared by the core components. Pydantic DTOs in models.py
stay at the API boundary, with mappers converting between the two.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional


class SessionState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"
    STOPPED = "stopped"


class AudioSource(str, Enum):
    MIC = "mic"
    SYSTEM = "system"


class ActionType(str, Enum):
    TALKING_POINT = "talking-point"
    FOLLOW_UP_ACTION = "follow-up-action"
    CUSTOM = "custom"


class RequestStatus(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class Session:
    """One start→stop span. Owned by SessionController."""
    id: str
    state: SessionState = SessionState.IDLE
    started_at: Optional[float] = None
    ended_at: Optional[float] = None


@dataclass(frozen=True)
class AudioChunk:
    """A block of PCM16 little-endian audio from one capture source."""
    source: AudioSource
    sequence: int
    payload: bytes
    capture_timestamp: float


@dataclass(frozen=True)
class AudioLevel:
    source: AudioSource
    level: float
    peak: float
    db: float
    peak_db: float


@dataclass(frozen=True)
class STTResult:
    """A single provider result, interim or final, for one utterance key."""
    utterance_key: str
    text: str
    is_final: bool
    timestamp: float
    source: AudioSource = AudioSource.MIC
    confidence: Optional[float] = None


@dataclass(frozen=True)
class TranscriptSegment:
    """A span of transcript text.

    Interim segments are replaced in place by later revisions that share the
    utterance key; a final segment is never replaced.
    """
    id: str
    utterance_key: str
    text: str
    is_final: bool
    start_timestamp: float
    end_timestamp: Optional[float]
    source: AudioSource
    confidence: Optional[float] = None

    @property
    def word_count(self) -> int:
        return len(self.text.split())


@dataclass(frozen=True)
class KeyPoint:
    id: str
    text: str
    created_at: float
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    source_segment_ids: frozenset = frozenset()


@dataclass(frozen=True)
class SessionMeta:
    session_id: Optional[str]
    started_at: Optional[float]
    ended_at: Optional[float]
    active: bool


@dataclass(frozen=True)
class ContextSnapshot:
    """Immutable point-in-time read of the context store."""
    segments: tuple[TranscriptSegment, ...]
    key_points: tuple[KeyPoint, ...]
    session_meta: SessionMeta
    taken_at: float

    @property
    def final_segments(self) -> tuple[TranscriptSegment, ...]:
        return tuple(seg for seg in self.segments if seg.is_final)

    @property
    def transcript(self) -> str:
        return " ".join(seg.text.strip() for seg in self.segments if seg.text.strip())


@dataclass
class SuggestionRequest:
    """One AI request for a slot. Owned by AIActionOrchestrator until terminal."""
    request_id: str
    action_type: ActionType
    slot: str
    triggering_context: ContextSnapshot
    metadata: dict = field(default_factory=dict)
    status: RequestStatus = RequestStatus.PENDING
    submitted_at: float = 0.0
    last_activity_at: float = 0.0
    chunks: list = field(default_factory=list)
    result: Any = None
    error: Optional[str] = None


@dataclass
class AutoSuggestConfig:
    enabled: bool = True
    min_interval_ms: int = 15000
    min_new_segments_before_trigger: int = 3
    options: dict = field(default_factory=lambda: {
        "question_detection": True,
        "topic_change_detection": True,
        "action_type": ActionType.TALKING_POINT.value,
        "context_segments": 20,
    })
