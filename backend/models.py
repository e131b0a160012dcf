from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field


class SegmentOut(BaseModel):
    """A transcript segment as exposed over the API"""
    id: str
    utterance_key: str
    text: str
    is_final: bool
    start: float
    end: Optional[float] = None
    source: str
    confidence: Optional[float] = None


class KeyPointOut(BaseModel):
    id: str
    text: str
    created_at: float
    metadata: Dict[str, Any] = {}
    source_segment_ids: List[str] = []


class SessionMetaOut(BaseModel):
    session_id: Optional[str] = None
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    active: bool = False


class SnapshotOut(BaseModel):
    """Point-in-time read of the context store"""
    segments: List[SegmentOut]
    key_points: List[KeyPointOut]
    session: SessionMetaOut
    taken_at: float
    transcript: str


class OutcomeOut(BaseModel):
    """Typed result of every command"""
    ok: bool
    value: Any = None
    error: Optional[str] = None
    detail: Optional[str] = None


class TriggerActionBody(BaseModel):
    action_type: str
    metadata: Dict[str, Any] = {}
    mock_context: Optional[List[str]] = None


class KeyPointBody(BaseModel):
    text: str
    metadata: Dict[str, Any] = {}


class AutoSuggestBody(BaseModel):
    enabled: bool


class AutoSuggestConfigBody(BaseModel):
    """Policy update. Unknown fields are forwarded as extensible options."""
    model_config = {"extra": "allow"}

    enabled: Optional[bool] = None
    min_interval_ms: Optional[int] = None
    min_new_segments_before_trigger: Optional[int] = None


class ApiKeyBody(BaseModel):
    key: str


class AudioChunkBody(BaseModel):
    source: str
    sequence: int
    payload: str = Field(..., description="base64-encoded PCM16 little-endian audio")
    timestamp: Optional[float] = None


class HealthOut(BaseModel):
    status: str
    state: str
    config: Dict[str, Any]
