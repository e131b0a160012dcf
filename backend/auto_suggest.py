"""AutoSuggestEngine — decides when new context deserves an AI suggestion.

Evaluated synchronously on every ContextStore change. A trigger needs both
enough new final segments since the last trigger and enough time since the
last trigger, so bursts of speech cannot flood the AI backend. A question or a
topic change waives the segment count but not the interval. Time comes from
the injected clock; there are no timers.
"""

import logging
import re
from dataclasses import dataclass, asdict
from typing import Any, Callable, Optional

from context_store import ContextStore, SegmentChange
from domain.errors import InvalidArgument
from domain.models import ActionType, AutoSuggestConfig, ContextSnapshot, TranscriptSegment
from ports.clock import ClockPort

logger = logging.getLogger(__name__)

QUESTION_PATTERNS = [
    re.compile(r"\bwhat\s+(is|are|was|were|do|does|did)\b", re.IGNORECASE),
    re.compile(r"\bhow\s+(do|does|did|can|could|would|is|are)\b", re.IGNORECASE),
    re.compile(r"\bwhy\s+(is|are|do|does|did|would|should)\b", re.IGNORECASE),
    re.compile(r"\bwho\s+(is|are|was|were)\b", re.IGNORECASE),
    re.compile(r"\bwhen\s+(is|are|was|were|did|do|does)\b", re.IGNORECASE),
    re.compile(r"\bwhere\s+(is|are|was|were|do|does)\b", re.IGNORECASE),
    re.compile(r"\bcan\s+you\s+(tell|explain|help)\b", re.IGNORECASE),
    re.compile(r"\bdo\s+you\s+know\b", re.IGNORECASE),
    re.compile(r"\?\s*$"),
]

TOPIC_CHANGE_PATTERNS = [
    re.compile(r"\blet'?s\s+talk\s+about\b", re.IGNORECASE),
    re.compile(r"\bspeaking\s+of\b", re.IGNORECASE),
    re.compile(r"\bby\s+the\s+way\b", re.IGNORECASE),
    re.compile(r"\bchanging\s+topics?\b", re.IGNORECASE),
    re.compile(r"\bon\s+another\s+note\b", re.IGNORECASE),
    re.compile(r"\bmoving\s+on\b", re.IGNORECASE),
]

FLAG_OPTIONS = ("question_detection", "topic_change_detection")

Submit = Callable[[ActionType, ContextSnapshot, dict], Any]


def looks_like_question(text: str) -> bool:
    return any(pattern.search(text) for pattern in QUESTION_PATTERNS)


def looks_like_topic_change(text: str) -> bool:
    return any(pattern.search(text) for pattern in TOPIC_CHANGE_PATTERNS)


@dataclass
class TriggerState:
    last_trigger_ms: Optional[float] = None
    segments_since_trigger: int = 0
    trigger_count: int = 0


class AutoSuggestEngine:
    def __init__(
        self,
        store: ContextStore,
        submit: Submit,
        clock: ClockPort,
        config: Optional[AutoSuggestConfig] = None,
    ):
        self._store = store
        self._submit = submit
        self._clock = clock
        self._config = config or AutoSuggestConfig()
        self._state = TriggerState()
        self._suspended = False
        self._unsubscribe = store.subscribe(self.on_context_change)

    # -- configuration ------------------------------------------------------

    @property
    def config(self) -> AutoSuggestConfig:
        return self._config

    def set_enabled(self, enabled: bool) -> None:
        self._config.enabled = bool(enabled)
        logger.info(f"Auto-suggest {'enabled' if enabled else 'disabled'}")

    def configure(self, **options: Any) -> AutoSuggestConfig:
        """Update the policy. Unknown names land in the extensible options mapping."""
        updates = dict(options)
        interval = updates.pop("min_interval_ms", None)
        min_segments = updates.pop("min_new_segments_before_trigger", None)
        enabled = updates.pop("enabled", None)

        if interval is not None and (not isinstance(interval, (int, float)) or interval < 0):
            raise InvalidArgument(f"min_interval_ms must be a non-negative number, got {interval!r}")
        if min_segments is not None and (not isinstance(min_segments, int) or min_segments < 0):
            raise InvalidArgument(
                f"min_new_segments_before_trigger must be a non-negative integer, got {min_segments!r}"
            )
        if "action_type" in updates:
            try:
                updates["action_type"] = ActionType(updates["action_type"]).value
            except ValueError:
                raise InvalidArgument(f"Unknown action_type {updates['action_type']!r}")
        context_segments = updates.get("context_segments")
        if context_segments is not None and (
            isinstance(context_segments, bool) or not isinstance(context_segments, int) or context_segments < 0
        ):
            raise InvalidArgument(f"context_segments must be a non-negative integer, got {context_segments!r}")
        for flag in FLAG_OPTIONS:
            if flag in updates and not isinstance(updates[flag], bool):
                raise InvalidArgument(f"{flag} must be true or false, got {updates[flag]!r}")

        if interval is not None:
            self._config.min_interval_ms = interval
        if min_segments is not None:
            self._config.min_new_segments_before_trigger = min_segments
        if enabled is not None:
            self._config.enabled = bool(enabled)
        self._config.options.update(updates)
        logger.info(f"Auto-suggest config updated: {asdict(self._config)}")
        return self._config

    # -- lifecycle ----------------------------------------------------------

    def suspend(self) -> None:
        self._suspended = True

    def resume(self) -> None:
        self._suspended = False

    def reset(self) -> None:
        self._state = TriggerState()

    def detach(self) -> None:
        self._unsubscribe()

    # -- policy -------------------------------------------------------------

    def on_context_change(self, change: SegmentChange) -> None:
        # Interim revisions are live display only.
        if not change.is_final:
            return
        self._state.segments_since_trigger += 1
        self.evaluate(change.segment)

    def evaluate(self, segment: Optional[TranscriptSegment] = None) -> bool:
        if not self._config.enabled or self._suspended:
            return False

        now = self._clock.now_ms()
        last = self._state.last_trigger_ms
        if last is not None and now - last < self._config.min_interval_ms:
            return False

        text = segment.text if segment is not None else ""
        options = self._config.options
        question = bool(options.get("question_detection", False)) and looks_like_question(text)
        topic = bool(options.get("topic_change_detection", False)) and looks_like_topic_change(text)
        enough = self._state.segments_since_trigger >= self._config.min_new_segments_before_trigger
        if not (enough or question or topic):
            return False

        if enough:
            reason = "segment_threshold"
        elif question:
            reason = "question"
        else:
            reason = "topic_change"
        self._fire(now, reason)
        return True

    def _fire(self, now: float, reason: str) -> None:
        segments = self._state.segments_since_trigger
        self._state.last_trigger_ms = now
        self._state.segments_since_trigger = 0
        self._state.trigger_count += 1

        action_type = ActionType(self._config.options.get("action_type", ActionType.TALKING_POINT.value))
        snapshot = self._store.get_snapshot(last_n=self._config.options.get("context_segments"))
        logger.info(f"Auto-suggest triggered ({reason}, {segments} new segments)")
        try:
            self._submit(action_type, snapshot, {"origin": "auto", "trigger": reason})
        except Exception:
            logger.exception("Auto-suggest submission failed")

    def state(self) -> dict:
        return {
            "enabled": self._config.enabled,
            "suspended": self._suspended,
            "config": asdict(self._config),
            **asdict(self._state),
        }
