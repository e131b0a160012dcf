"""Parsing of completed AI responses into structured suggestions.

The backend is asked for three sections:

    INSIGHTS:
    - short insight

    TALKING POINTS:
    1. short talking point

    FOLLOW-UP ACTIONS:
    1. short action

Each section is optional in practice; missing sections parse to empty lists.
"""

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

MAX_ITEMS_PER_SECTION = 3

INSIGHTS_RE = re.compile(r"^INSIGHTS:\s*\n((?:-\s+.+\n?)+)", re.MULTILINE)
TALKING_POINTS_RE = re.compile(r"TALKING POINTS:\s*\n((?:\d+\.\s+.+\n?)+)", re.MULTILINE)
ACTIONS_RE = re.compile(r"FOLLOW-UP ACTIONS:\s*\n((?:\d+\.\s+.+\n?)+)", re.MULTILINE)
BULLET_RE = re.compile(r"^-\s+(.+)$")
NUMBERED_RE = re.compile(r"^\d+\.\s+(.+)$")


def _normalize(text: str) -> str:
    return text.strip().replace("\r\n", "\n").replace("\r", "\n")


def _items(block: str, pattern: re.Pattern) -> list[str]:
    items = []
    for line in block.split("\n"):
        match = pattern.match(line.strip())
        if match and match.group(1).strip():
            items.append(match.group(1).strip())
    return items[:MAX_ITEMS_PER_SECTION]


def parse_suggestions(text: str) -> dict:
    """Split a response into insights, talking points and follow-up actions."""
    normalized = _normalize(text)

    insights_match = INSIGHTS_RE.search(normalized)
    points_match = TALKING_POINTS_RE.search(normalized)
    actions_match = ACTIONS_RE.search(normalized)

    parsed = {
        "insights": _items(insights_match.group(1), BULLET_RE) if insights_match else [],
        "talking_points": _items(points_match.group(1), NUMBERED_RE) if points_match else [],
        "follow_up_actions": _items(actions_match.group(1), NUMBERED_RE) if actions_match else [],
    }
    if not any(parsed.values()):
        logger.warning("No structured sections found in AI response")
    return parsed


def extract_partial(text: str) -> dict:
    """Talking points and follow-up actions already complete in a response still streaming.

    Only newline-terminated lines count, so an item that is still being
    written is not reported half-finished.
    """
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    complete = normalized[:normalized.rfind("\n") + 1]
    points_match = TALKING_POINTS_RE.search(complete)
    actions_match = ACTIONS_RE.search(complete)
    return {
        "talking_points": _items(points_match.group(1), NUMBERED_RE) if points_match else [],
        "follow_up_actions": _items(actions_match.group(1), NUMBERED_RE) if actions_match else [],
    }


def build_result(result: Any) -> dict:
    """Wrap a backend result: text is kept raw and parsed, anything else passes through."""
    if isinstance(result, str):
        return {"text": result, **parse_suggestions(result)}
    if isinstance(result, dict):
        return dict(result)
    return {"value": result}
