"""ScriptedAIBackend — AI backend that records invocations and streams scripted replies.

With a canned response it plays the reply word by word on the running event
loop; without one, the caller drives each request through start/chunk/end/fail.
"""

import asyncio
import logging
from typing import Any, Optional

from domain.models import ActionType, ContextSnapshot
from ports.ai_backend import AIBackendListener, AIBackendPort

logger = logging.getLogger(__name__)

DEFAULT_CANNED_RESPONSE = """INSIGHTS:
- The discussion is focused on the current agenda item
- Open questions remain about ownership and timing

TALKING POINTS:
1. Who owns the next step here?
2. What timeline are we committing to?

FOLLOW-UP ACTIONS:
1. Send a recap with owners and dates
"""


class ScriptedAIBackend(AIBackendPort):
    def __init__(self, canned_response: Optional[str] = None, chunk_delay: float = 0.0):
        self._listener: Optional[AIBackendListener] = None
        self._canned_response = canned_response
        self._chunk_delay = chunk_delay
        self._tasks: dict[str, asyncio.Task] = {}
        self.invocations: list[dict] = []
        self.cancelled: list[str] = []
        self.api_key: Optional[str] = None

    def attach(self, listener: Optional[AIBackendListener]) -> None:
        self._listener = listener

    def invoke(
        self,
        request_id: str,
        action_type: ActionType,
        context: ContextSnapshot,
        metadata: dict,
    ) -> str:
        self.invocations.append({
            "request_id": request_id,
            "action_type": action_type,
            "context": context,
            "metadata": metadata,
        })
        if self._canned_response is not None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning("No running event loop, canned response not streamed")
            else:
                self._tasks[request_id] = loop.create_task(self._play(request_id, self._canned_response))
        return request_id

    def cancel(self, request_id: str) -> None:
        self.cancelled.append(request_id)
        task = self._tasks.pop(request_id, None)
        if task is not None and not task.done():
            task.cancel()

    def set_api_key(self, key: str) -> None:
        self.api_key = key
        logger.info("AI API key updated")

    @property
    def last_request_id(self) -> Optional[str]:
        return self.invocations[-1]["request_id"] if self.invocations else None

    async def _play(self, request_id: str, text: str) -> None:
        self.start(request_id)
        for word in text.split(" "):
            await asyncio.sleep(self._chunk_delay)
            self.chunk(request_id, word + " ")
        self.end(request_id, None)
        self._tasks.pop(request_id, None)

    # -- scripting ----------------------------------------------------------

    def start(self, request_id: str) -> None:
        if self._listener is not None:
            self._listener.on_stream_start(request_id)

    def chunk(self, request_id: str, data: Any) -> None:
        if self._listener is not None:
            self._listener.on_stream_chunk(request_id, data)

    def end(self, request_id: str, result: Any) -> None:
        if self._listener is not None:
            self._listener.on_stream_end(request_id, result)

    def fail(self, request_id: str, cause: Any) -> None:
        if self._listener is not None:
            self._listener.on_error(request_id, cause)
