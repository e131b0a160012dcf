"""AIBackendPort — abstract interface for streaming AI suggestion backends."""

from abc import ABC, abstractmethod
from typing import Any, Optional

from domain.models import ActionType, ContextSnapshot


class AIBackendListener(ABC):
    @abstractmethod
    def on_stream_start(self, request_id: str) -> None:
        """The backend accepted the request and is about to stream."""

    @abstractmethod
    def on_stream_chunk(self, request_id: str, data: Any) -> None:
        """One ordered piece of the response."""

    @abstractmethod
    def on_stream_end(self, request_id: str, result: Any) -> None:
        """The response is complete."""

    @abstractmethod
    def on_error(self, request_id: str, cause: Any) -> None:
        """The request failed."""


class AIBackendPort(ABC):
    @abstractmethod
    def attach(self, listener: Optional[AIBackendListener]) -> None:
        """Route stream events to listener, replacing any previous one."""

    @abstractmethod
    def invoke(
        self,
        request_id: str,
        action_type: ActionType,
        context: ContextSnapshot,
        metadata: dict,
    ) -> str:
        """Start a request. Returns the request id carried by its stream events."""

    def cancel(self, request_id: str) -> None:
        """Best-effort abort of an in-flight request."""

    def set_api_key(self, key: str) -> None:
        """Replace the backend credential."""
