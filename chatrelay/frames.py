"""
Wire model for the chat stream.

Every event on ``/api/chat/{id}/stream`` is one ``data: <json>`` line
followed by a blank line, where the JSON is one of::

    {"chunk": "...", "done": false}
    {"done": true}
    {"error": "...", "done": true}
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class StreamFrame(BaseModel):
    """One SSE event of a chat stream."""
    model_config = ConfigDict(frozen=True)

    chunk: str | None = None
    error: str | None = None
    done: bool = False

    @classmethod
    def chunk_frame(cls, fragment: str) -> StreamFrame:
        return cls(chunk=fragment, done=False)

    @classmethod
    def completed(cls) -> StreamFrame:
        return cls(done=True)

    @classmethod
    def failure(cls, error: str) -> StreamFrame:
        return cls(error=error, done=True)

    @classmethod
    def from_data(cls, data: dict[str, Any]) -> StreamFrame:
        """Build a frame from a decoded event payload."""
        return cls.model_validate(data)

    @property
    def is_terminal(self) -> bool:
        return self.done

    def to_sse(self) -> str:
        """Serialize as a complete SSE event."""
        return f"data: {self.model_dump_json(exclude_none=True)}\n\n"
