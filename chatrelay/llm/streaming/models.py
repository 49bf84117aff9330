"""
Streaming-specific dataclasses for SSE parsing and chunk accumulation.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..models import TokenUsage


class SSEEventType(Enum):
    """Server-Sent Event types."""
    CHUNK = "chunk"
    HEARTBEAT = "heartbeat"
    MALFORMED = "malformed"
    ERROR = "error"


@dataclass(frozen=True)
class RawSSEChunk:
    """One parsed ``data:`` line (or transport failure) from an SSE body."""
    event_type: SSEEventType
    data: dict[str, Any] | None
    raw_data: str
    error: str | None = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class AccumulatorState:
    """Mutable state for chunk accumulation with timing."""
    content_buffer: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str | None = None
    chunk_count: int = 0
    first_chunk_time: float | None = None
    last_chunk_time: float | None = None

    def update_timing(self, timestamp: float) -> None:
        """Update timing information for latency tracking."""
        if self.first_chunk_time is None:
            self.first_chunk_time = timestamp
        self.last_chunk_time = timestamp
        self.chunk_count += 1

    @property
    def streaming_duration(self) -> float:
        """Calculate total streaming duration."""
        if self.first_chunk_time is None or self.last_chunk_time is None:
            return 0.0
        return self.last_chunk_time - self.first_chunk_time
