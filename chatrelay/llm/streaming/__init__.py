"""
Streaming functionality shared by the provider client and the chat client.

This module contains:
- Line-buffered SSE parsing
- Gemini chunk accumulation
"""

from .models import AccumulatorState, RawSSEChunk, SSEEventType
from .parser import ChunkAccumulator, StreamingParser

__all__ = [
    "AccumulatorState",
    "ChunkAccumulator",
    "RawSSEChunk",
    "SSEEventType",
    "StreamingParser",
]
