"""
Python client for the chat relay API.
"""

from .chat_client import ChatClient, ChatClientError, StreamFailedError
from .state import ChatState

__all__ = [
    "ChatClient",
    "ChatClientError",
    "ChatState",
    "StreamFailedError",
]
