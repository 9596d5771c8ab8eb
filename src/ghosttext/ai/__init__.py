"""Prompt assembly and the streaming HTTP transport."""

from .prompts import CompletionPrompt, build_prompt
from .transport import HttpxTransport, StreamCallbacks, Transport, TransportSettings, build_request_body

__all__ = [
    "CompletionPrompt",
    "HttpxTransport",
    "StreamCallbacks",
    "Transport",
    "TransportSettings",
    "build_prompt",
    "build_request_body",
]
