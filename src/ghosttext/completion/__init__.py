"""Completion pipeline: stream parsing, caching, classification and acceptance."""

from .cache import CacheConfig, CacheStats, ContextFingerprint, SuggestionCache, make_key
from .classifier import EditSuggestion, InsertSuggestion, Suggestion, classify
from .span_locator import SpanMatch, find_exact, find_fuzzy, locate_span
from .stream_parser import Complete, StreamError, StreamParser, TextDelta
from .types import Anchor, CompletionContext, CursorPosition, RequestSnapshot

__all__ = [
    "Anchor",
    "CacheConfig",
    "CacheStats",
    "Complete",
    "CompletionContext",
    "ContextFingerprint",
    "CursorPosition",
    "EditSuggestion",
    "InsertSuggestion",
    "RequestSnapshot",
    "SpanMatch",
    "StreamError",
    "StreamParser",
    "Suggestion",
    "SuggestionCache",
    "TextDelta",
    "classify",
    "find_exact",
    "find_fuzzy",
    "locate_span",
    "make_key",
]
