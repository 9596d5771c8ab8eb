"""Reference editor document used by the CLI and tests."""

from .buffer import LineBuffer

__all__ = ["LineBuffer"]
