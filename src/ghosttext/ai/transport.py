"""Streaming transport for the Anthropic messages endpoint."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Protocol

import httpx

from .prompts import CompletionPrompt

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.anthropic.com/v1"
DEFAULT_ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_RESPONSE_BYTES = 1_048_576

EXIT_OK = 0
EXIT_TRANSPORT_FAILURE = 1


@dataclass(slots=True)
class StreamCallbacks:
    """Callbacks a transport drives while a stream is open.

    ``on_done`` is always the last call for a stream that was not cancelled;
    a failed stream reports ``on_error`` first and then a non-zero status.
    """

    on_data: Callable[[bytes], None]
    on_error: Callable[[str], None]
    on_done: Callable[[int], None]


class TransportHandle(Protocol):
    """Handle returned by :meth:`Transport.open`."""

    def cancel(self) -> None:  # pragma: no cover - protocol stub
        ...


class Transport(Protocol):
    """Opens one streaming request and reports its bytes through callbacks."""

    def open(self, body: Mapping[str, Any], callbacks: StreamCallbacks) -> TransportHandle:  # pragma: no cover - protocol stub
        ...


def build_request_body(
    prompt: CompletionPrompt,
    *,
    model: str,
    max_tokens: int,
    metadata: Mapping[str, str] | None = None,
) -> Dict[str, Any]:
    """Return the JSON payload for a streamed messages request."""

    body: Dict[str, Any] = {
        "model": model,
        "max_tokens": int(max_tokens),
        "stream": True,
        "system": prompt.system,
        "messages": [{"role": "user", "content": prompt.user}],
    }
    if metadata:
        body["metadata"] = dict(metadata)
    return body


@dataclass(slots=True)
class TransportSettings:
    """Subset of settings required to configure the HTTP transport."""

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    anthropic_version: str = DEFAULT_ANTHROPIC_VERSION
    request_timeout: float | None = 30.0
    max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES
    default_headers: Mapping[str, str] = field(default_factory=dict)
    debug_logging: bool = False

    @property
    def endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/messages"


class TransportError(RuntimeError):
    """Raised inside the transport when a stream has to be abandoned."""

    def __init__(self, message: str, *, status: int = EXIT_TRANSPORT_FAILURE) -> None:
        super().__init__(message)
        self.status = status


class _TaskHandle:
    """Cancels the asyncio task driving one stream."""

    __slots__ = ("_task",)

    def __init__(self, task: asyncio.Task[int]) -> None:
        self._task = task

    @property
    def task(self) -> asyncio.Task[int]:
        return self._task

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()


class HttpxTransport:
    """Transport posting to ``{base_url}/messages`` through ``httpx.AsyncClient``.

    No retry is attempted; every failure ends the stream with ``on_error``
    followed by ``on_done`` carrying the HTTP status (or ``1`` when the
    request never produced one).
    """

    def __init__(
        self,
        settings: TransportSettings,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=settings.request_timeout)
        self._tasks: set[asyncio.Task[int]] = set()

    @property
    def settings(self) -> TransportSettings:
        return self._settings

    def open(self, body: Mapping[str, Any], callbacks: StreamCallbacks) -> _TaskHandle:
        """Start streaming ``body`` on the running event loop."""

        task = asyncio.get_running_loop().create_task(self.stream(body, callbacks))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return _TaskHandle(task)

    async def stream(self, body: Mapping[str, Any], callbacks: StreamCallbacks) -> int:
        """Run one request to completion and return its exit status."""

        if self._settings.debug_logging:
            self._log_request_body(body)
        try:
            await self._stream_response(body, callbacks)
        except TransportError as exc:
            LOGGER.warning("Completion stream failed (%s): %s", exc.status, exc)
            return self._finish(callbacks, exc.status, str(exc))
        except httpx.HTTPError as exc:
            message = str(exc) or exc.__class__.__name__
            LOGGER.warning("Completion request failed: %s", message)
            return self._finish(callbacks, EXIT_TRANSPORT_FAILURE, message)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            LOGGER.exception("Completion stream aborted")
            return self._finish(callbacks, EXIT_TRANSPORT_FAILURE, message)
        callbacks.on_done(EXIT_OK)
        return EXIT_OK

    async def _stream_response(self, body: Mapping[str, Any], callbacks: StreamCallbacks) -> None:
        limit = max(0, int(self._settings.max_response_bytes))
        received = 0
        async with self._client.stream(
            "POST",
            self._settings.endpoint,
            headers=self._build_headers(),
            json=dict(body),
        ) as response:
            if response.status_code >= 400:
                payload = await response.aread()
                raise TransportError(
                    _extract_error_message(payload, response.status_code),
                    status=response.status_code,
                )
            LOGGER.debug("Completion stream opened (%s)", response.status_code)
            async for chunk in response.aiter_bytes():
                if not chunk:
                    continue
                received += len(chunk)
                if limit and received > limit:
                    raise TransportError(f"Response exceeded {limit} bytes")
                callbacks.on_data(chunk)

    def _build_headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = dict(self._settings.default_headers or {})
        headers.update(
            {
                "content-type": "application/json",
                "x-api-key": self._settings.api_key,
                "anthropic-version": self._settings.anthropic_version,
            }
        )
        return headers

    @staticmethod
    def _finish(callbacks: StreamCallbacks, status: int, message: str) -> int:
        callbacks.on_error(message)
        callbacks.on_done(status)
        return status

    def _log_request_body(self, body: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(body, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Completion request body (unserializable): %s", body)
        else:
            LOGGER.debug("Completion request body:\n%s", serialized)

    async def wait_closed(self) -> None:
        """Wait until every stream opened so far has finished."""

        pending = [task for task in self._tasks if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel running streams and close the owned HTTP client."""

        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if self._owns_client:
            await self._client.aclose()


def _extract_error_message(payload: bytes, status: int) -> str:
    fallback = f"HTTP {status}"
    if not payload:
        return fallback
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError):
        text = payload.decode("utf-8", errors="replace").strip()
        return text[:200] or fallback
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            if isinstance(message, str) and message:
                return message
    return fallback


__all__ = [
    "DEFAULT_ANTHROPIC_VERSION",
    "DEFAULT_BASE_URL",
    "EXIT_OK",
    "EXIT_TRANSPORT_FAILURE",
    "HttpxTransport",
    "StreamCallbacks",
    "Transport",
    "TransportError",
    "TransportHandle",
    "TransportSettings",
    "build_request_body",
]
