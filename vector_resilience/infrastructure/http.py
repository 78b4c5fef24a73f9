"""
Pooled JSON-over-HTTP transport shared by the remote clients.

One HttpTransport owns one requests.Session with a bounded keep-alive pool.
The session is recycled after it sat idle longer than ``idle_timeout`` with no
request in flight. Every response is closed before returning, so connections
go back to the pool even when decoding fails or the caller unwinds.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter

from ..domain.errors import (
    AlreadyExists,
    ClientFailure,
    NetworkFailure,
    NotFound,
    SerializationFailure,
    ServerFailure,
    ValidationFailure,
)
from .logging import get_logger
from .timeouts import TimeoutConfig, get_timeout_config

logger = get_logger("vector_resilience.http")

_BODY_PREVIEW = 500


def normalize_base_url(url: str) -> str:
    """Validate an http(s) base URL and strip trailing slashes."""
    parsed = urlparse((url or "").strip())
    if parsed.scheme not in ("http", "https"):
        raise ValidationFailure(f"URL must use HTTP or HTTPS: {url!r}")
    if not parsed.netloc:
        raise ValidationFailure(f"URL has no host: {url!r}")
    return url.strip().rstrip("/")


def build_session(pool_size: int) -> requests.Session:
    session = requests.Session()
    # Retries are owned by RetryExecutor, never by urllib3.
    adapter = HTTPAdapter(pool_connections=1, pool_maxsize=pool_size, max_retries=0, pool_block=True)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def error_for_status(status: int, body: str, what: str):
    """Map a non-2xx status to the error taxonomy."""
    preview = body[:_BODY_PREVIEW]
    message = f"{what} failed with status {status}: {preview}"
    if status >= 500:
        if "already exists" in body.lower():
            return AlreadyExists(message, status, body)
        return ServerFailure(message, status, body)
    if status == 409 or "already exists" in body.lower():
        return AlreadyExists(message, status, body)
    if status == 404:
        return NotFound(message, status, body)
    return ClientFailure(message, status, body)


class HttpTransport:
    """Shared, thread-safe JSON transport for one remote host."""

    def __init__(
        self,
        base_url: str,
        timeouts: Optional[TimeoutConfig] = None,
        pool_size: int = 10,
        idle_timeout: float = 90.0,
        headers: Optional[Dict[str, str]] = None,
        session_factory: Optional[Callable[[int], requests.Session]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if pool_size < 1:
            raise ValidationFailure(f"pool_size must be >= 1, got {pool_size}")
        self.base_url = normalize_base_url(base_url)
        self.timeouts = timeouts or get_timeout_config()
        self.pool_size = pool_size
        self.idle_timeout = idle_timeout
        self._headers = dict(headers or {})
        self._session_factory = session_factory or build_session
        self._clock = clock
        self._lock = threading.Lock()
        self._session: Optional[requests.Session] = None
        self._in_flight = 0
        self._last_used = clock()

    def _acquire_session(self) -> requests.Session:
        with self._lock:
            now = self._clock()
            if (
                self._session is not None
                and self._in_flight == 0
                and now - self._last_used > self.idle_timeout
            ):
                logger.debug("Recycling idle HTTP session for %s", self.base_url)
                self._session.close()
                self._session = None
            if self._session is None:
                self._session = self._session_factory(self.pool_size)
            self._in_flight += 1
            self._last_used = now
            return self._session

    def _release_session(self) -> None:
        with self._lock:
            self._in_flight -= 1
            self._last_used = self._clock()

    def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        what: Optional[str] = None,
    ) -> Any:
        """
        Perform one HTTP attempt and decode the JSON body.

        Returns:
            Decoded JSON, or None for an empty body.

        Raises:
            NetworkFailure, ServerFailure, ClientFailure, SerializationFailure.
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        label = what or f"{method} {path}"
        session = self._acquire_session()
        try:
            try:
                resp = session.request(
                    method,
                    url,
                    json=json,
                    params=params,
                    headers=self._headers,
                    timeout=self.timeouts.as_requests_timeout(),
                )
            except requests.Timeout as e:
                raise NetworkFailure(f"{label} timed out: {e}") from e
            except requests.ConnectionError as e:
                raise NetworkFailure(f"{label} connection failed: {e}") from e
            except requests.RequestException as e:
                raise NetworkFailure(f"{label} request failed: {e}") from e
            try:
                status = resp.status_code
                if status < 200 or status >= 300:
                    raise error_for_status(status, resp.text or "", label)
                if not resp.content:
                    return None
                try:
                    return resp.json()
                except ValueError as e:
                    raise SerializationFailure(f"{label} returned malformed JSON: {e}") from e
            finally:
                resp.close()
        finally:
            self._release_session()

    def close(self) -> None:
        with self._lock:
            if self._session is not None:
                self._session.close()
                self._session = None

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
