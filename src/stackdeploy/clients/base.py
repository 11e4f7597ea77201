from __future__ import annotations

from typing import Any

import httpx
import structlog
from circuitbreaker import circuit
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = structlog.get_logger()

RETRYABLE_STATUS = frozenset({408, 429, 500, 502, 503, 504})


class RetryableHTTPError(Exception):
    """Transient failure (throttling, 5xx, network); the request is repeated."""


class PermanentHTTPError(Exception):
    """The server rejected the request; repeating it will not help."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BaseHTTPClient:
    """
    Async HTTP client with retries and a per-instance circuit breaker.

    Once five transient failures in a row open the breaker, requests fail
    fast with ``circuitbreaker.CircuitBreakerError`` until it recovers.

    Paths are joined to ``base_url``; absolute URLs (pre-signed upload and
    log links handed out by the API) are requested as given.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        # One breaker per client, so a failing host never trips requests to another.
        self._guarded_send = circuit(
            failure_threshold=5,
            recovery_timeout=60,
            expected_exception=RetryableHTTPError,
            name=f"http:{self._base_url}",
        )(self._send_once)

    def _headers(self) -> dict[str, str]:
        """Override to provide custom headers."""
        return {"Content-Type": "application/json"}

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._base_url}{path}"

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send with up to ``max_retries`` attempts on transient failures."""
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(RetryableHTTPError),
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=2, min=1, max=30),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._guarded_send(method, self._url(path), **kwargs)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _send_once(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        req_headers = {**self._headers(), **(headers or {})}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                response = await client.request(
                    method, url, params=params, json=json, content=content, headers=req_headers
                )
        except httpx.TransportError as exc:
            logger.warning("http_network_error", method=method, url=url, error=str(exc))
            raise RetryableHTTPError(str(exc)) from exc

        if response.status_code in RETRYABLE_STATUS:
            logger.warning("http_retryable_error", status=response.status_code, method=method, url=url)
            raise RetryableHTTPError(f"HTTP {response.status_code}: {response.text}")
        if response.is_error:
            logger.error("http_permanent_error", status=response.status_code, method=method, url=url)
            raise PermanentHTTPError(
                f"HTTP {response.status_code} for {method} {url}: {response.text}",
                status_code=response.status_code,
            )
        return response

    async def get(self, path: str, *, params: dict[str, Any] | None = None) -> dict[str, Any]:
        response = await self._send("GET", path, params=params)
        return response.json() if response.content else {}

    async def get_text(self, path: str) -> str:
        """GET a plain-text body (e.g. a run log)."""
        return (await self._send("GET", path)).text

    async def post(self, path: str, *, json: dict[str, Any] | None = None) -> dict[str, Any]:
        response = await self._send("POST", path, json=json)
        return response.json() if response.content else {}

    async def put_bytes(self, path: str, content: bytes, *, headers: dict[str, str] | None = None) -> None:
        await self._send("PUT", path, content=content, headers=headers)
