"""
Shared HTTP plumbing for source adapters.

:class:`TracedHTTPClient` is a thin ``httpx`` wrapper that routes every request
through the :class:`~activity_digest.core.resilience.OperationExecutor`, maps
HTTP failures onto the error taxonomy, emits paired trace lines when tracing is
enabled, and spaces sequential page requests to respect a source's
requests-per-second ceiling.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from logging import LoggerAdapter
from typing import Any, Awaitable, Callable, Dict, List, Mapping, MutableMapping, Optional
from urllib.parse import urljoin, urlsplit

import anyio
import httpx

from ..core.errors import ApiError, AuthError, DataProcessingError, NetworkError, OperationTimeoutError, RateLimitError, parse_retry_after
from ..core.logging import get_logger
from ..core.resilience import API_CIRCUIT_BREAKER, STANDARD, CircuitBreakerConfig, OperationExecutor, RetryPolicy
from .auth import TokenProvider

DEFAULT_TIMEOUT = 15.0
DEFAULT_PAGE_SIZE = 100
MAX_PAGES = 100
_ERROR_DETAIL_LIMIT = 500


@dataclass(slots=True)
class TracedHTTPClient:
    """
    Asynchronous HTTP client with retry, circuit breaking and trace logging.

    Parameters
    ----------
    service_name:
        Label used in operation names, errors and logs (e.g. ``GitLab``).
    base_url:
        Root URL for the upstream service.
    executor:
        Shared executor owning the circuit breakers.
    timeout:
        Transport-level timeout in seconds.
    default_headers:
        Headers attached to every request.
    retry_policy:
        Retry budget per request. Defaults to the ``standard`` preset.
    circuit_breaker:
        Breaker thresholds; ``None`` disables circuit breaking.
    trace:
        Emit ``sending request`` / ``status N (Mms)`` debug lines around each call.
    min_request_interval:
        Minimum seconds between consecutive requests issued by this client.
    token_provider:
        Source of the bearer token; resolved before every request so expiry and
        refresh take effect without rebuilding the client.
    transport:
        Optional ``httpx`` transport, mainly for tests.
    """

    service_name: str
    base_url: str
    executor: OperationExecutor
    timeout: float = DEFAULT_TIMEOUT
    default_headers: MutableMapping[str, str] = field(default_factory=dict)
    retry_policy: RetryPolicy = STANDARD
    circuit_breaker: Optional[CircuitBreakerConfig] = API_CIRCUIT_BREAKER
    trace: bool = False
    min_request_interval: float = 0.0
    token_provider: Optional[TokenProvider] = None
    transport: Optional[httpx.AsyncBaseTransport] = None
    sleep: Callable[[float], Awaitable[None]] = anyio.sleep
    logger: LoggerAdapter = field(init=False, repr=False)
    _last_request_at: Optional[float] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.logger = get_logger(
            f"{self.__class__.__module__}.{self.__class__.__name__}",
            extra={"source": self.service_name},
        )

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=dict(self.default_headers),
            follow_redirects=True,
            transport=self.transport,
        )

    def operation_name(self, method: str, url: str) -> str:
        """Breaker key: one per service, HTTP method and host."""

        host = urlsplit(urljoin(self.base_url, url)).hostname or "unknown"
        return f"{self.service_name}_{method.upper()}_{host}"

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json_body: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        if self.token_provider is not None:
            token = await self.token_provider.get_valid_token()
            headers = {**(headers or {}), "Authorization": token.authorization_header}

        async def _operation() -> httpx.Response:
            return await self._send(method, url, params=params, json_body=json_body, headers=headers)

        return await self.executor.execute_with_retry(
            _operation,
            self.operation_name(method, url),
            self.retry_policy,
            self.circuit_breaker,
        )

    async def _pace(self) -> None:
        if self.min_request_interval <= 0:
            return
        if self._last_request_at is not None:
            remaining = self.min_request_interval - (time.monotonic() - self._last_request_at)
            if remaining > 0:
                await self.sleep(remaining)
        self._last_request_at = time.monotonic()

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Mapping[str, Any]],
        json_body: Optional[Mapping[str, Any]],
        headers: Optional[Mapping[str, str]],
    ) -> httpx.Response:
        await self._pace()
        method = method.upper()
        started = time.perf_counter()
        if self.trace:
            self.logger.debug(f"{method} {url} - sending request", extra={"method": method, "url": url})
        try:
            async with self._build_client() as client:
                response = await client.request(method, url, params=params, json=json_body, headers=headers)
        except httpx.TimeoutException as exc:
            raise OperationTimeoutError(
                f"{self.service_name} request to {url} timed out after {self.timeout}s",
                service=self.service_name,
                timeout=self.timeout,
                context={"endpoint": url},
            ) from exc
        except httpx.HTTPError as exc:
            duration_ms = int((time.perf_counter() - started) * 1000)
            self.logger.error(
                f"{method} {url} - error after {duration_ms}ms: {exc}",
                extra={"method": method, "url": url, "duration_ms": duration_ms},
            )
            raise NetworkError(f"{self.service_name} network error: {exc}", service=self.service_name, endpoint=url) from exc

        duration_ms = int((time.perf_counter() - started) * 1000)
        if self.trace:
            self.logger.debug(
                f"{method} {url} - status {response.status_code} ({duration_ms}ms)",
                extra={"method": method, "url": url, "status_code": response.status_code, "duration_ms": duration_ms},
            )
        self._raise_for_status(response, url)
        return response

    def _raise_for_status(self, response: httpx.Response, url: str) -> None:
        if response.is_success:
            return
        status = response.status_code
        details = response.text[:_ERROR_DETAIL_LIMIT]
        message = f"{self.service_name} API request failed: {status} {response.reason_phrase}"
        self.logger.error(message, extra={"url": url, "status_code": status, "details": details})
        if status in (401, 403):
            raise AuthError(message, service=self.service_name, context={"endpoint": url, "status_code": status})
        if status == 429:
            raise RateLimitError(
                message,
                service=self.service_name,
                retry_after=parse_retry_after(response.headers.get("retry-after")),
                context={"endpoint": url},
            )
        raise ApiError(message, status, self.service_name, endpoint=url, context={"details": details})

    async def get_json(self, url: str, *, params: Optional[Mapping[str, Any]] = None) -> Any:
        response = await self.request("GET", url, params=params)
        try:
            return response.json()
        except ValueError as exc:
            raise DataProcessingError(
                f"Failed to decode JSON from {response.url}: {exc}",
                operation="decode-response",
                data_type="json",
            ) from exc

    async def get_paginated(
        self,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = MAX_PAGES,
    ) -> List[Any]:
        """
        Collect items from a ``page``/``per_page`` paginated list endpoint.

        Pages are requested one after another and stop at the first short page.
        """

        items: List[Any] = []
        for page in range(1, max_pages + 1):
            query: Dict[str, Any] = {**(params or {}), "page": page, "per_page": page_size}
            payload = await self.get_json(url, params=query)
            if not isinstance(payload, list):
                raise DataProcessingError(
                    f"Expected a list from {self.service_name} {url}, got {type(payload).__name__}.",
                    operation="paginate",
                    data_type="list",
                )
            items.extend(payload)
            if len(payload) < page_size:
                break
        else:
            self.logger.warning(f"Stopped paginating {url} after {max_pages} pages", extra={"url": url})
        return items
