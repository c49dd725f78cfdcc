"""
Resilient fetch client for rate-limited upstream providers.

This service provides:
- Classification of upstream responses into typed failure kinds
- Bounded retry with a longer delay for rate limits than for server/network errors
- Credential pools that rotate on authorization failures, serialised by a lock
- Per-client request statistics
"""

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

import aiohttp
import structlog

from ..core.config import settings
from ..core.exceptions import (
    AuthExhaustedError,
    FailureKind,
    NotFoundError,
    RetriesExhaustedError,
    UpstreamNetworkError,
    UpstreamServerError,
)


logger = structlog.get_logger(__name__)


@dataclass
class FetchRequest:
    """A single upstream call, before credentials are attached."""
    url: str
    method: str = "GET"
    params: Dict[str, Any] = field(default_factory=dict)
    json: Optional[Any] = None
    headers: Dict[str, str] = field(default_factory=dict)
    # Where the pool's current key goes: a header name, a query parameter, or both unset
    auth_header: Optional[str] = None
    auth_param: Optional[str] = None
    # Providers that report failures inside a 200 body (JSON-RPC errors,
    # Etherscan-style status fields) map them to a failure kind here
    classify: Optional[Callable[["FetchResponse"], Optional[FailureKind]]] = None


@dataclass
class FetchResponse:
    status: int
    data: Any = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class HttpTransport(Protocol):
    """Sends one prepared request. Raises UpstreamNetworkError when unreachable."""

    async def send(self, request: FetchRequest, timeout: float) -> FetchResponse:
        ...

    async def close(self) -> None:
        ...


class AiohttpTransport:
    """Default transport backed by a shared aiohttp session."""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def send(self, request: FetchRequest, timeout: float) -> FetchResponse:
        session = await self._get_session()
        try:
            async with session.request(
                request.method,
                request.url,
                params=request.params or None,
                json=request.json,
                headers=request.headers or None,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as response:
                if response.content_type == "application/json":
                    data = await response.json()
                else:
                    data = await response.text()
                return FetchResponse(
                    status=response.status,
                    data=data,
                    headers=dict(response.headers),
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamNetworkError(
                f"{request.method} {request.url} failed: {e.__class__.__name__}",
                {"error": str(e)}
            )

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()


class ProviderKeyPool:
    """
    Credential pool for one provider.

    The index is shared by every request against the provider and survives
    across runs, since it reflects real quota state upstream.
    """

    def __init__(self, provider: str, keys: List[str]):
        if not keys:
            raise ValueError(f"Key pool for {provider} needs at least one key")
        self.provider = provider
        self.keys = list(keys)
        self.current_index = 0
        self.exhausted_all = False
        self.rotations = 0
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self.keys)

    @property
    def current_key(self) -> str:
        return self.keys[self.current_index]

    async def rotate(self, observed_index: int, start_index: int) -> None:
        """
        Move past a rejected key.

        A no-op when another caller already rotated away from observed_index.
        Raises AuthExhaustedError when rotation wraps back to start_index.
        """
        async with self._lock:
            if self.current_index != observed_index:
                return

            self.current_index = (observed_index + 1) % len(self.keys)
            self.rotations += 1

            logger.warning(
                "API key rejected, rotating",
                provider=self.provider,
                from_index=observed_index,
                to_index=self.current_index,
                pool_size=len(self.keys)
            )

            if self.current_index == start_index:
                self.exhausted_all = True
                raise AuthExhaustedError(self.provider, len(self.keys))

    def stats(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "pool_size": len(self.keys),
            "current_index": self.current_index,
            "rotations": self.rotations,
            "exhausted_all": self.exhausted_all,
        }


@dataclass
class FetchStats:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    retries: int = 0
    last_request_time: Optional[datetime] = None
    errors_by_kind: Dict[str, int] = field(default_factory=dict)

    def record_error(self, kind: FailureKind) -> None:
        self.errors_by_kind[kind.value] = self.errors_by_kind.get(kind.value, 0) + 1

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests


class FetchClient:
    """
    Wraps one upstream provider endpoint with retry and key rotation.

    NOT_FOUND is raised immediately. RATE_LIMITED, SERVER_ERROR and
    NETWORK_ERROR are retried up to max_attempts, then surface as
    RetriesExhaustedError. Authorization failures rotate the key pool
    without consuming an attempt.
    """

    def __init__(
        self,
        name: str,
        transport: Optional[HttpTransport] = None,
        key_pool: Optional[ProviderKeyPool] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        rate_limit_multiplier: Optional[float] = None,
        timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.name = name
        self.logger = logger.bind(service="fetch_client", provider=name)
        self.transport = transport or AiohttpTransport()
        self.key_pool = key_pool
        self.max_attempts = max_attempts or settings.provider_max_attempts
        self.retry_delay = settings.provider_retry_delay if retry_delay is None else retry_delay
        self.rate_limit_multiplier = rate_limit_multiplier or settings.provider_rate_limit_multiplier
        self.timeout = timeout or settings.provider_timeout
        self._sleep = sleep
        self.stats = FetchStats()

    def _prepare(self, request: FetchRequest, key: Optional[str]) -> FetchRequest:
        if key is None:
            return request
        headers = dict(request.headers)
        params = dict(request.params)
        if request.auth_header:
            headers[request.auth_header] = key
        if request.auth_param:
            params[request.auth_param] = key
        return replace(request, headers=headers, params=params)

    def _retry_delay_for(self, kind: FailureKind) -> float:
        if kind == FailureKind.RATE_LIMITED:
            return self.retry_delay * self.rate_limit_multiplier
        return self.retry_delay

    async def request(self, request: FetchRequest) -> FetchResponse:
        """
        Perform a request, retrying transient failures.

        Raises:
            NotFoundError: upstream has no data (never retried)
            AuthExhaustedError: every key in the pool was rejected
            RetriesExhaustedError: a retryable failure outlived the budget
            UpstreamServerError: a non-retryable client error (4xx)
        """
        pool = self.key_pool
        start_index = pool.current_index if pool else 0
        auth_failures = 0
        attempts = 0
        last_kind = FailureKind.SERVER_ERROR
        last_error = ""

        while attempts < self.max_attempts:
            observed_index = pool.current_index if pool else 0
            prepared = self._prepare(request, pool.keys[observed_index] if pool else None)

            self.stats.total_requests += 1
            self.stats.last_request_time = datetime.now(timezone.utc)

            try:
                response = await self.transport.send(prepared, self.timeout)
            except UpstreamNetworkError as e:
                self.stats.failed_requests += 1
                last_kind = FailureKind.NETWORK_ERROR
                last_error = e.message
            else:
                status = response.status
                body_kind = request.classify(response) if request.classify and response.ok else None

                if response.ok and body_kind is None:
                    self.stats.successful_requests += 1
                    return response

                self.stats.failed_requests += 1

                if status == 404 or body_kind == FailureKind.NOT_FOUND:
                    self.stats.record_error(FailureKind.NOT_FOUND)
                    raise NotFoundError(
                        f"{self.name}: not found",
                        {"url": request.url, "status": status}
                    )

                if status in (401, 403) or body_kind == FailureKind.AUTH_EXHAUSTED:
                    if pool is None:
                        self.stats.record_error(FailureKind.AUTH_EXHAUSTED)
                        raise AuthExhaustedError(self.name, 0)
                    auth_failures += 1
                    try:
                        await pool.rotate(observed_index, start_index)
                    except AuthExhaustedError:
                        self.stats.record_error(FailureKind.AUTH_EXHAUSTED)
                        raise
                    # Concurrent rotations may skip our wrap check; every key rejected us anyway
                    if auth_failures >= len(pool):
                        pool.exhausted_all = True
                        self.stats.record_error(FailureKind.AUTH_EXHAUSTED)
                        raise AuthExhaustedError(pool.provider, len(pool))
                    continue

                if body_kind is not None:
                    last_kind = body_kind
                elif status == 429:
                    last_kind = FailureKind.RATE_LIMITED
                elif status >= 500:
                    last_kind = FailureKind.SERVER_ERROR
                else:
                    self.stats.record_error(FailureKind.SERVER_ERROR)
                    raise UpstreamServerError(
                        f"{self.name}: unexpected status {status}",
                        {"url": request.url, "status": status, "body": str(response.data)[:200]}
                    )
                last_error = f"HTTP {status}"

            self.stats.record_error(last_kind)
            attempts += 1

            if attempts >= self.max_attempts:
                break

            delay = self._retry_delay_for(last_kind)
            self.stats.retries += 1
            self.logger.debug(
                "Retrying request",
                kind=last_kind.value,
                attempt=attempts,
                max_attempts=self.max_attempts,
                delay=delay
            )
            await self._sleep(delay)

        self.logger.warning(
            "Retry budget exhausted",
            kind=last_kind.value,
            attempts=attempts,
            error=last_error
        )
        raise RetriesExhaustedError(self.name, last_kind, attempts, last_error)

    def get_stats(self) -> Dict[str, Any]:
        stats = {
            "provider": self.name,
            "total_requests": self.stats.total_requests,
            "successful_requests": self.stats.successful_requests,
            "failed_requests": self.stats.failed_requests,
            "retries": self.stats.retries,
            "success_rate": round(self.stats.success_rate, 3),
            "errors_by_kind": dict(self.stats.errors_by_kind),
        }
        if self.key_pool:
            stats["key_pool"] = self.key_pool.stats()
        return stats

    async def close(self) -> None:
        await self.transport.close()
