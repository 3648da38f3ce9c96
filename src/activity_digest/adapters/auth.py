"""
Bearer-token providers consumed by adapters.

Interactive acquisition flows live outside this package; adapters only ask a
provider for a currently valid token and receive either a token or an
:class:`~activity_digest.core.errors.AuthError`.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Protocol

import anyio

from ..core.errors import AuthError

Clock = Callable[[], float]


@dataclass(frozen=True, slots=True)
class AccessToken:
    """Bearer credential. ``expires_at`` is a ``time.time()`` timestamp or ``None`` for no expiry."""

    value: str
    expires_at: Optional[float] = None

    def is_valid(self, *, now: float, skew: float = 0.0) -> bool:
        if not self.value:
            return False
        return self.expires_at is None or now + skew < self.expires_at

    @property
    def authorization_header(self) -> str:
        return f"Bearer {self.value}"


class TokenProvider(Protocol):
    service: str

    async def get_valid_token(self) -> AccessToken: ...


@dataclass(slots=True)
class StaticTokenProvider:
    """Provider returning a fixed token, e.g. a personal access token from configuration."""

    service: str
    token: AccessToken
    clock: Clock = time.time

    async def get_valid_token(self) -> AccessToken:
        if not self.token.is_valid(now=self.clock()):
            raise AuthError(f"{self.service} access token is missing or expired.", service=self.service)
        return self.token


@dataclass(slots=True)
class RefreshingTokenProvider:
    """
    Provider that caches a token from ``fetch`` and refreshes it shortly before expiry.

    ``fetch`` is any coroutine returning a fresh :class:`AccessToken`; failures
    other than :class:`AuthError` are wrapped into one.
    """

    service: str
    fetch: Callable[[], Awaitable[AccessToken]]
    refresh_skew: float = 60.0
    clock: Clock = time.time
    _cached: Optional[AccessToken] = field(default=None, init=False, repr=False)
    _lock: anyio.Lock = field(default_factory=anyio.Lock, init=False, repr=False)

    async def get_valid_token(self) -> AccessToken:
        async with self._lock:
            cached = self._cached
            if cached is not None and cached.is_valid(now=self.clock(), skew=self.refresh_skew):
                return cached
            try:
                token = await self.fetch()
            except AuthError:
                raise
            except Exception as exc:
                raise AuthError(f"Failed to obtain {self.service} access token: {exc}", service=self.service) from exc
            if not token.is_valid(now=self.clock()):
                raise AuthError(f"{self.service} token provider returned an expired token.", service=self.service)
            self._cached = token
            return token
