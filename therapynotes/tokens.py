"""Bearer-token lifecycle: usability checks, refresh and session teardown."""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Mapping, Optional

import jwt
import structlog

from therapynotes.errors import ApiError
from therapynotes.observability import SESSIONS_ENDED_TOTAL, TOKEN_REFRESH_TOTAL
from therapynotes.time_utils import from_epoch_seconds
from therapynotes.token_store import ACCESS_TOKEN, ID_TOKEN, REFRESH_TOKEN, TokenStore

logger = structlog.get_logger(__name__)

DEFAULT_BUFFER_SECONDS = 300

# Exchanges a refresh credential for new tokens; ``None`` means the exchange failed.
RefreshExchange = Callable[[str], Awaitable[Optional[Mapping[str, Any]]]]
SessionListener = Callable[[str], None]

# Response keys mapped onto the slots they update.
_REFRESH_FIELDS = (("token", ID_TOKEN), ("accessToken", ACCESS_TOKEN), ("refreshToken", REFRESH_TOKEN))


def token_expiry(token: Optional[str]) -> Optional[datetime]:
    """Return the ``exp`` claim of *token*, or ``None`` if it cannot be read."""

    if not token or not isinstance(token, str):
        return None
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    return from_epoch_seconds(claims.get("exp"))


def is_usable(
    token: Optional[str],
    buffer_seconds: float = DEFAULT_BUFFER_SECONDS,
    *,
    now: Optional[float] = None,
) -> bool:
    """True only while more than *buffer_seconds* remain before expiry.

    Tokens that cannot be decoded, or that carry no expiry, are unusable.
    """

    expiry = token_expiry(token)
    if expiry is None:
        if token:
            logger.error("token_unparsable")
        return False
    current = time.time() if now is None else now
    return current < expiry.timestamp() - buffer_seconds


class TokenLifecycle:
    """Owns every mutation of the credential store after login."""

    def __init__(
        self,
        store: TokenStore,
        exchange: RefreshExchange,
        *,
        mode: Callable[[], str] = lambda: "unknown",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self._exchange = exchange
        self._mode = mode
        self._clock = clock
        self._listeners: List[SessionListener] = []
        self._inflight: Optional[asyncio.Future[bool]] = None

    def is_usable(self, token: Optional[str], buffer_seconds: float = DEFAULT_BUFFER_SECONDS) -> bool:
        return is_usable(token, buffer_seconds, now=self._clock())

    def current_token(self) -> Optional[str]:
        return self.store.get(ID_TOKEN)

    async def refresh(self) -> bool:
        """Exchange the refresh credential for new tokens.

        Concurrent callers share a single in-flight exchange.
        """

        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._refresh_once())
        return await asyncio.shield(self._inflight)

    async def _refresh_once(self) -> bool:
        mode = self._mode()
        refresh_token = self.store.get(REFRESH_TOKEN)
        if not refresh_token:
            logger.info("token_refresh_skipped", reason="no_refresh_token")
            TOKEN_REFRESH_TOTAL.labels(mode=mode, outcome="unavailable").inc()
            return False
        try:
            result = await self._exchange(refresh_token)
        except Exception as exc:
            logger.error("token_refresh_error", mode=mode, error=str(exc))
            TOKEN_REFRESH_TOTAL.labels(mode=mode, outcome="error").inc()
            return False
        if result is None:
            logger.error("token_refresh_rejected", mode=mode)
            TOKEN_REFRESH_TOTAL.labels(mode=mode, outcome="rejected").inc()
            return False

        for key, slot in _REFRESH_FIELDS:
            value = result.get(key)
            if value:
                self.store.set(slot, value)
        logger.info("token_refresh_succeeded", mode=mode)
        TOKEN_REFRESH_TOTAL.labels(mode=mode, outcome="success").inc()
        return True

    def begin_session(self, result: Mapping[str, Any], *, keep_signed_in: bool = True) -> None:
        """Persist the credentials returned by a completed login."""

        token = result.get("token")
        if not token:
            raise ApiError("Login result did not include an id token", 502)
        self.store.set(ID_TOKEN, token)
        if result.get("accessToken"):
            self.store.set(ACCESS_TOKEN, result["accessToken"])
        if result.get("refreshToken") and keep_signed_in:
            self.store.set(REFRESH_TOKEN, result["refreshToken"])
        else:
            self.store.remove(REFRESH_TOKEN)
        user = result.get("user")
        if isinstance(user, Mapping):
            self.store.set_profile(dict(user))
        logger.info("session_started", keep_signed_in=keep_signed_in)

    def add_session_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def clear(self) -> None:
        """Drop all credentials without signalling an expired session."""

        self.store.clear()

    def end_session(self, reason: str = "refresh_failed") -> None:
        """Clear every credential slot and tell listeners to re-authenticate."""

        self.store.clear()
        SESSIONS_ENDED_TOTAL.labels(reason=reason).inc()
        logger.warning("session_ended", reason=reason)
        for listener in list(self._listeners):
            try:
                listener(reason)
            except Exception as exc:
                logger.error("session_listener_failed", error=str(exc))


__all__ = [
    "DEFAULT_BUFFER_SECONDS",
    "RefreshExchange",
    "TokenLifecycle",
    "is_usable",
    "token_expiry",
]
