"""Authenticated request pipeline for the networked backend.

Every privileged call goes through :meth:`RequestPipeline.authenticated_request`:
the id token is refreshed proactively when it is about to expire, a 401 triggers
exactly one refresh and one reissue, and a second failure ends the session.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, Mapping, Optional

import httpx
import structlog

from therapynotes.config import ClientSettings
from therapynotes.errors import ApiError, SessionExpiredError
from therapynotes.observability import REQUEST_RETRIES_TOTAL
from therapynotes.tokens import TokenLifecycle

logger = structlog.get_logger(__name__)

TEST_ROLE_HEADER = "X-Test-Role"


@dataclass(frozen=True)
class RequestDescriptor:
    """One logical request; built per call and never stored."""

    method: str
    path: str
    body: Any = None
    params: Optional[Mapping[str, str]] = None
    requires_auth: bool = True
    headers: Mapping[str, str] = field(default_factory=dict)
    base_url: Optional[str] = None

    @property
    def requires_body(self) -> bool:
        return self.body is not None


class RequestPipeline:
    def __init__(
        self,
        client: httpx.AsyncClient,
        lifecycle: TokenLifecycle,
        settings: Callable[[], ClientSettings] = ClientSettings.from_env,
    ) -> None:
        self.client = client
        self.lifecycle = lifecycle
        self._settings = settings

    async def ensure_session(self) -> str:
        """Return a usable id token, refreshing first if needed.

        Raises :class:`SessionExpiredError` (after clearing credentials) when no
        usable token can be obtained; no request is attempted in that case.
        """

        token = self.lifecycle.current_token()
        if self.lifecycle.is_usable(token):
            return token  # type: ignore[return-value]
        logger.info("token_expiring", has_token=token is not None)
        if not await self.lifecycle.refresh():
            self.lifecycle.end_session("refresh_failed")
            raise SessionExpiredError()
        refreshed = self.lifecycle.current_token()
        if not refreshed:
            self.lifecycle.end_session("refresh_failed")
            raise SessionExpiredError()
        return refreshed

    def build_headers(self, descriptor: RequestDescriptor, token: Optional[str]) -> Dict[str, str]:
        settings = self._settings()
        headers: Dict[str, str] = {}
        if token is not None:
            headers["Authorization"] = f"Bearer {token}"
        if descriptor.requires_body:
            headers["Content-Type"] = "application/json"
        if descriptor.requires_auth and not settings.use_mock_api and settings.test_role:
            headers[TEST_ROLE_HEADER] = settings.test_role
        headers.update(descriptor.headers)
        return headers

    def _url(self, descriptor: RequestDescriptor) -> str:
        base = descriptor.base_url if descriptor.base_url is not None else self._settings().api_endpoint
        return f"{base.rstrip('/')}{descriptor.path}"

    def _build(self, descriptor: RequestDescriptor, token: Optional[str]) -> httpx.Request:
        return self.client.build_request(
            descriptor.method.upper(),
            self._url(descriptor),
            headers=self.build_headers(descriptor, token),
            params=dict(descriptor.params) if descriptor.params else None,
            json=descriptor.body if descriptor.requires_body else None,
        )

    async def send(self, descriptor: RequestDescriptor, token: Optional[str] = None) -> httpx.Response:
        """Issue exactly one transport call."""

        request = self._build(descriptor, token)
        logger.debug("request_sent", method=request.method, path=descriptor.path)
        try:
            response = await self.client.send(request)
        except httpx.HTTPError as exc:
            logger.error("request_transport_error", method=request.method, path=descriptor.path, error=str(exc))
            raise ApiError(f"API connection error: {exc}", 503) from exc
        logger.debug("response_received", path=descriptor.path, status=response.status_code)
        return response

    async def request(self, descriptor: RequestDescriptor) -> httpx.Response:
        if not descriptor.requires_auth:
            return await self.send(descriptor)
        return await self.authenticated_request(descriptor)

    async def authenticated_request(self, descriptor: RequestDescriptor) -> httpx.Response:
        token = await self.ensure_session()
        response = await self.send(descriptor, token)
        if response.status_code != 401:
            return response

        logger.info("request_unauthorized", method=descriptor.method, path=descriptor.path)
        await self._recover_or_end()
        retry = await self.send(descriptor, self.lifecycle.current_token())
        if retry.status_code == 401:
            REQUEST_RETRIES_TOTAL.labels(outcome="rejected").inc()
            self.lifecycle.end_session("retry_unauthorized")
            raise SessionExpiredError(status=401)
        REQUEST_RETRIES_TOTAL.labels(outcome="success").inc()
        return retry

    async def _recover_or_end(self) -> None:
        if await self.lifecycle.refresh():
            return
        REQUEST_RETRIES_TOTAL.labels(outcome="refresh_failed").inc()
        self.lifecycle.end_session("refresh_failed")
        raise SessionExpiredError(status=401)

    async def _open(self, descriptor: RequestDescriptor, token: Optional[str]) -> httpx.Response:
        request = self._build(descriptor, token)
        try:
            return await self.client.send(request, stream=True)
        except httpx.HTTPError as exc:
            logger.error("stream_transport_error", path=descriptor.path, error=str(exc))
            raise ApiError(f"API connection error: {exc}", 503) from exc

    @asynccontextmanager
    async def stream(self, descriptor: RequestDescriptor) -> AsyncIterator[httpx.Response]:
        """Open a streamed response with the same refresh-and-retry-once rules."""

        token = await self.ensure_session() if descriptor.requires_auth else None
        response = await self._open(descriptor, token)
        if response.status_code == 401 and descriptor.requires_auth:
            await response.aclose()
            logger.info("stream_unauthorized", path=descriptor.path)
            await self._recover_or_end()
            response = await self._open(descriptor, self.lifecycle.current_token())
            if response.status_code == 401:
                await response.aclose()
                REQUEST_RETRIES_TOTAL.labels(outcome="rejected").inc()
                self.lifecycle.end_session("retry_unauthorized")
                raise SessionExpiredError(status=401)
            REQUEST_RETRIES_TOTAL.labels(outcome="success").inc()
        try:
            yield response
        finally:
            await response.aclose()


__all__ = ["RequestDescriptor", "RequestPipeline", "TEST_ROLE_HEADER"]
