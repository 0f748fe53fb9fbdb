"""Application-facing entry point for the data-access layer.

:class:`TherapyNotesClient` owns the credential store, the token lifecycle and
the request pipeline, and routes each operation to the backend selected by the
current configuration.

Typical use::

    async with TherapyNotesClient.from_env() as api:
        challenge = await api.login(email, password)
        await api.complete_mfa(challenge["session"], code, email)
        notes = await api.documents.list(client_id, "progress_note")
"""

from __future__ import annotations

import asyncio
import uuid
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Union

import httpx
import structlog

from therapynotes.backends.base import Backend, Payload
from therapynotes.backends.networked import NetworkedBackend
from therapynotes.backends.simulated import SimulatedBackend
from therapynotes.cache import CLIENTS_KEY, CLIENTS_TTL, SETTINGS_TTL, ResponseCache, settings_key
from therapynotes.config import ClientSettings, validate_config
from therapynotes.documents import DocumentAccessor
from therapynotes.errors import ApiError
from therapynotes.models import NarrativeRequest, parse_model
from therapynotes.observability import USAGE_REPORTS_FAILED_TOTAL, configure_logging
from therapynotes.pipeline import RequestPipeline
from therapynotes.selector import BackendSelector
from therapynotes.streaming import (
    ChunkCallback,
    CompleteCallback,
    ErrorCallback,
    NarrativeStream,
    StreamHandle,
    deliver_to_callbacks,
)
from therapynotes.token_store import TokenStore
from therapynotes.tokens import SessionListener, TokenLifecycle

logger = structlog.get_logger(__name__)

DEFAULT_PREFETCH_TYPES = ("dashboard", "interventions")
PREFETCH_TIMEOUT_SECONDS = 2.0
HTTP_TIMEOUT = httpx.Timeout(30.0, connect=10.0)

NarrativeOptions = Union[NarrativeRequest, Mapping[str, Any], None]


class TherapyNotesClient:
    def __init__(
        self,
        *,
        store: Optional[TokenStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        settings: Callable[[], ClientSettings] = ClientSettings.from_env,
        simulated_state: Optional[Dict[str, Any]] = None,
    ) -> None:
        validate_config(settings())
        self._settings = settings
        self._owns_http = http_client is None
        self.http = http_client or httpx.AsyncClient(timeout=HTTP_TIMEOUT)
        self.store = store or TokenStore()
        self.cache = ResponseCache()
        self._cache_mode: Optional[str] = None
        self._background: Set["asyncio.Task[Any]"] = set()

        self.lifecycle = TokenLifecycle(self.store, self._exchange_refresh_token, mode=self.mode)
        self.pipeline = RequestPipeline(self.http, self.lifecycle, settings)
        self.selector = BackendSelector(
            SimulatedBackend(self.pipeline.ensure_session, settings, state=simulated_state),
            NetworkedBackend(self.pipeline, settings),
            settings,
        )
        self.documents = DocumentAccessor(self.selector.backend)
        self.lifecycle.add_session_listener(self._on_session_ended)

    @classmethod
    def from_env(cls, **kwargs: Any) -> "TherapyNotesClient":
        """Configure logging from the environment and build a client."""

        configure_logging(ClientSettings.from_env())
        return cls(**kwargs)

    async def __aenter__(self) -> "TherapyNotesClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        if self._owns_http:
            await self.http.aclose()

    # -- plumbing -----------------------------------------------------------

    def mode(self) -> str:
        return self.selector.mode()

    def _backend(self) -> Backend:
        backend = self.selector.backend()
        if self._cache_mode != backend.mode:
            # Cached payloads belong to the backend that produced them.
            self.cache.clear()
            self._cache_mode = backend.mode
        return backend

    async def _exchange_refresh_token(self, refresh_token: str) -> Optional[Payload]:
        return await self.selector.backend().exchange_refresh_token(refresh_token)

    def _on_session_ended(self, reason: str) -> None:
        self.cache.clear()

    def _spawn(self, coro: Awaitable[Any], label: str) -> "asyncio.Task[Any]":
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(partial(self._background_done, label))
        return task

    def _background_done(self, label: str, task: "asyncio.Task[Any]") -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("background_task_failed", task=label, error=str(exc))

    # -- session ------------------------------------------------------------

    def add_session_listener(self, listener: SessionListener) -> None:
        self.lifecycle.add_session_listener(listener)

    def is_logged_in(self) -> bool:
        return self.store.is_logged_in()

    def current_user(self) -> Optional[Dict[str, Any]]:
        return self.store.profile()

    async def login(self, email: str, password: str) -> Payload:
        result = await self._backend().login(email, password)
        logger.info(
            "login_challenge",
            requires_mfa=bool(result.get("requiresMFA")),
            requires_mfa_setup=bool(result.get("requiresMFASetup")),
        )
        return result

    async def set_new_password(self, session: str, email: str, new_password: str) -> Payload:
        return await self._backend().set_new_password(session, email, new_password)

    async def complete_mfa(self, session: str, code: str, email: str, *, keep_signed_in: bool = True) -> Payload:
        result = await self._backend().complete_mfa(session, code, email)
        self.lifecycle.begin_session(result, keep_signed_in=keep_signed_in)
        return result

    async def setup_mfa(self, session: Optional[str] = None, email: Optional[str] = None) -> Payload:
        return await self._backend().setup_mfa(session, email)

    async def verify_mfa_setup(
        self,
        code: str,
        session: Optional[str] = None,
        email: Optional[str] = None,
        *,
        keep_signed_in: bool = True,
    ) -> Payload:
        result = await self._backend().verify_mfa_setup(code, session, email)
        if result.get("token"):
            self.lifecycle.begin_session(result, keep_signed_in=keep_signed_in)
        return result

    async def get_mfa_status(self) -> Payload:
        return await self._backend().get_mfa_status()

    async def update_profile(self, profile: Mapping[str, Any]) -> Payload:
        result = await self._backend().update_profile(profile)
        user = result.get("user")
        if isinstance(user, Mapping):
            self.store.set_profile(dict(user))
        return result

    async def logout(self) -> Payload:
        """Sign out; local credentials are cleared even if the service call fails."""

        try:
            return await self._backend().logout()
        except ApiError as exc:
            logger.warning("logout_request_failed", status=exc.status, error=exc.message)
            return {"success": False}
        finally:
            self.lifecycle.clear()
            self.cache.clear()

    async def prefetch_settings(
        self,
        types: Iterable[str] = DEFAULT_PREFETCH_TYPES,
        timeout: float = PREFETCH_TIMEOUT_SECONDS,
    ) -> None:
        """Warm the settings cache, waiting at most *timeout* seconds.

        Fetches still running at the deadline continue in the background.
        """

        tasks = [self._spawn(self.get_settings(kind), f"prefetch:{kind}") for kind in types]
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.info("settings_prefetch_timed_out", pending=len(pending), timeout=timeout)

    # -- clients ------------------------------------------------------------

    async def list_clients(self) -> List[Payload]:
        backend = self._backend()
        cached = self.cache.get(CLIENTS_KEY)
        if cached is not None:
            return cached
        clients = await backend.list_clients()
        self.cache.set(CLIENTS_KEY, clients, CLIENTS_TTL)
        return clients

    async def list_archived_clients(self) -> List[Payload]:
        return await self._backend().list_clients(archived=True)

    async def archived_count(self) -> int:
        return len(await self.list_archived_clients())

    async def get_client(self, client_id: str) -> Payload:
        return await self._backend().get_client(client_id)

    async def create_client(self, data: Mapping[str, Any], id: Optional[str] = None) -> Payload:
        """Create a client; reusing an existing *id* raises ``ConflictError``."""

        client = await self._backend().create_client(data, id or str(uuid.uuid4()))
        self.cache.invalidate(CLIENTS_KEY)
        return client

    async def update_client(self, client_id: str, updates: Mapping[str, Any]) -> Payload:
        client = await self._backend().update_client(client_id, updates)
        self.cache.invalidate(CLIENTS_KEY)
        return client

    async def archive_client(self, client_id: str) -> Payload:
        client = await self._backend().archive_client(client_id)
        self.cache.invalidate(CLIENTS_KEY)
        return client

    async def restore_client(self, client_id: str) -> Payload:
        client = await self._backend().restore_client(client_id)
        self.cache.invalidate(CLIENTS_KEY)
        return client

    async def delete_client(self, client_id: str) -> Payload:
        result = await self._backend().delete_client(client_id)
        self.cache.invalidate(CLIENTS_KEY)
        return result

    # -- settings and lexicon -----------------------------------------------

    async def get_settings(self, settings_type: str) -> Optional[Payload]:
        backend = self._backend()
        key = settings_key(settings_type)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        data = await backend.get_settings(settings_type)
        if data is not None:
            self.cache.set(key, data, SETTINGS_TTL)
        return data

    async def save_settings(self, settings_type: str, settings: Mapping[str, Any]) -> Payload:
        result = await self._backend().save_settings(settings_type, settings)
        self.cache.invalidate(settings_key(settings_type))
        return result

    async def get_lexicon(self) -> Optional[Payload]:
        return await self._backend().get_lexicon()

    async def save_lexicon(self, lexicon: Mapping[str, Any]) -> Payload:
        return await self._backend().save_lexicon(lexicon)

    async def lexicon_versions(self) -> Payload:
        return await self._backend().lexicon_versions()

    async def rollback_lexicon(self, version: int) -> Payload:
        return await self._backend().rollback_lexicon(version)

    # -- intervention usage -------------------------------------------------

    async def record_intervention_usage(self, intervention_ids: Sequence[str], client_id: str) -> Payload:
        """Record usage without ever raising; failures yield ``{"success": False}``."""

        try:
            return await self._backend().record_intervention_usage(intervention_ids, client_id)
        except Exception as exc:
            USAGE_REPORTS_FAILED_TOTAL.inc()
            logger.warning("intervention_usage_failed", client_id=client_id, error=str(exc))
            return {"success": False}

    def report_intervention_usage(self, intervention_ids: Sequence[str], client_id: str) -> "asyncio.Task[Any]":
        """Detached variant of :meth:`record_intervention_usage`; the caller never joins it."""

        return self._spawn(
            self.record_intervention_usage(list(intervention_ids), client_id), "intervention_usage"
        )

    async def get_intervention_usage(self, client_id: Optional[str] = None) -> Dict[str, int]:
        return await self._backend().get_intervention_usage(client_id)

    # -- narrative ----------------------------------------------------------

    @staticmethod
    def _narrative_request(prompt: str, options: NarrativeOptions, overrides: Mapping[str, Any]) -> NarrativeRequest:
        if isinstance(options, NarrativeRequest):
            base: Dict[str, Any] = options.model_dump(exclude_none=True)
        else:
            base = dict(options or {})
        return parse_model(NarrativeRequest, {**base, **overrides, "prompt": prompt})

    async def generate_narrative(self, prompt: str, options: NarrativeOptions = None, **overrides: Any) -> Payload:
        request = self._narrative_request(prompt, options, overrides)
        return await self.selector.narrative_backend().generate_narrative(request)

    def stream_narrative(self, prompt: str, options: NarrativeOptions = None, **overrides: Any) -> NarrativeStream:
        """Start streaming a narrative; must be called from a running event loop.

        The returned stream is also the cancellation handle.
        """

        request = self._narrative_request(prompt, options, overrides)
        backend = self.selector.narrative_backend()
        logger.info("stream_started", mode=backend.mode, prompt_chars=len(request.prompt))
        return NarrativeStream(backend.stream_narrative(request), mode=backend.mode)

    def stream_narrative_callbacks(
        self,
        prompt: str,
        options: NarrativeOptions,
        on_chunk: ChunkCallback,
        on_complete: CompleteCallback,
        on_error: ErrorCallback,
    ) -> StreamHandle:
        return deliver_to_callbacks(self.stream_narrative(prompt, options), on_chunk, on_complete, on_error)


__all__ = ["DEFAULT_PREFETCH_TYPES", "TherapyNotesClient"]
