"""Backend that talks to the documentation service over HTTP.

Privileged calls go through :class:`~therapynotes.pipeline.RequestPipeline`;
pre-authentication calls (login, MFA challenge, refresh) are sent without a
bearer token. Each operation decides which non-success statuses are expected:
a 404 on a lookup means "absent", a 404 on a mutation is a failure.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Sequence

import httpx
import structlog

from therapynotes.backends.base import Backend, Payload
from therapynotes.config import ClientSettings
from therapynotes.errors import ApiError, ConflictError, NotFoundError, error_message
from therapynotes.models import DocumentCreate, DocumentUpdate, NarrativeRequest
from therapynotes.pipeline import RequestDescriptor, RequestPipeline
from therapynotes.streaming import TERMINAL_EVENTS, SSEDecoder, StreamEvent, StreamFailed
from therapynotes.token_store import ACCESS_TOKEN

logger = structlog.get_logger(__name__)

ACCESS_TOKEN_HEADER = "X-Access-Token"


def _json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {}


def _raise_for(response: httpx.Response, fallback: str) -> None:
    """Raise the error class matching a non-success *response*."""

    if response.is_success:
        return
    status = response.status_code
    message = error_message(_json(response), fallback)
    logger.warning("request_failed", status=status, message=message)
    if status == 404:
        raise NotFoundError(message)
    if status == 409:
        raise ConflictError(message)
    raise ApiError(message, status)


def _document_list(payload: Any) -> List[Payload]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        return list(payload.get("documents") or [])
    return []


class NetworkedBackend(Backend):
    mode = "networked"

    def __init__(
        self,
        pipeline: RequestPipeline,
        settings: Callable[[], ClientSettings] = ClientSettings.from_env,
    ) -> None:
        self.pipeline = pipeline
        self._settings = settings

    async def _call(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return await self.pipeline.request(RequestDescriptor(method, path, **kwargs))

    async def _fetch(self, method: str, path: str, fallback: str, **kwargs: Any) -> Any:
        response = await self._call(method, path, **kwargs)
        _raise_for(response, fallback)
        return _json(response)

    async def _lookup(self, path: str, fallback: str, absent: Any, **kwargs: Any) -> Any:
        """GET where a 404 is an expected outcome and maps to *absent*."""

        response = await self._call("GET", path, **kwargs)
        if response.status_code == 404:
            return absent
        _raise_for(response, fallback)
        return _json(response)

    # -- auth ---------------------------------------------------------------

    async def login(self, email: str, password: str) -> Payload:
        return await self._fetch(
            "POST", "/auth/login", "Authentication failed",
            body={"email": email, "password": password}, requires_auth=False,
        )

    async def set_new_password(self, session: str, email: str, new_password: str) -> Payload:
        return await self._fetch(
            "POST", "/auth/new-password", "Failed to set new password",
            body={"session": session, "email": email, "newPassword": new_password}, requires_auth=False,
        )

    async def complete_mfa(self, session: str, code: str, email: str) -> Payload:
        return await self._fetch(
            "POST", "/auth/mfa", "MFA verification failed",
            body={"session": session, "code": code, "email": email}, requires_auth=False,
        )

    async def setup_mfa(self, session: Optional[str] = None, email: Optional[str] = None) -> Payload:
        if session and email:
            return await self._fetch(
                "POST", "/auth/mfa/setup", "Failed to initiate MFA setup",
                body={"session": session, "email": email}, requires_auth=False,
            )
        return await self._fetch("POST", "/auth/mfa/setup", "Failed to initiate MFA setup", body={})

    async def verify_mfa_setup(
        self, code: str, session: Optional[str] = None, email: Optional[str] = None
    ) -> Payload:
        if session and email:
            return await self._fetch(
                "POST", "/auth/mfa/verify-setup", "MFA verification failed",
                body={"code": code, "session": session, "email": email}, requires_auth=False,
            )
        return await self._fetch("POST", "/auth/mfa/verify-setup", "MFA verification failed", body={"code": code})

    async def get_mfa_status(self) -> Payload:
        return await self._fetch("GET", "/auth/mfa/status", "Failed to get MFA status")

    async def update_profile(self, profile: Mapping[str, Any]) -> Payload:
        headers: Dict[str, str] = {}
        access_token = self.pipeline.lifecycle.store.get(ACCESS_TOKEN)
        if access_token:
            headers[ACCESS_TOKEN_HEADER] = access_token
        return await self._fetch(
            "PATCH", "/auth/profile", "Failed to update profile", body=dict(profile), headers=headers
        )

    async def logout(self) -> Payload:
        headers: Dict[str, str] = {}
        token = self.pipeline.lifecycle.current_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return await self._fetch("POST", "/auth/logout", "Logout failed", requires_auth=False, headers=headers)

    async def exchange_refresh_token(self, refresh_token: str) -> Optional[Payload]:
        response = await self._call(
            "POST", "/auth/refresh", body={"refreshToken": refresh_token}, requires_auth=False
        )
        if not response.is_success:
            logger.error("token_refresh_http_error", status=response.status_code)
            return None
        payload = _json(response)
        return payload if isinstance(payload, dict) else None

    # -- clients ------------------------------------------------------------

    async def list_clients(self, archived: bool = False) -> List[Payload]:
        params = {"archived": "true"} if archived else None
        fallback = "Failed to fetch archived clients" if archived else "Failed to fetch clients"
        return await self._fetch("GET", "/clients", fallback, params=params)

    async def get_client(self, client_id: str) -> Payload:
        return await self._fetch("GET", f"/clients/{client_id}", "Client not found")

    async def create_client(self, data: Mapping[str, Any], client_id: str) -> Payload:
        return await self._fetch(
            "POST", "/clients", "Failed to create client", body={**dict(data), "id": client_id}
        )

    async def update_client(self, client_id: str, updates: Mapping[str, Any]) -> Payload:
        return await self._fetch("PATCH", f"/clients/{client_id}", "Failed to update client", body=dict(updates))

    async def archive_client(self, client_id: str) -> Payload:
        return await self._fetch("PATCH", f"/clients/{client_id}/archive", "Failed to archive client")

    async def restore_client(self, client_id: str) -> Payload:
        return await self._fetch("PATCH", f"/clients/{client_id}/restore", "Failed to restore client")

    async def delete_client(self, client_id: str) -> Payload:
        return await self._fetch("DELETE", f"/clients/{client_id}", "Failed to delete client")

    # -- documents ----------------------------------------------------------

    async def list_documents(
        self, client_id: str, document_type: Optional[str] = None, status: Optional[str] = None
    ) -> List[Payload]:
        params: Dict[str, str] = {}
        if document_type:
            params["type"] = document_type
        if status:
            params["status"] = status
        payload = await self._lookup(
            f"/clients/{client_id}/documents", "Failed to fetch documents", [], params=params or None
        )
        return _document_list(payload)

    async def get_document(self, client_id: str, document_id: str) -> Optional[Payload]:
        return await self._lookup(
            f"/clients/{client_id}/documents/{document_id}", "Failed to fetch document", None
        )

    async def create_document(self, client_id: str, document: DocumentCreate) -> Payload:
        return await self._fetch(
            "POST", f"/clients/{client_id}/documents", "Failed to create document", body=document.to_wire()
        )

    async def update_document(self, client_id: str, document_id: str, update: DocumentUpdate) -> Payload:
        return await self._fetch(
            "PATCH", f"/clients/{client_id}/documents/{document_id}", "Document not found", body=update.to_wire()
        )

    async def delete_document(self, client_id: str, document_id: str) -> Payload:
        return await self._fetch("DELETE", f"/clients/{client_id}/documents/{document_id}", "Document not found")

    # -- settings, lexicon, usage -------------------------------------------

    async def get_settings(self, settings_type: str) -> Optional[Payload]:
        return await self._lookup(f"/settings/{settings_type}", "Failed to fetch settings", None)

    async def save_settings(self, settings_type: str, settings: Mapping[str, Any]) -> Payload:
        return await self._fetch(
            "PUT", f"/settings/{settings_type}", "Failed to save settings", body={"settings": dict(settings)}
        )

    async def get_lexicon(self) -> Optional[Payload]:
        return await self._lookup("/config/lexicon", "Failed to fetch lexicon", None)

    async def save_lexicon(self, lexicon: Mapping[str, Any]) -> Payload:
        return await self._fetch("PUT", "/config/lexicon", "Failed to save lexicon", body=dict(lexicon))

    async def lexicon_versions(self) -> Payload:
        return await self._fetch("GET", "/config/lexicon/versions", "Failed to fetch lexicon versions")

    async def rollback_lexicon(self, version: int) -> Payload:
        return await self._fetch(
            "POST", "/config/lexicon/rollback", "Failed to rollback lexicon", body={"version": version}
        )

    async def record_intervention_usage(self, intervention_ids: Sequence[str], client_id: str) -> Payload:
        return await self._fetch(
            "POST", "/settings/intervention-usage", "Failed to record intervention usage",
            body={"interventionIds": list(intervention_ids), "clientId": client_id},
        )

    async def get_intervention_usage(self, client_id: Optional[str] = None) -> Dict[str, int]:
        params = {"clientId": client_id} if client_id else None
        return await self._lookup(
            "/settings/intervention-usage", "Failed to fetch intervention usage", {}, params=params
        )

    # -- narrative ----------------------------------------------------------

    def _narrative_descriptor(self, request: NarrativeRequest, *, streaming: bool) -> RequestDescriptor:
        settings = self._settings()
        if settings.hybrid_ai:
            return RequestDescriptor(
                "POST", "", body=request.to_wire(), requires_auth=False, base_url=settings.demo_ai_endpoint
            )
        base_url = settings.stream_endpoint if streaming else None
        return RequestDescriptor("POST", "/ai/narrative", body=request.to_wire(), base_url=base_url)

    async def generate_narrative(self, request: NarrativeRequest) -> Payload:
        response = await self.pipeline.request(self._narrative_descriptor(request, streaming=False))
        if not response.is_success:
            raise ApiError(error_message(_json(response), "Failed to generate narrative"), response.status_code)
        result = _json(response)
        return {**result, "prefill": request.prefill or ""}

    def stream_narrative(self, request: NarrativeRequest) -> AsyncIterator[StreamEvent]:
        return self._stream(request)

    async def _stream(self, request: NarrativeRequest) -> AsyncIterator[StreamEvent]:
        descriptor = self._narrative_descriptor(request, streaming=True)
        async with self.pipeline.stream(descriptor) as response:
            if not response.is_success:
                await response.aread()
                status = response.status_code
                logger.warning("stream_open_failed", status=status)
                yield StreamFailed(error_message(_json(response), f"Streaming failed: {status}"), status)
                return
            decoder = SSEDecoder()
            try:
                async for text in response.aiter_text():
                    for event in decoder.feed(text):
                        yield event
                        if isinstance(event, TERMINAL_EVENTS):
                            return
            except httpx.HTTPError as exc:
                logger.error("stream_read_error", error=str(exc))
                raise ApiError(f"API connection error: {exc}", 503) from exc
            for event in decoder.flush():
                yield event
                if isinstance(event, TERMINAL_EVENTS):
                    return


__all__ = ["ACCESS_TOKEN_HEADER", "NetworkedBackend"]
