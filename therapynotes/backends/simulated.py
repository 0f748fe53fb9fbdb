"""In-memory backend used for demos, offline development and tests.

Every operation mutates a private copy of :mod:`therapynotes.fixtures` after an
artificial delay scaled by ``THERAPYNOTES_SIMULATED_LATENCY``. Tokens it issues
are real signed JWTs with a one hour lifetime so the token lifecycle treats
them exactly like the service's.
"""

from __future__ import annotations

import asyncio
import random
import re
import uuid
from datetime import timedelta
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence
from urllib.parse import quote

import jwt
import structlog

from therapynotes import fixtures
from therapynotes.backends.base import Backend, Payload
from therapynotes.config import ClientSettings
from therapynotes.errors import ApiError, ConflictError, NotFoundError
from therapynotes.models import (
    DISPLAY_NAMES,
    DocumentCreate,
    DocumentType,
    DocumentUpdate,
    NarrativeRequest,
    check_status,
)
from therapynotes.streaming import END_TURN, StreamCompleted, StreamEvent, TextChunk
from therapynotes.time_utils import iso_timestamp, today_date_string, utc_now

logger = structlog.get_logger(__name__)

SIMULATED_SIGNING_KEY = "therapynotes-simulated-backend-signing-key"
TOKEN_LIFETIME = timedelta(hours=1)

_WORD_BOUNDARY = re.compile(r"(\s+)")
_MFA_CODE = re.compile(r"^\d{6}$")

SessionGuard = Callable[[], Awaitable[Any]]


async def _no_guard() -> None:
    return None


class SimulatedBackend(Backend):
    mode = "simulated"

    def __init__(
        self,
        guard: SessionGuard = _no_guard,
        settings: Callable[[], ClientSettings] = ClientSettings.from_env,
        *,
        state: Optional[Dict[str, Any]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._guard = guard
        self._settings = settings
        self.state = state if state is not None else fixtures.seed_state()
        self._rng = rng or random.Random()

    async def _delay(self, milliseconds: float) -> None:
        await asyncio.sleep(milliseconds / 1000.0 * self._settings().simulated_latency)

    async def _privileged(self, milliseconds: float) -> None:
        await self._guard()
        await self._delay(milliseconds)

    # -- auth ---------------------------------------------------------------

    def _user(self) -> Payload:
        user = dict(self.state["user"])
        role = self._settings().mock_role
        if role:
            user["role"] = role
            user["groups"] = [role]
        return user

    def _issue_token(self, token_use: str) -> str:
        now = utc_now()
        user = self.state["user"]
        claims = {
            "sub": user["id"],
            "email": user["email"],
            "token_use": token_use,
            "iat": int(now.timestamp()),
            "exp": int((now + TOKEN_LIFETIME).timestamp()),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(claims, SIMULATED_SIGNING_KEY, algorithm="HS256")

    def _credentials(self) -> Payload:
        return {
            "token": self._issue_token("id"),
            "accessToken": self._issue_token("access"),
            "refreshToken": f"mock-refresh-token-{uuid.uuid4().hex}",
            "user": self._user(),
        }

    @staticmethod
    def _check_code(code: Optional[str], message: str) -> None:
        if not code or not _MFA_CODE.match(code):
            raise ApiError(message, 400)

    async def login(self, email: str, password: str) -> Payload:
        await self._delay(600)
        if not email or not password:
            raise ApiError("Email and password required", 400)
        if self.state["user"].get("mfaEnabled"):
            return {"requiresMFA": True, "requiresMFASetup": False, "session": fixtures.MOCK_SESSION}
        return {
            "requiresMFA": False,
            "requiresMFASetup": True,
            "session": fixtures.MOCK_SESSION,
            "user": self._user(),
        }

    async def set_new_password(self, session: str, email: str, new_password: str) -> Payload:
        await self._delay(500)
        if not new_password or len(new_password) < 12:
            raise ApiError("Password must be at least 12 characters", 400)
        return {"requiresMFASetup": True, "session": "mock-session-after-password-change"}

    async def complete_mfa(self, session: str, code: str, email: str) -> Payload:
        await self._delay(500)
        self._check_code(code, "Invalid MFA code")
        return self._credentials()

    async def setup_mfa(self, session: Optional[str] = None, email: Optional[str] = None) -> Payload:
        await self._delay(500)
        account = email or self.state["user"]["email"]
        issuer = fixtures.MFA_ISSUER
        secret = fixtures.MOCK_MFA_SECRET
        return {
            "secretCode": secret,
            "qrCodeUrl": f"otpauth://totp/{issuer}:{quote(account, safe='')}?secret={secret}&issuer={issuer}",
            "session": "mock-mfa-setup-session",
        }

    async def verify_mfa_setup(
        self, code: str, session: Optional[str] = None, email: Optional[str] = None
    ) -> Payload:
        await self._delay(500)
        self._check_code(code, "Invalid verification code")
        self.state["user"]["mfaEnabled"] = True
        return {"success": True, **self._credentials()}

    async def get_mfa_status(self) -> Payload:
        await self._privileged(300)
        return {"mfaEnabled": bool(self.state["user"].get("mfaEnabled"))}

    async def update_profile(self, profile: Mapping[str, Any]) -> Payload:
        await self._privileged(400)
        if "license" in profile:
            self.state["user"]["license"] = profile["license"] or None
        return {"success": True, "user": self._user()}

    async def logout(self) -> Payload:
        await self._delay(200)
        return {"success": True}

    async def exchange_refresh_token(self, refresh_token: str) -> Optional[Payload]:
        await self._delay(300)
        if not refresh_token:
            return None
        return {"token": self._issue_token("id"), "accessToken": self._issue_token("access")}

    # -- clients ------------------------------------------------------------

    def _find_client(self, client_id: str) -> Payload:
        for client in self.state["clients"]:
            if client["id"] == client_id:
                return client
        raise NotFoundError("Client not found")

    def _completed_form_types(self, client_id: str) -> List[str]:
        names: List[str] = []
        for doc in self.state["documents"].get(client_id, []):
            name = DISPLAY_NAMES[DocumentType(doc["documentType"])]
            if name not in names:
                names.append(name)
        return names

    async def list_clients(self, archived: bool = False) -> List[Payload]:
        await self._privileged(400)
        clients = [c for c in self.state["clients"] if bool(c.get("isArchived")) == archived]
        if archived:
            return [dict(c) for c in clients]
        return [{**c, "completedDocumentTypes": self._completed_form_types(c["id"])} for c in clients]

    async def get_client(self, client_id: str) -> Payload:
        await self._privileged(300)
        return dict(self._find_client(client_id))

    async def create_client(self, data: Mapping[str, Any], client_id: str) -> Payload:
        await self._privileged(600)
        if any(c["id"] == client_id for c in self.state["clients"]):
            raise ConflictError("Client with this ID already exists")
        today = today_date_string()
        client = {
            "id": client_id,
            "name": data.get("name"),
            "clientType": data.get("clientType") or "Individual",
            "lastFormType": "Progress Note",
            "lastDelivery": "In Person",
            "status": "active",
            "isArchived": False,
            "archivedAt": None,
            "createdAt": today,
            "totalSessions": 0,
            "lastSessionDate": None,
            "sessionBasis": data.get("sessionBasis"),
            "paymentType": data.get("paymentType") or "private-pay",
            "payer": None,
            "riskLevel": "standard",
            "referralSource": data.get("referralSource"),
            "referralDate": today if data.get("referralSource") else None,
            "internalNotes": None,
        }
        self.state["clients"].append(client)
        logger.info("simulated_client_created", client_id=client_id)
        return dict(client)

    async def update_client(self, client_id: str, updates: Mapping[str, Any]) -> Payload:
        await self._privileged(500)
        client = self._find_client(client_id)
        client.update({k: v for k, v in updates.items() if k != "id"})
        return dict(client)

    async def archive_client(self, client_id: str) -> Payload:
        await self._privileged(400)
        client = self._find_client(client_id)
        client["isArchived"] = True
        client["archivedAt"] = iso_timestamp()
        return dict(client)

    async def restore_client(self, client_id: str) -> Payload:
        await self._privileged(400)
        client = self._find_client(client_id)
        client["isArchived"] = False
        client["archivedAt"] = None
        return dict(client)

    async def delete_client(self, client_id: str) -> Payload:
        await self._privileged(400)
        client = self._find_client(client_id)
        if not client.get("isArchived"):
            raise ApiError("Client must be archived before deletion", 400)
        self.state["clients"].remove(client)
        self.state["documents"].pop(client_id, None)
        logger.info("simulated_client_deleted", client_id=client_id)
        return {"success": True}

    # -- documents ----------------------------------------------------------

    def _documents(self, client_id: str) -> List[Payload]:
        return self.state["documents"].setdefault(client_id, [])

    def _document_id_exists(self, document_id: str) -> bool:
        return any(
            doc["id"] == document_id for docs in self.state["documents"].values() for doc in docs
        )

    def _find_document(self, client_id: str, document_id: str) -> Optional[Payload]:
        for doc in self.state["documents"].get(client_id, []):
            if doc["id"] == document_id:
                return doc
        return None

    async def list_documents(
        self, client_id: str, document_type: Optional[str] = None, status: Optional[str] = None
    ) -> List[Payload]:
        await self._privileged(400)
        docs = [
            doc
            for doc in self.state["documents"].get(client_id, [])
            if (document_type is None or doc["documentType"] == document_type)
            and (status is None or doc["status"] == status)
        ]
        docs.sort(key=lambda doc: doc["createdAt"], reverse=True)
        return [_copy_document(doc) for doc in docs]

    async def get_document(self, client_id: str, document_id: str) -> Optional[Payload]:
        await self._privileged(300)
        doc = self._find_document(client_id, document_id)
        return _copy_document(doc) if doc is not None else None

    async def create_document(self, client_id: str, document: DocumentCreate) -> Payload:
        await self._privileged(500)
        now = iso_timestamp()
        if document.id:
            if self._document_id_exists(document.id):
                raise ConflictError("Document ID already exists")
            document_id = document.id
        else:
            document_id = f"doc-{document.document_type.value}-{now}-{uuid.uuid4().hex[:6]}"
        record = {
            "id": document_id,
            "documentType": document.document_type.value,
            "clientId": client_id,
            "date": document.date,
            "status": document.resolved_status,
            "content": dict(document.content),
            "createdAt": now,
            "updatedAt": now,
        }
        self._documents(client_id).append(record)
        logger.info("simulated_document_created", client_id=client_id, document_type=record["documentType"])
        return _copy_document(record)

    async def update_document(self, client_id: str, document_id: str, update: DocumentUpdate) -> Payload:
        await self._privileged(500)
        doc = self._find_document(client_id, document_id)
        if doc is None:
            raise NotFoundError("Document not found")
        if update.status is not None:
            try:
                check_status(DocumentType(doc["documentType"]), update.status)
            except ValueError as exc:
                raise ApiError(str(exc), 400) from exc
        if update.content is not None:
            doc["content"] = {**doc["content"], **update.content}
        if update.date is not None:
            doc["date"] = update.date
        if update.status is not None:
            doc["status"] = update.status
        doc["updatedAt"] = iso_timestamp()
        return _copy_document(doc)

    async def delete_document(self, client_id: str, document_id: str) -> Payload:
        await self._privileged(400)
        doc = self._find_document(client_id, document_id)
        if doc is None:
            raise NotFoundError("Document not found")
        self._documents(client_id).remove(doc)
        return {"success": True}

    # -- settings, lexicon, usage -------------------------------------------

    async def get_settings(self, settings_type: str) -> Optional[Payload]:
        await self._privileged(300)
        stored = self.state["settings"].get(settings_type)
        if stored is not None:
            return dict(stored)
        default = fixtures.DEFAULT_SETTINGS.get(settings_type)
        return dict(default) if default is not None else None

    async def save_settings(self, settings_type: str, settings: Mapping[str, Any]) -> Payload:
        await self._privileged(400)
        self.state["settings"][settings_type] = dict(settings)
        return {"success": True, "updatedAt": iso_timestamp()}

    async def get_lexicon(self) -> Optional[Payload]:
        await self._privileged(300)
        return dict(self.state["lexicon"])

    async def save_lexicon(self, lexicon: Mapping[str, Any]) -> Payload:
        await self._privileged(500)
        current = self.state["lexicon"]
        current.update(lexicon)
        current["version"] = int(current.get("version", 0)) + 1
        current["updatedAt"] = iso_timestamp()
        current["updatedBy"] = self.state["user"]["email"]
        return {
            "version": current["version"],
            "updatedAt": current["updatedAt"],
            "updatedBy": current["updatedBy"],
            "message": "Lexicon saved successfully",
        }

    async def lexicon_versions(self) -> Payload:
        await self._privileged(300)
        lexicon = self.state["lexicon"]
        return {
            "versions": [
                {"version": lexicon["version"], "updatedAt": lexicon["updatedAt"], "updatedBy": lexicon["updatedBy"]}
            ]
        }

    async def rollback_lexicon(self, version: int) -> Payload:
        await self._privileged(500)
        lexicon = self.state["lexicon"]
        lexicon["version"] += 1
        lexicon["updatedAt"] = iso_timestamp()
        return {
            "version": lexicon["version"],
            "message": f"Rolled back to version {version} (saved as version {lexicon['version']})",
            "updatedAt": lexicon["updatedAt"],
        }

    async def record_intervention_usage(self, intervention_ids: Sequence[str], client_id: str) -> Payload:
        await self._privileged(200)
        usage = self.state["usage"]
        for intervention_id in intervention_ids:
            counts = usage.setdefault(intervention_id, {"total": 0})
            counts[client_id] = counts.get(client_id, 0) + 1
            counts["total"] = counts.get("total", 0) + 1
        return {"success": True}

    async def get_intervention_usage(self, client_id: Optional[str] = None) -> Dict[str, int]:
        await self._privileged(200)
        key = client_id or "total"
        result: Dict[str, int] = {}
        for intervention_id, counts in self.state["usage"].items():
            count = counts.get(key, 0)
            if count > 0:
                result[intervention_id] = count
        return result

    # -- narrative ----------------------------------------------------------

    async def generate_narrative(self, request: NarrativeRequest) -> Payload:
        await self._privileged(self._rng.uniform(1500, 2500))
        return {"narrative": fixtures.mock_narrative(request.prompt), "prefill": request.prefill or ""}

    def stream_narrative(self, request: NarrativeRequest) -> AsyncIterator[StreamEvent]:
        return self._stream(request)

    async def _stream(self, request: NarrativeRequest) -> AsyncIterator[StreamEvent]:
        await self._privileged(300)
        narrative = fixtures.mock_narrative(request.prompt)
        for token in _WORD_BOUNDARY.split(narrative):
            if not token:
                continue
            yield TextChunk(token)
            await self._delay(self._rng.uniform(20, 50))
        yield StreamCompleted(END_TURN)


def _copy_document(doc: Payload) -> Payload:
    return {**doc, "content": dict(doc.get("content") or {})}


__all__ = ["SIMULATED_SIGNING_KEY", "SimulatedBackend", "TOKEN_LIFETIME"]
