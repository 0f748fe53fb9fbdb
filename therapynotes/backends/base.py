"""The operation surface shared by the simulated and networked backends.

Both variants return the same JSON-shaped payloads (camelCase keys, exactly as
the service sends them) and raise the same :mod:`therapynotes.errors` classes
for the same logical failure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence

from therapynotes.models import DocumentCreate, DocumentUpdate, NarrativeRequest
from therapynotes.streaming import StreamEvent

Payload = Dict[str, Any]


class Backend(ABC):
    mode: str = "unknown"

    # -- auth ---------------------------------------------------------------

    @abstractmethod
    async def login(self, email: str, password: str) -> Payload:
        ...

    @abstractmethod
    async def set_new_password(self, session: str, email: str, new_password: str) -> Payload:
        ...

    @abstractmethod
    async def complete_mfa(self, session: str, code: str, email: str) -> Payload:
        ...

    @abstractmethod
    async def setup_mfa(self, session: Optional[str] = None, email: Optional[str] = None) -> Payload:
        ...

    @abstractmethod
    async def verify_mfa_setup(
        self, code: str, session: Optional[str] = None, email: Optional[str] = None
    ) -> Payload:
        ...

    @abstractmethod
    async def get_mfa_status(self) -> Payload:
        ...

    @abstractmethod
    async def update_profile(self, profile: Mapping[str, Any]) -> Payload:
        ...

    @abstractmethod
    async def logout(self) -> Payload:
        ...

    @abstractmethod
    async def exchange_refresh_token(self, refresh_token: str) -> Optional[Payload]:
        """Return new tokens, or ``None`` when the exchange was refused."""

    # -- clients ------------------------------------------------------------

    @abstractmethod
    async def list_clients(self, archived: bool = False) -> List[Payload]:
        ...

    @abstractmethod
    async def get_client(self, client_id: str) -> Payload:
        ...

    @abstractmethod
    async def create_client(self, data: Mapping[str, Any], client_id: str) -> Payload:
        ...

    @abstractmethod
    async def update_client(self, client_id: str, updates: Mapping[str, Any]) -> Payload:
        ...

    @abstractmethod
    async def archive_client(self, client_id: str) -> Payload:
        ...

    @abstractmethod
    async def restore_client(self, client_id: str) -> Payload:
        ...

    @abstractmethod
    async def delete_client(self, client_id: str) -> Payload:
        ...

    # -- documents ----------------------------------------------------------

    @abstractmethod
    async def list_documents(
        self, client_id: str, document_type: Optional[str] = None, status: Optional[str] = None
    ) -> List[Payload]:
        ...

    @abstractmethod
    async def get_document(self, client_id: str, document_id: str) -> Optional[Payload]:
        ...

    @abstractmethod
    async def create_document(self, client_id: str, document: DocumentCreate) -> Payload:
        ...

    @abstractmethod
    async def update_document(self, client_id: str, document_id: str, update: DocumentUpdate) -> Payload:
        ...

    @abstractmethod
    async def delete_document(self, client_id: str, document_id: str) -> Payload:
        ...

    # -- settings, lexicon, usage -------------------------------------------

    @abstractmethod
    async def get_settings(self, settings_type: str) -> Optional[Payload]:
        ...

    @abstractmethod
    async def save_settings(self, settings_type: str, settings: Mapping[str, Any]) -> Payload:
        ...

    @abstractmethod
    async def get_lexicon(self) -> Optional[Payload]:
        ...

    @abstractmethod
    async def save_lexicon(self, lexicon: Mapping[str, Any]) -> Payload:
        ...

    @abstractmethod
    async def lexicon_versions(self) -> Payload:
        ...

    @abstractmethod
    async def rollback_lexicon(self, version: int) -> Payload:
        ...

    @abstractmethod
    async def record_intervention_usage(self, intervention_ids: Sequence[str], client_id: str) -> Payload:
        ...

    @abstractmethod
    async def get_intervention_usage(self, client_id: Optional[str] = None) -> Dict[str, int]:
        ...

    # -- narrative ----------------------------------------------------------

    @abstractmethod
    async def generate_narrative(self, request: NarrativeRequest) -> Payload:
        ...

    @abstractmethod
    def stream_narrative(self, request: NarrativeRequest) -> AsyncIterator[StreamEvent]:
        """Return a stream source; wrap it in :class:`NarrativeStream` to consume."""


__all__ = ["Backend", "Payload"]
