"""Unified access to every clinical record subtype.

:class:`DocumentAccessor` exposes one CRUD contract over whichever backend is
active. The derived views (latest note, current diagnosis, active plan, ...)
are pure functions of a document list, so they give the same answer in both
modes and can be recomputed at any time.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

import structlog
from pydantic import ValidationError

from therapynotes.backends.base import Backend
from therapynotes.errors import ApiError, NotFoundError
from therapynotes.models import (
    DISPLAY_NAMES,
    TOP_LEVEL_FIELDS,
    Document,
    DocumentCreate,
    DocumentType,
    DocumentUpdate,
    parse_model,
)
from therapynotes.time_utils import today_date_string

logger = structlog.get_logger(__name__)

RESOLVED = "resolved"


def _document(payload: Mapping[str, Any]) -> Document:
    try:
        return Document.model_validate(payload)
    except ValidationError as exc:
        logger.error("document_payload_invalid", error=str(exc))
        raise ApiError("Malformed document payload", 502) from exc


# ---------------------------------------------------------------------------
# Derived views
# ---------------------------------------------------------------------------


def document_date(doc: Document) -> str:
    """The clinical date of *doc*, falling back to its creation day."""

    return doc.date or str(doc.content.get("date") or "") or doc.created_at[:10]


def by_recency(docs: Iterable[Document]) -> List[Document]:
    """Newest first by clinical date, then by creation time."""

    return sorted(docs, key=lambda doc: (document_date(doc), doc.created_at), reverse=True)


def of_type(docs: Iterable[Document], document_type: DocumentType) -> List[Document]:
    return by_recency(doc for doc in docs if doc.document_type == document_type)


def latest_progress_note(docs: Iterable[Document]) -> Optional[Document]:
    notes = of_type(docs, DocumentType.PROGRESS_NOTE)
    return notes[0] if notes else None


def current_diagnosis(docs: Iterable[Document]) -> Optional[Document]:
    """The principal unresolved diagnosis, else the newest unresolved one."""

    open_diagnoses = [doc for doc in of_type(docs, DocumentType.DIAGNOSIS) if doc.status != RESOLVED]
    for doc in open_diagnoses:
        if doc.content.get("isPrincipal"):
            return doc
    return open_diagnoses[0] if open_diagnoses else None


def active_treatment_plan(docs: Iterable[Document]) -> Optional[Document]:
    for doc in of_type(docs, DocumentType.TREATMENT_PLAN):
        if doc.status == "active":
            return doc
    return None


def client_intake(docs: Iterable[Document]) -> Optional[Document]:
    for doc in of_type(docs, DocumentType.INTAKE):
        if doc.status == "complete":
            return doc
    return None


def completed_form_types(docs: Iterable[Document]) -> List[str]:
    present = {doc.document_type for doc in docs}
    return [DISPLAY_NAMES[kind] for kind in DocumentType if kind in present]


def diagnosis_view(doc: Document) -> Dict[str, Any]:
    view = doc.flattened()
    view["dateOfDiagnosis"] = view.get("date") or doc.content.get("dateOfDiagnosis")
    return view


def serialize_note(note: Mapping[str, Any]) -> Dict[str, Any]:
    """Normalise a note form payload for storage."""

    serialized = dict(note)
    interventions = serialized.get("interventions")
    if isinstance(interventions, list):
        serialized["interventions"] = [
            {
                "label": item.get("label"),
                "theme": item["theme"].get("string") if isinstance(item.get("theme"), Mapping) else item.get("theme"),
                "selections": item.get("selections") or {},
                "notes": item.get("notes") or "",
            }
            if isinstance(item, Mapping)
            else item
            for item in interventions
        ]
    return serialized


def _split_top_level(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if key not in TOP_LEVEL_FIELDS}


class DocumentAccessor:
    def __init__(self, backend: Callable[[], Backend]) -> None:
        self._backend = backend

    # -- CRUD ---------------------------------------------------------------

    async def list(
        self,
        client_id: str,
        document_type: Optional[Union[DocumentType, str]] = None,
        status: Optional[str] = None,
    ) -> List[Document]:
        kind = DocumentType(document_type).value if document_type else None
        payloads = await self._backend().list_documents(client_id, kind, status)
        return [_document(payload) for payload in payloads]

    async def get(self, client_id: str, document_id: str) -> Optional[Document]:
        """Return the document, or ``None`` when it does not exist."""

        payload = await self._backend().get_document(client_id, document_id)
        return _document(payload) if payload is not None else None

    async def create(
        self,
        client_id: str,
        document_type: Union[DocumentType, str],
        content: Optional[Mapping[str, Any]] = None,
        *,
        status: Optional[str] = None,
        date: Optional[str] = None,
        id: Optional[str] = None,
    ) -> Document:
        """Create a document; a caller-supplied *id* already in use raises ``ConflictError``."""

        request = parse_model(
            DocumentCreate,
            {"documentType": document_type, "content": dict(content or {}), "status": status, "date": date, "id": id},
        )
        payload = await self._backend().create_document(client_id, request)
        return _document(payload)

    async def update(
        self, client_id: str, document_id: str, partial: Union[DocumentUpdate, Mapping[str, Any]]
    ) -> Document:
        """Merge ``content`` and replace ``date``/``status``; raises ``NotFoundError`` if absent."""

        update = partial if isinstance(partial, DocumentUpdate) else parse_model(DocumentUpdate, partial)
        payload = await self._backend().update_document(client_id, document_id, update)
        return _document(payload)

    async def delete(self, client_id: str, document_id: str) -> Dict[str, Any]:
        return await self._backend().delete_document(client_id, document_id)

    # -- views --------------------------------------------------------------

    async def latest_progress_note(self, client_id: str) -> Optional[Dict[str, Any]]:
        doc = latest_progress_note(await self.list(client_id, DocumentType.PROGRESS_NOTE))
        return doc.flattened() if doc else None

    async def sessions(self, client_id: str) -> List[Dict[str, Any]]:
        notes = of_type(await self.list(client_id, DocumentType.PROGRESS_NOTE), DocumentType.PROGRESS_NOTE)
        return [doc.flattened() for doc in notes]

    async def current_diagnosis(self, client_id: str) -> Optional[Dict[str, Any]]:
        doc = current_diagnosis(await self.list(client_id, DocumentType.DIAGNOSIS))
        return diagnosis_view(doc) if doc else None

    async def diagnoses(self, client_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        docs = await self.list(client_id, DocumentType.DIAGNOSIS, status)
        return [diagnosis_view(doc) for doc in of_type(docs, DocumentType.DIAGNOSIS)]

    async def active_treatment_plan(self, client_id: str) -> Optional[Dict[str, Any]]:
        doc = active_treatment_plan(await self.list(client_id, DocumentType.TREATMENT_PLAN))
        return doc.flattened() if doc else None

    async def client_intake(self, client_id: str) -> Optional[Document]:
        return client_intake(await self.list(client_id, DocumentType.INTAKE, "complete"))

    async def completed_form_types(self, client_id: str) -> List[str]:
        return completed_form_types(await self.list(client_id))

    # -- progress notes -----------------------------------------------------

    async def _require_note(self, client_id: str, note_id: str) -> Document:
        doc = await self.get(client_id, note_id)
        if doc is None or doc.document_type != DocumentType.PROGRESS_NOTE:
            raise NotFoundError("Note not found")
        return doc

    async def save_note(
        self, client_id: str, note: Mapping[str, Any], id: Optional[str] = None
    ) -> Dict[str, Any]:
        serialized = serialize_note(note)
        doc = await self.create(
            client_id,
            DocumentType.PROGRESS_NOTE,
            _split_top_level(serialized),
            status="complete",
            date=serialized.get("date"),
            id=id,
        )
        logger.info("note_saved", client_id=client_id, document_id=doc.id)
        return {"note": doc.flattened()}

    async def update_note(self, client_id: str, note_id: str, note: Mapping[str, Any]) -> Dict[str, Any]:
        await self._require_note(client_id, note_id)
        serialized = serialize_note(note)
        update = DocumentUpdate(content=_split_top_level(serialized), date=serialized.get("date"))
        doc = await self.update(client_id, note_id, update)
        return doc.flattened()

    async def delete_note(self, client_id: str, note_id: str) -> Dict[str, Any]:
        await self._require_note(client_id, note_id)
        return await self.delete(client_id, note_id)

    # -- diagnoses ----------------------------------------------------------

    async def create_diagnosis(self, client_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        content = {
            "icd10Code": data.get("icd10Code"),
            "description": data.get("description"),
            "isPrincipal": bool(data.get("isPrincipal", False)),
            "severity": data.get("severity"),
            "clinicalNotes": data.get("clinicalNotes") or "",
            "dateResolved": data.get("dateResolved"),
        }
        doc = await self.create(
            client_id,
            DocumentType.DIAGNOSIS,
            content,
            status=data.get("status") or "provisional",
            date=data.get("dateOfDiagnosis") or today_date_string(),
            id=data.get("id"),
        )
        return diagnosis_view(doc)

    async def update_diagnosis(
        self, client_id: str, diagnosis_id: str, updates: Mapping[str, Any]
    ) -> Dict[str, Any]:
        content = {
            key: value for key, value in updates.items() if key not in ("dateOfDiagnosis", "status", "date")
        }
        update = DocumentUpdate(
            content=content or None,
            date=updates.get("dateOfDiagnosis"),
            status=updates.get("status"),
        )
        doc = await self.update(client_id, diagnosis_id, update)
        return diagnosis_view(doc)


__all__ = [
    "DocumentAccessor",
    "active_treatment_plan",
    "by_recency",
    "client_intake",
    "completed_form_types",
    "current_diagnosis",
    "diagnosis_view",
    "latest_progress_note",
    "serialize_note",
]
