"""Wire models for documents and narrative generation.

Field names follow the service's camelCase JSON; Python attributes are
snake_case and either spelling is accepted on input.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from therapynotes.errors import ApiError


ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_model(model: Type[ModelT], data: Mapping[str, Any]) -> ModelT:
    """Validate caller input, reporting failures as a 400 ``ApiError``."""

    try:
        return model.model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or model.__name__
        raise ApiError(f"Invalid {location}: {first['msg']}", 400) from exc


class DocumentType(str, Enum):
    PROGRESS_NOTE = "progress_note"
    DIAGNOSIS = "diagnosis"
    TREATMENT_PLAN = "treatment_plan"
    INTAKE = "intake"
    CONSULTATION = "consultation"
    DISCHARGE = "discharge"


DISPLAY_NAMES: Dict[DocumentType, str] = {
    DocumentType.PROGRESS_NOTE: "Progress Note",
    DocumentType.DIAGNOSIS: "Diagnosis",
    DocumentType.TREATMENT_PLAN: "Treatment Plan",
    DocumentType.INTAKE: "Intake",
    DocumentType.CONSULTATION: "Consultation",
    DocumentType.DISCHARGE: "Discharge",
}

STATUS_VOCABULARY: Dict[DocumentType, FrozenSet[str]] = {
    DocumentType.PROGRESS_NOTE: frozenset({"draft", "complete", "amended"}),
    DocumentType.DIAGNOSIS: frozenset({"provisional", "active", "resolved", "inactive"}),
    DocumentType.TREATMENT_PLAN: frozenset({"draft", "active", "completed", "discontinued"}),
    DocumentType.INTAKE: frozenset({"draft", "complete"}),
    DocumentType.CONSULTATION: frozenset({"draft", "complete"}),
    DocumentType.DISCHARGE: frozenset({"draft", "complete", "discharged"}),
}

DEFAULT_STATUS: Dict[DocumentType, str] = {
    DocumentType.PROGRESS_NOTE: "draft",
    DocumentType.DIAGNOSIS: "provisional",
    DocumentType.TREATMENT_PLAN: "active",
    DocumentType.INTAKE: "complete",
    DocumentType.CONSULTATION: "complete",
    DocumentType.DISCHARGE: "complete",
}

def check_status(document_type: DocumentType, status: str) -> None:
    if status not in STATUS_VOCABULARY[document_type]:
        raise ValueError(f"status {status!r} is not valid for {document_type.value} documents")


# Top-level document fields that must never be nested inside ``content``.
TOP_LEVEL_FIELDS = frozenset({"date", "status"})


def _reject_top_level(content: Dict[str, Any]) -> Dict[str, Any]:
    nested = TOP_LEVEL_FIELDS.intersection(content)
    if nested:
        raise ValueError(f"{sorted(nested)} belong at the top level, not in content")
    return content


class Document(BaseModel):
    """A clinical record of any subtype."""

    id: str
    document_type: DocumentType = Field(alias="documentType")
    client_id: str = Field(alias="clientId")
    date: Optional[str] = None
    status: str
    content: Dict[str, Any] = Field(default_factory=dict)
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True, extra="ignore", use_enum_values=False)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    def flattened(self) -> Dict[str, Any]:
        """Content merged with identity fields, as the note screens display it."""

        return {
            "id": self.id,
            "clientId": self.client_id,
            **self.content,
            "date": self.date or self.content.get("date"),
            "status": self.status,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


class DocumentCreate(BaseModel):
    document_type: DocumentType = Field(alias="documentType")
    content: Dict[str, Any] = Field(default_factory=dict)
    status: Optional[str] = None
    date: Optional[str] = None
    id: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    @field_validator("content")
    @classmethod
    def _no_top_level_in_content(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        return _reject_top_level(value)

    @model_validator(mode="after")
    def _check_status(self) -> "DocumentCreate":
        if self.status is not None:
            check_status(self.document_type, self.status)
        return self

    @property
    def resolved_status(self) -> str:
        return self.status or DEFAULT_STATUS[self.document_type]

    def to_wire(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "documentType": self.document_type.value,
            "content": self.content,
            "status": self.resolved_status,
        }
        if self.date is not None:
            body["date"] = self.date
        if self.id:
            body["id"] = self.id
        return body


class DocumentUpdate(BaseModel):
    """Partial update: ``content`` merges, ``date``/``status`` replace."""

    content: Optional[Dict[str, Any]] = None
    date: Optional[str] = None
    status: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("content")
    @classmethod
    def _no_top_level_in_content(cls, value: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if value is None:
            return value
        return _reject_top_level(value)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class NarrativeRequest(BaseModel):
    prompt: str = Field(min_length=1)
    system_prompt: Optional[str] = Field(default=None, alias="systemPrompt")
    temperature: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_tokens: Optional[int] = Field(default=None, gt=0, alias="maxTokens")
    prefill: Optional[str] = None
    model_id: Optional[str] = Field(default=None, alias="modelId")

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    def to_wire(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"prompt": self.prompt}
        if self.system_prompt:
            body["systemPrompt"] = self.system_prompt
        if self.temperature is not None:
            body["temperature"] = self.temperature
        if self.max_tokens is not None:
            body["maxTokens"] = self.max_tokens
        # An empty prefill is meaningful: it disables the server default.
        if self.prefill is not None:
            body["prefill"] = self.prefill
        if self.model_id:
            body["modelId"] = self.model_id
        return body


__all__ = [
    "DEFAULT_STATUS",
    "DISPLAY_NAMES",
    "Document",
    "DocumentCreate",
    "DocumentType",
    "DocumentUpdate",
    "NarrativeRequest",
    "STATUS_VOCABULARY",
    "TOP_LEVEL_FIELDS",
    "check_status",
    "parse_model",
]
