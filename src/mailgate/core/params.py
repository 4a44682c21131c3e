"""Typed payloads for each execution type.

An execution's ``params`` is not an open bag: each ``type`` has a fixed
field set, validated when the execution is proposed so malformed payloads
are rejected at the ledger boundary instead of at send time.

Usage:
    from mailgate.core.params import parse_execution_params

    params = parse_execution_params("send-mail", {"to": "x@example.com", "subject": "Hi"})
    params.digest()  # 'to=x@example.com; subject=Hi; body_head='
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from mailgate.core.errors import InvalidParamsError

ExecutionType = Literal["send-mail", "save-draft", "create-event"]

EXECUTION_TYPES: tuple[str, ...] = ("send-mail", "save-draft", "create-event")

# Characters of the body kept in the audit digest
DIGEST_BODY_CHARS = 50

# Default human-readable labels per type
ACTION_LABELS: dict[str, str] = {
    "send-mail": "Send email",
    "save-draft": "Save email draft",
    "create-event": "Create calendar event",
}


class _Params(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    def digest(self) -> str:
        raise NotImplementedError


class SendMailParams(_Params):
    """Payload for sending an email."""

    to: str = Field(description="Recipient address(es), comma separated")
    subject: str = ""
    body: str = ""
    thread_id: str | None = None
    cc: str | None = None
    bcc: str | None = None

    @field_validator("to")
    @classmethod
    def validate_to(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Recipient cannot be empty")
        return v.strip()

    def digest(self) -> str:
        return f"to={self.to}; subject={self.subject}; body_head={self.body[:DIGEST_BODY_CHARS]}"


class SaveDraftParams(_Params):
    """Payload for saving a draft (recipient optional)."""

    to: str | None = None
    subject: str = ""
    body: str = ""
    thread_id: str | None = None
    draft_id: str | None = None

    def digest(self) -> str:
        return (
            f"to={self.to or ''}; subject={self.subject}; "
            f"body_head={self.body[:DIGEST_BODY_CHARS]}"
        )


class CreateEventParams(_Params):
    """Payload for creating a calendar event."""

    title: str
    start: str = Field(description="ISO 8601 start time")
    end: str | None = None
    attendees: list[str] = Field(default_factory=list)
    location: str | None = None
    description: str | None = None

    @field_validator("title", "start")
    @classmethod
    def validate_required_text(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Field cannot be empty")
        return v.strip()

    def digest(self) -> str:
        return f"title={self.title}; start={self.start}; attendees={len(self.attendees)}"


ExecutionParams = SendMailParams | SaveDraftParams | CreateEventParams

PARAMS_BY_TYPE: dict[str, type[_Params]] = {
    "send-mail": SendMailParams,
    "save-draft": SaveDraftParams,
    "create-event": CreateEventParams,
}


def parse_execution_params(execution_type: str, raw: Any) -> ExecutionParams:
    """Validate a raw payload against the field set of its execution type.

    Args:
        execution_type: One of EXECUTION_TYPES
        raw: Mapping of fields (or an already-typed params model)

    Returns:
        The typed params model

    Raises:
        InvalidParamsError: Unknown type or payload not matching the type
    """
    model = PARAMS_BY_TYPE.get(execution_type)
    if model is None:
        raise InvalidParamsError(
            f"Unknown execution type '{execution_type}'. "
            f"Expected one of: {', '.join(EXECUTION_TYPES)}",
            execution_type=execution_type,
        )

    if isinstance(raw, model):
        return raw
    if isinstance(raw, BaseModel):
        raw = raw.model_dump()
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise InvalidParamsError(
            f"Params for '{execution_type}' must be a mapping, got {type(raw).__name__}",
            execution_type=execution_type,
        )

    try:
        return model(**raw)
    except ValidationError as e:
        fields = ", ".join(".".join(str(loc) for loc in err["loc"]) or "(root)" for err in e.errors())
        raise InvalidParamsError(
            f"Invalid params for '{execution_type}': {fields}. "
            f"Allowed fields: {', '.join(model.model_fields)}",
            execution_type=execution_type,
        ) from e
