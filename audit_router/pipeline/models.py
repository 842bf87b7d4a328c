"""
Alert pipeline data model.

``AlertPayload`` mirrors the body of a Splunk webhook alert action. Only
``sid`` and ``result`` (with ``_raw`` and ``user``) are required; everything
else Splunk sends is optional context for the ticket.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AlertResult(BaseModel):
    """First result row of the search that fired the alert."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    raw: str = Field(alias="_raw")
    username: str = Field(alias="user")

    @field_validator("username")
    @classmethod
    def _username_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("user must not be empty")
        return v

    def extra_fields(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class AlertPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sid: str = Field(min_length=1)
    result: AlertResult
    search_name: Optional[str] = None
    app: Optional[str] = None
    owner: Optional[str] = None
    results_link: Optional[str] = None

    @classmethod
    def wire_fields(cls) -> FrozenSet[str]:
        return frozenset((f.alias or name) for name, f in cls.model_fields.items())


class Identity(BaseModel):
    """A directory user record. ``manager`` is the manager's username, if linked."""

    model_config = ConfigDict(frozen=True)

    username: str
    display_name: str = ""
    email: str = ""
    manager: Optional[str] = None


@dataclass(frozen=True)
class TicketRequest:
    sid: str
    user: Identity
    manager: Optional[Identity]
    result: AlertResult
    search_name: Optional[str] = None
    results_link: Optional[str] = None

    @classmethod
    def for_alert(cls, alert: AlertPayload, user: Identity, manager: Optional[Identity]) -> "TicketRequest":
        return cls(
            sid=alert.sid,
            user=user,
            manager=manager,
            result=alert.result,
            search_name=alert.search_name,
            results_link=alert.results_link,
        )


class Stage(str, Enum):
    RECEIVED = "received"
    DECODED = "decoded"
    RESOLVED = "resolved"
    DISPATCHED = "dispatched"
    RESPONDED = "responded"
    DECODE_FAILED = "decode_failed"
    RESOLVE_FAILED = "resolve_failed"
    DISPATCH_FAILED = "dispatch_failed"


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    DECODE_ERROR = "decode_error"
    LOOKUP_ERROR = "lookup_error"
    DISPATCH_ERROR = "dispatch_error"


@dataclass(frozen=True)
class PipelineOutcome:
    kind: OutcomeKind
    status_code: int
    message: str
    ticket_id: Optional[str] = None
    stages: Tuple[Stage, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS
