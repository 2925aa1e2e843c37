"""
ChainCredit — Attestation Source Descriptor

A declarative description of one external JSON source:

    endpoint + verb        where to fetch
    headers / body / query templates, filled from the caller's parameters
    transform              output field -> candidate dotted paths in the response

Nothing here is executable code supplied by the source. The transform is a
field mapping, evaluated by attestation.transform.

Request lifecycle:
    Created -> APICalled -> Transformed -> ProofGenerated -> Complete
       └──────────┴─────────────┴──────────────┴──> Failed
"""
import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, Field, field_validator

from chaincredit.errors import ValidationError

PAYLOAD_FIELDS = (
    "creditScore",
    "paymentHistory",
    "creditUtilization",
    "creditHistoryLength",
    "accountsOpen",
    "recentInquiries",
    "publicRecords",
    "delinquencies",
    "timestamp",
)

DEFAULT_TRANSFORM: Dict[str, List[str]] = {
    "creditScore": ["creditData.creditScore"],
    "paymentHistory": ["creditData.paymentHistory"],
    "creditUtilization": ["creditData.creditUtilization"],
    "creditHistoryLength": ["creditData.creditHistoryLength", "creditData.creditHistory"],
    "accountsOpen": ["creditData.accountsOpen"],
    "recentInquiries": ["creditData.recentInquiries"],
    "publicRecords": ["creditData.publicRecords"],
    "delinquencies": ["creditData.delinquencies"],
    "timestamp": ["creditData.timestamp"],
}

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


class SourceConfig(BaseModel):
    source_id: str = "EXPERIAN_CREDIT_SCORE"
    url: str
    method: str = "POST"
    headers: Dict[str, str] = Field(default_factory=lambda: {"Content-Type": "application/json"})
    query_template: Dict[str, str] = Field(default_factory=dict)
    body_template: Dict[str, Any] = Field(default_factory=lambda: {"ssn": "{ssn}"})
    transform: Dict[str, List[str]] = Field(default_factory=lambda: dict(DEFAULT_TRANSFORM))

    @field_validator("method")
    @classmethod
    def _method(cls, v: str) -> str:
        v = v.upper()
        if v not in ("GET", "POST", "PUT"):
            raise ValueError(f"Unsupported HTTP method {v}")
        return v

    @field_validator("transform")
    @classmethod
    def _transform_covers_schema(cls, v: Dict[str, List[str]]) -> Dict[str, List[str]]:
        missing = [f for f in PAYLOAD_FIELDS if not v.get(f)]
        extra = [f for f in v if f not in PAYLOAD_FIELDS]
        if missing or extra:
            raise ValueError(f"transform must map exactly the payload fields (missing={missing}, extra={extra})")
        return v

    def build_request(self, subject: str, parameters: Dict[str, Any]) -> "AttestationRequest":
        return AttestationRequest(
            request_id=f"att_{uuid.uuid4().hex}",
            subject=subject,
            source_id=self.source_id,
            url=self.url,
            method=self.method,
            headers=_render(self.headers, parameters),
            query=_render(self.query_template, parameters),
            body=_render(self.body_template, parameters) if self.method != "GET" else None,
            transform={k: list(v) for k, v in self.transform.items()},
        )


def _render(template: Any, parameters: Dict[str, Any]) -> Any:
    if isinstance(template, dict):
        return {k: _render(v, parameters) for k, v in template.items()}
    if isinstance(template, list):
        return [_render(v, parameters) for v in template]
    if not isinstance(template, str):
        return template

    # A value that is exactly one placeholder keeps the parameter's type
    whole = _PLACEHOLDER.fullmatch(template)
    if whole:
        return _param(whole.group(1), parameters)
    return _PLACEHOLDER.sub(lambda m: str(_param(m.group(1), parameters)), template)


def _param(name: str, parameters: Dict[str, Any]) -> Any:
    if name not in parameters:
        raise ValidationError(f"Missing source parameter: {name}")
    return parameters[name]


# ── Request state machine ─────────────────────────

class AttestationState(str, Enum):
    CREATED = "Created"
    API_CALLED = "APICalled"
    TRANSFORMED = "Transformed"
    PROOF_GENERATED = "ProofGenerated"
    COMPLETE = "Complete"
    FAILED = "Failed"


_NEXT = {
    AttestationState.CREATED: AttestationState.API_CALLED,
    AttestationState.API_CALLED: AttestationState.TRANSFORMED,
    AttestationState.TRANSFORMED: AttestationState.PROOF_GENERATED,
    AttestationState.PROOF_GENERATED: AttestationState.COMPLETE,
}


class AttestationRequest(BaseModel):
    """The rendered descriptor for one bridge invocation, plus its state."""
    request_id: str
    subject: str
    source_id: str
    url: str
    method: str
    headers: Dict[str, str] = Field(default_factory=dict)
    query: Dict[str, Any] = Field(default_factory=dict)
    body: Any = None
    transform: Dict[str, List[str]]
    state: AttestationState = AttestationState.CREATED
    history: List[Dict[str, str]] = Field(default_factory=list)
    error: str = ""

    def model_post_init(self, __context) -> None:
        if not self.history:
            self.history.append(_entry(self.state))

    @property
    def terminal(self) -> bool:
        return self.state in (AttestationState.COMPLETE, AttestationState.FAILED)

    def advance(self, to: AttestationState) -> None:
        if self.terminal or _NEXT.get(self.state) != to:
            raise RuntimeError(f"Illegal attestation transition {self.state.value} -> {to.value}")
        self.state = to
        self.history.append(_entry(to))

    def fail(self, error: str) -> None:
        if self.terminal:
            raise RuntimeError(f"Attestation {self.request_id} already {self.state.value}")
        self.state = AttestationState.FAILED
        self.error = error
        self.history.append(_entry(AttestationState.FAILED))

    def summary(self) -> Dict[str, Any]:
        """Descriptor without headers or body, which may carry credentials and PII."""
        return {
            "requestId": self.request_id,
            "sourceId": self.source_id,
            "url": self.url,
            "method": self.method,
            "transform": self.transform,
            "state": self.state.value,
            "history": list(self.history),
        }


def _entry(state: AttestationState) -> Dict[str, str]:
    return {"state": state.value, "at": datetime.now(timezone.utc).isoformat()}
