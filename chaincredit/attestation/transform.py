"""
ChainCredit — Response Transform
Parse, then project, then validate. Never string templating over raw text.

    bytes ──parse──> JSON object ──project(transform)──> flat dict ──validate──> CreditPayload

Any step that cannot satisfy the fixed output schema raises SchemaMismatch
naming the offending fields.
"""
import json
from datetime import datetime, timezone
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from chaincredit.attestation.source import PAYLOAD_FIELDS
from chaincredit.errors import SchemaMismatch

_MISSING = object()

# Sources disagree on seconds vs milliseconds; anything past this is ms.
_MS_THRESHOLD = 10 ** 11

# Every field is ABI-encoded as uint256.
UINT256_MAX = 2 ** 256 - 1


class CreditPayload(BaseModel):
    """
    The fixed, versioned output schema. Every field is a non-negative integer
    that fits a uint256. Strict typing rejects anything that is not already
    an int; timestamps are normalized to seconds first.
    """
    model_config = ConfigDict(frozen=True, extra="forbid", strict=True)

    creditScore: int = Field(ge=0, le=UINT256_MAX)
    paymentHistory: int = Field(ge=0, le=UINT256_MAX)
    creditUtilization: int = Field(ge=0, le=UINT256_MAX)
    creditHistoryLength: int = Field(ge=0, le=UINT256_MAX)
    accountsOpen: int = Field(ge=0, le=UINT256_MAX)
    recentInquiries: int = Field(ge=0, le=UINT256_MAX)
    publicRecords: int = Field(ge=0, le=UINT256_MAX)
    delinquencies: int = Field(ge=0, le=UINT256_MAX)
    timestamp: int = Field(ge=0, le=UINT256_MAX)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _timestamp_seconds(cls, v: Any) -> Any:
        if isinstance(v, bool):
            return v
        if isinstance(v, float) and v.is_integer():
            v = int(v)
        if isinstance(v, str) and v.strip().isdigit():
            v = int(v.strip())
        if isinstance(v, int):
            return v // 1000 if v > _MS_THRESHOLD else v
        if isinstance(v, str):
            try:
                parsed = datetime.fromisoformat(v.replace("Z", "+00:00"))
            except ValueError:
                return v
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return int(parsed.timestamp())
        return v

    def ordered(self) -> Dict[str, int]:
        """Fields in encoding order."""
        return {name: getattr(self, name) for name in PAYLOAD_FIELDS}

    def as_list(self) -> List[int]:
        return [getattr(self, name) for name in PAYLOAD_FIELDS]


def parse_response(raw: bytes) -> Dict[str, Any]:
    try:
        document = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise SchemaMismatch([], detail=f"response is not JSON: {e}")
    if not isinstance(document, dict):
        raise SchemaMismatch([], detail=f"expected a JSON object, got {type(document).__name__}")
    return document


def resolve_path(document: Any, path: str) -> Any:
    node = document
    for part in path.split("."):
        if isinstance(node, dict) and part in node:
            node = node[part]
        elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            return _MISSING
    return node


def project(document: Dict[str, Any], transform: Dict[str, List[str]]) -> Dict[str, Any]:
    """First candidate path that resolves to a non-null value wins."""
    projected: Dict[str, Any] = {}
    missing: List[str] = []
    for name in PAYLOAD_FIELDS:
        value = _MISSING
        for path in transform.get(name, []):
            value = resolve_path(document, path)
            if value is not _MISSING and value is not None:
                break
            value = _MISSING
        if value is _MISSING:
            missing.append(name)
        else:
            projected[name] = value
    if missing:
        raise SchemaMismatch(missing, detail="required field absent from source response")
    return projected


def validate(projected: Dict[str, Any]) -> CreditPayload:
    try:
        return CreditPayload(**projected)
    except PydanticValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        raise SchemaMismatch(fields, detail="field failed payload validation")


def transform_response(raw: bytes, transform: Dict[str, List[str]]) -> CreditPayload:
    return validate(project(parse_response(raw), transform))
