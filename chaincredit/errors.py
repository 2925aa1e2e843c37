"""
ChainCredit — Error Taxonomy

Every operation either returns a fully-formed result or raises one of these.

    CreditEngineError
    ├── ValidationError        caller-fixable, never retried
    │   ├── InvalidAddress
    │   ├── ProofRequired
    │   └── SubjectMismatch
    ├── ConflictError          terminal, surfaced as-is
    │   ├── DuplicateIdentity
    │   ├── AlreadyLinkedElsewhere
    │   └── PortfolioBusy
    ├── SourceUnavailable      caller may re-invoke; the core never retries
    ├── SchemaMismatch         upstream contract drift, terminal for the request
    ├── NotFound
    └── StorageUnavailable     infrastructure failure inside a storage backend
"""
from typing import List, Optional


class CreditEngineError(Exception):
    code = "error"

    def to_dict(self) -> dict:
        return {"error": self.code, "message": str(self)}


# ── Validation ────────────────────────────────────

class ValidationError(CreditEngineError):
    code = "validation_error"


class InvalidAddress(ValidationError):
    code = "invalid_address"

    def __init__(self, address: str, reason: str = "not a well-formed account address"):
        self.address = address
        super().__init__(f"Invalid wallet address {address!r}: {reason}")


class ProofRequired(ValidationError):
    code = "proof_required"

    def __init__(self):
        super().__init__("An ownership proof token is required to link a wallet")


class SubjectMismatch(ValidationError):
    code = "subject_mismatch"

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Attestation subject {actual} does not match portfolio {expected}")


# ── Conflicts ─────────────────────────────────────

class ConflictError(CreditEngineError):
    code = "conflict"


class DuplicateIdentity(ConflictError):
    code = "duplicate_identity"

    def __init__(self, identity_key: str):
        self.identity_key = identity_key
        super().__init__(f"A portfolio already exists for identity {identity_key}")


class AlreadyLinkedElsewhere(ConflictError):
    code = "already_linked_elsewhere"

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Wallet {address} is already linked to another portfolio")


class PortfolioBusy(ConflictError):
    code = "portfolio_busy"

    def __init__(self, user_id: str, waited: float):
        self.user_id = user_id
        self.waited = waited
        super().__init__(f"Portfolio {user_id} is locked by another writer (waited {waited:.1f}s)")


# ── External source ───────────────────────────────

class SourceUnavailable(CreditEngineError):
    code = "source_unavailable"

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Attestation source {url} unavailable: {reason}")


class SchemaMismatch(CreditEngineError):
    code = "schema_mismatch"

    def __init__(self, fields: List[str], detail: Optional[str] = None):
        self.fields = list(fields)
        message = f"Source response does not satisfy the payload schema: {', '.join(self.fields) or 'body'}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["fields"] = self.fields
        return data


# ── Lookup ────────────────────────────────────────

class NotFound(CreditEngineError):
    code = "not_found"

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} {key} not found")


# ── Infrastructure ────────────────────────────────

class StorageUnavailable(CreditEngineError):
    code = "storage_unavailable"

    def __init__(self, backend: str, operation: str, reason: str):
        self.backend = backend
        self.operation = operation
        self.reason = reason
        super().__init__(f"{backend} backend failed during {operation}: {reason}")
