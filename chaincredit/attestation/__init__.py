"""
ChainCredit — Attestation Package
Re-exports for convenience.
"""
from chaincredit.attestation.source import (
    PAYLOAD_FIELDS,
    AttestationRequest,
    AttestationState,
    SourceConfig,
)
from chaincredit.attestation.transform import CreditPayload, transform_response
from chaincredit.attestation.proof import (
    AttestationProof,
    AttestationResult,
    decode_payload,
    encode_payload,
    verify_attestation,
    verify_commitment,
)
from chaincredit.attestation.bridge import AttestationBridge
