"""
ChainCredit — Attestation Proof Artifacts

    payload ──abi.encode(uint256 x 9)──> bytes ──keccak──> payloadHash

Commitment tree (depth 2, sorted-pair keccak at each node):

                    root
                 /        \\
            node0          node1
           /     \\        /     \\
    payloadHash  filler1  filler2  filler3

    commitmentPath = [filler1, node1]

Fillers are keccak("attestation-filler:{requestId}:{i}") so no two requests
share a tree, while the same request always rebuilds the same one.
Sorted pairs mean a verifier needs only the sibling hashes, not their side.

referenceBlock / referenceTxId are opaque provenance identifiers. They are
not produced by a real ledger.
"""
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import EncodingError
from web3 import Web3

from chaincredit.attestation.source import PAYLOAD_FIELDS
from chaincredit.attestation.transform import UINT256_MAX, CreditPayload
from chaincredit.errors import SchemaMismatch

PAYLOAD_TYPES = ["uint256"] * len(PAYLOAD_FIELDS)

_REFERENCE_BLOCK_BASE = 5_000_000
_REFERENCE_BLOCK_SPAN = 1_000_000


# ── Encoding ──────────────────────────────────────

def encode_payload(payload: CreditPayload) -> bytes:
    """Stable field order, 32 bytes per field."""
    try:
        return encode(PAYLOAD_TYPES, payload.as_list())
    except EncodingError as e:
        raise SchemaMismatch(_unencodable(payload), detail=f"payload does not fit uint256: {e}")


def _unencodable(payload: CreditPayload) -> List[str]:
    return [
        name for name, value in payload.ordered().items()
        if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= UINT256_MAX
    ]


def decode_payload(encoded: bytes) -> CreditPayload:
    values = decode(PAYLOAD_TYPES, encoded)
    return CreditPayload(**dict(zip(PAYLOAD_FIELDS, (int(v) for v in values))))


def payload_hash(encoded: bytes) -> bytes:
    return bytes(Web3.keccak(encoded))


# ── Commitment tree ───────────────────────────────

def hash_pair(a: bytes, b: bytes) -> bytes:
    left, right = (a, b) if a <= b else (b, a)
    return bytes(Web3.keccak(left + right))


def filler_leaves(request_id: str, count: int = 3) -> List[bytes]:
    return [bytes(Web3.keccak(text=f"attestation-filler:{request_id}:{i}")) for i in range(1, count + 1)]


def build_commitment(leaf: bytes, fillers: Sequence[bytes]) -> Tuple[bytes, List[bytes]]:
    """Returns (root, path) for leaf at position 0 of [leaf, *fillers]."""
    if len(fillers) != 3:
        raise ValueError("commitment tree takes exactly three filler leaves")
    node0 = hash_pair(leaf, fillers[0])
    node1 = hash_pair(fillers[1], fillers[2])
    return hash_pair(node0, node1), [fillers[0], node1]


def verify_commitment(leaf: bytes, path: Sequence[bytes], root: bytes) -> bool:
    computed = leaf
    for sibling in path:
        computed = hash_pair(computed, sibling)
    return computed == root


# ── Bundle ────────────────────────────────────────

def to_hex(value: bytes) -> str:
    return Web3.to_hex(value)


def from_hex(value: str) -> bytes:
    return bytes(Web3.to_bytes(hexstr=value))


@dataclass(frozen=True)
class AttestationProof:
    payload_hash: str
    commitment_root: str
    commitment_path: Tuple[str, ...]
    reference_block: int
    reference_tx_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payloadHash": self.payload_hash,
            "commitmentRoot": self.commitment_root,
            "commitmentPath": list(self.commitment_path),
            "referenceBlock": self.reference_block,
            "referenceTxId": self.reference_tx_id,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "AttestationProof":
        return AttestationProof(
            payload_hash=data["payloadHash"],
            commitment_root=data["commitmentRoot"],
            commitment_path=tuple(data["commitmentPath"]),
            reference_block=int(data["referenceBlock"]),
            reference_tx_id=data["referenceTxId"],
        )


def generate_proof(request_id: str, encoded: bytes) -> AttestationProof:
    leaf = payload_hash(encoded)
    root, path = build_commitment(leaf, filler_leaves(request_id))
    seed = Web3.keccak(text=request_id)
    return AttestationProof(
        payload_hash=to_hex(leaf),
        commitment_root=to_hex(root),
        commitment_path=tuple(to_hex(p) for p in path),
        reference_block=_REFERENCE_BLOCK_BASE + int.from_bytes(seed, "big") % _REFERENCE_BLOCK_SPAN,
        reference_tx_id=to_hex(Web3.keccak(text=f"{request_id}_{time.time_ns()}")),
    )


@dataclass(frozen=True)
class AttestationResult:
    """Immutable output of one completed bridge invocation."""
    request_id: str
    subject: str
    payload: Dict[str, int]
    proof: AttestationProof
    encoded_payload: str
    completed_at: str
    request: Dict[str, Any] = field(default_factory=dict)

    @property
    def credit_score(self) -> int:
        return self.payload["creditScore"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requestId": self.request_id,
            "subject": self.subject,
            "payload": dict(self.payload),
            "proof": self.proof.to_dict(),
            "encodedPayload": self.encoded_payload,
            "completedAt": self.completed_at,
            "request": self.request,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "AttestationResult":
        return AttestationResult(
            request_id=data["requestId"],
            subject=data["subject"],
            payload=dict(data["payload"]),
            proof=AttestationProof.from_dict(data["proof"]),
            encoded_payload=data["encodedPayload"],
            completed_at=data["completedAt"],
            request=data.get("request") or {},
        )


def verify_attestation(result: AttestationResult) -> bool:
    """
    Re-derive everything checkable from the result alone:
    payload -> encoding -> payloadHash, then payloadHash -> root via the path.
    """
    encoded = encode_payload(CreditPayload(**result.payload))
    if to_hex(encoded) != result.encoded_payload:
        return False
    leaf = payload_hash(encoded)
    if to_hex(leaf) != result.proof.payload_hash:
        return False
    path = [from_hex(p) for p in result.proof.commitment_path]
    return verify_commitment(leaf, path, from_hex(result.proof.commitment_root))
