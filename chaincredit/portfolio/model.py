"""
ChainCredit - Portfolio Domain Model

A UserPortfolio is one person's linked wallets plus the three derived scores.

Schema (durable backend):
    (:Portfolio)-[:LINKED {linked_at, score, ...}]->(:Wallet)
    (:Portfolio)-[:LATEST_ATTESTATION]->(:Attestation)

Derived fields:
    on_chain_score   <- mean(linked_wallets[*].score), None when empty
    composite_score  <- compose(on_chain_score, off_chain_score)
    off_chain_score  <- only ever set from a completed AttestationResult
"""
import copy
import secrets
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from web3 import Web3

from chaincredit.errors import InvalidAddress, ValidationError


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_address(raw: str) -> str:
    """Strictly validate & checksum an account address."""
    s = (raw or "").strip() if isinstance(raw, str) else ""
    if not s.startswith("0x") or len(s) != 42:
        raise InvalidAddress(str(raw), "must be 0x-prefixed and 42 characters long")
    try:
        return Web3.to_checksum_address(s)
    except (ValueError, TypeError):
        raise InvalidAddress(s, "not a valid hex string")


def address_key(address: str) -> str:
    """Case-insensitive key used for wallet ownership lookups."""
    return address.strip().lower()


def new_external_id() -> str:
    return Web3.to_checksum_address("0x" + secrets.token_hex(20))


class LinkOutcome(str, Enum):
    LINKED = "linked"
    ALREADY_LINKED_HERE = "already_linked_here"
    REFRESHED = "refreshed"


class StorageMode(str, Enum):
    DURABLE = "durable"
    VOLATILE = "volatile"
    DEGRADED = "degraded"        # durable configured, write landed in volatile


@dataclass(frozen=True)
class PortfolioIdentity:
    email: str
    first_name: str = ""
    last_name: str = ""

    def __post_init__(self):
        if not self.email or "@" not in self.email:
            raise ValidationError(f"A valid email is required to create a portfolio, got {self.email!r}")

    @property
    def identity_key(self) -> str:
        return self.email.strip().lower()


@dataclass(frozen=True)
class WalletLink:
    address: str
    linked_at: str
    score: int
    proof_of_ownership: str
    estimated: bool = False
    breakdown: Dict[str, Any] = field(default_factory=dict)
    scored_at: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @staticmethod
    def from_record(record: dict) -> "WalletLink":
        return WalletLink(
            address=record.get("address", ""),
            linked_at=_to_iso(record.get("linked_at")) or "",
            score=int(record.get("score", 0)),
            proof_of_ownership=record.get("proof_of_ownership", ""),
            estimated=bool(record.get("estimated", False)),
            breakdown=record.get("breakdown") or {},
            scored_at=_to_iso(record.get("scored_at")),
        )


@dataclass
class UserPortfolio:
    user_id: str
    external_id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    created_at: Optional[str] = None
    linked_wallets: List[WalletLink] = field(default_factory=list)
    on_chain_score: Optional[int] = None
    off_chain_score: Optional[int] = None
    composite_score: Optional[int] = None
    weights: Dict[str, float] = field(default_factory=lambda: {"onChain": 0.0, "offChain": 0.0})
    last_score_update: Optional[str] = None
    attestation: Optional[Dict[str, Any]] = None
    storage_mode: Optional[str] = None

    @staticmethod
    def new(identity: PortfolioIdentity) -> "UserPortfolio":
        return UserPortfolio(
            user_id=str(uuid.uuid4()),
            external_id=new_external_id(),
            email=identity.email.strip(),
            first_name=identity.first_name,
            last_name=identity.last_name,
            created_at=utc_now(),
        )

    @property
    def identity_key(self) -> str:
        return self.email.strip().lower()

    @property
    def wallet_scores(self) -> List[int]:
        return [w.score for w in self.linked_wallets]

    def find_wallet(self, address: str) -> Optional[WalletLink]:
        key = address_key(address)
        for link in self.linked_wallets:
            if address_key(link.address) == key:
                return link
        return None

    def snapshot(self) -> "UserPortfolio":
        return copy.deepcopy(self)

    def scores_view(self) -> dict:
        return {
            "scores": {
                "onChain": self.on_chain_score,
                "offChain": self.off_chain_score,
                "composite": self.composite_score,
            },
            "weights": dict(self.weights),
            "portfolioWallets": len(self.linked_wallets),
        }

    def to_dict(self) -> dict:
        data = asdict(self)
        data["linked_wallets"] = [w.to_dict() for w in self.linked_wallets]
        return data

    @staticmethod
    def from_record(record: dict) -> "UserPortfolio":
        return UserPortfolio(
            user_id=record.get("user_id", ""),
            external_id=record.get("external_id", ""),
            email=record.get("email", ""),
            first_name=record.get("first_name") or "",
            last_name=record.get("last_name") or "",
            created_at=_to_iso(record.get("created_at")),
            linked_wallets=[WalletLink.from_record(w) for w in record.get("linked_wallets") or []],
            on_chain_score=record.get("on_chain_score"),
            off_chain_score=record.get("off_chain_score"),
            composite_score=record.get("composite_score"),
            weights=record.get("weights") or {"onChain": 0.0, "offChain": 0.0},
            last_score_update=_to_iso(record.get("last_score_update")),
            attestation=record.get("attestation"),
            storage_mode=record.get("storage_mode"),
        )


@dataclass(frozen=True)
class LinkResult:
    outcome: LinkOutcome
    portfolio: UserPortfolio
    wallet: WalletLink
    degraded: bool = False

    def to_dict(self) -> dict:
        data = {
            "outcome": self.outcome.value,
            "wallet": self.wallet.to_dict(),
            "degraded": self.degraded,
        }
        data.update(self.portfolio.scores_view())
        return data


def _to_iso(val) -> Optional[str]:
    """Convert Neo4j DateTime or any datetime to ISO string."""
    if val is None:
        return None
    if hasattr(val, "to_native"):
        return val.to_native().isoformat()
    if isinstance(val, datetime):
        return val.isoformat()
    return str(val)
