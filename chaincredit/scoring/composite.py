"""
ChainCredit — Composite Score Engine

Blends the aggregated on-chain score with the attested off-chain score.

    onChain  offChain   weights (on, off)   score
    ───────  ────────   ─────────────────   ───────────────────────────
    yes      yes        (0.3, 0.7)          round(on·0.3 + off·0.7)
    yes      no         (1.0, 0.0)          on
    no       yes        (0.0, 1.0)          off
    no       no         (0.0, 0.0)          None

The 0.3/0.7 split is a tunable policy constant (ONCHAIN_WEIGHT /
OFFCHAIN_WEIGHT), not a derived law. Arithmetic is done in Decimal with
half-up rounding so 744.5 always becomes 745.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, Optional

from chaincredit.scoring.wallet_score import SCORE_MAX, SCORE_MIN

DEFAULT_ONCHAIN_WEIGHT = Decimal("0.3")
DEFAULT_OFFCHAIN_WEIGHT = Decimal("0.7")


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _clamp(value: int) -> int:
    return min(max(value, SCORE_MIN), SCORE_MAX)


def aggregate_on_chain_score(scores: Iterable[int]) -> Optional[int]:
    """
    Arithmetic mean of linked wallet scores, equal weighting, rounded half up.
    None when there are no wallets.
    """
    values = [Decimal(int(s)) for s in scores]
    if not values:
        return None
    return _clamp(_round_half_up(sum(values) / len(values)))


@dataclass(frozen=True)
class Weights:
    on_chain: Decimal
    off_chain: Decimal

    def to_dict(self) -> Dict[str, float]:
        return {"onChain": float(self.on_chain), "offChain": float(self.off_chain)}


@dataclass(frozen=True)
class CompositeScore:
    score: Optional[int]
    weights: Weights
    on_chain: Optional[int]
    off_chain: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scores": {
                "onChain": self.on_chain,
                "offChain": self.off_chain,
                "composite": self.score,
            },
            "weights": self.weights.to_dict(),
        }


class CompositePolicy:
    """Data-availability-dependent weighting. Total over all four cases."""

    def __init__(
        self,
        on_chain_weight: Decimal = DEFAULT_ONCHAIN_WEIGHT,
        off_chain_weight: Decimal = DEFAULT_OFFCHAIN_WEIGHT,
    ):
        on_chain_weight = Decimal(on_chain_weight)
        off_chain_weight = Decimal(off_chain_weight)
        if on_chain_weight < 0 or off_chain_weight < 0 or on_chain_weight + off_chain_weight != 1:
            raise ValueError("Composite weights must be non-negative and sum to 1")
        self.blended = Weights(on_chain_weight, off_chain_weight)

    def compose(self, on_chain: Optional[int], off_chain: Optional[int]) -> CompositeScore:
        if on_chain is not None and off_chain is not None:
            w = self.blended
            raw = Decimal(on_chain) * w.on_chain + Decimal(off_chain) * w.off_chain
            return CompositeScore(_clamp(_round_half_up(raw)), w, on_chain, off_chain)

        if on_chain is not None:
            return CompositeScore(_clamp(on_chain), Weights(Decimal("1.0"), Decimal("0.0")), on_chain, None)

        if off_chain is not None:
            return CompositeScore(_clamp(off_chain), Weights(Decimal("0.0"), Decimal("1.0")), None, off_chain)

        return CompositeScore(None, Weights(Decimal("0.0"), Decimal("0.0")), None, None)


_default_policy = CompositePolicy()


def compose(on_chain: Optional[int], off_chain: Optional[int]) -> CompositeScore:
    """compose() under the default 0.3 / 0.7 policy."""
    return _default_policy.compose(on_chain, off_chain)
