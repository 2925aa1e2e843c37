"""
ChainCredit — Scoring Package
Re-exports for convenience.
"""
from chaincredit.scoring.wallet_score import (
    SCORE_MAX,
    SCORE_MIN,
    ScoreCalculator,
    WalletScore,
    clamp_score,
    compute_wallet_score,
    estimate_wallet_score,
)
from chaincredit.scoring.composite import (
    CompositePolicy,
    CompositeScore,
    Weights,
    aggregate_on_chain_score,
    compose,
)
