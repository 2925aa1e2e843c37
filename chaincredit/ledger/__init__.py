"""
ChainCredit — Ledger Package
Re-exports for convenience.
"""
from chaincredit.ledger.client import (
    ActivitySignals,
    LedgerClient,
    LedgerTransaction,
    Web3LedgerClient,
    collect_activity_signals,
)
