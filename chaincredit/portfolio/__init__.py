"""
ChainCredit — Portfolio Package
Re-exports for convenience.
"""
from chaincredit.portfolio.model import (
    LinkOutcome,
    LinkResult,
    PortfolioIdentity,
    StorageMode,
    UserPortfolio,
    WalletLink,
    normalize_address,
)
from chaincredit.portfolio.locks import PortfolioLocks
