"""
ChainCredit — Volatile Storage Backend

Process-local maps guarded by one lock. Every check-and-set on the wallet
index happens under that lock, so two concurrent claims for the same address
can never both succeed.

Indexes:
    user_id      -> UserPortfolio snapshot
    external_id  -> user_id
    identity_key -> user_id
    wallet (lowercased) -> user_id
"""
import threading
from typing import Any, Dict, Optional

import structlog

from chaincredit.errors import AlreadyLinkedElsewhere, DuplicateIdentity, NotFound
from chaincredit.portfolio.model import UserPortfolio, WalletLink, address_key
from chaincredit.storage.base import StorageBackend

logger = structlog.get_logger()


class MemoryBackend(StorageBackend):
    name = "memory"
    durable = False

    def __init__(self):
        self._lock = threading.Lock()
        self._portfolios: Dict[str, UserPortfolio] = {}
        self._by_external: Dict[str, str] = {}
        self._by_identity: Dict[str, str] = {}
        self._wallet_owner: Dict[str, str] = {}

    def _store(self, portfolio: UserPortfolio) -> None:
        self._portfolios[portfolio.user_id] = portfolio.snapshot()
        self._by_external[portfolio.external_id] = portfolio.user_id
        self._by_identity[portfolio.identity_key] = portfolio.user_id

    def _require(self, user_id: str) -> None:
        if user_id not in self._portfolios:
            raise NotFound("portfolio", user_id)

    def _get(self, user_id: Optional[str]) -> Optional[UserPortfolio]:
        if user_id is None:
            return None
        found = self._portfolios.get(user_id)
        return found.snapshot() if found else None

    # ── Writes ────────────────────────────────────────

    async def register_user(self, portfolio: UserPortfolio) -> UserPortfolio:
        with self._lock:
            if portfolio.identity_key in self._by_identity:
                raise DuplicateIdentity(portfolio.identity_key)
            self._store(portfolio)
        logger.debug("memory_portfolio_registered", user_id=portfolio.user_id)
        return portfolio.snapshot()

    async def link_wallet(self, portfolio: UserPortfolio, link: WalletLink) -> UserPortfolio:
        key = address_key(link.address)
        with self._lock:
            self._require(portfolio.user_id)
            owner = self._wallet_owner.get(key)
            if owner is not None and owner != portfolio.user_id:
                raise AlreadyLinkedElsewhere(link.address)
            self._wallet_owner[key] = portfolio.user_id
            self._store(portfolio)
        return portfolio.snapshot()

    async def update_wallet_score(self, portfolio: UserPortfolio, link: WalletLink) -> UserPortfolio:
        with self._lock:
            self._require(portfolio.user_id)
            if self._wallet_owner.get(address_key(link.address)) != portfolio.user_id:
                raise NotFound("wallet", link.address)
            self._store(portfolio)
        return portfolio.snapshot()

    async def update_off_chain_score(self, portfolio: UserPortfolio) -> UserPortfolio:
        with self._lock:
            self._require(portfolio.user_id)
            self._store(portfolio)
        return portfolio.snapshot()

    def put(self, portfolio: UserPortfolio) -> None:
        """Upsert a portfolio confirmed by another backend, indexes included."""
        with self._lock:
            self._store(portfolio)
            for link in portfolio.linked_wallets:
                self._wallet_owner[address_key(link.address)] = portfolio.user_id

    # ── Reads ─────────────────────────────────────────

    async def is_wallet_linked(self, address: str) -> Optional[str]:
        with self._lock:
            return self._wallet_owner.get(address_key(address))

    async def get_portfolio(self, user_id: str) -> Optional[UserPortfolio]:
        with self._lock:
            return self._get(user_id)

    async def find_by_external_id(self, external_id: str) -> Optional[UserPortfolio]:
        with self._lock:
            return self._get(self._by_external.get(external_id))

    async def find_by_wallet(self, address: str) -> Optional[UserPortfolio]:
        with self._lock:
            return self._get(self._wallet_owner.get(address_key(address)))

    async def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "totalUsers": len(self._portfolios),
                "totalWallets": len(self._wallet_owner),
                "usersWithScores": sum(
                    1 for p in self._portfolios.values() if p.composite_score is not None
                ),
            }
