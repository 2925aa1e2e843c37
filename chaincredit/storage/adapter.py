"""
ChainCredit — Storage Adapter

One entry point over two interchangeable backends:

    durable configured?  durable call result        what happens
    ───────────────────  ─────────────────────────  ───────────────────────────────
    no                   -                          volatile, degraded=False
    yes                  ok                         durable, mirrored into volatile
    yes                  StorageUnavailable         retried ONCE on volatile, degraded=True
    yes                  NotFound, portfolio only   written to volatile, degraded=True
                         held in volatile
    yes                  business error             propagated unchanged

StorageUnavailable always falls back to volatile. DuplicateIdentity,
AlreadyLinkedElsewhere and friends mean the same thing on every backend and
propagate unchanged. NotFound propagates too, unless the portfolio was stored
while degraded.

Degraded writes stay in the volatile backend. They are not replayed into the
durable backend when it recovers, so later writes to a portfolio that only
exists in volatile keep going there.
"""
from typing import Any, Dict, Optional

import structlog

from chaincredit.errors import NotFound, StorageUnavailable
from chaincredit.portfolio.model import StorageMode, UserPortfolio, WalletLink
from chaincredit.storage.base import StorageBackend, StorageResult
from chaincredit.storage.memory import MemoryBackend

logger = structlog.get_logger()


class StorageAdapter:

    def __init__(self, volatile: Optional[MemoryBackend] = None, durable: Optional[StorageBackend] = None):
        self.volatile = volatile or MemoryBackend()
        self.durable = durable

    @property
    def mode(self) -> str:
        return "durable" if self.durable is not None else "volatile"

    async def _call(self, operation: str, *args, mirror: bool = False) -> StorageResult:
        if self.durable is None:
            _stamp(args, StorageMode.VOLATILE)
            value = await getattr(self.volatile, operation)(*args)
            return StorageResult(value, self.volatile.name)

        try:
            _stamp(args, StorageMode.DURABLE)
            value = await getattr(self.durable, operation)(*args)
        except StorageUnavailable as e:
            logger.warning(
                "storage_degraded",
                operation=operation,
                backend=self.durable.name,
                fallback=self.volatile.name,
                error=e.reason,
            )
            _stamp(args, StorageMode.DEGRADED)
            value = await getattr(self.volatile, operation)(*args)
            return StorageResult(value, self.volatile.name, degraded=True)
        except NotFound:
            if not await self._held_in_volatile(args):
                raise
            logger.warning(
                "storage_volatile_only",
                operation=operation,
                backend=self.durable.name,
                fallback=self.volatile.name,
            )
            _stamp(args, StorageMode.DEGRADED)
            value = await getattr(self.volatile, operation)(*args)
            return StorageResult(value, self.volatile.name, degraded=True)

        if mirror and isinstance(value, UserPortfolio):
            self.volatile.put(value)
        return StorageResult(value, self.durable.name)

    async def _held_in_volatile(self, args) -> bool:
        """True when the portfolio being written was only ever stored while degraded."""
        for arg in args:
            if isinstance(arg, UserPortfolio):
                stored = await self.volatile.get_portfolio(arg.user_id)
                return stored is not None and stored.storage_mode == StorageMode.DEGRADED.value
        return False

    async def _read(self, operation: str, *args) -> StorageResult:
        result = await self._call(operation, *args)
        if result.value is None and self.durable is not None and not result.degraded:
            # Portfolios written while degraded only exist in the volatile backend
            fallback = await getattr(self.volatile, operation)(*args)
            if fallback is not None:
                return StorageResult(fallback, self.volatile.name, degraded=True)
        return result

    # ── Capability set ────────────────────────────────

    async def register_user(self, portfolio: UserPortfolio) -> StorageResult:
        return await self._call("register_user", portfolio, mirror=True)

    async def link_wallet(self, portfolio: UserPortfolio, link: WalletLink) -> StorageResult:
        return await self._call("link_wallet", portfolio, link, mirror=True)

    async def update_wallet_score(self, portfolio: UserPortfolio, link: WalletLink) -> StorageResult:
        return await self._call("update_wallet_score", portfolio, link, mirror=True)

    async def update_off_chain_score(self, portfolio: UserPortfolio) -> StorageResult:
        return await self._call("update_off_chain_score", portfolio, mirror=True)

    async def is_wallet_linked(self, address: str) -> StorageResult:
        return await self._read("is_wallet_linked", address)

    async def get_portfolio(self, user_id: str) -> StorageResult:
        return await self._read("get_portfolio", user_id)

    async def find_by_external_id(self, external_id: str) -> StorageResult:
        return await self._read("find_by_external_id", external_id)

    async def find_by_wallet(self, address: str) -> StorageResult:
        return await self._read("find_by_wallet", address)

    async def get_stats(self) -> Dict[str, Any]:
        result = await self._call("get_stats")
        stats = dict(result.value)
        stats["storage"] = {
            "mode": self.mode,
            "backend": result.backend,
            "degraded": result.degraded,
        }
        return stats


def _stamp(args, mode: StorageMode) -> None:
    for arg in args:
        if isinstance(arg, UserPortfolio):
            arg.storage_mode = mode.value
