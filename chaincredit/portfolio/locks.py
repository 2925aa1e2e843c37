"""
ChainCredit — Per-Portfolio Locks

Wallet links and score recomputation for one userId are serialized;
different portfolios never block each other.

Two layers:
    local   asyncio.Lock keyed by userId         (always)
    remote  Redis SET NX EX on cc:portfolio:locks:{userId}   (when REDIS_URL is set)

The remote layer makes the guarantee hold across worker processes. If Redis
cannot be reached the lock degrades to local-only and says so in the log.

Usage:
    async with locks.hold(user_id):
        ...
"""
import asyncio
import secrets
import time
from contextlib import asynccontextmanager
from typing import Dict, Optional

import redis
import structlog

from chaincredit.errors import PortfolioBusy

logger = structlog.get_logger()

LOCK_PREFIX = "cc:portfolio:locks:"


class PortfolioLocks:

    def __init__(
        self,
        redis_url: Optional[str] = None,
        client: Optional[redis.Redis] = None,
        ttl: int = 30,
        wait: float = 10.0,
        poll_interval: float = 0.05,
    ):
        self._url = redis_url
        self._client = client
        self._ttl = ttl
        self._wait = wait
        self._poll_interval = poll_interval
        self._local: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}
        self._remote_enabled = bool(redis_url) or client is not None

    @property
    def distributed(self) -> bool:
        return self._remote_enabled

    def _connect(self) -> Optional[redis.Redis]:
        """Lazy connect — only opens connection when first used."""
        if self._client is None and self._url:
            self._client = redis.Redis.from_url(
                self._url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=2,
            )
            logger.info("portfolio_locks_connected", url=self._url.split("@")[-1])
        return self._client

    @asynccontextmanager
    async def hold(self, user_id: str):
        lock = self._local.setdefault(user_id, asyncio.Lock())
        self._users[user_id] = self._users.get(user_id, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self._wait)
            except asyncio.TimeoutError:
                raise PortfolioBusy(user_id, self._wait)

            try:
                token = await self._acquire_remote(user_id)
                try:
                    yield
                finally:
                    if token is not None:
                        await self._release_remote(user_id, token)
            finally:
                lock.release()
        finally:
            # Last holder or waiter out drops the entry
            self._users[user_id] -= 1
            if not self._users[user_id]:
                del self._users[user_id]
                del self._local[user_id]

    @property
    def tracked(self) -> int:
        """Portfolios with a local lock currently held or awaited."""
        return len(self._local)

    # ── Remote layer ──────────────────────────────────

    async def _acquire_remote(self, user_id: str) -> Optional[str]:
        if not self._remote_enabled:
            return None

        key = f"{LOCK_PREFIX}{user_id}"
        token = secrets.token_hex(16)
        deadline = time.monotonic() + self._wait

        while True:
            try:
                client = self._connect()
                acquired = await asyncio.to_thread(client.set, key, token, nx=True, ex=self._ttl)
            except redis.RedisError as e:
                logger.warning("portfolio_lock_remote_unavailable", user_id=user_id, error=str(e))
                return None

            if acquired:
                return token
            if time.monotonic() >= deadline:
                logger.warning("portfolio_lock_timeout", user_id=user_id, waited=self._wait)
                raise PortfolioBusy(user_id, self._wait)
            await asyncio.sleep(self._poll_interval)

    async def _release_remote(self, user_id: str, token: str) -> None:
        key = f"{LOCK_PREFIX}{user_id}"
        try:
            client = self._connect()
            current = await asyncio.to_thread(client.get, key)
            if current == token:
                await asyncio.to_thread(client.delete, key)
        except redis.RedisError as e:
            # TTL expiry frees the key if this delete never lands
            logger.warning("portfolio_lock_release_failed", user_id=user_id, error=str(e))

    def close(self):
        if self._client is not None and self._url:
            self._client.close()
            self._client = None
            logger.info("portfolio_locks_disconnected")
