"""
ChainCredit — Credit Score Aggregation & Attestation Engine

The single entry point callers use. Wires the components together:

    link_wallet ──> ScoreCalculator ──> WalletPortfolioStore ──┐
                                                                ├──> CompositePolicy ──> StorageAdapter
    request_off_chain_score ──> AttestationBridge ─────────────┘

    engine = build_engine()
    await engine.startup()
    portfolio = await engine.create_portfolio("ada@example.com", "Ada", "Lovelace")
    await engine.link_wallet(portfolio.user_id, "0xAbC...", proof)
    await engine.request_off_chain_score(portfolio.user_id, {"ssn": "..."})
    summary = await engine.summary(portfolio.user_id)
"""
import asyncio
from typing import Any, Dict, Optional

import httpx
import structlog
from neo4j.exceptions import DriverError, Neo4jError

from chaincredit.attestation.bridge import AttestationBridge
from chaincredit.attestation.proof import AttestationResult, verify_attestation
from chaincredit.attestation.source import SourceConfig
from chaincredit.config import Settings, get_settings
from chaincredit.ledger.client import LedgerClient, Web3LedgerClient
from chaincredit.log import configure_logging
from chaincredit.portfolio.locks import PortfolioLocks
from chaincredit.portfolio.model import LinkResult, PortfolioIdentity, UserPortfolio
from chaincredit.portfolio.store import WalletPortfolioStore
from chaincredit.scoring.composite import CompositePolicy
from chaincredit.scoring.wallet_score import ScoreCalculator
from chaincredit.storage.adapter import StorageAdapter
from chaincredit.storage.base import StorageBackend
from chaincredit.storage.memory import MemoryBackend

logger = structlog.get_logger()


class CreditScoreEngine:

    def __init__(self, store: WalletPortfolioStore, bridge: AttestationBridge):
        self.store = store
        self.bridge = bridge

    async def startup(self) -> None:
        """Prepare the durable schema. A failure leaves the engine in degraded mode."""
        if self.store.storage.durable is None:
            logger.info("engine_started", storage="volatile")
            return
        try:
            from chaincredit.db.neo4j import init_schema
            await asyncio.to_thread(init_schema)
            logger.info("engine_started", storage="durable")
        except (DriverError, Neo4jError) as e:
            logger.warning("neo4j_init_failed", error=str(e))

    async def shutdown(self) -> None:
        self.store.locks.close()
        if self.store.storage.durable is not None:
            from chaincredit.db.neo4j import close
            await asyncio.to_thread(close)
        logger.info("engine_stopped")

    # ── Portfolio ─────────────────────────────────────

    async def create_portfolio(self, email: str, first_name: str = "", last_name: str = "") -> UserPortfolio:
        return await self.store.create_portfolio(PortfolioIdentity(email, first_name, last_name))

    async def link_wallet(self, user_id: str, address: str, ownership_proof: Optional[str]) -> LinkResult:
        return await self.store.link_wallet(user_id, address, ownership_proof)

    async def refresh_wallet_score(self, user_id: str, address: str) -> LinkResult:
        return await self.store.refresh_wallet_score(user_id, address)

    async def aggregate_on_chain_score(self, user_id: str) -> Optional[int]:
        return await self.store.aggregate_on_chain_score(user_id)

    async def get_portfolio(self, user_id: str) -> UserPortfolio:
        return await self.store.get_portfolio(user_id)

    async def find_by_external_id(self, external_id: str) -> Optional[UserPortfolio]:
        return await self.store.find_by_external_id(external_id)

    async def find_by_wallet(self, address: str) -> Optional[UserPortfolio]:
        return await self.store.find_by_wallet(address)

    # ── Off-chain ─────────────────────────────────────

    async def request_off_chain_score(self, user_id: str, source_parameters: Dict[str, Any]) -> Dict[str, Any]:
        """
        Attest the source for this portfolio's externalId, then apply it.
        If the bridge fails, its error propagates and the portfolio is untouched.
        """
        portfolio = await self.store.get_portfolio(user_id)
        result = await self.bridge.request_attestation(portfolio.external_id, source_parameters)
        updated = await self.store.set_off_chain_score(user_id, result)
        data = {"attestation": result.to_dict()}
        data.update(updated.scores_view())
        return data

    async def apply_attestation(self, user_id: str, attestation: AttestationResult) -> UserPortfolio:
        return await self.store.set_off_chain_score(user_id, attestation)

    @staticmethod
    def verify_attestation(result: AttestationResult) -> bool:
        return verify_attestation(result)

    # ── Reporting ─────────────────────────────────────

    async def summary(self, user_id: str) -> Dict[str, Any]:
        return await self.store.summary(user_id)

    async def stats(self) -> Dict[str, Any]:
        return await self.store.get_stats()


def build_engine(
    settings: Optional[Settings] = None,
    ledger: Optional[LedgerClient] = None,
    durable: Optional[StorageBackend] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> CreditScoreEngine:
    """Assemble an engine from Settings. Explicit arguments override configuration."""
    settings = settings or get_settings()
    configure_logging(settings.LOG_FORMAT)

    if ledger is None and settings.ledger_enabled:
        ledger = Web3LedgerClient(
            settings.LEDGER_RPC_URL,
            scan_blocks=settings.LEDGER_SCAN_BLOCKS,
            tx_limit=settings.LEDGER_TX_LIMIT,
            request_timeout=settings.LEDGER_TIMEOUT,
        )
    calculator = ScoreCalculator(
        ledger=ledger,
        timeout=settings.LEDGER_TIMEOUT,
        window_size=settings.LEDGER_TX_LIMIT,
        window_days=settings.ACTIVITY_WINDOW_DAYS,
    )

    if durable is None and settings.durable_storage_enabled:
        from chaincredit.storage.neo4j import Neo4jBackend
        durable = Neo4jBackend()
    storage = StorageAdapter(volatile=MemoryBackend(), durable=durable)

    locks = PortfolioLocks(
        redis_url=settings.REDIS_URL or None,
        ttl=settings.PORTFOLIO_LOCK_TTL,
        wait=settings.PORTFOLIO_LOCK_WAIT,
    )
    store = WalletPortfolioStore(
        storage,
        calculator,
        policy=CompositePolicy(settings.ONCHAIN_WEIGHT, settings.OFFCHAIN_WEIGHT),
        locks=locks,
    )

    headers = {"Content-Type": "application/json"}
    if settings.CREDIT_BUREAU_API_KEY:
        headers["Authorization"] = f"Bearer {settings.CREDIT_BUREAU_API_KEY}"
    source = SourceConfig(
        url=settings.CREDIT_BUREAU_URL,
        method=settings.CREDIT_BUREAU_METHOD,
        headers=headers,
    )
    bridge = AttestationBridge(source, client=http_client, timeout=settings.ATTESTATION_TIMEOUT)

    logger.info(
        "engine_built",
        storage=storage.mode,
        ledger=calculator.has_ledger,
        distributed_locks=locks.distributed,
        source=source.url,
    )
    return CreditScoreEngine(store, bridge)
