"""
ChainCredit — Durable Storage Backend (Neo4j)

Schema:
    (:Portfolio {user_id, external_id, identity_key, ...scores})
    (:Portfolio)-[:LINKED {position, linked_at, score, ...}]->(:Wallet {address, owner})
    (:Portfolio)-[:LATEST_ATTESTATION]->(:Attestation {request_id, record})
    (:Portfolio)-[:ATTESTED]->(:Attestation)          history, never deleted

Wallet ownership is claimed with MERGE on the uniquely-constrained
Wallet.address inside one write transaction; the owner check and the
LINKED edge commit together or not at all.

The driver is synchronous; every unit of work runs in a worker thread.
Infrastructure failures surface as StorageUnavailable, constraint violations
as the matching ConflictError.
"""
import asyncio
import json
from typing import Any, Callable, Dict, Optional

import structlog
from neo4j.exceptions import (
    AuthError,
    ConstraintError,
    DatabaseError,
    DriverError,
    ServiceUnavailable,
    SessionExpired,
    TransientError,
)

from chaincredit.errors import (
    AlreadyLinkedElsewhere,
    DuplicateIdentity,
    NotFound,
    StorageUnavailable,
)
from chaincredit.portfolio.model import UserPortfolio, WalletLink, address_key
from chaincredit.storage.base import StorageBackend

logger = structlog.get_logger()

_INFRA_ERRORS = (ServiceUnavailable, SessionExpired, TransientError, DatabaseError, AuthError, DriverError)

_PORTFOLIO_RETURN = """
    OPTIONAL MATCH (p)-[l:LINKED]->(w:Wallet)
    WITH p, l, w ORDER BY l.position
    WITH p, collect(CASE WHEN l IS NULL THEN null ELSE l {.*, address: w.checksum} END) AS wallets
    OPTIONAL MATCH (p)-[:LATEST_ATTESTATION]->(a:Attestation)
    RETURN p {.*} AS portfolio, wallets, a.record AS attestation
"""


def _portfolio_props(p: UserPortfolio) -> Dict[str, Any]:
    return {
        "on_chain_score": p.on_chain_score,
        "off_chain_score": p.off_chain_score,
        "composite_score": p.composite_score,
        "weights": json.dumps(p.weights),
        "last_score_update": p.last_score_update,
        "storage_mode": p.storage_mode,
    }


def _link_props(link: WalletLink, position: int) -> Dict[str, Any]:
    return {
        "position": position,
        "linked_at": link.linked_at,
        "score": link.score,
        "estimated": link.estimated,
        "proof_of_ownership": link.proof_of_ownership,
        "breakdown": json.dumps(link.breakdown),
        "scored_at": link.scored_at,
    }


def _from_row(row) -> Optional[UserPortfolio]:
    if row is None or row["portfolio"] is None:
        return None
    record = dict(row["portfolio"])
    record["weights"] = json.loads(record["weights"]) if record.get("weights") else None
    wallets = []
    for w in row["wallets"]:
        w = dict(w)
        w["breakdown"] = json.loads(w["breakdown"]) if w.get("breakdown") else {}
        wallets.append(w)
    record["linked_wallets"] = wallets
    record["attestation"] = json.loads(row["attestation"]) if row["attestation"] else None
    return UserPortfolio.from_record(record)


class Neo4jBackend(StorageBackend):
    name = "neo4j"
    durable = True

    def __init__(self, session_factory: Optional[Callable] = None):
        if session_factory is None:
            from chaincredit.db.neo4j import get_session
            session_factory = get_session
        self._session_factory = session_factory

    async def _run(self, operation: str, work: Callable, *args):
        try:
            return await asyncio.to_thread(self._execute, work, *args)
        except _INFRA_ERRORS as e:
            logger.error("neo4j_operation_failed", operation=operation, error=str(e))
            raise StorageUnavailable(self.name, operation, str(e))

    def _execute(self, work: Callable, *args):
        with self._session_factory() as session:
            return session.execute_write(work, *args)

    # ── Writes ────────────────────────────────────────

    async def register_user(self, portfolio: UserPortfolio) -> UserPortfolio:
        try:
            await self._run("register_user", _register_tx, portfolio)
        except ConstraintError:
            raise DuplicateIdentity(portfolio.identity_key)
        logger.debug("neo4j_portfolio_registered", user_id=portfolio.user_id)
        return portfolio.snapshot()

    async def link_wallet(self, portfolio: UserPortfolio, link: WalletLink) -> UserPortfolio:
        try:
            await self._run("link_wallet", _link_tx, portfolio, link)
        except ConstraintError:
            raise AlreadyLinkedElsewhere(link.address)
        return portfolio.snapshot()

    async def update_wallet_score(self, portfolio: UserPortfolio, link: WalletLink) -> UserPortfolio:
        await self._run("update_wallet_score", _rescore_tx, portfolio, link)
        return portfolio.snapshot()

    async def update_off_chain_score(self, portfolio: UserPortfolio) -> UserPortfolio:
        await self._run("update_off_chain_score", _attest_tx, portfolio)
        return portfolio.snapshot()

    # ── Reads ─────────────────────────────────────────

    async def is_wallet_linked(self, address: str) -> Optional[str]:
        return await self._run("is_wallet_linked", _wallet_owner_tx, address_key(address))

    async def get_portfolio(self, user_id: str) -> Optional[UserPortfolio]:
        return await self._run("get_portfolio", _find_tx, "MATCH (p:Portfolio {user_id: $key})", user_id)

    async def find_by_external_id(self, external_id: str) -> Optional[UserPortfolio]:
        return await self._run(
            "find_by_external_id", _find_tx, "MATCH (p:Portfolio {external_id: $key})", external_id
        )

    async def find_by_wallet(self, address: str) -> Optional[UserPortfolio]:
        return await self._run(
            "find_by_wallet",
            _find_tx,
            "MATCH (:Wallet {address: $key})<-[:LINKED]-(p:Portfolio)",
            address_key(address),
        )

    async def get_stats(self) -> Dict[str, Any]:
        return await self._run("get_stats", _stats_tx)


# =============================================
# TRANSACTION FUNCTIONS
# =============================================

def _register_tx(tx, portfolio: UserPortfolio):
    existing = tx.run(
        "MATCH (p:Portfolio {identity_key: $identity_key}) RETURN p.user_id AS user_id",
        identity_key=portfolio.identity_key,
    ).single()
    if existing:
        raise DuplicateIdentity(portfolio.identity_key)

    tx.run("""
        CREATE (p:Portfolio {
            user_id: $user_id,
            external_id: $external_id,
            identity_key: $identity_key,
            email: $email,
            first_name: $first_name,
            last_name: $last_name,
            created_at: $created_at
        })
        SET p += $props
    """, user_id=portfolio.user_id, external_id=portfolio.external_id,
         identity_key=portfolio.identity_key, email=portfolio.email,
         first_name=portfolio.first_name, last_name=portfolio.last_name,
         created_at=portfolio.created_at, props=_portfolio_props(portfolio))


def _link_tx(tx, portfolio: UserPortfolio, link: WalletLink):
    record = tx.run("""
        MATCH (p:Portfolio {user_id: $user_id})
        MERGE (w:Wallet {address: $key})
        ON CREATE SET w.owner = $user_id, w.checksum = $address
        RETURN w.owner AS owner
    """, user_id=portfolio.user_id, key=address_key(link.address), address=link.address).single()

    if record is None:
        raise NotFound("portfolio", portfolio.user_id)
    if record["owner"] != portfolio.user_id:
        raise AlreadyLinkedElsewhere(link.address)

    tx.run("""
        MATCH (p:Portfolio {user_id: $user_id}), (w:Wallet {address: $key})
        MERGE (p)-[l:LINKED]->(w)
        SET l += $link, p += $props
    """, user_id=portfolio.user_id, key=address_key(link.address),
         link=_link_props(link, len(portfolio.linked_wallets) - 1),
         props=_portfolio_props(portfolio))


def _rescore_tx(tx, portfolio: UserPortfolio, link: WalletLink):
    record = tx.run("""
        MATCH (p:Portfolio {user_id: $user_id})-[l:LINKED]->(w:Wallet {address: $key})
        SET l.score = $score, l.estimated = $estimated,
            l.breakdown = $breakdown, l.scored_at = $scored_at,
            p += $props
        RETURN w.address AS address
    """, user_id=portfolio.user_id, key=address_key(link.address), score=link.score,
         estimated=link.estimated, breakdown=json.dumps(link.breakdown),
         scored_at=link.scored_at, props=_portfolio_props(portfolio)).single()
    if record is None:
        raise NotFound("wallet", link.address)


def _attest_tx(tx, portfolio: UserPortfolio):
    attestation = portfolio.attestation or {}
    record = tx.run("""
        MATCH (p:Portfolio {user_id: $user_id})
        SET p += $props
        WITH p
        OPTIONAL MATCH (p)-[old:LATEST_ATTESTATION]->()
        DELETE old
        WITH DISTINCT p
        MERGE (a:Attestation {request_id: $request_id})
        SET a.record = $record, a.created_at = $created_at
        MERGE (p)-[:ATTESTED]->(a)
        MERGE (p)-[:LATEST_ATTESTATION]->(a)
        RETURN p.user_id AS user_id
    """, user_id=portfolio.user_id, props=_portfolio_props(portfolio),
         request_id=attestation.get("requestId"), record=json.dumps(attestation),
         created_at=attestation.get("completedAt")).single()
    if record is None:
        raise NotFound("portfolio", portfolio.user_id)


def _wallet_owner_tx(tx, key: str) -> Optional[str]:
    record = tx.run("MATCH (w:Wallet {address: $key}) RETURN w.owner AS owner", key=key).single()
    return record["owner"] if record else None


def _find_tx(tx, match: str, key: str) -> Optional[UserPortfolio]:
    return _from_row(tx.run(match + _PORTFOLIO_RETURN, key=key).single())


def _stats_tx(tx) -> Dict[str, Any]:
    record = tx.run("""
        MATCH (p:Portfolio)
        RETURN count(p) AS users,
               count(p.composite_score) AS scored,
               sum(size([(p)-[:LINKED]->() | 1])) AS wallets
    """).single()
    return {
        "totalUsers": record["users"] if record else 0,
        "totalWallets": (record["wallets"] or 0) if record else 0,
        "usersWithScores": record["scored"] if record else 0,
    }
