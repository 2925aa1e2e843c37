"""
ChainCredit — Wallet Portfolio Store

Owns the per-user wallet set and every derived score on it.

    create_portfolio(identity)                   -> UserPortfolio
    link_wallet(user_id, address, proof)         -> LinkResult
    refresh_wallet_score(user_id, address)       -> LinkResult
    aggregate_on_chain_score(user_id)            -> int | None
    set_off_chain_score(user_id, attestation)    -> UserPortfolio

Every mutation runs under the portfolio's lock and follows one shape:

    read current ──> build new snapshot ──> recompute derived scores ──> one storage write

so onChainScore and compositeScore are never observed out of step with the
wallet set or the attestation that produced them. The wallet uniqueness
claim itself is atomic inside the storage backend; the is_wallet_linked
check below is only a fast path.
"""
from typing import Any, Dict, Optional

import structlog

from chaincredit.errors import AlreadyLinkedElsewhere, NotFound, ProofRequired, SubjectMismatch
from chaincredit.attestation.proof import AttestationResult
from chaincredit.portfolio.locks import PortfolioLocks
from chaincredit.portfolio.model import (
    LinkOutcome,
    LinkResult,
    PortfolioIdentity,
    UserPortfolio,
    WalletLink,
    normalize_address,
    utc_now,
)
from chaincredit.scoring.composite import CompositePolicy, aggregate_on_chain_score
from chaincredit.scoring.wallet_score import ScoreCalculator, WalletScore, clamp_score
from chaincredit.storage.adapter import StorageAdapter

logger = structlog.get_logger()


class WalletPortfolioStore:

    def __init__(
        self,
        storage: StorageAdapter,
        calculator: ScoreCalculator,
        policy: Optional[CompositePolicy] = None,
        locks: Optional[PortfolioLocks] = None,
    ):
        self.storage = storage
        self.calculator = calculator
        self.policy = policy or CompositePolicy()
        self.locks = locks or PortfolioLocks()

    # ── Derived fields ────────────────────────────────

    def _recompute(self, portfolio: UserPortfolio) -> None:
        portfolio.on_chain_score = aggregate_on_chain_score(portfolio.wallet_scores)
        composite = self.policy.compose(portfolio.on_chain_score, portfolio.off_chain_score)
        portfolio.composite_score = composite.score
        portfolio.weights = composite.weights.to_dict()
        portfolio.last_score_update = utc_now()

    async def _require(self, user_id: str) -> UserPortfolio:
        found = (await self.storage.get_portfolio(user_id)).value
        if found is None:
            raise NotFound("portfolio", user_id)
        return found

    # ── Mutations ─────────────────────────────────────

    async def create_portfolio(self, identity: PortfolioIdentity) -> UserPortfolio:
        portfolio = UserPortfolio.new(identity)
        result = await self.storage.register_user(portfolio)
        logger.info(
            "portfolio_created",
            user_id=portfolio.user_id,
            external_id=portfolio.external_id,
            backend=result.backend,
            degraded=result.degraded,
        )
        return result.value

    async def link_wallet(self, user_id: str, address: str, ownership_proof: Optional[str]) -> LinkResult:
        checksum = normalize_address(address)
        if not ownership_proof or not str(ownership_proof).strip():
            raise ProofRequired()

        async with self.locks.hold(user_id):
            portfolio = await self._require(user_id)

            existing = portfolio.find_wallet(checksum)
            if existing is not None:
                logger.info("wallet_already_linked_here", user_id=user_id, address=checksum)
                return LinkResult(LinkOutcome.ALREADY_LINKED_HERE, portfolio, existing)

            owner = (await self.storage.is_wallet_linked(checksum)).value
            if owner is not None and owner != user_id:
                raise AlreadyLinkedElsewhere(checksum)

            scored = await self.calculator.score(checksum)
            now = utc_now()
            link = WalletLink(
                address=checksum,
                linked_at=now,
                score=scored.score,
                proof_of_ownership=str(ownership_proof),
                estimated=scored.estimated,
                breakdown=_breakdown(scored),
                scored_at=now,
            )

            updated = portfolio.snapshot()
            updated.linked_wallets.append(link)
            self._recompute(updated)
            result = await self.storage.link_wallet(updated, link)

        saved = result.value
        logger.info(
            "wallet_linked",
            user_id=user_id,
            address=checksum,
            score=link.score,
            estimated=link.estimated,
            on_chain=saved.on_chain_score,
            composite=saved.composite_score,
            wallets=len(saved.linked_wallets),
            degraded=result.degraded,
        )
        return LinkResult(LinkOutcome.LINKED, saved, link, degraded=result.degraded)

    async def refresh_wallet_score(self, user_id: str, address: str) -> LinkResult:
        """The only way a stored wallet score changes after linking."""
        checksum = normalize_address(address)

        async with self.locks.hold(user_id):
            portfolio = await self._require(user_id)
            current = portfolio.find_wallet(checksum)
            if current is None:
                raise NotFound("wallet", checksum)

            scored = await self.calculator.score(current.address)
            link = WalletLink(
                address=current.address,
                linked_at=current.linked_at,
                score=scored.score,
                proof_of_ownership=current.proof_of_ownership,
                estimated=scored.estimated,
                breakdown=_breakdown(scored),
                scored_at=utc_now(),
            )

            updated = portfolio.snapshot()
            updated.linked_wallets = [
                link if w.address == current.address else w for w in updated.linked_wallets
            ]
            self._recompute(updated)
            result = await self.storage.update_wallet_score(updated, link)

        logger.info(
            "wallet_rescored",
            user_id=user_id,
            address=checksum,
            previous=current.score,
            score=link.score,
            degraded=result.degraded,
        )
        return LinkResult(LinkOutcome.REFRESHED, result.value, link, degraded=result.degraded)

    async def set_off_chain_score(self, user_id: str, attestation: AttestationResult) -> UserPortfolio:
        async with self.locks.hold(user_id):
            portfolio = await self._require(user_id)
            if attestation.subject != portfolio.external_id:
                raise SubjectMismatch(portfolio.external_id, attestation.subject)

            updated = portfolio.snapshot()
            updated.off_chain_score = clamp_score(attestation.credit_score)
            updated.attestation = attestation.to_dict()
            self._recompute(updated)
            result = await self.storage.update_off_chain_score(updated)

        saved = result.value
        logger.info(
            "off_chain_score_set",
            user_id=user_id,
            request_id=attestation.request_id,
            off_chain=saved.off_chain_score,
            composite=saved.composite_score,
            degraded=result.degraded,
        )
        return saved

    # ── Reads ─────────────────────────────────────────

    async def aggregate_on_chain_score(self, user_id: str) -> Optional[int]:
        portfolio = await self._require(user_id)
        return aggregate_on_chain_score(portfolio.wallet_scores)

    async def get_portfolio(self, user_id: str) -> UserPortfolio:
        return await self._require(user_id)

    async def find_by_external_id(self, external_id: str) -> Optional[UserPortfolio]:
        return (await self.storage.find_by_external_id(external_id)).value

    async def find_by_wallet(self, address: str) -> Optional[UserPortfolio]:
        return (await self.storage.find_by_wallet(normalize_address(address))).value

    async def summary(self, user_id: str) -> Dict[str, Any]:
        p = await self._require(user_id)
        data = {
            "userId": p.user_id,
            "externalId": p.external_id,
            "wallets": [
                {
                    "address": w.address,
                    "score": w.score,
                    "estimated": w.estimated,
                    "linkedAt": w.linked_at,
                    "scoredAt": w.scored_at,
                    "breakdown": w.breakdown,
                }
                for w in p.linked_wallets
            ],
            "estimatedWallets": sum(1 for w in p.linked_wallets if w.estimated),
            "latestAttestation": (p.attestation or {}).get("requestId"),
            "lastScoreUpdate": p.last_score_update,
            "storageMode": p.storage_mode,
        }
        data.update(p.scores_view())
        return data

    async def get_stats(self) -> Dict[str, Any]:
        return await self.storage.get_stats()


def _breakdown(scored: WalletScore) -> Dict[str, Any]:
    data = {"factors": scored.breakdown, "signals": scored.signals}
    if scored.reason:
        data["reason"] = scored.reason
    return data
