"""
Wallet Portfolio Store: linking rules, aggregation, off-chain updates and
concurrency.
"""
import asyncio

import pytest

from chaincredit.errors import (
    AlreadyLinkedElsewhere,
    ConflictError,
    DuplicateIdentity,
    InvalidAddress,
    NotFound,
    ProofRequired,
    SubjectMismatch,
    ValidationError,
)
from chaincredit.portfolio.locks import PortfolioLocks
from chaincredit.portfolio.model import LinkOutcome, PortfolioIdentity
from chaincredit.portfolio.store import WalletPortfolioStore
from chaincredit.storage.adapter import StorageAdapter

from conftest import StubCalculator, addr, make_attestation

PROOF = "0xsigned-ownership-message"


async def new_portfolio(store, email="ada@example.com"):
    return await store.create_portfolio(PortfolioIdentity(email, "Ada", "Lovelace"))


# ── create_portfolio ──────────────────────────────

@pytest.mark.asyncio
async def test_create_portfolio_starts_empty(store):
    p = await new_portfolio(store)
    assert p.user_id
    assert p.external_id.startswith("0x") and len(p.external_id) == 42
    assert p.linked_wallets == []
    assert p.on_chain_score is None
    assert p.off_chain_score is None
    assert p.composite_score is None
    assert p.storage_mode == "volatile"


@pytest.mark.asyncio
async def test_duplicate_identity_is_case_insensitive(store):
    await new_portfolio(store, "ada@example.com")
    with pytest.raises(DuplicateIdentity):
        await new_portfolio(store, "ADA@Example.com")


def test_identity_requires_email():
    with pytest.raises(ValidationError):
        PortfolioIdentity("not-an-email")


# ── link_wallet ───────────────────────────────────

@pytest.mark.asyncio
async def test_link_wallet_updates_on_chain_before_returning(store, calculator):
    calculator.set(addr(1), 661)
    p = await new_portfolio(store)

    result = await store.link_wallet(p.user_id, addr(1), PROOF)

    assert result.outcome is LinkOutcome.LINKED
    assert result.wallet.score == 661
    assert result.portfolio.on_chain_score == 661
    assert result.portfolio.composite_score == 661
    assert result.portfolio.weights == {"onChain": 1.0, "offChain": 0.0}
    assert result.portfolio.last_score_update is not None
    assert (await store.get_portfolio(p.user_id)).on_chain_score == 661


@pytest.mark.asyncio
async def test_relinking_same_wallet_is_idempotent(store, calculator):
    p = await new_portfolio(store)
    await store.link_wallet(p.user_id, addr(1), PROOF)

    again = await store.link_wallet(p.user_id, addr(1).lower(), PROOF)

    assert again.outcome is LinkOutcome.ALREADY_LINKED_HERE
    assert len(again.portfolio.linked_wallets) == 1
    assert len(calculator.calls) == 1


@pytest.mark.asyncio
async def test_wallet_cannot_join_second_portfolio(store):
    first = await new_portfolio(store, "a@example.com")
    second = await new_portfolio(store, "b@example.com")
    await store.link_wallet(first.user_id, addr(1), PROOF)

    with pytest.raises(AlreadyLinkedElsewhere) as exc:
        await store.link_wallet(second.user_id, addr(1).lower(), PROOF)
    assert isinstance(exc.value, ConflictError)
    assert (await store.get_portfolio(second.user_id)).linked_wallets == []


@pytest.mark.asyncio
@pytest.mark.parametrize("bad", ["", "0x123", "1234567890123456789012345678901234567890ab", "0x" + "zz" * 20])
async def test_malformed_address_rejected(store, bad):
    p = await new_portfolio(store)
    with pytest.raises(InvalidAddress):
        await store.link_wallet(p.user_id, bad, PROOF)


@pytest.mark.asyncio
@pytest.mark.parametrize("proof", [None, "", "   "])
async def test_ownership_proof_required(store, proof):
    p = await new_portfolio(store)
    with pytest.raises(ProofRequired):
        await store.link_wallet(p.user_id, addr(1), proof)


@pytest.mark.asyncio
async def test_unknown_portfolio(store):
    with pytest.raises(NotFound):
        await store.link_wallet("missing", addr(1), PROOF)


@pytest.mark.asyncio
async def test_linking_order_preserved_and_mean_aggregated(store, calculator):
    for n, score in ((1, 661), (2, 719), (3, 325)):
        calculator.set(addr(n), score)
    p = await new_portfolio(store)
    for n in (1, 2, 3):
        await store.link_wallet(p.user_id, addr(n), PROOF)

    saved = await store.get_portfolio(p.user_id)
    assert [w.address for w in saved.linked_wallets] == [addr(1), addr(2), addr(3)]
    assert saved.on_chain_score == 568
    assert await store.aggregate_on_chain_score(p.user_id) == 568


@pytest.mark.asyncio
async def test_aggregate_without_wallets_is_none(store):
    p = await new_portfolio(store)
    assert await store.aggregate_on_chain_score(p.user_id) is None


# ── refresh_wallet_score ──────────────────────────

@pytest.mark.asyncio
async def test_refresh_rescores_one_wallet(store, calculator):
    calculator.set(addr(1), 500)
    calculator.set(addr(2), 700)
    p = await new_portfolio(store)
    first = await store.link_wallet(p.user_id, addr(1), PROOF)
    await store.link_wallet(p.user_id, addr(2), PROOF)

    calculator.set(addr(1), 800)
    result = await store.refresh_wallet_score(p.user_id, addr(1))

    assert result.outcome is LinkOutcome.REFRESHED
    assert result.wallet.score == 800
    assert result.wallet.linked_at == first.wallet.linked_at
    assert result.portfolio.on_chain_score == 750
    assert [w.address for w in result.portfolio.linked_wallets] == [addr(1), addr(2)]


@pytest.mark.asyncio
async def test_refresh_unknown_wallet(store):
    p = await new_portfolio(store)
    with pytest.raises(NotFound):
        await store.refresh_wallet_score(p.user_id, addr(9))


# ── set_off_chain_score ───────────────────────────

@pytest.mark.asyncio
async def test_off_chain_score_recomputes_composite(store, calculator):
    calculator.set(addr(1), 600)
    p = await new_portfolio(store)
    await store.link_wallet(p.user_id, addr(1), PROOF)

    saved = await store.set_off_chain_score(p.user_id, make_attestation(p.external_id, 800))

    assert saved.off_chain_score == 800
    assert saved.composite_score == 740
    assert saved.weights == {"onChain": 0.3, "offChain": 0.7}
    assert saved.attestation["requestId"] == "att_test"


@pytest.mark.asyncio
async def test_attestation_for_another_subject_rejected(store):
    p = await new_portfolio(store)
    with pytest.raises(SubjectMismatch):
        await store.set_off_chain_score(p.user_id, make_attestation(addr(77)))
    assert (await store.get_portfolio(p.user_id)).off_chain_score is None


# ── Lookups ───────────────────────────────────────

@pytest.mark.asyncio
async def test_secondary_indexes(store):
    p = await new_portfolio(store)
    await store.link_wallet(p.user_id, addr(5), PROOF)

    assert (await store.find_by_external_id(p.external_id)).user_id == p.user_id
    assert (await store.find_by_wallet(addr(5).lower())).user_id == p.user_id
    assert await store.find_by_wallet(addr(6)) is None


@pytest.mark.asyncio
async def test_summary_and_stats(store, calculator):
    calculator.set(addr(1), 640)
    p = await new_portfolio(store)
    await store.link_wallet(p.user_id, addr(1), PROOF)
    await new_portfolio(store, "other@example.com")

    summary = await store.summary(p.user_id)
    assert summary["scores"] == {"onChain": 640, "offChain": None, "composite": 640}
    assert summary["portfolioWallets"] == 1
    assert summary["wallets"][0]["address"] == addr(1)
    assert summary["estimatedWallets"] == 0
    assert summary["latestAttestation"] is None
    assert summary["storageMode"] == "volatile"

    stats = await store.get_stats()
    assert stats["totalUsers"] == 2
    assert stats["totalWallets"] == 1
    assert stats["usersWithScores"] == 1
    assert stats["storage"]["mode"] == "volatile"


# ── Concurrency ───────────────────────────────────

@pytest.mark.asyncio
async def test_concurrent_links_to_one_portfolio_are_serialized():
    calculator = StubCalculator(scores={addr(n): 500 + n * 10 for n in range(1, 6)}, delay=0.01)
    store = WalletPortfolioStore(StorageAdapter(), calculator, locks=PortfolioLocks(wait=5.0))
    p = await new_portfolio(store)

    await asyncio.gather(*[store.link_wallet(p.user_id, addr(n), PROOF) for n in range(1, 6)])

    saved = await store.get_portfolio(p.user_id)
    assert len(saved.linked_wallets) == 5
    assert saved.on_chain_score == 530


@pytest.mark.asyncio
async def test_concurrent_claims_for_one_wallet_single_winner():
    calculator = StubCalculator(delay=0.02)
    store = WalletPortfolioStore(StorageAdapter(), calculator, locks=PortfolioLocks(wait=5.0))
    owners = [await new_portfolio(store, f"user{i}@example.com") for i in range(4)]

    results = await asyncio.gather(
        *[store.link_wallet(o.user_id, addr(42), PROOF) for o in owners],
        return_exceptions=True,
    )

    wins = [r for r in results if not isinstance(r, Exception)]
    losses = [r for r in results if isinstance(r, Exception)]
    assert len(wins) == 1
    assert len(losses) == 3
    assert all(isinstance(e, AlreadyLinkedElsewhere) for e in losses)
    assert (await store.get_stats())["totalWallets"] == 1
