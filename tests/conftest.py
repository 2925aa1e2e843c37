"""
Shared fixtures: fake ledger reads, a fixed-score calculator, volatile storage,
and a mocked credit bureau.
"""
import asyncio
import json
from decimal import Decimal
from typing import Dict, List, Optional

import httpx
import pytest
from web3 import Web3

from chaincredit.attestation.bridge import AttestationBridge
from chaincredit.attestation.proof import AttestationResult, encode_payload, generate_proof, to_hex
from chaincredit.attestation.source import SourceConfig
from chaincredit.attestation.transform import CreditPayload
from chaincredit.engine import CreditScoreEngine
from chaincredit.ledger.client import LedgerClient, LedgerTransaction
from chaincredit.portfolio.locks import PortfolioLocks
from chaincredit.portfolio.store import WalletPortfolioStore
from chaincredit.scoring.wallet_score import WalletScore
from chaincredit.storage.adapter import StorageAdapter

BUREAU_URL = "http://bureau.test/api/credit-score/experian/simplified"


def addr(n: int) -> str:
    return Web3.to_checksum_address("0x" + f"{n:040x}")


# ── Ledger ────────────────────────────────────────

class FakeLedger(LedgerClient):
    def __init__(
        self,
        balance: Decimal = Decimal("0"),
        tx_count: int = 0,
        transactions: Optional[List[LedgerTransaction]] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ):
        self.balance = balance
        self.tx_count = tx_count
        self.transactions = transactions or []
        self.delay = delay
        self.error = error

    async def _maybe_fail(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

    async def get_balance(self, address: str) -> Decimal:
        await self._maybe_fail()
        return self.balance

    async def get_transaction_count(self, address: str) -> int:
        await self._maybe_fail()
        return self.tx_count

    async def get_recent_transactions(self, address: str, window_size: int) -> List[LedgerTransaction]:
        await self._maybe_fail()
        return self.transactions[:window_size]


def make_transactions(owner: str, count: int, now: int, spacing: int = 86400, value: Decimal = Decimal("1")):
    """One transfer per counterparty, `spacing` seconds apart, newest first."""
    return [
        LedgerTransaction(
            tx_hash="0x" + f"{i:064x}",
            sender=owner.lower(),
            recipient=addr(10_000 + i).lower(),
            value=value,
            block_number=1_000_000 - i,
            timestamp=now - i * spacing,
        )
        for i in range(count)
    ]


# ── Calculator ────────────────────────────────────

class StubCalculator:
    """Fixed scores per address; optional delay to force interleaving."""
    has_ledger = True

    def __init__(self, scores: Optional[Dict[str, int]] = None, default: int = 600, delay: float = 0.0):
        self.scores = {k.lower(): v for k, v in (scores or {}).items()}
        self.default = default
        self.delay = delay
        self.calls: List[str] = []

    def set(self, address: str, score: int) -> None:
        self.scores[address.lower()] = score

    async def score(self, address: str) -> WalletScore:
        self.calls.append(address)
        if self.delay:
            await asyncio.sleep(self.delay)
        value = self.scores.get(address.lower(), self.default)
        return WalletScore(address=address, score=value, breakdown={"stub": {"fixed": value}})


# ── Attestation ───────────────────────────────────

def bureau_document(**overrides) -> dict:
    credit = {
        "creditScore": 720,
        "paymentHistory": 95,
        "creditUtilization": 30,
        "creditHistoryLength": 8,
        "accountsOpen": 5,
        "recentInquiries": 1,
        "publicRecords": 0,
        "delinquencies": 0,
        "timestamp": 1_700_000_000,
    }
    credit.update(overrides)
    return {"success": True, "creditData": credit}


def bureau_transport(document: Optional[dict] = None, status: int = 200) -> httpx.MockTransport:
    body = document if document is not None else bureau_document()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, content=json.dumps(body).encode())

    return httpx.MockTransport(handler)


def make_attestation(subject: str, credit_score: int = 720, request_id: str = "att_test") -> AttestationResult:
    payload = CreditPayload(**bureau_document(creditScore=credit_score)["creditData"])
    encoded = encode_payload(payload)
    return AttestationResult(
        request_id=request_id,
        subject=subject,
        payload=payload.ordered(),
        proof=generate_proof(request_id, encoded),
        encoded_payload=to_hex(encoded),
        completed_at="2024-01-01T00:00:00+00:00",
    )


# ── Fixtures ──────────────────────────────────────

@pytest.fixture
def calculator():
    return StubCalculator()


@pytest.fixture
def storage():
    return StorageAdapter()


@pytest.fixture
def store(storage, calculator):
    return WalletPortfolioStore(storage, calculator, locks=PortfolioLocks(wait=2.0))


@pytest.fixture
def source():
    return SourceConfig(url=BUREAU_URL)


def make_engine(store: WalletPortfolioStore, transport: httpx.MockTransport, timeout: float = 2.0) -> CreditScoreEngine:
    client = httpx.AsyncClient(transport=transport)
    bridge = AttestationBridge(SourceConfig(url=BUREAU_URL), client=client, timeout=timeout)
    return CreditScoreEngine(store, bridge)
