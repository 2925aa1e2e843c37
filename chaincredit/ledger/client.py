"""
ChainCredit — Ledger Query Layer
The on-chain sensor for wallet scoring.

Every collector returns raw facts. No scoring logic here, just the three
ledger reads the Score Calculator needs:

    get_balance(address)                      -> Decimal (ether)
    get_transaction_count(address)            -> int     (nonce)
    get_recent_transactions(address, window)  -> [LedgerTransaction]

Web3LedgerClient talks JSON-RPC through web3. The driver is synchronous,
so each read runs in a worker thread to keep the event loop free.
"""
import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

import structlog
from web3 import Web3

logger = structlog.get_logger()


@dataclass(frozen=True)
class LedgerTransaction:
    tx_hash: str
    sender: str
    recipient: Optional[str]
    value: Decimal               # ether
    block_number: int
    timestamp: int               # unix seconds


@dataclass
class ActivitySignals:
    """
    Every fact we know about a wallet. Populated by collect_activity_signals().
    observed_at anchors the recency window so scoring stays a pure function.
    """
    address: str
    balance: Decimal = Decimal("0")
    transaction_count: int = 0
    recent_transactions: List[LedgerTransaction] = field(default_factory=list)
    observed_at: int = 0
    collection_time_ms: float = 0.0


class LedgerClient(ABC):
    """Capability the Score Calculator expects from a ledger."""

    @abstractmethod
    async def get_balance(self, address: str) -> Decimal:
        ...

    @abstractmethod
    async def get_transaction_count(self, address: str) -> int:
        ...

    @abstractmethod
    async def get_recent_transactions(self, address: str, window_size: int) -> List[LedgerTransaction]:
        ...


class Web3LedgerClient(LedgerClient):
    """
    JSON-RPC ledger reads.

    Recent transactions are found by scanning the last `scan_blocks` blocks
    backwards, keeping up to `tx_limit` that touch the address. Blocks that
    cannot be fetched are skipped.
    """

    def __init__(self, rpc_url: str, scan_blocks: int = 100, tx_limit: int = 50, request_timeout: float = 10.0):
        self.rpc_url = rpc_url
        self.scan_blocks = scan_blocks
        self.tx_limit = tx_limit
        self._w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout}))

    async def get_balance(self, address: str) -> Decimal:
        wei = await asyncio.to_thread(self._w3.eth.get_balance, Web3.to_checksum_address(address))
        return Decimal(Web3.from_wei(wei, "ether"))

    async def get_transaction_count(self, address: str) -> int:
        return await asyncio.to_thread(self._w3.eth.get_transaction_count, Web3.to_checksum_address(address))

    async def get_recent_transactions(self, address: str, window_size: int) -> List[LedgerTransaction]:
        return await asyncio.to_thread(self._scan_recent, address, window_size)

    def _scan_recent(self, address: str, window_size: int) -> List[LedgerTransaction]:
        target = address.lower()
        latest = self._w3.eth.block_number
        depth = min(self.scan_blocks, latest + 1)
        found: List[LedgerTransaction] = []

        for offset in range(depth):
            number = latest - offset
            try:
                block = self._w3.eth.get_block(number, full_transactions=True)
            except Exception as e:
                logger.debug("ledger_block_skipped", block=number, error=str(e))
                continue

            for tx in block["transactions"]:
                sender = (tx.get("from") or "").lower()
                recipient = (tx.get("to") or "").lower() or None
                if sender != target and recipient != target:
                    continue
                found.append(LedgerTransaction(
                    tx_hash=Web3.to_hex(tx["hash"]),
                    sender=sender,
                    recipient=recipient,
                    value=Decimal(Web3.from_wei(tx.get("value", 0), "ether")),
                    block_number=number,
                    timestamp=int(block["timestamp"]),
                ))
                if len(found) >= min(window_size, self.tx_limit):
                    return found

        return found


async def collect_activity_signals(client: LedgerClient, address: str, window_size: int = 50) -> ActivitySignals:
    """
    Run the three ledger reads in parallel and assemble ActivitySignals.
    Any failure propagates; the calculator decides how to degrade.
    """
    start = time.time()
    balance, tx_count, recent = await asyncio.gather(
        client.get_balance(address),
        client.get_transaction_count(address),
        client.get_recent_transactions(address, window_size),
    )
    signals = ActivitySignals(
        address=address,
        balance=Decimal(balance),
        transaction_count=int(tx_count),
        recent_transactions=list(recent),
        observed_at=int(time.time()),
        collection_time_ms=round((time.time() - start) * 1000, 2),
    )
    logger.debug(
        "activity_signals_collected",
        address=address,
        balance=str(signals.balance),
        transaction_count=signals.transaction_count,
        recent=len(signals.recent_transactions),
        elapsed_ms=signals.collection_time_ms,
    )
    return signals
