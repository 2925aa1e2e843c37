"""
ChainCredit — Storage Capability Interface

Both backends expose the same capability set. The portfolio store only ever
talks to this interface (through StorageAdapter), never to a backend directly.

Business-rule violations (DuplicateIdentity, AlreadyLinkedElsewhere, NotFound)
are raised identically by every backend. Infrastructure failures are raised
as StorageUnavailable and nothing else.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

from chaincredit.portfolio.model import UserPortfolio, WalletLink

T = TypeVar("T")


@dataclass(frozen=True)
class StorageResult(Generic[T]):
    """A backend return value tagged with where it was written or read."""
    value: T
    backend: str
    degraded: bool = False


class StorageBackend(ABC):
    name: str = "abstract"
    durable: bool = False

    @abstractmethod
    async def register_user(self, portfolio: UserPortfolio) -> UserPortfolio:
        """Insert a new portfolio. DuplicateIdentity if its identity key exists."""

    @abstractmethod
    async def link_wallet(self, portfolio: UserPortfolio, link: WalletLink) -> UserPortfolio:
        """
        Claim link.address for portfolio.user_id and save the portfolio snapshot
        (which already contains the link and the recomputed scores).
        The claim is an atomic check-and-set: AlreadyLinkedElsewhere if another
        portfolio owns the address.
        """

    @abstractmethod
    async def update_wallet_score(self, portfolio: UserPortfolio, link: WalletLink) -> UserPortfolio:
        """Replace one linked wallet's score and save the recomputed aggregates."""

    @abstractmethod
    async def update_off_chain_score(self, portfolio: UserPortfolio) -> UserPortfolio:
        """Save the off-chain score, the recomputed composite and the attestation record."""

    @abstractmethod
    async def is_wallet_linked(self, address: str) -> Optional[str]:
        """userId owning the address (case-insensitive), or None."""

    @abstractmethod
    async def get_portfolio(self, user_id: str) -> Optional[UserPortfolio]:
        ...

    @abstractmethod
    async def find_by_external_id(self, external_id: str) -> Optional[UserPortfolio]:
        ...

    @abstractmethod
    async def find_by_wallet(self, address: str) -> Optional[UserPortfolio]:
        ...

    @abstractmethod
    async def get_stats(self) -> Dict[str, Any]:
        """{totalUsers, totalWallets, usersWithScores}"""
