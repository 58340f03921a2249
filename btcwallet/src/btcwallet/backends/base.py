"""
Base blockchain backend interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

DEFAULT_PAGE_SIZE = 50


class ProviderFetchError(Exception):
    """A blockchain data request failed (network, HTTP or payload error)."""


class TransactionStatus(str, Enum):
    PENDING = "pending"  # In the mempool
    CONFIRMED = "confirmed"  # Included in a block
    DROPPED = "dropped"  # Unknown to the backend (evicted, replaced or never seen)


@dataclass(frozen=True)
class BlockInfo:
    height: int
    hash: str


@dataclass(frozen=True)
class TransactionHistoryEntry:
    """
    One wallet transaction as seen from a single address.

    delta is the net balance change in satoshis (negative when spending).
    """

    delta: int
    transaction_hash: str
    confirmations: int
    status: TransactionStatus
    block_height: int = 0


@dataclass(frozen=True)
class UTXO:
    txid: str
    vout: int
    value: int
    address: str


class BlockchainBackend(ABC):
    """
    Abstract blockchain backend interface.
    Implementations provide the explorer data the wallet needs; the wallet never
    depends on a specific backend's wire format.
    """

    @abstractmethod
    async def get_last_known_block(self) -> BlockInfo:
        """Get height and hash of the current chain tip"""

    @abstractmethod
    async def get_address_balance(self, address: str) -> int:
        """Get balance for an address in satoshis"""

    @abstractmethod
    async def get_transactions(
        self,
        address: str,
        after_block_height: int | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[TransactionHistoryEntry]:
        """Get one page of an address's transaction history.
        Callers paginate by offset until a page shorter than limit is returned."""

    @abstractmethod
    async def get_utxos(self, address: str) -> list[UTXO]:
        """Get UTXOs for an address"""

    @abstractmethod
    async def submit_transaction(self, raw_tx_hex: str) -> str:
        """Broadcast transaction, returns txid"""

    @abstractmethod
    async def get_transaction_status(self, txid: str) -> TransactionStatus:
        """Get transaction status. A transaction the backend does not know is DROPPED."""

    async def close(self) -> None:
        """Close backend connection"""
        pass
