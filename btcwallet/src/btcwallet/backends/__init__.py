"""
Blockchain backend implementations.

Available backends:
- BlockstreamBackend: Esplora REST API (blockstream.info or self-hosted)
- BlockCypherBackend: BlockCypher REST API (optional token)
"""

from __future__ import annotations

from btcwallet.backends.base import (
    UTXO,
    BlockchainBackend,
    BlockInfo,
    ProviderFetchError,
    TransactionHistoryEntry,
    TransactionStatus,
)
from btcwallet.backends.blockcypher import BlockCypherBackend
from btcwallet.backends.blockstream import BlockstreamBackend
from btcwallet.config import WalletSettings


def create_backend(settings: WalletSettings) -> BlockchainBackend:
    """Build the backend selected in the settings."""
    if settings.backend == "blockcypher":
        return BlockCypherBackend(
            token=settings.blockcypher_token,
            network=settings.network,
            base_url=settings.api_url,
            timeout=settings.request_timeout,
        )
    return BlockstreamBackend(
        network=settings.network,
        base_url=settings.api_url,
        timeout=settings.request_timeout,
    )


__all__ = [
    "BlockchainBackend",
    "BlockCypherBackend",
    "BlockInfo",
    "BlockstreamBackend",
    "ProviderFetchError",
    "TransactionHistoryEntry",
    "TransactionStatus",
    "UTXO",
    "create_backend",
]
