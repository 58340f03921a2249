"""
Test configuration for btcwallet tests.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from btcwallet.backends.base import BlockchainBackend, BlockInfo, TransactionStatus


@pytest.fixture
def sample_mnemonic() -> str:
    """BIP39 test mnemonic (not for production use!)."""
    return (
        "abandon abandon abandon abandon abandon abandon "
        "abandon abandon abandon abandon abandon about"
    )


@pytest.fixture
def electrum_mnemonic() -> str:
    """Electrum segwit test mnemonic (not for production use!)."""
    return "wild father tree among universe such mobile favorite target dynamic credit identify"


@pytest.fixture
def electrum_address_testnet() -> str:
    """m/0'/0/0 of electrum_mnemonic on testnet."""
    return "tb1q4794m2uuw9jmjszmplfj4wvvr5j272fpeq3tt2"


@pytest.fixture
def mock_backend() -> AsyncMock:
    """Backend double with an empty wallet at block 100."""
    backend = AsyncMock(spec=BlockchainBackend)
    backend.get_last_known_block.return_value = BlockInfo(height=100, hash="aa" * 32)
    backend.get_transactions.return_value = []
    backend.get_utxos.return_value = []
    backend.get_address_balance.return_value = 0
    backend.submit_transaction.return_value = "ff" * 32
    backend.get_transaction_status.return_value = TransactionStatus.PENDING
    return backend
