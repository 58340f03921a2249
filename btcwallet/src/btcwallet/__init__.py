"""
btcwallet - Single-address HD Bitcoin wallet core

Provides key derivation, address encoding, P2WPKH signing, chain polling
and transaction building over pluggable blockchain backends.
"""

__version__ = "0.1.0"

from btcwallet.backends.base import (
    UTXO,
    BlockchainBackend,
    BlockInfo,
    ProviderFetchError,
    TransactionHistoryEntry,
    TransactionStatus,
)
from btcwallet.models import AddressType, ChainType, DerivedAddress, KeyPair, NetworkType
from btcwallet.wallet.address import UnsupportedAddressTypeError, derive_address_by_type
from btcwallet.wallet.bip32 import (
    DerivationError,
    derive_electrum_seed,
    derive_key_pair,
    derive_private_key,
    derive_public_key,
    mnemonic_to_seed,
)
from btcwallet.wallet.observable import ObservableValue
from btcwallet.wallet.service import ObservableWallet
from btcwallet.wallet.signing import (
    InvalidDigestLengthError,
    MissingPrivateKeyError,
    Signer,
    TransactionSigningError,
)
from btcwallet.wallet.sync import SyncState, WalletSyncEngine
from btcwallet.wallet.tx_builder import (
    InsufficientFundsError,
    NoFundsAvailableError,
    TransactionBuilder,
)

__all__ = [
    "AddressType",
    "BlockchainBackend",
    "BlockInfo",
    "ChainType",
    "DerivationError",
    "DerivedAddress",
    "InsufficientFundsError",
    "InvalidDigestLengthError",
    "KeyPair",
    "MissingPrivateKeyError",
    "NetworkType",
    "NoFundsAvailableError",
    "ObservableValue",
    "ObservableWallet",
    "ProviderFetchError",
    "Signer",
    "SyncState",
    "TransactionBuilder",
    "TransactionHistoryEntry",
    "TransactionSigningError",
    "TransactionStatus",
    "UTXO",
    "UnsupportedAddressTypeError",
    "WalletSyncEngine",
    "derive_address_by_type",
    "derive_electrum_seed",
    "derive_key_pair",
    "derive_private_key",
    "derive_public_key",
    "mnemonic_to_seed",
]
