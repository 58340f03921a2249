"""
Core wallet data models.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class NetworkType(str, Enum):
    """Bitcoin network types."""

    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"


class AddressType(str, Enum):
    """
    Address schemes supported by the wallet.

    Each type maps to one derivation path prefix and one output script template:
    - LEGACY: BIP44, P2PKH
    - SEGWIT: BIP49, P2SH-wrapped P2WPKH
    - NATIVE_SEGWIT: BIP84, P2WPKH
    - TAPROOT: BIP86, P2TR
    - ELECTRUM_NATIVE_SEGWIT: Electrum's m/0' scheme, P2WPKH
    """

    LEGACY = "legacy"
    SEGWIT = "segwit"
    NATIVE_SEGWIT = "native_segwit"
    TAPROOT = "taproot"
    ELECTRUM_NATIVE_SEGWIT = "electrum_native_segwit"


class ChainType(str, Enum):
    """Receiving (external) vs. change (internal) branch of an HD account."""

    EXTERNAL = "external"
    INTERNAL = "internal"

    @property
    def branch(self) -> int:
        """Path component for this chain (0 external, 1 internal)."""
        return 0 if self is ChainType.EXTERNAL else 1


@dataclass(frozen=True)
class KeyPair:
    """Derived key pair: 33-byte compressed public key, 32-byte private key."""

    public_key: bytes
    private_key: bytes | None

    def __repr__(self) -> str:
        return f"KeyPair(public_key={self.public_key.hex()})"


@dataclass(frozen=True)
class DerivedAddress:
    """Address projection of a derived key, for display and tracking."""

    address: str
    address_type: AddressType
    derivation_path: str
