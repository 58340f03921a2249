"""
BIP32 HD key derivation for btcwallet.

Supports the BIP44/49/84/86 account paths plus Electrum's native SegWit scheme
(root path m/0', seed from PBKDF2 with the "electrum" salt instead of BIP39).
"""

from __future__ import annotations

import hashlib
import hmac

from coincurve import PrivateKey, PublicKey

from btcwallet.models import AddressType, ChainType, KeyPair

# secp256k1 curve order
SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

HARDENED_OFFSET = 0x80000000

PBKDF2_ITERATIONS = 2048

# Account-level path prefix per address type (coin type 0 on every network)
DERIVATION_PATHS: dict[AddressType, str] = {
    AddressType.LEGACY: "m/44'/0'/0'",
    AddressType.SEGWIT: "m/49'/0'/0'",
    AddressType.NATIVE_SEGWIT: "m/84'/0'/0'",
    AddressType.TAPROOT: "m/86'/0'/0'",
    AddressType.ELECTRUM_NATIVE_SEGWIT: "m/0'",
}


class DerivationError(ValueError):
    """Raised when a key cannot be derived from the given seed and path."""


class HDKey:
    """
    Hierarchical Deterministic Key for Bitcoin.
    Implements BIP32 private derivation.
    """

    def __init__(self, private_key: PrivateKey, chain_code: bytes, depth: int = 0):
        self._private_key = private_key
        self._public_key = private_key.public_key
        self.chain_code = chain_code
        self.depth = depth

    @property
    def private_key(self) -> PrivateKey:
        """Return the coincurve PrivateKey instance."""
        return self._private_key

    @property
    def public_key(self) -> PublicKey:
        """Return the coincurve PublicKey instance."""
        return self._public_key

    @classmethod
    def from_seed(cls, seed: bytes) -> HDKey:
        """Create master HD key from seed"""
        hmac_result = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
        key_bytes = hmac_result[:32]
        chain_code = hmac_result[32:]

        try:
            private_key = PrivateKey(key_bytes)
        except ValueError as e:
            raise DerivationError(f"Seed produces an invalid master key: {e}") from e

        return cls(private_key, chain_code, depth=0)

    def derive(self, path: str) -> HDKey:
        """
        Derive child key from path notation (e.g., "m/84'/0'/0'/0/0")
        ' or h indicates hardened derivation
        """
        if not path.startswith("m"):
            raise DerivationError(f"Path must start with 'm': {path!r}")

        parts = path.split("/")[1:]
        key = self

        for part in parts:
            if not part:
                continue

            hardened = part.endswith("'") or part.endswith("h")
            index_str = part.rstrip("'h")
            if not index_str.isdigit():
                raise DerivationError(f"Invalid path component {part!r} in {path!r}")

            index = int(index_str)
            if index >= HARDENED_OFFSET:
                raise DerivationError(f"Path index out of range: {part!r}")

            if hardened:
                index += HARDENED_OFFSET

            key = key._derive_child(index)

        return key

    def _derive_child(self, index: int) -> HDKey:
        """Derive a child key at the given index"""
        hardened = index >= HARDENED_OFFSET

        if hardened:
            data = b"\x00" + self._private_key.secret + index.to_bytes(4, "big")
        else:
            data = self._public_key.format(compressed=True) + index.to_bytes(4, "big")

        hmac_result = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        key_offset = hmac_result[:32]
        child_chain = hmac_result[32:]

        parent_key_int = int.from_bytes(self._private_key.secret, "big")
        offset_int = int.from_bytes(key_offset, "big")

        if offset_int >= SECP256K1_N:
            raise DerivationError(f"Invalid child key at index {index}")

        child_key_int = (parent_key_int + offset_int) % SECP256K1_N

        if child_key_int == 0:
            raise DerivationError(f"Invalid child key at index {index}")

        child_private_key = PrivateKey(child_key_int.to_bytes(32, "big"))

        return HDKey(child_private_key, child_chain, depth=self.depth + 1)

    def get_private_key_bytes(self) -> bytes:
        """Get private key as 32 bytes"""
        return self._private_key.secret

    def get_public_key_bytes(self, compressed: bool = True) -> bytes:
        """Get public key bytes"""
        return self._public_key.format(compressed=compressed)

    def to_key_pair(self) -> KeyPair:
        return KeyPair(
            public_key=self.get_public_key_bytes(compressed=True),
            private_key=self.get_private_key_bytes(),
        )


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """
    Convert BIP39 mnemonic to seed.
    The mnemonic is not checked against the BIP39 wordlist.
    """
    mnemonic_bytes = mnemonic.encode("utf-8")
    salt = ("mnemonic" + passphrase).encode("utf-8")

    return hashlib.pbkdf2_hmac("sha512", mnemonic_bytes, salt, PBKDF2_ITERATIONS, dklen=64)


def derive_electrum_seed(mnemonic: str, password: str = "") -> bytes:
    """
    Derive the 64-byte seed of an Electrum (post-2.0) mnemonic.

    Electrum does not use BIP39: the seed is PBKDF2-HMAC-SHA512 over the mnemonic
    with salt "electrum" + password and 2048 iterations. Wallets using
    ELECTRUM_NATIVE_SEGWIT must use this seed; every other address type uses the
    BIP39 seed.
    """
    salt = ("electrum" + password).encode("utf-8")
    return hashlib.pbkdf2_hmac(
        "sha512", mnemonic.encode("utf-8"), salt, PBKDF2_ITERATIONS, dklen=64
    )


def seed_for_address_type(mnemonic: str, address_type: AddressType, password: str = "") -> bytes:
    """Return the seed scheme an address type is defined over."""
    if address_type is AddressType.ELECTRUM_NATIVE_SEGWIT:
        return derive_electrum_seed(mnemonic, password)
    return mnemonic_to_seed(mnemonic, password)


def derivation_path(address_type: AddressType, chain: ChainType, index: int) -> str:
    """Full derivation path: <type prefix>/<0|1>/<index>."""
    try:
        prefix = DERIVATION_PATHS[address_type]
    except KeyError as e:
        raise DerivationError(f"No derivation path for address type {address_type!r}") from e
    return f"{prefix}/{chain.branch}/{index}"


def derive_key_pair(
    seed: bytes, address_type: AddressType, chain: ChainType, index: int
) -> KeyPair:
    """
    Derive the key pair for an address type, chain and index.

    Deterministic: identical inputs always yield byte-identical keys.

    Raises:
        DerivationError: If the path is malformed or no private key results
    """
    path = derivation_path(address_type, chain, index)
    node = HDKey.from_seed(seed).derive(path)
    key_pair = node.to_key_pair()

    if not key_pair.private_key:
        raise DerivationError(f"Failed to derive private key for {path}")

    return key_pair


def derive_public_key(
    seed: bytes, address_type: AddressType, chain: ChainType, index: int
) -> bytes:
    return derive_key_pair(seed, address_type, chain, index).public_key


def derive_private_key(
    seed: bytes, address_type: AddressType, chain: ChainType, index: int
) -> bytes:
    private_key = derive_key_pair(seed, address_type, chain, index).private_key
    if private_key is None:
        raise DerivationError(f"No private key derived for {address_type.value} index {index}")
    return private_key
