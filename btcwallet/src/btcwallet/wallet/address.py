"""
Bitcoin address generation utilities.

Uses external libraries for the encodings:
- bip_utils: BIP173 bech32 for witness v0, BIP350 bech32m for witness v1+
- base58: Base58Check
"""

from __future__ import annotations

import hashlib

import base58
from bip_utils import Bech32ChecksumError, SegwitBech32Decoder, SegwitBech32Encoder
from coincurve import PublicKey

from btcwallet.models import AddressType, NetworkType

# Network prefixes for address encoding
HRP_MAP = {
    NetworkType.MAINNET: "bc",
    NetworkType.TESTNET: "tb",
    NetworkType.SIGNET: "tb",
    NetworkType.REGTEST: "bcrt",
}

# Base58 version bytes
P2PKH_VERSION = {
    NetworkType.MAINNET: 0x00,
    NetworkType.TESTNET: 0x6F,
    NetworkType.SIGNET: 0x6F,
    NetworkType.REGTEST: 0x6F,
}

P2SH_VERSION = {
    NetworkType.MAINNET: 0x05,
    NetworkType.TESTNET: 0xC4,
    NetworkType.SIGNET: 0xC4,
    NetworkType.REGTEST: 0xC4,
}


class UnsupportedAddressTypeError(ValueError):
    """Raised for an address type without an output script mapping."""


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    return hashlib.new("ripemd160", hashlib.sha256(data).digest()).digest()


def tagged_hash(tag: str, data: bytes) -> bytes:
    """BIP340 tagged hash."""
    tag_hash = hashlib.sha256(tag.encode("utf-8")).digest()
    return hashlib.sha256(tag_hash + tag_hash + data).digest()


def _network(network: str | NetworkType) -> NetworkType:
    if isinstance(network, str):
        network = NetworkType(network)
    return network


def get_hrp(network: str | NetworkType) -> str:
    """Get bech32 human-readable part for network."""
    return HRP_MAP[_network(network)]


def _check_pubkey(pubkey: bytes) -> None:
    if len(pubkey) != 33:
        raise ValueError(f"Invalid compressed pubkey length: {len(pubkey)}")


def _encode_segwit(network: str | NetworkType, witver: int, witprog: bytes) -> str:
    # bech32 for v0, bech32m for v1 and above
    return SegwitBech32Encoder.Encode(get_hrp(network), witver, witprog)


def pubkey_to_p2wpkh_script(pubkey: bytes) -> bytes:
    """Create P2WPKH scriptPubKey (OP_0 <20-byte-hash>)"""
    _check_pubkey(pubkey)
    return bytes([0x00, 0x14]) + hash160(pubkey)


def pubkey_to_p2wpkh_address(pubkey: bytes, network: str | NetworkType = "mainnet") -> str:
    """
    Convert compressed public key to P2WPKH (native segwit) address.
    BIP173 bech32 encoding.
    """
    _check_pubkey(pubkey)
    return _encode_segwit(network, 0, hash160(pubkey))


def pubkey_to_p2pkh_address(pubkey: bytes, network: str | NetworkType = "mainnet") -> str:
    """Convert compressed public key to legacy P2PKH address."""
    _check_pubkey(pubkey)
    payload = bytes([P2PKH_VERSION[_network(network)]]) + hash160(pubkey)
    return base58.b58encode_check(payload).decode("ascii")


def pubkey_to_p2sh_p2wpkh_address(pubkey: bytes, network: str | NetworkType = "mainnet") -> str:
    """
    Convert compressed public key to P2SH-wrapped P2WPKH address (BIP49).
    The redeem script is the P2WPKH scriptPubKey.
    """
    redeem_script = pubkey_to_p2wpkh_script(pubkey)
    payload = bytes([P2SH_VERSION[_network(network)]]) + hash160(redeem_script)
    return base58.b58encode_check(payload).decode("ascii")


def taproot_output_key(pubkey: bytes) -> bytes:
    """
    BIP86 output key: internal key tweaked with H_TapTweak(P), no script tree.

    Returns:
        32-byte x-only output key
    """
    _check_pubkey(pubkey)
    x_only = pubkey[1:]
    # lift_x: the internal key is the point with even y for this x coordinate
    internal_key = PublicKey(b"\x02" + x_only)
    tweak = tagged_hash("TapTweak", x_only)
    output_key = internal_key.add(tweak)
    return output_key.format(compressed=True)[1:]


def pubkey_to_p2tr_address(pubkey: bytes, network: str | NetworkType = "mainnet") -> str:
    """Convert compressed public key to BIP86 P2TR address (bech32m)."""
    return _encode_segwit(network, 1, taproot_output_key(pubkey))


def derive_address_by_type(
    public_key: bytes, address_type: AddressType, network: str | NetworkType
) -> str:
    """
    Encode a public key as an address of the given type for a network.

    Raises:
        UnsupportedAddressTypeError: If the address type has no script template
    """
    if address_type is AddressType.LEGACY:
        return pubkey_to_p2pkh_address(public_key, network)
    if address_type is AddressType.SEGWIT:
        return pubkey_to_p2sh_p2wpkh_address(public_key, network)
    if address_type in (AddressType.NATIVE_SEGWIT, AddressType.ELECTRUM_NATIVE_SEGWIT):
        return pubkey_to_p2wpkh_address(public_key, network)
    if address_type is AddressType.TAPROOT:
        return pubkey_to_p2tr_address(public_key, network)

    raise UnsupportedAddressTypeError(f"Unsupported address type: {address_type!r}")


def address_to_scriptpubkey(address: str, network: str | NetworkType | None = None) -> bytes:
    """
    Convert a Bitcoin address to scriptPubKey.

    Supports:
    - P2WPKH (bc1q..., tb1q..., bcrt1q...)
    - P2WSH (bc1q... 62 chars)
    - P2TR (bc1p... taproot, bech32m)
    - P2PKH (1..., m..., n...)
    - P2SH (3..., 2...)

    When network is given, addresses of any other network are rejected.

    Raises:
        ValueError: Malformed address, or address of another network
    """
    lowered = address.lower()

    # Bech32 (SegWit) addresses
    if lowered.startswith(("bc1", "tb1", "bcrt1")):
        hrp = lowered[: lowered.rfind("1")]
        if network is not None and hrp != get_hrp(network):
            raise ValueError(f"Address {address} does not belong to {_network(network).value}")

        try:
            witver, witprog = SegwitBech32Decoder.Decode(hrp, lowered)
        except (Bech32ChecksumError, ValueError) as e:
            raise ValueError(f"Invalid bech32 address: {address}") from e

        if witver == 0:
            if len(witprog) == 20:
                # P2WPKH: OP_0 <20-byte-pubkeyhash>
                return bytes([0x00, 0x14]) + witprog
            if len(witprog) == 32:
                # P2WSH: OP_0 <32-byte-scripthash>
                return bytes([0x00, 0x20]) + witprog
        elif witver == 1 and len(witprog) == 32:
            # P2TR: OP_1 <32-byte-pubkey>
            return bytes([0x51, 0x20]) + witprog

        raise ValueError(f"Unsupported witness program: version={witver}")

    # Base58 addresses (legacy)
    try:
        decoded = base58.b58decode_check(address)
    except ValueError as e:
        raise ValueError(f"Invalid base58 address: {address}") from e

    version = decoded[0]
    payload = decoded[1:]

    if len(payload) != 20:
        raise ValueError(f"Invalid address payload length: {len(payload)}")

    if network is not None:
        net = _network(network)
        if version not in (P2PKH_VERSION[net], P2SH_VERSION[net]):
            raise ValueError(f"Address {address} does not belong to {net.value}")

    if version in (0x00, 0x6F):  # Mainnet/Testnet P2PKH
        # P2PKH: OP_DUP OP_HASH160 <20-byte-pubkeyhash> OP_EQUALVERIFY OP_CHECKSIG
        return bytes([0x76, 0xA9, 0x14]) + payload + bytes([0x88, 0xAC])
    if version in (0x05, 0xC4):  # Mainnet/Testnet P2SH
        # P2SH: OP_HASH160 <20-byte-scripthash> OP_EQUAL
        return bytes([0xA9, 0x14]) + payload + bytes([0x87])

    raise ValueError(f"Unknown address version: {version}")
