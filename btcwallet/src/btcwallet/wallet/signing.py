"""
Bitcoin transaction signing utilities for P2WPKH inputs.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

from coincurve import PrivateKey, PublicKey

from btcwallet.models import KeyPair

SIGHASH_ALL = 1


class TransactionSigningError(Exception):
    pass


class MissingPrivateKeyError(ValueError):
    """Raised when a signer is built from a key pair without a private key."""


class InvalidDigestLengthError(ValueError):
    """Raised when asked to sign anything other than a 32-byte digest."""


@dataclass
class TxInput:
    txid_le: bytes
    vout: int
    script: bytes
    sequence: bytes


@dataclass
class TxOutput:
    value: int
    script: bytes


@dataclass
class Transaction:
    version: bytes
    marker_flag: bool
    inputs: list[TxInput]
    outputs: list[TxOutput]
    locktime: bytes
    raw: bytes = b""
    witnesses: list[list[bytes]] = field(default_factory=list)


class Signer:
    """
    Deterministic ECDSA signer over 32-byte digests.

    coincurve (libsecp256k1) derives the nonce with RFC 6979, so signing the
    same digest with the same key always yields the same signature.
    """

    def __init__(self, key_pair: KeyPair):
        if not key_pair.private_key:
            raise MissingPrivateKeyError("Private key is required to sign transactions")
        self._private_key = PrivateKey(key_pair.private_key)
        self.public_key = key_pair.public_key

    def sign(self, digest: bytes) -> bytes:
        """Sign a pre-hashed digest, returning a DER-encoded low-S signature."""
        if len(digest) != 32:
            raise InvalidDigestLengthError(f"Digest must be 32 bytes, got {len(digest)}")
        # hasher=None: the digest is already SHA256d
        return self._private_key.sign(digest, hasher=None)

    def verify(self, signature: bytes, digest: bytes) -> bool:
        if len(digest) != 32:
            raise InvalidDigestLengthError(f"Digest must be 32 bytes, got {len(digest)}")
        try:
            return PublicKey(self.public_key).verify(signature, digest, hasher=None)
        except ValueError:
            return False


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        value = int.from_bytes(data[offset : offset + 2], "little")
        return value, offset + 2
    if first == 0xFE:
        value = int.from_bytes(data[offset : offset + 4], "little")
        return value, offset + 4
    value = int.from_bytes(data[offset : offset + 8], "little")
    return value, offset + 8


def encode_varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def deserialize_transaction(tx_bytes: bytes) -> Transaction:
    try:
        offset = 0
        version = tx_bytes[offset : offset + 4]
        offset += 4

        marker_flag = False
        if tx_bytes[offset] == 0x00 and tx_bytes[offset + 1] == 0x01:
            marker_flag = True
            offset += 2

        input_count, offset = read_varint(tx_bytes, offset)
        inputs: list[TxInput] = []

        for _ in range(input_count):
            txid_le = tx_bytes[offset : offset + 32]
            offset += 32

            vout = int.from_bytes(tx_bytes[offset : offset + 4], "little")
            offset += 4

            script_len, offset = read_varint(tx_bytes, offset)
            script = tx_bytes[offset : offset + script_len]
            offset += script_len

            sequence = tx_bytes[offset : offset + 4]
            offset += 4

            inputs.append(TxInput(txid_le, vout, script, sequence))

        output_count, offset = read_varint(tx_bytes, offset)
        outputs: list[TxOutput] = []

        for _ in range(output_count):
            value = int.from_bytes(tx_bytes[offset : offset + 8], "little")
            offset += 8

            script_len, offset = read_varint(tx_bytes, offset)
            script = tx_bytes[offset : offset + script_len]
            offset += script_len

            outputs.append(TxOutput(value, script))

        witnesses: list[list[bytes]] = []
        if marker_flag:
            for _ in range(input_count):
                stack_count, offset = read_varint(tx_bytes, offset)
                stack: list[bytes] = []
                for _ in range(stack_count):
                    item_len, offset = read_varint(tx_bytes, offset)
                    stack.append(tx_bytes[offset : offset + item_len])
                    offset += item_len
                witnesses.append(stack)

        locktime = tx_bytes[offset : offset + 4]
        if len(locktime) != 4 or offset + 4 != len(tx_bytes):
            raise TransactionSigningError("Unexpected end of transaction data")

        return Transaction(version, marker_flag, inputs, outputs, locktime, tx_bytes, witnesses)

    except TransactionSigningError:
        raise
    except Exception as e:
        raise TransactionSigningError(f"Failed to parse transaction: {e}") from e


def serialize_transaction(tx: Transaction, include_witness: bool = True) -> bytes:
    """Serialize a transaction, with BIP144 witness data when present."""
    has_witness = include_witness and any(tx.witnesses)

    result = bytearray(tx.version)
    if has_witness:
        result += b"\x00\x01"  # Marker and flag for SegWit

    result += encode_varint(len(tx.inputs))
    for inp in tx.inputs:
        result += inp.txid_le
        result += inp.vout.to_bytes(4, "little")
        result += encode_varint(len(inp.script)) + inp.script
        result += inp.sequence

    result += encode_varint(len(tx.outputs))
    for out in tx.outputs:
        result += out.value.to_bytes(8, "little")
        result += encode_varint(len(out.script)) + out.script

    if has_witness:
        for index in range(len(tx.inputs)):
            stack = tx.witnesses[index] if index < len(tx.witnesses) else []
            result += encode_varint(len(stack))
            for item in stack:
                result += encode_varint(len(item)) + item

    result += tx.locktime
    return bytes(result)


def get_txid(tx: Transaction) -> str:
    """Transaction ID: reversed double SHA256 of the non-witness serialization."""
    return hash256(serialize_transaction(tx, include_witness=False))[::-1].hex()


def compute_sighash_segwit(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    sighash_type: int,
) -> bytes:
    try:
        if input_index >= len(tx.inputs):
            raise TransactionSigningError("Input index out of range")

        hash_prevouts = hash256(
            b"".join(inp.txid_le + inp.vout.to_bytes(4, "little") for inp in tx.inputs)
        )
        hash_sequence = hash256(b"".join(inp.sequence for inp in tx.inputs))
        hash_outputs = hash256(
            b"".join(
                out.value.to_bytes(8, "little") + encode_varint(len(out.script)) + out.script
                for out in tx.outputs
            )
        )

        target_input = tx.inputs[input_index]

        preimage = (
            tx.version
            + hash_prevouts
            + hash_sequence
            + target_input.txid_le
            + target_input.vout.to_bytes(4, "little")
            + encode_varint(len(script_code))
            + script_code
            + value.to_bytes(8, "little")
            + target_input.sequence
            + hash_outputs
            + tx.locktime
            + sighash_type.to_bytes(4, "little")
        )

        return hash256(preimage)

    except TransactionSigningError:
        raise
    except Exception as e:
        raise TransactionSigningError(f"Failed to compute sighash: {e}") from e


def sign_p2wpkh_input(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    signer: Signer,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """Sign a P2WPKH input.

    Args:
        tx: The transaction to sign
        input_index: Index of the input to sign
        script_code: The scriptCode for signing (P2PKH script for P2WPKH)
        value: The value of the input being spent (in satoshis)
        signer: Signer holding the input's key
        sighash_type: Sighash type (default SIGHASH_ALL = 1)

    Returns:
        DER-encoded signature with sighash type byte appended
    """
    sighash = compute_sighash_segwit(tx, input_index, script_code, value, sighash_type)
    signature = signer.sign(sighash)

    return signature + bytes([sighash_type])


def create_p2wpkh_script_code(pubkey_bytes: bytes) -> bytes:
    """Create the scriptCode for P2WPKH signing (BIP 143).

    For P2WPKH, the scriptCode is the P2PKH script:
    OP_DUP OP_HASH160 <20-byte-pubkeyhash> OP_EQUALVERIFY OP_CHECKSIG

    Returns 25 bytes (without length prefix - the preimage serialization adds that).
    """
    pubkey_hash = hashlib.new("ripemd160", hashlib.sha256(pubkey_bytes).digest()).digest()
    # OP_DUP OP_HASH160 PUSH20 <pkh> OP_EQUALVERIFY OP_CHECKSIG
    return b"\x76\xa9\x14" + pubkey_hash + b"\x88\xac"


def create_witness_stack(signature: bytes, pubkey_bytes: bytes) -> list[bytes]:
    return [signature, pubkey_bytes]
