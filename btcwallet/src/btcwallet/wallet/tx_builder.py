"""
Transaction building for spends from the wallet's P2WPKH address.

Builds, signs and broadcasts a transaction from:
- the wallet's current UTXO snapshot
- the recipient address and amount
- a flat fee (no fee estimation)
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from loguru import logger

from btcwallet.backends.base import UTXO, BlockchainBackend
from btcwallet.models import KeyPair, NetworkType
from btcwallet.wallet.address import (
    address_to_scriptpubkey,
    pubkey_to_p2wpkh_address,
    pubkey_to_p2wpkh_script,
)
from btcwallet.wallet.signing import (
    SIGHASH_ALL,
    Signer,
    Transaction,
    TransactionSigningError,
    TxInput,
    TxOutput,
    compute_sighash_segwit,
    create_p2wpkh_script_code,
    create_witness_stack,
    serialize_transaction,
    sign_p2wpkh_input,
)

DEFAULT_FIXED_FEE = 500
DEFAULT_SEQUENCE = 0xFFFFFFFF


class NoFundsAvailableError(Exception):
    """Raised when a send is attempted with an empty UTXO set."""


class InsufficientFundsError(Exception):
    """Raised when all UTXOs together do not cover amount plus fee."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(f"Insufficient funds: need {required}, have {available}")


@dataclass
class CoinSelection:
    """Result of coin selection"""

    utxos: list[UTXO]
    total_value: int
    change_value: int
    fee: int


def select_utxos(utxos: Sequence[UTXO], amount: int, fee: int) -> CoinSelection:
    """
    Select UTXOs for spending.

    Greedy in the given order: UTXOs are taken one by one until they cover
    amount + fee. No sorting and no dust handling.
    """
    if not utxos:
        raise NoFundsAvailableError("No UTXOs available to spend")

    target = amount + fee
    selected: list[UTXO] = []
    total = 0

    for utxo in utxos:
        selected.append(utxo)
        total += utxo.value
        if total >= target:
            break

    if total < target:
        raise InsufficientFundsError(target, total)

    return CoinSelection(
        utxos=selected,
        total_value=total,
        change_value=total - target,
        fee=fee,
    )


@dataclass
class _PsbtInput:
    txid: str
    vout: int
    value: int
    witness_script: bytes
    sequence: int
    signature: bytes | None = None
    public_key: bytes | None = None


@dataclass
class PartiallySignedTransaction:
    """
    Minimal PSBT-style assembly: inputs carry their witness UTXO (value and
    scriptPubKey) until signed, then finalization turns signatures into
    witnesses.
    """

    version: int = 2
    locktime: int = 0
    inputs: list[_PsbtInput] = field(default_factory=list)
    outputs: list[TxOutput] = field(default_factory=list)

    def add_input(
        self,
        txid: str,
        vout: int,
        value: int,
        witness_script: bytes,
        sequence: int = DEFAULT_SEQUENCE,
    ) -> None:
        self.inputs.append(_PsbtInput(txid, vout, value, witness_script, sequence))

    def add_output(self, script: bytes, value: int) -> None:
        if value < 0:
            raise ValueError(f"Output value must not be negative: {value}")
        self.outputs.append(TxOutput(value=value, script=script))

    def add_output_address(
        self, address: str, value: int, network: str | NetworkType | None = None
    ) -> None:
        """Add an output paying to address; with a network, foreign addresses are rejected."""
        self.add_output(address_to_scriptpubkey(address, network), value)

    def _unsigned_transaction(self) -> Transaction:
        return Transaction(
            version=self.version.to_bytes(4, "little"),
            marker_flag=True,
            inputs=[
                TxInput(
                    txid_le=bytes.fromhex(inp.txid)[::-1],
                    vout=inp.vout,
                    script=b"",
                    sequence=inp.sequence.to_bytes(4, "little"),
                )
                for inp in self.inputs
            ],
            outputs=list(self.outputs),
            locktime=self.locktime.to_bytes(4, "little"),
        )

    def _sighash(self, tx: Transaction, index: int, public_key: bytes) -> bytes:
        return compute_sighash_segwit(
            tx,
            index,
            create_p2wpkh_script_code(public_key),
            self.inputs[index].value,
            SIGHASH_ALL,
        )

    def sign_all_inputs(self, signer: Signer) -> None:
        """Sign every input with the signer's key (BIP143, SIGHASH_ALL)."""
        expected_script = pubkey_to_p2wpkh_script(signer.public_key)
        tx = self._unsigned_transaction()

        for index, inp in enumerate(self.inputs):
            if inp.witness_script != expected_script:
                raise TransactionSigningError(
                    f"Input {index} ({inp.txid}:{inp.vout}) is not spendable by this key"
                )
            inp.signature = sign_p2wpkh_input(
                tx, index, create_p2wpkh_script_code(signer.public_key), inp.value, signer
            )
            inp.public_key = signer.public_key

    def finalize_all_inputs(self, signer: Signer) -> None:
        """Verify every input signature against the signer's public key."""
        tx = self._unsigned_transaction()

        for index, inp in enumerate(self.inputs):
            if inp.signature is None or inp.public_key is None:
                raise TransactionSigningError(f"Input {index} is not signed")
            if inp.public_key != signer.public_key:
                raise TransactionSigningError(f"Input {index} was signed by another key")

            sighash = self._sighash(tx, index, signer.public_key)
            if not signer.verify(inp.signature[:-1], sighash):
                raise TransactionSigningError(f"Invalid signature for input {index}")

    def extract_transaction(self) -> Transaction:
        tx = self._unsigned_transaction()
        for index, inp in enumerate(self.inputs):
            if inp.signature is None or inp.public_key is None:
                raise TransactionSigningError(f"Input {index} is not finalized")
            tx.witnesses.append(create_witness_stack(inp.signature, inp.public_key))
        return tx

    def extract_hex(self) -> str:
        return serialize_transaction(self.extract_transaction()).hex()


def build_signed_transaction(
    selection: CoinSelection,
    recipient_address: str,
    amount: int,
    key_pair: KeyPair,
    network: str | NetworkType = NetworkType.TESTNET,
) -> str:
    """
    Build and sign a spend of the selected UTXOs.

    Outputs are the recipient first, then change back to the key's P2WPKH
    address when the change is strictly positive.

    Returns:
        Signed transaction as hex

    Raises:
        ValueError: recipient_address is malformed or not an address of network
    """
    signer = Signer(key_pair)
    own_script = pubkey_to_p2wpkh_script(key_pair.public_key)

    psbt = PartiallySignedTransaction()
    for utxo in selection.utxos:
        psbt.add_input(utxo.txid, utxo.vout, utxo.value, own_script)

    psbt.add_output_address(recipient_address, amount, network)
    if selection.change_value > 0:
        change_address = pubkey_to_p2wpkh_address(key_pair.public_key, network)
        psbt.add_output_address(change_address, selection.change_value)

    psbt.sign_all_inputs(signer)
    psbt.finalize_all_inputs(signer)
    return psbt.extract_hex()


class TransactionBuilder:
    """
    Spends from the wallet.

    The UTXO list is snapshotted once per send. A sync completing while a send
    is in flight does not invalidate that snapshot; the backend rejects a
    transaction whose inputs were spent in the meantime.
    """

    def __init__(
        self,
        backend: BlockchainBackend,
        key_source: Callable[[], KeyPair],
        utxo_source: Callable[[], Sequence[UTXO]],
        network: str | NetworkType = NetworkType.TESTNET,
        fixed_fee: int = DEFAULT_FIXED_FEE,
    ):
        self.backend = backend
        self._key_source = key_source
        self._utxo_source = utxo_source
        self.network = NetworkType(network)
        self.fixed_fee = fixed_fee

    async def send(self, recipient_address: str, amount: int) -> str:
        """
        Send amount (sats) to recipient_address.

        Returns:
            Transaction ID reported by the backend

        Raises:
            NoFundsAvailableError: No UTXOs
            InsufficientFundsError: UTXOs do not cover amount + fee
            ValueError: Invalid amount or recipient address
            TransactionSigningError: Signing or finalization failed
            ProviderFetchError: The backend rejected or failed the broadcast
        """
        try:
            if amount <= 0:
                raise ValueError(f"Amount must be positive, got {amount}")

            utxos = list(self._utxo_source())
            selection = select_utxos(utxos, amount, self.fixed_fee)
            logger.debug(
                f"Selected {len(selection.utxos)} UTXO(s) worth {selection.total_value} sats, "
                f"change {selection.change_value} sats"
            )

            tx_hex = build_signed_transaction(
                selection, recipient_address, amount, self._key_source(), self.network
            )
            txid = await self.backend.submit_transaction(tx_hex)
        except Exception as e:
            logger.error(f"Failed to send {amount} sats to {recipient_address}: {e}")
            raise

        logger.info(f"Sent {amount} sats to {recipient_address}: {txid}")
        return txid
