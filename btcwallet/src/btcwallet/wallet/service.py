"""
Observable single-address wallet service.
"""

from __future__ import annotations

from loguru import logger

from btcwallet.backends.base import (
    DEFAULT_PAGE_SIZE,
    UTXO,
    BlockchainBackend,
    BlockInfo,
    TransactionHistoryEntry,
    TransactionStatus,
)
from btcwallet.models import AddressType, ChainType, DerivedAddress, KeyPair, NetworkType
from btcwallet.wallet.address import derive_address_by_type
from btcwallet.wallet.bip32 import derivation_path, derive_electrum_seed, derive_key_pair
from btcwallet.wallet.observable import ObservableValue
from btcwallet.wallet.sync import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_REORG_SAFE_DEPTH,
    SyncState,
    WalletSyncEngine,
)
from btcwallet.wallet.tx_builder import DEFAULT_FIXED_FEE, TransactionBuilder

WALLET_ADDRESS_TYPE = AddressType.ELECTRUM_NATIVE_SEGWIT


class ObservableWallet:
    """
    Single-address wallet over an Electrum mnemonic.

    Uses the first external ElectrumNativeSegWit address (m/0'/0/0) for
    receiving and change. Wallet state is exposed as observable channels that
    the sync engine keeps current:

    - addresses: the wallet's DerivedAddress list
    - transaction_history: recent history entries across all addresses
    - utxos: unspent outputs across all addresses
    - balance: always the sum of the utxos channel
    - sync_progress: 0-100 during an update pass

    The mnemonic is kept in memory; the seed and signing key are re-derived
    whenever they are needed.
    """

    def __init__(
        self,
        backend: BlockchainBackend,
        mnemonic: str,
        network: str | NetworkType = NetworkType.TESTNET,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        reorg_safe_depth: int = DEFAULT_REORG_SAFE_DEPTH,
        fixed_fee: int = DEFAULT_FIXED_FEE,
        electrum_password: str = "",
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self.backend = backend
        self.network = NetworkType(network)
        self._mnemonic = mnemonic
        self._electrum_password = electrum_password

        key_pair = self._derive_key_pair()
        address = DerivedAddress(
            address=derive_address_by_type(key_pair.public_key, WALLET_ADDRESS_TYPE, self.network),
            address_type=WALLET_ADDRESS_TYPE,
            derivation_path=derivation_path(WALLET_ADDRESS_TYPE, ChainType.EXTERNAL, 0),
        )
        self.addresses: ObservableValue[list[DerivedAddress]] = ObservableValue(
            [address], "addresses"
        )

        self.sync_engine = WalletSyncEngine(
            backend,
            [a.address for a in self.addresses.value],
            poll_interval=poll_interval,
            reorg_safe_depth=reorg_safe_depth,
            page_size=page_size,
        )

        self.balance: ObservableValue[int] = ObservableValue(0, "balance")
        self.sync_engine.utxos.subscribe(self._update_balance)

        self.tx_builder = TransactionBuilder(
            backend,
            key_source=self._derive_key_pair,
            utxo_source=lambda: self.utxos.value,
            network=self.network,
            fixed_fee=fixed_fee,
        )

        logger.info(f"Initialized wallet {address.address} ({address.derivation_path})")

    def _derive_key_pair(self) -> KeyPair:
        seed = derive_electrum_seed(self._mnemonic, self._electrum_password)
        return derive_key_pair(seed, WALLET_ADDRESS_TYPE, ChainType.EXTERNAL, 0)

    def _update_balance(self, utxos: list[UTXO]) -> None:
        self.balance.publish(sum(utxo.value for utxo in utxos))

    @property
    def address(self) -> str:
        return self.addresses.value[0].address

    @property
    def transaction_history(self) -> ObservableValue[list[TransactionHistoryEntry]]:
        return self.sync_engine.transaction_history

    @property
    def utxos(self) -> ObservableValue[list[UTXO]]:
        return self.sync_engine.utxos

    @property
    def sync_progress(self) -> ObservableValue[int]:
        return self.sync_engine.sync_progress

    @property
    def last_known_block(self) -> BlockInfo | None:
        return self.sync_engine.last_known_block

    @property
    def sync_state(self) -> SyncState:
        return self.sync_engine.state

    def start(self) -> None:
        """Begin background polling on the running event loop."""
        self.sync_engine.start()

    async def stop(self) -> None:
        await self.sync_engine.stop()

    async def sync(self) -> bool:
        """Run a single poll tick; True if the wallet state was refreshed."""
        return await self.sync_engine.poll_once()

    async def send(self, recipient_address: str, amount: int) -> str:
        return await self.tx_builder.send(recipient_address, amount)

    async def get_transaction_status(self, txid: str) -> TransactionStatus:
        return await self.backend.get_transaction_status(txid)

    async def close(self) -> None:
        """Stop polling and close backend connection"""
        await self.stop()
        await self.backend.close()

    async def __aenter__(self) -> ObservableWallet:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
