"""
Wallet synchronization engine.

Polls the backend for the chain tip and, whenever a new block is seen,
refreshes transaction history and UTXOs of every tracked address.

State machine:
    IDLE -> POLLING        timer tick (first tick runs immediately)
    POLLING -> IDLE        tip unchanged, or tip fetch failed
    POLLING -> UPDATING    new tip (first observation or different hash)
    UPDATING -> IDLE       all addresses processed

Only one tick runs at a time. A tick that fires while another is in flight
only sets a pending flag; the running tick polls once more when it finishes,
so responses of two passes never interleave in the shared state.
"""

from __future__ import annotations

import asyncio
import contextlib
from enum import Enum

from loguru import logger

from btcwallet.backends.base import (
    DEFAULT_PAGE_SIZE,
    UTXO,
    BlockchainBackend,
    BlockInfo,
    TransactionHistoryEntry,
)
from btcwallet.wallet.observable import ObservableValue

DEFAULT_POLL_INTERVAL = 300.0
DEFAULT_REORG_SAFE_DEPTH = 20


class SyncState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    UPDATING = "updating"


class WalletSyncEngine:
    """
    Polling state machine keeping the wallet's history and UTXO channels current.

    Failure policy: every per-address fetch is fail-safe. A failed history or
    UTXO fetch clears that address's contribution to empty and the pass moves
    on to the next address; the new tip is then not recorded, so the next tick
    runs a full pass again even if no block arrived in between.
    """

    def __init__(
        self,
        backend: BlockchainBackend,
        addresses: list[str],
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        reorg_safe_depth: int = DEFAULT_REORG_SAFE_DEPTH,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {poll_interval}")
        if page_size < 1:
            raise ValueError(f"page_size must be at least 1, got {page_size}")

        self.backend = backend
        self.addresses = list(addresses)
        self.poll_interval = poll_interval
        self.reorg_safe_depth = reorg_safe_depth
        self.page_size = page_size

        self.state = SyncState.IDLE
        self.last_known_block: BlockInfo | None = None

        self.transaction_history: ObservableValue[list[TransactionHistoryEntry]] = (
            ObservableValue([], "transaction_history")
        )
        self.utxos: ObservableValue[list[UTXO]] = ObservableValue([], "utxos")
        self.sync_progress: ObservableValue[int] = ObservableValue(0, "sync_progress")

        self._history_by_address: dict[str, list[TransactionHistoryEntry]] = {
            address: [] for address in self.addresses
        }
        self._utxos_by_address: dict[str, list[UTXO]] = {
            address: [] for address in self.addresses
        }

        self._lock = asyncio.Lock()
        self._rerun_requested = False
        self._timer_task: asyncio.Task[None] | None = None
        self._tick_tasks: set[asyncio.Task[bool]] = set()

    @property
    def running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    def start(self) -> None:
        """Start polling on the running event loop. The first tick is immediate."""
        if self.running:
            return
        logger.info(
            f"Starting wallet sync for {len(self.addresses)} address(es), "
            f"polling every {self.poll_interval}s"
        )
        self._timer_task = asyncio.create_task(self._run_timer())

    async def stop(self) -> None:
        """Stop the timer and cancel any tick still in flight."""
        tasks: list[asyncio.Task] = list(self._tick_tasks)
        if self._timer_task is not None:
            tasks.append(self._timer_task)
            self._timer_task = None

        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self._tick_tasks.clear()
        self.state = SyncState.IDLE
        logger.info("Wallet sync stopped")

    async def _run_timer(self) -> None:
        while True:
            # Ticks are not awaited: a slow pass must not hold back the timer
            task = asyncio.create_task(self.poll_once())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)
            await asyncio.sleep(self.poll_interval)

    async def poll_once(self) -> bool:
        """
        Run one serialized tick.

        Returns:
            True if an update pass ran. False if the tip was unchanged or could
            not be fetched, or if another tick was in flight (that tick then
            polls again once it is done).
        """
        if self._lock.locked():
            self._rerun_requested = True
            logger.debug("Sync pass in progress, poll queued")
            return False

        async with self._lock:
            updated = await self._poll()
            while self._rerun_requested:
                self._rerun_requested = False
                updated = await self._poll() or updated
            return updated

    async def _poll(self) -> bool:
        self.state = SyncState.POLLING
        try:
            tip = await self.backend.get_last_known_block()
        except Exception as e:
            logger.warning(f"Failed to fetch chain tip, skipping this poll: {e}")
            self.state = SyncState.IDLE
            return False

        if self.last_known_block is not None and self.last_known_block.hash == tip.hash:
            logger.debug(f"No new block (tip {tip.height})")
            self.state = SyncState.IDLE
            return False

        logger.info(f"New block {tip.height} ({tip.hash}), updating wallet state")
        self.state = SyncState.UPDATING
        try:
            await self._update_state(tip)
        finally:
            self.state = SyncState.IDLE
        return True

    async def _update_state(self, tip: BlockInfo) -> bool:
        start_height = max(0, tip.height - self.reorg_safe_depth)
        total = len(self.addresses)
        failures = 0

        for done, address in enumerate(self.addresses, start=1):
            try:
                history = await self.fetch_recent_transactions(address, start_height)
            except Exception as e:
                logger.warning(f"Failed to fetch transactions for {address}: {e}")
                history = []
                failures += 1
            self._history_by_address[address] = history
            self.transaction_history.publish(
                [entry for addr in self.addresses for entry in self._history_by_address[addr]]
            )

            try:
                utxos = await self.backend.get_utxos(address)
            except Exception as e:
                logger.warning(f"Failed to fetch UTXOs for {address}: {e}")
                utxos = []
                failures += 1
            self._utxos_by_address[address] = utxos
            self.utxos.publish(
                [utxo for addr in self.addresses for utxo in self._utxos_by_address[addr]]
            )

            self.sync_progress.publish(round(100 * done / total))

        if total == 0:
            self.sync_progress.publish(100)

        if failures:
            logger.warning(
                f"Sync of block {tip.height} had {failures} failed fetch(es), "
                "retrying on next poll"
            )
            return False

        self.last_known_block = tip
        logger.debug(f"Wallet state synced to block {tip.height}")
        return True

    async def fetch_recent_transactions(
        self, address: str, start_height: int
    ) -> list[TransactionHistoryEntry]:
        """Fetch all history pages of an address, stopping at the first short page."""
        transactions: list[TransactionHistoryEntry] = []
        offset = 0

        while True:
            page = await self.backend.get_transactions(
                address, start_height, self.page_size, offset
            )
            page = page or []
            transactions.extend(page)

            if len(page) < self.page_size:
                break

            offset += self.page_size

        logger.debug(f"Fetched {len(transactions)} transactions for {address}")
        return transactions
