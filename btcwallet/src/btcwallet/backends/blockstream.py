"""
Blockstream (Esplora) REST API blockchain backend.
Requires no setup; also works with any self-hosted Esplora instance.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from btcwallet.backends.base import (
    DEFAULT_PAGE_SIZE,
    UTXO,
    BlockchainBackend,
    BlockInfo,
    ProviderFetchError,
    TransactionHistoryEntry,
    TransactionStatus,
)

BASE_URLS = {
    "mainnet": "https://blockstream.info/api",
    "testnet": "https://blockstream.info/testnet/api",
    "signet": "https://blockstream.info/signet/api",
}


class BlockstreamBackend(BlockchainBackend):
    """
    Blockchain backend using the Esplora API served by blockstream.info.

    Esplora has no offset or height filter for address history: the first
    request returns mempool transactions plus the newest confirmed ones, older
    confirmed transactions are paged by the last seen txid.
    """

    def __init__(
        self,
        network: str = "testnet",
        base_url: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        if base_url is None:
            if network not in BASE_URLS:
                raise ValueError(f"No public Esplora instance for network {network!r}")
            base_url = BASE_URLS[network]

        self.base_url = base_url.rstrip("/")
        self.network = network
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def _get(self, path: str) -> httpx.Response:
        try:
            response = await self.client.get(f"{self.base_url}{path}")
            response.raise_for_status()
            return response
        except httpx.HTTPError as e:
            raise ProviderFetchError(f"GET {path} failed: {e}") from e

    async def _get_json(self, path: str) -> Any:
        response = await self._get(path)
        try:
            return response.json()
        except ValueError as e:
            raise ProviderFetchError(f"GET {path} returned invalid JSON: {e}") from e

    async def get_last_known_block(self) -> BlockInfo:
        tip_hash = (await self._get("/blocks/tip/hash")).text.strip()
        block = await self._get_json(f"/block/{tip_hash}")
        info = BlockInfo(height=int(block["height"]), hash=block["id"])
        logger.debug(f"Chain tip: {info.height} {info.hash}")
        return info

    async def get_address_balance(self, address: str) -> int:
        data = await self._get_json(f"/address/{address}")
        chain_stats = data.get("chain_stats", {})
        balance = chain_stats.get("funded_txo_sum", 0) - chain_stats.get("spent_txo_sum", 0)
        logger.debug(f"Balance for {address}: {balance} sats")
        return balance

    async def get_transactions(
        self,
        address: str,
        after_block_height: int | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[TransactionHistoryEntry]:
        # after_block_height is not supported by Esplora, the full history is returned
        wanted = offset + limit
        raw_txs: list[dict[str, Any]] = await self._get_json(f"/address/{address}/txs")

        while len(raw_txs) < wanted:
            confirmed = [tx for tx in raw_txs if tx.get("status", {}).get("confirmed")]
            if not confirmed:
                break
            page = await self._get_json(
                f"/address/{address}/txs/chain/{confirmed[-1]['txid']}"
            )
            if not page:
                break
            raw_txs.extend(page)

        selected = raw_txs[offset:wanted]
        if not selected:
            return []

        tip_height = (await self.get_last_known_block()).height
        entries = [self._parse_history_entry(tx, address, tip_height) for tx in selected]
        logger.debug(f"Fetched {len(entries)} transactions for {address} (offset {offset})")
        return entries

    @staticmethod
    def _parse_history_entry(
        tx: dict[str, Any], address: str, tip_height: int
    ) -> TransactionHistoryEntry:
        received = sum(
            out.get("value", 0)
            for out in tx.get("vout", [])
            if out.get("scriptpubkey_address") == address
        )
        spent = sum(
            (vin.get("prevout") or {}).get("value", 0)
            for vin in tx.get("vin", [])
            if (vin.get("prevout") or {}).get("scriptpubkey_address") == address
        )

        status = tx.get("status", {})
        confirmed = status.get("confirmed", False)
        block_height = status.get("block_height") or 0
        confirmations = tip_height - block_height + 1 if confirmed and block_height else 0

        return TransactionHistoryEntry(
            delta=received - spent,
            transaction_hash=tx["txid"],
            confirmations=max(confirmations, 0),
            status=TransactionStatus.CONFIRMED if confirmed else TransactionStatus.PENDING,
            block_height=block_height,
        )

    async def get_utxos(self, address: str) -> list[UTXO]:
        data = await self._get_json(f"/address/{address}/utxo")
        utxos = [
            UTXO(
                txid=utxo_data["txid"],
                vout=utxo_data["vout"],
                value=utxo_data["value"],
                address=address,
            )
            for utxo_data in data
        ]
        logger.debug(f"Found {len(utxos)} UTXOs for address {address}")
        return utxos

    async def submit_transaction(self, raw_tx_hex: str) -> str:
        try:
            response = await self.client.post(
                f"{self.base_url}/tx",
                content=raw_tx_hex,
                headers={"Content-Type": "text/plain"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderFetchError(
                f"Broadcast rejected: {e.response.status_code} {e.response.text.strip()}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderFetchError(f"Broadcast failed: {e}") from e

        txid = response.text.strip()
        logger.info(f"Broadcast transaction: {txid}")
        return txid

    async def get_transaction_status(self, txid: str) -> TransactionStatus:
        try:
            response = await self.client.get(f"{self.base_url}/tx/{txid}/status")
            if response.status_code == 404:
                logger.debug(f"Transaction {txid} not found, treating as dropped")
                return TransactionStatus.DROPPED
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderFetchError(f"Failed to fetch status of {txid}: {e}") from e

        return TransactionStatus.CONFIRMED if data.get("confirmed") else TransactionStatus.PENDING

    async def close(self) -> None:
        await self.client.aclose()
