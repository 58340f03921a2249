"""
BlockCypher REST API blockchain backend.
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

# BlockCypher chain names per network
CHAINS = {
    "mainnet": "main",
    "testnet": "test3",
}

# Largest txref list /addrs returns in one response
MAX_TXREFS = 2000


class BlockCypherBackend(BlockchainBackend):
    """
    Blockchain backend using the BlockCypher API.
    An API token is optional but raises the rate limits considerably.

    /addrs takes no offset parameter, it always returns the newest txrefs up
    to limit. Pages are served by requesting the first offset + limit txrefs
    and slicing, so history beyond MAX_TXREFS entries is not reachable and an
    offset past it yields an empty page.
    """

    def __init__(
        self,
        token: str = "",
        network: str = "testnet",
        base_url: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        if base_url is None:
            if network not in CHAINS:
                raise ValueError(f"BlockCypher does not serve network {network!r}")
            base_url = f"https://api.blockcypher.com/v1/btc/{CHAINS[network]}"

        self.base_url = base_url.rstrip("/")
        self.network = network
        self.token = token
        self.client = client or httpx.AsyncClient(timeout=timeout)

    def _params(self, **params: Any) -> dict[str, Any]:
        if self.token:
            params["token"] = self.token
        return params

    async def _get_json(self, path: str, **params: Any) -> Any:
        try:
            response = await self.client.get(
                f"{self.base_url}{path}", params=self._params(**params)
            )
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderFetchError(f"GET {path} failed: {e}") from e

    async def get_last_known_block(self) -> BlockInfo:
        data = await self._get_json("/")
        info = BlockInfo(height=int(data["height"]), hash=data["hash"])
        logger.debug(f"Chain tip: {info.height} {info.hash}")
        return info

    async def get_address_balance(self, address: str) -> int:
        data = await self._get_json(f"/addrs/{address}/balance")
        balance = int(data.get("balance", 0))
        logger.debug(f"Balance for {address}: {balance} sats")
        return balance

    async def get_transactions(
        self,
        address: str,
        after_block_height: int | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[TransactionHistoryEntry]:
        window = min(offset + limit, MAX_TXREFS)
        params: dict[str, Any] = {"limit": window}
        if after_block_height is not None:
            params["after"] = after_block_height

        data = await self._get_json(f"/addrs/{address}", **params)
        txrefs = data.get("unconfirmed_txrefs", []) + data.get("txrefs", [])
        if offset + limit > MAX_TXREFS and data.get("hasMore"):
            logger.warning(f"History of {address} truncated at {MAX_TXREFS} entries")
        txrefs = txrefs[offset : offset + limit]

        entries = []
        for ref in txrefs:
            confirmations = int(ref.get("confirmations", 0))
            # spent inputs carry tx_input_n >= 0 and a positive value leaving the address
            value = int(ref.get("value", 0))
            delta = -value if ref.get("tx_input_n", -1) >= 0 else value
            entries.append(
                TransactionHistoryEntry(
                    delta=delta,
                    transaction_hash=ref["tx_hash"],
                    confirmations=confirmations,
                    status=(
                        TransactionStatus.CONFIRMED
                        if confirmations > 0
                        else TransactionStatus.PENDING
                    ),
                    block_height=max(int(ref.get("block_height", 0)), 0),
                )
            )

        logger.debug(f"Fetched {len(entries)} transactions for {address} (offset {offset})")
        return entries

    async def get_utxos(self, address: str) -> list[UTXO]:
        data = await self._get_json(
            f"/addrs/{address}", unspentOnly="true", includeScript="false"
        )
        txrefs = data.get("unconfirmed_txrefs", []) + data.get("txrefs", [])
        utxos = [
            UTXO(
                txid=ref["tx_hash"],
                vout=ref["tx_output_n"],
                value=int(ref["value"]),
                address=data.get("address", address),
            )
            for ref in txrefs
        ]
        logger.debug(f"Found {len(utxos)} UTXOs for address {address}")
        return utxos

    async def submit_transaction(self, raw_tx_hex: str) -> str:
        try:
            response = await self.client.post(
                f"{self.base_url}/txs/push", json={"tx": raw_tx_hex}, params=self._params()
            )
            response.raise_for_status()
            txid = response.json()["tx"]["hash"]
        except httpx.HTTPStatusError as e:
            raise ProviderFetchError(
                f"Broadcast rejected: {e.response.status_code} {e.response.text.strip()}"
            ) from e
        except (httpx.HTTPError, ValueError, KeyError) as e:
            raise ProviderFetchError(f"Broadcast failed: {e}") from e

        logger.info(f"Broadcast transaction: {txid}")
        return txid

    async def get_transaction_status(self, txid: str) -> TransactionStatus:
        try:
            response = await self.client.get(
                f"{self.base_url}/txs/{txid}", params=self._params()
            )
            if response.status_code == 404:
                logger.debug(f"Transaction {txid} not found, treating as dropped")
                return TransactionStatus.DROPPED
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderFetchError(f"Failed to fetch status of {txid}: {e}") from e

        if int(data.get("confirmations", 0)) > 0:
            return TransactionStatus.CONFIRMED
        return TransactionStatus.PENDING

    async def close(self) -> None:
        await self.client.aclose()
