"""
Tests for the Blockstream and BlockCypher backends (mocked HTTP).
"""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest

from btcwallet.backends import BlockCypherBackend, BlockstreamBackend, create_backend
from btcwallet.backends.base import UTXO, BlockInfo, ProviderFetchError, TransactionStatus
from btcwallet.backends.blockcypher import MAX_TXREFS
from btcwallet.config import WalletSettings
from btcwallet.wallet.sync import WalletSyncEngine

ADDRESS = "tb1q4794m2uuw9jmjszmplfj4wvvr5j272fpeq3tt2"
OTHER = "tb1qcr8te4kr609gcawutmrza0j4xv80jy8zmfp6l0"
TIP_HASH = "00" * 16 + "ab" * 16


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def esplora_tx(
    txid: str,
    received: int = 0,
    spent: int = 0,
    block_height: int | None = None,
) -> dict:
    vin = []
    if spent:
        vin.append({"prevout": {"scriptpubkey_address": ADDRESS, "value": spent}})
    vin.append({"prevout": {"scriptpubkey_address": OTHER, "value": 100000}})
    vout = [{"scriptpubkey_address": OTHER, "value": 1234}]
    if received:
        vout.append({"scriptpubkey_address": ADDRESS, "value": received})

    status: dict = {"confirmed": block_height is not None}
    if block_height is not None:
        status["block_height"] = block_height
    return {"txid": txid, "vin": vin, "vout": vout, "status": status}


class TestBlockstreamBackend:
    BASE = "https://blockstream.info/testnet/api"

    def make_backend(self, routes: dict[str, httpx.Response]) -> BlockstreamBackend:
        routes = {
            "/testnet/api/blocks/tip/hash": httpx.Response(200, text=TIP_HASH),
            f"/testnet/api/block/{TIP_HASH}": httpx.Response(
                200, json={"id": TIP_HASH, "height": 123}
            ),
            **routes,
        }

        def handler(request: httpx.Request) -> httpx.Response:
            template = routes.get(request.url.path)
            if template is None:
                if "/txs/chain/" in request.url.path:
                    # Esplora answers past the end of the history with an empty page
                    return httpx.Response(200, json=[])
                return httpx.Response(404, text="not found")
            # Fresh response per request, routes may be hit more than once
            return httpx.Response(
                template.status_code, headers=template.headers, content=template.content
            )

        return BlockstreamBackend(network="testnet", client=mock_client(handler))

    def test_base_urls(self) -> None:
        assert BlockstreamBackend(network="mainnet").base_url == "https://blockstream.info/api"
        assert BlockstreamBackend(network="testnet").base_url == self.BASE
        assert BlockstreamBackend(base_url="http://localhost:3000/").base_url == (
            "http://localhost:3000"
        )

    def test_unknown_network(self) -> None:
        with pytest.raises(ValueError):
            BlockstreamBackend(network="regtest")

    @pytest.mark.asyncio
    async def test_last_known_block(self) -> None:
        backend = self.make_backend({})
        assert await backend.get_last_known_block() == BlockInfo(height=123, hash=TIP_HASH)
        await backend.close()

    @pytest.mark.asyncio
    async def test_balance(self) -> None:
        backend = self.make_backend(
            {
                f"/testnet/api/address/{ADDRESS}": httpx.Response(
                    200, json={"chain_stats": {"funded_txo_sum": 9000, "spent_txo_sum": 2500}}
                )
            }
        )
        assert await backend.get_address_balance(ADDRESS) == 6500

    @pytest.mark.asyncio
    async def test_transactions(self) -> None:
        txs = [
            esplora_tx("11" * 32, spent=5000),
            esplora_tx("22" * 32, received=7000, block_height=120),
        ]
        backend = self.make_backend(
            {f"/testnet/api/address/{ADDRESS}/txs": httpx.Response(200, json=txs)}
        )

        entries = await backend.get_transactions(ADDRESS, 100)

        assert [e.transaction_hash for e in entries] == ["11" * 32, "22" * 32]
        pending, confirmed = entries
        assert pending.delta == -5000
        assert pending.status == TransactionStatus.PENDING
        assert pending.confirmations == 0
        assert confirmed.delta == 7000
        assert confirmed.status == TransactionStatus.CONFIRMED
        assert confirmed.confirmations == 4
        assert confirmed.block_height == 120

    @pytest.mark.asyncio
    async def test_transactions_offset(self) -> None:
        txs = [esplora_tx(f"{i:02x}" * 32, received=i, block_height=100) for i in range(1, 4)]
        backend = self.make_backend(
            {f"/testnet/api/address/{ADDRESS}/txs": httpx.Response(200, json=txs)}
        )

        entries = await backend.get_transactions(ADDRESS, limit=2, offset=2)

        assert [e.transaction_hash for e in entries] == ["03" * 32]
        assert await backend.get_transactions(ADDRESS, limit=2, offset=10) == []

    @pytest.mark.asyncio
    async def test_transactions_follow_chain_pages(self) -> None:
        first = [esplora_tx(f"{i:02x}" * 32, received=1, block_height=110) for i in range(1, 4)]
        older = [esplora_tx(f"{i:02x}" * 32, received=1, block_height=90) for i in range(4, 7)]
        backend = self.make_backend(
            {
                f"/testnet/api/address/{ADDRESS}/txs": httpx.Response(200, json=first),
                f"/testnet/api/address/{ADDRESS}/txs/chain/{'03' * 32}": httpx.Response(
                    200, json=older
                ),
            }
        )

        entries = await backend.get_transactions(ADDRESS, limit=5, offset=0)

        assert len(entries) == 5
        assert entries[-1].transaction_hash == "05" * 32

    @pytest.mark.asyncio
    async def test_utxos(self) -> None:
        backend = self.make_backend(
            {
                f"/testnet/api/address/{ADDRESS}/utxo": httpx.Response(
                    200,
                    json=[
                        {"txid": "aa" * 32, "vout": 1, "value": 5000, "status": {}},
                        {"txid": "bb" * 32, "vout": 0, "value": 700, "status": {}},
                    ],
                )
            }
        )

        utxos = await backend.get_utxos(ADDRESS)

        assert utxos == [
            UTXO(txid="aa" * 32, vout=1, value=5000, address=ADDRESS),
            UTXO(txid="bb" * 32, vout=0, value=700, address=ADDRESS),
        ]

    @pytest.mark.asyncio
    async def test_http_error_is_wrapped(self) -> None:
        backend = self.make_backend(
            {f"/testnet/api/address/{ADDRESS}/utxo": httpx.Response(500, text="boom")}
        )
        with pytest.raises(ProviderFetchError):
            await backend.get_utxos(ADDRESS)

    @pytest.mark.asyncio
    async def test_transport_error_is_wrapped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        backend = BlockstreamBackend(network="testnet", client=mock_client(handler))
        with pytest.raises(ProviderFetchError):
            await backend.get_last_known_block()

    @pytest.mark.asyncio
    async def test_submit(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="cd" * 32)

        backend = BlockstreamBackend(network="testnet", client=mock_client(handler))

        assert await backend.submit_transaction("0200abcd") == "cd" * 32
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/testnet/api/tx"
        assert seen[0].content == b"0200abcd"

    @pytest.mark.asyncio
    async def test_submit_rejected(self) -> None:
        backend = BlockstreamBackend(
            network="testnet",
            client=mock_client(lambda request: httpx.Response(400, text="bad-txns-inputs")),
        )
        with pytest.raises(ProviderFetchError, match="bad-txns-inputs"):
            await backend.submit_transaction("00")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("response", "expected"),
        [
            (httpx.Response(200, json={"confirmed": True}), TransactionStatus.CONFIRMED),
            (httpx.Response(200, json={"confirmed": False}), TransactionStatus.PENDING),
            (httpx.Response(404, text="Transaction not found"), TransactionStatus.DROPPED),
        ],
    )
    async def test_transaction_status(self, response: httpx.Response, expected) -> None:
        backend = self.make_backend({f"/testnet/api/tx/{'ee' * 32}/status": response})
        assert await backend.get_transaction_status("ee" * 32) == expected

    @pytest.mark.asyncio
    async def test_transaction_status_server_error(self) -> None:
        backend = self.make_backend(
            {f"/testnet/api/tx/{'ee' * 32}/status": httpx.Response(503, text="busy")}
        )
        with pytest.raises(ProviderFetchError):
            await backend.get_transaction_status("ee" * 32)


class TestBlockCypherBackend:
    def make_backend(
        self, handler: Callable[[httpx.Request], httpx.Response], token: str = ""
    ) -> BlockCypherBackend:
        return BlockCypherBackend(token=token, network="testnet", client=mock_client(handler))

    def test_base_urls(self) -> None:
        assert BlockCypherBackend(network="mainnet").base_url == (
            "https://api.blockcypher.com/v1/btc/main"
        )
        assert BlockCypherBackend(network="testnet").base_url == (
            "https://api.blockcypher.com/v1/btc/test3"
        )
        with pytest.raises(ValueError):
            BlockCypherBackend(network="signet")

    @pytest.mark.asyncio
    async def test_last_known_block_with_token(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"height": 2500000, "hash": TIP_HASH})

        backend = self.make_backend(handler, token="secret")

        assert await backend.get_last_known_block() == BlockInfo(height=2500000, hash=TIP_HASH)
        assert seen[0].url.path == "/v1/btc/test3/"
        assert seen[0].url.params["token"] == "secret"

    @pytest.mark.asyncio
    async def test_no_token_param_without_token(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"balance": 42})

        backend = self.make_backend(handler)

        assert await backend.get_address_balance(ADDRESS) == 42
        assert "token" not in seen[0].url.params

    @pytest.mark.asyncio
    async def test_transactions(self) -> None:
        seen: list[httpx.Request] = []
        body = {
            "address": ADDRESS,
            "unconfirmed_txrefs": [
                {
                    "tx_hash": "11" * 32,
                    "tx_input_n": -1,
                    "tx_output_n": 0,
                    "value": 900,
                    "confirmations": 0,
                    "block_height": -1,
                },
            ],
            "txrefs": [
                {
                    "tx_hash": "22" * 32,
                    "tx_input_n": 0,
                    "tx_output_n": -1,
                    "value": 3000,
                    "confirmations": 12,
                    "block_height": 2499990,
                },
                {
                    "tx_hash": "33" * 32,
                    "tx_input_n": -1,
                    "tx_output_n": 1,
                    "value": 5000,
                    "confirmations": 20,
                    "block_height": 2499980,
                },
            ],
        }

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=body)

        backend = self.make_backend(handler)
        entries = await backend.get_transactions(ADDRESS, 2499980, limit=50)

        params = seen[0].url.params
        assert seen[0].url.path == f"/v1/btc/test3/addrs/{ADDRESS}"
        assert (params["limit"], params["after"]) == ("50", "2499980")
        assert "offset" not in params

        assert [e.delta for e in entries] == [900, -3000, 5000]
        assert entries[0].status == TransactionStatus.PENDING
        assert entries[0].block_height == 0
        assert entries[1].status == TransactionStatus.CONFIRMED
        assert entries[1].confirmations == 12

    @pytest.mark.asyncio
    async def test_transactions_pages_by_slicing(self) -> None:
        seen: list[httpx.Request] = []
        txrefs = [
            {"tx_hash": f"{i:02x}" * 32, "tx_input_n": -1, "value": 100 * (i + 1)}
            for i in range(5)
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            limit = int(request.url.params["limit"])
            return httpx.Response(200, json={"address": ADDRESS, "txrefs": txrefs[:limit]})

        backend = self.make_backend(handler)

        first = await backend.get_transactions(ADDRESS, limit=2, offset=0)
        second = await backend.get_transactions(ADDRESS, limit=2, offset=2)
        last = await backend.get_transactions(ADDRESS, limit=2, offset=4)

        assert [e.delta for e in first] == [100, 200]
        assert [e.delta for e in second] == [300, 400]
        assert [e.delta for e in last] == [500]
        assert [r.url.params["limit"] for r in seen] == ["2", "4", "6"]

    @pytest.mark.asyncio
    async def test_sync_paging_terminates(self) -> None:
        txrefs = [{"tx_hash": f"{i:02x}" * 32, "value": 1000} for i in range(120)]

        def handler(request: httpx.Request) -> httpx.Response:
            limit = int(request.url.params["limit"])
            return httpx.Response(200, json={"address": ADDRESS, "txrefs": txrefs[:limit]})

        engine = WalletSyncEngine(self.make_backend(handler), [ADDRESS], page_size=50)
        history = await engine.fetch_recent_transactions(ADDRESS, 2499980)

        assert len(history) == 120
        assert len({e.transaction_hash for e in history}) == 120

    @pytest.mark.asyncio
    async def test_window_capped(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200, json={"address": ADDRESS, "txrefs": [], "hasMore": True}
            )

        backend = self.make_backend(handler)

        assert await backend.get_transactions(ADDRESS, limit=50, offset=MAX_TXREFS) == []
        assert seen[0].url.params["limit"] == str(MAX_TXREFS)

    @pytest.mark.asyncio
    async def test_transactions_without_after(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"address": ADDRESS})

        backend = self.make_backend(handler)

        assert await backend.get_transactions(ADDRESS) == []
        assert "after" not in seen[0].url.params

    @pytest.mark.asyncio
    async def test_utxos(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "address": ADDRESS,
                    "txrefs": [{"tx_hash": "aa" * 32, "tx_output_n": 2, "value": 5000}],
                },
            )

        backend = self.make_backend(handler)

        assert await backend.get_utxos(ADDRESS) == [
            UTXO(txid="aa" * 32, vout=2, value=5000, address=ADDRESS)
        ]
        assert seen[0].url.params["unspentOnly"] == "true"

    @pytest.mark.asyncio
    async def test_submit(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"tx": {"hash": "cd" * 32}})

        backend = self.make_backend(handler)

        assert await backend.submit_transaction("0200abcd") == "cd" * 32
        assert seen[0].url.path == "/v1/btc/test3/txs/push"
        assert json.loads(seen[0].content) == {"tx": "0200abcd"}

    @pytest.mark.asyncio
    async def test_submit_malformed_response(self) -> None:
        backend = self.make_backend(lambda request: httpx.Response(201, json={"error": "?"}))
        with pytest.raises(ProviderFetchError):
            await backend.submit_transaction("00")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("response", "expected"),
        [
            (httpx.Response(200, json={"confirmations": 3}), TransactionStatus.CONFIRMED),
            (httpx.Response(200, json={"confirmations": 0}), TransactionStatus.PENDING),
            (httpx.Response(404, json={"error": "not found"}), TransactionStatus.DROPPED),
        ],
    )
    async def test_transaction_status(self, response: httpx.Response, expected) -> None:
        backend = self.make_backend(lambda request: response)
        assert await backend.get_transaction_status("ee" * 32) == expected

    @pytest.mark.asyncio
    async def test_http_error_is_wrapped(self) -> None:
        backend = self.make_backend(lambda request: httpx.Response(429, json={"error": "limit"}))
        with pytest.raises(ProviderFetchError):
            await backend.get_last_known_block()


class TestCreateBackend:
    def test_default_is_blockstream(self) -> None:
        backend = create_backend(WalletSettings(network="signet"))
        assert isinstance(backend, BlockstreamBackend)
        assert backend.base_url == "https://blockstream.info/signet/api"

    def test_blockcypher(self) -> None:
        backend = create_backend(
            WalletSettings(backend="blockcypher", network="mainnet", blockcypher_token="t")
        )
        assert isinstance(backend, BlockCypherBackend)
        assert backend.token == "t"

    def test_api_url_override(self) -> None:
        backend = create_backend(WalletSettings(api_url="http://esplora.local/api"))
        assert backend.base_url == "http://esplora.local/api"
