"""
Command-line interface for btcwallet.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import typer
from loguru import logger
from pydantic import ValidationError

from btcwallet.backends import ProviderFetchError, TransactionStatus, create_backend
from btcwallet.config import WalletSettings, get_settings
from btcwallet.models import AddressType, ChainType, NetworkType
from btcwallet.wallet.address import derive_address_by_type
from btcwallet.wallet.bip32 import derivation_path, derive_public_key, seed_for_address_type
from btcwallet.wallet.service import ObservableWallet
from btcwallet.wallet.signing import TransactionSigningError
from btcwallet.wallet.tx_builder import InsufficientFundsError, NoFundsAvailableError

app = typer.Typer(
    name="btc-wallet",
    help="Single-address Bitcoin wallet",
    add_completion=False,
)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def load_settings(**overrides: object) -> WalletSettings:
    """Settings from environment / .env, with explicit CLI options taking precedence."""
    update = {key: value for key, value in overrides.items() if value is not None}
    try:
        return get_settings(**update)
    except ValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        raise typer.Exit(1)


def resolve_mnemonic(settings: WalletSettings, mnemonic_file: Path | None) -> str:
    if mnemonic_file:
        if not mnemonic_file.exists():
            logger.error(f"Mnemonic file not found: {mnemonic_file}")
            raise typer.Exit(1)
        return mnemonic_file.read_text().strip()

    if not settings.mnemonic:
        logger.error("Mnemonic required. Use --mnemonic, --mnemonic-file, or MNEMONIC env var")
        raise typer.Exit(1)
    return settings.mnemonic


def build_wallet(settings: WalletSettings, mnemonic: str) -> ObservableWallet:
    return ObservableWallet(
        create_backend(settings),
        mnemonic,
        network=settings.network,
        poll_interval=settings.poll_interval,
        reorg_safe_depth=settings.reorg_safe_depth,
        fixed_fee=settings.fixed_fee,
        electrum_password=settings.electrum_password,
        page_size=settings.page_size,
    )


@app.command()
def addresses(
    mnemonic: str | None = typer.Option(None, "--mnemonic", envvar="MNEMONIC", help="Mnemonic"),
    mnemonic_file: Path | None = typer.Option(
        None, "--mnemonic-file", "-f", help="Path to mnemonic file"
    ),
    network: str | None = typer.Option(None, "--network", "-n", help="Bitcoin network"),
    index: int = typer.Option(0, "--index", "-i", min=0, help="Address index"),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Show the receive address of every supported address type."""
    settings = load_settings(mnemonic=mnemonic, network=network, log_level=log_level)
    setup_logging(settings.log_level)
    phrase = resolve_mnemonic(settings, mnemonic_file)

    network_type = NetworkType(settings.network)
    typer.echo(f"Network: {network_type.value}\n")

    for address_type in AddressType:
        seed = seed_for_address_type(phrase, address_type, settings.electrum_password)
        public_key = derive_public_key(seed, address_type, ChainType.EXTERNAL, index)
        address = derive_address_by_type(public_key, address_type, network_type)
        path = derivation_path(address_type, ChainType.EXTERNAL, index)
        typer.echo(f"{address_type.value:<24} {path:<20} {address}")


@app.command()
def watch(
    mnemonic: str | None = typer.Option(None, "--mnemonic", envvar="MNEMONIC", help="Mnemonic"),
    mnemonic_file: Path | None = typer.Option(
        None, "--mnemonic-file", "-f", help="Path to mnemonic file"
    ),
    network: str | None = typer.Option(None, "--network", "-n", help="Bitcoin network"),
    backend: str | None = typer.Option(
        None, "--backend", "-b", help="Backend: blockstream | blockcypher"
    ),
    poll_interval: float | None = typer.Option(
        None, "--poll-interval", help="Seconds between chain tip polls"
    ),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Keep the wallet synced and log every state change until interrupted."""
    settings = load_settings(
        mnemonic=mnemonic,
        network=network,
        backend=backend,
        poll_interval=poll_interval,
        log_level=log_level,
    )
    setup_logging(settings.log_level)
    phrase = resolve_mnemonic(settings, mnemonic_file)

    try:
        asyncio.run(_run_watch(settings, phrase))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


async def _run_watch(settings: WalletSettings, mnemonic: str) -> None:
    wallet = build_wallet(settings, mnemonic)
    logger.info(f"Watching {wallet.address} on {settings.network} via {settings.backend}")

    wallet.balance.subscribe(lambda balance: logger.info(f"Balance: {balance} sats"))
    wallet.utxos.subscribe(lambda utxos: logger.info(f"UTXOs: {len(utxos)}"))
    wallet.sync_progress.subscribe(lambda progress: logger.debug(f"Sync progress: {progress}%"))
    wallet.transaction_history.subscribe(
        lambda history: logger.info(f"Recent transactions: {len(history)}")
    )

    async with wallet:
        await asyncio.Event().wait()


@app.command()
def send(
    address: str = typer.Argument(..., help="Recipient address"),
    amount: int = typer.Argument(..., min=1, help="Amount in sats"),
    mnemonic: str | None = typer.Option(None, "--mnemonic", envvar="MNEMONIC", help="Mnemonic"),
    mnemonic_file: Path | None = typer.Option(
        None, "--mnemonic-file", "-f", help="Path to mnemonic file"
    ),
    network: str | None = typer.Option(None, "--network", "-n", help="Bitcoin network"),
    backend: str | None = typer.Option(
        None, "--backend", "-b", help="Backend: blockstream | blockcypher"
    ),
    fee: int | None = typer.Option(None, "--fee", help="Flat fee in sats"),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Sync the wallet once and send AMOUNT sats to ADDRESS."""
    settings = load_settings(
        mnemonic=mnemonic,
        network=network,
        backend=backend,
        fixed_fee=fee,
        log_level=log_level,
    )
    setup_logging(settings.log_level)
    phrase = resolve_mnemonic(settings, mnemonic_file)

    try:
        txid = asyncio.run(_run_send(settings, phrase, address, amount))
    except (
        NoFundsAvailableError,
        InsufficientFundsError,
        TransactionSigningError,
        ProviderFetchError,
        ValueError,
    ):
        # Already logged by the transaction builder
        raise typer.Exit(1)

    typer.echo(txid)


async def _run_send(settings: WalletSettings, mnemonic: str, address: str, amount: int) -> str:
    wallet = build_wallet(settings, mnemonic)
    try:
        await wallet.sync()
        logger.info(f"Balance: {wallet.balance.value} sats in {len(wallet.utxos.value)} UTXO(s)")
        return await wallet.send(address, amount)
    finally:
        await wallet.close()


@app.command()
def status(
    txid: str = typer.Argument(..., help="Transaction ID"),
    network: str | None = typer.Option(None, "--network", "-n", help="Bitcoin network"),
    backend: str | None = typer.Option(
        None, "--backend", "-b", help="Backend: blockstream | blockcypher"
    ),
    log_level: str | None = typer.Option(None, "--log-level", "-l"),
) -> None:
    """Show whether a transaction is pending, confirmed or dropped."""
    settings = load_settings(network=network, backend=backend, log_level=log_level)
    setup_logging(settings.log_level)

    try:
        result = asyncio.run(_run_status(settings, txid))
    except ProviderFetchError as e:
        logger.error(f"Failed to fetch transaction status: {e}")
        raise typer.Exit(1)

    typer.echo(result.value)


async def _run_status(settings: WalletSettings, txid: str) -> TransactionStatus:
    backend = create_backend(settings)
    try:
        return await backend.get_transaction_status(txid)
    finally:
        await backend.close()


def main() -> None:
    """Entry point."""
    app()


if __name__ == "__main__":
    main()
