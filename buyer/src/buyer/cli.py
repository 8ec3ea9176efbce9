"""
Buyer CLI using Typer.
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger
from runecore.config import Settings, get_settings
from runecore.errors import MarketError
from runecore.models import AccountKeys, AddressType, NetworkType, Offer
from runewallet.backends.mempool import MempoolBackend
from runewallet.backends.unisat import UnisatBackend
from runewallet.wallet.address import address_to_scriptpubkey
from runewallet.wallet.utxos import get_spendable_utxos

from buyer.config import BuyerConfig
from buyer.order_builder import OrderAssembler

app = typer.Typer(add_completion=False, help="Runes marketplace buyer tools")


def run_async(coro):  # type: ignore[no-untyped-def]
    return asyncio.run(coro)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def create_backends(settings: Settings) -> tuple[UnisatBackend, MempoolBackend]:
    indexer = UnisatBackend(
        api_url=settings.get_unisat_api_url(),
        api_key=settings.unisat_api_key,
        timeout=settings.request_timeout,
    )
    chain = MempoolBackend(
        api_url=settings.get_mempool_api_url(), timeout=settings.request_timeout
    )
    return indexer, chain


def load_offers(path: Path) -> list[Offer]:
    """Offers from a JSON file: a list of records or an API response holding one."""
    data = json.loads(path.read_text())
    if isinstance(data, dict):
        data = data.get("data") or []
    return [Offer.model_validate(item) for item in data]


@app.command()
def fees(log_level: Annotated[str, typer.Option("--log-level", "-l")] = "INFO") -> None:
    """Show recommended fee rates."""
    setup_logging(log_level)
    settings = get_settings()

    async def _fees():  # type: ignore[no-untyped-def]
        indexer, chain = create_backends(settings)
        try:
            return await chain.get_recommended_fees()
        finally:
            await indexer.close()
            await chain.close()

    try:
        rates = run_async(_fees())
    except MarketError as e:
        logger.error(f"Failed to fetch fees: {e}")
        raise typer.Exit(1)

    print(f"Fastest:   {rates.fastest} sat/vB")
    print(f"Half hour: {rates.half_hour} sat/vB")
    print(f"Hour:      {rates.hour} sat/vB")
    print(f"Economy:   {rates.economy} sat/vB")


@app.command()
def utxos(
    address: Annotated[str, typer.Option(help="Payment address")],
    log_level: Annotated[str, typer.Option("--log-level", "-l")] = "INFO",
) -> None:
    """List UTXOs safe to spend, excluding those spent in the mempool."""
    setup_logging(log_level)
    settings = get_settings()

    async def _utxos():  # type: ignore[no-untyped-def]
        indexer, chain = create_backends(settings)
        try:
            spendable, _ = await get_spendable_utxos(address, indexer, chain)
            return spendable
        finally:
            await indexer.close()
            await chain.close()

    try:
        spendable = run_async(_utxos())
    except MarketError as e:
        logger.error(f"Failed to fetch UTXOs: {e}")
        raise typer.Exit(1)

    for utxo in spendable:
        print(f"{utxo.outpoint}  {utxo.value:>12,} sats")
    print(f"Total: {sum(u.value for u in spendable):,} sats in {len(spendable)} UTXOs")


@app.command()
def assemble(
    offers_file: Annotated[Path, typer.Option("--offers", help="JSON file with offers to buy")],
    address: Annotated[str, typer.Option(help="Payment address")],
    pubkey: Annotated[str, typer.Option(help="Hex public key of the payment address")],
    receiver: Annotated[str, typer.Option(help="Address receiving the runes")],
    address_type: Annotated[
        AddressType, typer.Option(case_sensitive=False)
    ] = AddressType.P2WPKH,
    fee_rate: Annotated[
        float | None, typer.Option(help="Fee rate in sat/vB (default: half-hour estimate)")
    ] = None,
    split_amount: Annotated[
        int | None, typer.Option(help="Spread the runes over outputs of this many units")
    ] = None,
    log_level: Annotated[str, typer.Option("--log-level", "-l")] = "INFO",
) -> None:
    """Assemble an unsigned token order for the buyer's wallet to sign."""
    setup_logging(log_level)
    settings = get_settings()
    config = BuyerConfig(
        network=NetworkType(settings.network),
        fee_rate=fee_rate,
        revalidation_batch_size=settings.revalidation_batch_size,
        revalidation_batch_delay=settings.revalidation_batch_delay,
    )

    try:
        offers = load_offers(offers_file)
        buyer = AccountKeys(
            address=address,
            script_pubkey=address_to_scriptpubkey(address).hex(),
            pubkey=pubkey,
            address_type=address_type,
        )
    except ValueError as e:
        logger.error(f"Invalid input: {e}")
        raise typer.Exit(1)

    async def _assemble():  # type: ignore[no-untyped-def]
        indexer, chain = create_backends(settings)
        try:
            rate = config.fee_rate or (await chain.get_recommended_fees()).half_hour
            spendable, _ = await get_spendable_utxos(address, indexer, chain)
            assembler = OrderAssembler(indexer, config)
            return await assembler.assemble_token_order(
                offers, buyer, receiver, rate, spendable, split_amount
            )
        finally:
            await indexer.close()
            await chain.close()

    try:
        assembled = run_async(_assemble())
    except MarketError as e:
        logger.error(f"Failed to assemble order: {e.message} (code {e.code})")
        raise typer.Exit(1)

    print(
        json.dumps(
            {
                "psbt": assembled.psbt_hex,
                "sign_indexes": assembled.sign_indexes,
                "fee": assembled.fee,
                "total_price": assembled.total_price,
                "bids": [offer.bid for offer in assembled.offers],
                "invalid_locations": assembled.invalid_locations,
            },
            indent=2,
        )
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
