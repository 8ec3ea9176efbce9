"""
Lister CLI using Typer.
"""

from __future__ import annotations

import asyncio
import json
import sys
from decimal import Decimal
from typing import Annotated

import typer
from loguru import logger
from runecore.config import Settings, get_settings
from runecore.errors import MarketError
from runecore.models import AccountKeys, AddressType, NetworkType
from runewallet.backends.unisat import UnisatBackend
from runewallet.wallet.address import address_to_scriptpubkey

from lister.config import ListerConfig
from lister.offers import ListingItem, OfferBuilder
from lister.unlist import unlist_message
from lister.verification import CreateOfferRequest, OfferService, OfferValidator, single_rune_utxos

app = typer.Typer(add_completion=False, help="Runes marketplace lister tools")


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


def create_indexer(settings: Settings) -> UnisatBackend:
    return UnisatBackend(
        api_url=settings.get_unisat_api_url(),
        api_key=settings.unisat_api_key,
        timeout=settings.request_timeout,
    )


@app.command()
def build(
    address: Annotated[str, typer.Option(help="Address holding the runes")],
    pubkey: Annotated[str, typer.Option(help="Hex public key of the address")],
    rune_id: Annotated[str, typer.Option(help="Rune id (block:tx)")],
    unit_price: Annotated[str, typer.Option(help="Price per rune unit in sats")],
    address_type: Annotated[
        AddressType, typer.Option(case_sensitive=False)
    ] = AddressType.P2TR,
    receiver: Annotated[
        str | None, typer.Option(help="Funding receiver (defaults to --address)")
    ] = None,
    log_level: Annotated[str, typer.Option("--log-level", "-l")] = "INFO",
) -> None:
    """Build an unsigned listing PSBT for every single-rune UTXO of an address."""
    setup_logging(log_level)
    settings = get_settings()

    async def _build() -> str:
        indexer = create_indexer(settings)
        try:
            utxos = single_rune_utxos(
                await indexer.get_address_rune_utxos(address, rune_id), rune_id
            )
        finally:
            await indexer.close()

        account = AccountKeys(
            address=address,
            script_pubkey=address_to_scriptpubkey(address).hex(),
            pubkey=pubkey,
            address_type=address_type,
        )
        config = ListerConfig(network=NetworkType(settings.network), funding_receiver=receiver)
        items = [
            ListingItem(asset=utxo, amount=utxo.runes[0].display_amount)
            for utxo in utxos.values()
            if utxo.runes[0].display_amount > 0
        ]
        listing = OfferBuilder(account, config).build(items, Decimal(unit_price))
        return listing.psbt_hex

    try:
        psbt_hex = run_async(_build())
    except (MarketError, ValueError) as e:
        logger.error(f"Failed to build listing: {e}")
        raise typer.Exit(1)

    print(psbt_hex)


@app.command()
def validate(
    psbt: Annotated[str, typer.Option(help="Signed listing PSBT (hex or base64)")],
    address: Annotated[str, typer.Option(help="Lister address")],
    rune_id: Annotated[str, typer.Option(help="Rune id (block:tx)")],
    unit_price: Annotated[str, typer.Option(help="Price per rune unit in sats")],
    collection: Annotated[
        bool, typer.Option("--collection", help="Listing bundles an inscription")
    ] = False,
    log_level: Annotated[str, typer.Option("--log-level", "-l")] = "INFO",
) -> None:
    """Validate a signed listing and print the resulting offers."""
    setup_logging(log_level)
    settings = get_settings()
    request = CreateOfferRequest(
        psbt=psbt, address=address, rune_id=rune_id, unit_price=Decimal(unit_price)
    )

    async def _validate():  # type: ignore[no-untyped-def]
        indexer = create_indexer(settings)
        try:
            validator = OfferValidator(
                indexer, ListerConfig(network=NetworkType(settings.network))
            )
            service = OfferService(validator)
            if collection:
                return await service.create_collection(request)
            return await service.create(request)
        finally:
            await indexer.close()

    response = run_async(_validate())
    print(json.dumps(response.model_dump(mode="json"), indent=2))
    if response.error:
        raise typer.Exit(1)


@app.command("unlist-message")
def unlist_message_command(
    address: Annotated[str, typer.Option(help="Lister address")],
    offer_ids: Annotated[list[str], typer.Argument(help="Offer ids to unlist")],
) -> None:
    """Print the message a lister signs to unlist offers."""
    print(unlist_message(offer_ids, address))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
