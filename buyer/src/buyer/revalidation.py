"""
Offer revalidation against the indexer.

Listings can go stale at any time: the lister may move the runes or the
inscription. Every offer is rechecked before it goes into an order and again
before the order is broadcast.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field

from loguru import logger
from runecore.constants import REVALIDATION_BATCH_DELAY, REVALIDATION_BATCH_SIZE
from runecore.errors import (
    CODE_INSCRIPTION_MISMATCH,
    CODE_INVALID_RUNE_INPUT,
    AssetMismatch,
    ExternalServiceFailure,
    MarketError,
)
from runecore.models import Offer
from runewallet.backends.base import IndexerBackend


@dataclass
class RevalidationResult:
    valid: list[Offer] = field(default_factory=list)
    invalid_locations: list[str] = field(default_factory=list)
    errors: dict[str, MarketError] = field(default_factory=dict)

    @property
    def all_valid(self) -> bool:
        return not self.invalid_locations


async def check_offer(offer: Offer, indexer: IndexerBackend) -> None:
    """
    Check that an offer's location still holds exactly what was listed.

    Raises:
        AssetMismatch: Rune balance or inscription location changed
        ExternalServiceFailure: The indexer could not be queried
    """
    balances = await indexer.get_utxo_rune_balance(offer.location_txid, offer.location_vout)
    if len(balances) != 1:
        raise AssetMismatch(
            f"{offer.location} holds {len(balances)} runes", code=CODE_INVALID_RUNE_INPUT
        )
    balance = balances[0]
    if balance.rune_id != offer.rune_id:
        raise AssetMismatch(
            f"{offer.location} holds {balance.rune_id}, not {offer.rune_id}",
            code=CODE_INVALID_RUNE_INPUT,
        )
    if balance.display_amount != offer.amount:
        raise AssetMismatch(
            f"{offer.location} holds {balance.display_amount} units, offer is for {offer.amount}",
            code=CODE_INVALID_RUNE_INPUT,
        )

    if offer.inscription_id is not None:
        inscription = await indexer.get_inscription_info(offer.inscription_id)
        if inscription is None or inscription.outpoint != offer.inscription_location:
            raise AssetMismatch(
                f"Inscription {offer.inscription_id} moved from {offer.inscription_location}",
                code=CODE_INSCRIPTION_MISMATCH,
            )


async def revalidate_offers(
    offers: Sequence[Offer],
    indexer: IndexerBackend,
    batch_size: int = REVALIDATION_BATCH_SIZE,
    batch_delay: float = REVALIDATION_BATCH_DELAY,
) -> RevalidationResult:
    """
    Check offers in batches of ``batch_size`` with ``batch_delay`` seconds between
    batches. A stale offer is reported by location and does not affect the others.

    Raises:
        ExternalServiceFailure: The indexer could not be queried; nothing is
            reported stale on an outage
    """
    result = RevalidationResult()
    for start in range(0, len(offers), batch_size):
        if start:
            await asyncio.sleep(batch_delay)
        batch = offers[start : start + batch_size]
        outcomes = await asyncio.gather(
            *(check_offer(offer, indexer) for offer in batch), return_exceptions=True
        )
        for offer, outcome in zip(batch, outcomes, strict=True):
            if outcome is None:
                result.valid.append(offer)
            elif isinstance(outcome, ExternalServiceFailure):
                raise outcome
            elif isinstance(outcome, MarketError):
                logger.warning(f"Offer {offer.bid[:16]}... at {offer.location} is stale: {outcome}")
                result.invalid_locations.append(offer.location)
                result.errors[offer.location] = outcome
            else:
                raise outcome

    logger.debug(
        f"Revalidated {len(offers)} offers: {len(result.valid)} valid, "
        f"{len(result.invalid_locations)} invalid"
    )
    return result
