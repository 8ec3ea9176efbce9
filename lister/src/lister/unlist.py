"""
Unlisting offers.

The lister proves control of the listing address by signing a message naming
the offers. Taproot addresses sign with BIP-322 (simple), the others with the
Bitcoin signed-message format.
"""

from __future__ import annotations

from collections.abc import Sequence

from loguru import logger
from pydantic import BaseModel, Field
from runecore.errors import (
    CODE_INVALID_SIGNATURE,
    OwnershipMismatch,
    SignatureInvalid,
    ValidationError,
)
from runecore.models import Offer, OfferStatus
from runewallet.wallet.message import verify_message


class UnlistRequest(BaseModel):
    address: str = Field(..., min_length=1)
    offer_ids: list[str] = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)
    pubkey: str | None = None


def unlist_message(offer_ids: Sequence[str], address: str) -> str:
    return f"unlist offers {','.join(offer_ids)} by {address}"


def unlist_offers(offers: Sequence[Offer], request: UnlistRequest) -> list[Offer]:
    """
    Cancel the requested offers.

    Args:
        offers: Stored offers, looked up by id
        request: Signed unlist request

    Returns:
        The requested offers with status Cancelled

    Raises:
        SignatureInvalid: The message signature does not verify for the address
        ValidationError: An offer id is unknown
        OwnershipMismatch: An offer was listed by another address
    """
    message = unlist_message(request.offer_ids, request.address)
    if not verify_message(request.address, message, request.signature, request.pubkey):
        raise SignatureInvalid(
            f"Invalid unlist signature for {request.address}", code=CODE_INVALID_SIGNATURE
        )

    by_id = {offer.id: offer for offer in offers}
    cancelled = []
    for offer_id in request.offer_ids:
        offer = by_id.get(offer_id)
        if offer is None:
            raise ValidationError(f"Unknown offer {offer_id}")
        if offer.lister_address != request.address:
            raise OwnershipMismatch(f"Offer {offer_id} was not listed by {request.address}")
        cancelled.append(offer.with_status(OfferStatus.CANCELLED))

    logger.info(f"Unlisted {len(cancelled)} offers of {request.address}")
    return cancelled
