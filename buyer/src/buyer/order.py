"""
Order finalization and broadcast.

The buyer returns the assembled PSBT with their own inputs signed. Before
broadcasting, every offer is revalidated, the lister's finalized
scriptSig/witness is copied from the stored signed fragment and each offer
signature is verified again against the complete transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger
from runecore.constants import OFFER_SIGHASH
from runecore.errors import (
    CODE_INVALID_OFFER_PSBT,
    AssetMismatch,
    BroadcastRejected,
    MarketError,
    SignatureInvalid,
    ValidationError,
)
from runecore.models import ApiResponse, Offer, OfferStatus, Order
from runewallet.backends.base import ChainBackend, IndexerBackend
from runewallet.wallet.fragment import decode_fragment, fragment_inputs
from runewallet.wallet.psbt import Psbt, PsbtError
from runewallet.wallet.signing import verify_input_signature
from runewallet.wallet.transaction import Transaction
from runewallet.wallet.utxos import PendingOutputs

from buyer.config import BuyerConfig
from buyer.order_builder import AssembledOrder
from buyer.revalidation import RevalidationResult, revalidate_offers


@dataclass
class OrderResult:
    order: Order
    sold: list[Offer]
    pending: PendingOutputs = field(default_factory=PendingOutputs)


class OrderService:
    """
    Finalizes signed orders and pushes them to the network.
    """

    def __init__(
        self,
        indexer: IndexerBackend,
        chain: ChainBackend,
        config: BuyerConfig | None = None,
    ):
        self.indexer = indexer
        self.chain = chain
        self.config = config or BuyerConfig()

    async def _revalidate(self, offers: list[Offer]) -> RevalidationResult:
        return await revalidate_offers(
            offers,
            self.indexer,
            batch_size=self.config.revalidation_batch_size,
            batch_delay=self.config.revalidation_batch_delay,
        )

    def _parse_signed(self, assembled: AssembledOrder, signed_psbt_hex: str) -> Psbt:
        try:
            psbt = Psbt.parse(signed_psbt_hex)
        except PsbtError as e:
            raise ValidationError(f"Invalid order PSBT: {e}", code=CODE_INVALID_OFFER_PSBT) from e
        if psbt.tx.serialize(include_witness=False) != assembled.psbt.tx.serialize(
            include_witness=False
        ):
            raise ValidationError(
                "Signed order does not match the assembled transaction",
                code=CODE_INVALID_OFFER_PSBT,
            )
        return psbt

    def _finalize_buyer_inputs(self, psbt: Psbt, assembled: AssembledOrder) -> None:
        for index in assembled.sign_indexes:
            valid, error = verify_input_signature(psbt, index)
            if not valid:
                raise SignatureInvalid(f"Buyer input {index} signature invalid: {error}")
            try:
                psbt.finalize_input(index)
            except PsbtError as e:
                raise ValidationError(f"Cannot finalize buyer input {index}: {e}") from e

    def _attach_offer(self, psbt: Psbt, offer: Offer, indexes: list[int]) -> None:
        """Copy the lister's final scriptSig/witness into the order and re-verify it."""
        fragment = decode_fragment(offer.signed_psbt)
        pairs = fragment_inputs(fragment)
        if len(pairs) != len(indexes):
            raise ValidationError(
                f"Offer {offer.bid[:16]}... has {len(pairs)} inputs, order reserves "
                f"{len(indexes)}",
                code=CODE_INVALID_OFFER_PSBT,
            )

        for inp, index in zip(pairs, indexes, strict=True):
            if not inp.is_finalized:
                raise ValidationError(
                    f"Offer input {inp.outpoint} is not signed", code=CODE_INVALID_OFFER_PSBT
                )
            txin = psbt.tx.inputs[index]
            if txin.outpoint != inp.outpoint:
                raise ValidationError(
                    f"Order input {index} spends {txin.outpoint}, offer spends {inp.outpoint}",
                    code=CODE_INVALID_OFFER_PSBT,
                )
            funding = psbt.tx.outputs[index]
            if (funding.value, funding.script) != (
                inp.funding_output.value,
                inp.funding_output.script,
            ):
                raise ValidationError(
                    f"Order output {index} does not pay the offer's funding output",
                    code=CODE_INVALID_OFFER_PSBT,
                )

            target = psbt.inputs[index]
            target.witness_utxo = inp.witness_utxo
            target.final_script_sig = inp.final_script_sig
            target.final_script_witness = (
                list(inp.final_script_witness) if inp.final_script_witness is not None else None
            )
            target.sighash_type = None

            valid, error = verify_input_signature(psbt, index, OFFER_SIGHASH)
            if not valid:
                raise SignatureInvalid(f"Offer input {index} signature invalid: {error}")

    async def finalize(self, assembled: AssembledOrder, signed_psbt_hex: str) -> Psbt:
        """
        Produce a fully finalized order PSBT.

        Raises:
            ValidationError: The signed PSBT does not match or cannot be finalized
            SignatureInvalid: A buyer or offer signature does not verify
            AssetMismatch: An offer went stale since assembly
        """
        psbt = self._parse_signed(assembled, signed_psbt_hex)
        self._finalize_buyer_inputs(psbt, assembled)

        # Buyer signatures commit to every output, so no offer can be dropped here
        checked = await self._revalidate(assembled.offers)
        if not checked.all_valid:
            location = checked.invalid_locations[0]
            raise checked.errors.get(location) or AssetMismatch(f"Offer at {location} is stale")

        for offer in assembled.offers:
            self._attach_offer(psbt, offer, assembled.offer_indexes[offer.bid])

        unfinished = [i for i, inp in enumerate(psbt.inputs) if not inp.is_finalized]
        if unfinished:
            raise ValidationError(f"Inputs {unfinished} are not finalized")
        return psbt

    async def broadcast(self, psbt: Psbt) -> Transaction:
        try:
            tx = psbt.extract_transaction()
        except PsbtError as e:
            raise ValidationError(f"Cannot extract order: {e}", code=CODE_INVALID_OFFER_PSBT) from e

        txid = await self.chain.broadcast_transaction(tx.to_hex())
        if txid and txid != tx.txid:
            logger.warning(f"Broadcast returned txid {txid}, expected {tx.txid}")
        return tx

    async def stale_offers(self, offers: list[Offer]) -> list[Offer]:
        """Offers whose location no longer matches, returned as Cancelled."""
        checked = await self._revalidate(offers)
        invalid = set(checked.invalid_locations)
        return [
            offer.with_status(OfferStatus.CANCELLED)
            for offer in offers
            if offer.location in invalid
        ]

    async def submit(
        self,
        assembled: AssembledOrder,
        signed_psbt_hex: str,
        pending: PendingOutputs | None = None,
    ) -> ApiResponse:
        """
        Finalize, broadcast and record an order.

        On success the data is an OrderResult: the Order record, the offers
        marked Sold and the pending outputs including the buyer's change. When
        the node rejects the transaction, the data lists the offers found stale,
        marked Cancelled.
        """
        try:
            psbt = await self.finalize(assembled, signed_psbt_hex)
            tx = await self.broadcast(psbt)
        except BroadcastRejected as e:
            try:
                cancelled = await self.stale_offers(assembled.offers)
            except MarketError as check_error:
                logger.warning(f"Could not recheck offers after rejection: {check_error}")
                cancelled = []
            logger.warning(
                f"Order rejected by the node, {len(cancelled)} offers no longer valid"
            )
            return ApiResponse.from_error(e, data=cancelled)
        except MarketError as e:
            logger.warning(f"Order from {assembled.buyer_address} failed: {e.message}")
            return ApiResponse.from_error(e)

        txid = tx.txid
        order = Order(
            bids=[offer.bid for offer in assembled.offers],
            buyer_address=assembled.buyer_address,
            item_receiver_address=assembled.receiver_address,
            txid=txid,
            raw_tx=tx.to_hex(),
            psbt=psbt.to_hex(),
            fee=assembled.fee,
        )
        sold = [offer.with_status(OfferStatus.SOLD) for offer in assembled.offers]

        pending = pending or PendingOutputs()
        change = assembled.change_output(txid)
        if change is not None:
            pending = pending.add(change)

        logger.info(
            f"Order {txid} broadcast: {len(sold)} offers, "
            f"{assembled.total_price} sats paid to listers"
        )
        return ApiResponse.ok(OrderResult(order=order, sold=sold, pending=pending))
