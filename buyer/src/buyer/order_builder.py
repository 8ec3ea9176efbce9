"""
Order assembly for buyers.

Offer fragments are spliced into a buyer transaction at fixed positions. An
offer input signed with SIGHASH_SINGLE|ANYONECANPAY commits only to the output
with its own index, so each offer input must sit at the same index as its
funding output.

Token orders:
    inputs:  [buyer input] [offer inputs] [other buyer inputs]
    outputs: [receiver dust | runestone] [funding outputs] [split outputs] [change]

Collection orders:
    inputs:  [padding, padding] [inscription input, rune input] [buyer inputs]
    outputs: [merged padding] [receiver dust] [funding outputs] [runestone] [change]

The padding inputs move the inscription onto the receiver output: the first
output absorbs exactly the padding value, so the inscription sat is the first
sat of output 1.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from loguru import logger
from runecore.constants import OFFER_SIGHASH
from runecore.errors import (
    CODE_INSCRIPTION_MISMATCH,
    CODE_INVALID_OFFER_PSBT,
    CODE_INVALID_RUNE_INPUT,
    AssetMismatch,
    MarketError,
    ValidationError,
)
from runecore.models import AccountKeys, Offer, OfferStatus
from runecore.runestone import Edict, RuneId, encode_runestone
from runewallet.backends.base import UTXO, IndexerBackend
from runewallet.wallet.address import address_to_scriptpubkey, script_type
from runewallet.wallet.coin_selection import (
    CoinSelection,
    ExtraInput,
    TargetOutput,
    select_coins,
)
from runewallet.wallet.fragment import (
    BundledFragment,
    FragmentInput,
    SingleFragment,
    decode_fragment,
    fragment_inputs,
)
from runewallet.wallet.psbt import Psbt, PsbtInput, account_input

from buyer.config import BuyerConfig
from buyer.revalidation import RevalidationResult, revalidate_offers


@dataclass
class AssembledOrder:
    """Unsigned order PSBT plus what the buyer and the finalizer need to know."""

    psbt: Psbt
    sign_indexes: list[int]
    lead_count: int
    offers: list[Offer]
    # Offer bid -> input (and funding output) indexes, inscription first
    offer_indexes: dict[str, list[int]]
    invalid_locations: list[str]
    buyer_address: str
    receiver_address: str
    fee: int
    vsize: int
    change_index: int | None = None
    split_count: int = 0
    errors: dict[str, MarketError] = field(default_factory=dict)
    # Locations requested more than once; bought once, still listed
    duplicate_locations: list[str] = field(default_factory=list)

    @property
    def psbt_hex(self) -> str:
        return self.psbt.to_hex()

    @property
    def total_price(self) -> int:
        return sum(offer.total_price for offer in self.offers)

    def change_output(self, txid: str) -> UTXO | None:
        """The buyer's change output once the order transaction is known."""
        if self.change_index is None:
            return None
        out = self.psbt.tx.outputs[self.change_index]
        return UTXO(
            txid=txid,
            vout=self.change_index,
            value=out.value,
            address=self.buyer_address,
            scriptpubkey=out.script.hex(),
        )


def split_edicts(
    rune_id: RuneId,
    total_amount: int,
    split_amount: int,
    divisibility: int,
    first_output: int,
) -> list[Edict]:
    """
    Edicts spreading ``total_amount`` over outputs of ``split_amount`` each,
    the remainder (if any) on one extra output. Amounts are display units.
    """
    unit = 10**divisibility
    full, remainder = divmod(total_amount, split_amount)
    edicts = [Edict(rune_id, split_amount * unit, first_output + i) for i in range(full)]
    if remainder:
        edicts.append(Edict(rune_id, remainder * unit, first_output + full))
    return edicts


def split_output_count(total_amount: int, split_amount: int | None) -> int:
    if not split_amount or split_amount <= 0:
        return 0
    full, remainder = divmod(total_amount, split_amount)
    return full + (1 if remainder else 0)


def _unique_offers(offers: Sequence[Offer]) -> tuple[list[Offer], list[str]]:
    """Offers with repeated locations dropped, plus the repeated locations."""
    seen: set[str] = set()
    unique = []
    duplicates = []
    for offer in offers:
        if offer.location in seen:
            duplicates.append(offer.location)
            continue
        seen.add(offer.location)
        unique.append(offer)
    if duplicates:
        logger.warning(f"Ignoring repeated offers at {', '.join(duplicates)}")
    return unique, duplicates


def _extra_input(inp: FragmentInput) -> ExtraInput:
    return ExtraInput(inp.witness_utxo.value, script_type(inp.witness_utxo.script))


def _offer_psbt_input(inp: FragmentInput) -> PsbtInput:
    return PsbtInput(
        witness_utxo=inp.witness_utxo,
        sighash_type=OFFER_SIGHASH,
    )


class OrderAssembler:
    """
    Builds unsigned order PSBTs from active offers and buyer UTXOs.
    """

    def __init__(self, indexer: IndexerBackend, config: BuyerConfig | None = None):
        self.indexer = indexer
        self.config = config or BuyerConfig()

    async def revalidate(self, offers: Sequence[Offer]) -> RevalidationResult:
        return await revalidate_offers(
            offers,
            self.indexer,
            batch_size=self.config.revalidation_batch_size,
            batch_delay=self.config.revalidation_batch_delay,
        )

    def _receiver_script(self, receiver: str) -> bytes:
        try:
            return address_to_scriptpubkey(receiver)
        except ValueError as e:
            raise ValidationError(f"Invalid item receiver {receiver}: {e}") from e

    def _decode(self, offer: Offer) -> SingleFragment | BundledFragment:
        fragment = decode_fragment(offer.unsigned_psbt)
        asset = fragment.asset
        if asset.outpoint != offer.location:
            raise ValidationError(
                f"Offer fragment spends {asset.outpoint}, offer is at {offer.location}",
                code=CODE_INVALID_OFFER_PSBT,
            )
        if isinstance(fragment, BundledFragment):
            if fragment.inscription.outpoint != offer.inscription_location:
                raise AssetMismatch(
                    f"Offer fragment spends {fragment.inscription.outpoint}, "
                    f"inscription is at {offer.inscription_location}",
                    code=CODE_INSCRIPTION_MISMATCH,
                )
        elif offer.is_bundled and asset.outpoint != offer.inscription_location:
            raise AssetMismatch(
                f"Inscription of offer at {offer.location} is at {offer.inscription_location}",
                code=CODE_INSCRIPTION_MISMATCH,
            )
        return fragment

    async def assemble_token_order(
        self,
        offers: Sequence[Offer],
        buyer: AccountKeys,
        receiver: str,
        fee_rate: float,
        utxos: Sequence[UTXO],
        split_amount: int | None = None,
    ) -> AssembledOrder:
        """
        Build a purchase of one or more token offers of the same rune.

        With several offers, stale or malformed ones are left out and reported
        in ``invalid_locations``. A single offer that fails aborts the order.
        An offer passed more than once is bought once and its location is
        reported in ``duplicate_locations``.

        Args:
            offers: Active offers to buy
            buyer: Paying account
            receiver: Address receiving the runes
            fee_rate: Fee rate in sat/vB
            utxos: Buyer UTXOs available for payment
            split_amount: Spread the purchased runes over outputs of this many units

        Raises:
            ValidationError: Bad request or malformed offer
            AssetMismatch: The offer no longer holds the listed runes
            InsufficientFunds: Buyer UTXOs do not cover price and fee
            ExternalServiceFailure: The indexer could not be queried
        """
        if not offers:
            raise ValidationError("No offers to buy")
        offers, duplicates = _unique_offers(offers)
        if len(offers) > self.config.max_offers_per_order:
            raise ValidationError(
                f"Too many offers: {len(offers)} > {self.config.max_offers_per_order}"
            )
        rune_ids = {offer.rune_id for offer in offers}
        if len(rune_ids) != 1:
            raise ValidationError(f"Offers mix runes: {', '.join(sorted(rune_ids))}")
        if any(offer.is_bundled for offer in offers):
            raise ValidationError("Bundled offers are bought as collection orders")

        receiver_script = self._receiver_script(receiver)
        single = len(offers) == 1

        inactive = [offer for offer in offers if offer.status != OfferStatus.ACTIVE]
        if single and inactive:
            raise ValidationError(f"Offer at {offers[0].location} is {offers[0].status.value}")
        active = [offer for offer in offers if offer.status == OfferStatus.ACTIVE]

        checked = await self.revalidate(active)
        if single and not checked.all_valid:
            raise checked.errors[offers[0].location]
        invalid_locations = [offer.location for offer in inactive] + checked.invalid_locations
        errors = dict(checked.errors)

        accepted: list[tuple[Offer, SingleFragment]] = []
        for offer in checked.valid:
            try:
                fragment = self._decode(offer)
                if not isinstance(fragment, SingleFragment):
                    raise ValidationError(
                        f"Token offer {offer.location} is bundled", code=CODE_INVALID_OFFER_PSBT
                    )
            except MarketError as e:
                if single:
                    raise
                logger.warning(f"Excluding offer at {offer.location}: {e.message}")
                invalid_locations.append(offer.location)
                errors[offer.location] = e
                continue
            accepted.append((offer, fragment))

        if not accepted:
            raise AssetMismatch("No valid offers left", code=CODE_INVALID_RUNE_INPUT)

        valid_offers = [offer for offer, _ in accepted]
        n_offers = len(accepted)
        rune_id = RuneId.parse(valid_offers[0].rune_id)
        total_amount = sum(offer.amount for offer in valid_offers)
        split_count = split_output_count(total_amount, split_amount)
        if split_count < 2:
            split_count = 0

        targets: list[TargetOutput] = []
        if split_count and split_amount:
            first_split = 1 + n_offers
            runestone = encode_runestone(
                split_edicts(
                    rune_id,
                    total_amount,
                    split_amount,
                    valid_offers[0].divisibility,
                    first_split,
                ),
                pointer=first_split,
                output_count=first_split + split_count,
            )
            targets.append(TargetOutput(0, runestone))
        else:
            targets.append(TargetOutput(self.config.item_output_value, receiver_script))

        for _, fragment in accepted:
            funding = fragment.asset.funding_output
            targets.append(TargetOutput(funding.value, funding.script))
        for _ in range(split_count):
            targets.append(TargetOutput(self.config.item_output_value, receiver_script))

        extras = [_extra_input(fragment.asset) for _, fragment in accepted]
        selection = select_coins(buyer, utxos, targets, fee_rate, extras)

        psbt = Psbt()
        first, *rest = selection.selected
        psbt.add_input(first.txid, first.vout, account_input(buyer, first.value))
        offer_indexes = {}
        for offer, fragment in accepted:
            index = psbt.add_input(
                fragment.asset.txid,
                fragment.asset.vout,
                _offer_psbt_input(fragment.asset),
                sequence=fragment.asset.sequence,
            )
            offer_indexes[offer.bid] = [index]
        sign_indexes = [0]
        for utxo in rest:
            sign_indexes.append(
                psbt.add_input(utxo.txid, utxo.vout, account_input(buyer, utxo.value))
            )

        change_index = self._add_outputs(psbt, selection)

        logger.info(
            f"Assembled order for {n_offers} offers ({total_amount} units of {rune_id}), "
            f"fee {selection.fee} sats, {len(invalid_locations)} excluded"
        )
        return AssembledOrder(
            psbt=psbt,
            sign_indexes=sign_indexes,
            lead_count=1,
            offers=valid_offers,
            offer_indexes=offer_indexes,
            invalid_locations=invalid_locations,
            buyer_address=buyer.address,
            receiver_address=receiver,
            fee=selection.fee,
            vsize=selection.vsize,
            change_index=change_index,
            split_count=split_count,
            errors=errors,
            duplicate_locations=duplicates,
        )

    async def assemble_collection_order(
        self,
        offer: Offer,
        buyer: AccountKeys,
        receiver: str,
        fee_rate: float,
        padding_utxos: Sequence[UTXO],
        utxos: Sequence[UTXO],
    ) -> AssembledOrder:
        """
        Build a purchase of one bundled (inscription + rune) offer.

        Args:
            padding_utxos: The two padding UTXOs (see UTXOSplitter)
            utxos: Remaining buyer UTXOs for price and fee

        Raises:
            ValidationError: Bad request or malformed offer
            AssetMismatch: The rune or the inscription moved
            InsufficientFunds: Buyer UTXOs do not cover price and fee
        """
        if not offer.is_bundled:
            raise ValidationError(f"Offer at {offer.location} has no inscription")
        if len(padding_utxos) != 2:
            raise ValidationError(f"Expected 2 padding UTXOs, got {len(padding_utxos)}")

        receiver_script = self._receiver_script(receiver)

        checked = await self.revalidate([offer])
        if not checked.all_valid:
            raise checked.errors[offer.location]

        fragment = self._decode(offer)
        pairs = fragment_inputs(fragment)
        lead_count = 2

        padding_value = sum(utxo.value for utxo in padding_utxos)
        targets = [
            TargetOutput(padding_value, buyer.script),
            TargetOutput(self.config.item_output_value, receiver_script),
        ]
        for inp in pairs:
            targets.append(TargetOutput(inp.funding_output.value, inp.funding_output.script))
        runestone = encode_runestone(
            [
                Edict(
                    RuneId.parse(offer.rune_id),
                    offer.amount * 10**offer.divisibility,
                    1,
                )
            ],
            output_count=len(targets) + 1,
        )
        targets.append(TargetOutput(0, runestone))

        extras = [ExtraInput(utxo.value, buyer.address_type) for utxo in padding_utxos]
        extras += [_extra_input(inp) for inp in pairs]
        selection = select_coins(buyer, utxos, targets, fee_rate, extras)

        psbt = Psbt()
        sign_indexes = []
        for utxo in padding_utxos:
            sign_indexes.append(
                psbt.add_input(utxo.txid, utxo.vout, account_input(buyer, utxo.value))
            )
        indexes = []
        for inp in pairs:
            indexes.append(
                psbt.add_input(inp.txid, inp.vout, _offer_psbt_input(inp), sequence=inp.sequence)
            )
        for utxo in selection.selected:
            sign_indexes.append(
                psbt.add_input(utxo.txid, utxo.vout, account_input(buyer, utxo.value))
            )

        change_index = self._add_outputs(psbt, selection)

        logger.info(
            f"Assembled collection order for {offer.inscription_id}, fee {selection.fee} sats"
        )
        return AssembledOrder(
            psbt=psbt,
            sign_indexes=sign_indexes,
            lead_count=lead_count,
            offers=[offer],
            offer_indexes={offer.bid: indexes},
            invalid_locations=[],
            buyer_address=buyer.address,
            receiver_address=receiver,
            fee=selection.fee,
            vsize=selection.vsize,
            change_index=change_index,
        )

    @staticmethod
    def _add_outputs(psbt: Psbt, selection: CoinSelection) -> int | None:
        change_index = None
        for out in selection.outputs:
            index = psbt.add_output(out.value, out.script)
            if out is selection.change:
                change_index = index
        return change_index
