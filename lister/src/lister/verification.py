"""
Offer validation for listers.

A signed listing PSBT is the only thing a lister hands over, so it is checked
against live indexer state before any offer record is created:

1. Every input carries a witness UTXO paying the lister's address
2. Every input is signed with SIGHASH_SINGLE|ANYONECANPAY and the signature verifies
3. Every spent output holds exactly one rune, the listed one (and the inscription
   for collection listings)
4. Every funding output equals the price derived from the live balance and is not dust

Accepted inputs are finalized and split into one unsigned and one signed
fragment per offer.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from loguru import logger
from pydantic import BaseModel, Field
from runecore.constants import DUST_LIMIT, OFFER_SIGHASH
from runecore.errors import (
    CODE_ASSET_NOT_OWNED,
    CODE_INSCRIPTION_MISMATCH,
    CODE_INVALID_OFFER_PSBT,
    CODE_LENGTH_MISMATCH,
    CODE_NO_INPUTS_OR_OUTPUTS,
    CODE_NO_WITNESS_UTXO,
    CODE_RUNE_NOT_FOUND,
    AssetMismatch,
    DustOutput,
    MarketError,
    OwnershipMismatch,
    SignatureInvalid,
    ValidationError,
)
from runecore.models import (
    AddressType,
    ApiResponse,
    InscriptionLocation,
    Offer,
    OfferStatus,
    RuneInfo,
)
from runewallet.backends.base import IndexerBackend, RuneUTXO
from runewallet.wallet.address import (
    address_to_scriptpubkey,
    script_type,
    scriptpubkey_to_address,
)
from runewallet.wallet.fragment import (
    BundledFragment,
    FragmentInput,
    OfferFragment,
    SingleFragment,
    encode_fragment,
)
from runewallet.wallet.psbt import Psbt, PsbtError
from runewallet.wallet.signing import verify_input_signature
from runewallet.wallet.transaction import TxOut

from lister.config import ListerConfig
from lister.offers import offer_value

RUNE_SPACER = "•"


class CreateOfferRequest(BaseModel):
    """Payload posted by a lister after signing."""

    psbt: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    rune_id: str = Field(..., pattern=r"^\d+:\d+$")
    unit_price: Decimal = Field(..., gt=0)


def collection_name(spaced_rune: str) -> str:
    """Collection of a rune: the first word of its spaced name."""
    return spaced_rune.split(RUNE_SPACER)[0]


def single_rune_utxos(utxos: Sequence[RuneUTXO], rune_id: str) -> dict[str, RuneUTXO]:
    """UTXOs holding the given rune and nothing else, by outpoint."""
    return {
        utxo.outpoint: utxo
        for utxo in utxos
        if len(utxo.runes) == 1 and utxo.runes[0].rune_id == rune_id
    }


def split_fragments(psbt: Psbt, pairs: Sequence[Sequence[int]]) -> list[tuple[str, str]]:
    """
    Split a finalized listing PSBT into (unsigned, signed) fragment hex pairs.

    Each entry of ``pairs`` lists the input indexes of one offer, inscription
    first for bundled offers.
    """
    result = []
    for indexes in pairs:
        signed_inputs = []
        unsigned_inputs = []
        for i in indexes:
            txin = psbt.tx.inputs[i]
            inp = psbt.inputs[i]
            witness_utxo = inp.witness_utxo
            if witness_utxo is None:
                raise ValidationError(f"Input {i} has no witness UTXO", code=CODE_NO_WITNESS_UTXO)
            funding = psbt.tx.outputs[i]
            unsigned_inputs.append(
                FragmentInput(txin.txid, txin.vout, witness_utxo, funding, txin.sequence)
            )
            signed_inputs.append(
                FragmentInput(
                    txin.txid,
                    txin.vout,
                    witness_utxo,
                    funding,
                    txin.sequence,
                    final_script_sig=inp.final_script_sig,
                    final_script_witness=inp.final_script_witness,
                )
            )
        unsigned = _fragment(unsigned_inputs)
        signed = _fragment(signed_inputs)
        result.append((encode_fragment(unsigned).to_hex(), encode_fragment(signed).to_hex()))
    return result


def _fragment(inputs: list[FragmentInput]) -> OfferFragment:
    if len(inputs) == 2:
        return BundledFragment(inscription=inputs[0], asset=inputs[1])
    return SingleFragment(asset=inputs[0])


class OfferValidator:
    """
    Validates signed listing PSBTs against the indexer.
    """

    def __init__(self, indexer: IndexerBackend, config: ListerConfig | None = None):
        self.indexer = indexer
        self.config = config or ListerConfig()

    def _parse(self, psbt_hex: str) -> Psbt:
        try:
            psbt = Psbt.parse(psbt_hex)
        except PsbtError as e:
            raise ValidationError(f"Invalid PSBT: {e}", code=CODE_INVALID_OFFER_PSBT) from e

        n_in = len(psbt.tx.inputs)
        n_out = len(psbt.tx.outputs)
        if n_in == 0 or n_out == 0:
            raise ValidationError("PSBT has no inputs or outputs", code=CODE_NO_INPUTS_OR_OUTPUTS)
        if n_in != n_out:
            raise ValidationError(
                f"PSBT has {n_in} inputs but {n_out} outputs", code=CODE_LENGTH_MISMATCH
            )
        if n_in > self.config.max_offers_per_listing * 2:
            raise ValidationError(f"Too many inputs in listing: {n_in}")
        return psbt

    async def _rune_info(self, rune_id: str) -> RuneInfo:
        info = await self.indexer.get_rune_info(rune_id)
        if info is None:
            raise AssetMismatch(f"Rune {rune_id} not found", code=CODE_RUNE_NOT_FOUND)
        return info

    def _lister_script(self, address: str) -> bytes:
        try:
            return address_to_scriptpubkey(address)
        except ValueError as e:
            raise ValidationError(f"Invalid lister address {address}: {e}") from e

    def _check_input(self, psbt: Psbt, index: int, lister_script: bytes) -> TxOut:
        """Witness UTXO, 0x83 signature and ownership of one input."""
        witness_utxo = psbt.inputs[index].witness_utxo
        if witness_utxo is None:
            raise ValidationError(f"Input {index} has no witness UTXO", code=CODE_NO_WITNESS_UTXO)
        if script_type(witness_utxo.script) == AddressType.P2PKH:
            raise ValidationError(
                f"Input {index} spends a legacy output", code=CODE_NO_WITNESS_UTXO
            )

        valid, error = verify_input_signature(psbt, index, OFFER_SIGHASH)
        if not valid:
            raise SignatureInvalid(f"Input {index} signature invalid: {error}")

        if witness_utxo.script != lister_script:
            raise OwnershipMismatch(f"Input {index} is not owned by the lister")
        return witness_utxo

    def _check_funding(self, psbt: Psbt, index: int, expected: int) -> TxOut:
        funding = psbt.tx.outputs[index]
        if funding.value < DUST_LIMIT:
            raise DustOutput(f"Funding output {index} value {funding.value} is dust")
        if funding.value != expected:
            raise ValidationError(
                f"Funding output {index} pays {funding.value} sats, expected {expected}"
            )
        return funding

    def _funding_receiver(self, script: bytes) -> str:
        try:
            return scriptpubkey_to_address(script, self.config.network)
        except ValueError as e:
            raise ValidationError(f"Unsupported funding output script: {e}") from e

    def _finalize(self, psbt: Psbt) -> None:
        try:
            psbt.finalize()
        except PsbtError as e:
            raise ValidationError(
                f"Cannot finalize listing: {e}", code=CODE_INVALID_OFFER_PSBT
            ) from e

    async def validate(self, request: CreateOfferRequest) -> list[Offer]:
        """
        Validate a token listing: one offer per input/output pair.

        Raises:
            MarketError: The first failed check
        """
        psbt = self._parse(request.psbt)
        info = await self._rune_info(request.rune_id)
        lister_script = self._lister_script(request.address)
        rune_utxos = single_rune_utxos(
            await self.indexer.get_address_rune_utxos(request.address, request.rune_id),
            request.rune_id,
        )

        priced: list[tuple[RuneUTXO, int, TxOut]] = []
        for i, txin in enumerate(psbt.tx.inputs):
            witness_utxo = self._check_input(psbt, i, lister_script)
            utxo = rune_utxos.get(txin.outpoint)
            if utxo is None or utxo.value != witness_utxo.value:
                raise AssetMismatch(
                    f"Input {txin.outpoint} does not hold {info.spaced_rune} alone",
                    code=CODE_ASSET_NOT_OWNED,
                )
            amount = utxo.runes[0].display_amount
            if amount <= 0:
                raise AssetMismatch(f"Input {txin.outpoint} holds less than one {info.symbol}")
            funding = self._check_funding(psbt, i, offer_value(amount, request.unit_price))
            priced.append((utxo, amount, funding))

        self._finalize(psbt)
        fragments = split_fragments(psbt, [[i] for i in range(len(priced))])

        offers = []
        for (utxo, amount, funding), (unsigned_hex, signed_hex) in zip(
            priced, fragments, strict=True
        ):
            offers.append(
                Offer(
                    lister_address=request.address,
                    rune_id=request.rune_id,
                    rune_name=info.rune,
                    spaced_rune_name=info.spaced_rune,
                    symbol=info.symbol,
                    amount=amount,
                    divisibility=info.divisibility,
                    unit_price=request.unit_price,
                    total_price=funding.value,
                    funding_receiver=self._funding_receiver(funding.script),
                    location_txid=utxo.txid,
                    location_vout=utxo.vout,
                    location_value=utxo.value,
                    unsigned_psbt=unsigned_hex,
                    signed_psbt=signed_hex,
                )
            )

        logger.info(
            f"Validated {len(offers)} {info.spaced_rune} offers from {request.address}"
        )
        return offers

    async def validate_collection(self, request: CreateOfferRequest) -> Offer:
        """
        Validate a collection listing: a rune UTXO sold together with an inscription.

        One input when both sit on the same UTXO, otherwise two inputs with the
        inscription first. The offer amount is always one item.
        """
        psbt = self._parse(request.psbt)
        n_in = len(psbt.tx.inputs)
        if n_in > 2:
            raise ValidationError(
                f"Collection listing has {n_in} inputs", code=CODE_INVALID_OFFER_PSBT
            )

        info = await self._rune_info(request.rune_id)
        lister_script = self._lister_script(request.address)
        rune_utxos = single_rune_utxos(
            await self.indexer.get_address_rune_utxos(request.address, request.rune_id),
            request.rune_id,
        )
        inscriptions: dict[str, InscriptionLocation] = {
            inscription.outpoint: inscription
            for inscription in await self.indexer.get_address_inscriptions(request.address)
        }

        for i in range(n_in):
            self._check_input(psbt, i, lister_script)

        inscription_input = psbt.tx.inputs[0]
        asset_input = psbt.tx.inputs[-1]

        inscription = inscriptions.get(inscription_input.outpoint)
        if inscription is None:
            raise AssetMismatch(
                f"No inscription at {inscription_input.outpoint}", code=CODE_INSCRIPTION_MISMATCH
            )
        utxo = rune_utxos.get(asset_input.outpoint)
        asset_spent = psbt.inputs[n_in - 1].witness_utxo
        if utxo is None or asset_spent is None or utxo.value != asset_spent.value:
            raise AssetMismatch(
                f"Input {asset_input.outpoint} does not hold {info.spaced_rune} alone",
                code=CODE_ASSET_NOT_OWNED,
            )

        expected = offer_value(1, request.unit_price, parts=n_in)
        funding = [self._check_funding(psbt, i, expected) for i in range(n_in)]

        self._finalize(psbt)
        ((unsigned_hex, signed_hex),) = split_fragments(psbt, [list(range(n_in))])

        offer = Offer(
            lister_address=request.address,
            rune_id=request.rune_id,
            rune_name=info.rune,
            spaced_rune_name=info.spaced_rune,
            symbol=info.symbol,
            amount=1,
            divisibility=info.divisibility,
            unit_price=request.unit_price,
            total_price=sum(out.value for out in funding),
            funding_receiver=self._funding_receiver(funding[-1].script),
            location_txid=utxo.txid,
            location_vout=utxo.vout,
            location_value=utxo.value,
            unsigned_psbt=unsigned_hex,
            signed_psbt=signed_hex,
            inscription_id=inscription.inscription_id,
            inscription_txid=inscription.txid,
            inscription_vout=inscription.vout,
            collection_name=collection_name(info.spaced_rune),
        )
        logger.info(
            f"Validated collection offer {inscription.inscription_id} "
            f"({offer.collection_name}) from {request.address}"
        )
        return offer


class OfferService:
    """
    Entry point for listing requests.

    Offers are upserted by bid: relisting or editing the same location replaces
    the record while keeping its id and creation time.
    """

    def __init__(self, validator: OfferValidator):
        self.validator = validator
        self.offers: dict[str, Offer] = {}

    def upsert(self, offer: Offer) -> Offer:
        existing = self.offers.get(offer.bid)
        if existing is not None:
            offer = offer.model_copy(
                update={"id": existing.id, "created_at": existing.created_at}
            )
        self.offers[offer.bid] = offer
        return offer

    async def create(self, request: CreateOfferRequest) -> ApiResponse:
        try:
            offers = await self.validator.validate(request)
        except MarketError as e:
            logger.warning(f"Rejected listing from {request.address}: {e.message}")
            return ApiResponse.from_error(e)
        return ApiResponse.ok([self.upsert(offer) for offer in offers])

    async def create_collection(self, request: CreateOfferRequest) -> ApiResponse:
        try:
            offer = await self.validator.validate_collection(request)
        except MarketError as e:
            logger.warning(f"Rejected collection listing from {request.address}: {e.message}")
            return ApiResponse.from_error(e)
        return ApiResponse.ok([self.upsert(offer)])

    def delist(self, locations: Sequence[str]) -> ApiResponse:
        """
        Cancel the active offers at ``locations``, as reported stale by a buyer.

        The data is the list of offers now marked Cancelled. Unknown or already
        inactive locations are ignored.
        """
        if not locations:
            return ApiResponse.from_error(ValidationError("No locations to delist"))
        wanted = set(locations)
        cancelled = []
        for offer in self.offers.values():
            if offer.status == OfferStatus.ACTIVE and offer.location in wanted:
                cancelled.append(offer.with_status(OfferStatus.CANCELLED))
        for offer in cancelled:
            self.offers[offer.bid] = offer
        logger.info(f"Delisted {len(cancelled)} of {len(wanted)} reported locations")
        return ApiResponse.ok(cancelled)

    def active_offers(self, rune_id: str | None = None) -> list[Offer]:
        return [
            offer
            for offer in self.offers.values()
            if offer.status == OfferStatus.ACTIVE and (rune_id is None or offer.rune_id == rune_id)
        ]

