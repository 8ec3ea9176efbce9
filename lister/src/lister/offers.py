"""
Offer building for listers.

Each listed item becomes one input/output pair (two for an inscription kept on
a separate UTXO) of an unsigned PSBT. The lister's wallet signs every input with
SIGHASH_SINGLE|ANYONECANPAY so buyers can later splice the pairs into their own
transactions.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from typing import Literal

from loguru import logger
from runecore.constants import OFFER_SIGHASH
from runecore.errors import CODE_NO_WITNESS_UTXO, DustOutput, ValidationError
from runecore.models import AccountKeys, AddressType, InscriptionLocation, NetworkType, Offer
from runewallet.backends.base import RuneUTXO
from runewallet.wallet.address import address_to_scriptpubkey, is_testnet_address, script_type
from runewallet.wallet.psbt import Psbt, PsbtError, PsbtInput, account_input
from runewallet.wallet.signer import Signer

from lister.config import ListerConfig


@dataclass
class ListingItem:
    """A rune UTXO offered for sale, optionally bundled with an inscription."""

    asset: RuneUTXO
    amount: int
    inscription: InscriptionLocation | None = None
    listed: bool = False

    @property
    def is_bundled(self) -> bool:
        return self.inscription is not None

    @property
    def is_colocated(self) -> bool:
        """Inscription and runes sit on the same UTXO."""
        return (
            self.inscription is not None
            and self.inscription.txid == self.asset.txid
            and self.inscription.vout == self.asset.vout
        )


@dataclass
class UnsignedListing:
    psbt: Psbt
    sign_indexes: list[int]
    sighash_type: int = OFFER_SIGHASH

    @property
    def psbt_hex(self) -> str:
        return self.psbt.to_hex()


def offer_value(amount: int, unit_price: Decimal, parts: int = 1) -> int:
    """Funding output value: ceil(amount * unit_price / parts)."""
    value = Decimal(amount) * Decimal(unit_price) / parts
    return int(value.to_integral_value(rounding=ROUND_CEILING))


class OfferBuilder:
    """
    Builds unsigned offer PSBTs for a lister account.
    """

    def __init__(self, account: AccountKeys, config: ListerConfig | None = None):
        self.account = account
        self.config = config or ListerConfig(
            network=NetworkType.TESTNET
            if is_testnet_address(account.address)
            else NetworkType.MAINNET
        )

    def _receiver_script(self, funding_receiver: str | None) -> bytes:
        receiver = funding_receiver or self.config.funding_receiver or self.account.address
        try:
            return address_to_scriptpubkey(receiver)
        except ValueError as e:
            raise ValidationError(f"Invalid funding receiver {receiver}: {e}") from e

    def _offer_input(self, value: int) -> PsbtInput:
        # Legacy sighash commits to the input index, so the pair cannot be moved
        if script_type(self.account.script) == AddressType.P2PKH:
            raise ValidationError(
                f"Cannot list from legacy address {self.account.address}",
                code=CODE_NO_WITNESS_UTXO,
            )
        return account_input(self.account, value, OFFER_SIGHASH)

    def _check_value(self, output_value: int, *input_values: int) -> None:
        if output_value < self.config.dust_limit:
            raise DustOutput(
                f"Funding output value {output_value} is below the "
                f"{self.config.dust_limit} sats dust limit"
            )
        for value in input_values:
            if value >= output_value:
                raise ValidationError(
                    f"Input value {value} is not below the funding output value {output_value}"
                )

    def build(
        self,
        items: Sequence[ListingItem],
        unit_price: Decimal,
        funding_receiver: str | None = None,
        action: Literal["list", "edit"] = "list",
    ) -> UnsignedListing:
        """
        Build the unsigned listing PSBT.

        Items already listed are skipped when listing, and only listed items are
        rebuilt when editing.

        Raises:
            ValidationError: Bad price, receiver or input value
            DustOutput: A funding output would be below dust
        """
        if unit_price <= 0:
            raise ValidationError(f"Unit price must be positive, got {unit_price}")

        receiver_script = self._receiver_script(funding_receiver)
        psbt = Psbt()

        for item in items:
            if action == "list" and item.listed:
                continue
            if action == "edit" and not item.listed:
                continue
            if item.amount <= 0:
                raise ValidationError(f"Listing amount must be positive, got {item.amount}")

            if item.inscription is not None and not item.is_colocated:
                value = offer_value(item.amount, unit_price, parts=2)
                self._check_value(value, item.asset.value, item.inscription.value)
                psbt.add_input(
                    item.inscription.txid,
                    item.inscription.vout,
                    self._offer_input(item.inscription.value),
                )
                psbt.add_input(
                    item.asset.txid, item.asset.vout, self._offer_input(item.asset.value)
                )
                psbt.add_output(value, receiver_script)
                psbt.add_output(value, receiver_script)
            else:
                value = offer_value(item.amount, unit_price)
                if item.inscription is not None:
                    self._check_value(value, item.asset.value, item.inscription.value)
                else:
                    self._check_value(value, item.asset.value)
                psbt.add_input(
                    item.asset.txid, item.asset.vout, self._offer_input(item.asset.value)
                )
                psbt.add_output(value, receiver_script)

        if not psbt.inputs:
            raise ValidationError(f"Nothing to {action}")

        logger.debug(
            f"Built listing PSBT: {len(psbt.inputs)} pairs at {unit_price} sats per unit"
        )
        return UnsignedListing(psbt=psbt, sign_indexes=list(range(len(psbt.inputs))))

    def rebuild(
        self,
        offer: Offer,
        unit_price: Decimal,
        funding_receiver: str | None = None,
    ) -> UnsignedListing:
        """
        Rebuild an offer at a new price from its stored unsigned fragment.

        Locations and spent outputs are kept, so the offer keeps its bid.
        """
        if unit_price <= 0:
            raise ValidationError(f"Unit price must be positive, got {unit_price}")
        try:
            stored = Psbt.from_hex(offer.unsigned_psbt)
        except PsbtError as e:
            raise ValidationError(f"Invalid stored offer PSBT: {e}") from e

        n_in = len(stored.inputs)
        if n_in not in (1, 2):
            raise ValidationError(f"Invalid offer: {n_in} inputs")

        value = offer_value(offer.amount, unit_price, parts=n_in)
        receiver_script = self._receiver_script(funding_receiver)
        psbt = Psbt()
        for txin, inp in zip(stored.tx.inputs, stored.inputs, strict=True):
            if inp.witness_utxo is None:
                raise ValidationError(f"Stored offer input {txin.outpoint} has no witness UTXO")
            self._check_value(value, inp.witness_utxo.value)
            psbt.add_input(txin.txid, txin.vout, self._offer_input(inp.witness_utxo.value))
            psbt.add_output(value, receiver_script)

        logger.info(f"Rebuilt offer {offer.bid[:16]}... at {unit_price} sats per unit")
        return UnsignedListing(psbt=psbt, sign_indexes=list(range(n_in)))

    async def sign(self, listing: UnsignedListing, signer: Signer) -> str:
        """Ask the wallet for 0x83 signatures on every pair; inputs stay unfinalized."""
        return await signer.sign_psbt(
            listing.psbt_hex, listing.sign_indexes, listing.sighash_type, finalize=False
        )

