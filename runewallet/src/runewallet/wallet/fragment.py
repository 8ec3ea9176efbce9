"""
Offer fragments.

A fragment is the seller's half of a trade: one input/output pair per offer
side, each input signed with SIGHASH_SINGLE|ANYONECANPAY so it stays valid
wherever the pair lands in a larger transaction, as long as the input index
equals the funding output index.

Two shapes exist:
- SingleFragment: the asset UTXO alone
- BundledFragment: an inscription UTXO plus a separate rune UTXO, inscription first
"""

from __future__ import annotations

from dataclasses import dataclass

from runecore.constants import DEFAULT_SEQUENCE
from runecore.errors import (
    CODE_INVALID_OFFER_PSBT,
    CODE_LENGTH_MISMATCH,
    CODE_NO_INPUTS_OR_OUTPUTS,
    CODE_NO_WITNESS_UTXO,
    ValidationError,
)

from runewallet.wallet.psbt import Psbt, PsbtError, PsbtInput
from runewallet.wallet.transaction import TxOut


@dataclass
class FragmentInput:
    txid: str
    vout: int
    witness_utxo: TxOut
    funding_output: TxOut
    sequence: int = DEFAULT_SEQUENCE
    final_script_sig: bytes | None = None
    final_script_witness: list[bytes] | None = None

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"

    @property
    def is_finalized(self) -> bool:
        return self.final_script_sig is not None or self.final_script_witness is not None

    def to_psbt_input(self) -> PsbtInput:
        return PsbtInput(
            witness_utxo=TxOut(self.witness_utxo.value, self.witness_utxo.script),
            final_script_sig=self.final_script_sig,
            final_script_witness=(
                list(self.final_script_witness) if self.final_script_witness is not None else None
            ),
        )


@dataclass
class SingleFragment:
    asset: FragmentInput


@dataclass
class BundledFragment:
    inscription: FragmentInput
    asset: FragmentInput


OfferFragment = SingleFragment | BundledFragment


def fragment_inputs(fragment: OfferFragment) -> list[FragmentInput]:
    """Fragment inputs in transaction order."""
    if isinstance(fragment, BundledFragment):
        return [fragment.inscription, fragment.asset]
    if isinstance(fragment, SingleFragment):
        return [fragment.asset]
    raise TypeError(f"Unknown fragment shape: {type(fragment).__name__}")


def fragment_price(fragment: OfferFragment) -> int:
    return sum(inp.funding_output.value for inp in fragment_inputs(fragment))


def decode_fragment(psbt: Psbt | str) -> OfferFragment:
    """
    Read a fragment from an offer PSBT (hex or parsed).

    Raises:
        ValidationError: Wrong shape or missing witness UTXO
    """
    if isinstance(psbt, str):
        try:
            psbt = Psbt.parse(psbt)
        except PsbtError as e:
            raise ValidationError(
                f"Invalid offer PSBT: {e}", code=CODE_INVALID_OFFER_PSBT
            ) from e

    n_in = len(psbt.tx.inputs)
    n_out = len(psbt.tx.outputs)
    if n_in == 0 or n_out == 0:
        raise ValidationError(
            "Offer PSBT has no inputs or outputs", code=CODE_NO_INPUTS_OR_OUTPUTS
        )
    if n_in != n_out:
        raise ValidationError(
            f"Offer PSBT has {n_in} inputs but {n_out} outputs", code=CODE_LENGTH_MISMATCH
        )
    if n_in > 2:
        raise ValidationError(
            f"Offer PSBT has {n_in} input/output pairs", code=CODE_INVALID_OFFER_PSBT
        )

    inputs = []
    for i, (txin, inp) in enumerate(zip(psbt.tx.inputs, psbt.inputs, strict=True)):
        if inp.witness_utxo is None:
            raise ValidationError(
                f"Offer input {i} has no witness UTXO", code=CODE_NO_WITNESS_UTXO
            )
        inputs.append(
            FragmentInput(
                txid=txin.txid,
                vout=txin.vout,
                witness_utxo=inp.witness_utxo,
                funding_output=psbt.tx.outputs[i],
                sequence=txin.sequence,
                final_script_sig=inp.final_script_sig,
                final_script_witness=inp.final_script_witness,
            )
        )

    if len(inputs) == 2:
        return BundledFragment(inscription=inputs[0], asset=inputs[1])
    return SingleFragment(asset=inputs[0])


def encode_fragment(fragment: OfferFragment) -> Psbt:
    """Standalone PSBT holding only this fragment's pairs."""
    psbt = Psbt()
    for inp in fragment_inputs(fragment):
        psbt.add_input(inp.txid, inp.vout, inp.to_psbt_input(), sequence=inp.sequence)
        psbt.add_output(inp.funding_output.value, inp.funding_output.script)
    return psbt
