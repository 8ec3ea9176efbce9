"""
Fee-paying input selection.

Selection converges on transaction size: each round estimates the vsize with
one more payer input (plus a change output), derives the shortfall and takes
the most desirable UTXO for it. The pool is finite and strictly consumed, so
the loop always terminates, either covered or with InsufficientFunds.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field

from loguru import logger
from runecore.constants import DUST_LIMIT
from runecore.errors import InsufficientFunds, ValidationError
from runecore.models import AccountKeys, AddressType

from runewallet.backends.base import UTXO
from runewallet.wallet.transaction import encode_varint

# Worst-case scriptSig / witness element sizes by spend type
P2SH_P2WPKH_SCRIPT_SIG_SIZE = 23
P2PKH_SCRIPT_SIG_SIZE = 107
ECDSA_WITNESS = (72, 33)
SCHNORR_WITNESS = (64,)
# Outputs without a known script are counted as P2TR-sized
UNKNOWN_OUTPUT_SCRIPT_SIZE = 35


@dataclass
class ExtraInput:
    """An input already committed to the transaction (not drawn from the pool)."""

    value: int
    address_type: AddressType | None = None


@dataclass
class TargetOutput:
    value: int
    script: bytes


@dataclass
class CoinSelection:
    selected: list[UTXO]
    outputs: list[TargetOutput]
    fee: int
    vsize: int
    change: TargetOutput | None = None

    @property
    def selected_value(self) -> int:
        return sum(utxo.value for utxo in self.selected)


@dataclass
class _SizedInput:
    script_sig_size: int = 0
    witness: tuple[int, ...] = field(default_factory=tuple)


def _sized_input(address_type: AddressType | None) -> _SizedInput:
    if address_type == AddressType.P2SH:
        return _SizedInput(P2SH_P2WPKH_SCRIPT_SIG_SIZE, ECDSA_WITNESS)
    if address_type == AddressType.P2WPKH:
        return _SizedInput(0, ECDSA_WITNESS)
    if address_type == AddressType.P2PKH:
        return _SizedInput(P2PKH_SCRIPT_SIG_SIZE, ())
    # P2TR key path, and generic inputs of unknown type
    return _SizedInput(0, SCHNORR_WITNESS)


def _varslice_size(length: int) -> int:
    return len(encode_varint(length)) + length


def _bytes_length(
    allow_witness: bool, inputs: list[_SizedInput], output_scripts: Sequence[bytes | None]
) -> int:
    has_witness = allow_witness and any(inp.witness for inp in inputs)
    size = (10 if has_witness else 8) + len(encode_varint(len(inputs)))
    size += len(encode_varint(len(output_scripts)))
    for inp in inputs:
        size += 40 + (_varslice_size(inp.script_sig_size) if inp.script_sig_size else 1)
    for script in output_scripts:
        if script is None:
            size += 8 + UNKNOWN_OUTPUT_SCRIPT_SIZE
        else:
            size += 8 + _varslice_size(len(script))
    if has_witness:
        for inp in inputs:
            size += len(encode_varint(len(inp.witness)))
            size += sum(_varslice_size(item) for item in inp.witness)
    return size


def estimate_vsize(
    input_types: Sequence[AddressType | None], output_scripts: Sequence[bytes | None]
) -> int:
    """Estimated virtual size: ceil((base * 3 + total) / 4)."""
    inputs = [_sized_input(t) for t in input_types]
    base = _bytes_length(False, inputs, output_scripts)
    total = _bytes_length(True, inputs, output_scripts)
    return math.ceil((base * 3 + total) / 4)


def estimate_vsize_for_counts(input_count: int, output_count: int) -> int:
    """Estimate for generic (taproot-sized) inputs and outputs."""
    return estimate_vsize([None] * input_count, [None] * output_count)


def sort_utxos_by_desire(utxos: list[UTXO], desired: int, dust_limit: int = DUST_LIMIT) -> None:
    """
    Order UTXOs by how well they cover ``desired`` (in place).

    1. Covering UTXOs whose excess is not dust, smallest first
    2. Covering UTXOs leaving dust excess, smallest first
    3. Non-covering UTXOs, largest first
    """

    def desirability(utxo: UTXO) -> tuple[int, int]:
        if utxo.value >= desired:
            tier = 0 if utxo.value - desired >= dust_limit else 1
            return tier, utxo.value
        return 2, -utxo.value

    utxos.sort(key=desirability)


def select_coins(
    payer: AccountKeys,
    utxos: Sequence[UTXO],
    targets: Sequence[TargetOutput],
    fee_rate: float,
    extra_inputs: Sequence[ExtraInput] = (),
    dust_limit: int = DUST_LIMIT,
) -> CoinSelection:
    """
    Select payer UTXOs covering ``targets`` plus the fee at ``fee_rate`` sat/vB.

    Extra inputs count toward both the covered value and the size estimate.
    Change goes back to the payer script when it is at least ``dust_limit``,
    otherwise it is left to the fee.

    Raises:
        InsufficientFunds: The pool ran out before the target was covered
    """
    if fee_rate <= 0:
        raise ValidationError(f"Fee rate must be positive, got {fee_rate}")

    pool = list(utxos)
    target_value = sum(t.value for t in targets)
    extra_types = [extra.address_type for extra in extra_inputs]
    output_scripts: list[bytes | None] = [t.script for t in targets] + [payer.script]

    selected: list[UTXO] = []
    selected_value = sum(extra.value for extra in extra_inputs)
    fee = 0
    vsize = 0

    while True:
        if not pool:
            raise InsufficientFunds(
                f"Not enough funds: need {target_value + fee} sats, "
                f"have {selected_value} sats"
            )

        input_types = extra_types + [payer.address_type] * (len(selected) + 1)
        vsize = estimate_vsize(input_types, output_scripts)
        fee = math.ceil(vsize * fee_rate)
        required = target_value + fee
        need = required - selected_value

        sort_utxos_by_desire(pool, need, dust_limit)
        utxo = pool.pop(0)
        selected.append(utxo)
        selected_value += utxo.value

        if selected_value >= required:
            break

    outputs = list(targets)
    change = None
    refund = selected_value - target_value - fee
    if refund >= dust_limit:
        change = TargetOutput(refund, payer.script)
        outputs.append(change)
    else:
        fee += refund

    logger.debug(
        f"Selected {len(selected)} UTXOs ({selected_value} sats incl. extras) "
        f"for {target_value} sats, fee {fee} sats at {fee_rate} sat/vB, "
        f"change {change.value if change else 0}"
    )
    return CoinSelection(selected=selected, outputs=outputs, fee=fee, vsize=vsize, change=change)
