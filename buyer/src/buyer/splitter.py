"""
Padding UTXO preparation.

Inscription purchases need two small buyer inputs ahead of the offer inputs so
the inscription lands on the receiver output. Two existing small UTXOs are
reused when available; otherwise one UTXO is split into 600 sat outputs by a
separate transaction that must be broadcast before the order.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field

from loguru import logger
from runecore.constants import (
    MAX_SPLIT_OUTPUTS,
    MIN_SPLIT_OUTPUTS,
    PADDING_UNIT_VALUE,
    SMALL_UTXO_THRESHOLD,
)
from runecore.errors import InsufficientFunds, ValidationError
from runecore.models import AccountKeys
from runewallet.backends.base import UTXO
from runewallet.wallet.coin_selection import estimate_vsize
from runewallet.wallet.psbt import Psbt, PsbtError, account_input
from runewallet.wallet.signer import Signer
from runewallet.wallet.utxos import PendingOutputs


@dataclass
class SplitPlan:
    utxo: UTXO
    output_count: int
    fee: int


@dataclass
class SplitResult:
    padding_utxos: list[UTXO]
    fee_utxos: list[UTXO]
    split_tx_hex: str | None = None
    split_txid: str | None = None
    pending: PendingOutputs = field(default_factory=PendingOutputs)

    @property
    def needs_broadcast(self) -> bool:
        return self.split_tx_hex is not None


def plan_split(
    account: AccountKeys,
    utxos: Sequence[UTXO],
    fee_rate: float,
    padding_unit_value: int = PADDING_UNIT_VALUE,
) -> SplitPlan | None:
    """
    Largest output count N in 2..11 for which some UTXO covers N padding
    units plus the fee of a one-input, N-output transaction.

    The smallest covering UTXO is used for each N.
    """
    ordered = sorted(utxos, key=lambda utxo: utxo.value)
    plan = None
    for n in range(MIN_SPLIT_OUTPUTS, MAX_SPLIT_OUTPUTS + 1):
        vsize = estimate_vsize([account.address_type], [account.script] * n)
        fee = math.ceil(vsize * fee_rate)
        match = next(
            (utxo for utxo in ordered if utxo.value >= fee + padding_unit_value * n), None
        )
        if match is None:
            break
        plan = SplitPlan(utxo=match, output_count=n, fee=fee)
    return plan


class UTXOSplitter:
    """
    Provides the two padding UTXOs of an inscription purchase.
    """

    def __init__(
        self,
        account: AccountKeys,
        signer: Signer,
        padding_unit_value: int = PADDING_UNIT_VALUE,
    ):
        self.account = account
        self.signer = signer
        self.padding_unit_value = padding_unit_value

    def build_split_psbt(self, plan: SplitPlan) -> Psbt:
        """N-1 padding outputs and a last output carrying the remainder."""
        psbt = Psbt()
        psbt.add_input(
            plan.utxo.txid, plan.utxo.vout, account_input(self.account, plan.utxo.value)
        )
        for _ in range(plan.output_count - 1):
            psbt.add_output(self.padding_unit_value, self.account.script)
        remainder = plan.utxo.value - plan.fee - self.padding_unit_value * (plan.output_count - 1)
        psbt.add_output(remainder, self.account.script)
        return psbt

    async def split(self, utxos: Sequence[UTXO], fee_rate: float) -> SplitResult:
        """
        Pick or create the padding UTXOs.

        Raises:
            ValidationError: Non-positive fee rate
            InsufficientFunds: No UTXO is large enough to split
        """
        if fee_rate <= 0:
            raise ValidationError(f"Fee rate must be positive, got {fee_rate}")

        ordered = sorted(utxos, key=lambda utxo: utxo.value)
        if (
            len(ordered) > 2
            and ordered[0].value <= SMALL_UTXO_THRESHOLD
            and ordered[1].value <= SMALL_UTXO_THRESHOLD
        ):
            logger.debug("Reusing two small UTXOs as padding")
            return SplitResult(padding_utxos=ordered[:2], fee_utxos=ordered[2:])

        plan = plan_split(self.account, ordered, fee_rate, self.padding_unit_value)
        if plan is None:
            raise InsufficientFunds("No UTXO is large enough to create padding outputs")

        unsigned = self.build_split_psbt(plan)
        signed_hex = await self.signer.sign_psbt(unsigned.to_hex(), [0], finalize=True)
        try:
            tx = Psbt.from_hex(signed_hex).extract_transaction()
        except PsbtError as e:
            raise ValidationError(f"Signer returned an unusable split PSBT: {e}") from e

        txid = tx.txid
        created = [
            UTXO(
                txid=txid,
                vout=index,
                value=output.value,
                address=self.account.address,
                scriptpubkey=output.script.hex(),
            )
            for index, output in enumerate(tx.outputs)
        ]
        consumed = plan.utxo.outpoint
        fee_utxos = [utxo for utxo in utxos if utxo.outpoint != consumed] + created[2:]

        logger.info(
            f"Splitting {consumed} into {plan.output_count} outputs "
            f"(fee {plan.fee} sats), split txid {txid}"
        )
        return SplitResult(
            padding_utxos=created[:2],
            fee_utxos=fee_utxos,
            split_tx_hex=tx.to_hex(),
            split_txid=txid,
            pending=PendingOutputs(created),
        )
