"""
Tests for runewallet.wallet.coin_selection
"""

import math

import pytest
from runecore.errors import InsufficientFunds, ValidationError
from runecore.models import AddressType

from runewallet.backends.base import UTXO
from runewallet.wallet.coin_selection import (
    ExtraInput,
    TargetOutput,
    estimate_vsize,
    select_coins,
    sort_utxos_by_desire,
)

P2WPKH_SCRIPT = bytes.fromhex("0014751e76e8199196d454941c45d1b3a323f1433bd6")
P2TR_SCRIPT = bytes([0x51, 0x20]) + bytes(32)


def utxo(value: int, vout: int = 0) -> UTXO:
    return UTXO(txid="cc" * 32, vout=vout, value=value)


class TestEstimateVsize:
    def test_p2wpkh_one_in_two_out(self) -> None:
        assert estimate_vsize([AddressType.P2WPKH], [P2WPKH_SCRIPT, P2WPKH_SCRIPT]) == 141

    def test_p2tr_one_in_one_out(self) -> None:
        assert estimate_vsize([AddressType.P2TR], [P2TR_SCRIPT]) == 111

    def test_legacy_has_no_witness_discount(self) -> None:
        legacy = estimate_vsize([AddressType.P2PKH], [P2WPKH_SCRIPT])
        segwit = estimate_vsize([AddressType.P2WPKH], [P2WPKH_SCRIPT])
        assert legacy > segwit

    def test_unknown_outputs_sized_as_taproot(self) -> None:
        assert estimate_vsize([None], [None]) == estimate_vsize([None], [P2TR_SCRIPT])


class TestDesirability:
    def test_tiers(self) -> None:
        pool = [utxo(v, i) for i, v in enumerate([500, 1200, 2000, 800, 5000])]
        sort_utxos_by_desire(pool, 1000)
        assert [u.value for u in pool] == [2000, 5000, 1200, 800, 500]

    def test_exact_cover_is_dust_tier(self) -> None:
        pool = [utxo(1000, 0), utxo(3000, 1)]
        sort_utxos_by_desire(pool, 1000)
        assert [u.value for u in pool] == [3000, 1000]


class TestSelectCoins:
    """Fee-converging selection."""

    def test_single_utxo_with_change(self, seller_key, make_account) -> None:
        payer = make_account(seller_key, AddressType.P2WPKH)
        targets = [TargetOutput(10_000, P2WPKH_SCRIPT)]
        expected_fee = math.ceil(
            estimate_vsize([AddressType.P2WPKH], [P2WPKH_SCRIPT, payer.script]) * 2
        )

        selection = select_coins(payer, [utxo(50_000)], targets, fee_rate=2)

        assert [u.value for u in selection.selected] == [50_000]
        assert selection.fee == expected_fee
        assert selection.change is not None
        assert selection.change.value == 40_000 - expected_fee
        assert selection.change.script == payer.script
        assert selection.outputs[-1] is selection.change

    def test_dust_change_goes_to_fee(self, seller_key, make_account) -> None:
        payer = make_account(seller_key, AddressType.P2WPKH)
        targets = [TargetOutput(10_000, P2WPKH_SCRIPT)]
        fee = math.ceil(estimate_vsize([AddressType.P2WPKH], [P2WPKH_SCRIPT, payer.script]))

        selection = select_coins(payer, [utxo(10_000 + fee + 100)], targets, fee_rate=1)

        assert selection.change is None
        assert selection.fee == fee + 100
        assert selection.outputs == targets

    def test_multiple_inputs(self, seller_key, make_account) -> None:
        payer = make_account(seller_key, AddressType.P2WPKH)
        targets = [TargetOutput(10_000, P2WPKH_SCRIPT)]

        selection = select_coins(payer, [utxo(6_000, 0), utxo(6_000, 1)], targets, fee_rate=1)

        assert len(selection.selected) == 2
        assert selection.fee == math.ceil(
            estimate_vsize([AddressType.P2WPKH] * 2, [P2WPKH_SCRIPT, payer.script])
        )
        assert selection.change.value == 2_000 - selection.fee

    def test_extra_inputs_count(self, seller_key, make_account) -> None:
        payer = make_account(seller_key, AddressType.P2WPKH)
        targets = [TargetOutput(546, P2WPKH_SCRIPT), TargetOutput(20_000, P2WPKH_SCRIPT)]
        extras = [ExtraInput(546, AddressType.P2TR)]

        selection = select_coins(payer, [utxo(30_000)], targets, fee_rate=1, extra_inputs=extras)

        expected_fee = math.ceil(
            estimate_vsize(
                [AddressType.P2TR, AddressType.P2WPKH],
                [P2WPKH_SCRIPT, P2WPKH_SCRIPT, payer.script],
            )
        )
        assert selection.fee == expected_fee
        assert selection.change.value == 30_000 + 546 - 20_546 - expected_fee

    def test_insufficient_funds(self, seller_key, make_account) -> None:
        payer = make_account(seller_key, AddressType.P2WPKH)
        with pytest.raises(InsufficientFunds):
            select_coins(payer, [utxo(1_000)], [TargetOutput(10_000, P2WPKH_SCRIPT)], 1)
        with pytest.raises(InsufficientFunds):
            select_coins(payer, [], [TargetOutput(10_000, P2WPKH_SCRIPT)], 1)

    def test_invalid_fee_rate(self, seller_key, make_account) -> None:
        payer = make_account(seller_key, AddressType.P2WPKH)
        with pytest.raises(ValidationError):
            select_coins(payer, [utxo(50_000)], [TargetOutput(1_000, P2WPKH_SCRIPT)], 0)

    def test_pool_not_mutated(self, seller_key, make_account) -> None:
        payer = make_account(seller_key, AddressType.P2WPKH)
        pool = [utxo(1_000, 0), utxo(50_000, 1)]
        select_coins(payer, pool, [TargetOutput(10_000, P2WPKH_SCRIPT)], 1)
        assert [u.value for u in pool] == [1_000, 50_000]
