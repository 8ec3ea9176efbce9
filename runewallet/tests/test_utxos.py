"""
Tests for runewallet.wallet.utxos
"""

from unittest.mock import AsyncMock

import pytest

from runewallet.backends.base import UTXO, MempoolActivity
from runewallet.wallet.utxos import PendingOutputs, get_spendable_utxos, merge_spendable


def utxo(txid_byte: str, vout: int = 0, value: int = 10_000, height: int | None = None) -> UTXO:
    return UTXO(txid=txid_byte * 32, vout=vout, value=value, height=height)


class TestPendingOutputs:
    def test_add_deduplicates(self) -> None:
        pending = PendingOutputs().add(utxo("aa"), utxo("aa"), utxo("bb"))
        assert len(pending) == 2
        assert len(pending.add(utxo("bb"))) == 2

    def test_add_returns_new_value(self) -> None:
        original = PendingOutputs()
        original.add(utxo("aa"))
        assert len(original) == 0

    def test_without(self) -> None:
        pending = PendingOutputs().add(utxo("aa"), utxo("bb"))
        assert [u.outpoint for u in pending.without({utxo("aa").outpoint}).outputs] == [
            utxo("bb").outpoint
        ]


class TestMergeSpendable:
    """Indexer snapshot merged with mempool state."""

    def test_drops_mempool_spent(self) -> None:
        confirmed = [utxo("aa"), utxo("bb")]
        activity = MempoolActivity(spent=[utxo("aa")])
        spendable, _ = merge_spendable(confirmed, activity, PendingOutputs())
        assert [u.outpoint for u in spendable] == [utxo("bb").outpoint]

    def test_drops_above_tip(self) -> None:
        confirmed = [utxo("aa", height=100), utxo("bb", height=101), utxo("cc")]
        spendable, _ = merge_spendable(confirmed, MempoolActivity(), PendingOutputs(), 100)
        assert [u.outpoint for u in spendable] == [utxo("aa").outpoint, utxo("cc").outpoint]

    def test_readds_pending_change(self) -> None:
        change = utxo("dd", 2)
        pending = PendingOutputs().add(change)
        activity = MempoolActivity(received=[change])
        spendable, still_pending = merge_spendable([utxo("aa")], activity, pending)
        assert change in spendable
        assert still_pending.outputs == [change]

    def test_pending_not_duplicated(self) -> None:
        change = utxo("dd", 2)
        activity = MempoolActivity(received=[change])
        spendable, _ = merge_spendable([change], activity, PendingOutputs().add(change))
        assert len(spendable) == 1

    def test_prunes_confirmed_or_evicted(self) -> None:
        pending = PendingOutputs().add(utxo("dd"))
        spendable, still_pending = merge_spendable([], MempoolActivity(), pending)
        assert spendable == []
        assert len(still_pending) == 0

    def test_pending_spent_in_mempool(self) -> None:
        change = utxo("dd")
        activity = MempoolActivity(received=[change], spent=[change])
        spendable, still_pending = merge_spendable([], activity, PendingOutputs().add(change))
        assert spendable == []
        assert len(still_pending) == 0


@pytest.mark.asyncio
async def test_get_spendable_utxos():
    indexer = AsyncMock()
    indexer.get_btc_utxos.return_value = [utxo("aa"), utxo("bb")]
    chain = AsyncMock()
    chain.get_mempool_activity.return_value = MempoolActivity(spent=[utxo("bb")])
    chain.get_block_height.return_value = 850_000

    spendable, pending = await get_spendable_utxos("bc1qbuyer", indexer, chain)

    assert [u.outpoint for u in spendable] == [utxo("aa").outpoint]
    assert len(pending) == 0
    indexer.get_btc_utxos.assert_awaited_once_with("bc1qbuyer")
