"""
Spendable UTXO view.

The indexer only reports confirmed outputs, so outputs created by our own
unconfirmed transactions (change, padding splits) are carried by the caller as
an explicit PendingOutputs value and merged here with the mempool state.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from runewallet.backends.base import UTXO, ChainBackend, IndexerBackend, MempoolActivity


@dataclass
class PendingOutputs:
    """Outputs of our own not-yet-confirmed transactions."""

    outputs: list[UTXO] = field(default_factory=list)

    def add(self, *utxos: UTXO) -> PendingOutputs:
        known = {utxo.outpoint for utxo in self.outputs}
        merged = list(self.outputs)
        for utxo in utxos:
            if utxo.outpoint not in known:
                merged.append(utxo)
                known.add(utxo.outpoint)
        return PendingOutputs(merged)

    def without(self, outpoints: set[str]) -> PendingOutputs:
        return PendingOutputs([utxo for utxo in self.outputs if utxo.outpoint not in outpoints])

    def __len__(self) -> int:
        return len(self.outputs)


def merge_spendable(
    confirmed: list[UTXO],
    activity: MempoolActivity,
    pending: PendingOutputs,
    tip_height: int | None = None,
) -> tuple[list[UTXO], PendingOutputs]:
    """
    Combine an indexer snapshot with mempool activity and pending outputs.

    - Confirmed UTXOs already spent in the mempool are dropped
    - UTXOs reported above the chain tip are dropped
    - Pending outputs still sitting unspent in the mempool are re-added
    - Pending outputs no longer in the mempool are pruned (confirmed or evicted)

    Returns:
        (spendable UTXOs, pruned pending outputs)
    """
    spent = {utxo.outpoint for utxo in activity.spent}
    received = {utxo.outpoint for utxo in activity.received}

    spendable = [
        utxo
        for utxo in confirmed
        if utxo.outpoint not in spent
        and not (tip_height is not None and utxo.height is not None and utxo.height > tip_height)
    ]
    present = {utxo.outpoint for utxo in spendable}

    still_pending = []
    for utxo in pending.outputs:
        if utxo.outpoint in received and utxo.outpoint not in spent:
            still_pending.append(utxo)
            if utxo.outpoint not in present:
                spendable.append(utxo)
                present.add(utxo.outpoint)

    dropped = len(pending) - len(still_pending)
    if dropped:
        logger.debug(f"Pruned {dropped} pending outputs no longer in the mempool")

    return spendable, PendingOutputs(still_pending)


async def get_spendable_utxos(
    address: str,
    indexer: IndexerBackend,
    chain: ChainBackend,
    pending: PendingOutputs | None = None,
) -> tuple[list[UTXO], PendingOutputs]:
    """Fetch the indexer snapshot and mempool state, then merge (see merge_spendable)."""
    confirmed = await indexer.get_btc_utxos(address)
    activity = await chain.get_mempool_activity(address)
    tip_height = await chain.get_block_height()
    return merge_spendable(confirmed, activity, pending or PendingOutputs(), tip_height)
