"""
Indexer and chain backend implementations.

Available backends:
- UnisatBackend: rune / inscription aware indexer (Unisat open API)
- MempoolBackend: broadcasting, fee rates and mempool activity (mempool.space API)
"""

from runewallet.backends.base import (
    UTXO,
    ChainBackend,
    IndexerBackend,
    MempoolActivity,
    RecommendedFees,
    RuneUTXO,
)
from runewallet.backends.mempool import MempoolBackend
from runewallet.backends.unisat import UnisatBackend

__all__ = [
    "ChainBackend",
    "IndexerBackend",
    "MempoolActivity",
    "MempoolBackend",
    "RecommendedFees",
    "RuneUTXO",
    "UTXO",
    "UnisatBackend",
]
