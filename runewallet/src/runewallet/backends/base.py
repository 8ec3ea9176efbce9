"""
Base indexer and chain backend interfaces.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from runecore.models import InscriptionLocation, RuneBalance, RuneInfo


@dataclass
class UTXO:
    txid: str
    vout: int
    value: int
    address: str = ""
    scriptpubkey: str = ""
    height: int | None = None

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass
class RuneUTXO:
    """A UTXO together with the rune balances it carries."""

    txid: str
    vout: int
    value: int
    address: str = ""
    scriptpubkey: str = ""
    runes: list[RuneBalance] = field(default_factory=list)

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass
class MempoolActivity:
    """Outputs of an address touched by unconfirmed transactions."""

    received: list[UTXO] = field(default_factory=list)
    spent: list[UTXO] = field(default_factory=list)


@dataclass
class RecommendedFees:
    fastest: int
    half_hour: int
    hour: int
    economy: int
    minimum: int


class IndexerBackend(ABC):
    """
    Rune and inscription aware indexer.

    Every call returns a point-in-time snapshot; nothing is cached.
    """

    @abstractmethod
    async def get_btc_utxos(self, address: str) -> list[UTXO]:
        """Plain UTXOs of an address"""

    @abstractmethod
    async def get_address_rune_utxos(self, address: str, rune_id: str) -> list[RuneUTXO]:
        """UTXOs of an address carrying the given rune"""

    @abstractmethod
    async def get_utxo_rune_balance(self, txid: str, vout: int) -> list[RuneBalance]:
        """Rune balances held by a single UTXO"""

    @abstractmethod
    async def get_rune_info(self, rune_id: str) -> RuneInfo | None:
        """Rune metadata, None if unknown"""

    @abstractmethod
    async def get_address_inscriptions(self, address: str) -> list[InscriptionLocation]:
        """Unspent inscriptions of an address"""

    @abstractmethod
    async def get_inscription_info(self, inscription_id: str) -> InscriptionLocation | None:
        """Current location of an inscription, None if unknown"""

    async def close(self) -> None:
        """Close backend connection"""
        pass


class ChainBackend(ABC):
    """Mempool / broadcast backend."""

    @abstractmethod
    async def broadcast_transaction(self, tx_hex: str) -> str:
        """Broadcast transaction, returns txid"""

    @abstractmethod
    async def get_recommended_fees(self) -> RecommendedFees:
        """Fee rates in sat/vbyte"""

    @abstractmethod
    async def get_mempool_activity(self, address: str) -> MempoolActivity:
        """Outputs received and spent by unconfirmed transactions of an address"""

    @abstractmethod
    async def get_block_height(self) -> int:
        """Get current blockchain height"""

    async def close(self) -> None:
        """Close backend connection"""
        pass
