"""
Core data models using Pydantic for validation and serialization.
"""

from __future__ import annotations

import hashlib
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from runecore.errors import MarketError


def location_id(txid: str, vout: int) -> str:
    """Stable offer identifier derived from an asset location."""
    return hashlib.sha256(f"{txid}:{vout}".encode()).hexdigest()


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"


class AddressType(str, Enum):
    P2PKH = "p2pkh"
    P2SH = "p2sh"  # assumed P2SH-P2WPKH when spending
    P2WPKH = "p2wpkh"
    P2WSH = "p2wsh"
    P2TR = "p2tr"
    UNKNOWN = "unknown"


class OfferStatus(str, Enum):
    ACTIVE = "active"
    SOLD = "sold"
    CANCELLED = "cancelled"


class AccountKeys(BaseModel):
    """Address, script and public key of one wallet account."""

    address: str = Field(..., min_length=1)
    script_pubkey: str = Field(..., pattern=r"^[0-9a-fA-F]*$")
    pubkey: str = Field(..., pattern=r"^[0-9a-fA-F]{64}$|^[0-9a-fA-F]{66}$")
    address_type: AddressType

    @property
    def script(self) -> bytes:
        return bytes.fromhex(self.script_pubkey)


class RuneInfo(BaseModel):
    rune_id: str = Field(..., pattern=r"^\d+:\d+$")
    rune: str
    spaced_rune: str
    symbol: str = ""
    divisibility: int = Field(default=0, ge=0, le=38)


class RuneBalance(BaseModel):
    """Rune balance held by a single UTXO, in raw (undivided) units."""

    rune_id: str = Field(..., pattern=r"^\d+:\d+$")
    rune: str = ""
    spaced_rune: str = ""
    symbol: str = ""
    amount: int = Field(..., ge=0)
    divisibility: int = Field(default=0, ge=0, le=38)

    @property
    def display_amount(self) -> int:
        return self.amount // 10**self.divisibility


class InscriptionLocation(BaseModel):
    inscription_id: str
    txid: str = Field(..., pattern=r"^[0-9a-fA-F]{64}$")
    vout: int = Field(..., ge=0)
    value: int = Field(default=0, ge=0)
    address: str = ""

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"


class Offer(BaseModel):
    """A listed rune offer backed by a pre-signed 0x83 fragment."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    bid: str = ""
    lister_address: str = Field(..., min_length=1)
    rune_id: str = Field(..., pattern=r"^\d+:\d+$")
    rune_name: str = ""
    spaced_rune_name: str = ""
    symbol: str = ""
    amount: int = Field(..., gt=0)
    divisibility: int = Field(default=0, ge=0, le=38)
    unit_price: Decimal = Field(..., gt=0)
    total_price: int = Field(..., ge=0)
    funding_receiver: str = Field(..., min_length=1)
    location_txid: str = Field(..., pattern=r"^[0-9a-fA-F]{64}$")
    location_vout: int = Field(..., ge=0)
    location_value: int = Field(..., ge=0)
    unsigned_psbt: str
    signed_psbt: str
    status: OfferStatus = OfferStatus.ACTIVE
    inscription_id: str | None = None
    inscription_txid: str | None = None
    inscription_vout: int | None = None
    collection_name: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def derive_bid(self) -> Offer:
        if not self.bid:
            self.bid = location_id(self.location_txid, self.location_vout)
        return self

    @property
    def location(self) -> str:
        return f"{self.location_txid}:{self.location_vout}"

    @property
    def is_bundled(self) -> bool:
        return self.inscription_id is not None

    @property
    def inscription_location(self) -> str | None:
        if self.inscription_txid is None or self.inscription_vout is None:
            return None
        return f"{self.inscription_txid}:{self.inscription_vout}"

    def with_status(self, status: OfferStatus) -> Offer:
        return self.model_copy(update={"status": status, "updated_at": datetime.now(UTC)})


class Order(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    bids: list[str] = Field(default_factory=list)
    buyer_address: str
    item_receiver_address: str
    txid: str = Field(..., pattern=r"^[0-9a-fA-F]{64}$")
    raw_tx: str = ""
    psbt: str = ""
    fee: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ApiResponse(BaseModel):
    """Explicit result value returned by the service entry points."""

    code: int = 0
    error: bool = False
    message: str = "ok"
    data: Any = None

    @classmethod
    def ok(cls, data: Any = None) -> ApiResponse:
        return cls(data=data)

    @classmethod
    def from_error(cls, err: MarketError, data: Any = None) -> ApiResponse:
        return cls(code=err.code, error=True, message=err.message, data=data)
