"""
runecore - Core library for the Runes marketplace components

Provides shared constants, error kinds, records and the Runestone encoder.
"""

__version__ = "0.3.0"

from runecore.constants import (
    DUST_LIMIT,
    OFFER_SIGHASH,
    PADDING_UNIT_VALUE,
    SIGHASH_ALL,
    SIGHASH_ANYONECANPAY,
    SIGHASH_DEFAULT,
    SIGHASH_SINGLE,
)
from runecore.errors import (
    AssetMismatch,
    BroadcastRejected,
    DustOutput,
    ErrorKind,
    ExternalServiceFailure,
    InsufficientFunds,
    MarketError,
    OwnershipMismatch,
    SignatureInvalid,
    ValidationError,
)
from runecore.runestone import Edict, Etching, RuneId, Runestone, Terms, encode_runestone

__all__ = [
    "AssetMismatch",
    "BroadcastRejected",
    "DUST_LIMIT",
    "DustOutput",
    "Edict",
    "ErrorKind",
    "Etching",
    "ExternalServiceFailure",
    "InsufficientFunds",
    "MarketError",
    "OFFER_SIGHASH",
    "OwnershipMismatch",
    "PADDING_UNIT_VALUE",
    "RuneId",
    "Runestone",
    "SIGHASH_ALL",
    "SIGHASH_ANYONECANPAY",
    "SIGHASH_DEFAULT",
    "SIGHASH_SINGLE",
    "SignatureInvalid",
    "Terms",
    "ValidationError",
    "encode_runestone",
]
