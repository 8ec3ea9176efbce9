"""
Error kinds raised by the marketplace core.

Every error carries a kind and a numeric code. Service entry points convert
them into explicit ApiResponse values.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    OWNERSHIP_MISMATCH = "ownership_mismatch"
    ASSET_MISMATCH = "asset_mismatch"
    SIGNATURE_INVALID = "signature_invalid"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    DUST_OUTPUT = "dust_output"
    EXTERNAL_SERVICE = "external_service"
    BROADCAST_REJECTED = "broadcast_rejected"


# Numeric codes reported to API clients
CODE_BAD_REQUEST = 10001
CODE_INTERNAL = 20001
CODE_NO_INPUTS_OR_OUTPUTS = 30001
CODE_LENGTH_MISMATCH = 30002
CODE_NO_WITNESS_UTXO = 30003
CODE_ADDRESS_MISMATCH = 30004
CODE_ASSET_NOT_OWNED = 30005
CODE_INVALID_SIGNATURE = 30007
CODE_INVALID_INPUT_SIGNATURE = 30008
CODE_INVALID_RUNE_INPUT = 30009
CODE_INVALID_OFFER_PSBT = 30010
CODE_PUSH_TX_FAILED = 30011
CODE_INSUFFICIENT_FUNDS = 30012
CODE_RUNE_NOT_FOUND = 30013
CODE_INSCRIPTION_MISMATCH = 30014
CODE_DUST_OUTPUT = 30015


class MarketError(Exception):
    """Base class for all marketplace errors."""

    kind: ErrorKind = ErrorKind.VALIDATION
    default_code: int = CODE_BAD_REQUEST

    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.message = message
        self.code = code if code is not None else self.default_code


class ValidationError(MarketError):
    """Malformed input: missing witness UTXO, count mismatch, bad encoding."""

    kind = ErrorKind.VALIDATION
    default_code = CODE_BAD_REQUEST


class OwnershipMismatch(MarketError):
    """Claimed address does not own the input script."""

    kind = ErrorKind.OWNERSHIP_MISMATCH
    default_code = CODE_ADDRESS_MISMATCH


class AssetMismatch(MarketError):
    """Live balance, rune id or amount differs from the claimed one."""

    kind = ErrorKind.ASSET_MISMATCH
    default_code = CODE_ASSET_NOT_OWNED


class SignatureInvalid(MarketError):
    kind = ErrorKind.SIGNATURE_INVALID
    default_code = CODE_INVALID_INPUT_SIGNATURE


class InsufficientFunds(MarketError):
    kind = ErrorKind.INSUFFICIENT_FUNDS
    default_code = CODE_INSUFFICIENT_FUNDS


class DustOutput(MarketError):
    kind = ErrorKind.DUST_OUTPUT
    default_code = CODE_DUST_OUTPUT


class ExternalServiceFailure(MarketError):
    """Indexer or broadcaster unreachable or returned an error."""

    kind = ErrorKind.EXTERNAL_SERVICE
    default_code = CODE_INTERNAL


class BroadcastRejected(MarketError):
    """Node rejected the transaction (double spend, conflict). Terminal."""

    kind = ErrorKind.BROADCAST_REJECTED
    default_code = CODE_PUSH_TX_FAILED
