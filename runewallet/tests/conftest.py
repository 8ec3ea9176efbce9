"""
Test configuration for runewallet tests.
"""

from __future__ import annotations

from collections.abc import Callable

import pytest
from coincurve import PrivateKey
from runecore.models import AccountKeys, AddressType, NetworkType

from runewallet.wallet.address import address_to_scriptpubkey, pubkey_to_address


def _account(private_key: PrivateKey, address_type: AddressType) -> AccountKeys:
    pubkey = private_key.public_key.format(compressed=True)
    address = pubkey_to_address(pubkey, address_type, NetworkType.MAINNET)
    return AccountKeys(
        address=address,
        script_pubkey=address_to_scriptpubkey(address).hex(),
        pubkey=pubkey.hex(),
        address_type=address_type,
    )


@pytest.fixture
def seller_key() -> PrivateKey:
    return PrivateKey(bytes(31) + b"\x01")


@pytest.fixture
def buyer_key() -> PrivateKey:
    return PrivateKey(bytes(31) + b"\x02")


@pytest.fixture
def make_account() -> Callable[[PrivateKey, AddressType], AccountKeys]:
    """Factory for single-key accounts of any supported address type."""
    return _account
