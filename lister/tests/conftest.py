"""
Test configuration for lister tests.
"""

from __future__ import annotations

import base64
from collections.abc import Callable
from unittest.mock import AsyncMock

import pytest
from coincurve import PrivateKey
from runecore.models import AccountKeys, AddressType, NetworkType, RuneBalance, RuneInfo
from runewallet.backends.base import IndexerBackend, RuneUTXO
from runewallet.wallet.address import address_to_scriptpubkey, pubkey_to_address
from runewallet.wallet.message import bitcoin_message_hash
from runewallet.wallet.signer import KeySigner

RUNE_ID = "840000:3"


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
def lister_key() -> PrivateKey:
    return PrivateKey(bytes(31) + b"\x07")


@pytest.fixture
def other_key() -> PrivateKey:
    return PrivateKey(bytes(31) + b"\x08")


@pytest.fixture
def lister_account(lister_key: PrivateKey) -> AccountKeys:
    return _account(lister_key, AddressType.P2WPKH)


@pytest.fixture
def other_account(other_key: PrivateKey) -> AccountKeys:
    return _account(other_key, AddressType.P2WPKH)


@pytest.fixture
def legacy_account(lister_key: PrivateKey) -> AccountKeys:
    return _account(lister_key, AddressType.P2PKH)


@pytest.fixture
def lister_signer(lister_key: PrivateKey) -> KeySigner:
    return KeySigner(lister_key)


@pytest.fixture
def rune_info() -> RuneInfo:
    return RuneInfo(
        rune_id=RUNE_ID,
        rune="UNCOMMONGOODS",
        spaced_rune="UNCOMMON•GOODS",
        symbol="⧉",
        divisibility=0,
    )


@pytest.fixture
def make_rune_utxo() -> Callable[..., RuneUTXO]:
    """Factory for rune UTXOs: make_rune_utxo("aa", vout, amount)."""

    def factory(
        txid_byte: str,
        vout: int = 0,
        amount: int = 100,
        value: int = 546,
        rune_id: str = RUNE_ID,
        divisibility: int = 0,
        address: str = "",
    ) -> RuneUTXO:
        return RuneUTXO(
            txid=txid_byte * 32,
            vout=vout,
            value=value,
            address=address,
            runes=[RuneBalance(rune_id=rune_id, amount=amount, divisibility=divisibility)],
        )

    return factory


@pytest.fixture
def indexer(rune_info: RuneInfo) -> AsyncMock:
    mock = AsyncMock(spec=IndexerBackend)
    mock.get_rune_info.return_value = rune_info
    mock.get_address_rune_utxos.return_value = []
    mock.get_address_inscriptions.return_value = []
    return mock


@pytest.fixture
def sign_message() -> Callable[[PrivateKey, str], str]:
    """Compact "Bitcoin Signed Message" signature, base64 encoded."""

    def sign(private_key: PrivateKey, message: str) -> str:
        recoverable = private_key.sign_recoverable(bitcoin_message_hash(message), hasher=None)
        header = 27 + recoverable[64] + 4
        return base64.b64encode(bytes([header]) + recoverable[:64]).decode()

    return sign
