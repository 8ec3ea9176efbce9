"""
Test configuration for buyer tests.

Offers are built the way a lister's wallet would sign them: one
SIGHASH_SINGLE|ANYONECANPAY input per funding output, finalized into the
signed fragment. The mocked indexer answers from a mutable view of the chain
so tests can move assets between assembly and broadcast.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from coincurve import PrivateKey
from runecore.constants import OFFER_SIGHASH
from runecore.models import (
    AccountKeys,
    AddressType,
    InscriptionLocation,
    NetworkType,
    Offer,
    RuneBalance,
)
from runewallet.backends.base import UTXO, ChainBackend, IndexerBackend
from runewallet.wallet.address import address_to_scriptpubkey, pubkey_to_address
from runewallet.wallet.psbt import Psbt, account_input
from runewallet.wallet.signer import KeySigner
from runewallet.wallet.signing import sign_psbt_input
from runewallet.wallet.transaction import Transaction

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


@dataclass
class ChainState:
    """What the mocked indexer reports: rune balances and inscription locations."""

    runes: dict[str, list[RuneBalance]] = field(default_factory=dict)
    inscriptions: dict[str, InscriptionLocation] = field(default_factory=dict)


@pytest.fixture
def seller_key() -> PrivateKey:
    return PrivateKey(bytes(31) + b"\x0b")


@pytest.fixture
def buyer_key() -> PrivateKey:
    return PrivateKey(bytes(31) + b"\x0c")


@pytest.fixture
def seller_account(seller_key: PrivateKey) -> AccountKeys:
    return _account(seller_key, AddressType.P2TR)


@pytest.fixture
def buyer_account(buyer_key: PrivateKey) -> AccountKeys:
    return _account(buyer_key, AddressType.P2WPKH)


@pytest.fixture
def receiver_address(buyer_key: PrivateKey) -> str:
    return _account(buyer_key, AddressType.P2TR).address


@pytest.fixture
def buyer_signer(buyer_key: PrivateKey) -> KeySigner:
    return KeySigner(buyer_key)


@pytest.fixture
def chain_state() -> ChainState:
    return ChainState()


@pytest.fixture
def indexer(chain_state: ChainState) -> AsyncMock:
    mock = AsyncMock(spec=IndexerBackend)

    async def rune_balance(txid: str, vout: int) -> list[RuneBalance]:
        return list(chain_state.runes.get(f"{txid}:{vout}", []))

    async def inscription_info(inscription_id: str) -> InscriptionLocation | None:
        return chain_state.inscriptions.get(inscription_id)

    mock.get_utxo_rune_balance.side_effect = rune_balance
    mock.get_inscription_info.side_effect = inscription_info
    return mock


@pytest.fixture
def chain() -> AsyncMock:
    mock = AsyncMock(spec=ChainBackend)

    async def broadcast(tx_hex: str) -> str:
        return Transaction.from_hex(tx_hex).txid

    mock.broadcast_transaction.side_effect = broadcast
    return mock


@pytest.fixture
def make_utxo(buyer_account: AccountKeys) -> Callable[..., UTXO]:
    """Buyer UTXO factory: make_utxo("d1", value)."""

    def factory(txid_byte: str, value: int, vout: int = 0) -> UTXO:
        return UTXO(
            txid=txid_byte * 32,
            vout=vout,
            value=value,
            address=buyer_account.address,
            scriptpubkey=buyer_account.script_pubkey,
        )

    return factory


@pytest.fixture
def make_offer(
    seller_account: AccountKeys, seller_key: PrivateKey, chain_state: ChainState
) -> Callable[..., Offer]:
    """
    Signed offer factory.

    make_offer("a1", amount=100, unit_price=1000) lists a rune UTXO alone;
    passing inscription_txid lists it bundled with an inscription on a
    separate UTXO, priced as one item split over both funding outputs.
    """

    def factory(
        txid_byte: str,
        amount: int = 100,
        unit_price: int = 1000,
        vout: int = 1,
        rune_id: str = RUNE_ID,
        divisibility: int = 0,
        inscription_txid: str | None = None,
    ) -> Offer:
        location_txid = txid_byte * 32
        pairs = []
        if inscription_txid is not None:
            pairs.append((inscription_txid, 0, 330))
        pairs.append((location_txid, vout, 546))
        total_price = amount * unit_price
        part = total_price // len(pairs)

        psbt = Psbt()
        for txid, index, value in pairs:
            psbt.add_input(txid, index, account_input(seller_account, value, OFFER_SIGHASH))
            psbt.add_output(part, seller_account.script)
        unsigned_hex = psbt.to_hex()
        for i in range(len(pairs)):
            sign_psbt_input(psbt, i, seller_key, OFFER_SIGHASH)
        psbt.finalize()

        chain_state.runes[f"{location_txid}:{vout}"] = [
            RuneBalance(
                rune_id=rune_id, amount=amount * 10**divisibility, divisibility=divisibility
            )
        ]
        fields = {}
        if inscription_txid is not None:
            inscription_id = f"{inscription_txid}i0"
            chain_state.inscriptions[inscription_id] = InscriptionLocation(
                inscription_id=inscription_id, txid=inscription_txid, vout=0, value=330
            )
            fields = {
                "inscription_id": inscription_id,
                "inscription_txid": inscription_txid,
                "inscription_vout": 0,
                "collection_name": "UNCOMMON",
            }

        return Offer(
            lister_address=seller_account.address,
            rune_id=rune_id,
            amount=amount,
            divisibility=divisibility,
            unit_price=Decimal(unit_price),
            total_price=part * len(pairs),
            funding_receiver=seller_account.address,
            location_txid=location_txid,
            location_vout=vout,
            location_value=546,
            unsigned_psbt=unsigned_hex,
            signed_psbt=psbt.to_hex(),
            **fields,
        )

    return factory
