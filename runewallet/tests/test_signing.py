"""
Tests for signature hashing, signing and verification.

The key property: an input signed with SIGHASH_SINGLE|ANYONECANPAY stays valid
when moved into a larger transaction, as long as its funding output moves to
the same index.
"""

import pytest
from runecore.constants import OFFER_SIGHASH, SIGHASH_ALL
from runecore.models import AddressType

from runewallet.wallet.psbt import Psbt, PsbtInput, account_input
from runewallet.wallet.signer import KeySigner
from runewallet.wallet.signing import (
    compute_sighash_segwit,
    compute_sighash_taproot,
    create_p2wpkh_script_code,
    sign_psbt_input,
    verify_input_signature,
)
from runewallet.wallet.transaction import Transaction, TxOut

OFFER_TXID = "11" * 32
BUYER_TXID = "22" * 32
PRICE = 100_000

OFFER_TYPES = [AddressType.P2WPKH, AddressType.P2SH, AddressType.P2TR]


def _fragment(account, sighash_type=OFFER_SIGHASH) -> Psbt:
    psbt = Psbt()
    psbt.add_input(OFFER_TXID, 1, account_input(account, 546, sighash_type))
    psbt.add_output(PRICE, account.script)
    return psbt


def _order(fragment: Psbt, buyer, funding_index: int = 1) -> Psbt:
    """Buyer input first, offer input at index 1, funding output at ``funding_index``."""
    order = Psbt()
    order.add_input(BUYER_TXID, 0, account_input(buyer, 200_000))
    order.add_input(OFFER_TXID, 1, fragment.inputs[0])
    order.add_output(546, buyer.script)
    if funding_index == 1:
        order.add_output(fragment.tx.outputs[0].value, fragment.tx.outputs[0].script)
        order.add_output(90_000, buyer.script)
    else:
        order.add_output(90_000, buyer.script)
        order.add_output(fragment.tx.outputs[0].value, fragment.tx.outputs[0].script)
    return order


class TestOfferSignatures:
    """SIGHASH_SINGLE|ANYONECANPAY composability."""

    @pytest.mark.parametrize("address_type", OFFER_TYPES)
    def test_valid_in_fragment(self, seller_key, make_account, address_type) -> None:
        fragment = _fragment(make_account(seller_key, address_type))
        sign_psbt_input(fragment, 0, seller_key, OFFER_SIGHASH)
        assert verify_input_signature(fragment, 0, OFFER_SIGHASH) == (True, "")

    @pytest.mark.parametrize("address_type", OFFER_TYPES)
    def test_valid_after_composition(
        self, seller_key, buyer_key, make_account, address_type
    ) -> None:
        fragment = _fragment(make_account(seller_key, address_type))
        sign_psbt_input(fragment, 0, seller_key, OFFER_SIGHASH)

        order = _order(fragment, make_account(buyer_key, AddressType.P2WPKH))
        valid, error = verify_input_signature(order, 1, OFFER_SIGHASH)
        assert valid, error

    @pytest.mark.parametrize("address_type", OFFER_TYPES)
    def test_invalid_when_funding_output_moves(
        self, seller_key, buyer_key, make_account, address_type
    ) -> None:
        fragment = _fragment(make_account(seller_key, address_type))
        sign_psbt_input(fragment, 0, seller_key, OFFER_SIGHASH)

        order = _order(fragment, make_account(buyer_key, AddressType.P2WPKH), funding_index=2)
        valid, _ = verify_input_signature(order, 1, OFFER_SIGHASH)
        assert not valid

    @pytest.mark.parametrize("address_type", [AddressType.P2WPKH, AddressType.P2TR])
    def test_sighash_all_breaks_on_composition(
        self, seller_key, buyer_key, make_account, address_type
    ) -> None:
        fragment = _fragment(make_account(seller_key, address_type), sighash_type=None)
        sign_psbt_input(fragment, 0, seller_key)
        assert verify_input_signature(fragment, 0)[0]

        order = _order(fragment, make_account(buyer_key, AddressType.P2WPKH))
        valid, _ = verify_input_signature(order, 1)
        assert not valid

    def test_unexpected_sighash_type(self, seller_key, make_account) -> None:
        fragment = _fragment(make_account(seller_key, AddressType.P2WPKH))
        sign_psbt_input(fragment, 0, seller_key, SIGHASH_ALL)
        valid, error = verify_input_signature(fragment, 0, OFFER_SIGHASH)
        assert not valid
        assert "sighash" in error

    def test_wrong_key(self, seller_key, buyer_key, make_account) -> None:
        fragment = _fragment(make_account(seller_key, AddressType.P2WPKH))
        sign_psbt_input(fragment, 0, buyer_key, OFFER_SIGHASH)
        valid, _ = verify_input_signature(fragment, 0, OFFER_SIGHASH)
        assert not valid

    def test_tampered_value(self, seller_key, make_account) -> None:
        fragment = _fragment(make_account(seller_key, AddressType.P2WPKH))
        sign_psbt_input(fragment, 0, seller_key, OFFER_SIGHASH)
        fragment.tx.outputs[0].value = PRICE - 1
        assert not verify_input_signature(fragment, 0, OFFER_SIGHASH)[0]

    def test_no_signature(self, seller_key, make_account) -> None:
        fragment = _fragment(make_account(seller_key, AddressType.P2WPKH))
        assert verify_input_signature(fragment, 0) == (False, "No signature")


class TestFinalization:
    @pytest.mark.parametrize("address_type", OFFER_TYPES + [AddressType.P2PKH])
    def test_finalized_signature_verifies(self, seller_key, make_account, address_type) -> None:
        account = make_account(seller_key, address_type)
        psbt = Psbt()
        psbt.add_input(OFFER_TXID, 1, PsbtInput(witness_utxo=TxOut(10_000, account.script)))
        psbt.add_output(9_000, account.script)
        if address_type == AddressType.P2SH:
            psbt.inputs[0] = account_input(account, 10_000)

        sign_psbt_input(psbt, 0, seller_key)
        psbt.finalize_input(0)

        inp = psbt.inputs[0]
        assert inp.is_finalized
        assert inp.partial_sigs == {}
        assert verify_input_signature(psbt, 0)[0]

        tx = psbt.extract_transaction()
        if address_type == AddressType.P2PKH:
            assert tx.inputs[0].script_sig
            assert not tx.has_witness
        else:
            assert tx.has_witness

    @pytest.mark.asyncio
    async def test_key_signer(self, seller_key, make_account) -> None:
        account = make_account(seller_key, AddressType.P2TR)
        fragment = _fragment(account)
        signer = KeySigner(seller_key)

        signed_hex = await signer.sign_psbt(fragment.to_hex(), [0], OFFER_SIGHASH)
        signed = Psbt.from_hex(signed_hex)
        assert signed.inputs[0].tap_key_sig is not None
        assert signed.inputs[0].tap_key_sig[-1] == OFFER_SIGHASH
        assert not signed.inputs[0].is_finalized

        final_hex = await signer.sign_psbt(fragment.to_hex(), [0], OFFER_SIGHASH, finalize=True)
        final = Psbt.from_hex(final_hex)
        assert final.inputs[0].is_finalized
        assert verify_input_signature(final, 0, OFFER_SIGHASH)[0]


# BIP143 native P2WPKH example: two inputs, two outputs, locktime 17
BIP143_TX = (
    "0100000002fff7f7881a8099afa6940d42d1e7f6362bec38171ea3edf433541db4e4ad969f00000000"
    "00eeffffffef51e1b804cc89d182d279655c3aa89e815b1b309fe287d9b2b55d57b90ec68a01000000"
    "00ffffffff02202cb206000000001976a9148280b37df378db99f66f85c95a783a76ac7a6d5988ac90"
    "93510d000000001976a9143bde42dbee7e4dbe6a21b2d50ce2f0167faa815988ac11000000"
)
BIP143_PUBKEY_HASH = bytes.fromhex("1d0f172a0ecb48aee1be1f2687d2963ae33f71a1")

# Both inputs of BIP143_TX re-declared as taproot outputs
TAPROOT_SPENT = [
    TxOut(625_000_000, bytes.fromhex("5120" + "aa" * 32)),
    TxOut(600_000_000, bytes.fromhex("5120" + "bb" * 32)),
]


class TestSighashVectors:
    """Known-answer signature hashes for input 1 of the BIP143 P2WPKH example."""

    @pytest.mark.parametrize(
        "sighash_type,expected",
        [
            (0x01, "c37af31116d1b27caf68aae9e3ac82f1477929014d5b917657d0eb49478cb670"),
            (0x02, "6ff11a9b87fb510a3a31af006bd3811b632f8a39d88a2bfda49cee203dcc356e"),
            (0x03, "f4fe57286dd2ca8ac0e3dfccd54c352fcdcacbed80f194e264b75d7a7c74e4ce"),
            (0x81, "fc5b6bbc855883bcfdaefb77071740ccde4929f15e6a13286584e779b2529d91"),
            (0x82, "4abb5ef58a968f8e1ab88a9fb72f2ce74b3022e65d334ac7b8aeda747515dc15"),
            (0x83, "79ff9ff708f79ce8f7a4f90d62028533a99d7340b7fb3d819dfd9a599a78e39c"),
        ],
    )
    def test_segwit_v0(self, sighash_type: int, expected: str) -> None:
        tx = Transaction.from_hex(BIP143_TX)
        script_code = create_p2wpkh_script_code(BIP143_PUBKEY_HASH)
        sighash = compute_sighash_segwit(tx, 1, script_code, 600_000_000, sighash_type)
        assert sighash.hex() == expected

    @pytest.mark.parametrize(
        "hash_type,expected",
        [
            (0x00, "29bd67729fe3590a015e8508de021c8a704c60150ac5351db86a423a163acde1"),
            (0x01, "e11074024dfc067613c5ced60e2a06a9d077a7e0f32be38b8706fa3a6a199abd"),
            (0x02, "e333ed59595b22d6a4c1b082f3ad0e91ba6ff440f7769fd9a78d6ad21a165a16"),
            (0x03, "1ca012532ab601f5c9a00e4e41db80de509e19432049e392639ef0eca826633a"),
            (0x81, "1bba87bf8dfff5458ee2a6d8b82e64be8690e948fec9526ee9d288aafc3cc746"),
            (0x82, "09727743d0a3d74c37b58be4653873fa010b3513465f5fa19fea9359b7edcf65"),
            (0x83, "2261972620ba4a71989a304a7f26cd4fdbd7cb02c23e48af7817fba03d0f85c6"),
        ],
    )
    def test_taproot_key_path(self, hash_type: int, expected: str) -> None:
        tx = Transaction.from_hex(BIP143_TX)
        sighash = compute_sighash_taproot(tx, 1, TAPROOT_SPENT, hash_type)
        assert sighash.hex() == expected

    def test_taproot_anyonecanpay_needs_only_own_output(self) -> None:
        tx = Transaction.from_hex(BIP143_TX)
        sighash = compute_sighash_taproot(tx, 1, [None, TAPROOT_SPENT[1]], OFFER_SIGHASH)
        assert sighash.hex() == "2261972620ba4a71989a304a7f26cd4fdbd7cb02c23e48af7817fba03d0f85c6"
