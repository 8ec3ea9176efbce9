"""
Message signature verification.

- Legacy "Bitcoin Signed Message" compact signatures (65 bytes, recoverable)
- BIP322 "simple" signatures (a serialized witness stack), used by taproot wallets
"""

from __future__ import annotations

import base64
import binascii
import hashlib

from coincurve import PublicKey
from loguru import logger
from runecore.models import AddressType

from runewallet.wallet.address import (
    address_to_scriptpubkey,
    hash160,
    p2pkh_script,
    p2sh_script,
    p2wpkh_script,
    script_type,
    tagged_hash,
)
from runewallet.wallet.psbt import Psbt, PsbtInput, parse_witness
from runewallet.wallet.signing import verify_input_signature
from runewallet.wallet.transaction import Transaction, TxIn, TxOut, encode_varint


def bitcoin_message_hash(message: str) -> bytes:
    """
    Hash a message using Bitcoin's message signing format.

    Format: SHA256(SHA256("\\x18Bitcoin Signed Message:\\n" + varint(len) + message))
    """
    prefix = b"\x18Bitcoin Signed Message:\n"
    msg_bytes = message.encode("utf-8")
    full_msg = prefix + encode_varint(len(msg_bytes)) + msg_bytes
    return hashlib.sha256(hashlib.sha256(full_msg).digest()).digest()


def bip322_message_hash(message: str) -> bytes:
    return tagged_hash("BIP0322-signed-message", message.encode("utf-8"))


def bip322_to_spend(script_pubkey: bytes, message: str) -> Transaction:
    """Virtual transaction committing to the message and the signer's script."""
    script_sig = bytes([0x00, 0x20]) + bip322_message_hash(message)
    return Transaction(
        inputs=[TxIn("00" * 32, 0xFFFFFFFF, script_sig, 0)],
        outputs=[TxOut(0, script_pubkey)],
        version=0,
        locktime=0,
    )


def bip322_to_sign(to_spend: Transaction) -> Transaction:
    """Virtual transaction spending ``to_spend`` into an OP_RETURN."""
    return Transaction(
        inputs=[TxIn(to_spend.txid, 0, b"", 0)],
        outputs=[TxOut(0, bytes([0x6A]))],
        version=0,
        locktime=0,
    )


def verify_bip322_simple(address: str, message: str, signature_b64: str) -> bool:
    try:
        script_pubkey = address_to_scriptpubkey(address)
        witness = parse_witness(base64.b64decode(signature_b64, validate=True))
    except (ValueError, IndexError) as e:
        logger.debug(f"Malformed BIP322 signature for {address}: {e}")
        return False

    if script_type(script_pubkey) not in (AddressType.P2TR, AddressType.P2WPKH):
        return False

    to_spend = bip322_to_spend(script_pubkey, message)
    psbt = Psbt(tx=bip322_to_sign(to_spend))
    psbt.inputs.append(
        PsbtInput(witness_utxo=TxOut(0, script_pubkey), final_script_witness=witness)
    )
    valid, error = verify_input_signature(psbt, 0)
    if not valid:
        logger.debug(f"BIP322 verification failed for {address}: {error}")
    return valid


def recover_message_pubkey(message: str, signature_b64: str) -> tuple[bytes, bool] | None:
    """Recover (pubkey, compressed) from a compact signed-message signature."""
    try:
        sig = base64.b64decode(signature_b64, validate=True)
    except binascii.Error:
        return None
    if len(sig) != 65 or not 27 <= sig[0] <= 42:
        return None

    header = sig[0]
    recid = (header - 27) & 3
    compressed = header >= 31
    try:
        pubkey = PublicKey.from_signature_and_message(
            sig[1:] + bytes([recid]), bitcoin_message_hash(message), hasher=None
        )
    except ValueError:
        return None
    return pubkey.format(compressed=compressed), compressed


def verify_signed_message(
    address: str, message: str, signature_b64: str, pubkey_hex: str | None = None
) -> bool:
    """Verify a legacy compact signature against an address (and optional pubkey)."""
    recovered = recover_message_pubkey(message, signature_b64)
    if recovered is None:
        return False
    pubkey, compressed = recovered

    if pubkey_hex is not None:
        try:
            expected = PublicKey(bytes.fromhex(pubkey_hex)).format(compressed=compressed)
        except ValueError:
            return False
        if expected != pubkey:
            return False

    try:
        script_pubkey = address_to_scriptpubkey(address)
    except ValueError:
        return False

    candidates = {p2pkh_script(hash160(pubkey))}
    if compressed:
        candidates.add(p2wpkh_script(pubkey))
        candidates.add(p2sh_script(p2wpkh_script(pubkey)))
    return script_pubkey in candidates


def verify_message(
    address: str, message: str, signature_b64: str, pubkey_hex: str | None = None
) -> bool:
    """Verify a wallet message signature, picking the scheme from the address type."""
    try:
        kind = script_type(address_to_scriptpubkey(address))
    except ValueError:
        return False

    if kind == AddressType.P2TR:
        return verify_bip322_simple(address, message, signature_b64)
    if verify_signed_message(address, message, signature_b64, pubkey_hex):
        return True
    if kind == AddressType.P2WPKH:
        return verify_bip322_simple(address, message, signature_b64)
    return False
