"""
Signature hashing and verification for single-key inputs.

Covers legacy (P2PKH), BIP143 segwit v0 (P2WPKH, P2SH-P2WPKH) and BIP341
taproot key-path spends, for every sighash type. Offer fragments rely on
SIGHASH_SINGLE|ANYONECANPAY so this module must reproduce those exactly.
"""

from __future__ import annotations

import hashlib
import struct

from coincurve import PrivateKey, PublicKey, PublicKeyXOnly
from runecore.constants import (
    SIGHASH_ALL,
    SIGHASH_ANYONECANPAY,
    SIGHASH_DEFAULT,
    SIGHASH_NONE,
    SIGHASH_SINGLE,
)
from runecore.models import AddressType

from runewallet.wallet.address import hash160, p2pkh_script, script_type, tagged_hash
from runewallet.wallet.psbt import Psbt, PsbtError
from runewallet.wallet.transaction import (
    Transaction,
    TxOut,
    encode_varint,
    hash256,
    serialize_outpoint,
    varslice,
)

TAPROOT_SIGHASH_TYPES = {0x00, 0x01, 0x02, 0x03, 0x81, 0x82, 0x83}


class TransactionSigningError(Exception):
    pass


def _base_type(sighash_type: int) -> int:
    return sighash_type & 0x1F


def _anyonecanpay(sighash_type: int) -> bool:
    return bool(sighash_type & SIGHASH_ANYONECANPAY)


def compute_sighash_legacy(
    tx: Transaction, input_index: int, script_code: bytes, sighash_type: int
) -> bytes:
    """Pre-segwit signature hash (P2PKH)."""
    if input_index >= len(tx.inputs):
        raise TransactionSigningError("Input index out of range")

    base = _base_type(sighash_type)
    if base == SIGHASH_SINGLE and input_index >= len(tx.outputs):
        # Consensus quirk: the "hash" is the number one
        return (1).to_bytes(32, "little")

    inputs = []
    for i, inp in enumerate(tx.inputs):
        script = script_code if i == input_index else b""
        sequence = inp.sequence
        if i != input_index and base in (SIGHASH_NONE, SIGHASH_SINGLE):
            sequence = 0
        inputs.append((inp.txid, inp.vout, script, sequence))
    if _anyonecanpay(sighash_type):
        inputs = [inputs[input_index]]

    if base == SIGHASH_NONE:
        outputs: list[TxOut] = []
    elif base == SIGHASH_SINGLE:
        outputs = [TxOut(0xFFFFFFFFFFFFFFFF, b"") for _ in range(input_index)]
        outputs.append(tx.outputs[input_index])
    else:
        outputs = tx.outputs

    preimage = struct.pack("<I", tx.version)
    preimage += encode_varint(len(inputs))
    for txid, vout, script, sequence in inputs:
        preimage += serialize_outpoint(txid, vout) + varslice(script) + struct.pack("<I", sequence)
    preimage += encode_varint(len(outputs))
    for out in outputs:
        preimage += out.serialize()
    preimage += struct.pack("<I", tx.locktime)
    preimage += struct.pack("<I", sighash_type)
    return hash256(preimage)


def compute_sighash_segwit(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    sighash_type: int,
) -> bytes:
    """BIP143 signature hash for segwit v0 inputs."""
    if input_index >= len(tx.inputs):
        raise TransactionSigningError("Input index out of range")

    base = _base_type(sighash_type)
    acp = _anyonecanpay(sighash_type)
    zero = bytes(32)

    hash_prevouts = zero
    if not acp:
        hash_prevouts = hash256(
            b"".join(serialize_outpoint(inp.txid, inp.vout) for inp in tx.inputs)
        )

    hash_sequence = zero
    if not acp and base not in (SIGHASH_SINGLE, SIGHASH_NONE):
        hash_sequence = hash256(b"".join(struct.pack("<I", inp.sequence) for inp in tx.inputs))

    hash_outputs = zero
    if base not in (SIGHASH_SINGLE, SIGHASH_NONE):
        hash_outputs = hash256(b"".join(out.serialize() for out in tx.outputs))
    elif base == SIGHASH_SINGLE and input_index < len(tx.outputs):
        hash_outputs = hash256(tx.outputs[input_index].serialize())

    target = tx.inputs[input_index]
    preimage = (
        struct.pack("<I", tx.version)
        + hash_prevouts
        + hash_sequence
        + serialize_outpoint(target.txid, target.vout)
        + varslice(script_code)
        + struct.pack("<Q", value)
        + struct.pack("<I", target.sequence)
        + hash_outputs
        + struct.pack("<I", tx.locktime)
        + struct.pack("<I", sighash_type)
    )
    return hash256(preimage)


def compute_sighash_taproot(
    tx: Transaction,
    input_index: int,
    spent_outputs: list[TxOut | None],
    hash_type: int,
) -> bytes:
    """BIP341 key-path signature hash.

    ``spent_outputs`` is indexed like ``tx.inputs``; under ANYONECANPAY only the
    entry at ``input_index`` is required.
    """
    if hash_type not in TAPROOT_SIGHASH_TYPES:
        raise TransactionSigningError(f"Invalid taproot sighash type: {hash_type:#x}")
    if input_index >= len(tx.inputs):
        raise TransactionSigningError("Input index out of range")

    output_type = SIGHASH_ALL if hash_type == SIGHASH_DEFAULT else hash_type & 0x03
    acp = _anyonecanpay(hash_type)

    msg = bytes([hash_type])
    msg += struct.pack("<I", tx.version)
    msg += struct.pack("<I", tx.locktime)

    if not acp:
        if any(out is None for out in spent_outputs) or len(spent_outputs) != len(tx.inputs):
            raise TransactionSigningError("All spent outputs are required")
        prevouts = [out for out in spent_outputs if out is not None]
        msg += hashlib.sha256(
            b"".join(serialize_outpoint(inp.txid, inp.vout) for inp in tx.inputs)
        ).digest()
        msg += hashlib.sha256(b"".join(struct.pack("<Q", out.value) for out in prevouts)).digest()
        msg += hashlib.sha256(b"".join(varslice(out.script) for out in prevouts)).digest()
        msg += hashlib.sha256(
            b"".join(struct.pack("<I", inp.sequence) for inp in tx.inputs)
        ).digest()

    if output_type == SIGHASH_ALL:
        msg += hashlib.sha256(b"".join(out.serialize() for out in tx.outputs)).digest()

    # Key path, no annex
    msg += bytes([0x00])

    if acp:
        target = tx.inputs[input_index]
        spent = spent_outputs[input_index]
        if spent is None:
            raise TransactionSigningError("Spent output of the signed input is required")
        msg += serialize_outpoint(target.txid, target.vout)
        msg += struct.pack("<Q", spent.value)
        msg += varslice(spent.script)
        msg += struct.pack("<I", target.sequence)
    else:
        msg += struct.pack("<I", input_index)

    if output_type == SIGHASH_SINGLE:
        if input_index >= len(tx.outputs):
            raise TransactionSigningError("SIGHASH_SINGLE without matching output")
        msg += hashlib.sha256(tx.outputs[input_index].serialize()).digest()

    return tagged_hash("TapSighash", b"\x00" + msg)


def create_p2wpkh_script_code(pubkey_hash: bytes) -> bytes:
    """BIP143 scriptCode for P2WPKH: the equivalent P2PKH script."""
    return p2pkh_script(pubkey_hash)


def verify_ecdsa(pubkey: bytes, der_sig: bytes, sighash: bytes) -> bool:
    try:
        return PublicKey(pubkey).verify(der_sig, sighash, hasher=None)
    except (ValueError, TypeError):
        return False


def verify_schnorr(xonly_pubkey: bytes, sig: bytes, msg: bytes) -> bool:
    try:
        return PublicKeyXOnly(xonly_pubkey).verify(sig, msg)
    except (ValueError, TypeError):
        return False


def _spent_outputs(psbt: Psbt) -> list[TxOut | None]:
    result: list[TxOut | None] = []
    for i in range(len(psbt.inputs)):
        try:
            result.append(psbt.spent_output(i))
        except PsbtError:
            result.append(None)
    return result


def _input_signature(psbt: Psbt, index: int, kind: AddressType) -> tuple[bytes, bytes] | None:
    """(pubkey, signature) for an ECDSA input, from partial sigs or final data."""
    inp = psbt.inputs[index]
    if inp.partial_sigs:
        if len(inp.partial_sigs) != 1:
            return None
        return next(iter(inp.partial_sigs.items()))
    if kind == AddressType.P2PKH and inp.final_script_sig:
        script_sig = inp.final_script_sig
        sig_len = script_sig[0]
        sig = script_sig[1 : 1 + sig_len]
        rest = script_sig[1 + sig_len :]
        if not rest:
            return None
        return rest[1 : 1 + rest[0]], sig
    if inp.final_script_witness and len(inp.final_script_witness) == 2:
        sig, pubkey = inp.final_script_witness
        return pubkey, sig
    return None


def verify_input_signature(
    psbt: Psbt,
    index: int,
    expected_sighash: int | None = None,
) -> tuple[bool, str]:
    """
    Verify the signature carried by input ``index`` of a PSBT.

    ECDSA for P2PKH / P2WPKH / P2SH-P2WPKH, Schnorr for P2TR. When
    ``expected_sighash`` is given, the signature's sighash byte must equal it
    (taproot SIGHASH_DEFAULT counts as 0x00).

    Returns:
        (is_valid, error_message)
    """
    try:
        spent = psbt.spent_output(index)
    except (PsbtError, IndexError) as e:
        return False, str(e)

    inp = psbt.inputs[index]
    kind = script_type(spent.script)

    try:
        if kind == AddressType.P2TR:
            sig = inp.tap_key_sig
            if sig is None and inp.final_script_witness:
                sig = inp.final_script_witness[0]
            if sig is None:
                return False, "No taproot signature"
            if len(sig) == 64:
                hash_type = SIGHASH_DEFAULT
            elif len(sig) == 65 and sig[64] != SIGHASH_DEFAULT:
                hash_type = sig[64]
            else:
                return False, f"Invalid schnorr signature length {len(sig)}"
            if expected_sighash is not None and hash_type != expected_sighash:
                return False, f"Unexpected sighash type {hash_type:#x}"
            msg = compute_sighash_taproot(psbt.tx, index, _spent_outputs(psbt), hash_type)
            if not verify_schnorr(spent.script[2:], sig[:64], msg):
                return False, "Invalid schnorr signature"
            return True, ""

        if kind not in (AddressType.P2WPKH, AddressType.P2SH, AddressType.P2PKH):
            return False, f"Unsupported input type {kind.value}"

        found = _input_signature(psbt, index, kind)
        if found is None:
            return False, "No signature"
        pubkey, sig = found
        if len(sig) < 9:
            return False, "Signature too short"
        sighash_type = sig[-1]
        if expected_sighash is not None and sighash_type != expected_sighash:
            return False, f"Unexpected sighash type {sighash_type:#x}"

        pubkey_hash = hash160(pubkey)
        if kind == AddressType.P2PKH:
            if spent.script[3:23] != pubkey_hash:
                return False, "Public key does not match script"
            sighash = compute_sighash_legacy(psbt.tx, index, spent.script, sighash_type)
        else:
            if kind == AddressType.P2SH:
                redeem = inp.redeem_script
                if redeem is None and inp.final_script_sig:
                    redeem = inp.final_script_sig[1:]
                if redeem is None or hash160(redeem) != spent.script[2:22]:
                    return False, "Redeem script does not match script"
                if script_type(redeem) != AddressType.P2WPKH:
                    return False, "Only P2SH-P2WPKH is supported"
                program = redeem[2:]
            else:
                program = spent.script[2:]
            if program != pubkey_hash:
                return False, "Public key does not match script"
            sighash = compute_sighash_segwit(
                psbt.tx, index, create_p2wpkh_script_code(pubkey_hash), spent.value, sighash_type
            )

        if not verify_ecdsa(pubkey, sig[:-1], sighash):
            return False, "Invalid ECDSA signature"
        return True, ""

    except TransactionSigningError as e:
        return False, str(e)


def sign_psbt_input(
    psbt: Psbt,
    index: int,
    private_key: PrivateKey,
    sighash_type: int | None = None,
) -> None:
    """Add a signature for input ``index`` using a local key.

    Taproot inputs are signed with the BIP86-tweaked key. Without an explicit
    type, ECDSA inputs use SIGHASH_ALL and taproot uses SIGHASH_DEFAULT.
    """
    spent = psbt.spent_output(index)
    kind = script_type(spent.script)
    inp = psbt.inputs[index]
    pubkey = private_key.public_key.format(compressed=True)

    if kind == AddressType.P2TR:
        hash_type = SIGHASH_DEFAULT if sighash_type is None else sighash_type
        tweaked = tweak_private_key(private_key)
        msg = compute_sighash_taproot(psbt.tx, index, _spent_outputs(psbt), hash_type)
        sig = tweaked.sign_schnorr(msg)
        inp.tap_key_sig = sig if hash_type == SIGHASH_DEFAULT else sig + bytes([hash_type])
        return

    hash_type = SIGHASH_ALL if sighash_type is None else sighash_type
    pubkey_hash = hash160(pubkey)
    if kind == AddressType.P2PKH:
        sighash = compute_sighash_legacy(psbt.tx, index, spent.script, hash_type)
    elif kind in (AddressType.P2WPKH, AddressType.P2SH):
        sighash = compute_sighash_segwit(
            psbt.tx, index, create_p2wpkh_script_code(pubkey_hash), spent.value, hash_type
        )
    else:
        raise TransactionSigningError(f"Cannot sign {kind.value} input")

    inp.partial_sigs[pubkey] = private_key.sign(sighash, hasher=None) + bytes([hash_type])


def tweak_private_key(private_key: PrivateKey) -> PrivateKey:
    """BIP86 key-path tweak (no script tree)."""
    n = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
    pubkey = private_key.public_key.format(compressed=True)
    secret = int.from_bytes(private_key.secret, "big")
    if pubkey[0] == 0x03:
        secret = n - secret
    tweak = int.from_bytes(tagged_hash("TapTweak", pubkey[1:]), "big")
    return PrivateKey(((secret + tweak) % n).to_bytes(32, "big"))
