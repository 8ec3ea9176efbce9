"""
Partially Signed Bitcoin Transactions (BIP174, with BIP371 taproot key-path fields).

Only the fields the marketplace reads or writes are decoded; every other
key/value pair is preserved verbatim so foreign PSBTs round-trip.
"""

from __future__ import annotations

import base64
import binascii
import struct
from dataclasses import dataclass, field

from runecore.constants import DEFAULT_SEQUENCE
from runecore.models import AccountKeys, AddressType

from runewallet.wallet.address import p2sh_p2wpkh_redeem_script, script_type, x_only
from runewallet.wallet.transaction import (
    Transaction,
    TransactionParseError,
    TxIn,
    TxOut,
    encode_varint,
    read_varint,
    varslice,
)

PSBT_MAGIC = b"psbt\xff"

# Global keys
PSBT_GLOBAL_UNSIGNED_TX = 0x00
PSBT_GLOBAL_VERSION = 0xFB

# Input keys
PSBT_IN_NON_WITNESS_UTXO = 0x00
PSBT_IN_WITNESS_UTXO = 0x01
PSBT_IN_PARTIAL_SIG = 0x02
PSBT_IN_SIGHASH_TYPE = 0x03
PSBT_IN_REDEEM_SCRIPT = 0x04
PSBT_IN_WITNESS_SCRIPT = 0x05
PSBT_IN_FINAL_SCRIPTSIG = 0x07
PSBT_IN_FINAL_SCRIPTWITNESS = 0x08
PSBT_IN_TAP_KEY_SIG = 0x13
PSBT_IN_TAP_INTERNAL_KEY = 0x17


class PsbtError(Exception):
    pass


def _read_map(data: bytes, offset: int) -> tuple[list[tuple[bytes, bytes]], int]:
    entries: list[tuple[bytes, bytes]] = []
    while True:
        key_len, offset = read_varint(data, offset)
        if key_len == 0:
            return entries, offset
        key = data[offset : offset + key_len]
        offset += key_len
        value_len, offset = read_varint(data, offset)
        value = data[offset : offset + value_len]
        if len(value) != value_len:
            raise PsbtError("Truncated PSBT value")
        offset += value_len
        entries.append((key, value))


def _write_map(entries: list[tuple[bytes, bytes]]) -> bytes:
    return b"".join(varslice(k) + varslice(v) for k, v in entries) + b"\x00"


def _push(data: bytes) -> bytes:
    if len(data) < 0x4C:
        return bytes([len(data)]) + data
    if len(data) <= 0xFF:
        return bytes([0x4C, len(data)]) + data
    return bytes([0x4D]) + len(data).to_bytes(2, "little") + data


def parse_witness(data: bytes) -> list[bytes]:
    count, offset = read_varint(data, 0)
    stack = []
    for _ in range(count):
        item_len, offset = read_varint(data, offset)
        stack.append(data[offset : offset + item_len])
        offset += item_len
    return stack


def serialize_witness_stack(stack: list[bytes]) -> bytes:
    return encode_varint(len(stack)) + b"".join(varslice(item) for item in stack)


@dataclass
class PsbtInput:
    non_witness_utxo: Transaction | None = None
    witness_utxo: TxOut | None = None
    partial_sigs: dict[bytes, bytes] = field(default_factory=dict)
    sighash_type: int | None = None
    redeem_script: bytes | None = None
    witness_script: bytes | None = None
    final_script_sig: bytes | None = None
    final_script_witness: list[bytes] | None = None
    tap_key_sig: bytes | None = None
    tap_internal_key: bytes | None = None
    unknown: list[tuple[bytes, bytes]] = field(default_factory=list)

    @property
    def is_finalized(self) -> bool:
        return self.final_script_sig is not None or self.final_script_witness is not None

    @classmethod
    def from_entries(cls, entries: list[tuple[bytes, bytes]]) -> PsbtInput:
        inp = cls()
        for key, value in entries:
            key_type = key[0]
            if key_type == PSBT_IN_NON_WITNESS_UTXO and len(key) == 1:
                inp.non_witness_utxo = Transaction.parse(value)
            elif key_type == PSBT_IN_WITNESS_UTXO and len(key) == 1:
                inp.witness_utxo, _ = TxOut.parse(value)
            elif key_type == PSBT_IN_PARTIAL_SIG and len(key) in (34, 66):
                inp.partial_sigs[key[1:]] = value
            elif key_type == PSBT_IN_SIGHASH_TYPE and len(key) == 1:
                inp.sighash_type = struct.unpack("<I", value)[0]
            elif key_type == PSBT_IN_REDEEM_SCRIPT and len(key) == 1:
                inp.redeem_script = value
            elif key_type == PSBT_IN_WITNESS_SCRIPT and len(key) == 1:
                inp.witness_script = value
            elif key_type == PSBT_IN_FINAL_SCRIPTSIG and len(key) == 1:
                inp.final_script_sig = value
            elif key_type == PSBT_IN_FINAL_SCRIPTWITNESS and len(key) == 1:
                inp.final_script_witness = parse_witness(value)
            elif key_type == PSBT_IN_TAP_KEY_SIG and len(key) == 1:
                inp.tap_key_sig = value
            elif key_type == PSBT_IN_TAP_INTERNAL_KEY and len(key) == 1:
                inp.tap_internal_key = value
            else:
                inp.unknown.append((key, value))
        return inp

    def to_entries(self) -> list[tuple[bytes, bytes]]:
        entries: list[tuple[bytes, bytes]] = []
        if self.non_witness_utxo is not None:
            entries.append(
                (bytes([PSBT_IN_NON_WITNESS_UTXO]), self.non_witness_utxo.serialize())
            )
        if self.witness_utxo is not None:
            entries.append((bytes([PSBT_IN_WITNESS_UTXO]), self.witness_utxo.serialize()))
        for pubkey, sig in self.partial_sigs.items():
            entries.append((bytes([PSBT_IN_PARTIAL_SIG]) + pubkey, sig))
        if self.sighash_type is not None:
            entries.append((bytes([PSBT_IN_SIGHASH_TYPE]), struct.pack("<I", self.sighash_type)))
        if self.redeem_script is not None:
            entries.append((bytes([PSBT_IN_REDEEM_SCRIPT]), self.redeem_script))
        if self.witness_script is not None:
            entries.append((bytes([PSBT_IN_WITNESS_SCRIPT]), self.witness_script))
        if self.final_script_sig is not None:
            entries.append((bytes([PSBT_IN_FINAL_SCRIPTSIG]), self.final_script_sig))
        if self.final_script_witness is not None:
            entries.append(
                (
                    bytes([PSBT_IN_FINAL_SCRIPTWITNESS]),
                    serialize_witness_stack(self.final_script_witness),
                )
            )
        if self.tap_key_sig is not None:
            entries.append((bytes([PSBT_IN_TAP_KEY_SIG]), self.tap_key_sig))
        if self.tap_internal_key is not None:
            entries.append((bytes([PSBT_IN_TAP_INTERNAL_KEY]), self.tap_internal_key))
        entries.extend(self.unknown)
        return entries


def account_input(
    account: AccountKeys, value: int, sighash_type: int | None = None
) -> PsbtInput:
    """Input spending an output of ``account``, with the fields its signer needs."""
    inp = PsbtInput(witness_utxo=TxOut(value, account.script), sighash_type=sighash_type)
    pubkey = bytes.fromhex(account.pubkey)
    if account.address_type == AddressType.P2SH:
        inp.redeem_script = p2sh_p2wpkh_redeem_script(pubkey)
    elif account.address_type == AddressType.P2TR:
        inp.tap_internal_key = x_only(pubkey)
    return inp


@dataclass
class PsbtOutput:
    unknown: list[tuple[bytes, bytes]] = field(default_factory=list)


@dataclass
class Psbt:
    tx: Transaction = field(default_factory=Transaction)
    inputs: list[PsbtInput] = field(default_factory=list)
    outputs: list[PsbtOutput] = field(default_factory=list)
    version: int | None = None
    unknown: list[tuple[bytes, bytes]] = field(default_factory=list)

    @classmethod
    def from_bytes(cls, data: bytes) -> Psbt:
        if not data.startswith(PSBT_MAGIC):
            raise PsbtError("Missing PSBT magic")
        try:
            offset = len(PSBT_MAGIC)
            global_entries, offset = _read_map(data, offset)

            tx: Transaction | None = None
            version = None
            unknown = []
            for key, value in global_entries:
                if key == bytes([PSBT_GLOBAL_UNSIGNED_TX]):
                    tx = Transaction.parse(value, allow_empty_inputs=True)
                elif key == bytes([PSBT_GLOBAL_VERSION]):
                    version = struct.unpack("<I", value)[0]
                else:
                    unknown.append((key, value))
            if tx is None:
                raise PsbtError("PSBT has no unsigned transaction")
            if any(inp.script_sig or inp.witness for inp in tx.inputs):
                raise PsbtError("Unsigned transaction carries signatures")

            inputs = []
            for _ in tx.inputs:
                entries, offset = _read_map(data, offset)
                inputs.append(PsbtInput.from_entries(entries))
            outputs = []
            for _ in tx.outputs:
                entries, offset = _read_map(data, offset)
                outputs.append(PsbtOutput(entries))
        except (IndexError, struct.error, TransactionParseError) as e:
            raise PsbtError(f"Failed to parse PSBT: {e}") from e

        return cls(tx, inputs, outputs, version, unknown)

    @classmethod
    def from_hex(cls, psbt_hex: str) -> Psbt:
        try:
            data = bytes.fromhex(psbt_hex)
        except ValueError as e:
            raise PsbtError(f"Invalid PSBT hex: {e}") from e
        return cls.from_bytes(data)

    @classmethod
    def from_base64(cls, psbt_b64: str) -> Psbt:
        try:
            return cls.from_bytes(base64.b64decode(psbt_b64, validate=True))
        except binascii.Error as e:
            raise PsbtError(f"Invalid PSBT base64: {e}") from e

    @classmethod
    def parse(cls, text: str) -> Psbt:
        """Accept either hex or base64 encoding."""
        text = text.strip()
        if text.startswith("70736274ff"):
            return cls.from_hex(text)
        return cls.from_base64(text)

    def serialize(self) -> bytes:
        global_entries = [(bytes([PSBT_GLOBAL_UNSIGNED_TX]), self.tx.serialize(False))]
        if self.version is not None:
            global_entries.append((bytes([PSBT_GLOBAL_VERSION]), struct.pack("<I", self.version)))
        global_entries.extend(self.unknown)

        result = PSBT_MAGIC + _write_map(global_entries)
        for inp in self.inputs:
            result += _write_map(inp.to_entries())
        for out in self.outputs:
            result += _write_map(out.unknown)
        return result

    def to_hex(self) -> str:
        return self.serialize().hex()

    def to_base64(self) -> str:
        return base64.b64encode(self.serialize()).decode()

    def copy(self) -> Psbt:
        return Psbt.from_bytes(self.serialize())

    def add_input(
        self,
        txid: str,
        vout: int,
        psbt_input: PsbtInput | None = None,
        sequence: int = DEFAULT_SEQUENCE,
    ) -> int:
        self.tx.inputs.append(TxIn(txid, vout, sequence=sequence))
        self.inputs.append(psbt_input or PsbtInput())
        return len(self.inputs) - 1

    def add_output(self, value: int, script: bytes) -> int:
        self.tx.outputs.append(TxOut(value, script))
        self.outputs.append(PsbtOutput())
        return len(self.outputs) - 1

    def spent_output(self, index: int) -> TxOut:
        """The output being spent by input ``index``."""
        inp = self.inputs[index]
        if inp.witness_utxo is not None:
            return inp.witness_utxo
        if inp.non_witness_utxo is not None:
            prevout = self.tx.inputs[index]
            if inp.non_witness_utxo.txid != prevout.txid:
                raise PsbtError(f"Input {index}: non-witness UTXO does not match outpoint")
            return inp.non_witness_utxo.outputs[prevout.vout]
        raise PsbtError(f"Input {index}: no UTXO information")

    @property
    def fee(self) -> int:
        total_in = sum(self.spent_output(i).value for i in range(len(self.inputs)))
        total_out = sum(out.value for out in self.tx.outputs)
        return total_in - total_out

    def finalize_input(self, index: int) -> None:
        """Build the final scriptSig/witness from the collected signature.

        Single-key spends only: P2WPKH, P2SH-P2WPKH, P2PKH and P2TR key path.
        """
        inp = self.inputs[index]
        if inp.is_finalized:
            return
        kind = script_type(self.spent_output(index).script)

        if kind == AddressType.P2TR:
            if inp.tap_key_sig is None:
                raise PsbtError(f"Input {index}: missing taproot key signature")
            inp.final_script_witness = [inp.tap_key_sig]
        elif kind in (AddressType.P2WPKH, AddressType.P2SH, AddressType.P2PKH):
            if len(inp.partial_sigs) != 1:
                raise PsbtError(f"Input {index}: expected exactly one partial signature")
            pubkey, sig = next(iter(inp.partial_sigs.items()))
            if kind == AddressType.P2PKH:
                inp.final_script_sig = _push(sig) + _push(pubkey)
            else:
                if kind == AddressType.P2SH:
                    if inp.redeem_script is None:
                        raise PsbtError(f"Input {index}: missing redeem script")
                    inp.final_script_sig = _push(inp.redeem_script)
                inp.final_script_witness = [sig, pubkey]
        else:
            raise PsbtError(f"Input {index}: cannot finalize {kind.value} spend")

        inp.partial_sigs = {}
        inp.sighash_type = None
        inp.redeem_script = None
        inp.witness_script = None
        inp.tap_key_sig = None
        inp.tap_internal_key = None

    def finalize(self) -> None:
        for i in range(len(self.inputs)):
            self.finalize_input(i)

    def extract_transaction(self) -> Transaction:
        """Produce the network transaction; every input must be finalized."""
        tx = Transaction(version=self.tx.version, locktime=self.tx.locktime)
        for i, (txin, inp) in enumerate(zip(self.tx.inputs, self.inputs, strict=True)):
            if not inp.is_finalized:
                raise PsbtError(f"Input {i} is not finalized")
            tx.inputs.append(
                TxIn(
                    txin.txid,
                    txin.vout,
                    inp.final_script_sig or b"",
                    txin.sequence,
                    list(inp.final_script_witness or []),
                )
            )
        tx.outputs = [TxOut(out.value, out.script) for out in self.tx.outputs]
        return tx
