"""
Bitcoin transaction serialization and parsing.
"""

from __future__ import annotations

import hashlib
import math
import struct
from dataclasses import dataclass, field

from runecore.constants import DEFAULT_SEQUENCE, TX_LOCKTIME, TX_VERSION


class TransactionParseError(Exception):
    pass


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def encode_varint(value: int) -> bytes:
    """Encode integer as Bitcoin CompactSize."""
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        return int.from_bytes(data[offset : offset + 2], "little"), offset + 2
    if first == 0xFE:
        return int.from_bytes(data[offset : offset + 4], "little"), offset + 4
    return int.from_bytes(data[offset : offset + 8], "little"), offset + 8


def varslice(data: bytes) -> bytes:
    return encode_varint(len(data)) + data


def serialize_outpoint(txid: str, vout: int) -> bytes:
    """Serialize outpoint (txid:vout)."""
    # txid is in RPC format (big-endian), reversed for raw tx
    return bytes.fromhex(txid)[::-1] + struct.pack("<I", vout)


def serialize_witness(stack: list[bytes]) -> bytes:
    return encode_varint(len(stack)) + b"".join(varslice(item) for item in stack)


@dataclass
class TxIn:
    txid: str
    vout: int
    script_sig: bytes = b""
    sequence: int = DEFAULT_SEQUENCE
    witness: list[bytes] = field(default_factory=list)

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"

    def serialize(self) -> bytes:
        return (
            serialize_outpoint(self.txid, self.vout)
            + varslice(self.script_sig)
            + struct.pack("<I", self.sequence)
        )


@dataclass
class TxOut:
    value: int
    script: bytes

    def serialize(self) -> bytes:
        return struct.pack("<Q", self.value) + varslice(self.script)

    @classmethod
    def parse(cls, data: bytes, offset: int = 0) -> tuple[TxOut, int]:
        value = struct.unpack("<Q", data[offset : offset + 8])[0]
        offset += 8
        script_len, offset = read_varint(data, offset)
        script = data[offset : offset + script_len]
        if len(script) != script_len:
            raise TransactionParseError("Truncated output script")
        return cls(value, script), offset + script_len


@dataclass
class Transaction:
    inputs: list[TxIn] = field(default_factory=list)
    outputs: list[TxOut] = field(default_factory=list)
    version: int = TX_VERSION
    locktime: int = TX_LOCKTIME

    @property
    def has_witness(self) -> bool:
        return any(inp.witness for inp in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        with_witness = include_witness and self.has_witness
        result = struct.pack("<I", self.version)
        if with_witness:
            result += bytes([0x00, 0x01])
        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.serialize()
        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize()
        if with_witness:
            for inp in self.inputs:
                result += serialize_witness(inp.witness)
        result += struct.pack("<I", self.locktime)
        return result

    def to_hex(self) -> str:
        return self.serialize().hex()

    @property
    def txid(self) -> str:
        return hash256(self.serialize(include_witness=False))[::-1].hex()

    @property
    def weight(self) -> int:
        base = len(self.serialize(include_witness=False))
        total = len(self.serialize())
        return base * 3 + total

    @property
    def vsize(self) -> int:
        return math.ceil(self.weight / 4)

    @classmethod
    def from_hex(cls, tx_hex: str) -> Transaction:
        try:
            data = bytes.fromhex(tx_hex)
        except ValueError as e:
            raise TransactionParseError(f"Invalid transaction hex: {e}") from e
        return cls.parse(data)

    @classmethod
    def parse(cls, data: bytes, allow_empty_inputs: bool = False) -> Transaction:
        """Parse a raw transaction.

        The unsigned transaction inside a PSBT may have no inputs, which is
        ambiguous with the segwit marker; ``allow_empty_inputs`` resolves it.
        """
        try:
            offset = 0
            version = struct.unpack("<I", data[offset : offset + 4])[0]
            offset += 4

            has_witness = False
            if not allow_empty_inputs and data[offset] == 0x00 and data[offset + 1] == 0x01:
                has_witness = True
                offset += 2

            input_count, offset = read_varint(data, offset)
            inputs: list[TxIn] = []
            for _ in range(input_count):
                txid = data[offset : offset + 32][::-1].hex()
                offset += 32
                vout = struct.unpack("<I", data[offset : offset + 4])[0]
                offset += 4
                script_len, offset = read_varint(data, offset)
                script_sig = data[offset : offset + script_len]
                offset += script_len
                sequence = struct.unpack("<I", data[offset : offset + 4])[0]
                offset += 4
                inputs.append(TxIn(txid, vout, script_sig, sequence))

            output_count, offset = read_varint(data, offset)
            outputs: list[TxOut] = []
            for _ in range(output_count):
                out, offset = TxOut.parse(data, offset)
                outputs.append(out)

            if has_witness:
                for inp in inputs:
                    stack_count, offset = read_varint(data, offset)
                    for _ in range(stack_count):
                        item_len, offset = read_varint(data, offset)
                        inp.witness.append(data[offset : offset + item_len])
                        offset += item_len

            locktime = struct.unpack("<I", data[offset : offset + 4])[0]
            offset += 4
        except (IndexError, struct.error) as e:
            raise TransactionParseError(f"Failed to parse transaction: {e}") from e

        if offset != len(data):
            raise TransactionParseError(f"Trailing data after transaction ({len(data) - offset})")

        return cls(inputs, outputs, version, locktime)
