"""
Runestone encoding.

Serializes rune transfer instructions (edicts) plus optional etching, mint and
pointer fields into the OP_RETURN output script understood by rune indexers:

    OP_RETURN OP_13 <payload push(es)>

Integers are unsigned LEB128. Fields are (tag, value) pairs; the edict list
follows the Body tag, each edict being four varints with the rune id
delta-encoded against the previous edict. Decoding is not supported.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

from runecore.constants import MAX_SCRIPT_ELEMENT_SIZE
from runecore.errors import ValidationError

OP_RETURN = 0x6A
OP_13 = 0x5D
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D

MAX_U128 = (1 << 128) - 1
MAX_DIVISIBILITY = 38
SPACER_CHARS = ("•", ".")


class Tag(IntEnum):
    BODY = 0
    DIVISIBILITY = 1
    FLAGS = 2
    SPACERS = 3
    RUNE = 4
    SYMBOL = 5
    PREMINE = 6
    CAP = 8
    AMOUNT = 10
    HEIGHT_START = 12
    HEIGHT_END = 14
    OFFSET_START = 16
    OFFSET_END = 18
    MINT = 20
    POINTER = 22
    CENOTAPH = 126
    NOP = 127


class Flag(IntEnum):
    ETCHING = 0
    TERMS = 1
    TURBO = 2
    CENOTAPH = 127

    @property
    def mask(self) -> int:
        return 1 << self.value


def encode_varint(n: int) -> bytes:
    """Encode an unsigned integer as LEB128."""
    if n < 0:
        raise ValueError(f"Cannot encode negative varint: {n}")
    out = bytearray()
    while n >> 7:
        out.append((n & 0x7F) | 0x80)
        n >>= 7
    out.append(n)
    return bytes(out)


def encode_rune_name(name: str) -> int:
    """Convert a rune name (A-Z, spacers ignored) into its integer value.

    Names use bijective base-26: A=0, Z=25, AA=26, ...
    """
    letters = [c for c in name if c not in SPACER_CHARS]
    if not letters:
        raise ValidationError(f"Empty rune name: {name!r}")

    value = 0
    for i, c in enumerate(letters):
        if not "A" <= c <= "Z":
            raise ValidationError(f"Invalid character {c!r} in rune name {name!r}")
        if i > 0:
            value += 1
        value = value * 26 + (ord(c) - ord("A"))
        if value > MAX_U128:
            raise ValidationError(f"Rune name too long: {name!r}")
    return value


def decode_rune_name(value: int) -> str:
    """Inverse of encode_rune_name."""
    if value < 0:
        raise ValueError("Rune value must be non-negative")
    n = value + 1
    chars = []
    while n > 0:
        chars.append(chr(ord("A") + (n - 1) % 26))
        n = (n - 1) // 26
    return "".join(reversed(chars))


def encode_spacers(spaced_name: str) -> int:
    """Spacer bitfield for a spaced rune name such as ``UNCOMMON•GOODS``.

    Bit i is set when a spacer follows the (i+1)-th letter.
    """
    spacers = 0
    letters = 0
    previous_spacer = False
    for c in spaced_name:
        if c in SPACER_CHARS:
            if letters == 0 or previous_spacer:
                raise ValidationError(f"Misplaced spacer in {spaced_name!r}")
            spacers |= 1 << (letters - 1)
            previous_spacer = True
        else:
            letters += 1
            previous_spacer = False
    if previous_spacer:
        raise ValidationError(f"Trailing spacer in {spaced_name!r}")
    return spacers


@dataclass(frozen=True, order=True)
class RuneId:
    """Rune identifier: etching block height and transaction index."""

    block: int
    tx: int

    @classmethod
    def parse(cls, value: str) -> RuneId:
        try:
            block_str, tx_str = value.split(":")
            rune_id = cls(int(block_str), int(tx_str))
        except ValueError as e:
            raise ValidationError(f"Invalid rune id: {value!r}") from e
        rune_id.validate()
        return rune_id

    def validate(self) -> None:
        if self.block < 0 or self.tx < 0:
            raise ValidationError(f"Invalid rune id: {self}")
        if self.block == 0 and self.tx != 0:
            raise ValidationError(f"Invalid rune id: {self}")
        if self.block > 0xFFFFFFFFFFFFFFFF or self.tx > 0xFFFFFFFF:
            raise ValidationError(f"Rune id out of range: {self}")

    def delta(self, previous: RuneId) -> tuple[int, int]:
        """Delta against the previous edict's id.

        tx is relative only while the block is unchanged; after a block step
        it is absolute.
        """
        block_delta = self.block - previous.block
        if block_delta < 0 or (block_delta == 0 and self.tx < previous.tx):
            raise ValidationError(f"Rune ids not sorted: {previous} then {self}")
        tx_delta = self.tx - previous.tx if block_delta == 0 else self.tx
        return block_delta, tx_delta

    def __str__(self) -> str:
        return f"{self.block}:{self.tx}"


@dataclass
class Edict:
    rune_id: RuneId
    amount: int
    output: int


@dataclass
class Terms:
    amount: int | None = None
    cap: int | None = None
    height: tuple[int | None, int | None] = (None, None)
    offset: tuple[int | None, int | None] = (None, None)


@dataclass
class Etching:
    divisibility: int | None = None
    premine: int | None = None
    rune: str | None = None
    spacers: int | None = None
    symbol: str | None = None
    terms: Terms | None = None
    turbo: bool = False

    @classmethod
    def from_spaced_name(cls, spaced_name: str, **kwargs) -> Etching:
        return cls(rune=spaced_name, spacers=encode_spacers(spaced_name) or None, **kwargs)


@dataclass
class Runestone:
    edicts: list[Edict] = field(default_factory=list)
    etching: Etching | None = None
    mint: RuneId | None = None
    pointer: int | None = None

    def validate(self, output_count: int | None = None) -> None:
        """Reject instructions indexers would treat as a cenotaph.

        An edict output equal to ``output_count`` is the split-to-all form and
        allowed; anything above it is not.
        """
        for edict in self.edicts:
            edict.rune_id.validate()
            if edict.amount < 0 or edict.amount > MAX_U128:
                raise ValidationError(f"Edict amount out of range: {edict.amount}")
            if edict.output < 0:
                raise ValidationError(f"Negative edict output: {edict.output}")
            if output_count is not None and edict.output > output_count:
                raise ValidationError(
                    f"Edict output {edict.output} exceeds output count {output_count}"
                )
        if self.pointer is not None:
            if self.pointer < 0:
                raise ValidationError(f"Negative pointer: {self.pointer}")
            if output_count is not None and self.pointer >= output_count:
                raise ValidationError(
                    f"Pointer {self.pointer} exceeds output count {output_count}"
                )
        if self.mint is not None:
            self.mint.validate()
        if self.etching is not None:
            etching = self.etching
            if etching.divisibility is not None and etching.divisibility > MAX_DIVISIBILITY:
                raise ValidationError(f"Divisibility too large: {etching.divisibility}")
            if etching.symbol is not None and len(etching.symbol) != 1:
                raise ValidationError(f"Symbol must be one character: {etching.symbol!r}")

    def payload(self) -> bytes:
        """Serialize fields and edicts without the script wrapper."""
        out = bytearray()

        def put(tag: Tag, value: int | None) -> None:
            if value is not None:
                out.extend(encode_varint(tag))
                out.extend(encode_varint(value))

        if self.etching is not None:
            etching = self.etching
            flags = Flag.ETCHING.mask
            if etching.terms is not None:
                flags |= Flag.TERMS.mask
            if etching.turbo:
                flags |= Flag.TURBO.mask
            put(Tag.FLAGS, flags)
            put(Tag.RUNE, encode_rune_name(etching.rune) if etching.rune else None)
            put(Tag.DIVISIBILITY, etching.divisibility)
            put(Tag.SPACERS, etching.spacers)
            put(Tag.SYMBOL, ord(etching.symbol) if etching.symbol else None)
            put(Tag.PREMINE, etching.premine)
            if etching.terms is not None:
                terms = etching.terms
                put(Tag.AMOUNT, terms.amount)
                put(Tag.CAP, terms.cap)
                put(Tag.HEIGHT_START, terms.height[0])
                put(Tag.HEIGHT_END, terms.height[1])
                put(Tag.OFFSET_START, terms.offset[0])
                put(Tag.OFFSET_END, terms.offset[1])

        if self.mint is not None:
            put(Tag.MINT, self.mint.block)
            put(Tag.MINT, self.mint.tx)

        put(Tag.POINTER, self.pointer)

        if self.edicts:
            out.extend(encode_varint(Tag.BODY))
            previous = RuneId(0, 0)
            for edict in sorted(self.edicts, key=lambda e: e.rune_id):
                block_delta, tx_delta = edict.rune_id.delta(previous)
                out.extend(encode_varint(block_delta))
                out.extend(encode_varint(tx_delta))
                out.extend(encode_varint(edict.amount))
                out.extend(encode_varint(edict.output))
                previous = edict.rune_id

        return bytes(out)

    def encipher(self, output_count: int | None = None) -> bytes:
        """Build the full OP_RETURN output script."""
        self.validate(output_count)
        payload = self.payload()
        script = bytearray([OP_RETURN, OP_13])
        for i in range(0, len(payload), MAX_SCRIPT_ELEMENT_SIZE):
            script.extend(push_data(payload[i : i + MAX_SCRIPT_ELEMENT_SIZE]))
        return bytes(script)


def push_data(data: bytes) -> bytes:
    """Minimal script push for data up to 520 bytes."""
    n = len(data)
    if n <= 75:
        return bytes([n]) + data
    if n <= 0xFF:
        return bytes([OP_PUSHDATA1, n]) + data
    if n <= MAX_SCRIPT_ELEMENT_SIZE:
        return bytes([OP_PUSHDATA2]) + n.to_bytes(2, "little") + data
    raise ValueError(f"Push too large: {n} bytes")


def encode_runestone(
    edicts: list[Edict],
    pointer: int | None = None,
    mint: RuneId | None = None,
    etching: Etching | None = None,
    output_count: int | None = None,
) -> bytes:
    """Convenience wrapper returning the OP_RETURN script for a transfer."""
    runestone = Runestone(edicts=list(edicts), etching=etching, mint=mint, pointer=pointer)
    return runestone.encipher(output_count)
