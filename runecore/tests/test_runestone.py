"""
Tests for Runestone encoding.
"""

import pytest

from runecore.errors import ValidationError
from runecore.runestone import (
    Edict,
    Etching,
    Flag,
    RuneId,
    Runestone,
    Tag,
    Terms,
    decode_rune_name,
    encode_rune_name,
    encode_runestone,
    encode_spacers,
    encode_varint,
    push_data,
)


def varints(*values: int) -> bytes:
    return b"".join(encode_varint(v) for v in values)


class TestVarint:
    """LEB128 encoding."""

    def test_small_values(self) -> None:
        assert encode_varint(0) == b"\x00"
        assert encode_varint(1) == b"\x01"
        assert encode_varint(127) == b"\x7f"

    def test_multi_byte_values(self) -> None:
        assert encode_varint(128) == b"\x80\x01"
        assert encode_varint(300) == b"\xac\x02"
        assert encode_varint(840000) == b"\xc0\xa2\x33"

    def test_u128_max(self) -> None:
        encoded = encode_varint((1 << 128) - 1)
        assert len(encoded) == 19
        assert encoded[-1] == 0x03

    def test_negative_rejected(self) -> None:
        with pytest.raises(ValueError):
            encode_varint(-1)


class TestRuneNames:
    """Rune name and spacer helpers."""

    @pytest.mark.parametrize(
        "name,value",
        [("A", 0), ("Z", 25), ("AA", 26), ("AZ", 51), ("BA", 52), ("AAA", 702)],
    )
    def test_encode_rune_name(self, name: str, value: int) -> None:
        assert encode_rune_name(name) == value
        assert decode_rune_name(value) == name

    def test_spacers_ignored_in_name(self) -> None:
        assert encode_rune_name("UNCOMMON•GOODS") == encode_rune_name("UNCOMMONGOODS")

    def test_invalid_characters(self) -> None:
        with pytest.raises(ValidationError):
            encode_rune_name("abc")
        with pytest.raises(ValidationError):
            encode_rune_name("")

    def test_spacers_bitfield(self) -> None:
        assert encode_spacers("UNCOMMON•GOODS") == 1 << 7
        assert encode_spacers("A.B.C") == 0b11
        assert encode_spacers("ABC") == 0

    def test_misplaced_spacers(self) -> None:
        for name in ("•ABC", "AB••C", "ABC•"):
            with pytest.raises(ValidationError):
                encode_spacers(name)

    def test_flag_masks(self) -> None:
        assert Flag.ETCHING.mask == 1
        assert Flag.TERMS.mask == 2
        assert Flag.TURBO.mask == 4


class TestRuneId:
    """RuneId parsing and delta encoding."""

    def test_parse_and_str(self) -> None:
        rune_id = RuneId.parse("840000:3")
        assert rune_id == RuneId(840000, 3)
        assert str(rune_id) == "840000:3"

    def test_block_zero_with_tx_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RuneId.parse("0:1")
        RuneId.parse("0:0")

    def test_malformed(self) -> None:
        for value in ("840000", "a:b", "1:2:3"):
            with pytest.raises(ValidationError):
                RuneId.parse(value)

    def test_delta_same_block(self) -> None:
        assert RuneId(840000, 9).delta(RuneId(840000, 5)) == (0, 4)

    def test_delta_new_block_uses_absolute_tx(self) -> None:
        assert RuneId(840005, 1).delta(RuneId(840000, 9)) == (5, 1)

    def test_delta_unsorted_rejected(self) -> None:
        with pytest.raises(ValidationError):
            RuneId(840000, 1).delta(RuneId(840000, 5))


class TestRunestone:
    """Payload layout and script wrapping."""

    def test_edicts_delta_encoded_and_sorted(self) -> None:
        edicts = [
            Edict(RuneId(840005, 1), 3, 1),
            Edict(RuneId(840000, 5), 1, 1),
            Edict(RuneId(840000, 9), 2, 1),
        ]
        payload = Runestone(edicts=edicts).payload()
        assert payload == varints(
            Tag.BODY,
            840000, 5, 1, 1,
            0, 4, 2, 1,
            5, 1, 3, 1,
        )

    def test_pointer_precedes_body(self) -> None:
        payload = Runestone(edicts=[Edict(RuneId(1, 0), 10, 2)], pointer=2).payload()
        assert payload == varints(Tag.POINTER, 2, Tag.BODY, 1, 0, 10, 2)

    def test_mint_encoded_twice(self) -> None:
        payload = Runestone(mint=RuneId(840000, 3)).payload()
        assert payload == varints(Tag.MINT, 840000, Tag.MINT, 3)

    def test_etching_fields(self) -> None:
        etching = Etching.from_spaced_name(
            "A•B", divisibility=2, symbol="$", premine=1000, terms=Terms(amount=10, cap=5)
        )
        payload = Runestone(etching=etching).payload()
        assert payload == varints(
            Tag.FLAGS, Flag.ETCHING.mask | Flag.TERMS.mask,
            Tag.RUNE, encode_rune_name("AB"),
            Tag.DIVISIBILITY, 2,
            Tag.SPACERS, 1,
            Tag.SYMBOL, ord("$"),
            Tag.PREMINE, 1000,
            Tag.AMOUNT, 10,
            Tag.CAP, 5,
        )

    def test_encipher_prefix(self) -> None:
        script = encode_runestone([Edict(RuneId(840000, 3), 100, 1)])
        payload = Runestone(edicts=[Edict(RuneId(840000, 3), 100, 1)]).payload()
        assert script[:2] == b"\x6a\x5d"
        assert script[2] == len(payload)
        assert script[3:] == payload

    def test_zero_amount_edict_allowed(self) -> None:
        script = encode_runestone([Edict(RuneId(840000, 3), 0, 1)], output_count=2)
        assert script.startswith(b"\x6a\x5d")

    def test_edict_output_bounds(self) -> None:
        edict = Edict(RuneId(840000, 3), 1, 3)
        encode_runestone([edict], output_count=3)
        with pytest.raises(ValidationError):
            encode_runestone([edict], output_count=2)

    def test_pointer_bounds(self) -> None:
        with pytest.raises(ValidationError):
            encode_runestone([], pointer=3, output_count=3)

    def test_long_payload_uses_pushdata(self) -> None:
        edicts = [Edict(RuneId(840000, i), 10**30, 1) for i in range(10)]
        script = encode_runestone(edicts)
        assert script[2] == 0x4C
        assert script[3] == len(script) - 4


class TestPushData:
    def test_push_sizes(self) -> None:
        assert push_data(b"\x01" * 75)[0] == 75
        assert push_data(b"\x01" * 76)[:2] == b"\x4c\x4c"
        assert push_data(b"\x01" * 300)[:3] == b"\x4d\x2c\x01"
        with pytest.raises(ValueError):
            push_data(b"\x01" * 521)
