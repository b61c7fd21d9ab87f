import pytest

from zylith.core.errors import EncodingError
from zylith.crypto_core import codec
from zylith.crypto_core.codec import (
    FIELD_PRIME,
    U128_MAX,
    U256_MAX,
    felt_to_i32,
    from_base_units,
    from_wire,
    i32_to_felt,
    is_field_element,
    join,
    parse_u256,
    split,
    to_base_units,
    to_felt_str,
    to_wire,
)


def test_split_low_high():
    assert split(5) == (5, 0)
    assert split(1 << 128) == (0, 1)
    assert split(U256_MAX) == (U128_MAX, U128_MAX)
    assert join(*split(123456789 << 130 | 42)) == 123456789 << 130 | 42


def test_wire_form_is_decimal_strings():
    assert to_wire((3 << 128) + 7) == {"low": "7", "high": "3"}
    assert from_wire({"low": "7", "high": "3"}) == (3 << 128) + 7


def test_parse_accepts_hex_and_decimal():
    assert parse_u256("0x10") == 16
    assert parse_u256(" 42 ") == 42
    assert parse_u256(7) == 7


@pytest.mark.parametrize("bad", [-1, "-5", U256_MAX + 1, "", "12abc", 1.5])
def test_parse_rejects(bad):
    with pytest.raises(EncodingError):
        parse_u256(bad, "amount")


def test_join_rejects_oversized_half():
    with pytest.raises(EncodingError) as e:
        join(U128_MAX + 1, 0)
    assert e.value.fields == ["low"]


def test_missing_wire_half():
    with pytest.raises(EncodingError) as e:
        from_wire({"low": "1"})
    assert e.value.fields == ["high"]


def test_i32_twos_complement():
    assert i32_to_felt(-1000) == 4294966296
    assert i32_to_felt(60) == 60
    assert felt_to_i32(4294966296) == -1000
    assert felt_to_i32(60) == 60
    with pytest.raises(EncodingError):
        i32_to_felt(codec.I32_MAX + 1)


def test_field_range():
    assert is_field_element(FIELD_PRIME - 1)
    assert not is_field_element(FIELD_PRIME)
    assert not is_field_element("garbage")
    with pytest.raises(EncodingError):
        to_felt_str(FIELD_PRIME, "secret")


def test_base_units():
    assert to_base_units("1.5", 6) == 1500000
    assert from_base_units(1500000, 6) == "1.5"
    assert from_base_units(0, 18) == "0"
    with pytest.raises(EncodingError):
        to_base_units("0.0000001", 6)


@pytest.mark.parametrize("text", ["Infinity", "-Infinity", "NaN", "sNaN", "abc", "-1"])
def test_base_units_rejects_non_amounts(text):
    with pytest.raises(EncodingError) as e:
        to_base_units(text, 6)
    assert e.value.fields == ["amount"]
