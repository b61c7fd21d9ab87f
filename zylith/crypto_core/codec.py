# crypto_core/codec.py
"""
Bit-exact numeric conversions for proof payloads and calldata.

Every amount that crosses into a proof request or a contract call goes through here:
u256 <-> (low, high) u128 halves, decimal/hex string parsing with overflow checks,
signed 32-bit ticks as field elements, and field-element range checks.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Dict, Tuple, Union

from zylith.core.errors import EncodingError

# BN254 scalar field (circuit arithmetic)
FIELD_PRIME = 21888242871839275222246405745257275088548364400416034343698204186575808495617
# Starknet felt252 upper bound
FELT_MAX = 3618502788666131106986593281521497120414687020801267626233049500247285301248

U128_MAX = (1 << 128) - 1
U256_MAX = (1 << 256) - 1
Q128 = 1 << 128
I32_MIN = -(1 << 31)
I32_MAX = (1 << 31) - 1

NumberLike = Union[int, str]


def parse_u256(value: NumberLike, name: str = "value") -> int:
    """Parse an int or a decimal/hex string into a u256, rejecting anything that does not fit."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        v = value
    elif isinstance(value, str):
        s = value.strip()
        if not s:
            raise EncodingError(f"{name}: empty numeric string", fields=[name])
        try:
            if s.lower().startswith("0x"):
                v = int(s, 16)
            else:
                if not s.lstrip("-").isdigit():
                    raise ValueError(s)
                v = int(s, 10)
        except ValueError:
            raise EncodingError(f"{name}: not an integer: {value!r}", fields=[name]) from None
    else:
        raise EncodingError(f"{name}: unsupported type {type(value).__name__}", fields=[name])

    if v < 0:
        raise EncodingError(f"{name}: negative value {v} cannot be encoded as u256", fields=[name])
    if v > U256_MAX:
        raise EncodingError(f"{name}: value exceeds 256 bits", fields=[name])
    return v


def split(value: NumberLike) -> Tuple[int, int]:
    """u256 -> (low, high) u128 halves."""
    v = parse_u256(value)
    return v & U128_MAX, v >> 128


def join(low: NumberLike, high: NumberLike) -> int:
    lo = parse_u256(low, "low")
    hi = parse_u256(high, "high")
    if lo > U128_MAX or hi > U128_MAX:
        raise EncodingError("u128 half out of range", fields=[f for f, x in (("low", lo), ("high", hi)) if x > U128_MAX])
    return (hi << 128) | lo


def to_wire(value: NumberLike) -> Dict[str, str]:
    low, high = split(value)
    return {"low": str(low), "high": str(high)}


def from_wire(obj: Dict[str, NumberLike]) -> int:
    try:
        return join(obj["low"], obj["high"])
    except KeyError as e:
        raise EncodingError(f"u256 wire value missing {e.args[0]!r}", fields=[str(e.args[0])]) from None


def parse_u128(value: NumberLike, name: str = "value") -> int:
    v = parse_u256(value, name)
    if v > U128_MAX:
        raise EncodingError(f"{name}: value exceeds 128 bits", fields=[name])
    return v


# ---------- signed ticks ----------
def parse_i32(value: NumberLike, name: str = "tick") -> int:
    if isinstance(value, str):
        s = value.strip()
        try:
            v = int(s, 10)
        except ValueError:
            raise EncodingError(f"{name}: not an integer: {value!r}", fields=[name]) from None
    elif isinstance(value, int) and not isinstance(value, bool):
        v = value
    else:
        raise EncodingError(f"{name}: unsupported type {type(value).__name__}", fields=[name])
    if not I32_MIN <= v <= I32_MAX:
        raise EncodingError(f"{name}: {v} outside i32 range", fields=[name])
    return v


def i32_to_felt(value: NumberLike) -> int:
    """Two's-complement encoding used for ticks (-1000 -> 4294966296)."""
    v = parse_i32(value)
    return v + (1 << 32) if v < 0 else v


def felt_to_i32(felt: NumberLike) -> int:
    v = parse_u256(felt, "felt")
    if v >= 1 << 32:
        raise EncodingError("felt does not hold an i32", fields=["felt"])
    return v - (1 << 32) if v > I32_MAX else v


# ---------- field elements ----------
def is_field_element(value: NumberLike, prime: int = FIELD_PRIME) -> bool:
    try:
        return parse_u256(value) < prime
    except EncodingError:
        return False


def to_felt_str(value: NumberLike, name: str = "value", prime: int = FIELD_PRIME) -> str:
    v = parse_u256(value, name)
    if v >= prime:
        raise EncodingError(f"{name}: not a field element (>= modulus)", fields=[name])
    return str(v)


def to_hex(value: NumberLike) -> str:
    return hex(parse_u256(value))


# ---------- human amounts ----------
def to_base_units(amount: Union[str, Decimal, int], decimals: int) -> int:
    """'1.5' with 6 decimals -> 1500000. Extra precision is rejected, never rounded."""
    try:
        d = Decimal(str(amount).strip())
    except InvalidOperation:
        raise EncodingError(f"amount: not a decimal: {amount!r}", fields=["amount"]) from None
    if not d.is_finite():
        raise EncodingError(f"amount: not a finite number: {amount!r}", fields=["amount"])
    scaled = d.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise EncodingError(f"amount: more than {decimals} decimals", fields=["amount"])
    return parse_u256(int(scaled), "amount")


def from_base_units(value: NumberLike, decimals: int) -> str:
    v = parse_u256(value)
    q = Decimal(v).scaleb(-decimals)
    return format(q.normalize(), "f") if v else "0"


__all__ = [
    "FIELD_PRIME",
    "FELT_MAX",
    "U128_MAX",
    "U256_MAX",
    "Q128",
    "parse_u256",
    "parse_u128",
    "split",
    "join",
    "to_wire",
    "from_wire",
    "parse_i32",
    "i32_to_felt",
    "felt_to_i32",
    "is_field_element",
    "to_felt_str",
    "to_hex",
    "to_base_units",
    "from_base_units",
]
