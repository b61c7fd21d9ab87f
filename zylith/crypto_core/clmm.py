# crypto_core/clmm.py
"""
Concentrated-liquidity swap math in Q128.128 fixed point.

Deltas follow the trader's view: the input leg is negative, the output leg positive.
Single-range swaps only; crossing initialised ticks is left to the contract.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from zylith.crypto_core.codec import Q128
from zylith.core.errors import ValidationError

MIN_TICK = -887272
MAX_TICK = 887272
_LOG_BASE = math.log(1.0001)


def _div_up(a: int, b: int) -> int:
    return -(-a // b)


def tick_at_sqrt_price(sqrt_price_x128: int) -> int:
    """floor(log_1.0001(price)) where price = (sqrt_price_x128 / 2^128)^2."""
    if sqrt_price_x128 <= 0:
        raise ValidationError("sqrt price must be positive", fields=["sqrt_price_x128"])
    log_sqrt = math.log(sqrt_price_x128) - 128 * math.log(2)
    tick = math.floor(2 * log_sqrt / _LOG_BASE + 1e-9)
    return max(MIN_TICK, min(MAX_TICK, tick))


def sqrt_price_at_tick(tick: int) -> int:
    if not MIN_TICK <= tick <= MAX_TICK:
        raise ValidationError(f"tick {tick} out of range", fields=["tick"])
    return int(math.sqrt(1.0001 ** tick) * Q128)


@dataclass(frozen=True)
class SwapResult:
    amount0_delta: int
    amount1_delta: int
    sqrt_price_old: int
    new_sqrt_price_x128: int
    new_tick: int
    liquidity: int

    @property
    def amount_out(self) -> int:
        return max(self.amount0_delta, self.amount1_delta)


def compute_swap(
    sqrt_price_x128: int,
    liquidity: int,
    amount_specified: int,
    zero_for_one: bool,
    sqrt_price_limit_x128: Optional[int] = None,
) -> SwapResult:
    """Exact-input swap inside the current range, optionally stopped at a price limit."""
    if liquidity <= 0:
        raise ValidationError("pool has no active liquidity", fields=["liquidity"])
    if amount_specified <= 0:
        raise ValidationError("amount_specified must be positive", fields=["amount_specified"])
    s = sqrt_price_x128
    if s <= 0:
        raise ValidationError("pool is not initialized", fields=["sqrt_price_x128"])
    lq = liquidity * Q128

    if zero_for_one:
        # token0 in, price falls
        new = _div_up(lq * s, lq + amount_specified * s)
        amount_in = amount_specified
        if sqrt_price_limit_x128 and new < sqrt_price_limit_x128:
            if sqrt_price_limit_x128 >= s:
                raise ValidationError("price limit above current price", fields=["sqrt_price_limit"])
            new = sqrt_price_limit_x128
            amount_in = _div_up(lq * (s - new), s * new)
        amount_out = liquidity * (s - new) // Q128
        return SwapResult(-amount_in, amount_out, s, new, tick_at_sqrt_price(new), liquidity)

    # token1 in, price rises
    new = s + amount_specified * Q128 // liquidity
    amount_in = amount_specified
    if sqrt_price_limit_x128 and new > sqrt_price_limit_x128:
        if sqrt_price_limit_x128 <= s:
            raise ValidationError("price limit below current price", fields=["sqrt_price_limit"])
        new = sqrt_price_limit_x128
        amount_in = _div_up(liquidity * (new - s), Q128)
    amount_out = lq * (new - s) // (new * s)
    return SwapResult(amount_out, -amount_in, s, new, tick_at_sqrt_price(new), liquidity)


__all__ = [
    "MIN_TICK",
    "MAX_TICK",
    "tick_at_sqrt_price",
    "sqrt_price_at_tick",
    "SwapResult",
    "compute_swap",
]
