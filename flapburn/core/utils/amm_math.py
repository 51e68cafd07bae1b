"""Constant-product (PancakeSwap V2 style) pricing helpers.

All functions are pure integer math over Python ints, so intermediate
products never wrap regardless of reserve size.
"""

from __future__ import annotations

from dataclasses import dataclass

from eth_utils import is_address

from flapburn.core.constants.base import MANTISSA

FEE_NUMERATOR = 997
FEE_DENOMINATOR = 1000

# Inflation applied to the inverse quote to absorb reserve drift between quote
# time and execution time. Fixed, not scaled by depth or volatility.
SAFETY_MARGIN_NUMERATOR = 101
SAFETY_MARGIN_DENOMINATOR = 100


@dataclass(frozen=True)
class ReservePair:
    reserve_in: int
    reserve_out: int

    @property
    def is_usable(self) -> bool:
        return self.reserve_in > 0 and self.reserve_out > 0


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def get_amount_out(amount_in: int, reserve_in: int, reserve_out: int) -> int:
    """Output received for ``amount_in`` after the 0.3% fee; 0 when undefined."""
    amount_in, reserve_in, reserve_out = int(amount_in), int(reserve_in), int(reserve_out)
    if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
        return 0
    amount_in_with_fee = amount_in * FEE_NUMERATOR
    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in * FEE_DENOMINATOR + amount_in_with_fee
    return numerator // denominator


def get_min_amount_in(min_value_out: int, reserve_in: int, reserve_out: int) -> int:
    """Smallest input whose quote reaches ``min_value_out``, plus the safety margin.

    Returns 0 when the inverse is undefined, including when ``min_value_out``
    is not strictly below ``reserve_out``.
    """
    min_value_out = int(min_value_out)
    reserve_in, reserve_out = int(reserve_in), int(reserve_out)
    if min_value_out <= 0 or reserve_in <= 0 or reserve_out <= 0:
        return 0
    remaining_out = reserve_out - min_value_out
    if remaining_out <= 0:
        return 0
    numerator = reserve_in * min_value_out * FEE_DENOMINATOR
    denominator = remaining_out * FEE_NUMERATOR
    exact = _ceil_div(numerator, denominator)
    return exact * SAFETY_MARGIN_NUMERATOR // SAFETY_MARGIN_DENOMINATOR


def quote(amount_in: int, reserves: ReservePair | None) -> int:
    if reserves is None:
        return 0
    return get_amount_out(amount_in, reserves.reserve_in, reserves.reserve_out)


def min_input_for(min_value_out: int, reserves: ReservePair | None) -> int:
    if reserves is None:
        return 0
    return get_min_amount_in(min_value_out, reserves.reserve_in, reserves.reserve_out)


def spot_value(amount: int, reserves: ReservePair | None) -> int:
    """Mark-to-market value of ``amount`` at the pool's spot price (no slippage).

    The price is truncated to 18 decimals before applying it, matching how the
    protocol's own accounting values holdings.
    """
    if reserves is None or reserves.reserve_in <= 0 or int(amount) <= 0:
        return 0
    price = reserves.reserve_out * MANTISSA // reserves.reserve_in
    return int(amount) * price // MANTISSA


def orient_reserves(
    reserve0: int, reserve1: int, token0: str | None, token_address: str
) -> ReservePair | None:
    """Order raw pair reserves as (token side, native side).

    ``None`` marks an invalid pool: a zero or malformed ``token0`` must abort
    any pricing built on top of it.
    """
    if not token0 or not is_address(token0) or int(token0, 16) == 0:
        return None
    if not token_address or not is_address(token_address) or int(token_address, 16) == 0:
        return None
    if str(token0).lower() == str(token_address).lower():
        return ReservePair(reserve_in=int(reserve0), reserve_out=int(reserve1))
    return ReservePair(reserve_in=int(reserve1), reserve_out=int(reserve0))
