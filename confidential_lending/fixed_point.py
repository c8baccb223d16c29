"""
fixed_point.py - Deterministic integer arithmetic in basis points

Every ratio in the lending engine is expressed in basis points (10,000 = 100%).
All arithmetic is integer-only so that every node evaluating the same
inputs produces the same outputs.

Rules:
    - Division truncates toward zero (floor for the non-negative operands used here).
    - Multiplication happens before division, in a u128-wide intermediate,
      and the result is narrowed back to u64.
    - Division by zero, overflow and negative results raise; nothing is
      silently clamped.

Key Formulas:
    mul_div(a, num, den) = floor(a * num / den)
    bps_of(amount, bps)  = floor(amount * bps / 10_000)
    interest(p, r, s)    = floor(p * r * s / (10_000 * SLOTS_PER_YEAR))
"""

from __future__ import annotations

from .errors import ArithmeticOverflow, DivisionByZero, Underflow, ConfigurationError


# ============================================================================
# CONSTANTS
# ============================================================================

# Basis point scale: 10,000 bps == 100%.
BPS_SCALE = 10_000

U16_MAX = 2**16 - 1
U64_MAX = 2**64 - 1
U128_MAX = 2**128 - 1

# 400ms slots, 365 days.
SLOTS_PER_YEAR = 78_840_000


# ============================================================================
# CHECKED OPERATIONS
# ============================================================================

def _check_operand(value: int, bound: int = U64_MAX) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"fixed point operand must be int, got {type(value).__name__}")
    if value < 0:
        raise Underflow("negative operand")
    if value > bound:
        raise ArithmeticOverflow("operand exceeds width")
    return value


def checked_add(a: int, b: int) -> int:
    """Add two u64 values."""
    result = _check_operand(a) + _check_operand(b)
    if result > U64_MAX:
        raise ArithmeticOverflow("addition overflow")
    return result


def checked_sub(a: int, b: int) -> int:
    """Subtract two u64 values; a negative result raises Underflow."""
    result = _check_operand(a) - _check_operand(b)
    if result < 0:
        raise Underflow("subtraction underflow")
    return result


def checked_mul(a: int, b: int, bound: int = U64_MAX) -> int:
    """Multiply two values, failing if the product exceeds `bound`."""
    result = _check_operand(a, bound) * _check_operand(b, bound)
    if result > bound:
        raise ArithmeticOverflow("multiplication overflow")
    return result


def checked_div(a: int, b: int, bound: int = U64_MAX) -> int:
    """Floor division; a zero divisor raises DivisionByZero."""
    _check_operand(a, bound)
    _check_operand(b, bound)
    if b == 0:
        raise DivisionByZero("division by zero")
    return a // b


def mul_div(value: int, numerator: int, denominator: int) -> int:
    """
    Compute floor(value * numerator / denominator) with u128 widening.

    The product is formed in a 128-bit intermediate before the division,
    then narrowed back to u64.

    Args:
        value: u64 amount
        numerator: u64 multiplier
        denominator: u64 divisor (must be non-zero)

    Returns:
        The narrowed u64 quotient.

    Raises:
        DivisionByZero: if denominator == 0
        ArithmeticOverflow: if an operand or the narrowed result exceeds u64

    Example:
        >>> mul_div(50, 2 * 5000, BPS_SCALE)
        50
    """
    _check_operand(value)
    _check_operand(numerator)
    _check_operand(denominator)
    if denominator == 0:
        raise DivisionByZero("division by zero")
    wide = checked_mul(value, numerator, bound=U128_MAX)
    result = wide // denominator
    if result > U64_MAX:
        raise ArithmeticOverflow("result does not fit in u64")
    return result


def bps_of(amount: int, bps: int) -> int:
    """Return floor(amount * bps / 10_000)."""
    return mul_div(amount, bps, BPS_SCALE)


def interest_for_slots(principal: int, interest_rate_bps: int, slots_elapsed: int,
                       slots_per_year: int = SLOTS_PER_YEAR) -> int:
    """Simple pro-rata interest on a plaintext principal (used by tests and tooling)."""
    return mul_div(
        principal,
        checked_mul(interest_rate_bps, slots_elapsed),
        checked_mul(BPS_SCALE, slots_per_year),
    )


def validate_bps(name: str, value: int) -> int:
    """Validate a basis point field: integer in [0, 10_000]."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigurationError(f"{name} must be an integer number of basis points")
    if value < 0 or value > BPS_SCALE:
        raise ConfigurationError(f"{name} must be within [0, {BPS_SCALE}], got {value}")
    return value
