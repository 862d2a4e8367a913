"""Deterministic fixed-point helpers.

Values are plain ints emulating an unsigned 256-bit word. Multiplications are
exact before the floor division, so intermediate precision is never lost;
only results outside the word raise.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from .errors import ArithmeticOverflowError

UNIT = 10**18
HIGH_PRECISION_UNIT = 10**27
MAX_UINT256 = 2**256 - 1


def checked(value: int) -> int:
    """Return ``value`` if it fits the accumulator, otherwise raise."""
    if value < 0 or value > MAX_UINT256:
        raise ArithmeticOverflowError(f"Value out of range: {value}")
    return value


def add(a: int, b: int) -> int:
    return checked(checked(a) + checked(b))


def sub(a: int, b: int) -> int:
    if b > a:
        raise ArithmeticOverflowError(f"Subtraction underflow: {a} - {b}")
    return checked(a - b)


def mul(a: int, b: int) -> int:
    return checked(checked(a) * checked(b))


def mul_div(a: int, b: int, denominator: int) -> int:
    """Compute ``floor(a * b / denominator)`` without intermediate truncation."""
    checked(a)
    checked(b)
    if denominator <= 0:
        raise ArithmeticOverflowError(f"Invalid denominator: {denominator}")
    return checked((a * b) // denominator)


def multiply_decimal(a: int, b: int) -> int:
    return mul_div(a, b, UNIT)


def divide_decimal(a: int, b: int) -> int:
    return mul_div(a, UNIT, b)


def multiply_decimal_precise(a: int, b: int) -> int:
    return mul_div(a, b, HIGH_PRECISION_UNIT)


def divide_decimal_precise(a: int, b: int) -> int:
    return mul_div(a, HIGH_PRECISION_UNIT, b)


def to_fixed(value: Decimal | int | str, unit: int = UNIT) -> int:
    """Scale a decimal quantity such as ``"0.25"`` to an int at ``unit``."""
    try:
        decimal_value = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValueError(f"Invalid fixed-point value: {value}") from exc
    if not decimal_value.is_finite():
        raise ValueError(f"Invalid fixed-point value: {value}")
    return checked(int(decimal_value * unit))


def from_fixed(value: int, unit: int = UNIT) -> Decimal:
    return Decimal(value) / Decimal(unit)
