"""
Integer fixed-point helpers for reward accounting.

All reward math is done on Python ints. Accumulators are scaled up by
POINT_SCALE once when points are accrued and scaled down by the same
factor once when points are converted into a reward amount.
"""

from __future__ import annotations

# Scale applied to reward points per unit of weight
POINT_SCALE = 10**18

MAX_UINT256 = 2**256 - 1


def safe_mul(a: int, b: int) -> int:
    """Multiply two non-negative ints, refusing results above uint256."""
    if a < 0 or b < 0:
        raise ValueError("Multiplication operands must be non-negative")
    result = a * b
    if result > MAX_UINT256:
        raise OverflowError("Multiplication overflow")
    return result


def mul_div(a: int, b: int, denominator: int, round_up: bool = False) -> int:
    """
    Calculate (a * b) / denominator with full precision and controlled rounding.

    Args:
        a: First multiplicand
        b: Second multiplicand
        denominator: Divisor
        round_up: If True, round up (for charging users)
                  If False, round down (for paying users)

    Raises:
        ValueError: If denominator is zero
        OverflowError: If the product overflows uint256
    """
    if denominator == 0:
        raise ValueError("Division by zero")

    result = safe_mul(a, b)

    if round_up:
        return (result + denominator - 1) // denominator
    return result // denominator
