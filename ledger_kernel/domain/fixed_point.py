"""
Fixed point -- Conversions between ledger integer units and Decimal.

Responsibility:
    The ledger stores every amount as an unsigned integer with 18 implied
    decimals ("wei").  This module is the only place that crosses between
    that representation and the Decimal values used by the rest of the
    client.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - No floats.  ``to_decimal`` and ``decimal_to_wei`` reject float input.
    - Exactness.  Conversions are exact; an amount with sub-wei precision is
      rejected rather than silently rounded.
    - Ceiling for payments.  ``mul_div_ceil`` rounds up so that a computed
      payment is never one wei short of what the ledger requires.

Failure modes:
    - TypeError on float input.
    - FixedPointPrecisionError on amounts finer than the ledger unit.
    - ValueError on negative ledger integers.
"""

from decimal import Decimal, InvalidOperation, localcontext

from ledger_kernel.exceptions import FixedPointPrecisionError

LEDGER_DECIMALS = 18
WEI_PER_UNIT = 10**LEDGER_DECIMALS

# uint256 has at most 78 decimal digits
_PRECISION = 80


def to_decimal(value: Decimal | int | str) -> Decimal:
    """Coerce a user-supplied amount to Decimal, refusing floats."""
    if isinstance(value, float):
        raise TypeError("Floats are not accepted for monetary amounts")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(value)
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc


def wei_to_decimal(value: int, decimals: int = LEDGER_DECIMALS) -> Decimal:
    """
    Convert a ledger integer to a Decimal in major units.

    Example:
        wei_to_decimal(1_500_000_000_000_000_000) -> Decimal("1.5")
    """
    if value < 0:
        raise ValueError(f"Ledger amounts are unsigned, got {value}")
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return Decimal(int(value)).scaleb(-decimals)


def decimal_to_wei(amount: Decimal | int | str, decimals: int = LEDGER_DECIMALS) -> int:
    """
    Convert a major-unit amount to the ledger integer.

    Raises:
        FixedPointPrecisionError: If the amount has more than ``decimals``
            fractional digits.
    """
    amount = to_decimal(amount)
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        scaled = amount.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise FixedPointPrecisionError(amount, decimals)
        return int(scaled)


def mul_div_ceil(a: int, b: int, denominator: int) -> int:
    """``ceil(a * b / denominator)`` on integers."""
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    return -(-(a * b) // denominator)
