"""
Tests for ledger fixed-point conversion.

Covers:
- wei <-> Decimal conversion at 18 decimals, exact at uint256 scale
- Refusal of floats and of amounts finer than one wei
- Ceiling multiplication used for payment amounts
"""

from decimal import Decimal

import pytest

from ledger_kernel.domain.fixed_point import (
    WEI_PER_UNIT,
    decimal_to_wei,
    mul_div_ceil,
    to_decimal,
    wei_to_decimal,
)
from ledger_kernel.exceptions import FixedPointPrecisionError


class TestWeiToDecimal:
    def test_one_unit(self):
        assert wei_to_decimal(WEI_PER_UNIT) == Decimal("1")

    def test_fraction(self):
        assert wei_to_decimal(1_500_000_000_000_000_000) == Decimal("1.5")

    def test_single_wei(self):
        assert wei_to_decimal(1) == Decimal("0.000000000000000001")

    def test_uint256_max_is_exact(self):
        value = 2**256 - 1
        assert decimal_to_wei(wei_to_decimal(value)) == value

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            wei_to_decimal(-1)


class TestDecimalToWei:
    def test_string_amount(self):
        assert decimal_to_wei("1000") == 1000 * WEI_PER_UNIT

    def test_too_precise_rejected(self):
        with pytest.raises(FixedPointPrecisionError) as exc_info:
            decimal_to_wei(Decimal("0.0000000000000000001"))
        assert exc_info.value.code == "FIXED_POINT_PRECISION"

    def test_float_rejected(self):
        with pytest.raises(TypeError):
            decimal_to_wei(1.5)


class TestToDecimal:
    def test_passthrough(self):
        value = Decimal("3.14")
        assert to_decimal(value) is value

    def test_garbage_rejected(self):
        with pytest.raises(ValueError):
            to_decimal("lots")


class TestMulDivCeil:
    def test_exact_division(self):
        assert mul_div_ceil(10, 10, 5) == 20

    def test_rounds_up(self):
        assert mul_div_ceil(1, 1, 3) == 1
        assert mul_div_ceil(10, 1, 3) == 4

    def test_zero_denominator_rejected(self):
        with pytest.raises(ValueError):
            mul_div_ceil(1, 1, 0)
