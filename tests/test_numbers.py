# sigcalc, a significant-figure calculator.
#
# Copyright (c) 2024 zhengxyz123
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
Tests for the numeric engine

Checks:
1. Exact rational arithmetic and normalisation
2. Significant-figure propagation for measured values
3. Mixing exact and measured operands
4. Powers, roots and logarithms
5. Rendering to text
"""

import math

import pytest

from sigcalc import (
    CalcError,
    ErrorKind,
    Exact,
    Measured,
    decimal_log,
    natural_log,
)


class TestExact:
    """Exact rational numbers"""

    def test_sum_is_reduced(self) -> None:
        assert Exact(1, 2) + Exact(1, 3) == Exact(5, 6)
        assert Exact(1, 2) + Exact(1, 2) == Exact(1)

    def test_lowest_terms_positive_denominator(self) -> None:
        value = Exact(6, -4)
        assert value.numerator == -3
        assert value.denominator == 2

    def test_product_and_quotient(self) -> None:
        assert Exact(2, 3) * Exact(3, 4) == Exact(1, 2)
        assert Exact(1, 2) / Exact(1, 4) == Exact(2)
        assert Exact(1, 2) - Exact(3, 4) == Exact(-1, 4)

    def test_zero_denominator_fails(self) -> None:
        with pytest.raises(CalcError) as info:
            Exact(1, 0)
        assert info.value.kind is ErrorKind.DIVISION_BY_ZERO

    def test_division_by_zero_fails(self) -> None:
        with pytest.raises(CalcError) as info:
            Exact(1, 2) / Exact(0, 1)
        assert info.value.kind is ErrorKind.DIVISION_BY_ZERO

    def test_negation(self) -> None:
        assert -Exact(2, 3) == Exact(-2, 3)


class TestMeasured:
    """Significant figures of measured values"""

    def test_product_keeps_fewest_sigfigs(self) -> None:
        result = Measured(12.34, 4) * Measured(1.2, 2)
        assert isinstance(result, Measured)
        assert result.sigfigs == 2
        assert result.value == pytest.approx(14.808)
        assert str(result) == "15"

    def test_quotient_keeps_fewest_sigfigs(self) -> None:
        result = Measured(9.0, 2) / Measured(3.000, 4)
        assert result.sigfigs == 2

    def test_sum_defaults_to_fewest_sigfigs(self) -> None:
        result = Measured(12.34, 4) + Measured(1.2, 2)
        assert result.sigfigs == 2

    def test_division_by_zero_fails(self) -> None:
        with pytest.raises(CalcError) as info:
            Measured(1.5, 2) / Measured(0.0, 2)
        assert info.value.kind is ErrorKind.DIVISION_BY_ZERO

    def test_overflow_fails(self) -> None:
        with pytest.raises(CalcError) as info:
            Measured(1e300, 3) * Measured(1e300, 3)
        assert info.value.kind is ErrorKind.NUMERIC_OVERFLOW

    def test_equality(self) -> None:
        assert Measured(1.5, 2) == Measured(1.5, 2)
        assert Measured(1.5, 2) != Measured(1.5, 3)
        assert len({Measured(1.5, 2), Measured(1.5, 2)}) == 1


class TestAlignedDecimals:
    """Decimal-place alignment for sums and differences"""

    def test_coarsest_decimal_place_wins(self) -> None:
        result = Measured(12.34, 4).add(Measured(1.2, 2), align_decimals=True)
        assert result.sigfigs == 3
        assert str(result) == "13.5"

    def test_exact_operand_does_not_constrain(self) -> None:
        result = Exact(1).add(Measured(0.25, 3), align_decimals=True)
        assert result.sigfigs == 4
        assert str(result) == "1.250"

    def test_cancellation_keeps_one_figure(self) -> None:
        result = Measured(1.5, 2).subtract(Measured(1.5, 2), align_decimals=True)
        assert result.sigfigs == 1

    def test_leading_zeros_do_not_shift_the_place(self) -> None:
        result = Measured(0.5, 2, -1).add(Measured(0.123, 4, -3), align_decimals=True)
        assert result.place == -1
        assert result.sigfigs == 1
        assert str(result) == "0.6"

    def test_place_defaults_from_sigfigs(self) -> None:
        assert Measured(12.34, 4).place == -2
        assert Measured(0.25, 3).place == -3
        assert Measured(0.25).place is None

    def test_negation_keeps_place(self) -> None:
        assert (-Measured(0.5, 2, -1)).place == -1

    def test_exact_operands_stay_exact(self) -> None:
        assert Exact(1, 2).add(Exact(1, 3), align_decimals=True) == Exact(5, 6)


class TestMixed:
    """Exact operands never reduce precision"""

    def test_exact_times_measured(self) -> None:
        result = Exact(3) * Measured(1.23, 3)
        assert isinstance(result, Measured)
        assert result.sigfigs == 3
        assert str(result) == "3.69"

    def test_exact_plus_measured(self) -> None:
        result = Measured(1.5, 2) + Exact(1, 2)
        assert isinstance(result, Measured)
        assert result.value == 2.0
        assert result.sigfigs == 2

    def test_exact_only_value_is_sentinel(self) -> None:
        assert Exact(1, 4).to_measured() == Measured(0.25, None)


class TestPower:
    """Powers and roots"""

    def test_integer_exponent_stays_exact(self) -> None:
        assert Exact(2) ** Exact(10) == Exact(1024)
        assert Exact(2) ** Exact(-2) == Exact(1, 4)
        assert Exact(2, 3) ** Exact(0) == Exact(1)

    def test_zero_to_negative_power_fails(self) -> None:
        with pytest.raises(CalcError) as info:
            Exact(0) ** Exact(-1)
        assert info.value.kind is ErrorKind.DIVISION_BY_ZERO

    def test_rational_root_stays_exact(self) -> None:
        assert Exact(4) ** Exact(1, 2) == Exact(2)
        assert Exact(8, 27) ** Exact(2, 3) == Exact(4, 9)
        assert Exact(-8) ** Exact(1, 3) == Exact(-2)

    def test_irrational_root_is_measured(self) -> None:
        result = Exact(2) ** Exact(1, 2)
        assert isinstance(result, Measured)
        assert result.sigfigs is None
        assert result.value == pytest.approx(math.sqrt(2))

    def test_even_root_of_negative_fails(self) -> None:
        with pytest.raises(CalcError) as info:
            Exact(-4) ** Exact(1, 2)
        assert info.value.kind is ErrorKind.MATH_DOMAIN

    def test_negative_measured_base_with_fraction_fails(self) -> None:
        with pytest.raises(CalcError) as info:
            Measured(-2.0, 2) ** Measured(0.5, 1)
        assert info.value.kind is ErrorKind.MATH_DOMAIN

    def test_huge_exact_power_fails(self) -> None:
        with pytest.raises(CalcError) as info:
            Exact(2) ** Exact(100000)
        assert info.value.kind is ErrorKind.NUMERIC_OVERFLOW

    def test_root_of_huge_degree_is_measured(self) -> None:
        result = Exact(2) ** Exact(1, 10**18)
        assert isinstance(result, Measured)
        assert result.value == pytest.approx(1.0)
        result = Exact(10**30) ** Exact(1, 100)
        assert result.value == pytest.approx(10**0.3)

    def test_large_perfect_power_root_stays_exact(self) -> None:
        assert Exact(3**40) ** Exact(1, 40) == Exact(3)
        assert Exact(1) ** Exact(1, 10**18) == Exact(1)

    def test_measured_power_keeps_fewest_sigfigs(self) -> None:
        result = Measured(1.5, 2) ** Exact(2)
        assert result.sigfigs == 2
        assert result.value == pytest.approx(2.25)


class TestLogarithm:
    """Logarithms always produce measured values"""

    def test_natural_log_of_exact(self) -> None:
        result = natural_log(Exact(1))
        assert result == Measured(0.0, None)

    def test_decimal_log_of_exact(self) -> None:
        result = decimal_log(Exact(100))
        assert isinstance(result, Measured)
        assert result.value == pytest.approx(2.0)

    def test_log_keeps_sigfigs(self) -> None:
        assert natural_log(Measured(2.0, 3)).sigfigs == 3

    @pytest.mark.parametrize("value", [Exact(0), Exact(-1), Measured(-2.5, 2)])
    def test_non_positive_fails(self, value) -> None:
        with pytest.raises(CalcError) as info:
            natural_log(value)
        assert info.value.kind is ErrorKind.MATH_DOMAIN


class TestRendering:
    """Text rendering"""

    def test_exact(self) -> None:
        assert str(Exact(5, 6)) == "5/6"
        assert str(Exact(-3)) == "-3"
        assert str(Exact(4, 2)) == "2"

    def test_measured_keeps_trailing_zeros(self) -> None:
        assert str(Measured(1.2, 3)) == "1.20"
        assert str(Measured(299792458, 9)) == "299792458"
        assert str(Measured(9.80665, 6)) == "9.80665"

    def test_measured_large_with_few_sigfigs(self) -> None:
        assert str(Measured(100.0, 1)) == "1e+02"

    def test_measured_pi(self) -> None:
        assert str(Measured(math.pi, 15)) == "3.14159265358979"

    def test_sentinel(self) -> None:
        assert str(Measured(0.25)) == "0.25"
