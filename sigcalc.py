#!/usr/bin/python3
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

import argparse
import logging
import math
import operator
import re
import sys
from enum import Enum, IntEnum
from fractions import Fraction
from typing import Callable, Iterator, NamedTuple

try:
    import readline

    is_rl_available = True
except ModuleNotFoundError:
    is_rl_available = False

__version__ = "1.0"
logger = logging.getLogger(__name__)

INT64_MAX = 2**63 - 1
MAX_EXACT_BITS = 1 << 16
NAME = r"[^\W\d_][^\W_]*"


class ErrorKind(str, Enum):
    INVALID_OPERATOR = "invalid operator"
    INVALID_OPERAND = "invalid operand"
    UNKNOWN_REFERENCE = "unknown reference"
    MALFORMED_REFERENCE = "malformed reference"
    EMPTY_PARENTHESIS = "empty parenthesis"
    UNBALANCED_PARENTHESIS = "unbalanced parenthesis"
    DIVISION_BY_ZERO = "division by zero"
    LITERAL_OUT_OF_RANGE = "literal out of range"
    MATH_DOMAIN = "math domain error"
    NUMERIC_OVERFLOW = "numeric overflow"
    UNBOUND_VARIABLE = "unbound variable"


class CalcError(Exception):
    def __init__(
        self,
        kind: ErrorKind,
        code: str | None = None,
        position: tuple[int, int] | None = None,
        message: str | None = None,
    ) -> None:
        self.kind = kind
        self.code = code
        self.position = position
        self.message = message or kind.value
        super().__init__(self.message)


def display_error(error: CalcError) -> None:
    print(f"{error.message}:" if error.code is not None else error.message)
    if error.code is not None:
        print(f"  {error.code}")
        if error.position:
            highlight = " " * error.position[0] + "^" * max(
                error.position[1] - error.position[0], 1
            )
            print(f"  {highlight}")


# Numbers


def _checked(value: float) -> float:
    if math.isinf(value) or math.isnan(value):
        raise CalcError(ErrorKind.NUMERIC_OVERFLOW, message="result out of range")
    return value


def _magnitude(value: float) -> int:
    """Decimal exponent of the leading digit, 0 for zero."""
    if value == 0:
        return 0
    return int(format(abs(value), ".14e").partition("e")[2])


def _least_sigfigs(*numbers: "Measured") -> int | None:
    known = [n.sigfigs for n in numbers if n.sigfigs is not None]
    return min(known) if known else None


def _aligned(a: "Measured", b: "Measured", value: float) -> "Measured":
    places = [n.place for n in (a, b) if n.place is not None]
    if not places:
        return Measured(value)
    place = max(places)
    if value == 0:
        return Measured(value, 1, place)
    return Measured(value, max(_magnitude(value) - place + 1, 1), place)


def _integer_root(value: int, degree: int) -> int | None:
    if value < 0:
        if degree % 2 == 0:
            return None
        root = _integer_root(-value, degree)
        return None if root is None else -root
    if value < 2:
        return value
    # any root of degree >= bit_length is below 2
    if degree >= value.bit_length():
        return None
    try:
        guess = round(value ** (1.0 / degree))
    except OverflowError:
        return None
    for candidate in (guess - 1, guess, guess + 1):
        if candidate < 0:
            continue
        if (candidate.bit_length() - 1) * degree >= value.bit_length():
            continue
        if candidate**degree == value:
            return candidate
    return None


class Number:
    """Base of the two numeric kinds, `Exact` and `Measured`.

    Arithmetic between two `Exact` values stays exact. Anything involving a
    `Measured` value is carried out in floating point and the result keeps
    track of how many significant figures it can claim.
    """

    def to_measured(self) -> "Measured":
        raise NotImplementedError

    def _additive(
        self, other: "Number", op: Callable, align_decimals: bool
    ) -> "Number":
        if isinstance(self, Exact) and isinstance(other, Exact):
            return Exact(op(self.fraction, other.fraction))
        a, b = self.to_measured(), other.to_measured()
        value = _checked(op(a.value, b.value))
        if align_decimals:
            return _aligned(a, b, value)
        return Measured(value, _least_sigfigs(a, b))

    def add(self, other: "Number", align_decimals: bool = False) -> "Number":
        return self._additive(other, operator.add, align_decimals)

    def subtract(self, other: "Number", align_decimals: bool = False) -> "Number":
        return self._additive(other, operator.sub, align_decimals)

    def multiply(self, other: "Number") -> "Number":
        if isinstance(self, Exact) and isinstance(other, Exact):
            return Exact(self.fraction * other.fraction)
        a, b = self.to_measured(), other.to_measured()
        return Measured(_checked(a.value * b.value), _least_sigfigs(a, b))

    def divide(self, other: "Number") -> "Number":
        if isinstance(self, Exact) and isinstance(other, Exact):
            if other.fraction == 0:
                raise CalcError(ErrorKind.DIVISION_BY_ZERO)
            return Exact(self.fraction / other.fraction)
        a, b = self.to_measured(), other.to_measured()
        if b.value == 0:
            raise CalcError(ErrorKind.DIVISION_BY_ZERO)
        return Measured(_checked(a.value / b.value), _least_sigfigs(a, b))

    def power(self, other: "Number") -> "Number":
        if isinstance(self, Exact) and isinstance(other, Exact):
            return self._exact_power(other.fraction)
        a, b = self.to_measured(), other.to_measured()
        if a.value == 0 and b.value < 0:
            raise CalcError(ErrorKind.DIVISION_BY_ZERO)
        if a.value < 0 and not b.value.is_integer():
            raise CalcError(
                ErrorKind.MATH_DOMAIN,
                message=f"can't raise negative value {a} to power {b}",
            )
        try:
            value = a.value**b.value
        except OverflowError:
            raise CalcError(ErrorKind.NUMERIC_OVERFLOW, message="result out of range")
        return Measured(_checked(value), _least_sigfigs(a, b))

    def negate(self) -> "Number":
        raise NotImplementedError

    def __add__(self, other: "Number") -> "Number":
        return self.add(other)

    def __sub__(self, other: "Number") -> "Number":
        return self.subtract(other)

    def __mul__(self, other: "Number") -> "Number":
        return self.multiply(other)

    def __truediv__(self, other: "Number") -> "Number":
        return self.divide(other)

    def __pow__(self, other: "Number") -> "Number":
        return self.power(other)

    def __neg__(self) -> "Number":
        return self.negate()


class Exact(Number):
    def __init__(self, numerator: int | Fraction, denominator: int = 1) -> None:
        if denominator == 0:
            raise CalcError(
                ErrorKind.DIVISION_BY_ZERO, message="denominator can't be zero"
            )
        self.fraction = Fraction(numerator, denominator)

    @property
    def numerator(self) -> int:
        return self.fraction.numerator

    @property
    def denominator(self) -> int:
        return self.fraction.denominator

    def to_measured(self) -> "Measured":
        try:
            return Measured(float(self.fraction))
        except OverflowError:
            raise CalcError(ErrorKind.NUMERIC_OVERFLOW, message="result out of range")

    def negate(self) -> "Exact":
        return Exact(-self.fraction)

    def _exact_power(self, exponent: Fraction) -> Number:
        base = self.fraction
        if exponent.denominator != 1:
            p, q = exponent.numerator, exponent.denominator
            if base < 0 and q % 2 == 0:
                raise CalcError(
                    ErrorKind.MATH_DOMAIN,
                    message=f"can't take an even root of negative value {self}",
                )
            num = _integer_root(base.numerator, q)
            den = _integer_root(base.denominator, q)
            if num is not None and den is not None:
                return Exact(num, den)._exact_power(Fraction(p))
            sign = -1 if base < 0 and p % 2 else 1
            try:
                value = sign * abs(float(base)) ** float(exponent)
            except OverflowError:
                raise CalcError(
                    ErrorKind.NUMERIC_OVERFLOW, message="result out of range"
                )
            return Measured(_checked(value))
        n = exponent.numerator
        if base == 0 and n < 0:
            raise CalcError(ErrorKind.DIVISION_BY_ZERO)
        size = max(base.numerator.bit_length(), base.denominator.bit_length())
        if abs(base) != 1 and abs(n) * size > MAX_EXACT_BITS:
            raise CalcError(
                ErrorKind.NUMERIC_OVERFLOW, message="exact result is too large"
            )
        return Exact(base**n)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Exact) and self.fraction == other.fraction

    def __hash__(self) -> int:
        return hash(self.fraction)

    def __repr__(self) -> str:
        return f"Exact({self.numerator}, {self.denominator})"

    def __str__(self) -> str:
        return str(self.fraction)


class Measured(Number):
    # sigfigs=None marks a value converted from an exact one
    # place is the decimal exponent of the last significant digit
    def __init__(
        self, value: float, sigfigs: int | None = None, place: int | None = None
    ) -> None:
        self.value = float(value)
        self.sigfigs = sigfigs
        if place is None and sigfigs is not None:
            place = _magnitude(self.value) - sigfigs + 1
        self.place = place

    def to_measured(self) -> "Measured":
        return self

    def negate(self) -> "Measured":
        return Measured(-self.value, self.sigfigs, self.place)

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, Measured)
            and self.value == other.value
            and self.sigfigs == other.sigfigs
        )

    def __hash__(self) -> int:
        return hash((self.value, self.sigfigs))

    def __repr__(self) -> str:
        return f"Measured({self.value!r}, {self.sigfigs!r})"

    def __str__(self) -> str:
        if self.sigfigs is None:
            return format(self.value, ".15g")
        mantissa, sep, exponent = format(self.value, f"#.{self.sigfigs}g").partition(
            "e"
        )
        return mantissa.rstrip(".") + sep + exponent


def _logarithm(number: Number, function: Callable[[float], float]) -> Measured:
    measured = number.to_measured()
    if measured.value <= 0:
        raise CalcError(
            ErrorKind.MATH_DOMAIN,
            message=f"logarithm of non-positive value {number}",
        )
    return Measured(function(measured.value), measured.sigfigs)


def natural_log(number: Number) -> Measured:
    return _logarithm(number, math.log)


def decimal_log(number: Number) -> Measured:
    return _logarithm(number, math.log10)


# Expressions

SUM, PRODUCT, POWER, ATOM = 1, 2, 3, 4


class Expression:
    precedence = ATOM
    signed = False

    def value(self, align_decimals: bool = False) -> Number:
        raise NotImplementedError

    def description(self) -> str:
        raise NotImplementedError

    def list_free_variables(self) -> list[str]:
        return list(dict.fromkeys(self._free_names()))

    def call(self, bindings: dict[str, "Expression"]) -> "Expression":
        names = self.list_free_variables()
        applicable = {name: bindings[name] for name in names if name in bindings}
        if not applicable:
            return self
        return _missing(*applicable.values()) or Bound(self, applicable)

    def _free_names(self) -> Iterator[str]:
        yield from ()

    def _substitute(self, bindings: dict[str, "Expression"]) -> "Expression":
        return self

    def __str__(self) -> str:
        return self.description()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.description()!r})"


class Missing(Expression):
    def __init__(self, error: CalcError) -> None:
        self.error = error

    def value(self, align_decimals: bool = False) -> Number:
        raise self.error

    def description(self) -> str:
        return "?"


class Const(Expression):
    def __init__(self, number: Number) -> None:
        self.number = number

    @property
    def precedence(self) -> int:
        if isinstance(self.number, Exact) and self.number.denominator != 1:
            return PRODUCT
        return ATOM

    @property
    def signed(self) -> bool:
        if isinstance(self.number, Exact):
            return self.number.fraction < 0
        return self.number.value < 0

    def value(self, align_decimals: bool = False) -> Number:
        return self.number

    def description(self) -> str:
        return str(self.number)


class FreeVariable(Expression):
    def __init__(self, name: str) -> None:
        self.name = name

    def value(self, align_decimals: bool = False) -> Number:
        raise CalcError(
            ErrorKind.UNBOUND_VARIABLE, message=f"'{self.name}' is not bound"
        )

    def description(self) -> str:
        return self.name

    def _free_names(self) -> Iterator[str]:
        yield self.name

    def _substitute(self, bindings: dict[str, Expression]) -> Expression:
        return bindings.get(self.name, self)


class Grouped(Expression):
    def __init__(self, inner: Expression) -> None:
        self.inner = inner

    def value(self, align_decimals: bool = False) -> Number:
        return self.inner.value(align_decimals)

    def description(self) -> str:
        return f"({self.inner.description()})"

    def _free_names(self) -> Iterator[str]:
        return self.inner._free_names()

    def _substitute(self, bindings: dict[str, Expression]) -> Expression:
        return Grouped(self.inner._substitute(bindings))


class Negated(Expression):
    signed = True

    def __init__(self, inner: Expression) -> None:
        self.inner = inner

    def _wraps(self) -> bool:
        # the sign is applied after powers and products but before sums
        return self.inner.precedence <= SUM or self.inner.signed

    @property
    def precedence(self) -> int:
        return ATOM if self._wraps() else self.inner.precedence

    def value(self, align_decimals: bool = False) -> Number:
        return -self.inner.value(align_decimals)

    def description(self) -> str:
        inner = self.inner.description()
        if self._wraps():
            inner = f"({inner})"
        return f"-{inner}"

    def _free_names(self) -> Iterator[str]:
        return self.inner._free_names()

    def _substitute(self, bindings: dict[str, Expression]) -> Expression:
        return Negated(self.inner._substitute(bindings))


class Logarithm(Expression):
    functions = {"ln": natural_log, "lg": decimal_log}

    def __init__(self, name: str, inner: Expression) -> None:
        self.name = name
        self.inner = inner

    def value(self, align_decimals: bool = False) -> Number:
        return self.functions[self.name](self.inner.value(align_decimals))

    def description(self) -> str:
        return f"{self.name}({self.inner.description()})"

    def _free_names(self) -> Iterator[str]:
        return self.inner._free_names()

    def _substitute(self, bindings: dict[str, Expression]) -> Expression:
        return Logarithm(self.name, self.inner._substitute(bindings))


class Binary(Expression):
    symbol = ""

    def __init__(self, left: Expression, right: Expression) -> None:
        self.left = left
        self.right = right

    def description(self) -> str:
        left, right = self.left.description(), self.right.description()
        if self.left.precedence < self.precedence or (
            self.left.signed and self.precedence == POWER
        ):
            left = f"({left})"
        if self.right.precedence <= self.precedence:
            right = f"({right})"
        return f"{left}{self.symbol}{right}"

    def _free_names(self) -> Iterator[str]:
        yield from self.left._free_names()
        yield from self.right._free_names()

    def _substitute(self, bindings: dict[str, Expression]) -> Expression:
        return type(self)(
            self.left._substitute(bindings), self.right._substitute(bindings)
        )


class Power(Binary):
    symbol = "^"
    precedence = POWER

    def value(self, align_decimals: bool = False) -> Number:
        return self.left.value(align_decimals) ** self.right.value(align_decimals)


class Product(Binary):
    symbol = "*"
    precedence = PRODUCT

    def value(self, align_decimals: bool = False) -> Number:
        return self.left.value(align_decimals) * self.right.value(align_decimals)


class Quotient(Binary):
    symbol = "/"
    precedence = PRODUCT

    def value(self, align_decimals: bool = False) -> Number:
        return self.left.value(align_decimals) / self.right.value(align_decimals)


class Sum(Binary):
    symbol = "+"
    precedence = SUM

    def value(self, align_decimals: bool = False) -> Number:
        return self.left.value(align_decimals).add(
            self.right.value(align_decimals), align_decimals
        )


class Difference(Binary):
    symbol = "-"
    precedence = SUM

    def value(self, align_decimals: bool = False) -> Number:
        return self.left.value(align_decimals).subtract(
            self.right.value(align_decimals), align_decimals
        )


class Bound(Expression):
    """A template together with the expressions bound to its free variables.

    The template itself is left untouched, so one stored function or
    constant can be called any number of times with different bindings.
    """

    def __init__(
        self, template: Expression, substitutions: dict[str, Expression]
    ) -> None:
        self.template = template
        self.substitutions = dict(substitutions)

    def expanded(self) -> Expression:
        return self.template._substitute(self.substitutions)

    @property
    def precedence(self) -> int:
        return self.expanded().precedence

    @property
    def signed(self) -> bool:
        return self.expanded().signed

    def value(self, align_decimals: bool = False) -> Number:
        return self.expanded().value(align_decimals)

    def description(self) -> str:
        return self.expanded().description()

    def _free_names(self) -> Iterator[str]:
        return self.expanded()._free_names()

    def _substitute(self, bindings: dict[str, Expression]) -> Expression:
        return self.expanded()._substitute(bindings)


def _missing(*operands: Expression | None) -> Missing | None:
    for operand in operands:
        if operand is None:
            return Missing(
                CalcError(ErrorKind.INVALID_OPERAND, message="missing operand")
            )
        if isinstance(operand, Missing):
            return operand
    return None


def constant(number: Number) -> Expression:
    return Const(number)


def free_variable(name: str) -> Expression:
    return FreeVariable(name)


def group(inner: Expression | None) -> Expression:
    return _missing(inner) or Grouped(inner)


def negate(inner: Expression | None) -> Expression:
    return _missing(inner) or Negated(inner)


def logarithm(name: str, inner: Expression | None) -> Expression:
    return _missing(inner) or Logarithm(name, inner)


def power(base: Expression | None, exponent: Expression | None) -> Expression:
    return _missing(base, exponent) or Power(base, exponent)


def multiply(left: Expression | None, right: Expression | None) -> Expression:
    return _missing(left, right) or Product(left, right)


def divide(left: Expression | None, right: Expression | None) -> Expression:
    return _missing(left, right) or Quotient(left, right)


def add(left: Expression | None, right: Expression | None) -> Expression:
    return _missing(left, right) or Sum(left, right)


def subtract(left: Expression | None, right: Expression | None) -> Expression:
    return _missing(left, right) or Difference(left, right)


# Operators


class Operator(IntEnum):
    NONE = -1
    POW = 0
    NPOW = 1
    MUL = 2
    NMUL = 3
    DIV = 4
    NDIV = 5
    ADD = 6
    SUB = 7


operators_reg = {
    "^": Operator.POW,
    "*": Operator.MUL,
    "/": Operator.DIV,
    "+": Operator.ADD,
    "-": Operator.SUB,
}


def resolve_operator(text: str, first: bool = False) -> Operator:
    chars = [c for c in text if not c.isspace()]
    if not chars:
        return Operator.NONE if first else Operator.MUL
    if chars[0] not in operators_reg:
        raise CalcError(
            ErrorKind.INVALID_OPERATOR, message=f"invalid operator '{text.strip()}'"
        )
    found = operators_reg[chars[0]]
    for c in chars[1:]:
        if c != "-":
            raise CalcError(
                ErrorKind.INVALID_OPERATOR,
                message=f"invalid operator '{text.strip()}'",
            )
        # pairs are (plain, negated) with the plain code even
        found = Operator(found ^ 1)
    return found


power_steps = {
    Operator.POW: power,
    Operator.NPOW: lambda a, b: power(a, negate(b)),
}
product_steps = {
    Operator.MUL: multiply,
    Operator.NMUL: lambda a, b: multiply(a, negate(b)),
    Operator.DIV: divide,
    Operator.NDIV: lambda a, b: divide(a, negate(b)),
}
sum_steps = {
    Operator.ADD: add,
    Operator.SUB: subtract,
}


def _collapse(
    operands: list[Expression],
    operators: list[Operator],
    steps: dict[Operator, Callable[[Expression, Expression], Expression]],
) -> None:
    i = 1
    while i < len(operators):
        step = steps.get(operators[i])
        if step is None:
            i += 1
            continue
        operands[i - 1] = step(operands[i - 1], operands[i])
        del operands[i]
        del operators[i]


def fold(operands: list[Expression], operators: list[Operator]) -> Expression:
    """Fold operands joined by operators into one expression.

    Precedence comes only from the order of the passes: powers first, then
    products and quotients, then the leading sign, then sums and
    differences. Each pass works left to right, so `2^3^2` is `(2^3)^2`.
    """
    if not operands:
        return Missing(
            CalcError(ErrorKind.INVALID_OPERAND, message="nothing to evaluate")
        )
    operands, operators = list(operands), list(operators)
    _collapse(operands, operators, power_steps)
    _collapse(operands, operators, product_steps)
    if operators[0] == Operator.SUB:
        operands[0] = negate(operands[0])
    _collapse(operands, operators, sum_steps)
    return operands[0]


# Namespaces


class Namespace(str, Enum):
    MATHEMATICS = "mathematics"
    CHEMISTRY = "chemistry"
    PHYSICS = "physics"
    USER = "user"
    FUNCTIONS = "functions"


prefixes = {
    "u": Namespace.USER,
    "m": Namespace.MATHEMATICS,
    "c": Namespace.CHEMISTRY,
    "p": Namespace.PHYSICS,
}


class Environment:
    def __init__(self, selected: Namespace = Namespace.USER) -> None:
        self.selected = selected
        self._tables: dict[Namespace, dict[str, Expression]] = {
            namespace: {} for namespace in Namespace
        }

    @classmethod
    def standard(cls) -> "Environment":
        env = cls()
        functions = env._tables[Namespace.FUNCTIONS]
        functions["ln"] = logarithm("ln", free_variable("a"))
        functions["lg"] = logarithm("lg", free_variable("a"))
        chemistry = env._tables[Namespace.CHEMISTRY]
        chemistry["R"] = chemistry["r"] = constant(Measured(8.3144, 5))
        chemistry["F"] = chemistry["f"] = constant(Measured(96485.33, 7))
        physics = env._tables[Namespace.PHYSICS]
        physics["C"] = physics["c"] = constant(Measured(299792458, 9))
        physics["G"] = physics["g"] = constant(Measured(9.80665, 6))
        mathematics = env._tables[Namespace.MATHEMATICS]
        mathematics["pi"] = constant(Measured(math.pi, 15))
        mathematics["e"] = constant(Measured(math.e, 15))
        return env

    def namespace(self, prefix: str) -> Namespace:
        if prefix == "":
            return self.selected
        if prefix not in prefixes:
            raise CalcError(
                ErrorKind.UNKNOWN_REFERENCE, message=f"invalid namespace '{prefix}'"
            )
        return prefixes[prefix]

    def resolve(self, name: str) -> tuple[Namespace, str]:
        fields = name.strip().split(".")
        if len(fields) == 1:
            namespace, key = Namespace.FUNCTIONS, fields[0]
        elif len(fields) == 2:
            namespace, key = self.namespace(fields[0].strip()), fields[1].strip()
        else:
            raise CalcError(
                ErrorKind.MALFORMED_REFERENCE,
                message="a reference can't contain more than one '.'",
            )
        if not re.fullmatch(NAME, key):
            raise CalcError(
                ErrorKind.MALFORMED_REFERENCE, message=f"invalid name '{key}'"
            )
        return namespace, key

    def lookup(self, namespace: Namespace, key: str) -> Expression | None:
        return self._tables[namespace].get(key)

    def table(self, namespace: Namespace) -> dict[str, Expression]:
        return dict(self._tables[namespace])

    def assign(self, key: str, expression: Expression) -> None:
        self._tables[Namespace.USER][key] = expression


# Parsing


class Token(NamedTuple):
    type: str
    value: str
    where: tuple[int, int]


class Element(NamedTuple):
    expression: Expression
    where: tuple[int, int]


tokens_reg = {
    "reference": rf"(?:{NAME})?(?:\.{NAME})+",
    "name": NAME,
    "decimal": r"\d+\.\d*|\.\d+",
    "integer": r"\d+",
    "lpar": r"\(",
    "rpar": r"\)",
    "skip": r"\s+",
    "other": r".",
}
token_regex = re.compile(
    "|".join(f"(?P<{name}>{text})" for name, text in tokens_reg.items())
)
named_argument_regex = re.compile(rf"\s*({NAME})\s*=")


def tokenize(code: str) -> Iterator[Token]:
    for mo in token_regex.finditer(code):
        kind = str(mo.lastgroup)
        if kind == "skip":
            continue
        yield Token(kind, mo.group(), (mo.start(), mo.end()))


def _closing(tokens: list[Token], start: int) -> int | None:
    depth = 0
    for i in range(start, len(tokens)):
        if tokens[i].type == "lpar":
            depth += 1
        elif tokens[i].type == "rpar":
            depth -= 1
            if depth == 0:
                return i
    return None


def _split_arguments(text: str) -> Iterator[tuple[int, str]]:
    if not text.strip():
        return
    depth, start = 0, 0
    for i, c in enumerate(text):
        if c == "(":
            depth += 1
        elif c == ")":
            depth -= 1
        elif c == "," and depth == 0:
            yield start, text[start:i]
            start = i + 1
    yield start, text[start:]


class Parser:
    def __init__(self, environment: Environment) -> None:
        self.environment = environment
        self.source = ""
        self.diagnostics: list[CalcError] = []

    def parse(self, source: str) -> Expression:
        self.source = source
        self.diagnostics = []
        return self._parse(source, 0)

    def report(
        self, kind: ErrorKind, position: tuple[int, int], message: str | None = None
    ) -> CalcError:
        error = CalcError(kind, self.source, position, message)
        logger.debug("%s at %s: %s", kind.value, position, error.message)
        self.diagnostics.append(error)
        return error

    def _fail(self, error: CalcError, position: tuple[int, int]) -> Missing:
        return Missing(self.report(error.kind, position, error.message))

    def _parse(self, text: str, offset: int) -> Expression:
        elements = self.scan(text, offset)
        if not elements:
            return Missing(
                self.report(
                    ErrorKind.INVALID_OPERAND,
                    (offset, offset + len(text)),
                    "nothing to evaluate",
                )
            )
        operators, last = [], 0
        for i, element in enumerate(elements):
            start, end = element.where
            try:
                operators.append(resolve_operator(text[last:start], i == 0))
            except CalcError as error:
                return self._fail(error, (offset + last, offset + start))
            last = end
        if text[last:].strip():
            return Missing(
                self.report(
                    ErrorKind.INVALID_OPERATOR,
                    (offset + last, offset + len(text.rstrip())),
                    f"dangling operator '{text[last:].strip()}'",
                )
            )
        if operators[0] not in (Operator.NONE, Operator.SUB):
            leading = text[: elements[0].where[0]]
            self.report(
                ErrorKind.INVALID_OPERATOR,
                (offset, offset + len(leading.rstrip())),
                f"ignoring operator '{leading.strip()}' preceding expression",
            )
        return fold([element.expression for element in elements], operators)

    def scan(self, text: str, offset: int = 0) -> list[Element]:
        tokens = list(tokenize(text))
        elements: list[Element] = []
        i = 0
        while i < len(tokens):
            token = tokens[i]
            start = token.where[0]
            follow = tokens[i + 1] if i + 1 < len(tokens) else None
            if token.type in ("name", "reference"):
                if (
                    follow is not None
                    and follow.type == "lpar"
                    and follow.where[0] == token.where[1]
                ):
                    close = _closing(tokens, i + 1)
                    if close is None:
                        elements.append(self._unbalanced(text, offset, follow, start))
                        break
                    body = text[follow.where[1] : tokens[close].where[0]]
                    expression = self._call(token, body, offset, follow.where[1])
                    end, i = tokens[close].where[1], close + 1
                elif token.type == "reference":
                    expression = self._lookup(token, offset)
                    end, i = token.where[1], i + 1
                else:
                    expression = free_variable(token.value)
                    end, i = token.where[1], i + 1
            elif token.type == "lpar":
                close = _closing(tokens, i)
                if close is None:
                    elements.append(self._unbalanced(text, offset, token, start))
                    break
                body = text[token.where[1] : tokens[close].where[0]]
                end = tokens[close].where[1]
                if body.strip():
                    expression = group(self._parse(body, offset + token.where[1]))
                else:
                    expression = Missing(
                        self.report(
                            ErrorKind.EMPTY_PARENTHESIS,
                            (offset + start, offset + end),
                            "type something in the parentheses",
                        )
                    )
                i = close + 1
            elif token.type in ("decimal", "integer"):
                expression = self._literal(token, offset)
                end, i = token.where[1], i + 1
            else:
                i += 1
                continue
            logger.debug("scanned %r at %s", expression, (offset + start, offset + end))
            elements.append(Element(expression, (start, end)))
        return elements

    def _unbalanced(
        self, text: str, offset: int, token: Token, start: int
    ) -> Element:
        error = self.report(
            ErrorKind.UNBALANCED_PARENTHESIS,
            (offset + token.where[0], offset + token.where[1]),
            "'(' was never closed",
        )
        return Element(Missing(error), (start, len(text)))

    def _literal(self, token: Token, offset: int) -> Expression:
        position = (offset + token.where[0], offset + token.where[1])
        if token.type == "decimal":
            number = float(token.value)
            if math.isinf(number):
                return Missing(
                    self.report(ErrorKind.LITERAL_OUT_OF_RANGE, position)
                )
            decimals = len(token.value.partition(".")[2])
            return constant(Measured(number, len(token.value) - 1, -decimals))
        number = int(token.value)
        if number > INT64_MAX:
            return Missing(self.report(ErrorKind.LITERAL_OUT_OF_RANGE, position))
        return constant(Exact(number))

    def _lookup(self, token: Token, offset: int) -> Expression:
        position = (offset + token.where[0], offset + token.where[1])
        try:
            namespace, key = self.environment.resolve(token.value)
        except CalcError as error:
            return self._fail(error, position)
        template = self.environment.lookup(namespace, key)
        if template is None:
            return Missing(
                self.report(
                    ErrorKind.UNKNOWN_REFERENCE,
                    position,
                    f"unknown expression '{token.value}'",
                )
            )
        return template

    def _call(
        self, token: Token, arguments: str, offset: int, start: int
    ) -> Expression:
        template = self._lookup(token, offset)
        if isinstance(template, Missing):
            return template
        bindings = self._bind_arguments(
            arguments, template.list_free_variables(), offset + start
        )
        return template.call(bindings)

    def _bind_arguments(
        self, text: str, unknowns: list[str], offset: int
    ) -> dict[str, Expression]:
        bindings: dict[str, Expression] = {}
        positional = []
        for start, field in _split_arguments(text):
            mo = named_argument_regex.match(field)
            if mo is None:
                positional.append((start, field))
                continue
            name = mo.group(1)
            if name not in unknowns:
                self.report(
                    ErrorKind.UNKNOWN_REFERENCE,
                    (offset + start + mo.start(1), offset + start + mo.end(1)),
                    f"'{name}' is not a free variable of the callee",
                )
                continue
            bindings[name] = self._parse(field[mo.end() :], offset + start + mo.end())
        for start, field in positional:
            unbound = [name for name in unknowns if name not in bindings]
            if not unbound:
                logger.debug("ignoring surplus argument '%s'", field.strip())
                break
            bindings[unbound[0]] = self._parse(field, offset + start)
        return bindings


def parse(source: str, environment: Environment) -> Expression:
    return Parser(environment).parse(source)


# Driver


class Context:
    def __init__(
        self, environment: Environment | None = None, align_decimals: bool = False
    ) -> None:
        self._code = ""
        self._keywords = ["exit", "list", "get", "set"]
        self._settings: dict[str, int] = {
            "align_decimals": int(align_decimals),
        }
        self.environment = environment or Environment.standard()
        self.parser = Parser(self.environment)
        self.redirected_stdin = False

    def _rl_completer(self, text: str, state: int) -> str | None:
        candidates = self._keywords + list(
            self.environment.table(Namespace.FUNCTIONS)
        )
        for prefix, namespace in prefixes.items():
            candidates += [
                f"{prefix}.{key}" for key in self.environment.table(namespace)
            ]
        options = [c for c in candidates if c.startswith(text)]
        return options[state] if state < len(options) else None

    def _is_exit_stmt(self, words: list[str]) -> bool:
        if words[0] != "exit":
            return False
        if len(words) > 1:
            start = self._code.index(words[1])
            raise CalcError(
                ErrorKind.INVALID_OPERAND,
                self._code,
                (start, len(self._code)),
                "type 'exit' is enough",
            )
        return True

    def _is_list_stmt(self, words: list[str]) -> bool:
        if words[0] != "list":
            return False
        if len(words) != 2:
            raise CalcError(
                ErrorKind.INVALID_OPERAND,
                self._code,
                (0, len(self._code)),
                "usage: list <namespace>",
            )
        return True

    def _is_get_stmt(self, words: list[str]) -> bool:
        if words[0] != "get":
            return False
        if len(words) != 2:
            raise CalcError(
                ErrorKind.INVALID_OPERAND,
                self._code,
                (0, len(self._code)),
                "usage: get <setting>",
            )
        return True

    def _is_set_stmt(self, words: list[str]) -> bool:
        if words[0] != "set":
            return False
        if "=" not in self._code:
            raise CalcError(
                ErrorKind.INVALID_OPERAND,
                self._code,
                (0, len(self._code)),
                "usage: set <setting> = <value>",
            )
        return True

    def _setting_name(self, name: str) -> str:
        if name not in self._settings:
            start = self._code.index(name)
            raise CalcError(
                ErrorKind.UNKNOWN_REFERENCE,
                self._code,
                (start, start + len(name)),
                f"setting name '{name}' is not defined",
            )
        return name

    def _display_diagnostics(self) -> None:
        for error in self.parser.diagnostics:
            display_error(error)

    def list_namespace(self, prefix: str) -> None:
        try:
            namespace = self.environment.namespace(prefix)
        except CalcError as error:
            start = self._code.index(prefix)
            raise CalcError(
                error.kind, self._code, (start, start + len(prefix)), error.message
            )
        for key, expression in self.environment.table(namespace).items():
            print(f"{key}={expression.description()}")

    def get_setting(self, name: str) -> None:
        name = self._setting_name(name)
        print(f"{name}={self._settings[name]}")

    def set_setting(self, name: str, source: str) -> None:
        name = self._setting_name(name.strip())
        expression = self.parser.parse(source)
        self._display_diagnostics()
        result = expression.value()
        if not (isinstance(result, Exact) and result.denominator == 1):
            raise CalcError(
                ErrorKind.INVALID_OPERAND,
                message=f"setting '{name}' needs an integer value",
            )
        self._settings[name] = result.numerator
        if not self.redirected_stdin:
            print(f"{name}={self._settings[name]}")

    def assign(self, target: str, source: str) -> None:
        try:
            namespace, key = self.environment.resolve(target)
        except CalcError as error:
            raise CalcError(
                error.kind, self._code, (0, len(target.rstrip())), error.message
            )
        expression = self.parser.parse(source)
        self._display_diagnostics()
        if isinstance(expression, Missing):
            print("didn't assign, the expression could not be parsed")
            return
        if namespace != Namespace.USER:
            print(f"can't assign to the {namespace.value} namespace, using u.{key}")
        self.environment.assign(key, expression)
        if not self.redirected_stdin:
            print(f"u.{key}={expression.description()}")

    def calculate(self, source: str) -> Number | None:
        expression = self.parser.parse(source)
        self._display_diagnostics()
        if isinstance(expression, Missing):
            print("could not evaluate this line")
            return None
        if expression.list_free_variables():
            print(expression.description())
            return None
        try:
            result = expression.value(bool(self._settings["align_decimals"]))
        except CalcError as error:
            display_error(error)
            print(expression.description())
            return None
        self.environment.assign("ans", constant(result))
        print(f"{expression.description()} = {result}")
        return result

    def execute(self, code: str) -> None:
        self._code = code.strip()
        words = self._code.split()
        if len(words) == 0:
            return
        if self._is_exit_stmt(words):
            sys.exit(0)
        elif self._is_list_stmt(words):
            self.list_namespace(words[1])
        elif self._is_get_stmt(words):
            self.get_setting(words[1])
        elif self._is_set_stmt(words):
            name, _, source = self._code[3:].partition("=")
            self.set_setting(name, source)
        elif "<<" in self._code:
            target, _, source = self._code.partition("<<")
            self.assign(target, source)
        else:
            self.calculate(self._code)


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="sigcalc", description="a significant-figure calculator"
    )
    parser.add_argument(
        "-q", "--quiet", action="store_false", help="don't print initial banner"
    )
    parser.add_argument(
        "-v", "--version", action="version", version=f"sigcalc {__version__}"
    )
    parser.add_argument(
        "--align-decimals",
        action="store_true",
        help="round sums and differences to the coarsest decimal place",
    )
    parser.add_argument("--debug", action="store_true", help="trace the parser")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )
    ctx = Context(align_decimals=args.align_decimals)
    if not sys.stdin.isatty():
        ctx.redirected_stdin = True
        status = 0
        for line in (s.strip() for s in sys.stdin.readlines()):
            try:
                if len(line) > 0:
                    ctx.execute(line)
            except CalcError as error:
                display_error(error)
                status = 1
        return status
    if is_rl_available:
        readline.parse_and_bind("tab:complete")
        readline.set_completer(ctx._rl_completer)
    if args.quiet:
        print(f"sigcalc {__version__}, a significant-figure calculator")
        print("Copyright (c) 2024 zhengxyz123")
        print("This is an open source software released under MIT license.")
    while True:
        try:
            line = input(">>> ")
        except (EOFError, KeyboardInterrupt):
            print()
            sys.exit(0)
        try:
            ctx.execute(line)
        except CalcError as error:
            display_error(error)


if __name__ == "__main__":
    sys.exit(main())
