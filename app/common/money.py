"""
Aritmética monetaria con Decimal.

Todo redondeo es "half away from zero" (ROUND_HALF_UP en Decimal), así
1.005 -> 1.01 y -1.005 -> -1.01.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

ZERO = Decimal("0")
CENT = Decimal("0.01")
TEN_THOUSANDTH = Decimal("0.0001")


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    # str() evita arrastrar el error binario de los float
    return Decimal(str(value))


def round2(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round4(value: Any) -> Decimal:
    return to_decimal(value).quantize(TEN_THOUSANDTH, rounding=ROUND_HALF_UP)
