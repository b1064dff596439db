"""
Helpers de redondeo monetario.

Todos los montos se guardan como Numeric(15, 2); los cálculos intermedios
se hacen con Decimal y se redondean a centavos con ROUND_HALF_UP.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Union

from mostrador.core.config import settings

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # float -> str evita arrastrar el error binario
    return Decimal(str(value))


def money(value: Number) -> Decimal:
    """Redondea a centavos (ROUND_HALF_UP)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def money_sum(values: Iterable[Number]) -> Decimal:
    total = ZERO
    for value in values:
        total += to_decimal(value)
    return money(total)


def amounts_match(a: Number, b: Number, tolerance: Number = None) -> bool:
    """True si |a - b| <= tolerancia (por defecto MONEY_TOLERANCE)."""
    tol = to_decimal(tolerance) if tolerance is not None else settings.MONEY_TOLERANCE
    return abs(to_decimal(a) - to_decimal(b)) <= tol


def apply_discount(subtotal: Number, discount: Number, discount_type: str) -> Decimal:
    """
    Total después del descuento, con piso en 0.

    discount_type: "fixed" (monto) o "percentage" (0-100 sobre el subtotal).
    """
    subtotal = to_decimal(subtotal)
    discount = to_decimal(discount or 0)
    if discount_type == "percentage":
        discount_amount = subtotal * discount / Decimal("100")
    else:
        discount_amount = discount
    return money(max(subtotal - discount_amount, ZERO))
