"""Tax-adjusted storefront pricing"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Union

DEFAULT_TAX_MULTIPLIER = 1.22

Number = Union[int, float, str, Decimal]


def _to_decimal(value) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


def normalize_tax_multiplier(tax, default: Number = DEFAULT_TAX_MULTIPLIER) -> Decimal:
    """
    Turn Zureo's tax field into a multiplier.

    Missing or non-positive values use the default. Values of 2 or more are
    percentages (22 -> 1.22).
    """
    multiplier = _to_decimal(tax)
    if multiplier is None or multiplier <= 0:
        return Decimal(str(default))
    if multiplier >= 2:
        return 1 + multiplier / 100
    return multiplier


def resolve_source_price(base_price, variant_price=None) -> Optional[Decimal]:
    """The variety's own price when it has one, otherwise the product's"""
    variant = _to_decimal(variant_price)
    if variant is not None and variant > 0:
        return variant
    return _to_decimal(base_price)


def compute_price(base_price, variant_price=None, tax_multiplier=None,
                  default_tax: Number = DEFAULT_TAX_MULTIPLIER) -> Optional[int]:
    """
    Storefront price: source price times tax, rounded half-up to an integer.

    Returns None when neither price is usable.
    """
    source = resolve_source_price(base_price, variant_price)
    if source is None:
        return None
    multiplier = normalize_tax_multiplier(tax_multiplier, default_tax)
    return int((source * multiplier).quantize(Decimal('1'), rounding=ROUND_HALF_UP))
