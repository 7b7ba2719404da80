from decimal import Decimal
from typing import Iterable, List

from .config import settings
from .models import CartItem, PricedLine

ZERO = Decimal("0")


def quantize_money(value) -> Decimal:
    return Decimal(value).quantize(settings.minor_unit, rounding=settings.rounding)


def floor_money(value) -> Decimal:
    return Decimal(value).quantize(settings.minor_unit, rounding="ROUND_DOWN")


def effective_unit_price(item: CartItem) -> Decimal:
    if item.salePrice is not None and item.salePrice > 0:
        return item.salePrice
    return item.unitPrice


def line_total(item: CartItem) -> Decimal:
    quantity = max(item.quantity, 0)
    return quantize_money(effective_unit_price(item) * quantity)


def price_lines(items: Iterable[CartItem]) -> List[PricedLine]:
    return [
        PricedLine(
            sku=item.sku,
            quantity=max(item.quantity, 0),
            effectiveUnitPrice=effective_unit_price(item),
            lineTotal=line_total(item),
        )
        for item in items
    ]


def subtotal(lines: Iterable[PricedLine]) -> Decimal:
    return quantize_money(sum((line.lineTotal for line in lines), ZERO))
