from datetime import datetime, timezone
from decimal import Decimal

from coupon_engine.models import Cart, CartItem

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


def item(sku, quantity, price, sale=None):
    return CartItem(
        sku=sku,
        quantity=quantity,
        unitPrice=Decimal(str(price)),
        salePrice=None if sale is None else Decimal(str(sale)),
    )


def cart(*items):
    return Cart(items=list(items))
