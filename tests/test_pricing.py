from decimal import Decimal

from coupon_engine.pricing import effective_unit_price, line_total, price_lines, subtotal
from tests.helpers import item


def test_subtotal_with_regular_prices():
    lines = price_lines([item("1234-5678", 2, 300), item("2345-6789", 1, 150)])
    assert subtotal(lines) == Decimal("750")


def test_sale_price_overrides_list_price():
    lines = price_lines([item("1234-5678", 2, 300, sale=250), item("2345-6789", 1, 150)])
    assert subtotal(lines) == Decimal("650")
    assert lines[0].effectiveUnitPrice == Decimal("250")


def test_zero_sale_price_is_ignored():
    assert effective_unit_price(item("A", 1, 300, sale=0)) == Decimal("300")


def test_non_positive_quantity_contributes_nothing():
    assert line_total(item("A", 0, 300)) == Decimal("0")
    assert line_total(item("A", -3, 300)) == Decimal("0")
    lines = price_lines([item("A", -1, 300), item("B", 2, "9.99")])
    assert lines[0].quantity == 0
    assert subtotal(lines) == Decimal("19.98")


def test_subtotal_equals_sum_of_line_totals():
    items = [item("A", 3, "19.99"), item("B", 1, "0.01", sale="0.005"), item("C", 7, "4.35")]
    lines = price_lines(items)
    assert subtotal(lines) == sum(line.lineTotal for line in lines)
