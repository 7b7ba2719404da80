from decimal import Decimal

from coupon_engine.aggregation import aggregate_results
from coupon_engine.models import FixedCoupon, PercentAllCoupon, PercentSpecificCoupon
from coupon_engine.strategies import compute_discount
from tests.helpers import item

ITEMS = [item("A", 2, 300), item("B", 1, 150)]


def test_single_coupon_passes_through():
    result = compute_discount(PercentAllCoupon(code="P", discountValue=Decimal("20")), ITEMS)
    aggregate = aggregate_results(Decimal("750"), [result])
    assert aggregate.discountAmount == Decimal("150")
    assert aggregate.newSubtotal == Decimal("600")
    assert aggregate.perLineDiscounts == result.perLineDiscounts
    assert aggregate.clamped is False


def test_coupons_do_not_compound():
    pct = compute_discount(PercentAllCoupon(code="P", discountValue=Decimal("10")), ITEMS)
    flat = compute_discount(FixedCoupon(code="F", discountValue=Decimal("75")), ITEMS)
    aggregate = aggregate_results(Decimal("750"), [pct, flat])
    # 10% of the original 750 plus 75, not 10% of 675.
    assert aggregate.discountAmount == Decimal("150")
    assert aggregate.perLineDiscounts == {"A": Decimal("120.00"), "B": Decimal("30.00")}


def test_sums_per_sku_across_coupons():
    some = compute_discount(
        PercentSpecificCoupon(code="S", discountValue=Decimal("50"), eligibleProducts=["B"]), ITEMS
    )
    flat = compute_discount(FixedCoupon(code="F", discountValue=Decimal("75")), ITEMS)
    aggregate = aggregate_results(Decimal("750"), [some, flat])
    assert aggregate.perLineDiscounts == {"B": Decimal("90.00"), "A": Decimal("60.00")}
    assert aggregate.discountAmount == Decimal("150")


def test_total_clamped_to_subtotal_and_reconciled():
    big = compute_discount(FixedCoupon(code="F", discountValue=Decimal("600")), ITEMS)
    pct = compute_discount(PercentAllCoupon(code="P", discountValue=Decimal("40")), ITEMS)
    aggregate = aggregate_results(Decimal("750"), [big, pct])

    assert aggregate.clamped is True
    assert aggregate.discountAmount == Decimal("750")
    assert aggregate.newSubtotal == 0
    # 600 : 300 scaled to 750 -> 500 : 250
    assert [c.discountAmount for c in aggregate.contributions] == [Decimal("500.00"), Decimal("250.00")]
    for contribution in aggregate.contributions:
        assert sum(contribution.perLineDiscounts.values()) == contribution.discountAmount
        assert sum(d.discountAmount for d in contribution.discountedItems) == contribution.discountAmount
    assert sum(aggregate.perLineDiscounts.values()) == Decimal("750")


def test_scaled_contributions_never_exceed_their_unscaled_lines():
    items = [item("A", 1, "1.00"), item("B", 1, "1.00"), item("C", 1, "0.01")]
    first = compute_discount(FixedCoupon(code="F", discountValue=Decimal("2.00")), items)
    second = compute_discount(PercentAllCoupon(code="P", discountValue=Decimal("50")), items)
    aggregate = aggregate_results(Decimal("2.01"), [first, second])

    assert aggregate.discountAmount == Decimal("2.01")
    for original, scaled in zip([first, second], aggregate.contributions):
        for sku, amount in scaled.perLineDiscounts.items():
            assert Decimal("0") <= amount <= original.perLineDiscounts[sku]
        assert sum(scaled.perLineDiscounts.values()) == scaled.discountAmount


def test_no_results():
    aggregate = aggregate_results(Decimal("10"), [])
    assert aggregate.discountAmount == 0
    assert aggregate.perLineDiscounts == {}
    assert aggregate.newSubtotal == Decimal("10")
