from decimal import Decimal
from typing import Dict, List, Sequence

from .models import AggregateResult, DiscountResult
from .pricing import ZERO, quantize_money
from .strategies import allocate_proportionally


def _scale_result(result: DiscountResult, amount: Decimal) -> DiscountResult:
    """Shrink one coupon's result to amount, re-spreading it over the same lines."""
    skus = list(result.perLineDiscounts)
    shares = allocate_proportionally(amount, [result.perLineDiscounts[s] for s in skus])
    per_line = dict(zip(skus, shares))

    items = []
    remaining = dict(per_line)
    for item in result.discountedItems:
        # Lines sharing a SKU were merged above; the first one carries the share.
        share = remaining.pop(item.sku, ZERO)
        items.append(item.model_copy(update={"discountAmount": share}))

    return result.model_copy(
        update={
            "discountAmount": amount,
            "perLineDiscounts": per_line,
            "discountedItems": items,
        }
    )


def aggregate_results(subtotal: Decimal, results: Sequence[DiscountResult]) -> AggregateResult:
    """
    Combine stackable coupon results computed against the same cart.

    Coupons never compound: each one was computed on the original subtotal.
    When their sum exceeds the subtotal every contribution is scaled down
    proportionally so the total equals the subtotal exactly.
    """
    subtotal = quantize_money(subtotal)
    total = quantize_money(sum((r.discountAmount for r in results), ZERO))

    contributions: List[DiscountResult] = list(results)
    clamped = total > subtotal
    if clamped:
        amounts = allocate_proportionally(subtotal, [r.discountAmount for r in results])
        contributions = [_scale_result(r, a) for r, a in zip(results, amounts)]
        total = subtotal

    per_line: Dict[str, Decimal] = {}
    for result in contributions:
        for sku, amount in result.perLineDiscounts.items():
            per_line[sku] = per_line.get(sku, ZERO) + amount

    return AggregateResult(
        subtotal=subtotal,
        discountAmount=total,
        newSubtotal=subtotal - total,
        perLineDiscounts={sku: quantize_money(v) for sku, v in per_line.items()},
        contributions=contributions,
        clamped=clamped,
    )
