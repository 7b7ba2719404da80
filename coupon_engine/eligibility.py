from typing import Iterable, List, Mapping, Set

from .models import BogoCoupon, Coupon, PercentSpecificCoupon, PricedLine


def normalize_sku(sku: str) -> str:
    return sku.strip().lower()


def _sku_set(values: Iterable[str]) -> Set[str]:
    return {normalize_sku(v) for v in values if v and v.strip()}


def is_eligible(coupon: Coupon, line: PricedLine) -> bool:
    if line.quantity <= 0:
        return False

    if isinstance(coupon, PercentSpecificCoupon):
        # An empty allow-list means nothing qualifies, not everything.
        return normalize_sku(line.sku) in _sku_set(coupon.eligibleProducts)

    if isinstance(coupon, BogoCoupon):
        allowed = _sku_set(coupon.bogoEligibleSkus)
        if not allowed:
            return True
        return normalize_sku(line.sku) in allowed

    return True


def eligibility_mask(coupon: Coupon, lines: Iterable[PricedLine]) -> List[bool]:
    return [is_eligible(coupon, line) for line in lines]


def eligible_lines(coupon: Coupon, lines: Iterable[PricedLine]) -> List[PricedLine]:
    """Qualifying lines, in cart order."""
    return [line for line in lines if is_eligible(coupon, line)]


def expand_eligible_categories(
    coupon: Coupon, category_skus: Mapping[str, Iterable[str]]
) -> Coupon:
    """
    Flatten a coupon's eligible categories into its SKU allow-list.

    category_skus maps a category id or slug to the SKUs filed under it; the
    lookup is owned by the catalog, so the caller builds it. Category keys
    match case-insensitively. Coupons without category restrictions are
    returned unchanged.
    """
    if not isinstance(coupon, PercentSpecificCoupon) or not coupon.eligibleCategories:
        return coupon

    wanted = {c.strip().lower() for c in coupon.eligibleCategories}
    products = list(coupon.eligibleProducts)
    seen = _sku_set(products)
    for category, skus in category_skus.items():
        if category.strip().lower() not in wanted:
            continue
        for sku in skus:
            if normalize_sku(sku) not in seen:
                seen.add(normalize_sku(sku))
                products.append(sku)

    return coupon.model_copy(update={"eligibleProducts": products})
