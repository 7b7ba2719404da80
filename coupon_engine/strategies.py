"""
Discount algorithms, one per coupon type.

Every algorithm takes the coupon and its eligible priced lines (in cart
order) and returns a DiscountResult whose per-line allocations add up to
discountAmount exactly. Business outcomes such as "nothing qualifies" come
back as a zero result; only malformed coupons raise.
"""
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Sequence, Tuple

from .config import settings
from .eligibility import eligible_lines
from .errors import ConfigurationError
from .models import (
    BogoCoupon,
    CartItem,
    Coupon,
    DiscountResult,
    FixedCoupon,
    LineDiscount,
    PercentAllCoupon,
    PercentSpecificCoupon,
    PricedLine,
)
from .pricing import ZERO, floor_money, price_lines, quantize_money, subtotal

HUNDRED = Decimal("100")

Allocation = Tuple[PricedLine, int, Decimal]


def _percentage(coupon: Coupon) -> Decimal:
    value = coupon.discountValue
    if value < 0 or value > HUNDRED:
        raise ConfigurationError(
            f"{coupon.code}: percentage must be within [0, 100], got {value}"
        )
    return value / HUNDRED


def _empty(coupon: Coupon) -> DiscountResult:
    return DiscountResult(
        appliedCode=coupon.code,
        discountType=coupon.discountType,
        discountAmount=quantize_money(ZERO),
    )


def _build_result(coupon: Coupon, allocations: Iterable[Allocation]) -> DiscountResult:
    per_line: Dict[str, Decimal] = {}
    items: List[LineDiscount] = []
    for line, units, amount in allocations:
        per_line[line.sku] = per_line.get(line.sku, ZERO) + amount
        items.append(
            LineDiscount(
                sku=line.sku,
                quantity=units,
                unitPrice=line.effectiveUnitPrice,
                discountAmount=amount,
            )
        )

    return DiscountResult(
        appliedCode=coupon.code,
        discountType=coupon.discountType,
        discountAmount=quantize_money(sum(per_line.values(), ZERO)),
        perLineDiscounts={sku: quantize_money(v) for sku, v in per_line.items()},
        discountedItems=items,
    )


# ---------------------------
# Allocators
# ---------------------------

def allocate_proportionally(amount: Decimal, weights: Sequence[Decimal]) -> List[Decimal]:
    """
    Split amount across weights in proportion to each weight.

    Shares are rounded down to the minor unit, then the leftover units go
    one each to the largest fractional remainders (cart order on ties). The
    shares sum to amount exactly, none goes negative, and while amount does
    not exceed the total weight no share exceeds its own weight. A zero
    total weight divides by 1 instead.
    """
    if not weights:
        return []

    total = sum(weights, ZERO)
    denominator = total if total != 0 else Decimal(1)

    exact = [amount * weight / denominator for weight in weights]
    shares = [floor_money(value) for value in exact]

    unit = settings.minor_unit
    leftover = int((amount - sum(shares, ZERO)) / unit)
    by_remainder = sorted(range(len(shares)), key=lambda i: shares[i] - exact[i])
    for i in by_remainder[:leftover]:
        shares[i] += unit

    # Only a zero total weight leaves anything here.
    shares[-1] += amount - sum(shares, ZERO)
    return shares


def allocate_bogo_units(free_units: int, lines: Sequence[PricedLine]) -> List[Tuple[PricedLine, int]]:
    """Hand out free units greedily in cart order, capped by each line's quantity."""
    allocations = []
    remaining = free_units
    for line in lines:
        if remaining <= 0:
            break
        units = min(remaining, line.quantity)
        if units <= 0:
            continue
        allocations.append((line, units))
        remaining -= units
    return allocations


# ---------------------------
# Algorithms
# ---------------------------

def percent_all_discount(coupon: PercentAllCoupon, lines: Sequence[PricedLine]) -> DiscountResult:
    pct = _percentage(coupon)
    if not lines:
        return _empty(coupon)

    amount = quantize_money(subtotal(lines) * pct)
    if amount <= 0:
        return _empty(coupon)

    shares = allocate_proportionally(amount, [line.lineTotal for line in lines])
    return _build_result(
        coupon, [(line, line.quantity, share) for line, share in zip(lines, shares)]
    )


def percent_specific_discount(
    coupon: PercentSpecificCoupon, lines: Sequence[PricedLine]
) -> DiscountResult:
    pct = _percentage(coupon)
    if not lines:
        return _empty(coupon)

    return _build_result(
        coupon,
        [(line, line.quantity, quantize_money(line.lineTotal * pct)) for line in lines],
    )


def fixed_discount(coupon: FixedCoupon, lines: Sequence[PricedLine]) -> DiscountResult:
    raw = coupon.discountValue
    # Non-positive amounts yield nothing, not a proportional split of zero.
    if raw <= 0 or not lines:
        return _empty(coupon)

    amount = min(quantize_money(raw), subtotal(lines))
    if amount <= 0:
        return _empty(coupon)

    shares = allocate_proportionally(amount, [line.lineTotal for line in lines])
    return _build_result(
        coupon, [(line, line.quantity, share) for line, share in zip(lines, shares)]
    )


def bogo_discount(coupon: BogoCoupon, lines: Sequence[PricedLine]) -> DiscountResult:
    buy_qty = coupon.bogoBuyQuantity
    get_qty = coupon.bogoGetQuantity
    if buy_qty < 1 or get_qty < 1:
        raise ConfigurationError(
            f"{coupon.code}: BOGO buy/get quantities must be at least 1"
        )
    pct = _percentage(coupon)

    total_qty = sum(line.quantity for line in lines)
    free_units = (total_qty // (buy_qty + get_qty)) * get_qty
    if free_units == 0:
        return _empty(coupon)

    allocations = [
        (line, units, quantize_money(units * line.effectiveUnitPrice * pct))
        for line, units in allocate_bogo_units(free_units, lines)
    ]
    return _build_result(coupon, allocations)


# ---------------------------
# Resolver
# ---------------------------

Strategy = Callable[[Coupon, Sequence[PricedLine]], DiscountResult]

STRATEGIES: Dict[str, Strategy] = {
    "percent_all": percent_all_discount,
    "percent_specific": percent_specific_discount,
    "fixed": fixed_discount,
    "bogo": bogo_discount,
}


def resolve_strategy(coupon: Coupon) -> Strategy:
    try:
        return STRATEGIES[coupon.discountType]
    except KeyError:
        raise ConfigurationError(f"Unknown discount type: {coupon.discountType}")


def compute_discount(coupon: Coupon, items: Iterable[CartItem]) -> DiscountResult:
    lines = price_lines(items)
    return resolve_strategy(coupon)(coupon, eligible_lines(coupon, lines))
