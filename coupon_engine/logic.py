import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .aggregation import aggregate_results
from .errors import RaceConflict
from .models import (
    AggregateResult,
    AppliedCoupon,
    BogoCoupon,
    Cart,
    CommitResult,
    Coupon,
    CouponEvaluation,
    DiscountResult,
    FixedCoupon,
    Quote,
    RejectionReason,
    UsageCounts,
    ValidityCheck,
)
from .pricing import ZERO, price_lines, quantize_money, subtotal
from .storage import LEDGER, RedemptionLedger
from .strategies import compute_discount
from .validity import as_utc, check_validity

logger = logging.getLogger(__name__)

UsageSource = Union[Mapping[str, UsageCounts], Callable[[str], UsageCounts], None]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def compute_cart_value(cart: Cart) -> Decimal:
    return subtotal(price_lines(cart.items))


def compute_items_count(cart: Cart) -> int:
    return sum(max(item.quantity, 0) for item in cart.items)


def _usage_for(usage: UsageSource, code: str) -> UsageCounts:
    if usage is None:
        return UsageCounts()
    if callable(usage):
        return usage(code)
    return usage.get(code, UsageCounts())


def _zero_result(coupon: Coupon) -> DiscountResult:
    return DiscountResult(
        appliedCode=coupon.code,
        discountType=coupon.discountType,
        discountAmount=quantize_money(ZERO),
    )


def _rejected(coupon: Coupon, check: ValidityCheck) -> CouponEvaluation:
    logger.info(f"Coupon {coupon.code} not applied: {check.reason.value}")
    return CouponEvaluation(coupon=coupon, check=check, result=_zero_result(coupon))


def evaluate_coupon(
    coupon: Coupon,
    cart: Cart,
    *,
    now: Optional[datetime] = None,
    usage: UsageSource = None,
    user_id: Optional[str] = None,
    applied: Sequence[Coupon] = (),
) -> CouponEvaluation:
    """
    Validate one coupon against the cart and, if accepted, compute its discount.

    A rejection is a normal outcome: the evaluation carries a zero result and
    the reason code, and checkout carries on without the discount.
    """
    check = check_validity(
        coupon,
        subtotal=compute_cart_value(cart),
        now=now,
        usage=_usage_for(usage, coupon.code),
        user_id=user_id,
        applied=applied,
    )
    if not check.accepted:
        return _rejected(coupon, check)

    if compute_items_count(cart) == 0:
        return _rejected(coupon, check.reject(RejectionReason.COUPON_NOT_APPLICABLE))

    result = compute_discount(coupon, cart.items)
    if result.discountAmount <= 0:
        # Nothing in the cart qualified, or BOGO quantity fell short.
        return _rejected(coupon, check.reject(RejectionReason.COUPON_NOT_APPLICABLE))

    return CouponEvaluation(coupon=coupon, check=check, result=result)


def quote_cart(
    cart: Cart,
    coupons: Iterable[Coupon],
    *,
    now: Optional[datetime] = None,
    usage: UsageSource = None,
    user_id: Optional[str] = None,
) -> Quote:
    """Evaluate coupons in order, each against those already accepted, and stack them."""
    evaluations: List[CouponEvaluation] = []
    applied: List[Coupon] = []
    seen = set()

    for coupon in coupons:
        if coupon.code in seen:
            continue
        seen.add(coupon.code)

        evaluation = evaluate_coupon(
            coupon, cart, now=now, usage=usage, user_id=user_id, applied=applied
        )
        evaluations.append(evaluation)
        if evaluation.applied:
            applied.append(coupon)

    cart_value = compute_cart_value(cart)
    aggregate = aggregate_results(cart_value, [e.result for e in evaluations if e.applied])
    return Quote(subtotal=cart_value, evaluations=evaluations, aggregate=aggregate)


def pick_best_coupon(candidates: Sequence[CouponEvaluation]) -> Optional[CouponEvaluation]:
    """
    Rule:
     1. Highest discount
     2. If tie, earliest endDate (open-ended coupons last)
     3. If still tie, lexicographically smaller code
    """
    if not candidates:
        return None

    return sorted(
        candidates,
        key=lambda e: (
            -e.result.discountAmount,
            e.coupon.endDate is None,
            as_utc(e.coupon.endDate) if e.coupon.endDate else _EPOCH,
            e.coupon.code,
        ),
    )[0]


def best_auto_apply(
    cart: Cart,
    coupons: Iterable[Coupon],
    *,
    now: Optional[datetime] = None,
    usage: UsageSource = None,
    user_id: Optional[str] = None,
) -> Optional[CouponEvaluation]:
    candidates = []
    for coupon in coupons:
        if not (coupon.autoApply and coupon.isActive):
            continue
        evaluation = evaluate_coupon(coupon, cart, now=now, usage=usage, user_id=user_id)
        if evaluation.applied:
            candidates.append(evaluation)

    return pick_best_coupon(candidates)


def _format_number(value: Decimal) -> str:
    return format(value.normalize(), "f")


def describe_coupon(coupon: Coupon) -> str:
    if coupon.description:
        return coupon.description

    if isinstance(coupon, BogoCoupon):
        buy, get = coupon.bogoBuyQuantity, coupon.bogoGetQuantity
        if coupon.discountValue >= 100:
            return f"Buy {buy}, get {get} free"
        return f"Buy {buy}, get {get} at {_format_number(coupon.discountValue)}% off"

    if isinstance(coupon, FixedCoupon):
        return f"{quantize_money(coupon.discountValue)} off"

    return f"{_format_number(coupon.discountValue)}% off"


def _applied_records(aggregate: AggregateResult, coupons: Dict[str, Coupon]) -> List[AppliedCoupon]:
    return [
        AppliedCoupon(
            code=result.appliedCode,
            discountAmount=result.discountAmount,
            discountType=result.discountType,
            description=describe_coupon(coupons[result.appliedCode]),
        )
        for result in aggregate.contributions
    ]


def applied_coupons(quote: Quote) -> List[AppliedCoupon]:
    coupons = {e.coupon.code: e.coupon for e in quote.evaluations if e.applied}
    return _applied_records(quote.aggregate, coupons)


def commit_order_coupons(
    quote: Quote,
    *,
    order_id: str,
    user_id: Optional[str] = None,
    ledger: RedemptionLedger = LEDGER,
) -> CommitResult:
    """
    Record redemptions for a finalized order.

    A coupon whose limit was used up by a concurrent checkout since the quote
    is dropped; the order still completes with the remaining coupons.
    """
    coupons = {e.coupon.code: e.coupon for e in quote.evaluations if e.applied}
    kept: List[DiscountResult] = []
    dropped: List[str] = []

    for result in quote.results:
        try:
            ledger.redeem(coupons[result.appliedCode], user_id, order_id)
        except RaceConflict as exc:
            logger.warning(f"Dropping coupon {exc.code} from order {order_id}: {exc.reason}")
            dropped.append(exc.code)
            continue
        kept.append(result)

    aggregate = aggregate_results(quote.subtotal, kept)
    return CommitResult(
        orderId=order_id,
        appliedCoupons=_applied_records(aggregate, coupons),
        droppedCodes=dropped,
        aggregate=aggregate,
    )
