from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from .errors import ConfigurationError
from .models import (
    BogoCoupon,
    Coupon,
    RejectionReason,
    UsageCounts,
    ValidityCheck,
)

PERCENT_TYPES = ("percent_all", "percent_specific")
HUNDRED = Decimal("100")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    # Naive datetimes are read as UTC so stored dates compare with "now".
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def has_started(coupon: Coupon, now: datetime) -> bool:
    return coupon.startDate is None or as_utc(coupon.startDate) <= as_utc(now)


def has_ended(coupon: Coupon, now: datetime) -> bool:
    return coupon.endDate is not None and as_utc(coupon.endDate) < as_utc(now)


def is_within_date_range(coupon: Coupon, now: Optional[datetime] = None) -> bool:
    if now is None:
        now = utcnow()
    return has_started(coupon, now) and not has_ended(coupon, now)


def has_remaining_usage(limit: Optional[int], used: int) -> bool:
    if limit is None:
        return True
    return used < limit


def stacking_ok(coupon: Coupon, applied: Sequence[Coupon]) -> bool:
    others = [c for c in applied if c.code != coupon.code]
    if not others:
        return True
    if not coupon.stackable:
        return False
    return all(c.stackable for c in others)


def check_validity(
    coupon: Coupon,
    *,
    subtotal: Decimal,
    now: Optional[datetime] = None,
    usage: Optional[UsageCounts] = None,
    user_id: Optional[str] = None,
    applied: Sequence[Coupon] = (),
) -> ValidityCheck:
    """
    Run the acceptance checks for one coupon against one cart.

    Checks run in a fixed order and the first failure is the reported
    reason:
     1. active flag
     2. validity window
     3. minimum cart value
     4. global usage limit
     5. per-user usage limit
     6. stacking with coupons already applied in this transaction

    Usage counters are only read here; they are incremented when the order
    commits.
    """
    if now is None:
        now = utcnow()
    if usage is None:
        usage = UsageCounts()

    check = ValidityCheck()

    if not coupon.isActive:
        return check.reject(RejectionReason.COUPON_INACTIVE)

    if not has_started(coupon, now):
        return check.reject(RejectionReason.COUPON_NOT_YET_ACTIVE)

    if has_ended(coupon, now):
        return check.reject(RejectionReason.COUPON_EXPIRED)

    if coupon.minCartValue is not None and subtotal < coupon.minCartValue:
        return check.reject(RejectionReason.MIN_CART_VALUE_NOT_MET)

    if not has_remaining_usage(coupon.usageLimit, usage.redeemedGlobal):
        return check.reject(RejectionReason.COUPON_USAGE_EXCEEDED)

    if coupon.usageLimitPerUser is not None:
        if not user_id:
            return check.reject(RejectionReason.MISSING_USER_IDENTIFIER)
        if not has_remaining_usage(coupon.usageLimitPerUser, usage.redeemedForUser):
            return check.reject(RejectionReason.COUPON_USAGE_PER_USER_EXCEEDED)

    if not stacking_ok(coupon, applied):
        return check.reject(RejectionReason.STACKING_CONFLICT)

    return check.accept()


def deactivate_if_expired(coupon: Coupon, now: Optional[datetime] = None) -> Coupon:
    """Flip isActive off once endDate has passed. Never turns a coupon back on."""
    if now is None:
        now = utcnow()
    if coupon.isActive and has_ended(coupon, now):
        return coupon.model_copy(update={"isActive": False})
    return coupon


def validate_coupon_definition(coupon: Coupon) -> Coupon:
    """Enforce the contracts a coupon must satisfy before it is stored."""
    if not coupon.code:
        raise ConfigurationError("Coupon code is required")

    value = coupon.discountValue
    if isinstance(coupon, BogoCoupon):
        if not (0 < value <= HUNDRED):
            raise ConfigurationError(
                f"{coupon.code}: BOGO discount must be within (0, 100], got {value}"
            )
        if coupon.bogoBuyQuantity < 1 or coupon.bogoGetQuantity < 1:
            raise ConfigurationError(
                f"{coupon.code}: BOGO buy/get quantities must be at least 1"
            )
    else:
        if value <= 0:
            raise ConfigurationError(
                f"{coupon.code}: discount value is required for {coupon.discountType} coupons"
            )
        if coupon.discountType in PERCENT_TYPES and value > HUNDRED:
            raise ConfigurationError(
                f"{coupon.code}: percentage cannot exceed 100, got {value}"
            )

    if coupon.minCartValue is not None and coupon.minCartValue < 0:
        raise ConfigurationError(f"{coupon.code}: minimum cart value cannot be negative")

    for name in ("usageLimit", "usageLimitPerUser"):
        limit = getattr(coupon, name)
        if limit is not None and limit < 0:
            raise ConfigurationError(f"{coupon.code}: {name} cannot be negative")

    if (
        coupon.startDate is not None
        and coupon.endDate is not None
        and as_utc(coupon.startDate) > as_utc(coupon.endDate)
    ):
        raise ConfigurationError(f"{coupon.code}: startDate is after endDate")

    return coupon
