import json
import logging
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import ConfigurationError, RaceConflict
from .models import (
    Coupon,
    CouponListAdapter,
    CouponRedemption,
    RejectionReason,
    UsageCounts,
    normalize_code,
)
from .validity import deactivate_if_expired, has_remaining_usage, validate_coupon_definition

logger = logging.getLogger(__name__)


class CouponRepository:
    """In-memory coupon lookup keyed by canonical (upper-case) code."""

    def __init__(self):
        self._coupons: Dict[str, Coupon] = {}
        self._lock = threading.Lock()

    def add(self, coupon: Coupon) -> Coupon:
        validate_coupon_definition(coupon)
        with self._lock:
            if coupon.code in self._coupons:
                raise ConfigurationError(f"Coupon code already exists: {coupon.code}")
            self._coupons[coupon.code] = coupon
        return coupon

    def get(self, code: str) -> Optional[Coupon]:
        return self._coupons.get(normalize_code(code))

    def resolve(self, codes: Iterable[str]) -> Tuple[List[Coupon], List[str]]:
        """Look codes up in order. Returns (found, missing codes)."""
        found, missing = [], []
        for code in codes:
            coupon = self.get(code)
            if coupon is None:
                missing.append(normalize_code(code))
            else:
                found.append(coupon)
        return found, missing

    def all(self) -> List[Coupon]:
        return list(self._coupons.values())

    def auto_apply(self) -> List[Coupon]:
        return [c for c in self._coupons.values() if c.autoApply and c.isActive]

    def expire(self, now: Optional[datetime] = None) -> List[str]:
        """Deactivate every coupon whose end date has passed. Returns their codes."""
        expired = []
        with self._lock:
            for code, coupon in self._coupons.items():
                updated = deactivate_if_expired(coupon, now)
                if updated is not coupon:
                    self._coupons[code] = updated
                    expired.append(code)
        if expired:
            logger.info(f"Deactivated expired coupons: {', '.join(expired)}")
        return expired

    def load_json(self, path: str) -> int:
        with open(path, encoding="utf-8") as fh:
            coupons = CouponListAdapter.validate_python(json.load(fh))
        for coupon in coupons:
            self.add(coupon)
        logger.info(f"Loaded {len(coupons)} coupons from {path}")
        return len(coupons)

    def clear(self) -> None:
        with self._lock:
            self._coupons.clear()


class RedemptionLedger:
    """
    Redemption counters per (coupon, user).

    redeem() is the only writer. It runs under a lock, re-checks the limits
    right before incrementing, and is idempotent per (order, coupon) so a
    retried commit never counts twice.
    """

    def __init__(self):
        # (couponCode, userIdentifier) -> redemption
        self._redemptions: Dict[Tuple[str, Optional[str]], CouponRedemption] = {}
        # (orderId, couponCode) already counted
        self._orders: Dict[Tuple[str, str], CouponRedemption] = {}
        self._lock = threading.Lock()

    def _global_count(self, code: str) -> int:
        return sum(r.usageCount for (c, _), r in self._redemptions.items() if c == code)

    def usage(
        self, code: str, user_id: Optional[str] = None, exclude_order: Optional[str] = None
    ) -> UsageCounts:
        """
        Current counters for one coupon and user.

        exclude_order leaves out that order's own redemption, so re-validating
        an order that is being committed again sees the counts from before it.
        """
        code = normalize_code(code)
        with self._lock:
            user = self._redemptions.get((code, user_id)) if user_id else None
            redeemed_global = self._global_count(code)
            redeemed_user = user.usageCount if user else 0

            done = self._orders.get((exclude_order, code)) if exclude_order else None
            if done is not None:
                redeemed_global -= 1
                if done is user:
                    redeemed_user -= 1

            return UsageCounts(redeemedGlobal=redeemed_global, redeemedForUser=redeemed_user)

    def redemptions(self, code: str) -> List[CouponRedemption]:
        code = normalize_code(code)
        with self._lock:
            return [r.model_copy(deep=True) for (c, _), r in self._redemptions.items() if c == code]

    def redeem(self, coupon: Coupon, user_id: Optional[str], order_id: str) -> CouponRedemption:
        key = (coupon.code, user_id)
        with self._lock:
            done = self._orders.get((order_id, coupon.code))
            if done is not None:
                logger.info(f"Order {order_id} already redeemed {coupon.code}")
                return done.model_copy(deep=True)

            if not has_remaining_usage(coupon.usageLimit, self._global_count(coupon.code)):
                raise RaceConflict(coupon.code, RejectionReason.COUPON_USAGE_EXCEEDED.value)

            redemption = self._redemptions.get(key)
            used = redemption.usageCount if redemption else 0
            if user_id and not has_remaining_usage(coupon.usageLimitPerUser, used):
                raise RaceConflict(
                    coupon.code, RejectionReason.COUPON_USAGE_PER_USER_EXCEEDED.value
                )

            if redemption is None:
                redemption = CouponRedemption(couponCode=coupon.code, userIdentifier=user_id)
                self._redemptions[key] = redemption
            redemption.usageCount += 1
            redemption.orderIds.append(order_id)
            self._orders[(order_id, coupon.code)] = redemption

            logger.info(
                f"Redeemed {coupon.code} for order {order_id} "
                f"(user {user_id or '-'}, count {redemption.usageCount})"
            )
            return redemption.model_copy(deep=True)

    def clear(self) -> None:
        with self._lock:
            self._redemptions.clear()
            self._orders.clear()


# code -> Coupon
COUPONS_DB = CouponRepository()

# (couponCode, userId) -> redemption counters
LEDGER = RedemptionLedger()
