class CouponError(Exception):
    """Base class for coupon engine errors."""


class ConfigurationError(CouponError, ValueError):
    """A malformed coupon definition reached the engine.

    This is a caller bug: definitions are validated when coupons are created
    or updated, so checkout-time computation should never see one.
    """


class RaceConflict(CouponError):
    """A usage limit was exhausted by a concurrent checkout before commit."""

    def __init__(self, code: str, reason: str):
        super().__init__(f"Coupon {code} can no longer be redeemed: {reason}")
        self.code = code
        self.reason = reason
