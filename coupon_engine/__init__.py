from .aggregation import aggregate_results
from .errors import ConfigurationError, CouponError, RaceConflict
from .logic import (
    applied_coupons,
    best_auto_apply,
    commit_order_coupons,
    describe_coupon,
    evaluate_coupon,
    quote_cart,
)
from .models import (
    BogoCoupon,
    Cart,
    CartItem,
    Coupon,
    DiscountResult,
    FixedCoupon,
    PercentAllCoupon,
    PercentSpecificCoupon,
    RejectionReason,
)
from .strategies import compute_discount
from .validity import check_validity, validate_coupon_definition

__version__ = "0.1.0"
