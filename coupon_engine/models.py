from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


def normalize_code(code: str) -> str:
    return code.strip().upper()


# ---------------------------
# Cart
# ---------------------------

class CartItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    sku: str
    quantity: int
    unitPrice: Decimal
    salePrice: Optional[Decimal] = None


class Cart(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Insertion order is significant: BOGO hands out free units in this order.
    items: List[CartItem] = Field(default_factory=list)


class PricedLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    sku: str
    quantity: int
    effectiveUnitPrice: Decimal
    lineTotal: Decimal


# ---------------------------
# Coupons
# ---------------------------

class CouponBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    description: Optional[str] = None
    discountValue: Decimal
    minCartValue: Optional[Decimal] = None

    # Inclusive window; a missing bound leaves that side open.
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None

    usageLimit: Optional[int] = None
    usageLimitPerUser: Optional[int] = None
    stackable: bool = False
    autoApply: bool = False
    isActive: bool = True

    @field_validator("code")
    @classmethod
    def _canonical_code(cls, value: str) -> str:
        return normalize_code(value)


class PercentAllCoupon(CouponBase):
    discountType: Literal["percent_all"] = "percent_all"


class PercentSpecificCoupon(CouponBase):
    discountType: Literal["percent_specific"] = "percent_specific"
    eligibleProducts: List[str] = Field(default_factory=list)
    # Resolved to SKUs by the caller before the engine sees the coupon.
    eligibleCategories: List[str] = Field(default_factory=list)


class FixedCoupon(CouponBase):
    discountType: Literal["fixed"] = "fixed"


class BogoCoupon(CouponBase):
    discountType: Literal["bogo"] = "bogo"
    discountValue: Decimal = Decimal("100")
    bogoBuyQuantity: int = 1
    bogoGetQuantity: int = 1
    bogoEligibleSkus: List[str] = Field(default_factory=list)


Coupon = Annotated[
    Union[PercentAllCoupon, PercentSpecificCoupon, FixedCoupon, BogoCoupon],
    Field(discriminator="discountType"),
]

CouponAdapter = TypeAdapter(Coupon)
CouponListAdapter = TypeAdapter(List[Coupon])

DiscountType = Literal["percent_all", "percent_specific", "fixed", "bogo"]


# ---------------------------
# Usage
# ---------------------------

class UsageCounts(BaseModel):
    redeemedGlobal: int = 0
    redeemedForUser: int = 0


class CouponRedemption(BaseModel):
    couponCode: str
    userIdentifier: Optional[str] = None
    usageCount: int = 0
    orderIds: List[str] = Field(default_factory=list)


# ---------------------------
# Validity
# ---------------------------

class RejectionReason(str, Enum):
    COUPON_NOT_FOUND = "COUPON_NOT_FOUND"
    COUPON_INACTIVE = "COUPON_INACTIVE"
    COUPON_NOT_YET_ACTIVE = "COUPON_NOT_YET_ACTIVE"
    COUPON_EXPIRED = "COUPON_EXPIRED"
    MIN_CART_VALUE_NOT_MET = "MIN_CART_VALUE_NOT_MET"
    COUPON_USAGE_EXCEEDED = "COUPON_USAGE_EXCEEDED"
    COUPON_USAGE_PER_USER_EXCEEDED = "COUPON_USAGE_PER_USER_EXCEEDED"
    MISSING_USER_IDENTIFIER = "MISSING_USER_IDENTIFIER"
    STACKING_CONFLICT = "STACKING_CONFLICT"
    COUPON_NOT_APPLICABLE = "COUPON_NOT_APPLICABLE"


class ValidityState(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ValidityCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: ValidityState = ValidityState.PENDING
    reason: Optional[RejectionReason] = None

    @property
    def accepted(self) -> bool:
        return self.state is ValidityState.ACCEPTED

    def accept(self) -> "ValidityCheck":
        return ValidityCheck(state=ValidityState.ACCEPTED)

    def reject(self, reason: RejectionReason) -> "ValidityCheck":
        return ValidityCheck(state=ValidityState.REJECTED, reason=reason)


# ---------------------------
# Results
# ---------------------------

class LineDiscount(BaseModel):
    sku: str
    quantity: int
    unitPrice: Decimal
    discountAmount: Decimal


class DiscountResult(BaseModel):
    appliedCode: str
    discountType: DiscountType
    discountAmount: Decimal = Decimal("0.00")
    perLineDiscounts: Dict[str, Decimal] = Field(default_factory=dict)
    discountedItems: List[LineDiscount] = Field(default_factory=list)

    def discount_for(self, sku: str) -> Decimal:
        return self.perLineDiscounts.get(sku, Decimal("0.00"))


class AggregateResult(BaseModel):
    subtotal: Decimal
    discountAmount: Decimal
    newSubtotal: Decimal
    perLineDiscounts: Dict[str, Decimal] = Field(default_factory=dict)
    contributions: List[DiscountResult] = Field(default_factory=list)
    clamped: bool = False


class AppliedCoupon(BaseModel):
    """Snapshot persisted on the finalized order."""

    code: str
    discountAmount: Decimal
    discountType: DiscountType
    description: str


class CouponEvaluation(BaseModel):
    coupon: Coupon
    check: ValidityCheck
    result: DiscountResult

    @property
    def applied(self) -> bool:
        return self.check.accepted

    @property
    def reason(self) -> Optional[RejectionReason]:
        return self.check.reason


class Rejection(BaseModel):
    code: str
    reason: RejectionReason


class Quote(BaseModel):
    subtotal: Decimal
    evaluations: List[CouponEvaluation] = Field(default_factory=list)
    aggregate: AggregateResult

    @property
    def results(self) -> List[DiscountResult]:
        """Unclamped results of every accepted coupon, in evaluation order."""
        return [e.result for e in self.evaluations if e.applied]


class CommitResult(BaseModel):
    orderId: str
    appliedCoupons: List[AppliedCoupon] = Field(default_factory=list)
    droppedCodes: List[str] = Field(default_factory=list)
    aggregate: AggregateResult


# ---------------------------
# API payloads
# ---------------------------

class ApplyCouponsRequest(BaseModel):
    cart: Cart
    codes: List[str]
    userId: Optional[str] = None


class QuoteResponse(BaseModel):
    subtotal: Decimal
    discountAmount: Decimal
    newSubtotal: Decimal
    perLineDiscounts: Dict[str, Decimal]
    appliedCoupons: List[AppliedCoupon]
    rejections: List[Rejection]


class BestCouponRequest(BaseModel):
    cart: Cart
    userId: Optional[str] = None


class BestCouponResponse(BaseModel):
    coupon: Optional[Coupon] = None
    discountAmount: Decimal = Decimal("0.00")
    result: Optional[DiscountResult] = None
