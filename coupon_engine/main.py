import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException

from .config import settings
from .errors import ConfigurationError
from .logic import applied_coupons, best_auto_apply, commit_order_coupons, quote_cart
from .models import (
    ApplyCouponsRequest,
    BestCouponRequest,
    BestCouponResponse,
    CommitResult,
    Quote,
    QuoteResponse,
    Rejection,
    RejectionReason,
)
from .storage import COUPONS_DB, LEDGER

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.coupons_file:
        COUPONS_DB.load_json(settings.coupons_file)
    yield


app = FastAPI(title="Coupon Engine Service", lifespan=lifespan)


def _quote(payload: ApplyCouponsRequest, order_id: Optional[str] = None):
    COUPONS_DB.expire()
    coupons, missing = COUPONS_DB.resolve(payload.codes)
    quote = quote_cart(
        payload.cart,
        coupons,
        usage=lambda code: LEDGER.usage(code, payload.userId, exclude_order=order_id),
        user_id=payload.userId,
    )
    return quote, missing


def _quote_response(quote: Quote, missing) -> QuoteResponse:
    rejections = [Rejection(code=code, reason=RejectionReason.COUPON_NOT_FOUND) for code in missing]
    rejections += [
        Rejection(code=e.coupon.code, reason=e.reason)
        for e in quote.evaluations
        if not e.applied
    ]
    return QuoteResponse(
        subtotal=quote.aggregate.subtotal,
        discountAmount=quote.aggregate.discountAmount,
        newSubtotal=quote.aggregate.newSubtotal,
        perLineDiscounts=quote.aggregate.perLineDiscounts,
        appliedCoupons=applied_coupons(quote),
        rejections=rejections,
    )


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.post("/coupons/apply", response_model=QuoteResponse)
def apply_coupons(payload: ApplyCouponsRequest):
    try:
        quote, missing = _quote(payload)
    except ConfigurationError as exc:
        logger.error(f"Malformed coupon definition: {exc}")
        raise HTTPException(status_code=422, detail=str(exc))
    return _quote_response(quote, missing)


@app.post("/coupons/auto-apply", response_model=BestCouponResponse)
def auto_apply_coupon(payload: BestCouponRequest):
    COUPONS_DB.expire()
    try:
        best = best_auto_apply(
            payload.cart,
            COUPONS_DB.auto_apply(),
            usage=lambda code: LEDGER.usage(code, payload.userId),
            user_id=payload.userId,
        )
    except ConfigurationError as exc:
        logger.error(f"Malformed coupon definition: {exc}")
        raise HTTPException(status_code=422, detail=str(exc))

    if best is None:
        return BestCouponResponse()

    return BestCouponResponse(
        coupon=best.coupon,
        discountAmount=best.result.discountAmount,
        result=best.result,
    )


@app.post("/orders/{order_id}/coupons", response_model=CommitResult)
def commit_coupons(order_id: str, payload: ApplyCouponsRequest):
    try:
        quote, missing = _quote(payload, order_id=order_id)
    except ConfigurationError as exc:
        logger.error(f"Malformed coupon definition: {exc}")
        raise HTTPException(status_code=422, detail=str(exc))

    if missing:
        logger.info(f"Order {order_id}: unknown coupon codes {', '.join(missing)}")

    return commit_order_coupons(quote, order_id=order_id, user_id=payload.userId)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "coupon_engine.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
    )
