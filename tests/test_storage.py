import json
import threading
from datetime import timedelta
from decimal import Decimal

import pytest

from coupon_engine.errors import ConfigurationError, RaceConflict
from coupon_engine.models import BogoCoupon, FixedCoupon, PercentAllCoupon, UsageCounts
from coupon_engine.storage import CouponRepository, RedemptionLedger
from tests.helpers import NOW


class TestCouponRepository:
    def test_lookup_is_case_insensitive(self):
        repo = CouponRepository()
        repo.add(FixedCoupon(code="welcome", discountValue=Decimal("10")))
        assert repo.get(" Welcome ").code == "WELCOME"

    def test_duplicate_codes_rejected(self):
        repo = CouponRepository()
        repo.add(FixedCoupon(code="welcome", discountValue=Decimal("10")))
        with pytest.raises(ConfigurationError):
            repo.add(PercentAllCoupon(code="WELCOME", discountValue=Decimal("5")))

    def test_malformed_coupon_rejected(self):
        with pytest.raises(ConfigurationError):
            CouponRepository().add(BogoCoupon(code="B", bogoGetQuantity=0))

    def test_resolve_reports_missing(self):
        repo = CouponRepository()
        repo.add(FixedCoupon(code="A", discountValue=Decimal("10")))
        found, missing = repo.resolve(["a", "nope"])
        assert [c.code for c in found] == ["A"]
        assert missing == ["NOPE"]

    def test_expire_is_monotonic(self):
        repo = CouponRepository()
        repo.add(FixedCoupon(code="OLD", discountValue=Decimal("10"), endDate=NOW - timedelta(days=1)))
        repo.add(FixedCoupon(code="NEW", discountValue=Decimal("10"), autoApply=True))
        assert repo.expire(NOW) == ["OLD"]
        assert repo.expire(NOW) == []
        assert repo.get("OLD").isActive is False
        assert [c.code for c in repo.auto_apply()] == ["NEW"]

    def test_load_json(self, tmp_path):
        path = tmp_path / "coupons.json"
        path.write_text(
            json.dumps(
                [
                    {"code": "p20", "discountType": "percent_all", "discountValue": 20},
                    {"code": "b2g1", "discountType": "bogo", "bogoBuyQuantity": 2},
                ]
            )
        )
        repo = CouponRepository()
        assert repo.load_json(str(path)) == 2
        assert isinstance(repo.get("P20"), PercentAllCoupon)
        assert repo.get("B2G1").discountValue == Decimal("100")


class TestRedemptionLedger:
    def test_counts_per_user_and_globally(self):
        ledger = RedemptionLedger()
        coupon = FixedCoupon(code="F", discountValue=Decimal("10"))
        ledger.redeem(coupon, "u1", "o1")
        ledger.redeem(coupon, "u1", "o2")
        ledger.redeem(coupon, "u2", "o3")
        assert ledger.usage("f", "u1").redeemedForUser == 2
        assert ledger.usage("F", "u2").redeemedForUser == 1
        assert ledger.usage("F").redeemedGlobal == 3
        assert {r.userIdentifier: r.usageCount for r in ledger.redemptions("F")} == {"u1": 2, "u2": 1}

    def test_idempotent_per_order(self):
        ledger = RedemptionLedger()
        coupon = FixedCoupon(code="F", discountValue=Decimal("10"), usageLimit=1)
        ledger.redeem(coupon, "u1", "o1")
        assert ledger.redeem(coupon, "u1", "o1").usageCount == 1
        assert ledger.usage("F").redeemedGlobal == 1

    def test_global_limit_rechecked(self):
        ledger = RedemptionLedger()
        coupon = FixedCoupon(code="F", discountValue=Decimal("10"), usageLimit=1)
        ledger.redeem(coupon, "u1", "o1")
        with pytest.raises(RaceConflict) as exc:
            ledger.redeem(coupon, "u2", "o2")
        assert exc.value.reason == "COUPON_USAGE_EXCEEDED"

    def test_per_user_limit_rechecked(self):
        ledger = RedemptionLedger()
        coupon = FixedCoupon(code="F", discountValue=Decimal("10"), usageLimitPerUser=1)
        ledger.redeem(coupon, "u1", "o1")
        with pytest.raises(RaceConflict):
            ledger.redeem(coupon, "u1", "o2")
        ledger.redeem(coupon, "u2", "o3")

    def test_concurrent_commits_never_exceed_limit(self):
        ledger = RedemptionLedger()
        coupon = FixedCoupon(code="F", discountValue=Decimal("10"), usageLimit=5)
        conflicts = []

        def commit(n):
            try:
                ledger.redeem(coupon, f"u{n}", f"o{n}")
            except RaceConflict:
                conflicts.append(n)

        threads = [threading.Thread(target=commit, args=(n,)) for n in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert ledger.usage("F").redeemedGlobal == 5
        assert len(conflicts) == 15


def test_usage_can_leave_out_one_order():
    ledger = RedemptionLedger()
    coupon = FixedCoupon(code="F", discountValue=Decimal("10"))
    ledger.redeem(coupon, "u1", "o1")
    ledger.redeem(coupon, "u2", "o2")

    assert ledger.usage("F", "u1", exclude_order="o1") == UsageCounts(redeemedGlobal=1, redeemedForUser=0)
    assert ledger.usage("F", "u1", exclude_order="o2") == UsageCounts(redeemedGlobal=1, redeemedForUser=1)
    assert ledger.usage("F", "u1", exclude_order="unknown") == UsageCounts(redeemedGlobal=2, redeemedForUser=1)
