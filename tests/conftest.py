import pytest

from coupon_engine.storage import COUPONS_DB, LEDGER
from tests.helpers import NOW


@pytest.fixture
def now():
    return NOW


@pytest.fixture(autouse=True)
def _clean_storage():
    COUPONS_DB.clear()
    LEDGER.clear()
    yield
    COUPONS_DB.clear()
    LEDGER.clear()
