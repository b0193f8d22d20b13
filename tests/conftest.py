"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STRIPE__SECRET_KEY", "sk_test_123")
os.environ.setdefault("STRIPE__WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("SETTLEMENT__CRON_SECRET", "cron-secret")

from datetime import datetime, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402

from domain.catalog.entity import Product  # noqa: E402
from domain.pricing.entity import TaxConfig  # noqa: E402
from domain.seller.entity import PayoutAccountStatus, SellerProfile  # noqa: E402
from tests.fakes import FakeGateway, InMemoryStore  # noqa: E402


# Monday
FIXED_NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def store() -> InMemoryStore:
    """One seller with an active payout account, one product, 8% tax."""
    s = InMemoryStore()
    s.sellers["seller-1"] = SellerProfile(
        id="seller-1",
        shop_name="Shop One",
        shipping_charges=Decimal("5.00"),
        payout_account_id="acct_seller1",
        payout_status=PayoutAccountStatus.ACTIVE,
        onboarding_completed=True,
    )
    s.products["prod-a"] = Product(
        id="prod-a",
        seller_id="seller-1",
        title="Product A",
        price=Decimal("10.00"),
        stock=10,
    )
    s.tax_config = TaxConfig(rate_percent=Decimal("8"))
    return s


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()
