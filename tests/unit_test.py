"""Unit tests that do not require a running API or external services."""
import pytest
from app.config import settings


def test_settings_load():
    """Settings load from environment (e.g. CI env vars)."""
    assert settings.API_V1_PREFIX == "/api/v1"
    assert settings.APP_NAME == "PSA Billing Backend"


def test_environment_flag():
    """Environment flags reflect ENVIRONMENT value."""
    # In CI we set ENVIRONMENT=test
    assert settings.ENVIRONMENT.lower() in ("development", "test", "production")
    assert settings.is_development == (settings.ENVIRONMENT.lower() == "development")
    assert settings.is_production == (settings.ENVIRONMENT.lower() == "production")


def test_billing_defaults_come_from_settings():
    """Client and contract column defaults follow DEFAULT_CURRENCY / DEFAULT_PAYMENT_TERMS_DAYS."""
    from app.models.billing import BillingContract
    from app.models.client import Client

    assert Client.__table__.c.currency.default.arg(None) == settings.DEFAULT_CURRENCY
    assert BillingContract.__table__.c.currency.default.arg(None) == settings.DEFAULT_CURRENCY
    assert BillingContract.__table__.c.payment_terms_days.default.arg(None) == settings.DEFAULT_PAYMENT_TERMS_DAYS
