"""
Pytest configuration and fixtures for the M-Pesa payments app.
"""

import pytest

from payments.config import MpesaConfig
from payments.services.mpesa import token_manager_for

MPESA_SETTINGS = {
    "MPESA_ENV": "sandbox",
    "MPESA_CONSUMER_KEY": "test-consumer-key",
    "MPESA_CONSUMER_SECRET": "test-consumer-secret",
    "MPESA_SHORTCODE": "174379",
    "MPESA_PASSKEY": "test-passkey",
    "MPESA_CALLBACK_URL": "https://pos.example.com/api/mpesa/callback/",
    "MPESA_TIMEOUT": 30,
}


@pytest.fixture(autouse=True)
def clear_token_cache():
    token_manager_for.cache_clear()
    yield
    token_manager_for.cache_clear()


@pytest.fixture
def mpesa_settings(settings):
    """Fully configured M-Pesa credentials."""
    for name, value in MPESA_SETTINGS.items():
        setattr(settings, name, value)
    return settings


@pytest.fixture
def unconfigured_settings(settings):
    """M-Pesa credentials left blank."""
    for name in MPESA_SETTINGS:
        if name not in ("MPESA_ENV", "MPESA_TIMEOUT"):
            setattr(settings, name, "")
    return settings


@pytest.fixture
def mpesa_config(mpesa_settings):
    return MpesaConfig.from_settings()
