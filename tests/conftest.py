"""
Global pytest configuration and fixtures for DotMac Commerce tests.
"""

import os
import sys

import pytest

# Keep tests away from any developer database and force readable logs.
os.environ.setdefault("DATABASE__URL", "sqlite://")
os.environ.setdefault("OBSERVABILITY__LOG_FORMAT", "text")
os.environ.setdefault("CHECKOUT_AUDIT_LOG", "true")

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from dotmac.commerce.billing.config import BillingConfig, set_billing_config  # noqa: E402


@pytest.fixture
def billing_config():
    """Default billing configuration, installed as the global config for the test."""
    config = BillingConfig()
    set_billing_config(config)
    yield config
    set_billing_config(None)
