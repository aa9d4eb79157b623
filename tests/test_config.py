"""
Unit tests for environment driven settings.
"""

import pytest
from decimal import Decimal

from pydantic import ValidationError

from smartspend.config import Settings


class TestSettings:
    """Test cases for Settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("SMARTSPEND_MERCHANT_THRESHOLD", raising=False)
        settings = Settings(_env_file=None)

        assert settings.thresholds().merchant == 0.85
        assert settings.reconciliation_tolerance == Decimal("0.05")
        assert settings.currency == "TRY"
        assert settings.taxonomy_path is None

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("SMARTSPEND_MERCHANT_THRESHOLD", "0.7")
        monkeypatch.setenv("SMARTSPEND_CATALOG_TIMEOUT", "3")

        settings = Settings(_env_file=None)

        assert settings.thresholds().merchant == 0.7
        assert settings.catalog_timeout == 3

    def test_out_of_range_rejected(self, monkeypatch):
        monkeypatch.setenv("SMARTSPEND_AUTO_ACCEPT_THRESHOLD", "1.5")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_inconsistent_thresholds(self):
        """Test a field threshold above auto-accept is refused when building thresholds."""
        settings = Settings(_env_file=None, items_threshold=0.99)
        with pytest.raises(ValueError):
            settings.thresholds()
