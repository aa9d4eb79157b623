"""
Configuration for the smartspend receipt core.

Uses pydantic-settings so every threshold can be tuned through
``SMARTSPEND_*`` environment variables or a local ``.env`` file.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfidenceThresholds(BaseModel):
    """Per-field confidence minimums consumed by the OCR normalizer."""

    model_config = {"frozen": True}

    merchant: float = Field(0.85, ge=0, le=1)
    date: float = Field(0.90, ge=0, le=1)
    total: float = Field(0.90, ge=0, le=1)
    items: float = Field(0.80, ge=0, le=1)
    auto_accept: float = Field(0.95, ge=0, le=1)

    @model_validator(mode="after")
    def validate_ordering(self):
        """Field thresholds may not exceed the auto-accept threshold."""
        for name in ("merchant", "date", "total", "items"):
            if getattr(self, name) > self.auto_accept:
                raise ValueError(
                    f"{name} threshold must not exceed the auto-accept threshold"
                )
        return self


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="SMARTSPEND_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # OCR normalizer
    merchant_threshold: float = Field(0.85, ge=0, le=1)
    date_threshold: float = Field(0.90, ge=0, le=1)
    total_threshold: float = Field(0.90, ge=0, le=1)
    items_threshold: float = Field(0.80, ge=0, le=1)
    auto_accept_threshold: float = Field(0.95, ge=0, le=1)

    # Matching
    merchant_min_similarity: float = Field(
        0.80, ge=0, le=1, description="Minimum fuzzy score for a merchant name match"
    )
    product_fuzzy_threshold: float = Field(
        0.80, ge=0, le=1, description="Default threshold for ProductMatcher.fuzzy_match"
    )
    product_match_threshold: float = Field(
        0.85, ge=0, le=1, description="Acceptance bar for ProductMatcher.match"
    )

    # Relative tolerance between the line item sum and the receipt total
    reconciliation_tolerance: Decimal = Field(Decimal("0.05"), ge=0)

    # Display
    currency: str = Field("TRY", min_length=3, max_length=3)
    locale: str = Field("tr_TR")

    # Collaborators
    database_path: str = Field("smartspend.db")
    catalog_base_url: str = Field("https://world.openfoodfacts.org/api/v2")
    catalog_timeout: int = Field(10, ge=1, le=120)
    taxonomy_path: Optional[str] = Field(
        None, description="Override for the bundled taxonomy asset"
    )

    def thresholds(self) -> ConfidenceThresholds:
        """Build the normalizer threshold set from these settings."""
        return ConfidenceThresholds(
            merchant=self.merchant_threshold,
            date=self.date_threshold,
            total=self.total_threshold,
            items=self.items_threshold,
            auto_accept=self.auto_accept_threshold,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
