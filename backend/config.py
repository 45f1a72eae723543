"""
Application configuration using pydantic-settings.

Loads engine tunables from environment variables (prefixed ``DEALXL_``) with
sensible defaults.
"""
from functools import lru_cache

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from backend.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DEALXL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Sheet classification
    classifier_min_score: int = 2
    classifier_scan_rows: int = 30

    # Layout detection
    header_scan_rows: int = 10

    # Facility identity resolution
    facility_accept_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    facility_review_threshold: float = Field(default=0.60, ge=0.0, le=1.0)
    facility_prefix_length: int = 10

    # Cap rate / multiplier disambiguation
    rate_boundary_tolerance: float = 0.05

    # Reconciliation
    range_low_factor: float = 0.95
    range_high_factor: float = 1.05
    recommended_rounding: int = 100_000

    # Property-type rate schedule
    snf_cap_rate: float = 0.125
    leased_multiplier: float = 2.5
    alf_cap_rate_no_snc: float = 0.08
    alf_cap_rate_low_snc: float = 0.09
    alf_cap_rate_high_snc: float = 0.12
    snc_low_threshold: float = 0.33

    # External (lender) view
    external_snf_cap_rate: float = 0.12
    external_leased_multiplier: float = 4.0
    external_cap_rate_spread: float = 0.02

    @model_validator(mode="after")
    def _check_thresholds(self) -> "Settings":
        if self.facility_review_threshold > self.facility_accept_threshold:
            raise ValueError("facility_review_threshold must not exceed facility_accept_threshold")
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Raises:
        ConfigurationError: If an environment override fails validation.
    """
    try:
        return Settings()
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid DealXL settings",
            details={"errors": [err["msg"] for err in e.errors()]},
        ) from e
