"""Runtime configuration for the reconciliation service.

Non-secret settings come from environment variables; secrets (API keys,
webhook signing keys) live in SSM Parameter Store under
``/bookings/{environment}/...`` and are fetched through SSMService.
"""

import os
from functools import lru_cache

from pydantic import BaseModel, Field


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


class RefundPolicySettings(BaseModel):
    """Refund tiers by hours of notice before the session starts."""

    full_notice_hours: int = Field(default=24, ge=0)
    partial_notice_hours: int = Field(default=12, ge=0)
    partial_percent: int = Field(default=50, ge=0, le=100)


class ReconcilerSettings(BaseModel):
    """Process-wide settings, loaded once per process."""

    environment: str = "dev"
    table_prefix: str = "bookings-dev"
    webhook_tolerance_seconds: int = Field(default=300, ge=0)
    processing_timeout_seconds: float = Field(default=8.0, gt=0)
    store_max_retries: int = Field(default=3, ge=1)
    default_currency: str = "USD"
    calendly_api_base_url: str = "https://api.calendly.com"
    tracking_utm_source: str = "buildappswith"
    refund_policy: RefundPolicySettings = Field(default_factory=RefundPolicySettings)

    @classmethod
    def from_env(cls) -> "ReconcilerSettings":
        """Build settings from environment variables."""
        environment = os.environ.get("ENVIRONMENT", "dev")
        return cls(
            environment=environment,
            table_prefix=os.environ.get("DYNAMODB_TABLE_PREFIX", f"bookings-{environment}"),
            webhook_tolerance_seconds=_env_int("WEBHOOK_TOLERANCE_SECONDS", 300),
            processing_timeout_seconds=float(
                os.environ.get("WEBHOOK_PROCESSING_TIMEOUT_SECONDS", "8")
            ),
            store_max_retries=_env_int("STORE_MAX_RETRIES", 3),
            default_currency=os.environ.get("DEFAULT_CURRENCY", "USD"),
            calendly_api_base_url=os.environ.get(
                "CALENDLY_API_BASE_URL", "https://api.calendly.com"
            ),
            tracking_utm_source=os.environ.get("TRACKING_UTM_SOURCE", "buildappswith"),
            refund_policy=RefundPolicySettings(
                full_notice_hours=_env_int("REFUND_FULL_NOTICE_HOURS", 24),
                partial_notice_hours=_env_int("REFUND_PARTIAL_NOTICE_HOURS", 12),
                partial_percent=_env_int("REFUND_PARTIAL_PERCENT", 50),
            ),
        )

    def secret_path(self, name: str) -> str:
        """SSM parameter path for a named secret.

        Args:
            name: Secret name relative to the environment, e.g. "stripe/secret_key"
        """
        return f"/bookings/{self.environment}/{name}"


@lru_cache(maxsize=1)
def get_settings() -> ReconcilerSettings:
    """Get the shared settings instance."""
    return ReconcilerSettings.from_env()
