"""Shared configuration management for the invoicer.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from decimal import Decimal
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'INVOICER_'.
    Example: INVOICER_TALLY_BASE_URL=http://192.168.1.20:9000
    """

    model_config = SettingsConfigDict(
        env_prefix="INVOICER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="tally-invoicer",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Accounting backend configuration
    accounting_backend: Literal["tally", "demo"] = Field(
        default="tally",
        description="Accounting backend: tally (XML over HTTP), demo (in-memory, disconnected)",
    )
    tally_base_url: str = Field(
        default="http://localhost:9000",
        description="Tally XML server URL (host:port configured in Tally's connectivity settings)",
    )
    tally_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout for a single Tally request",
    )

    # Invoice tax policy
    tax_mode: Literal["explicit", "deferred"] = Field(
        default="explicit",
        description=(
            "explicit: compute GST client-side and post tax ledger entries; "
            "deferred: omit tax entries and let Tally compute them"
        ),
    )
    gst_rate: Decimal = Field(
        default=Decimal("0.18"),
        ge=0,
        le=1,
        description="GST rate applied to the invoice subtotal (fraction, 0.18 = 18%)",
    )
    seller_state: str = Field(
        default="MH",
        description="State code of the selling company, compared against the buyer's state",
    )
    default_sales_ledger: str = Field(
        default="Sales",
        description="Revenue ledger used when a customer has no credit account",
    )
    recompute_taxes: bool = Field(
        default=True,
        description="Read the voucher back after creation to pick up Tally's own tax figures",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
