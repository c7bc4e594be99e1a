"""
Module: settings.py
Description: Application configuration using pydantic-settings.

Configures all application settings from environment variables with
validation and defaults. Supports .env files for local development.
"""

import re
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application settings
    app_name: str = Field(default="StablePay Webhooks", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    log_level: str = Field(default="INFO", description="Logging level")

    # AWS settings
    aws_region: str = Field(default="us-east-1", description="AWS region")
    stage: str = Field(default="dev", description="Deployment stage")

    # DynamoDB settings
    webhook_logs_table_name: str = Field(
        default="stablepay-webhook-logs",
        description="Name of the DynamoDB webhook log table"
    )
    merchants_table_name: str = Field(
        default="stablepay-merchants",
        description="Name of the DynamoDB merchants table"
    )

    # Trigger settings
    cron_secret: Optional[str] = Field(
        default=None,
        description="Bearer secret expected from the external scheduler"
    )

    # Delivery settings
    webhook_header_prefix: str = Field(
        default="StablePay",
        description="Product name used in X-<Product>-Signature headers"
    )
    delivery_timeout: float = Field(
        default=30.0,
        gt=0,
        le=60,
        description="Hard timeout in seconds for a single delivery attempt"
    )
    retry_delays: List[int] = Field(
        default=[60, 300, 900, 3600, 7200],
        min_length=1,
        description="Backoff table in seconds, indexed by attempt number"
    )
    max_retries: int = Field(
        default=5,
        ge=1,
        description="Attempts after which a failing webhook becomes terminal"
    )
    batch_size: int = Field(
        default=100,
        ge=1,
        le=100,
        description="Maximum records fetched per driver run"
    )
    delivery_concurrency: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Deliveries in flight at once within one run"
    )
    claim_ttl_seconds: int = Field(
        default=120,
        ge=1,
        description="Lease duration for a claimed record"
    )
    response_max_length: int = Field(
        default=1000,
        ge=1,
        description="Characters of response body kept on the record"
    )
    require_webhook_secret: bool = Field(
        default=False,
        description="Refuse to deliver for merchants without a signing secret"
    )

    # Metrics settings
    metrics_enabled: bool = Field(default=True, description="Publish CloudWatch metrics")
    metrics_namespace: str = Field(default="StablePayWebhooks", description="CloudWatch namespace")

    @field_validator('webhook_logs_table_name', 'merchants_table_name')
    @classmethod
    def validate_table_names(cls, v: str) -> str:
        """Validate DynamoDB table names."""
        if not v or not isinstance(v, str):
            raise ValueError("Table name must be a non-empty string")

        if not re.match(r'^[a-zA-Z0-9_.-]+$', v):
            raise ValueError(
                "Table name must contain only letters, numbers, dots, hyphens, and underscores"
            )

        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid logging level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @field_validator('retry_delays')
    @classmethod
    def validate_retry_delays(cls, v: List[int]) -> List[int]:
        """Backoff delays must be positive."""
        if any(delay <= 0 for delay in v):
            raise ValueError("retry_delays must contain only positive values")
        return v


# Global settings instance
settings = Settings()
