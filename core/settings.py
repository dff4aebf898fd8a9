"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so payment tuning (fees, retry policy,
gateway endpoints) can be overridden with the PAYMENT__ prefix alone.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    """Transport-level retries inside a single gateway call."""
    max: int = 2
    base_backoff: float = 0.2


class FeeSettings(BaseModel):
    percentage: Decimal = Decimal("0.05")
    minimum_fee: Decimal = Decimal("0.50")


class RetryPolicySettings(BaseModel):
    """Record-level retries driven by retry_payment / the scheduled sweep."""
    max_retries: int = 5
    retry_delay_seconds: int = 30 * 60
    sweep_batch_size: int = 100
    sweep_interval_seconds: int = 5 * 60


class HttpGatewaySettings(BaseModel):
    base_url: str = "https://payments.example.com/v1"
    api_key: Optional[str] = None


class SimulatedGatewaySettings(BaseModel):
    failure_rate: float = 0.1
    seed: Optional[int] = None
    latency_seconds: float = 0.0


class EarningsSettings(BaseModel):
    hours_per_delivery: Decimal = Decimal("1.5")
    recent_activity_limit: int = 10
    breakdown_limit: int = 12


class PaymentSettings(BaseSettings):
    default_provider: str = "simulated"
    default_currency: str = "USD"
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    fees: FeeSettings = Field(default_factory=FeeSettings)
    retries: RetryPolicySettings = Field(default_factory=RetryPolicySettings)
    earnings: EarningsSettings = Field(default_factory=EarningsSettings)

    http: HttpGatewaySettings = Field(default_factory=HttpGatewaySettings)
    simulated: SimulatedGatewaySettings = Field(default_factory=SimulatedGatewaySettings)

    model_config = SettingsConfigDict(
        env_prefix="PAYMENT__",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
