"""
Processor settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so processor credentials are loaded
only where a gateway is built (PROCESSOR__MERCADOPAGO__MARKETPLACE_ACCESS_TOKEN,
PROCESSOR__STRIPE__PLATFORM_SECRET_KEY, ...).
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, SecretStr


class ProcessorTimeouts(BaseModel):
    connect: float = 2.0
    read: float = 10.0
    write: float = 10.0
    total: float = 15.0


class ProcessorRetry(BaseModel):
    # transport-level retries; safe because every refund call carries an idempotency key
    max: int = 2
    base_backoff: float = 0.2


class MercadoPagoSettings(BaseModel):
    base_url: str = "https://api.mercadopago.com"
    # platform (marketplace owner) token; seller tokens cannot reverse split payments
    marketplace_access_token: Optional[SecretStr] = None


class StripeSettings(BaseModel):
    platform_secret_key: Optional[SecretStr] = None


class ProcessorSettings(BaseSettings):
    default_provider: str = "mercadopago"
    timeouts: ProcessorTimeouts = Field(default_factory=ProcessorTimeouts)
    retry: ProcessorRetry = Field(default_factory=ProcessorRetry)

    mercadopago: MercadoPagoSettings = Field(default_factory=MercadoPagoSettings)
    stripe: StripeSettings = Field(default_factory=StripeSettings)

    model_config = SettingsConfigDict(
        env_prefix="PROCESSOR__",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


processor_settings = ProcessorSettings()
