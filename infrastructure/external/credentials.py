"""
Marketplace credential providers.

The orchestrator never reads credentials from the environment itself; one of
these is injected at the composition root.
"""
from __future__ import annotations

from typing import Mapping, Optional

from pydantic import SecretStr

from application.dtos.refunds import MarketplaceCredential
from application.ports.processor_gateway import MarketplaceCredentialProvider
from core.settings import ProcessorSettings, processor_settings


class EnvMarketplaceCredentialProvider(MarketplaceCredentialProvider):
    """Platform credentials from ProcessorSettings (PROCESSOR__* env vars)."""

    def __init__(self, settings: Optional[ProcessorSettings] = None) -> None:
        self._settings = settings or processor_settings

    def get_marketplace_credential(self, provider: str) -> Optional[MarketplaceCredential]:
        name = provider.lower()
        if name == "mercadopago":
            token = self._settings.mercadopago.marketplace_access_token
        elif name == "stripe":
            token = self._settings.stripe.platform_secret_key
        else:
            return None
        if token is None or not token.get_secret_value():
            return None
        return MarketplaceCredential(provider=name, access_token=token)


class StaticCredentialProvider(MarketplaceCredentialProvider):
    """Fixed provider -> token map (local runs and tests)."""

    def __init__(self, tokens: Mapping[str, str]) -> None:
        self._tokens = {k.lower(): v for k, v in tokens.items()}

    def get_marketplace_credential(self, provider: str) -> Optional[MarketplaceCredential]:
        token = self._tokens.get(provider.lower())
        if not token:
            return None
        return MarketplaceCredential(provider=provider.lower(), access_token=SecretStr(token))
