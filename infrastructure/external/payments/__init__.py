"""
Factory for processor gateway clients.
"""
from __future__ import annotations

from typing import Optional

from application.ports.processor_gateway import ProcessorGateway
from core.settings import ProcessorSettings, processor_settings


def get_processor_gateway(
    provider: Optional[str] = None,
    *,
    settings: Optional[ProcessorSettings] = None,
) -> ProcessorGateway:
    cfg = settings or processor_settings
    name = (provider or cfg.default_provider).lower()
    if name in {"mercadopago", "mp"}:
        from .mercadopago_client import MercadoPagoClient
        return MercadoPagoClient(cfg)
    if name == "stripe":
        from .stripe_client import StripeClient
        return StripeClient(cfg)
    raise ValueError(f"Unsupported processor: {name}")
