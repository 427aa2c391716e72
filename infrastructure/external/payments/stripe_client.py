"""
Stripe refunds adapter using the official stripe-python SDK.

- `stripe.Refund.create(payment_intent=..., idempotency_key=...)` without an
  amount refunds the full charge.
- The platform secret key is passed per request (`api_key=`), so connected
  account payments are reversed with the platform credential.
- The refund id is echoed into refund metadata so `Refund.list` can match it.
"""
from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Optional

import stripe

from application.dtos.refunds import MarketplaceCredential, ProcessorRefund
from application.ports.processor_gateway import ProcessorError, ProcessorTimeoutError
from core.logging_config import get_logger
from core.settings import ProcessorSettings, processor_settings
from infrastructure.external.payments.base import BaseProcessorClient
from shared.codes.refund_codes import ProcessorCode


logger = get_logger(__name__)

ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW", "CLP", "PYG", "VND"}


class StripeClient(BaseProcessorClient):
    provider = "stripe"

    def __init__(self, settings: Optional[ProcessorSettings] = None):
        cfg = settings or processor_settings
        super().__init__(
            timeouts=cfg.timeouts.model_dump(),
            retry={"max": cfg.retry.max, "base": cfg.retry.base_backoff},
        )
        stripe.max_network_retries = cfg.retry.max

    @staticmethod
    def _from_minor(amount: Optional[int], currency: str) -> Optional[Decimal]:
        if amount is None:
            return None
        exponent = 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2
        return Decimal(amount) / (Decimal(10) ** exponent)

    def _to_refund(self, refund: Any) -> ProcessorRefund:
        data = dict(refund)
        return ProcessorRefund(
            external_refund_id=str(data.get("id")),
            status=self._map_status(str(data.get("status") or "")),
            raw_amount=self._from_minor(data.get("amount"), str(data.get("currency") or "")),
            provider=self.provider,
            raw={k: v for k, v in data.items() if isinstance(v, (str, int, float, bool, type(None)))},
        )

    def _translate(self, exc: stripe.StripeError) -> ProcessorError:
        if isinstance(exc, stripe.APIConnectionError):
            return ProcessorTimeoutError(str(exc), provider=self.provider)
        code = ProcessorCode.RATE_LIMITED if isinstance(exc, stripe.RateLimitError) else ProcessorCode.PROVIDER_ERROR
        return ProcessorError(
            exc.user_message or str(exc),
            provider=self.provider,
            provider_code=getattr(exc, "code", None),
            http_status=getattr(exc, "http_status", None),
            raw={"error": str(exc)},
            code=code,
        )

    async def refund_payment(  # type: ignore[override]
        self,
        payment_reference: str,
        idempotency_key: str,
        credential: MarketplaceCredential,
    ) -> ProcessorRefund:
        try:
            refund = await asyncio.to_thread(
                stripe.Refund.create,
                payment_intent=payment_reference,
                metadata={"idempotency_key": idempotency_key},
                idempotency_key=idempotency_key,
                api_key=credential.access_token.get_secret_value(),
            )
        except stripe.StripeError as exc:
            logger.warning("processor_error_response", provider=self.provider, error=str(exc))
            raise self._translate(exc) from exc
        result = self._to_refund(refund)
        self._log(
            "processor_refund_created",
            payment_reference=payment_reference,
            idempotency_key=idempotency_key,
            external_refund_id=result.external_refund_id,
            status=result.status,
        )
        return self._ensure_not_failed(result)

    async def find_refund(  # type: ignore[override]
        self,
        payment_reference: str,
        idempotency_key: str,
        credential: MarketplaceCredential,
    ) -> Optional[ProcessorRefund]:
        try:
            listing = await asyncio.to_thread(
                stripe.Refund.list,
                payment_intent=payment_reference,
                limit=100,
                api_key=credential.access_token.get_secret_value(),
            )
        except stripe.StripeError as exc:
            raise self._translate(exc) from exc
        for refund in listing.get("data") or []:
            metadata = refund.get("metadata") or {}
            if metadata.get("idempotency_key") == idempotency_key:
                return self._to_refund(refund)
        return None
