"""
MercadoPago refunds adapter over the REST API (httpx).

- POST /v1/payments/{payment_id}/refunds with an empty body refunds the full
  payment. The `X-Idempotency-Key` header makes repeated calls return the
  refund created by the first one.
- GET /v1/payments/{payment_id}/refunds lists the refunds of a payment and
  backs the unknown-outcome check.

Calls authenticate with the marketplace (platform) access token; a connected
seller's token can receive split payments but not reverse them.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from application.dtos.refunds import MarketplaceCredential, ProcessorRefund
from application.ports.processor_gateway import ProcessorError
from core.settings import ProcessorSettings, processor_settings
from infrastructure.external.payments.base import BaseProcessorClient
from shared.codes.refund_codes import ProcessorCode


class MercadoPagoClient(BaseProcessorClient):
    provider = "mercadopago"

    def __init__(
        self,
        settings: Optional[ProcessorSettings] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        cfg = settings or processor_settings
        super().__init__(
            timeouts=cfg.timeouts.model_dump(),
            retry={"max": cfg.retry.max, "base": cfg.retry.base_backoff},
            http_client=http_client,
        )
        self._base_url = cfg.mercadopago.base_url.rstrip("/")

    def _refunds_url(self, payment_reference: str) -> str:
        return f"{self._base_url}/v1/payments/{payment_reference}/refunds"

    @staticmethod
    def _headers(credential: MarketplaceCredential, idempotency_key: Optional[str] = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {credential.access_token.get_secret_value()}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError:
            return {"body": resp.text[:500]}

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.is_success:
            return
        payload = self._json(resp)
        body = payload if isinstance(payload, dict) else {"body": payload}
        message = body.get("message") or body.get("error") or f"HTTP {resp.status_code}"
        if resp.status_code == 429:
            code = ProcessorCode.RATE_LIMITED
        elif resp.status_code >= 500:
            code = ProcessorCode.PROVIDER_RECOVERABLE
        else:
            code = ProcessorCode.PROVIDER_ERROR
        self._log("processor_error_response", http_status=resp.status_code, provider_code=body.get("error"))
        raise ProcessorError(
            str(message),
            provider=self.provider,
            provider_code=str(body.get("error") or resp.status_code),
            http_status=resp.status_code,
            raw=body,
            code=code,
        )

    def _to_refund(self, data: dict[str, Any]) -> ProcessorRefund:
        amount = data.get("amount")
        try:
            raw_amount = Decimal(str(amount)) if amount is not None else None
        except InvalidOperation:
            raw_amount = None
        return ProcessorRefund(
            external_refund_id=str(data.get("id")),
            status=self._map_status(str(data.get("status") or "")),
            raw_amount=raw_amount,
            provider=self.provider,
            raw=data,
        )

    async def refund_payment(  # type: ignore[override]
        self,
        payment_reference: str,
        idempotency_key: str,
        credential: MarketplaceCredential,
    ) -> ProcessorRefund:
        async def _do() -> httpx.Response:
            async with self.client() as client:
                return await client.post(
                    self._refunds_url(payment_reference),
                    json={},
                    headers=self._headers(credential, idempotency_key),
                )

        resp = await self._send(_do)
        self._raise_for_status(resp)
        result = self._to_refund(self._json(resp))
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
        async def _do() -> httpx.Response:
            async with self.client() as client:
                return await client.get(
                    self._refunds_url(payment_reference),
                    headers=self._headers(credential),
                )

        resp = await self._send(_do)
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp)
        payload = self._json(resp)
        refunds = payload if isinstance(payload, list) else (payload or {}).get("results") or []

        candidates = [self._to_refund(r) for r in refunds if isinstance(r, dict)]
        for refund in candidates:
            if (refund.raw.get("metadata") or {}).get("idempotency_key") == idempotency_key:
                return refund
        # Only full refunds are ever issued, so a payment holds at most one live refund
        for refund in candidates:
            if refund.status != "failed":
                return refund
        return None
