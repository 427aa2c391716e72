"""
Base processor client implementing shared concerns: http, retry, logging, mapping.

Concrete processors subclass and implement refund_payment / find_refund.
Transport retries are safe only because every refund request carries the
refund's idempotency key.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, TypeVar
from contextlib import asynccontextmanager

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from application.dtos.refunds import MarketplaceCredential, ProcessorRefund
from application.ports.processor_gateway import (
    ProcessorError,
    ProcessorGateway,
    ProcessorTimeoutError,
)
from shared.codes.refund_codes import PROVIDER_REFUND_STATUS_TO_INTERNAL, ProcessorCode


logger = get_logger(__name__)

T = TypeVar("T")


class BaseProcessorClient(ProcessorGateway):
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or {"connect": 2.0, "read": 10.0, "write": 10.0, "total": 15.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}
        self._client: Optional[httpx.AsyncClient] = http_client
        self._owns_client = http_client is None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            timeout=self._timeouts_cfg["total"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts)
            self._owns_client = True
        # kept open for reuse; aclose() releases it
        yield self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(self, fn: Callable[[], Awaitable[T]]) -> T:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
            reraise=True,
        ):
            with attempt:
                return await fn()

    async def _send(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run a request with transport retries and translate what is left.

        A connection that was never established is a plain, retryable error.
        Anything else (read timeout, dropped connection) may have reached the
        processor, so the outcome is unknown.
        """
        try:
            return await self._retry(fn)
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            raise ProcessorError(
                f"Could not connect to {self.provider}: {exc}",
                provider=self.provider,
                provider_code="connect_error",
                code=ProcessorCode.PROVIDER_RECOVERABLE,
            ) from exc
        except httpx.TransportError as exc:
            raise ProcessorTimeoutError(
                f"No response from {self.provider}: {exc.__class__.__name__}",
                provider=self.provider,
            ) from exc

    # Helpers
    def _map_status(self, provider_status: str) -> str:
        mapping = PROVIDER_REFUND_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get(provider_status, "processing")

    def _ensure_not_failed(self, result: ProcessorRefund) -> ProcessorRefund:
        if result.status == "failed":
            raise ProcessorError(
                f"Refund {result.external_refund_id} was rejected by {self.provider}",
                provider=self.provider,
                provider_code=str(result.raw.get("status") or "failed"),
                raw=result.raw,
            )
        return result

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )

    async def refund_payment(  # type: ignore[override]
        self,
        payment_reference: str,
        idempotency_key: str,
        credential: MarketplaceCredential,
    ) -> ProcessorRefund:
        raise NotImplementedError

    async def find_refund(  # type: ignore[override]
        self,
        payment_reference: str,
        idempotency_key: str,
        credential: MarketplaceCredential,
    ) -> Optional[ProcessorRefund]:
        raise NotImplementedError
