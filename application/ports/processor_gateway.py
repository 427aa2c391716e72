"""
Processor gateway port (application/ports) exposing a replaceable protocol.

The refund orchestrator depends on this Protocol; infrastructure implements
adapters. Adapters raise ProcessorError for rejected/failed calls and
ProcessorTimeoutError when the outcome of a call is unknown.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from application.dtos.refunds import MarketplaceCredential, ProcessorRefund
from domain.common.exceptions import BusinessException
from shared.codes.refund_codes import ProcessorCode


class ProcessorError(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_code: str | None = None,
        http_status: int | None = None,
        raw: Optional[dict] = None,
        code: int = ProcessorCode.PROVIDER_ERROR,
        error_type: str = "ProcessorError",
    ):
        self.provider = provider
        self.provider_code = provider_code
        self.http_status = http_status
        self.raw = raw or {}
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details={
                "provider": provider,
                "provider_code": provider_code,
                "http_status": http_status,
            },
        )

    def to_payload(self) -> dict:
        return {
            "message": self.message,
            "provider": self.provider,
            "provider_code": self.provider_code,
            "http_status": self.http_status,
            "raw": self.raw,
        }


class ProcessorTimeoutError(ProcessorError):
    """The processor did not answer; the refund may or may not exist remotely."""

    def __init__(self, message: str, *, provider: str, raw: Optional[dict] = None):
        super().__init__(
            message,
            provider=provider,
            provider_code="timeout",
            raw=raw,
            code=ProcessorCode.TIMEOUT,
            error_type="ProcessorTimeout",
        )


@runtime_checkable
class ProcessorGateway(Protocol):
    """Refund surface of a remote payment processor.

    `idempotency_key` must be forwarded verbatim so repeated calls for the
    same refund collapse into one remote refund.
    """

    provider: str

    async def refund_payment(
        self,
        payment_reference: str,
        idempotency_key: str,
        credential: MarketplaceCredential,
    ) -> ProcessorRefund: ...

    async def find_refund(
        self,
        payment_reference: str,
        idempotency_key: str,
        credential: MarketplaceCredential,
    ) -> Optional[ProcessorRefund]: ...


@runtime_checkable
class MarketplaceCredentialProvider(Protocol):
    """Supplies the platform-level credential able to reverse marketplace payments."""

    def get_marketplace_credential(self, provider: str) -> Optional[MarketplaceCredential]: ...
