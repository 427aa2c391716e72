"""Pytest bootstrap configuration.

Environment defaults are set before any application module is imported,
since settings and the database engine are built at import time.
"""
import asyncio
import os

os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("PROCESSOR__RETRY__MAX", "0")

from decimal import Decimal
from typing import Optional

import pytest

from application.dtos.refunds import MarketplaceCredential, ProcessorRefund
from application.ports.processor_gateway import ProcessorError, ProcessorTimeoutError
from application.services.cancellation_coordinator import CancellationBatchCoordinator
from application.services.refund_orchestrator import RefundOrchestrator
from domain.ledger.entity import Order, OrderItem, OrderPaymentStatus, Platform
from infrastructure.external.credentials import StaticCredentialProvider
from infrastructure.repositories.inmemory_ledger import InMemoryLedger


class StubGateway:
    """Processor double keyed by idempotency key, like the real processors.

    `mode` controls the next refund_payment calls: "ok", "fail" or "timeout".
    With `land_on_timeout` a timed-out call still creates the remote refund.
    """

    provider = "mercadopago"

    def __init__(self) -> None:
        self.mode = "ok"
        self.land_on_timeout = False
        self.calls: list[str] = []
        self.find_calls: list[str] = []
        self.remote: dict[str, ProcessorRefund] = {}
        self.credentials_seen: list[MarketplaceCredential] = []

    def _create(self, payment_reference: str, key: str) -> ProcessorRefund:
        if key not in self.remote:
            self.remote[key] = ProcessorRefund(
                external_refund_id=f"re_{len(self.remote) + 1}",
                status="completed",
                raw_amount=None,
                provider=self.provider,
                raw={"payment": payment_reference, "metadata": {"idempotency_key": key}},
            )
        return self.remote[key]

    async def refund_payment(self, payment_reference, idempotency_key, credential):
        self.calls.append(idempotency_key)
        self.credentials_seen.append(credential)
        # yield like a network call so concurrent callers interleave
        await asyncio.sleep(0)
        if self.mode == "fail":
            raise ProcessorError(
                "Payment cannot be refunded",
                provider=self.provider,
                provider_code="invalid_payment_status",
                http_status=400,
            )
        if self.mode == "timeout":
            if self.land_on_timeout:
                self._create(payment_reference, idempotency_key)
            raise ProcessorTimeoutError("No response from mercadopago: ReadTimeout", provider=self.provider)
        return self._create(payment_reference, idempotency_key)

    async def find_refund(self, payment_reference, idempotency_key, credential) -> Optional[ProcessorRefund]:
        self.find_calls.append(idempotency_key)
        return self.remote.get(idempotency_key)


def make_order(
    order_id: str = "order-a",
    *,
    event_id: str = "event-1",
    total: str = "100000",
    platform: Platform = Platform.GATEWAY,
    status: OrderPaymentStatus = OrderPaymentStatus.PAID,
    processor_fee: str = "3000",
    marketplace_fee: str = "5000",
    tax_a: str = "0",
    tax_b: str = "0",
    quantity: int = 2,
) -> Order:
    return Order(
        id=order_id,
        event_id=event_id,
        buyer_id=f"buyer-{order_id}",
        total_amount=Decimal(total),
        currency="ARS",
        platform=platform,
        payment_status=status,
        processor_payment_reference=None if platform == Platform.CASH else f"pay-{order_id}",
        marketplace_fee=Decimal(marketplace_fee),
        processor_fee=Decimal(processor_fee),
        tax_withholding_a=Decimal(tax_a),
        tax_withholding_b=Decimal(tax_b),
        items=[OrderItem(ticket_type_id="general", quantity=quantity, unit_price=Decimal(total) / quantity)],
    )


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def gateway() -> StubGateway:
    return StubGateway()


@pytest.fixture
def credentials() -> StaticCredentialProvider:
    return StaticCredentialProvider({"mercadopago": "APP_USR-platform-token"})


@pytest.fixture
def orchestrator(ledger, gateway, credentials) -> RefundOrchestrator:
    return RefundOrchestrator(ledger.uow_factory(), gateway, credentials)


@pytest.fixture
def coordinator(ledger, orchestrator) -> CancellationBatchCoordinator:
    return CancellationBatchCoordinator(ledger.uow_factory(), orchestrator, max_concurrency=2)
