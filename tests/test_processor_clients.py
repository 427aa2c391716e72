import json

import httpx
import pytest
from pydantic import SecretStr

from application.dtos.refunds import MarketplaceCredential
from application.ports.processor_gateway import ProcessorError, ProcessorGateway, ProcessorTimeoutError
from core.settings import MercadoPagoSettings, ProcessorRetry, ProcessorSettings, StripeSettings
from infrastructure.external.credentials import EnvMarketplaceCredentialProvider
from infrastructure.external.payments import get_processor_gateway
from infrastructure.external.payments.mercadopago_client import MercadoPagoClient
from shared.codes.refund_codes import ProcessorCode


CREDENTIAL = MarketplaceCredential(provider="mercadopago", access_token=SecretStr("APP_USR-platform"))


def _settings() -> ProcessorSettings:
    return ProcessorSettings(
        retry=ProcessorRetry(max=0),
        mercadopago=MercadoPagoSettings(base_url="https://mp.test"),
    )


def _client(handler) -> MercadoPagoClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MercadoPagoClient(_settings(), http_client=http)


@pytest.mark.asyncio
async def test_mercadopago_refund_sends_key_and_platform_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["key"] = request.headers["X-Idempotency-Key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"id": 9001, "status": "approved", "amount": 1000.5})

    client = _client(handler)
    result = await client.refund_payment("123456", "rf-1", CREDENTIAL)

    assert seen["url"] == "https://mp.test/v1/payments/123456/refunds"
    assert seen["auth"] == "Bearer APP_USR-platform"
    assert seen["key"] == "rf-1"
    assert seen["body"] == {}
    assert result.external_refund_id == "9001"
    assert result.status == "completed"
    assert str(result.raw_amount) == "1000.5"


@pytest.mark.asyncio
async def test_mercadopago_rejection_raises_processor_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"message": "Payment not refundable", "error": "bad_request"})

    with pytest.raises(ProcessorError) as exc_info:
        await _client(handler).refund_payment("123456", "rf-1", CREDENTIAL)

    exc = exc_info.value
    assert not isinstance(exc, ProcessorTimeoutError)
    assert exc.message == "Payment not refundable"
    assert exc.http_status == 400
    assert exc.provider_code == "bad_request"


@pytest.mark.asyncio
async def test_mercadopago_rejected_status_is_a_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={"id": 1, "status": "rejected"})

    with pytest.raises(ProcessorError):
        await _client(handler).refund_payment("123456", "rf-1", CREDENTIAL)


@pytest.mark.asyncio
async def test_mercadopago_server_error_and_rate_limit_codes():
    def server_error(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="upstream down")

    def rate_limited(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"message": "too many requests"})

    with pytest.raises(ProcessorError) as exc_info:
        await _client(server_error).refund_payment("1", "rf-1", CREDENTIAL)
    assert exc_info.value.code == ProcessorCode.PROVIDER_RECOVERABLE

    with pytest.raises(ProcessorError) as exc_info:
        await _client(rate_limited).refund_payment("1", "rf-1", CREDENTIAL)
    assert exc_info.value.code == ProcessorCode.RATE_LIMITED


@pytest.mark.asyncio
async def test_mercadopago_read_timeout_is_unknown_outcome():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ProcessorTimeoutError):
        await _client(handler).refund_payment("123456", "rf-1", CREDENTIAL)


@pytest.mark.asyncio
async def test_mercadopago_connect_error_is_plain_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ProcessorError) as exc_info:
        await _client(handler).refund_payment("123456", "rf-1", CREDENTIAL)
    assert not isinstance(exc_info.value, ProcessorTimeoutError)


@pytest.mark.asyncio
async def test_mercadopago_find_refund_by_key():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        return httpx.Response(
            200,
            json=[
                {"id": 1, "status": "rejected", "metadata": {}},
                {"id": 2, "status": "approved", "metadata": {"idempotency_key": "rf-1"}},
            ],
        )

    found = await _client(handler).find_refund("123456", "rf-1", CREDENTIAL)
    assert found is not None
    assert found.external_refund_id == "2"
    assert found.status == "completed"


@pytest.mark.asyncio
async def test_mercadopago_find_refund_nothing_there():
    def not_found(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "not found"})

    def empty(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[])

    assert await _client(not_found).find_refund("1", "rf-1", CREDENTIAL) is None
    assert await _client(empty).find_refund("1", "rf-1", CREDENTIAL) is None


@pytest.mark.asyncio
async def test_injected_http_client_is_left_open():
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[])))
    client = MercadoPagoClient(_settings(), http_client=http)
    await client.aclose()
    assert not http.is_closed
    await http.aclose()


@pytest.mark.asyncio
async def test_stripe_refund_uses_idempotency_key(monkeypatch):
    stripe = pytest.importorskip("stripe")
    from infrastructure.external.payments.stripe_client import StripeClient

    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return {"id": "re_123", "status": "succeeded", "amount": 150050, "currency": "usd"}

    monkeypatch.setattr(stripe.Refund, "create", fake_create)
    client = StripeClient(_settings())
    credential = MarketplaceCredential(provider="stripe", access_token=SecretStr("sk_test_platform"))

    result = await client.refund_payment("pi_1", "rf-1", credential)

    assert captured["idempotency_key"] == "rf-1"
    assert captured["metadata"] == {"idempotency_key": "rf-1"}
    assert captured["api_key"] == "sk_test_platform"
    assert result.status == "completed"
    assert str(result.raw_amount) == "1500.5"


def test_gateway_factory_and_protocol():
    gateway = get_processor_gateway("mp", settings=_settings())
    assert isinstance(gateway, MercadoPagoClient)
    assert isinstance(gateway, ProcessorGateway)
    with pytest.raises(ValueError):
        get_processor_gateway("paypal", settings=_settings())


def test_env_credential_provider_reads_platform_tokens():
    settings = ProcessorSettings(
        mercadopago=MercadoPagoSettings(marketplace_access_token=SecretStr("APP_USR-1")),
        stripe=StripeSettings(),
    )
    provider = EnvMarketplaceCredentialProvider(settings)

    credential = provider.get_marketplace_credential("mercadopago")
    assert credential is not None
    assert credential.access_token.get_secret_value() == "APP_USR-1"
    assert provider.get_marketplace_credential("stripe") is None
    assert provider.get_marketplace_credential("unknown") is None
