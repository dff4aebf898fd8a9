import json
from decimal import Decimal

import httpx
import pytest

from application.dtos.payments import GatewayChargeRequest, GatewayRefundRequest
from application.ports.payment_gateway import PaymentGateway
from domain.payment.entity import PaymentMethod
from infrastructure.external.payments import get_payment_gateway
from infrastructure.external.payments.exceptions import (
    PaymentDeclinedError,
    PaymentRateLimitedError,
    PaymentRecoverableError,
)
from infrastructure.external.payments.http_gateway import HttpPaymentGateway
from infrastructure.external.payments.simulated import FAILURE_MESSAGES, SimulatedPaymentGateway
from shared.codes.payment_codes import PaymentCode


def _charge(key: str = "idem-1") -> GatewayChargeRequest:
    return GatewayChargeRequest(
        payment_id=1,
        offer_id=7,
        amount=Decimal("100.00"),
        currency="USD",
        payment_method=PaymentMethod.CREDIT_CARD,
        payment_method_details={"last4": "4242"},
        idempotency_key=key,
    )


def _http(handler) -> HttpPaymentGateway:
    return HttpPaymentGateway(
        base_url="https://processor.test/v1",
        api_key="sk_test",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_http_charge_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "ch_1", "status": "succeeded", "fee": "3.20"})

    gw = _http(handler)
    result = await gw.process_payment(_charge())
    await gw.aclose()

    assert result.success
    assert result.transaction_id == "ch_1"
    assert result.status == "completed"
    assert result.fees == Decimal("3.20")
    assert seen["path"] == "/v1/charges"
    assert seen["headers"]["Idempotency-Key"] == "idem-1"
    assert seen["headers"]["Authorization"] == "Bearer sk_test"
    assert seen["body"]["amount"] == "100.00"
    assert seen["body"]["metadata"]["offer_id"] == 7


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status_code, body, exc_type, code",
    [
        (402, {"error": {"message": "Insufficient funds"}}, PaymentDeclinedError, PaymentCode.DECLINED),
        (429, {"message": "slow down"}, PaymentRateLimitedError, PaymentCode.RATE_LIMITED),
        (503, {"message": "maintenance"}, PaymentRecoverableError, PaymentCode.PROVIDER_RECOVERABLE),
        (200, {"id": "ch_2", "status": "declined", "message": "Card declined"}, PaymentDeclinedError, PaymentCode.DECLINED),
        (200, {"id": "ch_3", "status": "pending"}, PaymentRecoverableError, PaymentCode.PROVIDER_RECOVERABLE),
    ],
)
async def test_http_charge_errors_are_mapped(status_code, body, exc_type, code):
    gw = _http(lambda request: httpx.Response(status_code, json=body))

    with pytest.raises(exc_type) as exc_info:
        await gw.process_payment(_charge())
    await gw.aclose()

    assert exc_info.value.code == code
    assert exc_info.value.raw_response == body
    assert exc_info.value.provider == "http"


@pytest.mark.asyncio
async def test_http_declined_message_is_surfaced():
    gw = _http(lambda request: httpx.Response(402, json={"error": {"message": "Insufficient funds"}}))

    with pytest.raises(PaymentDeclinedError) as exc_info:
        await gw.process_payment(_charge())
    assert exc_info.value.message == "Insufficient funds"


@pytest.mark.asyncio
async def test_http_transport_errors_are_retried_then_recoverable():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    gw = _http(handler)
    with pytest.raises(PaymentRecoverableError):
        await gw.process_payment(_charge())

    # one call plus the configured transport retries
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_http_refund():
    def handler(request):
        body = json.loads(request.content)
        assert request.url.path == "/v1/refunds"
        assert body["charge_id"] == "ch_1"
        assert body["amount"] == "50.00"
        return httpx.Response(200, json={"id": "re_1", "status": "succeeded"})

    gw = _http(handler)
    result = await gw.process_refund(
        GatewayRefundRequest(payment_id=1, transaction_id="ch_1", amount=Decimal("50.00"), currency="USD")
    )
    assert result.refund_id == "re_1"


def test_http_gateway_requires_api_key():
    with pytest.raises(RuntimeError):
        HttpPaymentGateway(api_key="")


@pytest.mark.asyncio
async def test_simulated_gateway_is_deterministic_per_seed():
    async def outcomes(seed):
        gw = SimulatedPaymentGateway(failure_rate=0.5, seed=seed)
        results = []
        for i in range(20):
            try:
                results.append((await gw.process_payment(_charge(f"k{i}"))).transaction_id)
            except PaymentDeclinedError as exc:
                assert exc.message in FAILURE_MESSAGES
                results.append(exc.message)
        return results

    assert await outcomes(42) == await outcomes(42)


@pytest.mark.asyncio
async def test_simulated_gateway_replays_idempotent_charges():
    gw = SimulatedPaymentGateway(failure_rate=0.0, seed=1)

    first = await gw.process_payment(_charge("same"))
    second = await gw.process_payment(_charge("same"))
    other = await gw.process_payment(_charge("different"))

    assert first.transaction_id == second.transaction_id
    assert other.transaction_id != first.transaction_id
    assert first.status == "completed"


@pytest.mark.asyncio
async def test_simulated_gateway_replay_cache_is_bounded():
    gw = SimulatedPaymentGateway(failure_rate=0.0, seed=1, replay_cache_size=2)

    first = await gw.process_payment(_charge("a"))
    await gw.process_payment(_charge("b"))
    await gw.process_payment(_charge("a"))  # refreshes "a"
    await gw.process_payment(_charge("c"))  # evicts "b"

    assert list(gw._charges) == ["a", "c"]
    assert (await gw.process_payment(_charge("a"))).transaction_id == first.transaction_id


@pytest.mark.asyncio
async def test_simulated_gateway_always_failing():
    gw = SimulatedPaymentGateway(failure_rate=1.0, seed=3)

    with pytest.raises(PaymentDeclinedError):
        await gw.process_payment(_charge())


def test_gateway_factory():
    assert isinstance(get_payment_gateway("sim"), SimulatedPaymentGateway)
    assert isinstance(get_payment_gateway("simulated"), PaymentGateway)
    with pytest.raises(ValueError):
        get_payment_gateway("carrier-pigeon")
    with pytest.raises(ValueError):
        SimulatedPaymentGateway(failure_rate=2)
