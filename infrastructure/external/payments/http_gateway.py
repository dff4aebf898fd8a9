"""
REST payment processor adapter over httpx.

Wire contract:
- POST {base_url}/charges  {amount, currency, payment_method, payment_method_details, reference, metadata}
- POST {base_url}/refunds  {charge_id, amount, currency, reason, reference}
Both answer ``{"id": ..., "status": ..., "processed_at": ..., "fee": ..., "message": ...}``.
Requests carry a bearer token and an ``Idempotency-Key`` header so a replayed
attempt never charges twice.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import httpx

from application.dtos.payments import (
    GatewayChargeRequest,
    GatewayChargeResult,
    GatewayRefundRequest,
    GatewayRefundResult,
)
from core.logging_config import get_logger
from core.settings import payment_settings
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentDeclinedError,
    PaymentRateLimitedError,
    PaymentRecoverableError,
    PaymentTimeoutError,
)


logger = get_logger(__name__)


def _parse_ts(value: Any) -> datetime:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.now(timezone.utc)


def _error_message(body: dict[str, Any]) -> Optional[str]:
    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str) and error:
        return error
    message = body.get("message")
    return str(message) if message else None


class HttpPaymentGateway(BasePaymentClient):
    provider = "http"

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        api_key = api_key or payment_settings.http.api_key
        if not api_key:
            raise RuntimeError("PAYMENT__HTTP__API_KEY not configured")
        super().__init__(
            timeouts=payment_settings.timeouts,
            retry=payment_settings.retry,
            base_url=(base_url or payment_settings.http.base_url).rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}", "Accept": "application/json"},
            transport=transport,
        )

    async def _post(self, path: str, payload: dict[str, Any], idempotency_key: Optional[str]) -> dict[str, Any]:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else {}

        async def _do() -> httpx.Response:
            async with self.client() as c:
                return await c.post(path, json=payload, headers=headers)

        try:
            resp = await self._retry(_do)
        except httpx.TimeoutException as e:
            raise PaymentTimeoutError(f"payment processor timed out: {e}", provider=self.provider) from e
        except httpx.TransportError as e:
            raise PaymentRecoverableError(f"payment processor unreachable: {e}", provider=self.provider) from e

        try:
            body = resp.json()
        except ValueError:
            body = {"raw": resp.text}
        if not isinstance(body, dict):
            body = {"raw": body}

        message = _error_message(body) or f"payment processor returned HTTP {resp.status_code}"
        if resp.status_code == 429:
            raise PaymentRateLimitedError(message, provider=self.provider, raw_response=body)
        if resp.status_code >= 500:
            raise PaymentRecoverableError(message, provider=self.provider, raw_response=body)
        if resp.status_code >= 400:
            raise PaymentDeclinedError(message, provider=self.provider, raw_response=body)
        return body

    def _check_status(self, body: dict[str, Any]) -> str:
        status = self._map_status(str(body.get("status", "")).lower())
        if status == "failed":
            raise PaymentDeclinedError(
                _error_message(body) or body.get("failure_reason") or "payment declined",
                provider=self.provider,
                raw_response=body,
            )
        if status == "processing":
            raise PaymentRecoverableError(
                "payment still processing at provider",
                provider=self.provider,
                raw_response=body,
            )
        if status != "completed":
            raise PaymentRecoverableError(
                f"unexpected payment status: {body.get('status')!r}",
                provider=self.provider,
                raw_response=body,
            )
        return status

    async def process_payment(self, req: GatewayChargeRequest) -> GatewayChargeResult:  # type: ignore[override]
        payload = {
            "amount": str(req.amount),
            "currency": req.currency,
            "payment_method": req.payment_method.value,
            "payment_method_details": req.payment_method_details,
            "reference": str(req.payment_id),
            "metadata": {"offer_id": req.offer_id, **req.metadata},
        }
        self._log("gateway_charge_request", payment_id=req.payment_id, amount=payload["amount"])
        body = await self._post("/charges", payload, req.idempotency_key)
        status = self._check_status(body)
        fee = body.get("fee")
        return GatewayChargeResult(
            success=True,
            transaction_id=str(body.get("id")),
            processed_at=_parse_ts(body.get("processed_at")),
            fees=Decimal(str(fee)) if fee is not None else None,
            status=status,
            raw=body,
        )

    async def process_refund(self, req: GatewayRefundRequest) -> GatewayRefundResult:  # type: ignore[override]
        payload = {
            "charge_id": req.transaction_id,
            "amount": str(req.amount),
            "currency": req.currency,
            "reason": req.reason,
            "reference": str(req.payment_id),
        }
        self._log("gateway_refund_request", payment_id=req.payment_id, amount=payload["amount"])
        body = await self._post("/refunds", payload, req.idempotency_key)
        self._check_status(body)
        return GatewayRefundResult(
            success=True,
            refund_id=str(body.get("id")),
            processed_at=_parse_ts(body.get("processed_at")),
            raw=body,
        )
