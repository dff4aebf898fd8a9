"""
Seedable in-process payment processor for development and tests.

Failures are drawn from a private ``random.Random`` so a fixed seed replays the
same sequence of outcomes.
"""
from __future__ import annotations

import asyncio
import random
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Optional

from application.dtos.payments import (
    GatewayChargeRequest,
    GatewayChargeResult,
    GatewayRefundRequest,
    GatewayRefundResult,
)
from core.settings import payment_settings
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentDeclinedError


# Replayed outcomes kept per gateway instance (oldest evicted first)
REPLAY_CACHE_SIZE = 1024

FAILURE_MESSAGES = (
    "Insufficient funds",
    "Card declined",
    "Card expired",
)


class SimulatedPaymentGateway(BasePaymentClient):
    provider = "simulated"

    def __init__(
        self,
        *,
        failure_rate: Optional[float] = None,
        seed: Optional[int] = None,
        latency_seconds: Optional[float] = None,
        replay_cache_size: int = REPLAY_CACHE_SIZE,
    ):
        super().__init__()
        cfg = payment_settings.simulated
        self.failure_rate = cfg.failure_rate if failure_rate is None else failure_rate
        if not 0.0 <= self.failure_rate <= 1.0:
            raise ValueError("failure_rate must be within [0, 1]")
        self.latency_seconds = cfg.latency_seconds if latency_seconds is None else latency_seconds
        self._random = random.Random(cfg.seed if seed is None else seed)
        self._replay_cache_size = replay_cache_size
        self._charges: "OrderedDict[str, GatewayChargeResult]" = OrderedDict()

    def _remember(self, key: str, result: GatewayChargeResult) -> None:
        self._charges[key] = result
        while len(self._charges) > self._replay_cache_size:
            self._charges.popitem(last=False)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_{self._random.getrandbits(48):012x}"

    async def _latency(self) -> None:
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)

    async def process_payment(self, req: GatewayChargeRequest) -> GatewayChargeResult:  # type: ignore[override]
        # Same idempotency key replays the stored outcome
        if req.idempotency_key and req.idempotency_key in self._charges:
            self._charges.move_to_end(req.idempotency_key)
            return self._charges[req.idempotency_key]
        await self._latency()
        if self._random.random() < self.failure_rate:
            reason = self._random.choice(FAILURE_MESSAGES)
            self._log("gateway_charge_declined", payment_id=req.payment_id, reason=reason)
            raise PaymentDeclinedError(
                reason,
                provider=self.provider,
                raw_response={"status": "failed", "message": reason},
            )
        transaction_id = self._next_id("sim_ch")
        result = GatewayChargeResult(
            success=True,
            transaction_id=transaction_id,
            processed_at=datetime.now(timezone.utc),
            status=self._map_status("succeeded"),
            raw={"id": transaction_id, "status": "succeeded", "amount": str(req.amount), "currency": req.currency},
        )
        if req.idempotency_key:
            self._remember(req.idempotency_key, result)
        self._log("gateway_charge_succeeded", payment_id=req.payment_id, transaction_id=transaction_id)
        return result

    async def process_refund(self, req: GatewayRefundRequest) -> GatewayRefundResult:  # type: ignore[override]
        await self._latency()
        refund_id = self._next_id("sim_re")
        self._log("gateway_refund_succeeded", payment_id=req.payment_id, refund_id=refund_id)
        return GatewayRefundResult(
            success=True,
            refund_id=refund_id,
            processed_at=datetime.now(timezone.utc),
            raw={"id": refund_id, "status": "succeeded", "amount": str(req.amount)},
        )
