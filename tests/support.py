"""Deterministic doubles and constants shared by the test modules."""
from datetime import datetime, timezone

from application.dtos.payments import GatewayChargeResult, GatewayRefundResult


BUSINESS_ID = 10
RIDER_ID = 20


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class ScriptedGateway:
    """Pops one outcome per charge: an exception is raised, anything else succeeds."""

    provider = "scripted"

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.charges = []
        self.refunds = []

    async def process_payment(self, req):
        self.charges.append(req)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        return GatewayChargeResult(
            success=True,
            transaction_id=f"txn_{len(self.charges)}",
            processed_at=datetime.now(timezone.utc),
            status="completed",
            raw={"id": f"txn_{len(self.charges)}", "status": "succeeded"},
        )

    async def process_refund(self, req):
        self.refunds.append(req)
        return GatewayRefundResult(
            success=True,
            refund_id=f"re_{len(self.refunds)}",
            processed_at=datetime.now(timezone.utc),
            raw={"id": f"re_{len(self.refunds)}", "status": "succeeded"},
        )


class RecordingSink:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send(self, notification):
        if self.fail:
            raise RuntimeError("push service unavailable")
        self.sent.append(notification)
