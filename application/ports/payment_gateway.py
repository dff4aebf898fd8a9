"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from application.dtos.payments import (
    GatewayChargeRequest,
    GatewayChargeResult,
    GatewayRefundRequest,
    GatewayRefundResult,
)


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for the external payment processor.

    Implementations raise PaymentGatewayException on decline or error and
    should be side-effect free beyond IO.
    """

    provider: str

    async def process_payment(self, req: GatewayChargeRequest) -> GatewayChargeResult: ...

    async def process_refund(self, req: GatewayRefundRequest) -> GatewayRefundResult: ...
