"""
Platform fee calculation.

The fee is rounded once and rider earnings are derived by subtraction, so the
split always adds up to the gross amount to the cent.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from domain.common.exceptions import DomainValidationException
from domain.payment.entity import CENT


Amount = Union[Decimal, int, str, float]


@dataclass(frozen=True)
class FeeBreakdown:
    total_amount: Decimal
    platform_fee: Decimal
    rider_earnings: Decimal
    fee_percentage: Decimal


def to_money(amount: Amount, *, field: str = "amount") -> Decimal:
    """Parse a positive amount with at most two decimal places."""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        raise DomainValidationException(f"Invalid amount: {amount!r}", field=field)
    if not value.is_finite() or value <= 0:
        raise DomainValidationException(f"Amount must be greater than 0: {amount}", field=field)
    if value != value.quantize(CENT):
        raise DomainValidationException(f"Amount has sub-cent precision: {amount}", field=field)
    return value.quantize(CENT)


class FeeCalculator:
    """Percentage fee with a floor, capped at the gross amount."""

    def __init__(self, percentage: Decimal = Decimal("0.05"), minimum_fee: Decimal = Decimal("0.50")) -> None:
        percentage = Decimal(str(percentage))
        minimum_fee = Decimal(str(minimum_fee))
        if not (Decimal("0") <= percentage <= Decimal("1")):
            raise DomainValidationException("Fee percentage must be within [0, 1]", field="percentage")
        if minimum_fee < 0:
            raise DomainValidationException("Minimum fee must be non-negative", field="minimum_fee")
        self.percentage = percentage
        self.minimum_fee = minimum_fee.quantize(CENT)

    def platform_fee(self, amount: Amount) -> Decimal:
        total = to_money(amount)
        fee = (total * self.percentage).quantize(CENT, rounding=ROUND_HALF_UP)
        fee = max(fee, self.minimum_fee)
        return min(fee, total)

    def calculate_fees(self, amount: Amount) -> FeeBreakdown:
        total = to_money(amount)
        fee = self.platform_fee(total)
        return FeeBreakdown(
            total_amount=total,
            platform_fee=fee,
            rider_earnings=total - fee,
            fee_percentage=(fee / total * 100).quantize(CENT, rounding=ROUND_HALF_UP),
        )
