"""
Shared business codes used across layers (Domain/Application/Infrastructure).

Generic codes live here; payment processor codes are in
`shared.codes.payment_codes`.
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    """Settlement error codes (single source of truth)."""

    # Request validation (1xxxx)
    PARAM_VALIDATION_ERROR = 10003

    # Business rules (2xxxx)
    NOT_FOUND = 20006  # payment or offer missing
    CONFLICT = 20007  # payment already exists for the offer
    INVALID_STATE = 20008  # operation illegal for the current status


__all__ = ["BusinessCode"]
