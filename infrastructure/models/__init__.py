"""Infrastructure models package exports."""
from .base import Base, TimestampMixin, metadata
from .offer import OfferModel
from .payment import PaymentRecordModel

__all__ = [
    "Base",
    "metadata",
    "TimestampMixin",
    "OfferModel",
    "PaymentRecordModel",
]
