"""Dispatch engine: fan-out, delivery ledger and scheduled claims."""

from app.modules.dispatch.exceptions import (
    DispatchError,
    GroupNotFoundError,
    InvalidDestinationError,
    ItemNotFoundError,
)
from app.modules.dispatch.models import DeliveryAttempt, DeliveryStatus, ItemType

__all__ = [
    "DeliveryAttempt",
    "DeliveryStatus",
    "DispatchError",
    "GroupNotFoundError",
    "InvalidDestinationError",
    "ItemNotFoundError",
    "ItemType",
]
