from .config import Settings, get_settings
from .errors import (
    DeliveryError,
    NotFoundError,
    ReplayError,
    SettlementServiceError,
    TransitionError,
    ValidationError,
    VerificationError,
)

__all__ = [
    "Settings", "get_settings",
    "SettlementServiceError", "ValidationError", "VerificationError",
    "ReplayError", "TransitionError", "NotFoundError", "DeliveryError",
]
