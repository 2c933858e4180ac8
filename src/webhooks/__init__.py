from .dispatcher import WebhookDispatcher
from .engine import WebhookDeliveryEngine
from .events import create_event, serialize_event
from .logger import DeliveryLogger
from .retry import RetryManager
from .scheduler import DeliveryScheduler
from .signer import WebhookSigner

__all__ = [
    "WebhookDispatcher",
    "WebhookDeliveryEngine",
    "DeliveryScheduler",
    "RetryManager",
    "DeliveryLogger",
    "WebhookSigner",
    "create_event",
    "serialize_event",
]
