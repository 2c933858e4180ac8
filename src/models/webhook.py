from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .invoice import _iso


class EndpointStatus(Enum):
    ACTIVE = "active"
    FAILING = "failing"
    DISABLED = "disabled"


@dataclass(frozen=True)
class WebhookEvent:
    event_id: str
    event_type: str  # "invoice.paid", "settlement.confirmed", etc.
    data: dict
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.event_id,
            "type": self.event_type,
            "createdAt": _iso(self.created_at),
            "data": self.data,
        }


@dataclass(frozen=True)
class WebhookEndpoint:
    endpoint_id: str
    url: str
    events: tuple[str, ...]
    secret: str
    status: EndpointStatus = EndpointStatus.ACTIVE
    consecutive_failures: int = 0
    created_at: datetime | None = field(default=None, compare=False)

    def subscribes_to(self, event_type: str) -> bool:
        return event_type in self.events

    def to_dict(self, include_secret: bool = False) -> dict:
        body = {
            "id": self.endpoint_id,
            "url": self.url,
            "events": list(self.events),
            "status": self.status.value,
            "consecutiveFailures": self.consecutive_failures,
        }
        if include_secret:
            body["secret"] = self.secret
        return body
