import json
import uuid
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone

from src.core.errors import ValidationError
from src.models.webhook import WebhookEvent

INVOICE_CREATED = "invoice.created"
INVOICE_PAID = "invoice.paid"
INVOICE_SETTLED = "invoice.settled"
INVOICE_FAILED = "invoice.failed"
INVOICE_EXPIRED = "invoice.expired"
SETTLEMENT_CONFIRMED = "settlement.confirmed"
SETTLEMENT_FAILED = "settlement.failed"
API_KEY_CREATED = "api_key.created"
API_KEY_REVOKED = "api_key.revoked"

EVENT_TYPES = (
    INVOICE_CREATED,
    INVOICE_PAID,
    INVOICE_SETTLED,
    INVOICE_FAILED,
    INVOICE_EXPIRED,
    SETTLEMENT_CONFIRMED,
    SETTLEMENT_FAILED,
    API_KEY_CREATED,
    API_KEY_REVOKED,
)

# Deprecated spellings, rewritten to the canonical type on the way in
EVENT_TYPE_ALIASES = {
    "settlement.completed": SETTLEMENT_CONFIRMED,
}


def canonical_event_type(event_type: str) -> str:
    """Map an alias to its canonical name; reject anything outside the taxonomy."""
    canonical = EVENT_TYPE_ALIASES.get(event_type, event_type)
    if canonical not in EVENT_TYPES:
        raise ValidationError(
            f"Unknown event type {event_type!r}",
            reason="unknown_event_type",
        )
    return canonical


def canonical_event_types(event_types: Iterable[str]) -> tuple[str, ...]:
    """Canonicalize a subscription list, keeping first-seen order."""
    seen: list[str] = []
    for event_type in event_types:
        canonical = canonical_event_type(event_type)
        if canonical not in seen:
            seen.append(canonical)
    return tuple(seen)


def create_event(event_type: str, data: Mapping) -> WebhookEvent:
    """Build a new event with a fresh id and the current UTC second."""
    return WebhookEvent(
        event_id=f"evt_{uuid.uuid4().hex}",
        event_type=canonical_event_type(event_type),
        data=dict(data),
        created_at=datetime.now(timezone.utc).replace(microsecond=0),
    )


def serialize_event(event: WebhookEvent) -> bytes:
    """Serialize the delivery body. Signatures are computed over these bytes."""
    return json.dumps(event.to_dict(), separators=(",", ":"), default=str).encode("utf-8")
