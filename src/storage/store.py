import threading

from src.core.errors import NotFoundError, ValidationError
from src.models.invoice import Invoice
from src.models.settlement import Settlement
from src.models.webhook import WebhookEndpoint, WebhookEvent
from src.utils.pagination import paginate


class InMemoryStore:
    """Thread-safe in-memory store for invoices, settlements, endpoints and events.

    Records are frozen dataclasses; writers replace a record as a whole, so a
    reader never observes a half-applied update. Events are append-only.
    """

    def __init__(self):
        self._invoices: dict[str, Invoice] = {}
        self._settlements: dict[str, Settlement] = {}
        self._settlement_by_invoice: dict[str, str] = {}
        self._endpoints: dict[str, WebhookEndpoint] = {}
        self._events: list[WebhookEvent] = []
        self._event_ids: set[str] = set()
        self._lock = threading.RLock()

    # Invoices

    def add_invoice(self, invoice: Invoice) -> None:
        with self._lock:
            if invoice.invoice_id in self._invoices:
                raise ValidationError(f"Invoice {invoice.invoice_id} already exists")
            self._invoices[invoice.invoice_id] = invoice

    def save_invoice(self, invoice: Invoice) -> None:
        with self._lock:
            self._require(self._invoices, invoice.invoice_id, "Invoice")
            self._invoices[invoice.invoice_id] = invoice

    def get_invoice(self, invoice_id: str) -> Invoice:
        with self._lock:
            return self._require(self._invoices, invoice_id, "Invoice")

    # Settlements

    def add_settlement(self, settlement: Settlement) -> None:
        with self._lock:
            if settlement.invoice_id in self._settlement_by_invoice:
                raise ValidationError(
                    f"Invoice {settlement.invoice_id} already has a settlement"
                )
            self._settlements[settlement.settlement_id] = settlement
            self._settlement_by_invoice[settlement.invoice_id] = settlement.settlement_id

    def save_settlement(self, settlement: Settlement) -> None:
        with self._lock:
            self._require(self._settlements, settlement.settlement_id, "Settlement")
            self._settlements[settlement.settlement_id] = settlement

    def get_settlement(self, settlement_id: str) -> Settlement:
        with self._lock:
            return self._require(self._settlements, settlement_id, "Settlement")

    def get_settlement_for_invoice(self, invoice_id: str) -> Settlement:
        with self._lock:
            settlement_id = self._settlement_by_invoice.get(invoice_id)
            if settlement_id is None:
                raise NotFoundError(f"No settlement for invoice {invoice_id}")
            return self._settlements[settlement_id]

    def list_settlements(self, limit: int, offset: int) -> tuple[list[Settlement], int]:
        with self._lock:
            return paginate(list(self._settlements.values()), limit, offset)

    # Webhook endpoints

    def add_endpoint(self, endpoint: WebhookEndpoint) -> None:
        with self._lock:
            self._endpoints[endpoint.endpoint_id] = endpoint

    def save_endpoint(self, endpoint: WebhookEndpoint) -> None:
        with self._lock:
            self._require(self._endpoints, endpoint.endpoint_id, "Webhook endpoint")
            self._endpoints[endpoint.endpoint_id] = endpoint

    def get_endpoint(self, endpoint_id: str) -> WebhookEndpoint:
        with self._lock:
            return self._require(self._endpoints, endpoint_id, "Webhook endpoint")

    def list_endpoints(self) -> list[WebhookEndpoint]:
        with self._lock:
            return list(self._endpoints.values())

    # Events

    def append_event(self, event: WebhookEvent) -> None:
        with self._lock:
            if event.event_id in self._event_ids:
                raise ValidationError(f"Event {event.event_id} already recorded")
            self._events.append(event)
            self._event_ids.add(event.event_id)

    def get_event(self, event_id: str) -> WebhookEvent:
        with self._lock:
            for event in self._events:
                if event.event_id == event_id:
                    return event
        raise NotFoundError(f"Event {event_id} not found")

    def list_events(
        self,
        limit: int,
        offset: int,
        event_type: str | None = None,
    ) -> tuple[list[WebhookEvent], int]:
        with self._lock:
            events = [
                e for e in self._events
                if event_type is None or e.event_type == event_type
            ]
        return paginate(events, limit, offset)

    @staticmethod
    def _require(records: dict, key: str, kind: str):
        record = records.get(key)
        if record is None:
            raise NotFoundError(f"{kind} {key} not found")
        return record
