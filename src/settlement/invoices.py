import logging
import secrets
import threading
import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from src.core.errors import TransitionError, ValidationError
from src.models.invoice import Invoice, InvoiceStatus
from src.models.settlement import Settlement
from src.settlement.state_machine import SettlementStateMachine
from src.storage.store import InMemoryStore
from src.webhooks.events import (
    INVOICE_CREATED,
    INVOICE_EXPIRED,
    INVOICE_FAILED,
    INVOICE_PAID,
    INVOICE_SETTLED,
)

logger = logging.getLogger(__name__)

INVOICE_TRANSITIONS = {
    InvoiceStatus.DRAFT: {InvoiceStatus.SENT},
    InvoiceStatus.SENT: {InvoiceStatus.PAID, InvoiceStatus.EXPIRED, InvoiceStatus.FAILED},
    InvoiceStatus.PAID: set(),
    InvoiceStatus.EXPIRED: set(),
    InvoiceStatus.FAILED: set(),
}


class InvoiceService:
    """Creates invoices and moves them alongside their settlement."""

    def __init__(
        self,
        store: InMemoryStore,
        state_machine: SettlementStateMachine,
        emit: Callable[[str, dict], object],
        recipient: str,
        currency: str = "USDC",
        ttl_seconds: int = 900,
    ):
        self.store = store
        self.state_machine = state_machine
        self.emit = emit
        self.recipient = recipient
        self.currency = currency
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()

    def create(
        self,
        amount,
        currency: str | None = None,
        description: str = "",
    ) -> tuple[Invoice, Settlement]:
        """Issue an invoice and provision its pending settlement.

        Amounts are positive integers in minor units; anything else is rejected
        before any record exists.
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError(
                f"Amount must be a positive integer, got {amount!r}",
                reason="invalid_amount",
            )
        if not isinstance(description, str):
            raise ValidationError("Description must be a string")

        now = datetime.now(timezone.utc).replace(microsecond=0)
        invoice = Invoice(
            invoice_id=f"inv_{uuid.uuid4().hex[:16]}",
            amount=amount,
            currency=currency or self.currency,
            description=description,
            status=InvoiceStatus.DRAFT,
            created_at=now,
            recipient=self.recipient,
            nonce="0x" + secrets.token_hex(32),
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )
        self.store.add_invoice(invoice)
        self.emit(INVOICE_CREATED, invoice.to_dict())

        invoice = self._transition(invoice.invoice_id, InvoiceStatus.SENT)
        settlement = self.state_machine.provision(invoice)
        logger.info(
            "Invoice %s issued for %d %s (settlement %s)",
            invoice.invoice_id, invoice.amount, invoice.currency, settlement.settlement_id,
        )
        return invoice, settlement

    def get(self, invoice_id: str) -> Invoice:
        return self.store.get_invoice(invoice_id)

    def mark_paid(self, invoice_id: str, settlement: Settlement) -> Invoice:
        invoice = self._transition(invoice_id, InvoiceStatus.PAID)
        data = {
            **invoice.to_dict(),
            "settlementId": settlement.settlement_id,
            "txHash": settlement.tx_hash,
        }
        self.emit(INVOICE_PAID, data)
        self.emit(INVOICE_SETTLED, {**data, "confirmedAt": settlement.to_dict()["confirmedAt"]})
        return invoice

    def mark_failed(self, invoice_id: str, reason: str) -> Invoice:
        invoice = self._transition(invoice_id, InvoiceStatus.FAILED)
        self.emit(INVOICE_FAILED, {**invoice.to_dict(), "reason": reason})
        return invoice

    def expire(self, invoice_id: str) -> Invoice:
        invoice = self._transition(invoice_id, InvoiceStatus.EXPIRED)
        self.emit(INVOICE_EXPIRED, invoice.to_dict())
        return invoice

    def _transition(self, invoice_id: str, target: InvoiceStatus) -> Invoice:
        with self._lock:
            current = self.store.get_invoice(invoice_id)
            if target not in INVOICE_TRANSITIONS[current.status]:
                raise TransitionError(
                    f"Invoice {invoice_id} cannot move from {current.status.value} to {target.value}",
                    details={"from": current.status.value, "to": target.value},
                )
            updated = replace(current, status=target)
            self.store.save_invoice(updated)
        logger.debug("Invoice %s: %s -> %s", invoice_id, current.status.value, target.value)
        return updated
