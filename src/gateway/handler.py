import logging
import math
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from src.core.errors import (
    NotFoundError,
    ReplayError,
    TransitionError,
    ValidationError,
    VerificationError,
)
from src.models.invoice import Invoice, InvoiceStatus
from src.models.payment import PaymentProof, VerifiedPayment
from src.models.settlement import Settlement, SettlementStatus
from src.observability.metrics import MetricsCollector
from src.payments.proof import ACCEPTED_SCHEMES, decode_proof_header
from src.settlement.invoices import InvoiceService
from src.settlement.state_machine import SettlementStateMachine
from src.storage.store import InMemoryStore
from src.webhooks.scheduler import DeliveryScheduler

logger = logging.getLogger(__name__)

X402_VERSION = 1


@dataclass
class GatewayResponse:
    status: int
    body: dict
    headers: dict[str, str] = field(default_factory=dict)


def default_resource(invoice: Invoice, settlement: Settlement) -> dict:
    return {
        "invoiceId": invoice.invoice_id,
        "description": invoice.description,
        "settlement": settlement.to_dict(),
    }


class PaymentGate:
    """402 challenge/response for resources sold per invoice.

    Requests for one invoice are serialized on its settlement's lock, so two
    retried client requests can never verify or transition concurrently.
    Webhooks emitted along the way are only queued; no response waits on
    delivery.
    """

    def __init__(
        self,
        store: InMemoryStore,
        state_machine: SettlementStateMachine,
        invoices: InvoiceService,
        verifier,
        scheduler: DeliveryScheduler,
        metrics: MetricsCollector | None = None,
        resource_provider: Callable[[Invoice, Settlement], dict] = default_resource,
    ):
        self.store = store
        self.state_machine = state_machine
        self.invoices = invoices
        self.verifier = verifier
        self.scheduler = scheduler
        self.metrics = metrics
        self.resource_provider = resource_provider
        # settlement_id -> (payment, due) for verified payments awaiting their delay
        self._pending_confirmations: dict[str, tuple[VerifiedPayment, float]] = {}
        self._pending_lock = threading.Lock()

    def challenge(self, invoice: Invoice, settlement: Settlement) -> dict:
        """Payment requirements for an invoice."""
        return {
            "x402Version": X402_VERSION,
            "invoiceId": invoice.invoice_id,
            "amount": invoice.amount,
            "currency": invoice.currency,
            "recipient": invoice.recipient,
            "chain": settlement.chain,
            "description": invoice.description,
            "acceptedSchemes": list(ACCEPTED_SCHEMES),
            "nonce": invoice.nonce,
            "expiresAt": invoice.to_dict()["expiresAt"],
        }

    def handle(self, invoice_id: str, proof_header: str | None) -> GatewayResponse:
        try:
            invoice = self.store.get_invoice(invoice_id)
            settlement = self.store.get_settlement_for_invoice(invoice_id)
        except NotFoundError as e:
            return GatewayResponse(e.http_status, e.to_dict())

        if not proof_header:
            return GatewayResponse(402, self.challenge(invoice, settlement))

        try:
            proof = decode_proof_header(proof_header)
        except ValidationError as e:
            logger.info("Malformed payment proof for invoice %s: %s", invoice_id, e.message)
            self._record(e.reason)
            return GatewayResponse(e.http_status, e.to_dict())

        try:
            with self.state_machine.locked(settlement.settlement_id):
                return self._settle(invoice_id, settlement.settlement_id, proof)
        except TransitionError as e:
            logger.error("Settlement conflict for invoice %s: %s", invoice_id, e.message)
            return GatewayResponse(e.http_status, e.to_dict())

    def _settle(self, invoice_id: str, settlement_id: str, proof: PaymentProof) -> GatewayResponse:
        # Re-read under the lock; another request may have moved it
        invoice = self.store.get_invoice(invoice_id)
        settlement = self.store.get_settlement(settlement_id)

        if settlement.status is SettlementStatus.COMPLETED:
            return GatewayResponse(200, self.resource_provider(invoice, settlement))
        if settlement.status is SettlementStatus.FAILED:
            return GatewayResponse(402, {
                "error": "settlement_failed",
                "message": f"Settlement {settlement_id} failed",
                "reason": settlement.failure_reason,
                "retryable": False,
            })
        if invoice.status is InvoiceStatus.EXPIRED:
            return self._expired(invoice)

        with self._pending_lock:
            pending = self._pending_confirmations.get(settlement_id)

        # A queued confirmation finishes even past the deadline
        if pending is None and invoice.is_expired(datetime.now(timezone.utc)):
            if settlement.status is SettlementStatus.PROCESSING:
                self.state_machine.fail(settlement_id, "invoice_expired")
            invoice = self.invoices.expire(invoice_id)
            logger.info("Invoice %s expired before payment settled", invoice_id)
            return self._expired(invoice)

        if settlement.status is SettlementStatus.PENDING:
            settlement = self.state_machine.begin_processing(settlement_id, proof.identifier)
        elif proof.identifier != settlement.tx_hash:
            return GatewayResponse(409, {
                "error": "proof_mismatch",
                "message": "Settlement is already processing a different payment proof",
                "retryable": False,
            })
        elif pending is not None:
            return self._processing(settlement, pending[1])

        return self._verify(invoice, settlement, proof)

    def _verify(self, invoice: Invoice, settlement: Settlement, proof: PaymentProof) -> GatewayResponse:
        try:
            payment = self.verifier.verify(proof, invoice.recipient, invoice.amount)
        except ReplayError as e:
            self._record(e.reason)
            logger.warning("Replayed proof %s for invoice %s", proof.identifier, invoice.invoice_id)
            self._fail(invoice, settlement, e.reason)
            return GatewayResponse(e.http_status, e.to_dict())
        except VerificationError as e:
            self._record(e.reason)
            if e.retryable:
                logger.info(
                    "Payment for invoice %s not confirmed yet (%s)", invoice.invoice_id, e.reason,
                )
                return GatewayResponse(e.http_status, e.to_dict())
            logger.warning("Payment for invoice %s rejected: %s", invoice.invoice_id, e.reason)
            self._fail(invoice, settlement, e.reason)
            return GatewayResponse(e.http_status, e.to_dict())

        self._record("verified")
        if payment.confirmation_delay > 0:
            task = self.scheduler.schedule(
                payment.confirmation_delay,
                self._confirm_delayed, invoice.invoice_id, settlement.settlement_id,
                key=f"settlement:{settlement.settlement_id}",
            )
            with self._pending_lock:
                self._pending_confirmations[settlement.settlement_id] = (payment, task.due)
            logger.info(
                "Settlement %s confirmation delayed %.0fs",
                settlement.settlement_id, payment.confirmation_delay,
            )
            return self._processing(settlement, task.due)

        settlement = self._complete(invoice.invoice_id, settlement.settlement_id, payment)
        return GatewayResponse(200, self.resource_provider(self.store.get_invoice(invoice.invoice_id), settlement))

    def _confirm_delayed(self, invoice_id: str, settlement_id: str) -> None:
        with self.state_machine.locked(settlement_id):
            with self._pending_lock:
                pending = self._pending_confirmations.pop(settlement_id, None)
            if pending is None:
                return
            try:
                self._complete(invoice_id, settlement_id, pending[0])
            except TransitionError as e:
                logger.error("Delayed confirmation of %s rejected: %s", settlement_id, e.message)

    def _complete(self, invoice_id: str, settlement_id: str, payment: VerifiedPayment) -> Settlement:
        settlement = self.state_machine.complete(settlement_id, payment)
        self.invoices.mark_paid(invoice_id, settlement)
        return settlement

    def _fail(self, invoice: Invoice, settlement: Settlement, reason: str) -> None:
        self.state_machine.fail(settlement.settlement_id, reason)
        self.invoices.mark_failed(invoice.invoice_id, reason)

    def _processing(self, settlement: Settlement, due: float) -> GatewayResponse:
        retry_after = max(0, math.ceil(due - self.scheduler.now()))
        return GatewayResponse(
            202,
            {"status": "processing", "settlement": settlement.to_dict(), "retryAfter": retry_after},
            headers={"Retry-After": str(retry_after)},
        )

    @staticmethod
    def _expired(invoice: Invoice) -> GatewayResponse:
        return GatewayResponse(402, {
            "error": "invoice_expired",
            "message": f"Invoice {invoice.invoice_id} expired at {invoice.to_dict()['expiresAt']}",
            "retryable": False,
        })

    def _record(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_verification(outcome)
