import logging
import threading
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone

from src.core.errors import TransitionError
from src.models.invoice import Invoice
from src.models.payment import VerifiedPayment
from src.models.settlement import Settlement, SettlementStatus
from src.storage.store import InMemoryStore
from src.webhooks.events import SETTLEMENT_CONFIRMED, SETTLEMENT_FAILED

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    SettlementStatus.PENDING: {SettlementStatus.PROCESSING},
    SettlementStatus.PROCESSING: {SettlementStatus.COMPLETED, SettlementStatus.FAILED},
    SettlementStatus.COMPLETED: set(),
    SettlementStatus.FAILED: set(),
}


class SettlementStateMachine:
    """Sole owner of settlement state.

    ``pending -> processing -> completed | failed``. Terminal states accept no
    further transition; attempting one raises TransitionError. Terminal
    transitions emit their event before returning.
    """

    def __init__(self, store: InMemoryStore, emit: Callable[[str, dict], object], chain: str):
        self.store = store
        self.emit = emit
        self.chain = chain
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    @contextmanager
    def locked(self, settlement_id: str) -> Iterator[None]:
        """Critical section for one settlement; re-entrant on the same thread."""
        with self._registry_lock:
            lock = self._locks.setdefault(settlement_id, threading.RLock())
        with lock:
            yield

    def provision(self, invoice: Invoice) -> Settlement:
        settlement = Settlement(
            settlement_id=f"stl_{uuid.uuid4().hex[:16]}",
            invoice_id=invoice.invoice_id,
            status=SettlementStatus.PENDING,
            chain=self.chain,
            amount=invoice.amount,
            currency=invoice.currency,
            created_at=datetime.now(timezone.utc),
        )
        self.store.add_settlement(settlement)
        return settlement

    def begin_processing(self, settlement_id: str, tx_hash: str) -> Settlement:
        return self._transition(settlement_id, SettlementStatus.PROCESSING, tx_hash=tx_hash)

    def complete(self, settlement_id: str, payment: VerifiedPayment | None = None) -> Settlement:
        with self.locked(settlement_id):
            settlement = self._transition(
                settlement_id,
                SettlementStatus.COMPLETED,
                confirmed_at=datetime.now(timezone.utc).replace(microsecond=0),
            )
            data = settlement.to_dict()
            if payment is not None:
                data["payer"] = payment.payer
                data["scheme"] = payment.scheme.value
            self.emit(SETTLEMENT_CONFIRMED, data)
        return settlement

    def fail(self, settlement_id: str, reason: str) -> Settlement:
        with self.locked(settlement_id):
            settlement = self._transition(settlement_id, SettlementStatus.FAILED, failure_reason=reason)
            data = settlement.to_dict()
            data["reason"] = reason
            self.emit(SETTLEMENT_FAILED, data)
        return settlement

    def _transition(self, settlement_id: str, target: SettlementStatus, **changes) -> Settlement:
        with self.locked(settlement_id):
            current = self.store.get_settlement(settlement_id)
            if target not in ALLOWED_TRANSITIONS[current.status]:
                logger.error(
                    "Rejected settlement %s transition %s -> %s",
                    settlement_id, current.status.value, target.value,
                )
                raise TransitionError(
                    f"Settlement {settlement_id} cannot move from {current.status.value} to {target.value}",
                    details={"from": current.status.value, "to": target.value},
                )
            updated = replace(current, status=target, **changes)
            self.store.save_settlement(updated)
        logger.info("Settlement %s: %s -> %s", settlement_id, current.status.value, target.value)
        return updated
