from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from .invoice import _iso


class SettlementStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SettlementStatus.COMPLETED, SettlementStatus.FAILED)


@dataclass(frozen=True)
class Settlement:
    settlement_id: str
    invoice_id: str
    status: SettlementStatus
    chain: str
    amount: int
    currency: str
    created_at: datetime
    tx_hash: str | None = None
    confirmed_at: datetime | None = None
    failure_reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.settlement_id,
            "invoiceId": self.invoice_id,
            "status": self.status.value,
            "txHash": self.tx_hash,
            "chain": self.chain,
            "amount": self.amount,
            "currency": self.currency,
            "confirmedAt": _iso(self.confirmed_at),
        }
