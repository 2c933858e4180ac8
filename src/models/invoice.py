from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class InvoiceStatus(Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    EXPIRED = "expired"
    FAILED = "failed"


@dataclass(frozen=True)
class Invoice:
    invoice_id: str
    amount: int  # minor units
    currency: str
    description: str
    status: InvoiceStatus
    created_at: datetime
    recipient: str
    nonce: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> dict:
        return {
            "id": self.invoice_id,
            "amount": self.amount,
            "currency": self.currency,
            "description": self.description,
            "status": self.status.value,
            "recipient": self.recipient,
            "createdAt": _iso(self.created_at),
            "expiresAt": _iso(self.expires_at),
        }


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")
