from .invoice import Invoice, InvoiceStatus
from .settlement import Settlement, SettlementStatus
from .payment import ChainTransaction, PaymentProof, ProofScheme, VerifiedPayment
from .webhook import EndpointStatus, WebhookEndpoint, WebhookEvent
from .delivery import DeliveryAttempt, DeliveryStatus

__all__ = [
    "Invoice", "InvoiceStatus",
    "Settlement", "SettlementStatus",
    "PaymentProof", "ProofScheme", "VerifiedPayment", "ChainTransaction",
    "WebhookEvent", "WebhookEndpoint", "EndpointStatus",
    "DeliveryAttempt", "DeliveryStatus",
]
