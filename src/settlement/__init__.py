from .invoices import InvoiceService
from .state_machine import SettlementStateMachine

__all__ = ["InvoiceService", "SettlementStateMachine"]
