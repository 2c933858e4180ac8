from .handler import GatewayResponse, PaymentGate
from .server import SellerApp, SellerServer

__all__ = ["GatewayResponse", "PaymentGate", "SellerApp", "SellerServer"]
