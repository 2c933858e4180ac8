from .crypto import generate_signature, generate_webhook_secret, verify_hmac
from .pagination import paginate, parse_pagination

__all__ = [
    "generate_signature", "verify_hmac", "generate_webhook_secret",
    "parse_pagination", "paginate",
]
