import hashlib
import hmac
import secrets

WEBHOOK_SECRET_PREFIX = "whsec_"


def _to_bytes(payload: bytes | str) -> bytes:
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return bytes(payload)


def generate_signature(payload: bytes | str, secret: str) -> str:
    """Generate HMAC-SHA256 hex signature over the exact raw payload bytes."""
    return hmac.new(
        secret.encode("utf-8"),
        _to_bytes(payload),
        hashlib.sha256,
    ).hexdigest()


def verify_hmac(payload: bytes | str, signature: str, secret: str) -> bool:
    """Verify an HMAC-SHA256 signature against the raw payload bytes.

    The comparison is constant-time. Anything that is not a matching hex
    digest (wrong type, wrong length, re-serialized body) returns False.
    """
    if not isinstance(signature, str) or not isinstance(payload, (bytes, bytearray, str)):
        return False
    expected = generate_signature(payload, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def generate_webhook_secret() -> str:
    """Return a new endpoint signing secret: ``whsec_`` followed by 48 hex chars."""
    return WEBHOOK_SECRET_PREFIX + secrets.token_hex(24)
