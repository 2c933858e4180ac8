"""
Error taxonomy shared by the payment, settlement and webhook components.

Every error carries a stable machine-readable ``reason`` that is distinct from
the human message, so SDKs can branch on cause.
"""

from typing import Any


class SettlementServiceError(Exception):
    """Base exception for all service errors."""

    reason = "internal_error"
    http_status = 500

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        if reason is not None:
            self.reason = reason
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        body = {"error": self.reason, "message": self.message}
        body.update(self.details)
        return body


class ValidationError(SettlementServiceError):
    """Malformed proof or request input. Never retried."""

    reason = "validation_error"
    http_status = 400


class VerificationError(SettlementServiceError):
    """The payment could not be confirmed.

    ``retryable`` separates "funds not visible yet" (the client may resubmit
    the same proof later) from a definitive rejection.
    """

    reason = "verification_failed"
    http_status = 402

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ):
        self.retryable = retryable
        super().__init__(message, reason=reason, details=details)

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["retryable"] = self.retryable
        return body


class ReplayError(SettlementServiceError):
    """The payment proof was already consumed."""

    reason = "proof_already_used"
    http_status = 402

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        body["retryable"] = False
        return body


class TransitionError(SettlementServiceError):
    """Attempted move out of a terminal (or otherwise wrong) state."""

    reason = "invalid_transition"
    http_status = 409


class NotFoundError(SettlementServiceError):
    reason = "not_found"
    http_status = 404


class DeliveryError(SettlementServiceError):
    """Webhook transport failure or non-2xx response.

    Only ever recorded against a delivery attempt; never surfaced to the payer.
    """

    reason = "delivery_failed"
    http_status = 502

    def __init__(self, message: str, reason: str | None = None, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message, reason=reason)
