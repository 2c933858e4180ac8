import logging
from datetime import datetime, timezone

from src.core.errors import VerificationError
from src.models.payment import PaymentProof, VerifiedPayment
from src.payments.replay import ReplayGuard

logger = logging.getLogger(__name__)

AMOUNT_ALWAYS_SUCCEEDS = 100
AMOUNT_ALWAYS_FAILS = 999
AMOUNT_DELAYED = 500


class SandboxVerifier:
    """Test-mode verifier whose outcome is decided by the invoice amount.

    * 100 always verifies,
    * 999 always fails,
    * 500 verifies, but the settlement may only complete after ``delay_seconds``.

    Any other amount goes to ``inner`` when one is configured and verifies
    otherwise. Replay protection applies exactly as in live mode.
    """

    def __init__(self, replay_guard: ReplayGuard, delay_seconds: float = 30.0, inner=None):
        self.replay_guard = replay_guard
        self.delay_seconds = delay_seconds
        self.inner = inner

    def verify(self, proof: PaymentProof, expected_recipient: str, expected_amount: int) -> VerifiedPayment:
        if self.inner is not None and expected_amount not in (
            AMOUNT_ALWAYS_SUCCEEDS, AMOUNT_ALWAYS_FAILS, AMOUNT_DELAYED,
        ):
            return self.inner.verify(proof, expected_recipient, expected_amount)

        key = proof.replay_key
        self.replay_guard.claim(key)
        if expected_amount == AMOUNT_ALWAYS_FAILS:
            self.replay_guard.release(key)
            raise VerificationError(
                "Sandbox amount 999 always fails verification",
                reason="sandbox_declined",
            )
        self.replay_guard.commit(key)

        delay = self.delay_seconds if expected_amount == AMOUNT_DELAYED else 0.0
        logger.info("Sandbox verified %s for %d (confirmation delay %.0fs)", proof.identifier, expected_amount, delay)
        return VerifiedPayment(
            identifier=proof.identifier,
            scheme=proof.scheme,
            payer=proof.signer,
            recipient=expected_recipient,
            amount=expected_amount,
            verified_at=datetime.now(timezone.utc),
            confirmation_delay=delay,
        )
