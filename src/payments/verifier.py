import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone

from eth_keys.exceptions import BadSignature
from eth_keys.exceptions import ValidationError as KeyValidationError

from src.core.errors import VerificationError
from src.models.payment import PaymentProof, ProofScheme, VerifiedPayment
from src.payments.authorization import recover_signer
from src.payments.chain import ChainClient
from src.payments.replay import ReplayGuard

logger = logging.getLogger(__name__)


def _same_address(a: str | None, b: str | None) -> bool:
    return a is not None and b is not None and a.lower() == b.lower()


class PaymentVerifier:
    """Confirms a payment proof exactly once.

    Failures are raised, never retried here: ``VerificationError.retryable``
    tells the caller whether resubmitting the same proof later can succeed.
    """

    def __init__(
        self,
        chain: ChainClient,
        replay_guard: ReplayGuard,
        domain: dict,
        min_confirmations: int = 1,
        clock: Callable[[], float] = time.time,
    ):
        self.chain = chain
        self.replay_guard = replay_guard
        self.domain = domain
        self.min_confirmations = min_confirmations
        self._clock = clock

    def verify(self, proof: PaymentProof, expected_recipient: str, expected_amount: int) -> VerifiedPayment:
        key = proof.replay_key
        self.replay_guard.claim(key)
        try:
            payment = self._check(proof, expected_recipient, expected_amount)
        except BaseException:
            self.replay_guard.release(key)
            raise
        self.replay_guard.commit(key)
        logger.info("Verified %s payment %s for %d", proof.scheme.value, proof.identifier, payment.amount)
        return payment

    def _check(self, proof: PaymentProof, expected_recipient: str, expected_amount: int) -> VerifiedPayment:
        if proof.scheme is ProofScheme.ONCHAIN_TX:
            return self._check_transaction(proof, expected_recipient, expected_amount)
        return self._check_authorization(proof, expected_recipient, expected_amount)

    def _check_transaction(self, proof: PaymentProof, expected_recipient: str, expected_amount: int) -> VerifiedPayment:
        tx = self.chain.get_transaction(proof.tx_hash)
        if tx is None:
            raise VerificationError(
                f"Transaction {proof.tx_hash} not found", reason="transaction_not_found", retryable=True,
            )
        if tx.block_number is None:
            raise VerificationError(
                f"Transaction {proof.tx_hash} not mined yet", reason="transaction_pending", retryable=True,
            )
        if tx.status == 0:
            raise VerificationError(f"Transaction {proof.tx_hash} reverted", reason="transaction_reverted")
        if tx.confirmations < self.min_confirmations:
            raise VerificationError(
                f"Transaction {proof.tx_hash} has {tx.confirmations} confirmation(s)",
                reason="insufficient_confirmations",
                retryable=True,
            )
        if not _same_address(tx.to, expected_recipient):
            raise VerificationError(
                "Payment sent to the wrong recipient",
                reason="recipient_mismatch",
                details={"expected": expected_recipient},
            )
        if tx.value < expected_amount:
            raise VerificationError(
                "Insufficient payment",
                reason="insufficient_amount",
                details={"required": expected_amount, "provided": tx.value},
            )
        return VerifiedPayment(
            identifier=proof.identifier,
            scheme=proof.scheme,
            payer=proof.signer,
            recipient=tx.to,
            amount=tx.value,
            verified_at=datetime.now(timezone.utc),
        )

    def _check_authorization(self, proof: PaymentProof, expected_recipient: str, expected_amount: int) -> VerifiedPayment:
        auth = proof.payload
        if not _same_address(auth["to"], expected_recipient):
            raise VerificationError(
                "Authorization names the wrong recipient",
                reason="recipient_mismatch",
                details={"expected": expected_recipient},
            )
        if int(auth["value"]) < expected_amount:
            raise VerificationError(
                "Insufficient payment",
                reason="insufficient_amount",
                details={"required": expected_amount, "provided": int(auth["value"])},
            )

        now = int(self._clock())
        if int(auth["validBefore"]) <= now:
            raise VerificationError("Authorization expired", reason="authorization_expired")
        if int(auth["validAfter"]) > now:
            raise VerificationError(
                "Authorization not yet valid", reason="authorization_not_yet_valid", retryable=True,
            )

        try:
            signer = recover_signer(auth, proof.signature, self.domain)
        except (ValueError, BadSignature, KeyValidationError) as e:
            raise VerificationError("Unreadable authorization signature", reason="invalid_signature") from e
        if not _same_address(signer, proof.signer):
            raise VerificationError(
                "Authorization was not signed by the payer", reason="invalid_signature",
            )
        if self.chain.authorization_used(signer, auth["nonce"]):
            raise VerificationError("Authorization nonce already used on-chain", reason="authorization_used")

        return VerifiedPayment(
            identifier=proof.identifier,
            scheme=proof.scheme,
            payer=signer,
            recipient=auth["to"],
            amount=int(auth["value"]),
            verified_at=datetime.now(timezone.utc),
        )
