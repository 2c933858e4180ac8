import pytest

from src.core.errors import ReplayError, VerificationError
from src.payments.proof import decode_proof_header
from src.payments.sandbox import SandboxVerifier
from src.payments.verifier import PaymentVerifier
from src.utils.factories import SELLER_ADDRESS, random_tx_hash


@pytest.fixture
def sandbox(replay_guard):
    return SandboxVerifier(replay_guard, delay_seconds=30)


class TestSandboxAmounts:

    @pytest.mark.unit
    def test_100_always_verifies(self, sandbox):
        payment = sandbox.verify(decode_proof_header(random_tx_hash()), SELLER_ADDRESS, 100)
        assert payment.amount == 100
        assert payment.confirmation_delay == 0

    @pytest.mark.unit
    def test_999_always_fails_terminally(self, sandbox):
        with pytest.raises(VerificationError) as exc:
            sandbox.verify(decode_proof_header(random_tx_hash()), SELLER_ADDRESS, 999)
        assert exc.value.reason == "sandbox_declined"
        assert exc.value.retryable is False

    @pytest.mark.unit
    def test_500_is_delayed(self, sandbox):
        payment = sandbox.verify(decode_proof_header(random_tx_hash()), SELLER_ADDRESS, 500)
        assert payment.confirmation_delay == 30

    @pytest.mark.unit
    def test_replay_protection_applies(self, sandbox):
        proof = decode_proof_header(random_tx_hash())
        sandbox.verify(proof, SELLER_ADDRESS, 100)
        with pytest.raises(ReplayError):
            sandbox.verify(proof, SELLER_ADDRESS, 100)

    @pytest.mark.unit
    def test_other_amounts_verify_without_inner(self, sandbox):
        assert sandbox.verify(decode_proof_header(random_tx_hash()), SELLER_ADDRESS, 42).amount == 42

    @pytest.mark.unit
    def test_other_amounts_go_to_inner(self, replay_guard, fake_chain, token_domain):
        inner = PaymentVerifier(fake_chain, replay_guard, token_domain)
        sandbox = SandboxVerifier(replay_guard, inner=inner)

        with pytest.raises(VerificationError) as exc:
            sandbox.verify(decode_proof_header(random_tx_hash()), SELLER_ADDRESS, 42)
        assert exc.value.reason == "transaction_not_found"

        tx = fake_chain.add(value=42)
        assert sandbox.verify(decode_proof_header(tx.tx_hash), SELLER_ADDRESS, 42).amount == 42

    @pytest.mark.unit
    def test_sentinel_amounts_skip_inner(self, replay_guard, fake_chain, token_domain):
        inner = PaymentVerifier(fake_chain, replay_guard, token_domain)
        sandbox = SandboxVerifier(replay_guard, inner=inner)
        sandbox.verify(decode_proof_header(random_tx_hash()), SELLER_ADDRESS, 100)
        assert fake_chain.lookups == 0
