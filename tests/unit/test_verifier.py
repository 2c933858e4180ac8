import threading
import time

import pytest
from eth_account import Account

from src.core.errors import ReplayError, VerificationError
from src.models.payment import ProofScheme
from src.payments.proof import decode_proof_header
from src.payments.verifier import PaymentVerifier
from src.utils.factories import SELLER_ADDRESS, ProofFactory, random_address, random_tx_hash


@pytest.fixture
def verifier(fake_chain, replay_guard, token_domain):
    return PaymentVerifier(fake_chain, replay_guard, token_domain, min_confirmations=1)


class TestOnchainVerification:

    @pytest.mark.unit
    def test_valid_transaction(self, verifier, fake_chain, replay_guard):
        tx = fake_chain.add(value=150)
        payment = verifier.verify(decode_proof_header(tx.tx_hash), SELLER_ADDRESS, 100)

        assert payment.identifier == tx.tx_hash
        assert payment.scheme is ProofScheme.ONCHAIN_TX
        assert payment.amount == 150
        assert payment.confirmation_delay == 0
        assert replay_guard.is_processed(tx.tx_hash)

    @pytest.mark.unit
    def test_recipient_compared_case_insensitively(self, verifier, fake_chain):
        tx = fake_chain.add(to=SELLER_ADDRESS.upper().replace("0X", "0x"))
        verifier.verify(decode_proof_header(tx.tx_hash), SELLER_ADDRESS, 100)

    @pytest.mark.unit
    def test_second_submission_is_replay(self, verifier, fake_chain):
        tx = fake_chain.add()
        verifier.verify(decode_proof_header(tx.tx_hash), SELLER_ADDRESS, 100)
        lookups = fake_chain.lookups

        with pytest.raises(ReplayError):
            verifier.verify(decode_proof_header(tx.tx_hash), SELLER_ADDRESS, 100)
        assert fake_chain.lookups == lookups

    @pytest.mark.unit
    @pytest.mark.parametrize("overrides, reason, retryable", [
        ({"block_number": None, "status": None, "confirmations": 0}, "transaction_pending", True),
        ({"confirmations": 0}, "insufficient_confirmations", True),
        ({"status": 0}, "transaction_reverted", False),
        ({"to": "0x" + "99" * 20}, "recipient_mismatch", False),
        ({"value": 99}, "insufficient_amount", False),
    ])
    def test_rejections(self, verifier, fake_chain, replay_guard, overrides, reason, retryable):
        tx = fake_chain.add(**overrides)
        with pytest.raises(VerificationError) as exc:
            verifier.verify(decode_proof_header(tx.tx_hash), SELLER_ADDRESS, 100)

        assert exc.value.reason == reason
        assert exc.value.retryable is retryable
        assert not replay_guard.is_processed(tx.tx_hash)

    @pytest.mark.unit
    def test_unknown_transaction_is_retryable(self, verifier):
        with pytest.raises(VerificationError) as exc:
            verifier.verify(decode_proof_header(random_tx_hash()), SELLER_ADDRESS, 100)
        assert exc.value.reason == "transaction_not_found"
        assert exc.value.retryable is True

    @pytest.mark.unit
    def test_retryable_failure_allows_resubmission(self, verifier, fake_chain):
        tx = fake_chain.add(confirmations=0)
        proof = decode_proof_header(tx.tx_hash)
        with pytest.raises(VerificationError):
            verifier.verify(proof, SELLER_ADDRESS, 100)

        fake_chain.add(tx_hash=tx.tx_hash, confirmations=2)
        assert verifier.verify(proof, SELLER_ADDRESS, 100).identifier == tx.tx_hash

    @pytest.mark.unit
    def test_chain_error_releases_claim(self, verifier, fake_chain, replay_guard):
        tx = fake_chain.add()
        fake_chain.error = VerificationError("timeout", reason="chain_timeout", retryable=True)
        with pytest.raises(VerificationError):
            verifier.verify(decode_proof_header(tx.tx_hash), SELLER_ADDRESS, 100)

        fake_chain.error = None
        verifier.verify(decode_proof_header(tx.tx_hash), SELLER_ADDRESS, 100)

    @pytest.mark.unit
    def test_min_confirmations(self, fake_chain, replay_guard, token_domain):
        strict = PaymentVerifier(fake_chain, replay_guard, token_domain, min_confirmations=6)
        tx = fake_chain.add(confirmations=5)
        with pytest.raises(VerificationError) as exc:
            strict.verify(decode_proof_header(tx.tx_hash), SELLER_ADDRESS, 100)
        assert exc.value.reason == "insufficient_confirmations"

    @pytest.mark.unit
    def test_concurrent_same_proof_credits_once(self, verifier, fake_chain):
        tx = fake_chain.add()
        barrier = threading.Barrier(10)
        results = []

        def worker():
            barrier.wait()
            try:
                verifier.verify(decode_proof_header(tx.tx_hash), SELLER_ADDRESS, 100)
                results.append("verified")
            except ReplayError:
                results.append("replay")

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count("verified") == 1
        assert results.count("replay") == 9


class TestAuthorizationVerification:

    @pytest.mark.unit
    def test_valid_authorization(self, verifier, token_domain, replay_guard):
        account = Account.create()
        header, auth = ProofFactory.authorization(token_domain, value=100, account=account)
        proof = decode_proof_header(header)

        payment = verifier.verify(proof, SELLER_ADDRESS, 100)

        assert payment.payer == account.address
        assert payment.scheme is ProofScheme.EIP3009_AUTHORIZATION
        assert replay_guard.is_processed(proof.replay_key)

    @pytest.mark.unit
    def test_authorization_replay_rejected(self, verifier, token_domain):
        header, _ = ProofFactory.authorization(token_domain)
        verifier.verify(decode_proof_header(header), SELLER_ADDRESS, 100)
        with pytest.raises(ReplayError):
            verifier.verify(decode_proof_header(header), SELLER_ADDRESS, 100)

    @pytest.mark.unit
    def test_wrong_recipient(self, verifier, token_domain):
        header, _ = ProofFactory.authorization(token_domain, to=random_address())
        with pytest.raises(VerificationError) as exc:
            verifier.verify(decode_proof_header(header), SELLER_ADDRESS, 100)
        assert exc.value.reason == "recipient_mismatch"

    @pytest.mark.unit
    def test_insufficient_value(self, verifier, token_domain):
        header, _ = ProofFactory.authorization(token_domain, value=50)
        with pytest.raises(VerificationError) as exc:
            verifier.verify(decode_proof_header(header), SELLER_ADDRESS, 100)
        assert exc.value.reason == "insufficient_amount"
        assert exc.value.retryable is False

    @pytest.mark.unit
    def test_expired(self, verifier, token_domain):
        header, _ = ProofFactory.authorization(token_domain, valid_before=int(time.time()) - 1)
        with pytest.raises(VerificationError) as exc:
            verifier.verify(decode_proof_header(header), SELLER_ADDRESS, 100)
        assert exc.value.reason == "authorization_expired"
        assert exc.value.retryable is False

    @pytest.mark.unit
    def test_not_yet_valid_is_retryable(self, verifier, token_domain):
        header, _ = ProofFactory.authorization(token_domain, valid_after=int(time.time()) + 3600)
        with pytest.raises(VerificationError) as exc:
            verifier.verify(decode_proof_header(header), SELLER_ADDRESS, 100)
        assert exc.value.reason == "authorization_not_yet_valid"
        assert exc.value.retryable is True

    @pytest.mark.unit
    def test_signed_under_other_domain(self, verifier, token_domain):
        other = {**token_domain, "chainId": 1}
        header, _ = ProofFactory.authorization(other)
        with pytest.raises(VerificationError) as exc:
            verifier.verify(decode_proof_header(header), SELLER_ADDRESS, 100)
        assert exc.value.reason == "invalid_signature"

    @pytest.mark.unit
    def test_claimed_payer_differs_from_signer(self, verifier, token_domain):
        header, auth = ProofFactory.authorization(token_domain)
        proof = decode_proof_header(header)
        forged = proof.__class__(
            scheme=proof.scheme,
            signer=random_address(),
            payload={**proof.payload, "from": random_address()},
            signature=proof.signature,
        )
        with pytest.raises(VerificationError) as exc:
            verifier.verify(forged, SELLER_ADDRESS, 100)
        assert exc.value.reason == "invalid_signature"

    @pytest.mark.unit
    def test_garbage_signature(self, verifier, token_domain):
        header, _ = ProofFactory.authorization(token_domain)
        proof = decode_proof_header(header)
        forged = proof.__class__(
            scheme=proof.scheme,
            signer=proof.signer,
            payload=proof.payload,
            signature="0x" + "00" * 65,
        )
        with pytest.raises(VerificationError) as exc:
            verifier.verify(forged, SELLER_ADDRESS, 100)
        assert exc.value.reason == "invalid_signature"

    @pytest.mark.unit
    def test_nonce_spent_on_chain(self, verifier, fake_chain, token_domain, replay_guard):
        header, auth = ProofFactory.authorization(token_domain)
        fake_chain.used_authorizations.add((auth["from"].lower(), auth["nonce"].lower()))
        proof = decode_proof_header(header)

        with pytest.raises(VerificationError) as exc:
            verifier.verify(proof, SELLER_ADDRESS, 100)

        assert exc.value.reason == "authorization_used"
        assert exc.value.retryable is False
        assert not replay_guard.is_processed(proof.replay_key)

    @pytest.mark.unit
    def test_other_nonce_of_same_payer_accepted(self, verifier, fake_chain, token_domain):
        account = Account.create()
        _, spent = ProofFactory.authorization(token_domain, account=account)
        fake_chain.used_authorizations.add((account.address.lower(), spent["nonce"].lower()))
        header, _ = ProofFactory.authorization(token_domain, account=account)

        payment = verifier.verify(decode_proof_header(header), SELLER_ADDRESS, 100)

        assert payment.payer == account.address
