import threading
from datetime import datetime, timezone

import pytest

from src.core.errors import TransitionError
from src.models.payment import ProofScheme, VerifiedPayment
from src.models.settlement import SettlementStatus


def _payment(amount=100):
    return VerifiedPayment(
        identifier="0x" + "ab" * 32,
        scheme=ProofScheme.ONCHAIN_TX,
        payer="0x" + "11" * 20,
        recipient="0x" + "22" * 20,
        amount=amount,
        verified_at=datetime.now(timezone.utc),
    )


@pytest.fixture
def pending(state_machine, invoice_factory, store):
    invoice = invoice_factory.create()
    store.add_invoice(invoice)
    return state_machine.provision(invoice)


class TestProvision:

    @pytest.mark.unit
    def test_new_settlement_is_pending(self, pending, store):
        assert pending.status is SettlementStatus.PENDING
        assert pending.tx_hash is None
        assert pending.settlement_id.startswith("stl_")
        assert store.get_settlement_for_invoice(pending.invoice_id) == pending

    @pytest.mark.unit
    def test_settlement_copies_invoice_amount(self, pending):
        assert pending.amount == 100
        assert pending.currency == "USDC"
        assert pending.chain == "base-sepolia"


class TestTransitions:

    @pytest.mark.unit
    def test_begin_processing_sets_tx_hash(self, state_machine, pending, recorder):
        s = state_machine.begin_processing(pending.settlement_id, "0xabc")
        assert s.status is SettlementStatus.PROCESSING
        assert s.tx_hash == "0xabc"
        assert recorder.events == []

    @pytest.mark.unit
    def test_complete_emits_confirmed_once(self, state_machine, pending, recorder):
        state_machine.begin_processing(pending.settlement_id, "0xabc")
        s = state_machine.complete(pending.settlement_id, _payment())

        assert s.status is SettlementStatus.COMPLETED
        assert s.confirmed_at is not None
        assert recorder.types == ["settlement.confirmed"]
        data = recorder.events[0][1]
        assert data["id"] == pending.settlement_id
        assert data["txHash"] == "0xabc"
        assert data["status"] == "completed"
        assert data["payer"] == "0x" + "11" * 20

    @pytest.mark.unit
    def test_fail_emits_failed_with_reason(self, state_machine, pending, recorder):
        state_machine.begin_processing(pending.settlement_id, "0xabc")
        s = state_machine.fail(pending.settlement_id, "insufficient_amount")

        assert s.status is SettlementStatus.FAILED
        assert s.failure_reason == "insufficient_amount"
        assert recorder.types == ["settlement.failed"]
        assert recorder.events[0][1]["reason"] == "insufficient_amount"

    @pytest.mark.unit
    def test_pending_cannot_complete_directly(self, state_machine, pending, recorder):
        with pytest.raises(TransitionError):
            state_machine.complete(pending.settlement_id, _payment())
        assert recorder.events == []

    @pytest.mark.unit
    def test_pending_cannot_fail_directly(self, state_machine, pending):
        with pytest.raises(TransitionError):
            state_machine.fail(pending.settlement_id, "x")

    @pytest.mark.unit
    def test_processing_twice_rejected(self, state_machine, pending):
        state_machine.begin_processing(pending.settlement_id, "0xabc")
        with pytest.raises(TransitionError):
            state_machine.begin_processing(pending.settlement_id, "0xdef")


class TestTerminalStates:
    """Completed and failed settlements reject every further transition."""

    @pytest.mark.unit
    @pytest.mark.parametrize("terminal", ["complete", "fail"])
    def test_terminal_rejects_everything(self, state_machine, pending, store, recorder, terminal):
        sid = pending.settlement_id
        state_machine.begin_processing(sid, "0xabc")
        if terminal == "complete":
            state_machine.complete(sid, _payment())
        else:
            state_machine.fail(sid, "declined")
        before = store.get_settlement(sid)
        emitted = len(recorder.events)

        with pytest.raises(TransitionError):
            state_machine.begin_processing(sid, "0xdef")
        with pytest.raises(TransitionError):
            state_machine.complete(sid, _payment())
        with pytest.raises(TransitionError) as exc:
            state_machine.fail(sid, "again")

        assert exc.value.reason == "invalid_transition"
        assert store.get_settlement(sid) == before
        assert len(recorder.events) == emitted

    @pytest.mark.unit
    def test_concurrent_completion_happens_once(self, state_machine, pending, recorder):
        sid = pending.settlement_id
        state_machine.begin_processing(sid, "0xabc")
        outcomes = []

        def worker():
            try:
                state_machine.complete(sid, _payment())
                outcomes.append("ok")
            except TransitionError:
                outcomes.append("rejected")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("rejected") == 7
        assert recorder.types == ["settlement.confirmed"]


class TestLocked:

    @pytest.mark.unit
    def test_lock_is_reentrant(self, state_machine, pending):
        with state_machine.locked(pending.settlement_id):
            with state_machine.locked(pending.settlement_id):
                state_machine.begin_processing(pending.settlement_id, "0xabc")

    @pytest.mark.unit
    def test_lock_blocks_other_threads(self, state_machine, pending):
        entered = threading.Event()
        with state_machine.locked(pending.settlement_id):
            def other():
                with state_machine.locked(pending.settlement_id):
                    entered.set()

            t = threading.Thread(target=other)
            t.start()
            assert not entered.wait(0.2)
        t.join(timeout=2)
        assert entered.is_set()
