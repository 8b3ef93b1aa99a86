"""
Tests for the gateway settlement reconciler
"""

import json

import pytest

from app.core.transactions.models import Transaction, TransactionStatus, TransactionType
from app.services.events import COLLECTION_FOR_SHARES, EventBus, InMemoryEventBus
from app.services.reconciler import TransactionReconciler, reconcile_receive

SHARES_CONTEXT = json.dumps({"sharesSubscriptionTracker": "sub-1"})


class ExplodingEventBus(EventBus):
    def __init__(self):
        self.attempts = 0

    def publish(self, topic, payload):
        self.attempts += 1
        raise RuntimeError("broker unreachable")


@pytest.fixture
def reconciler(db_session, event_bus):
    return TransactionReconciler(db_session, event_bus)


def _status(db_session, transaction_id) -> TransactionStatus:
    db_session.expire_all()
    return db_session.get(Transaction, transaction_id).status


class TestReceiveSuccess:
    """handle_receive_success"""

    def test_completes_and_publishes(self, db_session, reconciler, event_bus, create_transaction):
        transaction = create_transaction(payment_tracker="recv-op-1", context=SHARES_CONTEXT)

        assert reconciler.handle_receive_success("recv-op-1") is True

        assert _status(db_session, transaction.id) == TransactionStatus.COMPLETE
        assert event_bus.published == [(
            COLLECTION_FOR_SHARES,
            {
                "context": "COLLECTION_FOR_SHARES",
                "payload": {"paymentTracker": "sub-1", "paymentStatus": "COMPLETE"},
            },
        )]

    def test_duplicate_event_publishes_once(self, db_session, reconciler, event_bus, create_transaction):
        """At-least-once delivery: only the first notification has an effect"""
        transaction = create_transaction(payment_tracker="recv-op-1", context=SHARES_CONTEXT)

        results = [reconciler.handle_receive_success("recv-op-1") for _ in range(3)]

        assert results == [True, False, False]
        assert _status(db_session, transaction.id) == TransactionStatus.COMPLETE
        assert len(event_bus.published) == 1

    def test_processing_transaction_completes(self, db_session, reconciler, create_transaction):
        transaction = create_transaction(payment_tracker="recv-op-2", status=TransactionStatus.PROCESSING)

        assert reconciler.handle_receive_success("recv-op-2") is True
        assert _status(db_session, transaction.id) == TransactionStatus.COMPLETE

    def test_unknown_operation_is_noop(self, db_session, reconciler, event_bus, create_transaction):
        transaction = create_transaction(payment_tracker="recv-op-1")

        assert reconciler.handle_receive_success("recv-op-unknown") is False
        assert reconciler.handle_receive_success("") is False

        assert _status(db_session, transaction.id) == TransactionStatus.PENDING
        assert event_bus.published == []

    def test_terminal_status_is_never_changed(self, db_session, reconciler, event_bus, create_transaction):
        transaction = create_transaction(payment_tracker="recv-op-3", status=TransactionStatus.FAILED, context=SHARES_CONTEXT)

        assert reconciler.handle_receive_success("recv-op-3") is False
        assert _status(db_session, transaction.id) == TransactionStatus.FAILED
        assert event_bus.published == []

    def test_unroutable_context_still_completes(self, db_session, reconciler, event_bus, create_transaction):
        transaction = create_transaction(payment_tracker="recv-op-4", context="{not json")

        assert reconciler.handle_receive_success("recv-op-4") is True

        assert _status(db_session, transaction.id) == TransactionStatus.COMPLETE
        assert event_bus.published == []

    def test_no_context_does_not_publish(self, reconciler, event_bus, create_transaction):
        create_transaction(payment_tracker="recv-op-5")

        assert reconciler.handle_receive_success("recv-op-5") is True
        assert event_bus.published == []

    def test_event_context_used_when_record_has_none(self, reconciler, event_bus, create_transaction):
        create_transaction(payment_tracker="recv-op-6")

        reconciler.handle_receive_success("recv-op-6", context={"sharesSubscriptionTracker": "sub-9"})

        assert event_bus.published[0][1]["payload"]["paymentTracker"] == "sub-9"

    @pytest.mark.parametrize("stored", ['{"other": 1}', "{not json"])
    def test_event_context_ignored_when_record_has_unroutable_context(self, reconciler, event_bus, create_transaction, stored):
        create_transaction(payment_tracker="recv-op-6b", context=stored)

        assert reconciler.handle_receive_success("recv-op-6b", context={"sharesSubscriptionTracker": "sub-9"}) is True

        assert event_bus.published == []

    def test_stored_context_wins_over_event_context(self, reconciler, event_bus, create_transaction):
        create_transaction(payment_tracker="recv-op-7", context=SHARES_CONTEXT)

        reconciler.handle_receive_success("recv-op-7", context={"sharesSubscriptionTracker": "sub-other"})

        assert event_bus.published[0][1]["payload"]["paymentTracker"] == "sub-1"

    def test_publish_failure_keeps_settlement(self, db_session, create_transaction):
        transaction = create_transaction(payment_tracker="recv-op-8", context=SHARES_CONTEXT)
        bus = ExplodingEventBus()

        assert TransactionReconciler(db_session, bus).handle_receive_success("recv-op-8") is True

        assert bus.attempts == 1
        assert _status(db_session, transaction.id) == TransactionStatus.COMPLETE


class TestReceiveFailure:
    """handle_receive_failure"""

    def test_fails_and_publishes_status(self, db_session, reconciler, event_bus, create_transaction):
        transaction = create_transaction(payment_tracker="recv-op-1", context=SHARES_CONTEXT)

        assert reconciler.handle_receive_failure("recv-op-1") is True

        assert _status(db_session, transaction.id) == TransactionStatus.FAILED
        assert event_bus.published[0][1]["payload"] == {"paymentTracker": "sub-1", "paymentStatus": "FAILED"}

    def test_failure_after_success_is_noop(self, db_session, reconciler, event_bus, create_transaction):
        transaction = create_transaction(payment_tracker="recv-op-1", context=SHARES_CONTEXT)

        reconciler.handle_receive_success("recv-op-1")
        assert reconciler.handle_receive_failure("recv-op-1") is False

        assert _status(db_session, transaction.id) == TransactionStatus.COMPLETE
        assert len(event_bus.published) == 1


def test_reconcile_receive_dispatch(db_session, create_transaction):
    bus = InMemoryEventBus()
    ok = create_transaction(payment_tracker="recv-op-ok", type=TransactionType.DEPOSIT)
    bad = create_transaction(payment_tracker="recv-op-bad", type=TransactionType.DEPOSIT)

    assert reconcile_receive(db_session, bus, operation_id="recv-op-ok") is True
    assert reconcile_receive(db_session, bus, operation_id="recv-op-bad", succeeded=False) is True

    assert _status(db_session, ok.id) == TransactionStatus.COMPLETE
    assert _status(db_session, bad.id) == TransactionStatus.FAILED


def test_subscribers_receive_collection_events(db_session, create_transaction):
    bus = InMemoryEventBus()
    received = []
    bus.subscribe(COLLECTION_FOR_SHARES, received.append)
    create_transaction(payment_tracker="recv-op-1", context=SHARES_CONTEXT)

    reconcile_receive(db_session, bus, operation_id="recv-op-1")

    assert received == [{
        "context": "COLLECTION_FOR_SHARES",
        "payload": {"paymentTracker": "sub-1", "paymentStatus": "COMPLETE"},
    }]
