"""
Concurrency tests - duplicate deliveries racing on separate sessions

Each worker thread gets its own SessionLocal, as separate replicas would.
"""

from concurrent.futures import ThreadPoolExecutor

from app.core.transactions.models import Transaction, TransactionStatus
from app.infrastructure.database import SessionLocal
from app.services.events import InMemoryEventBus
from app.services.lnurl.withdraw_service import LnurlWithdrawService
from app.services.reconciler import reconcile_receive


def test_concurrent_second_step_pays_once(db_session, gateway, create_withdrawal_point):
    """
    Scenario:
    - One PENDING withdrawal point
    - 8 callbacks with the same k1 and invoice arrive at once
    - Expected: the gateway is asked to pay exactly once and exactly one
      callback answers OK
    """
    point = create_withdrawal_point(amount_msats=100_000)
    k1 = point.lnurl_k1
    invoice = gateway.add_invoice("lnbcrt1000n1race", 100_000)
    gateway.pay_delay_seconds = 0.2

    def callback():
        session = SessionLocal()
        try:
            return LnurlWithdrawService(db=session, gateway=gateway).handle_callback(k1=k1, pr=invoice)
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(lambda _: callback(), range(8)))

    ok = [r for r in results if r.get("status") == "OK"]
    errors = [r for r in results if r.get("status") == "ERROR"]
    assert len(ok) == 1
    assert len(errors) == 7
    assert {r["reason"] for r in errors} == {"LNURL withdrawal is now invalid or expired"}
    assert gateway.pay_calls == [invoice]

    db_session.expire_all()
    assert db_session.get(Transaction, point.id).status == TransactionStatus.COMPLETE


def test_concurrent_receive_notifications_publish_once(db_session, create_transaction):
    create_transaction(payment_tracker="recv-op-race", context='{"sharesSubscriptionTracker": "sub-race"}')
    bus = InMemoryEventBus()

    def notify():
        session = SessionLocal()
        try:
            return reconcile_receive(session, bus, operation_id="recv-op-race")
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=6) as executor:
        results = list(executor.map(lambda _: notify(), range(6)))

    assert results.count(True) == 1
    assert results.count(False) == 5
    assert len(bus.published) == 1
