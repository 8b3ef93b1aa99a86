"""
Pytest configuration and fixtures

SQLite (file database, shared across threads) stands in for PostgreSQL and
fakeredis for Redis; the payment gateway and event bus are in-memory fakes.
"""

import itertools
import os
import tempfile
import threading
import time
from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

# Set test environment variables before importing app
_db_path = os.path.join(tempfile.gettempdir(), f"lnwallet_core_test_{os.getpid()}.db")
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = f"sqlite:///{_db_path}"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["LNURL_DOMAIN"] = "bitsacco.com"
os.environ["LNURL_CALLBACK_BASE_URL"] = "https://api.bitsacco.com"
os.environ["LNURL_SIGNING_SECRET"] = "test-lnurl-signing-secret"
os.environ["GATEWAY_WEBHOOK_SECRET"] = "test-gateway-webhook-secret"
os.environ["RECONCILE_ASYNC"] = "false"

from app.api.dependencies import (
    event_bus_dependency,
    gateway_dependency,
    lnurl_rate_limiter_dependency,
    queue_redis_dependency,
    redis_dependency,
)
from app.core.transactions.models import Transaction, TransactionStatus, TransactionType
from app.infrastructure.database import Base, SessionLocal, engine, get_db
from app.main import app
from app.services.events import InMemoryEventBus
from app.services.gateway import (
    DecodedInvoice,
    GatewayError,
    InvoiceResult,
    PaymentGateway,
    PaymentResult,
)
from app.utils.rate_limiter import build_lnurl_rate_limiter


class FakeGateway(PaymentGateway):
    """
    In-memory payment gateway.

    Invoices it issues (or that tests register with add_invoice) decode to
    their amount; anything else is rejected like a malformed BOLT11.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.invoices = {}
        self.pay_calls = []
        self.pay_error = None
        self.pay_delay_seconds = 0.0
        self.receive_outcomes = {}

    def add_invoice(self, invoice: str, amount_msats: int) -> str:
        self.invoices[invoice] = amount_msats
        return invoice

    def invoice(self, amount_msats: int, description: str) -> InvoiceResult:
        with self._lock:
            n = next(self._ids)
        invoice = f"lnbcrt{amount_msats}fake{n}"
        self.invoices[invoice] = amount_msats
        return InvoiceResult(invoice=invoice, operation_id=f"recv-op-{n}")

    def decode(self, invoice: str) -> DecodedInvoice:
        if invoice not in self.invoices:
            raise GatewayError("Failed to decode invoice", permanent=True, status_code=400)
        return DecodedInvoice(
            amount_msats=self.invoices[invoice],
            description="test invoice",
            payment_hash=f"hash-{invoice}",
            timestamp=int(time.time()),
        )

    def pay(self, invoice: str) -> PaymentResult:
        with self._lock:
            self.pay_calls.append(invoice)
            n = next(self._ids)
        if self.pay_delay_seconds:
            time.sleep(self.pay_delay_seconds)
        if self.pay_error is not None:
            raise self.pay_error
        return PaymentResult(operation_id=f"pay-op-{n}", fee_msats=12, payment_type="lightning")

    def await_receive(self, operation_id: str) -> bool:
        outcome = self.receive_outcomes.get(operation_id, True)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture(scope="function")
def db_session() -> Session:
    """
    Create a fresh database session for each test.
    Clears all tables before and after each test.
    """
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture(scope="function")
def redis_client(redis_server):
    """fakeredis client with decoded responses (like the app pool)"""
    client = fakeredis.FakeRedis(server=redis_server, decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture(scope="function")
def queue_redis_client(redis_server):
    """Bytes-mode client on the same fake server, as RQ needs"""
    return fakeredis.FakeRedis(server=redis_server)


class FrozenClock:
    """Settable wall clock for rate-limit windows"""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def frozen_clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def event_bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture(scope="function")
def client(db_session: Session, redis_client, queue_redis_client, gateway: FakeGateway, event_bus: InMemoryEventBus, frozen_clock):
    """
    Create FastAPI test client with dependency overrides.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[gateway_dependency] = lambda: gateway
    app.dependency_overrides[event_bus_dependency] = lambda: event_bus
    app.dependency_overrides[redis_dependency] = lambda: redis_client
    app.dependency_overrides[queue_redis_dependency] = lambda: queue_redis_client
    app.dependency_overrides[lnurl_rate_limiter_dependency] = lambda: build_lnurl_rate_limiter(redis_client, clock=frozen_clock)

    yield TestClient(app)

    # Clean up
    app.dependency_overrides.clear()


@pytest.fixture
def create_transaction(db_session: Session):
    """Factory inserting a transaction row directly"""
    def _create(**fields) -> Transaction:
        fields.setdefault("user_id", "user-1")
        fields.setdefault("type", TransactionType.DEPOSIT)
        fields.setdefault("status", TransactionStatus.PENDING)
        fields.setdefault("amount_msats", 100_000)
        transaction = Transaction(**fields)
        db_session.add(transaction)
        db_session.commit()
        db_session.refresh(transaction)
        return transaction
    return _create


@pytest.fixture
def create_withdrawal_point(create_transaction):
    """Factory for a PENDING withdrawal reserved behind k1"""
    counter = itertools.count(1)

    def _create(
        amount_msats: int = 100_000,
        k1: str = None,
        expires_in_seconds: int = 600,
        status: TransactionStatus = TransactionStatus.PENDING,
        user_id: str = "user-1",
    ) -> Transaction:
        k1 = k1 or f"{next(counter):064x}"
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in_seconds)
        return create_transaction(
            user_id=user_id,
            type=TransactionType.WITHDRAW,
            status=status,
            amount_msats=amount_msats,
            lightning={
                "k1": k1,
                "expiresAt": expires_at.isoformat(),
                "maxWithdrawableMsats": amount_msats,
                "minWithdrawableMsats": 1000,
                "defaultDescription": "Withdraw from wallet",
            },
            lnurl_k1=k1,
            lnurl_expires_at=expires_at,
        )
    return _create
