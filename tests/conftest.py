import os

# Settings are read at import time; point them at throwaway resources first
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ALGORITHM", "HS256")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

# Imports for testing tools
import datetime
import hashlib
import hmac
import itertools
import json
import threading
import time
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from booking_engine import gateway as gw
from booking_engine import limits, models
from booking_engine.config import settings
from booking_engine.database import Base, get_db
from booking_engine.errors import GatewayError
from booking_engine.gateway import get_gateway
from booking_engine.main import app

# --- Test Database Setup ---
# One shared in-memory connection; services commit and roll back on their own
engine = create_engine(
    "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """Provides a clean database for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


# --- Fake payment gateway ---
WEBHOOK_SECRET = "whsec_test_secret"


class FakeGateway:
    """
    In-memory stand-in for PaymentGateway. Intents move through the same
    states Stripe reports; ``fail_on`` makes a named operation raise.
    Idempotency keys behave like Stripe's: a repeated key returns the
    original object. Webhook signatures are verified for real.
    """

    provider = "stripe"
    webhook_secret = WEBHOOK_SECRET
    construct_event = gw.PaymentGateway.construct_event

    def __init__(self):
        self.intents = {}
        self.calls = []
        self.refunds = []
        self.payouts = []
        self.fail_on = {}
        self.default_method = "pm_card_visa"
        self._ids = itertools.count(1)
        self._by_key = {}
        self._lock = threading.Lock()

    def _record(self, operation, **kwargs):
        self.calls.append((operation, kwargs))
        if operation in self.fail_on:
            raise self.fail_on[operation]

    def create_intent(self, amount, currency, application_fee_amount, destination_account, metadata,
                      idempotency_key, customer=None, payment_method=None):
        self._record("create_intent", amount=amount, idempotency_key=idempotency_key)
        with self._lock:
            if idempotency_key in self._by_key:
                return self._by_key[idempotency_key]
            intent_id = f"pi_test_{next(self._ids)}"
            intent = SimpleNamespace(
                id=intent_id,
                client_secret=f"{intent_id}_secret",
                status=gw.REQUIRES_CONFIRMATION if payment_method else gw.REQUIRES_PAYMENT_METHOD,
                amount=amount,
                amount_received=0,
                currency=currency,
                application_fee_amount=application_fee_amount,
                destination=destination_account,
                customer=customer,
                payment_method=payment_method,
                metadata=metadata,
            )
            self.intents[intent_id] = intent
            self._by_key[idempotency_key] = intent
        return intent

    def retrieve_intent(self, intent_id):
        self._record("retrieve_intent", intent_id=intent_id)
        return self.intents[intent_id]

    def confirm_intent(self, intent_id, payment_method):
        self._record("confirm_intent", intent_id=intent_id, payment_method=payment_method)
        intent = self.intents[intent_id]
        intent.payment_method = payment_method
        intent.status = gw.REQUIRES_CAPTURE
        return intent

    def capture_intent(self, intent_id, idempotency_key):
        self._record("capture_intent", intent_id=intent_id, idempotency_key=idempotency_key)
        intent = self.intents[intent_id]
        if intent.status == gw.REQUIRES_CAPTURE:
            intent.status = gw.SUCCEEDED
            intent.amount_received = intent.amount
        return intent

    def create_refund(self, intent_id, amount, idempotency_key, metadata=None):
        self._record("create_refund", intent_id=intent_id, amount=amount, idempotency_key=idempotency_key)
        if idempotency_key in self._by_key:
            return self._by_key[idempotency_key]
        already_refunded = sum(r.amount for r in self.refunds if r.payment_intent == intent_id)
        if amount + already_refunded > self.intents[intent_id].amount_received:
            raise GatewayError(
                f"Payment provider error during create_refund: Refund amount ({amount}) is greater than "
                f"unrefunded amount on charge", gateway_status="amount_too_large",
            )
        refund = SimpleNamespace(id=f"re_test_{next(self._ids)}", status="succeeded", amount=amount,
                                 payment_intent=intent_id)
        self.refunds.append(refund)
        self._by_key[idempotency_key] = refund
        return refund

    def default_payment_method(self, customer_id):
        return self.default_method if customer_id else None

    def create_payout(self, account_id, amount, currency, idempotency_key):
        self._record("create_payout", account_id=account_id, amount=amount, idempotency_key=idempotency_key)
        if idempotency_key in self._by_key:
            return self._by_key[idempotency_key]
        payout = SimpleNamespace(id=f"po_test_{next(self._ids)}", status="pending", amount=amount,
                                 currency=currency, destination=account_id)
        self.payouts.append(payout)
        self._by_key[idempotency_key] = payout
        return payout

    def calls_to(self, operation):
        return [kwargs for name, kwargs in self.calls if name == operation]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def gateway_error():
    def build(message="Your card was declined.", code="card_declined"):
        return GatewayError(f"Payment provider error: {message}", gateway_status=code)
    return build


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET) -> str:
    """Stripe-Signature header value for ``payload``, as Stripe computes it."""
    timestamp = int(time.time())
    digest = hmac.new(secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256)
    return f"t={timestamp},v1={digest.hexdigest()}"


@pytest.fixture
def stripe_event():
    """Builds a signed webhook delivery: (body, headers)."""
    def build(event_type, obj, secret=WEBHOOK_SECRET):
        payload = json.dumps({
            "id": f"evt_{event_type.replace('.', '_')}",
            "object": "event",
            "type": event_type,
            "data": {"object": obj},
        })
        return payload, {"Stripe-Signature": sign_payload(payload, secret), "Content-Type": "application/json"}
    return build


# --- Catalog fixtures ---
@pytest.fixture
def today():
    return datetime.date.today()


@pytest.fixture
def catalog(db_session):
    """
    Guest (1), vendor (2) with a linked Stripe account, admin (3), a hotel
    package priced per night, a flat-priced tour and one extra service.
    """
    guest = models.User(id=1, name="Guest", email="guest@example.com", role="user",
                        stripe_customer_id="cus_guest")
    vendor = models.User(id=2, name="Vendor", email="vendor@example.com", role="vendor")
    admin = models.User(id=3, name="Admin", email="admin@example.com", role="admin")
    other_vendor = models.User(id=4, name="Other Vendor", email="other@example.com", role="vendor")
    db_session.add_all([guest, vendor, admin, other_vendor])
    db_session.flush()

    db_session.add(models.VendorPaymentMethod(user_id=vendor.id, payment_method="stripe",
                                              account_id="acct_vendor", name="Vendor Stripe"))

    hotel = models.Package(id=10, user_id=vendor.id, name="Seaside Hotel", type="hotel",
                           price=Decimal("100.00"))
    room = models.PackageRoomType(id=20, package_id=10, name="Double", price=Decimal("100.00"), max_guests=2)
    tour = models.Package(id=11, user_id=vendor.id, name="City Tour", type="tour", price=Decimal("50.00"))
    foreign_tour = models.Package(id=12, user_id=other_vendor.id, name="Other Tour", type="tour",
                                  price=Decimal("75.00"))
    breakfast = models.ExtraService(id=30, name="Breakfast", price=Decimal("20.00"))
    db_session.add_all([hotel, room, tour, foreign_tour, breakfast])
    db_session.commit()

    return SimpleNamespace(
        guest_id=guest.id,
        vendor_id=vendor.id,
        admin_id=admin.id,
        other_vendor_id=other_vendor.id,
        hotel_id=hotel.id,
        room_id=room.id,
        tour_id=tour.id,
        foreign_tour_id=foreign_tour.id,
        extra_id=breakfast.id,
    )


@pytest.fixture
def cart_payload(catalog, today):
    """Hotel at 100/night for 2 nights, breakfast 20, 10% off: total 198."""
    def build(**overrides):
        payload = {
            "type": "hotel",
            "first_name": "Ada",
            "last_name": "Lovelace",
            "email": "ada@example.com",
            "booking_items": [{
                "package_id": catalog.hotel_id,
                "room_type_id": catalog.room_id,
                "start_date": str(today + datetime.timedelta(days=10)),
                "end_date": str(today + datetime.timedelta(days=12)),
                "quantity": 1,
                "guests": {"adults": 2},
            }],
            "booking_travellers": [{"type": "adult", "full_name": "Ada Lovelace"}],
            "booking_extra_services": [{"extra_service_id": catalog.extra_id, "quantity": 1}],
            "discount_percentage": "10",
        }
        payload.update(overrides)
        return payload
    return build


# --- Auth helpers ---
def create_test_token(user_id: int = 1) -> str:
    """Creates a simple JWT for testing."""
    payload = {"sub": str(user_id)}
    token = jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return f"Bearer {token}"


@pytest.fixture
def auth_headers():
    """Authorization headers for the guest (user_id=1)."""
    return {"Authorization": create_test_token(1)}


@pytest.fixture
def headers_for():
    def build(user_id: int):
        return {"Authorization": create_test_token(user_id)}
    return build


# --- Mocking External Services ---
@pytest.fixture(scope="function", autouse=True)
def mock_background_tasks(mocker):
    """
    Mocks the background tasks (poller and scheduler) and the Redis-backed
    rate limiter that start on app lifespan.
    """
    mocker.patch("booking_engine.main.run_outbox_poller", new_callable=AsyncMock)
    mocker.patch("booking_engine.main.run_booking_scheduler", new_callable=AsyncMock)
    mocker.patch("booking_engine.main.redis.from_url", return_value=AsyncMock())
    mocker.patch("booking_engine.main.FastAPILimiter.init", new_callable=AsyncMock)


# --- API Test Client Fixture ---
@pytest.fixture(scope="function")
def client(db_session, gateway):
    """Provides a TestClient wired to the test database and the fake gateway."""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    for limiter in (limits.write_limiter, limits.read_limiter, limits.payment_limiter):
        app.dependency_overrides[limiter] = lambda: None

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
