# Import testing tools
import json
from datetime import timedelta
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from booking_engine import models
from booking_engine.config import settings


def create_booking(client, headers, payload):
    response = client.post("/api/v1/bookings/", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


# --- Bookings ---

def test_create_booking_success(client: TestClient, auth_headers, cart_payload, db_session: Session):
    """Test successfully creating a booking."""
    response = client.post("/api/v1/bookings/", json=cart_payload(), headers=auth_headers)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Booking created successfully"
    data = body["data"]
    assert Decimal(data["total_amount"]) == Decimal("198.00")
    assert data["user_id"] == 1  # User ID from the test token
    assert data["invoice_number"].startswith("INV-")
    assert len(data["items"]) == 1

    # The notification is written to the outbox in the same transaction
    outbox_event = db_session.query(models.OutboxEvent).first()
    assert outbox_event is not None
    assert outbox_event.topic == settings.KAFKA_NOTIFICATION_TOPIC
    assert json.loads(outbox_event.payload)["event"] == "booking.created"


def test_create_booking_invalid_dates(client: TestClient, auth_headers, cart_payload, today):
    payload = cart_payload()
    payload["booking_items"][0]["end_date"] = payload["booking_items"][0]["start_date"]

    response = client.post("/api/v1/bookings/", json=payload, headers=auth_headers)

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "End date must be after start date"}


def test_create_booking_requires_items(client: TestClient, auth_headers, cart_payload):
    response = client.post("/api/v1/bookings/", json=cart_payload(booking_items=[]), headers=auth_headers)

    assert response.status_code == 422
    assert response.json()["success"] is False


def test_room_booking_requires_guest_counts(client: TestClient, auth_headers, cart_payload, db_session: Session):
    payload = cart_payload(booking_travellers=[{"type": "adult", "full_name": f"Traveller {n}"} for n in range(6)])
    del payload["booking_items"][0]["guests"]

    response = client.post("/api/v1/bookings/", json=payload, headers=auth_headers)

    assert response.status_code == 422
    assert "guests are required" in response.json()["message"]
    assert db_session.query(models.Booking).count() == 0


def test_create_booking_no_auth(client: TestClient, cart_payload):
    """Test creating a booking without providing an auth token."""
    response = client.post("/api/v1/bookings/", json=cart_payload())
    assert response.status_code in (401, 403)
    assert response.json()["success"] is False


def test_create_booking_bad_token(client: TestClient, cart_payload):
    response = client.post("/api/v1/bookings/", json=cart_payload(), headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Could not validate credentials"}


def test_transient_failure_is_marked_retryable(client: TestClient, auth_headers, cart_payload, mocker):
    mocker.patch.object(settings, "BOOKING_TX_TIMEOUT_SECONDS", -1)

    response = client.post("/api/v1/bookings/", json=cart_payload(), headers=auth_headers)

    assert response.status_code == 503
    assert response.json()["retryable"] is True


def test_read_user_bookings(client: TestClient, auth_headers, headers_for, cart_payload, db_session: Session):
    """Test retrieving bookings only for the authenticated user."""
    create_booking(client, auth_headers, cart_payload())
    create_booking(client, auth_headers, cart_payload())
    db_session.add(models.User(id=5, name="Other Guest", email="other-guest@example.com"))
    db_session.commit()
    create_booking(client, headers_for(5), cart_payload())

    response = client.get("/api/v1/bookings/", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert len(data) == 2
    assert all(b["user_id"] == 1 for b in data)


def test_read_single_booking(client: TestClient, auth_headers, headers_for, cart_payload):
    booking = create_booking(client, auth_headers, cart_payload())

    assert client.get(f"/api/v1/bookings/{booking['id']}", headers=auth_headers).status_code == 200
    response = client.get(f"/api/v1/bookings/{booking['id']}", headers=headers_for(2))
    assert response.status_code == 404
    assert response.json()["message"] == "Booking not found"


# --- Payment flow ---

def test_full_payment_and_refund_flow(client: TestClient, auth_headers, headers_for, cart_payload, catalog, gateway):
    booking = create_booking(client, auth_headers, cart_payload())

    response = client.post("/api/v1/payments/create-intent", json={"booking_id": booking["id"]}, headers=auth_headers)
    assert response.status_code == 201
    intent = response.json()["data"]
    assert Decimal(intent["commission"]) == Decimal("29.70")
    assert intent["client_secret"]

    response = client.post(f"/api/v1/payments/confirm/{intent['payment_intent_id']}",
                           json={"payment_method_id": "pm_card_visa"}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "succeeded"

    response = client.post(f"/api/v1/payments/confirm/{intent['payment_intent_id']}",
                           json={"payment_method_id": "pm_card_visa"}, headers=auth_headers)
    assert response.json()["message"] == "Payment already processed"
    assert response.json()["data"]["already_processed"] is True

    status = client.get(f"/api/v1/bookings/{booking['id']}/payment-status", headers=auth_headers).json()["data"]
    assert status["payment_status"] == "paid"

    wallet = client.get("/api/v1/vendor/wallet", headers=headers_for(catalog.vendor_id)).json()["data"]
    assert Decimal(wallet["balance"]) == Decimal("168.30")

    response = client.post(f"/api/v1/bookings/{booking['id']}/refund-request",
                           json={"refund_reason": "Flight cancelled"}, headers=auth_headers)
    assert response.status_code == 201
    response = client.post(f"/api/v1/bookings/{booking['id']}/refund-request",
                           json={"refund_reason": "Flight cancelled"}, headers=auth_headers)
    assert response.status_code == 409

    response = client.post(f"/api/v1/admin/refunds/{booking['id']}", json={"status": "approved"},
                           headers=headers_for(catalog.admin_id))
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "approved"


def test_confirm_declined_card_reports_gateway_status(client: TestClient, auth_headers, cart_payload, gateway,
                                                      gateway_error):
    booking = create_booking(client, auth_headers, cart_payload())
    intent = client.post("/api/v1/payments/create-intent", json={"booking_id": booking["id"]},
                         headers=auth_headers).json()["data"]
    gateway.fail_on["confirm_intent"] = gateway_error()

    response = client.post(f"/api/v1/payments/confirm/{intent['payment_intent_id']}",
                           json={"payment_method_id": "pm_card_chargeDeclined"}, headers=auth_headers)

    assert response.status_code == 502
    assert response.json()["success"] is False
    assert response.json()["gateway_status"] == "card_declined"


def test_refund_request_on_unpaid_booking(client: TestClient, auth_headers, cart_payload, db_session: Session):
    booking = create_booking(client, auth_headers, cart_payload())

    response = client.post(f"/api/v1/bookings/{booking['id']}/refund-request",
                           json={"refund_reason": "Changed my mind"}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["message"] == "Payment not confirmed for this booking"
    assert db_session.query(models.PaymentTransaction).filter_by(type="refund").count() == 0


# --- Checkout ---

def test_checkout_hold_lifecycle(client: TestClient, auth_headers, catalog, today):
    payload = {
        "package_id": catalog.hotel_id,
        "room_type_id": catalog.room_id,
        "start_date": str(today + timedelta(days=3)),
        "end_date": str(today + timedelta(days=5)),
        "quantity": 1,
        "guests": {"adults": 2},
    }
    response = client.post("/api/v1/checkout/", json=payload, headers=auth_headers)
    assert response.status_code == 201
    hold = response.json()["data"]
    assert Decimal(hold["pricing"]["total"]) == Decimal("220.00")

    assert client.get(f"/api/v1/checkout/{hold['checkout_id']}", headers=auth_headers).status_code == 200
    response = client.delete(f"/api/v1/checkout/{hold['checkout_id']}", headers=auth_headers)
    assert response.json()["data"]["status"] == "cancelled"
    assert client.get(f"/api/v1/checkout/{hold['checkout_id']}", headers=auth_headers).status_code == 404


# --- Roles ---

def test_vendor_endpoints_require_vendor_role(client: TestClient, auth_headers):
    response = client.get("/api/v1/vendor/wallet", headers=auth_headers)
    assert response.status_code == 403
    assert response.json()["message"] == "Not enough permissions"


def test_vendor_withdrawal(client: TestClient, headers_for, catalog, db_session: Session, gateway):
    db_session.add(models.VendorWallet(user_id=catalog.vendor_id, balance=Decimal("50.00"),
                                       total_earnings=Decimal("50.00")))
    db_session.commit()

    response = client.post("/api/v1/vendor/withdraw", json={"amount": "20.00", "idempotency_key": "wd-1"},
                           headers=headers_for(catalog.vendor_id))
    assert response.status_code == 200
    assert response.json()["data"]["reference_number"].endswith("_withdraw")

    response = client.post("/api/v1/vendor/withdraw", json={"amount": "40.00", "idempotency_key": "wd-2"},
                           headers=headers_for(catalog.vendor_id))
    assert response.status_code == 400
    assert response.json()["message"] == "Insufficient balance."


def test_vendor_withdrawal_retry_returns_original(client: TestClient, headers_for, catalog, db_session: Session,
                                                  gateway):
    db_session.add(models.VendorWallet(user_id=catalog.vendor_id, balance=Decimal("50.00"),
                                       total_earnings=Decimal("50.00")))
    db_session.commit()
    body = {"amount": "20.00", "idempotency_key": "wd-1"}

    first = client.post("/api/v1/vendor/withdraw", json=body, headers=headers_for(catalog.vendor_id))
    retried = client.post("/api/v1/vendor/withdraw", json=body, headers=headers_for(catalog.vendor_id))

    assert retried.status_code == 200
    assert retried.json()["data"]["id"] == first.json()["data"]["id"]
    assert len(gateway.payouts) == 1
    wallet = client.get("/api/v1/vendor/wallet", headers=headers_for(catalog.vendor_id)).json()["data"]
    assert Decimal(wallet["balance"]) == Decimal("30.00")


def test_withdrawal_requires_idempotency_key(client: TestClient, headers_for, catalog):
    response = client.post("/api/v1/vendor/withdraw", json={"amount": "20.00"}, headers=headers_for(catalog.vendor_id))
    assert response.status_code == 422
    assert response.json()["message"].startswith("idempotency_key")


def test_admin_status_update_and_soft_delete(client: TestClient, auth_headers, headers_for, cart_payload, catalog):
    booking = create_booking(client, auth_headers, cart_payload())
    admin = headers_for(catalog.admin_id)

    response = client.patch(f"/api/v1/admin/bookings/{booking['id']}/status", json={"status": "cancelled"},
                            headers=admin)
    assert response.status_code == 200
    assert response.json()["data"]["payment_status"] == "canceled"

    assert client.patch(f"/api/v1/admin/bookings/{booking['id']}/status", json={"status": "cancelled"},
                        headers=auth_headers).status_code == 403

    assert client.delete(f"/api/v1/admin/bookings/{booking['id']}", headers=admin).status_code == 200
    assert client.get(f"/api/v1/bookings/{booking['id']}", headers=auth_headers).status_code == 404
