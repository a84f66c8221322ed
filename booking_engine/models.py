from sqlalchemy import (
    Column, Integer, String, Text, Date, TIMESTAMP, Numeric, ForeignKey, JSON, Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from enum import Enum as PyEnum
from .database import Base
import datetime


def utcnow():
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


# --- Status vocabularies (stored as plain strings) ---
class BookingStatus(str, PyEnum):
    PENDING = "pending"
    APPROVED = "approved"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"
    CANCELED = "canceled"
    APPROVED = "approved"


class TransactionType(str, PyEnum):
    BOOKING = "booking"
    COMMISSION = "commission"
    REFUND = "refund"
    WITHDRAW = "withdraw"


class TransactionStatus(str, PyEnum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    APPROVED = "approved"
    FAILED = "failed"


class PaymentFlowState(str, PyEnum):
    """Local progress of a gateway intent, persisted on the booking ledger row."""
    CREATED = "created"
    CONFIRMED = "confirmed"
    CAPTURED = "captured"
    RECONCILED = "reconciled"


class CheckoutStatus(str, PyEnum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


ACTIVE = 1  # users.status / packages.status value for active / approved


# ================================
# Collaborator read models
# These tables are owned by other services; only the columns
# the transaction engine reads are mapped here.
# ================================
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    status = Column(Integer, default=ACTIVE, nullable=False)
    role = Column(String(20), default="user", nullable=False)
    stripe_customer_id = Column(String(255), nullable=True)


class VendorPaymentMethod(Base):
    __tablename__ = "vendor_payment_methods"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    payment_method = Column(String(50), default="stripe", nullable=False)
    account_id = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True)


class Package(Base):
    __tablename__ = "packages"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)  # owning vendor
    name = Column(String(255), nullable=False)
    type = Column(String(50), default="tour", nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(8), default="usd", nullable=False)
    status = Column(Integer, default=ACTIVE, nullable=False)
    deleted_at = Column(TIMESTAMP, nullable=True)

    room_types = relationship("PackageRoomType", back_populates="package")


class PackageRoomType(Base):
    __tablename__ = "package_room_types"

    id = Column(Integer, primary_key=True, index=True)
    package_id = Column(Integer, ForeignKey("packages.id"), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    max_guests = Column(Integer, nullable=False, default=2)
    is_available = Column(Integer, default=1, nullable=False)
    deleted_at = Column(TIMESTAMP, nullable=True)

    package = relationship("Package", back_populates="room_types")


class ExtraService(Base):
    __tablename__ = "extra_services"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    deleted_at = Column(TIMESTAMP, nullable=True)


# ================================
# Bookings
# ================================
class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String(32), unique=True, nullable=False)
    type = Column(String(50), default="tour", nullable=False)
    status = Column(String(20), default=BookingStatus.PENDING.value, nullable=False)
    payment_status = Column(String(20), default=PaymentStatus.PENDING.value, nullable=False)

    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    vendor_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)

    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    paid_amount = Column(Numeric(10, 2), nullable=True)
    paid_currency = Column(String(8), nullable=True)
    payment_provider = Column(String(50), nullable=True)
    payment_reference_number = Column(String(255), nullable=True, index=True)

    # Contact / address snapshot
    first_name = Column(String(255))
    last_name = Column(String(255))
    email = Column(String(255))
    phone_number = Column(String(50))
    address1 = Column(String(255))
    address2 = Column(String(255))
    city = Column(String(100))
    state = Column(String(100))
    zip_code = Column(String(20))
    country = Column(String(100))
    comments = Column(Text)

    booking_date_time = Column(TIMESTAMP, default=utcnow)
    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)
    deleted_at = Column(TIMESTAMP, nullable=True)

    items = relationship("BookingItem", back_populates="booking", cascade="all, delete-orphan")
    travellers = relationship("BookingTraveller", back_populates="booking", cascade="all, delete-orphan")
    extra_services = relationship("BookingExtraService", back_populates="booking", cascade="all, delete-orphan")
    transactions = relationship("PaymentTransaction", back_populates="booking")


class BookingItem(Base):
    __tablename__ = "booking_items"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), index=True, nullable=False)
    package_id = Column(Integer, ForeignKey("packages.id"), nullable=False)
    room_type_id = Column(Integer, ForeignKey("package_room_types.id"), nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    # Snapshot of the unit price at booking time. Never recomputed.
    price = Column(Numeric(10, 2), nullable=False)

    booking = relationship("Booking", back_populates="items")


class BookingTraveller(Base):
    __tablename__ = "booking_travellers"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), index=True, nullable=False)
    type = Column(String(20), nullable=False)
    gender = Column(String(20))
    full_name = Column(String(255), nullable=False)
    first_name = Column(String(255))
    last_name = Column(String(255))
    email = Column(String(255))
    phone_number = Column(String(50))
    address1 = Column(String(255))
    address2 = Column(String(255))
    city = Column(String(100))
    state = Column(String(100))
    zip_code = Column(String(20))
    country = Column(String(100))

    booking = relationship("Booking", back_populates="travellers")


class BookingExtraService(Base):
    __tablename__ = "booking_extra_services"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="CASCADE"), index=True, nullable=False)
    extra_service_id = Column(Integer, ForeignKey("extra_services.id"), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    notes = Column(Text, nullable=True)

    booking = relationship("Booking", back_populates="extra_services")


class InvoiceCounter(Base):
    """One row per calendar day; incremented atomically by the database."""
    __tablename__ = "invoice_counters"

    day = Column(Date, primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)


# ================================
# Ledger
# ================================
class PaymentTransaction(Base):
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), index=True, nullable=True)
    # The vendor whose ledger this row belongs to
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=True)
    provider = Column(String(50), default="stripe", nullable=False)
    type = Column(String(20), nullable=False)
    status = Column(String(20), default=TransactionStatus.PENDING.value, nullable=False)
    # <gateway id>_<suffix>; the suffix convention is part of the durable contract
    reference_number = Column(String(255), unique=True, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(8), nullable=False)
    paid_amount = Column(Numeric(10, 2), nullable=True)
    paid_currency = Column(String(8), nullable=True)
    raw_status = Column(String(50), nullable=True)
    flow_state = Column(String(20), nullable=True)
    # Withdrawals only: the client's retry key, scoped to the vendor
    idempotency_key = Column(String(255), unique=True, index=True, nullable=True)

    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)

    booking = relationship("Booking", back_populates="transactions")
    refund = relationship("RefundTransaction", back_populates="payment_transaction", uselist=False)

    __table_args__ = (
        Index("ix_payment_transactions_type_status", "type", "status"),
    )


class RefundTransaction(Base):
    __tablename__ = "refund_transactions"

    id = Column(Integer, primary_key=True, index=True)
    payment_transaction_id = Column(Integer, ForeignKey("payment_transactions.id"), nullable=False)
    reason = Column(Text, nullable=False)
    requested_at = Column(TIMESTAMP, default=utcnow, nullable=False)
    reviewed_at = Column(TIMESTAMP, nullable=True)
    processing_at = Column(TIMESTAMP, nullable=True)
    completed_at = Column(TIMESTAMP, nullable=True)
    failed_at = Column(TIMESTAMP, nullable=True)

    payment_transaction = relationship("PaymentTransaction", back_populates="refund")

    __table_args__ = (
        UniqueConstraint("payment_transaction_id", name="uq_refund_transactions_payment_transaction_id"),
    )


class VendorWallet(Base):
    """balance == total_earnings - total_withdrawals - total_refunds"""
    __tablename__ = "vendor_wallets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    balance = Column(Numeric(12, 2), nullable=False, default=0)
    total_earnings = Column(Numeric(12, 2), nullable=False, default=0)
    total_withdrawals = Column(Numeric(12, 2), nullable=False, default=0)
    total_refunds = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(8), nullable=False, default="usd")
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)


# ================================
# Checkout holds
# ================================
class Checkout(Base):
    __tablename__ = "checkouts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    vendor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(String(20), default=CheckoutStatus.ACTIVE.value, nullable=False)
    expires_at = Column(TIMESTAMP, nullable=False)
    created_at = Column(TIMESTAMP, default=utcnow)

    items = relationship("CheckoutItem", back_populates="checkout", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_checkouts_status_expires_at", "status", "expires_at"),
    )


class CheckoutItem(Base):
    __tablename__ = "checkout_items"

    id = Column(Integer, primary_key=True, index=True)
    checkout_id = Column(Integer, ForeignKey("checkouts.id", ondelete="CASCADE"), index=True, nullable=False)
    package_id = Column(Integer, ForeignKey("packages.id"), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    # room type, quantity and guest counts as selected
    included_packages = Column(JSON, nullable=False, default=dict)

    checkout = relationship("Checkout", back_populates="items")


# ================================
# Notification outbox
# ================================
class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id = Column(Integer, primary_key=True, index=True)

    # Status to track if the event has been sent
    status = Column(String(20), default="PENDING", nullable=False)

    # The Kafka topic to send the message to
    topic = Column(String(255), nullable=False)

    # The full JSON payload to be sent
    payload = Column(Text, nullable=False)

    created_at = Column(TIMESTAMP, default=utcnow)

    __table_args__ = (
        Index('ix_outbox_events_status', 'status'),
    )
