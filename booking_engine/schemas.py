from pydantic import BaseModel, Field, model_validator
from typing import Generic, List, Literal, Optional, TypeVar
from decimal import Decimal
import datetime

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    message: str = ""
    data: Optional[T] = None


# --- Cart payload ---

class GuestCounts(BaseModel):
    adults: int = Field(1, ge=1)
    children: int = Field(0, ge=0)
    infants: int = Field(0, ge=0)

    @property
    def total(self) -> int:
        return self.adults + self.children + self.infants


class TravellerCreate(BaseModel):
    type: Literal["adult", "child", "infant"]
    full_name: str
    gender: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    address1: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None


class BookingItemCreate(BaseModel):
    package_id: int
    room_type_id: Optional[int] = None
    start_date: datetime.date
    end_date: datetime.date
    quantity: int = Field(1, ge=1)
    guests: Optional[GuestCounts] = None

    @model_validator(mode="after")
    def guests_required_for_rooms(self):
        # capacity is checked against these counts
        if self.room_type_id is not None and self.guests is None:
            raise ValueError("guests are required when a room type is selected")
        return self


class ExtraServiceSelection(BaseModel):
    extra_service_id: int
    quantity: int = Field(1, ge=1)
    notes: Optional[str] = None


class BookingCreate(BaseModel):
    type: Literal["tour", "hotel", "apartment"] = "tour"
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    address1: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    comments: Optional[str] = None

    booking_items: List[BookingItemCreate] = Field(..., min_length=1)
    booking_travellers: List[TravellerCreate] = Field(default_factory=list)
    booking_extra_services: List[ExtraServiceSelection] = Field(default_factory=list)

    # A flat amount takes priority over a percentage
    discount_amount: Optional[Decimal] = Field(None, ge=0)
    discount_percentage: Optional[Decimal] = Field(None, ge=0, le=100)


# --- Booking reads ---

class BookingItemRead(BaseModel):
    id: int
    package_id: int
    room_type_id: Optional[int] = None
    start_date: datetime.date
    end_date: datetime.date
    quantity: int
    price: Decimal

    class Config:
        from_attributes = True


class TravellerRead(BaseModel):
    id: int
    type: str
    full_name: str
    email: Optional[str] = None

    class Config:
        from_attributes = True


class BookingExtraServiceRead(BaseModel):
    id: int
    extra_service_id: int
    price: Decimal
    quantity: int
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class BookingRead(BaseModel):
    id: int
    invoice_number: str
    type: str
    status: str
    payment_status: str
    user_id: int
    vendor_id: int
    total_amount: Decimal
    discount_amount: Decimal
    paid_amount: Optional[Decimal] = None
    paid_currency: Optional[str] = None
    payment_reference_number: Optional[str] = None
    booking_date_time: Optional[datetime.datetime] = None
    created_at: Optional[datetime.datetime] = None
    items: List[BookingItemRead] = []
    travellers: List[TravellerRead] = []
    extra_services: List[BookingExtraServiceRead] = []

    class Config:
        from_attributes = True


class BookingStatusUpdate(BaseModel):
    status: Literal["pending", "approved", "completed", "cancelled"]


# --- Payments ---

class PaymentIntentCreate(BaseModel):
    booking_id: int
    payment_method_id: Optional[str] = None


class PaymentIntentRead(BaseModel):
    payment_intent_id: str
    client_secret: Optional[str] = None
    status: str
    amount: Decimal
    commission: Decimal
    currency: str


class PaymentConfirm(BaseModel):
    payment_method_id: str


class PaymentConfirmationRead(BaseModel):
    booking_id: int
    payment_intent_id: str
    status: str
    paid_amount: Optional[Decimal] = None
    paid_currency: Optional[str] = None
    already_processed: bool = False


class TransactionRead(BaseModel):
    id: int
    type: str
    status: str
    reference_number: str
    amount: Decimal
    currency: str
    paid_amount: Optional[Decimal] = None
    flow_state: Optional[str] = None
    created_at: Optional[datetime.datetime] = None

    class Config:
        from_attributes = True


class PaymentStatusRead(BaseModel):
    booking_id: int
    payment_status: str
    total_amount: Decimal
    paid_amount: Optional[Decimal] = None
    payment_reference_number: Optional[str] = None
    transactions: List[TransactionRead] = []


# --- Refunds ---

class RefundRequestCreate(BaseModel):
    refund_reason: str = Field(..., min_length=1)


class RefundReview(BaseModel):
    status: Literal["approved", "canceled"]


class RefundRead(BaseModel):
    booking_id: int
    reference_number: str
    amount: Decimal
    status: str
    reason: str
    requested_at: datetime.datetime
    reviewed_at: Optional[datetime.datetime] = None
    completed_at: Optional[datetime.datetime] = None


# --- Checkout holds ---

class CheckoutCreate(BaseModel):
    package_id: int
    room_type_id: int
    start_date: datetime.date
    end_date: datetime.date
    quantity: int = Field(1, ge=1, le=10)
    guests: GuestCounts


class CheckoutPricing(BaseModel):
    base_price: Decimal
    nights: int
    quantity: int
    subtotal: Decimal
    taxes: Decimal
    total: Decimal
    currency: str


class CheckoutRead(BaseModel):
    checkout_id: int
    status: str
    package_id: int
    room_type_id: int
    start_date: datetime.date
    end_date: datetime.date
    nights: int
    quantity: int
    guests: GuestCounts
    pricing: Optional[CheckoutPricing] = None
    expires_at: datetime.datetime


# --- Vendor wallet ---

class WalletRead(BaseModel):
    user_id: int
    balance: Decimal
    total_earnings: Decimal
    total_withdrawals: Decimal
    total_refunds: Decimal
    currency: str

    class Config:
        from_attributes = True


class WithdrawRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    # Client-chosen; a retry with the same key never pays out twice
    idempotency_key: str = Field(..., min_length=1, max_length=64)

    @model_validator(mode="after")
    def two_decimal_places(self):
        if self.amount != self.amount.quantize(Decimal("0.01")):
            raise ValueError("amount must have at most two decimal places")
        return self


# --- Gateway webhooks ---

class WebhookAck(BaseModel):
    event_type: str
    outcome: str
