from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from typing import Annotated, Optional

from .. import payments, schemas, webhooks
from ..auth import get_current_user_id_from_token
from ..database import get_db
from ..gateway import PaymentGateway, get_gateway
from ..limits import payment_limiter

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/create-intent", response_model=schemas.Envelope[schemas.PaymentIntentRead],
             status_code=status.HTTP_201_CREATED)
def create_payment_intent(
        request: schemas.PaymentIntentCreate,
        user_id: Annotated[int, Depends(get_current_user_id_from_token)],
        db: Session = Depends(get_db),
        gateway: PaymentGateway = Depends(get_gateway),
        limit: None = Depends(payment_limiter)
):
    """
    Create the payment intent for one of the user's bookings.
    Returns the client secret the frontend needs to collect card details.
    """
    intent = payments.create_payment_intent(
        db, gateway, user_id=user_id, booking_id=request.booking_id, payment_method_id=request.payment_method_id
    )
    return schemas.Envelope(message="Payment intent created successfully", data=intent)


@router.post("/confirm/{intent_id}", response_model=schemas.Envelope[schemas.PaymentConfirmationRead])
def confirm_payment(
        intent_id: str,
        request: schemas.PaymentConfirm,
        user_id: Annotated[int, Depends(get_current_user_id_from_token)],
        db: Session = Depends(get_db),
        gateway: PaymentGateway = Depends(get_gateway),
        limit: None = Depends(payment_limiter)
):
    confirmation = payments.confirm_payment(
        db, gateway, user_id=user_id, intent_id=intent_id, payment_method_id=request.payment_method_id
    )
    message = "Payment already processed" if confirmation.already_processed else "Payment confirmed successfully"
    return schemas.Envelope(message=message, data=confirmation)


@router.post("/webhook", response_model=schemas.Envelope[schemas.WebhookAck])
async def stripe_webhook(
        request: Request,
        stripe_signature: Annotated[Optional[str], Header()] = None,
        db: Session = Depends(get_db),
        gateway: PaymentGateway = Depends(get_gateway)
):
    """
    Receives Stripe events. The signature is checked against the raw body
    before anything is read from it.
    """
    payload = await request.body()
    event = gateway.construct_event(payload, stripe_signature)
    outcome = await run_in_threadpool(webhooks.handle_event, db, event)
    return schemas.Envelope(
        message="Webhook received",
        data=schemas.WebhookAck(event_type=event.type, outcome=outcome),
    )
