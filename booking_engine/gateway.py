"""
Payment gateway boundary.

The only module that talks to Stripe. Everything it returns is the provider's
own object; callers read ``.id``, ``.status``, ``.amount_received`` and
``.currency`` from it and treat ``status`` as the truth about money movement.
Stripe failures are translated to GatewayError so nothing provider-specific
leaks past this module.
"""
import logging
from typing import Optional

import stripe

from .config import settings
from .errors import GatewayError, ValidationError

logger = logging.getLogger("booking_engine")

# Intent states as reported by the gateway
REQUIRES_PAYMENT_METHOD = "requires_payment_method"
REQUIRES_CONFIRMATION = "requires_confirmation"
REQUIRES_CAPTURE = "requires_capture"
SUCCEEDED = "succeeded"
CANCELED = "canceled"

# States in which an existing intent can still be driven to capture
USABLE_INTENT_STATES = {REQUIRES_PAYMENT_METHOD, REQUIRES_CONFIRMATION, "requires_action", REQUIRES_CAPTURE}


class PaymentGateway:
    """Stripe-backed gateway. One instance per process; stateless."""

    provider = "stripe"

    def __init__(self, api_key: str, max_network_retries: int = 2, webhook_secret: str = ""):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        stripe.max_network_retries = max_network_retries

    def _call(self, operation: str, fn, *args, **kwargs):
        try:
            return fn(*args, api_key=self.api_key, **kwargs)
        except stripe.StripeError as e:
            logger.error(f"Stripe {operation} failed: {e.user_message or e}")
            raise GatewayError(
                f"Payment provider error during {operation}: {e.user_message or str(e)}",
                gateway_status=getattr(e, "code", None),
            ) from e

    def create_intent(
            self,
            amount: int,
            currency: str,
            application_fee_amount: int,
            destination_account: str,
            metadata: dict,
            idempotency_key: str,
            customer: Optional[str] = None,
            payment_method: Optional[str] = None,
    ):
        params = {
            "amount": amount,
            "currency": currency,
            "capture_method": "manual",
            "application_fee_amount": application_fee_amount,
            "transfer_data": {"destination": destination_account},
            "metadata": metadata,
        }
        if customer:
            params["customer"] = customer
        if payment_method:
            params["payment_method"] = payment_method
        return self._call("create_intent", stripe.PaymentIntent.create,
                          idempotency_key=idempotency_key, **params)

    def retrieve_intent(self, intent_id: str):
        return self._call("retrieve_intent", stripe.PaymentIntent.retrieve, intent_id)

    def confirm_intent(self, intent_id: str, payment_method: str):
        return self._call("confirm_intent", stripe.PaymentIntent.confirm, intent_id,
                          payment_method=payment_method)

    def capture_intent(self, intent_id: str, idempotency_key: str):
        return self._call("capture_intent", stripe.PaymentIntent.capture, intent_id,
                          idempotency_key=idempotency_key)

    def create_refund(self, intent_id: str, amount: int, idempotency_key: str, metadata: Optional[dict] = None):
        return self._call("create_refund", stripe.Refund.create,
                          payment_intent=intent_id,
                          amount=amount,
                          reverse_transfer=True,
                          metadata=metadata or {},
                          idempotency_key=idempotency_key)

    def default_payment_method(self, customer_id: Optional[str]) -> Optional[str]:
        if not customer_id:
            return None
        customer = self._call("retrieve_customer", stripe.Customer.retrieve, customer_id)
        invoice_settings = getattr(customer, "invoice_settings", None)
        payment_method = getattr(invoice_settings, "default_payment_method", None)
        if isinstance(payment_method, str) or payment_method is None:
            return payment_method
        # expanded PaymentMethod object
        return payment_method.id

    def create_payout(self, account_id: str, amount: int, currency: str, idempotency_key: str):
        return self._call("create_payout", stripe.Payout.create,
                          amount=amount,
                          currency=currency,
                          stripe_account=account_id,
                          idempotency_key=idempotency_key)

    def construct_event(self, payload: bytes, signature: Optional[str]):
        """Verifies a webhook delivery against the signing secret and parses it."""
        if not self.webhook_secret or not signature:
            raise ValidationError("Invalid Stripe signature")
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning(f"Rejected webhook delivery: {e}")
            raise ValidationError("Invalid Stripe signature") from e


_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    """FastAPI dependency; tests override it with an in-memory fake."""
    global _gateway
    if _gateway is None:
        _gateway = PaymentGateway(
            settings.STRIPE_API_KEY, settings.STRIPE_MAX_NETWORK_RETRIES, settings.STRIPE_WEBHOOK_SECRET
        )
    return _gateway
