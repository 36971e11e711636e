"""
Stripe Payment Provider Implementation.

NO DICTIONARIES - All data uses strongly typed models.
"""

from typing import Any

import stripe
from structlog import get_logger

from app.exceptions import PaymentProviderError, WebhookVerificationError
from app.models.domain import CheckoutSessionData, PaymentStatus
from app.observability.metrics import metrics
from app.services.payment_provider import (
    CheckoutRequest,
    CheckoutResult,
    CustomerRequest,
    WebhookEvent,
)

logger = get_logger(__name__)


def _field(obj: Any, name: str) -> Any:
    """Read a key from a Stripe object (or None), None when absent."""
    if obj is None:
        return None
    return getattr(obj, name, None)


def _first_line_item_quantity(session: Any) -> int | None:
    """Quantity of the first expanded line item, or None if there is none."""
    data = _field(_field(session, "line_items"), "data")
    if not data:
        return None
    quantity = _field(data[0], "quantity")
    return int(quantity) if quantity is not None else None


def session_to_domain(session: Any) -> CheckoutSessionData:
    """
    Convert a Stripe checkout session object to the domain model.

    Stripe objects expose keys as attributes; they are not dicts.

    Raises:
        PaymentProviderError: If the payment status is not one we understand
    """
    raw_status = _field(session, "payment_status")
    try:
        payment_status = PaymentStatus(raw_status)
    except ValueError as exc:
        raise PaymentProviderError(f"Unknown payment status: {raw_status}") from exc

    metadata = _field(session, "metadata")
    return CheckoutSessionData(
        session_id=session.id,
        payment_status=payment_status,
        product_id=_field(metadata, "productId") or None,
        user_id=_field(metadata, "userId") or None,
        line_item_quantity=_first_line_item_quantity(session),
    )


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the PaymentProvider protocol for Stripe Checkout.
    """

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret (may be empty; then
                every webhook is rejected)
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        stripe.api_key = api_key

    async def create_customer(self, request: CustomerRequest) -> str:
        """
        Create a Stripe Customer tagged with the internal user id.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        with metrics.time_provider_call("create_customer"):
            try:
                logger.info("creating_stripe_customer", user_id=request.user_id)

                customer = await stripe.Customer.create_async(
                    name=request.name,
                    email=request.email,
                    metadata={"userId": request.user_id},
                )

                logger.info(
                    "stripe_customer_created",
                    user_id=request.user_id,
                    customer_id=customer.id,
                )
                customer_id: str = customer.id
                return customer_id

            except stripe.StripeError as exc:
                logger.error(
                    "stripe_customer_create_failed",
                    user_id=request.user_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise PaymentProviderError(f"Stripe customer creation failed: {exc}") from exc

    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutResult:
        """
        Create a Stripe Checkout Session in payment mode.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        with metrics.time_provider_call("create_checkout_session"):
            try:
                logger.info(
                    "creating_stripe_checkout_session",
                    product_id=request.product_id,
                    user_id=request.user_id,
                    unit_amount_minor=request.unit_amount_minor,
                    currency=request.currency,
                )

                session = await stripe.checkout.Session.create_async(
                    mode="payment",
                    customer=request.customer_ref,
                    line_items=[
                        {
                            "price_data": {
                                "currency": request.currency.lower(),
                                "unit_amount": request.unit_amount_minor,
                                "product_data": {
                                    "name": request.product_name,
                                    "description": request.product_description,
                                },
                            },
                            "quantity": request.quantity,
                        }
                    ],
                    metadata={
                        "productId": request.product_id,
                        "userId": request.user_id,
                    },
                    success_url=request.success_url,
                    cancel_url=request.cancel_url,
                )

                logger.info(
                    "stripe_checkout_session_created",
                    session_id=session.id,
                    has_url=bool(session.url),
                )

                return CheckoutResult(session_id=session.id, url=session.url)

            except stripe.StripeError as exc:
                logger.error(
                    "stripe_checkout_session_failed",
                    product_id=request.product_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise PaymentProviderError(f"Stripe checkout session failed: {exc}") from exc

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionData:
        """
        Retrieve a Stripe Checkout Session with its line items expanded.

        Raises:
            PaymentProviderError: If the session is unknown or the call fails
        """
        with metrics.time_provider_call("retrieve_checkout_session"):
            try:
                logger.info("retrieving_stripe_checkout_session", session_id=session_id)

                session = await stripe.checkout.Session.retrieve_async(
                    session_id, expand=["line_items"]
                )

                result = session_to_domain(session)
                logger.info(
                    "stripe_checkout_session_retrieved",
                    session_id=session_id,
                    payment_status=result.payment_status.value,
                )
                return result

            except stripe.StripeError as exc:
                logger.error(
                    "stripe_checkout_session_retrieve_failed",
                    session_id=session_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise PaymentProviderError(f"Failed to retrieve checkout session: {exc}") from exc

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and parse Stripe webhook event.

        Args:
            payload: Raw webhook payload
            signature: Stripe-Signature header value

        Raises:
            WebhookVerificationError: If the secret is missing or the signature is invalid
        """
        if not self.webhook_secret:
            logger.error("stripe_webhook_secret_missing")
            raise WebhookVerificationError("Webhook signing secret is not configured")

        if not signature:
            raise WebhookVerificationError("Missing Stripe-Signature header")

        try:
            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            logger.error("stripe_webhook_verification_failed", error=str(exc))
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc
        except ValueError as exc:
            logger.error("stripe_webhook_parsing_failed", error=str(exc))
            raise WebhookVerificationError(f"Failed to parse Stripe webhook: {exc}") from exc

        logger.info(
            "stripe_webhook_verified",
            event_id=event.id,
            event_type=event.type,
        )

        data_object = _field(event.data, "object")
        return WebhookEvent(
            event_id=event.id,
            event_type=event.type,
            object_id=_field(data_object, "id"),
        )
