"""
Payment Provider Protocol - Provider-agnostic interface.

NO DICTIONARIES - All data uses strongly typed models.
"""

from dataclasses import dataclass
from typing import Protocol

from app.models.domain import CheckoutSessionData

# Event types that mean "the checkout session has been paid for"
FULFILLMENT_EVENT_TYPES: frozenset[str] = frozenset(
    {
        "checkout.session.completed",
        "checkout.session.async_payment_succeeded",
    }
)


@dataclass(frozen=True)
class CustomerRequest:
    """Request to create a provider-side customer for an internal user."""

    user_id: str
    name: str
    email: str


@dataclass(frozen=True)
class CheckoutRequest:
    """
    Provider-agnostic single-item checkout session request.

    Quantity is fixed at 1; the product and user ids travel as session
    metadata so fulfillment can recover them without a separate lookup.
    """

    customer_ref: str
    product_id: str
    user_id: str
    product_name: str
    product_description: str
    unit_amount_minor: int
    currency: str
    success_url: str
    cancel_url: str
    quantity: int = 1

    def __post_init__(self) -> None:
        """Validate checkout constraints."""
        if self.unit_amount_minor < 0:
            raise ValueError(f"Unit amount cannot be negative: {self.unit_amount_minor}")
        if self.quantity != 1:
            raise ValueError(f"Checkout quantity is fixed at 1, got {self.quantity}")


@dataclass(frozen=True)
class CheckoutResult:
    """Provider-agnostic checkout session result."""

    session_id: str
    url: str | None


@dataclass(frozen=True)
class WebhookEvent:
    """
    Provider-agnostic webhook event.

    object_id is the id of the object the event is about (the checkout
    session for checkout.session.* events).
    """

    event_id: str
    event_type: str
    object_id: str | None


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    Any payment provider must implement this interface.
    """

    async def create_customer(self, request: CustomerRequest) -> str:
        """
        Create a customer record with the provider.

        Returns:
            Provider customer reference

        Raises:
            PaymentProviderError: If customer creation fails
        """
        ...

    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutResult:
        """
        Create a hosted checkout session.

        Raises:
            PaymentProviderError: If session creation fails
        """
        ...

    async def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionData:
        """
        Fetch a checkout session by id, including its line items.

        Raises:
            PaymentProviderError: If the session is unknown or the call fails
        """
        ...

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and parse webhook event from provider.

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        ...
