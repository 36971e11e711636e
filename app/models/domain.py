"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

MINOR_UNITS_PER_MAJOR = 100


def to_minor_units(amount: Decimal) -> int:
    """Convert a whole-currency amount (9.99) to provider minor units (999)."""
    minor = (amount * MINOR_UNITS_PER_MAJOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(minor)


class PaymentStatus(str, Enum):
    """Checkout session payment status as reported by the provider."""

    UNPAID = "unpaid"
    PAID = "paid"
    NO_PAYMENT_REQUIRED = "no_payment_required"


class VerdictStatus(str, Enum):
    """Outcome of a fulfillment attempt."""

    FULFILLED = "fulfilled"
    REJECTED = "rejected"
    ALREADY_HANDLED = "already_handled"


class RejectionReason(str, Enum):
    """Why a fulfillment attempt was rejected."""

    LOOKUP_FAILED = "lookup_failed"
    UNPAID = "unpaid"
    MISSING_METADATA = "missing_metadata"
    MISSING_LINE_ITEMS = "missing_line_items"


@dataclass(frozen=True)
class Product:
    """Immutable catalog product."""

    id: str
    name: str
    description: str
    price: Decimal

    def __post_init__(self) -> None:
        """Validate product constraints."""
        if not self.id:
            raise ValueError("Product id cannot be empty")
        if self.price < 0:
            raise ValueError(f"Product price cannot be negative: {self.price}")

    @property
    def price_minor(self) -> int:
        """Price in provider minor units."""
        return to_minor_units(self.price)


@dataclass(frozen=True)
class UserProfile:
    """Immutable snapshot of a user record."""

    user_id: str
    name: str
    email: str
    payment_customer_ref: str | None


@dataclass(frozen=True)
class OwnedProduct:
    """Quantity of a product held by a user."""

    product_id: str
    quantity: int


@dataclass(frozen=True)
class CheckoutSessionData:
    """
    Provider-agnostic view of a checkout session.

    Metadata fields and the line item quantity are optional because the
    provider record may legitimately lack them; the fulfillment engine decides
    what that means.
    """

    session_id: str
    payment_status: PaymentStatus
    product_id: str | None
    user_id: str | None
    line_item_quantity: int | None


@dataclass(frozen=True)
class Verdict:
    """Result of FulfillmentService.fulfill."""

    status: VerdictStatus
    reason: RejectionReason | None = None

    def __post_init__(self) -> None:
        """Only rejections carry a reason."""
        if (self.status == VerdictStatus.REJECTED) != (self.reason is not None):
            raise ValueError(f"Invalid verdict: status={self.status}, reason={self.reason}")

    @classmethod
    def fulfilled(cls) -> "Verdict":
        return cls(VerdictStatus.FULFILLED)

    @classmethod
    def already_handled(cls) -> "Verdict":
        return cls(VerdictStatus.ALREADY_HANDLED)

    @classmethod
    def rejected(cls, reason: RejectionReason) -> "Verdict":
        return cls(VerdictStatus.REJECTED, reason)

    @property
    def succeeded(self) -> bool:
        """FULFILLED and ALREADY_HANDLED are both success for callers."""
        return self.status != VerdictStatus.REJECTED
