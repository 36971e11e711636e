"""
FastAPI Dependencies - Services wired to the request's database session.
"""

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.session import get_db
from app.services.catalog import ProductCatalog, get_catalog
from app.services.checkout import CheckoutService
from app.services.fulfillment import FulfillmentService
from app.services.ownership import OwnershipStore
from app.services.payment_provider import PaymentProvider
from app.services.stripe_provider import StripeProvider

logger = get_logger(__name__)


def get_payment_provider() -> PaymentProvider:
    """
    Stripe provider built from settings.

    Either key may be empty here: verify_webhook rejects every event without
    a webhook secret, and endpoints that call the Stripe API depend on
    require_payment_provider instead.
    """
    return StripeProvider(
        api_key=settings.stripe_api_key,
        webhook_secret=settings.stripe_webhook_secret,
    )


def require_payment_provider(
    provider: PaymentProvider = Depends(get_payment_provider),
) -> PaymentProvider:
    """The payment provider, or 503 when no Stripe API key is configured."""
    if not settings.stripe_configured:
        logger.error("payment_provider_not_configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment provider not configured",
        )
    return provider


def get_fulfillment_service(
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> FulfillmentService:
    """Fulfillment engine for this request."""
    return FulfillmentService(db, provider)


def get_checkout_service(
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(require_payment_provider),
    catalog: ProductCatalog = Depends(get_catalog),
) -> CheckoutService:
    """Checkout initiator for this request."""
    return CheckoutService(db, provider, catalog)


def get_ownership_store(db: AsyncSession = Depends(get_db)) -> OwnershipStore:
    """Read access to ownership for this request."""
    return OwnershipStore(db)
