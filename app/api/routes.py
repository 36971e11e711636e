"""
API Routes - Catalog, checkout and the two fulfillment ingress adapters.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.api.dependencies import (
    get_checkout_service,
    get_fulfillment_service,
    get_ownership_store,
    get_payment_provider,
    require_payment_provider,
)
from app.config import settings
from app.db.session import get_db
from app.exceptions import (
    IntegrationError,
    InvalidRequestError,
    PaymentProviderError,
    ProductNotFoundError,
    UserNotFoundError,
    WebhookVerificationError,
)
from app.models.api import (
    HealthResponse,
    OwnedProductResponse,
    ProductResponse,
    WebhookResponse,
)
from app.observability.metrics import metrics
from app.services.catalog import ProductCatalog, get_catalog
from app.services.checkout import CheckoutService
from app.services.fulfillment import FulfillmentService, normalize_session_id
from app.services.ownership import OwnershipStore
from app.services.payment_provider import FULFILLMENT_EVENT_TYPES, PaymentProvider

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Catalog & Ownership
# =============================================================================


@router.get("/products", response_model=list[ProductResponse])
async def list_products(
    catalog: ProductCatalog = Depends(get_catalog),
) -> list[ProductResponse]:
    """Full product catalog."""
    return [ProductResponse.from_domain(product) for product in catalog.all()]


@router.get("/owned-products", response_model=list[OwnedProductResponse])
async def list_owned_products(
    user_id: str = Query(..., alias="userId", min_length=1, max_length=255),
    store: OwnershipStore = Depends(get_ownership_store),
) -> list[OwnedProductResponse]:
    """Products owned by a user, with quantities."""
    owned = await store.list_for_user(user_id)
    return [OwnedProductResponse.from_domain(item) for item in owned]


# =============================================================================
# Checkout
# =============================================================================


@router.post("/products/{product_id}/create-checkout-session")
async def create_checkout_session(
    product_id: str,
    user_id: str = Query(..., alias="userId", min_length=1, max_length=255),
    service: CheckoutService = Depends(get_checkout_service),
) -> RedirectResponse:
    """
    Create a provider checkout session and redirect the browser to it.

    404 for unknown product or user; provider contract violations are 5xx.
    """
    try:
        url = await service.create_checkout(product_id, user_id)

    except ProductNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Product not found",
        ) from exc

    except UserNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        ) from exc

    except PaymentProviderError as exc:
        logger.error("checkout_provider_error", product_id=product_id, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment provider error",
        ) from exc

    except IntegrationError as exc:
        metrics.record_error(type(exc).__name__, "create_checkout_session")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Payment provider returned no checkout URL",
        ) from exc

    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


# =============================================================================
# Fulfillment Ingress - Push (provider webhook)
# =============================================================================


@router.post("/webhooks/provider", response_model=WebhookResponse)
async def provider_webhook(
    request: Request,
    provider: PaymentProvider = Depends(get_payment_provider),
    service: FulfillmentService = Depends(get_fulfillment_service),
) -> WebhookResponse:
    """
    Handle payment provider webhook events.

    Completed checkout sessions are fulfilled; other event types are
    acknowledged and ignored. Any non-2xx makes the provider redeliver.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    try:
        event = await provider.verify_webhook(payload, signature)
    except WebhookVerificationError as exc:
        metrics.record_webhook_event("unknown", "unauthenticated")
        logger.warning("webhook_rejected_unauthenticated", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature",
        ) from exc

    logger.info(
        "webhook_received",
        event_id=event.event_id,
        event_type=event.event_type,
        object_id=event.object_id,
    )

    if event.event_type not in FULFILLMENT_EVENT_TYPES:
        metrics.record_webhook_event(event.event_type, "ignored")
        return WebhookResponse(status="ignored", event_id=event.event_id)

    try:
        session_id = normalize_session_id(event.object_id)
    except InvalidRequestError as exc:
        metrics.record_webhook_event(event.event_type, "invalid")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook event carries no checkout session id",
        ) from exc

    try:
        verdict = await service.fulfill(session_id)
    except Exception as exc:
        metrics.record_webhook_event(event.event_type, "error")
        metrics.record_error(type(exc).__name__, "webhook_fulfillment")
        logger.error(
            "webhook_fulfillment_failed",
            event_id=event.event_id,
            session_id=session_id,
            error=str(exc),
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from exc

    if not verdict.succeeded:
        metrics.record_webhook_event(event.event_type, "rejected")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Fulfillment rejected: {verdict.reason.value if verdict.reason else 'unknown'}",
        )

    metrics.record_webhook_event(event.event_type, verdict.status.value)
    return WebhookResponse(
        status="success",
        event_id=event.event_id,
        verdict=verdict.status.value,
    )


# =============================================================================
# Fulfillment Ingress - Pull (browser redirect after checkout)
# =============================================================================


@router.get("/purchase/success", dependencies=[Depends(require_payment_provider)])
async def purchase_success(
    session_id: str | None = Query(None, alias="sessionId"),
    service: FulfillmentService = Depends(get_fulfillment_service),
) -> RedirectResponse:
    """
    Confirm a purchase when the provider redirects the browser back.

    Fulfills the session (or finds it already fulfilled) and redirects to the
    purchase-complete page.
    """
    try:
        normalized = normalize_session_id(session_id)
    except InvalidRequestError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.message,
        ) from exc

    verdict = await service.fulfill(normalized)
    if not verdict.succeeded:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Purchase could not be confirmed: {verdict.reason.value if verdict.reason else 'unknown'}",
        )

    return RedirectResponse(settings.purchase_complete_url, status_code=status.HTTP_302_FOUND)


# =============================================================================
# Health
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )

    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
