"""
Checkout Service - Creates provider checkout sessions for a product/user pair.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.exceptions import IntegrationError
from app.models.domain import UserProfile
from app.observability.metrics import metrics
from app.services.catalog import ProductCatalog
from app.services.locks import KeyedLock, customer_locks
from app.services.payment_provider import CheckoutRequest, CustomerRequest, PaymentProvider
from app.services.users import UserService

logger = get_logger(__name__)


class CheckoutService:
    """Checkout initiation."""

    def __init__(
        self,
        session: AsyncSession,
        provider: PaymentProvider,
        catalog: ProductCatalog,
        locks: KeyedLock = customer_locks,
    ) -> None:
        """Initialize checkout service with database session, provider and catalog."""
        self.session = session
        self.provider = provider
        self.catalog = catalog
        self.locks = locks
        self.users = UserService(session)

    async def create_checkout(self, product_id: str, user_id: str) -> str:
        """
        Create a single-item checkout session and return its redirect URL.

        The user's provider customer is created on first checkout and its
        reference persisted before the session is created.

        Raises:
            ProductNotFoundError: Unknown product
            UserNotFoundError: Unknown user
            PaymentProviderError: Provider call failed
            IntegrationError: Provider returned no checkout URL
        """
        product = self.catalog.get(product_id)
        user = await self.users.get_user(user_id)

        customer_ref = await self.resolve_customer_ref(user)

        request = CheckoutRequest(
            customer_ref=customer_ref,
            product_id=product.id,
            user_id=user.user_id,
            product_name=product.name,
            product_description=product.description,
            unit_amount_minor=product.price_minor,
            currency=settings.currency,
            success_url=settings.success_url,
            cancel_url=settings.cancel_url,
        )
        result = await self.provider.create_checkout_session(request)

        if not result.url:
            metrics.record_checkout(False)
            logger.error(
                "checkout_session_missing_url",
                session_id=result.session_id,
                product_id=product.id,
            )
            raise IntegrationError(f"Checkout session {result.session_id} has no URL")

        metrics.record_checkout(True)
        logger.info(
            "checkout_session_ready",
            session_id=result.session_id,
            product_id=product.id,
            user_id=user.user_id,
        )
        return result.url

    async def resolve_customer_ref(self, user: UserProfile) -> str:
        """
        Return the user's provider customer reference, creating it once.

        Creation is serialized per user in-process and persisted by
        compare-and-swap, so a user never ends up with two references.
        """
        if user.payment_customer_ref:
            return user.payment_customer_ref

        async with self.locks.hold(user.user_id):
            current = await self.users.get_user(user.user_id)
            if current.payment_customer_ref:
                return current.payment_customer_ref

            created = await self.provider.create_customer(
                CustomerRequest(user_id=current.user_id, name=current.name, email=current.email)
            )
            metrics.customers_created_total.inc()

            stored = await self.users.set_customer_ref_if_absent(current.user_id, created)
            if stored != created:
                logger.warning(
                    "provider_customer_orphaned",
                    user_id=current.user_id,
                    orphaned_customer_ref=created,
                )
            return stored
