"""
Fulfillment Service - Turns a paid checkout session into an ownership grant, once.

Both ingress paths (provider webhook push, browser redirect pull) call
FulfillmentService.fulfill with a checkout session id. The steps are:

1. Resolve the session through the payment provider (bounded by a timeout)
2. Reject unpaid sessions
3. Reject sessions without productId/userId metadata
4. Reject sessions without a line item quantity
5. Under the per-session lock, return ALREADY_HANDLED if the ledger has the id
6. Insert the ledger row and increment ownership in one transaction
7. Return FULFILLED

A unique violation on the ledger insert (another instance won) also yields
ALREADY_HANDLED, so delivery is at-least-once while the effect is at-most-once.
"""

import asyncio
import time

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.exceptions import InvalidRequestError, PaymentProviderError
from app.models.domain import (
    CheckoutSessionData,
    PaymentStatus,
    RejectionReason,
    Verdict,
)
from app.observability.logging import log_context
from app.observability.metrics import metrics
from app.observability.tracing import record_verdict, trace_operation
from app.services.ledger import IdempotencyLedger
from app.services.locks import KeyedLock, fulfillment_locks
from app.services.ownership import OwnershipStore
from app.services.payment_provider import PaymentProvider

logger = get_logger(__name__)

MAX_SESSION_ID_LENGTH = 255


def normalize_session_id(raw: str | None) -> str:
    """
    Validate a session id received from the outside world.

    Raises:
        InvalidRequestError: Missing, blank, too long or containing whitespace
    """
    if raw is None:
        raise InvalidRequestError("sessionId is required")
    session_id = raw.strip()
    if not session_id:
        raise InvalidRequestError("sessionId must not be empty")
    if len(session_id) > MAX_SESSION_ID_LENGTH:
        raise InvalidRequestError("sessionId is too long")
    if any(ch.isspace() for ch in session_id):
        raise InvalidRequestError("sessionId must not contain whitespace")
    return session_id


class FulfillmentService:
    """
    Exactly-once fulfillment of checkout sessions.

    The only writer of the idempotency ledger and the ownership store.
    """

    def __init__(
        self,
        session: AsyncSession,
        provider: PaymentProvider,
        locks: KeyedLock = fulfillment_locks,
        lookup_timeout: float | None = None,
    ) -> None:
        """
        Args:
            session: Database session (one per request)
            provider: Payment provider used to resolve session ids
            locks: Per-session-id lock registry
            lookup_timeout: Provider lookup bound in seconds
        """
        self.session = session
        self.provider = provider
        self.locks = locks
        self.lookup_timeout = (
            lookup_timeout if lookup_timeout is not None else settings.provider_timeout_seconds
        )

    async def fulfill(self, session_id: str) -> Verdict:
        """
        Fulfill a checkout session.

        Returns:
            FULFILLED on first successful grant, ALREADY_HANDLED on repeats,
            REJECTED(reason) when the session cannot be fulfilled (yet)
        """
        start = time.perf_counter()
        with log_context(session_id=session_id):
            with trace_operation("fulfill_checkout_session", session_id=session_id) as span:
                verdict = await self._fulfill(session_id)
                record_verdict(span, verdict)

            metrics.record_verdict(
                verdict.status.value,
                verdict.reason.value if verdict.reason else None,
                time.perf_counter() - start,
            )
            logger.info(
                "fulfillment_verdict",
                verdict=verdict.status.value,
                reason=verdict.reason.value if verdict.reason else None,
            )
        return verdict

    async def _fulfill(self, session_id: str) -> Verdict:
        checkout = await self._lookup(session_id)
        if checkout is None:
            return Verdict.rejected(RejectionReason.LOOKUP_FAILED)

        # paid and no_payment_required both grant ownership
        if checkout.payment_status == PaymentStatus.UNPAID:
            return Verdict.rejected(RejectionReason.UNPAID)

        product_id = checkout.product_id
        user_id = checkout.user_id
        if not product_id or not user_id:
            return Verdict.rejected(RejectionReason.MISSING_METADATA)

        quantity = checkout.line_item_quantity
        if quantity is None or quantity <= 0:
            return Verdict.rejected(RejectionReason.MISSING_LINE_ITEMS)

        if self.locks.is_held(session_id):
            logger.info("fulfillment_waiting_for_session_lock")
        async with self.locks.hold(session_id):
            return await self._commit(
                session_id,
                user_id=user_id,
                product_id=product_id,
                quantity=quantity,
            )

    async def _lookup(self, session_id: str) -> CheckoutSessionData | None:
        """Resolve the session id; None on provider error or timeout."""
        try:
            return await asyncio.wait_for(
                self.provider.retrieve_checkout_session(session_id),
                timeout=self.lookup_timeout,
            )
        except TimeoutError:
            logger.warning(
                "fulfillment_lookup_timeout",
                session_id=session_id,
                timeout_seconds=self.lookup_timeout,
            )
            metrics.record_error("TimeoutError", "retrieve_checkout_session")
            return None
        except PaymentProviderError as exc:
            logger.warning("fulfillment_lookup_failed", session_id=session_id, error=str(exc))
            metrics.record_error(type(exc).__name__, "retrieve_checkout_session")
            return None

    async def _commit(
        self, session_id: str, user_id: str, product_id: str, quantity: int
    ) -> Verdict:
        """Check the ledger, then record and grant atomically. Caller holds the session lock."""
        ledger = IdempotencyLedger(self.session)
        if await ledger.is_handled(session_id):
            await self.session.rollback()
            return Verdict.already_handled()

        if not await ledger.record(
            session_id,
            user_id=user_id,
            product_id=product_id,
            quantity=quantity,
        ):
            return Verdict.already_handled()

        try:
            quantity_after = await OwnershipStore(self.session).increment(
                user_id,
                product_id,
                quantity,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        metrics.units_granted_total.inc(quantity)
        logger.info(
            "fulfillment_committed",
            session_id=session_id,
            user_id=user_id,
            product_id=product_id,
            quantity_added=quantity,
            quantity_after=quantity_after,
        )
        return Verdict.fulfilled()
