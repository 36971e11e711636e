"""
Idempotency Ledger - Which checkout sessions have already been fulfilled.

Backed by the fulfillment_records table. Membership is keyed on session_id;
the primary key makes record() an insert-if-absent across every service
instance sharing the database.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import FulfillmentRecord

logger = get_logger(__name__)


class IdempotencyLedger:
    """Append-only set of fulfilled checkout session ids."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize ledger with database session."""
        self.session = session

    async def is_handled(self, session_id: str) -> bool:
        """Check whether session_id has already produced an ownership grant."""
        return await self.get(session_id) is not None

    async def record(
        self, session_id: str, user_id: str, product_id: str, quantity: int
    ) -> bool:
        """
        Insert session_id into the ledger inside the current transaction.

        Must be the first write of the transaction: on a unique violation the
        whole transaction is rolled back.

        Returns:
            True if inserted, False if another writer already recorded it
        """
        self.session.add(
            FulfillmentRecord(
                session_id=session_id,
                user_id=user_id,
                product_id=product_id,
                quantity=quantity,
            )
        )
        try:
            await self.session.flush()
        except IntegrityError as exc:
            # Another instance committed the same session id first
            logger.warning(
                "ledger_insert_conflict",
                session_id=session_id,
                error=str(exc),
            )
            await self.session.rollback()
            return False
        return True

    async def get(self, session_id: str) -> FulfillmentRecord | None:
        """Fetch the ledger entry for session_id, if any."""
        stmt = select(FulfillmentRecord).where(FulfillmentRecord.session_id == session_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
