"""
Ownership Store - Durable (user, product) -> quantity mapping.

Writes happen only through FulfillmentService's commit path.
"""

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Ownership, utc_now
from app.exceptions import WriteVerificationError
from app.models.domain import OwnedProduct


class OwnershipStore:
    """Read and increment product ownership."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize store with database session."""
        self.session = session

    async def increment(self, user_id: str, product_id: str, quantity: int) -> int:
        """
        Add quantity to the (user, product) row, creating it if needed.

        Uses INSERT ... ON CONFLICT DO UPDATE so concurrent grants for the same
        pair from different checkout sessions both land. Does not commit.

        Returns:
            Quantity after the increment

        Raises:
            ValueError: quantity is not positive
            WriteVerificationError: the row cannot be read back
        """
        if quantity <= 0:
            raise ValueError(f"Ownership increment must be positive: {quantity}")

        dialect = self.session.bind.dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert

        now = utc_now()
        stmt = insert(Ownership).values(
            user_id=user_id,
            product_id=product_id,
            quantity=quantity,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Ownership.user_id, Ownership.product_id],
            set_={
                "quantity": Ownership.quantity + stmt.excluded.quantity,
                "updated_at": now,
            },
        )
        await self.session.execute(stmt)

        current = await self.get_quantity(user_id, product_id)
        if current < quantity:
            raise WriteVerificationError(
                f"Ownership for {user_id}/{product_id} is {current} after adding {quantity}"
            )
        return current

    async def get_quantity(self, user_id: str, product_id: str) -> int:
        """Quantity of product_id held by user_id (0 if none)."""
        stmt = select(Ownership.quantity).where(
            Ownership.user_id == user_id,
            Ownership.product_id == product_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() or 0

    async def list_for_user(self, user_id: str) -> list[OwnedProduct]:
        """All products held by user_id, ordered by product id."""
        stmt = (
            select(Ownership)
            .where(Ownership.user_id == user_id, Ownership.quantity > 0)
            .order_by(Ownership.product_id)
        )
        result = await self.session.execute(stmt)
        return [
            OwnedProduct(product_id=row.product_id, quantity=row.quantity)
            for row in result.scalars().all()
        ]
