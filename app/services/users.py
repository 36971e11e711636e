"""
User Service - Read user profiles and persist payment customer references.
"""

from pathlib import Path

from pydantic import TypeAdapter
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import User, utc_now
from app.exceptions import UserNotFoundError, WriteVerificationError
from app.models.api import UserSeed
from app.models.domain import UserProfile

logger = get_logger(__name__)

DEFAULT_USERS_SEED_PATH = Path(__file__).parent.parent / "data" / "users.json"

_seed_adapter = TypeAdapter(list[UserSeed])


class UserService:
    """User record store."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize user service with database session."""
        self.session = session

    async def get_user(self, user_id: str) -> UserProfile:
        """
        Get a fresh user profile.

        Raises:
            UserNotFoundError: Unknown user id
        """
        user = await self._find_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return self._user_to_domain(user)

    async def set_customer_ref_if_absent(self, user_id: str, customer_ref: str) -> str:
        """
        Compare-and-swap the payment customer reference from NULL to customer_ref.

        Commits. If another writer set the reference first, theirs is kept.

        Returns:
            The reference stored on the user after the swap

        Raises:
            UserNotFoundError: Unknown user id
            WriteVerificationError: No reference stored after the swap
        """
        stmt = (
            update(User)
            .where(User.id == user_id, User.payment_customer_ref.is_(None))
            .values(payment_customer_ref=customer_ref, updated_at=utc_now())
        )
        result = await self.session.execute(stmt)
        await self.session.commit()

        swapped = result.rowcount == 1

        user = await self._find_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        if user.payment_customer_ref is None:
            raise WriteVerificationError(f"User {user_id} has no customer reference after update")

        if swapped:
            logger.info("payment_customer_ref_saved", user_id=user_id, customer_ref=customer_ref)
        else:
            logger.warning(
                "payment_customer_ref_already_set",
                user_id=user_id,
                kept=user.payment_customer_ref,
                discarded=customer_ref,
            )
        return user.payment_customer_ref

    async def seed_users(self, seeds: list[UserSeed]) -> int:
        """
        Insert users that do not exist yet. Existing rows are left untouched.

        Returns:
            Number of users inserted
        """
        inserted = 0
        for seed in seeds:
            if await self._find_user(seed.id) is not None:
                continue
            self.session.add(User(id=seed.id, name=seed.name, email=seed.email))
            try:
                await self.session.commit()
            except IntegrityError:
                # Seeded concurrently by another instance
                await self.session.rollback()
                continue
            inserted += 1

        logger.info("users_seeded", inserted=inserted, total=len(seeds))
        return inserted

    async def seed_from_file(self, path: Path | None = None) -> int:
        """Seed users from a JSON file (defaults to the packaged app/data/users.json)."""
        seed_path = path or DEFAULT_USERS_SEED_PATH
        seeds = _seed_adapter.validate_json(seed_path.read_bytes())
        return await self.seed_users(seeds)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_user(self, user_id: str) -> User | None:
        """Find user by id, refreshing any copy already in the session."""
        stmt = (
            select(User)
            .where(User.id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _user_to_domain(self, user: User) -> UserProfile:
        """Convert ORM user to domain model."""
        return UserProfile(
            user_id=user.id,
            name=user.name,
            email=user.email,
            payment_customer_ref=user.payment_customer_ref,
        )
