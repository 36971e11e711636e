"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class User(Base):
    """
    ORM model for users table.

    payment_customer_ref is written at most once (compare-and-swap from NULL).
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    payment_customer_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("payment_customer_ref", name="uq_users_payment_customer_ref"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id}, payment_customer_ref={self.payment_customer_ref})>"


class FulfillmentRecord(Base):
    """
    ORM model for fulfillment_records table.

    Idempotency ledger: one row per fulfilled checkout session. Append-only.
    The primary key on session_id is the cross-instance insert-unique guard.
    """

    __tablename__ = "fulfillment_records"

    session_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    # Audit fields (what the grant was)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    product_id: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_fulfillment_quantity_positive"),
        Index("idx_fulfillment_records_user_id", "user_id"),
        Index("idx_fulfillment_records_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<FulfillmentRecord(session_id={self.session_id}, user_id={self.user_id}, "
            f"product_id={self.product_id}, quantity={self.quantity})>"
        )


class Ownership(Base):
    """
    ORM model for ownerships table.

    Quantity of a product held by a user. Only incremented.
    """

    __tablename__ = "ownerships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    product_id: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_ownership_quantity_non_negative"),
        UniqueConstraint("user_id", "product_id", name="uq_ownership_user_product"),
        Index("idx_ownerships_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Ownership(user_id={self.user_id}, product_id={self.product_id}, "
            f"quantity={self.quantity})>"
        )
