"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

from app.models.domain import OwnedProduct, Product

# Money is rendered as a JSON number (9.99), not a string
Money = Annotated[
    Decimal,
    Field(ge=0, max_digits=12, decimal_places=2),
    PlainSerializer(float, return_type=float, when_used="json"),
]


# ============================================================================
# Catalog Models
# ============================================================================


class ProductResponse(BaseModel):
    """Catalog product, as served by GET /products and stored in products.json."""

    id: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    price: Money

    @classmethod
    def from_domain(cls, product: Product) -> "ProductResponse":
        return cls(
            id=product.id,
            name=product.name,
            description=product.description,
            price=product.price,
        )

    def to_domain(self) -> Product:
        return Product(
            id=self.id,
            name=self.name,
            description=self.description,
            price=self.price,
        )


class OwnedProductResponse(BaseModel):
    """GET /owned-products item."""

    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId")
    quantity: int = Field(..., ge=0)

    @classmethod
    def from_domain(cls, owned: OwnedProduct) -> "OwnedProductResponse":
        return cls(product_id=owned.product_id, quantity=owned.quantity)


# ============================================================================
# User Models
# ============================================================================


class UserSeed(BaseModel):
    """User record as stored in users.json."""

    id: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)


# ============================================================================
# Webhook Models
# ============================================================================


class WebhookResponse(BaseModel):
    """POST /webhooks/provider response."""

    status: Literal["success", "ignored"]
    event_id: str
    verdict: Literal["fulfilled", "already_handled"] | None = None


# ============================================================================
# Health Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: str
