"""
Product Catalog - Static, read-only product lookup.

Products are loaded once from a JSON file (the packaged app/data/products.json
unless CATALOG_PATH points elsewhere).
"""

from functools import lru_cache
from pathlib import Path

from pydantic import TypeAdapter
from structlog import get_logger

from app.config import settings
from app.exceptions import ProductNotFoundError
from app.models.api import ProductResponse
from app.models.domain import Product

logger = get_logger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).parent.parent / "data" / "products.json"

_products_adapter = TypeAdapter(list[ProductResponse])


class ProductCatalog:
    """Immutable in-memory catalog keyed by product id."""

    def __init__(self, products: list[Product]) -> None:
        self._products: dict[str, Product] = {}
        for product in products:
            if product.id in self._products:
                raise ValueError(f"Duplicate product id in catalog: {product.id}")
            self._products[product.id] = product

    @classmethod
    def from_json(cls, path: Path) -> "ProductCatalog":
        """Load and validate a catalog file."""
        records = _products_adapter.validate_json(path.read_bytes())
        catalog = cls([record.to_domain() for record in records])
        logger.info("product_catalog_loaded", path=str(path), product_count=len(catalog))
        return catalog

    def find(self, product_id: str) -> Product | None:
        """Product by id, or None."""
        return self._products.get(product_id)

    def get(self, product_id: str) -> Product:
        """
        Product by id.

        Raises:
            ProductNotFoundError: Unknown product id
        """
        product = self.find(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        return product

    def all(self) -> list[Product]:
        """Every product, in file order."""
        return list(self._products.values())

    def __len__(self) -> int:
        return len(self._products)


@lru_cache(maxsize=1)
def get_catalog() -> ProductCatalog:
    """Process-wide catalog instance (FastAPI dependency)."""
    path = Path(settings.catalog_path) if settings.catalog_path else DEFAULT_CATALOG_PATH
    return ProductCatalog.from_json(path)
