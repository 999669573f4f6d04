"""Read-mostly mirror of the product catalog."""

import logging
from typing import Optional

from pydantic import ValidationError

from .mirror import SnapshotMirror
from .models import Document, Product

logger = logging.getLogger(__name__)


class CatalogCache(SnapshotMirror):
    """Products as of the last catalog snapshot, in store order."""

    label = "products"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._products: list[Product] = []
        self._by_id: dict[str, Product] = {}

    def apply(self, docs: list[Document]) -> None:
        products = []
        for doc in docs:
            try:
                products.append(Product.from_document(doc))
            except ValidationError as e:
                logger.warning(f"Skipping malformed product {doc.id}: {e.error_count()} error(s)")
        self._products = products
        self._by_id = {product.id: product for product in products}
        logger.debug(f"Catalog snapshot: {len(products)} product(s)")

    def list(self) -> list[Product]:
        return list(self._products)

    def find_by_id(self, product_id: str) -> Optional[Product]:
        return self._by_id.get(product_id)

    def __len__(self) -> int:
        return len(self._products)
