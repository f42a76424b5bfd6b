import logging
from typing import Any, Dict, List, Optional

from bazaruto.database.entities import Product, ProductStatus
from bazaruto.errors import InvalidInputError
from bazaruto.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

_STATUSES = {s.value for s in ProductStatus}
_IMMUTABLE = ("id", "created_at", "deleted_at")


def validate_product(product: Product) -> None:
    errors = []
    if not product.name:
        errors.append("name is required")
    if not product.category:
        errors.append("category is required")
    if product.base_price < 0:
        errors.append("base_price must not be negative")
    if product.coverage_amount <= 0:
        errors.append("coverage_amount must be greater than zero")
    if product.coverage_period_days <= 0:
        errors.append("coverage_period_days must be greater than zero")
    if product.status not in _STATUSES:
        errors.append(f"invalid status: {product.status}")
    if product.expiration_date is not None and product.expiration_date <= product.effective_date:
        errors.append("expiration_date must be after effective_date")
    if errors:
        raise InvalidInputError("; ".join(errors))


class ProductService:
    def __init__(self, db) -> None:
        self._products = db.products

    def create_product(self, product: Product) -> Product:
        validate_product(product)
        product = self._products.create(product)
        logger.info("Created product %s (%s)", product.id, product.category)
        return product

    def get_product(self, product_id: str) -> Product:
        return self._products.get(product_id)

    def list_products(self, filters: Optional[Dict[str, Any]] = None, limit: int = 20, offset: int = 0) -> List[Product]:
        return self._products.list(filters, limit, offset)

    def count_products(self, filters: Optional[Dict[str, Any]] = None) -> int:
        return self._products.count(filters)

    def update_product(self, product_id: str, changes: Dict[str, Any]) -> Product:
        product = self._products.get(product_id)
        data = product.to_dict()
        for key, value in changes.items():
            if key in _IMMUTABLE:
                continue
            if key not in data:
                raise InvalidInputError(f"unknown product field: {key}")
            data[key] = value
        product = Product.from_dict(data)
        validate_product(product)
        product.updated_at = utcnow()
        return self._products.update(product)

    def delete_product(self, product_id: str) -> None:
        self._products.delete(product_id)
