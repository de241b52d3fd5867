from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from src.errors import NotFoundError
from src.models import Product, ProductVariant


class CatalogService:
    """Product price lookups used by pre-booking and settlement."""

    def __init__(self, db_session: Session) -> None:
        self.db = db_session

    def get_product(self, product_id: int) -> Product:
        product = self.db.query(Product).filter_by(productID=product_id).first()
        if not product:
            raise NotFoundError("Product", product_id)
        return product

    def get_cheapest_variant_price(self, product_id: int) -> Optional[Decimal]:
        """Lowest variant price for the product, or None when it has no variants."""
        self.get_product(product_id)
        price = (
            self.db.query(ProductVariant.price)
            .filter(ProductVariant.productID == product_id)
            .order_by(ProductVariant.price.asc())
            .limit(1)
            .scalar()
        )
        return Decimal(str(price)) if price is not None else None
