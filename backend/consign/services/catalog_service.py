from __future__ import annotations

from consign.extensions import db
from consign.errors import NotFoundError
from consign.models import Product
from consign.models.catalog import PRODUCT_STATUS_APPROVED, PRODUCT_STATUS_PENDING
from consign.services.concurrency import run_atomic


def create_product(
    *,
    store_id: int,
    supplier_id: int,
    name: str,
    price_buy: int,
    price_sell: int,
    status: str = PRODUCT_STATUS_PENDING,
) -> Product:
    if not name:
        raise ValueError("Product name is required")
    if price_buy < 0 or price_sell < 0:
        raise ValueError("Prices cannot be negative")

    def _op():
        product = Product(
            store_id=store_id,
            supplier_id=supplier_id,
            name=name,
            price_buy=price_buy,
            price_sell=price_sell,
            status=status,
        )
        db.session.add(product)
        db.session.commit()
        return product

    return run_atomic(_op)


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def get_supplier_product(product_id: int, store_id: int, supplier_id: int) -> Product:
    """
    A product the supplier may deliver: theirs, in this store, approved and active.

    Anything else reads as not found so suppliers cannot discover other catalogs.
    """
    product = (
        db.session.query(Product)
        .filter(
            Product.id == product_id,
            Product.store_id == store_id,
            Product.supplier_id == supplier_id,
            Product.status == PRODUCT_STATUS_APPROVED,
            Product.is_active.is_(True),
        )
        .first()
    )
    if not product:
        raise NotFoundError(
            f"Product {product_id} not found",
            details={"product_id": product_id},
        )
    return product
