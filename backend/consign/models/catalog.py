from __future__ import annotations

from ..extensions import db
from consign.time_utils import to_utc_z


PRODUCT_STATUS_PENDING = "pending"
PRODUCT_STATUS_APPROVED = "approved"
PRODUCT_STATUS_REJECTED = "rejected"


class Product(db.Model):
    """
    Consigned product offered by one supplier in one store.

    Prices are integer minor units. price_buy is what the store pays the
    supplier per sold unit; it is read at completion time, never cached on the
    transaction.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_store_supplier", "store_id", "supplier_id"),
        db.Index("ix_products_store_status", "store_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    price_buy = db.Column(db.Integer, nullable=False)
    price_sell = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=PRODUCT_STATUS_PENDING)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} store_id={self.store_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "supplier_id": self.supplier_id,
            "name": self.name,
            "price_buy": self.price_buy,
            "price_sell": self.price_sell,
            "status": self.status,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
