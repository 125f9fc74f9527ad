from __future__ import annotations

from ..extensions import db
from consign.time_utils import to_utc_z


TRX_STATUS_DRAFT = "draft"
TRX_STATUS_VERIFIED = "verified"
TRX_STATUS_COMPLETED = "completed"
TRX_STATUS_CANCELLED = "cancelled"


class DailyTransaction(db.Model):
    """
    One supplier delivery to one store for one store-local calendar day.

    LIFECYCLE: draft -> verified -> completed, with draft/verified -> cancelled.
    Mutated only by lifecycle_service.

    UNIQUENESS: at most one non-cancelled row per (store, supplier, date). The
    partial unique index makes a concurrent second insert fail with
    IntegrityError; lifecycle_service re-reads the winner's row on conflict.
    A cancelled row no longer blocks the key.

    version_id turns two concurrent transitions on the same row into a
    StaleDataError for the loser.
    """
    __tablename__ = "daily_transactions"
    __table_args__ = (
        db.Index(
            "uq_daily_trx_open_key",
            "store_id",
            "supplier_id",
            "date",
            unique=True,
            sqlite_where=db.text("status != 'cancelled'"),
            postgresql_where=db.text("status != 'cancelled'"),
        ),
        db.Index("ix_daily_trx_store_date_status", "store_id", "date", "status"),
        db.Index("ix_daily_trx_supplier_store", "supplier_id", "store_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    supplier_id = db.Column(db.Integer, nullable=False)
    date = db.Column(db.Date, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=TRX_STATUS_DRAFT, index=True)

    # Sum of qty_planned while draft, sum of qty_actual once verified
    total_items_in = db.Column(db.Integer, nullable=False, default=0)
    total_items_sold = db.Column(db.Integer, nullable=False, default=0)
    # Only meaningful once completed; 0 before
    total_payout = db.Column(db.Integer, nullable=False, default=0)

    admin_note = db.Column(db.Text, nullable=True)
    cancel_reason = db.Column(db.Text, nullable=True)

    verified_by_actor_id = db.Column(db.Integer, nullable=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by_actor_id = db.Column(db.Integer, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_actor_id = db.Column(db.Integer, nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    store = db.relationship("Store", backref=db.backref("daily_transactions", lazy=True))
    items = db.relationship(
        "TransactionItem",
        back_populates="transaction",
        lazy=True,
        order_by="TransactionItem.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<DailyTransaction id={self.id} store_id={self.store_id} "
            f"supplier_id={self.supplier_id} date={self.date} status={self.status!r}>"
        )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "supplier_id": self.supplier_id,
            "date": self.date.isoformat() if self.date else None,
            "status": self.status,
            "total_items_in": self.total_items_in,
            "total_items_sold": self.total_items_sold,
            "total_payout": self.total_payout,
            "admin_note": self.admin_note,
            "cancel_reason": self.cancel_reason,
            "verified_at": to_utc_z(self.verified_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class TransactionItem(db.Model):
    """
    One product line on a DailyTransaction.

    qty_planned accumulates across submissions, qty_actual is set once at
    verification, qty_returned once at completion.
    """
    __tablename__ = "transaction_items"
    __table_args__ = (
        db.UniqueConstraint("trx_id", "product_id", name="uq_transaction_items_trx_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    trx_id = db.Column(db.Integer, db.ForeignKey("daily_transactions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    qty_planned = db.Column(db.Integer, nullable=False, default=0)
    qty_actual = db.Column(db.Integer, nullable=False, default=0)
    qty_returned = db.Column(db.Integer, nullable=False, default=0)

    transaction = db.relationship("DailyTransaction", back_populates="items")
    product = db.relationship("Product")

    @property
    def qty_sold(self) -> int:
        return self.qty_actual - self.qty_returned

    def __repr__(self) -> str:
        return f"<TransactionItem id={self.id} trx_id={self.trx_id} product_id={self.product_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "trx_id": self.trx_id,
            "product_id": self.product_id,
            "qty_planned": self.qty_planned,
            "qty_actual": self.qty_actual,
            "qty_returned": self.qty_returned,
            "qty_sold": self.qty_sold,
        }
