from __future__ import annotations

from ..extensions import db
from consign.time_utils import to_utc_z


# Owner-only fields. Never rendered on a supplier-facing read path.
PRIVATE_STATS_FIELDS = ("reliability_score", "average_accuracy")


class SupplierStats(db.Model):
    """
    Running reliability aggregate for one supplier in one store.

    Mutated only by reliability_service, one increment per real-world event
    (completion, no-show, supplier-caused cancellation). Scores are integers
    clamped to 0-100.

    PRIVACY: reliability_score is an owner-only signal. The column is stored
    like any other; to_dict(include_private=False) is the supplier-facing
    rendering and is the default.
    """
    __tablename__ = "supplier_stats"
    __table_args__ = (
        db.UniqueConstraint("supplier_id", "store_id", name="uq_supplier_stats_supplier_store"),
        db.Index("ix_supplier_stats_store_score", "store_id", "reliability_score"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    supplier_id = db.Column(db.Integer, nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    total_transactions = db.Column(db.Integer, nullable=False, default=0)
    completed_transactions = db.Column(db.Integer, nullable=False, default=0)
    cancelled_by_supplier = db.Column(db.Integer, nullable=False, default=0)
    no_show_count = db.Column(db.Integer, nullable=False, default=0)

    total_planned_qty = db.Column(db.Integer, nullable=False, default=0)
    total_actual_qty = db.Column(db.Integer, nullable=False, default=0)
    total_sold_qty = db.Column(db.Integer, nullable=False, default=0)
    total_revenue = db.Column(db.Integer, nullable=False, default=0)

    average_accuracy = db.Column(db.Integer, nullable=False, default=100)
    reliability_score = db.Column(db.Integer, nullable=False, default=100)

    last_transaction_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<SupplierStats supplier_id={self.supplier_id} store_id={self.store_id}>"

    def to_dict(self, include_private: bool = False) -> dict:
        data = {
            "supplier_id": self.supplier_id,
            "store_id": self.store_id,
            "total_transactions": self.total_transactions,
            "completed_transactions": self.completed_transactions,
            "cancelled_by_supplier": self.cancelled_by_supplier,
            "no_show_count": self.no_show_count,
            "total_planned_qty": self.total_planned_qty,
            "total_actual_qty": self.total_actual_qty,
            "total_sold_qty": self.total_sold_qty,
            "total_revenue": self.total_revenue,
            "average_accuracy": self.average_accuracy,
            "reliability_score": self.reliability_score,
            "last_transaction_at": to_utc_z(self.last_transaction_at),
        }
        if not include_private:
            for key in PRIVATE_STATS_FIELDS:
                data.pop(key)
        return data
