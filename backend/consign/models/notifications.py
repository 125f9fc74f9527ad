from __future__ import annotations

from ..extensions import db
from consign.time_utils import to_utc_z


class Notification(db.Model):
    """In-app inbox row written by DatabaseNotifier."""
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_user_read", "user_id", "is_read"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False)
    event_kind = db.Column(db.String(64), nullable=False)
    payload = db.Column(db.JSON, nullable=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id", ondelete="SET NULL"), nullable=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_kind": self.event_kind,
            "payload": self.payload,
            "store_id": self.store_id,
            "is_read": self.is_read,
            "created_at": to_utc_z(self.created_at),
        }


class CutoffWarning(db.Model):
    """
    Marker that a supplier was warned about an upcoming cutoff.

    One row per (store, supplier, date), so warnings go out at most once a day.
    """
    __tablename__ = "cutoff_warnings"
    __table_args__ = (
        db.UniqueConstraint("store_id", "supplier_id", "date", name="uq_cutoff_warnings_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    supplier_id = db.Column(db.Integer, nullable=False)
    date = db.Column(db.Date, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
