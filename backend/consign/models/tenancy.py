from __future__ import annotations

from ..extensions import db
from consign.time_utils import to_utc_z


class Store(db.Model):
    """
    A consignment store (lapak) run by one owner.

    The lifecycle engine only reads stores through store_service: whether the
    store accepts submissions today (is_open, emergency_mode) and its cutoff
    settings. cutoff_time is store-local wall clock, "HH:MM".
    """
    __tablename__ = "stores"
    __table_args__ = (
        db.Index("ix_stores_owner_id", "owner_id"),
        db.Index("ix_stores_auto_cancel", "auto_cancel_enabled"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(120), nullable=False)
    slug = db.Column(db.String(120), nullable=False, unique=True)

    timezone = db.Column(db.String(64), nullable=False, default="Asia/Jakarta")

    is_open = db.Column(db.Boolean, nullable=False, default=True)
    emergency_mode = db.Column(db.Boolean, nullable=False, default=False)

    # Cut-off settings: drafts still unverified at cutoff + grace are cancelled
    cutoff_time = db.Column(db.String(5), nullable=True, default="11:00")
    cutoff_grace_period = db.Column(db.Integer, nullable=False, default=30)
    auto_cancel_enabled = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r} owner_id={self.owner_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "slug": self.slug,
            "timezone": self.timezone,
            "is_open": self.is_open,
            "emergency_mode": self.emergency_mode,
            "cutoff_time": self.cutoff_time,
            "cutoff_grace_period": self.cutoff_grace_period,
            "auto_cancel_enabled": self.auto_cancel_enabled,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
