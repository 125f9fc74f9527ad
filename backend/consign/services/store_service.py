from __future__ import annotations

import re
from dataclasses import dataclass

from flask import current_app

from consign.extensions import db
from consign.errors import NotFoundError, ValidationError
from consign.models import Store
from consign.services import audit_service
from consign.services.concurrency import lock_for_update, run_atomic


CUTOFF_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
MIN_GRACE_PERIOD = 0
MAX_GRACE_PERIOD = 120

ACTION_STORE_STATUS_CHANGED = "store_status_changed"


@dataclass(frozen=True)
class StoreConfig:
    """Read-only view of the store settings the lifecycle and cutoff engines consult."""
    store_id: int
    cutoff_time: str | None
    grace_period_minutes: int
    auto_cancel_enabled: bool
    is_open: bool
    emergency_mode: bool
    timezone: str

    @property
    def accepting_submissions(self) -> bool:
        return self.is_open and not self.emergency_mode


def validate_cutoff_time(value: str) -> str:
    if not isinstance(value, str) or not CUTOFF_TIME_PATTERN.match(value):
        raise ValidationError(
            "cutoff_time must be HH:MM (24-hour)",
            details={"cutoff_time": value},
        )
    return value


def validate_grace_period(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("grace_period_minutes must be an integer")
    if value < MIN_GRACE_PERIOD or value > MAX_GRACE_PERIOD:
        raise ValidationError(
            f"grace_period_minutes must be between {MIN_GRACE_PERIOD} and {MAX_GRACE_PERIOD}",
            details={"grace_period_minutes": value},
        )
    return value


def create_store(
    *,
    owner_id: int,
    name: str,
    slug: str,
    timezone: str | None = None,
    cutoff_time: str | None = "11:00",
    grace_period_minutes: int = 30,
    auto_cancel_enabled: bool = True,
) -> Store:
    if not name:
        raise ValueError("Store name is required")
    if cutoff_time is not None:
        validate_cutoff_time(cutoff_time)
    validate_grace_period(grace_period_minutes)

    def _op():
        store = Store(
            owner_id=owner_id,
            name=name,
            slug=slug,
            timezone=timezone or current_app.config.get("DEFAULT_STORE_TIMEZONE", "Asia/Jakarta"),
            cutoff_time=cutoff_time,
            cutoff_grace_period=grace_period_minutes,
            auto_cancel_enabled=auto_cancel_enabled,
        )
        db.session.add(store)
        db.session.commit()
        return store

    return run_atomic(_op)


def get_store(store_id: int) -> Store:
    store = db.session.get(Store, store_id)
    if not store:
        raise NotFoundError(f"Store {store_id} not found")
    return store


def get_store_config(store_id: int) -> StoreConfig:
    store = get_store(store_id)
    return StoreConfig(
        store_id=store.id,
        cutoff_time=store.cutoff_time,
        grace_period_minutes=store.cutoff_grace_period,
        auto_cancel_enabled=store.auto_cancel_enabled,
        is_open=store.is_open,
        emergency_mode=store.emergency_mode,
        timezone=store.timezone,
    )


def is_accepting_submissions(store_id: int) -> bool:
    return get_store_config(store_id).accepting_submissions


def list_auto_cancel_stores() -> list[Store]:
    """Stores the cutoff sweep must visit: auto-cancel on and a cutoff time set."""
    return (
        db.session.query(Store)
        .filter(Store.auto_cancel_enabled.is_(True), Store.cutoff_time.isnot(None))
        .order_by(Store.id.asc())
        .all()
    )


def list_open_stores() -> list[Store]:
    return (
        db.session.query(Store)
        .filter(Store.is_open.is_(True), Store.emergency_mode.is_(False))
        .order_by(Store.id.asc())
        .all()
    )


def _cutoff_snapshot(store: Store) -> dict:
    return {
        "cutoff_time": store.cutoff_time,
        "cutoff_grace_period": store.cutoff_grace_period,
        "auto_cancel_enabled": store.auto_cancel_enabled,
    }


def update_cutoff_settings(
    store_id: int,
    *,
    actor_id: int,
    cutoff_time: str | None = None,
    grace_period_minutes: int | None = None,
    auto_cancel_enabled: bool | None = None,
) -> Store:
    """
    Change a store's cutoff settings. Only the given fields are touched.

    Raises:
        ValidationError: malformed cutoff_time or grace outside 0-120
        NotFoundError: unknown store
    """
    if cutoff_time is not None:
        validate_cutoff_time(cutoff_time)
    if grace_period_minutes is not None:
        validate_grace_period(grace_period_minutes)

    def _op():
        store = lock_for_update(db.session.query(Store).filter_by(id=store_id)).first()
        if not store:
            raise NotFoundError(f"Store {store_id} not found")

        old_value = _cutoff_snapshot(store)
        if cutoff_time is not None:
            store.cutoff_time = cutoff_time
        if grace_period_minutes is not None:
            store.cutoff_grace_period = grace_period_minutes
        if auto_cancel_enabled is not None:
            store.auto_cancel_enabled = bool(auto_cancel_enabled)
        db.session.flush()

        audit_service.log_store_audit(
            store.id,
            ACTION_STORE_STATUS_CHANGED,
            actor_id,
            old_value=old_value,
            new_value=_cutoff_snapshot(store),
            reason="cutoff settings updated",
        )
        db.session.commit()
        return store

    return run_atomic(_op)


def set_store_status(
    store_id: int,
    *,
    actor_id: int,
    is_open: bool | None = None,
    emergency_mode: bool | None = None,
    reason: str | None = None,
) -> Store:
    """Open/close the store or toggle emergency mode (blocks new submissions)."""
    def _op():
        store = lock_for_update(db.session.query(Store).filter_by(id=store_id)).first()
        if not store:
            raise NotFoundError(f"Store {store_id} not found")

        old_value = {"is_open": store.is_open, "emergency_mode": store.emergency_mode}
        if is_open is not None:
            store.is_open = bool(is_open)
        if emergency_mode is not None:
            store.emergency_mode = bool(emergency_mode)
        db.session.flush()

        audit_service.log_store_audit(
            store.id,
            ACTION_STORE_STATUS_CHANGED,
            actor_id,
            old_value=old_value,
            new_value={"is_open": store.is_open, "emergency_mode": store.emergency_mode},
            reason=reason,
        )
        db.session.commit()
        return store

    return run_atomic(_op)
