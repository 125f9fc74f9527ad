# Overview: Service-layer operations for notifications; pluggable notifier resolved per app.

"""
Notifier collaborator.

The lifecycle engine and the cutoff sweep call dispatch() AFTER their own
commit. Delivery is best effort: a notifier failure is logged and swallowed,
it never undoes the state change that triggered it.

Transports (push, SSE, WhatsApp) live outside this package. The default
DatabaseNotifier writes an inbox row; LoggingNotifier only logs.
"""

from __future__ import annotations

import logging

from flask import current_app

from ..extensions import db
from ..models import Notification

logger = logging.getLogger(__name__)

EXTENSION_KEY = "consign.notifier"

EVENT_TRANSACTION_SUBMITTED = "transaction_submitted"
EVENT_TRANSACTION_VERIFIED = "transaction_verified"
EVENT_TRANSACTION_COMPLETED = "transaction_completed"
EVENT_TRANSACTION_CANCELLED = "transaction_cancelled"
EVENT_CUTOFF_WARNING = "cutoff_warning"

EVENT_KINDS = {
    EVENT_TRANSACTION_SUBMITTED,
    EVENT_TRANSACTION_VERIFIED,
    EVENT_TRANSACTION_COMPLETED,
    EVENT_TRANSACTION_CANCELLED,
    EVENT_CUTOFF_WARNING,
}


class Notifier:
    """Base notifier. Subclasses implement notify()."""

    def notify(self, user_id: int, event_kind: str, payload: dict) -> None:
        raise NotImplementedError


class DatabaseNotifier(Notifier):
    """Writes one in-app inbox row per event, in its own commit."""

    def notify(self, user_id: int, event_kind: str, payload: dict) -> None:
        row = Notification(
            user_id=user_id,
            event_kind=event_kind,
            payload=payload,
            store_id=payload.get("store_id"),
        )
        db.session.add(row)
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise


class LoggingNotifier(Notifier):
    def notify(self, user_id: int, event_kind: str, payload: dict) -> None:
        logger.info("notify user=%s kind=%s payload=%s", user_id, event_kind, payload)


def get_notifier() -> Notifier:
    notifier = current_app.extensions.get(EXTENSION_KEY)
    if notifier is None:
        notifier = DatabaseNotifier()
        current_app.extensions[EXTENSION_KEY] = notifier
    return notifier


def set_notifier(app, notifier: Notifier) -> None:
    app.extensions[EXTENSION_KEY] = notifier


def dispatch(user_id: int, event_kind: str, payload: dict) -> bool:
    """
    Deliver one event. Returns False if the notifier raised.

    Must be called after the triggering change is committed.
    """
    if event_kind not in EVENT_KINDS:
        raise ValueError(f"Unknown event kind '{event_kind}'")

    try:
        get_notifier().notify(user_id, event_kind, payload)
        return True
    except Exception as exc:
        logger.warning("Notifier failed for user %s (%s): %s", user_id, event_kind, exc)
        return False


def list_notifications(user_id: int, *, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    query = db.session.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()
