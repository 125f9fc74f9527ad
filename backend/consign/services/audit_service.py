# Overview: Service-layer operations for the audit log; best-effort append-only writes.

"""
Consign Audit Log Service

================================================================================
PURPOSE: Record every lifecycle/scoring/store-setting change with before/after
================================================================================

WRITE MODEL:
- record() inserts inside a SAVEPOINT of the caller's transaction.
- If the caller's transaction later rolls back, the entry goes with it: there
  is never an audit row for a change that did not happen.
- If the insert itself fails, only the savepoint is rolled back. The failure
  is logged on the "consign.audit" logger, AuditHealth is marked degraded, and
  record() returns None. The triggering operation carries on.

This trades "no change without an audit row" for "audit trouble never blocks
a delivery". AuditHealth makes the trade visible (GET /api/system/health).

RULES:
1. Rows are never updated or deleted.
2. actor_id 0 is the system (cutoff sweep).
================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditLog, DailyTransaction, SupplierStats
from ..models.audit import SYSTEM_ACTOR_ID
from consign.time_utils import utcnow, to_utc_z

audit_logger = logging.getLogger("consign.audit")

ENTITY_TRANSACTION = "transaction"
ENTITY_STORE = "store"
ENTITY_SUPPLIER_STATS = "supplier_stats"

EXTENSION_KEY = "consign.audit_health"
DEFAULT_DEGRADED_WINDOW_MINUTES = 15


@dataclass
class AuditHealth:
    """
    Degraded-mode signal for the audit subsystem, one per app.

    Degraded while the last dropped write is less than window_minutes old.
    failure_count keeps counting since start (or reset).
    """
    failure_count: int = 0
    last_error: str | None = None
    last_failure_at: datetime | None = None
    window_minutes: int = DEFAULT_DEGRADED_WINDOW_MINUTES
    _recent: list[str] = field(default_factory=list, repr=False)

    def degraded_at(self, now: datetime) -> bool:
        if self.last_failure_at is None:
            return False
        return now - self.last_failure_at < timedelta(minutes=self.window_minutes)

    @property
    def is_degraded(self) -> bool:
        return self.degraded_at(utcnow())

    def mark_failure(self, exc: Exception) -> None:
        self.failure_count += 1
        self.last_error = f"{type(exc).__name__}: {exc}"
        self.last_failure_at = utcnow()
        self._recent = (self._recent + [self.last_error])[-10:]

    def reset(self) -> None:
        self.failure_count = 0
        self.last_error = None
        self.last_failure_at = None
        self._recent = []

    def to_dict(self) -> dict:
        return {
            "status": "degraded" if self.is_degraded else "healthy",
            "failure_count": self.failure_count,
            "window_minutes": self.window_minutes,
            "last_error": self.last_error,
            "last_failure_at": to_utc_z(self.last_failure_at),
        }


def get_audit_health() -> AuditHealth:
    health = current_app.extensions.get(EXTENSION_KEY)
    if health is None:
        health = AuditHealth(
            window_minutes=int(current_app.config.get("AUDIT_DEGRADED_WINDOW_MINUTES", DEFAULT_DEGRADED_WINDOW_MINUTES)),
        )
        current_app.extensions[EXTENSION_KEY] = health
    return health


def _insert_entry(
    *,
    entity_type: str,
    entity_id: int,
    action: str,
    actor_id: int,
    old_value: Any,
    new_value: Any,
    reason: str | None,
) -> AuditLog:
    entry = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        old_value=old_value,
        new_value=new_value,
        reason=reason,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def record(
    entity_type: str,
    entity_id: int,
    action: str,
    actor_id: int | None,
    old_value: Any = None,
    new_value: Any = None,
    reason: str | None = None,
) -> AuditLog | None:
    """
    Append one audit entry. Never raises for database failures.

    Returns the entry, or None when the write failed (degraded mode).
    """
    if actor_id is None:
        actor_id = SYSTEM_ACTOR_ID

    # Caller's pending changes must fail as the caller's error, not as ours
    db.session.flush()

    try:
        with db.session.begin_nested():
            entry = _insert_entry(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                actor_id=actor_id,
                old_value=old_value,
                new_value=new_value,
                reason=reason,
            )
        return entry
    except SQLAlchemyError as exc:
        audit_logger.error(
            "Audit write failed for %s %s (%s by actor %s): %s",
            entity_type, entity_id, action, actor_id, exc,
        )
        get_audit_health().mark_failure(exc)
        return None


def log_transaction_audit(
    transaction_id: int,
    action: str,
    actor_id: int | None,
    old_value: Any = None,
    new_value: Any = None,
    reason: str | None = None,
) -> AuditLog | None:
    return record(ENTITY_TRANSACTION, transaction_id, action, actor_id, old_value, new_value, reason)


def log_store_audit(
    store_id: int,
    action: str,
    actor_id: int | None,
    old_value: Any = None,
    new_value: Any = None,
    reason: str | None = None,
) -> AuditLog | None:
    return record(ENTITY_STORE, store_id, action, actor_id, old_value, new_value, reason)


def log_stats_audit(
    stats_id: int,
    action: str,
    actor_id: int | None,
    old_value: Any = None,
    new_value: Any = None,
    reason: str | None = None,
) -> AuditLog | None:
    return record(ENTITY_SUPPLIER_STATS, stats_id, action, actor_id, old_value, new_value, reason)


def get_audit_logs(entity_type: str, entity_id: int, limit: int = 50) -> list[AuditLog]:
    """Entries for one entity, newest first."""
    return (
        db.session.query(AuditLog)
        .filter(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )


def get_store_audit_logs(store_id: int, limit: int = 100) -> list[AuditLog]:
    """
    Everything audited for a store: its transactions, its supplier stats and
    the store's own settings, newest first.
    """
    trx_ids = db.select(DailyTransaction.id).where(DailyTransaction.store_id == store_id)
    stats_ids = db.select(SupplierStats.id).where(SupplierStats.store_id == store_id)

    return (
        db.session.query(AuditLog)
        .filter(
            db.or_(
                db.and_(AuditLog.entity_type == ENTITY_TRANSACTION, AuditLog.entity_id.in_(trx_ids)),
                db.and_(AuditLog.entity_type == ENTITY_SUPPLIER_STATS, AuditLog.entity_id.in_(stats_ids)),
                db.and_(AuditLog.entity_type == ENTITY_STORE, AuditLog.entity_id == store_id),
            )
        )
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )
