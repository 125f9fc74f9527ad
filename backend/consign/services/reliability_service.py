# Overview: Service-layer operations for supplier reliability; owner-private trust score per store.

"""
Consign Supplier Reliability Service

================================================================================
PURPOSE: Keep one running SupplierStats aggregate per (supplier, store)
================================================================================

FORMULAS:
    completion_rate   = completed / total * 100       (100 when total == 0)
    reliability_score = clamp(round(completion_rate
                                    - 10 * no_show_count
                                    - 5 * cancelled_by_supplier), 0, 100)
    average_accuracy  = min(100, round(total_actual / total_planned * 100))
                                                       (100 when planned == 0)

Rounding is half-up, so 87.5 scores 88.

EVENTS (one increment per real-world event):
    on_completed          +1 total, +1 completed, quantity/revenue totals
    on_no_show            +1 total, +1 no_show_count
    on_supplier_cancelled +1 total, +1 cancelled_by_supplier

Every event locks the stats row, bumps version_id and writes a
"stats_updated" audit entry. commit=False lets the lifecycle engine fold the
update into its own database transaction.

PRIVACY: reliability_score and average_accuracy are owner-only. Supplier-facing
callers use get_supplier_summary().
================================================================================
"""

from __future__ import annotations

import math

from ..extensions import db
from ..models import SupplierStats
from ..models.audit import SYSTEM_ACTOR_ID
from . import audit_service
from .concurrency import find_or_create, lock_for_update, run_atomic
from consign.time_utils import utcnow


MIN_SCORE = 0
MAX_SCORE = 100
NO_SHOW_PENALTY = 10
CANCEL_PENALTY = 5
DEFAULT_LOW_RELIABILITY_THRESHOLD = 50

ACTION_STATS_UPDATED = "stats_updated"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: int, low: int = MIN_SCORE, high: int = MAX_SCORE) -> int:
    return max(low, min(high, value))


def compute_reliability_score(
    total_transactions: int,
    completed_transactions: int,
    no_show_count: int,
    cancelled_by_supplier: int,
) -> int:
    if total_transactions > 0:
        completion_rate = completed_transactions / total_transactions * 100
    else:
        completion_rate = 100.0
    raw = completion_rate - NO_SHOW_PENALTY * no_show_count - CANCEL_PENALTY * cancelled_by_supplier
    return _clamp(_round_half_up(raw))


def compute_average_accuracy(total_actual_qty: int, total_planned_qty: int) -> int:
    if total_planned_qty <= 0:
        return MAX_SCORE
    return _clamp(_round_half_up(total_actual_qty / total_planned_qty * 100))


def _lookup(supplier_id: int, store_id: int, *, lock: bool):
    query = db.session.query(SupplierStats).filter_by(supplier_id=supplier_id, store_id=store_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def _new_stats(supplier_id: int, store_id: int) -> SupplierStats:
    return SupplierStats(
        supplier_id=supplier_id,
        store_id=store_id,
        total_transactions=0,
        completed_transactions=0,
        cancelled_by_supplier=0,
        no_show_count=0,
        total_planned_qty=0,
        total_actual_qty=0,
        total_sold_qty=0,
        total_revenue=0,
        average_accuracy=MAX_SCORE,
        reliability_score=MAX_SCORE,
    )


def _load_or_create(supplier_id: int, store_id: int, *, lock: bool) -> SupplierStats:
    stats, _created = find_or_create(
        lambda: _lookup(supplier_id, store_id, lock=lock),
        lambda: _new_stats(supplier_id, store_id),
    )
    return stats


def get_or_create_stats(supplier_id: int, store_id: int, *, commit: bool = True) -> SupplierStats:
    """
    Return the stats row for (supplier, store), creating it with defaults
    (counters 0, scores 100) on first reference.
    """
    if not commit:
        return _load_or_create(supplier_id, store_id, lock=False)

    def _op():
        stats = _load_or_create(supplier_id, store_id, lock=False)
        db.session.commit()
        return stats

    return run_atomic(_op)


def _snapshot(stats: SupplierStats) -> dict:
    return stats.to_dict(include_private=True)


def _apply_event(
    supplier_id: int,
    store_id: int,
    mutate,
    *,
    actor_id: int,
    reason: str,
    commit: bool,
) -> SupplierStats:
    def _op():
        stats = _load_or_create(supplier_id, store_id, lock=True)
        old_value = _snapshot(stats)

        mutate(stats)
        stats.reliability_score = compute_reliability_score(
            stats.total_transactions,
            stats.completed_transactions,
            stats.no_show_count,
            stats.cancelled_by_supplier,
        )
        db.session.flush()

        audit_service.log_stats_audit(
            stats.id,
            ACTION_STATS_UPDATED,
            actor_id,
            old_value=old_value,
            new_value=_snapshot(stats),
            reason=reason,
        )

        if commit:
            db.session.commit()
        return stats

    if commit:
        return run_atomic(_op)
    # Caller owns the transaction (and its retry)
    return _op()


def on_completed(
    supplier_id: int,
    store_id: int,
    *,
    planned_qty: int,
    actual_qty: int,
    sold_qty: int,
    revenue: int,
    actor_id: int = SYSTEM_ACTOR_ID,
    commit: bool = True,
) -> SupplierStats:
    def _mutate(stats: SupplierStats) -> None:
        stats.total_transactions += 1
        stats.completed_transactions += 1
        stats.total_planned_qty += planned_qty
        stats.total_actual_qty += actual_qty
        stats.total_sold_qty += sold_qty
        stats.total_revenue += revenue
        stats.average_accuracy = compute_average_accuracy(stats.total_actual_qty, stats.total_planned_qty)
        stats.last_transaction_at = utcnow()

    return _apply_event(
        supplier_id, store_id, _mutate,
        actor_id=actor_id, reason="transaction completed", commit=commit,
    )


def on_no_show(
    supplier_id: int,
    store_id: int,
    *,
    actor_id: int = SYSTEM_ACTOR_ID,
    commit: bool = True,
) -> SupplierStats:
    def _mutate(stats: SupplierStats) -> None:
        stats.total_transactions += 1
        stats.no_show_count += 1

    return _apply_event(
        supplier_id, store_id, _mutate,
        actor_id=actor_id, reason="supplier no-show", commit=commit,
    )


def on_supplier_cancelled(
    supplier_id: int,
    store_id: int,
    *,
    actor_id: int = SYSTEM_ACTOR_ID,
    commit: bool = True,
) -> SupplierStats:
    def _mutate(stats: SupplierStats) -> None:
        stats.total_transactions += 1
        stats.cancelled_by_supplier += 1

    return _apply_event(
        supplier_id, store_id, _mutate,
        actor_id=actor_id, reason="transaction cancelled", commit=commit,
    )


def get_supplier_reliability(supplier_id: int, store_id: int) -> SupplierStats:
    """Owner-only read. Creates the default row on first reference."""
    existing = _lookup(supplier_id, store_id, lock=False)
    if existing is not None:
        return existing
    return get_or_create_stats(supplier_id, store_id)


def list_store_reliability(store_id: int) -> list[SupplierStats]:
    return (
        db.session.query(SupplierStats)
        .filter(SupplierStats.store_id == store_id)
        .order_by(SupplierStats.reliability_score.desc(), SupplierStats.supplier_id.asc())
        .all()
    )


def get_low_reliability_suppliers(
    store_id: int,
    threshold: int = DEFAULT_LOW_RELIABILITY_THRESHOLD,
) -> list[SupplierStats]:
    """Suppliers scoring strictly below threshold, worst first."""
    return (
        db.session.query(SupplierStats)
        .filter(SupplierStats.store_id == store_id, SupplierStats.reliability_score < threshold)
        .order_by(SupplierStats.reliability_score.asc(), SupplierStats.supplier_id.asc())
        .all()
    )


def get_supplier_summary(supplier_id: int, store_id: int) -> dict:
    """Supplier-facing view of their own stats, without the private fields."""
    stats = _lookup(supplier_id, store_id, lock=False)
    if stats is None:
        return _new_stats(supplier_id, store_id).to_dict(include_private=False)
    return stats.to_dict(include_private=False)
