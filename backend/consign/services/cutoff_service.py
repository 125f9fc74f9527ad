# Overview: Service-layer operations for the daily cut-off; auto-cancel sweep and pre-cutoff warnings.

"""
Consign Cut-off Service

================================================================================
PURPOSE: Cancel deliveries still in DRAFT once the store's cut-off has passed
================================================================================

EFFECTIVE CUT-OFF:
    cutoff_time ("HH:MM", store-local) + cutoff_grace_period minutes,
    clamped to 23:59. A draft is past cut-off when the store-local wall
    clock reaches it (>=).

SWEEP:
- Visits every store with auto_cancel_enabled and a cutoff_time.
- "Today" is the store-local calendar day of the sweep instant.
- Each draft goes through lifecycle_service.cancel_delivery with the system
  actor, so it is audited, scored and notified like any other cancellation.
- Idempotent: a second sweep finds no drafts left. A draft the owner
  verified in the meantime raises InvalidStateError, counted as handled.
- One draft or store failing never stops the others; failures are collected
  and drafts already cancelled are still counted.

WARNINGS:
- Suppliers with a draft get one "cutoff_warning" per store per day once the
  effective cut-off is within CUTOFF_WARNING_MINUTES.
================================================================================
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date as date_type, datetime, timezone

from flask import current_app

from ..errors import ConsignError, InvalidStateError, NotFoundError
from ..extensions import db
from ..models import CutoffWarning, DailyTransaction, Store
from ..models.audit import SYSTEM_ACTOR_ID
from ..models.ledger import TRX_STATUS_DRAFT
from . import lifecycle_service, notification_service, store_service
from .concurrency import find_or_create, run_atomic
from consign.time_utils import to_store_local, to_utc_z, utcnow

logger = logging.getLogger(__name__)


DEFAULT_CUTOFF_TIME = "11:00"
CUTOFF_CANCEL_REASON = "cutoff exceeded"
LAST_MINUTE_OF_DAY = 23 * 60 + 59


@dataclass(frozen=True)
class CutoffStatus:
    store_id: int
    store_name: str
    cutoff_time: str
    grace_period_minutes: int
    effective_cutoff: str
    local_time: str
    local_date: str
    is_after_cutoff: bool
    minutes_until_cutoff: int
    pending_drafts: int
    auto_cancel_enabled: bool

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SweepStoreResult:
    store_id: int
    cancelled_count: int = 0
    notified_suppliers: list[int] = field(default_factory=list)
    failures: list[tuple[int, str]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SweepResult:
    stores_processed: int = 0
    transactions_cancelled: int = 0
    failures: list[tuple[int, str]] = field(default_factory=list)
    store_results: list[SweepStoreResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "stores_processed": self.stores_processed,
            "transactions_cancelled": self.transactions_cancelled,
            "failures": [{"store_id": store_id, "error": message} for store_id, message in self.failures],
            "stores": [r.to_dict() for r in self.store_results if r.cancelled_count or r.failures],
        }


@dataclass
class SchedulerRunResult:
    timestamp: datetime
    stores_checked: int
    warnings_sent: int
    sweep: SweepResult

    def to_dict(self) -> dict:
        return {
            "timestamp": to_utc_z(self.timestamp),
            "stores_checked": self.stores_checked,
            "warnings_sent": self.warnings_sent,
            **self.sweep.to_dict(),
        }


def parse_cutoff_time(cutoff_time: str) -> tuple[int, int]:
    """'HH:MM' -> (hour, minute). Raises ValueError when malformed."""
    if not isinstance(cutoff_time, str) or not store_service.CUTOFF_TIME_PATTERN.match(cutoff_time):
        raise ValueError(f"Invalid cutoff time '{cutoff_time}', expected HH:MM")
    hour, minute = cutoff_time.split(":")
    return int(hour), int(minute)


def effective_cutoff_minutes(cutoff_time: str, grace_period_minutes: int = 0) -> int:
    hour, minute = parse_cutoff_time(cutoff_time)
    return min(hour * 60 + minute + max(grace_period_minutes, 0), LAST_MINUTE_OF_DAY)


def _format_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def is_past_cutoff(cutoff_time: str, now: datetime, grace_period_minutes: int = 0) -> bool:
    """now is the store-local wall clock."""
    return now.hour * 60 + now.minute >= effective_cutoff_minutes(cutoff_time, grace_period_minutes)


def minutes_until_cutoff(cutoff_time: str, now: datetime, grace_period_minutes: int = 0) -> int:
    """Negative once the effective cut-off has passed."""
    return effective_cutoff_minutes(cutoff_time, grace_period_minutes) - (now.hour * 60 + now.minute)


def _as_utc_naive(now: datetime | None) -> datetime:
    if now is None:
        return utcnow()
    if now.tzinfo is not None:
        return now.astimezone(timezone.utc).replace(tzinfo=None)
    return now


def _draft_query(store_id: int, day: date_type):
    return db.session.query(DailyTransaction).filter(
        DailyTransaction.store_id == store_id,
        DailyTransaction.date == day,
        DailyTransaction.status == TRX_STATUS_DRAFT,
    )


def get_store_cutoff_status(store_id: int, now: datetime | None = None) -> CutoffStatus:
    store = db.session.get(Store, store_id)
    if not store:
        raise NotFoundError(f"Store {store_id} not found")

    local_now = to_store_local(_as_utc_naive(now), store.timezone)
    cutoff_time = store.cutoff_time or DEFAULT_CUTOFF_TIME
    grace = store.cutoff_grace_period or 0
    effective = effective_cutoff_minutes(cutoff_time, grace)

    return CutoffStatus(
        store_id=store.id,
        store_name=store.name,
        cutoff_time=cutoff_time,
        grace_period_minutes=grace,
        effective_cutoff=_format_minutes(effective),
        local_time=local_now.strftime("%H:%M"),
        local_date=local_now.date().isoformat(),
        is_after_cutoff=is_past_cutoff(cutoff_time, local_now, grace),
        minutes_until_cutoff=minutes_until_cutoff(cutoff_time, local_now, grace),
        pending_drafts=_draft_query(store.id, local_now.date()).count(),
        auto_cancel_enabled=bool(store.auto_cancel_enabled),
    )


def sweep_store(store: Store, today: date_type | None = None, now: datetime | None = None) -> SweepStoreResult:
    """
    Cancel today's drafts for one store if its effective cut-off has passed.

    now is a UTC instant; today defaults to the store-local date of now.
    """
    result = SweepStoreResult(store_id=store.id)
    if not store.auto_cancel_enabled or not store.cutoff_time:
        return result

    local_now = to_store_local(_as_utc_naive(now), store.timezone)
    if today is None:
        today = local_now.date()

    if not is_past_cutoff(store.cutoff_time, local_now, store.cutoff_grace_period or 0):
        return result

    store_id = store.id
    draft_ids = [row.id for row in _draft_query(store_id, today).with_entities(DailyTransaction.id).all()]

    for trx_id in draft_ids:
        try:
            trx = lifecycle_service.cancel_delivery(trx_id, CUTOFF_CANCEL_REASON, SYSTEM_ACTOR_ID)
        except InvalidStateError:
            # Verified or cancelled concurrently; nothing left to do
            logger.debug("Skipping transaction %s: no longer a draft", trx_id)
            continue
        except ConsignError as exc:
            # Left as a draft; the next tick retries it
            logger.error("Cut-off cancel failed for transaction %s (store %s): %s", trx_id, store_id, exc)
            result.failures.append((trx_id, str(exc)))
            continue

        result.cancelled_count += 1
        if trx.supplier_id not in result.notified_suppliers:
            result.notified_suppliers.append(trx.supplier_id)

    if result.cancelled_count:
        logger.info(
            "Cut-off sweep cancelled %d draft(s) for store %s (%s)",
            result.cancelled_count, store_id, today.isoformat(),
        )
    return result


def sweep_all(now: datetime | None = None) -> SweepResult:
    now = _as_utc_naive(now)
    result = SweepResult()

    store_ids = [store.id for store in store_service.list_auto_cancel_stores()]
    for store_id in store_ids:
        result.stores_processed += 1
        try:
            store = db.session.get(Store, store_id)
            if store is None:
                continue
            store_result = sweep_store(store, None, now)
        except Exception as exc:
            db.session.rollback()
            logger.exception("Cut-off sweep failed for store %s", store_id)
            result.failures.append((store_id, str(exc)))
            continue

        result.transactions_cancelled += store_result.cancelled_count
        result.store_results.append(store_result)
        for trx_id, message in store_result.failures:
            result.failures.append((store_id, f"transaction {trx_id}: {message}"))

    logger.info(
        "Cut-off sweep done: %d store(s), %d cancelled, %d failure(s)",
        result.stores_processed, result.transactions_cancelled, len(result.failures),
    )
    return result


def run_cutoff_sweep(now: datetime | None = None) -> SweepResult:
    return sweep_all(now)


def send_cutoff_warnings(store_id: int, now: datetime | None = None, minutes_before: int = 30) -> int:
    """
    Warn suppliers whose draft will be cancelled within minutes_before.

    Returns the number of suppliers newly warned.
    """
    now = _as_utc_naive(now)
    status = get_store_cutoff_status(store_id, now)
    if status.minutes_until_cutoff <= 0 or status.minutes_until_cutoff > minutes_before:
        return 0

    today = date_type.fromisoformat(status.local_date)

    def _op():
        supplier_ids = [
            row.supplier_id
            for row in _draft_query(store_id, today)
            .with_entities(DailyTransaction.supplier_id)
            .distinct()
            .order_by(DailyTransaction.supplier_id)
            .all()
        ]

        newly_warned = []
        for supplier_id in supplier_ids:
            _marker, created = find_or_create(
                lambda: db.session.query(CutoffWarning)
                .filter_by(store_id=store_id, supplier_id=supplier_id, date=today)
                .first(),
                lambda: CutoffWarning(store_id=store_id, supplier_id=supplier_id, date=today),
            )
            if created:
                newly_warned.append(supplier_id)

        db.session.commit()
        return newly_warned

    newly_warned = run_atomic(_op)

    for supplier_id in newly_warned:
        notification_service.dispatch(
            supplier_id,
            notification_service.EVENT_CUTOFF_WARNING,
            {
                "store_id": store_id,
                "store_name": status.store_name,
                "date": status.local_date,
                "effective_cutoff": status.effective_cutoff,
                "minutes_until_cutoff": status.minutes_until_cutoff,
            },
        )
    return len(newly_warned)


def run_scheduler(now: datetime | None = None) -> SchedulerRunResult:
    """One scheduler tick: warnings for open stores, then the sweep."""
    now = _as_utc_naive(now)
    minutes_before = int(current_app.config.get("CUTOFF_WARNING_MINUTES", 30))

    store_ids = [store.id for store in store_service.list_open_stores()]
    warnings_sent = 0
    for store_id in store_ids:
        try:
            warnings_sent += send_cutoff_warnings(store_id, now, minutes_before)
        except Exception:
            db.session.rollback()
            logger.exception("Cut-off warnings failed for store %s", store_id)

    sweep = sweep_all(now)
    return SchedulerRunResult(
        timestamp=now,
        stores_checked=len(store_ids),
        warnings_sent=warnings_sent,
        sweep=sweep,
    )
