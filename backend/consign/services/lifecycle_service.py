# Overview: Service-layer operations for the delivery lifecycle; state machine, quantities and payout.

"""
Consign Delivery Lifecycle Service

================================================================================
PURPOSE: Enforce draft -> verified -> completed for daily consignment deliveries
================================================================================

STATE MACHINE:
    (none) --submit--> DRAFT --verify--> VERIFIED --complete--> COMPLETED
                         |                   |
                         +------cancel-------+------> CANCELLED

    DRAFT:     Supplier's planned quantities. Resubmissions on the same day
               accumulate qty_planned. Cut-off sweep may cancel it.
    VERIFIED:  Owner counted what physically arrived (qty_actual).
    COMPLETED: Owner recorded returns; payout fixed from price_buy. Terminal.
    CANCELLED: Terminal. Frees the (store, supplier, date) key.

RULES (NON-NEGOTIABLE):
1. Cannot skip states (DRAFT -> COMPLETED is forbidden)
2. Cannot reverse states, and terminal states never change
3. qty_returned <= qty_actual for every item; payout only on completion
4. Each transition writes one audit entry and notifies the supplier once,
   after commit

CONCURRENCY:
Every transition runs through run_atomic(): the row is read with
lock_for_update and version_id catches lost updates. A retried attempt
re-checks the status, so the losing side of a race sees InvalidStateError.
================================================================================
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Literal

from sqlalchemy import func

from ..errors import InvalidQuantityError, InvalidStateError, NotFoundError, StoreClosedError
from ..extensions import db
from ..models import DailyTransaction, TransactionItem
from ..models.audit import SYSTEM_ACTOR_ID
from ..models.ledger import (
    TRX_STATUS_CANCELLED,
    TRX_STATUS_COMPLETED,
    TRX_STATUS_DRAFT,
    TRX_STATUS_VERIFIED,
)
from . import audit_service, catalog_service, notification_service, reliability_service, store_service
from .concurrency import find_or_create, lock_for_update, run_atomic
from consign.time_utils import parse_iso_date, utcnow

logger = logging.getLogger(__name__)


VALID_STATUSES = {TRX_STATUS_DRAFT, TRX_STATUS_VERIFIED, TRX_STATUS_COMPLETED, TRX_STATUS_CANCELLED}
TransactionStatus = Literal["draft", "verified", "completed", "cancelled"]

ALLOWED_TRANSITIONS = {
    TRX_STATUS_DRAFT: {TRX_STATUS_VERIFIED, TRX_STATUS_CANCELLED},
    TRX_STATUS_VERIFIED: {TRX_STATUS_COMPLETED, TRX_STATUS_CANCELLED},
    TRX_STATUS_COMPLETED: set(),
    TRX_STATUS_CANCELLED: set(),
}

ACTION_CREATED = "transaction_created"
ACTION_ITEM_ADDED = "item_added"
ACTION_VERIFIED = "transaction_verified"
ACTION_COMPLETED = "transaction_completed"
ACTION_CANCELLED = "transaction_cancelled"

WHOLE_NUMBER_PATTERN = re.compile(r"-?[0-9]+")


def validate_status(status: str) -> None:
    """
    Raises:
        InvalidStateError: If status is not one of the four lifecycle states
    """
    if status not in VALID_STATUSES:
        raise InvalidStateError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )


def can_transition(from_status: str, to_status: str) -> bool:
    """
    Check a transition against the state machine.

    Same-state transitions are not allowed: a second verify of a verified
    transaction is a precondition failure, not a no-op.
    """
    validate_status(from_status)
    validate_status(to_status)
    return to_status in ALLOWED_TRANSITIONS[from_status]


def _require_transition(trx: DailyTransaction, to_status: str, verb: str) -> None:
    if not can_transition(trx.status, to_status):
        raise InvalidStateError(
            f"Cannot {verb} transaction {trx.id} in status {trx.status}",
            details={"trx_id": trx.id, "status": trx.status},
        )


def _whole_number(value, label: str) -> int:
    """int, integral float or digit string; anything else (2.9, True, "3x") is rejected."""
    if isinstance(value, bool):
        raise InvalidQuantityError(f"{label} must be a whole number", details={label: value})
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and WHOLE_NUMBER_PATTERN.fullmatch(value.strip()):
        return int(value.strip())
    raise InvalidQuantityError(f"{label} must be a whole number", details={label: value})


def _normalize_lines(lines, id_key: str, qty_key: str, *, alt_id_key: str | None = None) -> list[tuple[int, int]]:
    """Accept (id, qty) tuples or dicts; return a list of (id, qty) ints."""
    if lines is None:
        return []

    normalized = []
    for line in lines:
        if isinstance(line, dict):
            line_id = line.get(id_key)
            if line_id is None and alt_id_key:
                line_id = line.get(alt_id_key)
            qty = line.get(qty_key)
        else:
            try:
                line_id, qty = line
            except (TypeError, ValueError):
                raise InvalidQuantityError(f"Malformed line: {line!r}")

        if line_id is None or qty is None:
            raise InvalidQuantityError(f"Each line needs {id_key} and {qty_key}")
        line_id = _whole_number(line_id, id_key)
        qty = _whole_number(qty, qty_key)
        normalized.append((line_id, qty))
    return normalized


def _merge_lines(lines: Iterable[tuple[int, int]]) -> dict[int, int]:
    merged: dict[int, int] = {}
    for line_id, qty in lines:
        merged[line_id] = merged.get(line_id, 0) + qty
    return merged


def _index_lines(lines: Iterable[tuple[int, int]], id_key: str) -> dict[int, int]:
    indexed: dict[int, int] = {}
    for line_id, qty in lines:
        if line_id in indexed:
            raise InvalidQuantityError(f"Duplicate {id_key} {line_id}", details={id_key: line_id})
        indexed[line_id] = qty
    return indexed


def _load_for_update(trx_id: int) -> DailyTransaction:
    trx = (
        lock_for_update(db.session.query(DailyTransaction).filter_by(id=trx_id))
        .populate_existing()
        .first()
    )
    if not trx:
        raise NotFoundError(f"Transaction {trx_id} not found", details={"trx_id": trx_id})
    return trx


def _find_open_transaction(store_id: int, supplier_id: int, trx_date):
    return (
        lock_for_update(
            db.session.query(DailyTransaction).filter(
                DailyTransaction.store_id == store_id,
                DailyTransaction.supplier_id == supplier_id,
                DailyTransaction.date == trx_date,
                DailyTransaction.status != TRX_STATUS_CANCELLED,
            )
        )
        .populate_existing()
        .first()
    )


def _event_payload(trx: DailyTransaction, **extra) -> dict:
    payload = {
        "trx_id": trx.id,
        "store_id": trx.store_id,
        "date": trx.date.isoformat(),
        "status": trx.status,
    }
    payload.update(extra)
    return payload


def submit_delivery(
    store_id: int,
    supplier_id: int,
    date,
    items,
    *,
    actor_id: int | None = None,
) -> DailyTransaction:
    """
    Record a supplier's planned delivery for one store-local day.

    The first submission for (store, supplier, date) creates the draft;
    later ones add to it. A product already on the draft gets its
    qty_planned increased.

    Args:
        items: [(product_id, qty)] or [{"product_id": ..., "qty": ...}]
        actor_id: defaults to supplier_id

    Raises:
        StoreClosedError: store closed or in emergency mode
        InvalidQuantityError: empty list or qty <= 0
        NotFoundError: unknown store, or product not approved for this supplier
        InvalidStateError: today's transaction is already verified/completed
    """
    try:
        trx_date = parse_iso_date(date)
    except ValueError:
        raise InvalidQuantityError(f"Invalid date '{date}'")

    lines = _normalize_lines(items, "product_id", "qty")
    if not lines:
        raise InvalidQuantityError("At least one item is required")
    for product_id, qty in lines:
        if qty <= 0:
            raise InvalidQuantityError(
                f"Quantity must be positive for product {product_id}",
                details={"product_id": product_id, "qty": qty},
            )
    planned = _merge_lines(lines)

    if actor_id is None:
        actor_id = supplier_id

    def _op():
        if not store_service.is_accepting_submissions(store_id):
            raise StoreClosedError("Store is not accepting deliveries right now")

        for product_id in planned:
            catalog_service.get_supplier_product(product_id, store_id, supplier_id)

        trx, created = find_or_create(
            lambda: _find_open_transaction(store_id, supplier_id, trx_date),
            lambda: DailyTransaction(
                store_id=store_id,
                supplier_id=supplier_id,
                date=trx_date,
                status=TRX_STATUS_DRAFT,
                total_items_in=0,
                total_items_sold=0,
                total_payout=0,
            ),
        )
        if trx.status != TRX_STATUS_DRAFT:
            raise InvalidStateError(
                f"Delivery for {trx_date.isoformat()} is already {trx.status}",
                details={"trx_id": trx.id, "status": trx.status},
            )

        by_product = {item.product_id: item for item in trx.items}
        old_lines = []
        new_lines = []
        for product_id, qty in planned.items():
            item = by_product.get(product_id)
            if item:
                old_lines.append({"product_id": product_id, "qty_planned": item.qty_planned})
                item.qty_planned += qty
            else:
                old_lines.append({"product_id": product_id, "qty_planned": 0})
                item = TransactionItem(
                    product_id=product_id,
                    qty_planned=qty,
                    qty_actual=0,
                    qty_returned=0,
                )
                trx.items.append(item)
            new_lines.append({"product_id": product_id, "qty_planned": item.qty_planned})

        old_total = trx.total_items_in
        trx.total_items_in = sum(item.qty_planned for item in trx.items)
        db.session.flush()

        audit_service.log_transaction_audit(
            trx.id,
            ACTION_CREATED if created else ACTION_ITEM_ADDED,
            actor_id,
            old_value=None if created else {"items": old_lines, "total_items_in": old_total},
            new_value={"status": trx.status, "items": new_lines, "total_items_in": trx.total_items_in},
        )

        db.session.commit()
        return trx

    trx = run_atomic(_op)
    notification_service.dispatch(
        trx.supplier_id,
        notification_service.EVENT_TRANSACTION_SUBMITTED,
        _event_payload(trx, total_items_in=trx.total_items_in),
    )
    return trx


def verify_delivery(
    trx_id: int,
    actuals,
    *,
    actor_id: int,
    admin_note: str | None = None,
) -> DailyTransaction:
    """
    Owner's count of what physically arrived (DRAFT -> VERIFIED).

    Items not listed are recorded as 0 received.

    Args:
        actuals: [(item_id, qty_actual)] or [{"id": ..., "qty_actual": ...}]

    Raises:
        NotFoundError: unknown transaction, or item not on it
        InvalidStateError: not in DRAFT
        InvalidQuantityError: negative qty_actual
    """
    counted = _index_lines(
        _normalize_lines(actuals, "id", "qty_actual", alt_id_key="item_id"),
        "item_id",
    )
    for item_id, qty in counted.items():
        if qty < 0:
            raise InvalidQuantityError(
                f"qty_actual cannot be negative (item {item_id})",
                details={"item_id": item_id, "qty_actual": qty},
            )

    def _op():
        trx = _load_for_update(trx_id)
        _require_transition(trx, TRX_STATUS_VERIFIED, "verify")

        items = {item.id: item for item in trx.items}
        unknown = sorted(set(counted) - set(items))
        if unknown:
            raise NotFoundError(
                f"Item {unknown[0]} is not on transaction {trx.id}",
                details={"item_ids": unknown},
            )

        old_status = trx.status
        for item in trx.items:
            item.qty_actual = counted.get(item.id, 0)

        trx.total_items_in = sum(item.qty_actual for item in trx.items)
        trx.status = TRX_STATUS_VERIFIED
        trx.verified_at = utcnow()
        trx.verified_by_actor_id = actor_id
        if admin_note is not None:
            trx.admin_note = admin_note
        db.session.flush()

        audit_service.log_transaction_audit(
            trx.id,
            ACTION_VERIFIED,
            actor_id,
            old_value={"status": old_status},
            new_value={
                "status": trx.status,
                "items": [{"id": i.id, "qty_actual": i.qty_actual} for i in trx.items],
                "total_items_in": trx.total_items_in,
            },
        )

        db.session.commit()
        return trx

    trx = run_atomic(_op)
    notification_service.dispatch(
        trx.supplier_id,
        notification_service.EVENT_TRANSACTION_VERIFIED,
        _event_payload(trx, total_items_in=trx.total_items_in),
    )
    return trx


def complete_delivery(trx_id: int, returns, *, actor_id: int) -> DailyTransaction:
    """
    Record unsold returns and fix the payout (VERIFIED -> COMPLETED).

    payout = sum(qty_sold * product.price_buy), prices read now. The
    supplier's reliability stats are updated in the same commit.

    Raises:
        NotFoundError: unknown transaction, or item not on it
        InvalidStateError: not in VERIFIED
        InvalidQuantityError: negative return, or more returned than arrived
    """
    returned = _index_lines(
        _normalize_lines(returns, "id", "qty_returned", alt_id_key="item_id"),
        "item_id",
    )
    for item_id, qty in returned.items():
        if qty < 0:
            raise InvalidQuantityError(
                f"qty_returned cannot be negative (item {item_id})",
                details={"item_id": item_id, "qty_returned": qty},
            )

    def _op():
        trx = _load_for_update(trx_id)
        _require_transition(trx, TRX_STATUS_COMPLETED, "complete")

        items = {item.id: item for item in trx.items}
        unknown = sorted(set(returned) - set(items))
        if unknown:
            raise NotFoundError(
                f"Item {unknown[0]} is not on transaction {trx.id}",
                details={"item_ids": unknown},
            )

        # Validate every line before touching any
        for item in trx.items:
            qty = returned.get(item.id, 0)
            if qty > item.qty_actual:
                raise InvalidQuantityError(
                    f"Returned quantity {qty} exceeds received quantity {item.qty_actual} (item {item.id})",
                    details={"item_id": item.id, "qty_returned": qty, "qty_actual": item.qty_actual},
                )

        lines = []
        total_sold = 0
        total_payout = 0
        for item in trx.items:
            item.qty_returned = returned.get(item.id, 0)
            product = catalog_service.get_product(item.product_id)
            line_payout = item.qty_sold * product.price_buy
            total_sold += item.qty_sold
            total_payout += line_payout
            lines.append({
                "id": item.id,
                "product_id": item.product_id,
                "qty_actual": item.qty_actual,
                "qty_returned": item.qty_returned,
                "qty_sold": item.qty_sold,
                "payout": line_payout,
            })

        old_status = trx.status
        trx.total_items_sold = total_sold
        trx.total_payout = total_payout
        trx.status = TRX_STATUS_COMPLETED
        trx.completed_at = utcnow()
        trx.completed_by_actor_id = actor_id
        db.session.flush()

        reliability_service.on_completed(
            trx.supplier_id,
            trx.store_id,
            planned_qty=sum(item.qty_planned for item in trx.items),
            actual_qty=sum(item.qty_actual for item in trx.items),
            sold_qty=total_sold,
            revenue=total_payout,
            actor_id=actor_id,
            commit=False,
        )

        audit_service.log_transaction_audit(
            trx.id,
            ACTION_COMPLETED,
            actor_id,
            old_value={"status": old_status},
            new_value={
                "status": trx.status,
                "items": lines,
                "total_items_sold": trx.total_items_sold,
                "total_payout": trx.total_payout,
            },
        )

        db.session.commit()
        return trx, lines

    trx, lines = run_atomic(_op)
    notification_service.dispatch(
        trx.supplier_id,
        notification_service.EVENT_TRANSACTION_COMPLETED,
        _event_payload(
            trx,
            items=lines,
            total_items_sold=trx.total_items_sold,
            total_payout=trx.total_payout,
        ),
    )
    return trx


def _is_supplier_caused(trx: DailyTransaction, actor_id: int) -> bool:
    # Cut-off expiry and supplier self-cancel count against the supplier
    return actor_id == SYSTEM_ACTOR_ID or actor_id == trx.supplier_id


def cancel_delivery(trx_id: int, reason: str | None, actor_id: int) -> DailyTransaction:
    """
    Cancel a DRAFT or VERIFIED transaction.

    actor_id SYSTEM_ACTOR_ID (cut-off sweep) or the supplier themself counts
    as a supplier-caused cancellation for reliability. Owner cancellations
    do not.

    Raises:
        NotFoundError: unknown transaction
        InvalidStateError: already completed or cancelled
    """
    def _op():
        trx = _load_for_update(trx_id)
        _require_transition(trx, TRX_STATUS_CANCELLED, "cancel")

        old_status = trx.status
        trx.status = TRX_STATUS_CANCELLED
        trx.cancel_reason = reason
        trx.cancelled_at = utcnow()
        trx.cancelled_by_actor_id = actor_id
        db.session.flush()

        if _is_supplier_caused(trx, actor_id):
            reliability_service.on_supplier_cancelled(
                trx.supplier_id,
                trx.store_id,
                actor_id=actor_id,
                commit=False,
            )

        audit_service.log_transaction_audit(
            trx.id,
            ACTION_CANCELLED,
            actor_id,
            old_value={"status": old_status},
            new_value={"status": trx.status},
            reason=reason,
        )

        db.session.commit()
        return trx

    trx = run_atomic(_op)
    notification_service.dispatch(
        trx.supplier_id,
        notification_service.EVENT_TRANSACTION_CANCELLED,
        _event_payload(trx, reason=reason),
    )
    return trx


def get_transaction(trx_id: int) -> DailyTransaction:
    trx = db.session.get(DailyTransaction, trx_id)
    if not trx:
        raise NotFoundError(f"Transaction {trx_id} not found", details={"trx_id": trx_id})
    return trx


def get_transaction_items(trx_id: int) -> list[TransactionItem]:
    get_transaction(trx_id)
    return (
        db.session.query(TransactionItem)
        .filter(TransactionItem.trx_id == trx_id)
        .order_by(TransactionItem.id.asc())
        .all()
    )


def list_store_transactions(
    store_id: int,
    *,
    status: str | None = None,
    date=None,
    limit: int = 200,
) -> list[DailyTransaction]:
    query = db.session.query(DailyTransaction).filter(DailyTransaction.store_id == store_id)
    if status:
        validate_status(status)
        query = query.filter(DailyTransaction.status == status)
    if date:
        query = query.filter(DailyTransaction.date == parse_iso_date(date))
    return (
        query.order_by(DailyTransaction.date.desc(), DailyTransaction.id.desc())
        .limit(limit)
        .all()
    )


def list_supplier_transactions(
    supplier_id: int,
    store_id: int,
    *,
    status: str | None = None,
    limit: int = 200,
) -> list[DailyTransaction]:
    query = db.session.query(DailyTransaction).filter(
        DailyTransaction.supplier_id == supplier_id,
        DailyTransaction.store_id == store_id,
    )
    if status:
        validate_status(status)
        query = query.filter(DailyTransaction.status == status)
    return (
        query.order_by(DailyTransaction.date.desc(), DailyTransaction.id.desc())
        .limit(limit)
        .all()
    )


def count_store_transactions_by_status(store_id: int, date=None) -> dict[str, int]:
    query = (
        db.session.query(DailyTransaction.status, func.count(DailyTransaction.id))
        .filter(DailyTransaction.store_id == store_id)
    )
    if date:
        query = query.filter(DailyTransaction.date == parse_iso_date(date))

    counts = {status: 0 for status in sorted(VALID_STATUSES)}
    for status, count in query.group_by(DailyTransaction.status).all():
        counts[status] = count
    counts["total"] = sum(counts.values())
    return counts
