"""
Delivery lifecycle tests.

Covers:
- Submission accumulates into one draft per (store, supplier, day)
- draft -> verified -> completed with quantity and payout arithmetic
- Terminal states never change
- Cancellation penalty attribution
- Audit and notification side effects
"""

import pytest
from sqlalchemy.orm.attributes import set_committed_value

from consign.errors import InvalidQuantityError, InvalidStateError, NotFoundError, StoreClosedError
from consign.extensions import db
from consign.models import AuditLog, DailyTransaction, SupplierStats, TransactionItem
from consign.services import lifecycle_service, store_service
from consign.services.lifecycle_service import can_transition

from conftest import OWNER_ID, SUPPLIER_ID, OTHER_SUPPLIER_ID, TRX_DATE, make_product


def _audit_actions(trx_id):
    rows = (
        db.session.query(AuditLog)
        .filter_by(entity_type="transaction", entity_id=trx_id)
        .order_by(AuditLog.id.asc())
        .all()
    )
    return [row.action for row in rows]


def _verified(product, planned=10, actual=8):
    trx = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, planned)])
    item = trx.items[0]
    return lifecycle_service.verify_delivery(trx.id, [(item.id, actual)], actor_id=OWNER_ID)


class TestStateMachine:
    def test_allowed_transitions(self):
        assert can_transition("draft", "verified")
        assert can_transition("draft", "cancelled")
        assert can_transition("verified", "completed")
        assert can_transition("verified", "cancelled")

    def test_forbidden_transitions(self):
        assert not can_transition("draft", "completed")
        assert not can_transition("verified", "draft")
        assert not can_transition("completed", "cancelled")
        assert not can_transition("cancelled", "draft")
        assert not can_transition("verified", "verified")

    def test_unknown_status_rejected(self):
        with pytest.raises(InvalidStateError):
            can_transition("draft", "posted")


class TestSubmitDelivery:
    def test_first_submission_creates_draft(self, product, notifier):
        trx = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 10)])

        assert trx.status == "draft"
        assert trx.date == TRX_DATE
        assert trx.total_items_in == 10
        assert trx.total_payout == 0
        assert len(trx.items) == 1
        item = trx.items[0]
        assert (item.qty_planned, item.qty_actual, item.qty_returned) == (10, 0, 0)
        assert _audit_actions(trx.id) == ["transaction_created"]
        assert notifier.kinds(SUPPLIER_ID) == ["transaction_submitted"]

    def test_resubmission_accumulates_into_one_item(self, product):
        """Scenario: 5 then 3 of the same product -> one item planned 8."""
        first = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 5)])
        second = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 3)])

        assert first.id == second.id
        items = db.session.query(TransactionItem).filter_by(trx_id=first.id).all()
        assert len(items) == 1
        assert items[0].qty_planned == 8
        assert second.total_items_in == 8
        assert db.session.query(DailyTransaction).count() == 1
        assert _audit_actions(first.id) == ["transaction_created", "item_added"]

    def test_dict_lines_and_multiple_products(self, product, second_product):
        trx = lifecycle_service.submit_delivery(
            product.store_id,
            SUPPLIER_ID,
            "2024-01-15",
            [{"product_id": product.id, "qty": 4}, {"product_id": second_product.id, "qty": 6}],
        )
        assert sorted(i.qty_planned for i in trx.items) == [4, 6]
        assert trx.total_items_in == 10

    def test_other_supplier_gets_own_transaction(self, store, product):
        other_product = make_product(db.session, store, OTHER_SUPPLIER_ID, name="Onde-onde")
        mine = lifecycle_service.submit_delivery(store.id, SUPPLIER_ID, TRX_DATE, [(product.id, 1)])
        theirs = lifecycle_service.submit_delivery(store.id, OTHER_SUPPLIER_ID, TRX_DATE, [(other_product.id, 1)])
        assert mine.id != theirs.id

    def test_empty_items_rejected(self, product):
        with pytest.raises(InvalidQuantityError):
            lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [])

    @pytest.mark.parametrize("qty", [0, -2])
    def test_non_positive_qty_rejected(self, product, qty):
        with pytest.raises(InvalidQuantityError):
            lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, qty)])
        assert db.session.query(DailyTransaction).count() == 0

    @pytest.mark.parametrize("qty", [2.9, "2.5", "3x", True, "--3"])
    def test_fractional_or_malformed_qty_rejected(self, product, qty):
        """2.9 must not be truncated to 2."""
        with pytest.raises(InvalidQuantityError):
            lifecycle_service.submit_delivery(
                product.store_id, SUPPLIER_ID, TRX_DATE, [{"product_id": product.id, "qty": qty}]
            )
        assert db.session.query(DailyTransaction).count() == 0

    def test_whole_number_strings_and_floats_accepted(self, product):
        trx = lifecycle_service.submit_delivery(
            product.store_id, SUPPLIER_ID, TRX_DATE, [{"product_id": str(product.id), "qty": "4"}]
        )
        trx = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 4.0)])
        assert trx.items[0].qty_planned == 8

    def test_unapproved_product_not_found(self, pending_product):
        with pytest.raises(NotFoundError):
            lifecycle_service.submit_delivery(
                pending_product.store_id, SUPPLIER_ID, TRX_DATE, [(pending_product.id, 1)]
            )

    def test_other_suppliers_product_not_found(self, store, product):
        with pytest.raises(NotFoundError):
            lifecycle_service.submit_delivery(store.id, OTHER_SUPPLIER_ID, TRX_DATE, [(product.id, 1)])
        assert db.session.query(DailyTransaction).count() == 0

    def test_closed_store_rejects(self, store, product):
        store_service.set_store_status(store.id, actor_id=OWNER_ID, is_open=False)
        with pytest.raises(StoreClosedError):
            lifecycle_service.submit_delivery(store.id, SUPPLIER_ID, TRX_DATE, [(product.id, 1)])

    def test_emergency_mode_rejects(self, store, product):
        store_service.set_store_status(store.id, actor_id=OWNER_ID, emergency_mode=True, reason="flood")
        with pytest.raises(StoreClosedError):
            lifecycle_service.submit_delivery(store.id, SUPPLIER_ID, TRX_DATE, [(product.id, 1)])

    def test_submission_after_verification_rejected(self, product):
        trx = _verified(product)
        with pytest.raises(InvalidStateError):
            lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 1)])
        assert db.session.get(DailyTransaction, trx.id).status == "verified"

    def test_cancelled_day_allows_new_draft(self, product):
        old = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 2)])
        lifecycle_service.cancel_delivery(old.id, "wrong products", OWNER_ID)

        fresh = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 4)])

        assert fresh.id != old.id
        assert fresh.status == "draft"
        assert fresh.total_items_in == 4


class TestVerifyDelivery:
    def test_verify_sets_actuals_and_status(self, product, notifier):
        trx = _verified(product, planned=10, actual=8)

        assert trx.status == "verified"
        assert trx.total_items_in == 8
        assert trx.items[0].qty_actual == 8
        assert trx.items[0].qty_planned == 10
        assert trx.verified_by_actor_id == OWNER_ID
        assert trx.verified_at is not None
        assert _audit_actions(trx.id) == ["transaction_created", "transaction_verified"]
        assert notifier.kinds(SUPPLIER_ID) == ["transaction_submitted", "transaction_verified"]

    def test_unlisted_items_keep_zero(self, product, second_product):
        trx = lifecycle_service.submit_delivery(
            product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 5), (second_product.id, 5)]
        )
        first = next(i for i in trx.items if i.product_id == product.id)

        trx = lifecycle_service.verify_delivery(trx.id, [(first.id, 5)], actor_id=OWNER_ID, admin_note="Risoles missing")

        by_product = {i.product_id: i for i in trx.items}
        assert by_product[product.id].qty_actual == 5
        assert by_product[second_product.id].qty_actual == 0
        assert trx.total_items_in == 5
        assert trx.admin_note == "Risoles missing"

    def test_negative_actual_rejected(self, product):
        trx = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 5)])
        with pytest.raises(InvalidQuantityError):
            lifecycle_service.verify_delivery(trx.id, [(trx.items[0].id, -1)], actor_id=OWNER_ID)

    def test_fractional_actual_rejected(self, product):
        trx = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 5)])
        with pytest.raises(InvalidQuantityError):
            lifecycle_service.verify_delivery(trx.id, [{"id": trx.items[0].id, "qty_actual": 4.5}], actor_id=OWNER_ID)
        assert db.session.get(DailyTransaction, trx.id).status == "draft"

    def test_foreign_item_not_found(self, product):
        trx = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 5)])
        with pytest.raises(NotFoundError):
            lifecycle_service.verify_delivery(trx.id, [(999999, 1)], actor_id=OWNER_ID)
        assert db.session.get(DailyTransaction, trx.id).status == "draft"

    def test_verify_twice_rejected(self, product):
        trx = _verified(product)
        with pytest.raises(InvalidStateError):
            lifecycle_service.verify_delivery(trx.id, [], actor_id=OWNER_ID)

    def test_verify_cancelled_rejected(self, product):
        trx = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 5)])
        lifecycle_service.cancel_delivery(trx.id, None, OWNER_ID)
        with pytest.raises(InvalidStateError):
            lifecycle_service.verify_delivery(trx.id, [], actor_id=OWNER_ID)

    def test_unknown_transaction(self, db_session):
        with pytest.raises(NotFoundError):
            lifecycle_service.verify_delivery(424242, [], actor_id=OWNER_ID)


class TestCompleteDelivery:
    def test_payout_scenario(self, product, notifier):
        """10 planned, 8 arrived, 2 returned at price_buy 1000 -> 6 sold, payout 6000."""
        trx = _verified(product, planned=10, actual=8)
        item = trx.items[0]

        trx = lifecycle_service.complete_delivery(trx.id, [(item.id, 2)], actor_id=OWNER_ID)

        item = trx.items[0]
        assert trx.status == "completed"
        assert item.qty_returned == 2
        assert item.qty_sold == 6
        assert trx.total_items_sold == 6
        assert trx.total_payout == 6000
        assert trx.completed_by_actor_id == OWNER_ID
        assert _audit_actions(trx.id) == [
            "transaction_created",
            "transaction_verified",
            "transaction_completed",
        ]

        stats = db.session.query(SupplierStats).filter_by(supplier_id=SUPPLIER_ID, store_id=product.store_id).one()
        assert stats.total_transactions == 1
        assert stats.completed_transactions == 1
        assert stats.total_planned_qty == 10
        assert stats.total_actual_qty == 8
        assert stats.total_sold_qty == 6
        assert stats.total_revenue == 6000
        assert stats.average_accuracy == 80
        assert stats.reliability_score == 100

        completed_events = [p for uid, kind, p in notifier.events if kind == "transaction_completed"]
        assert completed_events[0]["total_payout"] == 6000
        assert completed_events[0]["items"][0]["qty_sold"] == 6

    def test_quantity_conservation(self, product, second_product):
        trx = lifecycle_service.submit_delivery(
            product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 7), (second_product.id, 3)]
        )
        lines = [(i.id, 3 if i.product_id == product.id else 2) for i in trx.items]
        trx = lifecycle_service.verify_delivery(trx.id, lines, actor_id=OWNER_ID)
        returns = [(i.id, 1) for i in trx.items]
        trx = lifecycle_service.complete_delivery(trx.id, returns, actor_id=OWNER_ID)

        for item in trx.items:
            assert item.qty_sold + item.qty_returned == item.qty_actual
        assert trx.total_items_sold == sum(i.qty_sold for i in trx.items)
        # 2 sold at 1000 + 1 sold at 2500
        assert trx.total_payout == 4500

    def test_unlisted_items_return_zero(self, product):
        trx = _verified(product, planned=5, actual=5)
        trx = lifecycle_service.complete_delivery(trx.id, [], actor_id=OWNER_ID)
        assert trx.total_items_sold == 5
        assert trx.total_payout == 5000

    def test_over_return_rejected_without_mutation(self, product):
        """Returned more than arrived: error, still verified, nothing recorded."""
        trx = _verified(product, planned=10, actual=8)
        item_id = trx.items[0].id

        with pytest.raises(InvalidQuantityError):
            lifecycle_service.complete_delivery(trx.id, [(item_id, 9)], actor_id=OWNER_ID)

        trx = db.session.get(DailyTransaction, trx.id)
        assert trx.status == "verified"
        assert trx.total_payout == 0
        assert db.session.get(TransactionItem, item_id).qty_returned == 0
        assert db.session.query(SupplierStats).count() == 0

    def test_fractional_return_rejected(self, product):
        trx = _verified(product, planned=10, actual=8)
        item_id = trx.items[0].id
        with pytest.raises(InvalidQuantityError):
            lifecycle_service.complete_delivery(trx.id, [(item_id, 1.5)], actor_id=OWNER_ID)
        assert db.session.get(DailyTransaction, trx.id).status == "verified"
        assert db.session.get(TransactionItem, item_id).qty_returned == 0

    def test_negative_return_rejected(self, product):
        trx = _verified(product)
        with pytest.raises(InvalidQuantityError):
            lifecycle_service.complete_delivery(trx.id, [(trx.items[0].id, -1)], actor_id=OWNER_ID)

    def test_complete_draft_rejected(self, product):
        trx = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 5)])
        with pytest.raises(InvalidStateError):
            lifecycle_service.complete_delivery(trx.id, [], actor_id=OWNER_ID)

    def test_price_read_at_completion(self, product):
        trx = _verified(product, planned=4, actual=4)
        product.price_buy = 1200
        db.session.commit()

        trx = lifecycle_service.complete_delivery(trx.id, [], actor_id=OWNER_ID)
        assert trx.total_payout == 4800

    def test_completed_is_terminal(self, product):
        trx = _verified(product)
        trx = lifecycle_service.complete_delivery(trx.id, [], actor_id=OWNER_ID)

        with pytest.raises(InvalidStateError):
            lifecycle_service.cancel_delivery(trx.id, "too late", OWNER_ID)
        with pytest.raises(InvalidStateError):
            lifecycle_service.verify_delivery(trx.id, [], actor_id=OWNER_ID)
        assert db.session.get(DailyTransaction, trx.id).status == "completed"


class TestCancelDelivery:
    def test_owner_cancel_has_no_penalty(self, product, notifier):
        trx = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 5)])
        trx = lifecycle_service.cancel_delivery(trx.id, "duplicate", OWNER_ID)

        assert trx.status == "cancelled"
        assert trx.cancel_reason == "duplicate"
        assert trx.cancelled_by_actor_id == OWNER_ID
        assert trx.cancelled_at is not None
        assert db.session.query(SupplierStats).count() == 0
        assert notifier.kinds(SUPPLIER_ID)[-1] == "transaction_cancelled"

        entry = (
            db.session.query(AuditLog)
            .filter_by(entity_type="transaction", entity_id=trx.id, action="transaction_cancelled")
            .one()
        )
        assert entry.reason == "duplicate"
        assert entry.actor_id == OWNER_ID
        assert entry.old_value == {"status": "draft"}

    def test_supplier_self_cancel_counts(self, product):
        trx = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 5)])
        lifecycle_service.cancel_delivery(trx.id, "sick", SUPPLIER_ID)

        stats = db.session.query(SupplierStats).filter_by(supplier_id=SUPPLIER_ID).one()
        assert stats.cancelled_by_supplier == 1
        assert stats.total_transactions == 1
        assert stats.reliability_score == 0

    def test_verified_can_be_cancelled(self, product):
        trx = _verified(product)
        trx = lifecycle_service.cancel_delivery(trx.id, "spoiled", OWNER_ID)
        assert trx.status == "cancelled"
        assert trx.total_payout == 0

    def test_cancel_twice_rejected(self, product):
        trx = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 5)])
        lifecycle_service.cancel_delivery(trx.id, None, OWNER_ID)
        with pytest.raises(InvalidStateError):
            lifecycle_service.cancel_delivery(trx.id, None, OWNER_ID)


class TestSideEffects:
    def test_notifier_failure_keeps_change(self, product, notifier):
        notifier.fail = True
        trx = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 5)])

        assert db.session.get(DailyTransaction, trx.id).status == "draft"
        assert notifier.events == []

    def test_version_increments_per_transition(self, product):
        trx = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 5)])
        v1 = trx.version_id
        trx = lifecycle_service.verify_delivery(trx.id, [(trx.items[0].id, 5)], actor_id=OWNER_ID)
        assert trx.version_id > v1


class TestConcurrentChanges:
    def test_lost_insert_rereads_open_draft(self, product, monkeypatch):
        """Two first submissions race: the loser's insert hits the open-day index and adds to the winner's draft."""
        winner = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 5)])
        winner_id = winner.id

        real_find = lifecycle_service._find_open_transaction
        calls = []

        def find_after_race(store_id, supplier_id, trx_date):
            calls.append(1)
            if len(calls) == 1:
                # Looked before the winner committed
                return None
            return real_find(store_id, supplier_id, trx_date)

        monkeypatch.setattr(lifecycle_service, "_find_open_transaction", find_after_race)

        trx = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 3)])

        assert len(calls) == 2
        assert trx.id == winner_id
        assert db.session.query(DailyTransaction).count() == 1
        assert db.session.query(TransactionItem).filter_by(trx_id=winner_id).one().qty_planned == 8
        assert _audit_actions(winner_id) == ["transaction_created", "item_added"]

    def test_verify_loses_to_committed_cancel(self, product, monkeypatch):
        """A verify holding a stale version is retried, sees the cancel and refuses."""
        trx = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 5)])
        trx_id, item_id = trx.id, trx.items[0].id

        real_load = lifecycle_service._load_for_update
        calls = []

        def load_then_lose_race(load_id):
            calls.append(1)
            loaded = real_load(load_id)
            if len(calls) > 1:
                return loaded

            stale_version = loaded.version_id
            db.session.execute(
                db.text(
                    "UPDATE daily_transactions SET status = 'cancelled', version_id = version_id + 1 "
                    "WHERE id = :id"
                ),
                {"id": load_id},
            )
            db.session.commit()
            # What this caller read before the other writer committed
            set_committed_value(loaded, "status", "draft")
            set_committed_value(loaded, "version_id", stale_version)
            return loaded

        monkeypatch.setattr(lifecycle_service, "_load_for_update", load_then_lose_race)

        with pytest.raises(InvalidStateError):
            lifecycle_service.verify_delivery(trx_id, [(item_id, 5)], actor_id=OWNER_ID)

        assert len(calls) == 2
        assert db.session.get(DailyTransaction, trx_id).status == "cancelled"
        assert db.session.get(TransactionItem, item_id).qty_actual == 0
        assert "transaction_verified" not in _audit_actions(trx_id)


class TestReads:
    def test_listing_and_counts(self, store, product):
        draft = lifecycle_service.submit_delivery(store.id, SUPPLIER_ID, TRX_DATE, [(product.id, 1)])
        other = make_product(db.session, store, OTHER_SUPPLIER_ID, name="Lemper")
        cancelled = lifecycle_service.submit_delivery(store.id, OTHER_SUPPLIER_ID, TRX_DATE, [(other.id, 1)])
        lifecycle_service.cancel_delivery(cancelled.id, None, OWNER_ID)

        all_rows = lifecycle_service.list_store_transactions(store.id)
        drafts = lifecycle_service.list_store_transactions(store.id, status="draft")
        mine = lifecycle_service.list_supplier_transactions(SUPPLIER_ID, store.id)
        counts = lifecycle_service.count_store_transactions_by_status(store.id, TRX_DATE)

        assert {t.id for t in all_rows} == {draft.id, cancelled.id}
        assert [t.id for t in drafts] == [draft.id]
        assert [t.id for t in mine] == [draft.id]
        assert counts["draft"] == 1
        assert counts["cancelled"] == 1
        assert counts["completed"] == 0
        assert counts["total"] == 2

    def test_get_transaction_items(self, product):
        trx = lifecycle_service.submit_delivery(product.store_id, SUPPLIER_ID, TRX_DATE, [(product.id, 3)])
        items = lifecycle_service.get_transaction_items(trx.id)
        assert [i.product_id for i in items] == [product.id]

        with pytest.raises(NotFoundError):
            lifecycle_service.get_transaction(999999)
