"""
Supplier reliability tests.

Covers:
- Score and accuracy formulas (rounding, clamping)
- Event increments (completion, no-show, supplier cancellation)
- Bounds after every event
- Privacy of the score on supplier-facing reads
"""

import pytest

from consign.extensions import db
from consign.models import AuditLog, SupplierStats
from consign.models.reliability import PRIVATE_STATS_FIELDS
from consign.services import reliability_service
from consign.services.concurrency import find_or_create
from consign.services.reliability_service import compute_average_accuracy, compute_reliability_score

from conftest import OWNER_ID, SUPPLIER_ID, OTHER_SUPPLIER_ID


def _complete(store_id, supplier_id=SUPPLIER_ID, planned=10, actual=10, sold=8, revenue=8000):
    return reliability_service.on_completed(
        supplier_id,
        store_id,
        planned_qty=planned,
        actual_qty=actual,
        sold_qty=sold,
        revenue=revenue,
        actor_id=OWNER_ID,
    )


class TestFormulas:
    def test_no_history_is_perfect(self):
        assert compute_reliability_score(0, 0, 0, 0) == 100

    def test_penalties(self):
        # 80% completion - 10 per no-show - 5 per cancellation
        assert compute_reliability_score(10, 8, 1, 1) == 65

    def test_clamped_at_zero(self):
        assert compute_reliability_score(5, 0, 5, 0) == 0

    def test_rounds_half_up(self):
        assert compute_reliability_score(8, 7, 0, 0) == 88

    def test_accuracy(self):
        assert compute_average_accuracy(8, 10) == 80
        assert compute_average_accuracy(0, 0) == 100
        assert compute_average_accuracy(12, 10) == 100
        assert compute_average_accuracy(0, 10) == 0


class TestStatsLifecycle:
    def test_lazy_creation_with_defaults(self, store):
        stats = reliability_service.get_or_create_stats(SUPPLIER_ID, store.id)
        again = reliability_service.get_or_create_stats(SUPPLIER_ID, store.id)

        assert stats.id == again.id
        assert stats.total_transactions == 0
        assert stats.reliability_score == 100
        assert stats.average_accuracy == 100
        assert db.session.query(SupplierStats).count() == 1

    def test_find_or_create_recovers_from_lost_insert(self, store):
        """A concurrent insert of the same key is re-read instead of failing."""
        existing = reliability_service.get_or_create_stats(SUPPLIER_ID, store.id)
        calls = []

        def lookup():
            calls.append(1)
            if len(calls) == 1:
                return None
            return db.session.query(SupplierStats).filter_by(supplier_id=SUPPLIER_ID, store_id=store.id).first()

        stats, created = find_or_create(lookup, lambda: SupplierStats(supplier_id=SUPPLIER_ID, store_id=store.id))

        assert created is False
        assert stats.id == existing.id
        assert len(calls) == 2

    def test_on_completed_accumulates(self, store):
        _complete(store.id, planned=10, actual=8, sold=6, revenue=6000)
        stats = _complete(store.id, planned=10, actual=10, sold=10, revenue=10000)

        assert stats.total_transactions == 2
        assert stats.completed_transactions == 2
        assert stats.total_planned_qty == 20
        assert stats.total_actual_qty == 18
        assert stats.total_sold_qty == 16
        assert stats.total_revenue == 16000
        assert stats.average_accuracy == 90
        assert stats.reliability_score == 100
        assert stats.last_transaction_at is not None

    def test_no_show_after_completions(self, store):
        for _ in range(3):
            _complete(store.id)
        stats = reliability_service.on_no_show(SUPPLIER_ID, store.id, actor_id=OWNER_ID)

        # 3/4 completed = 75, minus 10
        assert stats.no_show_count == 1
        assert stats.total_transactions == 4
        assert stats.reliability_score == 65

    def test_supplier_cancel(self, store):
        _complete(store.id)
        stats = reliability_service.on_supplier_cancelled(SUPPLIER_ID, store.id)

        # 1/2 completed = 50, minus 5
        assert stats.cancelled_by_supplier == 1
        assert stats.reliability_score == 45

    def test_scores_stay_in_bounds(self, store):
        events = ["no_show", "complete", "cancel", "no_show", "no_show", "complete", "cancel"] * 3
        for event in events:
            if event == "complete":
                stats = _complete(store.id, planned=5, actual=9)
            elif event == "no_show":
                stats = reliability_service.on_no_show(SUPPLIER_ID, store.id)
            else:
                stats = reliability_service.on_supplier_cancelled(SUPPLIER_ID, store.id)
            assert 0 <= stats.reliability_score <= 100
            assert 0 <= stats.average_accuracy <= 100

    def test_each_event_is_audited(self, store):
        stats = reliability_service.on_no_show(SUPPLIER_ID, store.id, actor_id=OWNER_ID)

        entries = db.session.query(AuditLog).filter_by(entity_type="supplier_stats", entity_id=stats.id).all()
        assert [e.action for e in entries] == ["stats_updated"]
        assert entries[0].actor_id == OWNER_ID
        assert entries[0].old_value["no_show_count"] == 0
        assert entries[0].new_value["no_show_count"] == 1


class TestReads:
    def test_store_listing_ordered_by_score(self, store):
        _complete(store.id, supplier_id=SUPPLIER_ID)
        reliability_service.on_no_show(OTHER_SUPPLIER_ID, store.id)

        rows = reliability_service.list_store_reliability(store.id)
        low = reliability_service.get_low_reliability_suppliers(store.id)

        assert [r.supplier_id for r in rows] == [SUPPLIER_ID, OTHER_SUPPLIER_ID]
        assert [r.supplier_id for r in low] == [OTHER_SUPPLIER_ID]

    @pytest.mark.parametrize("field", PRIVATE_STATS_FIELDS)
    def test_supplier_summary_hides_private_fields(self, store, field):
        _complete(store.id)

        summary = reliability_service.get_supplier_summary(SUPPLIER_ID, store.id)
        owner_view = reliability_service.get_supplier_reliability(SUPPLIER_ID, store.id).to_dict(include_private=True)

        assert field not in summary
        assert field in owner_view
        assert summary["completed_transactions"] == 1

    def test_summary_for_unknown_supplier_has_defaults(self, store):
        summary = reliability_service.get_supplier_summary(99, store.id)
        assert summary["total_transactions"] == 0
        assert "reliability_score" not in summary
