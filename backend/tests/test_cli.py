"""CLI command tests (flask cutoff / reliability / system)."""

from consign.extensions import db
from consign.models import DailyTransaction, Store
from consign.services import lifecycle_service

from conftest import OWNER_ID, SUPPLIER_ID, TRX_DATE


class TestCutoffCommands:
    def test_sweep_with_fixed_instant(self, app, store, product):
        trx = lifecycle_service.submit_delivery(store.id, SUPPLIER_ID, TRX_DATE, [(product.id, 3)])
        trx_id = trx.id

        result = app.test_cli_runner().invoke(args=['cutoff', 'sweep', '--now', '2024-01-15T11:31:00Z'])

        assert result.exit_code == 0, result.output
        assert 'Transactions cancelled: 1' in result.output
        assert f'store {store.id}: 1 cancelled (suppliers: {SUPPLIER_ID})' in result.output
        assert db.session.get(DailyTransaction, trx_id).status == 'cancelled'

    def test_sweep_rejects_bad_instant(self, app, db_session):
        result = app.test_cli_runner().invoke(args=['cutoff', 'sweep', '--now', 'yesterday'])

        assert result.exit_code != 0
        assert 'ISO-8601' in result.output

    def test_status(self, app, store):
        result = app.test_cli_runner().invoke(
            args=['cutoff', 'status', '--store-id', str(store.id), '--now', '2024-01-15T11:10:00Z'],
        )

        assert result.exit_code == 0, result.output
        assert '11:00 + 30 min = 11:30' in result.output
        assert 'Minutes until:    20' in result.output

    def test_status_unknown_store(self, app, db_session):
        result = app.test_cli_runner().invoke(args=['cutoff', 'status', '--store-id', '999'])

        assert 'FAIL' in result.output


class TestReliabilityCommands:
    def test_no_show_then_show(self, app, store):
        runner = app.test_cli_runner()

        result = runner.invoke(args=[
            'reliability', 'no-show',
            '--supplier-id', str(SUPPLIER_ID), '--store-id', str(store.id), '--actor-id', str(OWNER_ID),
        ])
        assert result.exit_code == 0, result.output
        assert f'PASS Supplier {SUPPLIER_ID}: no-shows 1, score 0' in result.output

        result = runner.invoke(args=['reliability', 'show', '--store-id', str(store.id)])
        assert result.exit_code == 0, result.output
        assert str(SUPPLIER_ID) in result.output


class TestSystemCommands:
    def test_seed_demo_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        first = runner.invoke(args=['system', 'seed-demo'])
        second = runner.invoke(args=['system', 'seed-demo'])

        assert first.exit_code == 0, first.output
        assert 'PASS Created store' in first.output
        assert 'SKIP' in second.output
        assert db.session.query(Store).filter_by(slug='demo-lapak').count() == 1
