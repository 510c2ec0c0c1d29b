"""
Unit tests for Celia's sync service.
"""

from datetime import timedelta

import pytest
from freezegun import freeze_time

from celia.config import config
from celia.services.errors import AuthenticationError, SyncInProgressError
from celia.services.sync_service import SyncService


class FakeZureoClient:
    """Stands in for ZureoClient; records how it was called."""

    def __init__(self, products=None, brands=None, error=None):
        self.products = products or []
        self.brands = brands or []
        self.error = error
        self.since = None

    def fetch_all_products(self, since=None, progress_callback=None, heartbeat=None):
        self.since = since
        if self.error:
            raise self.error
        if progress_callback:
            progress_callback(len(self.products))
        return self.products

    def fetch_brands(self):
        if self.error:
            raise self.error
        return self.brands

    def test_connection(self):
        if self.error:
            return {'success': False, 'error': str(self.error)}
        return {'success': True, 'message': 'ok'}


class SlowZureoClient(FakeZureoClient):
    """Fetch that lets the clock run, as a long rate-limited fetch would."""

    def __init__(self, products, db, frozen, steps):
        super().__init__(products)
        self.db = db
        self.frozen = frozen
        self.steps = steps
        self.rival_claims = []

    def fetch_all_products(self, since=None, progress_callback=None, heartbeat=None):
        for step in self.steps:
            self.frozen.tick(timedelta(minutes=step['minutes']))
            if step.get('heartbeat'):
                heartbeat()
            self.rival_claims.append(self.db.claim_sync_lease('products', 900))
        if progress_callback:
            progress_callback(len(self.products))
        return self.products


def make_service(db, client):
    return SyncService(db=db, client_factory=lambda: client, settings=config)


@pytest.mark.unit
@pytest.mark.celia
class TestProductSync:

    def test_ab1_end_to_end(self, db, ab1_product):
        service = make_service(db, FakeZureoClient([ab1_product]))

        summary = service.run_product_sync(force=True)

        assert summary['success'] is True
        assert summary['totalFetched'] == 1
        assert summary['totalWithStock'] == 1
        assert summary['totalUpserted'] == 1
        assert summary['productsWithPrice'] == 1
        assert summary['productsWithColor'] == 1
        assert summary['productsWithSize'] == 1
        assert summary['productsWithSubcategory'] == 1
        assert summary['malformed'] == 0
        assert summary['errors'] == 0
        assert summary['strategy'] == 'upsert'
        assert summary['syncTime'].endswith('Z')

        rows = db.get_rows_by_code('AB1')
        assert len(rows) == 1
        assert rows[0]['variant_key'] == '11'
        assert rows[0]['price'] == 122
        assert rows[0]['color'] == 'Negro'
        assert rows[0]['size'] == 'M'
        assert rows[0]['subcategory'] == 'Remeras'

        status = db.get_sync_status('products')
        assert status['status'] == 'completed'
        assert status['total_records'] == 1

    def test_single_key_attribute_product_end_to_end(self, db, rojo_product):
        summary = make_service(db, FakeZureoClient([rojo_product])).run_product_sync(force=True)

        rows = db.get_rows_by_code('AB1')
        assert summary['success'] is True
        assert summary['totalUpserted'] == 1
        assert [(r['zureo_variety_id'], r['price'], r['color'], r['size'], r['stock_quantity']) for r in rows] == [
            (1, 110, 'rojo', 'S', 5)
        ]

    def test_rerun_is_stable(self, db, ab1_product, simple_product):
        service = make_service(db, FakeZureoClient([ab1_product, simple_product]))

        service.run_product_sync(force=True)
        first_ids = {(r['zureo_code'], r['variant_key']): r['id'] for r in db.get_rows_by_code('AB1')}
        service.run_product_sync(force=True)
        second_ids = {(r['zureo_code'], r['variant_key']): r['id'] for r in db.get_rows_by_code('AB1')}

        assert first_ids == second_ids
        assert db.get_catalog_count() == 2

    def test_fresh_catalog_is_skipped(self, db, ab1_product):
        client = FakeZureoClient([ab1_product])
        service = make_service(db, client)

        with freeze_time('2025-01-15 10:00:00') as frozen:
            service.run_product_sync(force=True)
            frozen.move_to('2025-01-15 20:00:00')

            summary = service.run_product_sync()

            assert summary['skipped'] is True
            assert summary['lastSyncedAt'] == '2025-01-15T10:00:00Z'

            frozen.move_to('2025-01-16 11:00:00')
            summary = service.run_product_sync()

            assert 'skipped' not in summary
            assert summary['success'] is True

    def test_fetch_failure_marks_status_failed(self, db, ab1_product):
        make_service(db, FakeZureoClient([ab1_product])).run_product_sync(force=True)
        failing = make_service(db, FakeZureoClient(error=AuthenticationError(401, 'expired')))

        summary = failing.run_product_sync(force=True)

        assert summary['success'] is False
        assert summary['errorType'] == 'AuthenticationError'
        assert '401' in summary['error']

        status = db.get_sync_status('products')
        assert status['status'] == 'failed'
        assert status['total_records'] == 1
        assert db.get_catalog_count() == 1
        assert db.get_sync_history('products')[0]['status'] == 'failed'
        assert failing.is_running() is False

    def test_held_lease_raises_conflict(self, db, ab1_product):
        db.claim_sync_lease('products', 600)
        service = make_service(db, FakeZureoClient([ab1_product]))

        with pytest.raises(SyncInProgressError):
            service.run_product_sync(force=True)

        assert db.get_sync_history('products') == []

    def test_incremental_run(self, db, ab1_product, simple_product):
        make_service(db, FakeZureoClient([ab1_product, simple_product])).run_product_sync(force=True)
        last_synced = db.get_sync_status('products')['last_synced_at']
        client = FakeZureoClient([ab1_product])

        summary = make_service(db, client).run_product_sync(since_days=3)

        assert summary['success'] is True
        assert summary['incremental'] is True
        assert summary['deactivated'] == 0
        assert client.since is not None
        assert db.get_catalog_count() == 2
        assert db.get_sync_status('products')['last_synced_at'] == last_synced

    def test_full_run_deactivates_missing_products(self, db, ab1_product, simple_product):
        make_service(db, FakeZureoClient([ab1_product, simple_product])).run_product_sync(force=True)

        summary = make_service(db, FakeZureoClient([ab1_product])).run_product_sync(force=True)

        assert summary['deactivated'] == 1
        assert db.get_rows_by_code('GOR1') == []
        assert len(db.get_rows_by_code('GOR1', active_only=False)) == 1

    def test_replace_strategy(self, db, ab1_product):
        summary = make_service(db, FakeZureoClient([ab1_product])).run_product_sync(
            force=True, strategy='replace'
        )

        assert summary['strategy'] == 'replace'
        assert db.get_sync_history('products')[0]['strategy'] == 'replace'

    @pytest.mark.parametrize('kwargs', [
        {'strategy': 'merge'},
        {'strategy': 'replace', 'since_days': 2},
        {'since_days': 0},
    ])
    def test_invalid_options(self, db, kwargs):
        service = make_service(db, FakeZureoClient())

        with pytest.raises(ValueError):
            service.run_product_sync(force=True, **kwargs)

    def test_status_and_history(self, db, ab1_product):
        service = make_service(db, FakeZureoClient([ab1_product]))
        service.run_product_sync(force=True)

        status = service.get_status()

        assert status['status'] == 'completed'
        assert status['running'] is False
        assert status['fresh'] is True
        assert status['total_records'] == 1
        assert status['last_run_strategy'] == 'upsert'
        assert status['last_successful_sync_at'] is not None
        assert len(service.get_sync_history()) == 1


@pytest.mark.unit
@pytest.mark.celia
class TestRunLease:

    def test_long_fetch_keeps_its_lease(self, db, ab1_product):
        with freeze_time('2025-01-15 10:00:00') as frozen:
            client = SlowZureoClient([ab1_product], db, frozen, [
                {'minutes': 10, 'heartbeat': True},
                {'minutes': 10, 'heartbeat': True},
                {'minutes': 10, 'heartbeat': True},
            ])

            summary = make_service(db, client).run_product_sync(force=True)

        assert summary['success'] is True
        assert client.rival_claims == [None, None, None]
        assert db.get_sync_status('products')['status'] == 'completed'

    def test_run_that_lost_its_lease_leaves_new_owner_alone(self, db, ab1_product):
        with freeze_time('2025-01-15 10:00:00') as frozen:
            client = SlowZureoClient([ab1_product], db, frozen, [{'minutes': 16}])

            summary = make_service(db, client).run_product_sync(force=True)

            rival = client.rival_claims[0]
            status = db.get_sync_status('products')
            assert rival is not None
            assert summary['success'] is False
            assert summary['errorType'] == 'SyncInProgressError'
            assert status['status'] == 'in_progress'
            assert status['lease_owner'] == rival
            assert db.is_sync_running('products') is True
            assert db.get_sync_history('products')[0]['status'] == 'failed'
            assert db.get_catalog_count() == 0


@pytest.mark.unit
@pytest.mark.celia
class TestBrandSync:

    def test_brands_are_saved(self, db):
        client = FakeZureoClient(brands=[
            {'id': 1, 'nombre': 'Acme', 'fecha_modificado': '2025-01-01'},
            {'id': 2, 'nombre': 'Niña Bonita'},
            {'id': None, 'nombre': 'Broken'},
        ])

        summary = make_service(db, client).run_brand_sync()

        assert summary['success'] is True
        assert summary['totalBrands'] == 3
        assert summary['savedBrands'] == 2
        assert db.get_brand_count() == 2
        assert db.get_sync_status('brands')['status'] == 'completed'

    def test_brand_sync_failure(self, db):
        client = FakeZureoClient(error=AuthenticationError(403, 'denied'))

        summary = make_service(db, client).run_brand_sync()

        assert summary['success'] is False
        assert summary['errorType'] == 'AuthenticationError'
        assert db.get_sync_status('brands')['status'] == 'failed'


@pytest.mark.unit
@pytest.mark.celia
class TestConnectionCheck:

    def test_reports_client_result(self, db):
        assert make_service(db, FakeZureoClient()).test_connection()['success'] is True

        failing = make_service(db, FakeZureoClient(error=AuthenticationError(401, 'nope')))
        result = failing.test_connection()

        assert result['success'] is False
        assert '401' in result['error']
