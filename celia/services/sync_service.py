"""
Sync Service

Runs the Zureo -> catalog pipeline: claim the run lease, fetch every page,
flatten products into catalog rows, reconcile them into the local table and
record the outcome in sync_status and sync_history.
"""

import logging
from datetime import timedelta
from typing import Dict, Any, List, Optional, Callable

from celia.config import config
from celia.database.db import get_db, parse_iso, utc_now, utc_now_iso
from celia.services.categories import CategoryMapper, load_synonyms
from celia.services.errors import SyncInProgressError
from celia.services.flattener import flatten_products, slugify
from celia.services.reconciler import Reconciler, STRATEGIES
from celia.services.zureo_client import ZureoClient, create_zureo_client

logger = logging.getLogger(__name__)

PRODUCTS = 'products'
BRANDS = 'brands'


class SyncService:
    """
    Service for synchronizing the Zureo catalog into the local database.

    All run state lives in the database so that several workers (or the
    scheduler and an HTTP trigger) see the same lease and status.
    """

    def __init__(self, db=None, client_factory: Callable[[], ZureoClient] = None, settings=None):
        self._db = db
        self.settings = settings or config
        self.client_factory = client_factory or (lambda: create_zureo_client(self.settings))

    @property
    def db(self):
        if self._db is None:
            self._db = get_db()
        return self._db

    def _build_mapper(self) -> CategoryMapper:
        return CategoryMapper(
            self.db.get_subcategory_names(),
            load_synonyms(self.settings.synonyms_file)
        )

    def _lease_seconds(self) -> int:
        return int(self.settings.sync_lease_minutes * 60)

    def _renew_lease(self, sync_type: str, owner: str):
        """Extend the run lease; stop the run if another one has taken it over"""
        if not self.db.renew_sync_lease(sync_type, owner, self._lease_seconds()):
            raise SyncInProgressError(f"Lost the {sync_type} sync lease to another run")

    def is_fresh(self) -> bool:
        """True when the last full product sync finished within max_age_hours"""
        status = self.db.get_sync_status(PRODUCTS)
        if not status or not status.get('last_synced_at'):
            return False
        last_synced = parse_iso(status['last_synced_at'])
        return utc_now() - last_synced < timedelta(hours=self.settings.sync_max_age_hours)

    def is_running(self) -> bool:
        """Check if a product sync currently holds the lease"""
        return self.db.is_sync_running(PRODUCTS)

    def get_status(self) -> Dict[str, Any]:
        """Current sync status merged with the latest history entry"""
        status = self.db.get_sync_status(PRODUCTS) or {}
        history = self.db.get_sync_history(PRODUCTS, limit=1)
        latest = history[0] if history else {}
        last_successful = self.db.get_last_successful_sync(PRODUCTS)

        return {
            'status': status.get('status', 'idle'),
            'running': self.is_running(),
            'fresh': self.is_fresh(),
            'last_synced_at': status.get('last_synced_at'),
            'total_records': status.get('total_records', 0),
            'last_error': status.get('error_message'),
            'last_run_started_at': latest.get('started_at'),
            'last_run_finished_at': latest.get('finished_at'),
            'last_run_strategy': latest.get('strategy'),
            'last_successful_sync_at': last_successful.get('finished_at') if last_successful else None,
        }

    def get_sync_history(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Get recent sync history from database"""
        return self.db.get_sync_history(limit=limit)

    def test_connection(self) -> Dict[str, Any]:
        """Check that Celia can log in to Zureo with the configured credentials"""
        return self.client_factory().test_connection()

    def run_product_sync(
        self,
        force: bool = False,
        strategy: Optional[str] = None,
        since_days: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Run a product sync from Zureo.

        Args:
            force: Run even when the catalog is still fresh
            strategy: 'upsert' or 'replace' (defaults to config)
            since_days: Only fetch products modified in the last N days.
                Incremental runs always upsert and never deactivate rows.

        Returns:
            Run summary dict. Fetch and auth failures are reported with
            success False rather than raised.

        Raises:
            ValueError: unknown strategy, or replace with since_days
            SyncInProgressError: another run holds the lease
        """
        strategy = strategy or self.settings.sync_strategy
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown strategy '{strategy}', expected one of {', '.join(STRATEGIES)}")

        incremental = since_days is not None
        if incremental:
            if since_days < 1:
                raise ValueError("since_days must be at least 1")
            if strategy == 'replace':
                raise ValueError("Incremental syncs can only use the upsert strategy")

        sync_time = utc_now_iso()

        if not force and not incremental and self.is_fresh():
            status = self.db.get_sync_status(PRODUCTS)
            logger.info(f"Catalog synced at {status['last_synced_at']}, skipping")
            return {
                'success': True,
                'skipped': True,
                'lastSyncedAt': status['last_synced_at'],
                'totalRecords': status['total_records'],
                'syncTime': sync_time
            }

        owner = self.db.claim_sync_lease(PRODUCTS, self._lease_seconds())
        if owner is None:
            raise SyncInProgressError("A product sync is already in progress")

        sync_id = self.db.create_sync_record(PRODUCTS, strategy)
        fetched = 0

        try:
            client = self.client_factory()
            since = utc_now() - timedelta(days=since_days) if incremental else None

            def keep_lease():
                self._renew_lease(PRODUCTS, owner)

            def on_fetch_progress(fetched_count):
                self.db.update_sync_progress(sync_id, fetched_count)
                keep_lease()

            products = client.fetch_all_products(
                since=since,
                progress_callback=on_fetch_progress,
                heartbeat=keep_lease
            )
            fetched = len(products)
            logger.info(f"Fetched {fetched} products from Zureo, starting reconcile")
            keep_lease()

            flattened = flatten_products(
                products,
                mapper=self._build_mapper(),
                synced_at=sync_time,
                default_tax=self.settings.default_tax_multiplier
            )

            reconciler = Reconciler(self.db, strategy, self.settings.sync_batch_size)
            result = reconciler.reconcile(flattened.rows, deactivate_missing=not incremental)

            stats = self.db.get_catalog_stats()

            self.db.update_sync_record(
                sync_id,
                status='completed',
                records_fetched=fetched,
                records_written=result.inserted,
                records_failed=result.errors,
                records_deactivated=result.deactivated
            )
            if not self.db.complete_sync_status(PRODUCTS, owner, stats['total'], full_run=not incremental):
                logger.warning("Product sync finished after losing its lease; sync status left to the new owner")

            summary = {
                'success': True,
                'totalFetched': fetched,
                'totalWithStock': flattened.products_with_stock,
                'totalUpserted': result.inserted,
                'productsWithPrice': stats['with_price'],
                'productsWithColor': stats['with_color'],
                'productsWithSize': stats['with_size'],
                'productsWithSubcategory': stats['with_subcategory'],
                'malformed': flattened.malformed,
                'discontinued': flattened.discontinued,
                'errors': result.errors,
                'failedBatches': result.failed_batches,
                'deactivated': result.deactivated,
                'strategy': strategy,
                'incremental': incremental,
                'syncTime': sync_time
            }

            logger.info(
                f"Product sync completed: {fetched} fetched, {result.inserted} written, "
                f"{result.errors} failed, {result.deactivated} deactivated"
            )
            return summary

        except Exception as e:
            error_message = str(e)
            logger.exception(f"Product sync failed: {error_message}")

            self.db.update_sync_record(
                sync_id,
                status='failed',
                records_fetched=fetched,
                error_message=error_message
            )
            self.db.fail_sync_status(PRODUCTS, owner, error_message)

            return {
                'success': False,
                'error': error_message,
                'errorType': type(e).__name__,
                'syncTime': sync_time
            }

    def run_brand_sync(self) -> Dict[str, Any]:
        """
        Fetch all brands from Zureo and upsert them into the brands table.

        Raises:
            SyncInProgressError: another brand sync holds the lease
        """
        sync_time = utc_now_iso()

        owner = self.db.claim_sync_lease(BRANDS, self._lease_seconds())
        if owner is None:
            raise SyncInProgressError("A brand sync is already in progress")

        sync_id = self.db.create_sync_record(BRANDS)

        try:
            brands = self.client_factory().fetch_brands()

            records = []
            for brand in brands:
                name = str(brand.get('nombre') or '').strip()
                if brand.get('id') is None or not name:
                    logger.warning(f"Skipping brand without id or name: {brand!r}")
                    continue
                records.append({
                    'zureo_id': brand['id'],
                    'name': name.upper(),
                    'slug': slugify(name),
                    'zureo_modified_at': brand.get('fecha_modificado'),
                })

            written = self.db.upsert_brands(records)
            total = self.db.get_brand_count()

            self.db.update_sync_record(
                sync_id,
                status='completed',
                records_fetched=len(brands),
                records_written=written,
                records_failed=len(brands) - written
            )
            self.db.complete_sync_status(BRANDS, owner, total)

            logger.info(f"Brand sync completed: {len(brands)} fetched, {written} written")
            return {
                'success': True,
                'totalBrands': len(brands),
                'savedBrands': written,
                'syncTime': sync_time
            }

        except Exception as e:
            error_message = str(e)
            logger.exception(f"Brand sync failed: {error_message}")

            self.db.update_sync_record(sync_id, status='failed', error_message=error_message)
            self.db.fail_sync_status(BRANDS, owner, error_message)

            return {
                'success': False,
                'error': error_message,
                'errorType': type(e).__name__,
                'syncTime': sync_time
            }


_sync_service = None


def get_sync_service() -> SyncService:
    """Lazily create the shared SyncService"""
    global _sync_service
    if _sync_service is None:
        _sync_service = SyncService()
    return _sync_service
