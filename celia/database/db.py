import sqlite3
import uuid
from pathlib import Path
from datetime import datetime, timedelta, timezone
from typing import List, Dict, Optional, Any, Iterable, Tuple
from contextlib import contextmanager

from shared.migrations import MigrationRunner

MIGRATIONS_DIR = Path(__file__).parent.parent / 'migrations'

CATALOG_COLUMNS = [
    'zureo_id', 'zureo_code', 'zureo_variety_id', 'variant_key',
    'name', 'variety_name', 'slug', 'description',
    'price', 'source_price', 'tax_multiplier', 'stock_quantity',
    'category', 'subcategory', 'brand', 'color', 'size', 'attributes_inferred',
    'image_url', 'raw_payload', 'last_synced_at',
]

OVERRIDE_FIELDS = ('custom_name', 'custom_price', 'custom_image_url', 'is_featured')


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def utc_now_iso() -> str:
    """Return current UTC time as ISO8601 string"""
    return to_iso(utc_now())


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def variant_key_for(variety_id) -> str:
    return '' if variety_id is None or variety_id == '' else str(variety_id)


class Database:
    """Database manager for Celia's catalog, overrides and sync state"""

    def __init__(self, db_path: str = None):
        if db_path is None:
            db_path = Path(__file__).parent / 'celia.db'
        self.db_path = str(db_path)
        self.init_db()

    def init_db(self):
        """Create the database file and apply pending migrations"""
        db_dir = Path(self.db_path).parent
        db_dir.mkdir(parents=True, exist_ok=True)

        runner = MigrationRunner(db_path=self.db_path, migrations_dir=str(MIGRATIONS_DIR))
        runner.run_pending_migrations(verbose=False)

    def get_connection(self):
        """Get a database connection with row factory"""
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self):
        """Context manager for database connections"""
        conn = self.get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ─────────────────────────────────────────────────────────────
    # Catalog Operations
    # ─────────────────────────────────────────────────────────────

    def normalize_product_code(self, code: str) -> str:
        """Normalize a product code (trim only - Zureo codes are case-sensitive)"""
        if code is None:
            return ""
        return str(code).strip()

    def _row_values(self, record: Dict[str, Any], now: str) -> Tuple:
        values = []
        for column in CATALOG_COLUMNS:
            value = record.get(column)
            if column == 'attributes_inferred':
                value = 1 if value else 0
            values.append(value)
        values.append(1 if record.get('is_featured') else 0)
        values.extend([now, now])
        return tuple(values)

    def delete_all_catalog_rows(self) -> int:
        """Remove every catalog row. Overrides live in their own table and stay."""
        with self.connection() as conn:
            cursor = conn.execute("DELETE FROM catalog_rows")
            return cursor.rowcount

    def insert_catalog_rows(self, records: List[Dict[str, Any]]) -> int:
        """Insert rows in one transaction; any failure rolls back the whole batch"""
        if not records:
            return 0
        now = utc_now_iso()
        columns = CATALOG_COLUMNS + ['is_featured', 'created_at', 'updated_at']
        placeholders = ', '.join('?' * len(columns))

        with self.connection() as conn:
            conn.executemany(
                f"INSERT INTO catalog_rows ({', '.join(columns)}) VALUES ({placeholders})",
                [self._row_values(r, now) for r in records]
            )
        return len(records)

    def upsert_catalog_rows(self, records: List[Dict[str, Any]]) -> int:
        """
        Insert or update rows keyed on (zureo_code, variant_key).

        Existing rows keep their id, created_at and is_featured flag, and
        are re-activated.
        """
        if not records:
            return 0
        now = utc_now_iso()
        columns = CATALOG_COLUMNS + ['is_featured', 'created_at', 'updated_at']
        placeholders = ', '.join('?' * len(columns))
        updates = ', '.join(
            f"{column} = excluded.{column}"
            for column in CATALOG_COLUMNS
            if column not in ('zureo_code', 'variant_key')
        )

        with self.connection() as conn:
            conn.executemany(f"""
                INSERT INTO catalog_rows ({', '.join(columns)}) VALUES ({placeholders})
                ON CONFLICT(zureo_code, variant_key) DO UPDATE SET
                    {updates},
                    is_active = 1,
                    updated_at = excluded.updated_at
            """, [self._row_values(r, now) for r in records])
        return len(records)

    def deactivate_missing_rows(self, keys: Iterable[Tuple[str, str]]) -> int:
        """Soft-delete active rows whose natural key is not in keys"""
        now = utc_now_iso()
        with self.connection() as conn:
            conn.execute("""
                CREATE TEMP TABLE IF NOT EXISTS seen_keys (
                    zureo_code TEXT NOT NULL,
                    variant_key TEXT NOT NULL,
                    PRIMARY KEY (zureo_code, variant_key)
                )
            """)
            conn.execute("DELETE FROM seen_keys")
            conn.executemany(
                "INSERT OR IGNORE INTO seen_keys (zureo_code, variant_key) VALUES (?, ?)",
                list(keys)
            )
            cursor = conn.execute("""
                UPDATE catalog_rows SET is_active = 0, updated_at = ?
                WHERE is_active = 1
                  AND NOT EXISTS (
                      SELECT 1 FROM seen_keys s
                      WHERE s.zureo_code = catalog_rows.zureo_code
                        AND s.variant_key = catalog_rows.variant_key
                  )
            """, (now,))
            deactivated = cursor.rowcount
            conn.execute("DROP TABLE seen_keys")
            return deactivated

    def get_catalog_row(self, code: str, variety_id=None) -> Optional[Dict]:
        """Get the raw catalog row for a natural key (no overrides applied)"""
        conn = self.get_connection()
        cursor = conn.execute(
            "SELECT * FROM catalog_rows WHERE zureo_code = ? AND variant_key = ?",
            (self.normalize_product_code(code), variant_key_for(variety_id))
        )
        row = cursor.fetchone()
        conn.close()
        return dict(row) if row else None

    def get_rows_by_code(self, code: str, active_only: bool = True) -> List[Dict]:
        """
        Get all rows for a product code with merchandising overrides applied.

        A variety-level override beats a product-level one (variant_key '').
        """
        code = self.normalize_product_code(code)
        if not code:
            return []

        conn = self.get_connection()
        cursor = conn.execute(f"""
            SELECT c.*,
                COALESCE(ov.custom_name, op.custom_name, c.name) AS display_name,
                COALESCE(ov.custom_price, op.custom_price, c.price) AS display_price,
                COALESCE(ov.custom_image_url, op.custom_image_url, c.image_url) AS display_image_url,
                COALESCE(ov.is_featured, op.is_featured, c.is_featured) AS featured
            FROM catalog_rows c
            LEFT JOIN merchandising_overrides ov
                ON ov.zureo_code = c.zureo_code AND ov.variant_key = c.variant_key
            LEFT JOIN merchandising_overrides op
                ON op.zureo_code = c.zureo_code AND op.variant_key = ''
            WHERE c.zureo_code = ? {'AND c.is_active = 1' if active_only else ''}
            ORDER BY c.variant_key
        """, (code,))
        rows = cursor.fetchall()
        conn.close()

        return [dict(row) for row in rows]

    def get_catalog_count(self, active_only: bool = True) -> int:
        """Get total number of catalog rows"""
        conn = self.get_connection()
        query = "SELECT COUNT(*) FROM catalog_rows"
        if active_only:
            query += " WHERE is_active = 1"
        count = conn.execute(query).fetchone()[0]
        conn.close()
        return count

    def get_catalog_stats(self) -> Dict[str, int]:
        """Counts of active rows with each derived field populated"""
        conn = self.get_connection()
        row = conn.execute("""
            SELECT
                COUNT(*) AS total,
                COUNT(DISTINCT zureo_code) AS products,
                COALESCE(SUM(CASE WHEN price IS NOT NULL AND price > 0 THEN 1 ELSE 0 END), 0) AS with_price,
                COALESCE(SUM(CASE WHEN color IS NOT NULL THEN 1 ELSE 0 END), 0) AS with_color,
                COALESCE(SUM(CASE WHEN size IS NOT NULL THEN 1 ELSE 0 END), 0) AS with_size,
                COALESCE(SUM(CASE WHEN subcategory IS NOT NULL THEN 1 ELSE 0 END), 0) AS with_subcategory,
                COALESCE(SUM(attributes_inferred), 0) AS inferred_attributes
            FROM catalog_rows
            WHERE is_active = 1
        """).fetchone()
        conn.close()
        return dict(row)

    # ─────────────────────────────────────────────────────────────
    # Merchandising Overrides
    # ─────────────────────────────────────────────────────────────

    def upsert_override(self, code: str, variety_id=None, **fields) -> Dict:
        """
        Set admin overrides for a product (variety_id None) or one variety.

        Only the given fields change. Passing None clears a field.
        """
        code = self.normalize_product_code(code)
        if not code:
            raise ValueError("Product code is required")

        unknown = set(fields) - set(OVERRIDE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown override fields: {', '.join(sorted(unknown))}")

        if 'is_featured' in fields and fields['is_featured'] is not None:
            fields['is_featured'] = 1 if fields['is_featured'] else 0

        key = variant_key_for(variety_id)
        now = utc_now_iso()

        with self.connection() as conn:
            conn.execute("""
                INSERT INTO merchandising_overrides (zureo_code, variant_key, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(zureo_code, variant_key) DO NOTHING
            """, (code, key, now, now))

            if fields:
                assignments = ', '.join(f"{name} = ?" for name in fields)
                conn.execute(
                    f"UPDATE merchandising_overrides SET {assignments}, updated_at = ? "
                    "WHERE zureo_code = ? AND variant_key = ?",
                    (*fields.values(), now, code, key)
                )

        return self.get_override(code, variety_id)

    def get_override(self, code: str, variety_id=None) -> Optional[Dict]:
        conn = self.get_connection()
        row = conn.execute(
            "SELECT * FROM merchandising_overrides WHERE zureo_code = ? AND variant_key = ?",
            (self.normalize_product_code(code), variant_key_for(variety_id))
        ).fetchone()
        conn.close()
        return dict(row) if row else None

    def delete_override(self, code: str, variety_id=None) -> bool:
        with self.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM merchandising_overrides WHERE zureo_code = ? AND variant_key = ?",
                (self.normalize_product_code(code), variant_key_for(variety_id))
            )
            return cursor.rowcount > 0

    def list_overrides(self, code: str = None) -> List[Dict]:
        conn = self.get_connection()
        if code:
            cursor = conn.execute(
                "SELECT * FROM merchandising_overrides WHERE zureo_code = ? ORDER BY variant_key",
                (self.normalize_product_code(code),)
            )
        else:
            cursor = conn.execute(
                "SELECT * FROM merchandising_overrides ORDER BY zureo_code, variant_key"
            )
        rows = cursor.fetchall()
        conn.close()
        return [dict(row) for row in rows]

    # ─────────────────────────────────────────────────────────────
    # Subcategories & Brands
    # ─────────────────────────────────────────────────────────────

    def get_subcategory_names(self) -> List[str]:
        """Canonical subcategory names used by the category mapper"""
        conn = self.get_connection()
        rows = conn.execute("SELECT name FROM subcategories ORDER BY name").fetchall()
        conn.close()
        return [row['name'] for row in rows]

    def upsert_brands(self, brands: List[Dict[str, Any]]) -> int:
        """Insert or update brands keyed on zureo_id"""
        if not brands:
            return 0
        now = utc_now_iso()
        with self.connection() as conn:
            conn.executemany("""
                INSERT INTO brands (zureo_id, name, slug, zureo_modified_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(zureo_id) DO UPDATE SET
                    name = excluded.name,
                    slug = excluded.slug,
                    zureo_modified_at = excluded.zureo_modified_at,
                    updated_at = excluded.updated_at
            """, [
                (b['zureo_id'], b['name'], b['slug'], b.get('zureo_modified_at'), now)
                for b in brands
            ])
        return len(brands)

    def get_brand_count(self) -> int:
        conn = self.get_connection()
        count = conn.execute("SELECT COUNT(*) FROM brands").fetchone()[0]
        conn.close()
        return count

    # ─────────────────────────────────────────────────────────────
    # Sync Status (one row per sync type, doubles as the run lease)
    # ─────────────────────────────────────────────────────────────

    def get_sync_status(self, sync_type: str) -> Optional[Dict]:
        conn = self.get_connection()
        row = conn.execute(
            "SELECT * FROM sync_status WHERE sync_type = ?", (sync_type,)
        ).fetchone()
        conn.close()
        return dict(row) if row else None

    def claim_sync_lease(self, sync_type: str, lease_seconds: int) -> Optional[str]:
        """
        Atomically mark a sync type as in progress.

        Returns:
            The owner token the run must present to renew, complete or fail
            the lease, or None if another run holds an unexpired lease.
        """
        now = utc_now()
        now_iso = to_iso(now)
        expires = to_iso(now + timedelta(seconds=lease_seconds))
        owner = uuid.uuid4().hex

        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute("""
                INSERT INTO sync_status (sync_type, status, total_records, updated_at)
                VALUES (?, 'idle', 0, ?)
                ON CONFLICT(sync_type) DO NOTHING
            """, (sync_type, now_iso))
            cursor = conn.execute("""
                UPDATE sync_status SET
                    status = 'in_progress',
                    started_at = ?,
                    lease_expires_at = ?,
                    lease_owner = ?,
                    error_message = NULL,
                    updated_at = ?
                WHERE sync_type = ?
                  AND (status != 'in_progress'
                       OR lease_expires_at IS NULL
                       OR lease_expires_at < ?)
            """, (now_iso, expires, owner, now_iso, sync_type, now_iso))
            return owner if cursor.rowcount == 1 else None

    def renew_sync_lease(self, sync_type: str, owner: str, lease_seconds: int) -> bool:
        """Push the lease expiry forward; False if the lease now belongs to another run"""
        now = utc_now()
        with self.connection() as conn:
            cursor = conn.execute("""
                UPDATE sync_status SET
                    lease_expires_at = ?,
                    updated_at = ?
                WHERE sync_type = ? AND status = 'in_progress' AND lease_owner = ?
            """, (to_iso(now + timedelta(seconds=lease_seconds)), to_iso(now), sync_type, owner))
            return cursor.rowcount == 1

    def complete_sync_status(self, sync_type: str, owner: str, total_records: int,
                             full_run: bool = True) -> bool:
        """
        Record a finished run and release the lease.

        Only full runs move last_synced_at, which drives the freshness check.
        Nothing is written unless the run still owns the lease.
        """
        now = utc_now_iso()
        with self.connection() as conn:
            cursor = conn.execute("""
                UPDATE sync_status SET
                    status = 'completed',
                    last_synced_at = CASE WHEN ? THEN ? ELSE last_synced_at END,
                    total_records = ?,
                    lease_expires_at = NULL,
                    lease_owner = NULL,
                    error_message = NULL,
                    updated_at = ?
                WHERE sync_type = ? AND lease_owner = ?
            """, (1 if full_run else 0, now, total_records, now, sync_type, owner))
            return cursor.rowcount == 1

    def fail_sync_status(self, sync_type: str, owner: str, error_message: str) -> bool:
        """Mark a run failed; last_synced_at and total_records keep their old values"""
        now = utc_now_iso()
        with self.connection() as conn:
            cursor = conn.execute("""
                UPDATE sync_status SET
                    status = 'failed',
                    lease_expires_at = NULL,
                    lease_owner = NULL,
                    error_message = ?,
                    updated_at = ?
                WHERE sync_type = ? AND lease_owner = ?
            """, (error_message, now, sync_type, owner))
            return cursor.rowcount == 1

    def is_sync_running(self, sync_type: str) -> bool:
        """Check if a sync of the given type holds an unexpired lease"""
        status = self.get_sync_status(sync_type)
        if not status or status['status'] != 'in_progress':
            return False
        expires = status.get('lease_expires_at')
        return expires is not None and expires > utc_now_iso()

    # ─────────────────────────────────────────────────────────────
    # Sync History
    # ─────────────────────────────────────────────────────────────

    def create_sync_record(self, sync_type: str, strategy: str = None) -> int:
        """Create a new sync history record, returns the ID"""
        now = utc_now_iso()

        with self.connection() as conn:
            cursor = conn.execute("""
                INSERT INTO sync_history (sync_type, strategy, status, started_at)
                VALUES (?, ?, 'running', ?)
            """, (sync_type, strategy, now))
            return cursor.lastrowid

    def update_sync_record(
        self,
        sync_id: int,
        status: str,
        records_fetched: int = 0,
        records_written: int = 0,
        records_failed: int = 0,
        records_deactivated: int = 0,
        error_message: str = None
    ):
        """Update a sync history record with results"""
        now = utc_now()

        with self.connection() as conn:
            row = conn.execute(
                "SELECT started_at FROM sync_history WHERE id = ?",
                (sync_id,)
            ).fetchone()
            duration = None
            if row and row['started_at']:
                duration = (now - parse_iso(row['started_at'])).total_seconds()

            conn.execute("""
                UPDATE sync_history SET
                    status = ?,
                    records_fetched = ?,
                    records_written = ?,
                    records_failed = ?,
                    records_deactivated = ?,
                    finished_at = ?,
                    duration_seconds = ?,
                    error_message = ?
                WHERE id = ?
            """, (
                status,
                records_fetched,
                records_written,
                records_failed,
                records_deactivated,
                to_iso(now),
                duration,
                error_message,
                sync_id
            ))

    def update_sync_progress(self, sync_id: int, records_fetched: int):
        """Update the fetched count while pages are still coming in"""
        with self.connection() as conn:
            conn.execute(
                "UPDATE sync_history SET records_fetched = ? WHERE id = ?",
                (records_fetched, sync_id)
            )

    def get_last_successful_sync(self, sync_type: str) -> Optional[Dict]:
        """Get the most recent completed sync for a type"""
        conn = self.get_connection()
        row = conn.execute("""
            SELECT * FROM sync_history
            WHERE sync_type = ? AND status = 'completed'
            ORDER BY finished_at DESC, id DESC LIMIT 1
        """, (sync_type,)).fetchone()
        conn.close()

        return dict(row) if row else None

    def get_sync_history(self, sync_type: str = None, limit: int = 10) -> List[Dict]:
        """Get recent sync history"""
        conn = self.get_connection()

        if sync_type:
            cursor = conn.execute("""
                SELECT * FROM sync_history
                WHERE sync_type = ?
                ORDER BY started_at DESC, id DESC LIMIT ?
            """, (sync_type, limit))
        else:
            cursor = conn.execute("""
                SELECT * FROM sync_history
                ORDER BY started_at DESC, id DESC LIMIT ?
            """, (limit,))

        rows = cursor.fetchall()
        conn.close()

        return [dict(row) for row in rows]


_db = None


def get_db() -> Database:
    """Lazily create the shared Database instance from config"""
    global _db
    if _db is None:
        from celia.config import config
        _db = Database(config.database_path)
    return _db
