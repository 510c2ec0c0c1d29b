"""Initial database schema for Celia's Zureo catalog sync."""


def up(conn):
    """Create catalog, override and sync tables."""
    cursor = conn.cursor()

    # Sync-owned catalog facts; one row per (code, variety)
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS catalog_rows (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            zureo_id INTEGER,
            zureo_code TEXT NOT NULL,
            zureo_variety_id INTEGER,
            variant_key TEXT NOT NULL DEFAULT '',
            name TEXT NOT NULL,
            variety_name TEXT,
            slug TEXT NOT NULL,
            description TEXT,
            price INTEGER,
            source_price REAL,
            tax_multiplier REAL,
            stock_quantity REAL NOT NULL DEFAULT 0,
            category TEXT,
            subcategory TEXT,
            brand TEXT,
            color TEXT,
            size TEXT,
            attributes_inferred INTEGER NOT NULL DEFAULT 0,
            image_url TEXT,
            is_featured INTEGER NOT NULL DEFAULT 0,
            is_active INTEGER NOT NULL DEFAULT 1,
            raw_payload TEXT,
            last_synced_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (zureo_code, variant_key)
        )
    ''')

    # Admin-owned edits, joined to catalog_rows at read time
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS merchandising_overrides (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            zureo_code TEXT NOT NULL,
            variant_key TEXT NOT NULL DEFAULT '',
            custom_name TEXT,
            custom_price INTEGER,
            custom_image_url TEXT,
            is_featured INTEGER,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (zureo_code, variant_key)
        )
    ''')

    # Latest state per sync type, also the run lease
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS sync_status (
            sync_type TEXT PRIMARY KEY,
            status TEXT NOT NULL,
            last_synced_at TEXT,
            total_records INTEGER DEFAULT 0,
            started_at TEXT,
            lease_expires_at TEXT,
            error_message TEXT,
            updated_at TEXT NOT NULL
        )
    ''')

    # One row per run
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS sync_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            sync_type TEXT NOT NULL,
            strategy TEXT,
            status TEXT NOT NULL,
            records_fetched INTEGER DEFAULT 0,
            records_written INTEGER DEFAULT 0,
            records_failed INTEGER DEFAULT 0,
            records_deactivated INTEGER DEFAULT 0,
            started_at TEXT NOT NULL,
            finished_at TEXT,
            duration_seconds REAL,
            error_message TEXT
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS subcategories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE,
            slug TEXT NOT NULL UNIQUE,
            category TEXT NOT NULL
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS brands (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            zureo_id INTEGER NOT NULL UNIQUE,
            name TEXT NOT NULL,
            slug TEXT NOT NULL,
            zureo_modified_at TEXT,
            updated_at TEXT NOT NULL
        )
    ''')

    # Indexes
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_catalog_code ON catalog_rows(zureo_code)')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_catalog_slug ON catalog_rows(slug)')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_catalog_subcategory ON catalog_rows(subcategory)')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_catalog_active ON catalog_rows(is_active)')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_history_type ON sync_history(sync_type)')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_history_started ON sync_history(started_at)')


def down(conn):
    """Drop all tables."""
    cursor = conn.cursor()
    cursor.execute('DROP TABLE IF EXISTS brands')
    cursor.execute('DROP TABLE IF EXISTS subcategories')
    cursor.execute('DROP TABLE IF EXISTS sync_history')
    cursor.execute('DROP TABLE IF EXISTS sync_status')
    cursor.execute('DROP TABLE IF EXISTS merchandising_overrides')
    cursor.execute('DROP TABLE IF EXISTS catalog_rows')
