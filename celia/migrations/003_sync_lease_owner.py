"""Record which run holds the sync lease."""


def up(conn):
    """Add the lease owner token to sync_status."""
    cursor = conn.cursor()
    cursor.execute('ALTER TABLE sync_status ADD COLUMN lease_owner TEXT')


def down(conn):
    """Rebuild sync_status without the lease owner column."""
    cursor = conn.cursor()
    cursor.execute('''
        CREATE TABLE sync_status_old (
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
    cursor.execute('''
        INSERT INTO sync_status_old
        SELECT sync_type, status, last_synced_at, total_records, started_at,
               lease_expires_at, error_message, updated_at
        FROM sync_status
    ''')
    cursor.execute('DROP TABLE sync_status')
    cursor.execute('ALTER TABLE sync_status_old RENAME TO sync_status')
