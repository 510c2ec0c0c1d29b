"""
Shared SQLite migrations framework.

Migrations are plain Python files in a bot's migrations/ directory, named
NNN_description.py, each exposing up(conn) and optionally down(conn).
Applied versions are tracked in a migrations table and pending ones run
automatically when the bot opens its database.

Usage:
    from shared.migrations import MigrationRunner

    runner = MigrationRunner(db_path='path/to/bot.db', migrations_dir='path/to/migrations')
    runner.run_pending_migrations()
"""

import importlib.util
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List

logger = logging.getLogger(__name__)


class Migration:
    """A single migration file"""

    def __init__(self, version: str, name: str, filepath: Path):
        self.version = version
        self.name = name
        self.filepath = filepath
        self.module = None

    @property
    def label(self) -> str:
        return f"{self.version}_{self.name}"

    def load(self):
        spec = importlib.util.spec_from_file_location(f"migration_{self.version}", self.filepath)
        self.module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(self.module)

    def _call(self, direction: str, conn: sqlite3.Connection):
        if not self.module:
            self.load()

        func = getattr(self.module, direction, None)
        if func is None:
            raise ValueError(f"Migration {self.label} has no {direction}() function")
        func(conn)

    def up(self, conn: sqlite3.Connection):
        self._call('up', conn)

    def down(self, conn: sqlite3.Connection):
        self._call('down', conn)


class MigrationRunner:
    """Applies and rolls back migrations for one SQLite database"""

    def __init__(self, db_path: str, migrations_dir: str):
        self.db_path = db_path
        self.migrations_dir = Path(migrations_dir)
        self._init_migrations_table()

    @contextmanager
    def get_connection(self):
        """Connection that commits on success and rolls back on error"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_migrations_table(self):
        with self.get_connection() as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS migrations (
                    version TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

    def _get_applied_versions(self) -> List[str]:
        with self.get_connection() as conn:
            rows = conn.execute('SELECT version FROM migrations ORDER BY version').fetchall()
            return [row[0] for row in rows]

    def _get_available_migrations(self) -> List[Migration]:
        """Migration files sorted by version; files starting with '_' are ignored"""
        migrations = []

        for filepath in sorted(self.migrations_dir.glob('*.py')):
            if filepath.name.startswith('_'):
                continue

            parts = filepath.stem.split('_', 1)
            if len(parts) != 2 or not parts[0].isdigit():
                logger.warning(f"Skipping migration file {filepath.name} (invalid name format)")
                continue

            migrations.append(Migration(parts[0], parts[1], filepath))

        return sorted(migrations, key=lambda m: m.version)

    def _get_pending_migrations(self) -> List[Migration]:
        applied = set(self._get_applied_versions())
        return [m for m in self._get_available_migrations() if m.version not in applied]

    def run_pending_migrations(self, verbose: bool = True) -> int:
        """
        Apply every pending migration, each in its own transaction.

        Returns:
            Number of migrations applied
        """
        pending = self._get_pending_migrations()
        log = logger.info if verbose else logger.debug

        if not pending:
            log(f"No pending migrations for {self.db_path}")
            return 0

        log(f"Running {len(pending)} pending migration(s) on {self.db_path}")

        for migration in pending:
            try:
                with self.get_connection() as conn:
                    migration.up(conn)
                    conn.execute(
                        'INSERT INTO migrations (version, name) VALUES (?, ?)',
                        (migration.version, migration.name)
                    )
            except Exception:
                logger.exception(f"Migration {migration.label} failed")
                raise
            log(f"Applied migration {migration.label}")

        return len(pending)

    def rollback_last(self) -> bool:
        """
        Roll back the most recently applied migration.

        Returns:
            False if nothing has been applied
        """
        applied = self._get_applied_versions()
        if not applied:
            return False

        last_version = applied[-1]
        migration = next(
            (m for m in self._get_available_migrations() if m.version == last_version),
            None
        )
        if not migration:
            raise ValueError(f"Migration file for version {last_version} not found")

        with self.get_connection() as conn:
            migration.down(conn)
            conn.execute('DELETE FROM migrations WHERE version = ?', (migration.version,))

        logger.info(f"Rolled back migration {migration.label}")
        return True

    def get_status(self) -> Dict:
        """Get migration status information."""
        applied = self._get_applied_versions()
        available = self._get_available_migrations()
        pending = self._get_pending_migrations()

        return {
            'total_available': len(available),
            'total_applied': len(applied),
            'total_pending': len(pending),
            'applied_versions': applied,
            'pending_versions': [m.version for m in pending]
        }
