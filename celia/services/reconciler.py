"""
Reconciliation Writer

Writes flattened catalog rows into the local catalog table in fixed-size
batches. A failing batch is logged and counted; the rest of the run
continues.
"""

import logging
import sqlite3
from dataclasses import dataclass
from typing import Dict, List

from celia.services.errors import BatchWriteError
from celia.services.flattener import CatalogRow

logger = logging.getLogger(__name__)

STRATEGIES = ('upsert', 'replace')


@dataclass
class ReconcileResult:
    inserted: int = 0
    errors: int = 0
    failed_batches: int = 0
    deactivated: int = 0
    duplicates: int = 0


def dedupe_rows(rows: List[CatalogRow]) -> List[CatalogRow]:
    """Collapse rows sharing a natural key; the last one wins, first position is kept"""
    by_key: Dict[tuple, CatalogRow] = {}
    for row in rows:
        by_key[row.natural_key] = row
    return list(by_key.values())


class Reconciler:
    """Applies one sync run's rows to the catalog with the chosen strategy"""

    def __init__(self, db, strategy: str = 'upsert', batch_size: int = 100):
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown reconcile strategy: {strategy}")
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.db = db
        self.strategy = strategy
        self.batch_size = batch_size

    def _write_batch(self, records):
        if self.strategy == 'replace':
            return self.db.insert_catalog_rows(records)
        return self.db.upsert_catalog_rows(records)

    def reconcile(self, rows: List[CatalogRow], deactivate_missing: bool = True) -> ReconcileResult:
        """
        Write rows and report counts.

        Args:
            rows: Flattened rows of one run
            deactivate_missing: Under upsert, soft-delete active rows this run
                did not produce. Pass False for incremental runs.
        """
        result = ReconcileResult()

        unique_rows = dedupe_rows(rows)
        result.duplicates = len(rows) - len(unique_rows)
        if result.duplicates:
            logger.warning(f"Collapsed {result.duplicates} duplicate catalog keys")

        if self.strategy == 'replace':
            removed = self.db.delete_all_catalog_rows()
            logger.info(f"Replace strategy: removed {removed} existing rows")

        for start in range(0, len(unique_rows), self.batch_size):
            batch = unique_rows[start:start + self.batch_size]
            batch_number = start // self.batch_size + 1
            try:
                result.inserted += self._write_batch([row.to_record() for row in batch])
            except sqlite3.Error as e:
                error = BatchWriteError(batch_number, len(batch), e)
                logger.error(str(error))
                result.errors += len(batch)
                result.failed_batches += 1

        if self.strategy == 'upsert' and deactivate_missing:
            if unique_rows:
                result.deactivated = self.db.deactivate_missing_rows(
                    row.natural_key for row in unique_rows
                )
            else:
                logger.warning("Run produced no rows, leaving existing catalog active")

        logger.info(
            f"Reconciled {result.inserted} rows with {self.strategy} "
            f"({result.errors} failed in {result.failed_batches} batches, "
            f"{result.deactivated} deactivated)"
        )
        return result
