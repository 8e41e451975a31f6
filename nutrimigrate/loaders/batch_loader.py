"""Fixed-size batch insertion for foods and food logs."""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, List

from .base import BaseLoader, LoadResult
from ..exceptions import BatchWriteFailure
from ..models.record import TargetRecord

logger = logging.getLogger(__name__)


class BatchLoader(BaseLoader):
    """
    Inserts records into one Supabase table in fixed-size batches.

    Each batch is one insert call. When a call fails, every record in that
    batch counts as failed and the next batch still runs. With more than
    one worker, batches are submitted to a thread pool; results are
    returned in batch order either way.
    """

    def __init__(
        self,
        store: Any,
        table: str,
        dry_run: bool = False,
        batch_size: int = 100,
        parallel_workers: int = 1
    ):
        """
        Initialize the batch loader.

        Args:
            store: Target store adapter (``insert_rows``)
            table: Target table name
            dry_run: If True, simulate without making changes
            batch_size: Number of records per insert call
            parallel_workers: Concurrent insert calls
        """
        super().__init__(store, dry_run, batch_size)
        self.table = table
        self.parallel_workers = max(1, parallel_workers)

    def load_batch(self, records: List[TargetRecord]) -> LoadResult:
        """Insert one batch."""
        result = LoadResult(entity=self.table, total_attempted=len(records))
        result.started_at = datetime.utcnow()

        if not records:
            result.completed_at = datetime.utcnow()
            return result

        try:
            if not self.dry_run:
                self.store.insert_rows(self.table, [r.to_row() for r in records])
            result.total_succeeded = len(records)
            result.created_ids = [r.id for r in records]
        except Exception as e:
            result.total_failed = len(records)
            result.failures.append(
                BatchWriteFailure(self.table, [r.legacy_id for r in records], str(e))
            )
            logger.error(f"Batch insert into {self.table} failed ({len(records)} records): {e}")

        result.completed_at = datetime.utcnow()
        return result

    def write_batch(self, records: List[TargetRecord]) -> LoadResult:
        """
        Insert all records, batch by batch.

        Returns:
            LoadResult with the success count and one failure per failed batch
        """
        total = LoadResult(entity=self.table)
        total.started_at = datetime.utcnow()
        batches = list(self._batch_iterator(records))

        if self.parallel_workers > 1 and len(batches) > 1:
            with ThreadPoolExecutor(max_workers=self.parallel_workers) as executor:
                batch_results = list(executor.map(self.load_batch, batches))
        else:
            batch_results = []
            for batch in batches:
                batch_results.append(self.load_batch(batch))
                logger.info(
                    f"Migrated {self.table} batch: "
                    f"{sum(r.total_succeeded for r in batch_results)}/{len(records)}"
                )

        for batch_result in batch_results:
            total.merge(batch_result)

        total.completed_at = datetime.utcnow()
        return total
