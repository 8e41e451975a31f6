"""Base loader interface for the target store."""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional
from datetime import datetime
import logging

from ..exceptions import BatchWriteFailure
from ..models.record import TargetRecord

logger = logging.getLogger(__name__)


@dataclass
class LoadResult:
    """Result of a load operation."""
    entity: str
    total_attempted: int = 0
    total_succeeded: int = 0
    total_failed: int = 0
    failures: List[BatchWriteFailure] = field(default_factory=list)
    created_ids: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def success_rate(self) -> float:
        if self.total_attempted == 0:
            return 0.0
        return self.total_succeeded / self.total_attempted

    def merge(self, other: "LoadResult") -> None:
        """Fold a batch result into this one."""
        self.total_attempted += other.total_attempted
        self.total_succeeded += other.total_succeeded
        self.total_failed += other.total_failed
        self.failures.extend(other.failures)
        self.created_ids.extend(other.created_ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity": self.entity,
            "total_attempted": self.total_attempted,
            "total_succeeded": self.total_succeeded,
            "total_failed": self.total_failed,
            "success_rate": self.success_rate,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "failures": [{"message": f.message, **f.to_context()} for f in self.failures],
        }


class BaseLoader:
    """
    Base class for target writers.

    Loaders hold the target store adapter and the dry-run switch; in dry-run
    mode no write call reaches the store.
    """

    def __init__(self, store: Any, dry_run: bool = False, batch_size: int = 100):
        """
        Initialize the loader.

        Args:
            store: Target store adapter
            dry_run: If True, simulate without making changes
            batch_size: Number of records per batch
        """
        self.store = store
        self.dry_run = dry_run
        self.batch_size = max(1, batch_size)

    def _batch_iterator(
        self,
        records: List[TargetRecord],
        batch_size: Optional[int] = None
    ) -> Iterator[List[TargetRecord]]:
        """Iterate over records in batches."""
        size = batch_size or self.batch_size
        for i in range(0, len(records), size):
            yield records[i:i + size]
