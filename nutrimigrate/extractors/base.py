"""Base extractor interface."""

from abc import ABC, abstractmethod
from typing import Iterator, List, Optional
import logging

from ..models.record import LegacyRecord

logger = logging.getLogger(__name__)


class BaseExtractor(ABC):
    """
    Base class for legacy source readers.

    A reader returns a finite list of records per call, never more than its
    safety cap. Transport or auth failures are raised as SourceUnavailable
    and abort the calling stage as a whole.
    """

    ENTITY_TYPES = ("User", "Food", "FoodLog")

    def __init__(self, max_records: int = 1000, page_size: int = 100):
        """
        Initialize the extractor.

        Args:
            max_records: Safety cap on records returned by one fetch call
            page_size: Records requested per page
        """
        self.max_records = max_records
        self.page_size = max(1, min(page_size, max_records))

    @abstractmethod
    def fetch_page(self, entity: str, offset: int, limit: int) -> List[LegacyRecord]:
        """
        Fetch one page of records.

        Args:
            entity: Entity type (User, Food, FoodLog)
            offset: Number of records to skip
            limit: Maximum records to return

        Returns:
            List of LegacyRecord objects
        """
        pass

    @abstractmethod
    def count(self, entity: str) -> int:
        """Total number of records of a type on the legacy side."""
        pass

    def validate_connection(self) -> None:
        """Cheap connectivity check. Raises SourceUnavailable on failure."""
        self.fetch_page("Food", 0, 1)

    def stream(self, entity: str, limit: Optional[int] = None) -> Iterator[List[LegacyRecord]]:
        """
        Stream records in pages, stopping at the cap.

        Yields:
            Pages of LegacyRecord objects
        """
        cap = min(limit, self.max_records) if limit else self.max_records
        offset = 0

        while offset < cap:
            size = min(self.page_size, cap - offset)
            page = self.fetch_page(entity, offset, size)
            if not page:
                break

            yield page
            offset += len(page)

            if len(page) < size:
                break

    def fetch(self, entity: str, limit: Optional[int] = None) -> List[LegacyRecord]:
        """Fetch up to ``limit`` (capped) records of one entity type."""
        self._check_entity(entity)
        records: List[LegacyRecord] = []
        for page in self.stream(entity, limit):
            records.extend(page)

        logger.info(f"Fetched {len(records)} {entity} records from legacy backend")
        if len(records) >= self.max_records:
            logger.warning(f"{entity} fetch hit the safety cap of {self.max_records} records")
        return records

    def _check_entity(self, entity: str) -> None:
        if entity not in self.ENTITY_TYPES:
            raise ValueError(f"Unknown entity type: {entity}")
