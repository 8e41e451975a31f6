"""Error taxonomy for the migration engine.

Only ``SourceUnavailable``, ``TargetUnavailable`` and ``ConfigurationError``
ever propagate out of the orchestrator. Everything else is caught where it
happens and turned into an entry of the run's statistics.
"""

from typing import Any, Dict, List, Optional


class MigrationError(Exception):
    """Base class for all migration errors."""

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        legacy_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.entity = entity
        self.legacy_id = legacy_id
        self.context = context or {}

    def to_context(self) -> Dict[str, Any]:
        """Context dict suitable for an error record."""
        ctx: Dict[str, Any] = {}
        if self.entity:
            ctx["entity"] = self.entity
        if self.legacy_id:
            ctx["legacy_id"] = self.legacy_id
        ctx.update(self.context)
        return ctx


class ConfigurationError(MigrationError):
    """Required settings are missing or invalid."""


class SourceUnavailable(MigrationError):
    """The legacy backend could not be reached or refused our credentials."""


class TargetUnavailable(MigrationError):
    """The target backend failed its connection check."""


class MissingRequiredField(MigrationError):
    """A legacy record lacks a field the target record cannot do without."""

    def __init__(self, entity: str, field: str, legacy_id: Optional[str] = None, **kwargs):
        super().__init__(
            f"{entity} {legacy_id or '?'} is missing required field '{field}'",
            entity=entity,
            legacy_id=legacy_id,
            **kwargs,
        )
        self.field = field


class UnresolvedReference(MigrationError):
    """A foreign reference has no entry in the identity map."""

    def __init__(self, entity: str, legacy_id: str, missing: List[str], **kwargs):
        super().__init__(
            f"Missing mapping for {', '.join(missing)} - may need to migrate users/foods first",
            entity=entity,
            legacy_id=legacy_id,
            **kwargs,
        )
        self.missing = missing


class BatchWriteFailure(MigrationError):
    """A batch insert was rejected; every record in it counts as failed."""

    def __init__(self, table: str, legacy_ids: List[str], message: str):
        super().__init__(
            f"Batch insert into {table} failed: {message}",
            entity=table,
            context={"batch_size": len(legacy_ids), "legacy_ids": legacy_ids},
        )
        self.table = table
        self.legacy_ids = legacy_ids


class AssetMigrationFailure(MigrationError):
    """A photo could not be copied; the record keeps its legacy URL."""
