"""Data models for the migration application."""

from .migration import (
    Stage,
    ErrorRecord,
    EntityStats,
    MigrationStats,
    MigrationConfig,
)
from .record import (
    LegacyRecord,
    TargetRecord,
)

__all__ = [
    "Stage",
    "ErrorRecord",
    "EntityStats",
    "MigrationStats",
    "MigrationConfig",
    "LegacyRecord",
    "TargetRecord",
]
