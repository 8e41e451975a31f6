"""Migration execution models."""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
from enum import Enum
from datetime import datetime

from dateutil import tz

from ..exceptions import ConfigurationError


class Stage(str, Enum):
    """Migration stages, in dependency order."""
    USERS = "users"
    FOODS = "foods"
    FOODLOGS = "foodlogs"

    @property
    def entity(self) -> str:
        """Legacy entity type migrated by this stage."""
        return _STAGE_ENTITIES[self]

    @property
    def dependencies(self) -> List["Stage"]:
        """Stages whose identity maps this stage needs."""
        return list(_STAGE_DEPENDENCIES[self])

    @classmethod
    def ordered(cls, selected: Iterable["Stage"]) -> List["Stage"]:
        """Selected stages in declared order."""
        chosen = set(selected)
        return [stage for stage in cls if stage in chosen]

    @classmethod
    def parse_selection(cls, value: str) -> List["Stage"]:
        """
        Parse a table selector such as ``all`` or ``users,foods``.

        Raises:
            ValueError: if any name is not a known stage
        """
        names = [part.strip().lower() for part in (value or "").split(",") if part.strip()]
        if not names or "all" in names:
            return list(cls)

        invalid = [name for name in names if name not in {s.value for s in cls}]
        if invalid:
            valid = ", ".join(s.value for s in cls)
            raise ValueError(f"Invalid table names: {', '.join(invalid)} (valid tables: {valid})")

        return cls.ordered(cls(name) for name in names)


_STAGE_ENTITIES = {
    Stage.USERS: "User",
    Stage.FOODS: "Food",
    Stage.FOODLOGS: "FoodLog",
}

_STAGE_DEPENDENCIES = {
    Stage.USERS: (),
    Stage.FOODS: (),
    Stage.FOODLOGS: (Stage.USERS, Stage.FOODS),
}


@dataclass
class ErrorRecord:
    """One recorded failure, with enough context to reproduce its inputs."""
    stage: str
    message: str
    context: Dict[str, Any] = field(default_factory=dict)
    severity: str = "error"  # error, warning
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "stage": self.stage,
            "message": self.message,
            "context": self.context,
            "severity": self.severity,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class EntityStats:
    """Counters for one entity type."""
    total: int = 0
    migrated: int = 0
    created: int = 0
    existing: int = 0
    errors: int = 0

    def to_dict(self, include_identity: bool = False) -> Dict[str, int]:
        data = {"total": self.total, "migrated": self.migrated, "errors": self.errors}
        if include_identity:
            data["existing"] = self.existing
            data["created"] = self.created
        return data


@dataclass
class MigrationStats:
    """Statistics and error log for one invocation."""
    users: EntityStats = field(default_factory=EntityStats)
    foods: EntityStats = field(default_factory=EntityStats)
    food_logs: EntityStats = field(default_factory=EntityStats)
    errors: List[ErrorRecord] = field(default_factory=list)
    stages_run: List[str] = field(default_factory=list)
    dry_run: bool = False
    aborted: bool = False
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    def for_stage(self, stage: Stage) -> EntityStats:
        """Counters for a stage."""
        if stage == Stage.USERS:
            return self.users
        if stage == Stage.FOODS:
            return self.foods
        return self.food_logs

    def add_error(
        self,
        stage: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        severity: str = "error"
    ) -> ErrorRecord:
        """Append an entry to the ordered error list."""
        record = ErrorRecord(stage=stage, message=message, context=context or {}, severity=severity)
        self.errors.append(record)
        return record

    @property
    def error_count(self) -> int:
        return sum(1 for e in self.errors if e.severity == "error")

    @property
    def warning_count(self) -> int:
        return sum(1 for e in self.errors if e.severity == "warning")

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "stages_run": self.stages_run,
            "dry_run": self.dry_run,
            "aborted": self.aborted,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "users": self.users.to_dict(include_identity=True),
            "foods": self.foods.to_dict(),
            "food_logs": self.food_logs.to_dict(),
            "errors": [e.to_dict() for e in self.errors],
        }

    def format_report(self) -> str:
        """Human-readable end-of-run summary."""
        u, f, fl = self.users, self.foods, self.food_logs
        lines = [
            "",
            "=" * 60,
            "MIGRATION STATISTICS" + (" (DRY RUN)" if self.dry_run else ""),
            "=" * 60,
        ]
        if self.aborted:
            lines.append("Status: ABORTED")
        if self.duration_seconds is not None:
            lines.append(f"Duration: {self.duration_seconds:.2f} seconds")
        lines.extend([
            f"Users: {u.migrated}/{u.total} ({u.existing} existing, {u.created} created, {u.errors} errors)",
            f"Foods: {f.migrated}/{f.total} ({f.errors} errors)",
            f"Food Logs: {fl.migrated}/{fl.total} ({fl.errors} errors)",
            f"Total Errors: {self.error_count} (warnings: {self.warning_count})",
        ])

        if self.errors:
            lines.append("")
            lines.append("Error Summary:")
            for index, error in enumerate(self.errors, 1):
                tag = "WARNING " if error.severity == "warning" else ""
                lines.append(f"{index}. {tag}[{error.stage}] {error.message}")
                if error.context:
                    context = ", ".join(f"{k}={v}" for k, v in error.context.items() if k != "record")
                    if context:
                        lines.append(f"   {context}")

        if Stage.USERS.value in self.stages_run and not self.dry_run:
            lines.append("")
            lines.append("Note: migrated users must reset their passwords in Supabase.")

        return "\n".join(lines)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


@dataclass
class MigrationConfig:
    """Configuration for a migration."""

    # Legacy backend (Parse)
    parse_application_id: str = ""
    parse_master_key: str = ""
    parse_server_url: str = "https://parseapi.back4app.com"

    # Target backend (Supabase)
    supabase_url: str = ""
    supabase_service_key: str = ""
    photo_bucket: str = "food-photos"

    # Execution options
    dry_run: bool = False
    batch_size: int = 100
    source_limit: int = 1000
    source_page_size: int = 100
    parallel_workers: int = 1
    timeout_seconds: float = 30.0
    max_retries: int = 3
    backoff_factor: float = 2.0
    meal_timezone: Optional[str] = None  # IANA name; None means host local time

    # Output
    output_dir: str = "./data"

    def validate(self) -> None:
        """Raise ConfigurationError when required settings are missing."""
        required = {
            "PARSE_APPLICATION_ID": self.parse_application_id,
            "PARSE_MASTER_KEY": self.parse_master_key,
            "PARSE_SERVER_URL": self.parse_server_url,
            "SUPABASE_URL": self.supabase_url,
            "SUPABASE_SERVICE_ROLE_KEY": self.supabase_service_key,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

        if self.batch_size < 1:
            raise ConfigurationError("batch_size must be at least 1")
        if self.source_limit < 1:
            raise ConfigurationError("source_limit must be at least 1")
        if self.parallel_workers < 1:
            raise ConfigurationError("parallel_workers must be at least 1")
        if self.meal_timezone and tz.gettz(self.meal_timezone) is None:
            raise ConfigurationError(f"Unknown MIGRATION_MEAL_TIMEZONE: {self.meal_timezone}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation. Secrets are omitted."""
        return {
            "parse_server_url": self.parse_server_url,
            "supabase_url": self.supabase_url,
            "photo_bucket": self.photo_bucket,
            "dry_run": self.dry_run,
            "batch_size": self.batch_size,
            "source_limit": self.source_limit,
            "source_page_size": self.source_page_size,
            "parallel_workers": self.parallel_workers,
            "timeout_seconds": self.timeout_seconds,
            "max_retries": self.max_retries,
            "backoff_factor": self.backoff_factor,
            "meal_timezone": self.meal_timezone,
            "output_dir": self.output_dir,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationConfig":
        """Create from dictionary representation."""
        return cls(
            parse_application_id=data.get("parse_application_id", ""),
            parse_master_key=data.get("parse_master_key", ""),
            parse_server_url=data.get("parse_server_url", "https://parseapi.back4app.com"),
            supabase_url=data.get("supabase_url", ""),
            supabase_service_key=data.get("supabase_service_key", ""),
            photo_bucket=data.get("photo_bucket", "food-photos"),
            dry_run=data.get("dry_run", False),
            batch_size=data.get("batch_size", 100),
            source_limit=data.get("source_limit", 1000),
            source_page_size=data.get("source_page_size", 100),
            parallel_workers=data.get("parallel_workers", 1),
            timeout_seconds=data.get("timeout_seconds", 30.0),
            max_retries=data.get("max_retries", 3),
            backoff_factor=data.get("backoff_factor", 2.0),
            meal_timezone=data.get("meal_timezone"),
            output_dir=data.get("output_dir", "./data"),
        )

    @classmethod
    def from_env(cls) -> "MigrationConfig":
        """Create from process environment variables."""
        return cls(
            parse_application_id=os.environ.get("PARSE_APPLICATION_ID", "").strip(),
            parse_master_key=os.environ.get("PARSE_MASTER_KEY", "").strip(),
            parse_server_url=os.environ.get("PARSE_SERVER_URL", "https://parseapi.back4app.com").strip(),
            supabase_url=os.environ.get("SUPABASE_URL", "").strip(),
            supabase_service_key=os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "").strip(),
            photo_bucket=os.environ.get("MIGRATION_PHOTO_BUCKET", "food-photos"),
            batch_size=_env_int("MIGRATION_BATCH_SIZE", 100),
            source_limit=_env_int("MIGRATION_SOURCE_LIMIT", 1000),
            parallel_workers=_env_int("MIGRATION_PARALLEL_WORKERS", 1),
            timeout_seconds=_env_float("MIGRATION_TIMEOUT_SECONDS", 30.0),
            meal_timezone=os.environ.get("MIGRATION_MEAL_TIMEZONE") or None,
            output_dir=os.environ.get("MIGRATION_OUTPUT_DIR", "./data"),
        )
