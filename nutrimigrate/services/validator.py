"""Post-migration validation: record counts and food log references."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from ..extractors.base import BaseExtractor

logger = logging.getLogger(__name__)

TARGET_TABLES = {
    "Food": "foods",
    "FoodLog": "food_logs",
}


@dataclass
class CountCheck:
    """Legacy vs. target record count for one entity type."""
    entity: str
    legacy: int
    target: int

    @property
    def matches(self) -> bool:
        return self.legacy == self.target

    def to_dict(self) -> Dict[str, Any]:
        return {"entity": self.entity, "legacy": self.legacy, "target": self.target, "matches": self.matches}


@dataclass
class ValidationReport:
    """Outcome of a validation pass."""
    counts: List[CountCheck] = field(default_factory=list)
    sampled: int = 0
    issues: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(c.matches for c in self.counts) and not self.issues

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "counts": [c.to_dict() for c in self.counts],
            "sampled": self.sampled,
            "issues": self.issues,
        }

    def format_report(self) -> str:
        lines = ["", "Record Count Comparison:", "=" * 26]
        for check in self.counts:
            flag = "" if check.matches else "  <-- mismatch"
            lines.append(f"{check.entity:<8} Parse: {check.legacy}, Supabase: {check.target}{flag}")
        lines.append("")
        lines.append(f"Relationship checks: {self.sampled} food logs sampled, {len(self.issues)} issues")
        for issue in self.issues:
            lines.append(f"  - {issue}")
        lines.append("")
        lines.append("Migration validation passed!" if self.passed else "Migration validation found issues")
        return "\n".join(lines)


class MigrationValidator:
    """
    Compares the legacy and target backends after a migration.

    Supports:
    - Record count comparison per entity type
    - Referential checks on a sample of migrated food logs
    """

    def __init__(self, extractor: BaseExtractor, store: Any):
        self.extractor = extractor
        self.store = store

    def validate_counts(self) -> List[CountCheck]:
        """Count records on both sides."""
        checks = [CountCheck("User", self.extractor.count("User"), len(self.store.list_identities()))]
        for entity, table in TARGET_TABLES.items():
            checks.append(CountCheck(entity, self.extractor.count(entity), self.store.count_rows(table)))

        for check in checks:
            if not check.matches:
                logger.warning(f"{check.entity}: expected {check.legacy}, got {check.target}")
        return checks

    def validate_relationships(self, sample: int = 5) -> Tuple[int, List[str]]:
        """Check that sampled food logs reference an existing user and food."""
        logs = self.store.select_rows("food_logs", "id, user_id, food_id", limit=sample)
        referenced = sorted({log["food_id"] for log in logs if log.get("food_id")})
        food_ids = {row["id"] for row in self.store.select_in("foods", "id", referenced, "id")}

        issues = []
        for log in logs:
            if self.store.get_identity(log["user_id"]) is None:
                issues.append(f"Food log {log['id']} references non-existent user {log['user_id']}")
            if log["food_id"] not in food_ids:
                issues.append(f"Food log {log['id']} references non-existent food {log['food_id']}")
        return len(logs), issues

    def run(self, sample: int = 5) -> ValidationReport:
        """Run all checks."""
        logger.info("Starting migration validation")
        report = ValidationReport(counts=self.validate_counts())
        report.sampled, report.issues = self.validate_relationships(sample)
        return report
