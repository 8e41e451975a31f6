"""Migration orchestrator - sequences the users, foods and food log stages."""

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .exceptions import (
    AssetMigrationFailure,
    MigrationError,
    SourceUnavailable,
    TargetUnavailable,
)
from .models.migration import MigrationConfig, MigrationStats, Stage
from .models.record import LegacyRecord, TargetRecord
from .extractors.base import BaseExtractor
from .extractors.parse_extractor import ParseExtractor
from .loaders.batch_loader import BatchLoader
from .loaders.supabase_store import SupabaseStore
from .loaders.user_loader import UserLoader
from .services.asset_migrator import AssetMigrator
from .services.identity_map import IdentityMap, IdentityReconstructor
from .services.transformer import TransformEngine, photo_object_name

logger = logging.getLogger(__name__)

STAGE_TABLES = {
    Stage.FOODS: "foods",
    Stage.FOODLOGS: "food_logs",
}


@dataclass
class PreparedFoodLog:
    """A food log after reference resolution, photo transfer and mapping."""
    record: LegacyRecord
    target: Optional[TargetRecord] = None
    error: Optional[MigrationError] = None
    warning: Optional[AssetMigrationFailure] = None


class MigrationOrchestrator:
    """
    Orchestrates a Parse -> Supabase migration.

    Handles:
    - Pre-flight connectivity checks for both backends
    - Running any subset of stages in dependency order
    - Rebuilding identity maps for stages that were not selected
    - Per-record and per-batch failure accounting
    - The end-of-run report
    """

    def __init__(
        self,
        config: MigrationConfig,
        extractor: Optional[BaseExtractor] = None,
        store: Optional[Any] = None,
        transformer: Optional[TransformEngine] = None,
        asset_migrator: Optional[AssetMigrator] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Migration configuration
            extractor: Legacy source reader (built from config if omitted)
            store: Target store adapter (built from config if omitted)
            transformer: Transform engine
            asset_migrator: Photo migrator
        """
        self.config = config
        self.extractor = extractor or ParseExtractor.from_config(config)
        self.store = store or SupabaseStore.from_config(config)
        self.transformer = transformer or TransformEngine(meal_timezone=config.meal_timezone)
        self.assets = asset_migrator or AssetMigrator(
            self.store,
            bucket=config.photo_bucket,
            timeout=config.timeout_seconds,
            dry_run=config.dry_run,
        )
        self.reconstructor = IdentityReconstructor(
            self.extractor,
            self.store,
            self.transformer.name_parser,
            limit=config.source_limit,
        )

        # Runtime state
        self.stats: Optional[MigrationStats] = None
        self.identity_maps: Dict[Stage, IdentityMap] = {}

    def preflight(self) -> None:
        """
        Check both connections before any stage runs.

        Raises:
            SourceUnavailable: Parse cannot be queried
            TargetUnavailable: Supabase cannot be queried
        """
        logger.info("Testing Parse connection...")
        self.extractor.validate_connection()
        logger.info("Parse connection successful")

        logger.info("Testing Supabase connection...")
        self.store.validate_connection()
        logger.info("Supabase connection successful")

    def run(self, selected: Optional[Iterable[Stage]] = None) -> MigrationStats:
        """
        Run the selected stages.

        Only SourceUnavailable and TargetUnavailable propagate; the report is
        saved in every case and ``self.stats`` stays readable afterwards.

        Returns:
            MigrationStats for this invocation
        """
        stages = Stage.ordered(selected if selected is not None else list(Stage))
        self.stats = stats = MigrationStats(dry_run=self.config.dry_run)
        stats.stages_run = [s.value for s in stages]
        self.identity_maps = {}

        logger.info("=== Starting Parse to Supabase migration ===")
        logger.info(f"Tables to migrate: {', '.join(stats.stages_run)}")

        try:
            self.preflight()

            for stage in stages:
                logger.info(f"=== STAGE: {stage.value.upper()} ===")
                if stage == Stage.USERS:
                    self.identity_maps[stage] = self._run_users(stats)
                elif stage == Stage.FOODS:
                    self.identity_maps[stage] = self._run_foods(stats)
                else:
                    for dependency in stage.dependencies:
                        if dependency not in self.identity_maps:
                            self.identity_maps[dependency] = self._reconstruct(dependency, stats)
                    self._run_food_logs(
                        stats,
                        self.identity_maps[Stage.USERS],
                        self.identity_maps[Stage.FOODS],
                    )

            logger.info("=== MIGRATION COMPLETED ===")

        except (SourceUnavailable, TargetUnavailable) as e:
            stats.aborted = True
            stats.add_error("run", e.message, e.to_context())
            logger.error(f"Migration aborted: {e}")
            raise

        finally:
            stats.completed_at = datetime.utcnow()
            self._save_report(stats)

        return stats

    # --- Stages ------------------------------------------------------------------

    def _run_users(self, stats: MigrationStats) -> IdentityMap:
        """Upsert every legacy user; build the user identity map."""
        counters = stats.users
        records = self.extractor.fetch("User", self.config.source_limit)
        counters.total = len(records)
        logger.info(f"Found {len(records)} users to migrate")

        loader = UserLoader(self.store, dry_run=self.config.dry_run)
        user_map = IdentityMap("User")

        for record in records:
            try:
                target = self.transformer.transform_user(record)
                result = loader.upsert(target)
                user_map.set(record.id, result.target_id)

                if result.created:
                    counters.created += 1
                else:
                    counters.existing += 1
                counters.migrated += 1

                if result.warning:
                    stats.add_error(
                        Stage.USERS.value,
                        result.warning,
                        {"legacy_id": record.id, "email": target.data["email"]},
                        severity="warning",
                    )

            except MigrationError as e:
                counters.errors += 1
                self._record_failure(stats, Stage.USERS, record, e.message, e.to_context())
            except Exception as e:
                counters.errors += 1
                self._record_failure(stats, Stage.USERS, record, f"User migration failed: {e}")

        logger.info(
            f"User migration completed: {counters.migrated}/{counters.total} processed "
            f"({counters.existing} existing, {counters.created} created)"
        )
        return user_map.freeze()

    def _run_foods(self, stats: MigrationStats) -> IdentityMap:
        """Transform and batch-insert foods; map only foods that were written."""
        counters = stats.foods
        records = self.extractor.fetch("Food", self.config.source_limit)
        counters.total = len(records)
        logger.info(f"Found {len(records)} foods to migrate")

        targets: List[TargetRecord] = []
        with_brand = 0
        for record in records:
            try:
                target = self.transformer.transform_food(record)
            except Exception as e:
                counters.errors += 1
                message = e.message if isinstance(e, MigrationError) else f"Food transformation failed: {e}"
                self._record_failure(stats, Stage.FOODS, record, message)
                continue
            targets.append(target)
            if target.data.get("brand"):
                with_brand += 1

        result = self._write(Stage.FOODS, targets, stats)

        food_map = IdentityMap("Food")
        written = set(result.created_ids)
        for target in targets:
            if target.id in written:
                food_map.set(target.legacy_id, target.id)

        logger.info(f"Food migration completed: {counters.migrated}/{counters.total} successful")
        logger.info(f"Brand extraction results: {with_brand} with brands, {len(targets) - with_brand} generic foods")
        return food_map.freeze()

    def _run_food_logs(self, stats: MigrationStats, user_map: IdentityMap, food_map: IdentityMap) -> None:
        """Resolve references, migrate photos, then batch-insert food logs."""
        counters = stats.food_logs
        records = self.extractor.fetch("FoodLog", self.config.source_limit)
        counters.total = len(records)
        logger.info(f"Found {len(records)} food logs to migrate")

        def prepare(record: LegacyRecord) -> PreparedFoodLog:
            return self._prepare_food_log(record, user_map, food_map)

        if self.config.parallel_workers > 1 and len(records) > 1:
            with ThreadPoolExecutor(max_workers=self.config.parallel_workers) as executor:
                prepared = list(executor.map(prepare, records))
        else:
            prepared = [prepare(record) for record in records]

        targets: List[TargetRecord] = []
        for item in prepared:
            if item.warning is not None:
                stats.add_error(
                    Stage.FOODLOGS.value,
                    item.warning.message,
                    item.warning.to_context(),
                    severity="warning",
                )
            if item.error is not None:
                counters.errors += 1
                self._record_failure(stats, Stage.FOODLOGS, item.record, item.error.message, item.error.to_context())
            elif item.target is not None:
                targets.append(item.target)

        self._write(Stage.FOODLOGS, targets, stats)
        logger.info(f"Food log migration completed: {counters.migrated}/{counters.total} successful")

    def _prepare_food_log(
        self,
        record: LegacyRecord,
        user_map: IdentityMap,
        food_map: IdentityMap
    ) -> PreparedFoodLog:
        """Turn one legacy food log into a target row. Never raises."""
        item = PreparedFoodLog(record=record)
        try:
            # Resolve first so no photo is copied for a log that cannot be written.
            self.transformer.resolve_references(record, user_map, food_map)

            photo_url = None
            legacy_url = record.get_file_url("photo")
            if legacy_url:
                asset = self.assets.migrate(legacy_url, photo_object_name(record))
                photo_url = asset.url
                if asset.degraded:
                    item.warning = AssetMigrationFailure(
                        f"Photo migration failed, kept legacy URL: {asset.error}",
                        entity="FoodLog",
                        legacy_id=record.id,
                        context={"photo_url": legacy_url},
                    )

            item.target = self.transformer.transform_food_log(record, user_map, food_map, photo_url)
        except MigrationError as e:
            item.error = e
        except Exception as e:
            item.error = MigrationError(f"FoodLog transformation failed: {e}", entity="FoodLog", legacy_id=record.id)
        return item

    # --- Helpers -----------------------------------------------------------------

    def _write(self, stage: Stage, targets: List[TargetRecord], stats: MigrationStats):
        """Batch-insert and fold the result into the stage counters."""
        counters = stats.for_stage(stage)
        loader = BatchLoader(
            self.store,
            STAGE_TABLES[stage],
            dry_run=self.config.dry_run,
            batch_size=self.config.batch_size,
            parallel_workers=self.config.parallel_workers,
        )
        result = loader.write_batch(targets)

        counters.migrated += result.total_succeeded
        counters.errors += result.total_failed
        for failure in result.failures:
            stats.add_error(stage.value, failure.message, failure.to_context())
        return result

    def _reconstruct(self, stage: Stage, stats: MigrationStats) -> IdentityMap:
        """Rebuild an identity map for a stage that did not run."""
        logger.info(f"{stage.value} not being migrated - building mapping from existing Supabase data")
        try:
            if stage == Stage.USERS:
                return self.reconstructor.users()
            return self.reconstructor.foods()
        except SourceUnavailable:
            raise
        except Exception as e:
            stats.add_error(
                f"reconstruct_{stage.value}",
                f"Could not rebuild {stage.entity} mapping from Supabase: {e}",
                {"entity": stage.entity},
            )
            logger.error(f"Building {stage.value} mapping failed: {e}")
            return IdentityMap(stage.entity, origin="reconstructed").freeze()

    def _record_failure(
        self,
        stats: MigrationStats,
        stage: Stage,
        record: LegacyRecord,
        message: str,
        context: Optional[Dict[str, Any]] = None
    ) -> None:
        ctx = {"entity": stage.entity, "legacy_id": record.id}
        ctx.update(context or {})
        ctx["record"] = record.redacted()
        stats.add_error(stage.value, message, ctx)
        logger.error(f"{stage.entity} {record.id}: {message}")

    def _save_report(self, stats: MigrationStats) -> Optional[Path]:
        """Save the migration report as JSON under the output directory."""
        if not self.config.output_dir:
            return None

        logs_dir = Path(self.config.output_dir) / "logs"
        filepath = logs_dir / f"migration_report_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.json"
        try:
            logs_dir.mkdir(parents=True, exist_ok=True)
            with open(filepath, "w") as f:
                json.dump({"config": self.config.to_dict(), **stats.to_dict()}, f, indent=2, default=str)
        except OSError as e:
            logger.error(f"Could not save migration report to {filepath}: {e}")
            return None

        logger.info(f"Saved migration report to {filepath}")
        return filepath
