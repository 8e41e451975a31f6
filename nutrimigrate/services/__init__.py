"""Services for the migration application."""

from .identity_map import IdentityMap, IdentityReconstructor
from .transformer import TransformEngine, parse_food_name, infer_meal_type
from .asset_migrator import AssetMigrator, AssetResult
from .validator import MigrationValidator, ValidationReport

__all__ = [
    "IdentityMap",
    "IdentityReconstructor",
    "TransformEngine",
    "parse_food_name",
    "infer_meal_type",
    "AssetMigrator",
    "AssetResult",
    "MigrationValidator",
    "ValidationReport",
]
