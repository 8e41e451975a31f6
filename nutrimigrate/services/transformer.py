"""Transformation engine for converting Parse records to Supabase rows."""

import re
import uuid
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from datetime import datetime, tzinfo

from dateutil import tz

from ..exceptions import MissingRequiredField, UnresolvedReference
from ..models.record import LegacyRecord, TargetRecord
from .identity_map import IdentityMap, NameParser

logger = logging.getLogger(__name__)

UNKNOWN_FOOD_NAME = "Unknown Food"

# "<name> (<brand>)": the name is lazy, so only the last parenthesized group
# becomes the brand. "A (B) (C)" -> ("A (B)", "C").
_TRAILING_BRAND = re.compile(r"^(.+?)\s*\(([^)]+)\)$")

# Hour-of-day buckets, [start, end). 19-23 maps to dinner as in the legacy
# app; whether that should be its own bucket is an open product question.
MEAL_TYPE_BOUNDARIES: List[Tuple[int, int, str]] = [
    (6, 11, "breakfast"),
    (11, 15, "lunch"),
    (15, 19, "dinner"),
    (19, 23, "dinner"),
]
DEFAULT_MEAL_TYPE = "snack"

REQUIRED_MACROS = {
    "calories": "calories",
    "protein": "protein",
    "total_carbohydrate": "totalCarbohydrate",
    "total_fat": "totalFat",
}

OPTIONAL_NUTRIENTS = {
    "dietary_fiber": "dietaryFiber",
    "total_sugars": "totalSugars",
    "added_sugars": "addedSugars",
    "saturated_fat": "saturatedFat",
    "sodium": "sodium",
    "cholesterol": "cholesterol",
    "potassium": "potassium",
    "calcium": "calcium",
    "iron": "iron",
    "vitamin_a": "vitaminA",
    "vitamin_c": "vitaminC",
    "vitamin_d": "vitaminD",
    "vitamin_e": "vitaminE",
    "vitamin_k": "vitaminK",
    "thiamin": "thiamin",
    "riboflavin": "riboflavin",
    "niacin": "niacin",
    "vitamin_b6": "vitaminB6",
    "vitamin_b12": "vitaminB12",
    "folate": "folate",
    "magnesium": "magnesium",
    "phosphorus": "phosphorus",
    "zinc": "zinc",
}


def parse_food_name(full_name: Optional[str]) -> Tuple[str, Optional[str]]:
    """
    Split a legacy display name into (name, brand).

    "Chicken Breast (Perdue)" -> ("Chicken Breast", "Perdue")
    "Tomato" -> ("Tomato", None)
    "" or None -> ("Unknown Food", None)
    """
    if not full_name or not isinstance(full_name, str):
        return UNKNOWN_FOOD_NAME, None

    trimmed = full_name.strip()
    if not trimmed:
        return UNKNOWN_FOOD_NAME, None

    match = _TRAILING_BRAND.match(trimmed)
    if match:
        name = match.group(1).strip()
        brand = match.group(2).strip()
        if name and brand:
            return name, brand

    return trimmed, None


def infer_meal_type(
    logged_at: datetime,
    timezone: Optional[tzinfo] = None,
    boundaries: Sequence[Tuple[int, int, str]] = MEAL_TYPE_BOUNDARIES
) -> str:
    """Meal bucket for a consumption timestamp, by hour of day."""
    if logged_at.tzinfo is not None:
        logged_at = logged_at.astimezone(timezone or tz.tzlocal())
    hour = logged_at.hour

    for start, end, meal_type in boundaries:
        if start <= hour < end:
            return meal_type
    return DEFAULT_MEAL_TYPE


def photo_object_name(record: LegacyRecord) -> str:
    """Deterministic storage name for a food log's photo."""
    created_at = record.created_at
    if created_at is None:
        return f"foodlog_{record.id}.jpg"
    return f"foodlog_{record.id}_{int(created_at.timestamp() * 1000)}.jpg"


class TransformEngine:
    """
    Pure mapping functions from Parse records to Supabase rows.

    The brand heuristic and the meal-type table are injectable so that
    neither is load-bearing for the rest of the pipeline.
    """

    def __init__(
        self,
        name_parser: NameParser = parse_food_name,
        meal_timezone: Optional[str] = None,
        meal_boundaries: Sequence[Tuple[int, int, str]] = MEAL_TYPE_BOUNDARIES,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4())
    ):
        """
        Initialize the transform engine.

        Args:
            name_parser: Splits a display name into (name, brand)
            meal_timezone: IANA zone used to read the hour of a log; None for host local time
            meal_boundaries: (start_hour, end_hour, meal_type) table
            id_factory: Generates new target IDs
        """
        self.name_parser = name_parser
        self.meal_boundaries = list(meal_boundaries)
        self.new_id = id_factory
        self.meal_tz: Optional[tzinfo] = None
        if meal_timezone:
            self.meal_tz = tz.gettz(meal_timezone)
            if self.meal_tz is None:
                raise ValueError(f"Unknown timezone: {meal_timezone}")

    def transform_user(self, record: LegacyRecord) -> TargetRecord:
        """Map a Parse _User to an identity record."""
        email = (record.get_str("email") or "").strip()
        if not email:
            raise MissingRequiredField("User", "email", legacy_id=record.id)

        data = {
            "email": email,
            "username": record.get_str("username"),
            "email_verified": record.get_bool("emailVerified"),
            "created_at": record.created_at,
            "updated_at": record.updated_at,
            "parse_object_id": record.id,
        }
        return TargetRecord(id=self.new_id(), entity="User", data=data, legacy_id=record.id)

    def transform_food(self, record: LegacyRecord) -> TargetRecord:
        """Map a Parse Food to a foods row."""
        name, brand = self.name_parser(record.get_str("name"))
        target_id = self.new_id()

        data: Dict[str, Any] = {
            "id": target_id,
            "name": name,
            "brand": brand,
            "barcode": None,
            "description": None,
            "serving_size": self._number_or(record, "servingSize", 100),
            "measurement_unit": record.get_str("measurementUnit") or "g",
        }
        for column, key in REQUIRED_MACROS.items():
            data[column] = self._number_or(record, key, 0)
        for column, key in OPTIONAL_NUTRIENTS.items():
            data[column] = record.get_number(key)
        data["unsaturated_fat"] = None
        data["trans_fat"] = None
        data["created_at"] = record.created_at
        data["updated_at"] = record.updated_at

        return TargetRecord(id=target_id, entity="Food", data=data, legacy_id=record.id)

    def resolve_references(
        self,
        record: LegacyRecord,
        user_map: IdentityMap,
        food_map: IdentityMap
    ) -> Tuple[str, str]:
        """
        Target (user_id, food_id) for a food log.

        Raises:
            MissingRequiredField: the log has no user or food pointer
            UnresolvedReference: a pointer has no identity map entry
        """
        legacy_user = record.get_pointer_id("user")
        legacy_food = record.get_pointer_id("food")
        if not legacy_user:
            raise MissingRequiredField("FoodLog", "user", legacy_id=record.id)
        if not legacy_food:
            raise MissingRequiredField("FoodLog", "food", legacy_id=record.id)

        user_id = user_map.resolve(legacy_user)
        food_id = food_map.resolve(legacy_food)
        if user_id is None or food_id is None:
            missing = []
            if user_id is None:
                missing.append(f"user {legacy_user}")
            if food_id is None:
                missing.append(f"food {legacy_food}")
            raise UnresolvedReference(
                "FoodLog",
                record.id,
                missing,
                context={"user": legacy_user, "food": legacy_food},
            )
        return user_id, food_id

    def transform_food_log(
        self,
        record: LegacyRecord,
        user_map: IdentityMap,
        food_map: IdentityMap,
        photo_url: Optional[str] = None
    ) -> TargetRecord:
        """Map a Parse FoodLog to a food_logs row."""
        user_id, food_id = self.resolve_references(record, user_map, food_map)

        logged_at = record.get_datetime("date") or record.created_at
        if logged_at is None:
            raise MissingRequiredField("FoodLog", "date", legacy_id=record.id)

        target_id = self.new_id()
        data = {
            "id": target_id,
            "user_id": user_id,
            "food_id": food_id,
            "quantity": 1,
            "serving_size": self._number_or(record, "servingSize", 1),
            "unit": "serving",
            "total_grams": None,
            "meal_type": infer_meal_type(logged_at, self.meal_tz, self.meal_boundaries),
            "logged_at": logged_at,
            "created_at": record.created_at,
            "updated_at": record.updated_at,
            "notes": None,
            "brand": None,
            "custom_name": None,
            "is_deleted": False,
            "sync_status": "synced",
            "photo_url": photo_url,
        }
        return TargetRecord(id=target_id, entity="FoodLog", data=data, legacy_id=record.id)

    @staticmethod
    def _number_or(record: LegacyRecord, key: str, default: float) -> float:
        # Zero also takes the default.
        value = record.get_number(key)
        return default if not value else value
