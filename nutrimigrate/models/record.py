"""Record models for migration data."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from datetime import datetime

from dateutil import parser as date_parser

# Never copied into error reports.
SENSITIVE_FIELDS = frozenset({"authData", "sessionToken", "ACL", "password", "_hashed_password", "_auth_data"})


@dataclass
class LegacyRecord:
    """
    A record read from the legacy Parse backend.

    The payload is kept as the raw JSON object Parse returned. Callers go
    through the typed accessors below instead of indexing ``data`` directly,
    so that Parse's typed values (dates, pointers, files) are decoded in one
    place.
    """
    id: str
    entity: str  # User, Food, FoodLog
    data: Dict[str, Any]
    extracted_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def from_parse(cls, entity: str, payload: Dict[str, Any]) -> "LegacyRecord":
        """Build a record from a Parse REST result object."""
        return cls(id=str(payload.get("objectId", "")), entity=entity, data=dict(payload))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "entity": self.entity,
            "data": self.data,
            "extracted_at": self.extracted_at.isoformat(),
        }

    def redacted(self) -> Dict[str, Any]:
        """
        Payload safe to write to a report.

        Credentials and ACLs are dropped, and included objects (FoodLog.user,
        FoodLog.food) are reduced to pointers.
        """
        safe: Dict[str, Any] = {}
        for key, value in self.data.items():
            if key in SENSITIVE_FIELDS:
                continue
            if isinstance(value, dict) and value.get("__type") in ("Pointer", "Object"):
                value = {
                    "__type": "Pointer",
                    "className": value.get("className"),
                    "objectId": value.get("objectId"),
                }
            safe[key] = value
        return safe

    def get(self, key: str, default: Any = None) -> Any:
        """Raw value lookup."""
        value = self.data.get(key)
        return default if value is None else value

    def get_str(self, key: str) -> Optional[str]:
        """String value, or None when absent or not a string."""
        value = self.data.get(key)
        return value if isinstance(value, str) else None

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.data.get(key)
        return value if isinstance(value, bool) else default

    def get_number(self, key: str) -> Optional[float]:
        """
        Numeric value, or None when absent.

        Zero is returned as zero: callers rely on the difference between
        "not recorded" and "recorded as 0".
        """
        value = self.data.get(key)
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return value
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                return None
        return None

    def get_datetime(self, key: str) -> Optional[datetime]:
        """Decode a Parse Date object, an ISO string or a datetime."""
        value = self.data.get(key)
        if value is None:
            return None
        if isinstance(value, datetime):
            return value
        if isinstance(value, dict) and value.get("__type") == "Date":
            value = value.get("iso")
        if isinstance(value, str) and value:
            try:
                return date_parser.isoparse(value)
            except ValueError:
                return date_parser.parse(value)
        return None

    def get_pointer_id(self, key: str) -> Optional[str]:
        """objectId of a Pointer or of an included Object."""
        value = self.data.get(key)
        if isinstance(value, dict):
            object_id = value.get("objectId")
            return str(object_id) if object_id else None
        if isinstance(value, str) and value:
            return value
        return None

    def get_file_url(self, key: str) -> Optional[str]:
        """URL of a Parse File value."""
        value = self.data.get(key)
        if isinstance(value, dict):
            return value.get("url") or value.get("_url") or None
        if isinstance(value, str) and value:
            return value
        return None

    @property
    def created_at(self) -> Optional[datetime]:
        return self.get_datetime("createdAt")

    @property
    def updated_at(self) -> Optional[datetime]:
        return self.get_datetime("updatedAt")


@dataclass
class TargetRecord:
    """A record shaped for the Supabase target, with a freshly generated ID."""
    id: str
    entity: str
    data: Dict[str, Any]
    legacy_id: str
    transformed_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "entity": self.entity,
            "legacy_id": self.legacy_id,
            "data": self.data,
            "transformed_at": self.transformed_at.isoformat(),
        }

    def to_row(self) -> Dict[str, Any]:
        """Row payload for insertion, with datetimes as ISO strings."""
        row = {}
        for key, value in self.data.items():
            row[key] = value.isoformat() if isinstance(value, datetime) else value
        return row
