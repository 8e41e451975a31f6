"""
Shared fakes for the migration tests.

No test talks to a real Parse server or Supabase project:
- InMemoryStore mirrors the SupabaseStore surface (identities, tables, storage)
- FakeExtractor serves scripted legacy records page by page
- FakeSession/FakeResponse stand in for requests sessions
"""
import itertools
import threading
from typing import Any, Callable, Dict, List, Optional

import pytest
import requests

from nutrimigrate.exceptions import SourceUnavailable, TargetUnavailable
from nutrimigrate.extractors.base import BaseExtractor
from nutrimigrate.models.migration import MigrationConfig
from nutrimigrate.models.record import LegacyRecord


def _project(rows: List[Dict[str, Any]], columns: str) -> List[Dict[str, Any]]:
    if columns.strip() == "*":
        return [dict(r) for r in rows]
    names = [c.strip() for c in columns.split(",")]
    return [{name: r.get(name) for name in names} for r in rows]


class InMemoryStore:
    """Supabase-shaped target store kept in dicts."""

    PUBLIC_BASE = "http://supabase.test/storage/v1/object/public"

    def __init__(self):
        self.identities: List[Dict[str, Any]] = []
        self.tables: Dict[str, List[Dict[str, Any]]] = {"foods": [], "food_logs": []}
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.available = True
        self.fail_insert: Optional[Callable[[str, List[Dict[str, Any]]], bool]] = None
        self.fail_metadata_update = False
        self.fail_upload = False
        self.fail_listing = False
        self.insert_calls: List[tuple] = []
        self.metadata_updates: List[str] = []
        self.select_calls: List[tuple] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def validate_connection(self) -> None:
        if not self.available:
            raise TargetUnavailable("Supabase connection failed: connection refused")

    # identity store

    def list_identities(self) -> List[Dict[str, Any]]:
        if self.fail_listing:
            raise RuntimeError("listing failed")
        return [dict(i, user_metadata=dict(i["user_metadata"])) for i in self.identities]

    def get_identity(self, identity_id: str) -> Optional[Dict[str, Any]]:
        for identity in self.identities:
            if identity["id"] == identity_id:
                return {"id": identity["id"], "email": identity["email"]}
        return None

    def create_identity(self, email: str, email_confirm: bool, user_metadata: Dict[str, Any]) -> str:
        if any(i["email"].lower() == email.lower() for i in self.identities):
            raise RuntimeError("A user with this email address has already been registered")
        identity_id = f"sb-user-{next(self._ids)}"
        self.identities.append({
            "id": identity_id,
            "email": email,
            "email_confirm": email_confirm,
            "user_metadata": dict(user_metadata),
        })
        return identity_id

    def add_identity(self, email: str, user_metadata: Optional[Dict[str, Any]] = None) -> str:
        identity_id = f"sb-user-{next(self._ids)}"
        self.identities.append({"id": identity_id, "email": email, "user_metadata": dict(user_metadata or {})})
        return identity_id

    def update_identity_metadata(self, identity_id: str, user_metadata: Dict[str, Any]) -> None:
        if self.fail_metadata_update:
            raise RuntimeError("metadata update rejected")
        self.metadata_updates.append(identity_id)
        for identity in self.identities:
            if identity["id"] == identity_id:
                identity["user_metadata"] = dict(user_metadata)

    # collections

    def insert_rows(self, table: str, rows: List[Dict[str, Any]]) -> None:
        with self._lock:
            self.insert_calls.append((table, len(rows)))
            if self.fail_insert is not None and self.fail_insert(table, rows):
                raise RuntimeError(f"insert into {table} rejected")
            self.tables.setdefault(table, []).extend(dict(r) for r in rows)

    def select_rows(self, table: str, columns: str = "*", limit: Optional[int] = None) -> List[Dict[str, Any]]:
        if self.fail_listing:
            raise RuntimeError("listing failed")
        self.select_calls.append(("rows", table, limit))
        rows = self.tables.get(table, [])
        if limit is not None:
            rows = rows[:max(limit, 0)]
        return _project(rows, columns)

    def select_in(self, table: str, column: str, values: List[Any], columns: str = "*") -> List[Dict[str, Any]]:
        self.select_calls.append(("in", table, sorted(values)))
        wanted = set(values)
        return _project([r for r in self.tables.get(table, []) if r.get(column) in wanted], columns)

    def count_rows(self, table: str) -> int:
        return len(self.tables.get(table, []))

    # storage

    def upload_object(self, *, bucket: str, key: str, body: bytes, content_type: str) -> None:
        if self.fail_upload:
            raise RuntimeError("storage unavailable")
        with self._lock:
            self.objects[f"{bucket}/{key}"] = {"body": body, "content_type": content_type}

    def public_url(self, *, bucket: str, key: str) -> str:
        return f"{self.PUBLIC_BASE}/{bucket}/{key}"


class FakeExtractor(BaseExtractor):
    """Legacy reader over in-memory record lists."""

    def __init__(self, records: Optional[Dict[str, List[LegacyRecord]]] = None, max_records: int = 1000, page_size: int = 100):
        super().__init__(max_records=max_records, page_size=page_size)
        records = records or {}
        self.records = {entity: list(records.get(entity, [])) for entity in self.ENTITY_TYPES}
        self.unavailable = set()
        self.calls: List[tuple] = []

    def _check_available(self, entity: str) -> None:
        if entity in self.unavailable:
            raise SourceUnavailable(f"Parse query for {entity} failed: connection refused", entity=entity)

    def fetch_page(self, entity: str, offset: int, limit: int) -> List[LegacyRecord]:
        self.calls.append((entity, offset, limit))
        self._check_available(entity)
        return self.records[entity][offset:offset + limit]

    def count(self, entity: str) -> int:
        self._check_available(entity)
        return len(self.records[entity])


class FakeResponse:
    def __init__(self, status_code: int = 200, json_data: Any = None, content: bytes = b""):
        self.status_code = status_code
        self._json = json_data
        self.content = content

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeSession:
    """requests.Session stand-in; ``handler(url, params)`` returns a FakeResponse or raises."""

    def __init__(self, handler: Callable[[str, Dict[str, Any]], FakeResponse]):
        self.handler = handler
        self.headers: Dict[str, str] = {}
        self.calls: List[Dict[str, Any]] = []

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": dict(params or {}), "timeout": timeout})
        return self.handler(url, params or {})


# Legacy record builders (Parse REST shapes)

def pointer(class_name: str, object_id: str) -> Dict[str, str]:
    return {"__type": "Pointer", "className": class_name, "objectId": object_id}


def parse_date(iso: str) -> Dict[str, str]:
    return {"__type": "Date", "iso": iso}


def make_user(object_id: str, email: Optional[str], username: Optional[str] = None, verified: bool = True,
              created: str = "2023-05-01T10:00:00.000Z") -> LegacyRecord:
    payload = {
        "objectId": object_id,
        "username": username or (email or object_id).split("@")[0],
        "emailVerified": verified,
        "createdAt": created,
        "updatedAt": created,
    }
    if email is not None:
        payload["email"] = email
    return LegacyRecord.from_parse("User", payload)


def make_food(object_id: str, name: Optional[str], created: str = "2023-06-01T12:00:00.000Z", **fields) -> LegacyRecord:
    payload = {
        "objectId": object_id,
        "name": name,
        "calories": 165,
        "protein": 31,
        "totalCarbohydrate": 0,
        "totalFat": 3.6,
        "servingSize": 100,
        "measurementUnit": "g",
        "createdAt": created,
        "updatedAt": created,
    }
    payload.update(fields)
    return LegacyRecord.from_parse("Food", payload)


def make_food_log(object_id: str, user_id: Optional[str], food_id: Optional[str],
                  date: Optional[str] = "2024-01-15T08:30:00.000Z", photo_url: Optional[str] = None,
                  created: Optional[str] = "2024-01-15T08:31:00.000Z", **fields) -> LegacyRecord:
    payload: Dict[str, Any] = {"objectId": object_id, "servingSize": 2}
    if user_id:
        payload["user"] = pointer("_User", user_id)
    if food_id:
        payload["food"] = pointer("Food", food_id)
    if date:
        payload["date"] = parse_date(date)
    if created:
        payload["createdAt"] = created
        payload["updatedAt"] = created
    if photo_url:
        payload["photo"] = {"__type": "File", "name": "photo.jpg", "url": photo_url}
    payload.update(fields)
    return LegacyRecord.from_parse("FoodLog", payload)


LEGACY_PHOTO_URL = "http://files.parse.test/app/5f3c_photo.jpg"


@pytest.fixture
def legacy_data() -> Dict[str, List[LegacyRecord]]:
    return {
        "User": [
            make_user("u1", "alice@example.com"),
            make_user("u2", "bob@example.com"),
        ],
        "Food": [
            make_food("f1", "Chicken Breast (Perdue)"),
            make_food("f2", "Tomato", calories=22, protein=1.1),
        ],
        "FoodLog": [
            make_food_log("l1", "u1", "f1", date="2024-01-15T08:30:00.000Z"),
            make_food_log("l2", "u2", "f2", date="2024-01-15T13:00:00.000Z"),
            make_food_log("l3", "u1", "f2", date="2024-01-16T19:45:00.000Z",
                          created="2024-01-16T19:46:00.000Z", photo_url=LEGACY_PHOTO_URL),
        ],
    }


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def extractor(legacy_data) -> FakeExtractor:
    return FakeExtractor(legacy_data)


@pytest.fixture
def config() -> MigrationConfig:
    return MigrationConfig(
        parse_application_id="app-id",
        parse_master_key="master-key",
        parse_server_url="http://parse.test",
        supabase_url="http://supabase.test",
        supabase_service_key="service-key",
        meal_timezone="UTC",
        output_dir="",
    )
