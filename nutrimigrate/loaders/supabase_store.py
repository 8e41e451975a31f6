"""
Supabase adapter for the target backend.

Everything the writers, the identity reconstructor and the asset migrator
need from Supabase goes through this class:

- identity store: list / create users, merge user metadata
- collections: batch insert and paged select on ``foods`` / ``food_logs``
- storage: upload with overwrite, public URL lookup
- a connection check

The client is duck-typed (``auth.admin``, ``table()``, ``storage.from_()``)
so tests can hand in a fake.
"""

import logging
from typing import Any, Dict, List, Optional

from supabase import ClientOptions, create_client

from ..exceptions import TargetUnavailable
from ..models.migration import MigrationConfig

logger = logging.getLogger(__name__)


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Attribute or key access, whichever the client version returns."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


class SupabaseStore:
    """Target store backed by a supabase client (service role)."""

    def __init__(self, client: Any, page_size: int = 1000):
        self._client = client
        self.page_size = page_size

    @classmethod
    def from_config(cls, config: MigrationConfig) -> "SupabaseStore":
        """Create a store with a service-role client and enforced timeouts."""
        options = ClientOptions(
            postgrest_client_timeout=config.timeout_seconds,
            storage_client_timeout=int(config.timeout_seconds),
            auto_refresh_token=False,
            persist_session=False,
        )
        client = create_client(config.supabase_url, config.supabase_service_key, options=options)
        return cls(client)

    # --- Connectivity ------------------------------------------------------------

    def validate_connection(self) -> None:
        """Raise TargetUnavailable unless a trivial query succeeds."""
        try:
            self._client.table("foods").select("id").limit(1).execute()
        except Exception as e:
            raise TargetUnavailable(f"Supabase connection failed: {e}") from e

    # --- Identity store ----------------------------------------------------------

    def list_identities(self) -> List[Dict[str, Any]]:
        """All auth users as dicts with id, email and user_metadata."""
        identities: List[Dict[str, Any]] = []
        page = 1
        while True:
            users = self._client.auth.admin.list_users(page=page, per_page=self.page_size)
            users = list(users or [])
            for user in users:
                identities.append({
                    "id": str(_field(user, "id")),
                    "email": _field(user, "email"),
                    "user_metadata": dict(_field(user, "user_metadata") or {}),
                })
            if len(users) < self.page_size:
                break
            page += 1

        logger.debug(f"Listed {len(identities)} Supabase users")
        return identities

    def get_identity(self, identity_id: str) -> Optional[Dict[str, Any]]:
        """One auth user, or None when it does not exist."""
        try:
            response = self._client.auth.admin.get_user_by_id(identity_id)
        except Exception as e:
            logger.debug(f"User lookup for {identity_id} failed: {e}")
            return None
        user = _field(response, "user")
        if not user:
            return None
        return {"id": str(_field(user, "id")), "email": _field(user, "email")}

    def create_identity(self, email: str, email_confirm: bool, user_metadata: Dict[str, Any]) -> str:
        """Create an auth user and return its ID."""
        response = self._client.auth.admin.create_user({
            "email": email,
            "email_confirm": email_confirm,
            "user_metadata": user_metadata,
        })
        user = _field(response, "user")
        if not user or not _field(user, "id"):
            raise RuntimeError(f"Supabase did not return a user for {email}")
        return str(_field(user, "id"))

    def update_identity_metadata(self, identity_id: str, user_metadata: Dict[str, Any]) -> None:
        self._client.auth.admin.update_user_by_id(identity_id, {"user_metadata": user_metadata})

    # --- Collections -------------------------------------------------------------

    def insert_rows(self, table: str, rows: List[Dict[str, Any]]) -> None:
        """Insert rows in one call. Raises on any API error."""
        self._client.table(table).insert(rows).execute()

    def select_rows(self, table: str, columns: str = "*", limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Rows of a table, paged. With ``limit``, at most that many rows are fetched."""
        rows: List[Dict[str, Any]] = []
        start = 0
        while limit is None or start < limit:
            size = self.page_size if limit is None else min(self.page_size, limit - start)
            response = (
                self._client.table(table)
                .select(columns)
                .range(start, start + size - 1)
                .execute()
            )
            page = list(_field(response, "data") or [])
            rows.extend(page)
            if len(page) < size:
                break
            start += size
        return rows

    def select_in(self, table: str, column: str, values: List[Any], columns: str = "*") -> List[Dict[str, Any]]:
        """Rows whose ``column`` is one of ``values``."""
        if not values:
            return []
        response = self._client.table(table).select(columns).in_(column, list(values)).execute()
        return list(_field(response, "data") or [])

    def count_rows(self, table: str) -> int:
        response = self._client.table(table).select("id", count="exact").limit(1).execute()
        return int(_field(response, "count") or 0)

    # --- Storage -----------------------------------------------------------------

    def upload_object(self, *, bucket: str, key: str, body: bytes, content_type: str) -> None:
        """Upload, overwriting any existing object with the same key."""
        norm_key = key[1:] if key.startswith("/") else key
        self._client.storage.from_(bucket).upload(
            norm_key,
            body,
            {"content-type": content_type, "upsert": "true"},
        )

    def public_url(self, *, bucket: str, key: str) -> str:
        norm_key = key[1:] if key.startswith("/") else key
        url = self._client.storage.from_(bucket).get_public_url(norm_key)
        if isinstance(url, dict):
            url = url.get("publicUrl") or url.get("public_url") or (url.get("data") or {}).get("publicUrl")
        if not url:
            raise RuntimeError(f"No public URL for {bucket}/{norm_key}")
        return str(url)
