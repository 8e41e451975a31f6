"""Dedup-aware user writer: upsert by email into Supabase auth."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .base import BaseLoader
from ..models.record import TargetRecord
from ..services.identity_map import email_key

logger = logging.getLogger(__name__)

MIGRATED_MARKER = "migrated_from_parse"


@dataclass
class UpsertResult:
    """Outcome of upserting one user."""
    target_id: str
    created: bool
    warning: Optional[str] = None


class UserLoader(BaseLoader):
    """
    Upserts users by natural key (email, case-insensitive).

    An existing identity is reused; its metadata gets the migration marker
    merged in once. Otherwise a new identity is created. Running the stage
    any number of times never creates duplicates.
    """

    def __init__(self, store: Any, dry_run: bool = False):
        super().__init__(store, dry_run)
        self._by_email: Optional[Dict[str, Dict[str, Any]]] = None

    def _existing(self) -> Dict[str, Dict[str, Any]]:
        """Existing identities by email, fetched once per loader."""
        if self._by_email is None:
            logger.info("Fetching existing Supabase users...")
            by_email: Dict[str, Dict[str, Any]] = {}
            for identity in self.store.list_identities():
                key = email_key(identity.get("email"))
                if key:
                    by_email.setdefault(key, identity)
            # Only cache a complete listing; a failed one is retried on the next upsert.
            self._by_email = by_email
            logger.info(f"Found {len(by_email)} existing users in Supabase")
        return self._by_email

    def migration_metadata(self, record: TargetRecord) -> Dict[str, Any]:
        return {
            "username": record.data.get("username"),
            MIGRATED_MARKER: True,
            "parse_object_id": record.legacy_id,
        }

    def upsert(self, record: TargetRecord) -> UpsertResult:
        """
        Return the target ID for a user, creating the identity if needed.

        Raises:
            Exception: propagated from the store when creation fails
        """
        existing = self._existing()
        key = email_key(record.data["email"])
        found = existing.get(key)

        if found:
            warning = self._merge_metadata(found, record)
            logger.debug(f"Found existing user: {record.data['email']} (ID: {found['id']})")
            return UpsertResult(target_id=found["id"], created=False, warning=warning)

        metadata = self.migration_metadata(record)
        if self.dry_run:
            target_id = record.id
        else:
            target_id = self.store.create_identity(
                email=record.data["email"],
                email_confirm=bool(record.data.get("email_verified")),
                user_metadata=metadata,
            )
        existing[key] = {"id": target_id, "email": record.data["email"], "user_metadata": metadata}
        logger.debug(f"Created new user: {record.data['email']} (ID: {target_id})")
        return UpsertResult(target_id=target_id, created=True)

    def _merge_metadata(self, identity: Dict[str, Any], record: TargetRecord) -> Optional[str]:
        """Add migration provenance once. Returns a warning message on failure."""
        current = identity.get("user_metadata") or {}
        if current.get(MIGRATED_MARKER):
            return None

        merged = {**current, **self.migration_metadata(record)}
        if not self.dry_run:
            try:
                self.store.update_identity_metadata(identity["id"], merged)
            except Exception as e:
                logger.error(f"User metadata update failed for {record.data['email']}: {e}")
                return f"User metadata update failed: {e}"
        identity["user_metadata"] = merged
        logger.debug(f"Updated metadata for existing user: {record.data['email']}")
        return None
