"""Legacy ID -> target ID maps for remapped entities (users, foods)."""

import logging
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from ..extractors.base import BaseExtractor

logger = logging.getLogger(__name__)

# full food name -> (name, brand)
NameParser = Callable[[Optional[str]], Tuple[str, Optional[str]]]


class IdentityMap:
    """
    Maps legacy object IDs to target IDs for one entity type.

    Written only during the build phase of its own stage, then frozen.
    After ``freeze()`` the map is read-only and safe to share between
    worker threads.
    """

    def __init__(self, entity: str, origin: str = "run"):
        self.entity = entity
        self.origin = origin  # run, reconstructed
        self._entries: Dict[str, str] = {}
        self._frozen = False

    def set(self, legacy_id: str, target_id: str) -> None:
        """Record a mapping. A legacy ID may only ever map to one target ID."""
        if self._frozen:
            raise RuntimeError(f"{self.entity} identity map is frozen")
        current = self._entries.get(legacy_id)
        if current is not None and current != target_id:
            raise ValueError(
                f"{self.entity} {legacy_id} already maps to {current}, refusing {target_id}"
            )
        self._entries[legacy_id] = target_id

    def resolve(self, legacy_id: str) -> Optional[str]:
        """Target ID for a legacy ID, or None on a miss."""
        return self._entries.get(legacy_id)

    def freeze(self) -> "IdentityMap":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, legacy_id: object) -> bool:
        return legacy_id in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def to_dict(self) -> Dict[str, str]:
        return dict(self._entries)


def email_key(email: Optional[str]) -> Optional[str]:
    """Natural key for users."""
    if not email:
        return None
    return email.strip().lower() or None


class IdentityReconstructor:
    """
    Rebuilds identity maps from data already in the target store.

    Used when the food log stage runs without its prerequisite stages in the
    same invocation. Legacy and target records are joined on their natural
    key: email (case-insensitive) for users, (name, brand) after the name
    parser for foods. Legacy records without a match are left out of the
    map; their dependents fail later as unresolved references.

    Two legacy foods with the same (name, brand) both map to the first
    matching target food.
    """

    def __init__(self, extractor: BaseExtractor, store: Any, name_parser: NameParser, limit: Optional[int] = None):
        """
        Args:
            extractor: Legacy source reader
            store: Target store adapter (``list_identities`` / ``select_rows``)
            name_parser: Same (name, brand) parser the foods stage used
            limit: Source cap for legacy reads
        """
        self.extractor = extractor
        self.store = store
        self.name_parser = name_parser
        self.limit = limit

    def users(self) -> IdentityMap:
        """Rebuild the user map by matching emails."""
        logger.info("Building user mapping from existing Supabase data...")
        identities = self.store.list_identities()

        by_email: Dict[str, str] = {}
        for identity in identities:
            key = email_key(identity.get("email"))
            if key:
                by_email.setdefault(key, identity["id"])

        identity_map = IdentityMap("User", origin="reconstructed")
        unmatched = 0
        for record in self.extractor.fetch("User", self.limit):
            target_id = by_email.get(email_key(record.get_str("email")) or "")
            if target_id:
                identity_map.set(record.id, target_id)
            else:
                unmatched += 1

        logger.info(f"Built user mapping: {len(identity_map)} users mapped, {unmatched} unmatched")
        return identity_map.freeze()

    def foods(self) -> IdentityMap:
        """Rebuild the food map by matching (name, brand)."""
        logger.info("Building food mapping from existing Supabase data...")
        rows = self.store.select_rows("foods", "id, name, brand")

        by_key: Dict[Tuple[Any, Any], str] = {}
        for row in rows:
            by_key.setdefault((row.get("name"), row.get("brand")), row["id"])

        identity_map = IdentityMap("Food", origin="reconstructed")
        matched_targets: Dict[str, List[str]] = {}
        unmatched = 0
        for record in self.extractor.fetch("Food", self.limit):
            key = self.name_parser(record.get_str("name"))
            target_id = by_key.get(key)
            if target_id:
                identity_map.set(record.id, target_id)
                matched_targets.setdefault(target_id, []).append(record.id)
            else:
                unmatched += 1

        collisions = sum(1 for ids in matched_targets.values() if len(ids) > 1)
        if collisions:
            logger.warning(f"{collisions} target foods matched more than one legacy food by name/brand")
        logger.info(f"Built food mapping: {len(identity_map)} foods mapped, {unmatched} unmatched")
        return identity_map.freeze()
