"""Best-effort transfer of food log photos into Supabase Storage."""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "heic": "image/heic",
    "webp": "image/webp",
}
DEFAULT_CONTENT_TYPE = "image/jpeg"


def content_type_for(file_name: str) -> str:
    """Content type from a file name's extension."""
    if "." not in file_name:
        return DEFAULT_CONTENT_TYPE
    ext = file_name.rsplit(".", 1)[-1].lower()
    return CONTENT_TYPES.get(ext, DEFAULT_CONTENT_TYPE)


@dataclass
class AssetResult:
    """Outcome of one photo transfer."""
    source_url: str
    url: str  # reference to persist: new public URL, or source_url on fallback
    migrated: bool = False
    error: Optional[str] = None
    skipped: bool = False

    @property
    def degraded(self) -> bool:
        return not self.migrated and not self.skipped


class AssetMigrator:
    """
    Copies a legacy photo into the target bucket.

    ``migrate`` never raises: on any fetch or upload failure the result
    carries the legacy URL and an error message, so the food log can still
    be written.
    """

    def __init__(
        self,
        store: Any,
        bucket: str = "food-photos",
        timeout: float = 30.0,
        dry_run: bool = False,
        session: Optional[requests.Session] = None
    ):
        """
        Args:
            store: Target store adapter (``upload_object`` / ``public_url``)
            bucket: Storage bucket for photos
            timeout: Download timeout in seconds
            dry_run: If True, skip transfers and keep the legacy URL
            session: Custom requests session for downloads, shared by all
                threads. Without one, each worker thread opens its own.
        """
        self.store = store
        self.bucket = bucket
        self.timeout = timeout
        self.dry_run = dry_run
        self._session = session
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        """Download session for the calling thread."""
        if self._session is not None:
            return self._session
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
        return session

    def download(self, url: str) -> bytes:
        """Fetch binary content. Non-2xx responses raise HTTPError."""
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        return response.content

    def migrate(self, source_url: str, target_name: str) -> AssetResult:
        """Copy ``source_url`` to ``target_name`` in the bucket."""
        if self.dry_run:
            return AssetResult(source_url=source_url, url=source_url, skipped=True)

        if "." not in target_name:
            target_name += ".jpg"

        try:
            logger.debug(f"Downloading photo: {target_name}")
            body = self.download(source_url)
            self.store.upload_object(
                bucket=self.bucket,
                key=target_name,
                body=body,
                content_type=content_type_for(target_name),
            )
            public_url = self.store.public_url(bucket=self.bucket, key=target_name)
        except Exception as e:
            logger.warning(f"Photo migration failed for {target_name}, keeping legacy URL: {e}")
            return AssetResult(source_url=source_url, url=source_url, error=str(e))

        logger.info(f"Photo migrated: {target_name} -> {public_url}")
        return AssetResult(source_url=source_url, url=public_url, migrated=True)
