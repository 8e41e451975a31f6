"""Parse Server REST extractor for the legacy nutrition tracker backend."""

import logging
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import BaseExtractor
from ..exceptions import SourceUnavailable
from ..models.migration import MigrationConfig
from ..models.record import LegacyRecord

logger = logging.getLogger(__name__)


class ParseExtractor(BaseExtractor):
    """
    Extractor for the Parse Server REST API.

    Reads with the master key, so it sees every user's rows. Supports:
    - Offset pagination ordered by creation time
    - Pointer expansion (``include``) for FoodLog.user / FoodLog.food
    - Record counts
    - Retry with backoff on 429/5xx
    """

    ENTITY_ENDPOINTS = {
        "User": "/users",
        "Food": "/classes/Food",
        "FoodLog": "/classes/FoodLog",
    }

    ENTITY_INCLUDES = {
        "FoodLog": "user,food",
    }

    def __init__(
        self,
        server_url: str,
        application_id: str,
        master_key: str,
        max_records: int = 1000,
        page_size: int = 100,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_factor: float = 2.0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the Parse extractor.

        Args:
            server_url: Parse server URL
            application_id: Parse application ID
            master_key: Parse master key
            max_records: Safety cap per fetch call
            page_size: Records per request
            timeout: Per-request timeout in seconds
            max_retries: Retries on throttling and server errors
            backoff_factor: Exponential backoff factor between retries
            session: Custom requests session
        """
        super().__init__(max_records=max_records, page_size=page_size)
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout
        self._session = session or self._create_session(max_retries, backoff_factor)
        self._session.headers.update({
            "X-Parse-Application-Id": application_id,
            "X-Parse-Master-Key": master_key,
        })

    @classmethod
    def from_config(cls, config: MigrationConfig) -> "ParseExtractor":
        return cls(
            server_url=config.parse_server_url,
            application_id=config.parse_application_id,
            master_key=config.parse_master_key,
            max_records=config.source_limit,
            page_size=config.source_page_size,
            timeout=config.timeout_seconds,
            max_retries=config.max_retries,
            backoff_factor=config.backoff_factor,
        )

    def _create_session(self, max_retries: int, backoff_factor: float) -> requests.Session:
        """Create a requests session with retry logic."""
        session = requests.Session()

        retries = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )

        adapter = HTTPAdapter(max_retries=retries)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        return session

    def _get_endpoint(self, entity: str) -> str:
        self._check_entity(entity)
        return self.ENTITY_ENDPOINTS[entity]

    def _get(self, entity: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.server_url}{self._get_endpoint(entity)}"
        try:
            response = self._session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            message = str(e)
            try:
                message = e.response.json().get("error") or message
            except (ValueError, AttributeError):
                pass
            raise SourceUnavailable(
                f"Parse query for {entity} failed: {message}",
                entity=entity,
                context={"url": url, "status_code": status},
            ) from e
        except (requests.exceptions.RequestException, ValueError) as e:
            raise SourceUnavailable(
                f"Parse query for {entity} failed: {e}",
                entity=entity,
                context={"url": url},
            ) from e

    def fetch_page(self, entity: str, offset: int, limit: int) -> List[LegacyRecord]:
        """Fetch one page of records from Parse."""
        params: Dict[str, Any] = {
            "limit": limit,
            "skip": offset,
            "order": "createdAt",
        }
        include = self.ENTITY_INCLUDES.get(entity)
        if include:
            params["include"] = include

        data = self._get(entity, params)
        results = data.get("results", [])
        logger.debug(f"Fetched {len(results)} {entity} records (skip={offset})")

        return [LegacyRecord.from_parse(entity, item) for item in results]

    def count(self, entity: str) -> int:
        """Count records of a type using Parse's count query."""
        data = self._get(entity, {"count": 1, "limit": 0})
        return int(data.get("count", 0))
