"""Shared Radarr/Sonarr API client."""
import logging
from typing import Any, Dict, List, Optional

from fetcharr.core.cache import AvailabilityCache, CacheKey
from fetcharr.core.errors import NotConfigured, RemoteError
from fetcharr.core.models import (
    ContentItem, FulfillmentCommand, ManagerEndpoint, ManagerStatus, MediaKind, ServerBinding,
)
from fetcharr.core.rules import classify_manager_record
from fetcharr.utils.http_client import ServiceHTTPClient

logger = logging.getLogger(__name__)


class ArrService:
    """Base commune Radarr/Sonarr.

    Subclasses supply the media kind, the resource names and the kind-specific
    hooks: how a tracked record is matched to a catalog item, how a lookup is
    resolved, and how the add payload is shaped.
    """

    kind: MediaKind
    label: str
    resource: str
    queue_id_field: str
    exists_error_code: str

    def __init__(self, http: ServiceHTTPClient, cache: AvailabilityCache):
        self.http = http
        self.cache = cache

    # --- plumbing -------------------------------------------------------

    def endpoint_for(self, binding: ServerBinding) -> ManagerEndpoint:
        endpoint = binding.manager_for(self.kind)
        if endpoint is None:
            raise NotConfigured(f"{self.label.title()} not configured")
        return endpoint

    def _get_headers(self, endpoint: ManagerEndpoint) -> Dict[str, str]:
        """Get API headers."""
        return {"X-Api-Key": endpoint.api_key}

    def _service_name(self, endpoint: ManagerEndpoint) -> str:
        return f"{self.label}:{endpoint.url.rstrip('/')}"

    async def _get(self, endpoint: ManagerEndpoint, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.http.get_json(
            f"{endpoint.url.rstrip('/')}{path}",
            self._service_name(endpoint),
            headers=self._get_headers(endpoint),
            params=params,
        )

    async def _post(self, endpoint: ManagerEndpoint, path: str, payload: Dict[str, Any]) -> Any:
        return await self.http.post_json(
            f"{endpoint.url.rstrip('/')}{path}",
            self._service_name(endpoint),
            headers=self._get_headers(endpoint),
            json=payload,
        )

    # --- status ---------------------------------------------------------

    def find_record(self, records: List[Dict[str, Any]], item: ContentItem) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def has_file(self, record: Dict[str, Any]) -> bool:
        raise NotImplementedError

    def is_released(self, record: Dict[str, Any], item: ContentItem) -> bool:
        raise NotImplementedError

    async def get_records(self, endpoint: ManagerEndpoint) -> List[Dict[str, Any]]:
        """Récupère tous les éléments suivis."""
        return await self._get(endpoint, f"/api/v3/{self.resource}") or []

    async def _in_queue(self, endpoint: ManagerEndpoint, manager_id: int) -> bool:
        data = await self._get(endpoint, "/api/v3/queue", params={"pageSize": 1000})
        records = data.get("records", []) if isinstance(data, dict) else (data or [])
        return any(r.get(self.queue_id_field) == manager_id for r in records)

    async def _fetch_status(self, endpoint: ManagerEndpoint, item: ContentItem) -> Optional[ManagerStatus]:
        record = self.find_record(await self.get_records(endpoint), item)
        if record is None:
            return None
        has_file = self.has_file(record)
        monitored = bool(record.get("monitored"))
        queued = False
        if monitored and not has_file:
            queued = await self._in_queue(endpoint, record.get("id"))
        return classify_manager_record(monitored, has_file, queued, self.is_released(record, item))

    async def get_status(self, binding: ServerBinding, item: ContentItem) -> Optional[ManagerStatus]:
        """Statut de l'élément dans le gestionnaire, None si inconnu ou injoignable."""
        endpoint = binding.manager_for(self.kind)
        if endpoint is None:
            return None

        key = CacheKey(binding.id, self.label, item.tmdb_id)
        cached, found = self.cache.get(key)
        if found:
            return cached

        try:
            status = await self._fetch_status(endpoint, item)
        except Exception as e:
            # Includes malformed payloads, not only RemoteError: search must not fail here
            logger.warning(f"{self.label.title()} status check failed on {binding.name} for {item.title!r}: {e}")
            status = None

        # Cached even when None so a down or misconfigured manager is not hammered
        self.cache.put(key, status)
        return status

    def forget(self, binding: ServerBinding, tmdb_id: int) -> None:
        """Oublie le statut en cache après un ajout."""
        self.cache.discard(CacheKey(binding.id, self.label, tmdb_id))

    # --- fulfillment ----------------------------------------------------

    async def lookup(self, endpoint: ManagerEndpoint, command: FulfillmentCommand) -> Dict[str, Any]:
        """Resolve the catalog item to the manager's record, NotFoundError when unknown."""
        raise NotImplementedError

    def build_add_payload(
        self,
        record: Dict[str, Any],
        root_folder_path: str,
        quality_profile_id: int,
        command: FulfillmentCommand,
    ) -> Dict[str, Any]:
        raise NotImplementedError

    async def get_root_folders(self, endpoint: ManagerEndpoint) -> List[Dict[str, Any]]:
        return await self._get(endpoint, "/api/v3/rootfolder") or []

    async def get_quality_profiles(self, endpoint: ManagerEndpoint) -> List[Dict[str, Any]]:
        return await self._get(endpoint, "/api/v3/qualityprofile") or []

    async def add(self, endpoint: ManagerEndpoint, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._post(endpoint, f"/api/v3/{self.resource}", payload) or {}

    async def test_connection(self, binding: ServerBinding) -> Dict[str, Any]:
        """Teste la connexion (system/status)."""
        endpoint = binding.manager_for(self.kind)
        if endpoint is None:
            return {"success": False, "configured": False}
        try:
            data = await self._get(endpoint, "/api/v3/system/status")
        except RemoteError as e:
            return {"success": False, "configured": True, "error": str(e)}
        return {"success": True, "configured": True, "version": (data or {}).get("version")}
