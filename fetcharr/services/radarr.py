"""Radarr API client."""
from typing import List, Dict, Any, Optional

from fetcharr.core.errors import MalformedReply, NotFoundError, RemoteRejected
from fetcharr.core.models import ContentItem, FulfillmentCommand, ManagerEndpoint, MediaKind
from fetcharr.services.arr import ArrService


class RadarrService(ArrService):
    """Service pour interagir avec Radarr."""

    kind = MediaKind.MOVIE
    label = "radarr"
    resource = "movie"
    queue_id_field = "movieId"
    exists_error_code = "MovieExistsValidator"

    def find_record(self, records: List[Dict[str, Any]], item: ContentItem) -> Optional[Dict[str, Any]]:
        """Radarr stocke l'identifiant TMDB: correspondance directe."""
        for record in records:
            if record.get("tmdbId") == item.tmdb_id:
                return record
        return None

    def has_file(self, record: Dict[str, Any]) -> bool:
        return bool(record.get("hasFile"))

    def is_released(self, record: Dict[str, Any], item: ContentItem) -> bool:
        status = record.get("status")
        if status:
            return status == "released"
        return item.is_released()

    async def lookup(self, endpoint: ManagerEndpoint, command: FulfillmentCommand) -> Dict[str, Any]:
        try:
            record = await self._get(endpoint, "/api/v3/movie/lookup/tmdb", params={"tmdbId": command.tmdb_id})
        except RemoteRejected as e:
            if e.status_code == 404:
                raise NotFoundError(f"Movie not found in TMDB (tmdbId={command.tmdb_id})") from e
            raise
        if isinstance(record, list):
            record = record[0] if record else None
        if not record:
            raise NotFoundError(f"Movie not found in TMDB (tmdbId={command.tmdb_id})")
        if not isinstance(record, dict):
            raise MalformedReply(self.label, "unexpected lookup reply")
        return record

    def build_add_payload(
        self,
        record: Dict[str, Any],
        root_folder_path: str,
        quality_profile_id: int,
        command: FulfillmentCommand,
    ) -> Dict[str, Any]:
        return {
            "title": record.get("title") or command.title,
            "tmdbId": record.get("tmdbId") or command.tmdb_id,
            "year": record.get("year") or command.year,
            "qualityProfileId": quality_profile_id,
            "rootFolderPath": root_folder_path,
            "monitored": True,
            "addOptions": {"searchForMovie": True},
        }
