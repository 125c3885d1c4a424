"""Sonarr API client."""
from typing import List, Dict, Any, Optional

from fetcharr.core.errors import MalformedReply, NotFoundError
from fetcharr.core.models import ContentItem, FulfillmentCommand, ManagerEndpoint, MediaKind
from fetcharr.services.arr import ArrService


def _same_title(record: Dict[str, Any], title: str, year: Optional[int]) -> bool:
    if (record.get("title") or "").casefold() != title.casefold():
        return False
    record_year = record.get("year")
    if not year or not record_year:
        return True
    return int(record_year) == int(year)


class SonarrService(ArrService):
    """Service pour interagir avec Sonarr.

    Sonarr indexes series by TVDB id. Recent versions also expose ``tmdbId``
    on each series, which is used when present; otherwise the match falls
    back to title and year.
    """

    kind = MediaKind.SERIES
    label = "sonarr"
    resource = "series"
    queue_id_field = "seriesId"
    exists_error_code = "SeriesExistsValidator"

    def find_record(self, records: List[Dict[str, Any]], item: ContentItem) -> Optional[Dict[str, Any]]:
        for record in records:
            if record.get("tmdbId") and record.get("tmdbId") == item.tmdb_id:
                return record
        # Fallback par titre, uniquement pour les séries sans tmdbId
        for record in records:
            if not record.get("tmdbId") and _same_title(record, item.title, item.year):
                return record
        return None

    def has_file(self, record: Dict[str, Any]) -> bool:
        stats = record.get("statistics") or {}
        return bool(stats.get("episodeCount")) and stats.get("percentOfEpisodes", 0) >= 100

    def is_released(self, record: Dict[str, Any], item: ContentItem) -> bool:
        status = record.get("status")
        if status:
            return status != "upcoming"
        return item.is_released()

    async def lookup(self, endpoint: ManagerEndpoint, command: FulfillmentCommand) -> Dict[str, Any]:
        results = await self._get(endpoint, "/api/v3/series/lookup", params={"term": command.title}) or []
        if not isinstance(results, list) or not all(isinstance(r, dict) for r in results):
            raise MalformedReply(self.label, "unexpected lookup reply")
        for record in results:
            if record.get("tmdbId") and record.get("tmdbId") == command.tmdb_id:
                return record
        for record in results:
            if _same_title(record, command.title, command.year):
                return record
        if len(results) == 1:
            return results[0]
        raise NotFoundError(f"Series not found: {command.title}")

    def build_add_payload(
        self,
        record: Dict[str, Any],
        root_folder_path: str,
        quality_profile_id: int,
        command: FulfillmentCommand,
    ) -> Dict[str, Any]:
        payload = {
            "title": record.get("title") or command.title,
            "tvdbId": record.get("tvdbId"),
            "year": record.get("year") or command.year,
            "titleSlug": record.get("titleSlug"),
            "images": record.get("images", []),
            "qualityProfileId": quality_profile_id,
            "rootFolderPath": root_folder_path,
            "monitored": True,
            "seasonFolder": True,
            "addOptions": {"searchForMissingEpisodes": True},
        }
        if command.seasons:
            # Seules les saisons demandées sont suivies
            known = {s["seasonNumber"] for s in record.get("seasons", []) if s.get("seasonNumber") is not None}
            numbers = sorted(known | set(command.seasons))
            payload["seasons"] = [
                {"seasonNumber": n, "monitored": n in command.seasons} for n in numbers
            ]
        return payload
