"""TMDB API client."""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from fetcharr.config import TMDBConfig
from fetcharr.core.errors import NotConfigured
from fetcharr.core.models import ContentItem, MediaKind, Season
from fetcharr.utils.http_client import ServiceHTTPClient

logger = logging.getLogger(__name__)


@dataclass
class SearchPage:
    page: int
    total_pages: int
    total_results: int
    items: List[ContentItem] = field(default_factory=list)


def _year(date_str: Optional[str]) -> Optional[int]:
    if not date_str:
        return None
    try:
        return int(date_str.split("-")[0])
    except ValueError:
        return None


def normalize_result(data: Dict[str, Any], kind: MediaKind) -> ContentItem:
    """Build a ContentItem from a TMDB movie or tv payload."""
    if kind is MediaKind.MOVIE:
        title = data.get("title") or data.get("original_title") or ""
        release_date = data.get("release_date") or None
    else:
        title = data.get("name") or data.get("original_name") or ""
        release_date = data.get("first_air_date") or None

    seasons = None
    if kind is MediaKind.SERIES and data.get("seasons") is not None:
        seasons = tuple(
            Season(
                season_number=s.get("season_number"),
                name=s.get("name"),
                episode_count=s.get("episode_count"),
                air_date=s.get("air_date"),
                poster_path=s.get("poster_path"),
            )
            for s in data["seasons"]
        )

    return ContentItem(
        tmdb_id=data["id"],
        kind=kind,
        title=title,
        year=_year(release_date),
        overview=data.get("overview"),
        poster_path=data.get("poster_path"),
        backdrop_path=data.get("backdrop_path"),
        release_date=release_date,
        vote_average=data.get("vote_average"),
        number_of_seasons=data.get("number_of_seasons"),
        seasons=seasons,
    )


class TMDBService:
    """Service pour interagir avec TMDB (lecture seule)."""

    service_name = "tmdb"

    def __init__(self, config: TMDBConfig, http: ServiceHTTPClient):
        self.base_url = config.base_url.rstrip("/")
        self.api_key = config.api_key
        self.language = config.language
        self.include_adult = config.include_adult
        self.http = http

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_params(self, **extra: Any) -> Dict[str, Any]:
        if not self.api_key:
            raise NotConfigured("TMDB API not configured")
        params: Dict[str, Any] = {"api_key": self.api_key}
        if self.language:
            params["language"] = self.language
        params.update(extra)
        return params

    async def _get(self, path: str, **params: Any) -> Dict[str, Any]:
        return await self.http.get_json(
            f"{self.base_url}{path}",
            self.service_name,
            params=self._get_params(**params),
        )

    async def search(self, kind: MediaKind, query: str, page: int = 1) -> SearchPage:
        """Recherche de films ou séries."""
        data = await self._get(
            f"/search/{kind.tmdb_type}",
            query=query,
            page=page,
            include_adult=str(self.include_adult).lower(),
        )
        return SearchPage(
            page=data.get("page", page),
            total_pages=data.get("total_pages", 0),
            total_results=data.get("total_results", 0),
            items=[normalize_result(r, kind) for r in data.get("results", [])],
        )

    async def search_multi(self, query: str, page: int = 1) -> SearchPage:
        """Recherche combinée; les personnes sont écartées, l'ordre TMDB est conservé."""
        data = await self._get(
            "/search/multi",
            query=query,
            page=page,
            include_adult=str(self.include_adult).lower(),
        )
        items = []
        for result in data.get("results", []):
            media_type = result.get("media_type")
            if media_type not in ("movie", "tv"):
                continue
            items.append(normalize_result(result, MediaKind.parse(media_type)))
        return SearchPage(
            page=data.get("page", page),
            total_pages=data.get("total_pages", 0),
            total_results=data.get("total_results", 0),
            items=items,
        )

    async def get_details(self, kind: MediaKind, tmdb_id: int) -> ContentItem:
        """Détails d'un film ou d'une série (avec saisons)."""
        data = await self._get(f"/{kind.tmdb_type}/{tmdb_id}")
        return normalize_result(data, kind)
