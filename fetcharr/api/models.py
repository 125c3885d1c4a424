"""Pydantic models for API requests/responses."""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any
from datetime import datetime

from fetcharr.core.models import EnrichedItem, FulfillmentOutcome


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SeasonResponse(CamelModel):
    season_number: int
    name: Optional[str] = None
    episode_count: Optional[int] = None
    air_date: Optional[str] = None
    poster_path: Optional[str] = None


class SearchItemResponse(CamelModel):
    id: int
    media_type: str
    title: str
    year: Optional[int]
    overview: Optional[str]
    poster_path: Optional[str]
    backdrop_path: Optional[str]
    release_date: Optional[str]
    vote_average: Optional[float]
    number_of_seasons: Optional[int] = None
    seasons: Optional[List[SeasonResponse]] = None
    status: str
    library_available: bool
    library_server_names: List[str]
    manager_status: Optional[str]
    tracked: bool

    @classmethod
    def from_enriched(cls, enriched: EnrichedItem, include_seasons: bool = False) -> "SearchItemResponse":
        item, availability = enriched.item, enriched.availability
        seasons = None
        if include_seasons and item.seasons is not None:
            seasons = [
                SeasonResponse(
                    season_number=s.season_number,
                    name=s.name,
                    episode_count=s.episode_count,
                    air_date=s.air_date,
                    poster_path=s.poster_path,
                )
                for s in item.seasons
            ]
        return cls(
            id=item.tmdb_id,
            media_type=item.kind.value,
            title=item.title,
            year=item.year,
            overview=item.overview,
            poster_path=item.poster_path,
            backdrop_path=item.backdrop_path,
            release_date=item.release_date,
            vote_average=item.vote_average,
            number_of_seasons=item.number_of_seasons,
            seasons=seasons,
            status=availability.status.value,
            library_available=availability.library_available,
            library_server_names=list(availability.library_server_names),
            manager_status=availability.manager_status.value if availability.manager_status else None,
            tracked=availability.tracked,
        )


class SearchResponse(CamelModel):
    page: int
    total_pages: int
    total_results: int
    results: List[SearchItemResponse]


class CreateRequestBody(CamelModel):
    tmdb_id: int
    content_type: str  # movie | series (tv accepted)
    title: str = Field(min_length=1)
    year: Optional[int] = None
    overview: Optional[str] = None
    poster_path: Optional[str] = None
    seasons: Optional[List[int]] = None


class ProcessRequestBody(CamelModel):
    notes: Optional[str] = None
    seasons: Optional[List[int]] = None


class FulfillmentResponse(CamelModel):
    success: bool
    already_exists: bool = False
    error: Optional[str] = None

    @classmethod
    def from_outcome(cls, outcome: Optional[FulfillmentOutcome]) -> Optional["FulfillmentResponse"]:
        if outcome is None:
            return None
        return cls(success=outcome.success, already_exists=outcome.already_exists, error=outcome.error)


class CreateRequestResponse(CamelModel):
    message: str
    status: str
    request_id: Optional[str] = None
    tracked_id: Optional[str] = None
    warning: Optional[str] = None
    fulfillment: Optional[FulfillmentResponse] = None


class ApproveResponse(CamelModel):
    message: str
    tracked_id: Optional[str] = None
    warning: Optional[str] = None
    fulfillment: FulfillmentResponse


class RequestRecordResponse(CamelModel):
    id: str
    user_id: str
    requested_by_username: Optional[str]
    server_id: str
    server_name: Optional[str]
    tmdb_id: int
    content_type: str
    title: str
    year: Optional[int]
    overview: Optional[str]
    poster_path: Optional[str]
    status: str
    seasons: Optional[List[int]]
    requested_at: datetime
    processed_at: Optional[datetime]
    processed_by_username: Optional[str]
    notes: Optional[str]


class ServerResponse(CamelModel):
    id: str
    name: str
    url: str
    has_plex_token: bool
    radarr_url: Optional[str]
    has_radarr_api_key: bool
    sonarr_url: Optional[str]
    has_sonarr_api_key: bool
    is_primary: bool


class MessageResponse(CamelModel):
    message: str


class ConnectionTestResponse(CamelModel):
    plex: Dict[str, Any]
    radarr: Dict[str, Any]
    sonarr: Dict[str, Any]
    success: bool


class TrackedItemResponse(CamelModel):
    id: str
    server_id: str
    server_name: Optional[str]
    content_type: str
    tmdb_id: int
    title: str
    year: Optional[int]
    overview: Optional[str]
    poster_path: Optional[str]
    seasons: Optional[List[int]]
    added_by: Optional[str]
    added_at: datetime


class AuditEntryResponse(CamelModel):
    id: int
    username: Optional[str]
    action: str
    details: Optional[str]
    created_at: datetime


class AuditPageResponse(CamelModel):
    logs: List[AuditEntryResponse]
    total: int
    page: int
    total_pages: int


class StatsResponse(CamelModel):
    users: int
    servers: int
    tracked_items: int
    pending_requests: int
    requests: Dict[str, int]
    recent_activity: List[AuditEntryResponse]


class ClearCacheResponse(CamelModel):
    message: str
    entries: int
