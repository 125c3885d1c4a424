"""Core business models."""
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional, List, FrozenSet, Tuple


class MediaKind(str, Enum):
    MOVIE = "movie"
    SERIES = "series"

    @classmethod
    def parse(cls, value: str) -> "MediaKind":
        """Accepts the TMDB spelling ("tv") as well as ours."""
        if value == "tv":
            return cls.SERIES
        return cls(value)

    @property
    def tmdb_type(self) -> str:
        return "movie" if self is MediaKind.MOVIE else "tv"


class ManagerStatus(str, Enum):
    """Download-manager view of an item (absence is represented by None)."""
    UNRELEASED = "unreleased"
    MISSING = "missing"
    QUEUED = "queued"
    DOWNLOADED = "downloaded"


class AvailabilityStatus(str, Enum):
    AVAILABLE = "available"
    UNRELEASED = "unreleased"
    MISSING = "missing"
    QUEUED = "queued"
    DOWNLOADED = "downloaded"
    REQUESTED = "requested"
    NOT_AVAILABLE = "not_available"


class RequestState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DOWNLOADED = "downloaded"


@dataclass(frozen=True)
class Season:
    season_number: int
    name: Optional[str] = None
    episode_count: Optional[int] = None
    air_date: Optional[str] = None
    poster_path: Optional[str] = None


@dataclass(frozen=True)
class ContentItem:
    """Movie or series as returned by the catalog provider."""
    tmdb_id: int
    kind: MediaKind
    title: str
    year: Optional[int] = None
    overview: Optional[str] = None
    poster_path: Optional[str] = None
    backdrop_path: Optional[str] = None
    release_date: Optional[str] = None
    vote_average: Optional[float] = None
    number_of_seasons: Optional[int] = None
    seasons: Optional[Tuple[Season, ...]] = None

    def is_released(self, today: Optional[date] = None) -> bool:
        if not self.release_date:
            return False
        try:
            released = date.fromisoformat(self.release_date)
        except ValueError:
            return False
        return released <= (today or date.today())


@dataclass(frozen=True)
class ManagerEndpoint:
    url: str
    api_key: str


@dataclass(frozen=True)
class ServerBinding:
    """A Plex server with its optional Radarr/Sonarr instances."""
    id: str
    name: str
    plex_url: str
    plex_token: str
    radarr: Optional[ManagerEndpoint] = None
    sonarr: Optional[ManagerEndpoint] = None

    def manager_for(self, kind: MediaKind) -> Optional[ManagerEndpoint]:
        return self.radarr if kind is MediaKind.MOVIE else self.sonarr


@dataclass(frozen=True)
class UserContext:
    id: str
    username: str
    role: str = "user"
    can_add_directly: bool = False
    primary_server_id: Optional[str] = None
    servers: Tuple[ServerBinding, ...] = ()

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def primary_binding(self) -> Optional[ServerBinding]:
        for binding in self.servers:
            if binding.id == self.primary_server_id:
                return binding
        return None


@dataclass(frozen=True)
class AvailabilitySnapshot:
    """Merged availability of one item across a user's bindings."""
    status: AvailabilityStatus
    library_available: bool = False
    library_server_names: Tuple[str, ...] = ()
    manager_status: Optional[ManagerStatus] = None
    tracked: bool = False


@dataclass
class EnrichedItem:
    item: ContentItem
    availability: AvailabilitySnapshot


@dataclass(frozen=True)
class FulfillmentCommand:
    tmdb_id: int
    kind: MediaKind
    title: str
    binding: ServerBinding
    year: Optional[int] = None
    seasons: Optional[FrozenSet[int]] = None


@dataclass
class FulfillmentOutcome:
    success: bool
    already_exists: bool = False
    error: Optional[str] = None
    error_type: Optional[str] = None
    manager_id: Optional[int] = None


@dataclass
class RequestDraft:
    """Item fields submitted with a new request."""
    tmdb_id: int
    kind: MediaKind
    title: str
    year: Optional[int] = None
    overview: Optional[str] = None
    poster_path: Optional[str] = None
    seasons: Optional[List[int]] = field(default=None)


@dataclass
class CreateResult:
    status: str  # added | pending
    request_id: Optional[str] = None
    tracked_id: Optional[str] = None
    warning: Optional[str] = None
    outcome: Optional[FulfillmentOutcome] = None


@dataclass
class ApproveResult:
    request_id: str
    tracked_id: Optional[str]
    outcome: FulfillmentOutcome
    warning: Optional[str] = None
