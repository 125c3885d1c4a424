"""Pytest configuration and test helpers."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import pytest

# Ensure the application package is importable when running tests without an
# editable install.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fetcharr.config import Config  # noqa: E402
from fetcharr.container import build_services  # noqa: E402
from fetcharr.core.cache import AvailabilityCache  # noqa: E402
from fetcharr.core.models import ManagerEndpoint, ServerBinding  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# --- Plex --------------------------------------------------------------------


class FakeVideo:
    def __init__(self, title: str, year: Optional[int] = None) -> None:
        self.title = title
        self.year = year


class FakeSection:
    def __init__(self, title: str, type: str, items: List[FakeVideo], key: int = 1) -> None:
        self.key = key
        self.title = title
        self.type = type
        self.items = items

    def search(self, title: Optional[str] = None, **kwargs: Any) -> List[FakeVideo]:
        if title is None:
            return list(self.items)
        return [v for v in self.items if title.casefold() in v.title.casefold()]


class FakeLibrary:
    def __init__(self, sections: List[FakeSection]) -> None:
        self._sections = sections

    def sections(self) -> List[FakeSection]:
        return list(self._sections)


class FakePlexServer:
    def __init__(self, name: str, sections: Optional[List[FakeSection]] = None) -> None:
        self.friendlyName = name
        self.version = "1.40.0"
        self.library = FakeLibrary(sections or [])


class FakePlex:
    """Stands in for ``PlexServer(url, token)``; keyed by binding id."""

    def __init__(self) -> None:
        self.servers: Dict[str, FakePlexServer] = {}
        self.unreachable: set = set()
        self.connections = 0

    def connect(self, binding: ServerBinding) -> FakePlexServer:
        self.connections += 1
        if binding.id in self.unreachable or binding.id not in self.servers:
            raise ConnectionError(f"cannot reach {binding.plex_url}")
        return self.servers[binding.id]


# --- Radarr / Sonarr ---------------------------------------------------------


class FakeArr:
    """Minimal in-memory Radarr/Sonarr v3 API."""

    def __init__(self, resource: str) -> None:
        self.resource = resource
        self.records: List[Dict[str, Any]] = []
        self.queue: List[Dict[str, Any]] = []
        self.lookup_results: List[Dict[str, Any]] = []
        self.root_folders: List[Dict[str, Any]] = [{"id": 1, "path": f"/{resource}"}]
        self.profiles: List[Dict[str, Any]] = [{"id": 4, "name": "HD-1080p"}]
        self.posts: List[Dict[str, Any]] = []
        self.requests: List[httpx.Request] = []
        self.down = False
        self.next_id = 100
        # path -> canned response, for replies of the wrong shape
        self.overrides: Dict[str, httpx.Response] = {}

    @property
    def exists_code(self) -> str:
        return "MovieExistsValidator" if self.resource == "movie" else "SeriesExistsValidator"

    def _exists(self, payload: Dict[str, Any]) -> bool:
        key = "tmdbId" if self.resource == "movie" else "tvdbId"
        return any(r.get(key) == payload.get(key) for r in self.records)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        if path in self.overrides:
            return self.overrides[path]
        if path == "/api/v3/system/status":
            return httpx.Response(200, json={"version": "5.0.0"})
        if path == "/api/v3/rootfolder":
            return httpx.Response(200, json=self.root_folders)
        if path == "/api/v3/qualityprofile":
            return httpx.Response(200, json=self.profiles)
        if path == "/api/v3/queue":
            return httpx.Response(200, json={"page": 1, "totalRecords": len(self.queue), "records": self.queue})
        if path == "/api/v3/movie/lookup/tmdb":
            tmdb_id = int(request.url.params["tmdbId"])
            for result in self.lookup_results:
                if result.get("tmdbId") == tmdb_id:
                    return httpx.Response(200, json=result)
            return httpx.Response(404, json={"message": "NotFound"})
        if path == "/api/v3/series/lookup":
            return httpx.Response(200, json=self.lookup_results)
        if path == f"/api/v3/{self.resource}":
            if request.method == "GET":
                return httpx.Response(200, json=self.records)
            payload = json.loads(request.content)
            self.posts.append(payload)
            if self._exists(payload):
                return httpx.Response(400, json=[{
                    "propertyName": "TmdbId" if self.resource == "movie" else "TvdbId",
                    "errorMessage": "This item has already been added",
                    "errorCode": self.exists_code,
                }])
            record = dict(payload, id=self.next_id, hasFile=False)
            self.next_id += 1
            self.records.append(record)
            # Lookups of a known item carry its id from now on
            for result in self.lookup_results:
                if result.get("tmdbId") == payload.get("tmdbId") or (
                    payload.get("tvdbId") and result.get("tvdbId") == payload.get("tvdbId")
                ):
                    result["id"] = record["id"]
            return httpx.Response(201, json=record)
        return httpx.Response(404, json={"message": f"unexpected {request.method} {path}"})


class FakeNetwork:
    """Routes requests to fake services by host."""

    def __init__(self) -> None:
        self.radarr = FakeArr("movie")
        self.sonarr = FakeArr("series")
        self.tmdb_routes: Dict[str, Any] = {}
        self.tmdb_requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host.startswith("radarr"):
            return self.radarr.handle(request)
        if host.startswith("sonarr"):
            return self.sonarr.handle(request)
        if host == "tmdb.test":
            self.tmdb_requests.append(request)
            path = request.url.path.removeprefix("/3")
            if path not in self.tmdb_routes:
                return httpx.Response(404, json={"status_code": 34, "status_message": "Not found"})
            return httpx.Response(200, json=self.tmdb_routes[path])
        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


SERVER_A = ServerBinding(
    id="srv-a",
    name="Home",
    plex_url="http://plex-a:32400",
    plex_token="token-a",
    radarr=ManagerEndpoint("http://radarr-a:7878", "radarr-key"),
    sonarr=ManagerEndpoint("http://sonarr-a:8989", "sonarr-key"),
)

SERVER_B = ServerBinding(
    id="srv-b",
    name="Cabin",
    plex_url="http://plex-b:32400",
    plex_token="token-b",
)


def build_config(**overrides: Any) -> Config:
    """Return a config with two servers and three users, suitable for tests."""

    data: Dict[str, Any] = {
        "tmdb": {"api_key": "tmdb-key", "base_url": "http://tmdb.test/3"},
        "scheduler": {"enabled": False},
        "app": {"database_url": "sqlite://"},
        "servers": [
            {
                "id": SERVER_A.id,
                "name": SERVER_A.name,
                "url": SERVER_A.plex_url,
                "token": SERVER_A.plex_token,
                "radarr": {"url": SERVER_A.radarr.url, "api_key": SERVER_A.radarr.api_key},
                "sonarr": {"url": SERVER_A.sonarr.url, "api_key": SERVER_A.sonarr.api_key},
            },
            {
                "id": SERVER_B.id,
                "name": SERVER_B.name,
                "url": SERVER_B.plex_url,
                "token": SERVER_B.plex_token,
            },
        ],
        "users": [
            {"username": "alice", "role": "admin", "servers": ["srv-a", "srv-b"], "primary_server": "srv-a"},
            {"username": "bob", "servers": ["srv-a"]},
            {"username": "carol", "can_add_directly": True, "servers": ["srv-a"]},
            {"username": "dave", "servers": ["srv-b"]},
        ],
    }
    data.update(overrides)
    return Config(**data)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> AvailabilityCache:
    return AvailabilityCache(ttl_seconds=300, clock=clock)


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def plex() -> FakePlex:
    return FakePlex()


@pytest.fixture
def config() -> Config:
    return build_config()


@pytest.fixture
def services(config: Config, network: FakeNetwork, plex: FakePlex, cache: AvailabilityCache):
    return build_services(config, transport=network.transport(), plex_connect=plex.connect, cache=cache)
