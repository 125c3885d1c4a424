"""Application-wide service instances."""
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx

from fetcharr.config import Config
from fetcharr.core.aggregator import AvailabilityAggregator
from fetcharr.core.cache import AvailabilityCache
from fetcharr.core.executor import FulfillmentExecutor
from fetcharr.core.models import MediaKind, ServerBinding
from fetcharr.services.arr import ArrService
from fetcharr.services.plex import PlexService
from fetcharr.services.radarr import RadarrService
from fetcharr.services.sonarr import SonarrService
from fetcharr.services.tmdb import TMDBService
from fetcharr.utils.http_client import ServiceHTTPClient


@dataclass
class Services:
    cache: AvailabilityCache
    http: ServiceHTTPClient
    tmdb: TMDBService
    plex: PlexService
    radarr: RadarrService
    sonarr: SonarrService
    aggregator: AvailabilityAggregator
    executor: FulfillmentExecutor

    @property
    def managers(self) -> Dict[MediaKind, ArrService]:
        return {MediaKind.MOVIE: self.radarr, MediaKind.SERIES: self.sonarr}

    def clear_caches(self) -> int:
        """Vide le cache de disponibilité et les sections Plex mémorisées."""
        cleared = len(self.cache)
        self.cache.clear()
        self.plex.forget_sections()
        return cleared

    async def aclose(self) -> None:
        await self.http.aclose()


def build_services(
    config: Config,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    plex_connect: Optional[Callable[[ServerBinding], Any]] = None,
    cache: Optional[AvailabilityCache] = None,
) -> Services:
    """Construit les services partagés (un seul cache et un seul client HTTP)."""
    if cache is None:
        cache = AvailabilityCache(ttl_seconds=config.cache.ttl_seconds)
    http = ServiceHTTPClient(
        httpx.AsyncClient(timeout=config.http.timeout, transport=transport),
        default_timeout=config.http.timeout,
        circuit_breaker_threshold=config.http.circuit_breaker_threshold,
        circuit_breaker_timeout=config.http.circuit_breaker_timeout,
    )
    radarr = RadarrService(http, cache)
    sonarr = SonarrService(http, cache)
    managers: Dict[MediaKind, ArrService] = {MediaKind.MOVIE: radarr, MediaKind.SERIES: sonarr}
    plex = PlexService(cache, timeout=config.http.timeout, connect=plex_connect)
    return Services(
        cache=cache,
        http=http,
        tmdb=TMDBService(config.tmdb, http),
        plex=plex,
        radarr=radarr,
        sonarr=sonarr,
        aggregator=AvailabilityAggregator(plex, managers),
        executor=FulfillmentExecutor(managers),
    )
