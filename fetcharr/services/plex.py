"""Plex API client."""
import asyncio
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from plexapi.server import PlexServer

from fetcharr.core.cache import AvailabilityCache, CacheKey
from fetcharr.core.errors import RemoteUnavailable
from fetcharr.core.models import MediaKind, ServerBinding

logger = logging.getLogger(__name__)

SECTION_TYPES = {MediaKind.MOVIE: "movie", MediaKind.SERIES: "show"}
CHECKER_KINDS = {MediaKind.MOVIE: "plex_movie", MediaKind.SERIES: "plex_show"}
# Connection and section list are reused across one burst of searches
SECTIONS_TTL_SECONDS = 60.0


class PlexService:
    """Service pour interagir avec Plex.

    plexapi is blocking, so every call against a server runs in a worker
    thread to keep concurrent searches from serialising on it.
    """

    def __init__(
        self,
        cache: AvailabilityCache,
        timeout: float = 10.0,
        connect: Optional[Callable[[ServerBinding], Any]] = None,
    ):
        self.cache = cache
        self.timeout = timeout
        self._connect = connect or self._default_connect
        self._sections = AvailabilityCache(ttl_seconds=SECTIONS_TTL_SECONDS, clock=cache.clock)
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _default_connect(self, binding: ServerBinding) -> PlexServer:
        return PlexServer(binding.plex_url, binding.plex_token, timeout=self.timeout)

    @staticmethod
    def _matches(candidate: Any, title: str, year: Optional[int]) -> bool:
        """Titre exact (insensible à la casse); l'année n'est comparée que si les deux côtés en ont une."""
        candidate_title = getattr(candidate, "title", None) or ""
        if candidate_title.casefold() != title.casefold():
            return False
        candidate_year = getattr(candidate, "year", None)
        if year is None or candidate_year is None:
            return True
        return int(candidate_year) == int(year)

    def _sections_of(self, binding: ServerBinding) -> List[Any]:
        """Sections du serveur, une seule connexion par fenêtre et par serveur."""
        with self._locks_guard:
            lock = self._locks.setdefault(binding.id, threading.Lock())
        with lock:
            sections, found = self._sections.get(binding.id)
            if not found:
                sections = self._connect(binding).library.sections()
                self._sections.put(binding.id, sections)
        return sections

    def forget_sections(self) -> None:
        self._sections.clear()

    def _find_match(self, binding: ServerBinding, kind: MediaKind, title: str, year: Optional[int]) -> bool:
        section_type = SECTION_TYPES[kind]
        for section in self._sections_of(binding):
            if section.type != section_type:
                continue
            for candidate in section.search(title=title):
                if self._matches(candidate, title, year):
                    logger.debug(f"Plex match on {binding.name}: {title} ({year}) in section {section.title}")
                    return True
        return False

    async def is_in_library(
        self,
        binding: ServerBinding,
        kind: MediaKind,
        title: str,
        year: Optional[int] = None,
    ) -> bool:
        """Vérifie si un titre est présent dans une bibliothèque Plex du bon type."""
        key = CacheKey(binding.id, CHECKER_KINDS[kind], (title.casefold(), year))
        cached, found = self.cache.get(key)
        if found:
            return cached

        try:
            present = await asyncio.to_thread(self._find_match, binding, kind, title, year)
        except Exception as e:
            # Best effort: an unreachable server just means "not present" for this search
            logger.warning(f"Plex check failed on {binding.name} for {title!r}: {e}")
            return False

        self.cache.put(key, present)
        return present

    def _list_sections(self, binding: ServerBinding) -> List[Dict[str, Any]]:
        server = self._connect(binding)
        return [
            {"key": str(section.key), "title": section.title, "type": section.type}
            for section in server.library.sections()
        ]

    async def list_libraries(self, binding: ServerBinding) -> List[Dict[str, Any]]:
        """Liste les bibliothèques d'un serveur."""
        try:
            return await asyncio.to_thread(self._list_sections, binding)
        except Exception as e:
            raise RemoteUnavailable(f"plex:{binding.name}", str(e)) from e

    def _identity(self, binding: ServerBinding) -> Dict[str, Any]:
        server = self._connect(binding)
        return {"server_name": server.friendlyName, "version": server.version}

    async def test_connection(self, binding: ServerBinding) -> Dict[str, Any]:
        """Teste la connexion au serveur Plex."""
        try:
            identity = await asyncio.to_thread(self._identity, binding)
        except Exception as e:
            return {"success": False, "error": str(e)}
        return {"success": True, **identity}
