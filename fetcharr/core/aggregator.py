"""Agrégation de la disponibilité des résultats de recherche."""
import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Protocol, Set, Tuple

from fetcharr.core.models import (
    AvailabilitySnapshot, ContentItem, EnrichedItem, ManagerStatus, MediaKind, UserContext,
)
from fetcharr.core.rules import decide_status
from fetcharr.services.arr import ArrService
from fetcharr.services.plex import PlexService

logger = logging.getLogger(__name__)


class TrackedLookup(Protocol):
    def tracked_ids(self, server_id: str, kind: MediaKind, tmdb_ids: Iterable[int]) -> Set[int]:
        ...


async def _no_status() -> Optional[ManagerStatus]:
    return None


class AvailabilityAggregator:
    """Enrichit une liste d'éléments avec leur statut de disponibilité.

    Per item: one Plex check on every bound server, one manager check on the
    primary server only. Every check of the batch runs concurrently; the
    checkers absorb their own failures, so a slow or dead service only
    degrades the items it was asked about.
    """

    def __init__(self, plex: PlexService, managers: Dict[MediaKind, ArrService]):
        self.plex = plex
        self.managers = managers

    async def check_item(self, item: ContentItem, user: UserContext, tracked: bool = False) -> AvailabilitySnapshot:
        primary = user.primary_binding
        library_checks = [
            self.plex.is_in_library(binding, item.kind, item.title, item.year)
            for binding in user.servers
        ]
        manager_check = self.managers[item.kind].get_status(primary, item) if primary else _no_status()

        *presence, manager_status = await asyncio.gather(*library_checks, manager_check)

        server_names = tuple(
            binding.name for binding, present in zip(user.servers, presence) if present
        )
        library_available = bool(server_names)
        return AvailabilitySnapshot(
            status=decide_status(library_available, manager_status, tracked),
            library_available=library_available,
            library_server_names=server_names,
            manager_status=manager_status,
            tracked=tracked,
        )

    def _tracked_keys(
        self,
        items: List[ContentItem],
        user: UserContext,
        lookup: Optional[TrackedLookup],
    ) -> Set[Tuple[MediaKind, int]]:
        primary = user.primary_binding
        if lookup is None or primary is None:
            return set()
        keys = set()
        for kind in MediaKind:
            ids = [item.tmdb_id for item in items if item.kind is kind]
            if ids:
                keys.update((kind, tmdb_id) for tmdb_id in lookup.tracked_ids(primary.id, kind, ids))
        return keys

    async def enrich(
        self,
        items: List[ContentItem],
        user: UserContext,
        tracked_lookup: Optional[TrackedLookup] = None,
    ) -> List[EnrichedItem]:
        """Résultats dans l'ordre d'entrée, quel que soit l'ordre de complétion."""
        tracked = self._tracked_keys(items, user, tracked_lookup)
        snapshots = await asyncio.gather(*(
            self.check_item(item, user, (item.kind, item.tmdb_id) in tracked)
            for item in items
        ))
        logger.debug(f"Enriched {len(items)} items for {user.username}")
        return [EnrichedItem(item=item, availability=snapshot) for item, snapshot in zip(items, snapshots)]
