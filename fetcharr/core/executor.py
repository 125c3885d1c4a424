"""Envoi des ajouts vers Radarr/Sonarr."""
import logging
from typing import Any, Dict, List

from fetcharr.core.errors import (
    FetcharrError, MalformedReply, MisconfiguredError, RemoteRejected,
)
from fetcharr.core.models import FulfillmentCommand, FulfillmentOutcome, MediaKind
from fetcharr.services.arr import ArrService

logger = logging.getLogger(__name__)


def _first_field(entries: List[Dict[str, Any]], field: str, label: str, what: str) -> Any:
    """Champ ``field`` du premier élément; MisconfiguredError si la liste est vide."""
    if not entries:
        raise MisconfiguredError(f"No {what} configured in {label}")
    if not isinstance(entries, list) or not isinstance(entries[0], dict) or entries[0].get(field) is None:
        raise MalformedReply(label.lower(), f"unexpected {what} reply")
    return entries[0][field]


class FulfillmentExecutor:
    """Pousse une commande "ajouter et télécharger" vers le bon gestionnaire.

    Order: lookup, root folder, quality profile, add. An item the manager
    already tracks is a success flagged ``already_exists``. Failures come
    back as an unsuccessful outcome; nothing here touches storage.
    """

    def __init__(self, services: Dict[MediaKind, ArrService]):
        self.services = services

    async def _push(self, command: FulfillmentCommand) -> FulfillmentOutcome:
        service = self.services[command.kind]
        endpoint = service.endpoint_for(command.binding)
        label = service.label.title()

        # 1. Lookup
        record = await service.lookup(endpoint, command)
        if record.get("id"):
            logger.info(f"[{label}] {command.title} already tracked (id={record['id']})")
            return FulfillmentOutcome(success=True, already_exists=True, manager_id=record["id"])

        # 2. Root folder
        root_folder_path = _first_field(await service.get_root_folders(endpoint), "path", label, "root folder")

        # 3. Quality profile
        quality_profile_id = _first_field(await service.get_quality_profiles(endpoint), "id", label, "quality profile")

        # 4. Add + search
        payload = service.build_add_payload(record, root_folder_path, quality_profile_id, command)
        try:
            created = await service.add(endpoint, payload)
        except RemoteRejected as e:
            if e.status_code == 400 and service.exists_error_code in e.error_codes():
                logger.info(f"[{label}] {command.title} already exists")
                return FulfillmentOutcome(success=True, already_exists=True)
            raise

        logger.info(f"[{label}] Added {command.kind.value}: {command.title} (TMDB: {command.tmdb_id})")
        manager_id = created.get("id") if isinstance(created, dict) else None
        return FulfillmentOutcome(success=True, manager_id=manager_id)

    async def execute(self, command: FulfillmentCommand) -> FulfillmentOutcome:
        """Exécute la commande; les erreurs sont rapportées dans le résultat."""
        try:
            outcome = await self._push(command)
            # The manager now knows the item: the cached status is stale
            self.services[command.kind].forget(command.binding, command.tmdb_id)
            return outcome
        except RemoteRejected as e:
            message = e.first_message() or str(e)
            logger.error(f"Error adding {command.kind.value} {command.title!r} on {command.binding.name}: {message}")
            return FulfillmentOutcome(success=False, error=message, error_type=type(e).__name__)
        except FetcharrError as e:
            logger.error(f"Error adding {command.kind.value} {command.title!r} on {command.binding.name}: {e}")
            return FulfillmentOutcome(success=False, error=str(e), error_type=type(e).__name__)
        except Exception as e:
            # Unexpected reply shapes must not undo an approval already committed by the caller
            logger.exception(f"Unexpected error adding {command.kind.value} {command.title!r} "
                             f"on {command.binding.name}")
            return FulfillmentOutcome(success=False, error=str(e) or type(e).__name__, error_type=type(e).__name__)
