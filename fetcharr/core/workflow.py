"""Cycle de vie des demandes de contenu."""
import logging
from typing import Dict, FrozenSet, List, Optional

from fetcharr.core.errors import (
    AlreadyInManagerError, DuplicateRequestError, InvalidStateError, NotConfigured, PermissionDeniedError,
    RecordNotFoundError,
)
from fetcharr.core.executor import FulfillmentExecutor
from fetcharr.core.models import (
    ApproveResult, ContentItem, CreateResult, FulfillmentCommand, FulfillmentOutcome, ManagerStatus,
    MediaKind, RequestDraft, RequestState, ServerBinding, UserContext,
)
from fetcharr.db.models import ContentRequest, TrackedItem
from fetcharr.db.repository import RequestStore
from fetcharr.services.arr import ArrService

logger = logging.getLogger(__name__)

# approved -> downloaded is the only change allowed once a request is processed
TRANSITIONS: Dict[RequestState, FrozenSet[RequestState]] = {
    RequestState.PENDING: frozenset({RequestState.APPROVED, RequestState.REJECTED}),
    RequestState.APPROVED: frozenset({RequestState.DOWNLOADED}),
    RequestState.REJECTED: frozenset(),
    RequestState.DOWNLOADED: frozenset(),
}

MANAGER_NAMES = {MediaKind.MOVIE: "Radarr", MediaKind.SERIES: "Sonarr"}


def _draft_from_record(record: ContentRequest, seasons: Optional[List[int]] = None) -> RequestDraft:
    return RequestDraft(
        tmdb_id=record.tmdb_id,
        kind=MediaKind(record.content_type),
        title=record.title,
        year=record.year,
        overview=record.overview,
        poster_path=record.poster_path,
        seasons=seasons if seasons is not None else record.seasons,
    )


def _command(draft: RequestDraft, binding: ServerBinding) -> FulfillmentCommand:
    return FulfillmentCommand(
        tmdb_id=draft.tmdb_id,
        kind=draft.kind,
        title=draft.title,
        binding=binding,
        year=draft.year,
        seasons=frozenset(draft.seasons) if draft.seasons else None,
    )


class RequestWorkflow:
    """Machine à états des demandes.

    pending -> approved | rejected, approved -> downloaded. Pre-authorised
    users skip pending entirely: the item is pushed and tracked directly.
    Tracking is written whatever the push outcome, and push failures turn
    into warnings on an otherwise successful answer.
    """

    def __init__(
        self,
        store: RequestStore,
        executor: FulfillmentExecutor,
        managers: Optional[Dict[MediaKind, ArrService]] = None,
    ):
        self.store = store
        self.executor = executor
        self.managers = managers or executor.services

    def _load(self, request_id: str) -> ContentRequest:
        record = self.store.get_request(request_id)
        if record is None:
            raise RecordNotFoundError("Request not found")
        return record

    @staticmethod
    def _require_admin(actor: UserContext) -> None:
        if not actor.is_admin:
            raise PermissionDeniedError("Admin access required")

    @staticmethod
    def _check_transition(record: ContentRequest, target: RequestState) -> None:
        current = RequestState(record.status)
        if target not in TRANSITIONS[current]:
            if target in (RequestState.APPROVED, RequestState.REJECTED):
                raise InvalidStateError("Request is not pending")
            raise InvalidStateError(f"Cannot move request from {current.value} to {target.value}")

    async def _fulfil(self, draft: RequestDraft, binding: Optional[ServerBinding]) -> FulfillmentOutcome:
        if binding is None:
            return FulfillmentOutcome(success=False, error="Server not found", error_type="NotConfigured")
        return await self.executor.execute(_command(draft, binding))

    async def _check_manager(self, draft: RequestDraft, binding: ServerBinding) -> None:
        """Refuse un élément déjà téléchargé ou suivi par Radarr/Sonarr.

        An unreachable or unconfigured manager reports no status, so the
        request goes through.
        """
        service = self.managers.get(draft.kind)
        if service is None:
            return
        item = ContentItem(tmdb_id=draft.tmdb_id, kind=draft.kind, title=draft.title, year=draft.year)
        status = await service.get_status(binding, item)
        if status is None:
            return
        noun = "movie" if draft.kind is MediaKind.MOVIE else "series"
        manager = MANAGER_NAMES[draft.kind]
        if status is ManagerStatus.DOWNLOADED:
            raise AlreadyInManagerError(f"This {noun} is already downloaded in {manager}", status.value)
        raise AlreadyInManagerError(f"This {noun} is already being monitored in {manager}", status.value)

    async def create(self, actor: UserContext, draft: RequestDraft) -> CreateResult:
        """Crée une demande, ou ajoute directement si l'utilisateur y est autorisé."""
        binding = actor.primary_binding
        if binding is None:
            raise NotConfigured("No server assigned to user")

        await self._check_manager(draft, binding)

        if self.store.find_active_request(draft.tmdb_id, draft.kind, binding.id):
            raise DuplicateRequestError("Request already exists")

        if actor.can_add_directly:
            outcome = await self._fulfil(draft, binding)
            tracked_id = self.store.track_item(binding.id, draft, actor.id)
            self.store.append_audit(actor.id, "add_content", f"Added {draft.kind.value}: {draft.title}")
            warning = None
            if not outcome.success:
                warning = outcome.error
                logger.warning(f"Direct add of {draft.title!r} by {actor.username} tracked but not pushed: {warning}")
            return CreateResult(status="added", tracked_id=tracked_id, warning=warning, outcome=outcome)

        record = self.store.add_request(actor.id, binding.id, draft)
        self.store.append_audit(actor.id, "request_content", f"Requested {draft.kind.value}: {draft.title}")
        logger.info(f"Request {record.id} created by {actor.username}: {draft.title}")
        return CreateResult(status=RequestState.PENDING.value, request_id=record.id)

    async def approve(
        self,
        request_id: str,
        operator: UserContext,
        notes: Optional[str] = None,
        seasons: Optional[List[int]] = None,
    ) -> ApproveResult:
        self._require_admin(operator)
        record = self._load(request_id)
        self._check_transition(record, RequestState.APPROVED)

        draft = _draft_from_record(record, seasons)
        outcome = await self._fulfil(draft, self.store.get_binding(record.server_id))
        tracked_id = self.store.track_item(record.server_id, draft, operator.id)
        self.store.set_state(record, RequestState.APPROVED, processed_by=operator.id, notes=notes)
        self.store.append_audit(operator.id, "approve_request", f"Approved {draft.kind.value}: {draft.title}")

        warning = None
        if not outcome.success:
            warning = f"{MANAGER_NAMES[draft.kind]} integration failed: {outcome.error}"
        return ApproveResult(request_id=record.id, tracked_id=tracked_id, outcome=outcome, warning=warning)

    async def reject(self, request_id: str, operator: UserContext, notes: Optional[str] = None) -> None:
        self._require_admin(operator)
        record = self._load(request_id)
        self._check_transition(record, RequestState.REJECTED)
        self.store.set_state(record, RequestState.REJECTED, processed_by=operator.id, notes=notes)
        self.store.append_audit(operator.id, "reject_request", f"Rejected {record.content_type}: {record.title}")

    def delete(self, request_id: str, actor: UserContext) -> None:
        """Supprime une demande; aucun effet sur Radarr/Sonarr."""
        record = self._load(request_id)
        if not actor.is_admin:
            if record.user_id != actor.id:
                raise PermissionDeniedError("Access denied")
            if record.status != RequestState.PENDING.value:
                raise InvalidStateError("Cannot delete processed request")
        title = record.title
        self.store.delete_request(record)
        self.store.append_audit(actor.id, "delete_request", f"Deleted request: {title}")

    def list_requests(
        self,
        actor: UserContext,
        status: Optional[str] = None,
        kind: Optional[MediaKind] = None,
    ) -> List[ContentRequest]:
        return self.store.list_requests(
            user_id=None if actor.is_admin else actor.id, status=status, kind=kind
        )

    def list_tracked(
        self,
        actor: UserContext,
        server_id: Optional[str] = None,
        kind: Optional[MediaKind] = None,
    ) -> List[TrackedItem]:
        """Éléments suivis des serveurs de l'utilisateur (tous pour un admin)."""
        server_ids = None if actor.is_admin else [b.id for b in actor.servers]
        if server_id:
            if server_ids is not None and server_id not in server_ids:
                return []
            server_ids = [server_id]
        return self.store.list_tracked(server_ids=server_ids, kind=kind)

    def remove_tracked(self, item_id: str, actor: UserContext) -> None:
        """Retire un élément suivi; Radarr/Sonarr ne sont pas modifiés."""
        item = self.store.get_tracked(item_id)
        if item is None:
            raise RecordNotFoundError("Item not found")
        if not actor.is_admin:
            if item.server_id not in {b.id for b in actor.servers}:
                raise PermissionDeniedError("Access denied")
            if item.added_by != actor.id:
                raise PermissionDeniedError("Can only remove items you added")
        title, content_type = item.title, item.content_type
        self.store.delete_tracked(item)
        self.store.append_audit(actor.id, "remove_tracked_item", f"Removed {content_type}: {title}")

    def pending_count(self, actor: UserContext) -> int:
        self._require_admin(actor)
        return self.store.pending_count()

    async def refresh_statuses(self) -> int:
        """Passe en "downloaded" les demandes approuvées dont le fichier est présent."""
        updated = 0
        for record in self.store.requests_in_state(RequestState.APPROVED):
            binding = self.store.get_binding(record.server_id)
            kind = MediaKind(record.content_type)
            if binding is None or kind not in self.managers:
                continue
            item = ContentItem(tmdb_id=record.tmdb_id, kind=kind, title=record.title, year=record.year)
            status = await self.managers[kind].get_status(binding, item)
            if status is ManagerStatus.DOWNLOADED:
                self._check_transition(record, RequestState.DOWNLOADED)
                self.store.set_state(record, RequestState.DOWNLOADED, stamp=False)
                updated += 1
        if updated:
            logger.info(f"{updated} approved requests marked as downloaded")
        return updated
