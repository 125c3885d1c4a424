"""Storage operations used by the request workflow and the aggregator."""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fetcharr.core.models import (
    ManagerEndpoint, MediaKind, RequestDraft, RequestState, ServerBinding, UserContext,
)
from fetcharr.db.models import AuditLog, ContentRequest, ServerBindingRow, TrackedItem, User

logger = logging.getLogger(__name__)

ACTIVE_STATES = (RequestState.PENDING.value, RequestState.APPROVED.value)


def to_binding(row: ServerBindingRow) -> ServerBinding:
    radarr = ManagerEndpoint(row.radarr_url, row.radarr_api_key) if row.radarr_url and row.radarr_api_key else None
    sonarr = ManagerEndpoint(row.sonarr_url, row.sonarr_api_key) if row.sonarr_url and row.sonarr_api_key else None
    return ServerBinding(
        id=row.id,
        name=row.name,
        plex_url=row.url,
        plex_token=row.token,
        radarr=radarr,
        sonarr=sonarr,
    )


class RequestStore:
    """Accès base de données pour les demandes, le suivi et l'audit."""

    def __init__(self, db: Session):
        self.db = db

    # --- users / bindings ------------------------------------------------

    def get_user_context(self, username: str) -> Optional[UserContext]:
        user = self.db.query(User).filter(User.username == username).first()
        if not user:
            return None
        return UserContext(
            id=user.id,
            username=user.username,
            role=user.role,
            can_add_directly=bool(user.can_add_directly),
            primary_server_id=user.primary_server_id,
            servers=tuple(to_binding(row) for row in user.servers),
        )

    def get_binding(self, server_id: str) -> Optional[ServerBinding]:
        row = self.db.query(ServerBindingRow).filter(ServerBindingRow.id == server_id).first()
        return to_binding(row) if row else None

    # --- requests --------------------------------------------------------

    def find_active_request(self, tmdb_id: int, kind: MediaKind, server_id: str) -> Optional[ContentRequest]:
        return self.db.query(ContentRequest).filter(
            ContentRequest.tmdb_id == tmdb_id,
            ContentRequest.content_type == kind.value,
            ContentRequest.server_id == server_id,
            ContentRequest.status.in_(ACTIVE_STATES),
        ).first()

    def add_request(self, user_id: str, server_id: str, draft: RequestDraft) -> ContentRequest:
        record = ContentRequest(
            user_id=user_id,
            server_id=server_id,
            tmdb_id=draft.tmdb_id,
            content_type=draft.kind.value,
            title=draft.title,
            year=draft.year,
            overview=draft.overview,
            poster_path=draft.poster_path,
            seasons=draft.seasons,
            status=RequestState.PENDING.value,
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def get_request(self, request_id: str) -> Optional[ContentRequest]:
        return self.db.query(ContentRequest).filter(ContentRequest.id == request_id).first()

    def list_requests(
        self,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        kind: Optional[MediaKind] = None,
    ) -> List[ContentRequest]:
        query = self.db.query(ContentRequest)
        if user_id:
            query = query.filter(ContentRequest.user_id == user_id)
        if status:
            query = query.filter(ContentRequest.status == status)
        if kind:
            query = query.filter(ContentRequest.content_type == kind.value)
        return query.order_by(ContentRequest.requested_at.desc()).all()

    def requests_in_state(self, state: RequestState) -> List[ContentRequest]:
        return self.db.query(ContentRequest).filter(ContentRequest.status == state.value).all()

    def pending_count(self) -> int:
        return self.db.query(ContentRequest).filter(ContentRequest.status == RequestState.PENDING.value).count()

    def set_state(
        self,
        record: ContentRequest,
        state: RequestState,
        processed_by: Optional[str] = None,
        notes: Optional[str] = None,
        stamp: bool = True,
    ) -> None:
        record.status = state.value
        if stamp:
            record.processed_at = datetime.utcnow()
            record.processed_by = processed_by
            record.notes = notes
        self.db.commit()

    def delete_request(self, record: ContentRequest) -> None:
        self.db.delete(record)
        self.db.commit()

    # --- tracking --------------------------------------------------------

    def track_item(
        self,
        server_id: str,
        draft: RequestDraft,
        added_by: Optional[str],
    ) -> str:
        """Enregistre l'élément suivi; une ligne existante est conservée telle quelle."""
        existing = self._find_tracked(server_id, draft.kind, draft.tmdb_id)
        if existing:
            return existing.id

        item = TrackedItem(
            server_id=server_id,
            content_type=draft.kind.value,
            tmdb_id=draft.tmdb_id,
            title=draft.title,
            year=draft.year,
            overview=draft.overview,
            poster_path=draft.poster_path,
            seasons=draft.seasons,
            added_by=added_by,
        )
        self.db.add(item)
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent insert won the unique constraint
            self.db.rollback()
            existing = self._find_tracked(server_id, draft.kind, draft.tmdb_id)
            if existing is None:
                raise
            return existing.id
        return item.id

    def _find_tracked(self, server_id: str, kind: MediaKind, tmdb_id: int) -> Optional[TrackedItem]:
        return self.db.query(TrackedItem).filter(
            TrackedItem.server_id == server_id,
            TrackedItem.content_type == kind.value,
            TrackedItem.tmdb_id == tmdb_id,
        ).first()

    def tracked_ids(self, server_id: str, kind: MediaKind, tmdb_ids: Iterable[int]) -> Set[int]:
        ids = list(tmdb_ids)
        if not ids:
            return set()
        rows = self.db.query(TrackedItem.tmdb_id).filter(
            TrackedItem.server_id == server_id,
            TrackedItem.content_type == kind.value,
            TrackedItem.tmdb_id.in_(ids),
        ).all()
        return {row[0] for row in rows}

    def list_tracked(
        self,
        server_ids: Optional[List[str]] = None,
        kind: Optional[MediaKind] = None,
    ) -> List[TrackedItem]:
        """Éléments suivis, restreints à ``server_ids`` quand fourni."""
        query = self.db.query(TrackedItem)
        if server_ids is not None:
            if not server_ids:
                return []
            query = query.filter(TrackedItem.server_id.in_(server_ids))
        if kind:
            query = query.filter(TrackedItem.content_type == kind.value)
        return query.order_by(TrackedItem.added_at.desc()).all()

    def get_tracked(self, item_id: str) -> Optional[TrackedItem]:
        return self.db.query(TrackedItem).filter(TrackedItem.id == item_id).first()

    def delete_tracked(self, item: TrackedItem) -> None:
        self.db.delete(item)
        self.db.commit()

    # --- audit -----------------------------------------------------------

    def append_audit(self, user_id: Optional[str], action: str, details: str) -> None:
        self.db.add(AuditLog(user_id=user_id, action=action, details=details))
        self.db.commit()

    def list_audit(
        self,
        limit: int = 50,
        offset: int = 0,
        user_id: Optional[str] = None,
        action: Optional[str] = None,
    ) -> Tuple[List[AuditLog], int]:
        """Page of audit entries (newest first) and the total matching count."""
        query = self.db.query(AuditLog)
        if user_id:
            query = query.filter(AuditLog.user_id == user_id)
        if action:
            query = query.filter(AuditLog.action == action)
        total = query.count()
        entries = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(offset).limit(limit).all()
        return entries, total

    # --- stats -----------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        by_status = dict(
            self.db.query(ContentRequest.status, func.count(ContentRequest.id)).group_by(ContentRequest.status).all()
        )
        return {
            "users": self.db.query(User).count(),
            "servers": self.db.query(ServerBindingRow).count(),
            "tracked_items": self.db.query(TrackedItem).count(),
            "requests": {state.value: by_status.get(state.value, 0) for state in RequestState},
        }
