"""API routes."""
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from typing import List, Optional
import logging
import math

from fetcharr.api.deps import get_current_user, get_services, get_store, get_workflow, require_admin
from fetcharr.api.models import (
    ApproveResponse, AuditEntryResponse, AuditPageResponse, ClearCacheResponse, ConnectionTestResponse,
    CreateRequestBody, CreateRequestResponse, FulfillmentResponse, MessageResponse, ProcessRequestBody,
    RequestRecordResponse, SearchItemResponse, SearchResponse, ServerResponse, StatsResponse, TrackedItemResponse,
)
from fetcharr.container import Services
from fetcharr.core.errors import NotConfigured, RemoteRejected
from fetcharr.core.models import ContentItem, MediaKind, RequestDraft, RequestState, UserContext
from fetcharr.core.workflow import RequestWorkflow
from fetcharr.db.models import AuditLog, ContentRequest, TrackedItem
from fetcharr.db.repository import RequestStore
from fetcharr.services.tmdb import SearchPage

logger = logging.getLogger(__name__)
router = APIRouter()


def _parse_kind(value: str) -> MediaKind:
    try:
        return MediaKind.parse(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid content type: {value}")


def _record_response(record: ContentRequest) -> RequestRecordResponse:
    return RequestRecordResponse(
        id=record.id,
        user_id=record.user_id,
        requested_by_username=record.requester.username if record.requester else None,
        server_id=record.server_id,
        server_name=record.server.name if record.server else None,
        tmdb_id=record.tmdb_id,
        content_type=record.content_type,
        title=record.title,
        year=record.year,
        overview=record.overview,
        poster_path=record.poster_path,
        status=record.status,
        seasons=record.seasons,
        requested_at=record.requested_at,
        processed_at=record.processed_at,
        processed_by_username=record.processor.username if record.processor else None,
        notes=record.notes,
    )


def _tracked_response(item: TrackedItem) -> TrackedItemResponse:
    return TrackedItemResponse(
        id=item.id,
        server_id=item.server_id,
        server_name=item.server.name if item.server else None,
        content_type=item.content_type,
        tmdb_id=item.tmdb_id,
        title=item.title,
        year=item.year,
        overview=item.overview,
        poster_path=item.poster_path,
        seasons=item.seasons,
        added_by=item.adder.username if item.adder else None,
        added_at=item.added_at,
    )


def _audit_response(entry: AuditLog) -> AuditEntryResponse:
    return AuditEntryResponse(
        id=entry.id,
        username=entry.user.username if entry.user else None,
        action=entry.action,
        details=entry.details,
        created_at=entry.created_at,
    )


async def _search_response(
    services: Services, store: RequestStore, user: UserContext, page: SearchPage
) -> SearchResponse:
    enriched = await services.aggregator.enrich(page.items, user, store)
    return SearchResponse(
        page=page.page,
        total_pages=page.total_pages,
        total_results=page.total_results,
        results=[SearchItemResponse.from_enriched(e) for e in enriched],
    )


async def _catalog_search(services: Services, kind: Optional[MediaKind], query: str, page: int) -> SearchPage:
    try:
        if kind is None:
            return await services.tmdb.search_multi(query, page)
        return await services.tmdb.search(kind, query, page)
    except NotConfigured as e:
        # Missing TMDB key is a server-side fault, not a client one
        raise HTTPException(status_code=500, detail=str(e))


async def _catalog_details(services: Services, kind: MediaKind, tmdb_id: int) -> ContentItem:
    try:
        return await services.tmdb.get_details(kind, tmdb_id)
    except NotConfigured as e:
        raise HTTPException(status_code=500, detail=str(e))
    except RemoteRejected as e:
        if e.status_code == 404:
            raise HTTPException(status_code=404, detail=f"{kind.value.title()} not found")
        raise


# --- search ----------------------------------------------------------------

@router.get("/api/search/movies", response_model=SearchResponse)
async def search_movies(
    query: str = Query(..., min_length=1),
    page: int = Query(1, ge=1),
    user: UserContext = Depends(get_current_user),
    store: RequestStore = Depends(get_store),
    services: Services = Depends(get_services),
):
    """Recherche de films, enrichie avec la disponibilité."""
    result = await _catalog_search(services, MediaKind.MOVIE, query, page)
    return await _search_response(services, store, user, result)


@router.get("/api/search/tv", response_model=SearchResponse)
async def search_tv(
    query: str = Query(..., min_length=1),
    page: int = Query(1, ge=1),
    user: UserContext = Depends(get_current_user),
    store: RequestStore = Depends(get_store),
    services: Services = Depends(get_services),
):
    """Recherche de séries, enrichie avec la disponibilité."""
    result = await _catalog_search(services, MediaKind.SERIES, query, page)
    return await _search_response(services, store, user, result)


@router.get("/api/search/multi", response_model=SearchResponse)
async def search_multi(
    query: str = Query(..., min_length=1),
    page: int = Query(1, ge=1),
    user: UserContext = Depends(get_current_user),
    store: RequestStore = Depends(get_store),
    services: Services = Depends(get_services),
):
    result = await _catalog_search(services, None, query, page)
    return await _search_response(services, store, user, result)


@router.get("/api/search/movie/{tmdb_id}", response_model=SearchItemResponse)
async def movie_details(
    tmdb_id: int,
    user: UserContext = Depends(get_current_user),
    store: RequestStore = Depends(get_store),
    services: Services = Depends(get_services),
):
    item = await _catalog_details(services, MediaKind.MOVIE, tmdb_id)
    enriched = await services.aggregator.enrich([item], user, store)
    return SearchItemResponse.from_enriched(enriched[0])


@router.get("/api/search/tv/{tmdb_id}", response_model=SearchItemResponse)
async def tv_details(
    tmdb_id: int,
    user: UserContext = Depends(get_current_user),
    store: RequestStore = Depends(get_store),
    services: Services = Depends(get_services),
):
    """Détails d'une série avec ses saisons."""
    item = await _catalog_details(services, MediaKind.SERIES, tmdb_id)
    enriched = await services.aggregator.enrich([item], user, store)
    return SearchItemResponse.from_enriched(enriched[0], include_seasons=True)


# --- requests --------------------------------------------------------------

@router.get("/api/requests", response_model=List[RequestRecordResponse])
async def list_requests(
    status: Optional[str] = None,
    type: Optional[str] = None,
    user: UserContext = Depends(get_current_user),
    workflow: RequestWorkflow = Depends(get_workflow),
):
    """Demandes de l'utilisateur (toutes pour un admin)."""
    kind = _parse_kind(type) if type else None
    return [_record_response(r) for r in workflow.list_requests(user, status=status, kind=kind)]


@router.get("/api/requests/pending")
async def pending_requests(
    user: UserContext = Depends(require_admin),
    workflow: RequestWorkflow = Depends(get_workflow),
):
    return {"count": workflow.pending_count(user)}


@router.post("/api/requests", response_model=CreateRequestResponse)
async def create_request(
    body: CreateRequestBody,
    user: UserContext = Depends(get_current_user),
    workflow: RequestWorkflow = Depends(get_workflow),
):
    """Crée une demande (ou ajoute directement si autorisé)."""
    draft = RequestDraft(
        tmdb_id=body.tmdb_id,
        kind=_parse_kind(body.content_type),
        title=body.title,
        year=body.year,
        overview=body.overview,
        poster_path=body.poster_path,
        seasons=body.seasons,
    )
    result = await workflow.create(user, draft)
    message = "Content added successfully" if result.status == "added" else "Request created successfully"
    return CreateRequestResponse(
        message=message,
        status=result.status,
        request_id=result.request_id,
        tracked_id=result.tracked_id,
        warning=result.warning,
        fulfillment=FulfillmentResponse.from_outcome(result.outcome),
    )


@router.post("/api/requests/{request_id}/approve", response_model=ApproveResponse)
async def approve_request(
    request_id: str,
    body: Optional[ProcessRequestBody] = None,
    user: UserContext = Depends(get_current_user),
    workflow: RequestWorkflow = Depends(get_workflow),
):
    body = body or ProcessRequestBody()
    result = await workflow.approve(request_id, user, notes=body.notes, seasons=body.seasons)
    return ApproveResponse(
        message="Request approved",
        tracked_id=result.tracked_id,
        warning=result.warning,
        fulfillment=FulfillmentResponse.from_outcome(result.outcome),
    )


@router.post("/api/requests/{request_id}/reject", response_model=MessageResponse)
async def reject_request(
    request_id: str,
    body: Optional[ProcessRequestBody] = None,
    user: UserContext = Depends(get_current_user),
    workflow: RequestWorkflow = Depends(get_workflow),
):
    body = body or ProcessRequestBody()
    await workflow.reject(request_id, user, notes=body.notes)
    return MessageResponse(message="Request rejected")


@router.delete("/api/requests/{request_id}", response_model=MessageResponse)
async def delete_request(
    request_id: str,
    user: UserContext = Depends(get_current_user),
    workflow: RequestWorkflow = Depends(get_workflow),
):
    workflow.delete(request_id, user)
    return MessageResponse(message="Request deleted")


# --- servers ---------------------------------------------------------------

@router.get("/api/servers", response_model=List[ServerResponse])
async def list_servers(user: UserContext = Depends(get_current_user)):
    """Serveurs de l'utilisateur, sans les secrets."""
    return [
        ServerResponse(
            id=binding.id,
            name=binding.name,
            url=binding.plex_url,
            has_plex_token=bool(binding.plex_token),
            radarr_url=binding.radarr.url if binding.radarr else None,
            has_radarr_api_key=binding.radarr is not None,
            sonarr_url=binding.sonarr.url if binding.sonarr else None,
            has_sonarr_api_key=binding.sonarr is not None,
            is_primary=binding.id == user.primary_server_id,
        )
        for binding in user.servers
    ]


@router.post("/api/servers/{server_id}/test", response_model=ConnectionTestResponse)
async def check_server(
    server_id: str,
    user: UserContext = Depends(require_admin),
    store: RequestStore = Depends(get_store),
    services: Services = Depends(get_services),
):
    """Teste Plex, Radarr et Sonarr pour un serveur."""
    binding = store.get_binding(server_id)
    if binding is None:
        raise HTTPException(status_code=404, detail="Server not found")

    plex = await services.plex.test_connection(binding)
    radarr = await services.radarr.test_connection(binding)
    sonarr = await services.sonarr.test_connection(binding)
    success = plex["success"] and all(r["success"] for r in (radarr, sonarr) if r["configured"])
    logger.info(f"Connection test for {binding.name}: plex={plex['success']} "
                f"radarr={radarr['success']} sonarr={sonarr['success']}")
    return ConnectionTestResponse(plex=plex, radarr=radarr, sonarr=sonarr, success=success)


@router.get("/api/servers/{server_id}/libraries")
async def server_libraries(
    server_id: str,
    user: UserContext = Depends(require_admin),
    store: RequestStore = Depends(get_store),
    services: Services = Depends(get_services),
):
    binding = store.get_binding(server_id)
    if binding is None:
        raise HTTPException(status_code=404, detail="Server not found")
    return {"libraries": await services.plex.list_libraries(binding)}


# --- tracked items ---------------------------------------------------------

@router.get("/api/tracked", response_model=List[TrackedItemResponse])
async def list_tracked(
    server_id: Optional[str] = Query(None, alias="serverId"),
    type: Optional[str] = None,
    user: UserContext = Depends(get_current_user),
    workflow: RequestWorkflow = Depends(get_workflow),
):
    """Éléments suivis sur les serveurs de l'utilisateur."""
    kind = _parse_kind(type) if type else None
    return [_tracked_response(item) for item in workflow.list_tracked(user, server_id=server_id, kind=kind)]


@router.delete("/api/tracked/{item_id}", response_model=MessageResponse)
async def remove_tracked(
    item_id: str,
    user: UserContext = Depends(get_current_user),
    workflow: RequestWorkflow = Depends(get_workflow),
):
    workflow.remove_tracked(item_id, user)
    return MessageResponse(message="Item removed")


# --- admin -----------------------------------------------------------------

@router.get("/api/admin/stats", response_model=StatsResponse)
async def admin_stats(
    user: UserContext = Depends(require_admin),
    store: RequestStore = Depends(get_store),
):
    """Compteurs globaux et activité récente."""
    stats = store.stats()
    recent, _ = store.list_audit(limit=20)
    return StatsResponse(
        users=stats["users"],
        servers=stats["servers"],
        tracked_items=stats["tracked_items"],
        pending_requests=stats["requests"][RequestState.PENDING.value],
        requests=stats["requests"],
        recent_activity=[_audit_response(entry) for entry in recent],
    )


@router.get("/api/admin/audit", response_model=AuditPageResponse)
async def admin_audit(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    user_id: Optional[str] = Query(None, alias="userId"),
    action: Optional[str] = None,
    user: UserContext = Depends(require_admin),
    store: RequestStore = Depends(get_store),
):
    entries, total = store.list_audit(limit=limit, offset=(page - 1) * limit, user_id=user_id, action=action)
    return AuditPageResponse(
        logs=[_audit_response(entry) for entry in entries],
        total=total,
        page=page,
        total_pages=math.ceil(total / limit),
    )


@router.post("/api/admin/clear-cache", response_model=ClearCacheResponse)
async def admin_clear_cache(
    user: UserContext = Depends(require_admin),
    store: RequestStore = Depends(get_store),
    services: Services = Depends(get_services),
):
    """Vide le cache de disponibilité (Plex, Radarr, Sonarr)."""
    cleared = services.clear_caches()
    store.append_audit(user.id, "clear_cache", "Cleared availability cache")
    logger.info(f"Availability cache cleared by {user.username} ({cleared} entries)")
    return ClearCacheResponse(message="Cache cleared", entries=cleared)


# --- misc ------------------------------------------------------------------

@router.get("/api/config")
async def get_config_endpoint(
    request: Request,
    user: UserContext = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Configuration exposée (sans secrets)."""
    config = request.app.state.config
    return {
        "tmdb": {"configured": services.tmdb.is_configured(), "language": config.tmdb.language},
        "cache": {"ttl_seconds": config.cache.ttl_seconds},
        "scheduler": config.scheduler.model_dump(),
        "user": {
            "username": user.username,
            "role": user.role,
            "can_add_directly": user.can_add_directly,
            "primary_server_id": user.primary_server_id,
        },
    }


@router.get("/api/health")
async def health():
    return {"status": "ok"}
