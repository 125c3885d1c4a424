"""Tests for the request state machine."""

from __future__ import annotations

import httpx
import pytest

from fetcharr.core.errors import (
    AlreadyInManagerError, DuplicateRequestError, InvalidStateError, NotConfigured, PermissionDeniedError,
    RecordNotFoundError,
)
from fetcharr.core.models import MediaKind, RequestDraft, RequestState, UserContext
from fetcharr.core.workflow import RequestWorkflow
from fetcharr.db import database
from fetcharr.db.models import AuditLog, TrackedItem
from fetcharr.db.repository import RequestStore
from fetcharr.db.seed import sync_from_config

MATRIX = RequestDraft(tmdb_id=603, kind=MediaKind.MOVIE, title="The Matrix", year=1999)


@pytest.fixture
def db(config):
    database.init_db(database_url="sqlite://")
    session = database.get_db_sync()
    sync_from_config(session, config)
    yield session
    session.close()


@pytest.fixture
def store(db) -> RequestStore:
    return RequestStore(db)


@pytest.fixture
def workflow(store, services) -> RequestWorkflow:
    return RequestWorkflow(store, services.executor, services.managers)


@pytest.mark.anyio("asyncio")
async def test_create_pending_request(workflow, store) -> None:
    bob = store.get_user_context("bob")

    result = await workflow.create(bob, MATRIX)

    assert result.status == "pending"
    record = store.get_request(result.request_id)
    assert record.server_id == "srv-a"
    assert record.status == RequestState.PENDING.value
    assert store.pending_count() == 1


@pytest.mark.anyio("asyncio")
async def test_duplicate_guard_is_per_server(workflow, store) -> None:
    await workflow.create(store.get_user_context("bob"), MATRIX)

    with pytest.raises(DuplicateRequestError, match="Request already exists"):
        await workflow.create(store.get_user_context("alice"), MATRIX)

    # Same item on another server is a separate request
    result = await workflow.create(store.get_user_context("dave"), MATRIX)
    assert result.status == "pending"


@pytest.mark.anyio("asyncio")
async def test_rejected_request_does_not_block_a_new_one(workflow, store) -> None:
    alice = store.get_user_context("alice")
    first = await workflow.create(store.get_user_context("bob"), MATRIX)
    await workflow.reject(first.request_id, alice, notes="not now")

    second = await workflow.create(store.get_user_context("bob"), MATRIX)

    assert second.request_id != first.request_id


@pytest.mark.anyio("asyncio")
async def test_approve_pushes_and_tracks(workflow, store, network) -> None:
    network.radarr.lookup_results = [{"title": "The Matrix", "tmdbId": 603, "year": 1999}]
    alice = store.get_user_context("alice")
    created = await workflow.create(store.get_user_context("bob"), MATRIX)

    result = await workflow.approve(created.request_id, alice, notes="enjoy")

    assert result.outcome.success is True
    assert result.warning is None
    record = store.get_request(created.request_id)
    assert record.status == "approved"
    assert record.processed_by == alice.id
    assert record.notes == "enjoy"
    assert store.tracked_ids("srv-a", MediaKind.MOVIE, [603]) == {603}
    assert len(network.radarr.posts) == 1


@pytest.mark.anyio("asyncio")
async def test_approve_with_failed_lookup_still_approves(workflow, store, network) -> None:
    alice = store.get_user_context("alice")
    created = await workflow.create(store.get_user_context("bob"), MATRIX)

    result = await workflow.approve(created.request_id, alice)

    assert store.get_request(created.request_id).status == "approved"
    assert result.outcome.success is False
    assert result.warning.startswith("Radarr integration failed: ")
    assert result.tracked_id is not None


@pytest.mark.anyio("asyncio")
async def test_approve_twice_is_invalid(workflow, store) -> None:
    alice = store.get_user_context("alice")
    created = await workflow.create(store.get_user_context("bob"), MATRIX)
    await workflow.approve(created.request_id, alice)

    with pytest.raises(InvalidStateError, match="Request is not pending"):
        await workflow.approve(created.request_id, alice)
    with pytest.raises(InvalidStateError):
        await workflow.reject(created.request_id, alice)


@pytest.mark.anyio("asyncio")
async def test_processing_requires_admin(workflow, store) -> None:
    bob = store.get_user_context("bob")
    created = await workflow.create(bob, MATRIX)

    with pytest.raises(PermissionDeniedError):
        await workflow.approve(created.request_id, bob)
    with pytest.raises(PermissionDeniedError):
        await workflow.reject(created.request_id, bob)
    with pytest.raises(PermissionDeniedError):
        workflow.pending_count(bob)


@pytest.mark.anyio("asyncio")
async def test_unknown_request(workflow, store) -> None:
    with pytest.raises(RecordNotFoundError):
        await workflow.approve("missing", store.get_user_context("alice"))


@pytest.mark.anyio("asyncio")
async def test_direct_add_tracks_even_when_push_fails(workflow, store, db) -> None:
    carol = store.get_user_context("carol")

    result = await workflow.create(carol, MATRIX)

    assert result.status == "added"
    assert result.request_id is None
    assert result.outcome.success is False
    assert "603" in result.warning
    assert db.query(TrackedItem).count() == 1
    assert store.pending_count() == 0
    assert db.query(AuditLog).filter(AuditLog.action == "add_content").count() == 1


@pytest.mark.anyio("asyncio")
async def test_direct_add_twice_is_refused_by_manager_check(workflow, store, network, db) -> None:
    network.radarr.lookup_results = [{"title": "The Matrix", "tmdbId": 603, "year": 1999}]
    carol = store.get_user_context("carol")

    first = await workflow.create(carol, MATRIX)
    with pytest.raises(AlreadyInManagerError, match="already being monitored in Radarr"):
        await workflow.create(carol, MATRIX)

    assert first.outcome.success and not first.outcome.already_exists
    assert len(network.radarr.posts) == 1
    assert db.query(TrackedItem).count() == 1


@pytest.mark.anyio("asyncio")
async def test_downloaded_movie_cannot_be_requested(workflow, store, network) -> None:
    network.radarr.records = [{"id": 7, "tmdbId": 603, "monitored": True, "hasFile": True}]

    with pytest.raises(AlreadyInManagerError, match="already downloaded in Radarr") as excinfo:
        await workflow.create(store.get_user_context("bob"), MATRIX)

    assert excinfo.value.status == "downloaded"
    assert store.pending_count() == 0


@pytest.mark.anyio("asyncio")
async def test_monitored_series_cannot_be_requested(workflow, store, network) -> None:
    network.sonarr.records = [{"id": 3, "tmdbId": 95396, "title": "Severance", "monitored": True,
                               "status": "continuing", "statistics": {"episodeCount": 19, "percentOfEpisodes": 50}}]
    draft = RequestDraft(tmdb_id=95396, kind=MediaKind.SERIES, title="Severance", year=2022)

    with pytest.raises(AlreadyInManagerError, match="already being monitored in Sonarr") as excinfo:
        await workflow.create(store.get_user_context("bob"), draft)

    assert excinfo.value.status == "missing"


@pytest.mark.anyio("asyncio")
async def test_unmonitored_manager_record_allows_request(workflow, store, network) -> None:
    network.radarr.records = [{"id": 7, "tmdbId": 603, "monitored": False, "hasFile": False}]

    result = await workflow.create(store.get_user_context("bob"), MATRIX)

    assert result.status == "pending"


@pytest.mark.anyio("asyncio")
async def test_unreachable_manager_does_not_block_request(workflow, store, network) -> None:
    network.radarr.down = True

    result = await workflow.create(store.get_user_context("bob"), MATRIX)

    assert result.status == "pending"


@pytest.mark.anyio("asyncio")
async def test_malformed_manager_reply_still_approves(workflow, store, network) -> None:
    alice = store.get_user_context("alice")
    created = await workflow.create(store.get_user_context("bob"), MATRIX)
    network.radarr.overrides["/api/v3/movie/lookup/tmdb"] = httpx.Response(200, text="<html>Sign in</html>")

    result = await workflow.approve(created.request_id, alice)

    assert store.get_request(created.request_id).status == "approved"
    assert result.outcome.success is False
    assert result.outcome.error_type == "MalformedReply"
    assert result.warning.startswith("Radarr integration failed: ")
    assert store.tracked_ids("srv-a", MediaKind.MOVIE, [603]) == {603}


@pytest.mark.anyio("asyncio")
async def test_user_without_server_cannot_request(workflow, store, db) -> None:
    bob = store.get_user_context("bob")
    no_server = UserContext(id=bob.id, username=bob.username)

    with pytest.raises(NotConfigured):
        await workflow.create(no_server, MATRIX)


@pytest.mark.anyio("asyncio")
async def test_delete_permissions(workflow, store) -> None:
    alice = store.get_user_context("alice")
    bob = store.get_user_context("bob")
    dave = store.get_user_context("dave")
    created = await workflow.create(bob, MATRIX)

    with pytest.raises(PermissionDeniedError):
        workflow.delete(created.request_id, dave)

    await workflow.approve(created.request_id, alice)
    with pytest.raises(InvalidStateError):
        workflow.delete(created.request_id, bob)

    workflow.delete(created.request_id, alice)
    assert store.get_request(created.request_id) is None


@pytest.mark.anyio("asyncio")
async def test_owner_deletes_pending_request(workflow, store) -> None:
    bob = store.get_user_context("bob")
    created = await workflow.create(bob, MATRIX)

    workflow.delete(created.request_id, bob)

    assert workflow.list_requests(bob) == []


@pytest.mark.anyio("asyncio")
async def test_list_requests_scoping(workflow, store) -> None:
    alice = store.get_user_context("alice")
    bob = store.get_user_context("bob")
    dave = store.get_user_context("dave")
    await workflow.create(bob, MATRIX)
    await workflow.create(dave, MATRIX)
    await workflow.create(dave, RequestDraft(tmdb_id=95396, kind=MediaKind.SERIES, title="Severance", seasons=[1]))

    assert len(workflow.list_requests(alice)) == 3
    assert len(workflow.list_requests(bob)) == 1
    assert [r.title for r in workflow.list_requests(dave, kind=MediaKind.SERIES)] == ["Severance"]
    assert workflow.list_requests(alice, status="approved") == []


@pytest.mark.anyio("asyncio")
async def test_refresh_marks_downloaded(workflow, store, network, clock) -> None:
    network.radarr.lookup_results = [{"title": "The Matrix", "tmdbId": 603, "year": 1999}]
    alice = store.get_user_context("alice")
    created = await workflow.create(store.get_user_context("bob"), MATRIX)
    await workflow.approve(created.request_id, alice)

    assert await workflow.refresh_statuses() == 0

    network.radarr.records[0]["hasFile"] = True
    clock.advance(301)
    assert await workflow.refresh_statuses() == 1

    record = store.get_request(created.request_id)
    assert record.status == "downloaded"
    assert record.processed_by == alice.id


@pytest.mark.anyio("asyncio")
async def test_tracked_items_are_scoped_to_user_servers(workflow, store) -> None:
    alice = store.get_user_context("alice")
    bob = store.get_user_context("bob")
    dave = store.get_user_context("dave")
    await workflow.create(store.get_user_context("carol"), MATRIX)
    created = await workflow.create(dave, RequestDraft(tmdb_id=95396, kind=MediaKind.SERIES, title="Severance"))
    await workflow.approve(created.request_id, alice)

    assert [i.title for i in workflow.list_tracked(bob)] == ["The Matrix"]
    assert [i.title for i in workflow.list_tracked(dave)] == ["Severance"]
    assert len(workflow.list_tracked(alice)) == 2
    assert [i.server_id for i in workflow.list_tracked(alice, server_id="srv-b")] == ["srv-b"]
    assert workflow.list_tracked(bob, server_id="srv-b") == []
    assert workflow.list_tracked(alice, kind=MediaKind.MOVIE)[0].tmdb_id == 603


@pytest.mark.anyio("asyncio")
async def test_remove_tracked_permissions(workflow, store, db) -> None:
    carol = store.get_user_context("carol")
    result = await workflow.create(carol, MATRIX)

    with pytest.raises(PermissionDeniedError, match="Can only remove items you added"):
        workflow.remove_tracked(result.tracked_id, store.get_user_context("bob"))
    with pytest.raises(PermissionDeniedError, match="Access denied"):
        workflow.remove_tracked(result.tracked_id, store.get_user_context("dave"))

    workflow.remove_tracked(result.tracked_id, carol)

    assert store.get_tracked(result.tracked_id) is None
    assert db.query(AuditLog).filter(AuditLog.action == "remove_tracked_item").count() == 1
    with pytest.raises(RecordNotFoundError, match="Item not found"):
        workflow.remove_tracked(result.tracked_id, store.get_user_context("alice"))


@pytest.mark.anyio("asyncio")
async def test_admin_removes_any_tracked_item(workflow, store) -> None:
    result = await workflow.create(store.get_user_context("carol"), MATRIX)

    workflow.remove_tracked(result.tracked_id, store.get_user_context("alice"))

    assert workflow.list_tracked(store.get_user_context("alice")) == []


@pytest.mark.anyio("asyncio")
async def test_store_stats_and_audit_page(workflow, store) -> None:
    alice = store.get_user_context("alice")
    bob = store.get_user_context("bob")
    first = await workflow.create(bob, MATRIX)
    await workflow.create(bob, RequestDraft(tmdb_id=95396, kind=MediaKind.SERIES, title="Severance"))
    await workflow.reject(first.request_id, alice)

    stats = store.stats()
    assert stats["users"] == 4
    assert stats["servers"] == 2
    assert stats["tracked_items"] == 0
    assert stats["requests"] == {"pending": 1, "approved": 0, "rejected": 1, "downloaded": 0}

    entries, total = store.list_audit(limit=2)
    assert total == 3
    assert [e.action for e in entries] == ["reject_request", "request_content"]
    entries, total = store.list_audit(action="request_content")
    assert total == 2
    assert {e.user_id for e in entries} == {bob.id}
    entries, total = store.list_audit(limit=2, offset=2)
    assert total == 3 and len(entries) == 1
