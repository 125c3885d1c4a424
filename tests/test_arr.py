"""Tests for the Radarr and Sonarr status checkers."""

from __future__ import annotations

import pytest

from fetcharr.core.models import ContentItem, FulfillmentCommand, ManagerStatus, MediaKind

from conftest import SERVER_A, SERVER_B

MATRIX = ContentItem(tmdb_id=603, kind=MediaKind.MOVIE, title="The Matrix", year=1999, release_date="1999-03-30")
SEVERANCE = ContentItem(tmdb_id=95396, kind=MediaKind.SERIES, title="Severance", year=2022)


def _movie(**overrides):
    record = {"id": 7, "tmdbId": 603, "title": "The Matrix", "monitored": True, "hasFile": False,
              "status": "released"}
    record.update(overrides)
    return record


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize(
    ("record", "queue", "expected"),
    [
        (_movie(hasFile=True), [], ManagerStatus.DOWNLOADED),
        (_movie(), [], ManagerStatus.MISSING),
        (_movie(), [{"movieId": 7}], ManagerStatus.QUEUED),
        (_movie(status="announced"), [], ManagerStatus.UNRELEASED),
        (_movie(monitored=False), [], None),
        (_movie(tmdbId=604), [], None),
    ],
)
async def test_radarr_status(services, network, record, queue, expected) -> None:
    network.radarr.records = [record]
    network.radarr.queue = queue

    assert await services.radarr.get_status(SERVER_A, MATRIX) is expected


@pytest.mark.anyio("asyncio")
async def test_radarr_sends_api_key(services, network) -> None:
    network.radarr.records = [_movie()]

    await services.radarr.get_status(SERVER_A, MATRIX)

    assert all(r.headers["X-Api-Key"] == "radarr-key" for r in network.radarr.requests)


@pytest.mark.anyio("asyncio")
async def test_status_is_cached_including_unknown(services, network, clock) -> None:
    await services.radarr.get_status(SERVER_A, MATRIX)
    await services.radarr.get_status(SERVER_A, MATRIX)
    assert len(network.radarr.requests) == 1

    network.radarr.records = [_movie(hasFile=True)]
    clock.advance(301)
    assert await services.radarr.get_status(SERVER_A, MATRIX) is ManagerStatus.DOWNLOADED


@pytest.mark.anyio("asyncio")
async def test_unreachable_manager_is_unknown(services, network) -> None:
    network.radarr.down = True

    assert await services.radarr.get_status(SERVER_A, MATRIX) is None


@pytest.mark.anyio("asyncio")
async def test_binding_without_manager_is_skipped(services, network) -> None:
    assert await services.radarr.get_status(SERVER_B, MATRIX) is None
    assert network.radarr.requests == []


@pytest.mark.anyio("asyncio")
async def test_sonarr_matches_on_tmdb_id_first(services, network) -> None:
    network.sonarr.records = [
        {"id": 1, "tmdbId": 1, "title": "Severance", "year": 2022, "monitored": True,
         "statistics": {"episodeCount": 19, "percentOfEpisodes": 100.0}},
        {"id": 2, "tmdbId": 95396, "title": "Severance (2022)", "year": 2022, "monitored": True,
         "status": "continuing", "statistics": {"episodeCount": 19, "percentOfEpisodes": 40.0}},
    ]

    assert await services.sonarr.get_status(SERVER_A, SEVERANCE) is ManagerStatus.MISSING


@pytest.mark.anyio("asyncio")
async def test_sonarr_title_fallback_for_records_without_tmdb_id(services, network) -> None:
    network.sonarr.records = [
        {"id": 3, "title": "severance", "year": 2022, "monitored": True, "status": "continuing",
         "statistics": {"episodeCount": 19, "percentOfEpisodes": 100.0}},
    ]

    assert await services.sonarr.get_status(SERVER_A, SEVERANCE) is ManagerStatus.DOWNLOADED


@pytest.mark.anyio("asyncio")
async def test_sonarr_upcoming_series_is_unreleased(services, network) -> None:
    network.sonarr.records = [
        {"id": 4, "tmdbId": 95396, "title": "Severance", "monitored": True, "status": "upcoming",
         "statistics": {"episodeCount": 0, "percentOfEpisodes": 0}},
    ]
    network.sonarr.queue = [{"seriesId": 99}]

    assert await services.sonarr.get_status(SERVER_A, SEVERANCE) is ManagerStatus.UNRELEASED


def test_sonarr_payload_monitors_requested_seasons_only(services) -> None:
    record = {"title": "Severance", "tvdbId": 371980, "titleSlug": "severance",
              "seasons": [{"seasonNumber": 0}, {"seasonNumber": 1}, {"seasonNumber": 2}]}
    command = FulfillmentCommand(tmdb_id=95396, kind=MediaKind.SERIES, title="Severance", binding=SERVER_A,
                                 seasons=frozenset({2}))

    payload = services.sonarr.build_add_payload(record, "/tv", 4, command)

    assert payload["tvdbId"] == 371980
    assert payload["addOptions"] == {"searchForMissingEpisodes": True}
    assert payload["seasons"] == [
        {"seasonNumber": 0, "monitored": False},
        {"seasonNumber": 1, "monitored": False},
        {"seasonNumber": 2, "monitored": True},
    ]
