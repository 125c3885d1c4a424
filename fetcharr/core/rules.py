"""Reduction of per-service signals into one availability status."""
from typing import Iterable, Optional

from fetcharr.core.models import AvailabilityStatus, ManagerStatus


def decide_status(
    library_available: bool,
    manager_status: Optional[ManagerStatus],
    tracked: bool,
) -> AvailabilityStatus:
    """Overall status for an item; first non-empty signal in priority order wins.

    A file confirmed by a media server outranks the download manager's view,
    which outranks a logged request.
    """
    ranked: Iterable[Optional[AvailabilityStatus]] = (
        AvailabilityStatus.AVAILABLE if library_available else None,
        AvailabilityStatus(manager_status.value) if manager_status is not None else None,
        AvailabilityStatus.REQUESTED if tracked else None,
    )
    return next((status for status in ranked if status is not None), AvailabilityStatus.NOT_AVAILABLE)


def classify_manager_record(monitored: bool, has_file: bool, queued: bool, released: bool) -> Optional[ManagerStatus]:
    """Status of an item the download manager already knows about."""
    if has_file:
        return ManagerStatus.DOWNLOADED
    if not monitored:
        return None
    if queued:
        return ManagerStatus.QUEUED
    return ManagerStatus.MISSING if released else ManagerStatus.UNRELEASED
