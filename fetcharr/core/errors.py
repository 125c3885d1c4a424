"""Domain exceptions."""
from typing import Any, List, Optional


class FetcharrError(Exception):
    """Base class for all domain errors."""


class RemoteError(FetcharrError):
    """A remote service could not give a usable answer."""

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service


class RemoteUnavailable(RemoteError):
    """Network error, timeout or open circuit breaker."""


class MalformedReply(RemoteError):
    """The remote service answered 2xx with a body of the wrong shape."""


class RemoteRejected(RemoteError):
    """The remote service answered with a non-2xx status."""

    def __init__(self, service: str, status_code: int, payload: Any = None):
        super().__init__(service, f"HTTP {status_code}")
        self.status_code = status_code
        self.payload = payload

    def error_codes(self) -> List[str]:
        """Error codes from a *arr validation payload ([{errorCode, errorMessage}, ...])."""
        if not isinstance(self.payload, list):
            return []
        return [e.get("errorCode") for e in self.payload if isinstance(e, dict) and e.get("errorCode")]

    def first_message(self) -> Optional[str]:
        if isinstance(self.payload, list):
            for entry in self.payload:
                if isinstance(entry, dict) and entry.get("errorMessage"):
                    return entry["errorMessage"]
        if isinstance(self.payload, dict):
            return self.payload.get("message") or self.payload.get("status_message")
        return None


class NotConfigured(FetcharrError):
    """A binding lacks the service needed for an operation."""


class NotFoundError(FetcharrError):
    """The catalog item is unknown to the download manager."""


class MisconfiguredError(FetcharrError):
    """The download manager lacks a root folder or a quality profile."""


class DuplicateRequestError(FetcharrError):
    """A pending or approved request already exists for this item and server."""


class AlreadyInManagerError(FetcharrError):
    """The download manager already has the item, downloaded or monitored."""

    def __init__(self, message: str, status: str):
        super().__init__(message)
        self.status = status


class InvalidStateError(FetcharrError):
    """Transition attempted from a state that does not allow it."""


class PermissionDeniedError(FetcharrError):
    """The actor is not allowed to perform the operation."""


class RecordNotFoundError(FetcharrError):
    """No request record with the given id."""
