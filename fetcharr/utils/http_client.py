"""HTTP client with timeouts and circuit breaker."""
import httpx
from typing import Callable, Optional, Dict, Any
import structlog
import time

from fetcharr.core.errors import RemoteRejected, RemoteUnavailable

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT = 10.0


class CircuitBreaker:
    """Per-service breaker: stop calling an instance after repeated failures.

    Once open, the first call after ``timeout`` seconds goes through as a
    single trial while every other call is still refused. The trial's result
    closes the breaker or opens it again for another full ``timeout``.
    """

    def __init__(self, failure_threshold: int = 5, timeout: float = 60, clock: Callable[[], float] = time.monotonic):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self.state = "closed"  # closed, open, half_open
        self._clock = clock

    def call_succeeded(self):
        """Reset on success."""
        if self.state != "closed":
            logger.info("circuit_breaker_closed")
        self.failure_count = 0
        self.opened_at = None
        self.state = "closed"

    def call_failed(self):
        """Record failure; a failed trial reopens at once."""
        self.failure_count += 1
        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            self.state = "open"
            self.opened_at = self._clock()
            logger.warning(
                "circuit_breaker_opened",
                failure_count=self.failure_count,
                threshold=self.failure_threshold
            )

    def can_attempt(self) -> bool:
        """Check if we can attempt a call."""
        if self.state == "closed":
            return True

        # A trial that never reported back (cancelled) is given up after the same window
        if self._clock() - self.opened_at >= self.timeout:
            self.state = "half_open"
            self.opened_at = self._clock()
            logger.info("circuit_breaker_half_open")
            return True

        # open within the window, or a trial is already in flight
        return False


class ServiceHTTPClient:
    """Single-attempt JSON calls over a shared httpx.AsyncClient.

    Transport errors and timeouts raise RemoteUnavailable, non-2xx answers
    raise RemoteRejected carrying the decoded body. Breakers are keyed by
    service name, which callers build from the instance base URL.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        default_timeout: float = DEFAULT_TIMEOUT,
        circuit_breaker_threshold: int = 5,
        circuit_breaker_timeout: int = 60
    ):
        self.default_timeout = default_timeout
        self._client = client or httpx.AsyncClient(timeout=default_timeout)
        self.circuit_breakers: Dict[str, CircuitBreaker] = {}
        self.circuit_breaker_threshold = circuit_breaker_threshold
        self.circuit_breaker_timeout = circuit_breaker_timeout

    def _get_circuit_breaker(self, service_name: str) -> CircuitBreaker:
        """Get or create circuit breaker for a service."""
        if service_name not in self.circuit_breakers:
            self.circuit_breakers[service_name] = CircuitBreaker(
                failure_threshold=self.circuit_breaker_threshold,
                timeout=self.circuit_breaker_timeout
            )
        return self.circuit_breakers[service_name]

    async def request_json(
        self,
        method: str,
        url: str,
        service_name: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        timeout: Optional[float] = None
    ) -> Any:
        """Issue one request and return the decoded JSON body (None when empty)."""
        timeout = timeout or self.default_timeout
        cb = self._get_circuit_breaker(service_name)

        if not cb.can_attempt():
            raise RemoteUnavailable(service_name, "circuit breaker open")

        try:
            response = await self._client.request(
                method, url, headers=headers, params=params, json=json, timeout=timeout
            )
        except httpx.HTTPError as e:
            cb.call_failed()
            logger.error(
                "http_request_failed",
                service=service_name,
                method=method,
                url=url,
                error=str(e) or e.__class__.__name__,
                circuit_breaker_state=cb.state
            )
            raise RemoteUnavailable(service_name, str(e) or e.__class__.__name__) from e

        if response.is_error:
            # 4xx means the service is up and answered; only 5xx counts against the breaker
            if response.status_code >= 500:
                cb.call_failed()
            else:
                cb.call_succeeded()
            logger.warning(
                "http_request_rejected",
                service=service_name,
                method=method,
                url=url,
                status_code=response.status_code
            )
            raise RemoteRejected(service_name, response.status_code, _decode(response))

        cb.call_succeeded()
        return _decode(response)

    async def get_json(self, url: str, service_name: str, **kwargs: Any) -> Any:
        return await self.request_json("GET", url, service_name, **kwargs)

    async def post_json(self, url: str, service_name: str, **kwargs: Any) -> Any:
        return await self.request_json("POST", url, service_name, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
