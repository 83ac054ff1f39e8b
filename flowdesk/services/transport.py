"""
Transport boundary between the client and the backend process.
"""

from typing import Any, Optional, Protocol, runtime_checkable

import httpx

from config import get_settings
from flowdesk.utils.logger import get_logger

logger = get_logger(__name__)


class TransportException(Exception):
    """Raised when a remote call itself fails (disconnect, host-level timeout)."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


@runtime_checkable
class Transport(Protocol):
    """The single primitive the host supplies for talking to the backend."""

    async def invoke(self, operation_id: str, payload: Any = None) -> Any:
        ...


class HttpTransport:
    """Transport that posts each operation as JSON to the backend over HTTP."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize HTTP transport.

        Args:
            base_url: Backend base URL (defaults to settings)
            timeout: Request timeout in seconds; None waits indefinitely
            client: Pre-built client, mainly for tests
        """
        settings = get_settings()
        self.base_url = (base_url or settings.backend_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.transport_timeout_seconds
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout)
            )
        return self._client

    async def invoke(self, operation_id: str, payload: Any = None) -> Any:
        """
        Send one operation to the backend.

        Args:
            operation_id: Operation route, e.g. "controller/workflow/getWorkflow"
            payload: JSON-serializable parameters

        Returns:
            Decoded JSON reply, unnormalized

        Raises:
            TransportException: If the request could not be completed
        """
        client = self._get_client()

        try:
            response = await client.post(f"/{operation_id.lstrip('/')}", json=payload or {})
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportException(
                f"Backend returned HTTP {e.response.status_code} for {operation_id}",
                operation=operation_id
            ) from e
        except httpx.HTTPError as e:
            raise TransportException(
                f"Failed to reach backend at {self.base_url}: {e}",
                operation=operation_id
            ) from e

        if not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise TransportException(
                f"Backend reply for {operation_id} is not JSON",
                operation=operation_id
            ) from e

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this transport created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
