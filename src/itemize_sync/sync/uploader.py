"""Async HTTP client for the receipt extraction endpoint."""

import base64
import json
import logging
import time
from pathlib import Path
from typing import Any

import httpx

from itemize_sync import __version__
from itemize_sync.auth import SessionProvider, get_access_token
from itemize_sync.exceptions import ExtractionError
from itemize_sync.logging import log_upload_success
from itemize_sync.storage.files import LocalFileStore

logger = logging.getLogger(__name__)

EXTRACT_PATH = "/api/itemize-it/extract"


def _error_message(response: httpx.Response) -> str:
    """Pull ``error`` out of a JSON error body, tolerating anything else."""
    try:
        data = response.json()
    except (json.JSONDecodeError, ValueError):
        data = None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"HTTP {response.status_code}"


class ExtractionClient:
    """Posts receipt images to the extraction endpoint.

    Uses httpx.AsyncClient for connection pooling. A single call is a single
    attempt: retry policy belongs to the sync queue, and timeouts are left to
    the HTTP client.
    """

    def __init__(
        self,
        api_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_url: Base URL of the API (e.g., https://recevity.com)
            timeout: Request timeout in seconds
            transport: Optional transport override, used by tests
        """
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": f"itemize-sync/{__version__}"},
            transport=transport,
        )

    @property
    def extract_url(self) -> str:
        return f"{self.api_url}{EXTRACT_PATH}"

    async def extract(self, image_bytes: bytes, access_token: str) -> dict[str, Any]:
        """Send one image for extraction.

        Args:
            image_bytes: Raw bytes of the receipt image
            access_token: Bearer credential

        Returns:
            Parsed response body, normally ``{"receipt": ..., "items": [...]}``

        Raises:
            ExtractionError: On connection failure or a non-2xx response
        """
        body = {"imageBase64": base64.b64encode(image_bytes).decode("ascii")}

        try:
            response = await self._client.post(
                self.extract_url,
                json=body,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.ConnectError as e:
            raise ExtractionError(f"Connection error: {e}") from e
        except httpx.TimeoutException as e:
            raise ExtractionError(f"Timeout: {e}") from e
        except httpx.HTTPError as e:
            raise ExtractionError(f"HTTP error: {e}") from e

        if not response.is_success:
            raise ExtractionError(_error_message(response), status_code=response.status_code)

        try:
            result = response.json()
        except (json.JSONDecodeError, ValueError):
            return {}
        return result if isinstance(result, dict) else {"data": result}

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        await self._client.aclose()

    async def __aenter__(self) -> "ExtractionClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()


async def deliver_file(
    client: ExtractionClient,
    sessions: SessionProvider,
    files: LocalFileStore,
    local_uri: str | Path,
    item_id: str | None = None,
) -> dict[str, Any]:
    """Read a file, authenticate, and post it for extraction.

    Shared by direct capture uploads and queue drains so both send the same
    request.

    Raises:
        NotAuthenticatedError: If no credential is available
        ExtractionError: If the endpoint call fails
        OSError: If the file cannot be read
    """
    access_token = await get_access_token(sessions)
    image_bytes = files.read_local_file(local_uri)

    started = time.monotonic()
    result = await client.extract(image_bytes, access_token)
    log_upload_success(logger, item_id, (time.monotonic() - started) * 1000)
    return result
