"""
Fetch source images from URLs or local paths with a hard time budget.
"""

import logging
from pathlib import Path

import httpx

from .errors import FetchError, FetchTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 30.0  # seconds


class ImageFetcher:
    """Loads image bytes for a page's ``photo`` reference.

    HTTP(S) sources go through httpx with an explicit timeout; anything else
    is read as a local file path.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
        client: httpx.Client | None = None,
    ) -> None:
        self.timeout = timeout
        self._client = client

    def fetch(self, source: str) -> bytes:
        """Return the bytes behind ``source``.

        Raises:
            FetchTimeoutError: If the request exceeded the timeout
            FetchError: On HTTP errors or unreadable paths
        """
        if source.startswith(("http://", "https://")):
            return self._fetch_url(source)
        return self._read_file(Path(source).expanduser())

    def _fetch_url(self, url: str) -> bytes:
        client = self._client or httpx.Client(timeout=self.timeout, follow_redirects=True)
        try:
            response = client.get(url, timeout=self.timeout)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise FetchTimeoutError(f"Timed out after {self.timeout}s fetching {url}") from e
        except httpx.HTTPStatusError as e:
            raise FetchError(f"HTTP {e.response.status_code} fetching {url}") from e
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to fetch {url}: {e}") from e
        finally:
            if self._client is None:
                client.close()

        logger.debug(f"Fetched {len(response.content)} bytes from {url}")
        return response.content

    def _read_file(self, path: Path) -> bytes:
        try:
            return path.read_bytes()
        except OSError as e:
            raise FetchError(f"Cannot read {path}: {e}") from e
