"""
HTTP fetches for release keys and installer scripts.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, runtime_checkable

import httpx

from kubestep.errors import TransientFailure
from kubestep.timeouts import HTTP_CLIENT_TIMEOUT_S

__all__ = ["HttpClient", "HttpFetcher"]

logger = logging.getLogger(__name__)


@runtime_checkable
class HttpClient(Protocol):
    def fetch(self, url: str) -> bytes: ...


class HttpFetcher:
    """
    Download small documents over HTTPS.

    Retrying is left to the step runner: any HTTP error or transport
    failure is raised as ``TransientFailure`` and costs the step one attempt.
    """

    def __init__(
        self,
        timeout: float = HTTP_CLIENT_TIMEOUT_S,
        client: Optional[httpx.Client] = None,
    ):
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def fetch(self, url: str) -> bytes:
        logger.info("Fetching %s", url)
        try:
            response = self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransientFailure(
                f"GET {url} returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise TransientFailure(f"GET {url} failed: {e}") from e
        logger.debug("Fetched %d bytes from %s", len(response.content), url)
        return response.content

    def close(self) -> None:
        self._client.close()
