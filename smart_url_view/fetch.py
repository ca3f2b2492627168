"""HTTP access for page metadata and image downloads."""

from __future__ import annotations

import logging
from typing import Optional

import requests

from .config import DEFAULT_USER_AGENT
from .exceptions import FetchError
from .models import FetchResponse

logger = logging.getLogger("smart_url_view")

MAX_RESPONSE_BYTES = 10 * 1024 * 1024


class RequestsFetcher:
    """Fetcher backed by a shared ``requests.Session``.

    Every call carries an explicit timeout. Network errors, timeouts and
    malformed URLs surface as :class:`FetchError`. HTTP error statuses are
    returned to the caller, which decides how to degrade.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        max_bytes: int = MAX_RESPONSE_BYTES,
    ) -> None:
        self.session = session or requests.Session()
        self.max_bytes = max_bytes

    def get(
        self,
        url: str,
        timeout: float,
        verify: bool = True,
        user_agent: Optional[str] = None,
        max_bytes: Optional[int] = None,
    ) -> FetchResponse:
        limit = self.max_bytes if max_bytes is None else min(max_bytes, self.max_bytes)
        headers = {"User-Agent": user_agent or DEFAULT_USER_AGENT}
        try:
            with self.session.get(
                url,
                headers=headers,
                timeout=timeout,
                verify=verify,
                stream=True,
                allow_redirects=True,
            ) as resp:
                body = self._read_body(resp, limit)
                return FetchResponse(
                    url=resp.url or url,
                    status=resp.status_code,
                    headers=dict(resp.headers),
                    body=body,
                )
        except requests.Timeout as exc:
            raise FetchError(f"Timed out after {timeout}s", url) from exc
        except requests.RequestException as exc:
            raise FetchError(f"Request failed: {exc}", url) from exc

    def _read_body(self, resp: requests.Response, limit: int) -> bytes:
        chunks = []
        total = 0
        for chunk in resp.iter_content(chunk_size=64 * 1024):
            chunks.append(chunk)
            total += len(chunk)
            if total >= limit:
                logger.debug("Truncating response from %s at %d bytes", resp.url, total)
                break
        return b"".join(chunks)[:limit]
