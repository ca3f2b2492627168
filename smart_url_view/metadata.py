"""Open Graph metadata extraction for external pages."""

from __future__ import annotations

import logging
from typing import Optional, Union

from bs4 import BeautifulSoup

from .config import ViewConfig
from .exceptions import FetchError
from .models import Fetcher, OpenGraphData
from .utils import collapse_whitespace, url_host

logger = logging.getLogger("smart_url_view")

HTML_CONTENT_TYPES = {"text/html", "application/xhtml+xml"}
OG_FIELDS = ("title", "description", "image", "site_name")


def _meta_content(soup: BeautifulSoup, key: str) -> Optional[str]:
    """Return the content of ``<meta property=key>`` or ``<meta name=key>``."""
    for attr in ("property", "name"):
        tag = soup.find("meta", attrs={attr: key})
        if tag and tag.get("content"):
            value = collapse_whitespace(tag["content"])
            if value:
                return value
    return None


def parse_open_graph(html: Union[str, bytes]) -> Optional[OpenGraphData]:
    """Extract Open Graph fields from a page, or ``None`` when none exist.

    ``og:title`` falls back to ``<title>`` and ``og:description`` falls back
    to ``<meta name="description">``.
    """
    soup = BeautifulSoup(html, "html.parser")
    data = OpenGraphData(
        **{field: _meta_content(soup, f"og:{field}") for field in OG_FIELDS}
    )
    if not data.title and soup.title and soup.title.string:
        data.title = collapse_whitespace(soup.title.string) or None
    if not data.description:
        data.description = _meta_content(soup, "description")
    if not any(getattr(data, field) for field in OG_FIELDS):
        return None
    return data


def title_for(data: OpenGraphData, url: str) -> str:
    return data.title or url


def site_name_for(data: OpenGraphData, url: str) -> str:
    return data.site_name or url_host(url)


class MetadataFetcher:
    """Fetches a page and reads its link-preview metadata.

    All failures are soft: the caller only ever sees ``None``.
    """

    def __init__(self, fetcher: Fetcher) -> None:
        self.fetcher = fetcher

    def fetch(self, url: str, config: ViewConfig) -> Optional[OpenGraphData]:
        try:
            resp = self.fetcher.get(
                url,
                timeout=config.fetch_timeout,
                verify=config.verify_tls,
                user_agent=config.user_agent,
                max_bytes=config.max_page_bytes,
            )
        except FetchError as exc:
            logger.warning("Failed to fetch metadata for %s: %s", url, exc)
            return None

        if not resp.ok:
            logger.warning("Metadata fetch for %s returned HTTP %s", url, resp.status)
            return None
        if not resp.body:
            logger.warning("Metadata fetch for %s returned an empty body", url)
            return None
        content_type = resp.content_type
        if content_type and content_type not in HTML_CONTENT_TYPES:
            logger.info("Skipping %s: not an HTML page (Content-Type=%s)", url, content_type)
            return None

        body = resp.body[: config.max_page_bytes]
        try:
            data = parse_open_graph(body)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Unexpected error parsing metadata for %s", url)
            return None
        if data is None:
            logger.info("No preview metadata found at %s", url)
        return data
