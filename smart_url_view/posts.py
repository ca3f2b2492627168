"""Post lookup for internal URLs."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Union
from urllib.parse import urldefrag

from bs4 import BeautifulSoup

from .exceptions import PostResolverError
from .models import ResolvedPost
from .utils import collapse_whitespace, truncate_text

logger = logging.getLogger("smart_url_view")

PUBLISHED_STATUS = "publish"
DEFAULT_TYPE_LABEL = "Post"


def excerpt_from_content(content: str) -> str:
    """Plain-text excerpt of post HTML: tags stripped, whitespace collapsed, 150 chars."""
    text = BeautifulSoup(content or "", "html.parser").get_text(" ")
    return truncate_text(collapse_whitespace(text))


def first_image_in_content(content: str) -> str:
    """Source of the first ``<img>`` in post HTML, used when no thumbnail is set."""
    img = BeautifulSoup(content or "", "html.parser").find("img", src=True)
    return img["src"].strip() if img else ""


def _lookup_key(url: str) -> str:
    return urldefrag(url)[0].rstrip("/")


class NullPostResolver:
    """Resolver for hosts without post storage; every lookup misses."""

    def resolve(self, url: str) -> Optional[ResolvedPost]:
        return None


class MappingPostResolver:
    """Resolves internal URLs from a table of post records.

    Records are dicts keyed by their permalink. Missing excerpts are derived
    from ``content`` and missing thumbnails fall back to the first image in
    the content. Only posts whose ``status`` is ``publish`` resolve.
    """

    def __init__(self, records: Mapping[str, Mapping[str, Any]], site_name: str = "") -> None:
        self.site_name = site_name
        self._posts: Dict[str, ResolvedPost] = {}
        for index, (url, record) in enumerate(records.items(), start=1):
            self._posts[_lookup_key(url)] = self._to_post(record, index)

    @classmethod
    def from_file(cls, path: Union[str, Path], site_name: str = "") -> "MappingPostResolver":
        """Load records from JSON: an object keyed by URL, or a list with ``url`` fields."""
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise PostResolverError(f"Could not load posts from {path}: {exc}") from exc
        if isinstance(raw, list):
            raw = {item["url"]: item for item in _require_records(raw)}
        if not isinstance(raw, dict):
            raise PostResolverError(f"Unexpected post file layout in {path}")
        return cls(raw, site_name=site_name)

    def _to_post(self, record: Mapping[str, Any], index: int) -> ResolvedPost:
        content = record.get("content", "")
        return ResolvedPost(
            id=int(record.get("id", index)),
            title=record.get("title", ""),
            excerpt=record.get("excerpt") or excerpt_from_content(content),
            thumbnail_url=record.get("thumbnail_url") or first_image_in_content(content),
            last_modified=str(record.get("last_modified", "")),
            site_display_name=record.get("site_name") or self.site_name,
            type_label=record.get("type_label") or DEFAULT_TYPE_LABEL,
            published=record.get("status", PUBLISHED_STATUS) == PUBLISHED_STATUS,
        )

    def resolve(self, url: str) -> Optional[ResolvedPost]:
        post = self._posts.get(_lookup_key(url))
        if post is None:
            logger.debug("No post found for %s", url)
        return post


def _require_records(items: Iterable[Any]) -> Iterable[Mapping[str, Any]]:
    for item in items:
        if not isinstance(item, dict) or "url" not in item:
            raise PostResolverError("Every post record needs a 'url' field")
        yield item
