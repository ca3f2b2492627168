"""Data models and collaborator interfaces used throughout the card pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Protocol, Tuple


class SourcePattern(str, Enum):
    """Markup shape a candidate URL was found in."""

    WP_EMBED = "wp_embed"
    GUTENBERG_EMBED = "gutenberg_embed"
    BARE_PARAGRAPH = "bare_paragraph"
    ANCHOR_PARAGRAPH = "anchor_paragraph"
    BARE_LINE = "bare_line"


class UrlClass(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"


@dataclass(frozen=True)
class CandidateMatch:
    """A span of content that should be replaced by a card."""

    original_span: str
    url: str
    source_pattern: SourcePattern
    start: int
    end: int


@dataclass
class OpenGraphData:
    """Link preview metadata scraped from a remote page."""

    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    site_name: Optional[str] = None


@dataclass(frozen=True)
class CardModel:
    """Resolved fields for a single card, ready to be rendered."""

    url: str
    title: str
    description: str = ""
    image_url: str = ""
    site_name: str = ""
    target_blank: bool = False
    label: str = ""


@dataclass
class ResolvedPost:
    """Post record returned by a PostResolver for an internal URL."""

    id: int
    title: str
    excerpt: str = ""
    thumbnail_url: str = ""
    last_modified: str = ""
    site_display_name: str = ""
    type_label: str = ""
    published: bool = True


@dataclass
class FetchResponse:
    """HTTP response as seen by the pipeline."""

    url: str
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> str:
        """Bare MIME type with parameters such as charset removed."""
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value.split(";")[0].strip().lower()
        return ""


@dataclass
class CacheInfo:
    """Counts and sizes reported for both cache tiers."""

    html_count: int
    image_count: int
    image_bytes: int
    image_size: str


class Cache(Protocol):
    """Key-value store with per-entry expiry used for rendered card HTML."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl: int) -> None: ...

    def delete_by_prefix(self, prefix: str) -> int: ...

    def count_by_prefix(self, prefix: str) -> int: ...


class Fetcher(Protocol):
    """HTTP GET capability; raises FetchError on network failure or timeout.

    ``max_bytes`` caps how much of the body is downloaded.
    """

    def get(
        self,
        url: str,
        timeout: float,
        verify: bool = True,
        user_agent: Optional[str] = None,
        max_bytes: Optional[int] = None,
    ) -> FetchResponse: ...


class PostResolver(Protocol):
    def resolve(self, url: str) -> Optional[ResolvedPost]: ...


class ImageStore(Protocol):
    """Write-once file namespace that backs the image cache."""

    def exists(self, name: str) -> bool: ...

    def write(self, name: str, data: bytes) -> None: ...

    def public_url_for(self, name: str) -> str: ...

    def clear(self) -> int: ...

    def stats(self) -> Tuple[int, int]: ...
