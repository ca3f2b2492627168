"""Configuration objects and constants for card rendering."""

from __future__ import annotations

from dataclasses import dataclass

CACHE_PREFIX = "smart_url_view_"
DEFAULT_CACHE_HOURS = 24
DEFAULT_FETCH_TIMEOUT = 15.0
DEFAULT_MAX_IMAGE_SIDE = 400
DEFAULT_IMAGE_QUALITY = 90
DEFAULT_MAX_PAGE_BYTES = 2 * 1024 * 1024
DESCRIPTION_LIMIT = 150
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


@dataclass(frozen=True)
class ViewConfig:
    """Settings that control URL detection, card rendering and caching.

    A single instance is built per transform call and handed to every
    component; nothing reads settings from module state.
    """

    site_url: str
    site_name: str = ""
    external_blank: bool = True
    external_enabled: bool = True
    internal_enabled: bool = True
    all_blocks: bool = False
    cache_hours: int = DEFAULT_CACHE_HOURS
    force_https_images: bool = True
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    verify_tls: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    max_image_side: int = DEFAULT_MAX_IMAGE_SIDE
    image_quality: int = DEFAULT_IMAGE_QUALITY
    max_page_bytes: int = DEFAULT_MAX_PAGE_BYTES

    @property
    def cache_ttl(self) -> int:
        """HTML cache lifetime in seconds."""
        return max(int(self.cache_hours), 0) * 3600
