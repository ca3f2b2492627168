"""Cache statistics and cleanup for both cache tiers."""

from __future__ import annotations

import logging

from .config import CACHE_PREFIX
from .models import Cache, CacheInfo, ImageStore
from .utils import human_size

logger = logging.getLogger("smart_url_view")


def cache_info(cache: Cache, store: ImageStore) -> CacheInfo:
    image_count, image_bytes = store.stats()
    return CacheInfo(
        html_count=cache.count_by_prefix(CACHE_PREFIX),
        image_count=image_count,
        image_bytes=image_bytes,
        image_size=human_size(image_bytes),
    )


def clear_html_cache(cache: Cache) -> int:
    removed = cache.delete_by_prefix(CACHE_PREFIX)
    logger.info("Removed %d cached card(s)", removed)
    return removed


def clear_image_cache(store: ImageStore) -> int:
    removed = store.clear()
    logger.info("Removed %d cached image(s)", removed)
    return removed


def clear_all_caches(cache: Cache, store: ImageStore) -> int:
    return clear_html_cache(cache) + clear_image_cache(store)


def on_deactivate(cache: Cache) -> int:
    """Drop rendered cards but keep downloaded images for a later reactivation."""
    return clear_html_cache(cache)
