"""High-level orchestration: turn URLs in post content into link cards."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from .config import CACHE_PREFIX, ViewConfig
from .extractor import extract_candidates
from .images import ImageCache, normalize_image_url
from .metadata import MetadataFetcher, site_name_for, title_for
from .models import (
    Cache,
    CandidateMatch,
    Fetcher,
    ImageStore,
    PostResolver,
    ResolvedPost,
    UrlClass,
)
from .render import build_card, render_card, render_simple_card
from .utils import is_valid_url, md5_hex, url_host

logger = logging.getLogger("smart_url_view")

EXTERNAL_KEY_PREFIX = f"{CACHE_PREFIX}external_"
INTERNAL_KEY_PREFIX = f"{CACHE_PREFIX}internal_"


def classify_url(url: str, config: ViewConfig) -> UrlClass:
    """Internal iff ``url`` starts with the site's base URL."""
    if config.site_url and url.startswith(config.site_url):
        return UrlClass.INTERNAL
    return UrlClass.EXTERNAL


def should_discover_embed(url: str, config: ViewConfig, default: bool = True) -> bool:
    """oEmbed discovery filter: internal URLs are rendered as cards instead."""
    if classify_url(url, config) is UrlClass.INTERNAL:
        return False
    return default


def external_cache_key(url: str, config: ViewConfig) -> str:
    digest = md5_hex(
        f"{url}_blank_{int(config.external_blank)}"
        f"_https_{int(config.force_https_images)}"
    )
    return EXTERNAL_KEY_PREFIX + digest


def internal_cache_key(
    url: str, config: ViewConfig, post: Optional[ResolvedPost] = None
) -> str:
    """Key for an internal card; includes the post's modification time when known."""
    if post is None:
        return INTERNAL_KEY_PREFIX + md5_hex(f"{url}_simple_{config.site_name}")
    digest = md5_hex(
        f"{url}_{post.id}_{post.last_modified}_{post.site_display_name or config.site_name}"
        f"_https_{int(config.force_https_images)}"
    )
    return INTERNAL_KEY_PREFIX + digest


class ContentTransformer:
    """Replaces card-worthy URLs in rendered content with card markup.

    Collaborators are injected and the configuration is passed on every
    call, so one instance can serve concurrent requests for different
    sites. No error raised while building a card escapes ``transform``.
    """

    def __init__(
        self,
        cache: Cache,
        fetcher: Fetcher,
        post_resolver: PostResolver,
        image_store: ImageStore,
    ) -> None:
        self.cache = cache
        self.post_resolver = post_resolver
        self.metadata = MetadataFetcher(fetcher)
        self.images = ImageCache(fetcher, image_store)

    def transform(self, content: str, config: ViewConfig) -> str:
        if not content:
            return content
        try:
            candidates = extract_candidates(
                content, config.site_url, include_nested_blocks=config.all_blocks
            )
        except Exception:  # pylint: disable=broad-except
            logger.exception("Unexpected error scanning content for URLs")
            return content
        if not candidates:
            return content

        logger.debug("Found %d card candidate(s)", len(candidates))
        cards: Dict[str, Optional[str]] = {}
        replacements: List[Tuple[CandidateMatch, str]] = []
        for candidate in candidates:
            if candidate.url not in cards:
                cards[candidate.url] = self.card_for(candidate.url, config)
            card = cards[candidate.url]
            if card is not None:
                replacements.append((candidate, card))

        result = content
        for candidate, card in reversed(replacements):
            result = result[: candidate.start] + card + result[candidate.end :]
        return result

    def card_for(self, url: str, config: ViewConfig) -> Optional[str]:
        """Card HTML for ``url``, or ``None`` when the span must stay as it is."""
        if not is_valid_url(url):
            logger.debug("Leaving %s untouched: not an absolute http(s) URL", url)
            return None
        url_class = classify_url(url, config)
        if url_class is UrlClass.INTERNAL and not config.internal_enabled:
            return None
        if url_class is UrlClass.EXTERNAL and not config.external_enabled:
            return None

        try:
            if url_class is UrlClass.INTERNAL:
                return self._internal_card(url, config)
            return self._external_card(url, config)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Unexpected error building card for %s", url)
            if url_class is UrlClass.INTERNAL:
                key = internal_cache_key(url, config)
                card = render_simple_card(url, config.site_name)
            else:
                key = external_cache_key(url, config)
                card = render_simple_card(url, url_host(url), config.external_blank)
            self._cache_set(key, card, config)
            return card

    def _internal_card(self, url: str, config: ViewConfig) -> str:
        post = self._resolve_post(url)
        if post is None or not post.published:
            key = internal_cache_key(url, config)
            cached = self._cache_get(key)
            if cached is not None:
                return cached
            card = render_simple_card(url, config.site_name)
            self._cache_set(key, card, config)
            return card

        key = internal_cache_key(url, config, post)
        cached = self._cache_get(key)
        if cached is not None:
            return cached
        model = build_card(
            url,
            title=post.title,
            description=post.excerpt,
            image_url=self._thumbnail(post.thumbnail_url, url, config),
            site_name=post.site_display_name or config.site_name,
            target_blank=False,
            label=post.type_label,
        )
        card = render_card(model)
        self._cache_set(key, card, config)
        return card

    def _external_card(self, url: str, config: ViewConfig) -> str:
        key = external_cache_key(url, config)
        cached = self._cache_get(key)
        if cached is not None:
            return cached

        data = self.metadata.fetch(url, config)
        if data is None:
            card = render_simple_card(url, url_host(url), config.external_blank)
        else:
            model = build_card(
                url,
                title=title_for(data, url),
                description=data.description or "",
                image_url=self._thumbnail(data.image or "", url, config),
                site_name=site_name_for(data, url),
                target_blank=config.external_blank,
            )
            card = render_card(model)
        self._cache_set(key, card, config)
        return card

    def _resolve_post(self, url: str) -> Optional[ResolvedPost]:
        try:
            return self.post_resolver.resolve(url)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Post lookup failed for %s: %s", url, exc)
            return None

    def _thumbnail(self, raw_url: str, page_url: str, config: ViewConfig) -> str:
        image_url = normalize_image_url(raw_url, page_url, config.force_https_images)
        if not image_url:
            if raw_url:
                logger.debug("Rejected image %s for %s", raw_url, page_url)
            return ""
        return self.images.fetch_and_cache(image_url, page_url, config) or ""

    def _cache_get(self, key: str) -> Optional[str]:
        try:
            return self.cache.get(key)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("HTML cache read failed for %s: %s", key, exc)
            return None

    def _cache_set(self, key: str, card: str, config: ViewConfig) -> None:
        try:
            self.cache.set(key, card, config.cache_ttl)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("HTML cache write failed for %s: %s", key, exc)
