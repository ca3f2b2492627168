"""Detection of card-worthy URLs inside rendered post HTML.

Matching is structural and regex based: only a handful of known markup
shapes are recognised, and malformed HTML may be matched in surprising
ways. Patterns run in a fixed priority order. Every span a pattern matches
is masked out of the working copy before the next pattern runs, so the
order decides which shape claims an ambiguous URL.

Masking keeps the working copy the same length as the input, which keeps
match offsets valid against the original string. The mask character is
``>``. No pattern can start a match on it, and the URL character class
stops at it.
"""

from __future__ import annotations

import logging
import re
from typing import Iterator, List, Optional, Pattern, Tuple
from urllib.parse import urlparse

from .models import CandidateMatch, SourcePattern

logger = logging.getLogger("smart_url_view")

MASK_CHAR = ">"

WP_EMBED_PATTERN = re.compile(
    r"<p>\s*<blockquote class=\"wp-embedded-content\"[^>]*>\s*"
    r"<a href=[\"']([^\"']+)[\"'][^>]*>.*?</a>\s*</blockquote>\s*"
    r"<iframe class=\"wp-embedded-content\"[^>]*>.*?</iframe>\s*</p>",
    re.IGNORECASE | re.DOTALL,
)
BARE_PARAGRAPH_PATTERN = re.compile(
    r"<p>\s*(<a[^>]+>)?(https?://[^\s<>\"]+?)(</a>)?\s*</p>",
    re.IGNORECASE,
)
ANCHOR_PARAGRAPH_PATTERN = re.compile(
    r"<p>\s*<a[^>]+href=[\"']([^\"']+)[\"'][^>]*>\1</a>\s*</p>",
    re.IGNORECASE,
)
BARE_LINE_PATTERN = re.compile(
    r"^[ \t]*(https?://[^\s<>\"]+?)[ \t]*$",
    re.MULTILINE,
)
CONTAINER_TAG_PATTERN = re.compile(
    r"<(/?)(blockquote|div|section|aside|article)\b[^>]*>",
    re.IGNORECASE,
)

_GUTENBERG_HEAD = (
    r"<figure class=\"wp-block-embed[^\"]*\">\s*"
    r"<div class=\"wp-block-embed__wrapper\">\s*"
)
_GUTENBERG_TAIL = r"\s*</div>\s*</figure>"


def gutenberg_patterns(site_url: str) -> List[Pattern[str]]:
    """Build the internal and external embed-block patterns for a site.

    The internal pattern only accepts URLs under ``site_url``. The external
    one accepts any http(s) URL whose host does not start with the site's
    host. Without a usable site URL neither pattern can be built.
    """
    patterns: List[Pattern[str]] = []
    if site_url:
        patterns.append(
            re.compile(
                _GUTENBERG_HEAD
                + "(" + re.escape(site_url) + r"[^\s<>\"]*?)"
                + _GUTENBERG_TAIL,
                re.IGNORECASE | re.DOTALL,
            )
        )
    host = urlparse(site_url).hostname if site_url else None
    if host:
        patterns.append(
            re.compile(
                _GUTENBERG_HEAD
                + r"(https?://(?!" + re.escape(host) + r")[^\s<>\"]+?)"
                + _GUTENBERG_TAIL,
                re.IGNORECASE | re.DOTALL,
            )
        )
    return patterns


def protected_ranges(html: str) -> List[Tuple[int, int]]:
    """Return the spans of top-level container elements in ``html``.

    Open and close tags of the same name are balanced, so nested containers
    of the same kind stay inside their parent's span. An unclosed container
    extends to the end of the document.
    """
    ranges: List[Tuple[int, int]] = []
    start: Optional[int] = None
    name = ""
    depth = 0
    for match in CONTAINER_TAG_PATTERN.finditer(html):
        closing = bool(match.group(1))
        tag = match.group(2).lower()
        if match.group(0).endswith("/>"):
            continue
        if start is None:
            if not closing:
                start, name, depth = match.start(), tag, 1
            continue
        if tag != name:
            continue
        depth += -1 if closing else 1
        if depth == 0:
            ranges.append((start, match.end()))
            start = None
    if start is not None:
        ranges.append((start, len(html)))
    return ranges


def _mask(text: str, spans: List[Tuple[int, int]]) -> str:
    if not spans:
        return text
    pieces: List[str] = []
    cursor = 0
    for start, end in sorted(spans):
        pieces.append(text[cursor:start])
        pieces.append(MASK_CHAR * (end - start))
        cursor = end
    pieces.append(text[cursor:])
    return "".join(pieces)


def _scan(
    original: str,
    working: str,
    pattern: Pattern[str],
    group: int,
    source: SourcePattern,
) -> Iterator[CandidateMatch]:
    for match in pattern.finditer(working):
        start, end = match.span()
        span = original[start:end]
        if span != match.group(0):
            # The match ran across a masked region; nothing real to replace.
            continue
        yield CandidateMatch(
            original_span=span,
            url=match.group(group),
            source_pattern=source,
            start=start,
            end=end,
        )


def extract_candidates(
    html: str,
    site_url: str,
    include_nested_blocks: bool = False,
) -> List[CandidateMatch]:
    """Find every span of ``html`` that should become a card.

    Results are returned in document order and never overlap.
    """
    if not html:
        return []

    stages: List[Tuple[Pattern[str], int, SourcePattern]] = [
        (WP_EMBED_PATTERN, 1, SourcePattern.WP_EMBED),
    ]
    stages.extend(
        (pattern, 1, SourcePattern.GUTENBERG_EMBED)
        for pattern in gutenberg_patterns(site_url)
    )
    late_stages: List[Tuple[Pattern[str], int, SourcePattern]] = [
        (BARE_PARAGRAPH_PATTERN, 2, SourcePattern.BARE_PARAGRAPH),
        (ANCHOR_PARAGRAPH_PATTERN, 1, SourcePattern.ANCHOR_PARAGRAPH),
        (BARE_LINE_PATTERN, 1, SourcePattern.BARE_LINE),
    ]

    working = html
    found: List[CandidateMatch] = []

    def run(pattern: Pattern[str], group: int, source: SourcePattern) -> None:
        nonlocal working
        matches = list(_scan(html, working, pattern, group, source))
        if matches:
            found.extend(matches)
            working = _mask(working, [(m.start, m.end) for m in matches])

    for stage in stages:
        run(*stage)

    if not include_nested_blocks:
        protected = protected_ranges(working)
        if protected:
            logger.debug("Protecting %d container block(s) from URL matching", len(protected))
            working = _mask(working, protected)

    for stage in late_stages:
        run(*stage)

    found.sort(key=lambda candidate: candidate.start)
    return found
