"""Utility helpers for string normalization and URL handling."""

from __future__ import annotations

import hashlib
import re
from urllib.parse import urlparse

from .config import DESCRIPTION_LIMIT

WHITESPACE_PATTERN = re.compile(r"\s+")
ELLIPSIS = "..."
SIZE_UNITS = ("B", "KB", "MB", "GB")


def truncate_text(value: str, limit: int = DESCRIPTION_LIMIT) -> str:
    """Cut ``value`` to ``limit`` code points, appending an ellipsis when cut."""
    if len(value) > limit:
        return value[:limit] + ELLIPSIS
    return value


def collapse_whitespace(value: str) -> str:
    return WHITESPACE_PATTERN.sub(" ", value).strip()


def url_host(url: str) -> str:
    """Return the host part of ``url`` or an empty string."""
    try:
        return urlparse(url).hostname or ""
    except ValueError:
        return ""


def is_valid_url(url: str) -> bool:
    """Accept absolute http(s) URLs with a host and no embedded whitespace."""
    if not url or WHITESPACE_PATTERN.search(url):
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def md5_hex(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


def human_size(num_bytes: int) -> str:
    """Format a byte count with B/KB/MB/GB units rounded to two decimals."""
    size = float(num_bytes)
    unit = 0
    while size >= 1024 and unit < len(SIZE_UNITS) - 1:
        size /= 1024
        unit += 1
    return f"{round(size, 2):g} {SIZE_UNITS[unit]}"
