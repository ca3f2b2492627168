"""Exception hierarchy for the card pipeline."""

from __future__ import annotations

from typing import Optional


class SmartUrlViewError(Exception):
    """Base class for errors raised by smart_url_view components."""

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.url = url

    def __str__(self) -> str:
        if self.url:
            return f"{self.message} ({self.url})"
        return self.message


class FetchError(SmartUrlViewError):
    """Network failure, timeout or unusable URL while fetching a resource."""


class ImageCacheError(SmartUrlViewError):
    """Downloaded image could not be decoded, resized or persisted."""


class PostResolverError(SmartUrlViewError):
    """Host post lookup failed."""
