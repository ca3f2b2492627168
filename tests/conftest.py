"""Shared fixtures and test doubles for the card pipeline tests."""

from __future__ import annotations

import io
import random
import struct
from typing import Dict, List, Optional, Union

import pytest
from PIL import Image

from smart_url_view.cache import LocalImageStore, MemoryCache
from smart_url_view.config import ViewConfig
from smart_url_view.exceptions import FetchError
from smart_url_view.models import FetchResponse, ResolvedPost
from smart_url_view.transformer import ContentTransformer

SITE_URL = "https://myblog.example"
CACHE_BASE_URL = "https://myblog.example/wp-content/uploads/smart-url-view"


def make_image_bytes(
    fmt: str = "PNG", size: tuple = (800, 600), mode: str = "RGB"
) -> bytes:
    color = (200, 30, 30, 255) if mode == "RGBA" else (200, 30, 30)
    image = Image.new(mode, size, color[: len(mode)])
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def make_corrupt_png() -> bytes:
    """PNG whose last IDAT chunk header is zeroed, so decoding fails part way."""
    rng = random.Random(0)
    image = Image.frombytes("RGB", (300, 300), rng.randbytes(300 * 300 * 3))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    data = bytearray(buffer.getvalue())

    idat_offsets = []
    pos = 8
    while pos < len(data):
        (length,) = struct.unpack(">I", data[pos : pos + 4])
        if data[pos + 4 : pos + 8] == b"IDAT":
            idat_offsets.append(pos)
        pos += 12 + length
    last = idat_offsets[-1]
    data[last : last + 8] = bytes(8)
    return bytes(data)


def html_response(url: str, body: str, status: int = 200) -> FetchResponse:
    return FetchResponse(
        url=url,
        status=status,
        headers={"Content-Type": "text/html; charset=utf-8"},
        body=body.encode("utf-8"),
    )


def image_response(url: str, data: bytes, content_type: Optional[str]) -> FetchResponse:
    headers = {"Content-Type": content_type} if content_type else {}
    return FetchResponse(url=url, status=200, headers=headers, body=data)


class FakeFetcher:
    """Serves canned responses and records every requested URL."""

    def __init__(self, responses: Optional[Dict[str, Union[FetchResponse, Exception]]] = None) -> None:
        self.responses: Dict[str, Union[FetchResponse, Exception]] = dict(responses or {})
        self.calls: List[str] = []
        self.limits: Dict[str, Optional[int]] = {}

    def get(self, url, timeout, verify=True, user_agent=None, max_bytes=None) -> FetchResponse:
        self.calls.append(url)
        self.limits[url] = max_bytes
        response = self.responses.get(url)
        if response is None:
            raise FetchError("No route to host", url)
        if isinstance(response, Exception):
            raise response
        return response


class FakePostResolver:
    def __init__(self, posts: Optional[Dict[str, ResolvedPost]] = None) -> None:
        self.posts = dict(posts or {})
        self.calls: List[str] = []

    def resolve(self, url: str) -> Optional[ResolvedPost]:
        self.calls.append(url)
        return self.posts.get(url)


class BrokenCache:
    """Cache whose backend is down."""

    def get(self, key):
        raise ConnectionError("cache offline")

    def set(self, key, value, ttl):
        raise ConnectionError("cache offline")

    def delete_by_prefix(self, prefix):
        raise ConnectionError("cache offline")

    def count_by_prefix(self, prefix):
        raise ConnectionError("cache offline")


@pytest.fixture
def config() -> ViewConfig:
    return ViewConfig(site_url=SITE_URL, site_name="My Blog")


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def resolver() -> FakePostResolver:
    return FakePostResolver()


@pytest.fixture
def cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture
def store(tmp_path) -> LocalImageStore:
    return LocalImageStore(tmp_path / "smart-url-view", CACHE_BASE_URL)


@pytest.fixture
def transformer(cache, fetcher, resolver, store) -> ContentTransformer:
    return ContentTransformer(cache, fetcher, resolver, store)
