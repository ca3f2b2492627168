"""Tests for image URL normalization and the thumbnail image cache.

Images are generated in memory with Pillow and served through ``FakeFetcher``;
the store writes into pytest's ``tmp_path``.
"""

from __future__ import annotations

import io
import tempfile

import pytest
from PIL import Image

from smart_url_view.exceptions import FetchError
from smart_url_view.images import (
    ImageCache,
    infer_image_extension,
    normalize_image_url,
    resize_to_fit,
)
from smart_url_view.models import FetchResponse
from smart_url_view.utils import md5_hex

from conftest import (
    CACHE_BASE_URL,
    FakeFetcher,
    image_response,
    make_corrupt_png,
    make_image_bytes,
)

PAGE = "https://site.com/p"


# ---------------------------------------------------------------------------
# normalize_image_url
# ---------------------------------------------------------------------------

class TestNormalizeImageUrl:
    def test_protocol_relative(self) -> None:
        assert normalize_image_url("//cdn.x.com/i.png", PAGE) == "https://cdn.x.com/i.png"

    def test_protocol_relative_uses_page_scheme_without_upgrade(self) -> None:
        result = normalize_image_url("//cdn.x.com/i.png", "http://site.com/p", force_https=False)
        assert result == "http://cdn.x.com/i.png"

    def test_absolute_path(self) -> None:
        assert normalize_image_url("/i.png", PAGE) == "https://site.com/i.png"

    def test_relative_path_resolves_against_page_directory(self) -> None:
        result = normalize_image_url("i.png?x=1", "https://site.com/blog/post")
        assert result == "https://site.com/blog/i.png?x=1"

    def test_http_upgraded_with_strict_policy(self) -> None:
        assert normalize_image_url("http://x.com/i.gif", PAGE) == "https://x.com/i.gif"

    def test_http_kept_without_strict_policy(self) -> None:
        assert normalize_image_url("http://x.com/i.gif", PAGE, force_https=False) == "http://x.com/i.gif"

    def test_disallowed_extension(self) -> None:
        assert normalize_image_url("http://x.com/i.exe", PAGE) == ""

    def test_extension_check_ignores_query_string(self) -> None:
        assert normalize_image_url("https://x.com/image?f=a.png", PAGE) == ""
        assert (
            normalize_image_url("https://x.com/a.JPG?w=300&h=200", PAGE)
            == "https://x.com/a.JPG?w=300&h=200"
        )

    @pytest.mark.parametrize(
        "raw",
        ["", "   ", "data:image/png;base64,AAAA", "ftp://x.com/i.png", "https://x.com/no-extension"],
    )
    def test_rejected(self, raw: str) -> None:
        assert normalize_image_url(raw, PAGE) == ""

    def test_relative_needs_page_host(self) -> None:
        assert normalize_image_url("i.png", "") == ""
        assert normalize_image_url("/i.png", "not a url") == ""


# ---------------------------------------------------------------------------
# Extension inference and resizing
# ---------------------------------------------------------------------------

class TestInferImageExtension:
    def test_content_type_wins(self) -> None:
        data = make_image_bytes("PNG")
        assert infer_image_extension("image/jpeg; charset=binary", "https://x/a.png", data) == "jpg"

    def test_url_extension_when_content_type_unknown(self) -> None:
        data = make_image_bytes("PNG")
        assert infer_image_extension("application/octet-stream", "https://x/a.gif?v=2", data) == "gif"

    def test_sniffed_when_url_has_no_usable_extension(self) -> None:
        data = make_image_bytes("JPEG")
        assert infer_image_extension(None, "https://x/image", data) == "jpg"
        # svg is not trusted from the URL alone.
        assert infer_image_extension(None, "https://x/a.svg", make_image_bytes("PNG")) == "png"

    def test_png_fallback(self) -> None:
        assert infer_image_extension("", "https://x/blob", b"not an image") == "png"


class TestResizeToFit:
    def test_shrinks_preserving_aspect_ratio(self) -> None:
        image = Image.new("RGB", (1200, 600))
        assert resize_to_fit(image, 400).size == (400, 200)

    def test_tall_image(self) -> None:
        image = Image.new("RGB", (300, 900))
        assert resize_to_fit(image, 400).size == (133, 400)

    def test_never_upscales(self) -> None:
        image = Image.new("RGB", (120, 80))
        assert resize_to_fit(image, 400) is image


# ---------------------------------------------------------------------------
# ImageCache
# ---------------------------------------------------------------------------

IMAGE_URL = "https://cdn.ext.example/photos/big.png?w=1600"


def _open(store, public_url):
    name = public_url.rsplit("/", 1)[1]
    return Image.open(store.path_for(name))


class TestImageCache:
    def test_downloads_resizes_and_stores(self, store, config) -> None:
        fetcher = FakeFetcher({IMAGE_URL: image_response(IMAGE_URL, make_image_bytes("PNG", (800, 600)), "image/png")})
        cache = ImageCache(fetcher, store)

        public_url = cache.fetch_and_cache(IMAGE_URL, "https://ext.example/a", config)

        assert public_url == f"{CACHE_BASE_URL}/{md5_hex(IMAGE_URL)}.png"
        with _open(store, public_url) as image:
            assert image.size == (400, 300)
            assert image.format == "PNG"

    def test_second_call_is_served_from_cache(self, store, config) -> None:
        fetcher = FakeFetcher({IMAGE_URL: image_response(IMAGE_URL, make_image_bytes("PNG"), "image/png")})
        cache = ImageCache(fetcher, store)

        first = cache.fetch_and_cache(IMAGE_URL, "https://ext.example/a", config)
        second = ImageCache(fetcher, store).fetch_and_cache(IMAGE_URL, "https://ext.example/b", config)

        assert first == second
        assert fetcher.calls == [IMAGE_URL]

    def test_query_string_is_part_of_the_key(self, store, config) -> None:
        other = IMAGE_URL.replace("w=1600", "w=800")
        data = make_image_bytes("PNG", (50, 50))
        fetcher = FakeFetcher({
            IMAGE_URL: image_response(IMAGE_URL, data, "image/png"),
            other: image_response(other, data, "image/png"),
        })
        cache = ImageCache(fetcher, store)
        assert cache.fetch_and_cache(IMAGE_URL, PAGE, config) != cache.fetch_and_cache(other, PAGE, config)

    def test_small_images_keep_their_size(self, store, config) -> None:
        fetcher = FakeFetcher({IMAGE_URL: image_response(IMAGE_URL, make_image_bytes("PNG", (200, 100)), "image/png")})
        public_url = ImageCache(fetcher, store).fetch_and_cache(IMAGE_URL, PAGE, config)
        with _open(store, public_url) as image:
            assert image.size == (200, 100)

    def test_transparent_png_served_as_jpeg_is_flattened(self, store, config) -> None:
        url = "https://cdn.ext.example/photo"
        data = make_image_bytes("PNG", (500, 500), mode="RGBA")
        fetcher = FakeFetcher({url: image_response(url, data, "image/jpeg")})

        public_url = ImageCache(fetcher, store).fetch_and_cache(url, PAGE, config)

        assert public_url.endswith(".jpg")
        with _open(store, public_url) as image:
            assert image.format == "JPEG"
            assert image.mode == "RGB"
            assert image.size == (400, 400)

    def test_sniffs_extension_without_headers(self, store, config) -> None:
        url = "https://cdn.ext.example/render"
        fetcher = FakeFetcher({url: image_response(url, make_image_bytes("JPEG", (64, 64)), None)})
        public_url = ImageCache(fetcher, store).fetch_and_cache(url, PAGE, config)
        assert public_url.endswith(f"{md5_hex(url)}.jpg")

    def test_svg_is_stored_verbatim(self, store, config) -> None:
        url = "https://cdn.ext.example/logo.svg"
        svg = b'<svg xmlns="http://www.w3.org/2000/svg" width="10" height="10"></svg>'
        fetcher = FakeFetcher({url: image_response(url, svg, "image/svg+xml")})

        public_url = ImageCache(fetcher, store).fetch_and_cache(url, PAGE, config)

        assert public_url.endswith(".svg")
        assert store.path_for(public_url.rsplit("/", 1)[1]).read_bytes() == svg

    def test_undecodable_image_returns_none(self, store, config) -> None:
        fetcher = FakeFetcher({IMAGE_URL: image_response(IMAGE_URL, b"<html>oops</html>", "image/png")})
        assert ImageCache(fetcher, store).fetch_and_cache(IMAGE_URL, PAGE, config) is None
        assert store.stats() == (0, 0)

    def test_corrupt_png_returns_none(self, store, config) -> None:
        fetcher = FakeFetcher({IMAGE_URL: image_response(IMAGE_URL, make_corrupt_png(), "image/png")})
        assert ImageCache(fetcher, store).fetch_and_cache(IMAGE_URL, PAGE, config) is None
        assert store.stats() == (0, 0)

    def test_decode_scratch_file_is_removed(self, store, config, tmp_path, monkeypatch) -> None:
        scratch = tmp_path / "scratch"
        scratch.mkdir()
        monkeypatch.setattr(tempfile, "tempdir", str(scratch))
        good_url = "https://cdn.ext.example/ok.png"
        fetcher = FakeFetcher({
            IMAGE_URL: image_response(IMAGE_URL, make_corrupt_png(), "image/png"),
            good_url: image_response(good_url, make_image_bytes("PNG", (50, 50)), "image/png"),
        })
        cache = ImageCache(fetcher, store)

        assert cache.fetch_and_cache(IMAGE_URL, PAGE, config) is None
        assert list(scratch.iterdir()) == []
        assert cache.fetch_and_cache(good_url, PAGE, config) is not None
        assert list(scratch.iterdir()) == []

    def test_network_failure_returns_none(self, store, config) -> None:
        fetcher = FakeFetcher({IMAGE_URL: FetchError("Timed out after 15.0s", IMAGE_URL)})
        assert ImageCache(fetcher, store).fetch_and_cache(IMAGE_URL, PAGE, config) is None

    def test_http_error_returns_none(self, store, config) -> None:
        fetcher = FakeFetcher({IMAGE_URL: FetchResponse(url=IMAGE_URL, status=404, body=b"missing")})
        assert ImageCache(fetcher, store).fetch_and_cache(IMAGE_URL, PAGE, config) is None

    def test_empty_url(self, store, config) -> None:
        fetcher = FakeFetcher()
        assert ImageCache(fetcher, store).fetch_and_cache("", PAGE, config) is None
        assert fetcher.calls == []
