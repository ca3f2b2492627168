"""Image URL validation and the thumbnail image cache."""

from __future__ import annotations

import io
import logging
import posixpath
import re
import tempfile
from pathlib import Path
from typing import Optional
from urllib.parse import urljoin, urlparse

from filetype import guess
from PIL import Image

from .config import ViewConfig
from .exceptions import FetchError, ImageCacheError
from .models import Fetcher, ImageStore
from .utils import is_valid_url, md5_hex

logger = logging.getLogger("smart_url_view")

ALLOWED_IMAGE_TYPES = {"png", "jpg", "jpeg", "gif", "webp", "svg"}
# SVG is only trusted when announced by Content-Type or found by sniffing.
URL_EXTENSION_TYPES = {"png", "jpg", "jpeg", "gif", "webp"}
CACHED_EXTENSIONS = ("jpg", "png", "gif", "webp", "svg", "jpeg")
MIME_TO_EXT = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
}
PIL_FORMATS = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "gif": "GIF",
    "webp": "WEBP",
}
FALLBACK_EXTENSION = "png"
SCHEME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*:")


def url_extension(url: str) -> str:
    """Lowercase file extension of the URL path, ignoring query and fragment."""
    try:
        path = urlparse(url).path
    except ValueError:
        return ""
    return posixpath.splitext(path)[1].lstrip(".").lower()


def normalize_image_url(image_url: str, page_url: str, force_https: bool = True) -> str:
    """Resolve ``image_url`` against ``page_url`` and check it is a usable image.

    Returns the absolute URL (query string preserved) or an empty string
    when the image should be skipped.
    """
    image_url = (image_url or "").strip()
    if not image_url:
        return ""

    page = urlparse(page_url)
    page_scheme = page.scheme or "https"
    if image_url.startswith("//"):
        image_url = f"{page_scheme}:{image_url}"
    elif image_url.startswith("/"):
        if not page.netloc:
            return ""
        image_url = f"{page_scheme}://{page.netloc}{image_url}"
    elif not SCHEME_PATTERN.match(image_url):
        if not page.netloc:
            return ""
        base = f"{page_scheme}://{page.netloc}{page.path or '/'}"
        image_url = urljoin(base, image_url)

    scheme = urlparse(image_url).scheme.lower()
    if scheme not in ("http", "https"):
        return ""
    if force_https and scheme == "http":
        image_url = "https" + image_url[len("http"):]

    if not is_valid_url(image_url):
        return ""
    if url_extension(image_url) not in ALLOWED_IMAGE_TYPES:
        return ""
    return image_url


def detect_image_format(data: bytes) -> Optional[str]:
    """Detect image type using filetype; returns lowercase extension."""
    kind = guess(data)
    if kind and kind.mime in MIME_TO_EXT:
        return MIME_TO_EXT[kind.mime]
    if b"<svg" in data[:4096].lower():
        return "svg"
    return None


def infer_image_extension(content_type: Optional[str], url: str, data: bytes) -> str:
    """Pick the cache file extension for a downloaded image.

    Precedence: Content-Type, then the URL path extension, then the file
    signature, then ``png``.
    """
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime in MIME_TO_EXT:
        return MIME_TO_EXT[mime]
    ext = url_extension(url)
    if ext in URL_EXTENSION_TYPES:
        return ext
    return detect_image_format(data) or FALLBACK_EXTENSION


def resize_to_fit(image: Image.Image, max_side: int) -> Image.Image:
    """Shrink ``image`` so both sides fit in ``max_side``; never upscale."""
    width, height = image.size
    if width <= max_side and height <= max_side:
        return image
    scale = min(max_side / width, max_side / height)
    new_size = (max(1, round(width * scale)), max(1, round(height * scale)))
    return image.resize(new_size, Image.Resampling.LANCZOS)


def encode_image(image: Image.Image, extension: str, quality: int) -> bytes:
    fmt = PIL_FORMATS[extension]
    options = {}
    if fmt == "JPEG":
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        options["quality"] = quality
    elif fmt == "WEBP":
        options["quality"] = quality
    elif fmt == "PNG":
        options["optimize"] = True
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **options)
    return buffer.getvalue()


class ImageCache:
    """Downloads remote thumbnails once and serves them from an ImageStore.

    Files are named after the MD5 of the source URL exactly as given, so a
    URL that was cached once is never downloaded again until the store is
    cleared.
    """

    def __init__(self, fetcher: Fetcher, store: ImageStore) -> None:
        self.fetcher = fetcher
        self.store = store

    def lookup(self, image_url: str) -> Optional[str]:
        """Return the public URL of an already cached copy, without any I/O to the network."""
        digest = md5_hex(image_url)
        for extension in CACHED_EXTENSIONS:
            name = f"{digest}.{extension}"
            if self.store.exists(name):
                return self.store.public_url_for(name)
        return None

    def fetch_and_cache(
        self, image_url: str, page_url: str, config: ViewConfig
    ) -> Optional[str]:
        if not image_url:
            return None
        cached = self.lookup(image_url)
        if cached:
            logger.debug("Image cache hit for %s", image_url)
            return cached

        try:
            resp = self.fetcher.get(
                image_url,
                timeout=config.fetch_timeout,
                verify=config.verify_tls,
                user_agent=config.user_agent,
            )
        except FetchError as exc:
            logger.warning("Failed to fetch image %s for %s: %s", image_url, page_url, exc)
            return None
        if not resp.ok or not resp.body:
            logger.warning(
                "Skipping image %s for %s: HTTP %s, %d bytes",
                image_url,
                page_url,
                resp.status,
                len(resp.body),
            )
            return None

        extension = infer_image_extension(resp.content_type, image_url, resp.body)
        name = f"{md5_hex(image_url)}.{extension}"
        try:
            data = self._prepare(resp.body, extension, config)
            self.store.write(name, data)
        except (ImageCacheError, OSError) as exc:
            logger.warning("Failed to cache image %s: %s", image_url, exc)
            return None
        logger.info("Cached image %s as %s", image_url, name)
        return self.store.public_url_for(name)

    def _prepare(self, data: bytes, extension: str, config: ViewConfig) -> bytes:
        """Decode, shrink and re-encode downloaded bytes for storage."""
        if extension == "svg":
            if b"<svg" not in data[:4096].lower():
                raise ImageCacheError("Response is not an SVG document")
            return data

        tmp = tempfile.NamedTemporaryFile(suffix=f".{extension}", delete=False)
        tmp_path = Path(tmp.name)
        try:
            with tmp:
                tmp.write(data)
            with Image.open(tmp_path) as source:
                source.load()
                resized = resize_to_fit(source, config.max_image_side)
                return encode_image(resized, extension, config.image_quality)
        except Exception as exc:  # pylint: disable=broad-except
            # Corrupt files surface as SyntaxError, EOFError or struct.error too.
            raise ImageCacheError(f"Could not process image: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)
