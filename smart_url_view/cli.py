"""Command-line entry point for rendering link cards and managing caches."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Sequence

from .cache import FileCache, LocalImageStore
from .config import DEFAULT_CACHE_HOURS, DEFAULT_FETCH_TIMEOUT, ViewConfig
from .exceptions import SmartUrlViewError
from .fetch import RequestsFetcher
from .maintenance import cache_info, clear_all_caches, clear_html_cache, clear_image_cache
from .posts import MappingPostResolver, NullPostResolver
from .transformer import ContentTransformer

logger = logging.getLogger("smart_url_view.cli")

DEFAULT_IMAGE_PATH = "wp-content/uploads/smart-url-view"
CACHE_ACTIONS = ("info", "clear-html", "clear-images", "clear-all")


def _add_storage_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--cache-dir",
        default=".smart-url-view",
        type=Path,
        help="Directory holding the HTML cache and downloaded images",
    )
    parser.add_argument(
        "--image-base-url",
        default=None,
        help="Public URL prefix for cached images (default: <site-url>/wp-content/uploads/smart-url-view)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def _add_transform_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("input", help="HTML file to transform, or - for stdin")
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the result here instead of STDOUT",
    )
    parser.add_argument("--site-url", required=True, help="Base URL of the hosting site")
    parser.add_argument("--site-name", default="", help="Display name of the hosting site")
    parser.add_argument(
        "--posts",
        type=Path,
        default=None,
        help="JSON file of post records used to resolve internal URLs",
    )
    parser.add_argument(
        "--same-tab",
        action="store_true",
        help="Open external cards in the same tab",
    )
    parser.add_argument(
        "--no-external",
        action="store_true",
        help="Leave external URLs untouched",
    )
    parser.add_argument(
        "--no-internal",
        action="store_true",
        help="Leave internal URLs untouched",
    )
    parser.add_argument(
        "--all-blocks",
        action="store_true",
        help="Also convert URLs inside blockquote/div/section/aside/article blocks",
    )
    parser.add_argument(
        "--cache-hours",
        type=int,
        default=DEFAULT_CACHE_HOURS,
        help="Lifetime of rendered cards in the HTML cache",
    )
    parser.add_argument(
        "--allow-http-images",
        action="store_true",
        help="Keep http:// thumbnails instead of upgrading them to https://",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_FETCH_TIMEOUT,
        help="Timeout in seconds for page and image requests",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip TLS certificate verification",
    )
    _add_storage_arguments(parser)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Rewrite bare URLs in HTML content into link preview cards.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    transform_parser = subparsers.add_parser(
        "transform", help="Convert URLs in an HTML document into cards"
    )
    _add_transform_arguments(transform_parser)

    cache_parser = subparsers.add_parser("cache", help="Inspect or clear the caches")
    cache_parser.add_argument("action", choices=CACHE_ACTIONS)
    _add_storage_arguments(cache_parser)

    argv = list(sys.argv[1:] if argv is None else argv)
    return parser.parse_args(argv)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,
    )


def _open_storage(
    args: argparse.Namespace, site_url: str = ""
) -> tuple[FileCache, LocalImageStore]:
    cache_dir = Path(args.cache_dir).resolve()
    base_url = args.image_base_url or f"{site_url.rstrip('/')}/{DEFAULT_IMAGE_PATH}"
    return (
        FileCache(cache_dir / "html"),
        LocalImageStore(cache_dir / "images", base_url),
    )


def _run_transform(args: argparse.Namespace) -> int:
    config = ViewConfig(
        site_url=args.site_url,
        site_name=args.site_name,
        external_blank=not args.same_tab,
        external_enabled=not args.no_external,
        internal_enabled=not args.no_internal,
        all_blocks=args.all_blocks,
        cache_hours=args.cache_hours,
        force_https_images=not args.allow_http_images,
        fetch_timeout=args.timeout,
        verify_tls=not args.insecure,
    )
    if args.posts:
        resolver = MappingPostResolver.from_file(args.posts, site_name=args.site_name)
    else:
        resolver = NullPostResolver()

    cache, store = _open_storage(args, config.site_url)
    transformer = ContentTransformer(cache, RequestsFetcher(), resolver, store)

    if args.input == "-":
        content = sys.stdin.read()
    else:
        content = Path(args.input).read_text(encoding="utf-8")

    start = time.perf_counter()
    result = transformer.transform(content, config)
    logger.info("Transformed %s in %.2fs", args.input, time.perf_counter() - start)

    if args.output:
        args.output.write_text(result, encoding="utf-8")
        logger.info("Saved output to %s", args.output)
    else:
        sys.stdout.write(result)
        sys.stdout.flush()
    return 0


def _run_cache(args: argparse.Namespace) -> int:
    cache, store = _open_storage(args)
    if args.action == "info":
        info = cache_info(cache, store)
        sys.stdout.write(
            f"HTML cache: {info.html_count} entries\n"
            f"Image cache: {info.image_count} files, {info.image_size}\n"
        )
    elif args.action == "clear-html":
        clear_html_cache(cache)
    elif args.action == "clear-images":
        clear_image_cache(store)
    else:
        clear_all_caches(cache, store)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    _configure_logging(args.verbose)
    try:
        if args.command == "transform":
            return _run_transform(args)
        return _run_cache(args)
    except (SmartUrlViewError, OSError) as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
