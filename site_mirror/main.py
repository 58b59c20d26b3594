#!/usr/bin/env python3
"""
Site Mirror - mirror a website for offline viewing.

This tool fetches a page (optionally rendering it with Playwright),
downloads its images, stylesheets, scripts, fonts and media, rewrites the
references to local paths, and can follow same-site links.

Usage:
    site-mirror https://example.com --output ./mirror --recursive --max-depth 2

Features:
    - Bounded-concurrency downloads with retries and backoff
    - Resource type and regex filters
    - Static fetch or headless browser rendering, with form login
    - Respects robots.txt
    - Generates sitemap.json and errors.json
"""

import argparse
import asyncio
import logging
import os
import sys
import webbrowser
from pathlib import Path
from typing import Dict, List, Optional

from rich.prompt import Prompt

from .crawler import (
    LoginConfig,
    MirrorConfig,
    MirrorCrawler,
    MirrorError,
    needs_dynamic_rendering,
)
from .crawler.context import CrawlSummary
from .utils.constants import (
    DEFAULT_CONCURRENCY,
    DEFAULT_DELAY,
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_MIN_FREE_SPACE_MB,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_PAGE_TIMEOUT,
    DEFAULT_RETRY,
    DEFAULT_RETRY_DELAY,
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
    RESOURCE_TYPE_ALL,
    RESOURCE_TYPES,
    SUPPORTED_BROWSERS,
)
from .utils.log import (
    create_progress,
    print_error,
    print_info,
    print_status,
    print_success,
    print_warning,
    setup_logger,
)
from .utils.paths import has_free_space, page_filename
from .utils.robots import RobotsHandler


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog='site-mirror',
        description='Mirror a website for offline viewing',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    %(prog)s https://example.com
    %(prog)s https://example.com -o ./mirror --recursive --max-depth 2
    %(prog)s https://example.com --type image --filter "cdn\\." --concurrency 10
    %(prog)s https://app.example.com --dynamic --browser firefox
        """
    )

    parser.add_argument(
        'url',
        nargs='?',
        help='URL of the page to mirror (prompted for when omitted)'
    )

    parser.add_argument(
        '--output', '-o',
        default=DEFAULT_OUTPUT_DIR,
        help=f'Output directory (default: {DEFAULT_OUTPUT_DIR})'
    )

    # Crawl scope
    scope = parser.add_argument_group('crawl scope')
    scope.add_argument(
        '--recursive', '-r',
        action='store_true',
        help='Follow same-site links'
    )
    scope.add_argument(
        '--max-depth',
        type=int,
        default=DEFAULT_MAX_DEPTH,
        help=f'Maximum link depth when recursive (default: {DEFAULT_MAX_DEPTH})'
    )
    scope.add_argument(
        '--type', '-t',
        dest='resource_type',
        choices=[RESOURCE_TYPE_ALL, *RESOURCE_TYPES],
        default=RESOURCE_TYPE_ALL,
        help='Only download resources of this type (default: all)'
    )
    scope.add_argument(
        '--filter',
        dest='filter_regex',
        help='Regex that resource and page URLs must match'
    )
    scope.add_argument(
        '--ignore-robots',
        action='store_true',
        help='Ignore robots.txt rules'
    )

    # Downloads
    downloads = parser.add_argument_group('downloads')
    downloads.add_argument(
        '--concurrency', '-c',
        type=int,
        default=DEFAULT_CONCURRENCY,
        help=f'Maximum concurrent downloads (default: {DEFAULT_CONCURRENCY})'
    )
    downloads.add_argument(
        '--delay',
        type=float,
        default=DEFAULT_DELAY,
        help=f'Delay after each download in seconds (default: {DEFAULT_DELAY})'
    )
    downloads.add_argument(
        '--retry',
        type=int,
        default=DEFAULT_RETRY,
        help=f'Attempts per resource (default: {DEFAULT_RETRY})'
    )
    downloads.add_argument(
        '--retry-delay',
        type=float,
        default=DEFAULT_RETRY_DELAY,
        help=f'Base delay between attempts in seconds, doubled each time (default: {DEFAULT_RETRY_DELAY})'
    )
    downloads.add_argument(
        '--timeout',
        type=float,
        default=DEFAULT_TIMEOUT,
        help=f'Request timeout in seconds (default: {DEFAULT_TIMEOUT})'
    )
    downloads.add_argument(
        '--user-agent',
        default=DEFAULT_USER_AGENT,
        help='User agent for all requests'
    )
    downloads.add_argument(
        '--cookie',
        default='',
        help='Cookie header sent with every request'
    )
    downloads.add_argument(
        '--no-gzip',
        action='store_true',
        help='Do not request compressed responses'
    )
    downloads.add_argument(
        '--proxy',
        help='Proxy URL for resource downloads'
    )
    downloads.add_argument(
        '--speed-limit',
        type=int,
        default=0,
        help='Per-download speed limit in KB/s (default: unlimited)'
    )
    downloads.add_argument(
        '--max-file-size',
        type=float,
        default=0,
        help='Skip resources larger than this many MB (default: unlimited)'
    )
    downloads.add_argument(
        '--no-verify-ssl',
        action='store_true',
        help='Do not verify TLS certificates'
    )
    downloads.add_argument(
        '--no-follow-redirects',
        action='store_true',
        help='Treat redirects as failures'
    )
    downloads.add_argument(
        '--max-redirects',
        type=int,
        default=DEFAULT_MAX_REDIRECTS,
        help=f'Maximum redirects per request (default: {DEFAULT_MAX_REDIRECTS})'
    )

    # Rendering
    rendering = parser.add_argument_group('rendering')
    rendering.add_argument(
        '--dynamic', '-d',
        action='store_true',
        help='Render pages in a headless browser'
    )
    rendering.add_argument(
        '--detect-dynamic',
        action='store_true',
        help='Use the browser only if the site looks client-rendered'
    )
    rendering.add_argument(
        '--browser',
        choices=SUPPORTED_BROWSERS,
        default='chromium',
        help='Browser engine for --dynamic (default: chromium)'
    )
    rendering.add_argument(
        '--no-headless',
        action='store_true',
        help='Run browser in visible mode (useful for debugging)'
    )
    rendering.add_argument(
        '--page-timeout',
        type=int,
        default=DEFAULT_PAGE_TIMEOUT,
        help=f'Page load timeout in milliseconds (default: {DEFAULT_PAGE_TIMEOUT})'
    )
    rendering.add_argument(
        '--login-url',
        help='Log in through the form on this page before mirroring (implies --dynamic)'
    )
    rendering.add_argument(
        '--login-field',
        action='append',
        default=[],
        metavar='NAME=SELECTOR',
        help='CSS selector of a login form field, e.g. password=#pass'
    )
    rendering.add_argument(
        '--login-credential',
        action='append',
        default=[],
        metavar='NAME=VALUE',
        help='Value for a login form field, e.g. password=secret'
    )
    rendering.add_argument(
        '--login-submit',
        help='CSS selector of the login submit button'
    )
    rendering.add_argument(
        '--login-error',
        help='CSS selector of the element shown on rejected credentials'
    )

    # Output
    output = parser.add_argument_group('output')
    output.add_argument(
        '--keep-original-urls',
        action='store_true',
        help='Download resources without rewriting page references'
    )
    output.add_argument(
        '--sitemap',
        action='store_true',
        help='Write sitemap.json'
    )
    output.add_argument(
        '--min-free-space',
        type=int,
        default=DEFAULT_MIN_FREE_SPACE_MB,
        help=f'Abort if less than this many MB are free (default: {DEFAULT_MIN_FREE_SPACE_MB})'
    )
    output.add_argument(
        '--open',
        action='store_true',
        help='Open the mirrored start page in a browser when done'
    )
    output.add_argument(
        '--log-file',
        help='Also write the log to this file'
    )
    output.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )
    output.add_argument(
        '--quiet', '-q',
        action='store_true',
        help='Suppress output except errors'
    )

    return parser.parse_args(argv)


def validate_url(url: str) -> str:
    """
    Validate the input URL, adding a scheme if it is missing.

    Raises:
        ValueError: If URL is invalid
    """
    url = url.strip()
    if not url.startswith(('http://', 'https://')):
        url = 'https://' + url

    from urllib.parse import urlsplit
    if not urlsplit(url).hostname:
        raise ValueError(f"Invalid URL: {url}")

    return url


def parse_pairs(values: List[str], option: str) -> Dict[str, str]:
    """
    Parse NAME=VALUE option values.

    Raises:
        ValueError: If a value has no '='
    """
    pairs = {}
    for value in values:
        name, sep, rest = value.partition('=')
        if not sep or not name:
            raise ValueError(f"{option} expects NAME=VALUE, got '{value}'")
        pairs[name.strip()] = rest
    return pairs


def build_config(args: argparse.Namespace) -> MirrorConfig:
    """
    Build the run configuration from parsed arguments.

    Raises:
        ValueError: If an option is invalid
    """
    login = None
    if args.login_url:
        login = LoginConfig(
            login_url=validate_url(args.login_url),
            form_fields=parse_pairs(args.login_field, '--login-field'),
            credentials=parse_pairs(args.login_credential, '--login-credential'),
            submit_selector=args.login_submit,
            error_selector=args.login_error
        )

    config = MirrorConfig(
        output_dir=args.output,
        recursive=args.recursive,
        max_depth=args.max_depth,
        resource_type=args.resource_type,
        filter_regex=args.filter_regex,
        concurrency=args.concurrency,
        delay=args.delay,
        retry=args.retry,
        retry_delay=args.retry_delay,
        timeout=args.timeout,
        user_agent=args.user_agent,
        cookie=args.cookie,
        gzip=not args.no_gzip,
        proxy=args.proxy,
        speed_limit=args.speed_limit,
        max_file_size=int(args.max_file_size * 1024 * 1024),
        verify_ssl=not args.no_verify_ssl,
        follow_redirects=not args.no_follow_redirects,
        max_redirects=args.max_redirects,
        dynamic=args.dynamic or bool(login),
        headless=not args.no_headless,
        browser=args.browser,
        page_timeout=args.page_timeout,
        login=login,
        keep_original_urls=args.keep_original_urls,
        sitemap=args.sitemap
    )

    return config.validate()


def print_banner() -> None:
    """Print the application banner."""
    banner = """
╔═══════════════════════════════════════════════════════════════╗
║                        SITE MIRROR                            ║
║              Mirror websites for offline viewing              ║
╚═══════════════════════════════════════════════════════════════╝
    """
    print_status(banner, "bold cyan")


def print_summary(summary: CrawlSummary, verbose: bool = False) -> None:
    """
    Print the run summary and the failed list.

    Args:
        summary: CrawlSummary of the run
        verbose: Show the error of every failed resource
    """
    print("\n" + "=" * 60)
    print_success("MIRROR SUMMARY")
    print("=" * 60)
    print(f"  Pages:             {len(summary.pages)}")
    print(f"  Total resources:   {summary.total}")
    print(f"  Downloaded:        {summary.success_count}")
    print(f"  Failed:            {summary.fail_count}")
    print(f"  Size:              {summary.downloaded_bytes / 1024:.1f} KB")
    print(f"  Duration:          {summary.duration_seconds:.1f} seconds")
    if summary.cancelled:
        print("  Cancelled:         yes")
    print("=" * 60 + "\n")

    if summary.failed_resources:
        print_warning("Failed resources:")
        for failed in summary.failed_resources:
            print(f"  {failed.url} ({failed.error})" if verbose else f"  {failed.url}")

    if summary.page_errors:
        print_warning("Failed pages:")
        for failed in summary.page_errors:
            print(f"  {failed.url} ({failed.error})")


async def check_robots(url: str) -> Optional[float]:
    """
    Check the start URL against robots.txt.

    Returns:
        The crawl delay (0 if none), or None if the URL is disallowed
    """
    print_info("Checking robots.txt...")
    robots = RobotsHandler(url)
    await robots.load()

    if not robots.is_allowed(url):
        return None

    return robots.get_crawl_delay(0.0)


async def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the site mirror.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_arguments(argv)

    log_level = logging.DEBUG if args.verbose else (logging.WARNING if args.quiet else logging.INFO)
    setup_logger(level=log_level, log_file=args.log_file)

    if not args.quiet:
        print_banner()

    url = args.url
    if not url:
        url = Prompt.ask("Please provide a URL to mirror")
    if not url:
        print_error("Please provide a URL to mirror")
        return 1

    try:
        url = validate_url(url)
        config = build_config(args)
    except ValueError as e:
        print_error(f"Invalid input: {e}")
        return 1

    if not args.ignore_robots:
        crawl_delay = await check_robots(url)
        if crawl_delay is None:
            print_warning("Blocked by robots.txt, skipped (use --ignore-robots to override)")
            return 1
        config.delay = max(config.delay, crawl_delay)

    print_info("Checking disk space...")
    if not has_free_space(config.output_dir, args.min_free_space):
        print_error("Low disk space, aborting download.")
        return 1

    if args.detect_dynamic and not config.dynamic:
        config.dynamic = await needs_dynamic_rendering(url, config.user_agent, config.timeout)
        print_info(f"Dynamic rendering: {'on' if config.dynamic else 'off'}")

    if not args.quiet:
        print_info(f"Target URL: {url}")
        print_info(f"Output: {os.path.abspath(config.output_dir)}")
        if config.recursive:
            print_info(f"Recursive, max depth: {config.max_depth}")

    with create_progress() as progress:
        task = progress.add_task("Downloading", total=None, speed="")

        def on_progress(resource_url, current, total, speed_kbs, eta_seconds):
            name = resource_url.rsplit('/', 1)[-1][:40] or resource_url
            progress.update(
                task,
                description=name,
                completed=current - 1,
                total=total,
                speed=f"{speed_kbs} KB/s, ETA {eta_seconds:.0f}s"
            )

        crawler = MirrorCrawler(config, on_progress=on_progress)

        try:
            summary = await crawler.run(url)
        except MirrorError as e:
            print_error(f"Mirror failed: {e}")
            return 1
        except (asyncio.CancelledError, KeyboardInterrupt):
            crawler.cancel()
            print_error("\nMirror interrupted by user")
            return 1

    if not args.quiet:
        print_summary(summary, verbose=args.verbose)

    index_path = Path(crawler.site_dir(url), page_filename(url)).resolve()
    print_success(f"Saved to: {os.path.abspath(config.output_dir)}")
    print_info(f"Homepage path: {index_path}")

    if args.open:
        if index_path.exists():
            webbrowser.open(index_path.as_uri())
        else:
            print_warning("Homepage not found, cannot open it")

    return 0


def run() -> None:
    """Entry point wrapper for running as module."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print_error("\nMirror interrupted by user")
        sys.exit(130)


if __name__ == '__main__':
    run()
