"""
Main mirror crawler module.

Orchestrates the mirroring of one page and its resources, and the
recursion into same-origin pages: render, extract, filter, rewrite,
save, download, recurse.
"""

import json
import os
import time
from typing import Dict, List, Optional
from urllib.parse import urldefrag, urlsplit

from .config import MirrorConfig
from .context import CrawlContext, CrawlSummary
from .downloader import ErrorCallback, ProgressCallback, ResourceDownloader
from .errors import InvalidUrlError, RenderError
from .extractor import ResourceExtractor, parse_html
from .filters import FilterResult, ResourceFilter
from .renderer import PageRenderer, create_renderer
from .rewrite import LinkRewriter
from ..utils.log import get_logger
from ..utils.paths import (
    ensure_dir,
    get_host,
    normalize_url,
    page_filename,
    sanitize_host,
)


SITEMAP_FILE = "sitemap.json"
ERRORS_FILE = "errors.json"


class MirrorCrawler:
    """
    Main mirror crawler class.

    One instance performs one run. pause(), resume() and cancel() may be
    called from any thread while run() is in progress.
    """

    def __init__(
        self,
        config: Optional[MirrorConfig] = None,
        renderer: Optional[PageRenderer] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_error: Optional[ErrorCallback] = None
    ):
        """
        Initialize the mirror crawler.

        Args:
            config: Run configuration (defaults if omitted)
            renderer: Page renderer; picked from the config if omitted
            on_progress: Called as (url, index, total, speed_kbs, eta_s)
                         before every resource attempt
            on_error: Called with a message for every failed resource
                      and page
        """
        self.config = (config or MirrorConfig()).validate()
        self.on_error = on_error
        self.logger = get_logger("crawler")

        self.context = CrawlContext()
        self.renderer = renderer or create_renderer(self.config)
        self.extractor = ResourceExtractor()
        self.filter = ResourceFilter(
            self.context,
            self.config.resource_type,
            self.config.compiled_filter
        )
        self.rewriter = LinkRewriter()
        self.downloader = ResourceDownloader(
            self.config,
            self.context,
            on_progress=on_progress,
            on_error=on_error
        )

    # Control surface

    def pause(self) -> None:
        self.logger.info("Pausing downloads")
        self.context.state.pause()

    def resume(self) -> None:
        self.logger.info("Resuming downloads")
        self.context.state.resume()

    def cancel(self) -> None:
        self.logger.info("Cancelling run")
        self.context.state.cancel()

    @property
    def paused(self) -> bool:
        return self.context.state.paused

    @property
    def cancelled(self) -> bool:
        return self.context.state.cancelled

    def site_dir(self, url: str) -> str:
        """Storage directory of a site: <output_dir>/<sanitized host>."""
        hostport = urlsplit(url).netloc.rpartition('@')[2]
        return os.path.join(self.config.output_dir, sanitize_host(hostport))

    async def run(self, url: str) -> CrawlSummary:
        """
        Mirror a site starting at a URL.

        Args:
            url: Start URL

        Returns:
            CrawlSummary of the run

        Raises:
            InvalidUrlError: If the start URL is not an http(s) URL
            RenderError: If the start page cannot be rendered
        """
        start_url = normalize_url(url)
        if not start_url:
            raise InvalidUrlError(f"Invalid URL: {url!r}")
        start_url = urldefrag(start_url)[0]

        self.context.state.bind()
        base_dir = self.site_dir(start_url)
        started = time.monotonic()

        self.logger.info(f"Starting mirror of {start_url}")
        self.logger.info(f"Output directory: {os.path.abspath(base_dir)}")

        try:
            async with self.renderer:
                await self.crawl(start_url, 0, base_dir)
        finally:
            summary = self.context.summary(time.monotonic() - started)
            if os.path.isdir(base_dir):
                self._write_reports(base_dir, start_url, summary)

        self.logger.info(
            f"Mirror complete: {len(summary.pages)} pages, "
            f"{summary.success_count} resources, {summary.fail_count} failed "
            f"in {summary.duration_seconds:.1f}s"
        )

        return summary

    async def crawl(
        self,
        url: str,
        depth: int = 0,
        base_dir: Optional[str] = None
    ) -> None:
        """
        Mirror one page, then recurse into its same-origin links.

        Args:
            url: Absolute page URL
            depth: Distance from the start page
            base_dir: Storage directory of the run

        Raises:
            RenderError: If this page cannot be rendered. Failures of
                         linked pages are reported and skipped.
        """
        state = self.context.state

        if state.cancelled or self.context.is_visited(url):
            return

        await state.wait_if_paused()
        if state.cancelled or not self.context.mark_visited(url):
            return

        if base_dir is None:
            base_dir = self.site_dir(url)
        ensure_dir(base_dir)

        self.logger.info(f"[depth {depth}] Mirroring: {url}")

        try:
            rendered = await self.renderer.render_page(url)
        except RenderError as e:
            self._report_page_error(url, str(e))
            raise

        html = rendered.html
        # Relative references resolve against the URL after redirects
        page_base = rendered.url or url

        soup = parse_html(html)
        filtered = self.filter.apply(self.extractor.extract(soup, page_base), url, base_dir)

        links: List[str] = []
        if self.config.recursive and depth < self.config.max_depth:
            links = self._discover_links(soup, page_base, url)

        filename = page_filename(url)
        page_path = os.path.join(base_dir, filename)

        page_paths = self._page_paths(links)
        page_paths[url] = filename

        if not self.config.keep_original_urls:
            self.rewriter.rewrite(soup, page_base, filtered.local_paths, page_paths)

        if self.downloader.save_page(page_path, str(soup)):
            self.context.record_page(url, filename)
        else:
            self._report_page_error(url, f"Could not save {page_path}")

        results = await self.downloader.download_resources(
            filtered.scheduled, base_dir, get_host(url)
        )

        final_paths = self._final_paths(filtered, results)
        if final_paths and not self.config.keep_original_urls:
            # Downloads appended extensions; point the page at the final names
            soup = parse_html(html)
            self.rewriter.rewrite(soup, page_base, final_paths, page_paths)
            self.downloader.save_page(page_path, str(soup))

        for link in links:
            if state.cancelled:
                break
            try:
                await self.crawl(link, depth + 1, base_dir)
            except RenderError:
                # Already reported; only this subtree is lost
                continue

    def _discover_links(self, soup, page_base: str, page_url: str) -> List[str]:
        """Links on the origin of page_url to recurse into, in document order."""
        regex = self.filter.filter_regex
        links = []

        for link in self.extractor.extract_page_links(soup, page_base, page_url):
            if regex and not regex.search(link):
                continue
            if self.context.is_visited(link):
                continue
            links.append(link)

        self.logger.debug(f"Discovered {len(links)} new pages on {page_url}")
        return links

    def _page_paths(self, links: List[str]) -> Dict[str, str]:
        """Local filenames of every page mirrored so far or about to be."""
        paths = dict(self.context.page_files)
        for link in links:
            paths.setdefault(link, page_filename(link))
        return paths

    @staticmethod
    def _final_paths(filtered: FilterResult, results) -> Dict[str, str]:
        """
        The path mapping with final download names, or {} if no
        download changed its path.
        """
        changed = {
            r.url: r.local_path
            for r in results
            if r.success and filtered.local_paths.get(r.url) != r.local_path
        }
        if not changed:
            return {}

        paths = dict(filtered.local_paths)
        paths.update(changed)
        return paths

    def _report_page_error(self, url: str, error: str) -> None:
        self.context.record_page_error(url, error)
        self.logger.error(f"Page failed: {url} ({error})")
        if self.on_error:
            self.on_error(f"Page failed: {url} ({error})")

    def _write_reports(self, base_dir: str, start_url: str, summary: CrawlSummary) -> None:
        """Write errors.json when anything failed, and sitemap.json if enabled."""
        if summary.failed_resources or summary.page_errors:
            errors_path = os.path.join(base_dir, ERRORS_FILE)
            errors = {
                'failed_resources': [f.to_dict() for f in summary.failed_resources],
                'page_errors': [f.to_dict() for f in summary.page_errors],
            }
            with open(errors_path, 'w', encoding='utf-8') as f:
                json.dump(errors, f, indent=2, ensure_ascii=False)
            self.logger.info(f"Generated error log: {errors_path}")

        if self.config.sitemap:
            sitemap_path = os.path.join(base_dir, SITEMAP_FILE)
            sitemap = {
                'start_url': start_url,
                'total_pages': len(summary.pages),
                'total_resources': summary.success_count,
                'pages': [
                    {'url': page, 'file': self.context.page_files.get(page)}
                    for page in summary.pages
                ],
                'resources': dict(sorted(self.context.resource_paths.items())),
            }
            with open(sitemap_path, 'w', encoding='utf-8') as f:
                json.dump(sitemap, f, indent=2, ensure_ascii=False)
            self.logger.info(f"Generated sitemap: {sitemap_path}")
