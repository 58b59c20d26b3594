"""
Crawler module for site mirroring.

Contains components for rendering, extracting, filtering, rewriting,
downloading, and the crawl driver that ties them together.
"""

from .config import LoginConfig, MirrorConfig
from .context import CrawlContext, CrawlSummary, DownloadResult, DownloaderState
from .crawler import MirrorCrawler
from .downloader import ResourceDownloader
from .errors import (
    InvalidUrlError,
    LoginError,
    MirrorError,
    RenderError,
    ResourceFetchError,
)
from .extractor import ResourceExtractor
from .filters import ResourceFilter
from .renderer import (
    BrowserRenderer,
    PageRenderer,
    RenderedPage,
    StaticRenderer,
    create_renderer,
    needs_dynamic_rendering,
)
from .rewrite import LinkRewriter

__all__ = [
    "MirrorCrawler",
    "MirrorConfig",
    "LoginConfig",
    "CrawlContext",
    "CrawlSummary",
    "DownloadResult",
    "DownloaderState",
    "ResourceDownloader",
    "ResourceExtractor",
    "ResourceFilter",
    "LinkRewriter",
    "PageRenderer",
    "RenderedPage",
    "StaticRenderer",
    "BrowserRenderer",
    "create_renderer",
    "needs_dynamic_rendering",
    "MirrorError",
    "InvalidUrlError",
    "RenderError",
    "LoginError",
    "ResourceFetchError",
]
