"""
Utility modules for site mirroring.

Contains logging, URL and path handling, robots.txt parsing utilities, and constants.
"""

from .log import setup_logger, get_logger
from .paths import normalize_url, url_fingerprint, local_resource_path, page_filename, ensure_dir
from .robots import RobotsHandler
from .constants import (
    DEFAULT_USER_AGENT,
    DEFAULT_TIMEOUT,
    DEFAULT_PAGE_TIMEOUT,
    DEFAULT_CONCURRENCY,
    DEFAULT_DELAY,
    DEFAULT_RETRY,
    DEFAULT_MAX_DEPTH,
)

__all__ = [
    "setup_logger",
    "get_logger",
    "normalize_url",
    "url_fingerprint",
    "local_resource_path",
    "page_filename",
    "ensure_dir",
    "RobotsHandler",
    "DEFAULT_USER_AGENT",
    "DEFAULT_TIMEOUT",
    "DEFAULT_PAGE_TIMEOUT",
    "DEFAULT_CONCURRENCY",
    "DEFAULT_DELAY",
    "DEFAULT_RETRY",
    "DEFAULT_MAX_DEPTH",
]
