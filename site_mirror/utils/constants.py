"""
Shared constants for the site mirror.

Contains common configuration values used across multiple modules.
"""

import re

# Default user agent string for all HTTP requests
# Used by both page renderers and the resource downloader
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

# Default output root
DEFAULT_OUTPUT_DIR = "downloaded_site"

# Default resource request timeout in seconds
DEFAULT_TIMEOUT = 30

# Default page load timeout in milliseconds (for Playwright)
DEFAULT_PAGE_TIMEOUT = 30000

# Default concurrent downloads
DEFAULT_CONCURRENCY = 5

# Delay after each successful download in seconds
DEFAULT_DELAY = 1.0

# Attempts per resource
DEFAULT_RETRY = 3

# Base delay between attempts in seconds, doubled on each failure
DEFAULT_RETRY_DELAY = 1.0
MAX_RETRY_DELAY = 30.0

# Recursion depth when following same-origin links
DEFAULT_MAX_DEPTH = 1

DEFAULT_MAX_REDIRECTS = 5

# Bytes read per chunk while streaming a resource body
CHUNK_SIZE = 64 * 1024

# Cross-origin resources are stored under this directory
EXTERNAL_DIR = "external"

# File extensions accepted by each resource type filter
RESOURCE_TYPES = {
    "image": (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".bmp", ".ico", ".avif"),
    "css": (".css",),
    "js": (".js",),
    "html": (".htm", ".html"),
    "media": (".mp4", ".mp3", ".ogg", ".wav", ".webm", ".m4a", ".aac"),
}
RESOURCE_TYPE_ALL = "all"

SUPPORTED_BROWSERS = ("chromium", "firefox", "webkit")

# Pages shorter than this are assumed to be rendered client-side
DYNAMIC_MIN_LENGTH = 5000

# Markers of single-page-app shells
SPA_MARKERS = re.compile(
    r'<div id="app"'
    r'|<div id="root"'
    r'|<app-root'
    r'|ng-app'
    r'|window\.__INITIAL_STATE__'
    r'|window\.__NUXT__'
    r'|__NEXT_DATA__'
    r'|<script[^>]+src="/_next/'
    r'|/static/js/main\.[0-9a-f]+\.js',
    re.IGNORECASE,
)

# Bot-challenge pages served in place of the requested resource
CHALLENGE_PATTERN = re.compile(r"cloudflare|captcha|cf-chl|challenge-platform", re.IGNORECASE)

# Hints appended to exhausted resource failures
HINT_FORBIDDEN = " (Permission denied, maybe anti-bot)"
HINT_RATE_LIMITED = " (Too many requests, try slower)"
HINT_CHALLENGE = " (Cloudflare/captcha detected)"

# Free space required before starting a mirror, in megabytes
DEFAULT_MIN_FREE_SPACE_MB = 100
