"""
Path and URL utilities for the site mirror.

Provides URL normalization, fingerprinting, origin checks, local path
generation, and directory management.
"""

import hashlib
import mimetypes
import os
import re
import shutil
from typing import Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

from .constants import EXTERNAL_DIR


# Characters that cannot appear in a stored resource path
INVALID_PATH_CHARS = re.compile(r'[\\?%*:|"<>]')

# Pages are stored flat, so '/' is replaced as well
INVALID_PAGE_CHARS = re.compile(r'[/\\?%*:|"<>]')

DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_url(ref, base_url: Optional[str] = None) -> Optional[str]:
    """
    Resolve a reference against a base URL.

    Args:
        ref: Reference as found in the document (absolute, relative or
             protocol-relative)
        base_url: URL of the document containing the reference

    Returns:
        Absolute http(s) URL with lower-case scheme and host and a
        non-empty path, or None if the reference cannot be resolved to one
    """
    if not isinstance(ref, str):
        return None

    ref = ref.strip()

    try:
        resolved = urljoin(base_url, ref) if base_url else ref
        parts = urlsplit(resolved)
        # Accessing port validates it
        parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS or not parts.hostname:
        return None

    userinfo, _, hostport = parts.netloc.rpartition('@')
    netloc = f"{userinfo}@{hostport.lower()}" if userinfo else hostport.lower()

    return urlunsplit((
        scheme,
        netloc,
        parts.path or '/',
        parts.query,
        parts.fragment
    ))


def url_fingerprint(url: str) -> str:
    """
    Hash a normalized URL for deduplication.

    Two URLs share a fingerprint only if they are textually identical.
    """
    return hashlib.sha1(url.encode('utf-8')).hexdigest()


def get_host(url: str) -> str:
    """Return the lower-case hostname of a URL, or '' if it has none."""
    try:
        return (urlsplit(url).hostname or '').lower()
    except ValueError:
        return ''


def _strip_www(host: str) -> str:
    host = host.lower().rstrip('.')
    return host[4:] if host.startswith('www.') else host


def is_same_host(host: Optional[str], other: Optional[str]) -> bool:
    """
    Check whether two hostnames belong to the same site.

    Hosts match when they are equal once a leading 'www.' is removed, or
    when one is a sub-domain of the other (e.g. 'cdn.example.com' and
    'example.com').
    """
    if not host or not other:
        return False

    a = _strip_www(host)
    b = _strip_www(other)

    if a == b:
        return True

    shorter, longer = sorted((a, b), key=len)
    # A bare TLD never counts as a parent domain
    return '.' in shorter and longer.endswith('.' + shorter)


def _effective_port(parts) -> Optional[int]:
    return parts.port or DEFAULT_PORTS.get(parts.scheme.lower())


def is_same_origin(url: str, other_url: str) -> bool:
    """
    Check whether a URL has exactly the same origin as another.

    Scheme, host and port must all match; unlike is_same_host(), 'www.'
    variants and sub-domains do not count. Pages are stored flat per host,
    so only exact-origin page links are followed.

    Args:
        url: URL to check
        other_url: URL it is compared against (usually the page URL)
    """
    try:
        a = urlsplit(url)
        b = urlsplit(other_url)
        return (
            a.scheme.lower() == b.scheme.lower()
            and (a.hostname or '').lower() == (b.hostname or '').lower()
            and _effective_port(a) == _effective_port(b)
        )
    except ValueError:
        return False


def sanitize_host(netloc: str) -> str:
    """Make a host (with optional port) usable as a directory name."""
    return re.sub(r'[:/\\]', '_', netloc.lower())


def _safe_segment(segment: str) -> str:
    if segment in ('.', '..'):
        return '_'
    return INVALID_PATH_CHARS.sub('_', segment)


def local_resource_path(url: str, page_host: str) -> str:
    """
    Map a resource URL to a path relative to the page's storage directory.

    Args:
        url: Absolute resource URL
        page_host: Hostname of the page that referenced the resource

    Returns:
        Relative path using forward slashes. Resources on another site are
        placed under 'external/<host>/'.
    """
    parts = urlsplit(url)
    path = parts.path.lstrip('/')

    if not path or path.endswith('/'):
        path += 'index'

    path = '/'.join(_safe_segment(s) for s in path.split('/') if s)

    if not is_same_host(parts.hostname, page_host):
        path = f"{EXTERNAL_DIR}/{sanitize_host(parts.netloc)}/{path}"

    return path


def add_extension(path: str, content_type: Optional[str]) -> str:
    """
    Append the extension matching a content type to an extension-less path.

    Args:
        path: Relative resource path
        content_type: Value of the Content-Type header

    Returns:
        The path, with an extension appended when it had none and the
        content type is known
    """
    if not content_type or os.path.splitext(path.rsplit('/', 1)[-1])[1]:
        return path

    mime = content_type.split(';', 1)[0].strip().lower()
    ext = mimetypes.guess_extension(mime)

    return path + ext if ext else path


def page_filename(url: str) -> str:
    """
    Convert a page URL to a flat, safe HTML filename.

    Args:
        url: Page URL

    Returns:
        Filename such as 'index.html' or 'docs_intro.html'
    """
    path = urlsplit(url).path.strip('/')
    filename = INVALID_PAGE_CHARS.sub('_', path) or 'index'

    if not filename.lower().endswith('.html'):
        filename += '.html'

    return filename


def ensure_dir(path: str) -> None:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists
    """
    os.makedirs(path, exist_ok=True)


def ensure_parent_dir(file_path: str) -> None:
    """
    Ensure the parent directory of a file exists.

    Args:
        file_path: File path whose parent directory should exist
    """
    parent = os.path.dirname(file_path)
    if parent:
        ensure_dir(parent)


def has_free_space(path: str, min_megabytes: int) -> bool:
    """
    Check that the filesystem holding a path has enough free space.

    The nearest existing ancestor of the path is inspected, so the check
    works before the output directory is created.
    """
    probe = os.path.abspath(path)
    while not os.path.exists(probe):
        parent = os.path.dirname(probe)
        if parent == probe:
            break
        probe = parent

    free = shutil.disk_usage(probe).free
    return free >= min_megabytes * 1024 * 1024
