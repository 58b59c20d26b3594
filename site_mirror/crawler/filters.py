"""
Resource filter pipeline.

Turns the raw references of one page into the list of URLs to download
and the URL -> local path mapping used to rewrite the page.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Pattern
from urllib.parse import urlsplit

from .context import CrawlContext
from .extractor import ResourceRef
from ..utils.constants import RESOURCE_TYPE_ALL, RESOURCE_TYPES
from ..utils.log import get_logger
from ..utils.paths import get_host, local_resource_path, url_fingerprint


def matches_resource_type(url: str, resource_type: str) -> bool:
    """
    Check a URL's path extension against a resource type.

    Args:
        url: Absolute URL; the query string is ignored
        resource_type: One of RESOURCE_TYPES or 'all'

    Returns:
        True if the URL belongs to the type
    """
    if resource_type == RESOURCE_TYPE_ALL:
        return True

    path = urlsplit(url).path
    ext = os.path.splitext(path)[1].lower()
    return ext in RESOURCE_TYPES.get(resource_type, ())


@dataclass
class FilterResult:
    """Output of the filter pipeline for one page."""

    # URLs to hand to the downloader, in document order
    scheduled: List[str] = field(default_factory=list)

    # Every accepted URL -> local path, including ones not downloaded again
    local_paths: Dict[str, str] = field(default_factory=dict)

    # Accepted URLs whose file already exists on disk
    existing: List[str] = field(default_factory=list)

    # Accepted URLs already seen earlier in the run
    duplicates: List[str] = field(default_factory=list)


class ResourceFilter:
    """
    Applies, in order: validity, fingerprint dedup, type filter, user
    regex filter and the already-downloaded skip.
    """

    def __init__(
        self,
        context: CrawlContext,
        resource_type: str = RESOURCE_TYPE_ALL,
        filter_regex: Optional[Pattern] = None
    ):
        self.context = context
        self.resource_type = resource_type
        self.filter_regex = filter_regex
        self.logger = get_logger("filter")

    def accepts(self, url: str) -> bool:
        """Check the type and regex filters."""
        if not matches_resource_type(url, self.resource_type):
            return False
        if self.filter_regex and not self.filter_regex.search(url):
            return False
        return True

    def apply(
        self,
        refs: Iterable[ResourceRef],
        page_url: str,
        base_dir: str
    ) -> FilterResult:
        """
        Run the pipeline over one page's references.

        Args:
            refs: Extracted references
            page_url: URL of the page that contains them
            base_dir: Storage directory of the run

        Returns:
            FilterResult with the download list and the path mapping
        """
        result = FilterResult()
        page_host = get_host(page_url)

        for ref in refs:
            url = ref.normalized_url
            if not url:
                continue

            is_new = self.context.add_fingerprint(url_fingerprint(url))

            if not self.accepts(url):
                continue

            if url in result.local_paths:
                continue

            local_path = (
                self.context.resource_paths.get(url)
                or local_resource_path(url, page_host)
            )
            result.local_paths[url] = local_path

            if not is_new:
                result.duplicates.append(url)
            elif os.path.exists(os.path.join(base_dir, local_path)):
                result.existing.append(url)
            else:
                result.scheduled.append(url)

        self.logger.debug(
            f"{page_url}: {len(result.scheduled)} to download, "
            f"{len(result.existing)} already on disk, "
            f"{len(result.duplicates)} seen before"
        )

        return result
