"""
Resource extractor for parsing HTML and enumerating resource references.

Uses BeautifulSoup for HTML parsing to find all embedded resources and
same-origin page links.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union
from urllib.parse import urldefrag

from bs4 import BeautifulSoup, Tag

from ..utils.log import get_logger
from ..utils.paths import normalize_url, is_same_origin


# Prefixes of href values that never point at a page
NON_PAGE_PREFIXES = ('#', 'javascript:', 'mailto:', 'tel:', 'data:')


def parse_html(html: str) -> BeautifulSoup:
    """Parse an HTML document with the lxml tree builder."""
    return BeautifulSoup(html or '', 'lxml')


def parse_srcset(srcset: str) -> List[Tuple[str, str]]:
    """
    Split a srcset attribute into (url, descriptor) pairs.

    Args:
        srcset: srcset attribute value, e.g. "a.jpg 1x, b.jpg 2x"

    Returns:
        List of (url, descriptor) tuples; descriptor may be ''
    """
    entries = []
    for part in srcset.split(','):
        pieces = part.strip().split(None, 1)
        if pieces:
            url = pieces[0]
            descriptor = pieces[1].strip() if len(pieces) > 1 else ''
            entries.append((url, descriptor))
    return entries


@dataclass
class ResourceRef:
    """A resource reference as found in the document."""

    original_ref: str
    normalized_url: Optional[str]


class ResourceExtractor:
    """
    Extracts resource references and page links from HTML content.

    Finds images, stylesheets, scripts, manifests, favicons, fonts, media,
    frames, srcset entries and CSS url() references.
    """

    # CSS url() pattern
    CSS_URL_PATTERN = re.compile(r'url\(\s*[\'"]?([^\'")]+?)[\'"]?\s*\)', re.IGNORECASE)

    # Attribute carrying the resource URL, per tag
    SOURCE_ATTRIBUTES = {
        'img': ('src',),
        'script': ('src',),
        'audio': ('src',),
        'video': ('src', 'poster'),
        'source': ('src',),
        'iframe': ('src',),
        'embed': ('src',),
        'object': ('data',),
    }

    def __init__(self):
        self.logger = get_logger("extractor")

    def extract(
        self,
        html: Union[str, BeautifulSoup],
        page_url: str
    ) -> List[ResourceRef]:
        """
        Extract every resource reference in document order.

        Args:
            html: HTML content or an already parsed document
            page_url: URL of the page (for resolving relative URLs)

        Returns:
            One ResourceRef per occurrence; data: URIs are left out
        """
        soup = html if isinstance(html, BeautifulSoup) else parse_html(html)
        refs: List[ResourceRef] = []

        for tag in soup.find_all(True):
            for value in self._tag_references(tag):
                refs.append(ResourceRef(value, normalize_url(value, page_url)))

        self.logger.debug(f"Extracted {len(refs)} resource references from {page_url}")
        return refs

    def _tag_references(self, tag: Tag) -> List[str]:
        """Collect raw reference strings carried by a single element."""
        values: List[str] = []

        for attr in self.SOURCE_ATTRIBUTES.get(tag.name, ()):
            values.append(tag.get(attr))

        if tag.name == 'link' and self._is_resource_link(tag):
            values.append(tag.get('href'))

        srcset = tag.get('srcset')
        if isinstance(srcset, str):
            values.extend(url for url, _ in parse_srcset(srcset))

        if tag.name == 'style' and tag.string:
            values.extend(self.extract_css_urls(tag.string))

        style = tag.get('style')
        if isinstance(style, str):
            values.extend(self.extract_css_urls(style))

        return [v.strip() for v in values if self._is_reference(v)]

    @staticmethod
    def _is_resource_link(tag: Tag) -> bool:
        """Check whether a <link> element points at a downloadable resource."""
        rel = tag.get('rel') or []
        if isinstance(rel, str):
            rel = rel.split()
        rel_values = [v.lower() for v in rel]

        if 'stylesheet' in rel_values or 'manifest' in rel_values:
            return True
        # icon, shortcut icon, apple-touch-icon, mask-icon
        if any('icon' in v for v in rel_values):
            return True
        if 'preload' in rel_values and (tag.get('as') or '').lower() == 'font':
            return True
        return False

    @staticmethod
    def _is_reference(value) -> bool:
        if not isinstance(value, str):
            return False
        value = value.strip()
        return bool(value) and not value.startswith(('data:', '#'))

    def extract_css_urls(self, css: str) -> List[str]:
        """
        Extract url() references from CSS content.

        Args:
            css: CSS text (a <style> block or a style attribute)

        Returns:
            List of raw URLs, data: URIs excluded
        """
        urls = []
        for match in self.CSS_URL_PATTERN.finditer(css):
            url = match.group(1).strip()
            if url and not url.startswith('data:'):
                urls.append(url)
        return urls

    def extract_page_links(
        self,
        soup: BeautifulSoup,
        page_url: str,
        origin_url: Optional[str] = None
    ) -> List[str]:
        """
        Extract same-origin anchor links.

        Args:
            soup: Parsed page
            page_url: URL the page was served from (for resolving links)
            origin_url: URL whose origin links must share (page_url if omitted)

        Returns:
            Absolute URLs without fragment, de-duplicated in document order
        """
        links: List[str] = []
        seen = set()

        for anchor in soup.find_all('a', href=True):
            href = anchor['href'].strip()
            if not href or href.startswith(NON_PAGE_PREFIXES):
                continue

            full_url = normalize_url(href, page_url)
            if not full_url:
                continue

            full_url = urldefrag(full_url)[0]
            if full_url in seen or not is_same_origin(full_url, origin_url or page_url):
                continue

            seen.add(full_url)
            links.append(full_url)

        return links
