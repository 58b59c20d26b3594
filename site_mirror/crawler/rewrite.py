"""
Link rewriter for converting URLs to local relative paths.

Rewrites resource references in a parsed page, in place, so the saved
copy is browsable offline.
"""

import re
from typing import Dict, Optional
from urllib.parse import urldefrag

from bs4 import BeautifulSoup, Tag

from .extractor import NON_PAGE_PREFIXES, parse_srcset
from ..utils.log import get_logger
from ..utils.paths import normalize_url


class LinkRewriter:
    """
    Rewrites URLs in a parsed HTML document to local paths.

    Resources are looked up by their normalized absolute URL, so a
    reference written relative, protocol-relative or absolute is
    rewritten the same way.
    """

    # CSS url() pattern for replacement
    CSS_URL_PATTERN = re.compile(r'url\(\s*([\'"]?)([^\'")]+?)\1\s*\)', re.IGNORECASE)

    URL_ATTRIBUTES = ('src', 'href', 'data', 'poster')

    def __init__(self):
        self.logger = get_logger("rewriter")

    def rewrite(
        self,
        soup: BeautifulSoup,
        page_url: str,
        resource_paths: Dict[str, str],
        page_paths: Optional[Dict[str, str]] = None
    ) -> int:
        """
        Rewrite references in place.

        Args:
            soup: Parsed page, modified in place
            page_url: Original URL of the page
            resource_paths: Absolute resource URL -> local relative path
            page_paths: Absolute page URL -> local page filename, applied
                        to anchors

        Returns:
            Number of rewritten values
        """
        count = 0

        for tag in soup.find_all(True):
            if tag.name == 'a':
                if page_paths:
                    count += self._rewrite_anchor(tag, page_url, page_paths)
            else:
                count += self._rewrite_attributes(tag, page_url, resource_paths)

            srcset = tag.get('srcset')
            if isinstance(srcset, str):
                new_srcset = self.rewrite_srcset(srcset, page_url, resource_paths)
                if new_srcset != srcset:
                    tag['srcset'] = new_srcset
                    count += 1

            style = tag.get('style')
            if isinstance(style, str):
                new_style = self.rewrite_css_urls(style, page_url, resource_paths)
                if new_style != style:
                    tag['style'] = new_style
                    count += 1

            if tag.name == 'style' and tag.string:
                css = str(tag.string)
                new_css = self.rewrite_css_urls(css, page_url, resource_paths)
                if new_css != css:
                    tag.string = new_css
                    count += 1

        if count:
            # A <base> tag would resolve the local paths against the remote site
            for base in soup.find_all('base'):
                base.decompose()

        self.logger.debug(f"Rewrote {count} references in {page_url}")
        return count

    def _local_path(
        self,
        value: str,
        page_url: str,
        resource_paths: Dict[str, str]
    ) -> Optional[str]:
        """Look up the local path of a raw reference."""
        value = value.strip()
        if not value or value.startswith(('data:', '#')):
            return None

        full_url = normalize_url(value, page_url)
        if not full_url:
            return None

        return resource_paths.get(full_url)

    def _rewrite_attributes(
        self,
        tag: Tag,
        page_url: str,
        resource_paths: Dict[str, str]
    ) -> int:
        """Rewrite src/href/data/poster attributes of a non-anchor element."""
        count = 0
        for attr in self.URL_ATTRIBUTES:
            value = tag.get(attr)
            if not isinstance(value, str):
                continue
            local = self._local_path(value, page_url, resource_paths)
            if local and local != value:
                tag[attr] = local
                count += 1
        return count

    def _rewrite_anchor(
        self,
        tag: Tag,
        page_url: str,
        page_paths: Dict[str, str]
    ) -> int:
        """Point an anchor at the local copy of a mirrored page."""
        href = tag.get('href')
        if not isinstance(href, str):
            return 0

        href = href.strip()
        if not href or href.startswith(NON_PAGE_PREFIXES):
            return 0

        full_url = normalize_url(href, page_url)
        if not full_url:
            return 0

        url, fragment = urldefrag(full_url)
        local = page_paths.get(url)
        if not local:
            return 0

        tag['href'] = f"{local}#{fragment}" if fragment else local
        return 1

    def rewrite_srcset(
        self,
        srcset: str,
        page_url: str,
        resource_paths: Dict[str, str]
    ) -> str:
        """
        Rewrite URLs in a srcset attribute, keeping each descriptor.

        Args:
            srcset: Original srcset value
            page_url: URL of the page
            resource_paths: URL to local path mapping

        Returns:
            Rewritten srcset string, or the original if nothing matched
        """
        new_parts = []
        changed = False

        for url, descriptor in parse_srcset(srcset):
            local = self._local_path(url, page_url, resource_paths)
            if local:
                url = local
                changed = True
            new_parts.append(f"{url} {descriptor}" if descriptor else url)

        return ', '.join(new_parts) if changed else srcset

    def rewrite_css_urls(
        self,
        css: str,
        page_url: str,
        resource_paths: Dict[str, str]
    ) -> str:
        """
        Rewrite url() references in CSS.

        Args:
            css: CSS content
            page_url: URL context for resolving relative URLs
            resource_paths: URL to local path mapping

        Returns:
            CSS with rewritten URLs
        """
        def replace_url(match):
            local = self._local_path(match.group(2), page_url, resource_paths)
            if local:
                return f'url("{local}")'
            return match.group(0)

        return self.CSS_URL_PATTERN.sub(replace_url, css)
