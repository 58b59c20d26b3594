"""
Robots.txt handler for the site mirror.

Provides parsing and checking of robots.txt rules, used by the CLI to
check the start URL before mirroring.
"""

import asyncio
import re
from typing import List, Optional, Tuple
from urllib.parse import urlsplit

import aiohttp

from .constants import DEFAULT_USER_AGENT
from .log import get_logger


class RobotsHandler:
    """
    Handler for robots.txt parsing and rule checking.

    Rules of the group matching the user agent apply; when several rules
    match a path, the longest pattern wins and Allow wins ties.
    """

    def __init__(self, base_url: str, user_agent: str = "*", timeout: float = 10):
        """
        Initialize the robots.txt handler.

        Args:
            base_url: Any URL of the website
            user_agent: User agent token to check rules for
            timeout: Request timeout in seconds
        """
        self.base_url = base_url
        self.user_agent = user_agent
        self.timeout = timeout
        self.logger = get_logger("robots")

        parsed = urlsplit(base_url)
        self.robots_url = f"{parsed.scheme}://{parsed.netloc}/robots.txt"

        # (pattern, allowed) pairs of the applicable group
        self._rules: List[Tuple[str, bool]] = []
        self._loaded = False

        self.crawl_delay: Optional[float] = None
        self.sitemaps: List[str] = []

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> bool:
        """
        Load and parse the robots.txt file.

        Returns:
            True if loaded successfully (a missing file counts), False otherwise
        """
        try:
            async with aiohttp.ClientSession(headers={"User-Agent": DEFAULT_USER_AGENT}) as session:
                async with session.get(
                    self.robots_url,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                    allow_redirects=True
                ) as response:
                    if response.status == 200:
                        self.parse(await response.text(errors='replace'))
                        self.logger.info(f"Loaded robots.txt from {self.robots_url}")
                        return True
                    elif response.status == 404:
                        # No robots.txt means everything is allowed
                        self._loaded = True
                        self.logger.info("No robots.txt found - all URLs allowed")
                        return True
                    else:
                        self.logger.warning(
                            f"Failed to load robots.txt: HTTP {response.status}"
                        )
                        return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.warning(f"Error fetching robots.txt: {e or type(e).__name__}")
            return False

    def parse(self, content: str) -> None:
        """
        Parse robots.txt content.

        Args:
            content: robots.txt file content
        """
        specific: List[Tuple[str, bool]] = []
        generic: List[Tuple[str, bool]] = []
        specific_delay: Optional[float] = None
        generic_delay: Optional[float] = None

        agents: List[str] = []
        reading_user_agents = True

        for line in content.splitlines():
            line = line.split('#', 1)[0].strip()
            if ':' not in line:
                continue

            directive, value = line.split(':', 1)
            directive = directive.strip().lower()
            value = value.strip()

            if directive == 'user-agent':
                if not reading_user_agents:
                    # A new group starts after the rules of the previous one
                    agents = []
                    reading_user_agents = True
                agents.append(value.lower())
                continue

            if directive == 'sitemap':
                # Sitemaps are global, not group-specific
                self.sitemaps.append(value)
                continue

            reading_user_agents = False
            applies_specific = self.user_agent != '*' and self.user_agent.lower() in agents
            applies_generic = '*' in agents

            if directive in ('allow', 'disallow'):
                if not value:
                    continue
                rule = (value, directive == 'allow')
                if applies_specific:
                    specific.append(rule)
                if applies_generic:
                    generic.append(rule)

            elif directive == 'crawl-delay':
                try:
                    delay = float(value)
                except ValueError:
                    self.logger.debug(f"Ignoring invalid crawl-delay: {value}")
                    continue
                if applies_specific:
                    specific_delay = delay
                if applies_generic:
                    generic_delay = delay

        # A group naming the agent replaces the catch-all group
        self._rules = specific or generic
        self.crawl_delay = specific_delay if specific_delay is not None else generic_delay
        self._loaded = True

    def is_allowed(self, url: str) -> bool:
        """
        Check if a URL is allowed to be crawled.

        Args:
            url: URL to check

        Returns:
            True if allowed, False if disallowed
        """
        if not self._loaded:
            # If robots.txt wasn't loaded, allow everything
            return True

        parsed = urlsplit(url)
        path = parsed.path or '/'
        if parsed.query:
            path += '?' + parsed.query

        best_length = -1
        allowed = True

        for pattern, is_allow in self._rules:
            if not self._matches_pattern(path, pattern):
                continue
            if len(pattern) > best_length or (len(pattern) == best_length and is_allow):
                best_length = len(pattern)
                allowed = is_allow

        if not allowed:
            self.logger.debug(f"URL disallowed by robots.txt: {url}")

        return allowed

    def _matches_pattern(self, path: str, pattern: str) -> bool:
        """
        Check if a path matches a robots.txt pattern.

        Args:
            path: URL path (with query) to check
            pattern: robots.txt pattern, may use '*' and a trailing '$'

        Returns:
            True if matches, False otherwise
        """
        if '*' not in pattern and not pattern.endswith('$'):
            return path.startswith(pattern)

        anchored = pattern.endswith('$')
        if anchored:
            pattern = pattern[:-1]

        regex = '.*'.join(re.escape(part) for part in pattern.split('*'))
        if anchored:
            regex += '$'

        return re.match(regex, path) is not None

    def get_crawl_delay(self, default: float = 0.0) -> float:
        """
        Get the crawl delay from robots.txt or use default.

        Args:
            default: Default delay in seconds

        Returns:
            Crawl delay in seconds
        """
        if self.crawl_delay is not None:
            return self.crawl_delay
        return default
