"""
Page renderers.

StaticRenderer fetches the raw HTML with aiohttp; BrowserRenderer uses a
Playwright headless browser to capture the DOM after JavaScript ran.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import aiohttp
from aiohttp import ClientError, ClientTimeout
from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    TimeoutError as PlaywrightTimeout,
    async_playwright,
)

from .config import LoginConfig, MirrorConfig
from .errors import LoginError, RenderError
from ..utils.constants import (
    DEFAULT_PAGE_TIMEOUT,
    DEFAULT_TIMEOUT,
    DEFAULT_USER_AGENT,
    DYNAMIC_MIN_LENGTH,
    SPA_MARKERS,
)
from ..utils.log import get_logger


@dataclass
class RenderedPage:
    """HTML of a page and the URL it was served from after redirects."""

    html: str
    url: str


class PageRenderer(ABC):
    """
    Produces the HTML of a page.

    Renderers are async context managers: start() acquires whatever the
    renderer needs (a session, a browser), stop() releases it.
    """

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    @abstractmethod
    async def render(self, url: str) -> str:
        """
        Return the HTML of a page.

        Raises:
            RenderError: If the page cannot be fetched or rendered
        """

    async def render_page(self, url: str) -> RenderedPage:
        """
        Render a page and report where it ended up.

        Renderers that cannot see redirects report the requested URL.
        """
        return RenderedPage(await self.render(url), url)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()


class StaticRenderer(PageRenderer):
    """Fetches pages over plain HTTP without executing scripts."""

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        cookie: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        proxy: Optional[str] = None,
        verify_ssl: bool = True
    ):
        self.user_agent = user_agent
        self.cookie = cookie
        self.timeout = timeout
        self.proxy = proxy
        self.verify_ssl = verify_ssl
        self.logger = get_logger("renderer")

        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        if self._session:
            return

        headers = {"User-Agent": self.user_agent}
        if self.cookie:
            headers["Cookie"] = self.cookie

        self._session = aiohttp.ClientSession(
            timeout=ClientTimeout(total=self.timeout),
            headers=headers
        )

    async def stop(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def render(self, url: str) -> str:
        return (await self.render_page(url)).html

    async def render_page(self, url: str) -> RenderedPage:
        if not self._session:
            await self.start()

        kwargs = {}
        if self.proxy:
            kwargs["proxy"] = self.proxy
        if not self.verify_ssl:
            kwargs["ssl"] = False

        self.logger.debug(f"Fetching: {url}")

        try:
            async with self._session.get(url, **kwargs) as response:
                if response.status >= 400:
                    raise RenderError(f"HTTP {response.status} for {url}", url)
                html = await response.text(errors='replace')
                return RenderedPage(html, str(response.url))
        except asyncio.TimeoutError as e:
            raise RenderError(f"Timeout fetching {url}", url) from e
        except ClientError as e:
            raise RenderError(f"Error fetching {url}: {e}", url) from e


class BrowserRenderer(PageRenderer):
    """
    Renders web pages using a Playwright headless browser.

    All pages of a run share one browser context, so cookies set by the
    login flow apply to every page.
    """

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        cookie: str = "",
        timeout: int = DEFAULT_PAGE_TIMEOUT,
        headless: bool = True,
        browser_type: str = "chromium",
        login: Optional[LoginConfig] = None,
        wait_until: str = "networkidle"
    ):
        """
        Initialize the browser renderer.

        Args:
            user_agent: User agent of the browser context
            cookie: Cookie header sent with every request
            timeout: Page load timeout in milliseconds
            headless: Run browser in headless mode
            browser_type: 'chromium', 'firefox' or 'webkit'
            login: Form login performed once after the browser started
            wait_until: Event to wait for ('load', 'domcontentloaded', 'networkidle')
        """
        self.user_agent = user_agent
        self.cookie = cookie
        self.timeout = timeout
        self.headless = headless
        self.browser_type = browser_type
        self.login = login
        self.wait_until = wait_until
        self.logger = get_logger("renderer")

        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None

    async def start(self) -> None:
        """
        Start the browser and perform the login, if configured.

        Raises:
            RenderError: If the browser cannot be launched
            LoginError: If the login fails
        """
        if self._browser:
            return

        self.logger.info(f"Starting {self.browser_type} browser...")

        try:
            self._playwright = await async_playwright().start()
            engine = getattr(self._playwright, self.browser_type)

            launch_args = {"headless": self.headless}
            if self.browser_type == "chromium":
                launch_args["args"] = [
                    '--disable-blink-features=AutomationControlled',
                    '--no-sandbox',
                    '--disable-setuid-sandbox',
                    '--disable-dev-shm-usage',
                ]

            self._browser = await engine.launch(**launch_args)
            self._context = await self._browser.new_context(
                user_agent=self.user_agent,
                viewport={"width": 1920, "height": 1080},
                ignore_https_errors=True,
                extra_http_headers={"Cookie": self.cookie} if self.cookie else None,
            )
        except PlaywrightError as e:
            await self.stop()
            raise RenderError(f"Could not launch {self.browser_type}: {e}") from e

        self.logger.info("Browser started successfully")

        if self.login:
            try:
                await self._login(self.login)
            except LoginError:
                await self.stop()
                raise

    async def stop(self) -> None:
        """Stop the browser and Playwright."""
        if self._context:
            await self._context.close()
            self._context = None
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
            self.logger.info("Browser stopped")

    async def _login(self, login: LoginConfig) -> None:
        """
        Fill and submit the login form.

        Raises:
            LoginError: 'invalid_credentials' if the error element shows up
                        after submitting, 'login_failed' otherwise
        """
        page = await self._context.new_page()
        self.logger.info(f"Logging in at {login.login_url}")

        try:
            await page.goto(login.login_url, wait_until="domcontentloaded", timeout=self.timeout)

            last_selector = None
            for name, selector in login.form_fields.items():
                if name not in login.credentials:
                    raise LoginError(LoginError.LOGIN_FAILED, f"no value for field '{name}'", login.login_url)
                await page.fill(selector, login.credentials[name], timeout=self.timeout)
                last_selector = selector

            if login.submit_selector:
                await page.click(login.submit_selector, timeout=self.timeout)
            elif last_selector:
                await page.press(last_selector, "Enter")

            await page.wait_for_load_state(self.wait_until, timeout=self.timeout)

            if login.error_selector:
                error = await page.query_selector(login.error_selector)
                if error and await error.is_visible():
                    detail = (await error.inner_text()).strip()
                    raise LoginError(LoginError.INVALID_CREDENTIALS, detail, login.login_url)

        except PlaywrightTimeout as e:
            raise LoginError(LoginError.LOGIN_FAILED, f"timeout: {e}", login.login_url) from e
        except PlaywrightError as e:
            raise LoginError(LoginError.LOGIN_FAILED, str(e), login.login_url) from e
        finally:
            await page.close()

        self.logger.info("Login succeeded")

    async def render(self, url: str) -> str:
        """
        Render a page and return the final HTML content.

        Raises:
            RenderError: On navigation errors, timeouts and HTTP errors
        """
        return (await self.render_page(url)).html

    async def render_page(self, url: str) -> RenderedPage:
        if not self._context:
            await self.start()

        page: Optional[Page] = None

        try:
            page = await self._context.new_page()

            self.logger.debug(f"Rendering: {url}")
            response = await page.goto(
                url,
                wait_until=self.wait_until,
                timeout=self.timeout
            )

            if response and response.status >= 400:
                raise RenderError(f"HTTP {response.status} for {url}", url)

            html_content = await page.content()
            self.logger.debug(f"Successfully rendered: {page.url}")

            return RenderedPage(html_content, page.url or url)

        except PlaywrightTimeout as e:
            raise RenderError(f"Timeout rendering {url}", url) from e
        except PlaywrightError as e:
            raise RenderError(f"Error rendering {url}: {e}", url) from e
        finally:
            if page:
                await page.close()


def create_renderer(config: MirrorConfig) -> PageRenderer:
    """Pick the renderer matching a run configuration."""
    if config.dynamic:
        return BrowserRenderer(
            user_agent=config.user_agent,
            cookie=config.cookie,
            timeout=config.page_timeout,
            headless=config.headless,
            browser_type=config.browser,
            login=config.login
        )

    return StaticRenderer(
        user_agent=config.user_agent,
        cookie=config.cookie,
        timeout=config.timeout,
        proxy=config.proxy,
        verify_ssl=config.verify_ssl
    )


def looks_dynamic(html: str) -> bool:
    """Check whether a static page looks like a client-rendered shell."""
    if len(html) < DYNAMIC_MIN_LENGTH:
        return True
    return bool(SPA_MARKERS.search(html))


async def needs_dynamic_rendering(
    url: str,
    user_agent: str = DEFAULT_USER_AGENT,
    timeout: float = DEFAULT_TIMEOUT
) -> bool:
    """
    Guess whether a site needs the browser renderer.

    Args:
        url: Page to probe
        user_agent: User agent for the probe request
        timeout: Request timeout in seconds

    Returns:
        True if the page is short, carries single-page-app markers, or
        could not be fetched
    """
    logger = get_logger("renderer")

    try:
        async with StaticRenderer(user_agent=user_agent, timeout=timeout) as renderer:
            html = await renderer.render(url)
    except RenderError as e:
        logger.debug(f"Dynamic check failed for {url}: {e}")
        return True

    return looks_dynamic(html)
