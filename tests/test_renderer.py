"""
Tests for page renderers and the dynamic-site heuristic.
"""

import unittest
from unittest.mock import AsyncMock, MagicMock

from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase
from playwright.async_api import TimeoutError as PlaywrightTimeout

from site_mirror.crawler.config import LoginConfig, MirrorConfig
from site_mirror.crawler.errors import LoginError, RenderError
from site_mirror.crawler.renderer import (
    BrowserRenderer,
    StaticRenderer,
    create_renderer,
    looks_dynamic,
    needs_dynamic_rendering,
)


STATIC_PAGE = "<html><body>" + "Static content" * 1000 + "</body></html>"
SPA_PAGE = '<div id="app"></div><script src="/_next/static/chunk.js"></script>'


class TestLooksDynamic(unittest.TestCase):
    def test_short_page(self):
        self.assertTrue(looks_dynamic("<html><body>Loading...</body></html>"))

    def test_long_static_page(self):
        self.assertFalse(looks_dynamic(STATIC_PAGE))

    def test_markers_in_long_page(self):
        for marker in (
            '<div id="root"></div>',
            '<app-root></app-root>',
            '<html ng-app="shop">',
            '<script>window.__NUXT__={}</script>',
            '<script id="__NEXT_DATA__" type="application/json">{}</script>',
            '<script src="/static/js/main.1a2b3c4d.js"></script>',
        ):
            self.assertTrue(looks_dynamic(STATIC_PAGE + marker), marker)


class TestStaticRendering(AioHTTPTestCase):
    async def get_application(self):
        async def static(request):
            return web.Response(text=STATIC_PAGE, content_type="text/html")

        async def spa(request):
            return web.Response(text=SPA_PAGE * 200, content_type="text/html")

        async def cookie(request):
            return web.Response(text=request.headers.get("Cookie", ""), content_type="text/html")

        async def redirect(request):
            raise web.HTTPFound("/docs/")

        app = web.Application()
        app.router.add_get("/static", static)
        app.router.add_get("/spa", spa)
        app.router.add_get("/cookie", cookie)
        app.router.add_get("/docs", redirect)
        app.router.add_get("/docs/", static)
        return app

    def url(self, path):
        return str(self.server.make_url(path))

    async def test_render_returns_html(self):
        async with StaticRenderer() as renderer:
            html = await renderer.render(self.url("/static"))
        self.assertEqual(html, STATIC_PAGE)

    async def test_cookie_is_sent(self):
        async with StaticRenderer(cookie="sid=42") as renderer:
            self.assertEqual(await renderer.render(self.url("/cookie")), "sid=42")

    async def test_render_page_reports_redirect_target(self):
        async with StaticRenderer() as renderer:
            page = await renderer.render_page(self.url("/docs"))
        self.assertEqual(page.url, self.url("/docs/"))
        self.assertEqual(page.html, STATIC_PAGE)

    async def test_http_error_raises(self):
        async with StaticRenderer() as renderer:
            with self.assertRaises(RenderError) as cm:
                await renderer.render(self.url("/missing"))
        self.assertIn("HTTP 404", str(cm.exception))
        self.assertEqual(cm.exception.url, self.url("/missing"))

    async def test_connection_error_raises(self):
        async with StaticRenderer(timeout=2) as renderer:
            with self.assertRaises(RenderError):
                await renderer.render("http://127.0.0.1:1/")

    async def test_needs_dynamic_rendering(self):
        self.assertFalse(await needs_dynamic_rendering(self.url("/static")))
        self.assertTrue(await needs_dynamic_rendering(self.url("/spa")))

    async def test_failed_probe_counts_as_dynamic(self):
        self.assertTrue(await needs_dynamic_rendering(self.url("/missing")))


def make_page():
    page = MagicMock()
    page.goto = AsyncMock()
    page.fill = AsyncMock()
    page.click = AsyncMock()
    page.press = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.query_selector = AsyncMock(return_value=None)
    page.content = AsyncMock(return_value="<html>rendered</html>")
    page.close = AsyncMock()
    page.url = "https://example.com/"
    return page


class TestBrowserRenderer(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.page = make_page()
        self.login = LoginConfig(
            login_url="https://example.com/login",
            form_fields={"username": "#user", "password": "#pass"},
            credentials={"username": "alice", "password": "secret"},
            submit_selector="button[type=submit]",
            error_selector=".error"
        )
        self.renderer = BrowserRenderer(login=self.login)
        self.renderer._context = MagicMock()
        self.renderer._context.new_page = AsyncMock(return_value=self.page)

    async def test_render(self):
        self.page.goto.return_value = MagicMock(status=200)
        html = await self.renderer.render("https://example.com/")
        self.assertEqual(html, "<html>rendered</html>")
        self.page.close.assert_awaited_once()

    async def test_render_page_reports_final_url(self):
        self.page.goto.return_value = MagicMock(status=200)
        self.page.url = "https://example.com/docs/"
        page = await self.renderer.render_page("https://example.com/docs")
        self.assertEqual(page.url, "https://example.com/docs/")
        self.assertEqual(page.html, "<html>rendered</html>")

    async def test_render_http_error(self):
        self.page.goto.return_value = MagicMock(status=500)
        with self.assertRaises(RenderError):
            await self.renderer.render("https://example.com/")
        self.page.close.assert_awaited_once()

    async def test_render_timeout(self):
        self.page.goto.side_effect = PlaywrightTimeout("Timeout 30000ms exceeded")
        with self.assertRaises(RenderError) as cm:
            await self.renderer.render("https://example.com/slow")
        self.assertIn("Timeout", str(cm.exception))

    async def test_login_fills_and_submits(self):
        await self.renderer._login(self.login)

        self.page.fill.assert_any_await("#user", "alice", timeout=self.renderer.timeout)
        self.page.fill.assert_any_await("#pass", "secret", timeout=self.renderer.timeout)
        self.page.click.assert_awaited_once_with("button[type=submit]", timeout=self.renderer.timeout)
        self.page.close.assert_awaited_once()

    async def test_login_without_submit_selector_presses_enter(self):
        self.login.submit_selector = None
        await self.renderer._login(self.login)
        self.page.press.assert_awaited_once_with("#pass", "Enter")

    async def test_rejected_credentials(self):
        error = MagicMock()
        error.is_visible = AsyncMock(return_value=True)
        error.inner_text = AsyncMock(return_value=" Wrong password ")
        self.page.query_selector.return_value = error

        with self.assertRaises(LoginError) as cm:
            await self.renderer._login(self.login)

        self.assertEqual(cm.exception.reason, LoginError.INVALID_CREDENTIALS)
        self.assertIn("Wrong password", str(cm.exception))

    async def test_login_timeout(self):
        self.page.goto.side_effect = PlaywrightTimeout("Timeout 30000ms exceeded")

        with self.assertRaises(LoginError) as cm:
            await self.renderer._login(self.login)

        self.assertEqual(cm.exception.reason, LoginError.LOGIN_FAILED)
        self.assertIsInstance(cm.exception, RenderError)

    async def test_missing_credential(self):
        self.login.credentials = {"username": "alice"}

        with self.assertRaises(LoginError) as cm:
            await self.renderer._login(self.login)

        self.assertEqual(cm.exception.reason, LoginError.LOGIN_FAILED)


class TestCreateRenderer(unittest.TestCase):
    def test_static_by_default(self):
        renderer = create_renderer(MirrorConfig(cookie="a=b"))
        self.assertIsInstance(renderer, StaticRenderer)
        self.assertEqual(renderer.cookie, "a=b")

    def test_browser_when_dynamic(self):
        renderer = create_renderer(MirrorConfig(dynamic=True, browser="firefox", headless=False))
        self.assertIsInstance(renderer, BrowserRenderer)
        self.assertEqual(renderer.browser_type, "firefox")
        self.assertFalse(renderer.headless)


if __name__ == "__main__":
    unittest.main()
