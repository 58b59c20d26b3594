"""
Tests for the resource downloader.

Network behavior runs against a local aiohttp server.
"""

import asyncio
import gzip
import os
import shutil
import tempfile
import unittest
import zlib
from collections import Counter

import brotli
from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase

from site_mirror.crawler.config import MirrorConfig
from site_mirror.crawler.context import CrawlContext
from site_mirror.crawler.downloader import ResourceDownloader, classify_error, decode_body
from site_mirror.crawler.errors import ResourceFetchError
from site_mirror.utils.constants import HINT_CHALLENGE, HINT_FORBIDDEN, HINT_RATE_LIMITED


def make_config(tmp, **overrides):
    options = dict(output_dir=tmp, delay=0, retry_delay=0)
    options.update(overrides)
    return MirrorConfig(**options).validate()


class TestClassifyError(unittest.TestCase):
    def test_hints(self):
        self.assertEqual(classify_error("HTTP 403 Forbidden"), "HTTP 403 Forbidden" + HINT_FORBIDDEN)
        self.assertEqual(classify_error("HTTP 429 Too Many Requests"), "HTTP 429 Too Many Requests" + HINT_RATE_LIMITED)
        self.assertTrue(classify_error("Captcha page").endswith(HINT_CHALLENGE))
        self.assertEqual(classify_error("Connection reset"), "Connection reset")

    def test_challenge_marker_gets_both_hints(self):
        message = classify_error("HTTP 403 Forbidden [cloudflare challenge]")
        self.assertIn(HINT_FORBIDDEN, message)
        self.assertIn(HINT_CHALLENGE, message)


class TestDecodeBody(unittest.TestCase):
    def test_identity(self):
        self.assertEqual(decode_body(b"plain", None), b"plain")
        self.assertEqual(decode_body(b"plain", "identity"), b"plain")

    def test_gzip_deflate_and_brotli(self):
        self.assertEqual(decode_body(gzip.compress(b"data"), "gzip"), b"data")
        self.assertEqual(decode_body(zlib.compress(b"data"), "deflate"), b"data")
        raw = zlib.compressobj(wbits=-zlib.MAX_WBITS)
        raw_deflate = raw.compress(b"data") + raw.flush()
        self.assertEqual(decode_body(raw_deflate, "deflate"), b"data")
        self.assertEqual(decode_body(brotli.compress(b"data"), "br"), b"data")

    def test_stacked_encodings(self):
        body = brotli.compress(gzip.compress(b"data"))
        self.assertEqual(decode_body(body, "gzip, br"), b"data")

    def test_corrupt_body(self):
        with self.assertRaises(ResourceFetchError):
            decode_body(b"not gzip", "gzip")

    def test_unsupported_encoding(self):
        with self.assertRaises(ResourceFetchError) as cm:
            decode_body(b"x", "compress")
        self.assertFalse(cm.exception.retryable)


class TestDownloaderNetwork(AioHTTPTestCase):
    async def get_application(self):
        self.hits = Counter()

        @web.middleware
        async def count_hits(request, handler):
            self.hits[request.path] += 1
            return await handler(request)

        async def style(request):
            return web.Response(text="body { color: red; }", content_type="text/css")

        async def forbidden(request):
            return web.Response(status=403, text="Forbidden")

        async def limited(request):
            return web.Response(status=429, text="Slow down")

        async def challenge(request):
            return web.Response(status=403, text="<title>Just a moment...</title> Cloudflare")

        async def gzipped(request):
            return web.Response(
                body=gzip.compress(b"hello gzip"),
                content_type="text/plain",
                headers={"Content-Encoding": "gzip"}
            )

        async def brotlied(request):
            return web.Response(
                body=brotli.compress(b"hello brotli"),
                content_type="text/plain",
                headers={"Content-Encoding": "br"}
            )

        async def logo(request):
            return web.Response(body=b"\x89PNG fake", content_type="image/png")

        async def flaky(request):
            if self.hits[request.path] < 3:
                return web.Response(status=500, text="oops")
            return web.Response(body=b"finally", content_type="image/png")

        async def big(request):
            return web.Response(body=b"x" * 4096, content_type="application/octet-stream")

        async def echo_headers(request):
            text = f"{request.headers.get('User-Agent')}|{request.headers.get('Cookie')}"
            return web.Response(text=text, content_type="text/plain")

        app = web.Application(middlewares=[count_hits])
        app.router.add_get("/style.css", style)
        app.router.add_get("/forbidden.png", forbidden)
        app.router.add_get("/limited.js", limited)
        app.router.add_get("/challenge.png", challenge)
        app.router.add_get("/gzip.txt", gzipped)
        app.router.add_get("/br.txt", brotlied)
        app.router.add_get("/logo", logo)
        app.router.add_get("/flaky.png", flaky)
        app.router.add_get("/big.bin", big)
        app.router.add_get("/headers.txt", echo_headers)
        return app

    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.tmp = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tmp, True)
        self.context = CrawlContext()
        self.errors = []

    def url(self, path):
        return str(self.server.make_url(path))

    def downloader(self, **overrides):
        return ResourceDownloader(
            make_config(self.tmp, **overrides),
            self.context,
            on_error=self.errors.append
        )

    async def download(self, *paths, **overrides):
        return await self.downloader(**overrides).download_resources(
            [self.url(p) for p in paths], self.tmp, self.server.host
        )

    def read(self, relative_path):
        with open(os.path.join(self.tmp, relative_path), "rb") as f:
            return f.read()

    async def test_successful_download(self):
        results = await self.download("/style.css")

        self.assertEqual(len(results), 1)
        self.assertTrue(results[0].success)
        self.assertEqual(results[0].local_path, "style.css")
        self.assertEqual(self.read("style.css"), b"body { color: red; }")
        self.assertEqual(self.context.success_count, 1)
        self.assertEqual(self.context.downloaded_bytes, len(b"body { color: red; }"))
        self.assertFalse(os.path.exists(os.path.join(self.tmp, "style.css.part")))

    async def test_forbidden_fails_once_after_all_attempts(self):
        results = await self.download("/forbidden.png", retry=3)

        self.assertEqual(self.hits["/forbidden.png"], 3)
        self.assertFalse(results[0].success)
        self.assertEqual(self.context.fail_count, 1)
        self.assertEqual(len(self.context.failed_resources), 1)

        error = self.context.failed_resources[0].error
        self.assertIn("HTTP 403", error)
        self.assertTrue(error.endswith(HINT_FORBIDDEN))
        self.assertEqual(self.errors, [f"Failed: {self.url('/forbidden.png')} ({error})"])

    async def test_rate_limited_hint(self):
        await self.download("/limited.js", retry=2)
        self.assertEqual(self.hits["/limited.js"], 2)
        self.assertIn(HINT_RATE_LIMITED, self.context.failed_resources[0].error)

    async def test_challenge_page_is_flagged(self):
        await self.download("/challenge.png", retry=1)
        error = self.context.failed_resources[0].error
        self.assertIn("[cloudflare challenge]", error)
        self.assertIn(HINT_CHALLENGE, error)

    async def test_content_encodings_are_decoded(self):
        await self.download("/gzip.txt", "/br.txt")
        self.assertEqual(self.read("gzip.txt"), b"hello gzip")
        self.assertEqual(self.read("br.txt"), b"hello brotli")

    async def test_extension_is_appended(self):
        results = await self.download("/logo")
        self.assertEqual(results[0].local_path, "logo.png")
        self.assertEqual(self.read("logo.png"), b"\x89PNG fake")
        self.assertEqual(self.context.resource_paths[self.url("/logo")], "logo.png")

    async def test_retry_until_success(self):
        results = await self.download("/flaky.png", retry=3)
        self.assertTrue(results[0].success)
        self.assertEqual(self.hits["/flaky.png"], 3)
        self.assertEqual(self.context.fail_count, 0)

    async def test_oversized_file_is_not_retried(self):
        results = await self.download("/big.bin", retry=3, max_file_size=1024)
        self.assertFalse(results[0].success)
        self.assertEqual(self.hits["/big.bin"], 1)
        self.assertIn("exceeds limit", results[0].error)
        self.assertFalse(os.path.exists(os.path.join(self.tmp, "big.bin")))

    async def test_user_agent_and_cookie_are_sent(self):
        await self.download("/headers.txt", user_agent="mirror-test", cookie="session=abc")
        self.assertEqual(self.read("headers.txt"), b"mirror-test|session=abc")

    async def test_mixed_batch_continues_past_failures(self):
        results = await self.download("/forbidden.png", "/style.css", "/logo", retry=1)
        self.assertEqual(len(results), 3)
        self.assertEqual(self.context.success_count, 2)
        self.assertEqual(self.context.fail_count, 1)

    async def test_progress_callback(self):
        calls = []
        downloader = ResourceDownloader(
            make_config(self.tmp),
            self.context,
            on_progress=lambda *args: calls.append(args)
        )
        await downloader.download_resources(
            [self.url("/style.css"), self.url("/logo")], self.tmp, self.server.host
        )

        self.assertEqual(len(calls), 2)
        self.assertEqual({c[0] for c in calls}, {self.url("/style.css"), self.url("/logo")})
        self.assertTrue(all(c[2] == 2 for c in calls))


class SlowDownloader(ResourceDownloader):
    """Downloader whose requests are simulated."""

    def __init__(self, *args, latency=0.05, on_fetch=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.latency = latency
        self.on_fetch = on_fetch
        self.fetched = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def _fetch(self, session, url):
        self.fetched.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.on_fetch:
                self.on_fetch(url)
            await asyncio.sleep(self.latency)
            return b"content", "text/plain"
        finally:
            self.in_flight -= 1


class TestDownloaderScheduling(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.tmp, True)
        self.context = CrawlContext()
        self.urls = [f"https://example.com/r{i}.txt" for i in range(5)]

    def downloader(self, **kwargs):
        config = make_config(self.tmp, concurrency=kwargs.pop("concurrency", 2))
        return SlowDownloader(config, self.context, **kwargs)

    async def test_concurrency_is_bounded(self):
        downloader = self.downloader(concurrency=2)
        results = await downloader.download_resources(self.urls, self.tmp, "example.com")

        self.assertEqual(len(results), 5)
        self.assertEqual(downloader.max_in_flight, 2)
        for i in range(5):
            self.assertTrue(os.path.exists(os.path.join(self.tmp, f"r{i}.txt")))

    async def test_pause_blocks_attempts_until_resume(self):
        downloader = self.downloader()
        self.context.state.pause()

        task = asyncio.ensure_future(
            downloader.download_resources(self.urls, self.tmp, "example.com")
        )
        await asyncio.sleep(0.1)
        self.assertEqual(downloader.fetched, [])
        self.assertFalse(task.done())

        self.context.state.resume()
        results = await asyncio.wait_for(task, 5)

        self.assertEqual(len(results), 5)
        self.assertEqual(self.context.success_count, 5)

    async def test_pause_mid_batch(self):
        def pause_after_first(url):
            if len(downloader.fetched) == 1:
                self.context.state.pause()

        downloader = self.downloader(concurrency=1, on_fetch=pause_after_first)
        task = asyncio.ensure_future(
            downloader.download_resources(self.urls, self.tmp, "example.com")
        )
        await asyncio.sleep(0.2)
        self.assertEqual(len(downloader.fetched), 1)

        self.context.state.resume()
        await asyncio.wait_for(task, 5)
        self.assertEqual(len(downloader.fetched), 5)

    async def test_cancel_stops_further_attempts(self):
        def cancel_on_first(url):
            self.context.state.cancel()

        downloader = self.downloader(concurrency=1, on_fetch=cancel_on_first)
        results = await downloader.download_resources(self.urls, self.tmp, "example.com")

        self.assertEqual(len(downloader.fetched), 1)
        self.assertEqual(len(results), 1)
        self.assertEqual(self.context.fail_count, 0)

    async def test_cancel_releases_paused_batch(self):
        downloader = self.downloader()
        self.context.state.pause()

        task = asyncio.ensure_future(
            downloader.download_resources(self.urls, self.tmp, "example.com")
        )
        await asyncio.sleep(0.05)
        self.context.state.cancel()

        results = await asyncio.wait_for(task, 5)
        self.assertEqual(results, [])
        self.assertEqual(downloader.fetched, [])

    async def test_empty_batch(self):
        self.assertEqual(await self.downloader().download_resources([], self.tmp, "example.com"), [])

    def test_save_page(self):
        downloader = self.downloader()
        path = os.path.join(self.tmp, "index.html")
        self.assertTrue(downloader.save_page(path, "<html>é</html>"))
        with open(path, encoding="utf-8") as f:
            self.assertEqual(f.read(), "<html>é</html>")


if __name__ == "__main__":
    unittest.main()
