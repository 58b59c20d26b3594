"""
Tests for run-scoped state: visited pages, counters and pause/cancel.
"""

import asyncio
import threading
import unittest

from site_mirror.crawler.context import CrawlContext, DownloaderState


class TestCrawlContext(unittest.TestCase):
    def test_mark_visited_once(self):
        context = CrawlContext()
        self.assertTrue(context.mark_visited("https://example.com/"))
        self.assertFalse(context.mark_visited("https://example.com/"))
        self.assertTrue(context.is_visited("https://example.com/"))
        self.assertEqual(context.pages, ["https://example.com/"])

    def test_counters_and_summary(self):
        context = CrawlContext()
        context.record_success("https://example.com/a.css", "a.css", 100)
        context.record_success("https://example.com/b.png", "b.png", 50)
        context.record_failure("https://example.com/c.js", "HTTP 404 Not Found")
        context.record_page_error("https://example.com/x", "HTTP 500")

        summary = context.summary(1.5)

        self.assertEqual(summary.success_count, 2)
        self.assertEqual(summary.fail_count, 1)
        self.assertEqual(summary.total, 3)
        self.assertEqual(summary.downloaded_bytes, 150)
        self.assertEqual(context.resource_paths["https://example.com/b.png"], "b.png")

        data = summary.to_dict()
        self.assertEqual(data["failedResources"], [
            {"url": "https://example.com/c.js", "error": "HTTP 404 Not Found"}
        ])
        self.assertEqual(data["pageErrors"][0]["url"], "https://example.com/x")
        self.assertEqual(data["durationSeconds"], 1.5)
        self.assertFalse(data["cancelled"])

    def test_summary_reports_cancellation(self):
        context = CrawlContext()
        context.state.cancel()
        self.assertTrue(context.summary().cancelled)

    def test_concurrent_increments(self):
        context = CrawlContext()

        def worker(offset):
            for i in range(200):
                context.record_success(f"https://example.com/{offset}/{i}", "x", 1)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(context.success_count, 800)
        self.assertEqual(context.downloaded_bytes, 800)


class TestDownloaderState(unittest.IsolatedAsyncioTestCase):
    async def test_not_paused_returns_immediately(self):
        state = DownloaderState()
        await asyncio.wait_for(state.wait_if_paused(), 1)

    async def test_resume_releases_waiters(self):
        state = DownloaderState()
        state.bind()
        state.pause()

        waiters = [asyncio.ensure_future(state.wait_if_paused()) for _ in range(3)]
        await asyncio.sleep(0.05)
        self.assertFalse(any(w.done() for w in waiters))

        state.resume()
        await asyncio.wait_for(asyncio.gather(*waiters), 1)
        self.assertFalse(state.paused)

    async def test_resume_from_another_thread(self):
        state = DownloaderState()
        state.bind()
        state.pause()

        timer = threading.Timer(0.05, state.resume)
        timer.start()
        self.addCleanup(timer.cancel)

        await asyncio.wait_for(state.wait_if_paused(), 2)

    async def test_cancel_releases_paused_waiters(self):
        state = DownloaderState()
        state.bind()
        state.pause()

        waiter = asyncio.ensure_future(state.wait_if_paused())
        await asyncio.sleep(0.01)
        state.cancel()

        await asyncio.wait_for(waiter, 1)
        self.assertTrue(state.cancelled)

    async def test_pause_again_after_resume(self):
        state = DownloaderState()
        state.bind()
        state.pause()
        state.resume()
        state.pause()

        waiter = asyncio.ensure_future(state.wait_if_paused())
        await asyncio.sleep(0.05)
        self.assertFalse(waiter.done())

        state.resume()
        await asyncio.wait_for(waiter, 1)


if __name__ == "__main__":
    unittest.main()
