"""
Run-scoped shared state.

A CrawlContext is created per run and handed to every component that
reads or mutates shared state: the crawl driver (visited pages), the
filter (resource fingerprints) and the downloader workers (counters,
failures). DownloaderState carries the pause/cancel flags that the
control surface flips, possibly from another thread.
"""

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set


@dataclass
class DownloadResult:
    """Outcome of one resource download."""

    url: str
    local_path: str
    byte_size: int = 0
    success: bool = False
    error: Optional[str] = None


@dataclass
class FailedResource:
    """A URL that could not be mirrored, with the reason."""

    url: str
    error: str

    def to_dict(self) -> Dict[str, str]:
        return {'url': self.url, 'error': self.error}


@dataclass
class CrawlSummary:
    """Results of a mirror run."""

    success_count: int = 0
    fail_count: int = 0
    downloaded_bytes: int = 0
    failed_resources: List[FailedResource] = field(default_factory=list)
    pages: List[str] = field(default_factory=list)
    page_errors: List[FailedResource] = field(default_factory=list)
    duration_seconds: float = 0.0
    cancelled: bool = False

    @property
    def total(self) -> int:
        return self.success_count + self.fail_count

    def to_dict(self) -> Dict:
        return {
            'successCount': self.success_count,
            'failCount': self.fail_count,
            'downloadedBytes': self.downloaded_bytes,
            'failedResources': [f.to_dict() for f in self.failed_resources],
            'pages': list(self.pages),
            'pageErrors': [f.to_dict() for f in self.page_errors],
            'durationSeconds': round(self.duration_seconds, 2),
            'cancelled': self.cancelled,
        }


class DownloaderState:
    """
    Pause and cancel flags shared by every worker of a run.

    Workers call wait_if_paused() before each attempt. pause(), resume()
    and cancel() may be called from any thread; waiters are released on
    the event loop that last called bind().
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._paused = False
        self._cancelled = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._resume_event: Optional[asyncio.Event] = None

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def bind(self) -> None:
        """Attach to the running event loop. Must be called from inside it."""
        with self._lock:
            self._loop = asyncio.get_running_loop()
            self._resume_event = asyncio.Event()

    def pause(self) -> None:
        with self._lock:
            self._paused = True

    def resume(self) -> None:
        with self._lock:
            self._paused = False
        self._wake()

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
        # Paused workers must observe the cancellation
        self._wake()

    def _wake(self) -> None:
        loop, event = self._loop, self._resume_event
        if loop is None or event is None or loop.is_closed():
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            event.set()
        else:
            loop.call_soon_threadsafe(event.set)

    async def wait_if_paused(self) -> None:
        """Suspend until resumed or cancelled; returns at once if not paused."""
        if self._loop is not asyncio.get_running_loop():
            self.bind()

        while self._paused and not self._cancelled:
            # Clearing and waiting happen without a suspension point in
            # between, so a wake-up scheduled by resume() cannot be lost.
            self._resume_event.clear()
            await self._resume_event.wait()


class CrawlContext:
    """
    Shared state of one run: visited pages, resource fingerprints,
    counters and failures.

    Mutations take a lock that is never held across an await, so the
    web panel can read counters from its own thread.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._visited: Set[str] = set()
        self._fingerprints: Set[str] = set()

        self.pages: List[str] = []
        self.page_files: Dict[str, str] = {}
        self.resource_paths: Dict[str, str] = {}

        self.success_count = 0
        self.fail_count = 0
        self.downloaded_bytes = 0
        self.failed_resources: List[FailedResource] = []
        self.page_errors: List[FailedResource] = []

        self.state = DownloaderState()

    @property
    def visited(self) -> Set[str]:
        with self._lock:
            return set(self._visited)

    def mark_visited(self, url: str) -> bool:
        """
        Record a page visit.

        Returns:
            True if the URL was not visited before, False otherwise
        """
        with self._lock:
            if url in self._visited:
                return False
            self._visited.add(url)
            self.pages.append(url)
            return True

    def is_visited(self, url: str) -> bool:
        with self._lock:
            return url in self._visited

    def add_fingerprint(self, fingerprint: str) -> bool:
        """
        Record a resource fingerprint.

        Returns:
            True if it is new to this run, False if already seen
        """
        with self._lock:
            if fingerprint in self._fingerprints:
                return False
            self._fingerprints.add(fingerprint)
            return True

    def record_page(self, url: str, filename: str) -> None:
        with self._lock:
            self.page_files[url] = filename

    def record_page_error(self, url: str, error: str) -> None:
        with self._lock:
            self.page_errors.append(FailedResource(url, error))

    def record_success(self, url: str, local_path: str, byte_size: int) -> None:
        with self._lock:
            self.success_count += 1
            self.downloaded_bytes += byte_size
            self.resource_paths[url] = local_path

    def record_failure(self, url: str, error: str) -> None:
        with self._lock:
            self.fail_count += 1
            self.failed_resources.append(FailedResource(url, error))

    def summary(self, duration_seconds: float = 0.0) -> CrawlSummary:
        with self._lock:
            return CrawlSummary(
                success_count=self.success_count,
                fail_count=self.fail_count,
                downloaded_bytes=self.downloaded_bytes,
                failed_resources=list(self.failed_resources),
                pages=list(self.pages),
                page_errors=list(self.page_errors),
                duration_seconds=duration_seconds,
                cancelled=self.state.cancelled
            )
