"""
Resource downloader for fetching and saving website resources.

Uses aiohttp for concurrent asynchronous downloads with a bounded worker
pool, per-resource retries with backoff, and pause/resume/cancel.
"""

import asyncio
import os
import time
import zlib
from typing import Callable, List, Optional, Tuple

import aiohttp
import brotli
from aiohttp import ClientError, ClientTimeout

from .config import MirrorConfig
from .context import CrawlContext, DownloadResult
from .errors import ResourceFetchError
from ..utils.constants import (
    CHALLENGE_PATTERN,
    CHUNK_SIZE,
    HINT_CHALLENGE,
    HINT_FORBIDDEN,
    HINT_RATE_LIMITED,
    MAX_RETRY_DELAY,
)
from ..utils.log import get_logger
from ..utils.paths import add_extension, ensure_parent_dir, local_resource_path


ProgressCallback = Callable[[str, int, int, float, float], None]
ErrorCallback = Callable[[str], None]

# Statuses for which a bot-challenge page is plausible
CHALLENGE_STATUSES = (403, 429, 503)


def classify_error(message: str) -> str:
    """
    Append troubleshooting hints to a failure message.

    Args:
        message: Error message of the last attempt

    Returns:
        The message with anti-bot, rate-limit and challenge hints appended
    """
    decorated = message
    if '403' in message:
        decorated += HINT_FORBIDDEN
    if '429' in message:
        decorated += HINT_RATE_LIMITED
    if CHALLENGE_PATTERN.search(message):
        decorated += HINT_CHALLENGE
    return decorated


def decode_body(body: bytes, content_encoding: Optional[str]) -> bytes:
    """
    Undo a Content-Encoding.

    Args:
        body: Raw response body
        content_encoding: Header value, e.g. 'gzip' or 'gzip, br'

    Returns:
        Decoded bytes

    Raises:
        ResourceFetchError: If the body does not match its encoding
    """
    if not content_encoding:
        return body

    # Encodings are listed in the order they were applied
    codings = [c.strip().lower() for c in content_encoding.split(',') if c.strip()]

    try:
        for coding in reversed(codings):
            if coding in ('gzip', 'x-gzip'):
                body = zlib.decompress(body, 16 + zlib.MAX_WBITS)
            elif coding == 'deflate':
                try:
                    body = zlib.decompress(body)
                except zlib.error:
                    # Raw deflate stream without zlib header
                    body = zlib.decompress(body, -zlib.MAX_WBITS)
            elif coding == 'br':
                body = brotli.decompress(body)
            elif coding != 'identity':
                raise ResourceFetchError(f"Unsupported content encoding: {coding}", retryable=False)
    except (zlib.error, brotli.error) as e:
        raise ResourceFetchError(f"Corrupt {content_encoding} body: {e}") from e

    return body


class _Throughput:
    """Speed and ETA over one download batch."""

    def __init__(self, total: int):
        self.total = total
        self.started = time.monotonic()
        self.completed = 0
        self.bytes = 0

    def add(self, byte_size: int) -> None:
        self.completed += 1
        self.bytes += byte_size

    def speed_kbs(self) -> float:
        elapsed = time.monotonic() - self.started
        if elapsed <= 0:
            return 0.0
        return round(self.bytes / 1024 / elapsed, 1)

    def eta_seconds(self) -> float:
        speed = self.speed_kbs()
        if speed <= 0 or not self.completed:
            return 0.0
        average_kb = self.bytes / 1024 / self.completed
        remaining = max(self.total - self.completed, 0)
        return round(remaining * average_kb / speed, 1)


class ResourceDownloader:
    """
    Downloads page resources asynchronously.

    Every resource runs through the same state machine: attempts are made
    until one succeeds or `retry` attempts failed. At most `concurrency`
    attempts are in flight. A failure is always contained to its resource.
    """

    def __init__(
        self,
        config: MirrorConfig,
        context: CrawlContext,
        on_progress: Optional[ProgressCallback] = None,
        on_error: Optional[ErrorCallback] = None
    ):
        """
        Initialize the resource downloader.

        Args:
            config: Run configuration
            context: Shared run state (counters, pause/cancel flags)
            on_progress: Called as (url, index, total, speed_kbs, eta_s)
                         before every attempt
            on_error: Called with a message for every exhausted resource
        """
        self.config = config
        self.context = context
        self.state = context.state
        self.on_progress = on_progress
        self.on_error = on_error
        self.logger = get_logger("downloader")

    def _session_headers(self) -> dict:
        headers = {
            "User-Agent": self.config.user_agent,
            "Accept-Encoding": "gzip, deflate, br" if self.config.gzip else "identity",
        }
        if self.config.cookie:
            headers["Cookie"] = self.config.cookie
        return headers

    def create_session(self) -> aiohttp.ClientSession:
        """
        Create the HTTP session for one batch.

        Automatic decompression is off; bodies go through decode_body().
        """
        return aiohttp.ClientSession(
            timeout=ClientTimeout(total=self.config.timeout),
            headers=self._session_headers(),
            auto_decompress=False
        )

    async def download_resources(
        self,
        urls: List[str],
        base_dir: str,
        page_host: str
    ) -> List[DownloadResult]:
        """
        Download resources with bounded concurrency.

        Args:
            urls: Filtered resource URLs
            base_dir: Storage directory of the run
            page_host: Host of the page the resources belong to

        Returns:
            One DownloadResult per resource that was not abandoned by
            cancellation
        """
        if not urls:
            return []

        self.logger.info(f"Downloading {len(urls)} resources...")

        semaphore = asyncio.Semaphore(self.config.concurrency)
        throughput = _Throughput(len(urls))

        async with self.create_session() as session:
            tasks = [
                self._download_resource(
                    session, semaphore, throughput, url, index, base_dir, page_host
                )
                for index, url in enumerate(urls)
            ]
            results = await asyncio.gather(*tasks)

        finished = [r for r in results if r is not None]
        ok = sum(1 for r in finished if r.success)
        self.logger.info(
            f"Downloaded {ok} resources, {len(finished) - ok} failed"
            + (", cancelled" if self.state.cancelled else "")
        )

        return finished

    async def _download_resource(
        self,
        session: aiohttp.ClientSession,
        semaphore: asyncio.Semaphore,
        throughput: _Throughput,
        url: str,
        index: int,
        base_dir: str,
        page_host: str
    ) -> Optional[DownloadResult]:
        """
        Download a single resource, retrying on failure.

        Returns:
            DownloadResult, or None if cancellation abandoned it
        """
        if self.state.cancelled:
            return None

        local_path = local_resource_path(url, page_host)
        attempt = 0
        last_error = ""

        async with semaphore:
            while attempt < self.config.retry:
                if self.state.cancelled:
                    return None
                await self.state.wait_if_paused()
                if self.state.cancelled:
                    return None

                self._notify_progress(url, index + 1, throughput)

                try:
                    body, content_type = await self._fetch(session, url)
                    final_path = add_extension(local_path, content_type)
                    self._write_file(os.path.join(base_dir, final_path), body)
                except ResourceFetchError as e:
                    attempt += 1
                    last_error = str(e)
                    self.logger.debug(f"Attempt {attempt} failed for {url}: {last_error}")
                    if not e.retryable:
                        break
                except (ClientError, asyncio.TimeoutError, OSError) as e:
                    attempt += 1
                    last_error = str(e) or type(e).__name__
                    self.logger.debug(f"Attempt {attempt} failed for {url}: {last_error}")
                else:
                    self.context.record_success(url, final_path, len(body))
                    throughput.add(len(body))
                    self.logger.debug(f"Downloaded: {url} -> {final_path}")

                    if self.config.delay:
                        await asyncio.sleep(self.config.delay)

                    return DownloadResult(url, final_path, len(body), True)

                if attempt < self.config.retry and self.config.retry_delay:
                    backoff = self.config.retry_delay * (2 ** (attempt - 1))
                    await asyncio.sleep(min(backoff, MAX_RETRY_DELAY))

        message = classify_error(last_error)
        self.context.record_failure(url, message)
        throughput.add(0)
        self.logger.warning(f"Failed: {url} ({message})")
        if self.on_error:
            self.on_error(f"Failed: {url} ({message})")

        return DownloadResult(url, local_path, 0, False, message)

    def _notify_progress(self, url: str, current: int, throughput: _Throughput) -> None:
        if self.on_progress:
            self.on_progress(
                url,
                current,
                throughput.total,
                throughput.speed_kbs(),
                throughput.eta_seconds()
            )

    def _request_kwargs(self) -> dict:
        kwargs = {
            "allow_redirects": self.config.follow_redirects,
            "max_redirects": self.config.max_redirects,
        }
        if self.config.proxy:
            kwargs["proxy"] = self.config.proxy
        if not self.config.verify_ssl:
            kwargs["ssl"] = False
        return kwargs

    async def _fetch(
        self,
        session: aiohttp.ClientSession,
        url: str
    ) -> Tuple[bytes, str]:
        """
        Perform one GET request.

        Returns:
            (decoded body, Content-Type header)

        Raises:
            ResourceFetchError: On HTTP error status or bad body
            aiohttp.ClientError, asyncio.TimeoutError: On transport errors
        """
        async with session.get(url, **self._request_kwargs()) as response:
            if response.status >= 400:
                raise ResourceFetchError(await self._describe_http_error(response))

            body = await self._read_body(response)
            content_type = response.headers.get('Content-Type', '')
            content_encoding = response.headers.get('Content-Encoding', '')

        return decode_body(body, content_encoding), content_type

    async def _describe_http_error(self, response: aiohttp.ClientResponse) -> str:
        """Build the message for an HTTP error, flagging challenge pages."""
        message = f"HTTP {response.status} {response.reason or ''}".strip()

        if response.status in CHALLENGE_STATUSES and await self._is_challenge(response):
            message += " [cloudflare challenge]"

        return message

    async def _is_challenge(self, response: aiohttp.ClientResponse) -> bool:
        headers = response.headers
        if 'cloudflare' in headers.get('Server', '').lower() or 'cf-mitigated' in headers:
            return True

        # Compressed bodies are not inspected
        if headers.get('Content-Encoding', 'identity').lower() not in ('', 'identity'):
            return False

        snippet = await response.content.read(CHUNK_SIZE)
        return bool(CHALLENGE_PATTERN.search(snippet.decode('utf-8', errors='ignore')))

    async def _read_body(self, response: aiohttp.ClientResponse) -> bytes:
        """
        Stream the body, enforcing the size and speed limits.

        Raises:
            ResourceFetchError: If the body exceeds max_file_size
        """
        max_size = self.config.max_file_size
        speed_limit = self.config.speed_limit * 1024

        if max_size and response.content_length and response.content_length > max_size:
            raise ResourceFetchError(
                f"File size {response.content_length} exceeds limit of {max_size} bytes",
                retryable=False
            )

        chunks = []
        received = 0
        started = time.monotonic()

        async for chunk in response.content.iter_chunked(CHUNK_SIZE):
            received += len(chunk)
            if max_size and received > max_size:
                raise ResourceFetchError(
                    f"File exceeds limit of {max_size} bytes",
                    retryable=False
                )
            chunks.append(chunk)

            if speed_limit:
                expected = received / speed_limit
                elapsed = time.monotonic() - started
                if expected > elapsed:
                    await asyncio.sleep(expected - elapsed)

        return b''.join(chunks)

    def _write_file(self, path: str, content: bytes) -> None:
        """Write a file atomically so no partial file is left behind."""
        ensure_parent_dir(path)
        temp_path = f"{path}.part"

        with open(temp_path, 'wb') as f:
            f.write(content)

        os.replace(temp_path, path)

    def save_page(self, path: str, html: str) -> bool:
        """
        Save rewritten HTML to a local file.

        Args:
            path: Local file path
            html: HTML content to save

        Returns:
            True if successful, False otherwise
        """
        try:
            self._write_file(path, html.encode('utf-8'))
        except OSError as e:
            self.logger.error(f"Error saving page {path}: {e}")
            return False

        self.logger.debug(f"Saved page: {path}")
        return True
