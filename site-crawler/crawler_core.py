#!/usr/bin/env python3
"""
Core crawler implementation: rate gate, frontier, fetcher and worker pool

A crawl starts from one seed URL. Every admitted URL becomes a CrawlTask on
a shared queue; a fixed pool of workers pulls tasks, throttles on the global
RateGate, fetches, optionally persists, extracts links and enqueues the
links it is allowed to follow. The crawl ends when the queue is drained.
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import aiohttp

from crawler_content import (ContentExtractor, ContentTypeError, HtmlParseError,
                             MalformedReference, canonical_url, host_of, is_html,
                             normalize_url)
from crawler_main import TRACE, CrawlerConfig, CrawlerError, ResourceMonitor
from crawler_storage import PageStorage, StorageError

STATS_INTERVAL = 100


class InvalidSeedURL(CrawlerError):
    """The seed is not an absolute URL"""


class FetchError(CrawlerError):
    """A page could not be retrieved"""


class RateGate:
    """Global politeness gate shared by every worker.

    Fetch starts are spaced at least `delay` seconds apart across the whole
    crawl. The lock is held while sleeping, so the waiting worker owns the
    next slot and the others queue behind it.
    """

    def __init__(self, delay: float, logger: logging.Logger = None,
                 clock: Callable[[], float] = time.monotonic):
        self.delay = delay
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_request = clock()

    async def throttle(self):
        async with self._lock:
            elapsed = self._clock() - self._last_request
            if elapsed < self.delay:
                wait = self.delay - elapsed
                self.logger.debug(f"Sleeping for {int(wait * 1000)}ms")
                await asyncio.sleep(wait)
            self._last_request = self._clock()


class Admission(enum.Enum):
    ADMITTED = "admitted"
    DUPLICATE = "duplicate"
    TOO_LONG = "too_long"  # recorded, but must not be fetched


class URLFrontier:
    """Every normalized URL the crawl has observed"""

    def __init__(self, max_url_length: int):
        self.max_url_length = max_url_length
        self._seen: Dict[str, bool] = {}
        self._lock = asyncio.Lock()

    async def admit(self, url: str) -> Admission:
        """Membership test, insert and length check as one step.

        A new URL is always recorded; TOO_LONG only tells the caller not to
        fetch it.
        """
        async with self._lock:
            if url in self._seen:
                return Admission.DUPLICATE
            self._seen[url] = True
            if len(url) > self.max_url_length:
                return Admission.TOO_LONG
            return Admission.ADMITTED

    def __contains__(self, url: str) -> bool:
        return url in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def snapshot(self) -> List[str]:
        """All observed URLs, sorted"""
        return sorted(self._seen)


@dataclass
class PageResponse:
    url: str
    status: int
    content_type: Optional[str]
    body: bytes


class PageFetcher:
    """Single-shot GET requests over a shared aiohttp session"""

    def __init__(self, config: CrawlerConfig, logger: logging.Logger = None):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.session: Optional[aiohttp.ClientSession] = None

    async def initialize(self):
        """Create the aiohttp session"""
        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
        connector = aiohttp.TCPConnector(
            limit=100,
            limit_per_host=self.config.workers,
            ttl_dns_cache=300,
            use_dns_cache=True,
        )
        self.session = aiohttp.ClientSession(
            timeout=timeout,
            connector=connector,
            headers={'User-Agent': self.config.user_agent}
        )

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def fetch(self, url: str) -> PageResponse:
        """Fetch url once. Any transport failure raises FetchError."""
        if urlsplit(url).scheme not in ('http', 'https'):
            raise FetchError(f"Unsupported scheme: {url}")
        if self.session is None:
            await self.initialize()

        self.logger.log(TRACE, f"Fetching url: {url}")
        try:
            async with self.session.get(url, allow_redirects=True) as response:
                content_type = response.headers.get('Content-Type')
                body = await response.read()
                return PageResponse(url=url, status=response.status,
                                    content_type=content_type, body=body)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise FetchError(f"{type(e).__name__}: {e}") from e


@dataclass(frozen=True)
class CrawlTask:
    url: str
    depth: int = 0
    parent: Optional[str] = None


@dataclass(frozen=True)
class CrawlReport:
    """Final sorted URL set split by the seed's host"""
    seed: str
    urls: Tuple[str, ...]
    internal: Tuple[str, ...]
    external: Tuple[str, ...]

    @classmethod
    def from_urls(cls, seed: str, urls: List[str]) -> "CrawlReport":
        seed_host = host_of(seed)
        ordered = tuple(sorted(urls))
        internal = tuple(u for u in ordered if host_of(u) == seed_host)
        external = tuple(u for u in ordered if host_of(u) != seed_host)
        return cls(seed=seed, urls=ordered, internal=internal, external=external)


def parse_seed_url(raw: str) -> str:
    """Validate the seed and return the URL to fetch, query included"""
    try:
        parts = urlsplit(raw.strip())
    except ValueError as e:
        raise InvalidSeedURL(f"Cannot parse url: {raw}") from e
    if not parts.scheme or not parts.netloc:
        raise InvalidSeedURL(f"Cannot parse url: {raw}")
    try:
        return canonical_url(raw.strip())
    except MalformedReference as e:
        raise InvalidSeedURL(f"Cannot parse url: {raw}") from e


class WebCrawler:
    """Recursive site crawler with a bounded worker pool"""

    def __init__(self, config: CrawlerConfig, fetcher=None,
                 storage: Optional[PageStorage] = None,
                 logger: logging.Logger = None,
                 resource_monitor: Optional[ResourceMonitor] = None):
        self.config = config
        self.fetcher = fetcher
        self.storage = storage
        self.logger = logger or logging.getLogger(__name__)
        self.resource_monitor = resource_monitor or ResourceMonitor(config)

        if config.download and storage is None:
            raise CrawlerError("download enabled without a page storage")

        self.frontier: Optional[URLFrontier] = None
        self.rate_gate: Optional[RateGate] = None
        self._queue: Optional[asyncio.Queue] = None

        # Stats
        self.stats = {
            'urls_processed': 0,
            'urls_successful': 0,
            'urls_failed': 0,
            'start_time': time.time()
        }

    async def crawl(self, seed_url: str) -> CrawlReport:
        """Crawl from seed_url until no admitted URL is left unprocessed"""
        seed = parse_seed_url(seed_url)

        owns_fetcher = self.fetcher is None
        if owns_fetcher:
            self.fetcher = PageFetcher(self.config, logger=self.logger)

        self.frontier = URLFrontier(self.config.max_url_length)
        self.rate_gate = RateGate(self.config.delay, logger=self.logger)
        self._queue = asyncio.Queue()
        self.stats['start_time'] = time.time()

        try:
            # The frontier keys on the normalized seed; the fetch uses it as given
            admission = await self.frontier.admit(normalize_url(seed, seed))
            if admission is Admission.TOO_LONG or len(seed) > self.config.max_url_length:
                self.logger.warning(f"URL too long: {seed}")
            else:
                self._queue.put_nowait(CrawlTask(url=seed))

            self.logger.debug(f"Starting {self.config.workers} workers")
            workers = [asyncio.create_task(self._worker(n))
                       for n in range(self.config.workers)]
            try:
                await self._queue.join()
            finally:
                for worker in workers:
                    worker.cancel()
                await asyncio.gather(*workers, return_exceptions=True)
        finally:
            if owns_fetcher:
                await self.fetcher.close()
                self.fetcher = None

        self._log_stats()
        return CrawlReport.from_urls(seed, self.frontier.snapshot())

    async def _worker(self, worker_id: int):
        while True:
            task = await self._queue.get()
            try:
                await self.crawl_url(task)
            except Exception as e:
                self.logger.error(f"Worker {worker_id} failed on {task.url}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def crawl_url(self, task: CrawlTask):
        """Throttle, fetch, persist and extract one page, enqueueing its children"""
        url = task.url
        self.logger.log(TRACE, f"Crawling {url} (depth {task.depth}, from {task.parent})")
        await self.rate_gate.throttle()

        self.stats['urls_processed'] += 1
        if self.stats['urls_processed'] % STATS_INTERVAL == 0:
            self._log_stats()

        try:
            response = await self.fetcher.fetch(url)
        except FetchError as e:
            self.logger.error(f"Cannot request file: {url}: {e}")
            self.stats['urls_failed'] += 1
            return

        try:
            page_is_html = is_html(response.content_type)
        except ContentTypeError as e:
            self.logger.warning(f"Cannot tell if document is html: {url}: {e}")
            self.stats['urls_failed'] += 1
            return

        self.stats['urls_successful'] += 1

        if self.config.download:
            await self._save(url, page_is_html, response.body)

        if not page_is_html:
            return

        try:
            references = ContentExtractor.extract_links(response.body)
        except HtmlParseError as e:
            self.logger.warning(f"Cannot get urls from document: {url}: {e}")
            return

        for reference in references:
            await self._consider_link(task, reference)

    async def _save(self, url: str, page_is_html: bool, body: bytes):
        try:
            path = await self.storage.persist(url, page_is_html, body)
        except StorageError as e:
            # Already-existing files land here too; the page is still parsed
            self.logger.warning(f"Cannot save document: {url}: {e}")
        else:
            self.logger.debug(f"Saved {url} -> {path}")

    async def _consider_link(self, task: CrawlTask, reference: str):
        """Normalize, filter and dedup one reference; enqueue it if followable"""
        try:
            link = normalize_url(task.url, reference)
        except MalformedReference as e:
            self.logger.debug(f"Dropping link {reference!r}: {e}")
            return

        path = urlsplit(link).path
        if any(path.startswith(prefix) for prefix in self.config.exclude):
            self.logger.log(TRACE, f"Excluded url: {link}")
            return

        admission = await self.frontier.admit(link)
        if admission is Admission.DUPLICATE:
            return

        self.logger.info(f"Found url: {link}")
        if admission is Admission.TOO_LONG:
            self.logger.warning(f"URL too long: {link}")
            return
        if host_of(link) == host_of(task.url) or self.config.crawl_external:
            self.logger.log(TRACE, f"Url is internal. Crawling: {link}")
            self._queue.put_nowait(CrawlTask(url=link, depth=task.depth + 1, parent=task.url))

    def _log_stats(self):
        """Log current statistics"""
        runtime = time.time() - self.stats['start_time']
        memory_mb = self.resource_monitor.get_memory_usage_mb()
        cpu_pct = self.resource_monitor.get_cpu_percent()
        queued = self._queue.qsize() if self._queue else 0
        found = len(self.frontier) if self.frontier else 0

        self.logger.info(
            f"Stats: {self.stats['urls_processed']} processed, "
            f"{self.stats['urls_successful']} successful, "
            f"{self.stats['urls_failed']} failed, "
            f"{found} found, {queued} queued, "
            f"{memory_mb:.1f}MB RAM, {cpu_pct:.1f}% CPU, {runtime:.0f}s runtime"
        )
        if self.resource_monitor.memory_pressure():
            self.logger.warning(f"High memory usage: {memory_mb:.1f}MB")
