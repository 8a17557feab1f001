"""
Crawl Orchestrator
==================
Single-worker, breadth-first crawl over one browser page.

Seeding     SingleSeed: the canonical start URL.  FixedList: every valid,
            de-duplicated entry of a URL list (no link expansion).
Dequeuing   Stop on cancellation, empty queue or reaching the page limit.
Fetching    At most ``max_retries`` extra attempts for timeout or
            connection-level errors.  Critical errors end the loop;
            anything else skips the page.
Processing  Only pages whose path passes the match patterns are saved.
Expansion   SingleSeed only, and only from pages on the seed host.  Links
            are marked visited when enqueued, so no URL is fetched twice.
Finalized   Whatever was collected is handed to the writer on every exit
            path, including an empty result set.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple

from bs4 import BeautifulSoup

from .cancellation import CancellationToken
from .errors import ConfigError, FetchError, FetchErrorKind, OutputError, ProcessingError
from .fetcher import DEFAULT_FETCH_TIMEOUT_S, WaitStrategy, fetch_page_html
from .patterns import PatternSet, should_process_content
from .processor import PageRecord, process_html
from .utils import canonicalize, is_http_url, resolve_link, same_host, try_canonicalize

logger = logging.getLogger(__name__)

_BS_PARSER = "lxml"

Fetcher = Callable[..., Awaitable[str]]
Processor = Callable[[str, str, Optional[str]], PageRecord]
Writer = Callable[[List[PageRecord]], int]


class SeedMode(str, Enum):
    SINGLE_SEED = "single_seed"
    FIXED_LIST = "fixed_list"


class TerminalStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class CrawlOutcome:
    """What a finished crawl reports back to the caller."""
    status: TerminalStatus
    records: List[PageRecord] = field(default_factory=list)
    records_written: int = 0
    error: Optional[BaseException] = None
    output_error: Optional[OutputError] = None
    stats: Dict[str, float] = field(default_factory=dict)


def read_url_list(lines: Iterable[str]) -> List[str]:
    """Non-empty, stripped lines of a URL file (``#`` lines are comments)."""
    urls = []
    for line in lines:
        entry = line.strip()
        if entry and not entry.startswith("#"):
            urls.append(entry)
    return urls


class Crawler:
    """
    Usage::

        crawler = Crawler(page, token, start_url="https://docs.example.com/")
        outcome = await crawler.crawl()
    """

    def __init__(
        self,
        page,
        token: CancellationToken,
        start_url: Optional[str] = None,
        url_list: Optional[Iterable[str]] = None,
        *,
        match_patterns: Optional[PatternSet] = None,
        follow_patterns: Optional[PatternSet] = None,
        page_limit: int = 0,
        content_selector: Optional[str] = None,
        wait_until: WaitStrategy = WaitStrategy.LOAD,
        fetch_timeout_s: float = DEFAULT_FETCH_TIMEOUT_S,
        max_retries: int = 1,
        fetcher: Optional[Fetcher] = None,
        processor: Optional[Processor] = None,
        writer: Optional[Writer] = None,
    ):
        if (start_url is None) == (url_list is None):
            raise ConfigError("exactly one of start_url or url_list is required")

        self.page = page
        self.token = token
        self.match_patterns = match_patterns or PatternSet()
        self.follow_patterns = follow_patterns or PatternSet()
        self.page_limit = max(0, page_limit)
        self.content_selector = content_selector
        self.wait_until = wait_until
        self.fetch_timeout_s = fetch_timeout_s
        self.max_retries = max(0, max_retries)
        self._fetch = fetcher or fetch_page_html
        self._process = processor or process_html
        self._write = writer

        self.queue: Deque[str] = deque()
        self.visited: Set[str] = set()
        self.results: List[PageRecord] = []
        self.stats: Dict[str, float] = {
            "pages_fetched": 0,
            "pages_saved": 0,
            "pages_skipped": 0,
            "pages_failed": 0,
            "pages_retried": 0,
            "links_enqueued": 0,
        }

        if url_list is not None:
            self.mode = SeedMode.FIXED_LIST
            self._seed_list(url_list)
        else:
            self.mode = SeedMode.SINGLE_SEED
            self._seed_single(start_url)

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def _seed_single(self, start_url: str) -> None:
        seed = canonicalize(start_url)
        if not is_http_url(seed):
            raise ConfigError(f"start URL must be an absolute http(s) URL: {start_url}")
        self.start_url = seed
        self.queue.append(seed)
        self.visited.add(seed)

    def _seed_list(self, url_list: Iterable[str]) -> None:
        for raw in url_list:
            url = try_canonicalize(raw)
            if url is None or not is_http_url(url):
                logger.warning(f"[CRAWL] Skipping invalid URL in list: {raw!r}")
                continue
            if url in self.visited:
                continue
            self.visited.add(url)
            self.queue.append(url)
        if not self.queue:
            raise ConfigError("URL list contains no valid URLs")
        self.start_url = self.queue[0]
        logger.info(f"[CRAWL] Seeded {len(self.queue)} URLs from list")

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def crawl(self) -> CrawlOutcome:
        """Run until a terminal condition, then write the results."""
        started = time.monotonic()
        logger.info("=" * 65)
        logger.info("CRAWL STARTED")
        logger.info(f"Start URL: {self.start_url} ({self.mode.value})")
        logger.info(f"Page limit: {self.page_limit or 'unlimited'}")
        logger.info("=" * 65)

        status, error = TerminalStatus.FAILED, None
        try:
            status, error = await self._run()
        finally:
            self.stats["elapsed_time"] = time.monotonic() - started
            written, output_error = self._finalize()

        logger.info(
            f"[CRAWL] Finished ({status.value}). Visited: {len(self.visited)}, "
            f"saved: {len(self.results)}"
        )
        return CrawlOutcome(
            status=status,
            records=list(self.results),
            records_written=written,
            error=error,
            output_error=output_error,
            stats=dict(self.stats),
        )

    async def _run(self) -> Tuple[TerminalStatus, Optional[BaseException]]:
        while self.queue:
            if self.token.cancelled:
                logger.info("[CRAWL] Cancelled, stopping crawl")
                return TerminalStatus.CANCELLED, None

            url = self.queue.popleft()
            if self.page_limit and len(self.results) >= self.page_limit:
                logger.info(f"[CRAWL] Page limit ({self.page_limit}) reached, stopping crawl")
                break

            logger.info(
                f"[CRAWL] Processing {url} (queue: {len(self.queue)}, results: {len(self.results)})"
            )

            try:
                html = await self._fetch_with_retry(url)
            except FetchError as exc:
                if exc.kind is FetchErrorKind.CANCELLED or self.token.cancelled:
                    logger.info(f"[CRAWL] Cancelled while fetching {url}")
                    return TerminalStatus.CANCELLED, exc
                if exc.critical:
                    logger.error(f"[CRAWL] Critical error while fetching {url}: {exc}. Stopping crawl.")
                    status = TerminalStatus.COMPLETED if self.results else TerminalStatus.FAILED
                    return status, exc
                self.stats["pages_failed"] += 1
                logger.warning(f"[CRAWL] Skipping {url} after fetch error: {exc}")
                continue
            self.stats["pages_fetched"] += 1

            if self.token.cancelled:
                logger.info(f"[CRAWL] Cancelled while fetching {url}, discarding the page")
                return TerminalStatus.CANCELLED, None

            if should_process_content(url, self.match_patterns):
                self._save(url, html)
            else:
                self.stats["pages_skipped"] += 1

            if self.mode is SeedMode.SINGLE_SEED and same_host(url, self.start_url):
                self._enqueue(self.extract_links(url, html))

        if self.token.cancelled:
            return TerminalStatus.CANCELLED, None
        return TerminalStatus.COMPLETED, None

    async def _fetch_with_retry(self, url: str) -> str:
        attempts = self.max_retries + 1
        attempt = 0
        while True:
            attempt += 1
            if self.token.cancelled:
                raise FetchError(FetchErrorKind.CANCELLED, url, "cancelled before fetch")
            try:
                return await self._fetch(
                    self.page, self.token, url, self.wait_until, self.fetch_timeout_s
                )
            except FetchError as exc:
                logger.warning(f"[FETCH] Attempt {attempt}/{attempts} failed: {exc}")
                if (exc.retryable and attempt < attempts
                        and not self.token.cancelled):
                    self.stats["pages_retried"] += 1
                    logger.info(f"[FETCH] Retrying {url}")
                    continue
                raise

    def _save(self, url: str, html: str) -> None:
        try:
            record = self._process(url, html, self.content_selector)
        except ProcessingError as exc:
            self.stats["pages_failed"] += 1
            logger.warning(f"[CRAWL] {exc}")
            return
        self.results.append(record)
        self.stats["pages_saved"] = len(self.results)
        logger.info(f"[CRAWL] Content saved for {url}. Total saved pages: {len(self.results)}")

    # ------------------------------------------------------------------
    # Link expansion
    # ------------------------------------------------------------------

    def extract_links(self, page_url: str, html: str) -> List[str]:
        """Same-host http(s) links on the page, de-duplicated, in document order,
        filtered by the follow patterns."""
        soup = BeautifulSoup(html, _BS_PARSER)
        seen: Set[str] = set()
        links: List[str] = []
        for anchor in soup.find_all("a", href=True):
            url = resolve_link(page_url, anchor["href"])
            if url is None or not is_http_url(url):
                continue
            if not same_host(url, self.start_url) or url in seen:
                continue
            seen.add(url)
            if not self.follow_patterns.allows_url(url):
                continue
            links.append(url)
        return links

    def _enqueue(self, links: Iterable[str]) -> None:
        for url in links:
            if url in self.visited:
                continue
            if self.token.cancelled:
                logger.info("[CRAWL] Cancelled, not adding more links to queue")
                break
            self.visited.add(url)
            self.queue.append(url)
            self.stats["links_enqueued"] += 1
            logger.debug(f"[CRAWL] Added to queue: {url}")

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def _finalize(self) -> Tuple[int, Optional[OutputError]]:
        if self._write is None:
            return 0, None
        try:
            return self._write(list(self.results)), None
        except OutputError as exc:
            logger.error(f"[OUTPUT] {exc}")
            return 0, exc
