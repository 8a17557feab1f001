"""
Scrape Run
==========
Wires one ``sitepanda scrape`` invocation together:

    config → provision browser → open session → crawl → write → teardown

All configuration errors (bad URL, bad pattern, empty URL file) surface
before any browser is started.  Session teardown and provisioning cleanup
run exactly once whatever the exit path.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Awaitable, Callable, Dict, List, Optional, TextIO

from .browser import BrowserSession, open_session
from .cancellation import CancellationToken, SignalCancellationSource
from .crawler import Crawler, TerminalStatus, read_url_list
from .errors import ConfigError
from .fetcher import WaitStrategy
from .output import write_results
from .patterns import PatternSet
from .provisioning import LocalProvisioner, Provisioner
from .run_config import ScrapeConfig

logger = logging.getLogger(__name__)

SessionFactory = Callable[[ScrapeConfig, Optional[str]], Awaitable[BrowserSession]]


@dataclass
class ScrapeOutcome:
    status: TerminalStatus
    records_written: int = 0
    error: Optional[BaseException] = None
    stats: Dict[str, float] = field(default_factory=dict)


def load_url_file(path: str) -> List[str]:
    try:
        with open(path, encoding="utf-8") as fh:
            urls = read_url_list(fh)
    except OSError as exc:
        raise ConfigError(f"cannot read URL file {path}: {exc}") from exc
    if not urls:
        raise ConfigError(f"no URLs found in URL file {path}")
    logger.info(f"[SCRAPE] Read {len(urls)} URLs from {path}")
    return urls


def build_crawler(config: ScrapeConfig, token: CancellationToken,
                  stream: Optional[TextIO] = None) -> Crawler:
    """Validate everything the crawl needs; no browser is touched."""
    url_list = load_url_file(config.url_file) if config.url_file else None
    return Crawler(
        None,
        token,
        start_url=None if url_list is not None else config.start_url,
        url_list=url_list,
        match_patterns=PatternSet(config.match_patterns),
        follow_patterns=PatternSet(config.follow_patterns),
        page_limit=config.page_limit,
        content_selector=config.content_selector,
        wait_until=WaitStrategy.from_flag(config.wait_for_network_idle),
        fetch_timeout_s=config.fetch_timeout_s,
        max_retries=config.max_retries,
        writer=partial(
            write_results,
            outfile=config.outfile,
            output_format=config.output_format,
            stream=stream,
        ),
    )


async def run_async(
    config: ScrapeConfig,
    provisioner: Optional[Provisioner] = None,
    session_factory: Optional[SessionFactory] = None,
    token: Optional[CancellationToken] = None,
    handle_signals: bool = True,
    stream: Optional[TextIO] = None,
) -> ScrapeOutcome:
    config.validate()
    token = token or CancellationToken()
    crawler = build_crawler(config, token, stream)

    provisioner = provisioner or LocalProvisioner()
    session_factory = session_factory or open_session
    executable_path, cleanup_provision = provisioner.prepare(config.browser)

    signals = SignalCancellationSource(token) if handle_signals else contextlib.nullcontext()
    session: Optional[BrowserSession] = None
    # Signal handlers cover teardown; signals during cleanup only log.
    with signals:
        try:
            session = await session_factory(config, executable_path)
            crawler.page = session.page
            outcome = await crawler.crawl()
            if outcome.error is not None and outcome.status is not TerminalStatus.CANCELLED:
                session.dump_diagnostics(f"crawl stopped: {outcome.error}")
        finally:
            if session is not None:
                await session.cleanup()
            cleanup_provision()

    return ScrapeOutcome(
        status=outcome.status,
        records_written=outcome.records_written,
        error=outcome.error,
        stats=outcome.stats,
    )


def run(config: ScrapeConfig, **kwargs) -> ScrapeOutcome:
    """Sync wrapper around ``run_async``."""
    return asyncio.run(run_async(config, **kwargs))
