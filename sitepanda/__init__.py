"""
Sitepanda
=========
Site-scoped crawler that renders pages in a headless browser (Chromium or
Lightpanda) and saves their readable content as Markdown.
"""

__version__ = "0.1.3"

from .cancellation import CancellationToken, SignalCancellationSource
from .crawler import CrawlOutcome, Crawler, SeedMode, TerminalStatus
from .errors import (
    BrowserConnectionError,
    BrowserNotReady,
    ConfigError,
    FetchError,
    FetchErrorKind,
    InvalidURL,
    OutputError,
    PatternError,
    ProcessingError,
    ProvisionError,
    SessionInitError,
    SitepandaError,
)
from .patterns import PatternSet, compile_pattern, should_process_content
from .processor import PageRecord, process_html
from .run_config import ScrapeConfig
from .utils import canonicalize

__all__ = [
    "__version__",
    "BrowserConnectionError",
    "BrowserNotReady",
    "CancellationToken",
    "ConfigError",
    "CrawlOutcome",
    "Crawler",
    "FetchError",
    "FetchErrorKind",
    "InvalidURL",
    "OutputError",
    "PageRecord",
    "PatternError",
    "PatternSet",
    "ProcessingError",
    "ProvisionError",
    "ScrapeConfig",
    "SeedMode",
    "SessionInitError",
    "SignalCancellationSource",
    "SitepandaError",
    "TerminalStatus",
    "canonicalize",
    "compile_pattern",
    "process_html",
    "should_process_content",
]
