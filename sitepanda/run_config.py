"""
Scrape Run Configuration
========================
Single source of truth for sitepanda defaults and runtime limits.

The CLI populates a ``ScrapeConfig`` once and passes it explicitly to the
session, fetcher and crawler.  Timing constants for readiness polling and
teardown live here so tests can shrink them.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import ConfigError
from .patterns import split_pattern_args

logger = logging.getLogger(__name__)

BROWSER_CHROMIUM = "chromium"
BROWSER_LIGHTPANDA = "lightpanda"
SUPPORTED_BROWSERS = (BROWSER_CHROMIUM, BROWSER_LIGHTPANDA)

FORMAT_XML = "xml"
FORMAT_JSON = "json"
SUPPORTED_FORMATS = (FORMAT_XML, FORMAT_JSON)

BROWSER_ENV_VAR = "SITEPANDA_BROWSER"


# ---------------------------------------------------------------------------
# Canonical defaults
# ---------------------------------------------------------------------------
_DEFAULTS = {
    "browser": BROWSER_CHROMIUM,
    "output_format": FORMAT_XML,
    "page_limit": 0,                 # 0 = unlimited saved pages
    "fetch_timeout_s": 120.0,        # overall ceiling per page fetch
    "max_retries": 1,                # extra attempts for retryable fetch errors
    "headless": True,
    # External browser process readiness
    "port_poll_interval_s": 0.2,
    "port_dial_timeout_s": 0.5,
    "port_wait_timeout_s": 10.0,
    "connect_timeout_ms": 30000,     # CDP connect
    "launch_timeout_ms": 30000,      # managed chromium launch
    "probe_timeout_ms": 15000,       # about:blank health check
    "terminate_timeout_s": 5.0,
}


@dataclass
class ScrapeConfig:
    """
    Configuration for one ``sitepanda scrape`` run.

    Populate via:
      - ``ScrapeConfig(start_url=...)``            → defaults
      - ``ScrapeConfig.from_cli_args(ns)``        → from argparse Namespace
    """

    # ---- Seeds ----
    start_url: Optional[str] = None
    url_file: Optional[str] = None

    # ---- Browser ----
    browser: str = _DEFAULTS["browser"]
    headless: bool = _DEFAULTS["headless"]
    verbose_browser: bool = False

    # ---- Scoping ----
    match_patterns: List[str] = field(default_factory=list)
    follow_patterns: List[str] = field(default_factory=list)
    page_limit: int = _DEFAULTS["page_limit"]
    content_selector: Optional[str] = None

    # ---- Fetch ----
    wait_for_network_idle: bool = False
    fetch_timeout_s: float = _DEFAULTS["fetch_timeout_s"]
    max_retries: int = _DEFAULTS["max_retries"]

    # ---- Output ----
    outfile: Optional[str] = None
    output_format: str = _DEFAULTS["output_format"]
    silent: bool = False

    # ---- Session timing ----
    port_poll_interval_s: float = _DEFAULTS["port_poll_interval_s"]
    port_dial_timeout_s: float = _DEFAULTS["port_dial_timeout_s"]
    port_wait_timeout_s: float = _DEFAULTS["port_wait_timeout_s"]
    connect_timeout_ms: int = _DEFAULTS["connect_timeout_ms"]
    launch_timeout_ms: int = _DEFAULTS["launch_timeout_ms"]
    probe_timeout_ms: int = _DEFAULTS["probe_timeout_ms"]
    terminate_timeout_s: float = _DEFAULTS["terminate_timeout_s"]

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_cli_args(cls, args) -> "ScrapeConfig":
        """Build config from an argparse Namespace (``__main__.py``)."""
        browser = getattr(args, "browser", None) or default_browser()
        cfg = cls(
            start_url=getattr(args, "url", None),
            url_file=getattr(args, "url_file", None),
            browser=browser.strip().lower(),
            verbose_browser=getattr(args, "verbose_browser", False),
            match_patterns=split_pattern_args(getattr(args, "match", None)),
            follow_patterns=split_pattern_args(getattr(args, "follow_match", None)),
            page_limit=getattr(args, "limit", _DEFAULTS["page_limit"]) or 0,
            content_selector=getattr(args, "content_selector", None) or None,
            wait_for_network_idle=getattr(args, "wait_for_network_idle", False),
            outfile=getattr(args, "outfile", None) or None,
            output_format=(getattr(args, "output_format", None) or FORMAT_XML).lower(),
            silent=getattr(args, "silent", False),
        )
        # A .json outfile implies JSON regardless of --output-format.
        if cfg.outfile and cfg.outfile.lower().endswith(".json"):
            cfg.output_format = FORMAT_JSON
        return cfg

    def validate(self) -> None:
        """Raise ``ConfigError`` for inconsistent settings."""
        if self.browser not in SUPPORTED_BROWSERS:
            raise ConfigError(
                f"unsupported browser {self.browser!r} "
                f"(choose from {', '.join(SUPPORTED_BROWSERS)})"
            )
        if self.output_format not in SUPPORTED_FORMATS:
            raise ConfigError(
                f"unsupported output format {self.output_format!r} "
                f"(choose from {', '.join(SUPPORTED_FORMATS)})"
            )
        if self.start_url and self.url_file:
            raise ConfigError("cannot use --url-file together with a URL argument")
        if not self.start_url and not self.url_file:
            raise ConfigError("a start URL or --url-file is required")
        if self.page_limit < 0:
            raise ConfigError("--limit must be 0 (unlimited) or a positive number")
        if self.max_retries < 0:
            raise ConfigError("max_retries must not be negative")

    @property
    def wait_until(self) -> str:
        return "networkidle" if self.wait_for_network_idle else "load"

    def log_summary(self) -> None:
        """Emit the effective configuration to the log."""
        logger.info("[CONFIG] Effective run configuration:")
        if self.url_file:
            logger.info(f"  URL file:        {self.url_file}")
        else:
            logger.info(f"  Start URL:       {self.start_url}")
        logger.info(f"  Browser:         {self.browser}")
        logger.info(f"  Output Format:   {self.output_format}")
        logger.info(f"  Outfile:         {self.outfile or '(stdout)'}")
        logger.info(f"  Page limit:      {self.page_limit or 'unlimited'}")
        if self.match_patterns:
            logger.info(f"  Match patterns:  {self.match_patterns}")
        if self.follow_patterns:
            logger.info(f"  Follow patterns: {self.follow_patterns}")
        if self.content_selector:
            logger.info(f"  Content selector: {self.content_selector}")
        logger.info(f"  Wait until:      {self.wait_until}")


def default_browser() -> str:
    """Browser named by ``SITEPANDA_BROWSER`` if it is supported, else chromium."""
    value = os.environ.get(BROWSER_ENV_VAR, "").strip().lower()
    return value if value in SUPPORTED_BROWSERS else _DEFAULTS["browser"]
