"""
Error Taxonomy
==============
Every failure raised by sitepanda derives from ``SitepandaError``.

Pre-crawl failures (configuration, provisioning, session startup) are fatal.
Failures during the crawl are classified by the orchestrator: fetch errors
carry a ``FetchErrorKind`` that decides retry and criticality, processing
errors only skip the page, and output errors are logged at finalization.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class SitepandaError(Exception):
    """Base class for all sitepanda errors."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigError(SitepandaError):
    """Invalid user-supplied configuration (URL, pattern, flag combination)."""


class InvalidURL(ConfigError):
    """A URL could not be canonicalized."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"invalid URL {url!r}: {reason}")


class PatternError(ConfigError):
    """A glob pattern failed to compile."""

    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"invalid pattern {pattern!r}: {reason}")


# ---------------------------------------------------------------------------
# Provisioning and session startup
# ---------------------------------------------------------------------------

class ProvisionError(SitepandaError):
    """The browser executable is missing, unusable, or could not be installed."""


class SessionInitError(SitepandaError):
    """The browser session could not be brought to a usable state."""


class BrowserNotReady(SessionInitError):
    """The external browser process never started listening on its port."""


class BrowserConnectionError(SessionInitError):
    """Connecting to, or launching, the automation endpoint failed."""


# ---------------------------------------------------------------------------
# Crawl-time errors
# ---------------------------------------------------------------------------

class FetchErrorKind(str, Enum):
    """Closed set of reasons a page fetch can fail."""

    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    NAVIGATION = "navigation"
    EMPTY_CONTENT = "empty_content"
    PAGE_CLOSED = "page_closed"
    BROWSER_DISCONNECTED = "browser_disconnected"
    TARGET_CLOSED = "target_closed"

    @property
    def connection_level(self) -> bool:
        """The automation connection itself is gone."""
        return self in (
            FetchErrorKind.PAGE_CLOSED,
            FetchErrorKind.BROWSER_DISCONNECTED,
            FetchErrorKind.TARGET_CLOSED,
        )

    @property
    def retryable(self) -> bool:
        return self is FetchErrorKind.TIMEOUT or self.connection_level

    @property
    def critical(self) -> bool:
        """Errors after which the crawl loop must stop."""
        return self is FetchErrorKind.CANCELLED or self.connection_level


class FetchError(SitepandaError):
    """A page could not be fetched."""

    def __init__(self, kind: FetchErrorKind, url: str, detail: str = "",
                 cause: Optional[BaseException] = None):
        self.kind = kind
        self.url = url
        self.detail = detail
        self.cause = cause
        message = f"[{kind.value}] {url}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    @property
    def critical(self) -> bool:
        return self.kind.critical

    @property
    def connection_level(self) -> bool:
        return self.kind.connection_level


class ProcessingError(SitepandaError):
    """Readable-content extraction or Markdown conversion failed for a page."""


class OutputError(SitepandaError):
    """Results could not be encoded or written."""
