"""
Page Fetcher
============
Loads one URL in the session's page and returns the rendered HTML.

The navigation runs as its own task raced against the cancellation token
and an overall ceiling.  Whichever finishes first decides the outcome; a
navigation that loses the race is cancelled and its result discarded.
Failures are reported as ``FetchError`` with a closed ``FetchErrorKind``
decided from page and browser state, never from error message text.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeout

from .cancellation import CancellationToken
from .errors import FetchError, FetchErrorKind

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT_S = 120.0
# Playwright's own navigation timeout stays under the overall ceiling so
# its error (not ours) reports slow pages.
NAVIGATION_MARGIN_S = 5.0
MIN_NAVIGATION_TIMEOUT_MS = 1000
# How long a losing navigation task gets to unwind after cancellation.
_DISCARD_GRACE_S = 5.0


class WaitStrategy(str, Enum):
    """Page-load milestone a navigation waits for."""

    LOAD = "load"
    NETWORK_IDLE = "networkidle"

    @classmethod
    def from_flag(cls, wait_for_network_idle: bool) -> "WaitStrategy":
        return cls.NETWORK_IDLE if wait_for_network_idle else cls.LOAD


def navigation_timeout_ms(timeout_s: float) -> float:
    return max(MIN_NAVIGATION_TIMEOUT_MS, (timeout_s - NAVIGATION_MARGIN_S) * 1000)


def _browser_connected(page: Page) -> bool:
    try:
        browser = page.context.browser
    except PlaywrightError:
        return False
    return browser is None or browser.is_connected()


def classify_playwright_error(page: Page, exc: BaseException) -> FetchErrorKind:
    """Map a Playwright failure to a ``FetchErrorKind`` using session state."""
    if isinstance(exc, PlaywrightTimeout):
        return FetchErrorKind.TIMEOUT
    if not _browser_connected(page):
        return FetchErrorKind.BROWSER_DISCONNECTED
    if page.is_closed():
        return FetchErrorKind.TARGET_CLOSED
    return FetchErrorKind.NAVIGATION


async def _navigate(page: Page, url: str, wait_until: WaitStrategy, timeout_ms: float) -> str:
    await page.goto(url, wait_until=wait_until.value, timeout=timeout_ms)
    return await page.content()


async def _discard(task: asyncio.Task, url: str) -> None:
    """Cancel a losing navigation and wait briefly for it to unwind."""
    task.cancel()
    done, _ = await asyncio.wait({task}, timeout=_DISCARD_GRACE_S)
    if task in done and not task.cancelled() and task.exception() is not None:
        logger.debug(f"[FETCH] Discarded navigation for {url}: {task.exception()}")


async def fetch_page_html(
    page: Page,
    token: CancellationToken,
    url: str,
    wait_until: WaitStrategy = WaitStrategy.LOAD,
    timeout_s: float = DEFAULT_FETCH_TIMEOUT_S,
) -> str:
    """
    Navigate *page* to *url* and return its rendered HTML.

    Raises:
        FetchError: with kind PAGE_CLOSED / BROWSER_DISCONNECTED (pre-checks),
            CANCELLED, TIMEOUT, NAVIGATION, TARGET_CLOSED or EMPTY_CONTENT.
    """
    if page is None or page.is_closed():
        raise FetchError(FetchErrorKind.PAGE_CLOSED, url, "page is closed")
    if not _browser_connected(page):
        raise FetchError(FetchErrorKind.BROWSER_DISCONNECTED, url, "browser is not connected")
    if token.cancelled:
        raise FetchError(FetchErrorKind.CANCELLED, url, "cancelled before navigation")

    nav_timeout = navigation_timeout_ms(timeout_s)
    logger.info(f"[FETCH] {url} (wait_until={wait_until.value}, timeout={nav_timeout / 1000:.0f}s)")

    nav_task = asyncio.ensure_future(_navigate(page, url, wait_until, nav_timeout))
    cancel_task = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait(
            {nav_task, cancel_task},
            timeout=timeout_s,
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        cancel_task.cancel()

    if nav_task not in done:
        await _discard(nav_task, url)
        if token.cancelled:
            raise FetchError(FetchErrorKind.CANCELLED, url, "cancelled during navigation")
        raise FetchError(FetchErrorKind.TIMEOUT, url, f"no response within {timeout_s:.0f}s")

    html: Optional[str]
    try:
        html = nav_task.result()
    except PlaywrightError as exc:
        kind = classify_playwright_error(page, exc)
        raise FetchError(kind, url, str(exc).splitlines()[0] if str(exc) else "", cause=exc) from exc

    if not html or not html.strip():
        raise FetchError(FetchErrorKind.EMPTY_CONTENT, url, "page returned no HTML")
    return html
