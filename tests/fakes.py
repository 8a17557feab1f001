"""
In-memory stand-ins for the Playwright objects sitepanda drives.

``FakeSite`` maps URLs to HTML (or to an exception / a delay); ``FakePage``
serves it through the ``goto`` / ``content`` / ``title`` calls the fetcher
and session use.  Every close is appended to a shared ``events`` list so
tests can assert teardown order.
"""

import asyncio
from typing import Dict, List, Optional, Union

from playwright.async_api import Error as PlaywrightError


class Stall:
    """Site entry that delays before serving *html*."""

    def __init__(self, seconds: float, html: str = "<html><body>late</body></html>",
                 on_start=None):
        self.seconds = seconds
        self.html = html
        self.on_start = on_start


SiteEntry = Union[str, BaseException, Stall]


class FakeSite:
    def __init__(self, pages: Optional[Dict[str, SiteEntry]] = None):
        self.pages: Dict[str, SiteEntry] = dict(pages or {})
        self.requests: List[str] = []


class FakeBrowser:
    def __init__(self, events: Optional[List[str]] = None, contexts=None):
        self.events = events if events is not None else []
        self.connected = True
        self.contexts = list(contexts or [])
        self.version = "fake-1.0"

    def is_connected(self) -> bool:
        return self.connected

    async def new_context(self):
        ctx = FakeContext(self, FakeSite(), self.events)
        self.contexts.append(ctx)
        return ctx

    async def close(self):
        self.connected = False
        self.events.append("browser.close")


class FakeContext:
    def __init__(self, browser: Optional[FakeBrowser], site: FakeSite,
                 events: Optional[List[str]] = None):
        self.browser = browser
        self.site = site
        self.events = events if events is not None else []
        self.pages: List["FakePage"] = []

    async def new_page(self):
        page = FakePage(self.site, context=self, events=self.events)
        self.pages.append(page)
        return page

    async def close(self):
        self.events.append("context.close")


class FakePage:
    def __init__(self, site: Optional[FakeSite] = None, context: Optional[FakeContext] = None,
                 events: Optional[List[str]] = None):
        self.site = site or FakeSite()
        self.events = events if events is not None else []
        self.context = context or FakeContext(FakeBrowser(self.events), self.site, self.events)
        self.closed = False
        self.url = "about:blank"
        self._html = "<html><head></head><body></body></html>"
        self.goto_calls: List[dict] = []

    def is_closed(self) -> bool:
        return self.closed

    async def goto(self, url, wait_until=None, timeout=None):
        self.goto_calls.append({"url": url, "wait_until": wait_until, "timeout": timeout})
        if url == "about:blank":
            self.url = url
            self._html = "<html><head></head><body></body></html>"
            return None
        self.site.requests.append(url)
        entry = self.site.pages.get(url)
        if entry is None:
            raise PlaywrightError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        if isinstance(entry, BaseException):
            raise entry
        if isinstance(entry, Stall):
            if entry.on_start is not None:
                entry.on_start()
            await asyncio.sleep(entry.seconds)
            entry = entry.html
        self.url = url
        self._html = entry
        return None

    async def content(self) -> str:
        return self._html

    async def title(self) -> str:
        return ""

    async def close(self):
        self.closed = True
        self.events.append("page.close")


class FakeChromium:
    def __init__(self, browser: FakeBrowser, fail: Optional[BaseException] = None):
        self.browser = browser
        self.fail = fail
        self.launch_kwargs = None
        self.cdp_endpoint = None

    async def launch(self, **kwargs):
        self.launch_kwargs = kwargs
        if self.fail is not None:
            raise self.fail
        return self.browser

    async def connect_over_cdp(self, endpoint, **kwargs):
        self.cdp_endpoint = endpoint
        if self.fail is not None:
            raise self.fail
        return self.browser


class FakePlaywright:
    def __init__(self, browser: FakeBrowser, fail: Optional[BaseException] = None):
        self.chromium = FakeChromium(browser, fail)
        self.events = browser.events

    async def stop(self):
        self.events.append("playwright.stop")


class FakePlaywrightManager:
    """Mimics ``async_playwright()``: ``await manager.start()``."""

    def __init__(self, playwright: FakePlaywright):
        self.playwright = playwright

    async def start(self):
        return self.playwright


def fake_playwright_factory(browser: FakeBrowser, fail: Optional[BaseException] = None):
    playwright = FakePlaywright(browser, fail)
    return playwright, (lambda: FakePlaywrightManager(playwright))


def page_html(title: str, *hrefs: str, body: str = "") -> str:
    links = "".join(f'<a href="{h}">{h}</a>' for h in hrefs)
    return (
        f"<html><head><title>{title}</title></head>"
        f"<body><h1>{title}</h1><p>{body or title + ' content'}</p>{links}</body></html>"
    )
