"""
Browser Sessions
================
A ``BrowserSession`` owns exactly one live automation handle for a run:
the Playwright driver, a browser connection, one context and one page.

Two backends share all post-connection logic:

- ``ExternalProcessSession`` spawns a Lightpanda server on an ephemeral
  loopback port, waits for it to listen and connects over CDP.
- ``ManagedLaunchSession`` lets Playwright launch headless Chromium.

After connecting, the session reuses the first existing context (or creates
one), opens a page and probes it with ``about:blank``.  ``cleanup()`` tears
everything down in reverse order of acquisition and is safe to call twice.
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from playwright.async_api import Browser, BrowserContext, Page, async_playwright

from .errors import (
    BrowserConnectionError,
    BrowserNotReady,
    SessionInitError,
)
from .run_config import BROWSER_CHROMIUM, BROWSER_LIGHTPANDA, ScrapeConfig

logger = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"
PROBE_URL = "about:blank"
_PIPE_CHUNK = 4096

# Callable returning an object with ``async start()`` (``async_playwright``).
PlaywrightFactory = Callable[[], object]


# ---------------------------------------------------------------------------
# Process helpers
# ---------------------------------------------------------------------------

def pick_free_port(host: str = LOOPBACK_HOST) -> int:
    """Ask the OS for an unused TCP port on *host*."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


async def wait_for_port(
    host: str,
    port: int,
    *,
    interval_s: float,
    max_wait_s: float,
    dial_timeout_s: float,
    process: Optional[asyncio.subprocess.Process] = None,
) -> None:
    """
    Poll ``host:port`` until a TCP connection succeeds.

    Raises:
        BrowserNotReady: the port never opened within *max_wait_s*, or the
            process exited while we were waiting.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max_wait_s
    attempts = 0
    while True:
        attempts += 1
        if process is not None and process.returncode is not None:
            raise BrowserNotReady(
                f"browser process exited with code {process.returncode} "
                f"before listening on {host}:{port}"
            )
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=dial_timeout_s
            )
        except (OSError, asyncio.TimeoutError):
            if loop.time() + interval_s > deadline:
                raise BrowserNotReady(
                    f"{host}:{port} not reachable after {max_wait_s:.1f}s ({attempts} attempts)"
                )
            await asyncio.sleep(interval_s)
            continue
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as exc:
            logger.debug(f"[SESSION] Probe connection closed uncleanly: {exc}")
        logger.info(f"[SESSION] {host}:{port} is accepting connections (attempt {attempts})")
        return


class ProcessDiagnostics:
    """Captures a child process's stdout/stderr for failure reports."""

    def __init__(self, label: str = "browser", echo: bool = False):
        self.label = label
        self.echo = echo
        self.stdout = bytearray()
        self.stderr = bytearray()
        self._tasks: List[asyncio.Task] = []

    def attach(self, process: asyncio.subprocess.Process) -> None:
        if process.stdout is not None:
            self._tasks.append(asyncio.ensure_future(self._pump(process.stdout, self.stdout, "stdout")))
        if process.stderr is not None:
            self._tasks.append(asyncio.ensure_future(self._pump(process.stderr, self.stderr, "stderr")))

    async def _pump(self, stream: asyncio.StreamReader, buffer: bytearray, name: str) -> None:
        while True:
            chunk = await stream.read(_PIPE_CHUNK)
            if not chunk:
                return
            buffer.extend(chunk)
            if self.echo:
                for line in chunk.decode("utf-8", "replace").splitlines():
                    logger.info(f"[{self.label} {name}] {line}")

    async def drain(self, timeout_s: float = 1.0) -> None:
        """Wait for the pumps to hit EOF, cancelling any that do not."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(self._tasks, timeout=timeout_s)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)
        self._tasks.clear()

    def dump(self, reason: str) -> None:
        logger.error(f"[SESSION] {self.label} output ({reason}):")
        for name, buffer in (("stdout", self.stdout), ("stderr", self.stderr)):
            text = buffer.decode("utf-8", "replace").strip()
            logger.error(f"  {name}: {text if text else '(empty)'}")


# ---------------------------------------------------------------------------
# Session base
# ---------------------------------------------------------------------------

class BrowserSession(ABC):
    """
    Abstract browser session.

    Subclasses implement ``_connect()`` to set ``self.playwright`` and
    ``self.browser``; everything after that is shared.
    """

    backend: str = ""

    def __init__(self, config: ScrapeConfig,
                 playwright_factory: Optional[PlaywrightFactory] = None):
        self.config = config
        self._playwright_factory = playwright_factory or async_playwright
        self.playwright = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self.process: Optional[asyncio.subprocess.Process] = None
        self.diagnostics: Optional[ProcessDiagnostics] = None
        self._closed = False

    @abstractmethod
    async def _connect(self) -> None:
        """Start the backend and set ``self.playwright`` / ``self.browser``."""

    async def start(self) -> "BrowserSession":
        """Connect and health-check.  On any failure, tear down and raise."""
        try:
            await self._connect()
            await self._open_page()
        except SessionInitError:
            self.dump_diagnostics("session start failed")
            await self.cleanup()
            raise
        except Exception as exc:
            self.dump_diagnostics("session start failed")
            await self.cleanup()
            raise SessionInitError(f"{self.backend} session setup failed: {exc}") from exc
        logger.info(f"[SESSION] {self.backend} session ready")
        return self

    async def _start_playwright(self) -> None:
        self.playwright = await self._playwright_factory().start()

    async def _open_page(self) -> None:
        contexts = self.browser.contexts
        if contexts:
            self.context = contexts[0]
            logger.info("[SESSION] Reusing existing browser context")
        else:
            self.context = await self.browser.new_context()
            logger.info("[SESSION] Created new browser context")

        self.page = await self.context.new_page()
        await self.page.goto(PROBE_URL, timeout=self.config.probe_timeout_ms)
        title = await self.page.title()
        logger.info(f"[SESSION] Health check passed ({PROBE_URL}, title={title!r})")

    def dump_diagnostics(self, reason: str) -> None:
        if self.diagnostics is not None:
            self.diagnostics.dump(reason)

    async def cleanup(self) -> None:
        """Close page, context, connection, driver and process, in that order."""
        if self._closed:
            return
        self._closed = True

        if self.page is not None:
            try:
                if not self.page.is_closed():
                    await self.page.close()
            except Exception as exc:
                logger.warning(f"[SESSION] Closing page failed: {exc}")
            self.page = None

        if self.context is not None:
            try:
                await self.context.close()
            except Exception as exc:
                logger.warning(f"[SESSION] Closing context failed: {exc}")
            self.context = None

        if self.browser is not None:
            try:
                await self.browser.close()
            except Exception as exc:
                logger.warning(f"[SESSION] Closing browser connection failed: {exc}")
            self.browser = None

        if self.playwright is not None:
            try:
                await self.playwright.stop()
            except Exception as exc:
                logger.warning(f"[SESSION] Stopping Playwright failed: {exc}")
            self.playwright = None

        await self._release_backend()
        logger.info(f"[SESSION] {self.backend} session closed")

    async def _release_backend(self) -> None:
        """Hook for backends that own an OS process."""

    async def __aenter__(self) -> "BrowserSession":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cleanup()


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class ExternalProcessSession(BrowserSession):
    """Lightpanda server process reached over CDP."""

    backend = BROWSER_LIGHTPANDA

    def __init__(self, config: ScrapeConfig, executable_path: str,
                 playwright_factory: Optional[PlaywrightFactory] = None,
                 host: str = LOOPBACK_HOST):
        super().__init__(config, playwright_factory)
        self.executable_path = executable_path
        self.host = host
        self.port: Optional[int] = None
        self.endpoint: Optional[str] = None

    async def _connect(self) -> None:
        self.port = pick_free_port(self.host)
        self.endpoint = f"ws://{self.host}:{self.port}"
        args = ["serve", "--host", self.host, "--port", str(self.port)]
        try:
            self.process = await asyncio.create_subprocess_exec(
                self.executable_path, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise SessionInitError(
                f"failed to start {self.executable_path} {' '.join(args)}: {exc}"
            ) from exc

        self.diagnostics = ProcessDiagnostics(self.backend, echo=self.config.verbose_browser)
        self.diagnostics.attach(self.process)
        logger.info(f"[SESSION] Launched {self.backend} (pid {self.process.pid}) on {self.endpoint}")

        await wait_for_port(
            self.host, self.port,
            interval_s=self.config.port_poll_interval_s,
            max_wait_s=self.config.port_wait_timeout_s,
            dial_timeout_s=self.config.port_dial_timeout_s,
            process=self.process,
        )

        await self._start_playwright()
        try:
            self.browser = await self.playwright.chromium.connect_over_cdp(
                self.endpoint, timeout=self.config.connect_timeout_ms
            )
        except Exception as exc:
            raise BrowserConnectionError(f"CDP connect to {self.endpoint} failed: {exc}") from exc
        logger.info(f"[SESSION] Connected over CDP to {self.endpoint}")

    async def _release_backend(self) -> None:
        process = self.process
        if process is None:
            return
        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                logger.debug(f"[SESSION] {self.backend} (pid {process.pid}) already gone")
            try:
                await asyncio.wait_for(process.wait(), timeout=self.config.terminate_timeout_s)
            except asyncio.TimeoutError:
                logger.warning(f"[SESSION] {self.backend} (pid {process.pid}) did not exit, killing")
                try:
                    process.kill()
                except ProcessLookupError:
                    logger.debug(f"[SESSION] {self.backend} (pid {process.pid}) already gone")
                await process.wait()
        logger.info(f"[SESSION] {self.backend} process exited with code {process.returncode}")
        if self.diagnostics is not None:
            await self.diagnostics.drain()
        self.process = None


class ManagedLaunchSession(BrowserSession):
    """Headless Chromium launched by Playwright."""

    backend = BROWSER_CHROMIUM

    def _launch_options(self) -> dict:
        options = {
            "headless": self.config.headless,
            "timeout": self.config.launch_timeout_ms,
        }
        if self.config.verbose_browser:
            options["env"] = {**os.environ, "DEBUG": "pw:browser"}
        return options

    async def _connect(self) -> None:
        await self._start_playwright()
        try:
            self.browser = await self.playwright.chromium.launch(**self._launch_options())
        except Exception as exc:
            raise BrowserConnectionError(f"launching chromium failed: {exc}") from exc
        logger.info(f"[SESSION] Launched chromium (version {self.browser.version})")


def create_session(config: ScrapeConfig, executable_path: Optional[str] = None,
                   playwright_factory: Optional[PlaywrightFactory] = None) -> BrowserSession:
    """Build (but do not start) the session variant for ``config.browser``."""
    if config.browser == BROWSER_LIGHTPANDA:
        if not executable_path:
            raise SessionInitError("lightpanda requires an executable path")
        return ExternalProcessSession(config, executable_path, playwright_factory)
    if config.browser == BROWSER_CHROMIUM:
        return ManagedLaunchSession(config, playwright_factory)
    raise SessionInitError(f"unsupported browser {config.browser!r}")


async def open_session(config: ScrapeConfig, executable_path: Optional[str] = None,
                       playwright_factory: Optional[PlaywrightFactory] = None) -> BrowserSession:
    """Create and start a session; the caller owns ``cleanup()``."""
    session = create_session(config, executable_path, playwright_factory)
    return await session.start()
