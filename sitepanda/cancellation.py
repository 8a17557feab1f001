"""
Cooperative Cancellation
========================
``CancellationToken`` is a one-shot, one-way flag observed by the crawl loop
and raced by in-flight fetches.  ``SignalCancellationSource`` trips it on the
first SIGINT/SIGTERM; later signals are ignored so a second Ctrl-C cannot
interrupt result writing.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)


class CancellationToken:
    """Shared flag that can be set once and never cleared."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> bool:
        """Trip the token.  Returns False if it was already tripped."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        logger.info(f"[CANCEL] Cancellation requested ({reason})")
        return True

    async def wait(self) -> None:
        await self._event.wait()


class SignalCancellationSource:
    """
    Installs OS signal handlers on the running event loop.

    Usage::

        token = CancellationToken()
        with SignalCancellationSource(token):
            await crawler.crawl()
    """

    DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self, token: CancellationToken,
                 signals: Iterable[signal.Signals] = DEFAULT_SIGNALS):
        self.token = token
        self.signals = tuple(signals)
        self._installed: List[signal.Signals] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _on_signal(self, sig: signal.Signals) -> None:
        if not self.token.cancel(f"received {sig.name}"):
            logger.info(f"[CANCEL] {sig.name} ignored, shutdown already in progress")

    def install(self) -> None:
        self._loop = asyncio.get_running_loop()
        for sig in self.signals:
            try:
                self._loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError) as exc:
                # add_signal_handler is unavailable on some platforms (Windows).
                logger.debug(f"[CANCEL] Cannot watch {sig.name}: {exc}")
                continue
            self._installed.append(sig)

    def uninstall(self) -> None:
        if self._loop is None:
            return
        for sig in self._installed:
            self._loop.remove_signal_handler(sig)
        self._installed.clear()
        self._loop = None

    def __enter__(self) -> "SignalCancellationSource":
        self.install()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.uninstall()
