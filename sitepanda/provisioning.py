"""
Browser Provisioning
====================
``Provisioner.prepare(browser)`` checks that the selected browser is usable
before a scrape and returns its executable path (Lightpanda) plus a cleanup
callable.  ``install_browser(browser)`` backs ``sitepanda init``: it downloads
the Lightpanda nightly build or runs Playwright's Chromium installer.
"""

import logging
import os
import platform
import subprocess
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional, Tuple

import requests

from .errors import ProvisionError
from .paths import lightpanda_executable_path, playwright_browsers_path
from .run_config import BROWSER_CHROMIUM, BROWSER_LIGHTPANDA

logger = logging.getLogger(__name__)

LIGHTPANDA_NIGHTLY_VERSION = "nightly"
LIGHTPANDA_RELEASE_URL = "https://github.com/lightpanda-io/browser/releases/download"
PLAYWRIGHT_BROWSERS_ENV = "PLAYWRIGHT_BROWSERS_PATH"

# (platform.system(), normalized machine) → release asset
LIGHTPANDA_ASSETS = {
    ("Linux", "x86_64"): "lightpanda-x86_64-linux",
    ("Darwin", "arm64"): "lightpanda-aarch64-macos",
}

_MACHINE_ALIASES = {"amd64": "x86_64", "aarch64": "arm64"}
_DOWNLOAD_CHUNK = 1 << 16

Cleanup = Callable[[], None]


def _noop() -> None:
    pass


def use_sitepanda_browsers_path() -> str:
    """Point Playwright at sitepanda's own browser directory unless the user
    already chose one."""
    if not os.environ.get(PLAYWRIGHT_BROWSERS_ENV):
        os.environ[PLAYWRIGHT_BROWSERS_ENV] = str(playwright_browsers_path())
    return os.environ[PLAYWRIGHT_BROWSERS_ENV]


def resolve_executable_path(browser: str) -> Optional[Path]:
    """Installed executable for *browser*; ``None`` when Playwright manages it."""
    if browser == BROWSER_LIGHTPANDA:
        return lightpanda_executable_path(create=False)
    if browser == BROWSER_CHROMIUM:
        return None
    raise ProvisionError(f"unsupported browser {browser!r}")


class Provisioner(ABC):
    """Makes a browser backend available for a run."""

    @abstractmethod
    def prepare(self, browser: str) -> Tuple[Optional[str], Cleanup]:
        """Return ``(executable_path or None, cleanup)``; raise ``ProvisionError``."""


class LocalProvisioner(Provisioner):
    """Uses browsers installed by ``sitepanda init`` on this machine."""

    def __init__(self, lightpanda_path: Optional[Path] = None):
        self._lightpanda_path = lightpanda_path

    def prepare(self, browser: str) -> Tuple[Optional[str], Cleanup]:
        if browser == BROWSER_LIGHTPANDA:
            return self._prepare_lightpanda(), _noop
        if browser == BROWSER_CHROMIUM:
            location = use_sitepanda_browsers_path()
            logger.info(f"[PROVISION] Chromium is managed by Playwright ({location})")
            return None, _noop
        raise ProvisionError(f"unsupported browser {browser!r}")

    def _prepare_lightpanda(self) -> str:
        path = self._lightpanda_path or resolve_executable_path(BROWSER_LIGHTPANDA)
        if not path.exists():
            raise ProvisionError(
                f"Lightpanda executable not found at {path}. "
                f"Please run 'sitepanda init lightpanda' to install it"
            )
        if path.is_dir():
            raise ProvisionError(
                f"expected Lightpanda executable at {path}, but found a directory. "
                f"Please run 'sitepanda init lightpanda' again"
            )
        if not os.access(path, os.X_OK):
            raise ProvisionError(
                f"Lightpanda at {path} is not executable. "
                f"Please run 'sitepanda init lightpanda' again"
            )
        logger.info(f"[PROVISION] Using Lightpanda binary from {path}")
        return str(path)


# ---------------------------------------------------------------------------
# Installation (sitepanda init)
# ---------------------------------------------------------------------------

def lightpanda_download_url(system: Optional[str] = None, machine: Optional[str] = None) -> str:
    system = system or platform.system()
    machine = (machine or platform.machine()).lower()
    machine = _MACHINE_ALIASES.get(machine, machine)
    asset = LIGHTPANDA_ASSETS.get((system, machine))
    if asset is None:
        if system == "Windows":
            raise ProvisionError(
                "Lightpanda is not supported on Windows. "
                "Please use Chromium instead by running 'sitepanda init chromium'"
            )
        raise ProvisionError(
            f"Lightpanda is not available for {system}/{machine}; "
            f"it can be installed on Linux (x86_64) and macOS (arm64)"
        )
    return f"{LIGHTPANDA_RELEASE_URL}/{LIGHTPANDA_NIGHTLY_VERSION}/{asset}"


def install_lightpanda(dest: Optional[Path] = None, url: Optional[str] = None,
                       session: Optional[requests.Session] = None,
                       timeout: float = 60.0) -> Path:
    """Download Lightpanda to *dest* (mode 0755) and return the path."""
    dest = dest or lightpanda_executable_path()
    url = url or lightpanda_download_url()
    http = session or requests.Session()
    logger.info(f"[INIT] Downloading Lightpanda from {url}")

    tmp = dest.with_name(dest.name + ".download")
    written = 0
    try:
        with http.get(url, stream=True, timeout=timeout, allow_redirects=True) as response:
            if response.status_code != 200:
                raise ProvisionError(
                    f"failed to download Lightpanda: server returned {response.status_code} "
                    f"{response.reason}"
                )
            dest.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "wb") as fh:
                for chunk in response.iter_content(chunk_size=_DOWNLOAD_CHUNK):
                    if chunk:
                        fh.write(chunk)
                        written += len(chunk)
    except requests.RequestException as exc:
        tmp.unlink(missing_ok=True)
        raise ProvisionError(f"failed to download Lightpanda: {exc}") from exc
    except (OSError, ProvisionError):
        tmp.unlink(missing_ok=True)
        raise

    if written == 0:
        tmp.unlink(missing_ok=True)
        raise ProvisionError(f"downloaded Lightpanda binary is empty (URL: {url})")

    os.chmod(tmp, 0o755)
    os.replace(tmp, dest)
    logger.info(f"[INIT] Lightpanda installed to {dest} ({written:,} bytes)")
    return dest


def install_chromium(runner: Callable[..., subprocess.CompletedProcess] = subprocess.run) -> None:
    """Run ``playwright install chromium`` into sitepanda's browser directory."""
    location = use_sitepanda_browsers_path()
    logger.info(f"[INIT] Installing Chromium via Playwright into {location}")
    cmd = [sys.executable, "-m", "playwright", "install", "chromium"]
    try:
        result = runner(cmd, env=dict(os.environ))
    except OSError as exc:
        raise ProvisionError(f"failed to run {' '.join(cmd)}: {exc}") from exc
    if result.returncode != 0:
        raise ProvisionError(f"Playwright installer exited with code {result.returncode}")
    logger.info("[INIT] Chromium is ready")


def install_browser(browser: str) -> None:
    logger.info(f"[INIT] Setting up {browser}...")
    if browser == BROWSER_LIGHTPANDA:
        install_lightpanda()
    elif browser == BROWSER_CHROMIUM:
        install_chromium()
    else:
        raise ProvisionError(f"unsupported browser {browser!r}")
    logger.info(f"[INIT] Sitepanda initialization for {browser} complete")
