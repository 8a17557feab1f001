"""
Application Paths
=================
Per-user data directory for installed browsers.

- Linux:   ``$XDG_DATA_HOME/sitepanda`` (default ``~/.local/share/sitepanda``)
- macOS:   ``~/Library/Application Support/Sitepanda``
- Windows: ``%APPDATA%\\Sitepanda``
"""

import os
import platform
from pathlib import Path
from typing import Mapping, Optional

from .errors import ProvisionError

LIGHTPANDA_EXECUTABLE = "lightpanda"
BIN_DIR = "bin"
PLAYWRIGHT_DIR = "playwright_driver"


def app_data_dir(system: Optional[str] = None, env: Optional[Mapping[str, str]] = None,
                 home: Optional[Path] = None) -> Path:
    """Base application directory for the current OS (not created)."""
    system = system or platform.system()
    env = os.environ if env is None else env
    home = home or Path.home()

    if system == "Linux":
        base = env.get("XDG_DATA_HOME") or str(home / ".local" / "share")
        return Path(base) / "sitepanda"
    if system == "Darwin":
        return home / "Library" / "Application Support" / "Sitepanda"
    if system == "Windows":
        base = env.get("APPDATA") or str(home / "AppData" / "Roaming")
        return Path(base) / "Sitepanda"
    raise ProvisionError(f"unsupported operating system: {system}")


def app_subdirectory(*parts: str, create: bool = True, **kwargs) -> Path:
    """``app_data_dir()/parts...``, created with mode 0755 on request."""
    path = app_data_dir(**kwargs).joinpath(*parts)
    if create:
        try:
            path.mkdir(mode=0o755, parents=True, exist_ok=True)
        except OSError as exc:
            raise ProvisionError(f"failed to create directory {path}: {exc}") from exc
    return path


def lightpanda_executable_path(**kwargs) -> Path:
    return app_subdirectory(BIN_DIR, **kwargs) / LIGHTPANDA_EXECUTABLE


def playwright_browsers_path(**kwargs) -> Path:
    """Where Playwright installs and looks up Chromium for sitepanda."""
    return app_subdirectory(PLAYWRIGHT_DIR, **kwargs)
