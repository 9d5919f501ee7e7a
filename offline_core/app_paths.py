"""Where the offline client keeps its database, settings and logs.

The root is taken from ``SMARTSHEET_OFFLINE_HOME`` when set, otherwise from
the platform's per-user data directory.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Tuple

HOME_ENV_VAR = "SMARTSHEET_OFFLINE_HOME"
_PLATFORM_DATA_VARS: Tuple[str, ...] = ("LOCALAPPDATA", "APPDATA", "XDG_DATA_HOME")


def _resolve_home() -> Path:
    override = os.environ.get(HOME_ENV_VAR, "").strip()
    if override:
        return Path(override).expanduser().resolve()
    for name in _PLATFORM_DATA_VARS:
        root = os.environ.get(name)
        if root:
            return Path(root).expanduser().resolve() / "SmartsheetOffline"
    return Path.home().resolve() / ".smartsheet-offline"


APP_DIR: Path = _resolve_home()
LOGS_DIR: Path = APP_DIR / "logs"


def _under(root: Path, parts: Tuple[str, ...]) -> Path:
    target = root.joinpath(*parts)
    target.parent.mkdir(parents=True, exist_ok=True)
    return target


def data_path(*parts: str) -> Path:
    """Return ``APP_DIR/<parts>``; parent directories are created on demand."""

    return _under(APP_DIR, parts)


def logs_path(*parts: str) -> Path:
    return _under(LOGS_DIR, parts)


__all__ = ["APP_DIR", "HOME_ENV_VAR", "LOGS_DIR", "data_path", "logs_path"]
