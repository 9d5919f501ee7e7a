"""Application configuration helpers for the Smartsheet offline client."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional

from offline_core import app_paths


logger = logging.getLogger(__name__)


SYNC_SETTINGS_PATH = str(app_paths.data_path("sync_settings.json"))
DEFAULT_DATABASE_PATH = str(app_paths.data_path("smartsheet_offline.db"))
DEFAULT_ACCESS_TOKEN_ENV = "SMARTSHEET_ACCESS_TOKEN"
DEFAULT_PUBLISH_BATCH_SIZE = 100
DEFAULT_AUTO_SYNC_INTERVAL = 60
DEFAULT_LOG_LEVEL = "INFO"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class SyncSettings:
    database_path: str = DEFAULT_DATABASE_PATH
    access_token_env: str = DEFAULT_ACCESS_TOKEN_ENV
    publish_batch_size: int = DEFAULT_PUBLISH_BATCH_SIZE
    auto_sync_interval_seconds: int = DEFAULT_AUTO_SYNC_INTERVAL
    user_first_name: str = ""
    user_last_name: str = ""
    log_level: str = DEFAULT_LOG_LEVEL

    def access_token(self) -> Optional[str]:
        """Return the access token from the configured environment variable."""

        token = os.environ.get(self.access_token_env, "").strip()
        return token or None

    def logging_level(self) -> int:
        return getattr(logging, self.log_level, logging.INFO)

    def to_json(self) -> Dict[str, object]:
        return {
            "database_path": self.database_path,
            "access_token_env": self.access_token_env,
            "publish_batch_size": self.publish_batch_size,
            "auto_sync_interval_seconds": self.auto_sync_interval_seconds,
            "user_first_name": self.user_first_name,
            "user_last_name": self.user_last_name,
            "log_level": self.log_level,
        }


def _default_payload() -> Dict[str, object]:
    return SyncSettings().to_json()


def _ensure_sync_settings(path: str = SYNC_SETTINGS_PATH) -> Dict[str, object]:
    default_settings = _default_payload()
    if not os.path.exists(path):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(default_settings, handle, indent=2)
        return json.loads(json.dumps(default_settings))

    with open(path, "r", encoding="utf-8") as handle:
        try:
            data = json.load(handle)
        except json.JSONDecodeError:
            logger.warning("Settings file %s is not valid JSON; using defaults", path)
            data = {}
    if not isinstance(data, dict):
        data = {}

    merged: Dict[str, object] = dict(default_settings)
    for key, value in data.items():
        if key not in default_settings:
            continue
        if key == "publish_batch_size":
            try:
                merged[key] = max(1, min(500, int(value)))
            except (TypeError, ValueError):
                merged[key] = default_settings[key]
        elif key == "auto_sync_interval_seconds":
            try:
                merged[key] = max(15, min(600, int(value)))
            except (TypeError, ValueError):
                merged[key] = default_settings[key]
        elif key == "log_level":
            level = str(value).strip().upper()
            merged[key] = level if level in _LOG_LEVELS else DEFAULT_LOG_LEVEL
        elif key in ("database_path", "access_token_env"):
            if isinstance(value, str) and value.strip():
                merged[key] = value.strip()
        elif isinstance(value, str):
            merged[key] = value
    return merged


def load_sync_settings(path: str = SYNC_SETTINGS_PATH) -> SyncSettings:
    data = _ensure_sync_settings(path)
    return SyncSettings(
        database_path=str(data["database_path"]),
        access_token_env=str(data["access_token_env"]),
        publish_batch_size=int(data["publish_batch_size"]),
        auto_sync_interval_seconds=int(data["auto_sync_interval_seconds"]),
        user_first_name=str(data["user_first_name"]),
        user_last_name=str(data["user_last_name"]),
        log_level=str(data["log_level"]),
    )


def save_sync_settings(settings: SyncSettings, path: str = SYNC_SETTINGS_PATH) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    payload = settings.to_json()

    with open(path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)


__all__ = [
    "DEFAULT_ACCESS_TOKEN_ENV",
    "DEFAULT_AUTO_SYNC_INTERVAL",
    "DEFAULT_DATABASE_PATH",
    "DEFAULT_PUBLISH_BATCH_SIZE",
    "SYNC_SETTINGS_PATH",
    "SyncSettings",
    "load_sync_settings",
    "save_sync_settings",
]
