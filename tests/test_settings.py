from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import settings


def test_missing_file_is_created_with_defaults(tmp_path) -> None:
    path = tmp_path / "nested" / "sync_settings.json"

    loaded = settings.load_sync_settings(str(path))

    assert path.exists()
    assert loaded.publish_batch_size == settings.DEFAULT_PUBLISH_BATCH_SIZE
    assert json.loads(path.read_text(encoding="utf-8"))["log_level"] == "INFO"


def test_values_are_clamped_and_validated(tmp_path) -> None:
    path = tmp_path / "sync_settings.json"
    path.write_text(
        json.dumps(
            {
                "publish_batch_size": 5000,
                "auto_sync_interval_seconds": 1,
                "log_level": "chatty",
                "database_path": "   ",
                "user_first_name": "Ada",
                "unknown": "ignored",
            }
        ),
        encoding="utf-8",
    )

    loaded = settings.load_sync_settings(str(path))

    assert loaded.publish_batch_size == 500
    assert loaded.auto_sync_interval_seconds == 15
    assert loaded.log_level == "INFO"
    assert loaded.database_path == settings.DEFAULT_DATABASE_PATH
    assert loaded.user_first_name == "Ada"
    assert not hasattr(loaded, "unknown")


def test_invalid_json_falls_back_to_defaults(tmp_path) -> None:
    path = tmp_path / "sync_settings.json"
    path.write_text("{not json", encoding="utf-8")

    assert settings.load_sync_settings(str(path)) == settings.SyncSettings()


def test_save_and_reload(tmp_path) -> None:
    path = tmp_path / "sync_settings.json"
    original = settings.SyncSettings(publish_batch_size=25, user_last_name="Lovelace", log_level="DEBUG")

    settings.save_sync_settings(original, str(path))

    reloaded = settings.load_sync_settings(str(path))
    assert reloaded == original
    assert reloaded.logging_level() == logging.DEBUG


def test_access_token_reads_environment(monkeypatch) -> None:
    configured = settings.SyncSettings(access_token_env="MY_TOKEN")

    monkeypatch.delenv("MY_TOKEN", raising=False)
    assert configured.access_token() is None

    monkeypatch.setenv("MY_TOKEN", "  secret  ")
    assert configured.access_token() == "secret"
