"""Tests for the structured logging configuration."""

from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import structlog

from ensemble.library import MediaType
from ensemble.logging import setup_logging, sync_context
from ensemble.storage import LibraryStore
from ensemble.sync.service import LibrarySyncService


@pytest.fixture(autouse=True)
def _reset_logging():
    """Reset logging state between tests."""
    yield
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    structlog.reset_defaults()


# -- File creation ----------------------------------------------------------


def test_setup_creates_log_dir_and_files(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("ensemble.test").info("hello")

    assert (log_dir / "app.log").exists()
    assert (log_dir / "sync.log").exists()


# -- app.log format ---------------------------------------------------------


def test_app_log_human_readable(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("ensemble.cli").info("test_event", key="value")

    content = (log_dir / "app.log").read_text()
    assert "test_event" in content
    assert "key=value" in content


def test_app_log_not_json(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("ensemble.cli").info("check_format")

    content = (log_dir / "app.log").read_text().strip()
    with pytest.raises(json.JSONDecodeError):
        json.loads(content)


# -- sync.log format --------------------------------------------------------


def test_sync_log_json(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("ensemble.sync.service").info("sync_start", scoped_providers=["a"])

    data = json.loads((log_dir / "sync.log").read_text().strip())
    assert data["event"] == "sync_start"
    assert data["scoped_providers"] == ["a"]
    assert data["level"] == "info"
    assert "timestamp" in data


def test_sync_log_excludes_non_sync_events(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("ensemble.cli").info("cli_event")
    structlog.get_logger("ensemble.sync.catalog").info("sync_event")

    sync_content = (log_dir / "sync.log").read_text()
    assert "sync_event" in sync_content
    assert "cli_event" not in sync_content

    app_content = (log_dir / "app.log").read_text()
    assert "sync_event" in app_content
    assert "cli_event" in app_content


# -- Levels and handlers ----------------------------------------------------


def test_level_filtering_suppresses_lower(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="warning", log_dir=log_dir)

    log = structlog.get_logger("ensemble.test")
    log.info("should_not_appear")
    log.warning("should_appear")

    content = (log_dir / "app.log").read_text()
    assert "should_not_appear" not in content
    assert "should_appear" in content


def test_rotation_parameters(tmp_path: Path):
    setup_logging(log_level="info", log_dir=tmp_path / "logs")

    rotating = [h for h in logging.getLogger().handlers if isinstance(h, RotatingFileHandler)]
    assert len(rotating) == 2
    for handler in rotating:
        assert handler.maxBytes == 10 * 1024 * 1024
        assert handler.backupCount == 5


def test_no_log_dir_no_handlers():
    setup_logging(log_level="info", log_dir=None)
    assert logging.getLogger().handlers == []


def test_http_loggers_quieted(tmp_path: Path):
    setup_logging(log_level="debug", log_dir=tmp_path / "logs")
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("aiosqlite").level == logging.WARNING


# -- Sync context -----------------------------------------------------------


def test_provider_sets_and_media_types_render_as_json(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("ensemble.sync.service").info(
        "provider_fetched", providers=frozenset({"b", "a"}), media_type=MediaType.ALBUM
    )

    data = json.loads((log_dir / "sync.log").read_text().strip())
    assert data["providers"] == ["a", "b"]
    assert data["media_type"] == "album"


def test_sync_context_tags_every_event(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)
    log = structlog.get_logger("ensemble.sync.catalog")

    with sync_context(["spotify--a"]) as sync_id:
        log.info("first")
        log.info("second")
    log.info("outside")

    lines = [json.loads(line) for line in (log_dir / "sync.log").read_text().splitlines()]
    assert [line["sync_id"] for line in lines[:2]] == [sync_id, sync_id]
    assert lines[0]["scoped_providers"] == ["spotify--a"]
    assert "sync_id" not in lines[2]


@pytest.mark.asyncio
async def test_sync_run_is_traceable_in_sync_log(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)
    api = AsyncMock()
    for name in ("get_albums", "get_artists", "get_audiobooks", "get_playlists", "get_tracks", "get_podcasts"):
        getattr(api, name).return_value = []

    async with LibraryStore(tmp_path / "library.db") as store:
        await LibrarySyncService(store).sync_from_api(api, force=True, scoped_providers=["A"])

    events = {e["event"]: e for e in map(json.loads, (log_dir / "sync.log").read_text().splitlines())}
    assert events["sync_start"]["scoped_providers"] == ["A"]
    assert events["sync_completed"]["sync_id"] == events["sync_start"]["sync_id"]
