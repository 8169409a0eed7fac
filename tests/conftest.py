"""Shared fixtures for Ensemble tests."""

from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture()
def base_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect all Ensemble runtime files to a temporary directory.

    Patches ``ensemble.config.get_base_dir`` so that nothing touches the
    real ``~/.ensemble/``; every derived path (database, logs, config file)
    goes through it.
    """
    fake_base = tmp_path / ".ensemble"
    fake_base.mkdir()
    (fake_base / "logs").mkdir()

    monkeypatch.setattr("ensemble.config.get_base_dir", lambda: fake_base)

    return fake_base
