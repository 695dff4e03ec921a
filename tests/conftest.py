"""Shared fixtures for the site_cloner tests."""

from __future__ import annotations

import pytest

from site_cloner import Settings
from tests.fakes import RecordingSink


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(output_dir=str(tmp_path / "out"), offline_helpers=False)
