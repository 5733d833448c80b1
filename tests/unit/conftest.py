"""Unit test fixtures."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

import pytest

from resolve_service.config import clear_settings_cache
from resolve_service.core.state import reset_app_state
from tests.helpers import FakeClock, build_engine, register

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from tests.helpers import Engine


@pytest.fixture(autouse=True)
def _clear_caches():
    """Clear settings cache and app state between tests."""
    clear_settings_cache()
    reset_app_state()
    yield
    clear_settings_cache()
    reset_app_state()
    os.environ.pop("CONFIG_PATH", None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(tmp_path: Path, clock: FakeClock) -> Iterator[Engine]:
    """Fully wired engine backed by tmp_path SQLite files."""
    built = build_engine(tmp_path, clock=clock)
    yield built
    built.close()


@pytest.fixture
def alice(engine: Engine) -> dict[str, Any]:
    return register(engine, "alice")


@pytest.fixture
def bob(engine: Engine) -> dict[str, Any]:
    return register(engine, "bob")


@pytest.fixture
def carol(engine: Engine) -> dict[str, Any]:
    return register(engine, "carol")
