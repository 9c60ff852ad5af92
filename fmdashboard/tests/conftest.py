from __future__ import annotations

from typing import Any

import pytest

from fmdashboard.core.config import Settings, get_settings
from fmdashboard.domain import events
from fmdashboard.persistence.document_driver import DocumentDriver, create_driver
from fmdashboard.services.events import InProcessEventBus


@pytest.fixture
def settings(tmp_path, monkeypatch) -> Settings:
    # Point every collection and the settings file at a per-test directory.
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def bus() -> InProcessEventBus:
    return InProcessEventBus()


@pytest.fixture
def published(bus: InProcessEventBus) -> list[tuple[str, dict[str, Any]]]:
    received: list[tuple[str, dict[str, Any]]] = []
    for name in (
        events.APPLICATION_UPDATED,
        events.APPLICATION_VERSION_UPDATED,
        events.GROUP_UPDATED,
        events.GROUP_METRIC_UPDATED,
    ):
        bus.subscribe(name, lambda event_name, payload: received.append((event_name, payload)))
    return received


@pytest.fixture
async def driver(settings: Settings, bus: InProcessEventBus) -> DocumentDriver:
    driver = create_driver(settings, bus)
    yield driver
    await driver.close()
