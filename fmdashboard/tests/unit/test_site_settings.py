from __future__ import annotations

import asyncio
import json
import logging

import pytest

from fmdashboard.core.errors import PayloadValidationError
from fmdashboard.domain.models import SiteSettings
from fmdashboard.persistence.site_settings import SiteSettingsStore


@pytest.fixture
def store(tmp_path) -> SiteSettingsStore:
    return SiteSettingsStore(tmp_path / "siteSettings.json")


@pytest.mark.asyncio
async def test_get_creates_default_file(store: SiteSettingsStore) -> None:
    assert not store.path.exists()

    settings = await store.get()

    assert settings.model_dump() == {"tokens": [], "webhooks": []}
    assert json.loads(store.path.read_text()) == {"tokens": [], "webhooks": []}


@pytest.mark.asyncio
async def test_update_is_a_shallow_merge(store: SiteSettingsStore) -> None:
    store.path.write_text(json.dumps({"tokens": [], "webhooks": ["w1"]}))

    merged = await store.update({"tokens": ["a"]})

    assert merged.model_dump() == {"tokens": ["a"], "webhooks": ["w1"]}
    assert json.loads(store.path.read_text()) == {"tokens": ["a"], "webhooks": ["w1"]}


@pytest.mark.asyncio
async def test_nested_values_are_replaced_wholesale(store: SiteSettingsStore) -> None:
    await store.update({"webhooks": [{"url": "https://a.example"}], "theme": {"dark": True, "accent": "blue"}})

    merged = await store.update({"theme": {"dark": False}})

    assert merged.webhooks == [{"url": "https://a.example"}]
    assert merged.model_extra == {"theme": {"dark": False}}

    merged = await store.update(SiteSettings(tokens=["t1"]))
    assert merged.tokens == ["t1"]
    assert merged.webhooks == [{"url": "https://a.example"}]
    assert (await store.get()).model_extra == {"theme": {"dark": False}}


@pytest.mark.asyncio
async def test_corrupt_file_degrades_to_defaults_without_repair(store: SiteSettingsStore, caplog) -> None:
    store.path.write_text("{not json")

    with caplog.at_level(logging.ERROR, logger="fmdashboard.persistence.site_settings"):
        settings = await store.get()

    assert settings.model_dump() == {"tokens": [], "webhooks": []}
    assert store.path.read_text() == "{not json"
    assert any(record.levelno == logging.ERROR for record in caplog.records)


@pytest.mark.asyncio
async def test_null_file_is_treated_as_corrupt(store: SiteSettingsStore, caplog) -> None:
    store.path.write_text("null")

    with caplog.at_level(logging.ERROR, logger="fmdashboard.persistence.site_settings"):
        settings = await store.get()

    assert settings.model_dump() == {"tokens": [], "webhooks": []}
    assert store.path.read_text() == "null"
    assert any(record.levelno == logging.ERROR for record in caplog.records)


@pytest.mark.asyncio
async def test_parallel_first_access_creates_file_once(tmp_path) -> None:
    stores = [SiteSettingsStore(tmp_path / f"site-{index}" / "siteSettings.json") for index in range(10)]

    results = await asyncio.gather(*(store.get() for store in stores for _ in range(8)))

    assert all(settings.model_dump() == {"tokens": [], "webhooks": []} for settings in results)
    for store in stores:
        assert json.loads(store.path.read_text()) == {"tokens": [], "webhooks": []}
        assert [path.name for path in store.path.parent.iterdir()] == ["siteSettings.json"]


@pytest.mark.asyncio
async def test_parallel_get_and_update_do_not_collide(store: SiteSettingsStore) -> None:
    await asyncio.gather(
        *(store.get() for _ in range(5)),
        store.update({"tokens": ["t1"]}),
        *(store.get() for _ in range(5)),
    )

    assert json.loads(store.path.read_text()) == {"tokens": ["t1"], "webhooks": []}
    assert [path.name for path in store.path.parent.iterdir()] == ["siteSettings.json"]


@pytest.mark.asyncio
async def test_update_over_corrupt_file_rewrites_it(store: SiteSettingsStore) -> None:
    store.path.write_text("[1, 2, 3]")

    merged = await store.update({"tokens": ["t1"]})

    assert merged.model_dump() == {"tokens": ["t1"], "webhooks": []}
    assert json.loads(store.path.read_text()) == {"tokens": ["t1"], "webhooks": []}


@pytest.mark.asyncio
async def test_invalid_merge_is_not_written(store: SiteSettingsStore) -> None:
    store.path.write_text(json.dumps({"tokens": ["t1"], "webhooks": []}))

    with pytest.raises(PayloadValidationError) as excinfo:
        await store.update({"webhooks": "https://not-a-list.example"})

    assert excinfo.value.kind == "siteSettings"
    assert json.loads(store.path.read_text()) == {"tokens": ["t1"], "webhooks": []}


@pytest.mark.asyncio
async def test_driver_delegates_to_settings_file(driver, settings) -> None:
    assert (await driver.site_settings_get()).tokens == []
    await driver.site_settings_update({"tokens": [{"key": "ci", "value": "secret"}]})

    stored = json.loads(settings.site_settings_path().read_text())
    assert stored == {"tokens": [{"key": "ci", "value": "secret"}], "webhooks": []}
