from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Mapping

from pydantic import BaseModel

from fmdashboard.core.config import Settings, get_settings
from fmdashboard.core.errors import RecordNotFoundError, StoreError
from fmdashboard.domain import events
from fmdashboard.domain.models import (
    Application,
    ApplicationMetric,
    ApplicationVersion,
    Group,
    GroupMetric,
    MetricPayload,
    MetricValue,
    SiteSettings,
    User,
    validate_payload,
)
from fmdashboard.persistence.db import create_collection_engine
from fmdashboard.persistence.setup import SetupGuard
from fmdashboard.persistence.site_settings import SiteSettingsStore
from fmdashboard.persistence.tables import TableAccessor, WriteResult
from fmdashboard.services.events import EventBus, get_event_bus


logger = logging.getLogger(__name__)

Payload = Mapping[str, Any]


def _document(payload: Payload | BaseModel) -> dict[str, Any]:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json", by_alias=True, exclude_unset=True)
    return dict(payload)


class DocumentDriver:
    """Entity operations over one document collection per entity kind.

    Every write validates its payload before touching a collection, so an
    invalid payload has no side effects and publishes nothing. Store failures
    raise ``StoreError``; successful writes return a ``WriteResult``.
    """

    def __init__(self, settings: Settings, bus: EventBus) -> None:
        self._settings = settings
        self._bus = bus

        def accessor(name: str, record_type: Any) -> TableAccessor[Any]:
            engine = create_collection_engine(settings.collection_path(name), echo=settings.store_echo)
            return TableAccessor(engine, name, record_type)

        self._applications: TableAccessor[Application] = accessor("application", Application)
        self._versions: TableAccessor[ApplicationVersion] = accessor("applicationVersions", ApplicationVersion)
        self._metrics: TableAccessor[ApplicationMetric | GroupMetric] = accessor("metrics", MetricValue)
        self._groups: TableAccessor[Group] = accessor("groups", Group)
        self._users: TableAccessor[User] = accessor("users", User)
        self._site_settings = SiteSettingsStore(settings.site_settings_path())
        self._setup_guard = SetupGuard(settings.default_group_id)
        self._compaction_task: asyncio.Task[None] | None = None

    @property
    def tables(self) -> tuple[TableAccessor[Any], ...]:
        return (self._applications, self._versions, self._metrics, self._groups, self._users)

    async def setup(self) -> bool:
        return await self._setup_guard.run(self)

    # Applications

    async def application_find(self, id: str) -> Application | None:
        return await self._applications.find(id)

    async def application_find_in_groups(self, groups: list[str]) -> list[Application]:
        return await self._applications.search({"group": {"$in": list(groups)}})

    async def application_find_all(self) -> list[Application]:
        return await self._applications.search({})

    async def application_get_metrics(self, id: str) -> list[ApplicationMetric]:
        return await self._metrics.search({"type": "application", "id": id})

    async def application_add_metrics(self, id: str, metric: Payload | MetricPayload) -> WriteResult:
        # Append-only: every call adds a row, readings are never overwritten.
        record = validate_payload("metricValue", ApplicationMetric, {**_document(metric), "type": "application", "id": id})
        return await self._metrics.insert(record)

    async def application_update(self, application: Payload | Application) -> WriteResult:
        record = validate_payload("application", Application, application)
        # Subscribers are notified before the write lands and may not see it yet.
        self._bus.publish(events.APPLICATION_UPDATED, record.to_document())
        return await self._applications.update({"id": record.id}, record)

    async def application_delete(self, id: str) -> WriteResult:
        return await self._applications.delete(id)

    # Application versions

    async def application_version_find(
        self, application_id: str, environment: str, version: str
    ) -> ApplicationVersion | None:
        versions = await self._versions.search(
            {"applicationId": application_id, "environment": environment, "version": version}
        )
        return versions[0] if versions else None

    async def application_version_find_all(
        self, application_id: str, environment: str, version: str | None = None
    ) -> list[ApplicationVersion]:
        query: dict[str, Any] = {"applicationId": application_id, "environment": environment}
        if version is not None:
            query["version"] = version
        return await self._versions.search(query)

    async def application_version_find_latest(
        self, application_id: str, environment: str
    ) -> list[ApplicationVersion]:
        # Plain updates do not demote older versions, so several records can be flagged.
        return await self._versions.search(
            {"applicationId": application_id, "environment": environment, "latest": True}
        )

    async def application_version_update(self, version: Payload | ApplicationVersion) -> WriteResult:
        record = validate_payload("applicationVersion", ApplicationVersion, version)
        result = await self._versions.update(record.key_query(), record)
        self._bus.publish(events.APPLICATION_VERSION_UPDATED, record.to_document())
        return result

    async def application_version_promote(
        self, application_id: str, environment: str, version: str
    ) -> ApplicationVersion:
        result = await self._versions.set_exclusive_flag(
            {"applicationId": application_id, "environment": environment},
            {"version": version},
            "latest",
        )
        if not result.matched:
            raise RecordNotFoundError(
                f"application version {application_id}/{environment}/{version} does not exist"
            )
        promoted = await self.application_version_find(application_id, environment, version)
        if promoted is None:
            raise RecordNotFoundError(
                f"application version {application_id}/{environment}/{version} was removed during promotion"
            )
        self._bus.publish(events.APPLICATION_VERSION_UPDATED, promoted.to_document())
        return promoted

    async def application_version_delete(
        self, application_id: str, environment: str, version: str
    ) -> WriteResult:
        return await self._versions.delete_where(
            {"applicationId": application_id, "environment": environment, "version": version}
        )

    # Metrics

    async def group_get_metrics(self, id: str) -> list[GroupMetric]:
        return await self._metrics.search({"type": "group", "id": id})

    async def group_update_metric(self, metric: Payload | GroupMetric) -> WriteResult:
        # Keyed upsert: at most one metric row per group id, unlike the application append log.
        record = validate_payload("metricValue", GroupMetric, {**_document(metric), "type": "group"})
        self._bus.publish(events.GROUP_METRIC_UPDATED, record.to_document())
        return await self._metrics.update({"type": "group", "id": record.id}, record)

    # Groups

    async def group_find(self, id: str) -> Group | None:
        return await self._groups.find(id)

    async def group_find_by_name(self, name: str) -> Group | None:
        groups = await self._groups.search({"name": name})
        return groups[0] if groups else None

    async def group_find_all(self) -> list[Group]:
        return await self._groups.search({})

    async def group_update(self, group: Payload | Group) -> WriteResult:
        record = validate_payload("group", Group, group)
        self._bus.publish(events.GROUP_UPDATED, record.to_document())
        return await self._groups.update({"id": record.id}, record)

    async def group_delete(self, id: str) -> WriteResult:
        return await self._groups.delete(id)

    # Users

    async def user_find(self, id: str) -> User | None:
        return await self._users.find(id)

    async def user_find_by_email(self, email: str) -> User | None:
        users = await self._users.search({"email": email})
        return users[0] if users else None

    async def user_find_all(self) -> list[User]:
        return await self._users.search({})

    async def user_update(self, user: Payload | User) -> WriteResult:
        record = validate_payload("user", User, user)
        return await self._users.update({"id": record.id}, record)

    async def user_delete(self, id: str) -> WriteResult:
        return await self._users.delete(id)

    # Site settings

    async def site_settings_get(self) -> SiteSettings:
        return await self._site_settings.get()

    async def site_settings_update(self, settings: Payload | SiteSettings) -> SiteSettings:
        return await self._site_settings.update(settings)

    # Maintenance

    async def compact(self) -> None:
        for table in self.tables:
            await table.compact()

    async def _compaction_loop(self, interval_s: int) -> None:
        while True:
            await asyncio.sleep(interval_s)
            try:
                await self.compact()
            except StoreError:
                logger.exception("collection compaction cycle failed")

    def start_compaction(self, interval_s: int | None = None) -> asyncio.Task[None] | None:
        interval = self._settings.compaction_interval_s if interval_s is None else interval_s
        if interval <= 0 or self._compaction_task is not None:
            return self._compaction_task
        self._compaction_task = asyncio.create_task(self._compaction_loop(interval))
        return self._compaction_task

    async def close(self) -> None:
        if self._compaction_task is not None:
            self._compaction_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._compaction_task
            self._compaction_task = None
        for table in self.tables:
            await table.close()


def create_driver(settings: Settings | None = None, bus: EventBus | None = None) -> DocumentDriver:
    return DocumentDriver(settings or get_settings(), bus or get_event_bus())


_driver: DocumentDriver | None = None


def get_driver() -> DocumentDriver:
    # Application-lifetime instance; its setup guard is what makes setup one-shot per process.
    global _driver
    if _driver is None:
        _driver = create_driver()
    return _driver


async def reset_driver() -> None:
    global _driver
    if _driver is not None:
        await _driver.close()
        _driver = None
