from __future__ import annotations

from typing import Any, Mapping, Protocol

from fmdashboard.domain.models import (
    Application,
    ApplicationMetric,
    ApplicationVersion,
    Group,
    GroupMetric,
    MetricPayload,
    SiteSettings,
    User,
)
from fmdashboard.persistence.tables import WriteResult


Payload = Mapping[str, Any]


class Driver(Protocol):
    async def setup(self) -> bool:
        ...

    async def application_find(self, id: str) -> Application | None:
        ...

    async def application_find_in_groups(self, groups: list[str]) -> list[Application]:
        ...

    async def application_find_all(self) -> list[Application]:
        ...

    async def application_get_metrics(self, id: str) -> list[ApplicationMetric]:
        ...

    async def application_add_metrics(self, id: str, metric: Payload | MetricPayload) -> WriteResult:
        ...

    async def application_update(self, application: Payload | Application) -> WriteResult:
        ...

    async def application_delete(self, id: str) -> WriteResult:
        ...

    async def application_version_find(
        self, application_id: str, environment: str, version: str
    ) -> ApplicationVersion | None:
        ...

    async def application_version_find_all(
        self, application_id: str, environment: str, version: str | None = None
    ) -> list[ApplicationVersion]:
        ...

    async def application_version_find_latest(
        self, application_id: str, environment: str
    ) -> list[ApplicationVersion]:
        ...

    async def application_version_update(self, version: Payload | ApplicationVersion) -> WriteResult:
        ...

    async def application_version_promote(
        self, application_id: str, environment: str, version: str
    ) -> ApplicationVersion:
        ...

    async def application_version_delete(
        self, application_id: str, environment: str, version: str
    ) -> WriteResult:
        ...

    async def group_get_metrics(self, id: str) -> list[GroupMetric]:
        ...

    async def group_update_metric(self, metric: Payload | GroupMetric) -> WriteResult:
        ...

    async def group_find(self, id: str) -> Group | None:
        ...

    async def group_find_by_name(self, name: str) -> Group | None:
        ...

    async def group_find_all(self) -> list[Group]:
        ...

    async def group_update(self, group: Payload | Group) -> WriteResult:
        ...

    async def group_delete(self, id: str) -> WriteResult:
        ...

    async def user_find(self, id: str) -> User | None:
        ...

    async def user_find_by_email(self, email: str) -> User | None:
        ...

    async def user_find_all(self) -> list[User]:
        ...

    async def user_update(self, user: Payload | User) -> WriteResult:
        ...

    async def user_delete(self, id: str) -> WriteResult:
        ...

    async def site_settings_get(self) -> SiteSettings:
        ...

    async def site_settings_update(self, settings: Payload | SiteSettings) -> SiteSettings:
        ...
