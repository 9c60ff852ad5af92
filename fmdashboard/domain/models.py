from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Mapping, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fmdashboard.core.errors import PayloadValidationError


class Record(BaseModel):
    # Stored documents keep their camelCase keys and any extra attributes callers attach.
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        # Only explicitly supplied fields are written so partial payloads keep $set semantics.
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class Application(Record):
    id: str
    name: str | None = None
    group: str | None = None
    metadata: list[dict[str, Any]] = Field(default_factory=list)


class ApplicationVersion(Record):
    application_id: str = Field(alias="applicationId")
    environment: str
    version: str
    latest: bool = False

    def key_query(self) -> dict[str, str]:
        return {
            "applicationId": self.application_id,
            "environment": self.environment,
            "version": self.version,
        }


class MetricPayload(Record):
    date: datetime | None = None
    metrics: dict[str, float] = Field(default_factory=dict)


class ApplicationMetric(MetricPayload):
    type: Literal["application"] = "application"
    id: str


class GroupMetric(MetricPayload):
    type: Literal["group"] = "group"
    id: str


MetricValue = Annotated[Union[ApplicationMetric, GroupMetric], Field(discriminator="type")]


class Group(Record):
    id: str
    name: str
    metadata: list[dict[str, Any]] = Field(default_factory=list)


class User(Record):
    id: str
    email: str
    name: str | None = None
    groups: list[str] = Field(default_factory=list)
    default_group: str | None = Field(default=None, alias="defaultGroup")


class SiteSettings(Record):
    tokens: list[Any] = Field(default_factory=list)
    webhooks: list[Any] = Field(default_factory=list)


RecordT = TypeVar("RecordT", bound=BaseModel)


def validate_payload(kind: str, record_type: type[RecordT], payload: Mapping[str, Any] | BaseModel) -> RecordT:
    # Single boundary check for every externally supplied payload; nothing is written on failure.
    # Model instances are re-validated as well; model_construct bypasses validation.
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(by_alias=True, exclude_unset=True)
    try:
        return record_type.model_validate(payload)
    except ValidationError as exc:
        raise PayloadValidationError(kind, exc.errors(include_url=False)) from exc


