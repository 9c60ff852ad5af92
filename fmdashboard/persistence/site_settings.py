from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
from pathlib import Path
import tempfile
from typing import Any, Mapping

from pydantic import BaseModel, ValidationError

from fmdashboard.core.errors import SettingsWriteError
from fmdashboard.domain.models import SiteSettings, validate_payload


logger = logging.getLogger(__name__)

# Read outcomes that are not parsed JSON.
_MISSING = object()
_UNREADABLE = object()


def default_site_settings() -> dict[str, Any]:
    return {"tokens": [], "webhooks": []}


def _write_json(path: Path, data: Mapping[str, Any]) -> None:
    # Each write gets its own temp file beside the target, swapped in atomically.
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle)
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise


class SiteSettingsStore:
    """Singleton site settings persisted as one JSON file.

    ``get`` creates the file with defaults on first access. A file that cannot be
    parsed, or parses to something other than a settings object, is logged and
    reported as the defaults but left on disk untouched until the next
    successful ``update``.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._write_lock = asyncio.Lock()

    def _read(self) -> Any:
        if not self.path.exists():
            return _MISSING
        return json.loads(self.path.read_text(encoding="utf-8"))

    async def _load(self) -> Any:
        try:
            return await asyncio.to_thread(self._read)
        except (OSError, ValueError):
            logger.exception("Failed to read site settings from %s", self.path)
            return _UNREADABLE

    def _parse(self, raw: Any) -> SiteSettings:
        if raw is _UNREADABLE:
            return SiteSettings.model_validate(default_site_settings())
        try:
            return SiteSettings.model_validate(raw)
        except ValidationError:
            logger.exception("Stored site settings at %s are malformed", self.path)
            return SiteSettings.model_validate(default_site_settings())

    async def _write(self, data: Mapping[str, Any]) -> None:
        try:
            await asyncio.to_thread(_write_json, self.path, data)
        except OSError as exc:
            logger.warning("site_settings_write_failed path=%s", self.path, exc_info=exc)
            raise SettingsWriteError(f"could not write site settings to {self.path}") from exc

    async def _get_locked(self) -> SiteSettings:
        # Caller holds the write lock; re-check so only one first access creates the file.
        raw = await self._load()
        if raw is _MISSING:
            defaults = default_site_settings()
            await self._write(defaults)
            return SiteSettings.model_validate(defaults)
        return self._parse(raw)

    async def get(self) -> SiteSettings:
        logger.debug("site_settings_get path=%s", self.path)
        raw = await self._load()
        if raw is not _MISSING:
            return self._parse(raw)
        async with self._write_lock:
            return await self._get_locked()

    async def update(self, settings: Mapping[str, Any] | SiteSettings) -> SiteSettings:
        if isinstance(settings, BaseModel):
            patch = settings.model_dump(mode="json", by_alias=True, exclude_unset=True)
        else:
            patch = dict(settings)
        async with self._write_lock:
            current = await self._get_locked()
            # Shallow merge: top-level keys from the patch replace stored values wholesale.
            merged = {**current.model_dump(mode="json", by_alias=True), **patch}
            validated = validate_payload("siteSettings", SiteSettings, merged)
            document = validated.model_dump(mode="json", by_alias=True)
            await self._write(document)
        return validated
