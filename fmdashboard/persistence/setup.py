from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fmdashboard.persistence.driver import Driver


logger = logging.getLogger(__name__)


class SetupGuard:
    """One-shot initialization that seeds the default group.

    The whole check-seed-mark sequence runs under one lock, so concurrent
    callers observe either "not started" or "complete" and never seed twice.
    A failed run leaves the guard incomplete so a later call can retry.
    """

    def __init__(self, default_group_id: str = "default") -> None:
        self.default_group_id = default_group_id
        self._lock = asyncio.Lock()
        self._complete = False

    @property
    def complete(self) -> bool:
        return self._complete

    async def run(self, driver: Driver) -> bool:
        async with self._lock:
            if self._complete:
                return False
            existing = await driver.group_find(self.default_group_id)
            if existing is None:
                logger.info("setup_seed_default_group group_id=%s", self.default_group_id)
                await driver.group_update(
                    {"id": self.default_group_id, "name": self.default_group_id, "metadata": []}
                )
            self._complete = True
            return True
