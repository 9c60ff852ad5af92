from __future__ import annotations

import asyncio
import sys

from fmdashboard.core.errors import DashboardError
from fmdashboard.core.logging import configure_logging
from fmdashboard.persistence.document_driver import create_driver


async def main() -> int:
    configure_logging()
    driver = create_driver()
    try:
        seeded = await driver.setup()
        settings = await driver.site_settings_get()
    except DashboardError as exc:
        print(f"setup failed: {exc}", file=sys.stderr)
        return 1
    finally:
        await driver.close()
    print(f"setup {'completed' if seeded else 'already done'}; tokens={len(settings.tokens)} webhooks={len(settings.webhooks)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
