from __future__ import annotations

from typing import Final


APPLICATION_UPDATED: Final = "updateApplication"
APPLICATION_VERSION_UPDATED: Final = "updateApplicationVersion"
GROUP_UPDATED: Final = "groupUpdated"
GROUP_METRIC_UPDATED: Final = "groupMetricUpdated"
