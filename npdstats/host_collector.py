"""Host uptime metric labelled with kernel and OS versions."""

from __future__ import annotations

import logging
import platform
from typing import Callable

from npdstats.config import HostStatsConfig
from npdstats.helpers import get_os_version, get_uptime_duration
from npdstats.metrics import Aggregation, Int64Metric, MetricID, new_int64_metric

logger = logging.getLogger(__name__)


def _default_uptime() -> float:
    return get_uptime_duration().total_seconds()


class HostCollector:
    """Records the host uptime, tagged with the kernel and OS versions."""

    def __init__(
        self,
        host_config: HostStatsConfig,
        *,
        kernel_version: str | None = None,
        os_version: str | None = None,
        uptime: Callable[[], float] | None = None,
    ) -> None:
        if kernel_version is None:
            kernel_version = platform.release()
            if not kernel_version:
                raise OSError("Failed to retrieve kernel version")
        if os_version is None:
            os_version = get_os_version()

        self.tags: dict[str, str] = {
            "kernel_version": kernel_version,
            "os_version": os_version,
        }
        self._uptime = uptime or _default_uptime
        self.uptime_metric: Int64Metric | None = None

        entry = host_config.metrics_configs.get(MetricID.HOST_UPTIME.value)
        display_name = entry.display_name if entry is not None else ""
        if display_name:
            self.uptime_metric = new_int64_metric(
                MetricID.HOST_UPTIME,
                display_name,
                "The uptime of the operating system",
                "second",
                Aggregation.LAST_VALUE,
                ["kernel_version", "os_version"],
            )

    def collect(self) -> None:
        """Record the current uptime in whole seconds."""
        try:
            uptime = self._uptime()
        except OSError as err:
            logger.error("Failed to retrieve uptime of the host: %s", err)
            return
        if self.uptime_metric is not None:
            self.uptime_metric.record(self.tags, int(uptime))