"""The system stats monitor: runs every configured collector periodically."""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import timedelta
from typing import Any

from npdstats.config import SystemStatsConfig, system_stats_config_from_dict
from npdstats.cpu_collector import CPUCollector
from npdstats.disk_collector import DiskCollector
from npdstats.host_collector import HostCollector
from npdstats.memory_collector import MemoryCollector
from npdstats.net_collector import NetCollector
from npdstats.osfeature_collector import OSFeatureCollector
from npdstats.problem_types import Monitor
from npdstats.tomb import Tomb

logger = logging.getLogger(__name__)

SYSTEM_STATS_MONITOR_NAME = "system-stats-monitor"


def _seconds(value: Any) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


class SystemStatsMonitor(Monitor):
    """Collects system metrics on a fixed interval in a background thread."""

    def __init__(self, config_path: str, config: SystemStatsConfig) -> None:
        self.config_path = config_path
        self.config = config
        self.tomb = Tomb()
        self._thread: threading.Thread | None = None

        self.cpu_collector: CPUCollector | None = None
        self.disk_collector: DiskCollector | None = None
        self.host_collector: HostCollector | None = None
        self.memory_collector: MemoryCollector | None = None
        self.os_feature_collector: OSFeatureCollector | None = None
        self.net_collector: NetCollector | None = None

        if config.cpu_config.metrics_configs:
            self.cpu_collector = CPUCollector(config.cpu_config, config.proc_path)
        if config.disk_config.metrics_configs:
            self.disk_collector = DiskCollector(config.disk_config)
        if config.host_config.metrics_configs:
            self.host_collector = HostCollector(config.host_config)
        if config.memory_config.metrics_configs:
            self.memory_collector = MemoryCollector(config.memory_config)
        if config.os_feature_config.metrics_configs:
            # A relative known-modules path is relative to the monitor's config file.
            known = config.os_feature_config.known_modules_config_path
            if not os.path.isabs(known):
                config.os_feature_config.known_modules_config_path = os.path.join(
                    os.path.dirname(config_path), known
                )
            self.os_feature_collector = OSFeatureCollector(config.os_feature_config, config.proc_path)
        if config.net_config.metrics_configs:
            self.net_collector = NetCollector(config.net_config, config.proc_path)

    @property
    def is_running(self) -> bool:
        """Whether the background collection thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def _collectors(self) -> list[Any]:
        return [
            collector
            for collector in (
                self.cpu_collector,
                self.disk_collector,
                self.host_collector,
                self.memory_collector,
                self.os_feature_collector,
                self.net_collector,
            )
            if collector is not None
        ]

    def _collect_all(self) -> None:
        for collector in self._collectors():
            collector.collect()

    def _monitor_loop(self) -> None:
        stopping = self.tomb.stopping()
        interval = _seconds(self.config.invoke_interval)
        try:
            if stopping.is_set():
                return
            self._collect_all()
            while not stopping.wait(interval):
                self._collect_all()
        except Exception:
            logger.exception("System stats monitor failed: %s", self.config_path)
            raise
        finally:
            logger.info("System stats monitor stopped: %s", self.config_path)
            self.tomb.done()

    def start(self) -> None:
        """Start collecting in the background; this monitor reports no problem statuses."""
        logger.info("Start system stats monitor %s", self.config_path)
        if self._thread is not None:
            raise RuntimeError(f"system stats monitor {self.config_path} already started")
        self._thread = threading.Thread(
            target=self._monitor_loop, name=SYSTEM_STATS_MONITOR_NAME, daemon=True
        )
        self._thread.start()
        return None

    def stop(self) -> None:
        """Stop collecting and wait for the background thread to finish."""
        logger.info("Stop system stats monitor %s", self.config_path)
        if self._thread is None:
            self.tomb.done()
        self.tomb.stop()
        if self._thread is not None:
            self._thread.join()


def new_system_stats_monitor(config_path: str) -> SystemStatsMonitor:
    """Create a monitor from the JSON configuration file at ``config_path``."""
    with open(config_path, encoding="utf-8") as handle:
        data = json.load(handle)
    config = system_stats_config_from_dict(data)
    config.apply_configuration()
    config.validate()
    return SystemStatsMonitor(config_path, config)