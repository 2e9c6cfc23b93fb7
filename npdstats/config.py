"""Configuration of the system stats monitor."""

from __future__ import annotations

import os
import re
import sys
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Mapping

from npdstats.helpers import format_duration, parse_duration

DEFAULT_INVOKE_INTERVAL_STRING = format_duration(timedelta(seconds=60))
DEFAULT_LSBLK_TIMEOUT_STRING = format_duration(timedelta(seconds=5))
DEFAULT_KNOWN_MODULES_CONFIG_PATH = "guestosconfig/known-modules.json"


def default_proc_path() -> str:
    """Return where procfs lives on this platform, or "" where there is none."""
    return "/proc" if sys.platform.startswith("linux") else ""


def compile_interface_regexp(text: str) -> re.Pattern | None:
    """Compile an interface exclusion pattern; an empty pattern means none."""
    if not text:
        return None
    try:
        return re.compile(text)
    except re.error as err:
        raise ValueError(f"invalid interface regexp {text!r}: {err}") from err


@dataclass
class MetricConfig:
    display_name: str = ""


@dataclass
class CPUStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)


@dataclass
class DiskStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)
    include_root_blk: bool = False
    include_all_attached_blk: bool = False
    lsblk_timeout_string: str = ""
    lsblk_timeout: timedelta = timedelta(0)


@dataclass
class HostStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)


@dataclass
class MemoryStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)


@dataclass
class OSFeatureStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)
    known_modules_config_path: str = ""


@dataclass
class NetStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)
    exclude_interface_regexp: re.Pattern | None = None


@dataclass
class SystemStatsConfig:
    cpu_config: CPUStatsConfig = field(default_factory=CPUStatsConfig)
    disk_config: DiskStatsConfig = field(default_factory=DiskStatsConfig)
    host_config: HostStatsConfig = field(default_factory=HostStatsConfig)
    memory_config: MemoryStatsConfig = field(default_factory=MemoryStatsConfig)
    os_feature_config: OSFeatureStatsConfig = field(default_factory=OSFeatureStatsConfig)
    net_config: NetStatsConfig = field(default_factory=NetStatsConfig)
    invoke_interval_string: str = ""
    invoke_interval: timedelta = timedelta(0)
    proc_path: str = ""

    def apply_configuration(self) -> None:
        """Fill in defaults and parse the duration strings."""
        if not self.invoke_interval_string:
            self.invoke_interval_string = DEFAULT_INVOKE_INTERVAL_STRING
        if not self.proc_path:
            self.proc_path = default_proc_path()
        if not self.disk_config.lsblk_timeout_string:
            self.disk_config.lsblk_timeout_string = DEFAULT_LSBLK_TIMEOUT_STRING
        if not self.os_feature_config.known_modules_config_path:
            self.os_feature_config.known_modules_config_path = DEFAULT_KNOWN_MODULES_CONFIG_PATH

        try:
            self.invoke_interval = parse_duration(self.invoke_interval_string)
        except ValueError as err:
            raise ValueError(
                f"error in parsing InvokeIntervalString {self.invoke_interval_string!r}: {err}"
            ) from err
        try:
            self.disk_config.lsblk_timeout = parse_duration(self.disk_config.lsblk_timeout_string)
        except ValueError as err:
            raise ValueError(
                "error in parsing LsblkTimeoutString "
                f"{self.disk_config.lsblk_timeout_string!r}: {err}"
            ) from err

    def _validate_proc_path(self) -> None:
        if sys.platform.startswith("linux"):
            os.stat(self.proc_path)

    def validate(self) -> None:
        """Raise ValueError if the settings are not usable."""
        zero = timedelta(0)
        if self.invoke_interval <= zero:
            raise ValueError(
                f"InvokeInterval {format_duration(self.invoke_interval)} must be above 0s"
            )
        try:
            self._validate_proc_path()
        except OSError as err:
            raise ValueError(f"ProcPath {self.proc_path} check failed: {err}") from err
        lsblk_timeout = self.disk_config.lsblk_timeout
        if lsblk_timeout <= zero:
            raise ValueError(f"LsblkTimeout {format_duration(lsblk_timeout)} must be above 0s")
        if lsblk_timeout > self.invoke_interval:
            raise ValueError(
                f"LsblkTimeout {format_duration(lsblk_timeout)} must be shorter than "
                f"InvokeInterval {format_duration(self.invoke_interval)}"
            )


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"configuration section {key!r} must be an object")
    return value


def _string(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"configuration value {key!r} must be a string")
    return value


def _bool(data: Mapping[str, Any], key: str) -> bool:
    value = data.get(key, False)
    if not isinstance(value, bool):
        raise ValueError(f"configuration value {key!r} must be a boolean")
    return value


def _metrics_configs(section: Mapping[str, Any]) -> dict[str, MetricConfig]:
    raw = _section(section, "metricsConfigs")
    configs: dict[str, MetricConfig] = {}
    for name, entry in raw.items():
        if not isinstance(entry, Mapping):
            raise ValueError(f"metric config {name!r} must be an object")
        configs[name] = MetricConfig(display_name=_string(entry, "displayName"))
    return configs


def system_stats_config_from_dict(data: Mapping[str, Any]) -> SystemStatsConfig:
    """Build a SystemStatsConfig from its decoded JSON document."""
    if not isinstance(data, Mapping):
        raise ValueError("configuration must be an object")
    cpu = _section(data, "cpu")
    disk = _section(data, "disk")
    host = _section(data, "host")
    memory = _section(data, "memory")
    os_feature = _section(data, "osFeature")
    net = _section(data, "net")
    return SystemStatsConfig(
        cpu_config=CPUStatsConfig(metrics_configs=_metrics_configs(cpu)),
        disk_config=DiskStatsConfig(
            metrics_configs=_metrics_configs(disk),
            include_root_blk=_bool(disk, "includeRootBlk"),
            include_all_attached_blk=_bool(disk, "includeAllAttachedBlk"),
            lsblk_timeout_string=_string(disk, "lsblkTimeout"),
        ),
        host_config=HostStatsConfig(metrics_configs=_metrics_configs(host)),
        memory_config=MemoryStatsConfig(metrics_configs=_metrics_configs(memory)),
        os_feature_config=OSFeatureStatsConfig(
            metrics_configs=_metrics_configs(os_feature),
            known_modules_config_path=_string(os_feature, "knownModulesConfigPath"),
        ),
        net_config=NetStatsConfig(
            metrics_configs=_metrics_configs(net),
            exclude_interface_regexp=compile_interface_regexp(
                _string(net, "excludeInterfaceRegexp")
            ),
        ),
        invoke_interval_string=_string(data, "invokeInterval"),
        proc_path=_string(data, "procPath"),
    )