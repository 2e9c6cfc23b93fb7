"""Disk IO and disk space metrics."""

from __future__ import annotations

import logging
import math
import subprocess
import sys
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Iterable, Mapping, Sequence

import psutil

from npdstats.config import DiskStatsConfig
from npdstats.labels import (
    DEVICE_NAME_LABEL,
    DIRECTION_LABEL,
    FS_TYPE_LABEL,
    MOUNT_OPTION_LABEL,
    STATE_LABEL,
)
from npdstats.metrics import (
    Aggregation,
    Float64Metric,
    Int64Metric,
    MetricID,
    new_float64_metric,
    new_int64_metric,
)

logger = logging.getLogger(__name__)

_SECTOR_SIZE = 512
_DISKSTATS_PATH = "/proc/diskstats"
_COLLECT_ERRORS = (OSError, ValueError, psutil.Error)


@dataclass
class _IOCounters:
    read_count: int = 0
    merged_read_count: int = 0
    write_count: int = 0
    merged_write_count: int = 0
    read_bytes: int = 0
    write_bytes: int = 0
    read_time: int = 0
    write_time: int = 0
    io_time: int = 0
    weighted_io: int = 0


def _linux_io_counters() -> dict[str, _IOCounters]:
    result: dict[str, _IOCounters] = {}
    with open(_DISKSTATS_PATH, encoding="utf-8") as handle:
        for line in handle:
            fields = line.split()
            if len(fields) < 14:
                continue
            values = [int(text) for text in fields[3:14]]
            result[fields[2]] = _IOCounters(
                read_count=values[0],
                merged_read_count=values[1],
                read_bytes=values[2] * _SECTOR_SIZE,
                read_time=values[3],
                write_count=values[4],
                merged_write_count=values[5],
                write_bytes=values[6] * _SECTOR_SIZE,
                write_time=values[7],
                io_time=values[9],
                weighted_io=values[10],
            )
    return result


def _psutil_io_counters() -> dict[str, _IOCounters]:
    raw = psutil.disk_io_counters(perdisk=True) or {}
    return {
        name: _IOCounters(
            read_count=stat.read_count,
            merged_read_count=getattr(stat, "read_merged_count", 0),
            write_count=stat.write_count,
            merged_write_count=getattr(stat, "write_merged_count", 0),
            read_bytes=stat.read_bytes,
            write_bytes=stat.write_bytes,
            read_time=getattr(stat, "read_time", 0),
            write_time=getattr(stat, "write_time", 0),
            io_time=getattr(stat, "busy_time", 0),
        )
        for name, stat in raw.items()
    }


def _default_io_counters(names: Sequence[str]) -> dict[str, _IOCounters]:
    counters = _linux_io_counters() if sys.platform.startswith("linux") else _psutil_io_counters()
    if names:
        wanted = set(names)
        counters = {name: stat for name, stat in counters.items() if name in wanted}
    return counters


def _default_partitions() -> list[Any]:
    return psutil.disk_partitions(all=False)


def list_root_block_devices(timeout: timedelta | float) -> list[str]:
    """List block devices that are neither slaves nor holders, as reported by lsblk."""
    seconds = timeout.total_seconds() if isinstance(timeout, timedelta) else float(timeout)
    # -d skips slave/holder devices, -n drops the headings, -o NAME prints names only.
    try:
        completed = subprocess.run(
            ["lsblk", "-d", "-n", "-o", "NAME"],
            capture_output=True,
            text=True,
            timeout=seconds,
            check=True,
        )
        stdout = completed.stdout
    except (OSError, subprocess.SubprocessError) as err:
        logger.error("Error calling lsblk: %s", err)
        stdout = ""
    return stdout.strip().split("\n")


def list_attached_block_devices(partitions: Iterable[Any]) -> list[str]:
    """List the devices of all currently attached partitions."""
    return [partition.device for partition in partitions]


def _mount_options(opts: Any) -> str:
    if isinstance(opts, str):
        return opts
    return ",".join(opts)


class DiskCollector:
    """Records disk IO counters and disk usage for configured metrics."""

    def __init__(
        self,
        disk_config: DiskStatsConfig,
        *,
        partitions: Callable[[], Sequence[Any]] | None = None,
        io_counters: Callable[[Sequence[str]], Mapping[str, Any]] | None = None,
        disk_usage: Callable[[str], Any] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.config = disk_config
        self._partitions = partitions or _default_partitions
        self._io_counters = io_counters or _default_io_counters
        self._disk_usage = disk_usage or psutil.disk_usage
        self._clock = clock or time.monotonic

        def name(metric_id: MetricID) -> str:
            entry = disk_config.metrics_configs.get(metric_id.value)
            return entry.display_name if entry is not None else ""

        def int_metric(metric_id, description, unit, aggregation, tags) -> Int64Metric | None:
            return new_int64_metric(metric_id, name(metric_id), description, unit, aggregation, tags)

        def float_metric(metric_id, description, unit, aggregation, tags) -> Float64Metric | None:
            return new_float64_metric(
                metric_id, name(metric_id), description, unit, aggregation, tags
            )

        device = [DEVICE_NAME_LABEL]
        device_direction = [DEVICE_NAME_LABEL, DIRECTION_LABEL]
        # Sum aggregation keeps the IO metrics cumulative counters.
        self.io_time = int_metric(
            MetricID.DISK_IO_TIME, "The IO time spent on the disk, in ms", "ms", Aggregation.SUM, device
        )
        self.weighted_io = int_metric(
            MetricID.DISK_WEIGHTED_IO, "The weighted IO on the disk, in ms", "ms", Aggregation.SUM, device
        )
        self.avg_queue_len = float_metric(
            MetricID.DISK_AVG_QUEUE_LEN,
            "The average queue length on the disk",
            "1",
            Aggregation.LAST_VALUE,
            device,
        )
        self.ops_count = int_metric(
            MetricID.DISK_OPS_COUNT, "Disk operations count", "1", Aggregation.SUM, device_direction
        )
        self.merged_ops_count = int_metric(
            MetricID.DISK_MERGED_OPS_COUNT,
            "Disk merged operations count",
            "1",
            Aggregation.SUM,
            device_direction,
        )
        self.ops_bytes = int_metric(
            MetricID.DISK_OPS_BYTES,
            "Bytes transferred in disk operations",
            "1",
            Aggregation.SUM,
            device_direction,
        )
        self.ops_time = int_metric(
            MetricID.DISK_OPS_TIME,
            "Time spent in disk operations, in ms",
            "ms",
            Aggregation.SUM,
            device_direction,
        )
        self.bytes_used = int_metric(
            MetricID.DISK_BYTES_USED,
            "Disk bytes used, in Bytes",
            "Byte",
            Aggregation.LAST_VALUE,
            [DEVICE_NAME_LABEL, FS_TYPE_LABEL, MOUNT_OPTION_LABEL, STATE_LABEL],
        )
        self.percent_used = float_metric(
            MetricID.DISK_PERCENT_USED,
            "Disk usage in percentage of total space",
            "%",
            Aggregation.LAST_VALUE,
            device,
        )

        self.last_io_time: dict[str, int] = {}
        self.last_weighted_io: dict[str, int] = {}
        self.last_read_count: dict[str, int] = {}
        self.last_write_count: dict[str, int] = {}
        self.last_merged_read_count: dict[str, int] = {}
        self.last_merged_write_count: dict[str, int] = {}
        self.last_read_bytes: dict[str, int] = {}
        self.last_write_bytes: dict[str, int] = {}
        self.last_read_time: dict[str, int] = {}
        self.last_write_time: dict[str, int] = {}
        self.last_sample_time: float | None = None

    def _record_direction(self, device: str, direction: str, stat: Any) -> None:
        tags = {DEVICE_NAME_LABEL: device, DIRECTION_LABEL: direction}
        fields = (
            (self.ops_count, f"{direction}_count", self.last_read_count, self.last_write_count),
            (
                self.merged_ops_count,
                f"merged_{direction}_count",
                self.last_merged_read_count,
                self.last_merged_write_count,
            ),
            (self.ops_bytes, f"{direction}_bytes", self.last_read_bytes, self.last_write_bytes),
            (self.ops_time, f"{direction}_time", self.last_read_time, self.last_write_time),
        )
        for metric, attribute, last_read, last_write in fields:
            if metric is None:
                continue
            history = last_read if direction == "read" else last_write
            current = int(getattr(stat, attribute))
            metric.record(tags, current - history.get(device, 0))
            history[device] = current

    def record_io_counters(self, io_counters: Mapping[str, Any], sample_time: float) -> None:
        """Record the IO activity of each device since the previous sample."""
        for device, stat in io_counters.items():
            tags = {DEVICE_NAME_LABEL: device}

            history_exists = device in self.last_io_time
            last_io_time = self.last_io_time.get(device, 0)
            last_weighted_io = self.last_weighted_io.get(device, 0)
            self.last_io_time[device] = stat.io_time
            self.last_weighted_io[device] = stat.weighted_io

            if self.io_time is not None:
                self.io_time.record(tags, stat.io_time - last_io_time)
            if self.weighted_io is not None:
                self.weighted_io.record(tags, stat.weighted_io - last_weighted_io)
            if history_exists:
                avg_queue_len = 0.0
                if last_weighted_io != stat.weighted_io:
                    diff = float(stat.weighted_io - last_weighted_io)
                    diff_ms = (sample_time - (self.last_sample_time or 0.0)) * 1000
                    if diff_ms == 0:
                        avg_queue_len = math.copysign(math.inf, diff)
                    else:
                        avg_queue_len = diff / diff_ms
                if self.avg_queue_len is not None:
                    self.avg_queue_len.record(tags, avg_queue_len)

            self._record_direction(device, "read", stat)
            self._record_direction(device, "write", stat)

    def collect(self) -> None:
        """Record disk IO and, when configured, disk space usage."""
        devices: list[str] = []
        if self.config.include_root_blk:
            devices.extend(list_root_block_devices(self.config.lsblk_timeout))

        try:
            partitions = list(self._partitions())
        except _COLLECT_ERRORS as err:
            logger.error("Failed to list disk partitions: %s", err)
            return

        if self.config.include_all_attached_blk:
            devices.extend(list_attached_block_devices(partitions))

        try:
            io_counters = self._io_counters(devices)
        except _COLLECT_ERRORS as err:
            logger.error("Failed to retrieve disk IO counters: %s", err)
            return
        sample_time = self._clock()
        try:
            self.record_io_counters(io_counters, sample_time)
            if self.bytes_used is not None:
                self._record_usage(partitions)
        finally:
            self.last_sample_time = sample_time

    def _record_usage(self, partitions: Sequence[Any]) -> None:
        # Only one row per device, even when it is mounted several times.
        seen: set[str] = set()
        for partition in partitions:
            if partition.device in seen:
                continue
            seen.add(partition.device)
            try:
                usage = self._disk_usage(partition.mountpoint)
            except _COLLECT_ERRORS as err:
                logger.error("Failed to retrieve disk usage for %r: %s", partition.mountpoint, err)
                continue
            device = partition.device.removeprefix("/dev/")
            base = {
                DEVICE_NAME_LABEL: device,
                FS_TYPE_LABEL: partition.fstype,
                MOUNT_OPTION_LABEL: _mount_options(partition.opts),
            }
            self.bytes_used.record({**base, STATE_LABEL: "free"}, int(usage.free))
            self.bytes_used.record({**base, STATE_LABEL: "used"}, int(usage.used))
            if self.percent_used is not None:
                self.percent_used.record({**base, STATE_LABEL: "used"}, float(usage.percent))