"""Memory usage metrics from /proc/meminfo, or from the OS on Windows."""

from __future__ import annotations

import logging
import sys
from typing import Any, Callable, Mapping

import psutil

from npdstats.config import MemoryStatsConfig
from npdstats.labels import STATE_LABEL
from npdstats.metrics import (
    Aggregation,
    Float64Metric,
    Int64Metric,
    MetricID,
    new_float64_metric,
    new_int64_metric,
)

logger = logging.getLogger(__name__)

_MEMINFO_PATH = "/proc/meminfo"
_KIB = 1024


def read_meminfo(path: str = _MEMINFO_PATH) -> dict[str, int]:
    """Parse a meminfo file into its values, keyed by field name (mostly in kB)."""
    with open(path, encoding="utf-8") as handle:
        content = handle.read()

    result: dict[str, int] = {}
    for line in content.splitlines():
        if not line.strip():
            continue
        key, sep, rest = line.partition(":")
        parts = rest.split()
        if not sep or not key.strip() or not parts or len(parts) > 2:
            raise ValueError(f"malformed meminfo line: {line!r}")
        try:
            result[key.strip()] = int(parts[0])
        except ValueError:
            raise ValueError(f"invalid value in meminfo line: {line!r}") from None
    return result


class MemoryCollector:
    """Records memory metrics whose display names are configured."""

    def __init__(
        self,
        memory_config: MemoryStatsConfig,
        *,
        meminfo_path: str = _MEMINFO_PATH,
        virtual_memory: Callable[[], Any] | None = None,
    ) -> None:
        self.config = memory_config
        self._meminfo_path = meminfo_path
        self._virtual_memory = virtual_memory or psutil.virtual_memory

        def name(metric_id: MetricID) -> str:
            entry = memory_config.metrics_configs.get(metric_id.value)
            return entry.display_name if entry is not None else ""

        def int_metric(metric_id, description, tags) -> Int64Metric | None:
            return new_int64_metric(
                metric_id, name(metric_id), description, "Byte", Aggregation.LAST_VALUE, tags
            )

        self.bytes_used = int_metric(
            MetricID.MEMORY_BYTES_USED,
            "Memory usage by each memory state, in Bytes. Summing values of all states "
            "yields the total memory on the node.",
            [STATE_LABEL],
        )
        self.percent_used: Float64Metric | None = new_float64_metric(
            MetricID.MEMORY_PERCENT_USED,
            name(MetricID.MEMORY_PERCENT_USED),
            "Memory usage in percentage of total memory.",
            "%",
            Aggregation.LAST_VALUE,
            [STATE_LABEL],
        )
        self.anonymous_used = int_metric(
            MetricID.MEMORY_ANONYMOUS_USED,
            "Anonymous memory usage, in Bytes. Summing values of all states yields the "
            "total anonymous memory used.",
            [STATE_LABEL],
        )
        self.page_cache_used = int_metric(
            MetricID.MEMORY_PAGE_CACHE_USED,
            "Page cache memory usage, in Bytes. Summing values of all states yields the "
            "total anonymous memory used.",
            [STATE_LABEL],
        )
        self.unevictable_used = int_metric(
            MetricID.MEMORY_UNEVICTABLE_USED,
            "Unevictable memory usage, in Bytes",
            [],
        )
        self.dirty_used = int_metric(
            MetricID.MEMORY_DIRTY_USED,
            "Dirty pages usage, in Bytes. Dirty means the memory is waiting to be written "
            "back to disk, and writeback means the memory is actively being written back to disk.",
            [STATE_LABEL],
        )

    def record_meminfo(self, meminfo: Mapping[str, int]) -> None:
        """Record the metrics derived from parsed meminfo values (in kB)."""
        total = meminfo.get("MemTotal")
        free = meminfo.get("MemFree")
        buffers = meminfo.get("Buffers")
        cached = meminfo.get("Cached")
        slab = meminfo.get("Slab")
        parts_known = None not in (free, buffers, cached, slab)

        def record_states(metric: Int64Metric | None, states: Mapping[str, str]) -> None:
            if metric is None:
                return
            for state, key in states.items():
                value = meminfo.get(key)
                if value is not None:
                    metric.record({STATE_LABEL: state}, value * _KIB)

        record_states(
            self.bytes_used,
            {"free": "MemFree", "buffered": "Buffers", "cached": "Cached", "slab": "Slab"},
        )
        if self.bytes_used is not None and total is not None and parts_known:
            used = total - free - buffers - cached - slab
            self.bytes_used.record({STATE_LABEL: "used"}, used * _KIB)

        if self.percent_used is not None and total is not None and total > 0 and parts_known:
            ratio = (total - free - buffers - cached - slab) / total
            self.percent_used.record({STATE_LABEL: "used"}, ratio * 100.0)

        record_states(self.dirty_used, {"dirty": "Dirty", "writeback": "Writeback"})
        record_states(self.anonymous_used, {"active": "Active(anon)", "inactive": "Inactive(anon)"})
        record_states(self.page_cache_used, {"active": "Active(file)", "inactive": "Inactive(file)"})

        unevictable = meminfo.get("Unevictable")
        if self.unevictable_used is not None and unevictable is not None:
            self.unevictable_used.record({}, unevictable * _KIB)

    def _collect_windows(self) -> None:
        try:
            meminfo = self._virtual_memory()
        except (OSError, psutil.Error) as err:
            logger.error("cannot get windows memory metrics: %s", err)
            return
        if self.bytes_used is not None:
            self.bytes_used.record({STATE_LABEL: "free"}, int(meminfo.available) * _KIB)
            self.bytes_used.record({STATE_LABEL: "used"}, int(meminfo.used) * _KIB)
        if self.percent_used is not None:
            self.percent_used.record({STATE_LABEL: "used"}, float(meminfo.percent))

    def collect(self) -> None:
        """Record every configured memory metric once."""
        if sys.platform == "win32":
            self._collect_windows()
            return
        try:
            meminfo = read_meminfo(self._meminfo_path)
        except (OSError, ValueError) as err:
            logger.error("Failed to retrieve memory stats: %s", err)
            return
        self.record_meminfo(meminfo)