"""CPU load, usage and /proc/stat metrics."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

import psutil

from npdstats.config import CPUStatsConfig
from npdstats.labels import CPU_LABEL, STAGE_LABEL, STATE_LABEL
from npdstats.metrics import (
    Aggregation,
    Float64Metric,
    Int64Metric,
    MetricID,
    new_float64_metric,
    new_int64_metric,
)

logger = logging.getLogger(__name__)

# Ratio between one second and one USER_HZ clock tick; 100 on nearly every architecture.
CLOCK_TICK = 100.0

_USAGE_STATES = (
    "user",
    "system",
    "idle",
    "nice",
    "iowait",
    "irq",
    "softirq",
    "steal",
    "guest",
    "guest_nice",
)

# (CPUStat attribute, stage label value)
_CPU_STAGES = (
    ("user", "user"),
    ("nice", "nice"),
    ("system", "system"),
    ("idle", "idle"),
    ("iowait", "iowait"),
    ("irq", "iRQ"),
    ("softirq", "softIRQ"),
    ("steal", "steal"),
    ("guest", "guest"),
    ("guest_nice", "guestNice"),
)


@dataclass
class CPUStat:
    """Time in seconds one CPU (or all of them) spent in each state."""

    user: float = 0.0
    nice: float = 0.0
    system: float = 0.0
    idle: float = 0.0
    iowait: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float = 0.0
    guest: float = 0.0
    guest_nice: float = 0.0


@dataclass
class ProcStat:
    """The parts of /proc/stat the collector reports."""

    cpu_total: CPUStat = field(default_factory=CPUStat)
    cpu: dict[int, CPUStat] = field(default_factory=dict)
    irq_total: int = 0
    context_switches: int = 0
    boot_time: int = 0
    process_created: int = 0
    processes_running: int = 0
    processes_blocked: int = 0
    softirq_total: int = 0


_CPU_FIELDS = (
    "user",
    "nice",
    "system",
    "idle",
    "iowait",
    "irq",
    "softirq",
    "steal",
    "guest",
    "guest_nice",
)

_COUNTERS = {
    "intr": "irq_total",
    "ctxt": "context_switches",
    "btime": "boot_time",
    "processes": "process_created",
    "procs_running": "processes_running",
    "procs_blocked": "processes_blocked",
    "softirq": "softirq_total",
}


def _parse_cpu_line(fields: Sequence[str], line: str) -> tuple[int, CPUStat]:
    values: list[float] = []
    for text in fields[1 : 1 + len(_CPU_FIELDS)]:
        try:
            values.append(float(text))
        except ValueError:
            break
    if not values:
        raise ValueError(f"couldn't parse {line!r} (cpu): 0 elements parsed")
    stat = CPUStat(**{name: value / CLOCK_TICK for name, value in zip(_CPU_FIELDS, values)})
    label = fields[0]
    if label == "cpu":
        return -1, stat
    try:
        return int(label[3:]), stat
    except ValueError:
        raise ValueError(f"couldn't parse {line!r} (cpu/cpuid)") from None


def read_proc_stat(proc_path: str) -> ProcStat:
    """Parse ``<proc_path>/stat``."""
    path = os.path.join(proc_path, "stat")
    with open(path, encoding="utf-8") as handle:
        content = handle.read()

    result = ProcStat()
    for line in content.splitlines():
        fields = line.split()
        if len(fields) < 2:
            continue
        key = fields[0]
        if key.startswith("cpu"):
            cpu_id, stat = _parse_cpu_line(fields, line)
            if cpu_id == -1:
                result.cpu_total = stat
            else:
                result.cpu[cpu_id] = stat
            continue
        attribute = _COUNTERS.get(key)
        if attribute is None:
            continue
        try:
            setattr(result, attribute, int(fields[1]))
        except ValueError:
            raise ValueError(f"couldn't parse {line!r} ({key})") from None
    return result


def _display_name(config: CPUStatsConfig, metric_id: MetricID) -> str:
    entry = config.metrics_configs.get(metric_id.value)
    return entry.display_name if entry is not None else ""


def _default_cpu_times() -> Any:
    return psutil.cpu_times(percpu=False)


class CPUCollector:
    """Records CPU metrics whose display names are configured."""

    def __init__(
        self,
        cpu_config: CPUStatsConfig,
        proc_path: str,
        *,
        cpu_times: Callable[[], Any] | None = None,
        load_avg: Callable[[], Sequence[float]] | None = None,
    ) -> None:
        self.config = cpu_config
        self.proc_path = proc_path
        self._cpu_times = cpu_times or _default_cpu_times
        self._load_avg = load_avg or psutil.getloadavg
        self.last_usage_time: dict[str, float] = {}

        def float_metric(metric_id, description, unit, aggregation, tags) -> Float64Metric | None:
            return new_float64_metric(
                metric_id, _display_name(cpu_config, metric_id), description, unit, aggregation, tags
            )

        def int_metric(metric_id, description, unit, aggregation, tags) -> Int64Metric | None:
            return new_int64_metric(
                metric_id, _display_name(cpu_config, metric_id), description, unit, aggregation, tags
            )

        self.runnable_task_count = float_metric(
            MetricID.CPU_RUNNABLE_TASK_COUNT,
            "The average number of runnable tasks in the run-queue during the last minute",
            "1",
            Aggregation.LAST_VALUE,
            [],
        )
        self.usage_time = float_metric(
            MetricID.CPU_USAGE_TIME, "CPU usage, in seconds", "s", Aggregation.SUM, [STATE_LABEL]
        )
        self.cpu_load_1m = float_metric(
            MetricID.CPU_LOAD_1M, "CPU average load (1m)", "1", Aggregation.LAST_VALUE, []
        )
        self.cpu_load_5m = float_metric(
            MetricID.CPU_LOAD_5M, "CPU average load (5m)", "1", Aggregation.LAST_VALUE, []
        )
        self.cpu_load_15m = float_metric(
            MetricID.CPU_LOAD_15M, "CPU average load (15m)", "1", Aggregation.LAST_VALUE, []
        )
        self.system_processes_total = int_metric(
            MetricID.SYSTEM_PROCESSES_TOTAL,
            "Number of forks since boot.",
            "1",
            Aggregation.SUM,
            [],
        )
        self.system_procs_running = int_metric(
            MetricID.SYSTEM_PROCS_RUNNING,
            "Number of processes currently running.",
            "1",
            Aggregation.LAST_VALUE,
            [],
        )
        self.system_procs_blocked = int_metric(
            MetricID.SYSTEM_PROCS_BLOCKED,
            "Number of processes currently blocked.",
            "1",
            Aggregation.LAST_VALUE,
            [],
        )
        self.system_interrupts_total = int_metric(
            MetricID.SYSTEM_INTERRUPTS_TOTAL,
            "Total number of interrupts serviced (cumulative).",
            "1",
            Aggregation.SUM,
            [],
        )
        self.system_cpu_stat = float_metric(
            MetricID.SYSTEM_CPU_STAT,
            "Cumulative time each cpu spent in various stages.",
            "ns",
            Aggregation.SUM,
            [CPU_LABEL, STAGE_LABEL],
        )

    def record_load(self) -> None:
        """Record the load averages."""
        if sys.platform == "win32":
            return
        if (
            self.runnable_task_count is None
            and self.cpu_load_1m is None
            and self.cpu_load_5m is None
            and self.cpu_load_15m is None
        ):
            return
        try:
            load1, load5, load15 = self._load_avg()
        except OSError as err:
            logger.error("Failed to retrieve average CPU load: %s", err)
            return

        if self.runnable_task_count is not None:
            self.runnable_task_count.record({}, load1)
        if self.cpu_load_1m is not None:
            self.cpu_load_1m.record({}, load1)
        if self.cpu_load_5m is not None:
            self.cpu_load_5m.record({}, load5)
        if self.cpu_load_15m is not None:
            self.cpu_load_15m.record({}, load15)

    def record_usage(self) -> None:
        """Record CPU time per state spent since the previous call, in clock ticks."""
        if self.usage_time is None:
            return
        try:
            times = self._cpu_times()
        except (OSError, RuntimeError) as err:
            logger.error("Failed to retrieve CPU timers stat: %s", err)
            return

        for state in _USAGE_STATES:
            current = CLOCK_TICK * float(getattr(times, state, 0.0))
            self.usage_time.record({STATE_LABEL: state}, current - self.last_usage_time.get(state, 0.0))
            self.last_usage_time[state] = current

    def record_system_stats(self) -> None:
        """Record process, interrupt and per-CPU counters from /proc/stat."""
        if sys.platform == "win32":
            return
        if (
            self.system_cpu_stat is None
            and self.system_interrupts_total is None
            and self.system_processes_total is None
            and self.system_procs_blocked is None
            and self.system_procs_running is None
        ):
            return
        try:
            stats = read_proc_stat(self.proc_path)
        except (OSError, ValueError) as err:
            logger.error("Failed to retrieve cpu/process stats: %s", err)
            return

        if self.system_processes_total is not None:
            self.system_processes_total.record({}, stats.process_created)
        if self.system_procs_running is not None:
            self.system_procs_running.record({}, stats.processes_running)
        if self.system_procs_blocked is not None:
            self.system_procs_blocked.record({}, stats.processes_blocked)
        if self.system_interrupts_total is not None:
            self.system_interrupts_total.record({}, stats.irq_total)

        if self.system_cpu_stat is not None:
            for cpu_id, cpu in stats.cpu.items():
                for attribute, stage in _CPU_STAGES:
                    self.system_cpu_stat.record(
                        {CPU_LABEL: f"cpu{cpu_id}", STAGE_LABEL: stage},
                        getattr(cpu, attribute),
                    )

    def collect(self) -> None:
        """Record every configured CPU metric once."""
        self.record_load()
        self.record_usage()
        self.record_system_stats()