"""Network interface counters from /proc/net/dev."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Callable, Mapping, Sequence

from npdstats.config import NetStatsConfig
from npdstats.labels import INTERFACE_NAME_LABEL
from npdstats.metrics import Aggregation, MetricID, new_int64_metric

logger = logging.getLogger(__name__)

NewInt64MetricFn = Callable[[MetricID, str, str, str, Aggregation, Sequence[str]], Any]


@dataclass
class NetDevLine:
    """One interface's counters from /proc/net/dev."""

    name: str
    rx_bytes: int = 0
    rx_packets: int = 0
    rx_errors: int = 0
    rx_dropped: int = 0
    rx_fifo: int = 0
    rx_frame: int = 0
    rx_compressed: int = 0
    rx_multicast: int = 0
    tx_bytes: int = 0
    tx_packets: int = 0
    tx_errors: int = 0
    tx_dropped: int = 0
    tx_fifo: int = 0
    tx_collisions: int = 0
    tx_carrier: int = 0
    tx_compressed: int = 0


_COUNTER_FIELDS = tuple(f.name for f in fields(NetDevLine) if f.name != "name")


def read_net_dev(proc_path: str) -> dict[str, NetDevLine]:
    """Parse ``<proc_path>/net/dev`` into counters per interface."""
    path = os.path.join(proc_path, "net", "dev")
    with open(path, encoding="utf-8") as handle:
        lines = handle.read().splitlines()

    result: dict[str, NetDevLine] = {}
    for line in lines[2:]:
        if not line.strip():
            continue
        name, sep, rest = line.partition(":")
        name = name.strip()
        if not sep or not name:
            raise ValueError(f"invalid net/dev line, missing interface name: {line!r}")
        values = rest.split()
        if len(values) != len(_COUNTER_FIELDS):
            raise ValueError(
                f"invalid net/dev line for {name!r}: expected {len(_COUNTER_FIELDS)} fields"
            )
        try:
            counters = [int(value) for value in values]
        except ValueError:
            raise ValueError(f"invalid counter in net/dev line for {name!r}") from None
        result[name] = NetDevLine(name, *counters)
    return result


@dataclass
class _IfaceStatCollector:
    metric: Any
    exporter: Callable[[NetDevLine], int]


class IfaceStatRecorder:
    """Records a set of metrics, each derived from one interface's counters."""

    def __init__(self, new_metric: NewInt64MetricFn = new_int64_metric) -> None:
        # The metric factory is injectable so that tests can inspect recordings.
        self._new_metric = new_metric
        self.collectors: dict[MetricID, _IfaceStatCollector] = {}

    def register(
        self,
        metric_id: MetricID,
        view_name: str,
        description: str,
        unit: str,
        aggregation: Aggregation,
        tag_names: Sequence[str],
        exporter: Callable[[NetDevLine], int],
    ) -> None:
        """Create the metric for ``metric_id`` and remember how to measure it."""
        if metric_id in self.collectors:
            raise ValueError(f"metric {str(metric_id)!r} already registered")
        metric = self._new_metric(metric_id, view_name, description, unit, aggregation, tag_names)
        self.collectors[metric_id] = _IfaceStatCollector(metric=metric, exporter=exporter)

    def record_with_same_tags(self, stat: NetDevLine, tags: Mapping[str, str]) -> None:
        """Record every registered metric for ``stat`` under the same ``tags``."""
        for metric_id, collector in self.collectors.items():
            measurement = collector.exporter(stat)
            if collector.metric is None:
                continue
            collector.metric.record(tags, measurement)
            logger.debug("Metric %r record measurement %d with tags %s", str(metric_id), measurement, tags)


_NET_METRICS = (
    (MetricID.NET_DEV_RX_BYTES, "Cumulative count of bytes received.", "Byte", "rx_bytes"),
    (MetricID.NET_DEV_RX_PACKETS, "Cumulative count of packets received.", "1", "rx_packets"),
    (MetricID.NET_DEV_RX_ERRORS, "Cumulative count of receive errors encountered.", "1", "rx_errors"),
    (
        MetricID.NET_DEV_RX_DROPPED,
        "Cumulative count of packets dropped while receiving.",
        "1",
        "rx_dropped",
    ),
    (MetricID.NET_DEV_RX_FIFO, "Cumulative count of FIFO buffer errors.", "1", "rx_fifo"),
    (MetricID.NET_DEV_RX_FRAME, "Cumulative count of packet framing errors.", "1", "rx_frame"),
    (
        MetricID.NET_DEV_RX_COMPRESSED,
        "Cumulative count of compressed packets received by the device driver.",
        "1",
        "rx_compressed",
    ),
    (
        MetricID.NET_DEV_RX_MULTICAST,
        "Cumulative count of multicast frames received by the device driver.",
        "1",
        "rx_multicast",
    ),
    (MetricID.NET_DEV_TX_BYTES, "Cumulative count of bytes transmitted.", "Byte", "tx_bytes"),
    (MetricID.NET_DEV_TX_PACKETS, "Cumulative count of packets transmitted.", "1", "tx_packets"),
    (MetricID.NET_DEV_TX_ERRORS, "Cumulative count of transmit errors encountered.", "1", "tx_errors"),
    (
        MetricID.NET_DEV_TX_DROPPED,
        "Cumulative count of packets dropped while transmitting.",
        "1",
        "tx_dropped",
    ),
    (MetricID.NET_DEV_TX_FIFO, "Cumulative count of FIFO buffer errors.", "1", "tx_fifo"),
    (
        MetricID.NET_DEV_TX_COLLISIONS,
        "Cumulative count of collisions detected on the interface.",
        "1",
        "tx_collisions",
    ),
    (
        MetricID.NET_DEV_TX_CARRIER,
        "Cumulative count of carrier losses detected by the device driver.",
        "1",
        "tx_carrier",
    ),
    (
        MetricID.NET_DEV_TX_COMPRESSED,
        "Cumulative count of compressed packets transmitted by the device driver.",
        "1",
        "tx_compressed",
    ),
)


def _field_exporter(field_name: str) -> Callable[[NetDevLine], int]:
    def export(stat: NetDevLine) -> int:
        return int(getattr(stat, field_name))

    return export


class NetCollector:
    """Records per-interface network counters."""

    def __init__(
        self,
        net_config: NetStatsConfig,
        proc_path: str,
        *,
        recorder: IfaceStatRecorder | None = None,
    ) -> None:
        self.config = net_config
        self.proc_path = proc_path
        self.recorder = recorder if recorder is not None else IfaceStatRecorder()
        for metric_id, description, unit, field_name in _NET_METRICS:
            self._register(metric_id, description, unit, _field_exporter(field_name))

    def _register(
        self,
        metric_id: MetricID,
        description: str,
        unit: str,
        exporter: Callable[[NetDevLine], int],
    ) -> None:
        metric_config = self.config.metrics_configs.get(metric_id.value)
        if metric_config is None:
            raise ValueError(f"Metric config {metric_id.value!r} not found")
        try:
            self.recorder.register(
                metric_id,
                metric_config.display_name,
                description,
                unit,
                Aggregation.SUM,
                [INTERFACE_NAME_LABEL],
                exporter,
            )
        except ValueError as err:
            raise ValueError(f"Failed to initialize metric {metric_id.value!r}: {err}") from err

    def record_net_dev(self) -> None:
        """Read /proc/net/dev and record each interface not excluded by the config."""
        try:
            stats = read_net_dev(self.proc_path)
        except (OSError, ValueError) as err:
            logger.error("Failed to retrieve net dev stat: %s", err)
            return

        exclude = self.config.exclude_interface_regexp
        for iface, iface_stats in stats.items():
            if exclude is not None and exclude.search(iface):
                logger.debug(
                    "Network interface %s matched exclude regexp %r, skipping recording",
                    iface,
                    exclude.pattern,
                )
                continue
            self.recorder.record_with_same_tags(iface_stats, {INTERFACE_NAME_LABEL: iface})

    def collect(self) -> None:
        """Record every configured network metric once."""
        self.record_net_dev()