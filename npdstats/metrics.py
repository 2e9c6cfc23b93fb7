"""Metric identifiers, in-process metric views, a test double and Prometheus text parsing."""

from __future__ import annotations

import math
import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping, Sequence, Union


class Aggregation(str, Enum):
    """How measurements are folded into a data point."""

    LAST_VALUE = "LastValue"  # gauge: the last measurement wins
    SUM = "Sum"  # counter: measurements are added up

    def __str__(self) -> str:
        return self.value


class MetricID(str, Enum):
    """Stable identifiers of the metrics the monitors can report."""

    CPU_RUNNABLE_TASK_COUNT = "cpu/runnable_task_count"
    CPU_USAGE_TIME = "cpu/usage_time"
    CPU_LOAD_1M = "cpu/load_1m"
    CPU_LOAD_5M = "cpu/load_5m"
    CPU_LOAD_15M = "cpu/load_15m"
    PROBLEM_COUNTER = "problem_counter"
    PROBLEM_GAUGE = "problem_gauge"
    DISK_IO_TIME = "disk/io_time"
    DISK_WEIGHTED_IO = "disk/weighted_io"
    DISK_AVG_QUEUE_LEN = "disk/avg_queue_len"
    DISK_OPS_COUNT = "disk/operation_count"
    DISK_MERGED_OPS_COUNT = "disk/merged_operation_count"
    DISK_OPS_BYTES = "disk/operation_bytes_count"
    DISK_OPS_TIME = "disk/operation_time"
    DISK_BYTES_USED = "disk/bytes_used"
    DISK_PERCENT_USED = "disk/percent_used"
    HOST_UPTIME = "host/uptime"
    MEMORY_BYTES_USED = "memory/bytes_used"
    MEMORY_ANONYMOUS_USED = "memory/anonymous_used"
    MEMORY_PAGE_CACHE_USED = "memory/page_cache_used"
    MEMORY_UNEVICTABLE_USED = "memory/unevictable_used"
    MEMORY_DIRTY_USED = "memory/dirty_used"
    MEMORY_PERCENT_USED = "memory/percent_used"
    OS_FEATURE = "system/os_feature"
    SYSTEM_PROCESSES_TOTAL = "system/processes_total"
    SYSTEM_PROCS_RUNNING = "system/procs_running"
    SYSTEM_PROCS_BLOCKED = "system/procs_blocked"
    SYSTEM_INTERRUPTS_TOTAL = "system/interrupts_total"
    SYSTEM_CPU_STAT = "system/cpu_stat"
    NET_DEV_RX_BYTES = "net/rx_bytes"
    NET_DEV_RX_PACKETS = "net/rx_packets"
    NET_DEV_RX_ERRORS = "net/rx_errors"
    NET_DEV_RX_DROPPED = "net/rx_dropped"
    NET_DEV_RX_FIFO = "net/rx_fifo"
    NET_DEV_RX_FRAME = "net/rx_frame"
    NET_DEV_RX_COMPRESSED = "net/rx_compressed"
    NET_DEV_RX_MULTICAST = "net/rx_multicast"
    NET_DEV_TX_BYTES = "net/tx_bytes"
    NET_DEV_TX_PACKETS = "net/tx_packets"
    NET_DEV_TX_ERRORS = "net/tx_errors"
    NET_DEV_TX_DROPPED = "net/tx_dropped"
    NET_DEV_TX_FIFO = "net/tx_fifo"
    NET_DEV_TX_COLLISIONS = "net/tx_collisions"
    NET_DEV_TX_CARRIER = "net/tx_carrier"
    NET_DEV_TX_COMPRESSED = "net/tx_compressed"

    def __str__(self) -> str:
        return self.value


class MetricMapping:
    """Thread-safe mapping from view names back to metric IDs."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._view_name_to_metric_id: dict[str, MetricID] = {}

    def add_mapping(self, metric_id: MetricID, view_name: str) -> None:
        """Remember that ``view_name`` reports ``metric_id``."""
        with self._lock:
            self._view_name_to_metric_id[view_name] = metric_id

    def view_name_to_metric_id(self, view_name: str) -> MetricID | None:
        """Return the metric ID behind ``view_name``, or None if unknown."""
        with self._lock:
            return self._view_name_to_metric_id.get(view_name)


METRIC_MAP = MetricMapping()


@dataclass
class Int64MetricRepresentation:
    """A snapshot of one int64 time series."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    value: int = 0


@dataclass
class Float64MetricRepresentation:
    """A snapshot of one float64 time series."""

    name: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0


# Registry of tag names known to any metric; recording with others is an error.
_tag_lock = threading.RLock()
_known_tags: set[str] = set()

_MAX_TAG_NAME_LENGTH = 255


def _validate_tag_name(name: str) -> None:
    if not name or len(name) > _MAX_TAG_NAME_LENGTH:
        raise ValueError(f"invalid tag name {name!r}")
    if any(not (" " <= char <= "~") for char in name):
        raise ValueError(f"invalid tag name {name!r}")


def _register_tag_names(tag_names: Iterable[str]) -> tuple[str, ...]:
    names = tuple(tag_names)
    with _tag_lock:
        for name in names:
            if name in _known_tags:
                continue
            try:
                _validate_tag_name(name)
            except ValueError as err:
                raise ValueError(f"failed to create tag {name!r}: {err}") from err
            _known_tags.add(name)
    return names


class _View:
    """Aggregated data for one registered metric view."""

    def __init__(
        self,
        name: str,
        description: str,
        unit: str,
        aggregation: Aggregation,
        tag_keys: tuple[str, ...],
        integral: bool,
    ) -> None:
        self.name = name
        self.description = description
        self.unit = unit
        self.aggregation = aggregation
        self.tag_keys = tag_keys
        self.integral = integral
        self._lock = threading.Lock()
        self._rows: dict[frozenset[tuple[str, str]], Union[int, float]] = {}

    def record(self, tags: Mapping[str, str], measurement: Union[int, float]) -> None:
        key = frozenset((k, v) for k, v in tags.items() if k in self.tag_keys)
        with self._lock:
            if self.aggregation is Aggregation.SUM:
                self._rows[key] = self._rows.get(key, 0) + measurement
            else:
                self._rows[key] = measurement

    def rows(self) -> list[Union[Int64MetricRepresentation, Float64MetricRepresentation]]:
        representation = Int64MetricRepresentation if self.integral else Float64MetricRepresentation
        with self._lock:
            return [
                representation(name=self.name, labels=dict(key), value=value)
                for key, value in self._rows.items()
            ]


_views_lock = threading.Lock()
_views: dict[str, _View] = {}


def _register_view(
    metric_id: MetricID,
    view_name: str,
    description: str,
    unit: str,
    aggregation: Aggregation | str,
    tag_names: Sequence[str],
    integral: bool,
) -> _View | None:
    if not view_name:
        return None

    METRIC_MAP.add_mapping(metric_id, view_name)

    try:
        tag_keys = _register_tag_names(tag_names)
    except ValueError as err:
        raise ValueError(
            f"failed to create metric {view_name!r} because of tag creation failure: {err}"
        ) from err

    try:
        method = Aggregation(aggregation)
    except ValueError:
        raise ValueError(f"unknown aggregation option {str(aggregation)!r}") from None

    with _views_lock:
        existing = _views.get(view_name)
        if existing is not None:
            return existing
        view = _View(view_name, description, unit, method, tag_keys, integral)
        _views[view_name] = view
        return view


def _check_tags(tags: Mapping[str, str], metric_name: str) -> None:
    with _tag_lock:
        for tag_name in tags:
            if tag_name not in _known_tags:
                raise ValueError(
                    f"referencing none existing tag {tag_name!r} in metric {metric_name!r}"
                )


class Int64Metric:
    """A metric whose measurements are integers."""

    def __init__(self, view: _View) -> None:
        self.name = view.name
        self._view = view

    def record(self, tags: Mapping[str, str], measurement: int) -> None:
        """Record ``measurement`` under the labels ``tags``."""
        _check_tags(tags, self.name)
        self._view.record(tags, int(measurement))


class Float64Metric:
    """A metric whose measurements are floating point numbers."""

    def __init__(self, view: _View) -> None:
        self.name = view.name
        self._view = view

    def record(self, tags: Mapping[str, str], measurement: float) -> None:
        """Record ``measurement`` under the labels ``tags``."""
        _check_tags(tags, self.name)
        self._view.record(tags, float(measurement))


def new_int64_metric(
    metric_id: MetricID,
    view_name: str,
    description: str,
    unit: str,
    aggregation: Aggregation | str,
    tag_names: Sequence[str],
) -> Int64Metric | None:
    """Create an int64 metric; returns None when ``view_name`` is empty."""
    view = _register_view(metric_id, view_name, description, unit, aggregation, tag_names, True)
    return None if view is None else Int64Metric(view)


def new_float64_metric(
    metric_id: MetricID,
    view_name: str,
    description: str,
    unit: str,
    aggregation: Aggregation | str,
    tag_names: Sequence[str],
) -> Float64Metric | None:
    """Create a float64 metric; returns None when ``view_name`` is empty."""
    view = _register_view(metric_id, view_name, description, unit, aggregation, tag_names, False)
    return None if view is None else Float64Metric(view)


def view_data(
    view_name: str,
) -> list[Union[Int64MetricRepresentation, Float64MetricRepresentation]]:
    """Return the current time series of a registered view."""
    with _views_lock:
        view = _views.get(view_name)
    if view is None:
        raise KeyError(f"view {view_name!r} is not registered")
    return view.rows()


class FakeInt64Metric:
    """An in-memory int64 metric whose series can be inspected."""

    def __init__(self, name: str, aggregation: Aggregation | str, tag_names: Iterable[str]) -> None:
        self.name = name
        self.aggregation = aggregation
        self._allowed_tags = set(tag_names)
        self._metrics: list[Int64MetricRepresentation] = []

    def record(self, tags: Mapping[str, str], measurement: int) -> None:
        """Fold ``measurement`` into the series labelled ``tags``."""
        for tag_name in tags:
            if tag_name not in self._allowed_tags:
                raise ValueError(f"tag {tag_name!r} is not allowed")
        labels = dict(tags)

        series = next((m for m in self._metrics if m.labels == labels), None)
        if series is None:
            series = Int64MetricRepresentation(name=self.name, labels=labels)
            self._metrics.append(series)

        if self.aggregation == Aggregation.LAST_VALUE:
            series.value = measurement
        elif self.aggregation == Aggregation.SUM:
            series.value += measurement
        else:
            raise ValueError("unsupported aggregation type")

    def list_metrics(self) -> list[Int64MetricRepresentation]:
        """Return a snapshot of the current series."""
        return [
            Int64MetricRepresentation(name=m.name, labels=dict(m.labels), value=m.value)
            for m in self._metrics
        ]


def new_fake_int64_metric(
    name: str, aggregation: Aggregation | str, tag_names: Iterable[str]
) -> FakeInt64Metric | None:
    """Create a fake int64 metric; returns None when ``name`` is empty."""
    if not name:
        return None
    return FakeInt64Metric(name, aggregation, tag_names)


# Prometheus text exposition format.

_METRIC_NAME = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
_LABEL_NAME = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")
_TYPES = {
    "counter": "COUNTER",
    "gauge": "GAUGE",
    "histogram": "HISTOGRAM",
    "summary": "SUMMARY",
    "untyped": "UNTYPED",
}
_ESCAPES = {"\\": "\\", '"': '"', "n": "\n"}
_SUFFIXES = {
    "SUMMARY": ("_sum", "_count"),
    "HISTOGRAM": ("_sum", "_count", "_bucket"),
}


@dataclass
class _Family:
    name: str
    type: str = "UNTYPED"
    samples: list[tuple[dict[str, str], float]] = field(default_factory=list)


def _error(lineno: int, message: str) -> ValueError:
    return ValueError(f"text format parsing error in line {lineno}: {message}")


def _skip_blanks(line: str, pos: int) -> int:
    while pos < len(line) and line[pos] in " \t":
        pos += 1
    return pos


def _parse_label_value(line: str, pos: int, lineno: int) -> tuple[str, int]:
    chars: list[str] = []
    while pos < len(line):
        char = line[pos]
        if char == '"':
            return "".join(chars), pos + 1
        if char == "\\":
            escaped = line[pos + 1 : pos + 2]
            if escaped not in _ESCAPES:
                raise _error(lineno, f"invalid escape sequence '\\{escaped}'")
            chars.append(_ESCAPES[escaped])
            pos += 2
            continue
        chars.append(char)
        pos += 1
    raise _error(lineno, "unterminated label value")


def _parse_labels(line: str, pos: int, lineno: int) -> tuple[dict[str, str], int]:
    labels: dict[str, str] = {}
    while True:
        pos = _skip_blanks(line, pos)
        if line[pos : pos + 1] == "}":
            return labels, pos + 1
        match = _LABEL_NAME.match(line, pos)
        if match is None:
            raise _error(lineno, "invalid label name")
        name = match.group()
        pos = _skip_blanks(line, match.end())
        if line[pos : pos + 1] != "=":
            raise _error(lineno, f"expected '=' after label name {name!r}")
        pos = _skip_blanks(line, pos + 1)
        if line[pos : pos + 1] != '"':
            raise _error(lineno, f"expected '\"' to start value of label {name!r}")
        value, pos = _parse_label_value(line, pos + 1, lineno)
        if name in labels:
            raise _error(lineno, f"duplicate label name {name!r}")
        labels[name] = value
        pos = _skip_blanks(line, pos)
        separator = line[pos : pos + 1]
        if separator == ",":
            pos += 1
        elif separator == "}":
            return labels, pos + 1
        else:
            raise _error(lineno, "expected ',' or '}' after label value")


def _parse_sample(line: str, lineno: int) -> tuple[str, dict[str, str], float]:
    match = _METRIC_NAME.match(line)
    if match is None:
        raise _error(lineno, "invalid metric name")
    name = match.group()
    pos = _skip_blanks(line, match.end())
    labels: dict[str, str] = {}
    if line[pos : pos + 1] == "{":
        labels, pos = _parse_labels(line, pos + 1, lineno)
    rest = line[pos:].split()
    if not rest or len(rest) > 2:
        raise _error(lineno, f"expected a value and an optional timestamp for {name!r}")
    try:
        value = float(rest[0])
    except ValueError:
        raise _error(lineno, f"expected float as value, got {rest[0]!r}") from None
    if len(rest) == 2:
        try:
            int(rest[1])
        except ValueError:
            raise _error(lineno, f"expected integer as timestamp, got {rest[1]!r}") from None
    return name, labels, value


def _family_for_sample(families: dict[str, _Family], name: str) -> _Family:
    family = families.get(name)
    if family is not None:
        return family
    for base, candidate in families.items():
        for suffix in _SUFFIXES.get(candidate.type, ()):
            if name == base + suffix:
                return candidate
    family = _Family(name=name)
    families[name] = family
    return family


def _parse_families(text: str) -> dict[str, _Family]:
    families: dict[str, _Family] = {}
    for lineno, raw in enumerate(text.split("\n"), start=1):
        line = raw.strip()
        if not line:
            continue
        if line.startswith("#"):
            tokens = line[1:].split(None, 2)
            if len(tokens) < 2 or tokens[0] not in ("HELP", "TYPE"):
                continue
            keyword, name = tokens[0], tokens[1]
            if _METRIC_NAME.fullmatch(name) is None:
                raise _error(lineno, f"invalid metric name {name!r} in comment")
            if keyword == "TYPE":
                if len(tokens) < 3 or tokens[2].strip().lower() not in _TYPES:
                    raise _error(lineno, f"unknown metric type for {name!r}")
                family = families.get(name)
                if family is not None and (family.samples or family.type != "UNTYPED"):
                    raise _error(
                        lineno,
                        f"second TYPE line for metric name {name!r}, "
                        "or TYPE reported after samples",
                    )
                families.setdefault(name, _Family(name=name)).type = _TYPES[
                    tokens[2].strip().lower()
                ]
            else:
                families.setdefault(name, _Family(name=name))
            continue
        name, labels, value = _parse_sample(line, lineno)
        _family_for_sample(families, name).samples.append((labels, value))
    return families


def parse_prometheus_metrics(metrics_text: str) -> list[Float64MetricRepresentation]:
    """Parse Prometheus text-format counters and gauges into float64 snapshots."""
    families = _parse_families(metrics_text.replace("\r", ""))
    metrics: list[Float64MetricRepresentation] = []
    for family in families.values():
        for labels, value in family.samples:
            if family.type not in ("COUNTER", "GAUGE"):
                raise ValueError(
                    f"unexpected MetricType {family.type} for metric {family.name}"
                )
            metrics.append(Float64MetricRepresentation(family.name, dict(labels), value))
    return metrics


def get_float64_metric(
    metrics: Iterable[Float64MetricRepresentation],
    name: str,
    labels: Mapping[str, str],
    strict_label_matching: bool,
) -> Float64MetricRepresentation:
    """Find the first metric called ``name`` whose labels match ``labels``.

    With strict matching the labels must be identical; otherwise the metric's
    labels need only include the given ones.
    """
    for metric in metrics:
        if metric.name != name:
            continue
        if strict_label_matching and len(metric.labels) != len(labels):
            continue
        if all(metric.labels.get(key, "") == value for key, value in labels.items()):
            return metric
    raise LookupError("no matching metric found")


def _is_nan(value: float) -> bool:
    return isinstance(value, float) and math.isnan(value)