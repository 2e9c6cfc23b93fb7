import re
import uuid

import pytest

from npdstats.config import MetricConfig, NetStatsConfig
from npdstats.labels import INTERFACE_NAME_LABEL
from npdstats.metrics import Aggregation, MetricID, new_fake_int64_metric, view_data
from npdstats.net_collector import (
    IfaceStatRecorder,
    NetCollector,
    NetDevLine,
    read_net_dev,
)

NET_IDS = [m for m in MetricID if m.value.startswith("net/")]

DEFAULT_METRICS_CONFIG = {m.value: MetricConfig(display_name=m.value) for m in NET_IDS}

FAKE_NET_PROC_CONTENT = (
    "Inter-|   Receive                                                |  Transmit\n"
    " face |bytes    packets errs drop fifo frame compressed multicast|bytes    packets errs drop fifo colls carrier compressed\n"
    "eth0:\t\t5000\t100\t\t0\t\t0\t\t0 \t\t0 \t\t0 \t\t0\t\t2500\t30\t\t0\t\t0\t\t0\t\t0\t\t0\t\t0  \n"
    "docker0: \t1000\t90\t\t8\t\t7\t\t0 \t\t0 \t\t0 \t\t0\t\t0\t\t0\t\t0\t\t0\t\t0\t\t0\t\t0\t\t0\n"
    "docker1: \t500\t\t10\t\t0\t\t0\t\t0 \t\t0\t\t0\t\t0\t\t3000\t150\t\t15\t\t0\t\t20\t\t30\t\t0\t\t0\n"
    "docker2:\t0\t\t0\t\t0\t\t0\t\t0\t\t0\t\t0\t\t0\t\t6000\t300\t\t550\t\t200\t\t0\t\t0\t\t0\t\t0\n"
)


def _fake_metric(metric_id, view_name, description, unit, aggregation, tag_names):
    return new_fake_int64_metric(view_name, aggregation, tag_names)


@pytest.fixture
def proc_dir(tmp_path):
    net = tmp_path / "net"
    net.mkdir()
    (net / "dev").write_text(FAKE_NET_PROC_CONTENT)
    return str(tmp_path)


def _collect(proc_dir, exclude):
    config = NetStatsConfig(metrics_configs=dict(DEFAULT_METRICS_CONFIG), exclude_interface_regexp=exclude)
    nc = NetCollector(config, proc_dir, recorder=IfaceStatRecorder(_fake_metric))
    nc.collect()
    return nc


def _by_iface(nc, metric_id):
    metric = nc.recorder.collectors[metric_id].metric
    return {r.labels[INTERFACE_NAME_LABEL]: r.value for r in metric.list_metrics()}


def test_collect_no_filter_match(proc_dir):
    nc = _collect(proc_dir, re.compile(r"^fake$"))
    assert _by_iface(nc, MetricID.NET_DEV_RX_BYTES) == {
        "eth0": 5000,
        "docker0": 1000,
        "docker1": 500,
        "docker2": 0,
    }
    assert _by_iface(nc, MetricID.NET_DEV_TX_BYTES) == {
        "eth0": 2500,
        "docker0": 0,
        "docker1": 3000,
        "docker2": 6000,
    }


def test_collect_filter_match(proc_dir):
    nc = _collect(proc_dir, re.compile(r"docker\d+"))
    assert _by_iface(nc, MetricID.NET_DEV_RX_BYTES) == {"eth0": 5000}
    assert _by_iface(nc, MetricID.NET_DEV_TX_BYTES) == {"eth0": 2500}


def test_all_net_metrics_registered(proc_dir):
    nc = _collect(proc_dir, None)
    assert set(nc.recorder.collectors) == set(NET_IDS)
    assert _by_iface(nc, MetricID.NET_DEV_TX_ERRORS)["docker2"] == 550
    assert _by_iface(nc, MetricID.NET_DEV_TX_COLLISIONS)["docker1"] == 30


def test_read_net_dev(proc_dir):
    stats = read_net_dev(proc_dir)
    assert list(stats) == ["eth0", "docker0", "docker1", "docker2"]
    assert stats["docker0"] == NetDevLine(
        "docker0", 1000, 90, 8, 7, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0
    )


def test_read_net_dev_rejects_short_line(tmp_path):
    (tmp_path / "net").mkdir()
    (tmp_path / "net" / "dev").write_text("h1\nh2\neth0: 1 2 3\n")
    with pytest.raises(ValueError):
        read_net_dev(str(tmp_path))


def test_missing_proc_file_records_nothing(tmp_path):
    config = NetStatsConfig(metrics_configs=dict(DEFAULT_METRICS_CONFIG))
    nc = NetCollector(config, str(tmp_path), recorder=IfaceStatRecorder(_fake_metric))
    nc.collect()
    assert _by_iface(nc, MetricID.NET_DEV_RX_BYTES) == {}


def test_duplicate_registration_fails():
    recorder = IfaceStatRecorder(_fake_metric)
    args = ("x", "d", "1", Aggregation.SUM, [INTERFACE_NAME_LABEL], lambda s: s.rx_bytes)
    recorder.register(MetricID.NET_DEV_RX_BYTES, *args)
    with pytest.raises(ValueError, match="already registered"):
        recorder.register(MetricID.NET_DEV_RX_BYTES, *args)


def test_missing_metric_config_fails():
    configs = dict(DEFAULT_METRICS_CONFIG)
    del configs[MetricID.NET_DEV_TX_CARRIER.value]
    with pytest.raises(ValueError, match="not found"):
        NetCollector(NetStatsConfig(metrics_configs=configs), "/proc", recorder=IfaceStatRecorder(_fake_metric))


def test_real_metrics_sum_across_collections(proc_dir):
    prefix = uuid.uuid4().hex
    config = NetStatsConfig(
        metrics_configs={m.value: MetricConfig(display_name=f"{prefix}/{m.value}") for m in NET_IDS}
    )
    nc = NetCollector(config, proc_dir)
    nc.collect()
    nc.collect()
    rows = {r.labels[INTERFACE_NAME_LABEL]: r.value for r in view_data(f"{prefix}/net/rx_packets")}
    assert rows == {"eth0": 200, "docker0": 180, "docker1": 20, "docker2": 0}