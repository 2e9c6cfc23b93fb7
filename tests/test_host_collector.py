import platform
import uuid

import pytest

from npdstats.config import HostStatsConfig, MetricConfig
from npdstats.host_collector import HostCollector
from npdstats.metrics import view_data


@pytest.fixture
def view_name():
    return f"t{uuid.uuid4().hex}/host/uptime"


def _config(view_name):
    return HostStatsConfig(metrics_configs={"host/uptime": MetricConfig(display_name=view_name)})


def test_tags_hold_versions():
    collector = HostCollector(
        HostStatsConfig(), kernel_version="5.10.0-test", os_version="cos 77-12293.0.0"
    )
    assert collector.tags == {"kernel_version": "5.10.0-test", "os_version": "cos 77-12293.0.0"}
    assert collector.uptime_metric is None


def test_default_kernel_version_is_release():
    collector = HostCollector(HostStatsConfig(), os_version="debian 9 (stretch)")
    assert collector.tags["kernel_version"] == platform.release()
    assert collector.tags["kernel_version"] != ""


def test_collect_records_uptime(view_name):
    collector = HostCollector(
        _config(view_name),
        kernel_version="5.10.0-test",
        os_version="cos 77-12293.0.0",
        uptime=lambda: 1234.9,
    )
    collector.collect()
    rows = view_data(view_name)
    assert len(rows) == 1
    assert rows[0].value == 1234
    assert rows[0].labels == {"kernel_version": "5.10.0-test", "os_version": "cos 77-12293.0.0"}


def test_collect_keeps_last_value(view_name):
    samples = iter([10.0, 25.0])
    collector = HostCollector(
        _config(view_name), kernel_version="k", os_version="o", uptime=lambda: next(samples)
    )
    collector.collect()
    collector.collect()
    assert [row.value for row in view_data(view_name)] == [25]


def test_collect_with_real_uptime(view_name):
    collector = HostCollector(_config(view_name), kernel_version="k", os_version="o")
    collector.collect()
    rows = view_data(view_name)
    assert len(rows) == 1
    assert rows[0].value >= 0


def test_uptime_failure_records_nothing(view_name):
    def failing():
        raise OSError("no uptime")

    collector = HostCollector(
        _config(view_name), kernel_version="k", os_version="o", uptime=failing
    )
    collector.collect()
    assert view_data(view_name) == []