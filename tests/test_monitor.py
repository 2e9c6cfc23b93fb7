import json
import os
import time
import uuid

import pytest

from npdstats.metrics import view_data
from npdstats.monitor import new_system_stats_monitor


def _write_config(tmp_path, data):
    path = tmp_path / "system-stats-monitor.json"
    path.write_text(json.dumps(data))
    return str(path)


@pytest.fixture
def proc_dir(tmp_path):
    proc = tmp_path / "proc"
    proc.mkdir()
    (proc / "cmdline").write_text("console=ttyS0 csm.enabled=1\n")
    (proc / "modules").write_text("plain 100 1 - Live 0x0000000000000000\n")
    return proc


def _os_feature_config(proc, view_name, known="known.json"):
    return {
        "osFeature": {
            "metricsConfigs": {"system/os_feature": {"displayName": view_name}},
            "knownModulesConfigPath": known,
        },
        "invokeInterval": "10s",
        "procPath": str(proc),
    }


def test_relative_known_modules_path_resolved(tmp_path, proc_dir):
    view_name = f"test/monitor_os_feature_{uuid.uuid4().hex}"
    path = _write_config(tmp_path, _os_feature_config(proc_dir, view_name))
    monitor = new_system_stats_monitor(path)
    assert monitor.config.os_feature_config.known_modules_config_path == os.path.join(
        str(tmp_path), "known.json"
    )
    assert monitor.os_feature_collector is not None


def test_absolute_known_modules_path_kept(tmp_path, proc_dir):
    view_name = f"test/monitor_os_feature_{uuid.uuid4().hex}"
    known = str(tmp_path / "elsewhere" / "known.json")
    path = _write_config(tmp_path, _os_feature_config(proc_dir, view_name, known))
    monitor = new_system_stats_monitor(path)
    assert monitor.config.os_feature_config.known_modules_config_path == known


def test_empty_config_creates_no_collectors(tmp_path, proc_dir):
    path = _write_config(tmp_path, {"procPath": str(proc_dir)})
    monitor = new_system_stats_monitor(path)
    assert monitor.cpu_collector is None
    assert monitor.disk_collector is None
    assert monitor.host_collector is None
    assert monitor.memory_collector is None
    assert monitor.os_feature_collector is None
    assert monitor.net_collector is None


def test_start_collects_and_stop_ends_thread(tmp_path, proc_dir):
    view_name = f"test/monitor_os_feature_{uuid.uuid4().hex}"
    path = _write_config(tmp_path, _os_feature_config(proc_dir, view_name))
    monitor = new_system_stats_monitor(path)
    assert monitor.start() is None

    deadline = time.monotonic() + 5
    rows = []
    while time.monotonic() < deadline:
        rows = view_data(view_name)
        if rows:
            break
        time.sleep(0.01)
    monitor.stop()

    values = {frozenset(row.labels.items()): row.value for row in rows}
    assert values[frozenset({("os_feature", "KTD")})] == 1
    assert not monitor.is_running


def test_stop_without_start(tmp_path, proc_dir):
    path = _write_config(tmp_path, {"procPath": str(proc_dir)})
    monitor = new_system_stats_monitor(path)
    monitor.stop()
    assert not monitor.is_running


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        new_system_stats_monitor(str(tmp_path / "absent.json"))


def test_invalid_json_config(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{not json")
    with pytest.raises(ValueError):
        new_system_stats_monitor(str(path))