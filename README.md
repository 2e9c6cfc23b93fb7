# npdstats

`npdstats` collects system statistics on a node and records them as
in-process metrics:

- CPU load averages, CPU time per state, and per-CPU time, fork, running,
  blocked and interrupt counters from `/proc/stat`;
- disk I/O counters, average queue length and disk space usage;
- host uptime, labelled with the kernel and OS versions;
- memory usage from `/proc/meminfo` (on Windows, from the OS);
- network interface counters from `/proc/net/dev`;
- OS features derived from the kernel command line and loaded kernel modules.

## Installation

```
pip install .
```

Tests need the `test` extra:

```
pip install ".[test]"
pytest
```

## Configuration

A monitor is created from a JSON configuration file. Each section lists its
metrics under `metricsConfigs`; a metric is recorded only when it has a
non-empty `displayName`, and a collector is created only when its section has
at least one entry.

```json
{
  "invokeInterval": "60s",
  "procPath": "/proc",
  "cpu": {
    "metricsConfigs": {
      "cpu/load_1m": {"displayName": "cpu/load_1m"},
      "cpu/usage_time": {"displayName": "cpu/usage_time"}
    }
  },
  "disk": {
    "includeRootBlk": true,
    "includeAllAttachedBlk": true,
    "lsblkTimeout": "5s",
    "metricsConfigs": {
      "disk/io_time": {"displayName": "disk/io_time"}
    }
  },
  "memory": {
    "metricsConfigs": {
      "memory/bytes_used": {"displayName": "memory/bytes_used"}
    }
  }
}
```

Notes:

- Durations use the `<number><unit>` form, for example `5s`, `1m30s` or
  `250ms`.
- Defaults: `invokeInterval` is one minute, `lsblkTimeout` five seconds,
  `procPath` is `/proc` on Linux (empty elsewhere), and the OS feature
  collector's `knownModulesConfigPath` is `guestosconfig/known-modules.json`.
  A relative known-modules path is taken relative to the configuration file.
- `validate()` rejects a non-positive interval or lsblk timeout, an lsblk
  timeout longer than the interval, and, on Linux, a `procPath` that does not
  exist.
- The `net` section must list all sixteen `net/...` metric IDs
  (`net/rx_bytes` through `net/tx_compressed`) under `metricsConfigs`;
  a missing one raises `ValueError`. `excludeInterfaceRegexp` skips
  interfaces whose names match it, e.g. `"docker\\d+"`.
- The `host` section reads the OS version from `/etc/os-release` on Linux and
  raises `ValueError` for distributions it does not recognise.

## Usage

```python
from npdstats.monitor import new_system_stats_monitor

monitor = new_system_stats_monitor("system-stats-monitor.json")
monitor.start()      # collects once, then every invoke interval, in a thread
...
monitor.stop()       # waits for the collection thread to finish
```

Recorded values can be read back per view name:

```python
from npdstats.metrics import view_data

for row in view_data("cpu/load_1m"):
    print(row.labels, row.value)
```

`view_data` raises `KeyError` for a view that was never registered.

### Modules

- `npdstats.monitor` — `SystemStatsMonitor` and `new_system_stats_monitor`.
- `npdstats.config` — `SystemStatsConfig` and its section classes,
  `system_stats_config_from_dict`, `apply_configuration()` and `validate()`.
- `npdstats.cpu_collector`, `npdstats.disk_collector`,
  `npdstats.host_collector`, `npdstats.memory_collector`,
  `npdstats.net_collector`, `npdstats.osfeature_collector` — the collectors,
  plus parsers such as `read_proc_stat`, `read_meminfo` and `read_net_dev`.
- `npdstats.metrics` — `MetricID`, `Aggregation`, `new_int64_metric`,
  `new_float64_metric`, `view_data`, `FakeInt64Metric` for tests, and
  `parse_prometheus_metrics` / `get_float64_metric` for inspecting Prometheus
  text output.
- `npdstats.kernel` — `cmdline_args` and `modules` parse `/proc/cmdline` and
  `/proc/modules`.
- `npdstats.helpers` — `parse_duration`, `format_duration`, `get_start_time`,
  `get_os_version`, `generate_condition_change_event`.
- `npdstats.problem_types` — `Condition`, `Event`, `Status`, and the
  `Monitor`, `Exporter` and `CommandLineOptions` base classes.
- `npdstats.process` — `start_process` and `kill_process` run a command in
  its own process group and kill the whole group.
- `npdstats.tomb` — `Tomb`, a stop/done handshake for worker threads.

## What this package does not do

Metrics are kept in memory only. There is no exporter that publishes them
(no Prometheus endpoint or remote backend), no command-line program, and the
system stats monitor reports no problem events or node conditions.