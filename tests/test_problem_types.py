import argparse
import json
from datetime import datetime, timezone

import pytest

from npdstats.problem_types import (
    CommandLineOptions,
    Condition,
    ConditionStatus,
    Event,
    Exporter,
    ExporterHandler,
    Monitor,
    ProblemDaemonHandler,
    ProblemType,
    Severity,
    Status,
)

TS = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def test_enum_values_match_wire_strings():
    assert Severity("info") is Severity.INFO
    assert Severity("warn") is Severity.WARN
    assert ConditionStatus("True") is ConditionStatus.TRUE
    assert ConditionStatus("Unknown") is ConditionStatus.UNKNOWN
    assert ProblemType("temporary") is ProblemType.TEMP
    assert ProblemType("permanent") is ProblemType.PERM
    assert str(ConditionStatus.FALSE) == "False"


def test_condition_to_dict_carries_fields():
    cond = Condition("KernelDeadlock", ConditionStatus.TRUE, TS, "why", "msg")
    data = cond.to_dict()
    assert data["type"] == "KernelDeadlock"
    assert data["status"] == "True"
    assert datetime.fromisoformat(data["transition"]) == TS
    assert data["reason"] == "why"
    assert data["message"] == "msg"


def test_event_to_dict_round_trips_through_json():
    event = Event(Severity.WARN, TS, "OOMKilling", "killed")
    data = json.loads(json.dumps(event.to_dict()))
    assert data == event.to_dict()
    assert data["severity"] == "warn"
    assert datetime.fromisoformat(data["timestamp"]) == TS


def test_status_to_dict_nests_events_and_conditions():
    event = Event(Severity.INFO, TS, "r", "m")
    cond = Condition("T", ConditionStatus.FALSE, TS)
    status = Status("monitor", [event], [cond])
    data = status.to_dict()
    assert data["source"] == "monitor"
    assert data["events"] == [event.to_dict()]
    assert data["conditions"] == [cond.to_dict()]


def test_status_defaults_are_independent_lists():
    a = Status("a")
    b = Status("b")
    a.events.append(Event(Severity.INFO, TS))
    assert b.events == []
    assert b.to_dict()["conditions"] == []


def test_abstract_interfaces_cannot_be_instantiated():
    with pytest.raises(TypeError):
        Monitor()
    with pytest.raises(TypeError):
        Exporter()
    with pytest.raises(TypeError):
        CommandLineOptions()


class _Options(CommandLineOptions):
    def set_flags(self, parser):
        parser.add_argument("--target", default="here")


class _Exporter(Exporter):
    def __init__(self, options):
        self.options = options
        self.exported = []

    def export_problems(self, status):
        self.exported.append(status)


class _Monitor(Monitor):
    def __init__(self, path):
        self.path = path
        self.running = False

    def start(self):
        self.running = True
        return None

    def stop(self):
        self.running = False


def test_exporter_handler_creates_exporter_with_options():
    options = _Options()
    handler = ExporterHandler(create_exporter_or_die=_Exporter, options=options)
    exporter = handler.create_exporter_or_die(handler.options)
    status = Status("src")
    exporter.export_problems(status)
    assert exporter.exported == [status]
    assert exporter.options is options

    parser = argparse.ArgumentParser()
    handler.options.set_flags(parser)
    assert parser.parse_args(["--target", "there"]).target == "there"


def test_problem_daemon_handler_creates_monitor():
    handler = ProblemDaemonHandler(_Monitor, "Set to config file paths.")
    monitor = handler.create_problem_daemon_or_die("/etc/config.json")
    assert monitor.path == "/etc/config.json"
    assert monitor.start() is None
    assert monitor.running is True
    monitor.stop()
    assert monitor.running is False
    assert handler.cmd_option_description == "Set to config file paths."