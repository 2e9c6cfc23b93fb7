"""Internal problem, condition and status types shared by monitors and exporters."""

from __future__ import annotations

import argparse
import queue
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable


class Severity(str, Enum):
    """Severity of a problem event."""

    INFO = "info"
    WARN = "warn"

    def __str__(self) -> str:
        return self.value


class ConditionStatus(str, Enum):
    """Status of a node condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"

    def __str__(self) -> str:
        return self.value


class ProblemType(str, Enum):
    """Whether a problem is temporary (an event) or permanent (a condition)."""

    TEMP = "temporary"
    PERM = "permanent"

    def __str__(self) -> str:
        return self.value


@dataclass
class Condition:
    """A node condition as tracked by the problem detector."""

    type: str
    status: ConditionStatus
    transition: datetime
    reason: str = ""
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping of the condition."""
        return {
            "type": self.type,
            "status": ConditionStatus(self.status).value,
            "transition": self.transition.isoformat(),
            "reason": self.reason,
            "message": self.message,
        }


@dataclass
class Event:
    """A temporary problem event."""

    severity: Severity
    timestamp: datetime
    reason: str = ""
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping of the event."""
        return {
            "severity": Severity(self.severity).value,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
            "message": self.message,
        }


@dataclass
class Status:
    """What a problem daemon reports: its events (oldest first) and current conditions."""

    source: str
    events: list[Event] = field(default_factory=list)
    conditions: list[Condition] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping of the status."""
        return {
            "source": self.source,
            "events": [event.to_dict() for event in self.events],
            "conditions": [condition.to_dict() for condition in self.conditions],
        }


class Monitor(ABC):
    """Watches the system and reports problems and metrics."""

    @abstractmethod
    def start(self) -> queue.Queue[Status] | None:
        """Start monitoring.

        Returns a queue on which statuses are reported, or None when the
        monitor only reports metrics.
        """

    @abstractmethod
    def stop(self) -> None:
        """Stop monitoring."""


class Exporter(ABC):
    """Exports machine health data to a control plane."""

    @abstractmethod
    def export_problems(self, status: Status) -> None:
        """Export the problems in ``status``."""


class CommandLineOptions(ABC):
    """Options that an exporter registers on the command line."""

    @abstractmethod
    def set_flags(self, parser: argparse.ArgumentParser) -> None:
        """Add this object's flags to ``parser``."""


@dataclass
class ProblemDaemonHandler:
    """How to create one type of problem daemon."""

    create_problem_daemon_or_die: Callable[[str], Monitor]
    cmd_option_description: str = ""


@dataclass
class ExporterHandler:
    """How to create one type of exporter."""

    create_exporter_or_die: Callable[[CommandLineOptions], Exporter]
    options: CommandLineOptions