"""Kernel command line arguments and loaded kernel modules."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

_MAX_UINT64 = (1 << 64) - 1


def _compact_json(data: Mapping[str, Any]) -> str:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


@dataclass(frozen=True)
class CmdlineArg:
    """One kernel command line parameter; ``value`` is empty for bare flags."""

    key: str
    value: str = ""

    def to_dict(self) -> dict[str, str]:
        """Return a JSON-ready mapping of the argument."""
        return {"key": self.key, "value": self.value}

    def __str__(self) -> str:
        return _compact_json(self.to_dict())


@dataclass(frozen=True)
class Module:
    """A loaded kernel module and its taint flags."""

    module_name: str
    instances: int = 0
    proprietary: bool = False
    out_of_tree: bool = False
    unsigned: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping of the module."""
        return {
            "moduleName": self.module_name,
            "instances": self.instances,
            "proprietary": self.proprietary,
            "outOfTree": self.out_of_tree,
            "unsigned": self.unsigned,
        }

    def __str__(self) -> str:
        return _compact_json(self.to_dict())


def module_from_dict(data: Mapping[str, Any]) -> Module:
    """Build a Module from its JSON mapping."""
    if not isinstance(data, Mapping):
        raise ValueError(f"module entry must be an object, got {data!r}")
    return Module(
        module_name=str(data.get("moduleName", "")),
        instances=int(data.get("instances", 0)),
        proprietary=bool(data.get("proprietary", False)),
        out_of_tree=bool(data.get("outOfTree", False)),
        unsigned=bool(data.get("unsigned", False)),
    )


def read_file_into_lines(filename: str) -> list[str]:
    """Read a file and return its lines without line terminators."""
    with open(filename, encoding="utf-8", errors="surrogateescape", newline="") as handle:
        content = handle.read()
    if not content:
        return []
    lines = content.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def contains_module(key: str, values: Iterable[Module]) -> bool:
    """Tell whether a module named ``key`` is among ``values``."""
    return any(value.module_name == key for value in values)


def split_cmdline(line: str) -> list[str]:
    """Split a command line on spaces, keeping double-quoted runs together."""
    words: list[str] = []
    current: list[str] = []
    within_quotes = False
    for char in line:
        if char == '"':
            within_quotes = not within_quotes
            current.append(char)
        elif char == " " and not within_quotes:
            if current:
                words.append("".join(current))
                current = []
        else:
            current.append(char)
    if current:
        words.append("".join(current))
    return words


def cmdline_args(cmdline_file_path: str) -> list[CmdlineArg]:
    """Parse the kernel command line stored in ``cmdline_file_path``."""
    lines = read_file_into_lines(cmdline_file_path)
    if not lines:
        raise ValueError("no lines are returned")

    result: list[CmdlineArg] = []
    for word in split_cmdline(lines[0]):
        if word.startswith('"'):
            continue
        tokens = word.split("=")
        if len(tokens) < 2:
            result.append(CmdlineArg(key=tokens[0]))
        else:
            result.append(CmdlineArg(key=tokens[0], value=tokens[1].strip("\"'")))
    return result


def _parse_instances(text: str) -> int:
    if text.isascii() and text.isdigit():
        value = int(text)
        if value <= _MAX_UINT64:
            return value
    return 0


def modules(modules_file_path: str) -> list[Module]:
    """Parse the loaded kernel modules listed in ``modules_file_path``.

    Each line holds: name, size, instances, dependencies, state, offset and,
    optionally, taint flags ("P" proprietary, "O" out of tree, "E" unsigned).
    """
    result: list[Module] = []
    for line in read_file_into_lines(modules_file_path):
        fields = line.split()
        if len(fields) < 3:
            raise ValueError(f"malformed module line in {modules_file_path}: {line!r}")
        taint = fields[6] if len(fields) > 6 else ""
        result.append(
            Module(
                module_name=fields[0],
                instances=_parse_instances(fields[2]),
                proprietary="P" in taint,
                out_of_tree="O" in taint,
                unsigned="E" in taint,
            )
        )
    return result