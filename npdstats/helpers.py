"""Durations, condition events, start-time calculation and host information."""

from __future__ import annotations

import json
import platform
import re
import sys
import time
from datetime import datetime, timedelta

import psutil

from npdstats.problem_types import ConditionStatus, Event, Severity

OS_RELEASE_PATH = "/etc/os-release"

_NANOS_PER_SECOND = 10**9
_MAX_NANOS = (1 << 63) - 1

_UNITS = {
    "ns": 1,
    "us": 10**3,
    "\u00b5s": 10**3,
    "\u03bcs": 10**3,
    "ms": 10**6,
    "s": 10**9,
    "m": 60 * 10**9,
    "h": 3600 * 10**9,
}
_COMPONENT = re.compile(r"(\d*)(?:\.(\d*))?([^\d.]+)")

_DEBIAN_LIKE = {
    "debian",
    "ubuntu",
    "centos",
    "rocky",
    "rhel",
    "ol",
    "amzn",
    "sles",
    "mariner",
    "azurelinux",
}


def _parse_nanoseconds(text: str) -> int:
    s = text
    negative = False
    if s and s[0] in "+-":
        negative = s[0] == "-"
        s = s[1:]
    if s == "0":
        return 0
    if not s:
        raise ValueError(f"invalid duration {text!r}")

    total = 0
    pos = 0
    while pos < len(s):
        match = _COMPONENT.match(s, pos)
        if match is None:
            raise ValueError(f"invalid duration {text!r}")
        whole, frac, unit = match.groups()
        if not whole and not frac:
            raise ValueError(f"invalid duration {text!r}")
        scale = _UNITS.get(unit)
        if scale is None:
            raise ValueError(f"unknown unit {unit!r} in duration {text!r}")
        total += int(whole or 0) * scale
        if frac:
            total += int(frac) * scale // 10 ** len(frac)
        pos = match.end()

    limit = _MAX_NANOS + 1 if negative else _MAX_NANOS
    if total > limit:
        raise ValueError(f"invalid duration {text!r}")
    return -total if negative else total


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as "300ms", "-1.5h" or "2h45m"."""
    nanos = _parse_nanoseconds(text)
    micros = abs(nanos) // 1000
    return timedelta(microseconds=-micros if nanos < 0 else micros)


def _to_nanoseconds(duration: timedelta) -> int:
    return ((duration.days * 86400 + duration.seconds) * 10**6 + duration.microseconds) * 1000


def _fraction(value: int, precision: int) -> tuple[int, str]:
    whole, rest = divmod(value, 10**precision)
    digits = f"{rest:0{precision}d}".rstrip("0")
    return whole, f".{digits}" if digits else ""


def format_duration(duration: timedelta) -> str:
    """Render a duration in the compact form, e.g. "1m0s", "1.5s", "500ms"."""
    nanos = _to_nanoseconds(duration)
    if nanos == 0:
        return "0s"
    sign = "-" if nanos < 0 else ""
    u = abs(nanos)

    if u < _NANOS_PER_SECOND:
        if u < 10**3:
            return f"{sign}{u}ns"
        if u < 10**6:
            whole, frac = _fraction(u, 3)
            return f"{sign}{whole}{frac}\u00b5s"
        whole, frac = _fraction(u, 6)
        return f"{sign}{whole}{frac}ms"

    seconds, frac = _fraction(u, 9)
    text = f"{seconds % 60}{frac}s"
    minutes = seconds // 60
    if minutes > 0:
        text = f"{minutes % 60}m{text}"
        hours = minutes // 60
        if hours > 0:
            text = f"{hours}h{text}"
    return sign + text


def generate_condition_change_event(
    condition_type: str,
    status: ConditionStatus,
    reason: str,
    message: str,
    timestamp: datetime,
) -> Event:
    """Build the event announcing that a node condition changed."""
    status = ConditionStatus(status)
    severity = Severity.WARN if status is ConditionStatus.TRUE else Severity.INFO
    quoted = json.dumps(message, ensure_ascii=False)
    return Event(
        severity=severity,
        timestamp=timestamp,
        reason=reason,
        message=(
            f"Node condition {condition_type} is now: {status.value}, "
            f"reason: {reason}, message: {quoted}"
        ),
    )


def get_start_time(now: datetime, uptime: timedelta, lookback: str, delay: str) -> datetime:
    """Return the time from which logs should be processed.

    Starts at boot time, pushed later by ``delay`` and clamped so that it is
    no earlier than ``now - lookback``. Empty strings disable either rule.
    """
    start_time = now - uptime

    if delay:
        try:
            delay_duration = parse_duration(delay)
        except ValueError as err:
            raise ValueError(f"failed to parse delay duration {delay!r}: {err}") from err
        start_time += delay_duration

    lookback_start_time = now
    if lookback:
        try:
            lookback_duration = parse_duration(lookback)
        except ValueError as err:
            raise ValueError(f"failed to parse lookback duration {lookback!r}: {err}") from err
        lookback_start_time = now - lookback_duration

    return max(start_time, lookback_start_time)


def get_uptime_duration() -> timedelta:
    """Return the time elapsed since the last boot, in whole seconds."""
    seconds = int(time.time() - psutil.boot_time())
    return timedelta(seconds=max(seconds, 0))


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1]
    return re.sub(r'\\([$"\\`])', r"\1", value)


def read_os_release(path: str) -> dict[str, str]:
    """Read an os-release file into a mapping of its keys to unquoted values."""
    result: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for raw in handle:
            line = raw.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            if not key:
                continue
            result[key] = _unquote(value.strip())
    return result


def os_version_from_release(path: str) -> str:
    """Describe the OS version from an os-release file, e.g. "cos 77-12293.0.0"."""
    release = read_os_release(path)
    os_id = release.get("ID", "")
    version = release.get("VERSION", "")
    if os_id == "cos":
        return f"{os_id} {version}-{release.get('BUILD_ID', '')}"
    if os_id in _DEBIAN_LIKE:
        return f"{os_id} {version}"
    raise ValueError(f"Unsupported ID in /etc/os-release: {os_id!r}")


def _windows_os_version() -> str:
    import winreg

    subkey = r"SOFTWARE\Microsoft\Windows NT\CurrentVersion"
    with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, subkey, 0, winreg.KEY_QUERY_VALUE) as key:
        try:
            product_name, _ = winreg.QueryValueEx(key, "ProductName")
        except OSError:
            product_name = "windows"
        try:
            ubr, _ = winreg.QueryValueEx(key, "UBR")
        except OSError:
            ubr = 0
    version = sys.getwindowsversion()
    return f"windows {version.major}.{version.minor}.{version.build}.{ubr} ({product_name})"


def get_os_version() -> str:
    """Return a short description of the running operating system's version."""
    if sys.platform.startswith("linux"):
        return os_version_from_release(OS_RELEASE_PATH)
    if sys.platform == "darwin":
        return f"darwin {platform.mac_ver()[0]}"
    if sys.platform == "win32":
        return _windows_os_version()
    raise OSError(f"unsupported platform {sys.platform!r}")