"""Starting child processes in their own group and killing them with their descendants."""

from __future__ import annotations

import ntpath
import os
import signal
import subprocess
import sys

_POWERSHELL_FLAGS = (
    "-NoLogo",
    "-NoProfile",
    "-NonInteractive",
    "-ExecutionPolicy",
    "RemoteSigned",
)

# taskkill exits with this code when it cannot find the process any more.
_ERROR_WAIT_NO_CHILDREN = 128


def _is_windows() -> bool:
    return sys.platform == "win32"


def powershell_command(*args: str) -> list[str]:
    """Return the argument vector that runs PowerShell non-interactively with ``args``."""
    return ["powershell.exe", *_POWERSHELL_FLAGS, *args]


def _windows_command(name: str, args: tuple[str, ...]) -> list[str]:
    name = ntpath.normpath(name)
    extension = ntpath.splitext(name)[1].lower()
    if extension in (".cmd", ".bat"):
        return ["cmd.exe", "/C", name, *args]
    if extension == ".ps1":
        return powershell_command(name, *args)
    return [name, *args]


def build_command(name: str, *args: str) -> list[str]:
    """Return the argument vector that runs ``name`` with ``args``.

    On Windows, batch and PowerShell scripts are run through their shells.
    """
    if _is_windows():
        return _windows_command(name, args)
    return [name, *args]


def start_process(name: str, *args: str) -> subprocess.Popen:
    """Start ``name`` with ``args``; on POSIX it leads a new process group."""
    options: dict = {
        "stdin": subprocess.DEVNULL,
        "stdout": subprocess.DEVNULL,
        "stderr": subprocess.DEVNULL,
    }
    if not _is_windows():
        options["start_new_session"] = True
    return subprocess.Popen(build_command(name, *args), **options)


def exit_status(process: subprocess.Popen) -> int:
    """Return the exit code of a finished process."""
    code = process.poll()
    if code is None:
        raise RuntimeError(f"process {process.pid} has not exited")
    return code


def kill_process(process: subprocess.Popen | None) -> None:
    """Kill ``process`` together with all of its child processes."""
    if process is None or getattr(process, "pid", None) is None:
        raise ValueError(f"{process!r} does not have a process handle")

    if not _is_windows():
        os.killpg(process.pid, signal.SIGKILL)
        return

    result = subprocess.run(["TASKKILL", "/T", "/F", "/PID", str(process.pid)], check=False)
    if result.returncode in (0, _ERROR_WAIT_NO_CHILDREN):
        return
    raise subprocess.CalledProcessError(result.returncode, result.args)