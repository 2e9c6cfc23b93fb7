import signal

import pytest

from npdstats import process
from npdstats.process import (
    build_command,
    exit_status,
    kill_process,
    powershell_command,
    start_process,
)


def test_powershell_command_prepends_default_flags():
    assert powershell_command("script.ps1", "arg") == [
        "powershell.exe",
        "-NoLogo",
        "-NoProfile",
        "-NonInteractive",
        "-ExecutionPolicy",
        "RemoteSigned",
        "script.ps1",
        "arg",
    ]


@pytest.mark.parametrize(
    "name, args, expected",
    [
        ("testdata/hello-world.cmd", (), ["cmd.exe", "/C", "testdata\\hello-world.cmd"]),
        ("testdata/hello-world.BAT", ("x",), ["cmd.exe", "/C", "testdata\\hello-world.BAT", "x"]),
        ("cmd.exe", ("/C", "set"), ["cmd.exe", "/C", "set"]),
    ],
)
def test_windows_command_scripts(name, args, expected):
    assert process._windows_command(name, args) == expected


def test_windows_command_powershell_script():
    result = process._windows_command("testdata/hello-world.ps1", ())
    assert result[0] == "powershell.exe"
    assert result[-1] == "testdata\\hello-world.ps1"


def test_build_command_posix_runs_directly():
    assert build_command("/bin/sh", "-c", "exit 3") == ["/bin/sh", "-c", "exit 3"]


def test_kill_without_handle_raises():
    with pytest.raises(ValueError):
        kill_process(None)


@pytest.mark.parametrize("shell", ["/bin/sh", "/bin/bash"])
def test_start_and_kill(shell):
    proc = start_process(shell, "-c", "sleep 30")
    kill_process(proc)
    assert proc.wait(timeout=10) == -signal.SIGKILL
    assert exit_status(proc) == -signal.SIGKILL


def test_exit_status_of_finished_process():
    proc = start_process("/bin/sh", "-c", "exit 3")
    proc.wait(timeout=10)
    assert exit_status(proc) == 3


def test_exit_status_of_running_process_raises():
    proc = start_process("/bin/sh", "-c", "sleep 30")
    try:
        with pytest.raises(RuntimeError):
            exit_status(proc)
    finally:
        kill_process(proc)
        proc.wait(timeout=10)