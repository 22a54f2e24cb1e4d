import subprocess

import pytest

from droidfleet.core.errors import AdbError
from droidfleet.modules.emu.adb import Adb


def _cp(stdout=b"", stderr=b"", returncode=0):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def test_build_args_keeps_shell_remainder_as_one_argument():
    args = Adb.build_args("127.0.0.1:5555", "shell input text 'hello%sworld'")
    assert args == ["-s", "127.0.0.1:5555", "shell", "input text 'hello%sworld'"]


def test_build_args_splits_non_shell_commands():
    args = Adb.build_args("emulator-5555", "install -r /tmp/app.apk")
    assert args == ["-s", "emulator-5555", "install", "-r", "/tmp/app.apk"]


def test_devices_parses_serial_and_state(monkeypatch):
    adb = Adb("adb")
    out = (
        b"* daemon started successfully\n"
        b"List of devices attached\n"
        b"127.0.0.1:5555\tdevice\n"
        b"emulator-5557\toffline\n"
        b"\n"
    )
    monkeypatch.setattr(adb, "_run", lambda args, timeout=None: _cp(stdout=out))

    assert adb.devices() == [("127.0.0.1:5555", "device"), ("emulator-5557", "offline")]


def test_run_raises_with_stderr_on_failure(monkeypatch):
    adb = Adb("adb")
    monkeypatch.setattr(adb, "_run", lambda args, timeout=None: _cp(stderr=b"error: device offline", returncode=1))

    with pytest.raises(AdbError, match="device offline"):
        adb.run("emulator-5555", "shell input tap 1 2")


def test_connect_detects_refusal(monkeypatch):
    adb = Adb("adb")
    monkeypatch.setattr(
        adb, "_run", lambda args, timeout=None: _cp(stdout=b"cannot connect to 127.0.0.1:5555: refused")
    )
    assert adb.connect("127.0.0.1:5555") is False

    monkeypatch.setattr(
        adb, "_run", lambda args, timeout=None: _cp(stdout=b"already connected to 127.0.0.1:5555")
    )
    assert adb.connect("127.0.0.1:5555") is True


def test_missing_executable_raises_adb_error():
    adb = Adb("/nonexistent/path/to/adb-binary")
    with pytest.raises(AdbError, match="not found"):
        adb.devices()
