from types import SimpleNamespace

import pytest

from droidfleet.core.errors import AdbError, DeviceNotReadyError, DeviceResolutionError
from droidfleet.modules.emu import controller as controller_module
from droidfleet.modules.emu.controller import ControllerConfig, LDPlayerController


class _FakeAdb:
    def __init__(self, devices=None, connectable=()):
        self._devices = list(devices or [])
        self.connectable = set(connectable)
        self.connect_calls = []
        self.boot_values = []

    def devices(self, timeout=10.0):
        return list(self._devices)

    def connect(self, addr, timeout=10.0):
        self.connect_calls.append(addr)
        port = int(addr.rsplit(":", 1)[1])
        if port in self.connectable:
            self._devices.append((addr, "device"))
            return True
        return False

    def wait_for_device(self, serial, timeout=30.0):
        return True

    def getprop(self, serial, name, timeout=5.0):
        return self.boot_values.pop(0) if self.boot_values else ""

    def run(self, serial, command, timeout=None):
        return f"{serial}:{command}"


def _controller(adb, instances=None):
    ctrl = LDPlayerController(ControllerConfig(adb_path="adb", ldconsole_path="ldconsole"))
    ctrl.adb = adb
    ctrl.ldconsole = SimpleNamespace(
        index_of=lambda name: dict(instances or {}).get(name),
    )
    return ctrl


def test_single_connected_device_is_used():
    ctrl = _controller(_FakeAdb([("127.0.0.1:5557", "device"), ("emulator-5557", "device")]))
    assert ctrl.get_adb_port_for_instance("LDPlayer-1") == 5557


def test_multiple_devices_use_instance_index():
    adb = _FakeAdb([("emulator-5555", "device"), ("emulator-5557", "device"), ("emulator-5559", "device")])
    ctrl = _controller(adb, instances={"LDPlayer-2": 2})
    assert ctrl.get_adb_port_for_instance("LDPlayer-2") == 5559


def test_multiple_devices_fall_back_to_closest_port():
    adb = _FakeAdb([("emulator-5555", "device"), ("emulator-5561", "device")])
    ctrl = _controller(adb, instances={"LDPlayer-2": 2})
    # 期望 5559，不在线时选最近的
    assert ctrl.get_adb_port_for_instance("LDPlayer-2") == 5561


def test_multiple_devices_unknown_instance_uses_first():
    adb = _FakeAdb([("emulator-5557", "device"), ("emulator-5555", "device")])
    ctrl = _controller(adb)
    assert ctrl.get_adb_port_for_instance("ghost") == 5555


def test_no_devices_tries_remembered_port_then_common_ports():
    adb = _FakeAdb([], connectable={5563})
    ctrl = _controller(adb)
    ctrl.remember_port("LDPlayer-4", 5599)

    assert ctrl.get_adb_port_for_instance("LDPlayer-4") == 5563
    assert adb.connect_calls[0] == "127.0.0.1:5599"


def test_no_devices_and_nothing_connects_raises():
    ctrl = _controller(_FakeAdb([]))
    with pytest.raises(DeviceResolutionError):
        ctrl.get_adb_port_for_instance("LDPlayer-0")


def test_resolve_serial_prefers_ip_then_emulator_then_first():
    ctrl = _controller(_FakeAdb([("emulator-5555", "device"), ("127.0.0.1:5555", "device")]))
    assert ctrl.resolve_adb_serial(5555) == "127.0.0.1:5555"

    ctrl = _controller(_FakeAdb([("127.0.0.1:5557", "offline"), ("emulator-5557", "device")]))
    assert ctrl.resolve_adb_serial(5557) == "emulator-5557"

    ctrl = _controller(_FakeAdb([("192.168.1.10:5559", "device")]))
    assert ctrl.resolve_adb_serial(5559) == "192.168.1.10:5559"

    ctrl = _controller(_FakeAdb([("emulator-5561", "device")]))
    assert ctrl.resolve_adb_serial(5599) == "emulator-5561"


def test_resolve_serial_without_ready_devices_raises():
    ctrl = _controller(_FakeAdb([("emulator-5555", "offline")]))
    with pytest.raises(DeviceResolutionError):
        ctrl.resolve_adb_serial(5555)


def test_connect_adb_raises_on_failure():
    ctrl = _controller(_FakeAdb([]))
    with pytest.raises(AdbError):
        ctrl.connect_adb(5555)


def test_wait_for_device_ready_polls_boot_completed(monkeypatch):
    adb = _FakeAdb()
    adb.boot_values = ["", "0", "1"]
    ctrl = _controller(adb)
    monkeypatch.setattr(controller_module.time, "sleep", lambda s: None)

    ctrl.wait_for_device_ready("emulator-5555", timeout_ms=60000)
    assert adb.boot_values == []


def test_wait_for_device_ready_times_out(monkeypatch):
    ctrl = _controller(_FakeAdb())
    clock = iter(range(0, 1000, 10))
    monkeypatch.setattr(controller_module.time, "monotonic", lambda: next(clock))
    monkeypatch.setattr(controller_module.time, "sleep", lambda s: None)

    with pytest.raises(DeviceNotReadyError):
        ctrl.wait_for_device_ready("emulator-5555", timeout_ms=30000)
