import threading
import time

from adb_logmux.colors import ColorAllocator
from adb_logmux.discovery import DiscoveryLoop
from adb_logmux.sources import SourceError

from conftest import FakeDeviceSource, FakeLogSource, FakeLogStream

LISTING = ["List of devices attached", "ABC123\tdevice", ""]


def make_loop(device_source, log_source, devices, tags, sink, shutdown, **kwargs):
    kwargs.setdefault("retry_delay", 0)
    return DiscoveryLoop(device_source, log_source, devices, ColorAllocator(), tags, sink,
                         shutdown, **kwargs)


def wait_for_workers(dev_states):
    for dev_state in dev_states:
        dev_state.thread.join(5.0)
        assert not dev_state.thread.is_alive()


def test_new_device_gets_one_worker_and_first_color(devices, tags, sink, shutdown):
    gate = threading.Event()
    log_source = FakeLogSource({"ABC123": [FakeLogStream(gate=gate)]})
    loop = make_loop(FakeDeviceSource(LISTING), log_source, devices, tags, sink, shutdown)

    try:
        started = loop.scan()
        assert len(started) == 1
        assert started[0].serial == "ABC123"
        assert started[0].color == 0
        assert devices.lookup("ABC123") is started[0]

        # Still streaming; a second pass must not start another worker
        assert loop.scan() == []
        assert devices.count() == 1
    finally:
        gate.set()
        wait_for_workers(started)

    assert log_source.attempts == {"ABC123": 1}


def test_reappearing_device_gets_fresh_worker_and_next_color(devices, tags, sink, shutdown,
                                                             diagnostics):
    log_source = FakeLogSource({"ABC123": [FakeLogStream(), FakeLogStream()]})
    loop = make_loop(FakeDeviceSource(LISTING), log_source, devices, tags, sink, shutdown)

    first = loop.scan()
    wait_for_workers(first)
    assert devices.lookup("ABC123") is None

    second = loop.scan()
    wait_for_workers(second)

    assert second[0] is not first[0]
    assert first[0].color == 0
    assert second[0].color == 1
    assert second[0].reconnections == 1
    assert diagnostics.contains("Reconnected (#1)")
    assert log_source.attempts["ABC123"] == 2


def test_each_new_device_takes_next_color(devices, tags, sink, shutdown):
    gate = threading.Event()
    listing = ["List of devices attached", "AAAA\tdevice", "BBBB\tdevice", "CCCC\tdevice"]
    log_source = FakeLogSource({s: [FakeLogStream(gate=gate)] for s in ("AAAA", "BBBB", "CCCC")})
    loop = make_loop(FakeDeviceSource(listing), log_source, devices, tags, sink, shutdown)

    started = loop.scan()
    try:
        assert [d.color for d in started] == [0, 1, 2]
        assert devices.keys() == ["AAAA", "BBBB", "CCCC"]
    finally:
        gate.set()
        wait_for_workers(started)


def test_malformed_listing_lines_are_skipped(devices, tags, sink, shutdown):
    gate = threading.Event()
    listing = [
        "* daemon not running; starting now at tcp:5037",
        "\tdevice",
        "DEAD01\toffline",
        "BEEF02\tdevice",
        "garbage",
    ]
    log_source = FakeLogSource({"BEEF02": [FakeLogStream(gate=gate)]})
    loop = make_loop(FakeDeviceSource(listing), log_source, devices, tags, sink, shutdown)

    started = loop.scan()
    try:
        assert [d.serial for d in started] == ["BEEF02"]
    finally:
        gate.set()
        wait_for_workers(started)


def test_serial_filter(devices, tags, sink, shutdown):
    listing = ["AAAA\tdevice", "BBBB\tdevice"]
    loop = make_loop(FakeDeviceSource(listing), FakeLogSource(), devices, tags, sink, shutdown,
                     serial_filter=["BBBB"])

    started = loop.scan()
    wait_for_workers(started)

    assert [d.serial for d in started] == ["BBBB"]


def test_device_source_failure_is_not_fatal(devices, tags, sink, shutdown, diagnostics):
    device_source = FakeDeviceSource(LISTING)
    device_source.error = SourceError("adb not found")
    loop = make_loop(device_source, FakeLogSource(), devices, tags, sink, shutdown)

    assert loop.scan() == []
    assert diagnostics.contains("adb not found")


def test_run_polls_until_shutdown(devices, tags, sink, shutdown):
    device_source = FakeDeviceSource([])
    loop = make_loop(device_source, FakeLogSource(), devices, tags, sink, shutdown,
                     poll_interval=0.01)

    loop.start()
    deadline = time.monotonic() + 5.0
    while device_source.calls < 3 and time.monotonic() < deadline:
        time.sleep(0.01)
    shutdown.set()
    loop.join(5.0)

    assert not loop.is_alive()
    assert device_source.calls >= 3


def test_scan_errors_do_not_stop_the_loop(devices, tags, sink, shutdown, diagnostics):
    class Exploding(FakeDeviceSource):
        def list_lines(self):
            self.calls += 1
            if self.calls == 1:
                raise RuntimeError("boom")
            shutdown.set()
            return []

    device_source = Exploding()
    loop = make_loop(device_source, FakeLogSource(), devices, tags, sink, shutdown,
                     poll_interval=0)

    loop.run()

    assert device_source.calls == 2
    assert diagnostics.contains("Scan error: boom")
