import io
import logging
import threading

import pytest

from adb_logmux.colors import TagColorizer
from adb_logmux.registry import Registry
from adb_logmux.settings import DEFAULT_TAG_SEEDS, clear_settings_cache, get_logger
from adb_logmux.sink import OutputSink
from adb_logmux.sources import DeviceSource, LogSource, LogStream, SourceError
from adb_logmux.worker import DeviceState, DeviceWorker


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.messages = []
        self.levels = []

    def emit(self, record):
        self.messages.append(record.getMessage())
        self.levels.append(record.levelname)

    def level_of(self, text):
        return next((lvl for lvl, m in zip(self.levels, self.messages) if text in m), None)

    def contains(self, text):
        return any(text in m for m in self.messages)


@pytest.fixture(autouse=True)
def diagnostics():
    """Collect diagnostics in memory instead of writing to stderr."""
    logger = get_logger()
    saved_handlers = logger.handlers[:]
    saved_level = logger.level
    handler = ListHandler()
    logger.handlers = [handler]
    logger.setLevel(logging.DEBUG)
    yield handler
    logger.handlers = saved_handlers
    logger.setLevel(saved_level)


@pytest.fixture(autouse=True)
def fresh_settings_cache():
    clear_settings_cache()
    yield
    clear_settings_cache()


class FakeDeviceSource(DeviceSource):
    def __init__(self, lines=None):
        self.lines = list(lines or [])
        self.calls = 0
        self.error = None

    def list_lines(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.lines)


class FakeLogStream(LogStream):
    """
    Yields the given lines, then end of stream.

    With a gate, end of stream is held back until the gate is set, which
    keeps the worker in STREAMING.
    """

    def __init__(self, lines=(), gate=None, on_read=None):
        self.lines = list(lines)
        self.gate = gate
        self.on_read = on_read
        self.closed = False
        self.reads = 0

    def readline(self):
        self.reads += 1
        if self.on_read is not None:
            self.on_read(self)
        if self.lines:
            return self.lines.pop(0)
        if self.gate is not None:
            self.gate.wait(5.0)
        return ""

    def close(self):
        self.closed = True


class FakeLogSource(LogSource):
    """
    streams: serial -> list of FakeLogStream, handed out in order.
    failures: serial -> number of open attempts that fail first (-1 = always).
    """

    def __init__(self, streams=None, failures=None):
        self.streams = {k: list(v) for k, v in (streams or {}).items()}
        self.failures = dict(failures or {})
        self.attempts = {}
        self.opened = []

    def open(self, serial):
        self.attempts[serial] = self.attempts.get(serial, 0) + 1
        remaining = self.failures.get(serial, 0)
        if remaining != 0:
            if remaining > 0:
                self.failures[serial] = remaining - 1
            raise SourceError(f"cannot start logcat for {serial}")

        queue = self.streams.get(serial)
        stream = queue.pop(0) if queue else FakeLogStream()
        self.opened.append((serial, stream))
        return stream


@pytest.fixture
def shutdown():
    return threading.Event()


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def sink(output):
    return OutputSink(output)


@pytest.fixture
def devices():
    return Registry("devices")


@pytest.fixture
def tags():
    return TagColorizer(registry=Registry("tags"), seeds=DEFAULT_TAG_SEEDS)


@pytest.fixture
def make_worker(devices, tags, sink, shutdown):
    def _make(serial, log_source, color=0, **kwargs):
        dev_state = DeviceState(serial, color)
        assert devices.insert_if_absent(serial, dev_state)
        kwargs.setdefault("retry_delay", 0)
        return DeviceWorker(dev_state, devices, log_source, tags, sink, shutdown, **kwargs)
    return _make
