"""
Per-device logcat workers.

Each attached device gets one DeviceWorker running on its own daemon thread.
The worker opens the device's log stream, colorizes every line it reads and
writes it to the shared sink, then removes its own registry entry when the
stream ends.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from adb_logmux.colors import TagColorizer, format_record
from adb_logmux.matcher import parse_log_line
from adb_logmux.registry import Registry
from adb_logmux.settings import DEFAULT_OPEN_RETRIES, DEFAULT_RETRY_DELAY, log_event
from adb_logmux.sink import OutputError, OutputSink
from adb_logmux.sources import LogSource, LogStream, SourceError

# ══════════════════════════════════════════════════════════════════════════════
# DEVICE STATE
# ══════════════════════════════════════════════════════════════════════════════

class DeviceState:
    """
    Bookkeeping for one attached device.

    Created by discovery, owned by its worker, and dropped from the device
    registry when the worker terminates.
    """

    __slots__ = (
        'serial', 'color', 'state', 'status_text',
        'thread', 'stream', 'reconnections', 'connected_at',
        'lines_emitted', 'lines_skipped', 'stop_requested',
    )

    # State constants
    STARTING   = 0
    STREAMING  = 1
    DRAINING   = 2
    TERMINATED = 3

    STATE_TEXT = {
        STARTING:   "STARTING",
        STREAMING:  "STREAMING",
        DRAINING:   "DRAINING",
        TERMINATED: "TERMINATED",
    }

    def __init__(self, serial: str, color: int, reconnections: int = 0):
        self.serial = serial
        self.color = color
        self.state = self.STARTING
        self.status_text = self.STATE_TEXT[self.STARTING]
        self.thread: Optional[threading.Thread] = None
        self.stream: Optional[LogStream] = None
        self.reconnections = reconnections
        self.connected_at = time.monotonic()
        self.lines_emitted = 0
        self.lines_skipped = 0
        self.stop_requested = False

    @property
    def name(self) -> str:
        return self.serial

    def set_state(self, new_state: int, status_text: Optional[str] = None) -> None:
        self.state = new_state
        self.status_text = status_text or self.STATE_TEXT.get(new_state, "UNKNOWN")

    def request_stop(self) -> None:
        self.stop_requested = True

    def __repr__(self) -> str:
        return f"DeviceState({self.serial!r}, color={self.color}, {self.status_text})"

# ══════════════════════════════════════════════════════════════════════════════
# DEVICE WORKER
# ══════════════════════════════════════════════════════════════════════════════

class DeviceWorker:
    """
    Runs STARTING -> STREAMING -> DRAINING -> TERMINATED for one device.

    Shutdown is observed before each open attempt and before each read. A
    read that is already blocked is not interrupted; the worker notices
    shutdown once it returns.
    """

    def __init__(self, dev_state: DeviceState, devices: Registry,
                 log_source: LogSource, tags: TagColorizer, sink: OutputSink,
                 shutdown: threading.Event,
                 max_retries: int = DEFAULT_OPEN_RETRIES,
                 retry_delay: float = DEFAULT_RETRY_DELAY,
                 colored: bool = True,
                 on_fatal: Optional[Callable[[BaseException], None]] = None):
        self.dev_state = dev_state
        self.devices = devices
        self.log_source = log_source
        self.tags = tags
        self.sink = sink
        self.shutdown = shutdown
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.colored = colored
        self.on_fatal = on_fatal

    def start(self) -> threading.Thread:
        """Start the worker thread for this device."""
        t = threading.Thread(target=self.run, daemon=True)
        t.name = f"Logcat-{self.dev_state.name[:16]}"
        self.dev_state.thread = t
        t.start()
        return t

    def stopped(self) -> bool:
        return self.shutdown.is_set() or self.dev_state.stop_requested

    def run(self) -> None:
        try:
            stream = self._open_stream()
            if stream is not None:
                self.dev_state.stream = stream
                try:
                    self._stream_loop(stream)
                finally:
                    self._drain(stream)
        except OutputError as e:
            log_event(self.dev_state.serial, str(e), "critical")
            if self.on_fatal is None:
                raise
            self.on_fatal(e)
        finally:
            self._terminate()

    # -- STARTING --

    def _open_stream(self) -> Optional[LogStream]:
        dev_state = self.dev_state
        dev_state.set_state(DeviceState.STARTING)
        failures = 0

        while not self.stopped():
            try:
                return self.log_source.open(dev_state.serial)
            except SourceError as e:
                failures += 1
                if failures > self.max_retries:
                    dev_state.set_state(DeviceState.STARTING, "OPEN FAILED")
                    log_event(dev_state.serial,
                              f"Failure to start logcat after {failures} attempts: {e}", "error")
                    return None
                log_event(dev_state.serial, f"Failure to open device (attempt {failures}): {e}",
                          "warning")

            if self.shutdown.wait(self.retry_delay):
                break

        return None

    # -- STREAMING --

    def _stream_loop(self, stream: LogStream) -> None:
        dev_state = self.dev_state
        dev_state.set_state(DeviceState.STREAMING)

        while not self.stopped():
            try:
                line = stream.readline()
            except (OSError, ValueError) as e:
                log_event(dev_state.serial, f"Log read error: {e}", "warning")
                break

            if not line:
                # End of stream - device detached or logcat exited
                break

            self.handle_line(line)

    def handle_line(self, line: str) -> bool:
        """Colorize and emit one raw line. Returns False if it was skipped."""
        dev_state = self.dev_state
        record = parse_log_line(line)
        if record is None:
            dev_state.lines_skipped += 1
            if line.strip():
                log_event(dev_state.serial,
                          f"Received line that did not match pattern: {line.rstrip()!r}", "info")
            return False

        tag_color = self.tags.color_for(record.tag)
        self.sink.write(format_record(dev_state.serial, dev_state.color, record,
                                      tag_color, colored=self.colored))
        dev_state.lines_emitted += 1
        return True

    # -- DRAINING --

    def _drain(self, stream: LogStream) -> None:
        self.dev_state.set_state(DeviceState.DRAINING)
        try:
            stream.close()
        except OSError as e:
            log_event(self.dev_state.serial, f"Error closing log stream: {e}", "warning")
        self.dev_state.stream = None

    # -- TERMINATED --

    def _terminate(self) -> None:
        dev_state = self.dev_state
        dev_state.set_state(DeviceState.TERMINATED)
        if self.devices.remove(dev_state.serial, expected=dev_state):
            log_event(dev_state.serial, "Disconnected")
