"""
Device discovery loop.

Polls the device source, starts a worker for every serial that is not in
the device registry, and leaves removal to the workers themselves.
"""

from __future__ import annotations

import threading
from typing import Callable, Collection, Dict, List, Optional

from adb_logmux.colors import ColorAllocator, TagColorizer
from adb_logmux.matcher import parse_device_line
from adb_logmux.registry import Registry
from adb_logmux.settings import (
    DEFAULT_OPEN_RETRIES,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_RETRY_DELAY,
    log_event,
)
from adb_logmux.sink import OutputSink
from adb_logmux.sources import DeviceSource, LogSource, SourceError
from adb_logmux.worker import DeviceState, DeviceWorker


class DiscoveryLoop:
    """
    Monitors `adb devices` for newly attached devices.
    Scans every poll_interval seconds until shutdown is set.
    """

    def __init__(self, device_source: DeviceSource, log_source: LogSource,
                 devices: Registry, device_colors: ColorAllocator,
                 tags: TagColorizer, sink: OutputSink,
                 shutdown: threading.Event,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 max_retries: int = DEFAULT_OPEN_RETRIES,
                 retry_delay: float = DEFAULT_RETRY_DELAY,
                 serial_filter: Optional[Collection[str]] = None,
                 colored: bool = True,
                 on_fatal: Optional[Callable[[BaseException], None]] = None):
        self.device_source = device_source
        self.log_source = log_source
        self.devices = devices
        self.device_colors = device_colors
        self.tags = tags
        self.sink = sink
        self.shutdown = shutdown
        self.poll_interval = poll_interval
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.serial_filter = set(serial_filter) if serial_filter else None
        self.colored = colored
        self.on_fatal = on_fatal

        # serial -> number of times it has been attached this run
        self.reconnection_tracker: Dict[str, int] = {}
        self.passes = 0
        self._thread: Optional[threading.Thread] = None

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.run, daemon=True)
        self._thread.name = "Discovery"
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread:
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self) -> None:
        while not self.shutdown.is_set():
            try:
                self.scan()
            except Exception as e:
                log_event('Discovery', f"Scan error: {e}", "error")

            if self.shutdown.wait(self.poll_interval):
                break

    def scan(self) -> List[DeviceState]:
        """Run one discovery pass. Returns the devices started by it."""
        self.passes += 1
        try:
            lines = self.device_source.list_lines()
        except SourceError as e:
            log_event('Discovery', str(e), "warning")
            return []

        started = []
        for line in lines:
            serial = parse_device_line(line)
            if serial is None:
                continue
            if self.serial_filter is not None and serial not in self.serial_filter:
                continue
            if self.devices.lookup(serial) is not None:
                continue

            dev_state = self._handle_connect(serial)
            if dev_state is not None:
                started.append(dev_state)
        return started

    def _handle_connect(self, serial: str) -> Optional[DeviceState]:
        """Register a newly detected device and start its worker."""
        reconnections = self.reconnection_tracker.get(serial, 0)
        dev_state = DeviceState(serial, self.device_colors.allocate_next(), reconnections)

        if not self.devices.insert_if_absent(serial, dev_state):
            return None
        self.reconnection_tracker[serial] = reconnections + 1

        if reconnections == 0:
            log_event(serial, "Connected")
        else:
            log_event(serial, f"Reconnected (#{reconnections})")

        worker = DeviceWorker(
            dev_state,
            self.devices,
            self.log_source,
            self.tags,
            self.sink,
            self.shutdown,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            colored=self.colored,
            on_fatal=self.on_fatal,
        )
        worker.start()
        return dev_state
