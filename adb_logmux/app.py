"""
adb-logmux - colorized logcat for every attached Android device
===============================================================

Polls `adb devices` and runs one `adb -s <serial> logcat -v time` per
device, merging all of them into a single colorized stream on stdout.
Devices may be unplugged and plugged back in at any time.

Thread Model:
-------------
- 1 discovery thread (polls `adb devices`, 3s interval)
- N logcat threads (one per device, blocking on the logcat pipe)
- Main thread waits for discovery to end (Ctrl-C)

Shared state (device registry, tag colors, color counters, stdout) is built
once here and handed to every thread.
"""

from __future__ import annotations

import argparse
import os
import sys
import threading
from dataclasses import replace
from typing import IO, List, Optional, Sequence

from filelock import FileLock, Timeout

from adb_logmux import __version__
from adb_logmux.colors import ColorAllocator, TagColorizer
from adb_logmux.discovery import DiscoveryLoop
from adb_logmux.registry import Registry
from adb_logmux.settings import Settings, configure_logging, get_settings, log_event
from adb_logmux.sink import OutputError, OutputSink
from adb_logmux.sources import AdbDeviceSource, AdbLogSource, DeviceSource, LogSource
from adb_logmux.worker import DeviceState

# Seconds to wait for the discovery thread on shutdown
STOP_JOIN_TIMEOUT_S = 2.0

# Main thread join slice; keeps Ctrl-C responsive
JOIN_SLICE_S = 0.5

LOCK_NAME = "adb_logmux.lock"

# ══════════════════════════════════════════════════════════════════════════════
# SINGLE INSTANCE LOCK
# ══════════════════════════════════════════════════════════════════════════════

_instance_lock: Optional[FileLock] = None


def lock_path_for(settings: Settings) -> str:
    directory = os.path.dirname(settings.path) if settings.path else ""
    return os.path.join(directory or ".", LOCK_NAME)


def acquire_instance_lock(path: str) -> FileLock:
    """Acquire single-instance lock. Raises SystemExit if another instance running."""
    global _instance_lock
    try:
        _instance_lock = FileLock(path)
        _instance_lock.acquire(timeout=0.1)
        return _instance_lock
    except Timeout:
        _instance_lock = None
        print("ERROR: Another instance of adb-logmux is already running.", file=sys.stderr)
        sys.exit(1)


def release_instance_lock() -> None:
    """Release the single-instance lock if held."""
    global _instance_lock
    if _instance_lock is not None:
        _instance_lock.release()
        _instance_lock = None

# ══════════════════════════════════════════════════════════════════════════════
# MAIN APPLICATION
# ══════════════════════════════════════════════════════════════════════════════

class LogcatBridge:
    """
    Main application - owns the shared state and the discovery loop.
    """

    def __init__(self, settings: Settings,
                 device_source: Optional[DeviceSource] = None,
                 log_source: Optional[LogSource] = None,
                 stream: Optional[IO[str]] = None,
                 serials: Optional[Sequence[str]] = None,
                 colored: bool = True):
        self.settings = settings
        self.device_source = device_source or AdbDeviceSource(settings.adb_path)
        self.log_source = log_source or AdbLogSource(settings.adb_path, settings.logcat_format)
        self.serials = list(serials) if serials else None
        self.colored = colored

        self.shutdown = threading.Event()
        self.devices = Registry("devices")
        self.device_colors = ColorAllocator()
        self.tags = TagColorizer(registry=Registry("tags"), seeds=settings.tag_seeds)
        self.sink = OutputSink(stream)

        self.discovery: Optional[DiscoveryLoop] = None
        self.fatal_error: Optional[BaseException] = None
        self._fatal_lock = threading.Lock()

    def start(self) -> None:
        """Build the discovery loop and start polling."""
        self.discovery = DiscoveryLoop(
            self.device_source,
            self.log_source,
            self.devices,
            self.device_colors,
            self.tags,
            self.sink,
            self.shutdown,
            poll_interval=self.settings.poll_interval,
            max_retries=self.settings.open_retries,
            retry_delay=self.settings.retry_delay,
            serial_filter=self.serials,
            colored=self.colored,
            on_fatal=self.fail,
        )

        log_event('System', f'Starting adb-logmux {__version__}')
        log_event('System', f'adb: {self.settings.adb_path}, poll every {self.settings.poll_interval}s')
        if self.serials:
            log_event('System', f'Only attaching: {", ".join(self.serials)}')

        self.discovery.start()

    def wait_for_first_device(self) -> bool:
        """Give the first discovery pass a moment, then report if nothing attached."""
        self.shutdown.wait(self.settings.startup_delay)
        if self.devices.count() == 0 and not self.shutdown.is_set():
            print("Waiting on device to connect.", file=sys.stderr)
            return False
        return self.devices.count() > 0

    def run(self) -> None:
        """Run the application (blocks until shutdown)."""
        self.start()
        try:
            self.wait_for_first_device()
            while self.discovery.is_alive():
                self.discovery.join(JOIN_SLICE_S)
        finally:
            self.stop()

    def stop(self) -> None:
        """Signal every thread to stop. Blocked logcat reads are not interrupted."""
        self.shutdown.set()
        for dev_state in self.devices.values():
            dev_state.request_stop()
        if self.discovery:
            self.discovery.join(STOP_JOIN_TIMEOUT_S)

    def fail(self, exc: BaseException) -> None:
        """Record a fatal error (console write failure) and shut down."""
        with self._fatal_lock:
            if self.fatal_error is None:
                self.fatal_error = exc
        self.shutdown.set()

    def device_states(self) -> List[DeviceState]:
        return self.devices.values()

# ══════════════════════════════════════════════════════════════════════════════
# ENTRY POINT
# ══════════════════════════════════════════════════════════════════════════════

def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="adb-logmux",
        description="Colorized logcat for all attached Android devices",
    )
    parser.add_argument("--config", help="Path to settings.ini", default=None)
    parser.add_argument("--adb", help="Path to the adb executable (overrides settings)", default=None)
    parser.add_argument("-s", "--serial", action="append", default=None,
                        help="Only attach this device serial (repeatable)")
    parser.add_argument("--no-color", action="store_true", help="Write plain text without escapes")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug diagnostics on stderr, including unmatched logcat lines")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def _silence_stdout() -> None:
    # stdout is gone (e.g. piped into `head`); keep interpreter shutdown quiet
    try:
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
    except (OSError, ValueError):
        pass


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    settings = get_settings(args.config)
    if args.adb:
        settings = replace(settings, adb_path=args.adb)

    configure_logging("DEBUG" if args.verbose else settings.log_level, settings.log_file)
    acquire_instance_lock(lock_path_for(settings))

    bridge = LogcatBridge(settings, serials=args.serial, colored=not args.no_color)
    try:
        try:
            bridge.run()
        except KeyboardInterrupt:
            print("\nInterrupted by user", file=sys.stderr)
            bridge.stop()
    finally:
        release_instance_lock()

    if bridge.fatal_error is not None:
        if isinstance(bridge.fatal_error, OutputError):
            _silence_stdout()
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
