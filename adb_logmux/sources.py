"""
Device and log sources backed by the `adb` command.

The core only needs two line-oriented interfaces:

- a device source that returns the current `adb devices` listing, and
- a log source that opens one unbounded logcat stream per serial.
"""

from __future__ import annotations

import subprocess
from typing import IO, List, Optional, Sequence

from adb_logmux.settings import DEFAULT_ADB_PATH, DEFAULT_LOGCAT_FORMAT, log_event

# Seconds to wait for `adb devices` before giving up on a pass
DEVICE_LIST_TIMEOUT_S = 10.0

# Seconds to wait for logcat to exit after terminate() before kill()
LOGCAT_STOP_TIMEOUT_S = 2.0


class SourceError(Exception):
    """A device or log source could not be started."""


class DeviceSource:
    """Produces the current device listing as text lines."""

    def list_lines(self) -> List[str]:
        raise NotImplementedError


class LogStream:
    """One open, line-oriented log stream."""

    def readline(self) -> str:
        """Return the next line, or '' at end of stream."""
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class LogSource:
    """Opens a log stream for a device serial."""

    def open(self, serial: str) -> LogStream:
        raise NotImplementedError

# ══════════════════════════════════════════════════════════════════════════════
# ADB IMPLEMENTATIONS
# ══════════════════════════════════════════════════════════════════════════════

class AdbDeviceSource(DeviceSource):
    def __init__(self, adb_path: str = DEFAULT_ADB_PATH):
        self.adb_path = adb_path

    def command(self) -> List[str]:
        return [self.adb_path, "devices"]

    def list_lines(self) -> List[str]:
        try:
            result = subprocess.run(
                self.command(),
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                text=True,
                errors="replace",
                timeout=DEVICE_LIST_TIMEOUT_S,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise SourceError(f"`{' '.join(self.command())}` failed: {e}") from e

        if result.returncode != 0:
            raise SourceError(f"`{' '.join(self.command())}` exited with status {result.returncode}")
        return result.stdout.splitlines()


class ProcessLogStream(LogStream):
    """Log stream reading the stdout of a running subprocess."""

    def __init__(self, proc: subprocess.Popen, name: str = ""):
        self.proc = proc
        self.name = name
        self._stdout: Optional[IO[str]] = proc.stdout

    def readline(self) -> str:
        if self._stdout is None:
            return ""
        return self._stdout.readline()

    def close(self) -> None:
        proc = self.proc
        if proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=LOGCAT_STOP_TIMEOUT_S)
            except subprocess.TimeoutExpired:
                log_event(self.name or "logcat", "logcat did not exit, killing it", "warning")
                proc.kill()
                proc.wait()
        if self._stdout is not None:
            self._stdout.close()
            self._stdout = None


class AdbLogSource(LogSource):
    def __init__(self, adb_path: str = DEFAULT_ADB_PATH,
                 logcat_format: str = DEFAULT_LOGCAT_FORMAT):
        self.adb_path = adb_path
        self.logcat_format = logcat_format

    def command(self, serial: str) -> Sequence[str]:
        return [self.adb_path, "-s", serial, "logcat", "-v", self.logcat_format]

    def open(self, serial: str) -> LogStream:
        try:
            proc = subprocess.Popen(
                self.command(serial),
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                stdin=subprocess.DEVNULL,
                text=True,
                errors="replace",
                bufsize=1,
            )
        except (OSError, ValueError) as e:
            raise SourceError(f"Failed to start logcat for {serial}: {e}") from e
        return ProcessLogStream(proc, name=serial)
