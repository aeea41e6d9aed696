"""
adb-logmux - colorized, multiplexed logcat for every attached Android device.

Modules:
    - settings: settings.ini handling and diagnostics logging
    - matcher: `adb devices` / `logcat -v time` line parsing
    - colors: palette, round-robin color allocation and record formatting
    - registry: thread-safe key -> value registry
    - sources: adb-backed device and log sources
    - sink: serialized console output
    - worker: per-device logcat worker
    - discovery: device polling loop
    - app: application wiring and CLI entry point

Usage:
    adb-logmux
    python -m adb_logmux --serial 0123456789ABCDEF
"""

__version__ = "1.0.0"
