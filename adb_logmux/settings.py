"""
Settings and diagnostics for adb-logmux.

Configuration lives in an INI file (``settings.ini``) that is created with
defaults on first run. Diagnostics go through a single lazily-built logger
that writes to stderr, so they never mix with the colorized stream on stdout.
"""

from __future__ import annotations

import configparser
import logging
import math
import os
import sys
import threading
from dataclasses import dataclass, field
from typing import Dict, Optional

# ══════════════════════════════════════════════════════════════════════════════
# DEFAULTS
# ══════════════════════════════════════════════════════════════════════════════

DEFAULT_ADB_PATH       = "adb"
DEFAULT_LOGCAT_FORMAT  = "time"

# Seconds between `adb devices` polls
DEFAULT_POLL_INTERVAL  = 3.0

# Seconds the main thread waits for the first discovery pass
DEFAULT_STARTUP_DELAY  = 1.0

# Log source open retry configuration
DEFAULT_OPEN_RETRIES   = 10
DEFAULT_RETRY_DELAY    = 1.0

DEFAULT_LOG_LEVEL      = "WARNING"

# Upper bound for numeric settings; longer waits overflow Event.wait()
MAX_SETTING_VALUE      = 86400

# Tag colors assigned before any log line is read. These do not consume
# slots of the tag round-robin sequence.
DEFAULT_TAG_SEEDS: Dict[str, str] = {
    "dalvikvm":        "blue",
    "Process":         "blue",
    "ActivityManager": "cyan",
    "ActivityThread":  "cyan",
}

SETTINGS_ENV = "ADB_LOGMUX_SETTINGS"
DEFAULT_SETTINGS_PATH = os.path.join(os.path.expanduser("~"), ".adb_logmux", "settings.ini")

LOGGER_NAME = "adb_logmux"

# ══════════════════════════════════════════════════════════════════════════════
# LOGGING
# ══════════════════════════════════════════════════════════════════════════════

_logger: Optional[logging.Logger] = None
_logger_lock = threading.Lock()


def get_logger() -> logging.Logger:
    """Get or create the application logger (lazy initialization)."""
    global _logger
    if _logger is not None:
        return _logger

    with _logger_lock:
        if _logger is not None:
            return _logger

        logger = logging.getLogger(LOGGER_NAME)
        logger.setLevel(logging.WARNING)
        logger.propagate = False

        if not logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(_formatter())
            logger.addHandler(handler)

        _logger = logger
        return _logger


def _formatter() -> logging.Formatter:
    return logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def configure_logging(level: str, log_file: Optional[str] = None) -> logging.Logger:
    """Apply the configured level and attach a file handler if requested."""
    logger = get_logger()
    logger.setLevel(getattr(logging, level.upper(), logging.WARNING))

    if log_file:
        has_file = any(
            isinstance(h, logging.FileHandler) and h.baseFilename == os.path.abspath(log_file)
            for h in logger.handlers
        )
        if not has_file:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setFormatter(_formatter())
            logger.addHandler(file_handler)
    return logger


def log_event(name: str, msg: str, level: str = "info") -> None:
    """Log a diagnostic scoped to a device serial or subsystem name."""
    logger = get_logger()
    log_fn = getattr(logger, level, logger.info)
    log_fn(f"[{name}] {msg}")

# ══════════════════════════════════════════════════════════════════════════════
# SETTINGS FILE HANDLING
# ══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Settings:
    adb_path: str = DEFAULT_ADB_PATH
    logcat_format: str = DEFAULT_LOGCAT_FORMAT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    startup_delay: float = DEFAULT_STARTUP_DELAY
    open_retries: int = DEFAULT_OPEN_RETRIES
    retry_delay: float = DEFAULT_RETRY_DELAY
    log_level: str = DEFAULT_LOG_LEVEL
    log_file: Optional[str] = None
    tag_seeds: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TAG_SEEDS))
    path: Optional[str] = None


def resolve_settings_path(path: Optional[str] = None) -> str:
    """CLI path wins, then the environment, then the per-user default."""
    if path:
        return path
    return os.environ.get(SETTINGS_ENV) or DEFAULT_SETTINGS_PATH


def write_default_settings(path: str) -> None:
    """Create a settings file holding the default values."""
    config = configparser.ConfigParser()
    config.optionxform = str
    config['ADB'] = {
        'PATH': DEFAULT_ADB_PATH,
        'LOGCAT_FORMAT': DEFAULT_LOGCAT_FORMAT,
    }
    config['TIMING'] = {
        'POLL_INTERVAL': str(DEFAULT_POLL_INTERVAL),
        'STARTUP_DELAY': str(DEFAULT_STARTUP_DELAY),
        'OPEN_RETRIES': str(DEFAULT_OPEN_RETRIES),
        'RETRY_DELAY': str(DEFAULT_RETRY_DELAY),
    }
    config['LOGGING'] = {'LEVEL': DEFAULT_LOG_LEVEL, 'FILE': ''}
    config['TAGS'] = dict(DEFAULT_TAG_SEEDS)

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, 'w') as f:
        config.write(f)


def _read_number(config: configparser.ConfigParser, section: str, key: str, default, cast):
    raw = config.get(section, key, fallback=None)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw)
    except ValueError:
        get_logger().warning("Invalid %s.%s in settings: %r", section, key, raw)
        return default
    if not math.isfinite(value) or value < 0 or value > MAX_SETTING_VALUE:
        get_logger().warning("Out of range %s.%s in settings: %r", section, key, raw)
        return default
    return value


def read_settings(path: Optional[str] = None) -> Settings:
    """Read settings from the INI file, creating it with defaults if missing."""
    path = resolve_settings_path(path)

    if not os.path.isfile(path):
        try:
            write_default_settings(path)
        except OSError as e:
            get_logger().warning("Could not create settings file %s: %s", path, e)

    config = configparser.ConfigParser()
    # Tag names are case sensitive
    config.optionxform = str
    config.read(path)

    tag_seeds = dict(DEFAULT_TAG_SEEDS)
    if config.has_section('TAGS'):
        tag_seeds = dict(config.items('TAGS'))

    log_file = config.get('LOGGING', 'FILE', fallback='').strip() or None

    return Settings(
        adb_path=config.get('ADB', 'PATH', fallback=DEFAULT_ADB_PATH).strip() or DEFAULT_ADB_PATH,
        logcat_format=config.get('ADB', 'LOGCAT_FORMAT', fallback=DEFAULT_LOGCAT_FORMAT).strip()
        or DEFAULT_LOGCAT_FORMAT,
        poll_interval=_read_number(config, 'TIMING', 'POLL_INTERVAL', DEFAULT_POLL_INTERVAL, float),
        startup_delay=_read_number(config, 'TIMING', 'STARTUP_DELAY', DEFAULT_STARTUP_DELAY, float),
        open_retries=_read_number(config, 'TIMING', 'OPEN_RETRIES', DEFAULT_OPEN_RETRIES, int),
        retry_delay=_read_number(config, 'TIMING', 'RETRY_DELAY', DEFAULT_RETRY_DELAY, float),
        log_level=config.get('LOGGING', 'LEVEL', fallback=DEFAULT_LOG_LEVEL).strip() or DEFAULT_LOG_LEVEL,
        log_file=log_file,
        tag_seeds=tag_seeds,
        path=path,
    )


# Settings cache
_settings_cache: Dict[str, Settings] = {}
_settings_lock = threading.Lock()


def get_settings(path: Optional[str] = None) -> Settings:
    """Get cached settings for a path (lazy load)."""
    path = resolve_settings_path(path)
    cached = _settings_cache.get(path)
    if cached is not None:
        return cached

    with _settings_lock:
        cached = _settings_cache.get(path)
        if cached is not None:
            return cached
        settings = read_settings(path)
        _settings_cache[path] = settings
        return settings


def clear_settings_cache() -> None:
    with _settings_lock:
        _settings_cache.clear()
