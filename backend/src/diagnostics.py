"""Sidecar diagnostics: JSON logs, native crash traces, Python crash dumps.

Everything lands under ~/.outline-fx:
    logs/sidecar.log          JSON lines, rotated by size
    logs/sidecar_fault.log    faulthandler output (OpenCV segfaults)
    crash_reports/crash_*.json  one PII-stripped dump per unhandled exception
"""

import datetime
import faulthandler
import json
import logging
import logging.handlers
import os
import sys
import traceback
from pathlib import Path

from security import strip_pii

logger = logging.getLogger(__name__)

APP_DIR = "~/.outline-fx"
LOG_FILE = "sidecar.log"
FAULT_FILE = "sidecar_fault.log"

LOG_MAX_BYTES = 10_000_000
LOG_BACKUPS = 7
MAX_CRASH_REPORTS = 5

# LogRecord extras copied into the JSON entry when present
CONTEXT_FIELDS = ("effect_type", "effect_id", "frame_number", "cmd")


def app_path(*parts: str) -> str:
    return os.path.join(os.path.expanduser(APP_DIR), *parts)


def _validate_log_dir(env_dir: str) -> str:
    """APP_LOG_DIR must resolve inside the app directory, else the default is used."""
    default = app_path("logs")
    if not env_dir:
        return default
    resolved = os.path.realpath(env_dir)
    allowed = os.path.realpath(app_path())
    if resolved != allowed and not resolved.startswith(allowed + os.sep):
        logger.warning("APP_LOG_DIR outside allowed prefix, using default")
        return default
    return resolved


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with effect context when the caller passed it."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.datetime.fromtimestamp(
                record.created, tz=datetime.timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            {f: getattr(record, f) for f in CONTEXT_FIELDS if hasattr(record, f)}
        )
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry)


def setup_structured_logging(log_dir: str | None = None) -> str:
    """Attach the rotating JSON handler to the root logger. Returns the log dir.

    Calling it again replaces the previous sidecar handler instead of stacking
    a second one.
    """
    resolved_dir = _validate_log_dir(log_dir or os.environ.get("APP_LOG_DIR", ""))
    os.makedirs(resolved_dir, mode=0o700, exist_ok=True)
    log_path = os.path.join(resolved_dir, LOG_FILE)

    root = logging.getLogger()
    for existing in list(root.handlers):
        if getattr(existing, "baseFilename", None) == os.path.abspath(log_path):
            root.removeHandler(existing)
            existing.close()

    handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS
    )
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)

    level = os.environ.get("APP_LOG_LEVEL", "INFO").upper()
    root.setLevel(getattr(logging, level, logging.INFO))
    return resolved_dir


def setup_faulthandler(log_dir: str):
    # Separate file: rotation would invalidate faulthandler's descriptor
    fault_path = os.path.join(log_dir, FAULT_FILE)
    try:
        fault_file = open(fault_path, "a", buffering=1)  # noqa: SIM115
        os.chmod(fault_path, 0o600)
        faulthandler.enable(file=fault_file, all_threads=True)
    except OSError as e:
        logger.warning("faulthandler disabled: %s", e)


def write_crash_report(crash_dir: str, exc_type, exc_value, exc_tb) -> str:
    """Write a PII-stripped JSON crash dump and prune old ones. Returns its path."""
    os.makedirs(crash_dir, mode=0o700, exist_ok=True)
    timestamp = datetime.datetime.now(tz=datetime.timezone.utc).strftime(
        "%Y%m%dT%H%M%SZ"
    )
    crash_path = os.path.join(crash_dir, f"crash_{timestamp}.json")

    report = {
        "timestamp": timestamp,
        "exception_type": exc_type.__name__ if exc_type else "Unknown",
        "exception_message": str(exc_value),
        "traceback": traceback.format_exception(exc_type, exc_value, exc_tb),
        "python_version": sys.version,
        "platform": sys.platform,
    }
    # strip_pii works on Sentry events; the report rides in "extra"
    report = strip_pii({"extra": report}, {})["extra"]

    old_umask = os.umask(0o077)
    try:
        with open(crash_path, "w") as f:
            json.dump(report, f, indent=2)
    finally:
        os.umask(old_umask)

    prune_crash_reports(crash_dir)
    return crash_path


def prune_crash_reports(crash_dir: str, keep: int = MAX_CRASH_REPORTS):
    """Delete all but the newest ``keep`` crash dumps."""
    dumps = sorted(
        Path(crash_dir).glob("crash_*.json"),
        key=lambda f: f.stat().st_mtime,
        reverse=True,
    )
    for old in dumps[keep:]:
        old.unlink(missing_ok=True)


def setup_excepthook(crash_dir: str | None = None):
    """Dump unhandled exceptions to crash_dir, then defer to the default hook."""
    target_dir = crash_dir or app_path("crash_reports")

    def _crash_excepthook(exc_type, exc_value, exc_tb):
        try:
            write_crash_report(target_dir, exc_type, exc_value, exc_tb)
        except Exception as e:
            # Never recurse into the hook from a failing dump
            print(f"WARNING: Could not write crash report: {e}", file=sys.stderr)
        sys.__excepthook__(exc_type, exc_value, exc_tb)

    sys.excepthook = _crash_excepthook


def init_diagnostics():
    log_dir = setup_structured_logging()
    setup_faulthandler(log_dir)
    setup_excepthook()
    logger.info("Diagnostics initialized: logging=%s", log_dir)
