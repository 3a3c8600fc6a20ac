"""
Structured logging configuration.

- Development and testing: human-readable colored format
- Production: JSON format (log aggregator compatible)
- LOG_FORMAT=json|readable overrides the choice; LOG_LEVEL sets the level

ARP services pass their scope through ``extra={...}``: enrollment_id,
meeting_id, event_type and actor_id. JSON output carries them as top-level
keys; the readable format folds them into one bracketed scope tag, e.g.
``[arp.meeting.miss enrollment=7 meeting=12 actor=u-coach]``.
"""

import json
import logging
import sys
from datetime import datetime, timezone

REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id")

# (record attribute, label in the readable scope tag)
SCOPE_FIELDS = (
    ("enrollment_id", "enrollment"),
    ("meeting_id", "meeting"),
    ("actor_id", "actor"),
)


def _scope_tag(record: logging.LogRecord) -> str:
    parts = []
    event_type = getattr(record, "event_type", None)
    if event_type:
        parts.append(str(event_type))
    for attr, label in SCOPE_FIELDS:
        value = getattr(record, attr, None)
        if value is not None:
            parts.append(f"{label}={value}")
    return f" [{' '.join(parts)}]" if parts else ""


class JSONFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        keys = REQUEST_FIELDS + ("event_type",) + tuple(attr for attr, _ in SCOPE_FIELDS)
        for key in keys:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val
        return json.dumps(log_entry, ensure_ascii=False)


class ReadableFormatter(logging.Formatter):
    """Human-readable colored formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",      # cyan
        "INFO": "\033[32m",       # green
        "WARNING": "\033[33m",    # yellow
        "ERROR": "\033[31m",      # red
        "CRITICAL": "\033[35m",   # magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now().strftime("%H:%M:%S")
        duration = getattr(record, "duration_ms", None)
        dur_str = f" [{duration:.0f}ms]" if duration is not None else ""
        msg = record.getMessage()
        base = (f"{color}{ts} {record.levelname:<8}{self.RESET} "
                f"{record.name}: {msg}{_scope_tag(record)}{dur_str}")
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


FORMATTERS = {"json": JSONFormatter, "readable": ReadableFormatter}

QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine")


def _pick_format(app) -> str:
    """LOG_FORMAT wins when set; otherwise JSON outside debug and testing."""
    explicit = str(app.config.get("LOG_FORMAT") or "").strip().lower()
    if explicit in FORMATTERS:
        return explicit
    if app.config.get("DEBUG") or app.config.get("TESTING"):
        return "readable"
    return "json"


def configure_logging(app):
    """
    Install one stderr handler on the root logger.

    LOG_LEVEL defaults to INFO for JSON output and DEBUG for readable output.
    Calling this again (one app per test module, for example) replaces the
    handler instead of stacking a second one.
    """
    fmt = _pick_format(app)
    level_name = str(app.config.get("LOG_LEVEL") or ("INFO" if fmt == "json" else "DEBUG"))
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(FORMATTERS[fmt]())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING"):
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
    return fmt
