"""
Logging Configuration for Braidarr
Structured or colored console output, optional rotating file, per-task context
fields, and URL redaction for outbound request logs.
"""

import contextvars
import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_log_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "braidarr_log_context", default={}
)

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

SENSITIVE_PARAMS = {
    "apikey",
    "api_key",
    "token",
    "x-plex-token",
    "password",
    "pass",
    "sid",
}


def sanitize_url(url: str) -> str:
    """Remove userinfo and mask credential-bearing query parameters."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "<invalid url>"

    netloc = parts.netloc
    if "@" in netloc:
        netloc = "***@" + netloc.rsplit("@", 1)[1]

    query = parts.query
    if query:
        pairs = [
            (key, "***" if key.lower() in SENSITIVE_PARAMS else value)
            for key, value in parse_qsl(query, keep_blank_values=True)
        ]
        query = urlencode(pairs, safe="*")

    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))


class ContextFilter(logging.Filter):
    """
    Copies the current task's context fields onto each record.
    Fields passed via ``extra=`` take precedence over the task context.
    """

    @staticmethod
    def set_context(**kwargs) -> None:
        """Merge fields into the context of the running task."""
        _log_context.set({**_log_context.get(), **kwargs})

    @staticmethod
    def clear_context(*keys) -> None:
        """Drop the named fields, or every field when called bare."""
        if keys:
            remaining = {k: v for k, v in _log_context.get().items() if k not in keys}
        else:
            remaining = {}
        _log_context.set(remaining)

    @staticmethod
    def get_context() -> Dict[str, Any]:
        return dict(_log_context.get())

    def filter(self, record: logging.LogRecord) -> bool:
        for name, value in _log_context.get().items():
            if not hasattr(record, name):
                setattr(record, name, value)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line, suitable for log shippers."""

    CONTEXT_FIELDS = [
        "provider",
        "instance",
        "operation",
        "method",
        "url",
        "status",
        "attempt",
        "client_identifier",
        "error_kind",
        "duration_ms",
    ]

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (name, getattr(record, name))
            for name in self.CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        )

        if record.exc_info:
            exc_type = record.exc_info[0]
            payload["exception"] = self.formatException(record.exc_info)
            payload["exception_type"] = exc_type.__name__ if exc_type else None

        return json.dumps(payload, default=str)


class ColoredFormatter(logging.Formatter):
    """
    Human readable console lines.
    The level name is colored on a terminal and a short context suffix
    such as ``[provider=sonarr, instance=main]`` is appended.
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    SUFFIX_FIELDS = ["provider", "instance", "operation"]

    def __init__(self, use_colors: bool = True):
        super().__init__(fmt=TEXT_FORMAT, datefmt=DATE_FORMAT)
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)

        color = self.COLORS.get(record.levelname) if self.use_colors else None
        if color:
            line = line.replace(record.levelname, color + record.levelname + self.RESET, 1)

        suffix = ", ".join(
            f"{name}={getattr(record, name)}"
            for name in self.SUFFIX_FIELDS
            if getattr(record, name, None)
        )
        return f"{line} [{suffix}]" if suffix else line


# Levels applied unless the root level is DEBUG
COMPONENT_LOG_LEVELS = {
    "braidarr": "INFO",
    "braidarr.transport": "INFO",
    "braidarr.retry": "INFO",
    "braidarr.pin_auth": "INFO",
    "aiohttp": "WARNING",
    "aiohttp.client": "WARNING",
}


def _attach(root: logging.Logger, handler: logging.Handler, formatter: logging.Formatter,
            context_filter: logging.Filter) -> None:
    handler.addFilter(context_filter)
    handler.setFormatter(formatter)
    root.addHandler(handler)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: str = "text",
    max_file_size_mb: int = 10,
    backup_count: int = 5,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Replace the root logger's handlers with Braidarr's.

    Console output always goes to stdout. Setting ``log_file`` adds a
    size-rotated file next to it; ``log_format="json"`` switches both
    outputs to JSON lines. Any previously installed handlers are removed,
    so calling this twice does not duplicate output.

    Returns:
        The root logger
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    for existing in list(root.handlers):
        root.removeHandler(existing)

    use_json = log_format == "json"
    context_filter = ContextFilter()

    _attach(
        root,
        logging.StreamHandler(sys.stdout),
        JSONFormatter() if use_json else ColoredFormatter(use_colors=use_colors),
        context_filter,
    )

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        rotating = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        _attach(
            root,
            rotating,
            JSONFormatter() if use_json else logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT),
            context_filter,
        )

    if root.level > logging.DEBUG:
        for name, level in COMPONENT_LOG_LEVELS.items():
            logging.getLogger(name).setLevel(level)

    logging.getLogger(__name__).info(
        "Logging ready (level=%s, format=%s, file=%s)", log_level, log_format, log_file or "none"
    )
    return root


class LogContext:
    """
    Scoped context fields, restored on exit.

        with LogContext(provider="sonarr", operation="get_series"):
            logger.info("Fetching series")

    ``None`` values are ignored so optional fields can be passed through.
    """

    def __init__(self, **kwargs):
        self.context = {k: v for k, v in kwargs.items() if v is not None}
        self._token: Optional[contextvars.Token] = None

    def __enter__(self):
        self._token = _log_context.set({**_log_context.get(), **self.context})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None
        return False
