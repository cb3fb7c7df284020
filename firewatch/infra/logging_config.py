# firewatch/infra/logging_config.py
import json
import logging
import sys
from datetime import datetime, timezone

# Record attributes LogContext may attach, with their short console labels
_CONTEXT_FIELDS = {
    "request_id": "req",
    "incident_id": "incident",
    "channel": "channel",
}

_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "uvicorn.error": logging.INFO,
    "aiohttp.access": logging.WARNING,
    "asyncpg": logging.WARNING,
}


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


def _context_of(record: logging.LogRecord) -> dict:
    return {k: getattr(record, k) for k in _CONTEXT_FIELDS if hasattr(record, k)}


class JSONFormatter(logging.Formatter):
    """One JSON object per line; used when ``app_env`` is prod."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": _record_time(record).isoformat(),
            "service": "firewatch",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "at": f"{record.module}.{record.funcName}:{record.lineno}",
            **_context_of(record),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Coloured single-line output for local runs."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, self.RESET)

        tags = []
        for key, value in _context_of(record).items():
            if key == "request_id":
                value = str(value)[:8]
            tags.append(f"{_CONTEXT_FIELDS[key]}={value}")
        context = f" [{' '.join(tags)}]" if tags else ""

        line = (
            f"{color}{_record_time(record):%H:%M:%S} {record.levelname:<8}{self.RESET}"
            f"{record.name}{context}: {record.getMessage()}"
        )
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(level: str = "INFO", use_json: bool = False) -> None:
    """Route every logger to stdout through a single handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(level)
    for existing in list(root.handlers):
        root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if use_json else ConsoleFormatter())
    root.addHandler(handler)

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    logging.getLogger(__name__).info(f"Logging configured: level={level}, json={use_json}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext:
    """
    Logger wrapper that stamps request/incident/channel context on every record.

        LogContext(logger, incident_id=7).info("Incident updated")
    """

    def __init__(
            self,
            logger: logging.Logger,
            request_id: str | None = None,
            incident_id: int | None = None,
            channel: str | None = None,
    ):
        self.logger = logger
        given = {"request_id": request_id, "incident_id": incident_id, "channel": channel}
        self.context = {k: v for k, v in given.items() if v is not None}

    def log(self, level: int, msg: str, *args, **kwargs) -> None:
        extra = {**kwargs.pop("extra", {}), **self.context}
        self.logger.log(level, msg, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args, **kwargs) -> None:
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs) -> None:
        self.log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs) -> None:
        self.log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs) -> None:
        self.log(logging.ERROR, msg, *args, **kwargs)


def mask_coordinates(lat: float, lon: float) -> str:
    """Mask GPS coordinates for logging.

    Example: ``mask_coordinates(34.6857, 33.0437)`` gives ``"34.7**, 33.0**"``

    One decimal digit (roughly 10 km) is enough to tell incidents apart
    in logs without writing reporter locations verbatim.
    """
    return f"{lat:.1f}**, {lon:.1f}**"
