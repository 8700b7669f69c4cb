"""Structured logging for the importer.

structlog events are handed to stdlib ``logging`` and rendered as JSON by
python-json-logger. Three sinks are shared by every component:

* the console (``DEBUG`` with ``--verbose``, otherwise ``INFO``)
* ``logs/importer.log`` for everything at ``INFO`` and above
* ``logs/error.log`` for errors only

Each feed additionally gets ``logs/sources/<slug>.log`` through
:func:`source_logger`, so one run can be followed without grepping the
global file.
"""

from __future__ import annotations

import logging
import logging.config
import os
from collections import deque
from pathlib import Path
from threading import Lock
from typing import Any, Iterable

import structlog

ROOT_LOGGER = "job_importer"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_configured = False
_source_lock = Lock()


def log_dir() -> Path:
    home = os.environ.get("JOB_IMPORTER_HOME")
    if home:
        return Path(home).expanduser().resolve() / "logs"
    return Path(__file__).resolve().parents[1] / "logs"


def _slug(name: str) -> str:
    return "".join(ch.lower() if ch.isalnum() else "-" for ch in name).strip("-") or "source"


def _file_handler(path: Path, level: str) -> dict[str, Any]:
    return {
        "class": "logging.FileHandler",
        "level": level,
        "filename": str(path),
        "encoding": "utf-8",
        "formatter": "json",
    }


def _dict_config(directory: Path, level: str) -> dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": "pythonjsonlogger.jsonlogger.JsonFormatter", "fmt": JSON_FORMAT},
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "level": level, "formatter": "json"},
            "importer_file": _file_handler(directory / "importer.log", "INFO"),
            "error_file": _file_handler(directory / "error.log", "ERROR"),
        },
        "loggers": {
            ROOT_LOGGER: {
                "handlers": ["console", "importer_file", "error_file"],
                "level": level,
                "propagate": False,
            },
        },
    }


def configure_logging(verbose: bool = False) -> structlog.BoundLogger:
    """Install handlers once per process and return the root importer logger."""

    global _configured
    directory = log_dir()
    (directory / "sources").mkdir(parents=True, exist_ok=True)

    if not _configured:
        logging.config.dictConfig(_dict_config(directory, "DEBUG" if verbose else "INFO"))
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _configured = True
    return structlog.get_logger(ROOT_LOGGER)


def component_logger(component: str) -> structlog.BoundLogger:
    return configure_logging().bind(component=component)


def source_logger(source_name: str, verbose: bool = False) -> structlog.BoundLogger:
    """Logger for one feed; events also land in that feed's own log file."""

    configure_logging(verbose)
    slug = _slug(source_name)
    path = log_dir() / "sources" / f"{slug}.log"
    name = f"{ROOT_LOGGER}.source.{slug}"
    py_logger = logging.getLogger(name)

    with _source_lock:
        attached = {getattr(handler, "baseFilename", None) for handler in py_logger.handlers}
        if str(path) not in attached:
            path.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(path, encoding="utf-8")
            handler.setLevel(logging.INFO)
            shared = logging.getLogger(ROOT_LOGGER).handlers
            if shared:
                handler.setFormatter(shared[0].formatter)
            py_logger.addHandler(handler)

    return structlog.get_logger(name).bind(source=source_name)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        return list(deque(stream, maxlen=max(0, line_count)))


def available_source_logs() -> Iterable[Path]:
    sources = log_dir() / "sources"
    if not sources.exists():
        return []
    return sorted(sources.glob("*.log"))


__all__ = [
    "available_source_logs",
    "component_logger",
    "configure_logging",
    "log_dir",
    "source_logger",
    "tail_log",
]
