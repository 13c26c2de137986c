"""Project logger: stderr plus an optional rotating file, both configured from settings."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from modgate.config.settings import settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def resolve_level(raw: str | None) -> int:
    return _LEVELS.get(str(raw or "").strip().upper(), logging.INFO)


def _file_handler(path: str, level: int, formatter: logging.Formatter) -> logging.Handler | None:
    if not path:
        return None
    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            target,
            maxBytes=max(1, int(settings.log_max_bytes)),
            backupCount=max(0, int(settings.log_backup_count)),
            encoding="utf-8",
        )
    except OSError as exc:
        # 日志目录不可写时退回只写 stderr
        logging.getLogger(__name__).warning("log file disabled path=%s error=%s", target, exc)
        return None
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def build_logger(name: str = "modgate", *, level: str | None = None, log_file: str | None = None) -> logging.Logger:
    configured = logging.getLogger(name)
    if configured.handlers:
        return configured

    resolved = resolve_level(settings.log_level if level is None else level)
    configured.setLevel(resolved)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(resolved)
    stream_handler.setFormatter(formatter)
    configured.addHandler(stream_handler)

    file_handler = _file_handler(settings.log_file if log_file is None else log_file, resolved, formatter)
    if file_handler is not None:
        configured.addHandler(file_handler)

    configured.propagate = False
    return configured


logger = build_logger()


def get_logger(name: str) -> logging.Logger:
    """Child of the modgate logger, e.g. modgate.event / modgate.metric."""
    return logger.getChild(name)
