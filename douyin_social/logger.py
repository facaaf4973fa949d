"""Logging set-up: JSON or console records, rotated log files."""

from __future__ import annotations

import gzip
import json
import logging
import os
import shutil
import sys
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

LOGGER_NAME = "douyin_social"
_DEFAULT_MAX_SIZE_MB = 100

_ZAP_LEVELS = {
    -1: logging.DEBUG,
    0: logging.INFO,
    1: logging.WARNING,
    2: logging.ERROR,
}
_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "FATAL",
}


def _python_level(level: int) -> int:
    if level < -1:
        return logging.DEBUG
    return _ZAP_LEVELS.get(level, logging.CRITICAL)


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "t", "true"}
    return bool(value)


@dataclass
class LogConfig:
    """Log settings: minimum level, file rotation and output mode."""

    level: int = 0
    file_name: str = ""
    max_size: int = 0
    max_age: int = 0
    max_backups: int = 0
    compress: bool = False
    mode: str = ""

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> "LogConfig":
        """Read the ``settings.log`` section of a configuration mapping."""
        section = (settings.get("settings") or {}).get("log") or {}
        return cls(
            level=_as_int(section.get("level")),
            file_name=str(section.get("path") or ""),
            max_size=_as_int(section.get("maxSize")),
            max_age=_as_int(section.get("maxAge")),
            max_backups=_as_int(section.get("maxBackups")),
            compress=_as_bool(section.get("compress")),
            mode=str(section.get("mode") or ""),
        )


class _ZapFormatter(logging.Formatter):
    def _parts(self, record: logging.LogRecord) -> tuple[str, str, str, str, dict[str, Any]]:
        stamp = datetime.fromtimestamp(record.created).astimezone()
        time_text = (
            stamp.strftime("%Y-%m-%dT%H:%M:%S.")
            + f"{stamp.microsecond // 1000:03d}"
            + stamp.strftime("%z")
        )
        level = _LEVEL_NAMES.get(record.levelno, record.levelname)
        path = Path(record.pathname)
        caller = f"{path.parent.name}/{path.name}:{record.lineno}"
        extra = dict(getattr(record, "fields", None) or {})
        if record.exc_info:
            extra["error"] = self.formatException(record.exc_info)
        return time_text, level, caller, record.getMessage(), extra


class _JsonFormatter(_ZapFormatter):
    def format(self, record: logging.LogRecord) -> str:
        time_text, level, caller, message, extra = self._parts(record)
        entry = {"level": level, "time": time_text, "caller": caller, "msg": message, **extra}
        return json.dumps(entry, ensure_ascii=False, default=str)


class _ConsoleFormatter(_ZapFormatter):
    def format(self, record: logging.LogRecord) -> str:
        time_text, level, caller, message, extra = self._parts(record)
        line = "\t".join((time_text, level, caller, message))
        if extra:
            line += "\t" + json.dumps(extra, ensure_ascii=False, default=str)
        return line


class _RollingFileHandler(logging.FileHandler):
    """Appends to a file, moving it to a timestamped backup when it grows too large."""

    def __init__(
        self, filename: str, max_bytes: int, max_backups: int, max_age_days: int, compress: bool
    ) -> None:
        Path(filename).parent.mkdir(parents=True, exist_ok=True)
        super().__init__(filename, mode="a", encoding="utf-8")
        self.max_bytes = max_bytes
        self.max_backups = max_backups
        self.max_age_days = max_age_days
        self.compress = compress

    def emit(self, record: logging.LogRecord) -> None:
        try:
            size = len((self.format(record) + self.terminator).encode("utf-8"))
            if self.stream is not None:
                self.stream.flush()
                current = os.path.getsize(self.baseFilename)
                if current > 0 and current + size > self.max_bytes:
                    self._rotate()
        except Exception:
            self.handleError(record)
            return
        super().emit(record)

    def _rotate(self) -> None:
        if self.stream is not None:
            self.stream.close()
            self.stream = None
        base = Path(self.baseFilename)
        stamp = datetime.now(timezone.utc)
        backup = base.with_name(
            f"{base.stem}-{stamp:%Y-%m-%dT%H-%M-%S}.{stamp.microsecond // 1000:03d}{base.suffix}"
        )
        os.replace(base, backup)
        if self.compress:
            with open(backup, "rb") as src, gzip.open(f"{backup}.gz", "wb") as dst:
                shutil.copyfileobj(src, dst)
            backup.unlink()
        self.stream = self._open()
        self._prune(base)

    def _prune(self, base: Path) -> None:
        prefix = base.stem + "-"
        backups = sorted(
            (
                path
                for path in base.parent.iterdir()
                if path != base
                and path.name.startswith(prefix)
                and (path.name.endswith(base.suffix) or path.name.endswith(base.suffix + ".gz"))
            ),
            key=lambda path: path.name,
            reverse=True,
        )
        if self.max_backups > 0:
            for path in backups[self.max_backups:]:
                path.unlink(missing_ok=True)
            backups = backups[: self.max_backups]
        if self.max_age_days > 0:
            cutoff = time.time() - self.max_age_days * 86400
            for path in backups:
                if path.stat().st_mtime < cutoff:
                    path.unlink(missing_ok=True)


def _default_file_name() -> str:
    program = Path(sys.argv[0]).name or "python"
    return os.path.join(tempfile.gettempdir(), f"{program}-lumberjack.log")


def init_logger(mode: str, settings: Mapping[str, Any]) -> logging.Logger:
    """Configure and return the package logger.

    ``debug`` mode writes console-style lines, other modes JSON records;
    ``release`` mode writes to the log file only, other modes to stdout too.
    """
    config = LogConfig.from_settings(settings)
    if mode != config.mode:
        config.mode = mode

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter: logging.Formatter = (
        _ConsoleFormatter() if config.mode == "debug" else _JsonFormatter()
    )
    handlers: list[logging.Handler] = [
        _RollingFileHandler(
            config.file_name or _default_file_name(),
            (config.max_size or _DEFAULT_MAX_SIZE_MB) * 1024 * 1024,
            config.max_backups,
            config.max_age,
            config.compress,
        )
    ]
    if config.mode != "release":
        handlers.append(logging.StreamHandler(sys.stdout))
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(_python_level(config.level))
    logger.propagate = False
    logger.debug("日志模块初始化成功", extra={"fields": {"mode": mode}})
    return logger