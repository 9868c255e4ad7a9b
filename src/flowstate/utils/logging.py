"""Logging setup for FlowState sessions and the command line tool."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Any, MutableMapping

__all__ = ["setup_logging", "document_logger", "get_log_path", "resolve_level"]

_DEFAULT_LOG_DIR = Path.home() / ".flowstate" / "logs"
_LOG_FILENAME = "flowstate.log"
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_CONFIGURED = False
_LOG_PATH: Path | None = None


def setup_logging(
    level: int | str = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install a rotating log file under ``log_dir`` and an optional stderr handler.

    Repeated calls are no-ops unless ``force`` is set, so the CLI and an
    embedding host can both call this safely.
    """

    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and not force and _LOG_PATH is not None:
        return _LOG_PATH

    resolved_level = resolve_level(level)
    target_dir = _resolve_log_dir(log_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / _LOG_FILENAME

    formatter = logging.Formatter(fmt=_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [file_handler]

    if console:
        console_handler = logging.StreamHandler()
        # The terminal only gets warnings unless debugging was requested.
        console_handler.setLevel(min(resolved_level, logging.WARNING))
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    logging.basicConfig(level=resolved_level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    quiet_level = max(resolved_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)

    _CONFIGURED = True
    _LOG_PATH = log_path
    return log_path


def resolve_level(level: int | str | None) -> int:
    """Translate ``level`` (or ``FLOWSTATE_LOG_LEVEL``) into a logging constant."""

    if level is None:
        level = os.environ.get("FLOWSTATE_LOG_LEVEL", "INFO")
    if isinstance(level, int):
        return level
    candidate = logging.getLevelName(str(level).strip().upper())
    return candidate if isinstance(candidate, int) else logging.INFO


class _DocumentAdapter(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        document_id = (self.extra or {}).get("document_id") or "-"
        return f"[doc={document_id}] {msg}", kwargs


def document_logger(logger: logging.Logger, document_id: str | None) -> logging.LoggerAdapter:
    """Return an adapter that tags every record with the active document id."""

    return _DocumentAdapter(logger, {"document_id": document_id})


def get_log_path() -> Path | None:
    return _LOG_PATH


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    env_override = os.environ.get("FLOWSTATE_LOG_DIR")
    return Path(log_dir or env_override or _DEFAULT_LOG_DIR).expanduser()
