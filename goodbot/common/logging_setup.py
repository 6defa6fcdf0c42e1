from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

from goodbot.common.env import Env
from goodbot.common.paths import resolve_path


_CONFIGURED_FOR: set[str] = set()


class _ServiceFilter(logging.Filter):
    def __init__(self, service: str):
        super().__init__()
        self._service = service

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        if not hasattr(record, "service"):
            record.service = self._service
        return True


def setup_logging(env: Env, *, service: str, level: str | None = None) -> None:
    """Configure root logging once per service.

    Handlers:
      - stderr (stdout is reserved for container output)
      - rotating file: <GOODBOT_LOG_DIR>/<service>.log
    """

    if service in _CONFIGURED_FOR:
        return

    lvl = (level or os.environ.get("LOG_LEVEL", "INFO")).upper().strip() or "INFO"
    root = logging.getLogger()
    root.setLevel(lvl)

    fmt = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(service)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    sh = logging.StreamHandler(sys.stderr)
    sh.setFormatter(fmt)
    sh.addFilter(_ServiceFilter(service))
    root.addHandler(sh)

    log_dir = resolve_path(env.log_dir)
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(
            filename=str(log_dir / f"{service}.log"),
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
    except OSError as e:
        root.warning("file logging disabled: %s", e, extra={"service": service})
    else:
        fh.setFormatter(fmt)
        fh.addFilter(_ServiceFilter(service))
        root.addHandler(fh)

    _CONFIGURED_FOR.add(service)


def get_logger(service: str) -> logging.Logger:
    return logging.getLogger(service)
