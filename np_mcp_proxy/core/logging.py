"""Structured JSON logging setup for the proxy.

stdout carries the JSON-RPC stream, so log records only ever go to files
under ``LOG_PATH`` and to stderr.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from pythonjsonlogger import jsonlogger

from np_mcp_proxy.config import Settings

PROXY_LOG = "proxy.log"
ERROR_LOG = "error.log"


def _json_formatter() -> jsonlogger.JsonFormatter:
    return jsonlogger.JsonFormatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={
            "asctime": "timestamp",
            "levelname": "level",
            "name": "logger",
        },
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )


def setup_logging(settings: Settings) -> None:
    """Configure the root logger with structured JSON output.

    - ``error.log`` always receives ERROR and above.
    - ``proxy.log`` receives everything at ``LOG_LEVEL`` when ``DEBUG`` is on.
    - stderr receives WARNING and above (INFO when ``DEBUG`` is on).
    """
    root_logger = logging.getLogger()

    # Clear existing handlers to avoid duplicates on re-configuration
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    log_dir = Path(settings.LOG_PATH)
    log_dir.mkdir(parents=True, exist_ok=True)
    formatter = _json_formatter()

    error_handler = logging.FileHandler(log_dir / ERROR_LOG, encoding="utf-8")
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)
    root_logger.addHandler(error_handler)

    if settings.DEBUG:
        proxy_handler = logging.FileHandler(log_dir / PROXY_LOG, encoding="utf-8")
        proxy_handler.setLevel(settings.LOG_LEVEL.upper())
        proxy_handler.setFormatter(formatter)
        root_logger.addHandler(proxy_handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.INFO if settings.DEBUG else logging.WARNING)
    stderr_handler.setFormatter(formatter)
    root_logger.addHandler(stderr_handler)

    root_logger.setLevel(settings.LOG_LEVEL.upper() if settings.DEBUG else logging.INFO)

    # Silence noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
