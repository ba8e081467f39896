"""
Logging utilities for albumsync.

Provides a JSON-lines formatter carrying sync context fields
(collection, asset_key, attempt, status) and a one-shot root
logger configuration used by the CLI.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional


CONTEXT_FIELDS = ("collection", "asset_key", "attempt", "status")

_CONFIGURED = False


class StructuredFormatter(logging.Formatter):
    """
    Formatter that outputs JSON-structured log lines.

    Each log line includes:
    - Standard log fields (timestamp, level, message, logger)
    - Sync context fields if present (collection, asset_key, attempt, status)
    - Exception text when exc_info is attached
    """

    def __init__(self, include_timestamp: bool = True):
        super().__init__()
        self.include_timestamp = include_timestamp

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_entry = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_timestamp:
            log_entry["timestamp"] = datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat()

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(verbose: bool = False, json_format: bool = False) -> None:
    """
    Configure the root logger once.

    Level precedence:
      - ALBUMSYNC_LOG_LEVEL environment variable
      - DEBUG when verbose, else INFO
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    level_name = os.environ.get("ALBUMSYNC_LOG_LEVEL")
    level: Optional[int] = None
    if level_name:
        level = logging.getLevelName(level_name.upper())
        if not isinstance(level, int):
            level = None
    if level is None:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    if json_format:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    _CONFIGURED = True
