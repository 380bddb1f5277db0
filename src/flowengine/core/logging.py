"""Logging for flowengine runs.

Every record carries the id of the workflow run that emitted it, so batch jobs
and handoff splits running in other processes can be correlated with the run
that queued them (the id is recorded in ``registry.json``). Messages follow a
``"[component] text"`` convention; the JSON formatter lifts the component out
into its own field.
"""

from __future__ import annotations

import json
import logging
import re
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

PACKAGE_LOGGER = "flowengine"
LOG_FILE = "flowengine.log"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_RUN_ID: ContextVar[str] = ContextVar("flowengine_run_id", default="")
_COMPONENT = re.compile(r"^\[(?P<component>[\w-]+)\]\s*")


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with ``extra_context`` merged in at top level."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
            "run_id": _RUN_ID.get(),
        }
        match = _COMPONENT.match(message)
        if match:
            payload["component"] = match.group("component")
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        payload.update(getattr(record, "extra_context", None) or {})
        return json.dumps(payload, default=str)


def get_run_id() -> str:
    """Id of the current workflow run; one is minted on first use."""
    run_id = _RUN_ID.get()
    if not run_id:
        run_id = uuid.uuid4().hex
        _RUN_ID.set(run_id)
    return run_id


def set_run_id(run_id: str) -> None:
    _RUN_ID.set(run_id)


def _handlers(log_dir: Optional[Path]) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_dir:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / LOG_FILE))
    return handlers


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    json_logs: bool = False,
) -> None:
    """Route records to stdout and, with ``log_dir``, to ``<log_dir>/flowengine.log``.

    Replaces any handlers already on the root logger, so calling it again for
    a new workflow run does not duplicate output.
    """
    handlers = _handlers(log_dir)
    formatter = JsonFormatter() if json_logs else logging.Formatter(TEXT_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level.upper(), handlers=handlers, force=True)
    logging.getLogger(PACKAGE_LOGGER).setLevel(level.upper())


def silence_logging() -> None:
    """Keep only warnings and errors from flowengine (``settings.log: false``)."""
    logging.getLogger(PACKAGE_LOGGER).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


__all__ = [
    "JsonFormatter",
    "LOG_FILE",
    "PACKAGE_LOGGER",
    "configure_logging",
    "get_logger",
    "get_run_id",
    "set_run_id",
    "silence_logging",
]
