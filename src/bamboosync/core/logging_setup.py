"""
Logging sinks for a `bsync` run.

Every record reaching the ``bsync`` logger goes to stderr and to a daily
rotated ``<base_dir>/app.log``. Records of one command also land in
``<base_dir>/<UTC date>/<action>_<run_id>.log``. Bearer tokens, API keys and
passwords are redacted before any sink formats them.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

CONTEXT_FIELDS = ("run_id", "action", "target")

LOG_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "run=%(run_id)s action=%(action)s target=%(target)s | %(message)s"
)

_REDACTED = r"\1***REDACTED***"
_SECRET_PATTERNS = (
    re.compile(r"(Authorization:\s*Bearer\s+)([A-Za-z0-9._-]+)", re.IGNORECASE),
    re.compile(r"(Bearer\s+)([A-Za-z0-9._-]{8,})", re.IGNORECASE),
    re.compile(r"(api[_-]?key\s*[=:]\s*)([A-Za-z0-9._-]+)", re.IGNORECASE),
    re.compile(r"(password\s*[=:]\s*)([^,\s]+)", re.IGNORECASE),
    re.compile(r"(\btoken\s*[=:]\s*)([A-Za-z0-9._-]+)", re.IGNORECASE),
)


def redact(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(_REDACTED, text)
    return text


class MaskSecretsFilter(logging.Filter):
    """Redact secrets in the message template and in string arguments."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        if isinstance(record.args, dict):
            record.args = {k: redact(str(v)) for k, v in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(redact(a) if isinstance(a, str) else a for a in record.args)
        return True


class ContextDefaultsFilter(logging.Filter):
    """Give records from plain module loggers a "-" for each context field."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, "-")
        return True


def _formatter() -> logging.Formatter:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%SZ")
    formatter.converter = time.gmtime  # type: ignore[attr-defined]
    return formatter


def _attach(logger: logging.Logger, handler: logging.Handler, level: str, default: int) -> None:
    handler.setLevel(getattr(logging, level.upper(), default))
    handler.setFormatter(_formatter())
    handler.addFilter(ContextDefaultsFilter())
    handler.addFilter(MaskSecretsFilter())
    logger.addHandler(handler)


def _drop(logger: logging.Logger, match: Callable[[logging.Handler], bool]) -> None:
    for handler in [h for h in logger.handlers if match(h)]:
        logger.removeHandler(handler)
        handler.close()


def _is_console(handler: logging.Handler) -> bool:
    return isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler)


def _configure_base(base: logging.Logger, base_dir: str, console_level: str, file_level: str) -> None:
    # stderr may be swapped between calls (pytest capture), so the console
    # handler is always rebuilt
    _drop(base, _is_console)
    _attach(base, logging.StreamHandler(stream=sys.stderr), console_level, logging.INFO)

    os.makedirs(base_dir, exist_ok=True)
    app_log = os.path.abspath(os.path.join(base_dir, "app.log"))
    rotating = logging.handlers.TimedRotatingFileHandler
    _drop(base, lambda h: isinstance(h, rotating) and h.baseFilename != app_log)
    if not any(isinstance(h, rotating) for h in base.handlers):
        handler = rotating(app_log, when="midnight", backupCount=14, encoding="utf-8", utc=True)
        _attach(base, handler, file_level, logging.DEBUG)


def build_logger(
    *,
    name: str = "bsync",
    run_id: str,
    action: str,
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    extra: Optional[Dict[str, Any]] = None,
) -> logging.LoggerAdapter:
    """
    Return an adapter stamping ``run_id``, ``action`` and ``target`` on records.

    Console and ``app.log`` handlers sit on ``name`` so module loggers such as
    ``bsync.reconciler`` reach them too. The per-run file handler sits on the
    child ``<name>.<action>.<run_id>`` and is added once per child.
    """
    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)
    _configure_base(base, base_dir, console_level, file_level)

    child = logging.getLogger(f"{name}.{action}.{run_id}")
    child.setLevel(logging.DEBUG)
    if not child.handlers:
        run_dir = os.path.join(base_dir, datetime.now(timezone.utc).strftime("%Y-%m-%d"))
        os.makedirs(run_dir, exist_ok=True)
        handler = logging.FileHandler(os.path.join(run_dir, f"{action}_{run_id}.log"), encoding="utf-8")
        _attach(child, handler, file_level, logging.DEBUG)

    context = {"run_id": run_id, "action": action, "target": (extra or {}).get("target") or "-"}
    adapter = logging.LoggerAdapter(child, context)
    adapter.debug("Logger initialised")
    return adapter
