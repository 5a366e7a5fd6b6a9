"""Centralized logging configuration for the ``roundup_invest`` package.

This module provides two public helpers:

- ``configure_logging(...)``: attach a single ``StreamHandler`` to the package
  root logger (``"roundup_invest"``). Intended to be called once by
  entrypoints (the CLI) at process startup.
- ``get_logger(name)``: acquire a logger by name, ensuring that the package
  root logger has at least a ``NullHandler`` attached when not configured.

Library modules never attach their own handlers. They call
``get_logger("roundup_invest.<module>")`` and rely on the configuration done
by the CLI or host application.

Messages follow one shape, ``"<area>:<phase> key=value ..."`` (for example
``bulk_import:summary owner_id=3 total=10``). :class:`EventFormatter` splits
that shape into an event name and fields so the handler can emit either the
plain line or one JSON object per record (``ROUNDUP_LOG_FORMAT=json``).
"""

from __future__ import annotations

import json
import logging
import os
import re
import shlex
import sys
from typing import IO, Any

_PKG_LOGGER_NAME = "roundup_invest"
_LEVEL_ENV = "ROUNDUP_LOG_LEVEL"
_FORMAT_ENV = "ROUNDUP_LOG_FORMAT"
_DEFAULT_FMT = "%(asctime)s %(name)s %(levelname)s %(message)s"
_EVENT_RE = re.compile(r"^(?P<event>[a-z_]+:[a-z_]+)(?:\s+(?P<rest>.*))?$", re.DOTALL)
_CONFIGURED = False


def parse_event(message: str) -> tuple[str | None, dict[str, str]]:
    """Split ``"area:phase k=v ..."`` into the event name and its fields.

    Quoted values (``merchant='Blue Bottle'``) keep their spaces. A message
    that does not have the event shape returns ``(None, {})``.
    """

    m = _EVENT_RE.match(message)
    if m is None:
        return None, {}
    fields: dict[str, str] = {}
    rest = m.group("rest") or ""
    try:
        tokens = shlex.split(rest)
    except ValueError:
        tokens = rest.split()
    for token in tokens:
        key, sep, value = token.partition("=")
        if sep and key:
            fields[key] = value
    return m.group("event"), fields


class EventFormatter(logging.Formatter):
    """Formatter for the package's ``area:phase key=value`` messages.

    With ``json_lines=False`` it behaves like ``logging.Formatter``. With
    ``json_lines=True`` each record becomes one JSON object carrying
    ``ts``, ``level``, ``logger``, ``event`` and ``fields``; messages without
    the event shape are emitted under ``message`` instead.
    """

    def __init__(self, fmt: str | None = None, *, json_lines: bool = False) -> None:
        super().__init__(fmt or _DEFAULT_FMT)
        self.json_lines = json_lines

    def format(self, record: logging.LogRecord) -> str:
        if not self.json_lines:
            return super().format(record)
        message = record.getMessage()
        event, fields = parse_event(message)
        payload: dict[str, Any] = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
        }
        if event is None:
            payload["message"] = message
        else:
            payload["event"] = event
            payload["fields"] = fields
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, sort_keys=True)


def _parse_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        level = level.strip().upper()
        if level.isdigit():
            return int(level)
        numeric = getattr(logging, level, None)
        if isinstance(numeric, int):
            return numeric
        return logging.INFO
    env_val = os.getenv(_LEVEL_ENV)
    if env_val:
        return _parse_level(env_val)
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    json_lines: bool | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Configure the package root logger exactly once.

    Parameters
    ----------
    level:
        Logging level as ``int`` or level-name string (e.g., ``"INFO"``). If
        ``None``, defaults to the ``ROUNDUP_LOG_LEVEL`` environment variable
        when set, otherwise ``logging.INFO``.
    fmt:
        Optional logging format string. Defaults to
        ``"%(asctime)s %(name)s %(levelname)s %(message)s"``.
    json_lines:
        Emit one JSON object per record (see :class:`EventFormatter`). If
        ``None``, enabled when ``ROUNDUP_LOG_FORMAT`` is ``json``.
    stream:
        The output stream for the single ``StreamHandler``.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    logger = logging.getLogger(_PKG_LOGGER_NAME)
    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    resolved = _parse_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    if json_lines is None:
        json_lines = os.getenv(_FORMAT_ENV, "").strip().lower() == "json"
    handler.setFormatter(EventFormatter(fmt, json_lines=json_lines))

    logger.setLevel(resolved)
    logger.addHandler(handler)
    # Avoid double emission via the root logger.
    logger.propagate = False

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger by name, attaching a ``NullHandler`` to the package root
    until :func:`configure_logging` has run."""

    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)
