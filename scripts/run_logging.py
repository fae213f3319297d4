"""Logging setup and one-line ``EVENT key=value`` records shared by the CLIs."""

from __future__ import annotations

import json
import logging
import re

from portal_errors import ConfigurationError

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def configure_logging(level: str = "INFO") -> None:
    numeric = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric, int):
        raise ConfigurationError(f"Unknown log level '{level}'.")
    logging.basicConfig(level=numeric, format=LOG_FORMAT)


def _log_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if value is None:
        return "null"
    text = str(value)
    if re.fullmatch(r"[A-Za-z0-9._:/+\-?=&%]+", text):
        return text
    return json.dumps(text, ensure_ascii=True)


def format_event(event: str, **fields: object) -> str:
    parts = [event]
    for key, value in fields.items():
        parts.append(f"{key}={_log_value(value)}")
    return " ".join(parts)


def log_event(event: str, level: int = logging.INFO, **fields: object) -> None:
    logging.log(level, format_event(event, **fields))


def format_exception_message(exc: BaseException) -> str:
    text = str(exc).strip()
    if text:
        return text
    rep = repr(exc).strip()
    if rep and rep != f"{type(exc).__name__}()":
        return rep
    return type(exc).__name__


def report_failure(exc: BaseException) -> None:
    log_event(
        "RUN_FAILED",
        level=logging.ERROR,
        error_type=type(exc).__name__,
        error=format_exception_message(exc),
    )
