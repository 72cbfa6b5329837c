from __future__ import annotations

"""Logging setup.

CONTRACT
- configure_logging() replaces loguru's default sink with a single sink
  (stderr unless given) and returns its handler id
- Level: DEBUG when verbose, else $CONVEYOR_LOG_LEVEL, else INFO
- Every message passes through the active Redactor; use_redactor() swaps
  it in for the duration of a run (secrets are only known once loaded)
"""

import os
import sys
from contextlib import contextmanager
from typing import Iterator

from loguru import logger

from .redaction import Redactor

LOG_LEVEL_ENV = "CONVEYOR_LOG_LEVEL"
_FORMAT = "<green>{time:HH:mm:ss}</green> <level>{level: <8}</level> {message}"

_active: list[Redactor] = [Redactor()]


def _redact(record) -> bool:
    record["message"] = _active[-1].redact(record["message"])
    return True


def configure_logging(verbose: bool = False, sink=None) -> int:
    level = "DEBUG" if verbose else os.environ.get(LOG_LEVEL_ENV, "INFO").upper()
    logger.remove()
    return logger.add(
        sink if sink is not None else sys.stderr,
        level=level,
        format=_FORMAT,
        filter=_redact,
        colorize=None if sink is None else False,
    )


@contextmanager
def use_redactor(redactor: Redactor) -> Iterator[Redactor]:
    _active.append(redactor)
    try:
        yield redactor
    finally:
        _active.pop()
