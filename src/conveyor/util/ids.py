from __future__ import annotations

"""Run id generation and validation.

CONTRACT
- new_run_id() returns a time-sortable id, optionally prefixed with a
  sanitized pipeline name
- validate_run_id() returns the id or raises ValueError
- Run ids match `[A-Za-z0-9][A-Za-z0-9_.-]{0,63}` so they are safe as a
  single path component
"""

import datetime
import random
import re
import string

from .paths import safe_filename

_RUN_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")


def new_run_id(prefix: str | None = None) -> str:
    # [<prefix>-]YYYYMMDD_HHMMSS_<rand4>
    ts = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%d_%H%M%S")
    suffix = "".join(random.choice(string.ascii_lowercase + string.digits) for _ in range(4))
    rid = f"{ts}_{suffix}"
    if prefix:
        rid = f"{safe_filename(prefix, default='run')[:40]}-{rid}"
    return rid


def validate_run_id(run_id: str) -> str:
    if not _RUN_ID_RE.fullmatch(run_id):
        raise ValueError(
            "Invalid run id. Use 1-64 chars: letters/digits, plus '._-'. Must start with a letter "
            "or digit."
        )
    return run_id
