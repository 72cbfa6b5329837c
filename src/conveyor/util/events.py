from __future__ import annotations

"""Event logging.

CONTRACT
- Inputs: Arbitrary kwargs
- Outputs:
  - Appends JSON line to configured log path
- Invariants:
  - Adds `ts_ms` timestamp and `run_id` automatically
  - String values pass through the run's Redactor before they are written
- Failure:
  - Raises OSError if log path is not writable
"""

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .redaction import Redactor


@dataclass
class EventLog:
    path: Path
    run_id: str | None = None
    redactor: Redactor = field(default_factory=Redactor)

    def emit(self, **event: Any) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        event.setdefault("ts_ms", int(time.time() * 1000))
        if self.run_id and "run_id" not in event:
            event["run_id"] = self.run_id
        clean = {k: self.redactor.redact(v) if isinstance(v, str) else v for k, v in event.items()}
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(clean, ensure_ascii=False) + "\n")
