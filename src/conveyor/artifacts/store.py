from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..util.paths import safe_filename
from .schemas import RunMeta, RunReport, RunStatus, validate_run_status


@dataclass(frozen=True)
class ArtifactStore:
    """Files of one pipeline run.

    CONTRACT
    - Inputs: the run directory (.conveyor/runs/<run_id>)
    - Outputs:
      - RUN.json, RUN_STATUS.json, REPORT.json, logs/ and free-form text files
    - Invariants:
      - Every path stays inside run_dir
      - Parent directories are created on write
      - Step logs are named `<NN>.<step>.stdout.log` in definition order
    - Failure:
      - Raises ValueError for a path that escapes run_dir
      - read_status() raises ValueError for unparsable or invalid RUN_STATUS.json
    """
    run_dir: Path

    def ensure(self) -> None:
        self.run_dir.mkdir(parents=True, exist_ok=True)
        (self.run_dir / "logs").mkdir(exist_ok=True)

    def path(self, *parts: str) -> Path:
        p = self.run_dir.joinpath(*parts)
        base = self.run_dir.resolve(strict=False)
        try:
            p.resolve(strict=False).relative_to(base)
        except ValueError as exc:
            raise ValueError(f"Refusing to access path outside run_dir: {p}") from exc
        return p

    def write_json(self, rel: str, data: Any) -> Path:
        p = self.path(rel)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        return p

    def read_json(self, rel: str) -> Any:
        p = self.path(rel)
        return json.loads(p.read_text(encoding="utf-8"))

    def write_text(self, rel: str, text: str) -> Path:
        p = self.path(rel)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(text, encoding="utf-8")
        return p

    def write_run_meta(self, meta: RunMeta) -> Path:
        return self.write_json("RUN.json", meta.model_dump(mode="json"))

    def write_status(self, status: RunStatus) -> Path:
        return self.write_json("RUN_STATUS.json", status.model_dump(mode="json"))

    def read_status(self) -> RunStatus:
        ok, status, err = validate_run_status(self.read_json("RUN_STATUS.json"))
        if not ok:
            raise ValueError(f"Invalid RUN_STATUS.json: {err}")
        return status

    def write_report(self, report: RunReport) -> Path:
        return self.write_json("REPORT.json", report.model_dump(mode="json"))

    def step_log_names(self, index: int, step: str) -> tuple[str, str]:
        stem = f"{index + 1:02d}.{safe_filename(step, default='step')}"
        return f"logs/{stem}.stdout.log", f"logs/{stem}.stderr.log"

    def write_step_logs(self, index: int, step: str, stdout: str, stderr: str) -> tuple[str, str]:
        out_rel, err_rel = self.step_log_names(index, step)
        self.write_text(out_rel, stdout)
        self.write_text(err_rel, stderr)
        return out_rel, err_rel
