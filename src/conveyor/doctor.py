from __future__ import annotations

"""Pipeline preflight checks.

CONTRACT
- Inputs: pipeline file, workspace, optional secret store
- Outputs (required):
  - DoctorReport (ok=bool, items=[(name, status, details)])
- Invariants:
  - Checks: definition parses, workspace exists, step executables are on
    PATH, working directories exist, declared secrets resolve
  - Read-only; runs no step commands and never prints secret values
- Failure:
  - Returns DoctorReport with ok=False if a FAIL check is present
"""

import re
import shlex
from dataclasses import dataclass
from pathlib import Path

from .config import load_pipeline_file
from .errors import ConfigurationError
from .secrets import EnvSecretStore, SecretStore
from .util.shell import which

_ASSIGN_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")

# Shell keywords/builtins that never resolve on PATH.
_SHELL_BUILTINS = {
    "cd", "echo", "export", "test", "[", "true", "false", "exit", "set", "if",
    "for", "while", "source", ".", "printf", "read", "eval", "exec", "unset",
}


@dataclass(frozen=True)
class DoctorItem:
    name: str
    status: str
    details: str


@dataclass(frozen=True)
class DoctorReport:
    ok: bool
    items: list[DoctorItem]


def _first_program(run: str | tuple[str, ...]) -> str | None:
    if isinstance(run, tuple):
        return run[0]
    first_line = next((ln for ln in run.splitlines() if ln.strip()), "")
    try:
        tokens = shlex.split(first_line, comments=True)
    except ValueError:
        return None
    for tok in tokens:
        # Skip leading VAR=value assignments.
        if _ASSIGN_RE.match(tok):
            continue
        return tok
    return None


def doctor_report(
    pipeline_file: Path,
    workspace: Path,
    secret_store: SecretStore | None = None,
) -> DoctorReport:
    items: list[DoctorItem] = []
    ok = True

    try:
        pcfg = load_pipeline_file(pipeline_file)
    except ConfigurationError as e:
        return DoctorReport(ok=False, items=[DoctorItem("pipeline file", "FAIL", str(e))])
    items.append(DoctorItem("pipeline file", "OK", f"{pcfg.name}: {len(pcfg.steps)} steps"))

    if workspace.is_dir():
        items.append(DoctorItem("workspace", "OK", str(workspace)))
    else:
        ok = False
        items.append(DoctorItem("workspace", "FAIL", f"Not a directory: {workspace}"))

    if any(s.uses_shell for s in pcfg.steps) and not which("sh"):
        ok = False
        items.append(DoctorItem("shell", "FAIL", "sh not found in PATH (needed by string steps)"))

    for step in pcfg.steps:
        label = f"step: {step.name}"
        program = _first_program(step.run)
        found = which(program) if program else None
        if program is None:
            items.append(DoctorItem(label, "WARN", "Could not determine the program to run"))
        elif "/" in program:
            candidate = (workspace / (step.working_directory or ".") / program)
            status = "OK" if candidate.exists() or Path(program).exists() else "WARN"
            items.append(DoctorItem(label, status, program))
        elif program in _SHELL_BUILTINS and step.uses_shell:
            items.append(DoctorItem(label, "OK", f"shell builtin {program!r}"))
        elif found:
            items.append(DoctorItem(label, "OK", found))
        elif step.uses_shell:
            # May be installed by an earlier step.
            items.append(DoctorItem(label, "WARN", f"{program!r} not found in PATH"))
        else:
            ok = False
            items.append(DoctorItem(label, "FAIL", f"{program!r} not found in PATH"))

        if step.working_directory and not (workspace / step.working_directory).is_dir():
            items.append(
                DoctorItem(label, "WARN", f"working directory {step.working_directory!r} does not exist yet")
            )

    store = secret_store or EnvSecretStore()
    for name in pcfg.secrets:
        if store.get(name) is None:
            ok = False
            items.append(DoctorItem(f"secret: {name}", "FAIL", "not set"))
        else:
            items.append(DoctorItem(f"secret: {name}", "OK", "set"))

    return DoctorReport(ok=ok, items=items)
