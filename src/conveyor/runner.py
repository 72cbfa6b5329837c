from __future__ import annotations

"""Step runner.

CONTRACT
- Inputs: Step, current PipelineState (read-only), optional CancelToken
- Outputs (required):
  - exactly one StepOutcome per call
- Invariants:
  - A false condition yields a `skipped` outcome and launches nothing
  - Environment: os.environ | state.env | step.env | step secrets |
    CONVEYOR_OUTPUT (later keys win)
  - Captured stdout/stderr are bounded and have every known secret masked
  - Exports are taken only from successful runs and only for names the
    step declares in `outputs`
  - Holds no per-run state; one runner can execute any number of steps
- Failure:
  - Never raises for command failures; launch errors, non-zero exits,
    timeouts and cancellation are recorded on the outcome
"""

import tempfile
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from .cancel import CancelToken
from .model import Condition, FailureKind, PipelineState, Step, StepOutcome, StepStatus
from .secrets import SecretContext
from .util.redaction import Redactor
from .util.shell import DEFAULT_MAX_OUTPUT_BYTES, CmdResult, run_cmd

OUTPUT_ENV_VAR = "CONVEYOR_OUTPUT"


def parse_output_file(text: str) -> dict[str, str]:
    """Parse `NAME=value` lines and `NAME<<DELIM ... DELIM` blocks."""
    out: dict[str, str] = {}
    lines = text.splitlines()
    i = 0
    while i < len(lines):
        line = lines[i]
        i += 1
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        eq = line.find("=")
        heredoc = line.find("<<")
        if heredoc != -1 and (eq == -1 or heredoc < eq):
            name, delim = line[:heredoc].strip(), line[heredoc + 2 :].strip()
            body: list[str] = []
            while i < len(lines) and lines[i] != delim:
                body.append(lines[i])
                i += 1
            if i >= len(lines):
                logger.warning(f"Unterminated output block for {name!r}; ignoring it")
                break
            i += 1  # delimiter
            out[name] = "\n".join(body)
        elif eq > 0:
            out[line[:eq].strip()] = line[eq + 1 :]
        else:
            logger.warning(f"Ignoring malformed output line: {line!r}")
    return out


def _cancel_reason(cancel: CancelToken | None) -> str:
    return (cancel.reason if cancel is not None else None) or "cancelled"


def _skip_reason(step: Step, state: PipelineState) -> str:
    if step.condition is Condition.FAILURE:
        return "no prior required step failed"
    return f"prior step {state.first_failure!r} failed"


@dataclass
class StepRunner:
    """Executes one step at a time against a workspace directory."""

    workspace: Path
    secrets: SecretContext | None = None
    redactor: Redactor | None = None
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    kill_grace_s: float = 5.0

    def _redactor(self) -> Redactor:
        if self.redactor is not None:
            return self.redactor
        if self.secrets is not None:
            return self.secrets.redactor()
        return Redactor()

    def run(
        self,
        step: Step,
        state: PipelineState,
        cancel: CancelToken | None = None,
    ) -> StepOutcome:
        if not step.condition.is_met(state):
            reason = _skip_reason(step, state)
            logger.info(f"Skipping step {step.name!r}: {reason}")
            return StepOutcome(
                name=step.name,
                status=StepStatus.SKIPPED,
                required=step.required,
                skip_reason=reason,
            )

        if cancel is not None and cancel.is_set():
            return StepOutcome(
                name=step.name,
                status=StepStatus.CANCELLED,
                required=step.required,
                failure=FailureKind.CANCELLED,
                reason=_cancel_reason(cancel),
            )

        cwd = (self.workspace / (step.working_directory or ".")).resolve()
        if not cwd.is_dir():
            return self._launch_failure(step, f"working directory not found: {cwd}")

        secret_env: dict[str, str] = {}
        if step.secrets:
            if self.secrets is None:
                return self._launch_failure(step, "step needs secrets but no secret context is loaded")
            secret_env = self.secrets.resolve(step.secrets)

        logger.info(f"Running step {step.name!r}")
        with tempfile.TemporaryDirectory(prefix="conveyor_") as tmp:
            output_file = Path(tmp) / "output.env"
            output_file.touch()
            env = {
                **state.env,
                **step.env,
                **secret_env,
                OUTPUT_ENV_VAR: str(output_file),
            }
            res = run_cmd(
                list(step.run) if isinstance(step.run, tuple) else step.run,
                cwd=cwd,
                env=env,
                timeout_s=step.timeout_s,
                max_output_bytes=self.max_output_bytes,
                cancel=cancel,
                kill_grace_s=self.kill_grace_s,
            )
            exports: dict[str, str] = {}
            if res.ok and step.outputs:
                exports = self._collect_exports(step, output_file)

        outcome = self._to_outcome(step, res, exports, cancel)
        logger.info(
            f"Step {step.name!r} {outcome.status.value} "
            f"(exit={outcome.exit_code}, {outcome.duration_s:.2f}s)"
        )
        return outcome

    def _launch_failure(self, step: Step, reason: str) -> StepOutcome:
        logger.error(f"Step {step.name!r} could not start: {reason}")
        return StepOutcome(
            name=step.name,
            status=StepStatus.FAILED,
            required=step.required,
            failure=FailureKind.LAUNCH,
            reason=reason,
        )

    def _collect_exports(self, step: Step, output_file: Path) -> dict[str, str]:
        written = parse_output_file(output_file.read_text(encoding="utf-8", errors="replace"))
        exports = {k: v for k, v in written.items() if k in step.outputs}
        ignored = sorted(set(written) - set(exports))
        if ignored:
            logger.warning(f"Step {step.name!r} wrote undeclared outputs, ignored: {ignored}")
        return exports

    def _redact_output(self, redactor: Redactor, text: str, total_bytes: int) -> str:
        if total_bytes <= self.max_output_bytes:
            return redactor.redact(text)
        # Tail was kept: "<truncation marker>\n<kept text>"
        marker, sep, kept = text.partition("\n")
        return marker + sep + redactor.redact_tail(kept)

    def _to_outcome(
        self,
        step: Step,
        res: CmdResult,
        exports: dict[str, str],
        cancel: CancelToken | None,
    ) -> StepOutcome:
        redactor = self._redactor()
        stdout = self._redact_output(redactor, res.stdout, res.stdout_bytes)
        stderr = self._redact_output(redactor, res.stderr, res.stderr_bytes)
        common = dict(
            name=step.name,
            required=step.required,
            duration_s=res.elapsed_s,
            stdout=stdout,
            stderr=stderr,
        )

        if res.launch_error is not None:
            return StepOutcome(
                status=StepStatus.FAILED,
                failure=FailureKind.LAUNCH,
                reason=f"failed to launch: {redactor.redact(res.launch_error)}",
                **common,
            )
        if res.cancelled:
            return StepOutcome(
                status=StepStatus.CANCELLED,
                exit_code=res.returncode,
                failure=FailureKind.CANCELLED,
                reason=_cancel_reason(cancel),
                **common,
            )
        if res.timed_out:
            return StepOutcome(
                status=StepStatus.FAILED,
                exit_code=res.returncode,
                failure=FailureKind.TIMEOUT,
                reason=f"timed out after {step.timeout_s}s",
                **common,
            )
        if res.returncode != 0:
            return StepOutcome(
                status=StepStatus.FAILED,
                exit_code=res.returncode,
                failure=FailureKind.EXIT_CODE,
                reason=f"command exited with code {res.returncode}",
                **common,
            )
        return StepOutcome(
            status=StepStatus.SUCCEEDED,
            exit_code=0,
            exports=exports,
            **common,
        )
