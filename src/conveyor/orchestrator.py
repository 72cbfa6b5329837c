from __future__ import annotations

"""Orchestrator for pipeline runs.

CONTRACT
- Inputs: RunConfig (pipeline file, workspace, artifacts root, run id)
- Outputs (required):
  - RunResult (status, exit_code, run_dir, report)
  - Artifacts in .conveyor/runs/<run_id>/
    - RUN.json, RUN_STATUS.json, REPORT.json, SUMMARY.md, events.jsonl
    - logs/<NN>.<step>.stdout.log / .stderr.log for executed steps
- Invariants:
  - Always writes RUN_STATUS.json
  - Secrets are loaded once before the first step and cleared afterwards
  - SIGINT/SIGTERM cancel the run instead of killing the orchestrator
  - The only layer that turns a PipelineResult into a process exit code
- Failure:
  - ConfigurationError -> CONFIG_ERROR, exit code 2, nothing executed
  - Unexpected exceptions -> CRASH.txt, FAIL, exit code 3
"""

import traceback
from contextlib import nullcontext
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path

from loguru import logger

from .artifacts.schemas import RunMeta, RunReport, RunStatus, StepRecord
from .artifacts.store import ArtifactStore
from .cancel import CancelToken, handle_signals
from .config import PipelineConfig, RunConfig, load_pipeline_file
from .errors import ConfigurationError
from .model import PipelineResult, Step, StepOutcome
from .pipeline import Pipeline
from .runner import StepRunner
from .secrets import ChainSecretStore, EnvSecretStore, SecretContext, SecretStore, load_secrets_file
from .summary import summary_markdown
from .util.events import EventLog
from .util.logs import use_redactor


class ExitCode(IntEnum):
    OK = 0
    STEP_FAILURE = 1
    CONFIGURATION_ERROR = 2
    INTERNAL_ERROR = 3
    CANCELLED = 130


@dataclass(frozen=True)
class RunResult:
    status: str
    exit_code: int
    run_dir: Path
    report: RunReport | None = None
    message: str = ""


def exit_code_for(result: PipelineResult) -> ExitCode:
    if result.cancelled:
        return ExitCode.CANCELLED
    if result.success:
        return ExitCode.OK
    return ExitCode.STEP_FAILURE


def _status_for(code: ExitCode) -> str:
    return {
        ExitCode.OK: "OK",
        ExitCode.STEP_FAILURE: "FAIL",
        ExitCode.CANCELLED: "CANCELLED",
        ExitCode.CONFIGURATION_ERROR: "CONFIG_ERROR",
    }.get(code, "FAIL")


def _default_secret_store(cfg: RunConfig) -> SecretStore:
    if cfg.secrets_file is not None:
        # The file wins over the environment.
        return ChainSecretStore([load_secrets_file(cfg.secrets_file), EnvSecretStore()])
    return EnvSecretStore()


def _run_meta(cfg: RunConfig, pcfg: PipelineConfig) -> RunMeta:
    return RunMeta(
        run_id=cfg.run_id,
        pipeline=pcfg.name,
        pipeline_file=str(cfg.pipeline_file),
        workspace=str(cfg.workspace),
        steps=[
            {
                "name": s.name,
                "run": s.command_text,
                "if": s.condition.value,
                "required": s.required,
                "timeout_s": s.timeout_s,
            }
            for s in pcfg.steps
        ],
        secrets=list(pcfg.secrets),
    )


def run_pipeline_session(
    cfg: RunConfig,
    *,
    cancel: CancelToken | None = None,
    secret_store: SecretStore | None = None,
    install_signal_handlers: bool = True,
) -> RunResult:
    store = ArtifactStore(cfg.run_dir())
    store.ensure()
    ev = EventLog(store.path("events.jsonl"), run_id=cfg.run_id)
    cancel = cancel or CancelToken()
    pipeline_name = cfg.pipeline_file.stem

    try:
        pcfg = load_pipeline_file(cfg.pipeline_file)
        pipeline_name = pcfg.name
        store.write_run_meta(_run_meta(cfg, pcfg))
        store.write_status(
            RunStatus(run_id=cfg.run_id, pipeline=pipeline_name, status="RUNNING", message="starting")
        )

        secrets_source = secret_store or _default_secret_store(cfg)
        with SecretContext(secrets_source, pcfg.secrets) as secrets:
            redactor = secrets.redactor()
            ev.redactor = redactor
            runner = StepRunner(
                workspace=cfg.workspace,
                secrets=secrets,
                redactor=redactor,
                max_output_bytes=cfg.max_output_bytes,
                kill_grace_s=cfg.kill_grace_s,
            )
            pipeline = Pipeline(pcfg.steps, env=pcfg.env, runner=runner, name=pcfg.name)
            records: list[StepRecord] = []

            def _on_outcome(index: int, step: Step, outcome: StepOutcome) -> None:
                logs: dict[str, str] = {}
                if outcome.executed:
                    out_rel, err_rel = store.write_step_logs(index, step.name, outcome.stdout, outcome.stderr)
                    logs = {"stdout_log": out_rel, "stderr_log": err_rel}
                records.append(StepRecord.from_outcome(index, outcome, redactor, **logs))
                ev.emit(
                    stage="step",
                    action=outcome.status.value,
                    step=step.name,
                    index=index,
                    exit_code=outcome.exit_code,
                    duration_s=round(outcome.duration_s, 3),
                    reason=outcome.reason or outcome.skip_reason,
                )

            ev.emit(stage="pipeline", action="start", pipeline=pipeline_name, steps=len(pcfg.steps))
            signals = handle_signals(cancel) if install_signal_handlers else nullcontext(cancel)
            with use_redactor(redactor), signals:
                result = pipeline.execute(cancel=cancel, on_outcome=_on_outcome)

            code = exit_code_for(result)
            report = RunReport.from_result(
                run_id=cfg.run_id,
                pipeline=pipeline_name,
                result=result,
                exit_code=int(code),
                records=records,
            )
            store.write_report(report)
            store.write_text("SUMMARY.md", summary_markdown(report))
            status = _status_for(code)
            message = "completed"
            if result.cancelled:
                message = f"cancelled: {cancel.reason or 'cancelled'}"
            elif not result.success:
                failed = result.outcome(result.first_failure) if result.first_failure else None
                err = failed.error() if failed is not None else None
                message = str(err) if err is not None else f"step {result.first_failure!r} failed"
            store.write_status(
                RunStatus(
                    run_id=cfg.run_id,
                    pipeline=pipeline_name,
                    status=status,
                    message=message,
                    exit_code=int(code),
                )
            )
            ev.emit(stage="pipeline", action="done", status=status, exit_code=int(code))
            return RunResult(
                status=status,
                exit_code=int(code),
                run_dir=store.run_dir,
                report=report,
                message=message,
            )
    except ConfigurationError as exc:
        logger.error(f"Configuration error: {exc}")
        ev.emit(stage="config", action="error", error=str(exc))
        store.write_status(
            RunStatus(
                run_id=cfg.run_id,
                pipeline=pipeline_name,
                status="CONFIG_ERROR",
                message=str(exc),
                exit_code=int(ExitCode.CONFIGURATION_ERROR),
            )
        )
        return RunResult(
            status="CONFIG_ERROR",
            exit_code=int(ExitCode.CONFIGURATION_ERROR),
            run_dir=store.run_dir,
            message=str(exc),
        )
    except Exception as exc:
        logger.exception("Pipeline run crashed")
        ev.emit(stage="crash", action="exception", error=str(exc))
        store.write_text("CRASH.txt", traceback.format_exc())
        store.write_status(
            RunStatus(
                run_id=cfg.run_id,
                pipeline=pipeline_name,
                status="FAIL",
                message=f"crash: {exc}",
                exit_code=int(ExitCode.INTERNAL_ERROR),
            )
        )
        return RunResult(
            status="FAIL",
            exit_code=int(ExitCode.INTERNAL_ERROR),
            run_dir=store.run_dir,
            message=f"crash: {exc}",
        )
