"""conveyor package.

Sequential step pipeline runner: the single-job core of a CI system.

    import conveyor

    # Run a pipeline definition and get a structured result
    result = conveyor.run("conveyor.yaml", workspace=".")

    # Or build steps in code
    from conveyor import Pipeline, Step, StepRunner, Condition
    pipeline = Pipeline(
        [Step("lint", "ruff check ."), Step("report", "echo done", condition=Condition.ALWAYS)],
        runner=StepRunner(workspace=Path(".")),
    )
    outcome = pipeline.execute()
"""

from pathlib import Path
from typing import Optional

__version__ = "0.1.0"

from .cancel import CancelToken
from .config import RunConfig, load_pipeline_file
from .errors import Cancelled, ConfigurationError, ExecutionError, StepTimeout
from .model import Condition, PipelineResult, PipelineState, Step, StepOutcome, StepStatus
from .orchestrator import ExitCode, RunResult, run_pipeline_session
from .pipeline import Pipeline
from .runner import StepRunner
from .util.ids import new_run_id


def run(
    pipeline_file: str | Path,
    *,
    workspace: str | Path = ".",
    run_id: Optional[str] = None,
    artifacts_root: Optional[str | Path] = None,
    secrets_file: Optional[str | Path] = None,
) -> dict:
    """Run a pipeline definition. Returns a structured result.

    Args:
        pipeline_file: Path to a conveyor.yaml definition
        workspace: Directory steps run in
        run_id: Optional custom run ID (auto-generated if not provided)
        artifacts_root: Where run directories go (default: <workspace>/.conveyor/runs)
        secrets_file: Optional YAML file of secrets

    Returns:
        dict with keys: status, exit_code, run_dir, report
    """
    pipeline_path = Path(pipeline_file)
    workspace_path = Path(workspace).resolve()
    cfg = RunConfig(
        pipeline_file=pipeline_path,
        workspace=workspace_path,
        run_id=run_id or new_run_id(pipeline_path.stem),
        artifacts_root=Path(artifacts_root) if artifacts_root else workspace_path / ".conveyor" / "runs",
        secrets_file=Path(secrets_file) if secrets_file else None,
    )
    result = run_pipeline_session(cfg, install_signal_handlers=False)
    return {
        "status": result.status,
        "exit_code": result.exit_code,
        "run_dir": str(result.run_dir),
        "report": result.report.model_dump(mode="json") if result.report else None,
    }


__all__ = [
    "run",
    "__version__",
    "CancelToken",
    "Cancelled",
    "Condition",
    "ConfigurationError",
    "ExecutionError",
    "ExitCode",
    "Pipeline",
    "PipelineResult",
    "PipelineState",
    "RunConfig",
    "RunResult",
    "Step",
    "StepOutcome",
    "StepRunner",
    "StepStatus",
    "StepTimeout",
    "load_pipeline_file",
    "run_pipeline_session",
]
