from __future__ import annotations

"""Pipeline sequencing.

CONTRACT
- Inputs: ordered Steps, initial environment, a StepRunner
- Outputs (required):
  - PipelineResult with outcomes in execution order
- Invariants:
  - Step N's outcome is recorded and its exports merged before step N+1
    is evaluated
  - After a required step fails, later steps whose condition does not hold
    are never started and are listed in `not_run`; `always` (and `failure`)
    steps still run and report their own status
  - Cancellation stops everything, `always` steps included; a
    KeyboardInterrupt between steps is treated as cancellation
- Failure:
  - ConfigurationError (duplicate names, undeclared secrets) is raised
    before the first step runs; step failures never propagate
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Sequence

from loguru import logger

from .cancel import CancelToken
from .errors import ConfigurationError
from .model import (
    PipelineResult,
    PipelineState,
    Step,
    StepOutcome,
    StepStatus,
    check_unique_names,
)
from .runner import StepRunner

OutcomeCallback = Callable[[int, Step, StepOutcome], None]


@dataclass
class Pipeline:
    steps: Sequence[Step]
    env: dict[str, str] = field(default_factory=dict)
    runner: StepRunner | None = None
    name: str = "pipeline"

    def __post_init__(self) -> None:
        self.steps = tuple(self.steps)
        check_unique_names(self.steps)
        self.env = {str(k): str(v) for k, v in self.env.items()}

    def _check_secrets(self, runner: StepRunner) -> None:
        declared = set(runner.secrets.names) if runner.secrets is not None else set()
        for step in self.steps:
            unknown = [s for s in step.secrets if s not in declared]
            if unknown:
                raise ConfigurationError(
                    f"Step {step.name!r} uses undeclared secrets: {', '.join(unknown)}"
                )

    def execute(
        self,
        cancel: CancelToken | None = None,
        on_outcome: OutcomeCallback | None = None,
    ) -> PipelineResult:
        runner = self.runner or StepRunner(workspace=Path.cwd())
        self._check_secrets(runner)

        state = PipelineState(env=dict(self.env))
        not_run: list[str] = []
        cancelled = False

        logger.info(f"Pipeline {self.name!r}: {len(self.steps)} steps")
        try:
            for idx, step in enumerate(self.steps):
                if cancel is not None and cancel.is_set():
                    cancelled = True
                    not_run.extend(s.name for s in self.steps[idx:])
                    break

                if state.failed and not step.condition.is_met(state):
                    logger.info(f"Not running {step.name!r}: pipeline already failed")
                    not_run.append(step.name)
                    continue

                outcome = runner.run(step, state, cancel)
                state.record(outcome)
                if on_outcome is not None:
                    on_outcome(idx, step, outcome)

                if outcome.status is StepStatus.CANCELLED:
                    cancelled = True
                    not_run.extend(s.name for s in self.steps[idx + 1 :])
                    break
                if outcome.status is StepStatus.FAILED and not outcome.required:
                    logger.warning(f"Step {step.name!r} failed but is not required; continuing")
        except KeyboardInterrupt:
            logger.warning(f"Pipeline {self.name!r} interrupted between steps")
            cancelled = True
            if cancel is not None:
                cancel.cancel("keyboard interrupt")
            seen = {o.name for o in state.outcomes} | set(not_run)
            not_run.extend(s.name for s in self.steps if s.name not in seen)

        success = not state.failed and not cancelled
        if cancelled:
            logger.warning(f"Pipeline {self.name!r} cancelled")
        elif success:
            logger.info(f"Pipeline {self.name!r} succeeded")
        else:
            logger.error(f"Pipeline {self.name!r} failed at step {state.first_failure!r}")

        return PipelineResult(
            success=success,
            outcomes=tuple(state.outcomes),
            first_failure=state.first_failure,
            not_run=tuple(not_run),
            cancelled=cancelled,
        )
