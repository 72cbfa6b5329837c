# model.py
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Sequence

from .errors import Cancelled, ConfigurationError, ExecutionError, StepTimeout

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class Condition(str, Enum):
    """When a step runs, judged against the pipeline state so far."""

    SUCCESS = "success"  # no prior required step has failed
    ALWAYS = "always"
    FAILURE = "failure"  # a prior required step has failed

    def is_met(self, state: PipelineState) -> bool:
        if self is Condition.ALWAYS:
            return True
        if self is Condition.FAILURE:
            return state.failed
        return not state.failed


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class FailureKind(str, Enum):
    EXIT_CODE = "exit_code"
    LAUNCH = "launch"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


def validate_env_name(name: str) -> str:
    if not _ENV_NAME_RE.fullmatch(name):
        raise ConfigurationError(f"Invalid environment variable name: {name!r}")
    return name


@dataclass(frozen=True)
class Step:
    """A single command inside a pipeline.

    `run` is either a shell string (run through the shell) or an argv list
    (run directly). `secrets` names values injected from the run's secret
    context; their values are masked in captured output.
    """

    name: str
    run: str | tuple[str, ...]
    env: Mapping[str, str] = field(default_factory=dict)
    secrets: tuple[str, ...] = ()
    condition: Condition = Condition.SUCCESS
    required: bool = True
    timeout_s: float | None = None
    working_directory: str | None = None
    outputs: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ConfigurationError("Step name must be a non-empty string")

        run = self.run
        if isinstance(run, (list, tuple)):
            run = tuple(str(part) for part in run)
            if not run or not run[0]:
                raise ConfigurationError(f"Step {self.name!r} has an empty command")
        elif not isinstance(run, str) or not run.strip():
            raise ConfigurationError(f"Step {self.name!r} has an empty command")

        if self.timeout_s is not None and self.timeout_s <= 0:
            raise ConfigurationError(f"Step {self.name!r} timeout must be positive")

        # frozen: normalise containers through object.__setattr__
        object.__setattr__(self, "run", run)
        object.__setattr__(self, "condition", Condition(self.condition))
        object.__setattr__(self, "env", {str(k): str(v) for k, v in dict(self.env).items()})
        object.__setattr__(self, "secrets", tuple(validate_env_name(s) for s in self.secrets))
        object.__setattr__(self, "outputs", tuple(validate_env_name(o) for o in self.outputs))
        for key in self.env:
            validate_env_name(key)

    @property
    def uses_shell(self) -> bool:
        return isinstance(self.run, str)

    @property
    def command_text(self) -> str:
        if isinstance(self.run, str):
            return self.run
        return " ".join(self.run)


@dataclass(frozen=True)
class StepOutcome:
    """Recorded result of attempting one step. Never mutated after creation."""

    name: str
    status: StepStatus
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    duration_s: float = 0.0
    required: bool = True
    failure: FailureKind | None = None
    reason: str | None = None
    skip_reason: str | None = None
    exports: Mapping[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status in (StepStatus.SUCCEEDED, StepStatus.SKIPPED)

    @property
    def executed(self) -> bool:
        return self.status is not StepStatus.SKIPPED

    @property
    def counts_as_failure(self) -> bool:
        if self.status is StepStatus.CANCELLED:
            return True
        return self.status is StepStatus.FAILED and self.required

    def error(self) -> ExecutionError | Cancelled | None:
        """Rebuild the exception describing this outcome's failure, if any."""
        if self.failure is None:
            return None
        message = self.reason or self.failure.value
        if self.failure is FailureKind.CANCELLED:
            return Cancelled(message)
        if self.failure is FailureKind.TIMEOUT:
            return StepTimeout(self.name, message, self.exit_code)
        return ExecutionError(self.name, message, self.exit_code)


@dataclass
class PipelineState:
    """Accumulator owned by the Pipeline while it runs."""

    env: dict[str, str] = field(default_factory=dict)
    outcomes: list[StepOutcome] = field(default_factory=list)
    failed: bool = False
    first_failure: str | None = None

    def record(self, outcome: StepOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.counts_as_failure and not self.failed:
            self.failed = True
            self.first_failure = outcome.name
        if outcome.exports:
            self.env.update(outcome.exports)


@dataclass(frozen=True)
class PipelineResult:
    success: bool
    outcomes: tuple[StepOutcome, ...] = ()
    first_failure: str | None = None
    not_run: tuple[str, ...] = ()
    cancelled: bool = False

    def outcome(self, name: str) -> StepOutcome | None:
        for o in self.outcomes:
            if o.name == name:
                return o
        return None


def check_unique_names(steps: Sequence[Step]) -> None:
    names = [s.name for s in steps]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ConfigurationError(f"Duplicate step names found: {dupes}")
