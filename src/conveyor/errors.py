from __future__ import annotations

"""Error taxonomy.

CONTRACT
- ConfigurationError: malformed/duplicate step definitions, missing secrets.
  Raised before any step runs; the pipeline never starts.
- ExecutionError / StepTimeout / Cancelled: describe why a step failed.
  The runner records them on the StepOutcome instead of raising them past
  the Pipeline.
"""


class ConveyorError(Exception):
    """Base class for all conveyor errors."""


class ConfigurationError(ConveyorError, ValueError):
    pass


class ExecutionError(ConveyorError):
    """A step's command failed to launch or exited non-zero."""

    def __init__(self, step: str, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.step = step
        self.message = message
        self.exit_code = exit_code

    def __str__(self) -> str:
        if self.exit_code is None:
            return f"[{self.step}] {self.message}"
        return f"[{self.step}] {self.message} (exit={self.exit_code})"


class StepTimeout(ExecutionError):
    pass


class Cancelled(ConveyorError):
    pass
