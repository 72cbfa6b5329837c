from __future__ import annotations

"""Artifact schemas.

CONTRACT
- Inputs: Pydantic models
- Outputs:
  - Validated JSON-serializable objects
- Invariants:
  - Defines the shape of all run artifacts (RUN.json, RUN_STATUS.json,
    REPORT.json)
  - Every step record carries name, status, duration and exit code
  - All schemas have schema_version int field
- Failure:
  - Raises ValidationError on schema mismatch
"""

from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from ..model import PipelineResult, StepOutcome
from ..util.redaction import Redactor

RunState = Literal["RUNNING", "OK", "FAIL", "CANCELLED", "CONFIG_ERROR"]


class RunStatus(BaseModel):
    schema_version: int = 1
    run_id: str
    pipeline: str
    status: RunState
    message: str = ""
    exit_code: int | None = None


class RunMeta(BaseModel):
    schema_version: int = 1
    run_id: str
    pipeline: str
    pipeline_file: str
    workspace: str
    steps: list[dict[str, Any]] = Field(default_factory=list)
    secrets: list[str] = Field(default_factory=list)


class StepRecord(BaseModel):
    schema_version: int = 1
    index: int
    name: str
    status: Literal["succeeded", "failed", "skipped", "cancelled"]
    exit_code: int | None = None
    duration_s: float = 0.0
    required: bool = True
    failure: str | None = None
    reason: str | None = None
    skip_reason: str | None = None
    exports: dict[str, str] = Field(default_factory=dict)
    stdout_log: str | None = None
    stderr_log: str | None = None

    @classmethod
    def from_outcome(
        cls,
        index: int,
        outcome: StepOutcome,
        redactor: Redactor | None = None,
        **extra: Any,
    ) -> StepRecord:
        redactor = redactor or Redactor()
        return cls(
            index=index,
            name=outcome.name,
            status=outcome.status.value,
            exit_code=outcome.exit_code,
            duration_s=round(outcome.duration_s, 3),
            required=outcome.required,
            failure=outcome.failure.value if outcome.failure else None,
            reason=outcome.reason,
            skip_reason=outcome.skip_reason,
            exports=redactor.redact_mapping(dict(outcome.exports)),
            **extra,
        )


class RunReport(BaseModel):
    schema_version: int = 1
    run_id: str
    pipeline: str
    success: bool
    cancelled: bool = False
    exit_code: int
    first_failure: str | None = None
    duration_s: float = 0.0
    steps: list[StepRecord] = Field(default_factory=list)
    not_run: list[str] = Field(default_factory=list)

    @classmethod
    def from_result(
        cls,
        *,
        run_id: str,
        pipeline: str,
        result: PipelineResult,
        exit_code: int,
        records: list[StepRecord] | None = None,
        redactor: Redactor | None = None,
    ) -> RunReport:
        if records is None:
            records = [StepRecord.from_outcome(i, o, redactor) for i, o in enumerate(result.outcomes)]
        return cls(
            run_id=run_id,
            pipeline=pipeline,
            success=result.success,
            cancelled=result.cancelled,
            exit_code=exit_code,
            first_failure=result.first_failure,
            duration_s=round(sum(o.duration_s for o in result.outcomes), 3),
            steps=records,
            not_run=list(result.not_run),
        )


def validate_run_status(data: Any) -> tuple[bool, RunStatus | None, str]:
    """Validate RUN_STATUS.json against schema."""
    try:
        status = RunStatus.model_validate(data)
        return True, status, ""
    except ValidationError as e:
        return False, None, str(e)
