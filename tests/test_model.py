import pytest

from conveyor.errors import Cancelled, ConfigurationError, ExecutionError, StepTimeout
from conveyor.model import (
    Condition,
    FailureKind,
    PipelineState,
    Step,
    StepOutcome,
    StepStatus,
    check_unique_names,
)


def test_step_defaults():
    step = Step("lint", "ruff check .")
    assert step.condition is Condition.SUCCESS
    assert step.required is True
    assert step.timeout_s is None
    assert step.uses_shell
    assert step.command_text == "ruff check ."


def test_step_argv_normalised_to_tuple():
    step = Step("bench", ["cargo", "codspeed", "build"])
    assert step.run == ("cargo", "codspeed", "build")
    assert not step.uses_shell
    assert step.command_text == "cargo codspeed build"


def test_step_condition_from_string():
    assert Step("report", "true", condition="always").condition is Condition.ALWAYS


@pytest.mark.parametrize("run", ["", "   ", [], [""]])
def test_step_rejects_empty_command(run):
    with pytest.raises(ConfigurationError, match="empty command"):
        Step("x", run)


def test_step_rejects_blank_name():
    with pytest.raises(ConfigurationError):
        Step(" ", "true")


def test_step_rejects_non_positive_timeout():
    with pytest.raises(ConfigurationError, match="timeout"):
        Step("x", "true", timeout_s=0)


def test_step_rejects_bad_env_names():
    with pytest.raises(ConfigurationError, match="Invalid environment variable name"):
        Step("x", "true", env={"BAD-NAME": "1"})
    with pytest.raises(ConfigurationError):
        Step("x", "true", outputs=("1ABC",))


def test_condition_is_met():
    ok = PipelineState()
    failed = PipelineState(failed=True)
    assert Condition.SUCCESS.is_met(ok)
    assert not Condition.SUCCESS.is_met(failed)
    assert Condition.ALWAYS.is_met(ok) and Condition.ALWAYS.is_met(failed)
    assert Condition.FAILURE.is_met(failed)
    assert not Condition.FAILURE.is_met(ok)


def test_skipped_outcome_never_counts_as_failure():
    o = StepOutcome(name="s", status=StepStatus.SKIPPED, skip_reason="nope")
    assert o.success
    assert not o.executed
    assert not o.counts_as_failure
    assert o.error() is None


def test_non_required_failure_does_not_count():
    o = StepOutcome(name="upload", status=StepStatus.FAILED, required=False, exit_code=1,
                    failure=FailureKind.EXIT_CODE)
    assert not o.success
    assert not o.counts_as_failure


def test_outcome_error_types():
    failed = StepOutcome(name="b", status=StepStatus.FAILED, exit_code=2,
                         failure=FailureKind.EXIT_CODE, reason="command exited with code 2")
    err = failed.error()
    assert isinstance(err, ExecutionError)
    assert str(err) == "[b] command exited with code 2 (exit=2)"

    timed_out = StepOutcome(name="t", status=StepStatus.FAILED, exit_code=124,
                            failure=FailureKind.TIMEOUT, reason="timed out")
    assert isinstance(timed_out.error(), StepTimeout)

    cancelled = StepOutcome(name="c", status=StepStatus.CANCELLED, failure=FailureKind.CANCELLED)
    assert isinstance(cancelled.error(), Cancelled)
    assert cancelled.counts_as_failure


def test_state_record_tracks_first_failure_and_exports():
    state = PipelineState(env={"A": "1"})
    state.record(StepOutcome(name="one", status=StepStatus.SUCCEEDED, exports={"B": "2"}))
    state.record(StepOutcome(name="two", status=StepStatus.FAILED, failure=FailureKind.EXIT_CODE))
    state.record(StepOutcome(name="three", status=StepStatus.FAILED, failure=FailureKind.EXIT_CODE))
    assert state.env == {"A": "1", "B": "2"}
    assert state.failed
    assert state.first_failure == "two"
    assert [o.name for o in state.outcomes] == ["one", "two", "three"]


def test_check_unique_names():
    check_unique_names([Step("a", "true"), Step("b", "true")])
    with pytest.raises(ConfigurationError, match="Duplicate step names"):
        check_unique_names([Step("a", "true"), Step("b", "true"), Step("a", "false")])
