import json
import sys
from unittest.mock import patch

import pytest

from conveyor.cancel import CancelToken
from conveyor.config import RunConfig
from conveyor.orchestrator import ExitCode, exit_code_for, run_pipeline_session
from conveyor.model import PipelineResult
from conveyor.secrets import MappingSecretStore

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell required")


def _cfg(tmp_path, pipeline_file, run_id="r1"):
    return RunConfig(
        pipeline_file=pipeline_file,
        workspace=tmp_path,
        run_id=run_id,
        artifacts_root=tmp_path / "runs",
        kill_grace_s=1.0,
    )


def _run(cfg, **kwargs):
    kwargs.setdefault("install_signal_handlers", False)
    return run_pipeline_session(cfg, **kwargs)


def test_exit_code_for():
    assert exit_code_for(PipelineResult(success=True)) is ExitCode.OK
    assert exit_code_for(PipelineResult(success=False, first_failure="a")) is ExitCode.STEP_FAILURE
    assert exit_code_for(PipelineResult(success=False, cancelled=True)) is ExitCode.CANCELLED


def test_successful_run_writes_artifacts(tmp_path, write_pipeline):
    p = write_pipeline(
        """
        name: ci
        steps:
          - name: checkout
            run: echo checked out
          - name: build
            run: echo built
        """
    )
    res = _run(_cfg(tmp_path, p))

    assert res.exit_code == 0
    assert res.status == "OK"
    run_dir = tmp_path / "runs" / "r1"
    assert res.run_dir == run_dir
    for name in ("RUN.json", "RUN_STATUS.json", "REPORT.json", "SUMMARY.md", "events.jsonl"):
        assert (run_dir / name).exists(), name

    status = json.loads((run_dir / "RUN_STATUS.json").read_text())
    assert status["status"] == "OK"
    assert status["exit_code"] == 0

    report = json.loads((run_dir / "REPORT.json").read_text())
    assert report["success"] is True
    assert [s["name"] for s in report["steps"]] == ["checkout", "build"]
    assert report["steps"][1]["stdout_log"] == "logs/02.build.stdout.log"
    assert (run_dir / "logs" / "01.checkout.stdout.log").read_text().strip() == "checked out"

    meta = json.loads((run_dir / "RUN.json").read_text())
    assert meta["pipeline"] == "ci"
    assert [s["name"] for s in meta["steps"]] == ["checkout", "build"]


def test_failed_run(tmp_path, write_pipeline):
    p = write_pipeline(
        """
        steps:
          - name: lint
            run: exit 1
          - name: coverage
            run: 'true'
          - name: upload report
            if: always
            run: echo uploaded
        """
    )
    res = _run(_cfg(tmp_path, p))

    assert res.exit_code == ExitCode.STEP_FAILURE
    assert res.status == "FAIL"
    assert "lint" in res.message
    assert res.message == "[lint] command exited with code 1 (exit=1)"
    assert res.report.first_failure == "lint"
    assert res.report.not_run == ["coverage"]
    assert [s.name for s in res.report.steps] == ["lint", "upload report"]
    assert res.report.steps[1].index == 2

    summary = (res.run_dir / "SUMMARY.md").read_text()
    assert "## Not run" in summary
    assert "FAIL (first failure: lint)" in summary


def test_config_error_exit_code(tmp_path, write_pipeline):
    p = write_pipeline("steps:\n  - name: a\n")
    res = _run(_cfg(tmp_path, p))

    assert res.exit_code == ExitCode.CONFIGURATION_ERROR
    assert res.status == "CONFIG_ERROR"
    assert res.report is None
    status = json.loads((res.run_dir / "RUN_STATUS.json").read_text())
    assert status["status"] == "CONFIG_ERROR"
    assert not (res.run_dir / "REPORT.json").exists()


def test_missing_secret_runs_nothing(tmp_path, write_pipeline):
    marker = tmp_path / "ran"
    p = write_pipeline(
        f"""
        secrets: [DEPLOY_TOKEN]
        steps:
          - name: first
            run: touch {marker}
        """
    )
    res = _run(_cfg(tmp_path, p), secret_store=MappingSecretStore({}))

    assert res.exit_code == ExitCode.CONFIGURATION_ERROR
    assert "Missing secrets: DEPLOY_TOKEN" in res.message
    assert not marker.exists()


def test_secrets_redacted_in_artifacts(tmp_path, write_pipeline):
    p = write_pipeline(
        """
        secrets: [DEPLOY_TOKEN]
        steps:
          - name: deploy
            secrets: [DEPLOY_TOKEN]
            run: |
              echo "token is $DEPLOY_TOKEN"
              echo "TOKEN_ECHO=$DEPLOY_TOKEN" >> "$CONVEYOR_OUTPUT"
            outputs: [TOKEN_ECHO]
        """
    )
    res = _run(_cfg(tmp_path, p), secret_store=MappingSecretStore({"DEPLOY_TOKEN": "tok-9f8e7d"}))

    assert res.exit_code == 0
    for path in res.run_dir.rglob("*"):
        if path.is_file():
            assert "tok-9f8e7d" not in path.read_text(), path
    assert (res.run_dir / "logs" / "01.deploy.stdout.log").read_text().strip() == "token is ***"
    assert res.report.steps[0].exports == {"TOKEN_ECHO": "***"}


def test_cancelled_run(tmp_path, write_pipeline):
    p = write_pipeline(
        """
        steps:
          - name: a
            run: 'true'
          - name: report
            if: always
            run: 'true'
        """
    )
    token = CancelToken()
    token.cancel("user abort")
    res = _run(_cfg(tmp_path, p), cancel=token)

    assert res.exit_code == ExitCode.CANCELLED == 130
    assert res.status == "CANCELLED"
    assert "user abort" in res.message
    assert res.report.cancelled
    assert res.report.not_run == ["a", "report"]


def test_events_log(tmp_path, write_pipeline):
    p = write_pipeline("steps:\n  - name: a\n    run: 'true'\n")
    res = _run(_cfg(tmp_path, p))

    lines = (res.run_dir / "events.jsonl").read_text().splitlines()
    events = [json.loads(line) for line in lines]
    assert events[0]["stage"] == "pipeline" and events[0]["action"] == "start"
    assert events[-1]["action"] == "done"
    assert all(e["run_id"] == "r1" for e in events)
    step_events = [e for e in events if e["stage"] == "step"]
    assert step_events[0]["action"] == "succeeded"


def test_crash_writes_crash_file(tmp_path, write_pipeline):
    p = write_pipeline("steps:\n  - name: a\n    run: 'true'\n")
    with patch("conveyor.orchestrator.Pipeline.execute", side_effect=RuntimeError("boom")):
        res = _run(_cfg(tmp_path, p))

    assert res.exit_code == ExitCode.INTERNAL_ERROR == 3
    assert res.status == "FAIL"
    assert "boom" in (res.run_dir / "CRASH.txt").read_text()
    status = json.loads((res.run_dir / "RUN_STATUS.json").read_text())
    assert status["exit_code"] == 3


def test_keyboard_interrupt_between_steps_is_cancelled(tmp_path, write_pipeline):
    p = write_pipeline("steps:\n  - name: a\n    run: 'true'\n  - name: b\n    run: 'true'\n")
    with patch("conveyor.runner.StepRunner.run", side_effect=KeyboardInterrupt):
        res = _run(_cfg(tmp_path, p))

    assert res.exit_code == ExitCode.CANCELLED
    assert res.status == "CANCELLED"
    assert "keyboard interrupt" in res.message
    assert res.report.not_run == ["a", "b"]
    assert (res.run_dir / "REPORT.json").exists()
    status = json.loads((res.run_dir / "RUN_STATUS.json").read_text())
    assert status["status"] == "CANCELLED"
    assert status["exit_code"] == 130
