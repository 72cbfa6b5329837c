"""CLI entrypoint.

Primary mode:
- conveyor run

Utilities:
- conveyor validate
- conveyor doctor
- conveyor init
- conveyor status

CONTRACT
- Inputs: Command line arguments (parsed by Typer)
- Outputs (required):
  - Exit code: 0 success, 1 step failure, 2 configuration error,
    3 internal error, 130 cancelled
  - Console output (stderr logs, stdout summary table)
- Invariants:
  - run_id is validated before any artifact is written
  - Pipeline execution is delegated to the orchestrator
- Failure:
  - Invalid arguments raise Typer errors (exit code 2)
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .artifacts.store import ArtifactStore
from .config import DEFAULT_PIPELINE_FILE, RunConfig, load_pipeline_file
from .doctor import doctor_report
from .errors import ConfigurationError
from .orchestrator import ExitCode, run_pipeline_session
from .secrets import ChainSecretStore, EnvSecretStore, load_secrets_file
from .summary import summary_table
from .util.ids import new_run_id, validate_run_id
from .util.logs import configure_logging
from .util.paths import copy_template, ensure_dir

app = typer.Typer(add_completion=False, help="Run a sequential step pipeline (CI job core).")

console = Console()


def _version_callback(value: bool):
    if value:
        console.print(f"conveyor version: {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version."
    )
):
    pass


_FILE_OPTION = typer.Option(
    Path(DEFAULT_PIPELINE_FILE),
    "--file",
    "-f",
    help="Pipeline definition (YAML).",
)
_WORKSPACE_OPTION = typer.Option(
    Path("."),
    "--workspace",
    "-w",
    help="Directory steps run in (default: current dir).",
)
_ARTIFACTS_DIR_OPTION = typer.Option(
    Path(".conveyor/runs"),
    "--artifacts-dir",
    help="Artifacts root dir.",
)
_RUN_ID_OPTION = typer.Option(
    None,
    "--run-id",
    help="Run id (default: auto).",
)
_RUN_ID_REQUIRED_OPTION = typer.Option(
    ...,
    "--run",
    help="Run id.",
)
_SECRETS_FILE_OPTION = typer.Option(
    None,
    "--secrets-file",
    help="YAML file of NAME: value secrets (overrides the environment).",
)
_VERBOSE_OPTION = typer.Option(
    False,
    "--verbose",
    "-v",
    help="Debug logging.",
)


def _secret_store(secrets_file: Path | None):
    if secrets_file is None:
        return EnvSecretStore()
    try:
        return ChainSecretStore([load_secrets_file(secrets_file), EnvSecretStore()])
    except ConfigurationError as e:
        raise typer.BadParameter(str(e)) from e


@app.command()
def run(
    file: Path = _FILE_OPTION,
    workspace: Path = _WORKSPACE_OPTION,
    artifacts_dir: Path = _ARTIFACTS_DIR_OPTION,
    run_id: str | None = _RUN_ID_OPTION,
    secrets_file: Path | None = _SECRETS_FILE_OPTION,
    max_output_bytes: int = typer.Option(
        64 * 1024, "--max-output-bytes", min=0, help="Captured output kept per stream."
    ),
    json_output: bool = typer.Option(False, "--json", help="Print REPORT.json instead of a table."),
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Run every step of the pipeline in order."""
    configure_logging(verbose=verbose)
    try:
        rid = validate_run_id(run_id or new_run_id(file.stem))
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e
    ensure_dir(artifacts_dir)

    cfg = RunConfig(
        pipeline_file=file,
        workspace=workspace.resolve(),
        run_id=rid,
        artifacts_root=artifacts_dir,
        secrets_file=secrets_file,
        max_output_bytes=max_output_bytes,
    )
    result = run_pipeline_session(cfg)

    if result.report is not None:
        if json_output:
            console.print_json(result.report.model_dump_json())
        else:
            console.print(summary_table(result.report))
    if result.exit_code == ExitCode.OK:
        console.print(f"[green]Run[/green] {rid} finished with status: {result.status}")
    else:
        console.print(f"[red]Run[/red] {rid} finished with status: {result.status} ({result.message})")
    console.print(f"Artifacts: {result.run_dir}")
    raise typer.Exit(code=result.exit_code)


@app.command()
def validate(file: Path = _FILE_OPTION) -> None:
    """Check a pipeline definition without running it."""
    try:
        pcfg = load_pipeline_file(file)
    except ConfigurationError as e:
        console.print(f"[red]Invalid:[/red] {e}")
        raise typer.Exit(code=int(ExitCode.CONFIGURATION_ERROR))

    table = Table(title=f"{pcfg.name} ({file})")
    table.add_column("#", justify="right")
    table.add_column("Step")
    table.add_column("If")
    table.add_column("Required")
    table.add_column("Command")
    for i, s in enumerate(pcfg.steps, start=1):
        table.add_row(str(i), s.name, s.condition.value, "yes" if s.required else "no", s.command_text)
    console.print(table)
    console.print("[green]OK[/green]")


@app.command()
def doctor(
    file: Path = _FILE_OPTION,
    workspace: Path = _WORKSPACE_OPTION,
    secrets_file: Path | None = _SECRETS_FILE_OPTION,
) -> None:
    """Preflight checks: tools on PATH, secrets present."""
    report = doctor_report(file, workspace, secret_store=_secret_store(secrets_file))
    table = Table(title="conveyor doctor")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Details")
    for item in report.items:
        table.add_row(item.name, item.status, item.details)
    console.print(table)
    if report.ok:
        console.print("[green]OK[/green]")
    else:
        raise typer.Exit(code=2)


@app.command()
def init(
    workspace: Path = _WORKSPACE_OPTION,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing pipeline file."),
) -> None:
    """Write a starter conveyor.yaml."""
    dest = workspace / DEFAULT_PIPELINE_FILE
    if copy_template(DEFAULT_PIPELINE_FILE, dest, overwrite=force):
        console.print(f"[green]Wrote[/green] {dest}")
    else:
        console.print(f"[yellow]Kept existing[/yellow] {dest} (use --force to overwrite)")


@app.command()
def status(
    run_id: str = _RUN_ID_REQUIRED_OPTION,
    artifacts_dir: Path = _ARTIFACTS_DIR_OPTION,
) -> None:
    """Show RUN_STATUS.json of a previous run."""
    try:
        validate_run_id(run_id)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e
    store = ArtifactStore(artifacts_dir / run_id)
    status_path = store.path("RUN_STATUS.json")
    if not status_path.exists():
        raise typer.BadParameter(f"No status found: {status_path}")
    try:
        run_status = store.read_status()
    except ValueError as e:
        raise typer.BadParameter(f"Unreadable status {status_path}: {e}") from e
    console.print_json(run_status.model_dump_json())


if __name__ == "__main__":
    app()
