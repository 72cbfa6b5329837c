"""Human-readable run summaries (Rich table for the console, Markdown on disk)."""

from __future__ import annotations

from rich.table import Table

from .artifacts.schemas import RunReport, StepRecord

_STYLE = {
    "succeeded": ("✓", "green"),
    "failed": ("✗", "red"),
    "skipped": ("⏭", "yellow"),
    "cancelled": ("⊘", "magenta"),
}


def _status_label(rec: StepRecord) -> str:
    icon, _ = _STYLE[rec.status]
    label = f"{icon} {rec.status}"
    if rec.status == "failed" and not rec.required:
        label += " (allowed)"
    return label


def _details(rec: StepRecord) -> str:
    if rec.status == "skipped":
        return rec.skip_reason or ""
    return rec.reason or ""


def _headline(report: RunReport) -> str:
    if report.cancelled:
        return "CANCELLED"
    if report.success:
        return "OK"
    return f"FAIL (first failure: {report.first_failure})"


def summary_table(report: RunReport) -> Table:
    table = Table(title=f"{report.pipeline} · {report.run_id}")
    table.add_column("#", justify="right")
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Exit", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Details")
    for rec in report.steps:
        _, color = _STYLE[rec.status]
        name = rec.name
        if rec.name == report.first_failure:
            name = f"[bold]{name}[/bold]"
        table.add_row(
            str(rec.index + 1),
            name,
            f"[{color}]{_status_label(rec)}[/{color}]",
            "-" if rec.exit_code is None else str(rec.exit_code),
            f"{rec.duration_s:.2f}s",
            _details(rec),
        )
    for name in report.not_run:
        table.add_row("", f"[dim]{name}[/dim]", "[dim]not run[/dim]", "-", "-", "")
    return table


def summary_markdown(report: RunReport) -> str:
    md = [f"# {report.pipeline}", "", f"Run ID: `{report.run_id}`", ""]
    md += ["## Steps", ""]
    md.append("| # | Step | Status | Exit | Duration | Details |")
    md.append("|---|------|--------|------|----------|---------|")
    for rec in report.steps:
        exit_code = "-" if rec.exit_code is None else str(rec.exit_code)
        md.append(
            f"| {rec.index + 1} | {rec.name} | {_status_label(rec)} | {exit_code} "
            f"| {rec.duration_s:.2f}s | {_details(rec)} |"
        )
    md.append("")
    if report.not_run:
        md += ["## Not run", ""]
        md += [f"- {name}" for name in report.not_run]
        md.append("")
    md += ["## Result", "", _headline(report), ""]
    return "\n".join(md)
