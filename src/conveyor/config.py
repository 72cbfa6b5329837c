from __future__ import annotations

"""Configuration models.

CONTRACT
- Inputs: YAML pipeline definition (conveyor.yaml) or dictionary data
- Outputs (required):
  - Validated PipelineConfig holding ready-to-run Step objects
  - RunConfig describing one orchestrator invocation
- Invariants:
  - Step names are unique; step secrets are declared at pipeline level
  - Defaults are safe (condition=success, required=true, no timeout)
- Failure:
  - Raises ConfigurationError on unreadable YAML, schema violations or
    invalid step definitions
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError
from .model import Condition, Step, check_unique_names, validate_env_name
from .util.shell import DEFAULT_MAX_OUTPUT_BYTES

DEFAULT_PIPELINE_FILE = "conveyor.yaml"

_SCALAR = {"type": ["string", "number", "boolean"]}
_NAME_LIST = {"type": "array", "items": {"type": "string", "minLength": 1}}

STEP_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "run": {
            "oneOf": [
                {"type": "string", "minLength": 1},
                {"type": "array", "items": {"type": "string"}, "minItems": 1},
            ]
        },
        "if": {"type": "string", "enum": [c.value for c in Condition]},
        "env": {"type": "object", "additionalProperties": _SCALAR},
        "secrets": _NAME_LIST,
        "continue-on-error": {"type": "boolean"},
        "timeout": {"type": "number", "exclusiveMinimum": 0},
        "working-directory": {"type": "string"},
        "outputs": _NAME_LIST,
    },
    "required": ["name", "run"],
    "additionalProperties": False,
}

PIPELINE_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "minLength": 1},
        "env": {"type": "object", "additionalProperties": _SCALAR},
        "secrets": _NAME_LIST,
        "steps": {"type": "array", "items": STEP_SCHEMA},
    },
    "required": ["steps"],
    "additionalProperties": False,
}


@dataclass(frozen=True)
class PipelineConfig:
    name: str
    steps: list[Step]
    env: dict[str, str] = field(default_factory=dict)
    secrets: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RunConfig:
    pipeline_file: Path
    workspace: Path
    run_id: str
    artifacts_root: Path
    secrets_file: Path | None = None
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    kill_grace_s: float = 5.0

    def run_dir(self) -> Path:
        return self.artifacts_root / self.run_id


def _as_env(raw: dict[str, Any] | None) -> dict[str, str]:
    out: dict[str, str] = {}
    for k, v in (raw or {}).items():
        if isinstance(v, bool):
            v = "true" if v else "false"
        out[validate_env_name(str(k))] = str(v)
    return out


def _step_from_dict(raw: dict[str, Any], declared_secrets: set[str]) -> Step:
    name = str(raw["name"])
    secrets = [str(s) for s in raw.get("secrets", []) or []]
    unknown = [s for s in secrets if s not in declared_secrets]
    if unknown:
        raise ConfigurationError(
            f"Step {name!r} uses secrets not declared by the pipeline: {', '.join(unknown)}"
        )
    run = raw["run"]
    return Step(
        name=name,
        run=tuple(run) if isinstance(run, list) else run,
        env=_as_env(raw.get("env")),
        secrets=tuple(secrets),
        condition=Condition(raw.get("if", Condition.SUCCESS.value)),
        required=not bool(raw.get("continue-on-error", False)),
        timeout_s=float(raw["timeout"]) if raw.get("timeout") is not None else None,
        working_directory=raw.get("working-directory"),
        outputs=tuple(str(o) for o in raw.get("outputs", []) or []),
    )


def parse_pipeline(data: dict[str, Any], default_name: str = "pipeline") -> PipelineConfig:
    import jsonschema  # lazy import

    try:
        jsonschema.validate(instance=data, schema=PIPELINE_SCHEMA)
    except jsonschema.ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigurationError(f"Invalid pipeline definition at {where}: {e.message}") from e

    secrets = [validate_env_name(str(s)) for s in data.get("secrets", []) or []]
    declared = set(secrets)
    steps = [_step_from_dict(s, declared) for s in data.get("steps", []) or []]
    check_unique_names(steps)
    return PipelineConfig(
        name=str(data.get("name") or default_name),
        steps=steps,
        env=_as_env(data.get("env")),
        secrets=secrets,
    )


def load_pipeline_file(path: Path) -> PipelineConfig:
    if not path.exists():
        raise ConfigurationError(f"Pipeline file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        data = {"steps": []}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Pipeline file {path} must contain a mapping")
    return parse_pipeline(data, default_name=path.stem)


if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="Pipeline definition loader")
    parser.add_argument("--file", required=True, help="Path to conveyor.yaml")
    args = parser.parse_args()

    try:
        cfg = load_pipeline_file(Path(args.file))
        print(f"Loaded pipeline {cfg.name!r} with {len(cfg.steps)} steps.")
        for s in cfg.steps:
            print(f"  - {s.name} [{s.condition.value}]")
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
