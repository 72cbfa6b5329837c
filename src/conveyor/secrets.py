from __future__ import annotations

"""Secret stores and the per-run secret context.

CONTRACT
- Inputs: secret names declared by a pipeline definition
- Outputs:
  - SecretContext holding resolved values for exactly one run
- Invariants:
  - Values are loaded once, before the first step, and cleared on exit
  - Values are opaque strings; they are never logged
- Failure:
  - Raises ConfigurationError if a declared secret cannot be resolved
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Mapping, Protocol

import yaml

from .errors import ConfigurationError
from .util.redaction import Redactor


class SecretStore(Protocol):
    def get(self, name: str) -> str | None: ...


@dataclass
class EnvSecretStore:
    """Reads secrets from the process environment (how CI runners inject them)."""

    environ: Mapping[str, str] | None = None
    prefix: str = ""

    def get(self, name: str) -> str | None:
        env = self.environ if self.environ is not None else os.environ
        return env.get(f"{self.prefix}{name}")


@dataclass
class MappingSecretStore:
    values: dict[str, str] = field(default_factory=dict)

    def get(self, name: str) -> str | None:
        return self.values.get(name)


def load_secrets_file(path: Path) -> MappingSecretStore:
    """Load a flat `NAME: value` YAML file."""
    if not path.is_file():
        raise ConfigurationError(f"Secrets file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid secrets file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Secrets file {path} must contain a mapping")
    return MappingSecretStore({str(k): str(v) for k, v in data.items()})


@dataclass
class ChainSecretStore:
    stores: list[SecretStore]

    def get(self, name: str) -> str | None:
        for store in self.stores:
            value = store.get(name)
            if value is not None:
                return value
        return None


class SecretContext:
    """Scoped holder of secret values for one pipeline run.

    Use as a context manager: values are resolved on enter and discarded on
    exit, so nothing outlives the run.
    """

    def __init__(self, store: SecretStore, names: Iterable[str]) -> None:
        self._store = store
        self._names = list(dict.fromkeys(names))
        self._values: dict[str, str] = {}
        self._loaded = False

    def __enter__(self) -> SecretContext:
        self.load()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.clear()

    def load(self) -> None:
        missing: list[str] = []
        values: dict[str, str] = {}
        for name in self._names:
            value = self._store.get(name)
            if value is None:
                missing.append(name)
            else:
                values[name] = value
        if missing:
            raise ConfigurationError(f"Missing secrets: {', '.join(missing)}")
        self._values = values
        self._loaded = True

    def clear(self) -> None:
        self._values.clear()
        self._loaded = False

    @property
    def names(self) -> list[str]:
        return list(self._names)

    def resolve(self, names: Iterable[str]) -> dict[str, str]:
        if not self._loaded:
            raise RuntimeError("Secret context is not loaded")
        out: dict[str, str] = {}
        for name in names:
            if name not in self._values:
                raise ConfigurationError(f"Secret {name!r} was not declared for this run")
            out[name] = self._values[name]
        return out

    def redactor(self) -> Redactor:
        return Redactor.for_values(self._values.values())

    def __repr__(self) -> str:
        return f"SecretContext(names={self._names!r}, loaded={self._loaded})"
