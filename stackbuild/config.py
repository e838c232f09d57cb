from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigurationError
from .models import SourceRef

CONFIG_NAME = "stackbuild.yaml"

_KNOWN_KEYS = {
    "state_dir",
    "repository_dir",
    "work_dir",
    "logs_dir",
    "sandbox",
    "external_sources",
    "packages",
    "jobs",
    "keep_going",
    "skip_published",
    "keep_workdirs",
    "checkout",
}


@dataclass
class SandboxConfig:
    """How the native build of a single package is invoked."""

    command: List[str] = field(default_factory=list)
    artifact_patterns: List[str] = field(default_factory=lambda: ["*.deb"])
    timeout_s: Optional[int] = None
    env: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SandboxConfig":
        command = data.get("command", [])
        if isinstance(command, str):
            command = command.split()
        return cls(
            command=list(command),
            artifact_patterns=list(data.get("artifact_patterns", ["*.deb"])),
            timeout_s=data.get("timeout_s"),
            env={str(key): str(value) for key, value in data.get("env", {}).items()},
        )


@dataclass
class RunConfig:
    """Explicit configuration shared by every component of a run."""

    workspace: Path
    state_dir: Optional[Path] = None
    repository_dir: Optional[Path] = None
    work_dir: Optional[Path] = None
    logs_dir: Optional[Path] = None
    sandbox: SandboxConfig = field(default_factory=SandboxConfig)
    external_sources: List[str] = field(default_factory=list)
    packages: Dict[str, SourceRef] = field(default_factory=dict)
    jobs: int = 1
    keep_going: bool = False
    skip_published: bool = False
    keep_workdirs: bool = False
    checkout: str = "local"

    def __post_init__(self) -> None:
        self.workspace = Path(self.workspace).resolve()
        self.state_dir = self._under(self.state_dir, self.workspace, ".stackbuild")
        self.repository_dir = self._under(self.repository_dir, self.state_dir, "repo")
        self.work_dir = self._under(self.work_dir, self.state_dir, "work")
        self.logs_dir = self._under(self.logs_dir, self.state_dir, "logs")
        if self.jobs < 1:
            raise ConfigurationError(f"jobs must be at least 1, got {self.jobs}")
        if self.checkout not in ("local", "git"):
            raise ConfigurationError(f"checkout must be 'local' or 'git', got {self.checkout!r}")

    @staticmethod
    def _under(value: Optional[Path], base: Path, default: str) -> Path:
        if value is None:
            return base / default
        value = Path(value)
        return value if value.is_absolute() else base / value

    @property
    def report_path(self) -> Path:
        return self.state_dir / "last_run.json"

    @classmethod
    def from_dict(cls, workspace: str | Path, data: Dict[str, Any]) -> "RunConfig":
        unknown = sorted(set(data) - _KNOWN_KEYS)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")
        workspace = Path(workspace).resolve()

        def optional_path(key: str) -> Optional[Path]:
            value = data.get(key)
            if value is None:
                return None
            path = Path(value)
            return path if path.is_absolute() else workspace / path

        return cls(
            workspace=workspace,
            state_dir=optional_path("state_dir"),
            repository_dir=optional_path("repository_dir"),
            work_dir=optional_path("work_dir"),
            logs_dir=optional_path("logs_dir"),
            sandbox=SandboxConfig.from_dict(data.get("sandbox") or {}),
            external_sources=list(data.get("external_sources", [])),
            packages={
                name: SourceRef.from_dict(entry or {})
                for name, entry in (data.get("packages") or {}).items()
            },
            jobs=int(data.get("jobs", 1)),
            keep_going=bool(data.get("keep_going", False)),
            skip_published=bool(data.get("skip_published", False)),
            keep_workdirs=bool(data.get("keep_workdirs", False)),
            checkout=data.get("checkout", "local"),
        )


def load_config(workspace: str | Path, path: str | Path | None = None) -> RunConfig:
    """Load the run configuration for ``workspace``.

    Without an explicit ``path`` the optional ``stackbuild.yaml`` at the
    workspace root is used. JSON documents are accepted since they are valid
    YAML.
    """

    workspace = Path(workspace)
    config_path = Path(path) if path is not None else workspace / CONFIG_NAME
    if path is None and not config_path.exists():
        return RunConfig(workspace=workspace)

    try:
        raw_data = yaml.safe_load(config_path.read_text())
    except OSError as exc:
        raise ConfigurationError(f"Cannot read configuration {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid configuration {config_path}: {exc}") from exc

    if raw_data is None:
        raw_data = {}
    if not isinstance(raw_data, dict):
        raise ConfigurationError(f"Configuration {config_path} must be a mapping")
    return RunConfig.from_dict(workspace, raw_data)
