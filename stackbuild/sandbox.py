from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol, Sequence

from .errors import ConfigurationError
from .models import IndexEntry, Package
from .utils import run_command

logger = logging.getLogger(__name__)


@dataclass
class BuildRequest:
    """Everything the sandbox needs to build one package."""

    package: Package
    source_dir: Path
    output_dir: Path
    install_sources: List[str]
    dependencies: List[IndexEntry] = field(default_factory=list)
    external_dependencies: List[str] = field(default_factory=list)

    def placeholders(self) -> Dict[str, str]:
        return {
            "package": self.package.name,
            "version": self.package.version,
            "source": str(self.source_dir),
            "output": str(self.output_dir),
            "sources": " ".join(self.install_sources),
            "deps": " ".join(entry.name for entry in self.dependencies),
            "external": " ".join(self.external_dependencies),
        }


@dataclass
class BuildOutcome:
    success: bool
    files: List[Path] = field(default_factory=list)
    output: str = ""
    returncode: int = 0


class BuildSandbox(Protocol):
    """Performs the native build of a prepared source tree."""

    def build(self, request: BuildRequest) -> BuildOutcome:
        ...


class CommandSandbox:
    """Run a configured command (typically a container invocation) per package.

    Each argument of ``command`` is formatted with the request placeholders,
    e.g. ``["docker", "run", "-v", "{source}:/src", "-v", "{output}:/out", ...]``.
    Files matching ``artifact_patterns`` in the output directory are the
    artifacts.
    """

    def __init__(
        self,
        command: Sequence[str],
        artifact_patterns: Sequence[str] = ("*.deb",),
        timeout_s: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        if not command:
            raise ConfigurationError("No sandbox command configured")
        self.command = list(command)
        self.artifact_patterns = list(artifact_patterns)
        self.timeout_s = timeout_s
        self.env = dict(env or {})

    def render(self, request: BuildRequest) -> List[str]:
        values = request.placeholders()
        try:
            return [part.format(**values) for part in self.command]
        except (KeyError, IndexError) as exc:
            raise ConfigurationError(f"Unknown placeholder in sandbox command: {exc}") from exc

    def collect(self, output_dir: Path) -> List[Path]:
        found = set()
        for pattern in self.artifact_patterns:
            found.update(path for path in output_dir.glob(pattern) if path.is_file())
        return sorted(found)

    def build(self, request: BuildRequest) -> BuildOutcome:
        command = self.render(request)
        logger.debug("Sandbox command for %s: %s", request.package.name, " ".join(command))
        try:
            result = run_command(
                command,
                cwd=request.source_dir,
                env=self.env,
                check=False,
                timeout=self.timeout_s,
            )
        except OSError as exc:
            return BuildOutcome(False, output=f"$ {' '.join(command)}\n{exc}", returncode=127)
        output = f"$ {' '.join(command)}\n{result.stdout}\n{result.stderr}"
        if result.returncode != 0:
            return BuildOutcome(False, output=output, returncode=result.returncode)
        return BuildOutcome(True, files=self.collect(request.output_dir), output=output)
