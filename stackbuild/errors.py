from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional


class StackbuildError(RuntimeError):
    """Base class for every error surfaced to the orchestrator."""


class ConfigurationError(StackbuildError):
    """Raised before any build starts when the package set cannot be scheduled."""


class ManifestError(ConfigurationError):
    """Raised when a package manifest cannot be parsed."""

    def __init__(self, path: str | Path, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Invalid manifest {self.path}: {reason}")


class CycleError(ConfigurationError):
    """Raised when the in-set dependency graph is not acyclic."""

    def __init__(self, members: Iterable[str]) -> None:
        self.members = list(members)
        super().__init__(f"Dependency cycle between packages: {', '.join(self.members)}")


class CheckoutError(StackbuildError):
    """Raised when a package's source tree cannot be obtained."""


class ResolutionError(StackbuildError):
    """Raised when an in-set dependency is unavailable despite the build order."""


class BuildError(StackbuildError):
    """Raised when the native build of a package fails or produces nothing."""

    def __init__(self, package: str, message: str, log_path: Optional[Path] = None) -> None:
        self.package = package
        self.log_path = log_path
        detail = f" (see {log_path})" if log_path else ""
        super().__init__(f"Build of {package} failed: {message}{detail}")


class CollisionError(StackbuildError):
    """Raised when an artifact with the same name and version but different content exists."""
