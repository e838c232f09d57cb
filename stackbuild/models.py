from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from .utils import sha256_file


class PackageStatus(Enum):
    PENDING = "pending"
    BUILDING = "building"
    BUILT = "built"
    FAILED = "failed"


@dataclass(frozen=True)
class SourceRef:
    """Where a package's sources come from: a repository URL and a revision."""

    url: Optional[str] = None
    ref: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceRef":
        return cls(url=data.get("url"), ref=data.get("ref"))


@dataclass
class Package:
    """A source package discovered from its manifest."""

    name: str
    path: Path
    version: str = ""
    dependencies: FrozenSet[str] = frozenset()
    source: SourceRef = field(default_factory=SourceRef)
    status: PackageStatus = PackageStatus.PENDING


@dataclass(frozen=True)
class DependencyEdge:
    dependent: str
    dependency: str


@dataclass(frozen=True)
class Artifact:
    """Binary output of one successful package build."""

    name: str
    version: str
    files: Tuple[Path, ...]

    def file_hashes(self) -> List[Tuple[str, str]]:
        return [(path.name, sha256_file(path)) for path in self.files]


@dataclass
class IndexEntry:
    """One artifact as listed in the repository index."""

    name: str
    version: str
    digest: str
    path: str
    files: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "digest": self.digest,
            "path": self.path,
            "files": self.files,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexEntry":
        return cls(
            name=data["name"],
            version=data.get("version", ""),
            digest=data["digest"],
            path=data.get("path", ""),
            files=list(data.get("files", [])),
        )


@dataclass
class BuildRecord:
    """Summary emitted by the build step executor for one package."""

    package: str
    status: PackageStatus
    version: str = ""
    artifacts: List[str] = field(default_factory=list)
    installed: List[str] = field(default_factory=list)
    duration_s: float = 0.0
    message: str = ""
    log_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "package": self.package,
            "status": self.status.value,
            "version": self.version,
            "artifacts": self.artifacts,
            "installed": self.installed,
            "duration_s": self.duration_s,
            "message": self.message,
            "log_path": self.log_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildRecord":
        return cls(
            package=data["package"],
            status=PackageStatus(data.get("status", PackageStatus.PENDING.value)),
            version=data.get("version", ""),
            artifacts=list(data.get("artifacts", [])),
            installed=list(data.get("installed", [])),
            duration_s=data.get("duration_s", 0.0),
            message=data.get("message", ""),
            log_path=data.get("log_path"),
        )


@dataclass
class RunReport:
    """Outcome of one orchestrator run."""

    order: List[str]
    records: Dict[str, BuildRecord] = field(default_factory=dict)
    statuses: Dict[str, PackageStatus] = field(default_factory=dict)
    failed: List[str] = field(default_factory=list)
    error: Optional[str] = None
    dry_run: bool = False

    @property
    def pending(self) -> List[str]:
        return [name for name in self.order if self.statuses.get(name) is PackageStatus.PENDING]

    @property
    def succeeded(self) -> bool:
        if self.dry_run:
            return self.error is None
        return all(self.statuses.get(name) is PackageStatus.BUILT for name in self.order)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order": self.order,
            "statuses": {name: status.value for name, status in self.statuses.items()},
            "records": {name: record.to_dict() for name, record in self.records.items()},
            "failed": self.failed,
            "error": self.error,
            "dry_run": self.dry_run,
            "succeeded": self.succeeded,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunReport":
        return cls(
            order=list(data.get("order", [])),
            records={
                name: BuildRecord.from_dict(record)
                for name, record in data.get("records", {}).items()
            },
            statuses={
                name: PackageStatus(value) for name, value in data.get("statuses", {}).items()
            },
            failed=list(data.get("failed", [])),
            error=data.get("error"),
            dry_run=data.get("dry_run", False),
        )
