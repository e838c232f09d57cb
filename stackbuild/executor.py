from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path
from typing import Collection, List, Mapping

from .checkout import SourceCheckout
from .config import RunConfig
from .errors import BuildError, CheckoutError, ResolutionError
from .graph import DependencyGraph
from .models import Artifact, BuildRecord, IndexEntry, Package, PackageStatus
from .repository import IncrementalRepository
from .sandbox import BuildRequest, BuildSandbox
from .utils import ensure_directory

logger = logging.getLogger(__name__)


class BuildStepExecutor:
    """Builds one package and publishes its artifacts before returning.

    ``scheduled`` names the packages of the current run; their in-set
    dependencies must already be built. Dependencies outside the run must be
    present in the repository from an earlier run.
    """

    def __init__(
        self,
        config: RunConfig,
        repository: IncrementalRepository,
        checkout: SourceCheckout,
        sandbox: BuildSandbox,
        graph: DependencyGraph,
        packages: Mapping[str, Package],
        scheduled: Collection[str],
    ) -> None:
        self.config = config
        self.repository = repository
        self.checkout = checkout
        self.sandbox = sandbox
        self.graph = graph
        self.packages = packages
        self.scheduled = set(scheduled)

    def _check_ready(self, package: Package) -> None:
        if package.status is not PackageStatus.PENDING:
            raise ResolutionError(f"{package.name} is {package.status.value}, expected pending")
        for dependency in self.graph.dependencies_of(package.name):
            if dependency not in self.scheduled:
                continue
            status = self.packages[dependency].status
            if status is not PackageStatus.BUILT:
                raise ResolutionError(
                    f"{package.name} scheduled before its dependency {dependency} ({status.value})"
                )

    def resolve_dependencies(self, package: Package) -> List[IndexEntry]:
        """Look up every in-set dependency in the repository's current index."""

        resolved: List[IndexEntry] = []
        for dependency in self.graph.dependencies_of(package.name):
            version = self.packages[dependency].version
            entry = self.repository.resolve(dependency, version)
            if entry is None:
                raise ResolutionError(
                    f"{package.name} depends on {dependency} {version or ''}".rstrip()
                    + f", which is not in the repository index at {self.repository.as_install_source()}"
                )
            resolved.append(entry)
        return resolved

    def execute(self, package: Package) -> BuildRecord:
        self._check_ready(package)
        package.status = PackageStatus.BUILDING
        logger.info("Building %s %s", package.name, package.version)
        started = time.perf_counter()

        workdir = Path(self.config.work_dir) / package.name
        log_path = Path(self.config.logs_dir) / f"{package.name}.log"
        try:
            try:
                if workdir.exists():
                    shutil.rmtree(workdir)
                source_dir = self.checkout.checkout(package, ensure_directory(workdir / "src"))
            except OSError as exc:
                raise CheckoutError(f"Cannot prepare sources of {package.name}: {exc}") from exc
            dependencies = self.resolve_dependencies(package)
            try:
                request = BuildRequest(
                    package=package,
                    source_dir=source_dir,
                    output_dir=ensure_directory(workdir / "out"),
                    install_sources=[self.repository.as_install_source(), *self.config.external_sources],
                    dependencies=dependencies,
                    external_dependencies=self.graph.external_dependencies_of(package.name),
                )
                outcome = self.sandbox.build(request)
                ensure_directory(log_path.parent)
                log_path.write_text(outcome.output)
                if not outcome.success:
                    raise BuildError(package.name, f"sandbox exited with status {outcome.returncode}", log_path)
                if not outcome.files:
                    raise BuildError(package.name, "no artifacts were produced", log_path)

                artifact = Artifact(name=package.name, version=package.version, files=tuple(outcome.files))
                entry = self.repository.publish_and_reindex(artifact)
            except OSError as exc:
                raise BuildError(package.name, str(exc), log_path if log_path.exists() else None) from exc
        except Exception:
            package.status = PackageStatus.FAILED
            logger.error("Build of %s failed", package.name)
            raise
        finally:
            if not self.config.keep_workdirs:
                shutil.rmtree(workdir, ignore_errors=True)

        package.status = PackageStatus.BUILT
        duration = round(time.perf_counter() - started, 3)
        logger.info("Built %s in %.1fs", package.name, duration)
        return BuildRecord(
            package=package.name,
            status=PackageStatus.BUILT,
            version=package.version,
            artifacts=[item["name"] for item in entry.files],
            installed=[dependency.name for dependency in dependencies],
            duration_s=duration,
            log_path=str(log_path),
        )
