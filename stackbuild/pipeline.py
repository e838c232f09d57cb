from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

from .checkout import GitCheckout, LocalCheckout, SourceCheckout
from .config import RunConfig
from .errors import StackbuildError
from .executor import BuildStepExecutor
from .graph import DependencyGraph
from .manifest import discover_packages, extract_dependencies
from .models import BuildRecord, DependencyEdge, Package, PackageStatus, RunReport
from .repository import IncrementalRepository
from .sandbox import BuildSandbox, CommandSandbox
from .scheduler import ready_sets, scheduling_edges, select
from .utils import dump_json

logger = logging.getLogger(__name__)


@dataclass
class BuildPlan:
    packages: Dict[str, Package]
    graph: DependencyGraph
    order: List[str]
    edges: Set[DependencyEdge]


def default_checkout(config: RunConfig) -> SourceCheckout:
    if config.checkout == "git":
        return GitCheckout()
    return LocalCheckout(exclude=[config.state_dir])


def default_sandbox(config: RunConfig) -> BuildSandbox:
    return CommandSandbox(
        config.sandbox.command,
        artifact_patterns=config.sandbox.artifact_patterns,
        timeout_s=config.sandbox.timeout_s,
        env=config.sandbox.env,
    )


class BuildPipeline:
    """Builds every scheduled package in dependency order.

    Each package is published to the incremental repository, and the index
    regenerated, before the next one starts. The first failure halts the run
    unless ``keep_going`` is configured, in which case only the packages
    depending on a failed one are held back. Published artifacts are never
    rolled back.
    """

    def __init__(
        self,
        config: RunConfig,
        checkout: Optional[SourceCheckout] = None,
        sandbox: Optional[BuildSandbox] = None,
        repository: Optional[IncrementalRepository] = None,
    ) -> None:
        self.config = config
        self._checkout = checkout
        self._sandbox = sandbox
        self.repository = repository or IncrementalRepository(config.repository_dir)

    @property
    def checkout(self) -> SourceCheckout:
        if self._checkout is None:
            self._checkout = default_checkout(self.config)
        return self._checkout

    @property
    def sandbox(self) -> BuildSandbox:
        if self._sandbox is None:
            self._sandbox = default_sandbox(self.config)
        return self._sandbox

    def plan(self, requested: Optional[Iterable[str]] = None, include_dependencies: bool = False) -> BuildPlan:
        packages = discover_packages(self.config.workspace, self.config.packages)
        graph = DependencyGraph(packages, extract_dependencies(packages.values()))
        graph.validate()
        order = select(graph, requested, include_dependencies)
        logger.info("Build order: %s", ", ".join(order) or "(empty)")
        return BuildPlan(
            packages=packages,
            graph=graph,
            order=order,
            edges=scheduling_edges(graph, order),
        )

    def run(
        self,
        requested: Optional[Iterable[str]] = None,
        include_dependencies: bool = False,
        dry_run: bool = False,
    ) -> RunReport:
        plan = self.plan(requested, include_dependencies)
        report = RunReport(
            order=plan.order,
            statuses={name: plan.packages[name].status for name in plan.order},
            dry_run=dry_run,
        )
        if dry_run:
            return report

        self.repository.reindex()
        if self.config.skip_published:
            self._mark_published(plan, report)

        executor = BuildStepExecutor(
            self.config,
            self.repository,
            self.checkout,
            self.sandbox,
            plan.graph,
            plan.packages,
            plan.order,
        )
        try:
            if self.config.jobs > 1:
                self._run_parallel(plan, executor, report)
            else:
                self._run_sequential(plan, executor, report)
        finally:
            report.statuses = {name: plan.packages[name].status for name in plan.order}
            dump_json(self.config.report_path, report.to_dict())

        if report.succeeded:
            logger.info("Built %d package(s)", len(plan.order))
        else:
            logger.error(
                "Run halted: failed %s, still pending %s",
                ", ".join(report.failed) or "none",
                ", ".join(report.pending) or "none",
            )
        return report

    def _mark_published(self, plan: BuildPlan, report: RunReport) -> None:
        for name in plan.order:
            package = plan.packages[name]
            if package.version and self.repository.contains(name, package.version):
                package.status = PackageStatus.BUILT
                report.records[name] = BuildRecord(
                    package=name,
                    status=PackageStatus.BUILT,
                    version=package.version,
                    message="already published",
                )
                logger.info("Skipping %s %s, already published", name, package.version)

    def _blocked(self, plan: BuildPlan, name: str) -> bool:
        return any(
            plan.packages[edge.dependency].status is not PackageStatus.BUILT
            for edge in plan.edges
            if edge.dependent == name
        )

    def _record_failure(self, plan: BuildPlan, report: RunReport, name: str, exc: StackbuildError) -> None:
        logger.error("%s", exc)
        report.failed.append(name)
        if report.error is None:
            report.error = str(exc)
        log_path = getattr(exc, "log_path", None)
        report.records[name] = BuildRecord(
            package=name,
            status=plan.packages[name].status,
            version=plan.packages[name].version,
            message=str(exc),
            log_path=str(log_path) if log_path else None,
        )

    def _run_sequential(self, plan: BuildPlan, executor: BuildStepExecutor, report: RunReport) -> None:
        for name in plan.order:
            package = plan.packages[name]
            if package.status is not PackageStatus.PENDING:
                continue
            if report.failed and self._blocked(plan, name):
                logger.warning("Not building %s, a dependency failed", name)
                continue
            try:
                report.records[name] = executor.execute(package)
            except StackbuildError as exc:
                self._record_failure(plan, report, name, exc)
                if not self.config.keep_going:
                    return

    def _run_parallel(self, plan: BuildPlan, executor: BuildStepExecutor, report: RunReport) -> None:
        for level in ready_sets(plan.order, plan.edges):
            members = [
                name
                for name in level
                if plan.packages[name].status is PackageStatus.PENDING and not self._blocked(plan, name)
            ]
            if not members:
                continue
            logger.info("Building ready set: %s", ", ".join(members))
            with ThreadPoolExecutor(max_workers=min(self.config.jobs, len(members))) as pool:
                futures = {pool.submit(executor.execute, plan.packages[name]): name for name in members}
                for future in as_completed(futures):
                    name = futures[future]
                    try:
                        report.records[name] = future.result()
                    except StackbuildError as exc:
                        self._record_failure(plan, report, name, exc)
            if report.failed and not self.config.keep_going:
                return

    def status(self) -> Optional[RunReport]:
        """The report written by the last run, if any."""

        if not self.config.report_path.exists():
            return None
        return RunReport.from_dict(json.loads(self.config.report_path.read_text()))
