from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional

from .config import RunConfig, load_config
from .errors import ConfigurationError, StackbuildError
from .pipeline import BuildPipeline
from .repository import IncrementalRepository
from .scheduler import ready_sets

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIGURATION = 2


def _load(args: argparse.Namespace) -> RunConfig:
    config = load_config(args.workspace, args.config)
    if getattr(args, "jobs", None) is not None:
        config.jobs = args.jobs
        if config.jobs < 1:
            raise ConfigurationError(f"--jobs must be at least 1, got {config.jobs}")
    for flag in ("keep_going", "skip_published", "keep_workdirs"):
        if getattr(args, flag, False):
            setattr(config, flag, True)
    return config


def _requested(args: argparse.Namespace) -> Optional[list[str]]:
    return list(args.packages) if args.packages else None


def cmd_build(args: argparse.Namespace) -> int:
    pipeline = BuildPipeline(_load(args))
    report = pipeline.run(_requested(args), include_dependencies=args.with_deps, dry_run=args.dry_run)
    if args.dry_run:
        for name in report.order:
            print(name)
        return EXIT_OK
    if not report.succeeded:
        print(f"error: {report.error}", file=sys.stderr)
        if report.pending:
            print(f"not built: {', '.join(report.pending)}", file=sys.stderr)
        return EXIT_FAILED
    return EXIT_OK


def cmd_order(args: argparse.Namespace) -> int:
    pipeline = BuildPipeline(_load(args))
    plan = pipeline.plan(_requested(args), include_dependencies=args.with_deps)
    if args.levels:
        for level in ready_sets(plan.order, plan.edges):
            print(" ".join(level))
    else:
        for name in plan.order:
            print(name)
    return EXIT_OK


def cmd_graph(args: argparse.Namespace) -> int:
    pipeline = BuildPipeline(_load(args))
    plan = pipeline.plan()
    print(json.dumps(plan.graph.to_dict(), indent=2))
    return EXIT_OK


def cmd_index(args: argparse.Namespace) -> int:
    config = _load(args)
    repository = IncrementalRepository(config.repository_dir)
    entries = repository.reindex()
    for entry in entries:
        print(f"{entry.name}\t{entry.version}\t{entry.digest[:12]}")
    print(repository.as_install_source(), file=sys.stderr)
    return EXIT_OK


def cmd_status(args: argparse.Namespace) -> int:
    report = BuildPipeline(_load(args)).status()
    if report is None:
        print("No run recorded", file=sys.stderr)
        return EXIT_FAILED
    print(json.dumps(report.to_dict(), indent=2))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Build interdependent packages in dependency order")
    parser.add_argument(
        "--workspace",
        default=".",
        help="Workspace root containing the package manifests.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Run configuration file (defaults to stackbuild.yaml in the workspace).",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_cmd = subparsers.add_parser("build", help="Build packages in dependency order")
    build_cmd.add_argument("packages", nargs="*", help="Packages to build (default: all)")
    build_cmd.add_argument("--with-deps", action="store_true", help="Also build in-set dependencies")
    build_cmd.add_argument("-j", "--jobs", type=int, default=None, help="Build ready sets concurrently")
    build_cmd.add_argument("--keep-going", action="store_true", help="Continue with unaffected packages")
    build_cmd.add_argument("--skip-published", action="store_true", help="Skip already published versions")
    build_cmd.add_argument("--keep-workdirs", action="store_true", help="Keep per-package work directories")
    build_cmd.add_argument("--dry-run", action="store_true", help="Print the build order only")
    build_cmd.set_defaults(func=cmd_build)

    order_parser = subparsers.add_parser("order", help="Print the build order")
    order_parser.add_argument("packages", nargs="*")
    order_parser.add_argument("--with-deps", action="store_true")
    order_parser.add_argument("--levels", action="store_true", help="Print one ready set per line")
    order_parser.set_defaults(func=cmd_order)

    graph_parser = subparsers.add_parser("graph", help="Print the dependency graph as JSON")
    graph_parser.set_defaults(func=cmd_graph)

    index_parser = subparsers.add_parser("index", help="Regenerate and list the repository index")
    index_parser.set_defaults(func=cmd_index)

    status_parser = subparsers.add_parser("status", help="Show the report of the last run")
    status_parser.set_defaults(func=cmd_status)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    try:
        return args.func(args)
    except ConfigurationError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIGURATION
    except (StackbuildError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_FAILED


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
