from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Iterable, List, Protocol, Set

from .errors import CheckoutError
from .models import Package
from .utils import CommandError, ensure_directory, run_command

logger = logging.getLogger(__name__)


class SourceCheckout(Protocol):
    """Supplies a writable source tree for a package at its declared revision."""

    def checkout(self, package: Package, destination: Path) -> Path:
        ...


class LocalCheckout:
    """Copy the package directory from the workspace as-is.

    ``.git``, the ``exclude`` directories and the destination itself are not
    copied, so a package at the workspace root does not copy the run's state.
    """

    def __init__(self, exclude: Iterable[str | Path] = ()) -> None:
        self.exclude = [Path(path) for path in exclude]

    def checkout(self, package: Package, destination: Path) -> Path:
        target = Path(destination) / package.name
        if target.exists():
            shutil.rmtree(target)
        excluded = {path.resolve() for path in self.exclude} | {Path(destination).resolve()}

        def ignore(directory: str, names: List[str]) -> Set[str]:
            return {
                name
                for name in names
                if name == ".git" or (Path(directory) / name).resolve() in excluded
            }

        try:
            shutil.copytree(package.path, target, symlinks=True, ignore=ignore)
        except (OSError, shutil.Error) as exc:
            raise CheckoutError(f"Cannot copy sources of {package.name} from {package.path}: {exc}") from exc
        return target


class GitCheckout:
    """Clone the package's repository and check out its declared ref.

    Without an explicit URL the repository containing the package directory
    is cloned, so uncommitted changes in the workspace are not built.
    """

    def __init__(self, default_ref: str | None = None) -> None:
        self.default_ref = default_ref

    def _toplevel(self, package: Package) -> Path:
        result = run_command(["git", "rev-parse", "--show-toplevel"], cwd=package.path)
        return Path(result.stdout.strip())

    def checkout(self, package: Package, destination: Path) -> Path:
        clone_dir = Path(destination) / package.name
        if clone_dir.exists():
            shutil.rmtree(clone_dir)
        ensure_directory(clone_dir.parent)
        ref = package.source.ref or self.default_ref
        try:
            if package.source.url:
                url = package.source.url
                subdir = Path(".")
            else:
                toplevel = self._toplevel(package)
                url = str(toplevel)
                subdir = package.path.resolve().relative_to(toplevel.resolve())
            run_command(["git", "clone", "--quiet", url, str(clone_dir)])
            if ref:
                run_command(["git", "checkout", "--quiet", ref], cwd=clone_dir)
        except CommandError as exc:
            raise CheckoutError(
                f"Checkout of {package.name} at {ref or 'HEAD'} failed: {exc.stderr.strip() or exc}"
            ) from exc
        except (OSError, ValueError) as exc:
            raise CheckoutError(f"Checkout of {package.name} at {ref or 'HEAD'} failed: {exc}") from exc
        logger.debug("Checked out %s at %s into %s", package.name, ref or "HEAD", clone_dir)

        tree = clone_dir / subdir
        if not tree.is_dir():
            raise CheckoutError(f"Checkout of {package.name} does not contain {subdir}")
        return tree
