"""Discovery and parsing of ``package.xml`` manifests."""

from __future__ import annotations

import logging
import os
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Set

from .errors import ManifestError
from .models import Package, SourceRef

logger = logging.getLogger(__name__)

MANIFEST_NAME = "package.xml"
IGNORE_MARKERS = ("COLCON_IGNORE", "CATKIN_IGNORE", "AMENT_IGNORE")

# Every relationship kind is read; scheduling does not distinguish between them.
DEPENDENCY_TAGS = (
    "depend",
    "build_depend",
    "build_export_depend",
    "buildtool_depend",
    "buildtool_export_depend",
    "exec_depend",
    "run_depend",
    "test_depend",
    "doc_depend",
)


def find_manifests(workspace: str | Path) -> List[Path]:
    """Return manifest paths below ``workspace`` in sorted order.

    A directory holding a manifest is a package; its subdirectories are not
    searched. Hidden directories and directories carrying an ignore marker
    are skipped.
    """

    root = Path(workspace)
    if not root.is_dir():
        raise ManifestError(root, "workspace directory does not exist")

    manifests: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        if any(marker in filenames for marker in IGNORE_MARKERS):
            dirnames[:] = []
            continue
        if MANIFEST_NAME in filenames:
            manifests.append(Path(dirpath) / MANIFEST_NAME)
            dirnames[:] = []
            continue
        dirnames[:] = sorted(name for name in dirnames if not name.startswith("."))
    return sorted(manifests)


def _element_text(element: Optional[ET.Element]) -> str:
    if element is None or element.text is None:
        return ""
    return element.text.strip()


def parse_manifest(path: str | Path) -> Package:
    """Parse one manifest into a :class:`Package` with its raw dependency names."""

    path = Path(path)
    try:
        root = ET.parse(path).getroot()
    except ET.ParseError as exc:
        raise ManifestError(path, str(exc)) from exc
    except OSError as exc:
        raise ManifestError(path, exc.strerror or str(exc)) from exc

    if root.tag != "package":
        raise ManifestError(path, f"expected root element <package>, found <{root.tag}>")

    name = _element_text(root.find("name")) or path.parent.name
    dependencies: Set[str] = set()
    for tag in DEPENDENCY_TAGS:
        for element in root.iter(tag):
            value = _element_text(element)
            if value:
                dependencies.add(value)

    return Package(
        name=name,
        path=path.parent,
        version=_element_text(root.find("version")),
        dependencies=frozenset(dependencies),
    )


def discover_packages(
    workspace: str | Path,
    sources: Optional[Mapping[str, SourceRef]] = None,
) -> Dict[str, Package]:
    """Parse every manifest in the workspace, keyed by package name."""

    sources = sources or {}
    packages: Dict[str, Package] = {}
    for manifest_path in find_manifests(workspace):
        package = parse_manifest(manifest_path)
        if package.name in packages:
            other = packages[package.name].path / MANIFEST_NAME
            raise ManifestError(
                manifest_path,
                f"package name '{package.name}' is already declared by {other}",
            )
        if package.name in sources:
            package.source = sources[package.name]
        packages[package.name] = package
        logger.debug("Discovered %s %s at %s", package.name, package.version, package.path)

    unknown = sorted(set(sources) - set(packages))
    if unknown:
        logger.warning("Source overrides for unknown packages ignored: %s", ", ".join(unknown))
    return packages


def extract_dependencies(packages: Iterable[Package]) -> Dict[str, Set[str]]:
    """Map package name to its declared (unresolved) dependency names."""

    return {package.name: set(package.dependencies) for package in packages}
