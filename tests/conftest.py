from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable, List, Optional

import pytest

from stackbuild.sandbox import BuildOutcome, BuildRequest


def manifest_xml(name: Optional[str], version: str = "1.0.0", depends: Iterable[str] = (), tag: str = "depend") -> str:
    lines = ['<?xml version="1.0"?>', '<package format="3">']
    if name is not None:
        lines.append(f"  <name>{name}</name>")
    lines.append(f"  <version>{version}</version>")
    for dependency in depends:
        lines.append(f"  <{tag}>{dependency}</{tag}>")
    lines.append("</package>")
    return "\n".join(lines) + "\n"


@pytest.fixture
def write_package(tmp_path: Path) -> Callable[..., Path]:
    workspace = tmp_path / "ws"

    def _write(name: str, depends: Iterable[str] = (), version: str = "1.0.0", subdir: str = "src") -> Path:
        package_dir = workspace / subdir / name
        package_dir.mkdir(parents=True, exist_ok=True)
        (package_dir / "package.xml").write_text(manifest_xml(name, version, depends))
        (package_dir / "CMakeLists.txt").write_text(f"project({name})\n")
        return package_dir

    return _write


class FakeSandbox:
    """Writes one ``.deb`` per build and records every request it receives."""

    def __init__(self, failing: Iterable[str] = (), empty: Iterable[str] = ()) -> None:
        self.failing = set(failing)
        self.empty = set(empty)
        self.requests: List[BuildRequest] = []

    @property
    def built(self) -> List[str]:
        return [request.package.name for request in self.requests]

    def build(self, request: BuildRequest) -> BuildOutcome:
        self.requests.append(request)
        name = request.package.name
        if name in self.failing:
            return BuildOutcome(False, output=f"{name}: compiler error", returncode=2)
        if name in self.empty:
            return BuildOutcome(True, output="nothing to package")
        assert (request.source_dir / "package.xml").exists()
        artifact = request.output_dir / f"{name}_{request.package.version}_amd64.deb"
        artifact.write_text(f"{name} {request.package.version}\n")
        return BuildOutcome(True, files=[artifact], output=f"built {name}")


@pytest.fixture
def sandbox() -> FakeSandbox:
    return FakeSandbox()
