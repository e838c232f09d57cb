from __future__ import annotations

import json
import sys
from pathlib import Path

import yaml

from stackbuild.run import EXIT_CONFIGURATION, EXIT_FAILED, EXIT_OK, main

WRITE_DEB = "import pathlib, sys; pathlib.Path(sys.argv[1], sys.argv[2] + '.deb').write_text(sys.argv[2])"


def _configure(workspace: Path, command: list) -> None:
    (workspace / "stackbuild.yaml").write_text(yaml.safe_dump({"sandbox": {"command": command}}))


def _stack(write_package) -> Path:
    write_package("msgs")
    write_package("core", depends=["msgs"])
    return write_package("app", depends=["core"]).parent.parent


def test_order_prints_build_order(write_package, capsys) -> None:
    workspace = _stack(write_package)
    assert main(["--workspace", str(workspace), "order"]) == EXIT_OK
    assert capsys.readouterr().out.split() == ["msgs", "core", "app"]


def test_order_levels(write_package, capsys) -> None:
    workspace = _stack(write_package)
    assert main(["--workspace", str(workspace), "order", "--levels", "app", "--with-deps"]) == EXIT_OK
    assert capsys.readouterr().out.splitlines() == ["msgs", "core", "app"]


def test_build_succeeds_and_indexes_artifacts(write_package, capsys) -> None:
    workspace = _stack(write_package)
    _configure(workspace, [sys.executable, "-c", WRITE_DEB, "{output}", "{package}"])

    assert main(["--workspace", str(workspace), "build"]) == EXIT_OK
    index = json.loads((workspace / ".stackbuild" / "repo" / "index.json").read_text())
    assert sorted(item["name"] for item in index["artifacts"]) == ["app", "core", "msgs"]

    assert main(["--workspace", str(workspace), "status"]) == EXIT_OK
    assert json.loads(capsys.readouterr().out)["succeeded"] is True


def test_build_failure_exits_non_zero(write_package, capsys) -> None:
    workspace = _stack(write_package)
    _configure(workspace, [sys.executable, "-c", "import sys; sys.exit(1)"])

    assert main(["--workspace", str(workspace), "build"]) == EXIT_FAILED
    err = capsys.readouterr().err
    assert "Build of msgs failed" in err
    assert "core, app" in err


def test_cycle_exits_with_configuration_status(write_package, capsys) -> None:
    write_package("a", depends=["b"])
    workspace = write_package("b", depends=["a"]).parent.parent
    assert main(["--workspace", str(workspace), "build"]) == EXIT_CONFIGURATION
    assert "cycle" in capsys.readouterr().err


def test_malformed_manifest_exits_with_configuration_status(write_package, capsys) -> None:
    package_dir = write_package("broken")
    (package_dir / "package.xml").write_text("<package>")
    assert main(["--workspace", str(package_dir.parent.parent), "order"]) == EXIT_CONFIGURATION
    assert "package.xml" in capsys.readouterr().err


def test_dry_run_does_not_need_a_sandbox(write_package, capsys) -> None:
    workspace = _stack(write_package)
    assert main(["--workspace", str(workspace), "build", "--dry-run", "core", "--with-deps"]) == EXIT_OK
    assert capsys.readouterr().out.split() == ["msgs", "core"]


def test_build_without_sandbox_command_is_a_configuration_error(write_package) -> None:
    workspace = _stack(write_package)
    assert main(["--workspace", str(workspace), "build"]) == EXIT_CONFIGURATION


def test_missing_sandbox_binary_exits_non_zero(write_package, capsys) -> None:
    workspace = _stack(write_package)
    _configure(workspace, ["no-such-builder-xyz", "{package}"])

    assert main(["--workspace", str(workspace), "build"]) == EXIT_FAILED
    assert "Build of msgs failed" in capsys.readouterr().err
