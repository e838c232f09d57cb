from __future__ import annotations

from pathlib import Path

import pytest

from stackbuild.config import RunConfig, load_config
from stackbuild.errors import ConfigurationError
from stackbuild.models import SourceRef


def test_defaults_live_under_the_workspace(tmp_path: Path) -> None:
    config = load_config(tmp_path)
    assert config.workspace == tmp_path.resolve()
    assert config.state_dir == tmp_path.resolve() / ".stackbuild"
    assert config.repository_dir == config.state_dir / "repo"
    assert config.logs_dir == config.state_dir / "logs"
    assert config.jobs == 1
    assert config.sandbox.artifact_patterns == ["*.deb"]
    assert config.report_path == config.state_dir / "last_run.json"


def test_yaml_configuration_is_loaded(tmp_path: Path) -> None:
    (tmp_path / "stackbuild.yaml").write_text(
        """
repository_dir: out/repo
external_sources:
  - deb http://deb.debian.org/debian bookworm main
sandbox:
  command: docker run --rm -v {source}:/src -v {output}:/out builder
  artifact_patterns: ["*.deb", "*.ddeb"]
  timeout_s: 3600
packages:
  core:
    url: https://example.com/core.git
    ref: release/2.0
jobs: 4
keep_going: true
checkout: git
"""
    )
    config = load_config(tmp_path)
    assert config.repository_dir == tmp_path.resolve() / "out" / "repo"
    assert config.external_sources == ["deb http://deb.debian.org/debian bookworm main"]
    assert config.sandbox.command[:2] == ["docker", "run"]
    assert config.sandbox.artifact_patterns == ["*.deb", "*.ddeb"]
    assert config.sandbox.timeout_s == 3600
    assert config.packages == {"core": SourceRef(url="https://example.com/core.git", ref="release/2.0")}
    assert config.jobs == 4
    assert config.keep_going
    assert config.checkout == "git"


def test_json_configuration_is_accepted(tmp_path: Path) -> None:
    path = tmp_path / "custom.json"
    path.write_text('{"jobs": 2, "sandbox": {"command": ["make", "deb"]}}')
    config = load_config(tmp_path, path)
    assert config.jobs == 2
    assert config.sandbox.command == ["make", "deb"]


def test_unknown_keys_are_rejected(tmp_path: Path) -> None:
    (tmp_path / "stackbuild.yaml").write_text("jobz: 3\n")
    with pytest.raises(ConfigurationError, match="jobz"):
        load_config(tmp_path)


def test_invalid_values_are_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        RunConfig(workspace=tmp_path, jobs=0)
    with pytest.raises(ConfigurationError):
        RunConfig(workspace=tmp_path, checkout="svn")


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        load_config(tmp_path, tmp_path / "missing.yaml")
