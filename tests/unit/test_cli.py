"""Tests for CLI commands."""

from __future__ import annotations

import json
import shutil
from pathlib import Path

import pytest
from typer.testing import CliRunner

from permute import __version__
from permute.cli import app


@pytest.fixture
def cli_runner() -> CliRunner:
    """Return a CLI test runner."""
    return CliRunner()


@pytest.fixture
def broken_project(tmp_path: Path, sample_dir: Path) -> Path:
    """Sample project whose main document references an unknown binding."""
    project = tmp_path / "broken"
    shutil.copytree(sample_dir, project)
    main = project / "main.yaml"
    main.write_text(main.read_text(encoding="utf-8").replace("each: er", "each: ee"), encoding="utf-8")
    return project


class TestVersion:
    def test_version(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.stdout.strip() == f"permute {__version__}"


class TestCheck:
    def test_sample_project(self, cli_runner: CliRunner, sample_dir: Path) -> None:
        result = cli_runner.invoke(app, ["check", str(sample_dir)])
        assert result.exit_code == 0, result.stdout
        assert "OK" in result.stdout
        assert "2 binding(s)" in result.stdout

    def test_reports_diagnostics(self, cli_runner: CliRunner, broken_project: Path) -> None:
        result = cli_runner.invoke(app, ["check", str(broken_project)])
        assert result.exit_code == 1
        assert "[UnresolvedReference]" in result.stdout
        assert "1 error(s)" in result.stdout


class TestPlan:
    def test_json(self, cli_runner: CliRunner, sample_dir: Path) -> None:
        result = cli_runner.invoke(app, ["plan", str(sample_dir), "--json"])
        assert result.exit_code == 0, result.stdout
        # Warnings about trusted host imports may precede the document
        plan = json.loads(result.stdout[result.stdout.index("{\n") :])
        assert [s["name"] for s in plan["steps"]] == ["er", "sink"]
        assert plan["steps"][1]["plan"]["feeder"] == "CsvFeed"
        assert plan["pipes"] == [["er", "sink"]]

    def test_table(self, cli_runner: CliRunner, sample_dir: Path) -> None:
        result = cli_runner.invoke(app, ["plan", str(sample_dir)])
        assert result.exit_code == 0, result.stdout
        assert "pipe: er -> sink" in result.stdout

    def test_broken(self, cli_runner: CliRunner, broken_project: Path) -> None:
        result = cli_runner.invoke(app, ["plan", str(broken_project), "--json"])
        assert result.exit_code == 1


class TestResolve:
    def test_found(self, cli_runner: CliRunner, sample_dir: Path) -> None:
        result = cli_runner.invoke(
            app, ["resolve", "Source<Integer>", "Iterator", "--project", str(sample_dir)]
        )
        assert result.exit_code == 0, result.stdout
        assert "impl:" in result.stdout

    def test_help_example_resolves(self, cli_runner: CliRunner, sample_dir: Path) -> None:
        help_text = cli_runner.invoke(app, ["resolve", "--help"]).stdout
        assert "'Eq'" in help_text
        result = cli_runner.invoke(app, ["resolve", "Integer", "Eq", "-p", str(sample_dir)])
        assert result.exit_code == 0, result.stdout
        assert "impl:" in result.stdout

    def test_not_implemented(self, cli_runner: CliRunner, sample_dir: Path) -> None:
        result = cli_runner.invoke(app, ["resolve", "Integer", "Iterator", "-p", str(sample_dir)])
        assert result.exit_code == 1

    def test_invalid_type(self, cli_runner: CliRunner, sample_dir: Path) -> None:
        result = cli_runner.invoke(app, ["resolve", "Vec<", "Iterator", "-p", str(sample_dir)])
        assert result.exit_code == 1
