"""Tests for project manifests, document discovery and project loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from permute.core.errors import BindError, ErrorCode
from permute.core.fileset import discover_documents, document_roots
from permute.core.manifest import DEFAULT_MAIN, load_manifest
from permute.core.project import bind_project, check_project, load_project

SINK = """\
permute:
  type: sink
params:
  each: Iterator<Item = Integer>
"""

MAIN = """\
permute:
  type: main
name: Tiny
cfg:
  nums:
    Source<Integer>: read_numbers()
  total:
    Sum:
      each: {ref}
pipe:
  - nums -> total
"""


def write_project(root: Path, ref: str = "nums", manifest: str | None = None) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    (root / "Sum.yaml").write_text(SINK, encoding="utf-8")
    (root / "main.yaml").write_text(MAIN.format(ref=ref), encoding="utf-8")
    if manifest is not None:
        (root / "permute.toml").write_text(manifest, encoding="utf-8")
    return root


class TestManifest:
    def test_defaults_without_file(self, tmp_path: Path) -> None:
        manifest = load_manifest(tmp_path / "permute.toml")
        assert manifest.name == tmp_path.name
        assert manifest.main == DEFAULT_MAIN
        assert manifest.module_paths == ["."]
        assert manifest.host_modules == []

    def test_sample_manifest(self, sample_dir: Path) -> None:
        manifest = load_manifest(sample_dir / "permute.toml")
        assert manifest.name == "sample"
        assert manifest.host_modules == ["chrono", "ee_to_csv"]
        assert manifest.main_path == sample_dir.resolve() / "main.yaml"

    def test_custom_paths(self, tmp_path: Path) -> None:
        (tmp_path / "permute.toml").write_text(
            '[project]\nname = "x"\nmain = "procs/run.yaml"\n\n[modules]\npaths = ["decls", "procs"]\n',
            encoding="utf-8",
        )
        manifest = load_manifest(tmp_path / "permute.toml")
        assert manifest.module_paths == ["decls", "procs"]
        assert manifest.main_path == tmp_path.resolve() / "procs" / "run.yaml"


class TestFileset:
    def test_roots_skip_missing_and_duplicates(self, tmp_path: Path) -> None:
        (tmp_path / "decls").mkdir()
        (tmp_path / "permute.toml").write_text(
            '[modules]\npaths = ["decls", "decls", "missing"]\n', encoding="utf-8"
        )
        manifest = load_manifest(tmp_path / "permute.toml")
        assert document_roots(manifest) == [(tmp_path / "decls").resolve()]

    def test_discover_documents(self, tmp_path: Path) -> None:
        (tmp_path / "io").mkdir()
        (tmp_path / "io" / "Csv.yml").write_text("", encoding="utf-8")
        (tmp_path / "main.yaml").write_text("", encoding="utf-8")
        (tmp_path / "notes.txt").write_text("", encoding="utf-8")
        found = discover_documents(tmp_path)
        assert [p.relative_to(tmp_path).as_posix() for p in found] == ["io/Csv.yml", "main.yaml"]


class TestProject:
    def test_load_sample(self, sample_dir: Path) -> None:
        project = load_project(sample_dir)
        assert project.main == "main"
        assert "CsvFeed" in project.store.feeders
        assert project.store.host_modules == frozenset({"chrono", "ee_to_csv"})

    def test_bind_project(self, tmp_path: Path) -> None:
        graph = bind_project(write_project(tmp_path / "tiny"))
        assert graph.process == "Tiny"
        assert graph.order == ["nums", "total"]

    def test_check_reports_bind_errors(self, tmp_path: Path) -> None:
        graph, diagnostics = check_project(write_project(tmp_path / "tiny", ref="missing"))
        assert graph is None
        assert [d.code for d in diagnostics] == [ErrorCode.UNRESOLVED_REFERENCE]

    def test_check_reports_load_errors(self, tmp_path: Path) -> None:
        root = write_project(tmp_path / "tiny")
        (root / "broken.yaml").write_text("permute: [unclosed\n", encoding="utf-8")
        graph, diagnostics = check_project(root)
        assert graph is None
        assert [d.location.document for d in diagnostics] == ["broken"]

    def test_missing_main_document(self, tmp_path: Path) -> None:
        root = write_project(tmp_path / "tiny", manifest='[project]\nmain = "other.yaml"\n')
        project = load_project(root)
        assert project.main is None
        assert project.main_namespace == "other"
        with pytest.raises(BindError) as exc:
            project.bind()
        assert exc.value.codes == [ErrorCode.UNRESOLVED_REFERENCE]

    def test_explicit_manifest_path(self, tmp_path: Path) -> None:
        root = write_project(tmp_path / "tiny")
        manifest = tmp_path / "alt.toml"
        manifest.write_text('[project]\nname = "alt"\n', encoding="utf-8")
        project = load_project(root, manifest)
        assert project.manifest.name == "alt"
