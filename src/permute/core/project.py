"""
Project loading utilities.

Provides convenient functions for the common load → store → bind pipeline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .binder import PipelineBinder
from .document_loader import load_documents, namespace_for
from .errors import Diagnostic, PermuteError
from .fileset import discover_documents, document_roots
from .ir.document import DocumentIR
from .ir.plan import ExecutionGraph
from .manifest import MANIFEST_NAME, ProjectManifest, load_manifest
from .store import Store, load

logger = logging.getLogger(__name__)


@dataclass
class Project:
    """A loaded project: its manifest, its store and its main document."""

    manifest: ProjectManifest
    store: Store
    main: str | None

    @property
    def main_namespace(self) -> str:
        if self.main is not None:
            return self.main
        return "::".join(Path(self.manifest.main).with_suffix("").parts)

    def binder(self) -> PipelineBinder:
        return PipelineBinder(self.store)

    def bind(self) -> ExecutionGraph:
        """Bind the main document.

        Raises:
            BindError: If the project has no main document or it does not bind
        """
        return self.binder().bind(self.main_namespace)


def _read_documents(manifest: ProjectManifest) -> tuple[list[DocumentIR], str | None]:
    documents: list[DocumentIR] = []
    seen: set[Path] = set()
    main_path = manifest.main_path.resolve()
    main: str | None = None
    for base in document_roots(manifest):
        files = [p for p in discover_documents(base) if p not in seen]
        seen.update(files)
        documents.extend(load_documents(files, base))
        if main is None and main_path in files:
            main = namespace_for(main_path, base)
    return documents, main


def load_project(
    project_dir: Path | str,
    manifest_path: Path | str | None = None,
) -> Project:
    """
    Load a Permute project.

    This is a convenience function that performs the common pipeline:
    1. Load manifest (permute.toml, defaults when absent)
    2. Discover YAML documents under the module paths
    3. Parse documents
    4. Build the declaration store

    Args:
        project_dir: Path to the project root directory
        manifest_path: Optional explicit path to permute.toml.
                      If not provided, looks for permute.toml in project_dir.

    Returns:
        The loaded project, ready to bind

    Raises:
        LoadError: If any document fails to parse or the declarations conflict

    Example:
        >>> from permute.core.project import load_project
        >>> project = load_project("./sample")
        >>> graph = project.bind()
        >>> print(graph.order)
    """
    project_dir = Path(project_dir).resolve()

    if manifest_path is None:
        manifest_path = project_dir / MANIFEST_NAME
    else:
        manifest_path = Path(manifest_path).resolve()

    manifest = load_manifest(manifest_path)
    documents, main = _read_documents(manifest)
    store = load(documents, host_modules=manifest.host_modules)
    if main is None:
        logger.warning(f"Main document {manifest.main} not found in project '{manifest.name}'")
    return Project(manifest=manifest, store=store, main=main)


def bind_project(project_dir: Path | str, manifest_path: Path | str | None = None) -> ExecutionGraph:
    """Load a project and bind its main document."""
    return load_project(project_dir, manifest_path).bind()


def check_project(
    project_dir: Path | str, manifest_path: Path | str | None = None
) -> tuple[ExecutionGraph | None, list[Diagnostic]]:
    """Load, validate and bind a project, collecting every diagnostic.

    Returns:
        The execution graph (``None`` on errors) and all diagnostics found.
    """
    try:
        project = load_project(project_dir, manifest_path)
    except PermuteError as e:
        return None, list(e.diagnostics)
    return project.binder().collect(project.main_namespace)
