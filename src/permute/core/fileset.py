from pathlib import Path

from .manifest import ProjectManifest

DOCUMENT_SUFFIXES = (".yaml", ".yml")


def document_roots(manifest: ProjectManifest) -> list[Path]:
    roots: list[Path] = []
    for rel in manifest.module_paths:
        base = (manifest.root / rel).resolve()
        if base.exists() and base not in roots:
            roots.append(base)
    return roots


def discover_documents(base: Path) -> list[Path]:
    files: list[Path] = []
    for suffix in DOCUMENT_SUFFIXES:
        files.extend(p for p in base.rglob(f"*{suffix}") if p.is_file())
    return sorted(set(files))
