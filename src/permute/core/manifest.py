import tomllib
from dataclasses import dataclass, field
from pathlib import Path

MANIFEST_NAME = "permute.toml"
DEFAULT_MAIN = "main.yaml"


@dataclass
class ProjectManifest:
    """
    Project manifest loaded from permute.toml.

    Names the main document, the directories holding declaration documents,
    and the host modules whose imports are trusted as opaque host code.
    """

    name: str
    version: str
    project_root: str
    module_paths: list[str] = field(default_factory=lambda: ["."])
    main: str = DEFAULT_MAIN
    host_modules: list[str] = field(default_factory=list)

    @property
    def root(self) -> Path:
        return Path(self.project_root)

    @property
    def main_path(self) -> Path:
        return self.root / self.main


def default_manifest(project_dir: Path) -> ProjectManifest:
    """Manifest used when a project has no permute.toml."""
    project_dir = project_dir.resolve()
    return ProjectManifest(name=project_dir.name, version="0.1.0", project_root=str(project_dir))


def load_manifest(path: Path) -> ProjectManifest:
    """Read ``path``; defaults apply when the file does not exist."""
    if not path.exists():
        return default_manifest(path.parent)

    data = tomllib.loads(path.read_text(encoding="utf-8"))

    project = data.get("project", {})
    modules = data.get("modules", {})
    root = path.parent.resolve()

    return ProjectManifest(
        name=project.get("name", root.name),
        version=project.get("version", "0.1.0"),
        project_root=str(root),
        module_paths=list(modules.get("paths", ["."])),
        main=project.get("main", DEFAULT_MAIN),
        host_modules=list(project.get("host_modules", [])),
    )
