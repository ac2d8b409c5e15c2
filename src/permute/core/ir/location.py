"""Source location tracking for IR nodes.

Records the document and the field path inside it where a declaration
or value was defined, so every diagnostic can point back at its origin.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class SourceLocation(BaseModel):
    """Position of a construct inside a document.

    Attributes:
        document: Namespace of the document (e.g. ``io::Csv``)
        path: Field path segments inside the document
    """

    document: str
    path: tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True)

    def child(self, *segments: str | int) -> SourceLocation:
        """Location of a nested field."""
        return SourceLocation(
            document=self.document,
            path=self.path + tuple(str(s) for s in segments),
        )

    def __str__(self) -> str:
        if not self.path:
            return self.document
        return f"{self.document}: {'.'.join(self.path)}"
