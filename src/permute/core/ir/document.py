"""
Document-level IR.

A document is one declaration file. Its header selects a kind; the kind
decides which sections are meaningful:

- source / sink / transform / struct: a parameter schema (and, for
  sources, a record shape)
- feeder: a preset configuration for a sink
- main: named bindings and pipes
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .declarations import (
    CheckDecl,
    ExtensionDecl,
    FieldDecl,
    FunctionDecl,
    ImplDecl,
    TraitDecl,
    TypeDecl,
)
from .location import SourceLocation
from .types import TypeExpr


class DocumentKind(StrEnum):
    """Document kinds selected by the header."""

    MAIN = "main"
    SOURCE = "source"
    SINK = "sink"
    TRANSFORM = "transform"
    FEEDER = "feeder"
    STRUCT = "struct"


class ImportDecl(BaseModel):
    """
    A ``use`` entry.

    Examples:
        - ImportDecl(path=("transform", "EmploymentRecordExt"))
        - ImportDecl(path=("transform",), glob=True) → transform::*
        - ImportDecl(path=("chrono", "NaiveDate")) → host import
    """

    path: tuple[str, ...]
    alias: str | None = None
    glob: bool = False
    location: SourceLocation | None = None

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        text = "::".join(self.path)
        if self.glob:
            text += "::*"
        if self.alias:
            text += f" as {self.alias}"
        return text

    @property
    def visible_name(self) -> str:
        return self.alias or self.path[-1]


class SchemaDecl(BaseModel):
    """
    Parameter schema defined by a document.

    ``name`` is the document type, which shares the document namespace.
    ``output`` is the type a binding gets when it applies this schema.
    ``record`` is the per-item record type of a source.
    """

    name: str
    kind: DocumentKind
    params: tuple[FieldDecl, ...] = ()
    checks: tuple[CheckDecl, ...] = ()
    record: TypeExpr | None = None
    output: TypeExpr | None = None
    location: SourceLocation | None = None

    model_config = ConfigDict(frozen=True)

    def param(self, name: str) -> FieldDecl | None:
        for p in self.params:
            if p.name == name:
                return p
        return None


class FeederDecl(BaseModel):
    """Preset configuration a feeder provides for a sink."""

    sink: str = Field(description="Sink document type the preset applies to")
    config: dict[str, Any] = Field(default_factory=dict)
    location: SourceLocation | None = None

    model_config = ConfigDict(frozen=True)


class BindingDecl(BaseModel):
    """
    A named binding in a main document.

    Exactly one of ``fields`` (schema application) and ``host_code``
    (opaque host construction code) is set.
    """

    name: str
    type_name: str
    fields: dict[str, Any] | None = None
    host_code: str | None = None
    index: int = 0
    location: SourceLocation | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_host(self) -> bool:
        return self.host_code is not None


class PipeDecl(BaseModel):
    """A pipe ``a -> b -> c``."""

    stages: tuple[str, ...]
    location: SourceLocation | None = None

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return " -> ".join(self.stages)


class ProcessDecl(BaseModel):
    """The process declared by a main document."""

    name: str
    bindings: tuple[BindingDecl, ...] = ()
    pipes: tuple[PipeDecl, ...] = ()

    model_config = ConfigDict(frozen=True)


class DocumentIR(BaseModel):
    """One loaded document."""

    namespace: str
    kind: DocumentKind
    version: str = "0.1"
    file: str | None = None
    explain: str | None = None
    imports: tuple[ImportDecl, ...] = ()
    types: tuple[TypeDecl, ...] = ()
    traits: tuple[TraitDecl, ...] = ()
    impls: tuple[ImplDecl, ...] = ()
    extensions: tuple[ExtensionDecl, ...] = ()
    functions: tuple[FunctionDecl, ...] = ()
    doc_type: TypeDecl | None = None
    schema_decl: SchemaDecl | None = None
    feeder: FeederDecl | None = None
    process: ProcessDecl | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def location(self) -> SourceLocation:
        return SourceLocation(document=self.namespace)
