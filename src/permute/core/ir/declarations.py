"""
Declaration types for Permute IR.

Types, traits, implementations, named extensions and free functions as
they appear in documents. The loader produces these with names as written.
The store rewrites every type reference to its qualified form.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .location import SourceLocation
from .types import NamedType, TypeExpr, TypeParam


class GenericParam(BaseModel):
    """A generic parameter: ``T`` or ``const Precision = Integer``."""

    name: str
    is_const: bool = False
    const_type: TypeExpr | None = None

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        if self.is_const:
            return f"const {self.name} = {self.const_type}"
        return self.name

    def as_type(self) -> TypeParam:
        return TypeParam(name=self.name)


class CheckDecl(BaseModel):
    """A boolean predicate over the bound value (``self``)."""

    define: str = Field(description="Expression source")
    explain: str | None = None
    location: SourceLocation | None = None

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return self.define


class FieldDecl(BaseModel):
    """
    A schema parameter, struct field or record column.

    ``default`` holds the raw document value. A string default is an
    expression. Any other scalar, list or mapping is a literal value.
    """

    name: str
    type: TypeExpr
    has_default: bool = False
    default: Any = None
    checks: tuple[CheckDecl, ...] = ()
    explain: str | None = None
    private: bool = False
    location: SourceLocation | None = None

    model_config = ConfigDict(frozen=True)


class ParamDecl(BaseModel):
    """A method parameter other than the receiver."""

    name: str
    type: TypeExpr

    model_config = ConfigDict(frozen=True)


class Receiver(StrEnum):
    """How a method takes its receiver."""

    NONE = "none"
    SELF = "self"
    MUT_SELF = "mut self"


class MethodDecl(BaseModel):
    """A method signature with an optional body."""

    name: str
    generics: tuple[GenericParam, ...] = ()
    receiver: Receiver = Receiver.NONE
    params: tuple[ParamDecl, ...] = ()
    returns: TypeExpr | None = None
    is_const: bool = False
    is_extern: bool = False
    body: str | None = None
    checks: tuple[CheckDecl, ...] = ()
    explain: str | None = None
    location: SourceLocation | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def arity(self) -> int:
        """Call arity, counting the receiver."""
        return len(self.params) + (0 if self.receiver == Receiver.NONE else 1)

    @property
    def is_required(self) -> bool:
        """A trait method without a default body."""
        return self.body is None and not self.is_extern

    def signature(self) -> str:
        prefix = "extern " if self.is_extern else ""
        prefix += "const " if self.is_const else ""
        params: list[str] = []
        if self.receiver != Receiver.NONE:
            params.append(self.receiver.value)
        params.extend(f"{p.name} = {p.type}" for p in self.params)
        ret = f" -> {self.returns}" if self.returns is not None else ""
        return f"{prefix}fn {self.name}({', '.join(params)}){ret}"


class TypeKind(StrEnum):
    """Kinds of declared types."""

    EXTERN = "extern"
    STRUCT = "struct"
    ENUM = "enum"
    TRANSPARENT = "transparent"


class VariantDecl(BaseModel):
    """Enum variant, optionally carrying payload types."""

    name: str
    payload: tuple[TypeExpr, ...] = ()

    model_config = ConfigDict(frozen=True)


class TypeDecl(BaseModel):
    """A declared type."""

    name: str
    kind: TypeKind
    generics: tuple[GenericParam, ...] = ()
    inner: TypeExpr | None = None
    fields: tuple[FieldDecl, ...] = ()
    variants: tuple[VariantDecl, ...] = ()
    checks: tuple[CheckDecl, ...] = ()
    explain: str | None = None
    namespace: str = ""
    location: SourceLocation | None = None

    model_config = ConfigDict(frozen=True)

    def as_type(self) -> NamedType:
        """The declared type applied to its own generic parameters."""
        args = tuple(g.as_type() for g in self.generics if not g.is_const)
        named = tuple(
            sorted(
                ((g.name, g.as_type()) for g in self.generics if g.is_const),
                key=lambda kv: kv[0],
            )
        )
        return NamedType(name=self.name, args=args, named=named)

    def field(self, name: str) -> FieldDecl | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None


class AssocTypeDecl(BaseModel):
    """Associated type declared by a trait."""

    name: str
    explain: str | None = None

    model_config = ConfigDict(frozen=True)


class SpecializationDecl(BaseModel):
    """
    The ``specialization`` block of a const trait.

    Names the general trait the const trait derives and carries the
    delegating method bodies. ``assoc`` maps the general trait's
    associated types, typically to ``super::<Name>``.
    """

    trait_ref: NamedType
    assoc: tuple[tuple[str, TypeExpr], ...] = ()
    methods: tuple[MethodDecl, ...] = ()

    model_config = ConfigDict(frozen=True)


class WhereBound(BaseModel):
    """``T: Bound`` or ``T: ~Bound`` (requires the const-specialized form)."""

    subject: TypeExpr
    bound: NamedType
    const_required: bool = False

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"{self.subject}: {'~' if self.const_required else ''}{self.bound}"


class TraitDecl(BaseModel):
    """A declared trait."""

    name: str
    generics: tuple[GenericParam, ...] = ()
    assoc_types: tuple[AssocTypeDecl, ...] = ()
    methods: tuple[MethodDecl, ...] = ()
    supertraits: tuple[NamedType, ...] = ()
    specialization: SpecializationDecl | None = None
    explain: str | None = None
    namespace: str = ""
    location: SourceLocation | None = None

    model_config = ConfigDict(frozen=True)

    def method(self, name: str) -> MethodDecl | None:
        for m in self.methods:
            if m.name == name:
                return m
        return None


class ImplDecl(BaseModel):
    """
    A trait implementation (``trait_ref`` set) or an inherent impl block.

    ``index`` is the declaration position inside its namespace and gives
    impls a stable identity for deterministic ordering.
    """

    target: TypeExpr
    trait_ref: NamedType | None = None
    generics: tuple[GenericParam, ...] = ()
    where: tuple[WhereBound, ...] = ()
    assoc: tuple[tuple[str, TypeExpr], ...] = ()
    methods: tuple[MethodDecl, ...] = ()
    explain: str | None = None
    namespace: str = ""
    index: int = 0
    synthesized: bool = False
    location: SourceLocation | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def key(self) -> tuple[str, int]:
        return (self.namespace, self.index)

    @property
    def is_blanket(self) -> bool:
        """Target is a bare generic parameter."""
        return isinstance(self.target, TypeParam)

    @property
    def generic_names(self) -> frozenset[str]:
        return frozenset(g.name for g in self.generics)

    def method(self, name: str) -> MethodDecl | None:
        for m in self.methods:
            if m.name == name:
                return m
        return None

    def __str__(self) -> str:
        generics = f"<{', '.join(str(g) for g in self.generics)}>" if self.generics else ""
        if self.trait_ref is None:
            return f"impl{generics} {self.target}"
        return f"impl{generics} {self.trait_ref} for {self.target}"


class ExtensionDecl(BaseModel):
    """Named extension: ``impl Type as Name``."""

    name: str
    target: TypeExpr
    generics: tuple[GenericParam, ...] = ()
    methods: tuple[MethodDecl, ...] = ()
    namespace: str = ""
    location: SourceLocation | None = None

    model_config = ConfigDict(frozen=True)

    def method(self, name: str) -> MethodDecl | None:
        for m in self.methods:
            if m.name == name:
                return m
        return None


class FunctionDecl(BaseModel):
    """Free function such as ``extern const fn panic``."""

    name: str
    method: MethodDecl
    namespace: str = ""
    location: SourceLocation | None = None

    model_config = ConfigDict(frozen=True)
