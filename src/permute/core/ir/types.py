"""
Type expressions for Permute IR.

Covers every type form a declaration or parameter may spell:
- Named types with positional and named arguments: ``Option<String>``,
  ``FixedPoint<Precision = 2>``, ``Iterator<Item = Integer>``
- Generic parameters bound by an ``impl<T>`` or a declaration: ``T``
- Function types: ``Fn(Date) -> String``
- Trait objects: ``dyn Write``, ``impl Iterator``
- Tuples and unit: ``()``
- The inferred type ``_``
- ``Self``, associated projections ``Self::Item`` / ``super::Output``
- Parameter references ``self::record_ty`` resolved against bound params
- Const values used as const-generic arguments

Before the store resolves names, ``NamedType.name`` holds the name as
written. Afterwards it holds the fully qualified name (``permute::Option``).
"""

from __future__ import annotations

from typing import Literal as TypingLiteral

from pydantic import BaseModel, ConfigDict, Field


class NamedType(BaseModel):
    """A (possibly generic) named type or trait reference."""

    name: str = Field(description="Type name, qualified after resolution")
    args: tuple[TypeExpr, ...] = Field(default=(), description="Positional arguments")
    named: tuple[tuple[str, TypeExpr], ...] = Field(
        default=(), description="Named arguments: const params or associated types"
    )

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        parts = [str(a) for a in self.args]
        parts.extend(f"{k} = {v}" for k, v in self.named)
        if not parts:
            return self.name
        return f"{self.name}<{', '.join(parts)}>"

    @property
    def short_name(self) -> str:
        return self.name.rsplit("::", 1)[-1]

    def named_arg(self, name: str) -> TypeExpr | None:
        for key, value in self.named:
            if key == name:
                return value
        return None


class TypeParam(BaseModel):
    """A generic parameter in scope of a declaration."""

    name: str

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return self.name


class FnType(BaseModel):
    """Function type ``Fn(A, B) -> R``."""

    params: tuple[TypeExpr, ...] = ()
    returns: TypeExpr | None = None

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        params = ", ".join(str(p) for p in self.params)
        if self.returns is None:
            return f"Fn({params})"
        return f"Fn({params}) -> {self.returns}"

    @property
    def arity(self) -> int:
        return len(self.params)


class DynType(BaseModel):
    """Trait object or opaque implementor: ``dyn Trait`` / ``impl Trait``."""

    bound: TypeExpr
    keyword: TypingLiteral["dyn", "impl"] = "dyn"

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"{self.keyword} {self.bound}"


class TupleType(BaseModel):
    """Tuple type. The empty tuple is unit."""

    items: tuple[TypeExpr, ...] = ()

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"({', '.join(str(i) for i in self.items)})"


class InferType(BaseModel):
    """The ``_`` placeholder, matching any type."""

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return "_"


class SelfType(BaseModel):
    """``Self`` inside a trait or impl."""

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return "Self"


class Projection(BaseModel):
    """Associated type projection: ``Self::Item`` or ``super::Output``."""

    owner: TypingLiteral["Self", "super"]
    name: str

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"{self.owner}::{self.name}"


class ParamRef(BaseModel):
    """Reference to a sibling parameter value: ``self::record_ty``."""

    name: str

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"self::{self.name}"


class ConstType(BaseModel):
    """A const value used as a const-generic argument (``Precision = 2``)."""

    value: int | float | str | bool

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        if isinstance(self.value, str):
            return f'"{self.value}"'
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        return str(self.value)


TypeExpr = (
    NamedType
    | TypeParam
    | FnType
    | DynType
    | TupleType
    | InferType
    | SelfType
    | Projection
    | ParamRef
    | ConstType
)

NamedType.model_rebuild()
FnType.model_rebuild()
DynType.model_rebuild()
TupleType.model_rebuild()


# ---------------------------------------------------------------------------
# Well-known prelude names
# ---------------------------------------------------------------------------

PRELUDE = "permute"

INTEGER = f"{PRELUDE}::Integer"
FLOAT = f"{PRELUDE}::Float"
STRING = f"{PRELUDE}::String"
BOOLEAN = f"{PRELUDE}::Boolean"
DATE = f"{PRELUDE}::Date"
FIXED_POINT = f"{PRELUDE}::FixedPoint"
OPTION = f"{PRELUDE}::Option"
VEC = f"{PRELUDE}::Vec"
HASH_MAP = f"{PRELUDE}::HashMap"
SOURCE = f"{PRELUDE}::Source"
NEVER = f"{PRELUDE}::Never"
ITERATOR = f"{PRELUDE}::Iterator"
TRANSPARENT = f"{PRELUDE}::Transparent"
ANY = f"{PRELUDE}::Any"
IMPLICIT_INTO = f"{PRELUDE}::ConstImplicitInto"

UNIT = TupleType()


def named(name: str, *args: TypeExpr, **named_args: TypeExpr) -> NamedType:
    """Shorthand constructor used throughout the core and tests."""
    return NamedType(name=name, args=tuple(args), named=tuple(sorted(named_args.items())))


def option_of(inner: TypeExpr) -> NamedType:
    return named(OPTION, inner)


def head_name(t: TypeExpr) -> str | None:
    """Qualified head name of a named type, ``None`` for structural types."""
    if isinstance(t, NamedType):
        return t.name
    return None


def is_option(t: TypeExpr) -> bool:
    return isinstance(t, NamedType) and t.name == OPTION


def contains_params(t: TypeExpr) -> bool:
    """True if ``t`` still mentions a generic parameter."""
    if isinstance(t, TypeParam):
        return True
    if isinstance(t, NamedType):
        return any(contains_params(a) for a in t.args) or any(
            contains_params(v) for _, v in t.named
        )
    if isinstance(t, FnType):
        return any(contains_params(p) for p in t.params) or (
            t.returns is not None and contains_params(t.returns)
        )
    if isinstance(t, DynType):
        return contains_params(t.bound)
    if isinstance(t, TupleType):
        return any(contains_params(i) for i in t.items)
    return False
