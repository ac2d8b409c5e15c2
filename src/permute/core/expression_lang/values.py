"""
Typed values produced by validation and expression evaluation.

Every value carries its declared type so method calls can be resolved.
Container values hold typed elements:

- ``Vec<T>``: a tuple of TypedValue
- ``HashMap<K, V>``: a dict of plain key to TypedValue
- structs: a dict of field name to TypedValue
- ``Option<T>``: ``None`` or the wrapped TypedValue
- transparent wrappers: a Wrapped holding the inner TypedValue
"""

from __future__ import annotations

import datetime
import re
from collections.abc import Iterator
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from ..ir.types import TypeExpr


@dataclass(frozen=True)
class TypedValue:
    value: Any
    type: TypeExpr

    def __str__(self) -> str:
        return f"{to_plain(self)!r}: {self.type}"


@dataclass(frozen=True)
class Wrapped:
    """Value of a transparent wrapper type."""

    inner: TypedValue


@dataclass(frozen=True)
class HostClosure:
    """An opaque closure supplied as a parameter. Only its arity is checked."""

    params: tuple[str, ...]
    body: str

    @property
    def arity(self) -> int:
        return len(self.params)


@dataclass(frozen=True)
class MethodPath:
    """A path to a declared method used as a function value: ``transform::DateExt::date_fmt``."""

    owner: str
    name: str
    arity: int


@dataclass(frozen=True)
class BindingRef:
    """Reference to another binding of the same process."""

    name: str


@dataclass(frozen=True)
class TypeToken:
    """A type supplied as a value, for ``dyn Trait`` parameters."""

    type: TypeExpr


def unwrap(value: TypedValue, depth: int = -1) -> TypedValue:
    """Strip transparent wrapper layers (all of them when ``depth`` is negative)."""
    while depth != 0 and isinstance(value.value, Wrapped):
        value = value.value.inner
        depth -= 1
    return value


def native(value: TypedValue) -> Any:
    """The host value behind any number of transparent wrappers."""
    return unwrap(value).value


def to_plain(value: Any) -> Any:
    """JSON-friendly form of a typed value, for execution plans."""
    if isinstance(value, TypedValue):
        return to_plain(value.value)
    if isinstance(value, Wrapped):
        return to_plain(value.inner)
    if isinstance(value, tuple | list):
        return [to_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime.date):
        return value.isoformat()
    if isinstance(value, re.Pattern):
        return value.pattern
    if isinstance(value, HostClosure):
        return {"closure": {"params": list(value.params), "body": value.body}}
    if isinstance(value, MethodPath):
        return {"method": f"{value.owner}::{value.name}"}
    if isinstance(value, BindingRef):
        return {"binding": value.name}
    if isinstance(value, TypeToken):
        return {"type": str(value.type)}
    return value


def walk(value: Any) -> Iterator[Any]:
    """Yield every nested host object inside a typed value, depth first."""
    if isinstance(value, TypedValue):
        yield from walk(value.value)
    elif isinstance(value, Wrapped):
        yield from walk(value.inner)
    elif isinstance(value, tuple | list):
        for item in value:
            yield from walk(item)
    elif isinstance(value, dict):
        for item in value.values():
            yield from walk(item)
    elif value is not None:
        yield value
