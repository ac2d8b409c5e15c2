"""
Structural unification of type expressions.

Patterns come from impl headers and may mention the impl's generic
parameters. Targets are concrete query types. A bare named type with no
arguments matches any instantiation of that name, and a missing named
argument acts as a wildcard, so ``FixedPoint`` matches
``FixedPoint<Precision = 2>``.
"""

from __future__ import annotations

from collections.abc import Mapping

from ..ir.types import (
    ConstType,
    DynType,
    FnType,
    InferType,
    NamedType,
    Projection,
    SelfType,
    TupleType,
    TypeExpr,
    TypeParam,
)

Subst = dict[str, TypeExpr]


def unify(pattern: TypeExpr, target: TypeExpr, subst: Mapping[str, TypeExpr]) -> Subst | None:
    """Match ``pattern`` against ``target``.

    Args:
        pattern: Type that may contain generic parameters
        target: Query type
        subst: Bindings established so far (not modified)

    Returns:
        Extended bindings, or None when the types do not match or a
        parameter would be bound inconsistently.
    """
    result = dict(subst)
    if _unify(pattern, target, result):
        return result
    return None


def _unify(pattern: TypeExpr, target: TypeExpr, subst: Subst) -> bool:
    if isinstance(pattern, TypeParam):
        bound = subst.get(pattern.name)
        if bound is None:
            subst[pattern.name] = target
            return True
        if isinstance(bound, InferType):
            subst[pattern.name] = target
            return True
        return isinstance(target, InferType) or types_equal(bound, target)

    if isinstance(pattern, InferType) or isinstance(target, InferType):
        return True

    if isinstance(pattern, NamedType):
        if not isinstance(target, NamedType) or pattern.name != target.name:
            return False
        if not pattern.args and not pattern.named:
            return True
        if not target.args and not target.named:
            return True
        if len(pattern.args) != len(target.args):
            return False
        if not all(_unify(p, t, subst) for p, t in zip(pattern.args, target.args, strict=True)):
            return False
        target_named = dict(target.named)
        for key, value in pattern.named:
            if key in target_named and not _unify(value, target_named[key], subst):
                return False
        return True

    if isinstance(pattern, FnType):
        if not isinstance(target, FnType) or pattern.arity != target.arity:
            return False
        if not all(_unify(p, t, subst) for p, t in zip(pattern.params, target.params, strict=True)):
            return False
        if pattern.returns is None or target.returns is None:
            return True
        return _unify(pattern.returns, target.returns, subst)

    if isinstance(pattern, DynType):
        return isinstance(target, DynType) and _unify(pattern.bound, target.bound, subst)

    if isinstance(pattern, TupleType):
        if not isinstance(target, TupleType) or len(pattern.items) != len(target.items):
            return False
        return all(_unify(p, t, subst) for p, t in zip(pattern.items, target.items, strict=True))

    if isinstance(pattern, ConstType):
        return isinstance(target, ConstType) and pattern.value == target.value

    return pattern == target


def types_equal(a: TypeExpr, b: TypeExpr) -> bool:
    """Structural equality, treating ``_`` and bare names as wildcards."""
    return unify(a, b, {}) is not None and unify(b, a, {}) is not None


def substitute(t: TypeExpr, subst: Mapping[str, TypeExpr]) -> TypeExpr:
    """Replace generic parameters, ``Self`` and projections using ``subst``.

    ``Self`` is looked up under the key ``"Self"``, ``Self::Item`` under
    ``"Self::Item"`` and ``super::Output`` under ``"super::Output"``.
    Unbound parameters are left in place.
    """
    if not subst:
        return t
    if isinstance(t, TypeParam):
        return subst.get(t.name, t)
    if isinstance(t, SelfType):
        return subst.get("Self", t)
    if isinstance(t, Projection):
        return subst.get(f"{t.owner}::{t.name}", t)
    if isinstance(t, NamedType):
        if not t.args and not t.named:
            return t
        return NamedType(
            name=t.name,
            args=tuple(substitute(a, subst) for a in t.args),
            named=tuple((k, substitute(v, subst)) for k, v in t.named),
        )
    if isinstance(t, FnType):
        return FnType(
            params=tuple(substitute(p, subst) for p in t.params),
            returns=substitute(t.returns, subst) if t.returns is not None else None,
        )
    if isinstance(t, DynType):
        return DynType(bound=substitute(t.bound, subst), keyword=t.keyword)
    if isinstance(t, TupleType):
        return TupleType(items=tuple(substitute(i, subst) for i in t.items))
    return t
