"""
Method and extension resolution.

``resolve_call`` looks a method name up on a receiver type:

1. inherent impls (``impl String``)
2. visible named extensions (``impl EmploymentRecord as EmploymentRecordExt``)
3. traits implemented for the receiver
4. for transparent wrappers, the same lookup on the wrapped type

A name defined by more than one inherent impl or visible extension, or by
more than one implemented trait impl, is ambiguous. The author must
qualify the call:
``(e as EmploymentRecordExt).salary()`` or ``EmploymentRecordExt::salary(e)``,
which ``resolve_qualified`` answers.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum

from .ir.declarations import TypeKind
from .ir.types import NamedType, TypeExpr, head_name
from .store import Store
from .traits.resolver import MethodKind, MethodRef, TraitResolver, sorted_pairs
from .traits.unify import substitute, unify

logger = logging.getLogger(__name__)

MAX_UNWRAP = 8


class MethodStatus(StrEnum):
    FOUND = "found"
    AMBIGUOUS = "ambiguous"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class MethodResolution:
    status: MethodStatus
    method: MethodRef | None = None
    candidates: tuple[MethodRef, ...] = ()
    requires_qualification: bool = False

    @property
    def found(self) -> bool:
        return self.status == MethodStatus.FOUND

    def describe(self, receiver: TypeExpr, name: str) -> str:
        if self.status == MethodStatus.FOUND:
            return f"{receiver}.{name} -> {self.method}"
        if self.status == MethodStatus.AMBIGUOUS:
            options = ", ".join(str(c) for c in self.candidates)
            hint = "; qualify the call with an extension" if self.requires_qualification else ""
            return f"{receiver}.{name} is ambiguous between {options}{hint}"
        return f"No method '{name}' on {receiver}"


_NOT_FOUND = MethodResolution(MethodStatus.NOT_FOUND)


class MethodResolver:
    """Method lookup over a store, sharing a trait resolver."""

    def __init__(self, store: Store, resolver: TraitResolver | None = None) -> None:
        self.store = store
        self.resolver = resolver or TraitResolver(store)

    def resolve_call(
        self,
        receiver: TypeExpr,
        name: str,
        visible_extensions: Iterable[str] = (),
    ) -> MethodResolution:
        """Resolve ``receiver.name(...)``.

        Args:
            receiver: Qualified receiver type
            name: Method name
            visible_extensions: Qualified extension names in scope at the call site

        Returns:
            ``FOUND`` with a MethodRef, ``AMBIGUOUS`` (with
            ``requires_qualification`` when an extension is involved) or
            ``NOT_FOUND``.
        """
        extensions = tuple(sorted(set(visible_extensions)))
        result = self._resolve(receiver, name, extensions, 0)
        logger.debug(result.describe(receiver, name))
        return result

    def resolve_qualified(self, receiver: TypeExpr, qualifier: str, name: str) -> MethodResolution:
        """Resolve ``(receiver as qualifier).name(...)``.

        ``qualifier`` is a qualified extension or trait name.
        """
        if qualifier in self.store.extensions:
            ref = self._extension_method(qualifier, receiver, name)
            return MethodResolution(MethodStatus.FOUND, ref, (ref,)) if ref else _NOT_FOUND
        if qualifier in self.store.traits:
            result = self.resolver.resolve(receiver, qualifier)
            if not result.found or result.candidate is None:
                return _NOT_FOUND
            ref = result.candidate.method(name)
            return MethodResolution(MethodStatus.FOUND, ref, (ref,)) if ref else _NOT_FOUND
        return _NOT_FOUND

    def _resolve(
        self, receiver: TypeExpr, name: str, extensions: tuple[str, ...], depth: int
    ) -> MethodResolution:
        direct = self._inherent(receiver, name) + [
            ref
            for ext in extensions
            if (ref := self._extension_method(ext, receiver, name)) is not None
        ]
        if len(direct) > 1:
            return MethodResolution(
                MethodStatus.AMBIGUOUS, candidates=tuple(direct), requires_qualification=True
            )
        if direct:
            return self._found(direct[0], depth)

        traits = self._trait_methods(receiver, name)
        if len(traits) > 1:
            return MethodResolution(
                MethodStatus.AMBIGUOUS, candidates=tuple(traits), requires_qualification=True
            )
        if traits:
            return self._found(traits[0], depth)

        inner = self._transparent_inner(receiver)
        if inner is not None and depth < MAX_UNWRAP:
            return self._resolve(inner, name, extensions, depth + 1)
        return _NOT_FOUND

    def _found(self, ref: MethodRef, depth: int) -> MethodResolution:
        if depth:
            ref = MethodRef(
                decl=ref.decl,
                kind=ref.kind,
                owner=ref.owner,
                subst=ref.subst,
                candidate=ref.candidate,
                namespace=ref.namespace,
                unwrap=depth,
            )
        return MethodResolution(MethodStatus.FOUND, ref, (ref,))

    def _inherent(self, receiver: TypeExpr, name: str) -> list[MethodRef]:
        head = head_name(receiver)
        if head is None:
            return []
        found = []
        for impl in self.store.inherent_impls(head):
            method = impl.method(name)
            if method is None:
                continue
            subst = unify(impl.target, receiver, {})
            if subst is None:
                continue
            subst["Self"] = receiver
            found.append(
                MethodRef(
                    decl=method,
                    kind=MethodKind.INHERENT,
                    owner=head,
                    subst=sorted_pairs(subst),
                    namespace=impl.namespace,
                )
            )
        return found

    def _extension_method(self, qualified: str, receiver: TypeExpr, name: str) -> MethodRef | None:
        ext = self.store.extensions.get(qualified)
        if ext is None:
            return None
        method = ext.method(name)
        if method is None:
            return None
        subst = unify(ext.target, receiver, {})
        if subst is None:
            return None
        subst["Self"] = receiver
        return MethodRef(
            decl=method,
            kind=MethodKind.EXTENSION,
            owner=qualified,
            subst=sorted_pairs(subst),
            namespace=ext.namespace,
        )

    def _trait_methods(self, receiver: TypeExpr, name: str) -> list[MethodRef]:
        implemented = []
        for trait in self.store.traits_with_method(name):
            # Every tied impl of an ambiguous trait stays a candidate
            implemented.extend(self.resolver.resolve(receiver, trait.name).candidates)

        # A general trait derived from a const trait in the same set adds nothing
        names = {c.trait.name for c in implemented}
        derived = names & {
            c.trait.specialization.trait_ref.name
            for c in implemented
            if c.trait.specialization is not None
        }
        refs = []
        for candidate in implemented:
            if candidate.trait.name in derived:
                continue
            ref = candidate.method(name)
            if ref is not None:
                refs.append(ref)
        return refs

    def _transparent_inner(self, receiver: TypeExpr) -> TypeExpr | None:
        if not isinstance(receiver, NamedType):
            return None
        decl = self.store.types.get(receiver.name)
        if decl is None or decl.kind != TypeKind.TRANSPARENT or decl.inner is None:
            return None
        subst = unify(decl.as_type(), receiver, {}) or {}
        return substitute(decl.inner, subst)
