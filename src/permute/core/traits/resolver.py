"""
Trait resolution.

Answers "does type X implement trait T<args>, and through which impl?".

Candidates are collected from direct impls and from specialization blocks:
a trait such as ``ConstEq<T>`` whose ``specialization`` derives ``Eq<T>``
turns each of its impls into an ``Eq`` candidate. Selection:

1. Non-blanket candidates first; blanket impls (``impl<T> X for T``) are
   only considered when no non-blanket candidate applies.
2. Within a tier, a specialization-derived candidate beats a direct one.
3. Exactly one survivor is the answer; more than one is ``AMBIGUOUS``.

Declaration order never breaks a tie. Results are cached per resolver and
the cache is shared by every thread using it. The bound-checking cycle
guard is kept per thread, and queries it touches are not cached.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum

from ..ir.declarations import ImplDecl, MethodDecl, TraitDecl
from ..ir.types import InferType, NamedType, TypeExpr, TypeParam, contains_params, head_name
from ..store import Store
from .unify import Subst, substitute, unify

logger = logging.getLogger(__name__)


class ResolutionStatus(StrEnum):
    CANDIDATE = "candidate"
    AMBIGUOUS = "ambiguous"
    NOT_IMPLEMENTED = "not_implemented"


class CandidateOrigin(StrEnum):
    DIRECT = "direct"
    SPECIALIZATION = "specialization"


class MethodKind(StrEnum):
    INHERENT = "inherent"
    EXTENSION = "extension"
    TRAIT = "trait"
    FUNCTION = "function"


def sorted_pairs(mapping: Mapping[str, TypeExpr]) -> tuple[tuple[str, TypeExpr], ...]:
    return tuple(sorted(mapping.items(), key=lambda kv: kv[0]))


@dataclass(frozen=True)
class MethodRef:
    """
    A resolved method.

    ``owner`` is the qualified type, extension, trait or function name the
    method was found on. ``subst`` binds the generic parameters of the
    declaring impl (and ``Self``). ``unwrap`` counts the transparent layers
    the receiver must be unwrapped through before the call.
    """

    decl: MethodDecl
    kind: MethodKind
    owner: str
    subst: tuple[tuple[str, TypeExpr], ...] = ()
    candidate: ImplCandidate | None = None
    namespace: str = ""
    unwrap: int = 0

    @property
    def name(self) -> str:
        return self.decl.name

    @property
    def is_extern(self) -> bool:
        return self.decl.is_extern

    @property
    def is_const(self) -> bool:
        if self.decl.is_const:
            return True
        return self.candidate is not None and self.candidate.is_const

    @property
    def substitution(self) -> Subst:
        return dict(self.subst)

    def const_evaluable(self, literal_args: Sequence[bool]) -> bool:
        """True when the call can be evaluated during validation.

        That requires a const method (or a const-specialized impl) and
        literal arguments only.
        """
        return self.is_const and all(literal_args)

    def __str__(self) -> str:
        return f"{self.owner}::{self.decl.name}"


@dataclass(frozen=True)
class ImplCandidate:
    """
    An impl that answers a trait query.

    For a specialization-derived candidate ``impl`` is the const trait's
    impl (the source impl), ``trait`` is the queried general trait and
    ``source_trait`` is the const trait.
    """

    impl: ImplDecl
    trait: TraitDecl
    subst: tuple[tuple[str, TypeExpr], ...]
    origin: CandidateOrigin = CandidateOrigin.DIRECT
    source_trait: TraitDecl | None = None
    is_const: bool = False
    assoc: tuple[tuple[str, TypeExpr], ...] = ()

    @property
    def is_blanket(self) -> bool:
        return self.impl.is_blanket

    @property
    def substitution(self) -> Subst:
        return dict(self.subst)

    @property
    def self_type(self) -> TypeExpr:
        return dict(self.subst).get("Self", self.impl.target)

    def assoc_type(self, name: str) -> TypeExpr | None:
        return dict(self.assoc).get(name)

    def methods(self) -> dict[str, MethodRef]:
        """Method table: impl bodies, then specialization bodies, then trait defaults."""
        subst = dict(self.subst)
        subst.update({f"Self::{k}": v for k, v in self.assoc})
        pairs = sorted_pairs(subst)
        owner = self.trait.name
        table: dict[str, MethodRef] = {}

        def add(method: MethodDecl, namespace: str) -> None:
            if method.name not in table:
                table[method.name] = MethodRef(
                    decl=method,
                    kind=MethodKind.TRAIT,
                    owner=owner,
                    subst=pairs,
                    candidate=self,
                    namespace=namespace,
                )

        if self.origin == CandidateOrigin.DIRECT:
            for m in self.impl.methods:
                add(m, self.impl.namespace)
        elif self.source_trait is not None and self.source_trait.specialization is not None:
            for m in self.source_trait.specialization.methods:
                add(m, self.source_trait.namespace)
        for m in self.trait.methods:
            add(m, self.trait.namespace)
        return table

    def method(self, name: str) -> MethodRef | None:
        return self.methods().get(name)

    def __str__(self) -> str:
        if self.origin == CandidateOrigin.SPECIALIZATION and self.source_trait is not None:
            return f"{self.impl} (specializes {self.trait.name})"
        return str(self.impl)


@dataclass(frozen=True)
class Resolution:
    status: ResolutionStatus
    candidate: ImplCandidate | None = None
    candidates: tuple[ImplCandidate, ...] = ()
    query: str = ""

    @property
    def found(self) -> bool:
        return self.status == ResolutionStatus.CANDIDATE


@dataclass
class _Query:
    type: TypeExpr
    trait: str
    args: tuple[TypeExpr, ...]
    assoc: tuple[tuple[str, TypeExpr], ...] = ()

    def key(self) -> tuple:
        return (self.type, self.trait, self.args, self.assoc)

    def __str__(self) -> str:
        parts = [str(a) for a in self.args] + [f"{k} = {v}" for k, v in self.assoc]
        args = f"<{', '.join(parts)}>" if parts else ""
        return f"{self.type}: {self.trait}{args}"


@dataclass
class TraitResolver:
    """Resolves trait queries against a store. Cheap to construct, safe to share."""

    store: Store
    _cache: dict[tuple, Resolution] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _local: threading.local = field(default_factory=threading.local, repr=False)

    def resolve(
        self,
        type_: TypeExpr,
        trait: str | NamedType,
        args: Sequence[TypeExpr] = (),
        *,
        assoc: Mapping[str, TypeExpr] | None = None,
    ) -> Resolution:
        """Find the impl of ``trait<args>`` for ``type_``.

        Args:
            type_: Qualified query type
            trait: Qualified trait name, or a trait reference whose named
                arguments constrain associated types (``Iterator<Item = X>``)
            args: Trait arguments, when ``trait`` is a name
            assoc: Required associated type bindings

        Returns:
            ``CANDIDATE`` with the chosen impl, ``AMBIGUOUS`` listing every
            tied candidate, or ``NOT_IMPLEMENTED``.
        """
        query = self._query(type_, trait, args, assoc or {})
        key = query.key()
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached
        in_progress, uncacheable = self._guard()
        if key in in_progress:
            logger.debug(f"Cycle while resolving {query}; treating as unsatisfied")
            uncacheable.update(in_progress[in_progress.index(key) :])
            return Resolution(ResolutionStatus.NOT_IMPLEMENTED, query=str(query))

        in_progress.append(key)
        try:
            result = self._resolve(query)
        finally:
            in_progress.pop()
        if key in uncacheable:
            uncacheable.discard(key)
        else:
            with self._lock:
                result = self._cache.setdefault(key, result)
        logger.debug(f"resolve {query} -> {result.status}")
        return result

    def implements(self, type_: TypeExpr, trait: str | NamedType, *, const: bool = False) -> bool:
        result = self.resolve(type_, trait)
        if not result.found or result.candidate is None:
            return False
        return result.candidate.is_const or not const

    # -- internals --

    def _guard(self) -> tuple[list[tuple], set[tuple]]:
        """This thread's in-progress query stack and the queries it made uncacheable."""
        local = self._local
        if not hasattr(local, "in_progress"):
            local.in_progress = []
            local.uncacheable = set()
        return local.in_progress, local.uncacheable

    def _query(
        self,
        type_: TypeExpr,
        trait: str | NamedType,
        args: Sequence[TypeExpr],
        assoc: Mapping[str, TypeExpr],
    ) -> _Query:
        constraints = dict(assoc)
        if isinstance(trait, NamedType):
            name = trait.name
            args = tuple(trait.args) or tuple(args)
            decl = self.store.traits.get(name)
            declared = {a.name for a in decl.assoc_types} if decl is not None else set()
            for key, value in trait.named:
                if key in declared:
                    constraints.setdefault(key, value)
        else:
            name = trait
        return _Query(type=type_, trait=name, args=tuple(args), assoc=sorted_pairs(constraints))

    def _resolve(self, query: _Query) -> Resolution:
        trait = self.store.traits.get(query.trait)
        if trait is None:
            return Resolution(ResolutionStatus.NOT_IMPLEMENTED, query=str(query))

        candidates = self._direct(query, trait) + self._derived(query, trait)
        candidates = [c for c in candidates if self._assoc_matches(c, query)]

        non_blanket = [c for c in candidates if not c.is_blanket]
        tier = non_blanket or [c for c in candidates if c.is_blanket]
        specialized = [c for c in tier if c.origin == CandidateOrigin.SPECIALIZATION]
        if specialized:
            tier = specialized
        tier.sort(key=lambda c: (c.impl.key, c.origin))

        if not tier:
            return Resolution(ResolutionStatus.NOT_IMPLEMENTED, query=str(query))
        if len(tier) > 1:
            return Resolution(ResolutionStatus.AMBIGUOUS, candidates=tuple(tier), query=str(query))
        return Resolution(
            ResolutionStatus.CANDIDATE, candidate=tier[0], candidates=(tier[0],), query=str(query)
        )

    def _trait_ref(self, trait: TraitDecl, args: tuple[TypeExpr, ...]) -> NamedType:
        """The query as a trait reference, padding missing arguments with ``_``."""
        plain = [g for g in trait.generics if not g.is_const]
        padded = list(args[: len(plain)]) + [InferType()] * (len(plain) - len(args))
        return NamedType(name=trait.name, args=tuple(padded))

    def _direct(self, query: _Query, trait: TraitDecl) -> list[ImplCandidate]:
        wanted = self._trait_ref(trait, query.args)
        found: list[ImplCandidate] = []
        for impl in self.store.impls_for_trait(trait.name):
            subst = unify(impl.target, query.type, {})
            if subst is None or impl.trait_ref is None:
                continue
            impl_ref = NamedType(name=impl.trait_ref.name, args=impl.trait_ref.args)
            if impl_ref.args:
                subst = unify(impl_ref, wanted, subst)
                if subst is None:
                    continue
            subst["Self"] = query.type
            if not self._where_holds(impl, subst):
                continue
            found.append(
                ImplCandidate(
                    impl=impl,
                    trait=trait,
                    subst=sorted_pairs(subst),
                    is_const=trait.specialization is not None,
                    assoc=sorted_pairs({k: substitute(v, subst) for k, v in impl.assoc}),
                )
            )
        return found

    def _derived(self, query: _Query, trait: TraitDecl) -> list[ImplCandidate]:
        derived: list[ImplCandidate] = []
        for source in self.store.specializations_of(trait.name):
            spec = source.specialization
            if spec is None:
                continue
            binding = unify(spec.trait_ref, self._trait_ref(trait, query.args), {})
            if binding is None:
                continue
            source_args = tuple(
                substitute(g.as_type(), binding) for g in source.generics if not g.is_const
            )
            source_args = tuple(
                InferType() if isinstance(a, TypeParam) else a for a in source_args
            )
            for direct in self._direct(_Query(query.type, source.name, source_args), source):
                inner = dict(direct.assoc)
                mapping = {f"super::{k}": v for k, v in inner.items()}
                assoc = {k: substitute(v, mapping) for k, v in spec.assoc}
                derived.append(
                    ImplCandidate(
                        impl=direct.impl,
                        trait=trait,
                        subst=direct.subst,
                        origin=CandidateOrigin.SPECIALIZATION,
                        source_trait=source,
                        is_const=True,
                        assoc=sorted_pairs(assoc),
                    )
                )
        return derived

    def _where_holds(self, impl: ImplDecl, subst: Subst) -> bool:
        for bound in impl.where:
            subject = substitute(bound.subject, subst)
            if contains_params(subject) or isinstance(subject, InferType):
                return False
            ref = substitute(bound.bound, subst)
            if not isinstance(ref, NamedType):
                return False
            result = self.resolve(subject, ref)
            if not result.found or result.candidate is None:
                return False
            if bound.const_required and not result.candidate.is_const:
                return False
        return True

    def _assoc_matches(self, candidate: ImplCandidate, query: _Query) -> bool:
        for name, wanted in query.assoc:
            have = candidate.assoc_type(name)
            if have is None:
                continue
            if unify(wanted, have, {}) is None and unify(have, wanted, {}) is None:
                return False
        return True


def describe(resolution: Resolution) -> str:
    """One-line human summary, used by the CLI and diagnostics."""
    if resolution.status == ResolutionStatus.CANDIDATE and resolution.candidate is not None:
        kind = "const " if resolution.candidate.is_const else ""
        return f"{resolution.query}: {kind}{resolution.candidate}"
    if resolution.status == ResolutionStatus.AMBIGUOUS:
        tied = "; ".join(str(c) for c in resolution.candidates)
        return f"{resolution.query}: ambiguous between {tied}"
    return f"{resolution.query}: not implemented"


def target_head(candidate: ImplCandidate) -> str | None:
    return head_name(candidate.impl.target)
