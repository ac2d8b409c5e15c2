"""
Declaration store.

Collects the declarations of every loaded document (plus the built-in
``permute`` prelude), resolves imports and type names, and publishes a
read-only snapshot that the resolvers, the validator and the binder query.

Name lookup inside a document, in order:

1. declarations local to the document
2. explicit imports (``use: transform::EmploymentRecordExt``)
3. glob imports (``use: transform::*``)
4. document types, addressable by namespace (``Csv``)
5. the prelude
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from functools import cache
from pathlib import Path
from types import MappingProxyType

from .document_loader import load_document
from .errors import Diagnostic, ErrorCode, LoadError, make_diagnostic, raise_for_diagnostics
from .ir.declarations import (
    ExtensionDecl,
    FieldDecl,
    FunctionDecl,
    GenericParam,
    ImplDecl,
    MethodDecl,
    ParamDecl,
    Receiver,
    SpecializationDecl,
    TraitDecl,
    TypeDecl,
    TypeKind,
    VariantDecl,
    WhereBound,
)
from .ir.document import DocumentIR, FeederDecl, ImportDecl, SchemaDecl
from .ir.location import SourceLocation
from .ir.types import (
    PRELUDE,
    TRANSPARENT,
    DynType,
    FnType,
    NamedType,
    TupleType,
    TypeExpr,
    TypeParam,
    head_name,
)

logger = logging.getLogger(__name__)

PRELUDE_PATH = Path(__file__).parent / "prelude.yaml"


@cache
def load_prelude() -> DocumentIR:
    """The built-in ``permute`` document, parsed once per process."""
    return load_document(PRELUDE_PATH, PRELUDE_PATH.parent, namespace=PRELUDE)


class _AmbiguousName(Exception):
    def __init__(self, candidates: list[str]) -> None:
        super().__init__(", ".join(candidates))
        self.candidates = candidates


@dataclass
class _Scope:
    """Names visible inside one document."""

    namespace: str
    local: dict[str, str] = field(default_factory=dict)
    imports: dict[str, str] = field(default_factory=dict)
    globs: list[str] = field(default_factory=list)
    extensions: list[str] = field(default_factory=list)


class Store:
    """
    Read-only snapshot of all loaded declarations.

    Every declaration is stored with fully qualified names: ``permute::String``,
    ``Csv::RowSequence``. A document type is registered under the document
    namespace itself (``Csv``).
    """

    def __init__(
        self,
        documents: dict[str, DocumentIR],
        types: dict[str, TypeDecl],
        traits: dict[str, TraitDecl],
        impls: list[ImplDecl],
        extensions: dict[str, ExtensionDecl],
        functions: dict[str, FunctionDecl],
        schemas: dict[str, SchemaDecl],
        feeders: dict[str, FeederDecl],
        scopes: dict[str, _Scope],
        host_modules: frozenset[str],
    ) -> None:
        self.documents: Mapping[str, DocumentIR] = MappingProxyType(documents)
        self.types: Mapping[str, TypeDecl] = MappingProxyType(types)
        self.traits: Mapping[str, TraitDecl] = MappingProxyType(traits)
        self.impls: tuple[ImplDecl, ...] = tuple(sorted(impls, key=lambda i: i.key))
        self.extensions: Mapping[str, ExtensionDecl] = MappingProxyType(extensions)
        self.functions: Mapping[str, FunctionDecl] = MappingProxyType(functions)
        self.schemas: Mapping[str, SchemaDecl] = MappingProxyType(schemas)
        self.feeders: Mapping[str, FeederDecl] = MappingProxyType(feeders)
        self.host_modules = host_modules
        self._scopes = scopes
        self._symbols = self._collect_symbols()

        by_trait: dict[str, list[ImplDecl]] = {}
        inherent: dict[str, list[ImplDecl]] = {}
        for impl in self.impls:
            if impl.trait_ref is not None:
                by_trait.setdefault(impl.trait_ref.name, []).append(impl)
            else:
                head = head_name(impl.target)
                if head is not None:
                    inherent.setdefault(head, []).append(impl)
        self._impls_by_trait = {k: tuple(v) for k, v in by_trait.items()}
        self._inherent = {k: tuple(v) for k, v in inherent.items()}

        specializations: dict[str, list[TraitDecl]] = {}
        for trait in sorted(self.traits.values(), key=lambda t: t.name):
            if trait.specialization is not None:
                specializations.setdefault(trait.specialization.trait_ref.name, []).append(trait)
        self._specializations = {k: tuple(v) for k, v in specializations.items()}

    # -- lookups --

    def impls_for_trait(self, trait: str) -> tuple[ImplDecl, ...]:
        return self._impls_by_trait.get(trait, ())

    def inherent_impls(self, head: str) -> tuple[ImplDecl, ...]:
        return self._inherent.get(head, ())

    def specializations_of(self, trait: str) -> tuple[TraitDecl, ...]:
        """Traits whose ``specialization`` block derives ``trait``."""
        return self._specializations.get(trait, ())

    def traits_with_method(self, name: str) -> list[TraitDecl]:
        return [t for _, t in sorted(self.traits.items()) if t.method(name) is not None]

    def is_trait(self, name: str) -> bool:
        return name in self.traits

    def is_host_type(self, t: TypeExpr) -> bool:
        """Opaque type imported from a trusted host module."""
        head = head_name(t)
        return head is not None and head.split("::", 1)[0] in self.host_modules

    def visible_extensions(self, namespace: str) -> tuple[str, ...]:
        scope = self._scopes.get(namespace)
        return tuple(scope.extensions) if scope is not None else ()

    @property
    def namespaces(self) -> list[str]:
        return sorted(self.documents)

    def resolve_name(self, name: str, namespace: str) -> str | None:
        """Qualified name ``name`` refers to from inside ``namespace``, if any."""
        scope = self._scopes.get(namespace) or _Scope(namespace, globs=[PRELUDE])
        try:
            return _lookup(name, scope, self._symbol_kinds(), self.host_modules)
        except _AmbiguousName:
            return None

    def resolve_type(
        self,
        t: TypeExpr,
        namespace: str,
        generics: Iterable[str] = (),
        location: SourceLocation | None = None,
    ) -> tuple[TypeExpr, list[Diagnostic]]:
        """Resolve a type written inside ``namespace``.

        Returns:
            The qualified type and any unresolved-name diagnostics.
        """
        scope = self._scopes.get(namespace) or _Scope(namespace, globs=[PRELUDE])
        resolver = _TypeResolver(self._symbol_kinds(), self.host_modules, self.traits)
        resolved = resolver.resolve(
            t, scope, frozenset(generics), location or SourceLocation(document=namespace)
        )
        return resolved, resolver.diagnostics

    def _symbol_kinds(self) -> Mapping[str, str]:
        return self._symbols

    def _collect_symbols(self) -> dict[str, str]:
        kinds = {name: "type" for name in self.types}
        kinds.update({name: "trait" for name in self.traits})
        kinds.update({name: "extension" for name in self.extensions})
        kinds.update({name: "function" for name in self.functions})
        return kinds

    def symbol_kind(self, name: str) -> str | None:
        return self._symbol_kinds().get(name)


def load(
    documents: Iterable[DocumentIR],
    *,
    host_modules: Iterable[str] = (),
    include_prelude: bool = True,
) -> Store:
    """Build the declaration store.

    Args:
        documents: Parsed documents, in any order
        host_modules: Top-level module names whose imports are trusted as
            opaque host code (from ``permute.toml``)
        include_prelude: Load the built-in ``permute`` namespace

    Returns:
        Immutable store with every name qualified.

    Raises:
        LoadError: With every duplicate, unknown import and unresolved name.
    """
    builder = _StoreBuilder(frozenset(host_modules))
    docs = list(documents)
    if include_prelude and all(d.namespace != PRELUDE for d in docs):
        docs.insert(0, load_prelude())
    store = builder.build(docs)
    raise_for_diagnostics(builder.diagnostics, LoadError, "Failed to load declarations")
    logger.info(
        f"Loaded {len(store.documents)} document(s): {len(store.types)} types, "
        f"{len(store.traits)} traits, {len(store.impls)} impls"
    )
    return store


def _lookup(name: str, scope: _Scope, symbols: Mapping[str, str], host: frozenset[str]) -> str | None:
    if "::" in name:
        head, _, rest = name.partition("::")
        if head == "crate":
            return rest if rest in symbols else None
        if name in symbols:
            return name
        if head in scope.imports:
            target = f"{scope.imports[head]}::{rest}"
            if target in symbols or target.split("::", 1)[0] in host:
                return target
        local = f"{scope.namespace}::{name}"
        if local in symbols:
            return local
        if head in host:
            return name
        return None

    for table in (scope.local, scope.imports):
        if name in table:
            return table[name]
    hits = sorted(
        {f"{ns}::{name}" for ns in scope.globs if ns != PRELUDE and f"{ns}::{name}" in symbols}
    )
    if len(hits) > 1:
        raise _AmbiguousName(hits)
    if hits:
        return hits[0]
    if name in symbols:
        return name
    prelude = f"{PRELUDE}::{name}"
    if prelude in symbols:
        return prelude
    return None


class _TypeResolver:
    """Rewrites type expressions to qualified names, collecting diagnostics."""

    def __init__(
        self,
        symbols: Mapping[str, str],
        host: frozenset[str],
        traits: Mapping[str, TraitDecl],
    ) -> None:
        self.symbols = symbols
        self.host = host
        self.traits = traits
        self.diagnostics: list[Diagnostic] = []

    def resolve(
        self, t: TypeExpr, scope: _Scope, generics: frozenset[str], location: SourceLocation
    ) -> TypeExpr:
        if isinstance(t, NamedType):
            if t.name in generics and not t.args and not t.named:
                return TypeParam(name=t.name)
            args = tuple(self.resolve(a, scope, generics, location) for a in t.args)
            named = tuple((k, self.resolve(v, scope, generics, location)) for k, v in t.named)
            try:
                qualified = _lookup(t.name, scope, self.symbols, self.host)
            except _AmbiguousName as e:
                self.diagnostics.append(
                    make_diagnostic(
                        ErrorCode.DUPLICATE_DECLARATION,
                        f"'{t.name}' is ambiguous between glob imports: {', '.join(e.candidates)}",
                        location,
                        candidates=e.candidates,
                    )
                )
                return t
            if qualified is None:
                self.diagnostics.append(
                    make_diagnostic(
                        ErrorCode.UNRESOLVED_REFERENCE,
                        f"Unknown type or trait '{t.name}'",
                        location,
                        name=t.name,
                    )
                )
                return NamedType(name=t.name, args=args, named=named)
            return NamedType(name=qualified, args=args, named=named)
        if isinstance(t, FnType):
            return FnType(
                params=tuple(self.resolve(p, scope, generics, location) for p in t.params),
                returns=(
                    self.resolve(t.returns, scope, generics, location)
                    if t.returns is not None
                    else None
                ),
            )
        if isinstance(t, DynType):
            return DynType(bound=self.resolve(t.bound, scope, generics, location), keyword=t.keyword)
        if isinstance(t, TupleType):
            return TupleType(items=tuple(self.resolve(i, scope, generics, location) for i in t.items))
        return t


class _StoreBuilder:
    def __init__(self, host_modules: frozenset[str]) -> None:
        self.host_modules = host_modules
        self.diagnostics: list[Diagnostic] = []
        self.symbols: dict[str, str] = {}
        self.sources: dict[str, SourceLocation | None] = {}
        self.raw_traits: dict[str, TraitDecl] = {}

    def error(self, code: ErrorCode, message: str, location: SourceLocation | None, **details) -> None:
        self.diagnostics.append(
            make_diagnostic(code, message, location or SourceLocation(document="?"), **details)
        )

    def declare(self, qualified: str, kind: str, location: SourceLocation | None) -> bool:
        if qualified in self.symbols:
            previous = self.sources.get(qualified)
            where = f" (first declared at {previous})" if previous else ""
            self.error(
                ErrorCode.DUPLICATE_DECLARATION,
                f"Duplicate declaration of '{qualified}'{where}",
                location,
                name=qualified,
            )
            return False
        self.symbols[qualified] = kind
        self.sources[qualified] = location
        return True

    # -- build --

    def build(self, documents: list[DocumentIR]) -> Store:
        by_namespace: dict[str, DocumentIR] = {}
        for doc in documents:
            if doc.namespace in by_namespace:
                self.error(
                    ErrorCode.DUPLICATE_DECLARATION,
                    f"Duplicate document namespace '{doc.namespace}'",
                    doc.location,
                )
                continue
            by_namespace[doc.namespace] = doc

        # Pass 1: register symbols
        for doc in by_namespace.values():
            self._register(doc)

        # Pass 2: scopes
        scopes = {ns: self._scope(doc, set(by_namespace)) for ns, doc in by_namespace.items()}

        # Pass 3: resolve every type reference
        resolver = _TypeResolver(self.symbols, self.host_modules, self.raw_traits)
        types: dict[str, TypeDecl] = {}
        traits: dict[str, TraitDecl] = {}
        impls: list[ImplDecl] = []
        extensions: dict[str, ExtensionDecl] = {}
        functions: dict[str, FunctionDecl] = {}
        schemas: dict[str, SchemaDecl] = {}
        feeders: dict[str, FeederDecl] = {}
        resolved_docs: dict[str, DocumentIR] = {}

        for ns, doc in by_namespace.items():
            scope = scopes[ns]
            rt = _DeclResolver(resolver, scope)
            doc_types = [rt.type_decl(t) for t in doc.types]
            doc_type = rt.type_decl(doc.doc_type) if doc.doc_type is not None else None
            doc_traits = [rt.trait_decl(t) for t in doc.traits]
            doc_impls = [i for i in map(rt.impl_decl, doc.impls) if i is not None]
            doc_exts = [rt.extension_decl(e) for e in doc.extensions]
            doc_fns = [rt.function_decl(f) for f in doc.functions]
            schema = rt.schema_decl(doc.schema_decl) if doc.schema_decl is not None else None
            feeder = None
            if doc.feeder is not None:
                feeder = rt.feeder_decl(doc.feeder)
                feeders[ns] = feeder

            for t in doc_types + ([doc_type] if doc_type is not None else []):
                types[t.name] = t
            for tr in doc_traits:
                traits[tr.name] = tr
            impls.extend(doc_impls)
            for e in doc_exts:
                extensions[e.name] = e
            for f in doc_fns:
                functions[f.name] = f
            if schema is not None:
                schemas[ns] = schema

            resolved_docs[ns] = doc.model_copy(
                update={
                    "types": tuple(doc_types),
                    "traits": tuple(doc_traits),
                    "impls": tuple(doc_impls),
                    "extensions": tuple(doc_exts),
                    "functions": tuple(doc_fns),
                    "doc_type": doc_type,
                    "schema_decl": schema,
                    "feeder": feeder,
                }
            )

        self.diagnostics.extend(resolver.diagnostics)
        impls = self._check_impls(impls, traits)
        impls.extend(self._transparent_impls(types, impls))

        return Store(
            documents=resolved_docs,
            types=types,
            traits=traits,
            impls=impls,
            extensions=extensions,
            functions=functions,
            schemas=schemas,
            feeders=feeders,
            scopes=scopes,
            host_modules=self.host_modules,
        )

    def _register(self, doc: DocumentIR) -> None:
        ns = doc.namespace
        for t in doc.types:
            self.declare(f"{ns}::{t.name}", "type", t.location)
        if doc.doc_type is not None:
            self.declare(ns, "type", doc.location)
        for tr in doc.traits:
            if self.declare(f"{ns}::{tr.name}", "trait", tr.location):
                self.raw_traits[f"{ns}::{tr.name}"] = tr
        for e in doc.extensions:
            self.declare(f"{ns}::{e.name}", "extension", e.location)
        for f in doc.functions:
            self.declare(f"{ns}::{f.name}", "function", f.location)

    def _scope(self, doc: DocumentIR, namespaces: set[str]) -> _Scope:
        ns = doc.namespace
        scope = _Scope(namespace=ns)
        prefix = f"{ns}::"
        for qualified in self.symbols:
            if qualified.startswith(prefix) and "::" not in qualified[len(prefix) :]:
                scope.local[qualified[len(prefix) :]] = qualified

        for imp in doc.imports:
            self._import(imp, scope, namespaces)
        if ns != PRELUDE:
            scope.globs.append(PRELUDE)

        visible = [q for q in scope.local.values() if self.symbols.get(q) == "extension"]
        visible += [q for q in scope.imports.values() if self.symbols.get(q) == "extension"]
        for glob in scope.globs:
            if glob == PRELUDE:
                continue
            visible += [
                q
                for q, kind in self.symbols.items()
                if kind == "extension" and q.rsplit("::", 1)[0] == glob
            ]
        scope.extensions = sorted(set(visible))
        return scope

    def _import(self, imp: ImportDecl, scope: _Scope, namespaces: set[str]) -> None:
        location = imp.location or SourceLocation(document=scope.namespace)
        target = "::".join(imp.path)
        if imp.path[0] in self.host_modules:
            logger.warning(f"{scope.namespace}: trusting host import '{imp}'")
            if not imp.glob:
                scope.imports[imp.visible_name] = target
            return
        if imp.glob:
            if target not in namespaces:
                self.error(
                    ErrorCode.UNKNOWN_IMPORT, f"Unknown namespace '{target}' in '{imp}'", location,
                    path=target,
                )
                return
            scope.globs.append(target)
            return
        if target not in self.symbols:
            self.error(ErrorCode.UNKNOWN_IMPORT, f"Unknown import '{imp}'", location, path=target)
            return
        name = imp.visible_name
        if name in scope.local:
            self.error(
                ErrorCode.DUPLICATE_DECLARATION,
                f"Import '{imp}' collides with local declaration '{scope.local[name]}'",
                location,
                name=name,
            )
            return
        if name in scope.imports and scope.imports[name] != target:
            self.error(
                ErrorCode.DUPLICATE_DECLARATION,
                f"Import '{imp}' collides with earlier import of '{scope.imports[name]}'",
                location,
                name=name,
            )
            return
        scope.imports[name] = target

    def _check_impls(self, impls: list[ImplDecl], traits: dict[str, TraitDecl]) -> list[ImplDecl]:
        seen: dict[tuple, ImplDecl] = {}
        kept: list[ImplDecl] = []
        for impl in impls:
            if impl.trait_ref is not None:
                trait = traits.get(impl.trait_ref.name)
                if trait is None and impl.trait_ref.name in self.symbols:
                    self.error(
                        ErrorCode.INVALID_DECLARATION,
                        f"'{impl.trait_ref.name}' is not a trait",
                        impl.location,
                    )
                    continue
                if trait is not None:
                    declared = {a.name for a in trait.assoc_types}
                    for name, _ in impl.assoc:
                        if name not in declared:
                            self.error(
                                ErrorCode.INVALID_DECLARATION,
                                f"Trait '{trait.name}' has no associated type '{name}'",
                                impl.location,
                            )
                key = (impl.target, impl.trait_ref, impl.where)
                if key in seen:
                    self.error(
                        ErrorCode.DUPLICATE_DECLARATION,
                        f"Duplicate implementation '{impl}' (first at {seen[key].location})",
                        impl.location,
                    )
                    continue
                seen[key] = impl
            kept.append(impl)
        return kept

    def _transparent_impls(self, types: dict[str, TypeDecl], impls: list[ImplDecl]) -> list[ImplDecl]:
        explicit: dict[str, ImplDecl] = {}
        for impl in impls:
            if impl.trait_ref is not None and impl.trait_ref.name == TRANSPARENT:
                head = head_name(impl.target)
                if head is not None:
                    explicit[head] = impl

        synthesized: list[ImplDecl] = []
        for name, decl in sorted(types.items()):
            if decl.kind != TypeKind.TRANSPARENT or decl.inner is None:
                continue
            impl = explicit.get(name)
            if impl is not None:
                inner = dict(impl.assoc).get("Inner")
                if inner != decl.inner:
                    self.error(
                        ErrorCode.INVALID_DECLARATION,
                        f"Transparent impl for '{name}' binds Inner = {inner}, "
                        f"but the type wraps {decl.inner}",
                        impl.location,
                    )
                continue
            synthesized.append(
                ImplDecl(
                    target=decl.as_type(),
                    trait_ref=NamedType(name=TRANSPARENT),
                    generics=decl.generics,
                    assoc=(("Inner", decl.inner),),
                    methods=(
                        MethodDecl(
                            name="inner",
                            receiver=Receiver.SELF,
                            returns=decl.inner,
                            is_const=True,
                            is_extern=True,
                        ),
                    ),
                    namespace=decl.namespace,
                    index=10_000 + len(synthesized),
                    synthesized=True,
                    location=decl.location,
                )
            )
        return synthesized


class _DeclResolver:
    """Resolves the declarations of one document."""

    def __init__(self, resolver: _TypeResolver, scope: _Scope) -> None:
        self.resolver = resolver
        self.scope = scope

    @property
    def ns(self) -> str:
        return self.scope.namespace

    def ty(self, t: TypeExpr, generics: frozenset[str], location: SourceLocation | None) -> TypeExpr:
        return self.resolver.resolve(
            t, self.scope, generics, location or SourceLocation(document=self.ns)
        )

    def trait_ref(
        self, t: TypeExpr, generics: frozenset[str], location: SourceLocation | None
    ) -> NamedType | None:
        """Resolve a type written where a trait is expected."""
        resolved = self.ty(t, generics, location)
        if isinstance(resolved, NamedType):
            return resolved
        self.resolver.diagnostics.append(
            make_diagnostic(
                ErrorCode.INVALID_DECLARATION,
                f"Expected a trait, got '{t}'",
                location or SourceLocation(document=self.ns),
            )
        )
        return None

    def qualify(self, name: str) -> str:
        return name if name == self.ns else f"{self.ns}::{name}"

    def generics(
        self, params: tuple[GenericParam, ...], location: SourceLocation | None
    ) -> tuple[GenericParam, ...]:
        return tuple(
            g.model_copy(update={"const_type": self.ty(g.const_type, frozenset(), location)})
            if g.const_type is not None
            else g
            for g in params
        )

    def field(self, f: FieldDecl, generics: frozenset[str]) -> FieldDecl:
        return f.model_copy(update={"type": self.ty(f.type, generics, f.location)})

    def method(self, m: MethodDecl, outer: frozenset[str]) -> MethodDecl:
        scope = outer | {g.name for g in m.generics}
        return m.model_copy(
            update={
                "generics": self.generics(m.generics, m.location),
                "params": tuple(
                    ParamDecl(name=p.name, type=self.ty(p.type, scope, m.location)) for p in m.params
                ),
                "returns": (
                    self.ty(m.returns, scope, m.location) if m.returns is not None else None
                ),
            }
        )

    def type_decl(self, t: TypeDecl) -> TypeDecl:
        generics = frozenset(g.name for g in t.generics)
        return t.model_copy(
            update={
                "name": self.qualify(t.name),
                "generics": self.generics(t.generics, t.location),
                "inner": self.ty(t.inner, generics, t.location) if t.inner is not None else None,
                "fields": tuple(self.field(f, generics) for f in t.fields),
                "variants": tuple(
                    VariantDecl(
                        name=v.name,
                        payload=tuple(self.ty(p, generics, t.location) for p in v.payload),
                    )
                    for v in t.variants
                ),
            }
        )

    def trait_decl(self, t: TraitDecl) -> TraitDecl:
        generics = frozenset(g.name for g in t.generics)
        specialization = None
        if t.specialization is not None:
            spec = t.specialization
            ref = self.trait_ref(spec.trait_ref, generics, t.location)
            if ref is not None:
                specialization = SpecializationDecl(
                    trait_ref=ref,
                    assoc=tuple((k, self.ty(v, generics, t.location)) for k, v in spec.assoc),
                    methods=tuple(self.method(m, generics) for m in spec.methods),
                )
        supertraits = []
        for s in t.supertraits:
            resolved = self.trait_ref(s, generics, t.location)
            if resolved is not None:
                supertraits.append(resolved)
        return t.model_copy(
            update={
                "name": self.qualify(t.name),
                "generics": self.generics(t.generics, t.location),
                "methods": tuple(self.method(m, generics) for m in t.methods),
                "supertraits": tuple(supertraits),
                "specialization": specialization,
            }
        )

    def impl_decl(self, impl: ImplDecl) -> ImplDecl | None:
        generics = impl.generic_names
        target = self.ty(impl.target, generics, impl.location)
        trait_ref = None
        assoc = [(k, self.ty(v, generics, impl.location)) for k, v in impl.assoc]
        if impl.trait_ref is not None:
            ref = self.trait_ref(impl.trait_ref, generics, impl.location)
            if ref is None:
                return None
            trait = self.resolver.traits.get(ref.name)
            if trait is not None and ref.named:
                assoc_names = {a.name for a in trait.assoc_types}
                kept = []
                for key, value in ref.named:
                    if key in assoc_names:
                        if all(k != key for k, _ in assoc):
                            assoc.append((key, value))
                    else:
                        kept.append((key, value))
                ref = NamedType(name=ref.name, args=ref.args, named=tuple(kept))
            trait_ref = ref
        where = []
        for w in impl.where:
            bound = self.trait_ref(w.bound, generics, impl.location)
            if bound is None:
                return None
            where.append(
                WhereBound(
                    subject=self.ty(w.subject, generics, impl.location),
                    bound=bound,
                    const_required=w.const_required,
                )
            )
        return impl.model_copy(
            update={
                "target": target,
                "trait_ref": trait_ref,
                "generics": self.generics(impl.generics, impl.location),
                "where": tuple(where),
                "assoc": tuple(sorted(assoc, key=lambda kv: kv[0])),
                "methods": tuple(self.method(m, generics) for m in impl.methods),
                "namespace": self.ns,
            }
        )

    def extension_decl(self, e: ExtensionDecl) -> ExtensionDecl:
        generics = frozenset(g.name for g in e.generics)
        return e.model_copy(
            update={
                "name": self.qualify(e.name),
                "target": self.ty(e.target, generics, e.location),
                "methods": tuple(self.method(m, generics) for m in e.methods),
                "namespace": self.ns,
            }
        )

    def function_decl(self, f: FunctionDecl) -> FunctionDecl:
        return f.model_copy(
            update={
                "name": self.qualify(f.name),
                "method": self.method(f.method, frozenset()),
                "namespace": self.ns,
            }
        )

    def schema_decl(self, s: SchemaDecl) -> SchemaDecl:
        return s.model_copy(
            update={
                "params": tuple(self.field(p, frozenset()) for p in s.params),
                "record": self.ty(s.record, frozenset(), s.location) if s.record is not None else None,
                "output": self.ty(s.output, frozenset(), s.location) if s.output is not None else None,
            }
        )

    def feeder_decl(self, f: FeederDecl) -> FeederDecl:
        sink = self.ty(NamedType(name=f.sink), frozenset(), f.location)
        return f.model_copy(update={"sink": head_name(sink) or f.sink})
