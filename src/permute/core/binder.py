"""
Pipeline binding.

Turns the bindings and pipes of a main document into an ordered
ExecutionGraph:

1. each binding is either a schema application, validated against the
   schema of the named document (with any feeder preset merged in), or
   opaque host code, trusted up to its declared type
2. every identifier naming another binding (in parameters, closures, host
   code or pipes) is a dependency edge
3. bindings are sorted topologically, dependencies first, ties in
   declaration order; cycles are ``CyclicBinding``
4. every consumed binding's type must satisfy the type its consumer expects,
   checked through the trait resolver

Every problem in the document is reported together in one BindError.
"""

from __future__ import annotations

import heapq
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .document_loader import PARAM_SECTIONS
from .errors import BindError, Diagnostic, ErrorCode, make_diagnostic, raise_for_diagnostics
from .expression_lang.type_parser import TypeParseError, parse_type
from .expression_lang.values import BindingRef, HostClosure, TypedValue, walk
from .ir.document import BindingDecl, DocumentIR, DocumentKind, PipeDecl, SchemaDecl
from .ir.location import SourceLocation
from .ir.plan import ConstructionPlan, ExecutionGraph, PlanKind, PlanStep
from .ir.types import ITERATOR, DynType, NamedType, TypeExpr, is_option
from .traits.resolver import ResolutionStatus
from .traits.unify import unify
from .validator import SchemaValidator, ValidatedParams

logger = logging.getLogger(__name__)

FEEDER_KEY = "feeder"

_IDENTIFIER_RE = re.compile(r"(?<![\w.:])[A-Za-z_]\w*")
_STRING_RE = re.compile(r"\"(?:\\.|[^\"\\])*\"|'(?:\\.|[^'\\])*'")
_COMMENT_RE = re.compile(r"(//|#).*$", re.MULTILINE)


def identifiers(code: str) -> list[str]:
    """Free identifiers in a snippet of host code or a closure body.

    Field and method names after ``.`` and path segments after ``::`` are
    not free. String literals and line comments are skipped.
    """
    stripped = _COMMENT_RE.sub("", _STRING_RE.sub('""', code))
    return _IDENTIFIER_RE.findall(stripped)


@dataclass
class _Node:
    decl: BindingDecl
    type: TypeExpr | None = None
    schema: SchemaDecl | None = None
    params: ValidatedParams | None = None
    feeder: str | None = None
    depends_on: list[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.decl.name

    @property
    def index(self) -> int:
        return self.decl.index


class PipelineBinder:
    """Binds main documents against one store."""

    def __init__(self, store, validator: SchemaValidator | None = None) -> None:
        self.store = store
        self.validator = validator or SchemaValidator(store)
        self.resolver = self.validator.methods.resolver

    def bind(self, document: DocumentIR | str) -> ExecutionGraph:
        """Bind a main document.

        Args:
            document: The document, or its namespace in the store

        Returns:
            Ordered execution graph.

        Raises:
            BindError: With every diagnostic found in the document.
        """
        graph, diagnostics = self.collect(document)
        name = document if isinstance(document, str) else document.namespace
        raise_for_diagnostics(diagnostics, BindError, f"Cannot bind '{name}'")
        assert graph is not None
        return graph

    def collect(self, document: DocumentIR | str) -> tuple[ExecutionGraph | None, list[Diagnostic]]:
        """Bind without raising. The graph is ``None`` when there are diagnostics."""
        run = _Binding(self, document)
        graph = run.bind()
        return (None if run.diagnostics else graph), run.diagnostics


class _Binding:
    """State of one ``collect`` call."""

    def __init__(self, binder: PipelineBinder, document: DocumentIR | str) -> None:
        self.store = binder.store
        self.validator = binder.validator
        self.resolver = binder.resolver
        self.diagnostics: list[Diagnostic] = []
        if isinstance(document, str):
            found = self.store.documents.get(document)
            self.document = found
            self.namespace = document
        else:
            self.document = document
            self.namespace = document.namespace

    def error(self, code: ErrorCode, message: str, location: SourceLocation | None, **details: Any) -> None:
        loc = location or SourceLocation(document=self.namespace)
        self.diagnostics.append(make_diagnostic(code, message, loc, **details))

    def bind(self) -> ExecutionGraph | None:
        doc = self.document
        if doc is None:
            self.error(ErrorCode.UNRESOLVED_REFERENCE, f"No document named '{self.namespace}'", None)
            return None
        if doc.kind != DocumentKind.MAIN or doc.process is None:
            self.error(
                ErrorCode.INVALID_DECLARATION,
                f"'{doc.namespace}' is a {doc.kind} document, not a main document",
                doc.location,
            )
            return None

        process = doc.process
        nodes: dict[str, _Node] = {}
        for decl in process.bindings:
            nodes[decl.name] = self._node(decl)

        for node in nodes.values():
            self._dependencies(node, nodes)
        for pipe in process.pipes:
            self._pipe_edges(pipe, nodes)

        order = self._sort(nodes)
        for node in nodes.values():
            self._check_edges(node, nodes)
        for pipe in process.pipes:
            self._check_pipe(pipe, nodes)

        steps = [self._step(nodes[name]) for name in order]
        logger.info(f"Bound process '{process.name}': {len(steps)} binding(s)")
        return ExecutionGraph(
            process=process.name,
            document=doc.namespace,
            steps=steps,
            pipes=[list(p.stages) for p in process.pipes],
        )

    # -- bindings --

    def _node(self, decl: BindingDecl) -> _Node:
        node = _Node(decl=decl)
        if decl.is_host:
            node.type = self._host_type(decl)
            return node

        qualified = self.store.resolve_name(decl.type_name, self.namespace)
        schema = self.store.schemas.get(qualified) if qualified is not None else None
        if schema is None:
            self.error(
                ErrorCode.UNRESOLVED_REFERENCE,
                f"Binding '{decl.name}' applies '{decl.type_name}', which is not a schema-backed document",
                decl.location,
            )
            return node
        node.schema = schema
        node.type = schema.output

        location = (decl.location or SourceLocation(document=self.namespace)).child(decl.type_name)
        supplied = self._flatten(dict(decl.fields or {}), schema)
        field_namespaces: dict[str, str] = {}
        feeder_name = supplied.pop(FEEDER_KEY, None) if schema.param(FEEDER_KEY) is None else None
        if feeder_name is not None:
            node.feeder = self._merge_feeder(
                str(feeder_name), schema, supplied, field_namespaces, location
            )

        params, problems = self.validator.collect(
            schema,
            supplied,
            location=location,
            namespace=self.namespace,
            field_namespaces=field_namespaces,
        )
        self.diagnostics.extend(problems)
        node.params = params
        return node

    def _host_type(self, decl: BindingDecl) -> TypeExpr | None:
        try:
            parsed = parse_type(decl.type_name)
        except TypeParseError as e:
            self.error(ErrorCode.INVALID_DECLARATION, f"Invalid type '{decl.type_name}': {e}", decl.location)
            return None
        resolved, problems = self.store.resolve_type(parsed, self.namespace, location=decl.location)
        if problems:
            self.diagnostics.extend(problems)
            return None
        logger.warning(
            f"Binding '{decl.name}' is opaque host code; trusting its declared type {resolved}"
        )
        return resolved

    def _flatten(self, supplied: dict[str, Any], schema: SchemaDecl) -> dict[str, Any]:
        """Lift fields nested under a params section name (``filter: {...}``)."""
        flat: dict[str, Any] = {}
        for key, value in supplied.items():
            key = str(key)
            if key in PARAM_SECTIONS and schema.param(key) is None and isinstance(value, dict):
                flat.update({str(k): v for k, v in value.items()})
            else:
                flat[key] = value
        return flat

    def _merge_feeder(
        self,
        name: str,
        schema: SchemaDecl,
        supplied: dict[str, Any],
        field_namespaces: dict[str, str],
        location: SourceLocation,
    ) -> str | None:
        # Feeders are documents without a type, addressed by namespace
        qualified = name if name in self.store.feeders else self.store.resolve_name(name, self.namespace)
        feeder = self.store.feeders.get(qualified) if qualified is not None else None
        if feeder is None or qualified is None:
            self.error(ErrorCode.UNRESOLVED_REFERENCE, f"No feeder named '{name}'", location.child(FEEDER_KEY))
            return None
        if feeder.sink != schema.name:
            self.error(
                ErrorCode.TYPE_MISMATCH,
                f"Feeder '{qualified}' configures '{feeder.sink}', not '{schema.name}'",
                location.child(FEEDER_KEY),
            )
            return qualified
        for key, value in feeder.config.items():
            key = str(key)
            if key in supplied:
                self.error(
                    ErrorCode.DUPLICATE_DECLARATION,
                    f"'{key}' is set both here and by feeder '{qualified}'",
                    location.child(key),
                    field=key,
                    feeder=qualified,
                )
                continue
            supplied[key] = value
            field_namespaces[key] = qualified
        return qualified

    # -- edges --

    def _dependencies(self, node: _Node, nodes: dict[str, _Node]) -> None:
        names: list[str] = []
        if node.decl.is_host:
            names.extend(n for n in identifiers(node.decl.host_code or "") if n in nodes)
        elif node.params is not None:
            for value in node.params.values.values():
                for item in walk(value):
                    if isinstance(item, BindingRef):
                        names.append(item.name)
                        if item.name not in nodes and self.store.resolve_name(item.name, self.namespace) is None:
                            self.error(
                                ErrorCode.UNRESOLVED_REFERENCE,
                                f"'{item.name}' names neither a binding nor a declaration",
                                node.decl.location,
                                name=item.name,
                            )
                    elif isinstance(item, HostClosure):
                        params = set(item.params)
                        names.extend(
                            n for n in identifiers(item.body) if n in nodes and n not in params
                        )
        for name in names:
            if name in nodes and name not in node.depends_on:
                node.depends_on.append(name)

    def _pipe_edges(self, pipe: PipeDecl, nodes: dict[str, _Node]) -> None:
        for stage in pipe.stages:
            if stage not in nodes:
                self.error(
                    ErrorCode.UNRESOLVED_REFERENCE,
                    f"Pipe '{pipe}' names unknown binding '{stage}'",
                    pipe.location,
                    name=stage,
                )
        for producer, consumer in zip(pipe.stages, pipe.stages[1:]):
            if producer in nodes and consumer in nodes:
                deps = nodes[consumer].depends_on
                if producer not in deps:
                    deps.append(producer)

    def _sort(self, nodes: dict[str, _Node]) -> list[str]:
        """Kahn's algorithm; ready bindings leave in declaration order."""
        remaining = {name: len(set(n.depends_on)) for name, n in nodes.items()}
        dependents: dict[str, list[str]] = {name: [] for name in nodes}
        for node in nodes.values():
            for dep in set(node.depends_on):
                dependents[dep].append(node.name)

        order: list[str] = []
        while True:
            ready = [(nodes[n].index, n) for n, count in remaining.items() if count == 0]
            heapq.heapify(ready)
            for _, name in ready:
                del remaining[name]
            while ready:
                _, name = heapq.heappop(ready)
                order.append(name)
                for dependent in dependents[name]:
                    if dependent in remaining:
                        remaining[dependent] -= 1
                        if remaining[dependent] == 0:
                            del remaining[dependent]
                            heapq.heappush(ready, (nodes[dependent].index, dependent))
            if not remaining:
                return order

            cycle = self._find_cycle(remaining, nodes)
            self.error(
                ErrorCode.CYCLIC_BINDING,
                f"Bindings form a cycle: {' -> '.join([*cycle, cycle[0]])}",
                nodes[cycle[0]].decl.location,
                names=cycle,
            )
            # Peel the cycle off and keep sorting the rest
            for name in cycle:
                del remaining[name]
                for dependent in dependents[name]:
                    if dependent in remaining:
                        remaining[dependent] -= 1

    @staticmethod
    def _find_cycle(remaining: dict[str, int], nodes: dict[str, _Node]) -> list[str]:
        """Follow dependencies from the earliest unsorted binding until one repeats."""
        current = min(remaining, key=lambda n: nodes[n].index)
        path: list[str] = []
        seen: dict[str, int] = {}
        while current not in seen:
            seen[current] = len(path)
            path.append(current)
            deps = sorted(
                (d for d in set(nodes[current].depends_on) if d in remaining),
                key=lambda d: nodes[d].index,
            )
            current = deps[0]
        cycle = path[seen[current] :]
        start = min(range(len(cycle)), key=lambda i: nodes[cycle[i]].index)
        return cycle[start:] + cycle[:start]

    # -- edge type checks --

    def _check_edges(self, node: _Node, nodes: dict[str, _Node]) -> None:
        if node.params is None:
            return
        for field_name, value in node.params.values.items():
            expected = node.params.types.get(field_name)
            if expected is None:
                continue
            for ref, wanted in _references(value, expected):
                producer = nodes.get(ref.name)
                if producer is None or producer.type is None:
                    continue
                location = (node.decl.location or SourceLocation(document=self.namespace)).child(field_name)
                self._check_type(producer, wanted, location, f"'{node.name}.{field_name}'")

    def _check_pipe(self, pipe: PipeDecl, nodes: dict[str, _Node]) -> None:
        for stage in pipe.stages[:-1]:
            producer = nodes.get(stage)
            if producer is None or producer.type is None:
                continue
            self._check_type(
                producer, NamedType(name=ITERATOR), pipe.location, f"pipe '{pipe}'"
            )

    def _check_type(
        self, producer: _Node, expected: TypeExpr, location: SourceLocation | None, consumer: str
    ) -> None:
        actual = producer.type
        assert actual is not None
        if isinstance(expected, DynType):
            expected = expected.bound
        if is_option(expected) and isinstance(expected, NamedType) and expected.args:
            expected = expected.args[0]
        if self.store.is_host_type(actual) or self.store.is_host_type(expected):
            logger.warning(
                f"Cannot check opaque host type {actual} of '{producer.name}' against {expected}"
            )
            return
        if not isinstance(expected, NamedType):
            return

        if self.store.is_trait(expected.name):
            result = self.resolver.resolve(actual, expected)
            if result.status == ResolutionStatus.CANDIDATE:
                return
            code = (
                ErrorCode.AMBIGUOUS
                if result.status == ResolutionStatus.AMBIGUOUS
                else ErrorCode.PIPELINE_TYPE_ERROR
            )
            self.error(
                code,
                f"Binding '{producer.name}' of type {actual} does not satisfy {expected} "
                f"expected by {consumer}",
                location,
                binding=producer.name,
                expected=str(expected),
                actual=str(actual),
            )
            return

        if unify(expected, actual, {}) is None:
            self.error(
                ErrorCode.PIPELINE_TYPE_ERROR,
                f"Binding '{producer.name}' has type {actual}, {consumer} expects {expected}",
                location,
                binding=producer.name,
                expected=str(expected),
                actual=str(actual),
            )

    # -- plan --

    def _step(self, node: _Node) -> PlanStep:
        if node.decl.is_host:
            plan = ConstructionPlan(
                kind=PlanKind.HOST, code=node.decl.host_code, depends_on=list(node.depends_on)
            )
        else:
            plan = ConstructionPlan(
                kind=PlanKind.SCHEMA,
                schema_name=node.schema.name if node.schema is not None else None,
                params=node.params.to_plain() if node.params is not None else {},
                feeder=node.feeder,
                depends_on=list(node.depends_on),
            )
        resolved = node.type if node.type is not None else NamedType(name=node.decl.type_name)
        return PlanStep(name=node.name, resolved_type=resolved, plan=plan)


def _references(value: TypedValue, expected: TypeExpr) -> list[tuple[BindingRef, TypeExpr]]:
    """Binding references inside ``value`` paired with the type expected at that spot."""
    if isinstance(value.value, BindingRef):
        return [(value.value, expected)]
    if isinstance(value.value, tuple) and isinstance(expected, NamedType) and expected.args:
        item_type = expected.args[0]
        found: list[tuple[BindingRef, TypeExpr]] = []
        for item in value.value:
            if isinstance(item, TypedValue):
                found.extend(_references(item, item_type))
        return found
    if isinstance(value.value, TypedValue) and is_option(expected):
        assert isinstance(expected, NamedType)
        return _references(value.value, expected.args[0] if expected.args else expected)
    return []
