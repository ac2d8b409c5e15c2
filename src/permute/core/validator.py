"""
Schema validation.

Checks the fields supplied to a schema-backed binding (or a feeder preset)
against the document schema:

1. a missing field without a default is ``MissingRequiredParam``
2. a missing field with a default gets the default, evaluated if it is an
   expression
3. a supplied field is type-checked; before reporting ``TypeMismatch`` the
   validator tries a ``permute::ConstImplicitInto<Target>`` coercion
4. the field's checks, and the checks of its type, run on the final value
5. document-level checks run last, with ``self`` bound to every field; a
   check that reads a field which failed to validate is skipped

Structured values (structs, maps, ``Vec``, ``Option``, ``HashMap``) are
validated recursively. Every problem is recorded as a diagnostic; nothing
stops at the first failure.
"""

from __future__ import annotations

import datetime
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from .errors import Diagnostic, ErrorCode, ValidationError, make_diagnostic, raise_for_diagnostics
from .expression_lang.evaluator import (
    EvalEnv,
    ExpressionEvalError,
    coerce,
    evaluate,
    evaluate_check,
    typed_literal,
)
from .expression_lang.parser import ExpressionParseError, parse_cached
from .expression_lang.type_parser import TypeParseError, parse_type
from .expression_lang.values import (
    BindingRef,
    HostClosure,
    MethodPath,
    TypedValue,
    TypeToken,
    Wrapped,
    to_plain,
    walk,
)
from .ir.declarations import CheckDecl, FieldDecl, Receiver, TypeDecl, TypeKind
from .ir.document import SchemaDecl
from .ir.expressions import Closure, FieldAccess, FieldRef
from .ir.location import SourceLocation
from .ir.types import (
    DATE,
    HASH_MAP,
    VEC,
    DynType,
    FnType,
    InferType,
    NamedType,
    ParamRef,
    TupleType,
    TypeExpr,
    TypeParam,
    is_option,
)
from .methods import MethodResolver
from .store import Store
from .traits.unify import substitute, types_equal, unify

logger = logging.getLogger(__name__)

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_CLOSURE_KEY_RE = re.compile(r"^\(\s*([A-Za-z0-9_,\s]*)\)$")

# Struct values (literal or defaulted) nest at most this deep
MAX_NESTING = 32


@dataclass(frozen=True)
class ValidatedParams:
    """
    Fields of one schema application after defaulting and coercion.

    Attributes:
        schema: Qualified schema (document type) name
        values: Field name -> typed value, in schema order
        types: Field name -> declared type with ``self::param`` references
            replaced by the bound type
    """

    schema: str
    values: Mapping[str, TypedValue] = field(default_factory=dict)
    types: Mapping[str, TypeExpr] = field(default_factory=dict)

    def __getitem__(self, name: str) -> TypedValue:
        return self.values[name]

    def __contains__(self, name: object) -> bool:
        return name in self.values

    def get(self, name: str) -> TypedValue | None:
        return self.values.get(name)

    @property
    def references(self) -> list[str]:
        """Binding names referenced by any field, in field order."""
        seen: dict[str, None] = {}
        for value in self.values.values():
            for item in walk(value):
                if isinstance(item, BindingRef):
                    seen.setdefault(item.name)
        return list(seen)

    def to_plain(self) -> dict[str, Any]:
        return {name: to_plain(value) for name, value in self.values.items()}


class SchemaValidator:
    """Validates supplied fields against schemas of one store."""

    def __init__(self, store: Store, methods: MethodResolver | None = None) -> None:
        self.store = store
        self.methods = methods or MethodResolver(store)

    def validate(
        self,
        schema: SchemaDecl | str,
        supplied: Mapping[str, Any],
        *,
        location: SourceLocation | None = None,
        namespace: str | None = None,
        field_namespaces: Mapping[str, str] | None = None,
    ) -> ValidatedParams:
        """Validate ``supplied`` against ``schema``.

        Raises:
            ValidationError: With every diagnostic found.
        """
        params, diagnostics = self.collect(
            schema,
            supplied,
            location=location,
            namespace=namespace,
            field_namespaces=field_namespaces,
        )
        raise_for_diagnostics(diagnostics, ValidationError, f"Invalid parameters for '{params.schema}'")
        return params

    def collect(
        self,
        schema: SchemaDecl | str,
        supplied: Mapping[str, Any],
        *,
        location: SourceLocation | None = None,
        namespace: str | None = None,
        field_namespaces: Mapping[str, str] | None = None,
    ) -> tuple[ValidatedParams, list[Diagnostic]]:
        """Validate without raising.

        Args:
            schema: Schema, or the qualified name of a schema in the store
            supplied: Raw field values (YAML data or typed values)
            location: Where the values were supplied, for diagnostics
            namespace: Namespace supplied expressions and names are written in
                (defaults to the document of ``location``)
            field_namespaces: Per-field override of ``namespace``, for
                fields merged in from a feeder document

        Returns:
            The validated parameters and the diagnostics found.
        """
        if isinstance(schema, str):
            found = self.store.schemas.get(schema)
            if found is None:
                loc = location or SourceLocation(document=schema)
                diag = make_diagnostic(
                    ErrorCode.UNRESOLVED_REFERENCE, f"No schema named '{schema}'", loc
                )
                return ValidatedParams(schema=schema), [diag]
            schema = found

        location = location or schema.location or SourceLocation(document=schema.name)
        run = _Validation(self, namespace or location.document, field_namespaces or {})
        values = run.fields(schema.params, supplied, location, schema.name)
        types = run.bound_types(schema.params, values, location)
        run.cross_field_checks(schema, values, location)
        logger.debug(f"Validated {schema.name} at {location}: {len(run.diagnostics)} problem(s)")
        return ValidatedParams(schema=schema.name, values=values, types=types), run.diagnostics


class _Validation:
    """State of one ``collect`` call."""

    def __init__(
        self, validator: SchemaValidator, namespace: str, field_namespaces: Mapping[str, str]
    ) -> None:
        self.store = validator.store
        self.methods = validator.methods
        self.namespace = namespace
        self.field_namespaces = field_namespaces
        self.diagnostics: list[Diagnostic] = []
        self.depth = 0
        self._envs: dict[str, EvalEnv] = {}

    def error(self, code: ErrorCode, message: str, location: SourceLocation, **details: Any) -> None:
        self.diagnostics.append(make_diagnostic(code, message, location, **details))

    def env(self, namespace: str) -> EvalEnv:
        if namespace not in self._envs:
            self._envs[namespace] = EvalEnv.for_namespace(
                self.store, namespace, self.methods, construct=self.construct
            )
        return self._envs[namespace]

    # -- fields --

    def fields(
        self,
        decls: Iterable[FieldDecl],
        supplied: Mapping[str, Any],
        location: SourceLocation,
        decl_namespace: str,
        *,
        value_namespace: str | None = None,
        allow_private: bool = False,
        subst: Mapping[str, TypeExpr] | None = None,
    ) -> dict[str, TypedValue]:
        """Validate ``supplied`` against field declarations.

        Top-level calls take each field's value namespace from
        ``field_namespaces``; nested calls pass ``value_namespace``.
        """
        decls = list(decls)
        known = {f.name for f in decls}
        values: dict[str, TypedValue] = {}

        for f in decls:
            loc = location.child(f.name)
            target = substitute(f.type, dict(subst)) if subst else f.type
            ns = value_namespace or self.field_namespaces.get(f.name, self.namespace)
            if f.name in supplied:
                if f.private and not allow_private:
                    self.error(
                        ErrorCode.TYPE_MISMATCH, f"Field '{f.name}' is private and cannot be set", loc
                    )
                    continue
                value = self.convert(supplied[f.name], target, loc, ns)
            elif f.has_default:
                value = self.default(f, target, loc, decl_namespace)
            else:
                self.error(
                    ErrorCode.MISSING_REQUIRED_PARAM,
                    f"Missing required parameter '{f.name}' of type {f.type}",
                    loc,
                    field=f.name,
                )
                continue
            if value is None:
                continue
            values[f.name] = value
            self.checks(f.checks, value, loc, decl_namespace, f.name)

        for name in supplied:
            if str(name) not in known:
                self.error(
                    ErrorCode.TYPE_MISMATCH,
                    f"Unknown parameter '{name}'",
                    location.child(str(name)),
                    field=str(name),
                )
        return values

    def default(
        self, f: FieldDecl, target: TypeExpr, location: SourceLocation, namespace: str
    ) -> TypedValue | None:
        raw = f.default
        if not isinstance(raw, str) or self._accepts_closure(target):
            return self.convert(raw, target, location, namespace)
        source = raw.strip()
        try:
            expr = parse_cached(source)
        except ExpressionParseError:
            return self.convert(raw, target, location, namespace)
        if isinstance(expr, FieldRef):
            # A bare word is a literal string, not a name lookup
            return self.convert(raw, target, location, namespace)
        try:
            value = evaluate(expr, {}, self.env(namespace))
        except ExpressionEvalError as e:
            self.error(e.code, f"Default '{source}' of '{f.name}' is invalid: {e}", location)
            return None
        return self.convert(value, target, location, namespace)

    def checks(
        self,
        checks: Iterable[CheckDecl],
        value: TypedValue,
        location: SourceLocation,
        namespace: str,
        field_name: str,
        code: ErrorCode = ErrorCode.CHECK_VIOLATION,
    ) -> None:
        for check in checks:
            outcome = self._run_check(check, {"self": value}, location, namespace)
            if outcome is False:
                explain = f" ({check.explain.strip()})" if check.explain else ""
                self.error(
                    code,
                    f"Check '{check.define}' failed for '{field_name}'{explain}",
                    location,
                    field=field_name,
                    predicate=check.define,
                )

    def _run_check(
        self,
        check: CheckDecl,
        scope: Mapping[str, TypedValue],
        location: SourceLocation,
        namespace: str,
    ) -> bool | None:
        try:
            expr = parse_cached(check.define)
        except ExpressionParseError as e:
            self.error(ErrorCode.INVALID_DECLARATION, f"Invalid check '{check.define}': {e}", location)
            return None
        try:
            return evaluate_check(expr, scope, self.env(namespace))
        except ExpressionEvalError as e:
            self.error(e.code, f"Check '{check.define}' could not be evaluated: {e}", location)
            return None

    def cross_field_checks(
        self, schema: SchemaDecl, values: dict[str, TypedValue], location: SourceLocation
    ) -> None:
        if not schema.checks:
            return
        params = TypedValue(dict(values), NamedType(name=schema.name))
        namespace = schema.location.document if schema.location else schema.name
        failed = {p.name for p in schema.params} - set(values)
        for check in schema.checks:
            if failed and not _independent_of(check, failed):
                logger.debug(f"Skipping check '{check.define}': it reads a field that failed")
                continue
            if self._run_check(check, {"self": params}, location, namespace) is False:
                explain = f" ({check.explain.strip()})" if check.explain else ""
                self.error(
                    ErrorCode.CROSS_FIELD_CHECK_VIOLATION,
                    f"Check '{check.define}' failed{explain}",
                    check.location or location,
                    predicate=check.define,
                )

    # -- self::param references --

    def bound_types(
        self, decls: Iterable[FieldDecl], values: Mapping[str, TypedValue], location: SourceLocation
    ) -> dict[str, TypeExpr]:
        bound: dict[str, TypeExpr] = {}
        for name, value in values.items():
            if isinstance(value.value, TypeToken):
                bound[name] = value.value.type
        decls = list(decls)
        declared = {d.name for d in decls}
        types: dict[str, TypeExpr] = {}
        for f in decls:
            for name in sorted(_param_refs(f.type) - set(bound)):
                # A declared param missing from values was already reported
                if name in values or name not in declared:
                    self.error(
                        ErrorCode.UNRESOLVED_REFERENCE,
                        f"'self::{name}' in the type of '{f.name}' does not name a type parameter",
                        location.child(f.name),
                    )
            types[f.name] = replace_param_refs(f.type, bound)
        return types

    # -- conversion --

    def convert(
        self, raw: Any, target: TypeExpr, location: SourceLocation, namespace: str
    ) -> TypedValue | None:
        """Convert a raw or typed value to ``target`` and run its type's checks."""
        value = self._convert(raw, target, location, namespace)
        if value is not None:
            self.type_checks(target, value, location)
        return value

    def type_checks(self, target: TypeExpr, value: TypedValue, location: SourceLocation) -> None:
        decl = self._decl(target)
        if decl is not None and decl.checks:
            name = location.path[-1] if location.path else decl.name
            self.checks(decl.checks, value, location, decl.namespace, name)

    def _convert(
        self, raw: Any, target: TypeExpr, location: SourceLocation, namespace: str
    ) -> TypedValue | None:
        if isinstance(raw, TypedValue):
            return self.accept(raw, target, location, namespace)

        if is_option(target):
            assert isinstance(target, NamedType)
            if raw is None or raw == "None":
                return TypedValue(None, target)
            inner_type = target.args[0] if target.args else InferType()
            inner = self.convert(raw, inner_type, location, namespace)
            return TypedValue(inner, target) if inner is not None else None

        fn_type = _fn_type(target)
        if fn_type is not None:
            return self._function(raw, fn_type, target, location, namespace)
        if isinstance(target, DynType):
            return self._type_value(raw, target, location, namespace)
        if isinstance(target, TypeParam | InferType):
            return self._untyped(raw, location)
        if not isinstance(target, NamedType):
            self.error(ErrorCode.TYPE_MISMATCH, f"Cannot supply a value of type {target}", location)
            return None

        if target.name == VEC:
            return self._vec(raw, target, location, namespace)
        if target.name == HASH_MAP:
            return self._hash_map(raw, target, location, namespace)
        if self.store.is_trait(target.name):
            return self._trait_value(raw, target, location, namespace)
        if self.store.is_host_type(target):
            return TypedValue(raw, target)

        decl = self.store.types.get(target.name)
        if decl is not None and decl.kind == TypeKind.STRUCT:
            return self._struct(raw, decl, target, location, namespace)
        if decl is not None and decl.kind == TypeKind.ENUM:
            return self._enum(raw, decl, target, location)

        scalar = self._scalar(raw, location)
        if scalar is None:
            return None
        return self.accept(scalar, target, location, namespace)

    def accept(
        self, value: TypedValue, target: TypeExpr, location: SourceLocation, namespace: str
    ) -> TypedValue | None:
        """Accept a typed value for ``target``, coercing it when needed."""
        if _compatible(value.type, target):
            return TypedValue(value.value, _more_specific(value.type, target))
        try:
            converted = coerce(value, target, self.env(namespace))
        except ExpressionEvalError as e:
            self.error(
                e.code,
                f"Cannot convert {to_plain(value)!r} to {target}: {e}",
                location,
            )
            return None
        if converted is not None:
            return converted

        decl = self._decl(target)
        if decl is not None and decl.kind == TypeKind.TRANSPARENT and decl.inner is not None:
            subst = unify(decl.as_type(), target, {}) or {}
            inner = self.accept(value, substitute(decl.inner, subst), location, namespace)
            return TypedValue(Wrapped(inner), target) if inner is not None else None

        self.error(
            ErrorCode.TYPE_MISMATCH,
            f"Expected {target}, got {value.type} ({to_plain(value)!r})",
            location,
        )
        return None

    def _scalar(self, raw: Any, location: SourceLocation) -> TypedValue | None:
        if isinstance(raw, datetime.date):
            return TypedValue(raw, NamedType(name=DATE))
        if isinstance(raw, bool | int | float | str):
            return typed_literal(raw)
        self.error(ErrorCode.TYPE_MISMATCH, f"Expected a scalar value, got {raw!r}", location)
        return None

    def _untyped(self, raw: Any, location: SourceLocation) -> TypedValue | None:
        if isinstance(raw, list):
            items = [self._untyped(r, location.child(i)) for i, r in enumerate(raw)]
            if any(i is None for i in items):
                return None
            return TypedValue(tuple(items), NamedType(name=VEC, args=(InferType(),)))
        return self._scalar(raw, location)

    def _expression(
        self, source: str, target: TypeExpr, location: SourceLocation, namespace: str
    ) -> TypedValue | None:
        try:
            expr = parse_cached(source.strip())
            value = evaluate(expr, {}, self.env(namespace))
        except ExpressionParseError as e:
            self.error(ErrorCode.TYPE_MISMATCH, f"Expected {target}, got '{source}': {e}", location)
            return None
        except ExpressionEvalError as e:
            self.error(e.code, f"Cannot evaluate '{source}': {e}", location)
            return None
        return self.accept(value, target, location, namespace)

    def _vec(
        self, raw: Any, target: NamedType, location: SourceLocation, namespace: str
    ) -> TypedValue | None:
        if not isinstance(raw, list | tuple):
            self.error(ErrorCode.TYPE_MISMATCH, f"Expected a list for {target}, got {raw!r}", location)
            return None
        item_type = target.args[0] if target.args else InferType()
        items = [self.convert(r, item_type, location.child(i), namespace) for i, r in enumerate(raw)]
        if any(i is None for i in items):
            return None
        return TypedValue(tuple(items), target)

    def _hash_map(
        self, raw: Any, target: NamedType, location: SourceLocation, namespace: str
    ) -> TypedValue | None:
        if not isinstance(raw, dict):
            self.error(
                ErrorCode.TYPE_MISMATCH, f"Expected a mapping for {target}, got {raw!r}", location
            )
            return None
        key_type = target.args[0] if target.args else InferType()
        value_type = target.args[1] if len(target.args) > 1 else InferType()
        entries: dict[Any, TypedValue] = {}
        ok = True
        for key, item in raw.items():
            loc = location.child(str(key))
            converted_key = self.convert(key, key_type, loc, namespace)
            converted = self.convert(item, value_type, loc, namespace)
            if converted_key is None or converted is None:
                ok = False
                continue
            entries[to_plain(converted_key)] = converted
        return TypedValue(entries, target) if ok else None

    def _struct(
        self,
        raw: Any,
        decl: TypeDecl,
        target: NamedType,
        location: SourceLocation,
        namespace: str,
        *,
        allow_private: bool = False,
    ) -> TypedValue | None:
        if isinstance(raw, str):
            if _IDENT_RE.match(raw.strip()):
                return TypedValue(BindingRef(raw.strip()), target)
            return self._expression(raw, target, location, namespace)
        if not isinstance(raw, dict):
            self.error(
                ErrorCode.TYPE_MISMATCH, f"Expected a mapping for {target}, got {raw!r}", location
            )
            return None
        if self.depth >= MAX_NESTING:
            self.error(
                ErrorCode.INVALID_DECLARATION,
                f"Values of {target} nest deeper than {MAX_NESTING} levels",
                location,
            )
            return None
        before = len(self.diagnostics)
        subst = unify(decl.as_type(), target, {}) or {}
        self.depth += 1
        try:
            values = self.fields(
                decl.fields,
                {str(k): v for k, v in raw.items()},
                location,
                decl.namespace or namespace,
                value_namespace=namespace,
                allow_private=allow_private,
                subst=subst,
            )
        finally:
            self.depth -= 1
        if len(self.diagnostics) > before:
            return None
        return TypedValue(values, target)

    def _enum(
        self, raw: Any, decl: TypeDecl, target: NamedType, location: SourceLocation
    ) -> TypedValue | None:
        names = [v.name for v in decl.variants if not v.payload]
        if isinstance(raw, str) and raw in names:
            return TypedValue(raw, target)
        self.error(
            ErrorCode.TYPE_MISMATCH,
            f"Expected one of {', '.join(names)} for {target}, got {raw!r}",
            location,
        )
        return None

    def construct(self, struct_type: NamedType, values: dict[str, TypedValue]) -> TypedValue:
        """Struct literal construction for the evaluator."""
        decl = self.store.types.get(struct_type.name)
        if decl is None or decl.kind != TypeKind.STRUCT:
            raise ExpressionEvalError(f"{struct_type} is not a struct", ErrorCode.TYPE_MISMATCH)
        location = SourceLocation(document=decl.namespace, path=(decl.name,))
        before = len(self.diagnostics)
        value = self._struct(
            values, decl, struct_type, location, decl.namespace, allow_private=True
        )
        if value is not None:
            self.type_checks(struct_type, value, location)
        problems = self.diagnostics[before:]
        if problems or value is None:
            del self.diagnostics[before:]
            first = problems[0] if problems else None
            raise ExpressionEvalError(
                first.message if first else f"Invalid {struct_type} literal",
                first.code if first else ErrorCode.TYPE_MISMATCH,
            )
        return value

    # -- functions, types and trait values --

    def _function(
        self,
        raw: Any,
        fn_type: FnType,
        target: TypeExpr,
        location: SourceLocation,
        namespace: str,
    ) -> TypedValue | None:
        before = len(self.diagnostics)
        closure = self._closure(raw, location)
        if len(self.diagnostics) > before:
            return None
        if closure is not None:
            if closure.arity != fn_type.arity:
                self.error(
                    ErrorCode.TYPE_MISMATCH,
                    f"Closure takes {closure.arity} argument(s), {target} takes {fn_type.arity}",
                    location,
                )
                return None
            return TypedValue(closure, target)
        if isinstance(raw, str) and "::" in raw:
            return self._method_path(raw.strip(), fn_type, target, location, namespace)
        if isinstance(raw, str) and _IDENT_RE.match(raw.strip()):
            return TypedValue(BindingRef(raw.strip()), target)
        self.error(
            ErrorCode.TYPE_MISMATCH,
            f"Expected a closure or method path for {target}, got {raw!r}",
            location,
        )
        return None

    def _closure(self, raw: Any, location: SourceLocation) -> HostClosure | None:
        """``|a, b| body`` or ``{"(a, b)": body}``; ``None`` if ``raw`` is neither."""
        if isinstance(raw, str) and raw.strip().startswith("|"):
            source = raw.strip()
            try:
                expr = parse_cached(source)
            except ExpressionParseError as e:
                self.error(ErrorCode.TYPE_MISMATCH, f"Invalid closure '{source}': {e}", location)
                return None
            if not isinstance(expr, Closure):
                self.error(ErrorCode.TYPE_MISMATCH, f"Expected a closure, got '{source}'", location)
                return None
            return HostClosure(tuple(expr.params), str(expr.body))
        if isinstance(raw, dict) and len(raw) == 1:
            key, body = next(iter(raw.items()))
            match = _CLOSURE_KEY_RE.match(str(key).strip())
            if match is not None:
                params = tuple(p.strip() for p in match.group(1).split(",") if p.strip())
                return HostClosure(params, str(body).strip())
        return None

    def _method_path(
        self,
        path: str,
        fn_type: FnType,
        target: TypeExpr,
        location: SourceLocation,
        namespace: str,
    ) -> TypedValue | None:
        owner, _, name = path.rpartition("::")
        qualified = self.store.resolve_name(owner, namespace)
        decl = None
        owner_type: TypeExpr | None = None
        if qualified in self.store.extensions:
            ext = self.store.extensions[qualified]
            decl, owner_type = ext.method(name), ext.target
        elif qualified is not None and qualified in self.store.types:
            for impl in self.store.inherent_impls(qualified):
                decl = impl.method(name)
                if decl is not None:
                    owner_type = impl.target
                    break
        if decl is None or qualified is None:
            self.error(ErrorCode.UNRESOLVED_REFERENCE, f"No method '{path}'", location)
            return None
        if decl.arity != fn_type.arity:
            self.error(
                ErrorCode.TYPE_MISMATCH,
                f"'{path}' takes {decl.arity} argument(s), {target} takes {fn_type.arity}",
                location,
            )
            return None
        if owner_type is not None and decl.receiver != Receiver.NONE and fn_type.params:
            if unify(owner_type, fn_type.params[0], {}) is None:
                self.error(
                    ErrorCode.TYPE_MISMATCH,
                    f"'{path}' receives {owner_type}, {target} passes {fn_type.params[0]}",
                    location,
                )
                return None
        return TypedValue(MethodPath(qualified, name, decl.arity), target)

    def _type_value(
        self, raw: Any, target: DynType, location: SourceLocation, namespace: str
    ) -> TypedValue | None:
        """``dyn Trait`` parameters take a type name implementing the trait."""
        if not isinstance(raw, str):
            self.error(ErrorCode.TYPE_MISMATCH, f"Expected a type name for {target}, got {raw!r}", location)
            return None
        try:
            parsed = parse_type(raw.strip())
        except TypeParseError as e:
            self.error(ErrorCode.TYPE_MISMATCH, f"Invalid type '{raw}': {e}", location)
            return None
        resolved, problems = self.store.resolve_type(parsed, namespace, location=location)
        if problems:
            self.diagnostics.extend(problems)
            return None
        bound = target.bound
        if isinstance(bound, NamedType) and not self.store.is_host_type(resolved):
            if not self.methods.resolver.implements(resolved, bound):
                self.error(
                    ErrorCode.NOT_IMPLEMENTED,
                    f"{resolved} does not implement {bound}",
                    location,
                )
                return None
        return TypedValue(TypeToken(resolved), target)

    def _trait_value(
        self, raw: Any, target: NamedType, location: SourceLocation, namespace: str
    ) -> TypedValue | None:
        """Trait-typed parameters take a binding reference or a matching closure."""
        before = len(self.diagnostics)
        closure = self._closure(raw, location)
        if len(self.diagnostics) > before:
            return None
        if closure is not None:
            arities = {
                impl.target.arity
                for impl in self.store.impls_for_trait(target.name)
                if isinstance(impl.target, FnType)
            }
            if closure.arity not in arities:
                self.error(
                    ErrorCode.TYPE_MISMATCH,
                    f"No function impl of {target} takes {closure.arity} argument(s)",
                    location,
                )
                return None
            return TypedValue(closure, target)
        if isinstance(raw, str) and _IDENT_RE.match(raw.strip()):
            return TypedValue(BindingRef(raw.strip()), target)
        self.error(
            ErrorCode.TYPE_MISMATCH,
            f"Expected a binding name or closure for {target}, got {raw!r}",
            location,
        )
        return None

    def _accepts_closure(self, target: TypeExpr) -> bool:
        if _fn_type(target) is not None:
            return True
        return isinstance(target, NamedType) and self.store.is_trait(target.name)

    def _decl(self, target: TypeExpr) -> TypeDecl | None:
        if isinstance(target, NamedType):
            return self.store.types.get(target.name)
        return None


def _fn_type(t: TypeExpr) -> FnType | None:
    if isinstance(t, FnType):
        return t
    if isinstance(t, DynType) and isinstance(t.bound, FnType):
        return t.bound
    return None


def _compatible(actual: TypeExpr, target: TypeExpr) -> bool:
    if types_equal(actual, target):
        return True
    return unify(target, actual, {}) is not None


def _more_specific(actual: TypeExpr, target: TypeExpr) -> TypeExpr:
    if _has_holes(target):
        return actual
    return target


def _has_holes(t: TypeExpr) -> bool:
    if isinstance(t, InferType | TypeParam | ParamRef):
        return True
    if isinstance(t, NamedType):
        return any(_has_holes(a) for a in t.args) or any(_has_holes(v) for _, v in t.named)
    if isinstance(t, FnType):
        return any(_has_holes(p) for p in t.params) or (
            t.returns is not None and _has_holes(t.returns)
        )
    if isinstance(t, DynType):
        return _has_holes(t.bound)
    if isinstance(t, TupleType):
        return any(_has_holes(i) for i in t.items)
    return False


def _param_refs(t: TypeExpr) -> set[str]:
    if isinstance(t, ParamRef):
        return {t.name}
    if isinstance(t, NamedType):
        found = set().union(*(_param_refs(a) for a in t.args), *(_param_refs(v) for _, v in t.named))
        return found
    if isinstance(t, FnType):
        found = set().union(*(_param_refs(p) for p in t.params))
        return found | (_param_refs(t.returns) if t.returns is not None else set())
    if isinstance(t, DynType):
        return _param_refs(t.bound)
    if isinstance(t, TupleType):
        return set().union(*(_param_refs(i) for i in t.items))
    return set()


def _independent_of(check: CheckDecl, failed: set[str]) -> bool:
    """True when ``check`` reads none of the ``failed`` fields."""
    try:
        expr = parse_cached(check.define)
    except ExpressionParseError:
        # Reported when the check runs
        return True
    read = _self_fields(expr)
    return read is not None and not read & failed


def _self_fields(node: Any) -> set[str] | None:
    """Fields an expression reads as ``self.<name>``, or ``None`` if it uses ``self`` whole."""
    if isinstance(node, FieldRef):
        if node.root != "self":
            return set()
        return {node.path[1]} if len(node.path) > 1 else None
    if (
        isinstance(node, FieldAccess)
        and isinstance(node.receiver, FieldRef)
        and node.receiver.path == ["self"]
    ):
        return {node.name}
    if isinstance(node, BaseModel):
        children = [getattr(node, name) for name in type(node).model_fields]
    elif isinstance(node, list | tuple):
        children = list(node)
    else:
        return set()
    read: set[str] = set()
    for child in children:
        found = _self_fields(child)
        if found is None:
            return None
        read |= found
    return read


def replace_param_refs(t: TypeExpr, bound: Mapping[str, TypeExpr]) -> TypeExpr:
    """Replace ``self::param`` references with the types bound to those params."""
    if isinstance(t, ParamRef):
        return bound.get(t.name, t)
    if isinstance(t, NamedType):
        return NamedType(
            name=t.name,
            args=tuple(replace_param_refs(a, bound) for a in t.args),
            named=tuple((k, replace_param_refs(v, bound)) for k, v in t.named),
        )
    if isinstance(t, FnType):
        return FnType(
            params=tuple(replace_param_refs(p, bound) for p in t.params),
            returns=replace_param_refs(t.returns, bound) if t.returns is not None else None,
        )
    if isinstance(t, DynType):
        return DynType(bound=replace_param_refs(t.bound, bound), keyword=t.keyword)
    if isinstance(t, TupleType):
        return TupleType(items=tuple(replace_param_refs(i, bound) for i in t.items))
    return t

