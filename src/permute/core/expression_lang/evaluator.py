"""
Typed expression evaluator for Permute defaults, checks and const method bodies.

Evaluates expression AST nodes against a scope of typed values. Method
calls are resolved through the declaration store exactly as the binder
resolves them, so ``self.header?.len()`` finds ``String::len`` through the
inherent impl and ``(e as EmploymentRecordExt).salary()`` goes through the
extension. Extern methods dispatch to the host intrinsics.

Pure evaluation: no I/O and no use of Python's eval(). The only exception
that escapes unchanged is DeclaredAbort, raised by ``panic`` and ``expect``.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from ..errors import ErrorCode
from ..ir.declarations import Receiver, TypeKind
from ..ir.expressions import (
    BinaryExpr,
    BinaryOp,
    CastExpr,
    Closure,
    Expr,
    FieldAccess,
    FieldRef,
    FuncCall,
    IfExpr,
    InExpr,
    ListLiteral,
    Literal,
    MethodCall,
    PathCall,
    StructLiteral,
    TryExpr,
    UnaryExpr,
    UnaryOp,
)
from ..ir.types import (
    BOOLEAN,
    FLOAT,
    HASH_MAP,
    IMPLICIT_INTO,
    INTEGER,
    STRING,
    UNIT,
    VEC,
    FnType,
    InferType,
    NamedType,
    TypeExpr,
    head_name,
    is_option,
    named,
    option_of,
)
from ..methods import MethodResolver, MethodStatus
from ..traits.resolver import ImplCandidate, MethodKind, MethodRef
from ..traits.unify import substitute, types_equal
from . import intrinsics
from .parser import ExpressionParseError, parse_cached
from .values import HostClosure, TypedValue, Wrapped, native, to_plain, unwrap

if TYPE_CHECKING:
    from ..store import Store

Constructor = Callable[[NamedType, dict[str, TypedValue]], TypedValue]

_COMPARISONS = {BinaryOp.LT, BinaryOp.GT, BinaryOp.LE, BinaryOp.GE}
_ARITHMETIC = {BinaryOp.ADD, BinaryOp.SUB, BinaryOp.MUL, BinaryOp.DIV, BinaryOp.MOD}

MAX_CALL_DEPTH = 32


class ExpressionEvalError(Exception):
    """Error during expression evaluation."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.TYPE_MISMATCH) -> None:
        self.code = code
        super().__init__(message)


class _ShortCircuit(Exception):
    """``expr?`` met ``None``."""


@dataclass
class EvalEnv:
    """
    Everything evaluation needs besides the local scope.

    Attributes:
        store: Declarations to resolve names and methods against
        methods: Method resolver sharing the store's trait resolver
        namespace: Namespace the expression was written in
        extensions: Extensions visible in ``namespace``
        construct: Builds struct values from literals, validating fields
        subst: Generic bindings of the enclosing impl (``Self``, ``T``...)
        candidate: Trait impl whose body is being evaluated
        depth: Number of declared method bodies entered so far
    """

    store: Store
    methods: MethodResolver
    namespace: str
    extensions: tuple[str, ...] = ()
    construct: Constructor | None = None
    subst: Mapping[str, TypeExpr] = field(default_factory=dict)
    candidate: ImplCandidate | None = None
    depth: int = 0

    @classmethod
    def for_namespace(
        cls,
        store: Store,
        namespace: str,
        methods: MethodResolver | None = None,
        construct: Constructor | None = None,
    ) -> EvalEnv:
        return cls(
            store=store,
            methods=methods or MethodResolver(store),
            namespace=namespace,
            extensions=store.visible_extensions(namespace),
            construct=construct,
        )

    def enter(self, ref: MethodRef, subst: Mapping[str, TypeExpr]) -> EvalEnv:
        """Environment for evaluating the body of ``ref``."""
        namespace = ref.namespace or self.namespace
        return replace(
            self,
            namespace=namespace,
            extensions=self.store.visible_extensions(namespace),
            subst=subst,
            candidate=ref.candidate,
            depth=self.depth + 1,
        )


def evaluate(expr: Expr, scope: Mapping[str, TypedValue], env: EvalEnv) -> TypedValue:
    """Evaluate an expression against a scope of typed values.

    Args:
        expr: Parsed expression AST.
        scope: Name -> typed value (``self`` and any parameters).
        env: Store and resolution context.

    Returns:
        The computed typed value. ``expr?`` on ``None`` yields ``None``.

    Raises:
        ExpressionEvalError: If evaluation fails.
        DeclaredAbort: If declared code aborts.
    """
    try:
        return _Interpreter(env).interpret(expr, scope)
    except _ShortCircuit:
        return TypedValue(None, option_of(InferType()))


def evaluate_check(expr: Expr, scope: Mapping[str, TypedValue], env: EvalEnv) -> bool:
    """Evaluate a check predicate. A short-circuited ``?`` counts as passing."""
    try:
        result = _Interpreter(env).interpret(expr, scope)
    except _ShortCircuit:
        return True
    value = native(result)
    if not isinstance(value, bool):
        raise ExpressionEvalError(f"Check must evaluate to Boolean, got {result.type}")
    return value


def evaluate_source(source: str, scope: Mapping[str, TypedValue], env: EvalEnv) -> TypedValue:
    return evaluate(_parse(source), scope, env)


def invoke(
    ref: MethodRef,
    receiver: TypedValue | None,
    args: list[TypedValue],
    env: EvalEnv,
) -> TypedValue:
    """Call a resolved method with already evaluated arguments."""
    return _Interpreter(env).invoke(ref, receiver, args)


def coerce(value: TypedValue, target: TypeExpr, env: EvalEnv) -> TypedValue | None:
    """Convert ``value`` to ``target`` through ``ConstImplicitInto``.

    Returns:
        The converted value, or ``None`` when no const conversion exists.

    Raises:
        ExpressionEvalError: If a conversion exists but rejects the value.
    """
    return _Interpreter(env).coerce(value, target)


def typed_literal(value: Any) -> TypedValue:
    """Type a plain host literal."""
    if isinstance(value, bool):
        return TypedValue(value, named(BOOLEAN))
    if isinstance(value, int):
        return TypedValue(value, named(INTEGER))
    if isinstance(value, float):
        return TypedValue(value, named(FLOAT))
    if isinstance(value, str):
        return TypedValue(value, named(STRING))
    if value is None:
        return TypedValue(None, option_of(InferType()))
    raise ExpressionEvalError(f"Unsupported literal: {value!r}")


def _parse(source: str) -> Expr:
    try:
        return parse_cached(source)
    except ExpressionParseError as e:
        raise ExpressionEvalError(f"Cannot parse '{source}': {e}", ErrorCode.INVALID_DECLARATION) from e


def _scalar(value: TypedValue | None) -> Any:
    """Host value for comparisons, looking through Option and wrappers."""
    if value is None:
        return None
    inner = native(value)
    if isinstance(inner, TypedValue):
        return _scalar(inner)
    if isinstance(inner, tuple | dict):
        return to_plain(inner)
    return inner


def _numeric_pair(left: Any, right: Any) -> tuple[Any, Any]:
    if isinstance(left, Decimal) and isinstance(right, float | int):
        return left, Decimal(str(right))
    if isinstance(right, Decimal) and isinstance(left, float | int):
        return Decimal(str(left)), right
    return left, right


def _equal(left: Any, right: Any) -> bool:
    left, right = _numeric_pair(left, right)
    return bool(left == right)


class _Interpreter:
    def __init__(self, env: EvalEnv) -> None:
        self.env = env

    def interpret(self, expr: Expr, scope: Mapping[str, TypedValue]) -> TypedValue:
        """Dispatch evaluation to the appropriate handler."""
        if isinstance(expr, Literal):
            return typed_literal(expr.value)
        if isinstance(expr, FieldRef):
            return self._field_ref(expr, scope)
        if isinstance(expr, FieldAccess):
            return self._field(self.interpret(expr.receiver, scope), expr.name)
        if isinstance(expr, TryExpr):
            return self._try(expr, scope)
        if isinstance(expr, BinaryExpr):
            return self._binary(expr, scope)
        if isinstance(expr, UnaryExpr):
            return self._unary(expr, scope)
        if isinstance(expr, MethodCall):
            return self._method_call(expr, scope)
        if isinstance(expr, FuncCall):
            return self._func_call(expr, scope)
        if isinstance(expr, PathCall):
            return self._path_call(expr, scope)
        if isinstance(expr, CastExpr):
            return self._cast(expr, scope)
        if isinstance(expr, ListLiteral):
            items = tuple(self.interpret(i, scope) for i in expr.items)
            item_type = items[0].type if items else InferType()
            return TypedValue(items, named(VEC, item_type))
        if isinstance(expr, StructLiteral):
            return self._struct(expr, scope)
        if isinstance(expr, Closure):
            closure = HostClosure(tuple(expr.params), str(expr.body))
            return TypedValue(closure, FnType(params=tuple(InferType() for _ in expr.params)))
        if isinstance(expr, InExpr):
            return self._in(expr, scope)
        if isinstance(expr, IfExpr):
            return self._if(expr, scope)
        raise ExpressionEvalError(f"Unknown expression type: {type(expr).__name__}")

    # -- names and fields --

    def _field_ref(self, expr: FieldRef, scope: Mapping[str, TypedValue]) -> TypedValue:
        root = expr.path[0]
        if root not in scope:
            raise ExpressionEvalError(f"Unknown name '{root}'", ErrorCode.UNRESOLVED_REFERENCE)
        current = scope[root]
        for segment in expr.path[1:]:
            current = self._field(current, segment)
        return current

    def _field(self, value: TypedValue, name: str) -> TypedValue:
        target = value
        while True:
            if isinstance(target.value, Wrapped):
                if name == "inner":
                    return target.value.inner
                target = target.value.inner
                continue
            if isinstance(target.value, dict) and head_name(target.type) != HASH_MAP:
                if name in target.value:
                    return target.value[name]
            break
        if is_option(value.type):
            raise ExpressionEvalError(f"Field '{name}' on optional {value.type}; use '?' first")
        raise ExpressionEvalError(f"{value.type} has no field '{name}'")

    def _try(self, expr: TryExpr, scope: Mapping[str, TypedValue]) -> TypedValue:
        value = self.interpret(expr.operand, scope)
        if not is_option(value.type):
            raise ExpressionEvalError(f"'?' applied to non-optional {value.type}")
        if value.value is None:
            raise _ShortCircuit()
        return value.value

    # -- operators --

    def _binary(self, expr: BinaryExpr, scope: Mapping[str, TypedValue]) -> TypedValue:
        if expr.op in (BinaryOp.AND, BinaryOp.OR):
            left = self._bool(self.interpret(expr.left, scope), f"Operator {expr.op}")
            if expr.op == BinaryOp.AND and not left:
                return TypedValue(False, named(BOOLEAN))
            if expr.op == BinaryOp.OR and left:
                return TypedValue(True, named(BOOLEAN))
            right = self._bool(self.interpret(expr.right, scope), f"Operator {expr.op}")
            return TypedValue(right, named(BOOLEAN))

        left_value = self.interpret(expr.left, scope)
        right_value = self.interpret(expr.right, scope)
        left, right = _numeric_pair(_scalar(left_value), _scalar(right_value))

        if expr.op in (BinaryOp.EQ, BinaryOp.NE):
            equal = _equal(left, right)
            return TypedValue(equal if expr.op == BinaryOp.EQ else not equal, named(BOOLEAN))

        if left is None or right is None:
            raise ExpressionEvalError(f"Operator {expr.op} applied to None")

        try:
            if expr.op in _COMPARISONS:
                return TypedValue(self._compare(expr.op, left, right), named(BOOLEAN))
            if expr.op in _ARITHMETIC:
                result = self._arithmetic(expr.op, left, right)
                return TypedValue(result, self._arithmetic_type(left_value, right_value))
        except TypeError as e:
            raise ExpressionEvalError(
                f"Operator {expr.op} not supported between {left_value.type} and {right_value.type}"
            ) from e
        raise ExpressionEvalError(f"Unknown binary op: {expr.op}")

    @staticmethod
    def _bool(value: TypedValue, context: str) -> bool:
        inner = native(value)
        if not isinstance(inner, bool):
            raise ExpressionEvalError(f"{context} requires Boolean, got {value.type}")
        return inner

    @staticmethod
    def _compare(op: BinaryOp, left: Any, right: Any) -> bool:
        if op == BinaryOp.LT:
            return left < right
        if op == BinaryOp.GT:
            return left > right
        if op == BinaryOp.LE:
            return left <= right
        return left >= right

    @staticmethod
    def _arithmetic(op: BinaryOp, left: Any, right: Any) -> Any:
        if op == BinaryOp.ADD:
            return left + right
        if op == BinaryOp.SUB:
            return left - right
        if op == BinaryOp.MUL:
            return left * right
        if right == 0:
            raise ExpressionEvalError("Division by zero" if op == BinaryOp.DIV else "Modulo by zero")
        if op == BinaryOp.DIV:
            if isinstance(left, int) and isinstance(right, int):
                return left // right
            return left / right
        return left % right

    @staticmethod
    def _arithmetic_type(left: TypedValue, right: TypedValue) -> TypeExpr:
        left_head = head_name(unwrap(left).type)
        right_head = head_name(unwrap(right).type)
        if left_head == INTEGER and right_head == FLOAT:
            return right.type
        return left.type

    def _unary(self, expr: UnaryExpr, scope: Mapping[str, TypedValue]) -> TypedValue:
        value = self.interpret(expr.operand, scope)
        if expr.op == UnaryOp.NOT:
            return TypedValue(not self._bool(value, f"Operator {expr.op}"), named(BOOLEAN))
        if expr.op == UnaryOp.NEG:
            inner = native(value)
            if isinstance(inner, bool) or not isinstance(inner, int | float | Decimal):
                raise ExpressionEvalError(f"Cannot negate {value.type}")
            return TypedValue(-inner, unwrap(value).type)
        raise ExpressionEvalError(f"Unknown unary op: {expr.op}")

    def _in(self, expr: InExpr, scope: Mapping[str, TypedValue]) -> TypedValue:
        value = _scalar(self.interpret(expr.value, scope))
        items = [_scalar(self.interpret(i, scope)) for i in expr.items]
        found = any(_equal(value, item) for item in items)
        return TypedValue(found != expr.negated, named(BOOLEAN))

    def _if(self, expr: IfExpr, scope: Mapping[str, TypedValue]) -> TypedValue:
        if self._bool(self.interpret(expr.condition, scope), "Condition"):
            return self.interpret(expr.then_expr, scope)
        for condition, branch in expr.elif_branches:
            if self._bool(self.interpret(condition, scope), "Condition"):
                return self.interpret(branch, scope)
        return self.interpret(expr.else_expr, scope)

    # -- calls --

    def _method_call(self, expr: MethodCall, scope: Mapping[str, TypedValue]) -> TypedValue:
        if isinstance(expr.receiver, CastExpr):
            qualifier = self._qualifier(expr.receiver.target)
            if qualifier is not None:
                receiver = self.interpret(expr.receiver.operand, scope)
                args = [self.interpret(a, scope) for a in expr.args]
                return self.invoke(self._qualified(receiver, qualifier, expr.name), receiver, args)

        receiver = self.interpret(expr.receiver, scope)
        args = [self.interpret(a, scope) for a in expr.args]
        ref = None
        if self.env.candidate is not None and isinstance(expr.receiver, FieldRef):
            if expr.receiver.path == ["self"]:
                ref = self.env.candidate.method(expr.name)
        if ref is None:
            ref = self._resolve(receiver.type, expr.name)
        return self.invoke(ref, receiver, args)

    def _resolve(self, receiver: TypeExpr, name: str) -> MethodRef:
        result = self.env.methods.resolve_call(receiver, name, self.env.extensions)
        if result.status == MethodStatus.AMBIGUOUS:
            raise ExpressionEvalError(result.describe(receiver, name), ErrorCode.AMBIGUOUS)
        if result.method is None:
            raise ExpressionEvalError(result.describe(receiver, name), ErrorCode.UNRESOLVED_REFERENCE)
        return result.method

    def _qualifier(self, target: TypeExpr) -> tuple[str, TypeExpr] | None:
        """``(x as Q)`` where Q names an extension or a trait."""
        if not isinstance(target, NamedType):
            return None
        qualified = self.env.store.resolve_name(target.name, self.env.namespace)
        if qualified is None:
            return None
        if qualified in self.env.store.extensions:
            return qualified, target
        if qualified in self.env.store.traits:
            return qualified, self._type(target)
        return None

    def _qualified(
        self, receiver: TypedValue, qualifier: tuple[str, TypeExpr], name: str
    ) -> MethodRef:
        qualified, ref_type = qualifier
        if qualified in self.env.store.traits and isinstance(ref_type, NamedType) and ref_type.args:
            resolution = self.env.methods.resolver.resolve(receiver.type, ref_type)
            ref = resolution.candidate.method(name) if resolution.candidate else None
            if ref is None:
                raise ExpressionEvalError(
                    f"{receiver.type} does not implement {ref_type} with method '{name}'",
                    ErrorCode.NOT_IMPLEMENTED,
                )
            return ref
        result = self.env.methods.resolve_qualified(receiver.type, qualified, name)
        if result.method is None:
            raise ExpressionEvalError(
                f"No method '{name}' on {receiver.type} as {qualified}",
                ErrorCode.UNRESOLVED_REFERENCE,
            )
        return result.method

    def _func_call(self, expr: FuncCall, scope: Mapping[str, TypedValue]) -> TypedValue:
        args = [self.interpret(a, scope) for a in expr.args]
        if expr.name == "Some":
            if len(args) != 1:
                raise ExpressionEvalError("Some() takes exactly 1 argument")
            return TypedValue(args[0], option_of(args[0].type))

        store = self.env.store
        qualified = store.resolve_name(expr.name, self.env.namespace)
        if qualified is not None and qualified in store.functions:
            fn = store.functions[qualified]
            ref = MethodRef(
                decl=fn.method, kind=MethodKind.FUNCTION, owner=qualified, namespace=fn.namespace
            )
            return self.invoke(ref, None, args)
        if qualified is not None and qualified in store.types:
            decl = store.types[qualified]
            if decl.kind == TypeKind.TRANSPARENT and len(args) == 1:
                return TypedValue(Wrapped(args[0]), named(qualified))
        raise ExpressionEvalError(f"Unknown function '{expr.name}'", ErrorCode.UNRESOLVED_REFERENCE)

    def _path_call(self, expr: PathCall, scope: Mapping[str, TypedValue]) -> TypedValue:
        args = [self.interpret(a, scope) for a in expr.args]
        owner, name = expr.owner, expr.function
        store = self.env.store

        owner_type = self.env.subst.get(owner)
        if owner_type is None:
            qualified = store.resolve_name(owner, self.env.namespace)
            if qualified is None:
                fn = store.resolve_name("::".join(expr.path), self.env.namespace)
                if fn is not None and fn in store.functions:
                    return self._func_call(FuncCall(name="::".join(expr.path), args=expr.args), scope)
                raise ExpressionEvalError(f"Unknown path '{owner}'", ErrorCode.UNRESOLVED_REFERENCE)
            if qualified in store.extensions or qualified in store.traits:
                if not args:
                    raise ExpressionEvalError(f"{owner}::{name} needs a receiver argument")
                receiver, rest = args[0], args[1:]
                ref = self._qualified(receiver, (qualified, named(qualified)), name)
                return self.invoke(ref, receiver, rest)
            owner_type = named(qualified)

        ref = self._resolve(owner_type, name)
        if ref.decl.receiver == Receiver.NONE:
            return self.invoke(ref, None, args, self_type=owner_type)
        if not args:
            raise ExpressionEvalError(f"{owner}::{name} needs a receiver argument")
        return self.invoke(ref, args[0], args[1:])

    def invoke(
        self,
        ref: MethodRef,
        receiver: TypedValue | None,
        args: list[TypedValue],
        self_type: TypeExpr | None = None,
    ) -> TypedValue:
        decl = ref.decl
        if len(args) != len(decl.params):
            raise ExpressionEvalError(
                f"{ref} expects {len(decl.params)} argument(s), got {len(args)}"
            )
        if receiver is not None and ref.unwrap:
            receiver = unwrap(receiver, ref.unwrap)

        subst = dict(ref.subst)
        if receiver is not None:
            subst.setdefault("Self", receiver.type)
        elif self_type is not None:
            subst.setdefault("Self", self_type)
        returns = substitute(decl.returns, subst) if decl.returns is not None else UNIT

        if decl.body is None:
            fn = self._intrinsic(ref, receiver)
            if fn is None:
                raise ExpressionEvalError(
                    f"{ref} has no implementation available during validation",
                    ErrorCode.NOT_IMPLEMENTED,
                )
            try:
                result = fn(receiver, args, returns)
            except intrinsics.ConversionError as e:
                raise ExpressionEvalError(str(e)) from e
            return _typed(result, returns)

        if self.env.depth >= MAX_CALL_DEPTH:
            raise ExpressionEvalError(
                f"Calling {ref} nests deeper than {MAX_CALL_DEPTH} declared calls",
                ErrorCode.INVALID_DECLARATION,
            )
        body = _parse(decl.body)
        scope = {p.name: a for p, a in zip(decl.params, args, strict=True)}
        if receiver is not None:
            scope["self"] = receiver
        try:
            result = _Interpreter(self.env.enter(ref, subst)).interpret(body, scope)
        except _ShortCircuit:
            return TypedValue(None, returns if is_option(returns) else option_of(returns))
        if is_option(returns) and not is_option(result.type):
            return TypedValue(result, returns)
        return result

    def _intrinsic(self, ref: MethodRef, receiver: TypedValue | None) -> intrinsics.Intrinsic | None:
        name = ref.decl.name
        if ref.kind == MethodKind.FUNCTION:
            return intrinsics.lookup(ref.namespace, name)
        owners: list[str | None] = []
        if ref.candidate is not None:
            owners.append(head_name(ref.candidate.impl.target))
        if receiver is not None:
            owners.append(head_name(unwrap(receiver).type))
            owners.append(head_name(receiver.type))
        if ref.candidate is not None and ref.candidate.impl.trait_ref is not None:
            owners.append(ref.candidate.impl.trait_ref.name)
        owners.append(ref.owner)
        for owner in owners:
            fn = intrinsics.lookup(owner, name)
            if fn is not None:
                return fn
        return None

    # -- casts and construction --

    def _type(self, t: TypeExpr) -> TypeExpr:
        resolved, diagnostics = self.env.store.resolve_type(
            t, self.env.namespace, generics=tuple(self.env.subst)
        )
        if diagnostics:
            raise ExpressionEvalError(diagnostics[0].message, ErrorCode.UNRESOLVED_REFERENCE)
        return substitute(resolved, dict(self.env.subst))

    def _cast(self, expr: CastExpr, scope: Mapping[str, TypedValue]) -> TypedValue:
        if self._qualifier(expr.target) is not None:
            raise ExpressionEvalError(
                f"'as {expr.target}' only qualifies a method call: (value as {expr.target}).method()"
            )
        value = self.interpret(expr.operand, scope)
        target = self._type(expr.target)
        if types_equal(value.type, target):
            return value
        converted = self.coerce(value, target)
        if converted is None:
            raise ExpressionEvalError(f"Cannot convert {value.type} to {target}")
        return converted

    def coerce(self, value: TypedValue, target: TypeExpr) -> TypedValue | None:
        resolution = self.env.methods.resolver.resolve(value.type, IMPLICIT_INTO, [target])
        if not resolution.found or resolution.candidate is None:
            return None
        ref = resolution.candidate.method("const_implicit_into")
        if ref is None or not ref.is_const:
            return None
        converted = self.invoke(ref, value, [])
        return TypedValue(converted.value, target) if isinstance(target, NamedType) else converted

    def _struct(self, expr: StructLiteral, scope: Mapping[str, TypedValue]) -> TypedValue:
        store = self.env.store
        qualified = self.env.subst.get(expr.type_name)
        type_name = head_name(qualified) if qualified is not None else None
        if type_name is None:
            type_name = store.resolve_name(expr.type_name, self.env.namespace)
        if type_name is None or type_name not in store.types:
            raise ExpressionEvalError(
                f"Unknown struct type '{expr.type_name}'", ErrorCode.UNRESOLVED_REFERENCE
            )
        values = {name: self.interpret(value, scope) for name, value in expr.fields}
        struct_type = named(type_name)
        if self.env.construct is not None:
            return self.env.construct(struct_type, values)
        return TypedValue(values, struct_type)


def _typed(result: Any, returns: TypeExpr) -> TypedValue:
    """Give a host intrinsic result its declared return type."""
    if isinstance(result, TypedValue) and not is_option(returns):
        return result
    if is_option(returns):
        if result is None or isinstance(result, TypedValue):
            return TypedValue(result, returns)
        assert isinstance(returns, NamedType)
        inner = returns.args[0] if returns.args else InferType()
        return TypedValue(TypedValue(result, inner), returns)
    return TypedValue(result, returns)
