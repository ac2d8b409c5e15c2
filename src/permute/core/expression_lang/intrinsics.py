"""
Host implementations of ``extern`` prelude methods.

An extern method is declared in a document but implemented outside the
declarative layer. The evaluator looks implementations up by the
qualified head of the implementing type and the method name, falling back
to the trait name for blanket impls.
"""

from __future__ import annotations

import datetime
import re
from collections.abc import Callable
from decimal import Decimal, InvalidOperation
from typing import Any

from ..errors import DeclaredAbort
from ..ir.types import (
    BOOLEAN,
    DATE,
    FIXED_POINT,
    FLOAT,
    HASH_MAP,
    INTEGER,
    OPTION,
    PRELUDE,
    STRING,
    TRANSPARENT,
    VEC,
    ConstType,
    NamedType,
    TypeExpr,
    head_name,
)
from .values import TypedValue, Wrapped, native, to_plain

ANY = f"{PRELUDE}::Any"
ORDERING = f"{PRELUDE}::Ordering"
REGEX = f"{PRELUDE}::Regex"
DATE_FMT = f"{PRELUDE}::DateFmt"

Intrinsic = Callable[[TypedValue | None, list[TypedValue], TypeExpr | None], Any]

_REGISTRY: dict[tuple[str, str], Intrinsic] = {}

_STRFTIME_DIRECTIVES = set("aAwdbBmyYHIpMSfzZjUWcxXGuV%")


class ConversionError(ValueError):
    """A host conversion rejected its input."""


def intrinsic(owners: str | tuple[str, ...], *names: str) -> Callable[[Intrinsic], Intrinsic]:
    """Register ``fn`` for every (owner, name) pair."""
    owner_list = (owners,) if isinstance(owners, str) else owners

    def decorator(fn: Intrinsic) -> Intrinsic:
        for owner in owner_list:
            for name in names:
                _REGISTRY[(owner, name)] = fn
        return fn

    return decorator


def lookup(owner: str | None, name: str) -> Intrinsic | None:
    if owner is None:
        return None
    return _REGISTRY.get((owner, name))


def precision_of(t: TypeExpr | None) -> int | None:
    if isinstance(t, NamedType):
        value = t.named_arg("Precision")
        if isinstance(value, ConstType) and isinstance(value.value, int):
            return value.value
    return None


def to_fixed(value: Any, precision: int | None) -> Decimal:
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as e:
        raise ConversionError(f"{value!r} is not a number") from e
    if precision is None:
        return number
    return number.quantize(Decimal(1).scaleb(-precision))


def check_date_format(pattern: str) -> str:
    for match in re.finditer(r"%(.?)", pattern):
        if match.group(1) not in _STRFTIME_DIRECTIVES:
            raise ConversionError(f"Invalid date format directive '%{match.group(1)}'")
    return pattern


def _compare(a: Any, b: Any) -> int:
    if isinstance(a, Decimal) and isinstance(b, float):
        b = Decimal(str(b))
    elif isinstance(b, Decimal) and isinstance(a, float):
        a = Decimal(str(a))
    return (a > b) - (a < b)


# -- equality, ordering, arithmetic --


@intrinsic((INTEGER, FLOAT, STRING, BOOLEAN, DATE, FIXED_POINT, OPTION), "eq")
def _eq(receiver, args, returns):
    return to_plain(receiver) == to_plain(args[0])


@intrinsic((INTEGER, FLOAT, STRING, DATE, FIXED_POINT), "cmp")
def _cmp(receiver, args, returns):
    order = _compare(native(receiver), native(args[0]))
    variant = {-1: "Less", 0: "Equal", 1: "Greater"}[order]
    return TypedValue(variant, NamedType(name=ORDERING))


@intrinsic((INTEGER, STRING, FIXED_POINT), "add")
def _add(receiver, args, returns):
    return native(receiver) + native(args[0])


@intrinsic((INTEGER, FLOAT), "neg")
def _neg(receiver, args, returns):
    return -native(receiver)


# -- conversions --


@intrinsic(STRING, "const_implicit_into")
def _string_into(receiver, args, returns):
    text = native(receiver)
    target = head_name(returns) if returns is not None else None
    if target == DATE:
        try:
            return datetime.date.fromisoformat(text)
        except ValueError as e:
            raise ConversionError(f"'{text}' is not an ISO 8601 date") from e
    if target == REGEX:
        try:
            re.compile(text)
        except re.error as e:
            raise ConversionError(f"Invalid regular expression '{text}': {e}") from e
        return Wrapped(TypedValue(text, NamedType(name=STRING)))
    if target == DATE_FMT:
        return Wrapped(TypedValue(check_date_format(text), NamedType(name=STRING)))
    raise ConversionError(f"No conversion from String to {returns}")


@intrinsic((INTEGER, FLOAT), "const_implicit_into")
def _number_into(receiver, args, returns):
    value = native(receiver)
    target = head_name(returns) if returns is not None else None
    if target == FIXED_POINT:
        return to_fixed(value, precision_of(returns))
    if target == FLOAT:
        return float(value)
    raise ConversionError(f"No conversion from {receiver.type} to {returns}")  # type: ignore[union-attr]


@intrinsic((REGEX, DATE_FMT), "try_from")
def _try_from(receiver, args, returns):
    target = returns.args[0] if isinstance(returns, NamedType) and returns.args else returns
    try:
        converted = _string_into(args[0], [], target)
    except ConversionError:
        return None
    return TypedValue(converted, target)  # type: ignore[arg-type]


@intrinsic(TRANSPARENT, "inner")
def _inner(receiver, args, returns):
    assert receiver is not None
    if isinstance(receiver.value, Wrapped):
        return receiver.value.inner
    return receiver


@intrinsic(ANY, "type_id")
def _type_id(receiver, args, returns):
    assert receiver is not None
    return Wrapped(TypedValue(hash(str(receiver.type)), NamedType(name=INTEGER)))


# -- Option --


@intrinsic(OPTION, "is_some")
def _is_some(receiver, args, returns):
    return native(receiver) is not None


@intrinsic(OPTION, "expect")
def _expect(receiver, args, returns):
    inner = native(receiver)
    if inner is None:
        raise DeclaredAbort(native(args[0]))
    return inner


@intrinsic(OPTION, "unwrap_or")
def _unwrap_or(receiver, args, returns):
    inner = native(receiver)
    return args[0] if inner is None else inner


# -- collections --


@intrinsic((VEC, HASH_MAP), "len")
def _collection_len(receiver, args, returns):
    return len(native(receiver))


@intrinsic(VEC, "contains")
def _vec_contains(receiver, args, returns):
    wanted = to_plain(args[0])
    return any(to_plain(item) == wanted for item in native(receiver))


@intrinsic(HASH_MAP, "get")
def _map_get(receiver, args, returns):
    return native(receiver).get(to_plain(args[0]))


@intrinsic(HASH_MAP, "contains_key")
def _map_contains_key(receiver, args, returns):
    return to_plain(args[0]) in native(receiver)


# -- String --


@intrinsic(STRING, "len")
def _str_len(receiver, args, returns):
    return len(native(receiver))


@intrinsic(STRING, "starts_with")
def _starts_with(receiver, args, returns):
    return native(receiver).startswith(native(args[0]))


@intrinsic(STRING, "ends_with")
def _ends_with(receiver, args, returns):
    return native(receiver).endswith(native(args[0]))


@intrinsic(STRING, "contains")
def _str_contains(receiver, args, returns):
    return native(args[0]) in native(receiver)


@intrinsic(STRING, "find")
def _find(receiver, args, returns):
    index = native(receiver).find(native(args[0]))
    return None if index < 0 else TypedValue(index, NamedType(name=INTEGER))


@intrinsic(STRING, "to_uppercase")
def _upper(receiver, args, returns):
    return native(receiver).upper()


@intrinsic(STRING, "to_lowercase")
def _lower(receiver, args, returns):
    return native(receiver).lower()


@intrinsic(STRING, "trim")
def _trim(receiver, args, returns):
    return native(receiver).strip()


@intrinsic(STRING, "repeat")
def _repeat(receiver, args, returns):
    count = native(args[0])
    if count < 0:
        raise DeclaredAbort(f"repeat count must not be negative, got {count}")
    return native(receiver) * count


@intrinsic(STRING, "is_ascii")
def _is_ascii(receiver, args, returns):
    return native(receiver).isascii()


@intrinsic(STRING, "is_regex_match")
def _is_regex_match(receiver, args, returns):
    return re.fullmatch(native(args[0]), native(receiver)) is not None


# -- Date --


@intrinsic(DATE, "format")
def _format(receiver, args, returns):
    return native(receiver).strftime(check_date_format(native(args[0])))


# -- free functions --


@intrinsic(PRELUDE, "panic")
def _panic(receiver, args, returns):
    raise DeclaredAbort(native(args[0]) if args else "explicit panic")
