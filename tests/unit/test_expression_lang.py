"""Tests for the Permute expression language front end.

Covers:
- Tokenizer: token kinds, comments, strings, errors
- Type parser: named/generic/function/dyn types, parameter references
- Expression parser: precedence, postfix chains, casts, closures, literals
"""

from __future__ import annotations

import pytest

from permute.core.expression_lang import (
    ExpressionParseError,
    TypeParseError,
    parse_bounds,
    parse_expr,
    parse_type,
)
from permute.core.expression_lang.tokenizer import ExpressionTokenError, TokenKind, tokenize
from permute.core.ir.expressions import (
    BinaryExpr,
    BinaryOp,
    CastExpr,
    Closure,
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
from permute.core.ir.types import (
    DynType,
    FnType,
    InferType,
    NamedType,
    ParamRef,
    Projection,
    SelfType,
    TupleType,
)

# ============================================================================
# Tokenizer tests
# ============================================================================


class TestTokenizer:
    """Tokenizer produces correct token sequences."""

    def test_integer_and_float(self) -> None:
        tokens = tokenize("42 3.14")
        assert tokens[0].kind == TokenKind.INT
        assert tokens[1].kind == TokenKind.FLOAT
        assert tokens[1].value == "3.14"

    def test_string_escape(self) -> None:
        tokens = tokenize('"he\\"llo"')
        assert tokens[0].kind == TokenKind.STRING
        assert tokens[0].value == 'he"llo'

    def test_keywords(self) -> None:
        kinds = [t.kind for t in tokenize("true false None and or not in as")]
        assert kinds[:-1] == [
            TokenKind.TRUE,
            TokenKind.FALSE,
            TokenKind.NULL,
            TokenKind.AND,
            TokenKind.OR,
            TokenKind.NOT,
            TokenKind.IN,
            TokenKind.AS,
        ]

    def test_symbolic_logic_operators(self) -> None:
        kinds = [t.kind for t in tokenize("a && b || !c")]
        assert TokenKind.AND in kinds
        assert TokenKind.OR in kinds
        assert TokenKind.NOT in kinds

    def test_path_separator_and_arrow(self) -> None:
        kinds = [t.kind for t in tokenize("Csv::Write -> x")]
        assert kinds[1] == TokenKind.PATH_SEP
        assert kinds[3] == TokenKind.ARROW

    def test_comment_is_skipped(self) -> None:
        tokens = tokenize("x # trailing comment")
        assert [t.kind for t in tokens] == [TokenKind.IDENT, TokenKind.EOF]

    def test_unexpected_character(self) -> None:
        with pytest.raises(ExpressionTokenError):
            tokenize("a $ b")


# ============================================================================
# Type parser tests
# ============================================================================


class TestTypeParser:
    def test_simple_name(self) -> None:
        assert parse_type("String") == NamedType(name="String")

    def test_generic(self) -> None:
        t = parse_type("Option<Vec<String>>")
        assert isinstance(t, NamedType)
        assert t.name == "Option"
        assert t.args == (NamedType(name="Vec", args=(NamedType(name="String"),)),)

    def test_named_arguments(self) -> None:
        t = parse_type("FixedPoint<Precision = 2>")
        assert isinstance(t, NamedType)
        assert t.named_arg("Precision") is not None
        assert str(t) == "FixedPoint<Precision = 2>"

    def test_qualified_path(self) -> None:
        t = parse_type("permute::EndlessIterator<Item = Integer>")
        assert isinstance(t, NamedType)
        assert t.name == "permute::EndlessIterator"
        assert t.short_name == "EndlessIterator"

    def test_function_type(self) -> None:
        t = parse_type("Fn(Date) -> String")
        assert isinstance(t, FnType)
        assert t.arity == 1
        assert t.returns == NamedType(name="String")

    def test_dyn_and_reference_erasure(self) -> None:
        t = parse_type("&dyn Any")
        assert isinstance(t, DynType)
        assert t.bound == NamedType(name="Any")

    def test_param_ref(self) -> None:
        t = parse_type("Iterator<Item = self::record_ty>")
        assert isinstance(t, NamedType)
        assert t.named_arg("Item") == ParamRef(name="record_ty")

    def test_self_and_projection(self) -> None:
        assert parse_type("Self") == SelfType()
        assert parse_type("Self::Item") == Projection(owner="Self", name="Item")

    def test_unit_and_infer(self) -> None:
        assert parse_type("()") == TupleType()
        assert parse_type("_") == InferType()

    def test_bounds(self) -> None:
        bounds = parse_bounds("From<T> + ~ConstFrom<T>")
        assert [(b.name, const) for b, const in bounds] == [("From", False), ("ConstFrom", True)]

    def test_trailing_tokens_rejected(self) -> None:
        with pytest.raises(TypeParseError):
            parse_type("String String")


# ============================================================================
# Expression parser tests
# ============================================================================


class TestExpressionParser:
    def test_literals(self) -> None:
        assert parse_expr("42") == Literal(value=42)
        assert parse_expr("'x'") == Literal(value="x")
        assert parse_expr("None") == Literal(value=None)

    def test_field_path(self) -> None:
        assert parse_expr("self.header") == FieldRef(path=["self", "header"])

    def test_precedence(self) -> None:
        expr = parse_expr("1 + 2 * 3 == 7")
        assert isinstance(expr, BinaryExpr)
        assert expr.op == BinaryOp.EQ
        assert isinstance(expr.left, BinaryExpr)
        assert expr.left.op == BinaryOp.ADD
        assert isinstance(expr.left.right, BinaryExpr)
        assert expr.left.right.op == BinaryOp.MUL

    def test_and_binds_tighter_than_or(self) -> None:
        expr = parse_expr("a || b && c")
        assert isinstance(expr, BinaryExpr)
        assert expr.op == BinaryOp.OR
        assert isinstance(expr.right, BinaryExpr)
        assert expr.right.op == BinaryOp.AND

    def test_not(self) -> None:
        expr = parse_expr("!self.is_terminated()")
        assert isinstance(expr, UnaryExpr)
        assert expr.op == UnaryOp.NOT
        assert isinstance(expr.operand, MethodCall)

    def test_optional_chain(self) -> None:
        expr = parse_expr("self.header?.len() == self.write.len()")
        assert isinstance(expr, BinaryExpr)
        left = expr.left
        assert isinstance(left, MethodCall)
        assert left.name == "len"
        assert isinstance(left.receiver, TryExpr)
        assert left.receiver.operand == FieldRef(path=["self", "header"])

    def test_cast_qualified_call(self) -> None:
        expr = parse_expr("(e as EmploymentRecordExt).salary()")
        assert isinstance(expr, MethodCall)
        assert isinstance(expr.receiver, CastExpr)
        assert expr.receiver.target == NamedType(name="EmploymentRecordExt")

    def test_path_call(self) -> None:
        expr = parse_expr("RowSequence::new(1)")
        assert isinstance(expr, PathCall)
        assert expr.owner == "RowSequence"
        assert expr.function == "new"
        assert expr.args == [Literal(value=1)]

    def test_function_call(self) -> None:
        expr = parse_expr("Some(1)")
        assert expr == FuncCall(name="Some", args=[Literal(value=1)])

    def test_struct_literal(self) -> None:
        expr = parse_expr("RowSequence { start: 1, iteration }")
        assert isinstance(expr, StructLiteral)
        assert expr.fields[0] == ("start", Literal(value=1))
        assert expr.fields[1] == ("iteration", FieldRef(path=["iteration"]))

    def test_list_literal(self) -> None:
        expr = parse_expr("[1, 2, 3,]")
        assert isinstance(expr, ListLiteral)
        assert len(expr.items) == 3

    def test_closure(self) -> None:
        expr = parse_expr("|e, csv| e.employee_id")
        assert isinstance(expr, Closure)
        assert expr.params == ["e", "csv"]
        assert expr.body == FieldRef(path=["e", "employee_id"])

    def test_empty_closure(self) -> None:
        expr = parse_expr("|| 1")
        assert isinstance(expr, Closure)
        assert expr.params == []

    def test_in_and_not_in(self) -> None:
        expr = parse_expr("x not in [1, 2]")
        assert isinstance(expr, InExpr)
        assert expr.negated

    def test_if_expression(self) -> None:
        expr = parse_expr("if a: 1 elif b: 2 else: 3")
        assert isinstance(expr, IfExpr)
        assert len(expr.elif_branches) == 1

    def test_word_operators(self) -> None:
        expr = parse_expr("a and not b")
        assert isinstance(expr, BinaryExpr)
        assert expr.op == BinaryOp.AND
        assert isinstance(expr.right, UnaryExpr)

    @pytest.mark.parametrize("source", [",", "1 +", "a.(b)", "f(1", ""])
    def test_invalid(self, source: str) -> None:
        with pytest.raises(ExpressionParseError):
            parse_expr(source)
