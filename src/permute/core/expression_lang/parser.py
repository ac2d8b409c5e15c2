"""
Recursive descent parser for the Permute expression language.

Grammar (precedence low to high):
    expr        → closure | if_expr | or_expr
    closure     → "|" (IDENT ("," IDENT)*)? "|" expr | "||" expr
    if_expr     → "if" or_expr ":" or_expr ("elif" or_expr ":" or_expr)* "else" ":" or_expr
    or_expr     → and_expr (("||" | "or") and_expr)*
    and_expr    → not_expr (("&&" | "and") not_expr)*
    not_expr    → ("!" | "not") not_expr | comparison
    comparison  → addition (comp_op addition)?
                | addition ("in" | "not" "in") list_literal
    addition    → multiply (("+"|"-") multiply)*
    multiply    → unary (("*"|"/"|"%") unary)*
    unary       → "-" unary | cast
    cast        → postfix ("as" type)*
    postfix     → primary ("." IDENT call_args? | "?")*
    primary     → literal | "(" expr ")" | list_literal
                | path_call | func_call | struct_literal | name
    literal     → INT | FLOAT | STRING | "true" | "false" | "None"
    path_call   → IDENT ("::" IDENT)+ call_args
    func_call   → IDENT call_args
    struct_lit  → IDENT "{" (IDENT ":" expr ("," IDENT ":" expr)*)? "}"
    list_literal → "[" (expr ("," expr)*)? "]"
"""

from __future__ import annotations

from functools import lru_cache

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
from .tokenizer import TokenKind
from .type_parser import TypeParseError, TypeParser, tokenize_source


class ExpressionParseError(TypeParseError):
    """Error during expression parsing."""


class _Parser(TypeParser):
    """Recursive descent parser for expressions."""

    error_cls = ExpressionParseError

    # -- Grammar rules --

    def parse_expr(self) -> Expr:
        """Top-level: closure, if_expr or or_expr."""
        if self.current.kind in (TokenKind.PIPE, TokenKind.OR) and self.current.value != "or":
            return self.parse_closure()
        if self.current.kind == TokenKind.IF:
            return self.parse_if_expr()
        return self.parse_or_expr()

    def parse_closure(self) -> Closure:
        """'|' params '|' expr"""
        params: list[str] = []
        if not self.match(TokenKind.OR):
            self.expect(TokenKind.PIPE)
            if self.current.kind != TokenKind.PIPE:
                params.append(self.expect(TokenKind.IDENT).value)
                while self.match(TokenKind.COMMA):
                    params.append(self.expect(TokenKind.IDENT).value)
            self.expect(TokenKind.PIPE)
        body = self.parse_expr()
        return Closure(params=params, body=body)

    def parse_if_expr(self) -> IfExpr:
        """if cond: val (elif cond: val)* else: val"""
        self.expect(TokenKind.IF)
        condition = self.parse_or_expr()
        self.expect(TokenKind.COLON)
        then_expr = self.parse_or_expr()

        elif_branches: list[tuple[Expr, Expr]] = []
        while self.match(TokenKind.ELIF):
            elif_cond = self.parse_or_expr()
            self.expect(TokenKind.COLON)
            elif_val = self.parse_or_expr()
            elif_branches.append((elif_cond, elif_val))

        self.expect(TokenKind.ELSE)
        self.expect(TokenKind.COLON)
        else_expr = self.parse_or_expr()

        return IfExpr(
            condition=condition,
            then_expr=then_expr,
            elif_branches=elif_branches,
            else_expr=else_expr,
        )

    def parse_or_expr(self) -> Expr:
        """and_expr ('||' and_expr)*"""
        left = self.parse_and_expr()
        while self.match(TokenKind.OR):
            right = self.parse_and_expr()
            left = BinaryExpr(op=BinaryOp.OR, left=left, right=right)
        return left

    def parse_and_expr(self) -> Expr:
        """not_expr ('&&' not_expr)*"""
        left = self.parse_not_expr()
        while self.match(TokenKind.AND):
            right = self.parse_not_expr()
            left = BinaryExpr(op=BinaryOp.AND, left=left, right=right)
        return left

    def parse_not_expr(self) -> Expr:
        """'!' not_expr | comparison"""
        if self.current.kind == TokenKind.NOT and self.peek(1).kind != TokenKind.IN:
            self.advance()
            operand = self.parse_not_expr()
            return UnaryExpr(op=UnaryOp.NOT, operand=operand)
        return self.parse_comparison()

    def parse_comparison(self) -> Expr:
        """addition (comp_op addition | 'in'/'not in' list)?"""
        left = self.parse_addition()

        # "in" / "not in"
        if self.current.kind == TokenKind.IN:
            self.advance()
            items = self._parse_list_items()
            return InExpr(value=left, items=items, negated=False)
        if self.current.kind == TokenKind.NOT and self.peek(1).kind == TokenKind.IN:
            self.advance()  # not
            self.advance()  # in
            items = self._parse_list_items()
            return InExpr(value=left, items=items, negated=True)

        # Comparison operators
        comp_ops: dict[TokenKind, BinaryOp] = {
            TokenKind.EQ: BinaryOp.EQ,
            TokenKind.NE: BinaryOp.NE,
            TokenKind.LT: BinaryOp.LT,
            TokenKind.GT: BinaryOp.GT,
            TokenKind.LE: BinaryOp.LE,
            TokenKind.GE: BinaryOp.GE,
        }
        if self.current.kind in comp_ops:
            op = comp_ops[self.current.kind]
            self.advance()
            right = self.parse_addition()
            return BinaryExpr(op=op, left=left, right=right)

        return left

    def parse_addition(self) -> Expr:
        """multiply (('+' | '-') multiply)*"""
        left = self.parse_multiply()
        while self.current.kind in (TokenKind.PLUS, TokenKind.MINUS):
            op = BinaryOp.ADD if self.current.kind == TokenKind.PLUS else BinaryOp.SUB
            self.advance()
            right = self.parse_multiply()
            left = BinaryExpr(op=op, left=left, right=right)
        return left

    def parse_multiply(self) -> Expr:
        """unary (('*' | '/' | '%') unary)*"""
        left = self.parse_unary()
        while self.current.kind in (TokenKind.STAR, TokenKind.SLASH, TokenKind.PERCENT):
            if self.current.kind == TokenKind.STAR:
                op = BinaryOp.MUL
            elif self.current.kind == TokenKind.SLASH:
                op = BinaryOp.DIV
            else:
                op = BinaryOp.MOD
            self.advance()
            right = self.parse_unary()
            left = BinaryExpr(op=op, left=left, right=right)
        return left

    def parse_unary(self) -> Expr:
        """'-' unary | cast"""
        if self.match(TokenKind.MINUS):
            operand = self.parse_unary()
            return UnaryExpr(op=UnaryOp.NEG, operand=operand)
        return self.parse_cast()

    def parse_cast(self) -> Expr:
        """postfix ('as' type)*"""
        expr = self.parse_postfix()
        while self.match(TokenKind.AS):
            target = self.parse_type()
            expr = CastExpr(operand=expr, target=target)
        return expr

    def parse_postfix(self) -> Expr:
        """primary ('.' IDENT call_args? | '?')*"""
        expr = self.parse_primary()
        while True:
            if self.match(TokenKind.QUESTION):
                expr = TryExpr(operand=expr)
                continue
            if self.match(TokenKind.DOT):
                name = self.expect(TokenKind.IDENT).value
                if self.current.kind == TokenKind.LPAREN:
                    expr = MethodCall(receiver=expr, name=name, args=self._parse_call_args())
                elif isinstance(expr, FieldRef):
                    expr = FieldRef(path=[*expr.path, name])
                else:
                    expr = FieldAccess(receiver=expr, name=name)
                continue
            return expr

    def parse_primary(self) -> Expr:
        """literal | '(' expr ')' | list | path_call | func_call | struct | name"""
        tok = self.current

        # Parenthesized expression
        if tok.kind == TokenKind.LPAREN:
            self.advance()
            expr = self.parse_expr()
            self.expect(TokenKind.RPAREN)
            return expr

        # List literal
        if tok.kind == TokenKind.LBRACKET:
            return ListLiteral(items=self._parse_list_items())

        # Literals
        if tok.kind == TokenKind.INT:
            self.advance()
            return Literal(value=int(tok.value))
        if tok.kind == TokenKind.FLOAT:
            self.advance()
            return Literal(value=float(tok.value))
        if tok.kind == TokenKind.STRING:
            self.advance()
            return Literal(value=tok.value)
        if tok.kind == TokenKind.TRUE:
            self.advance()
            return Literal(value=True)
        if tok.kind == TokenKind.FALSE:
            self.advance()
            return Literal(value=False)
        if tok.kind == TokenKind.NULL:
            self.advance()
            return Literal(value=None)

        if tok.kind == TokenKind.IDENT:
            # Path call: Type::function(args)
            if self.peek(1).kind == TokenKind.PATH_SEP:
                return self._parse_path_call()
            # Free function call
            if self.peek(1).kind == TokenKind.LPAREN:
                name = self.advance().value
                return FuncCall(name=name, args=self._parse_call_args())
            # Struct literal
            if self.peek(1).kind == TokenKind.LBRACE and tok.value[:1].isupper():
                return self._parse_struct_literal()
            self.advance()
            return FieldRef(path=[tok.value])

        raise ExpressionParseError(
            f"Unexpected token: {tok.kind} ({tok.value!r})",
            tok.pos,
        )

    def _parse_path_call(self) -> PathCall:
        """IDENT ('::' IDENT)+ '(' args ')'"""
        path = [self.expect(TokenKind.IDENT).value]
        while self.match(TokenKind.PATH_SEP):
            path.append(self.expect(TokenKind.IDENT).value)
        return PathCall(path=path, args=self._parse_call_args())

    def _parse_struct_literal(self) -> StructLiteral:
        """IDENT '{' (IDENT ':' expr ',')* '}'"""
        type_name = self.expect(TokenKind.IDENT).value
        self.expect(TokenKind.LBRACE)
        fields: list[tuple[str, Expr]] = []
        while self.current.kind != TokenKind.RBRACE:
            name = self.expect(TokenKind.IDENT).value
            if self.match(TokenKind.COLON):
                value = self.parse_expr()
            else:
                # Shorthand `Name { start }`
                value = FieldRef(path=[name])
            fields.append((name, value))
            if not self.match(TokenKind.COMMA):
                break
        self.expect(TokenKind.RBRACE)
        return StructLiteral(type_name=type_name, fields=fields)

    def _parse_call_args(self) -> list[Expr]:
        """'(' (expr (',' expr)*)? ')'"""
        self.expect(TokenKind.LPAREN)
        args: list[Expr] = []
        if self.current.kind != TokenKind.RPAREN:
            args.append(self.parse_expr())
            while self.match(TokenKind.COMMA):
                args.append(self.parse_expr())
        self.expect(TokenKind.RPAREN)
        return args

    def _parse_list_items(self) -> list[Expr]:
        """'[' (expr (',' expr)*)? ']'"""
        self.expect(TokenKind.LBRACKET)
        items: list[Expr] = []
        if self.current.kind != TokenKind.RBRACKET:
            items.append(self.parse_expr())
            while self.match(TokenKind.COMMA):
                if self.current.kind == TokenKind.RBRACKET:
                    break
                items.append(self.parse_expr())
        self.expect(TokenKind.RBRACKET)
        return items


def parse_expr(source: str) -> Expr:
    """Parse an expression string into an AST.

    Args:
        source: Expression string (e.g., "self.header?.len() == self.write.len()")

    Returns:
        Parsed expression AST.

    Raises:
        ExpressionParseError: If the expression is invalid or tokenization fails.
    """
    parser = _Parser(tokenize_source(source, ExpressionParseError))
    expr = parser.parse_expr()

    # Ensure all tokens consumed
    if parser.current.kind != TokenKind.EOF:
        raise ExpressionParseError(
            f"Unexpected token after expression: {parser.current.value!r}",
            parser.current.pos,
        )

    return expr


@lru_cache(maxsize=1024)
def parse_cached(source: str) -> Expr:
    """``parse_expr`` memoized by source text. Declarations reuse the same checks."""
    return parse_expr(source)
