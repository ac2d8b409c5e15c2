"""
Recursive descent parser for type expressions.

Grammar:
    type        → "&" "mut"? type | "mut" type
                | ("dyn" | "impl") bound
                | "(" (type ("," type)* ","?)? ")"
                | "_" | "!" | const
                | path
    path        → IDENT ("::" IDENT)* fn_sugar? generics?
    fn_sugar    → "(" (type ("," type)*)? ")" ("->" type)?      # after Fn/FnMut/FnOnce
    generics    → "<" garg ("," garg)* ">"
    garg        → IDENT "=" type | type
    bounds      → "~"? path ("+" "~"? path)*
    const       → INT | FLOAT | STRING | "true" | "false"

References are erased: ``&dyn Any`` parses as ``dyn Any`` and ``mut Self``
as ``Self``.
"""

from __future__ import annotations

from ..ir.types import (
    NEVER,
    ConstType,
    DynType,
    FnType,
    InferType,
    NamedType,
    ParamRef,
    Projection,
    SelfType,
    TupleType,
    TypeExpr,
)
from .tokenizer import ExpressionTokenError, Token, TokenKind, tokenize

FN_TRAITS = frozenset({"Fn", "FnMut", "FnOnce"})


class TypeParseError(Exception):
    """Error during type expression parsing."""

    def __init__(self, message: str, pos: int = 0) -> None:
        super().__init__(message)
        self.pos = pos


class TypeParser:
    """Token cursor plus the type grammar. Subclassed by the expression parser."""

    error_cls: type[TypeParseError] = TypeParseError

    def __init__(self, tokens: list[Token]) -> None:
        self.tokens = tokens
        self.pos = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.pos]

    def peek(self, offset: int = 0) -> Token:
        idx = self.pos + offset
        if idx < len(self.tokens):
            return self.tokens[idx]
        return self.tokens[-1]  # EOF

    def advance(self) -> Token:
        tok = self.tokens[self.pos]
        if self.pos < len(self.tokens) - 1:
            self.pos += 1
        return tok

    def expect(self, kind: TokenKind) -> Token:
        tok = self.current
        if tok.kind != kind:
            raise self.error_cls(
                f"Expected {kind}, got {tok.kind} ({tok.value!r})",
                tok.pos,
            )
        return self.advance()

    def match(self, *kinds: TokenKind) -> Token | None:
        if self.current.kind in kinds:
            return self.advance()
        return None

    def at_word(self, word: str, offset: int = 0) -> bool:
        tok = self.peek(offset)
        return tok.kind == TokenKind.IDENT and tok.value == word

    def expect_word(self, word: str) -> Token:
        if not self.at_word(word):
            tok = self.current
            raise self.error_cls(f"Expected '{word}', got {tok.value!r}", tok.pos)
        return self.advance()

    def expect_end(self) -> None:
        if self.current.kind != TokenKind.EOF:
            raise self.error_cls(
                f"Unexpected token after type: {self.current.value!r}",
                self.current.pos,
            )

    # -- Type grammar --

    def parse_type(self) -> TypeExpr:
        tok = self.current

        if self.match(TokenKind.AMP):
            if self.at_word("mut"):
                self.advance()
            return self.parse_type()
        if self.at_word("mut"):
            self.advance()
            return self.parse_type()

        if self.at_word("dyn") or self.at_word("impl"):
            keyword = self.advance().value
            bound = self.parse_type()
            return DynType(bound=bound, keyword="dyn" if keyword == "dyn" else "impl")

        if tok.kind == TokenKind.LPAREN:
            return self._parse_tuple()

        if tok.kind == TokenKind.NOT:
            self.advance()
            return NamedType(name=NEVER)

        if tok.kind == TokenKind.IDENT and tok.value == "_":
            self.advance()
            return InferType()

        if tok.kind in (TokenKind.INT, TokenKind.FLOAT, TokenKind.STRING):
            return self._parse_const()
        if tok.kind in (TokenKind.TRUE, TokenKind.FALSE):
            self.advance()
            return ConstType(value=tok.kind == TokenKind.TRUE)
        if tok.kind == TokenKind.MINUS and self.peek(1).kind in (TokenKind.INT, TokenKind.FLOAT):
            self.advance()
            const = self._parse_const()
            assert isinstance(const.value, int | float)
            return ConstType(value=-const.value)

        if tok.kind == TokenKind.IDENT:
            return self.parse_path_type()

        raise self.error_cls(f"Expected a type, got {tok.kind} ({tok.value!r})", tok.pos)

    def parse_path_type(self) -> TypeExpr:
        """IDENT ('::' IDENT)* followed by Fn sugar or generic arguments."""
        segments = [self.expect(TokenKind.IDENT).value]
        while self.current.kind == TokenKind.PATH_SEP and self.peek(1).kind == TokenKind.IDENT:
            self.advance()
            segments.append(self.advance().value)

        if len(segments) == 1 and segments[0] in FN_TRAITS and self.current.kind == TokenKind.LPAREN:
            return self._parse_fn_sugar()

        if segments[0] == "Self" and len(segments) == 1:
            return SelfType()
        if segments[0] in ("Self", "super") and len(segments) == 2:
            return Projection(owner="Self" if segments[0] == "Self" else "super", name=segments[1])
        if segments[0] == "self" and len(segments) == 2:
            return ParamRef(name=segments[1])

        args: list[TypeExpr] = []
        named: dict[str, TypeExpr] = {}
        if self.current.kind == TokenKind.LT:
            self.advance()
            while True:
                if self.current.kind == TokenKind.IDENT and self.peek(1).kind == TokenKind.ASSIGN:
                    key = self.advance().value
                    self.advance()
                    if key in named:
                        raise self.error_cls(f"Duplicate type argument '{key}'", self.current.pos)
                    named[key] = self.parse_type()
                else:
                    args.append(self.parse_type())
                if not self.match(TokenKind.COMMA):
                    break
            self.expect(TokenKind.GT)

        return NamedType(
            name="::".join(segments),
            args=tuple(args),
            named=tuple(sorted(named.items(), key=lambda kv: kv[0])),
        )

    def parse_bounds(self) -> list[tuple[NamedType, bool]]:
        """bound ('+' bound)* where a leading '~' requires the const form."""
        bounds: list[tuple[NamedType, bool]] = []
        while True:
            const_required = bool(self.match(TokenKind.TILDE))
            tok = self.current
            bound = self.parse_path_type()
            if not isinstance(bound, NamedType):
                raise self.error_cls(f"Expected a trait bound, got {bound}", tok.pos)
            bounds.append((bound, const_required))
            if not self.match(TokenKind.PLUS):
                return bounds

    def parse_type_list(self, close: TokenKind) -> list[TypeExpr]:
        items: list[TypeExpr] = []
        if self.current.kind != close:
            items.append(self.parse_type())
            while self.match(TokenKind.COMMA):
                if self.current.kind == close:
                    break
                items.append(self.parse_type())
        self.expect(close)
        return items

    def _parse_fn_sugar(self) -> FnType:
        self.expect(TokenKind.LPAREN)
        params = self.parse_type_list(TokenKind.RPAREN)
        returns = None
        if self.match(TokenKind.ARROW):
            returns = self.parse_type()
        return FnType(params=tuple(params), returns=returns)

    def _parse_tuple(self) -> TypeExpr:
        self.expect(TokenKind.LPAREN)
        items: list[TypeExpr] = []
        trailing_comma = False
        if self.current.kind != TokenKind.RPAREN:
            items.append(self.parse_type())
            while self.match(TokenKind.COMMA):
                trailing_comma = True
                if self.current.kind == TokenKind.RPAREN:
                    break
                trailing_comma = False
                items.append(self.parse_type())
        self.expect(TokenKind.RPAREN)
        if len(items) == 1 and not trailing_comma:
            return items[0]
        return TupleType(items=tuple(items))

    def _parse_const(self) -> ConstType:
        tok = self.advance()
        if tok.kind == TokenKind.INT:
            return ConstType(value=int(tok.value))
        if tok.kind == TokenKind.FLOAT:
            return ConstType(value=float(tok.value))
        return ConstType(value=tok.value)


def tokenize_source(source: str, error_cls: type[TypeParseError]) -> list[Token]:
    try:
        return tokenize(source)
    except ExpressionTokenError as e:
        raise error_cls(str(e), e.pos) from e


def parse_type(source: str) -> TypeExpr:
    """Parse a type expression string.

    Args:
        source: Type string (e.g., "Option<Vec<String>>")

    Returns:
        Parsed type expression with names as written.

    Raises:
        TypeParseError: If the string is not a valid type.
    """
    parser = TypeParser(tokenize_source(source, TypeParseError))
    result = parser.parse_type()
    parser.expect_end()
    return result


def parse_bounds(source: str) -> list[tuple[NamedType, bool]]:
    """Parse a ``+``-separated bound list such as ``From<T> + ~ConstFrom<T>``."""
    parser = TypeParser(tokenize_source(source, TypeParseError))
    result = parser.parse_bounds()
    parser.expect_end()
    return result
