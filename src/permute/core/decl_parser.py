"""
Parser for declaration keys.

Document mappings use declaration headers as keys, for example::

    extern type FixedPoint<const Precision = Integer>
    trait ConstEq<T>
    enum Option<T>
    impl<T, U> Into<U> for T
    impl EmploymentRecord as EmploymentRecordExt
    impl<T> Option<T>
    extern const fn eq(self, other = Integer) -> Boolean
    type Output

This module turns such a key into a header record. The document loader
pairs it with the mapping value to build the full declaration.
"""

from __future__ import annotations

from dataclasses import dataclass

from .expression_lang.tokenizer import TokenKind
from .expression_lang.type_parser import TypeParseError, TypeParser, tokenize_source
from .ir.declarations import GenericParam, ParamDecl, Receiver
from .ir.types import NamedType, TypeExpr

DECLARATION_KEYWORDS = ("type", "extern", "trait", "enum", "impl", "fn", "const")


@dataclass(frozen=True)
class TypeHeader:
    """``[extern] type Name<generics>``. Inside trait and impl bodies: an associated type."""

    name: str
    generics: tuple[GenericParam, ...] = ()
    is_extern: bool = False


@dataclass(frozen=True)
class TraitHeader:
    name: str
    generics: tuple[GenericParam, ...] = ()


@dataclass(frozen=True)
class EnumHeader:
    name: str
    generics: tuple[GenericParam, ...] = ()


@dataclass(frozen=True)
class ImplHeader:
    """Trait impl, inherent impl (no trait) or named extension (``extension`` set)."""

    target: TypeExpr
    trait_ref: NamedType | None = None
    generics: tuple[GenericParam, ...] = ()
    extension: str | None = None


@dataclass(frozen=True)
class FnHeader:
    name: str
    generics: tuple[GenericParam, ...] = ()
    receiver: Receiver = Receiver.NONE
    params: tuple[ParamDecl, ...] = ()
    returns: TypeExpr | None = None
    is_const: bool = False
    is_extern: bool = False


Header = TypeHeader | TraitHeader | EnumHeader | ImplHeader | FnHeader


def is_declaration_key(key: str) -> bool:
    """True if a document key starts with a declaration keyword."""
    first = key.strip().split(None, 1)[0] if key.strip() else ""
    first = first.split("<", 1)[0]
    return first in DECLARATION_KEYWORDS


class _HeaderParser(TypeParser):
    """Declaration header grammar on top of the type grammar."""

    def parse_header(self) -> Header:
        is_extern = False
        is_const = False
        while self.at_word("extern") or self.at_word("const"):
            word = self.advance().value
            if word == "extern":
                is_extern = True
            else:
                is_const = True

        if self.at_word("fn"):
            return self.parse_fn(is_const=is_const, is_extern=is_extern)
        if is_const:
            raise self.error_cls("'const' must be followed by 'fn'", self.current.pos)
        if self.at_word("type"):
            self.advance()
            name = self.expect(TokenKind.IDENT).value
            return TypeHeader(name=name, generics=self.parse_generics(), is_extern=is_extern)
        if is_extern:
            raise self.error_cls("'extern' must be followed by 'type' or 'fn'", self.current.pos)
        if self.at_word("trait"):
            self.advance()
            name = self.expect(TokenKind.IDENT).value
            return TraitHeader(name=name, generics=self.parse_generics())
        if self.at_word("enum"):
            self.advance()
            name = self.expect(TokenKind.IDENT).value
            return EnumHeader(name=name, generics=self.parse_generics())
        if self.at_word("impl"):
            return self.parse_impl()
        raise self.error_cls(f"Unknown declaration: {self.current.value!r}", self.current.pos)

    def parse_generics(self) -> tuple[GenericParam, ...]:
        """'<' (['const'] IDENT ['=' type])* '>'"""
        params: list[GenericParam] = []
        if not self.match(TokenKind.LT):
            return ()
        while True:
            if self.at_word("const"):
                self.advance()
                name = self.expect(TokenKind.IDENT).value
                const_type = None
                if self.match(TokenKind.ASSIGN) or self.match(TokenKind.COLON):
                    const_type = self.parse_type()
                params.append(GenericParam(name=name, is_const=True, const_type=const_type))
            else:
                params.append(GenericParam(name=self.expect(TokenKind.IDENT).value))
            if not self.match(TokenKind.COMMA):
                break
        self.expect(TokenKind.GT)
        return tuple(params)

    def parse_impl(self) -> ImplHeader:
        self.expect_word("impl")
        generics = self.parse_generics()
        first = self.parse_type()

        if self.at_word("for"):
            self.advance()
            if not isinstance(first, NamedType):
                raise self.error_cls(f"Expected a trait, got {first}", self.current.pos)
            target = self.parse_type()
            return ImplHeader(target=target, trait_ref=first, generics=generics)

        if self.match(TokenKind.AS):
            extension = self.expect(TokenKind.IDENT).value
            return ImplHeader(target=first, generics=generics, extension=extension)

        return ImplHeader(target=first, generics=generics)

    def parse_fn(self, *, is_const: bool, is_extern: bool) -> FnHeader:
        self.expect_word("fn")
        name = self.expect(TokenKind.IDENT).value
        generics = self.parse_generics()
        self.expect(TokenKind.LPAREN)

        receiver = Receiver.NONE
        params: list[ParamDecl] = []
        index = 0
        while self.current.kind != TokenKind.RPAREN:
            if index == 0 and self._at_receiver():
                receiver = self._parse_receiver()
            else:
                params.append(self._parse_param(len(params)))
            index += 1
            if not self.match(TokenKind.COMMA):
                break
        self.expect(TokenKind.RPAREN)

        returns = None
        if self.match(TokenKind.ARROW):
            returns = self.parse_type()

        return FnHeader(
            name=name,
            generics=generics,
            receiver=receiver,
            params=tuple(params),
            returns=returns,
            is_const=is_const,
            is_extern=is_extern,
        )

    def _at_receiver(self) -> bool:
        offset = 0
        if self.peek(offset).kind == TokenKind.AMP:
            offset += 1
        if self.at_word("mut", offset):
            offset += 1
        return self.at_word("self", offset) and self.peek(offset + 1).kind in (
            TokenKind.COMMA,
            TokenKind.RPAREN,
        )

    def _parse_receiver(self) -> Receiver:
        self.match(TokenKind.AMP)
        mutable = False
        if self.at_word("mut"):
            self.advance()
            mutable = True
        self.expect_word("self")
        return Receiver.MUT_SELF if mutable else Receiver.SELF

    def _parse_param(self, position: int) -> ParamDecl:
        """``name = Type``, ``name: Type`` or a bare ``Type``."""
        if self.current.kind == TokenKind.IDENT and self.peek(1).kind in (
            TokenKind.ASSIGN,
            TokenKind.COLON,
        ):
            name = self.advance().value
            self.advance()
            return ParamDecl(name=name, type=self.parse_type())
        return ParamDecl(name=f"arg{position}", type=self.parse_type())


def parse_header(key: str) -> Header:
    """Parse a declaration key.

    Args:
        key: Document key (e.g., "impl<T> Iterator for Source<T>")

    Returns:
        Header record describing the declaration.

    Raises:
        TypeParseError: If the key is not a valid declaration header.
    """
    parser = _HeaderParser(tokenize_source(key, TypeParseError))
    header = parser.parse_header()
    parser.expect_end()
    return header


__all__ = [
    "EnumHeader",
    "FnHeader",
    "Header",
    "ImplHeader",
    "TraitHeader",
    "TypeHeader",
    "TypeParseError",
    "is_declaration_key",
    "parse_header",
]
