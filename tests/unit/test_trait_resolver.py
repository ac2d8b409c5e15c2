"""Tests for trait resolution: candidate collection, specialization and tie rules."""

from __future__ import annotations

import textwrap
from concurrent.futures import ThreadPoolExecutor

import pytest
import yaml
from hypothesis import given, settings
from hypothesis import strategies as st

from permute.core.document_loader import parse_document
from permute.core.ir.types import ConstType, NamedType, TupleType
from permute.core.store import load
from permute.core.traits.resolver import (
    CandidateOrigin,
    ResolutionStatus,
    TraitResolver,
    describe,
)

INTEGER = NamedType(name="permute::Integer")
STRING = NamedType(name="permute::String")
FLOAT = NamedType(name="permute::Float")


def _doc(namespace: str, body: str):
    source = "permute:\n  type: transform\n" + textwrap.dedent(body)
    return parse_document(yaml.safe_load(source), namespace)


def named(name: str, *args, **kw) -> NamedType:
    return NamedType(name=name, args=tuple(args), named=tuple(sorted(kw.items())))


@pytest.fixture(scope="module")
def resolver() -> TraitResolver:
    return TraitResolver(load([]))


class TestPrelude:
    def test_const_eq_is_direct(self, resolver: TraitResolver) -> None:
        result = resolver.resolve(INTEGER, "permute::ConstEq", [INTEGER])
        assert result.status == ResolutionStatus.CANDIDATE
        assert result.candidate is not None
        assert result.candidate.origin == CandidateOrigin.DIRECT
        assert result.candidate.is_const

    def test_eq_comes_from_const_eq_specialization(self, resolver: TraitResolver) -> None:
        result = resolver.resolve(INTEGER, "permute::Eq", [INTEGER])
        assert result.found
        candidate = result.candidate
        assert candidate is not None
        assert candidate.origin == CandidateOrigin.SPECIALIZATION
        assert candidate.source_trait is not None
        assert candidate.source_trait.name == "permute::ConstEq"
        assert "(specializes permute::Eq)" in str(candidate)

    def test_ne_defaults_to_negated_eq(self, resolver: TraitResolver) -> None:
        candidate = resolver.resolve(STRING, "permute::ConstEq", [STRING]).candidate
        assert candidate is not None
        eq = candidate.method("eq")
        ne = candidate.method("ne")
        assert eq is not None and eq.is_extern
        assert ne is not None and ne.decl.body == "!self.eq(other)"
        assert ne.is_const

    def test_where_clause(self, resolver: TraitResolver) -> None:
        opt = named("permute::Option", INTEGER)
        assert resolver.resolve(opt, "permute::ConstEq", [opt]).found
        bad = named("permute::Option", named("permute::Vec", INTEGER))
        result = resolver.resolve(bad, "permute::ConstEq", [bad])
        assert result.status == ResolutionStatus.NOT_IMPLEMENTED

    def test_associated_type(self, resolver: TraitResolver) -> None:
        source = named("permute::Source", STRING)
        candidate = resolver.resolve(source, "permute::Iterator").candidate
        assert candidate is not None
        assert candidate.assoc_type("Item") == STRING

    def test_assoc_constraint(self, resolver: TraitResolver) -> None:
        source = named("permute::Source", STRING)
        assert resolver.resolve(source, named("permute::Iterator", Item=STRING)).found
        mismatch = resolver.resolve(source, named("permute::Iterator", Item=INTEGER))
        assert mismatch.status == ResolutionStatus.NOT_IMPLEMENTED

    def test_const_params_match(self, resolver: TraitResolver) -> None:
        money = named("permute::FixedPoint", Precision=ConstType(value=2))
        candidate = resolver.resolve(money, "permute::Add", [money]).candidate
        assert candidate is not None
        assert candidate.assoc_type("Output") == money

    def test_blanket_any(self, resolver: TraitResolver) -> None:
        result = resolver.resolve(TupleType(), "permute::Any")
        assert result.found
        assert result.candidate is not None and result.candidate.is_blanket

    def test_unknown_trait(self, resolver: TraitResolver) -> None:
        result = resolver.resolve(INTEGER, "permute::Nope")
        assert result.status == ResolutionStatus.NOT_IMPLEMENTED
        assert describe(result) == "permute::Integer: permute::Nope: not implemented"

    def test_implements_const(self, resolver: TraitResolver) -> None:
        assert resolver.implements(INTEGER, named("permute::Eq", INTEGER), const=True)
        assert resolver.implements(named("permute::Source", INTEGER), "permute::Iterator")
        assert not resolver.implements(
            named("permute::Source", INTEGER), "permute::Iterator", const=True
        )


class TestSelection:
    def test_specialization_beats_direct_impl(self) -> None:
        store = load(
            [
                _doc(
                    "user",
                    """
                    type Id:
                    impl permute::ConstEq<Id> for Id:
                      extern const fn eq(self, other = Id) -> Boolean:
                    impl permute::Eq<Id> for Id:
                      fn eq(self, other = Id) -> Boolean: "false"
                    """,
                )
            ]
        )
        user_id = NamedType(name="user::Id")
        result = TraitResolver(store).resolve(user_id, "permute::Eq", [user_id])
        assert result.found
        assert result.candidate is not None
        assert result.candidate.origin == CandidateOrigin.SPECIALIZATION

    def test_non_blanket_beats_blanket(self) -> None:
        store = load(
            [
                _doc(
                    "user",
                    """
                    trait Show:
                    impl<T> Show for T:
                    impl Show for Integer:
                    """,
                )
            ]
        )
        result = TraitResolver(store).resolve(INTEGER, "user::Show")
        assert result.candidate is not None
        assert not result.candidate.is_blanket
        assert TraitResolver(store).resolve(STRING, "user::Show").candidate.is_blanket  # type: ignore[union-attr]

    def test_two_blankets_are_ambiguous(self) -> None:
        store = load(
            [
                _doc(
                    "user",
                    """
                    trait Show:
                    impl<T> Show for T:
                    impl<U> Show for U:
                    """,
                )
            ]
        )
        result = TraitResolver(store).resolve(INTEGER, "user::Show")
        assert result.status == ResolutionStatus.AMBIGUOUS
        assert len(result.candidates) == 2
        assert "ambiguous between" in describe(result)

    def test_endless_iterator_specializes_iterator(self) -> None:
        store = load(
            [
                _doc(
                    "user",
                    """
                    type Counter:
                    impl permute::EndlessIterator<Item = Integer> for Counter:
                      fn next(mut self) -> Integer: "1"
                    """,
                )
            ]
        )
        counter = NamedType(name="user::Counter")
        candidate = TraitResolver(store).resolve(counter, "permute::Iterator").candidate
        assert candidate is not None
        assert candidate.origin == CandidateOrigin.SPECIALIZATION
        assert candidate.assoc_type("Item") == INTEGER
        assert candidate.method("next").decl.body == "Some((self as EndlessIterator).next())"  # type: ignore[union-attr]

    def test_recursive_bound_terminates(self) -> None:
        store = load(
            [
                _doc(
                    "user",
                    """
                    trait Show:
                    impl<T> Show for Vec<T>:
                      where:
                        Vec<T>: Show
                    """,
                )
            ]
        )
        vec = named("permute::Vec", INTEGER)
        resolver = TraitResolver(store)
        assert resolver.resolve(vec, "user::Show").status == ResolutionStatus.NOT_IMPLEMENTED
        assert resolver.resolve(vec, "user::Show").status == ResolutionStatus.NOT_IMPLEMENTED


_SHOW_DOCS = [
    ("a", "trait Show:\nimpl<T> Show for T:\n"),
    ("b", "use: a::Show\nimpl Show for Integer:\nimpl Show for Float:\n"),
    ("c", "use: a::Show\nimpl<U> Show for U:\nimpl Show for Vec<String>:\n"),
]


def _show_store(order: list[tuple[str, str]]):
    docs = []
    for ns, body in order:
        if body.startswith("use:"):
            use, _, rest = body.partition("\n")
            source = f"permute:\n  type: transform\n  {use}\n{rest}"
            docs.append(parse_document(yaml.safe_load(source), ns))
        else:
            docs.append(_doc(ns, body))
    return load(docs)


class TestDeterminism:
    @given(order=st.permutations(_SHOW_DOCS))
    @settings(max_examples=20, deadline=None)
    def test_document_order_does_not_matter(self, order: list[tuple[str, str]]) -> None:
        store = _show_store(order)
        resolver = TraitResolver(store)
        queries = [INTEGER, FLOAT, STRING, named("permute::Vec", STRING)]
        results = [resolver.resolve(q, "a::Show") for q in queries]
        summary = [(r.status, tuple(str(c) for c in r.candidates)) for r in results]

        reference = TraitResolver(_show_store(_SHOW_DOCS))
        expected = [
            (r.status, tuple(str(c) for c in r.candidates))
            for r in (reference.resolve(q, "a::Show") for q in queries)
        ]
        assert summary == expected
        assert summary[0][0] == ResolutionStatus.CANDIDATE
        assert summary[2][0] == ResolutionStatus.AMBIGUOUS

    @given(st.sampled_from([INTEGER, FLOAT, STRING]))
    @settings(max_examples=10, deadline=None)
    def test_repeated_queries_agree(self, query: NamedType) -> None:
        resolver = TraitResolver(load([]))
        first = resolver.resolve(query, "permute::Eq", [query])
        second = resolver.resolve(query, "permute::Eq", [query])
        assert first == second
        assert first.found


class TestThreads:
    def test_cycle_guard_is_per_thread(self) -> None:
        resolver = TraitResolver(load([]))
        in_progress, _ = resolver._guard()
        in_progress.append(resolver._query(INTEGER, "permute::Eq", [INTEGER], {}).key())
        try:
            with ThreadPoolExecutor(max_workers=1) as pool:
                result = pool.submit(resolver.resolve, INTEGER, "permute::Eq", [INTEGER]).result()
        finally:
            in_progress.pop()
        assert result.found

    def test_shared_resolver_agrees_with_serial(self) -> None:
        store = _show_store(_SHOW_DOCS)
        queries = [INTEGER, FLOAT, STRING, named("permute::Vec", STRING)] * 8
        shared = TraitResolver(store)
        with ThreadPoolExecutor(max_workers=8) as pool:
            statuses = list(pool.map(lambda q: shared.resolve(q, "a::Show").status, queries))
        serial = TraitResolver(store)
        assert statuses == [serial.resolve(q, "a::Show").status for q in queries]
