"""Tests for the declaration store."""

from __future__ import annotations

from pathlib import Path

import pytest

from permute.core.document_loader import load_documents
from permute.core.errors import ErrorCode, LoadError
from permute.core.ir.declarations import TypeKind
from permute.core.ir.types import TRANSPARENT, NamedType, TypeParam
from permute.core.store import load

TRANSFORM = """
permute:
  type: transform
"""


class TestRegistration:
    def test_prelude_is_loaded(self, prelude_store) -> None:
        assert "permute::Integer" in prelude_store.types
        assert "permute::ConstEq" in prelude_store.traits
        assert "permute::panic" in prelude_store.functions
        assert prelude_store.namespaces == ["permute"]

    def test_qualified_names(self, make_store) -> None:
        store = make_store(
            (
                "io::Csv",
                TRANSFORM
                + """
type RowSequence:
  public:
    start: Integer
trait Write:
""",
            )
        )
        assert "io::Csv::RowSequence" in store.types
        assert "io::Csv::Write" in store.traits
        field = store.types["io::Csv::RowSequence"].field("start")
        assert field is not None
        assert field.type == NamedType(name="permute::Integer")

    def test_document_type_uses_namespace(self, make_store) -> None:
        store = make_store(("Csv", "permute:\n  type: sink\nparams:\n  path: String\n"))
        assert "Csv" in store.types
        assert store.schemas["Csv"].output == NamedType(name="Csv")

    def test_duplicate_declaration(self, make_store) -> None:
        with pytest.raises(LoadError) as exc:
            make_store(("t", TRANSFORM + "type A:\nenum A:\n  - X\n"))
        assert ErrorCode.DUPLICATE_DECLARATION in exc.value.codes

    def test_repeated_key_in_one_document(self, make_store) -> None:
        with pytest.raises(LoadError) as exc:
            make_store(("t", TRANSFORM + "trait Show:\ntrait Show:\n"))
        assert exc.value.codes == [ErrorCode.DUPLICATE_DECLARATION]

    def test_same_name_in_two_namespaces(self, make_store) -> None:
        store = make_store(("a", TRANSFORM + "type A:\n"), ("b", TRANSFORM + "type A:\n"))
        assert {"a::A", "b::A"} <= set(store.types)

    def test_duplicate_namespace(self, make_document) -> None:
        doc = make_document("a", TRANSFORM)
        with pytest.raises(LoadError) as exc:
            load([doc, doc])
        assert exc.value.codes == [ErrorCode.DUPLICATE_DECLARATION]

    def test_store_is_read_only(self, prelude_store) -> None:
        with pytest.raises(TypeError):
            prelude_store.types["x"] = prelude_store.types["permute::Integer"]  # type: ignore[index]


class TestImports:
    def test_explicit_import_and_alias(self, make_store) -> None:
        store = make_store(
            ("transform", TRANSFORM + "type Money:\n  inner: Integer\n"),
            (
                "user",
                """
permute:
  type: transform
  use:
    - transform::Money as Cash
type Wallet:
  public:
    balance: Cash
""",
            ),
        )
        field = store.types["user::Wallet"].field("balance")
        assert field is not None and field.type == NamedType(name="transform::Money")
        assert store.resolve_name("Cash", "user") == "transform::Money"
        assert store.resolve_name("Cash", "transform") is None

    def test_crate_prefix(self, make_store) -> None:
        store = make_store(
            ("monetary", TRANSFORM + "type Monetary:\n  inner: Integer\n"),
            ("user", TRANSFORM + "type Pay:\n  public:\n    amount: crate::monetary::Monetary\n"),
        )
        assert store.resolve_name("crate::monetary::Monetary", "user") == "monetary::Monetary"

    def test_glob_import(self, make_store) -> None:
        store = make_store(
            ("shapes", TRANSFORM + "type Circle:\n"),
            ("user", "permute:\n  type: transform\n  use: shapes::*\n"),
        )
        assert store.resolve_name("Circle", "user") == "shapes::Circle"
        assert store.resolve_name("Integer", "user") == "permute::Integer"

    def test_ambiguous_glob(self, make_store) -> None:
        user = "permute:\n  type: transform\n  use:\n    - a::*\n    - b::*\ntype U:\n  public:\n    x: A\n"
        with pytest.raises(LoadError) as exc:
            make_store(("a", TRANSFORM + "type A:\n"), ("b", TRANSFORM + "type A:\n"), ("user", user))
        assert exc.value.codes == [ErrorCode.DUPLICATE_DECLARATION]
        assert "ambiguous" in exc.value.diagnostics[0].message

    def test_unknown_import(self, make_store) -> None:
        with pytest.raises(LoadError) as exc:
            make_store(("user", "permute:\n  type: transform\n  use: nowhere::Thing\n"))
        assert exc.value.codes == [ErrorCode.UNKNOWN_IMPORT]
        assert exc.value.diagnostics[0].details["path"] == "nowhere::Thing"

    def test_unknown_glob_namespace(self, make_store) -> None:
        with pytest.raises(LoadError) as exc:
            make_store(("user", "permute:\n  type: transform\n  use: nowhere::*\n"))
        assert exc.value.codes == [ErrorCode.UNKNOWN_IMPORT]

    def test_import_collides_with_local(self, make_store) -> None:
        user = "permute:\n  type: transform\n  use: a::A\ntype A:\n"
        with pytest.raises(LoadError) as exc:
            make_store(("a", TRANSFORM + "type A:\n"), ("user", user))
        assert exc.value.codes == [ErrorCode.DUPLICATE_DECLARATION]

    def test_host_import_is_trusted(self, make_store) -> None:
        user = (
            "permute:\n  type: transform\n  use: chrono::NaiveDate\n"
            "type Shift:\n  public:\n    day: NaiveDate\n"
        )
        store = make_store(("user", user), host_modules=("chrono",))
        field = store.types["user::Shift"].field("day")
        assert field is not None and field.type == NamedType(name="chrono::NaiveDate")
        assert store.is_host_type(field.type)

    def test_host_import_without_manifest_entry(self, make_store) -> None:
        with pytest.raises(LoadError) as exc:
            make_store(("user", "permute:\n  type: transform\n  use: chrono::NaiveDate\n"))
        assert exc.value.codes == [ErrorCode.UNKNOWN_IMPORT]

    def test_unresolved_type(self, make_store) -> None:
        with pytest.raises(LoadError) as exc:
            make_store(("t", TRANSFORM + "type A:\n  public:\n    x: Missing\n"))
        assert exc.value.codes == [ErrorCode.UNRESOLVED_REFERENCE]
        assert exc.value.diagnostics[0].details["name"] == "Missing"

    def test_visible_extensions(self, make_store) -> None:
        store = make_store(
            ("ext", TRANSFORM + "impl String as Shout:\n  fn shout(self) -> String: self\n"),
            ("user", "permute:\n  type: transform\n  use: ext::Shout\n"),
            ("other", TRANSFORM),
        )
        assert store.visible_extensions("user") == ("ext::Shout",)
        assert store.visible_extensions("ext") == ("ext::Shout",)
        assert store.visible_extensions("other") == ()


class TestImpls:
    def test_generic_target_becomes_param(self, make_store) -> None:
        store = make_store(("t", TRANSFORM + "trait Show:\nimpl<T> Show for Vec<T>:\n"))
        (impl,) = store.impls_for_trait("t::Show")
        assert impl.target == NamedType(name="permute::Vec", args=(TypeParam(name="T"),))
        assert not impl.is_blanket

    def test_trait_named_args_become_assoc(self, make_store) -> None:
        store = make_store(
            (
                "t",
                TRANSFORM
                + """
type Counter:
impl permute::EndlessIterator<Item = Integer> for Counter:
  fn next(mut self) -> Integer: 1
""",
            )
        )
        (impl,) = store.impls_for_trait("permute::EndlessIterator")
        assert impl.trait_ref == NamedType(name="permute::EndlessIterator")
        assert impl.assoc == (("Item", NamedType(name="permute::Integer")),)

    def test_unknown_assoc_type(self, make_store) -> None:
        with pytest.raises(LoadError) as exc:
            make_store(("t", TRANSFORM + "trait Show:\nimpl Show for Integer:\n  type Output: String\n"))
        assert exc.value.codes == [ErrorCode.INVALID_DECLARATION]

    def test_impl_of_non_trait(self, make_store) -> None:
        with pytest.raises(LoadError) as exc:
            make_store(("t", TRANSFORM + "type Plain:\nimpl Plain for Integer:\n"))
        assert "is not a trait" in str(exc.value)

    def test_where_bound_must_be_a_trait(self, make_store) -> None:
        source = TRANSFORM + "trait Show:\nimpl<T, U> Show for Vec<T>:\n  where:\n    T: U\n"
        with pytest.raises(LoadError) as exc:
            make_store(("t", source))
        assert ErrorCode.INVALID_DECLARATION in exc.value.codes
        assert "Expected a trait, got 'U'" in str(exc.value)

    def test_transparent_impl_is_synthesized(self, make_store) -> None:
        store = make_store(("m", TRANSFORM + "type Monetary:\n  inner: Integer\n"))
        assert store.types["m::Monetary"].kind == TypeKind.TRANSPARENT
        impls = [i for i in store.impls_for_trait(TRANSPARENT) if i.target == NamedType(name="m::Monetary")]
        assert len(impls) == 1
        assert impls[0].synthesized
        assert impls[0].assoc == (("Inner", NamedType(name="permute::Integer")),)

    def test_impls_are_ordered_by_namespace_and_index(self, make_store) -> None:
        store = make_store(
            ("b", TRANSFORM + "trait Show:\nimpl Show for Integer:\nimpl Show for String:\n"),
            ("a", "permute:\n  type: transform\n  use: b::Show\nimpl Show for Float:\n"),
        )
        keys = [i.key for i in store.impls_for_trait("b::Show")]
        assert keys == [("a", 0), ("b", 0), ("b", 1)]

    def test_specializations_index(self, prelude_store) -> None:
        names = [t.name for t in prelude_store.specializations_of("permute::Eq")]
        assert names == ["permute::ConstEq"]


class TestSampleProject:
    def test_loads(self, sample_dir: Path) -> None:
        docs = load_documents(sorted(sample_dir.glob("*.yaml")), sample_dir)
        store = load(docs, host_modules=("chrono", "ee_to_csv"))
        assert set(store.schemas) == {"Csv", "EmploymentRecord"}
        assert store.feeders["CsvFeed"].sink == "Csv"
        assert "monetary::Monetary" in store.types
        assert "Csv::RowSequence" in store.types
        assert store.resolve_name("EmploymentRecordExt2", "CsvFeed") == "transform::EmploymentRecordExt"
        assert "CsvFeed::EmploymentRecordExt" in store.visible_extensions("CsvFeed")
