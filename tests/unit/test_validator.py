"""Tests for schema validation of supplied parameters."""

from __future__ import annotations

import datetime
import textwrap
from decimal import Decimal

import pytest
import yaml
from hypothesis import given, settings
from hypothesis import strategies as st

from permute.core.document_loader import parse_document
from permute.core.errors import ErrorCode, ValidationError
from permute.core.expression_lang.values import BindingRef, HostClosure, TypeToken, Wrapped
from permute.core.ir.location import SourceLocation
from permute.core.ir.types import NamedType
from permute.core.store import Store, load
from permute.core.validator import SchemaValidator

STRING = NamedType(name="permute::String")

REPORT = """
permute:
  type: sink
params:
  path: String
  count:
    type: Integer
    default: 1
    check: self >= 0
  started: Date
  columns: Vec<String>
  header:
    type: Option<Vec<String>>
    default: None
  mode:
    type: Mode
    default: Fast
  seq:
    type: Option<Sequence>
    default: None
  secret:
    type: Option<Secret>
    default: None
  amount:
    type: Option<Money>
    default: None
  fmt:
    type: Option<Fn(Date) -> String>
    default: None
  record_ty:
    type: dyn Row
    default: String
  each:
    type: Option<Iterator<Item = self::record_ty>>
    default: None
check:
  - explain: Header matches the columns.
    define: self.header?.len() == self.columns.len()
enum Mode:
  - Fast
  - Slow
type Sequence:
  public:
    start:
      type: Integer
      default: 1
      check: self >= 0
type Secret:
  public:
    a: Integer
  private:
    b:
      type: Integer
      default: 0
type Money:
  inner: FixedPoint<Precision = 2>
trait Row:
impl Row for String:
"""

SINK = SourceLocation(document="main", path=("cfg", "sink"))


@pytest.fixture(scope="module")
def store() -> Store:
    return load([parse_document(yaml.safe_load(textwrap.dedent(REPORT)), "Report")])


@pytest.fixture(scope="module")
def validator(store: Store) -> SchemaValidator:
    return SchemaValidator(store)


def required(**extra: object) -> dict[str, object]:
    supplied: dict[str, object] = {
        "path": "out.csv",
        "started": "2019-01-01",
        "columns": ["a", "b"],
    }
    supplied.update(extra)
    return supplied


class TestRequiredAndDefaults:
    def test_missing_required_params(self, validator: SchemaValidator) -> None:
        with pytest.raises(ValidationError) as exc:
            validator.validate("Report", {}, location=SINK)
        assert exc.value.codes == [ErrorCode.MISSING_REQUIRED_PARAM] * 3
        assert [d.details["field"] for d in exc.value.diagnostics] == ["path", "started", "columns"]
        assert exc.value.diagnostics[0].location.path == ("cfg", "sink", "path")

    def test_defaults(self, validator: SchemaValidator) -> None:
        params = validator.validate("Report", required(), location=SINK)
        assert params["count"].value == 1
        assert params["header"].value is None
        assert params["mode"].value == "Fast"
        assert params["started"].value == datetime.date(2019, 1, 1)
        assert params.to_plain()["columns"] == ["a", "b"]

    def test_all_defaults(self) -> None:
        source = "permute:\n  type: sink\nparams:\n  label:\n    type: String\n    default: total\n"
        store = load([parse_document(yaml.safe_load(source), "Opts")])
        params = SchemaValidator(store).validate("Opts", {})
        assert params.to_plain() == {"label": "total"}

    def test_unknown_schema(self, validator: SchemaValidator) -> None:
        _, diagnostics = validator.collect("Nope", {})
        assert [d.code for d in diagnostics] == [ErrorCode.UNRESOLVED_REFERENCE]

    def test_unknown_parameter(self, validator: SchemaValidator) -> None:
        _, diagnostics = validator.collect("Report", required(bogus=1), location=SINK)
        assert [d.code for d in diagnostics] == [ErrorCode.TYPE_MISMATCH]
        assert "Unknown parameter 'bogus'" in diagnostics[0].message


class TestConversion:
    def test_type_mismatch(self, validator: SchemaValidator) -> None:
        _, diagnostics = validator.collect("Report", required(count="many"), location=SINK)
        assert [d.code for d in diagnostics] == [ErrorCode.TYPE_MISMATCH]
        assert diagnostics[0].location.path[-1] == "count"

    def test_date_from_yaml(self, validator: SchemaValidator) -> None:
        params = validator.validate("Report", required(started=datetime.date(2020, 5, 1)))
        assert params["started"].value == datetime.date(2020, 5, 1)

    def test_invalid_date(self, validator: SchemaValidator) -> None:
        _, diagnostics = validator.collect("Report", required(started="2019-13-01"))
        assert len(diagnostics) == 1
        assert "ISO 8601" in diagnostics[0].message

    def test_option_accepts_none_string(self, validator: SchemaValidator) -> None:
        params = validator.validate("Report", required(header="None"))
        assert params["header"].value is None

    def test_vec_requires_list(self, validator: SchemaValidator) -> None:
        _, diagnostics = validator.collect("Report", required(columns="a,b"))
        assert "Expected a list" in diagnostics[0].message

    def test_enum(self, validator: SchemaValidator) -> None:
        assert validator.validate("Report", required(mode="Slow"))["mode"].value == "Slow"
        _, diagnostics = validator.collect("Report", required(mode="Medium"))
        assert "Expected one of Fast, Slow" in diagnostics[0].message

    def test_transparent_wraps_coerced_value(self, validator: SchemaValidator) -> None:
        amount = validator.validate("Report", required(amount=5))["amount"]
        inner = amount.value
        assert inner is not None
        assert isinstance(inner.value, Wrapped)
        assert inner.value.inner.value == Decimal("5.00")

    def test_nested_struct_check(self, validator: SchemaValidator) -> None:
        _, diagnostics = validator.collect("Report", required(seq={"start": -1}), location=SINK)
        assert [d.code for d in diagnostics] == [ErrorCode.CHECK_VIOLATION]
        assert diagnostics[0].location.path == ("cfg", "sink", "seq", "start")
        assert diagnostics[0].details["predicate"] == "self >= 0"

    def test_private_field_cannot_be_set(self, validator: SchemaValidator) -> None:
        _, diagnostics = validator.collect("Report", required(secret={"a": 1, "b": 2}))
        assert [d.code for d in diagnostics] == [ErrorCode.TYPE_MISMATCH]
        assert "is private" in diagnostics[0].message
        params = validator.validate("Report", required(secret={"a": 1}))
        assert params["secret"].value.value["b"].value == 0

    def test_closure(self, validator: SchemaValidator) -> None:
        fmt = validator.validate("Report", required(fmt="|d| d.format('%Y')"))["fmt"]
        assert isinstance(fmt.value.value, HostClosure)
        assert fmt.value.value.params == ("d",)
        mapped = validator.validate("Report", required(fmt={"(d)": "'x'"}))["fmt"]
        assert mapped.value.value.arity == 1
        _, diagnostics = validator.collect("Report", required(fmt="|a, b| a"))
        assert "Closure takes 2 argument(s)" in diagnostics[0].message


class TestChecks:
    def test_field_check(self, validator: SchemaValidator) -> None:
        _, diagnostics = validator.collect("Report", required(count=-1), location=SINK)
        assert [d.code for d in diagnostics] == [ErrorCode.CHECK_VIOLATION]
        assert diagnostics[0].details == {"field": "count", "predicate": "self >= 0"}

    def test_cross_field_check(self, validator: SchemaValidator) -> None:
        _, diagnostics = validator.collect(
            "Report", required(columns=["a", "b", "c"], header=["A", "B"])
        )
        assert [d.code for d in diagnostics] == [ErrorCode.CROSS_FIELD_CHECK_VIOLATION]
        assert "Header matches the columns." in diagnostics[0].message

    def test_cross_field_check_passes(self, validator: SchemaValidator) -> None:
        params = validator.validate("Report", required(header=["A", "B"]))
        assert params.to_plain()["header"] == ["A", "B"]

    def test_cross_field_check_runs_beside_unrelated_errors(self, validator: SchemaValidator) -> None:
        _, diagnostics = validator.collect(
            "Report", required(path=5, count=-1, columns=["a", "b", "c"], header=["A", "B"])
        )
        assert [d.code for d in diagnostics] == [
            ErrorCode.TYPE_MISMATCH,
            ErrorCode.CHECK_VIOLATION,
            ErrorCode.CROSS_FIELD_CHECK_VIOLATION,
        ]

    def test_cross_field_check_skipped_when_its_field_fails(
        self, validator: SchemaValidator
    ) -> None:
        _, diagnostics = validator.collect("Report", required(columns="a,b", header=["A", "B"]))
        assert [d.code for d in diagnostics] == [ErrorCode.TYPE_MISMATCH]


class TestTypeParams:
    def test_dyn_param_binds_type(self, validator: SchemaValidator) -> None:
        params = validator.validate("Report", required(each="rows"))
        assert params["record_ty"].value == TypeToken(STRING)
        assert params["each"].value.value == BindingRef("rows")
        assert params.references == ["rows"]
        each = params.types["each"]
        assert isinstance(each, NamedType)
        iterator = each.args[0]
        assert isinstance(iterator, NamedType)
        assert iterator.named_arg("Item") == STRING

    def test_dyn_param_requires_impl(self, validator: SchemaValidator) -> None:
        _, diagnostics = validator.collect("Report", required(record_ty="Integer"))
        assert [d.code for d in diagnostics] == [ErrorCode.NOT_IMPLEMENTED]


class TestIdempotence:
    @given(
        header=st.lists(st.sampled_from(["A", "B", "C"]), min_size=0, max_size=4),
        columns=st.lists(st.sampled_from(["a", "b"]), min_size=0, max_size=4),
    )
    @settings(max_examples=30, deadline=None)
    def test_revalidation_is_stable(
        self, validator: SchemaValidator, header: list[str], columns: list[str]
    ) -> None:
        supplied = required(header=header, columns=columns)
        params, diagnostics = validator.collect("Report", supplied)
        assert (len(header) != len(columns)) == bool(diagnostics)
        if diagnostics:
            return
        again, problems = validator.collect("Report", dict(params.values))
        assert problems == []
        assert again == params


class TestRecursion:
    def test_recursive_default_function(self) -> None:
        source = """
        permute:
          type: sink
        params:
          n:
            type: Integer
            default: spin(1)
        const fn spin(x = Integer) -> Integer: spin(x)
        """
        store = load([parse_document(yaml.safe_load(textwrap.dedent(source)), "S")])
        _, diagnostics = SchemaValidator(store).collect("S", {})
        assert [d.code for d in diagnostics] == [ErrorCode.INVALID_DECLARATION]
        assert "nests deeper than" in diagnostics[0].message

    def test_self_nesting_struct_default(self) -> None:
        source = """
        permute:
          type: sink
        params:
          a:
            type: A
            default: {}
        type A:
          public:
            b:
              type: A
              default: {}
        """
        store = load([parse_document(yaml.safe_load(textwrap.dedent(source)), "S")])
        _, diagnostics = SchemaValidator(store).collect("S", {})
        assert [d.code for d in diagnostics] == [ErrorCode.INVALID_DECLARATION]
        assert "nest deeper than" in diagnostics[0].message
