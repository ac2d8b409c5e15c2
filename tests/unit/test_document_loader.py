"""Tests for the YAML document loader."""

from __future__ import annotations

from pathlib import Path

import pytest

from permute.core.document_loader import (
    load_document,
    load_documents,
    namespace_for,
    parse_document,
    parse_import,
    read_yaml,
)
from permute.core.errors import ErrorCode, LoadError
from permute.core.ir.declarations import Receiver, TypeKind
from permute.core.ir.document import DocumentKind
from permute.core.ir.types import FnType, NamedType, ParamRef


class TestHeader:
    def test_missing_header(self) -> None:
        with pytest.raises(LoadError) as exc:
            parse_document({"params": {}}, "doc")
        assert exc.value.codes == [ErrorCode.INVALID_DECLARATION]

    def test_unknown_kind(self) -> None:
        with pytest.raises(LoadError) as exc:
            parse_document({"permute": {"type": "widget"}}, "doc")
        assert "Unknown document type" in str(exc.value)

    def test_not_a_mapping(self) -> None:
        with pytest.raises(LoadError):
            parse_document(["a", "b"], "doc")

    def test_version_and_explain(self, make_document) -> None:
        doc = make_document(
            "t",
            """
            permute:
              version: 0.1
              type: transform
            explain: Helpers.
            """,
        )
        assert doc.kind == DocumentKind.TRANSFORM
        assert doc.version == "0.1"
        assert doc.explain == "Helpers."


class TestImports:
    def test_alias(self) -> None:
        decl = parse_import("transform::EmploymentRecordExt as EmploymentRecordExt2")
        assert decl.path == ("transform", "EmploymentRecordExt")
        assert decl.alias == "EmploymentRecordExt2"
        assert decl.visible_name == "EmploymentRecordExt2"

    def test_glob(self) -> None:
        decl = parse_import("transform::*")
        assert decl.glob
        assert decl.path == ("transform",)
        assert str(decl) == "transform::*"

    def test_crate_prefix_is_dropped(self) -> None:
        assert parse_import("crate::monetary::Monetary").path == ("monetary", "Monetary")

    def test_imports_on_document(self, make_document) -> None:
        doc = make_document(
            "feed",
            """
            permute:
              type: transform
              use:
                - chrono::NaiveDate
                - transform::*
            """,
        )
        assert [str(i) for i in doc.imports] == ["chrono::NaiveDate", "transform::*"]
        assert doc.imports[0].location is not None


class TestSchemas:
    def test_sink_params(self, make_document) -> None:
        doc = make_document(
            "Csv",
            """
            permute:
              type: sink
            params:
              path: String
              delimiter:
                type: String
                default: ","
                check: self.len() == 1
              date_fmt:
                type: Fn(Date) -> String
              each:
                type: Iterator<Item = self::record_ty>
            check:
              - explain: Header matches.
                define: self.header?.len() == self.write.len()
            """,
        )
        schema = doc.schema_decl
        assert schema is not None
        assert schema.kind == DocumentKind.SINK
        assert [p.name for p in schema.params] == ["path", "delimiter", "date_fmt", "each"]
        delimiter = schema.param("delimiter")
        assert delimiter is not None
        assert delimiter.has_default and delimiter.default == ","
        assert [c.define for c in delimiter.checks] == ["self.len() == 1"]
        assert isinstance(schema.param("date_fmt").type, FnType)  # type: ignore[union-attr]
        each = schema.param("each").type  # type: ignore[union-attr]
        assert isinstance(each, NamedType)
        assert each.named_arg("Item") == ParamRef(name="record_ty")
        assert schema.checks[0].explain == "Header matches."
        assert schema.output == NamedType(name="Csv")
        assert doc.doc_type is not None and doc.doc_type.name == "Csv"

    def test_source_record(self, make_document) -> None:
        doc = make_document(
            "EmploymentRecord",
            """
            permute:
              type: source
            filters:
              date_from:
                type: Option<Date>
                default: None
            columns:
              employee_id: String
            column_check:
              - self.employee_id.len() > 0
            """,
        )
        schema = doc.schema_decl
        assert schema is not None
        assert schema.record == NamedType(name="EmploymentRecord")
        assert schema.output is not None and str(schema.output) == "permute::Source<EmploymentRecord>"
        assert doc.doc_type is not None
        assert [f.name for f in doc.doc_type.fields] == ["employee_id"]
        assert len(doc.doc_type.checks) == 1

    def test_columns_outside_source(self) -> None:
        with pytest.raises(LoadError) as exc:
            parse_document({"permute": {"type": "sink"}, "columns": {"a": "String"}}, "s")
        assert "only valid in source documents" in str(exc.value)

    def test_repeated_section(self) -> None:
        data = {"permute": {"type": "sink"}, "params": {}, "fields": {}}
        with pytest.raises(LoadError) as exc:
            parse_document(data, "s")
        assert exc.value.codes == [ErrorCode.DUPLICATE_DECLARATION]

    def test_inline_map_type(self, make_document) -> None:
        doc = make_document(
            "custom",
            """
            permute:
              type: struct
            fields:
              map_example:
                type:
                  map:
                    field1: String
            """,
        )
        assert doc.types[0].name == "MapExampleMap"
        assert doc.schema_decl.param("map_example").type == NamedType(name="MapExampleMap")  # type: ignore[union-attr]


class TestDeclarations:
    def test_type_with_private_fields(self, make_document) -> None:
        doc = make_document(
            "Csv",
            """
            permute:
              type: transform
            type RowSequence:
              public:
                start:
                  type: Integer
                  default: 1
              private:
                iteration: Integer
            """,
        )
        decl = doc.types[0]
        assert decl.kind == TypeKind.STRUCT
        assert [(f.name, f.private) for f in decl.fields] == [("start", False), ("iteration", True)]

    def test_transparent_type(self, make_document) -> None:
        doc = make_document(
            "monetary",
            """
            permute:
              type: transform
            type Monetary:
              inner: FixedPoint<Precision = 2>
              check:
                - self >= 0.0
            """,
        )
        assert doc.types[0].kind == TypeKind.TRANSPARENT
        assert doc.types[0].inner is not None

    def test_inner_and_fields_conflict(self) -> None:
        data = {"permute": {"type": "transform"}, "type T": {"inner": "Integer", "public": {"a": "Integer"}}}
        with pytest.raises(LoadError):
            parse_document(data, "t")

    def test_enum(self, make_document) -> None:
        doc = make_document(
            "t",
            """
            permute:
              type: transform
            enum Shape:
              - Circle(Float)
              - Empty
            """,
        )
        decl = doc.types[0]
        assert decl.kind == TypeKind.ENUM
        assert [v.name for v in decl.variants] == ["Circle", "Empty"]
        assert decl.variants[0].payload == (NamedType(name="Float"),)

    def test_trait_and_impls(self, make_document) -> None:
        doc = make_document(
            "Csv",
            """
            permute:
              type: transform
            trait Write:
              explain: Writable.
            impl Write for String:
            impl<T> Write for Option<T>:
              where:
                T: Write
            impl String as StringExt:
              fn shout(self) -> String: self
            fn helper(x = Integer) -> Integer: x
            """,
        )
        assert doc.traits[0].name == "Write"
        assert len(doc.impls) == 2
        assert doc.impls[1].where[0].bound == NamedType(name="Write")
        assert doc.impls[0].index == 0 and doc.impls[1].index == 1
        ext = doc.extensions[0]
        assert ext.name == "StringExt"
        method = ext.method("shout")
        assert method is not None
        assert method.receiver == Receiver.SELF
        assert method.body == "self"
        assert doc.functions[0].method.arity == 1

    def test_unknown_section(self) -> None:
        with pytest.raises(LoadError) as exc:
            parse_document({"permute": {"type": "transform"}, "oops": 3}, "t")
        assert "Unknown section 'oops'" in str(exc.value)


class TestFeederAndMain:
    def test_feeder(self, make_document) -> None:
        doc = make_document(
            "CsvFeed",
            """
            permute:
              type: feeder
            feeder: Csv
            Csv:
              path: out.csv
            """,
        )
        assert doc.feeder is not None
        assert doc.feeder.sink == "Csv"
        assert doc.feeder.config == {"path": "out.csv"}

    def test_feeder_without_sink(self) -> None:
        with pytest.raises(LoadError):
            parse_document({"permute": {"type": "feeder"}}, "f")

    def test_main_bindings_and_pipes(self, make_document) -> None:
        doc = make_document(
            "main",
            """
            permute:
              type: main
            name: Sample
            cfg:
              er:
                EmploymentRecord:
                  filter:
                    exclude_terminations: Yes
              raw:
                Vec<Integer>: vec![1, 2, 3]
              sink:
                Csv:
                  each: er
            pipe:
              - er -> sink
            """,
        )
        process = doc.process
        assert process is not None
        assert process.name == "Sample"
        er, raw, sink = process.bindings
        assert er.fields == {"filter": {"exclude_terminations": True}}
        assert not er.is_host
        assert raw.is_host and raw.host_code == "vec![1, 2, 3]"
        assert [b.index for b in process.bindings] == [0, 1, 2]
        assert sink.location is not None and sink.location.path == ("cfg", "sink")
        assert process.pipes[0].stages == ("er", "sink")

    def test_binding_with_two_types(self) -> None:
        data = {"permute": {"type": "main"}, "let": {"a": {"X": {}, "Y": {}}}}
        with pytest.raises(LoadError):
            parse_document(data, "main")

    def test_invalid_pipe(self) -> None:
        data = {"permute": {"type": "main"}, "pipe": ["a ->"]}
        with pytest.raises(LoadError) as exc:
            parse_document(data, "main")
        assert "Invalid pipe" in str(exc.value)


class TestFiles:
    def test_namespace_for(self, tmp_path: Path) -> None:
        assert namespace_for(tmp_path / "io" / "Csv.yaml", tmp_path) == "io::Csv"

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("permute: [unclosed\n", encoding="utf-8")
        with pytest.raises(LoadError) as exc:
            load_document(path, tmp_path)
        assert exc.value.diagnostics[0].location.document == "bad"

    def test_load_documents_reports_every_failure(self, tmp_path: Path) -> None:
        (tmp_path / "a.yaml").write_text("permute: {type: nope}\n", encoding="utf-8")
        (tmp_path / "b.yaml").write_text("params: {}\n", encoding="utf-8")
        with pytest.raises(LoadError) as exc:
            load_documents(sorted(tmp_path.glob("*.yaml")), tmp_path)
        assert {d.location.document for d in exc.value.diagnostics} == {"a", "b"}

    def test_sample_project_documents_load(self, sample_dir: Path) -> None:
        docs = load_documents(sorted(sample_dir.glob("*.yaml")), sample_dir)
        kinds = {d.namespace: d.kind for d in docs}
        assert kinds["main"] == DocumentKind.MAIN
        assert kinds["Csv"] == DocumentKind.SINK
        assert kinds["CsvFeed"] == DocumentKind.FEEDER
        assert kinds["EmploymentRecord"] == DocumentKind.SOURCE


class TestRepeatedKeys:
    def test_repeated_declaration_key(self, tmp_path: Path) -> None:
        path = tmp_path / "recs.yaml"
        path.write_text(
            "permute:\n  type: transform\n"
            "type Rec:\n  public:\n    id: Integer\n"
            "type Rec:\n  public:\n    name: String\n",
            encoding="utf-8",
        )
        with pytest.raises(LoadError) as exc:
            load_document(path, tmp_path)
        assert exc.value.codes == [ErrorCode.DUPLICATE_DECLARATION]
        diagnostic = exc.value.diagnostics[0]
        assert diagnostic.location.document == "recs"
        assert diagnostic.details == {"key": "type Rec", "line": 6}

    def test_every_repeat_is_reported(self) -> None:
        text = "a: 1\nb:\n  x: 1\n  x: 2\na: 3\n"
        with pytest.raises(LoadError) as exc:
            read_yaml(text, "doc")
        assert sorted(d.details["key"] for d in exc.value.diagnostics) == ["a", "x"]

    def test_merge_keys_are_allowed(self) -> None:
        data = read_yaml("base: &b\n  x: 1\nother:\n  <<: *b\n  y: 2\n", "doc")
        assert data["other"] == {"x": 1, "y": 2}
