"""
YAML front-end for Permute documents.

Reads ``*.yaml`` files into :class:`~permute.core.ir.DocumentIR`. The
loader only checks document shape and declaration syntax. Name resolution
and cross-document checks belong to the declaration store.

Section names are normalized so authors may use either spelling:

    param / params / fields / filters   → schema parameters
    check / checks / filter_check       → schema (cross-field) checks
    columns                             → source record columns
    column_check / column_checks        → record checks
    let / cfg                           → process bindings
    pipe / pipes                        → process pipes
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

import yaml

from .decl_parser import (
    EnumHeader,
    FnHeader,
    ImplHeader,
    TraitHeader,
    TypeHeader,
    TypeParseError,
    is_declaration_key,
    parse_header,
)
from .errors import Diagnostic, ErrorCode, LoadError, make_diagnostic, raise_for_diagnostics
from .expression_lang.type_parser import parse_bounds, parse_type
from .ir.declarations import (
    AssocTypeDecl,
    CheckDecl,
    ExtensionDecl,
    FieldDecl,
    FunctionDecl,
    ImplDecl,
    MethodDecl,
    SpecializationDecl,
    TraitDecl,
    TypeDecl,
    TypeKind,
    VariantDecl,
    WhereBound,
)
from .ir.document import (
    BindingDecl,
    DocumentIR,
    DocumentKind,
    FeederDecl,
    ImportDecl,
    PipeDecl,
    ProcessDecl,
    SchemaDecl,
)
from .ir.location import SourceLocation
from .ir.types import SOURCE, NamedType, SelfType, TypeExpr

logger = logging.getLogger(__name__)

HEADER_KEY = "permute"
DOCUMENT_SUFFIXES = (".yaml", ".yml")

PARAM_SECTIONS = frozenset({"param", "params", "fields", "filter", "filters"})
CHECK_SECTIONS = frozenset({"check", "checks", "filter_check", "filter_checks"})
COLUMN_SECTIONS = frozenset({"columns"})
COLUMN_CHECK_SECTIONS = frozenset({"column_check", "column_checks"})
BINDING_SECTIONS = frozenset({"let", "cfg"})
PIPE_SECTIONS = frozenset({"pipe", "pipes"})

SCHEMA_KINDS = frozenset(
    {DocumentKind.SOURCE, DocumentKind.SINK, DocumentKind.TRANSFORM, DocumentKind.STRUCT}
)

_VARIANT_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*(?:\((.*)\))?\s*$")
_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def namespace_for(path: Path, root: Path) -> str:
    """Namespace of a document: ``io/Csv.yaml`` under ``root`` → ``io::Csv``."""
    relative = path.resolve().relative_to(root.resolve())
    return "::".join(relative.with_suffix("").parts)


class DocumentYamlLoader(yaml.SafeLoader):
    """SafeLoader that records repeated mapping keys instead of keeping the last one."""

    def __init__(self, stream: str) -> None:
        super().__init__(stream)
        self.duplicates: list[tuple[Any, int]] = []

    def construct_mapping(self, node: yaml.MappingNode, deep: bool = False) -> dict[Any, Any]:
        seen: set[Any] = set()
        for key_node, _ in node.value:
            if key_node.tag == "tag:yaml.org,2002:merge":
                continue
            key = self.construct_object(key_node, deep=True)
            try:
                if key in seen:
                    self.duplicates.append((key, key_node.start_mark.line + 1))
                seen.add(key)
            except TypeError:
                continue
        return super().construct_mapping(node, deep=deep)


def read_yaml(text: str, namespace: str) -> Any:
    """Parse document text, rejecting repeated keys in any mapping.

    Raises:
        LoadError: If the text is not valid YAML or repeats a key.
    """
    loader = DocumentYamlLoader(text)
    try:
        data = loader.get_single_data()
    except yaml.YAMLError as e:
        raise LoadError(
            f"Invalid YAML in '{namespace}'",
            [
                make_diagnostic(
                    ErrorCode.INVALID_DECLARATION,
                    f"Invalid YAML: {e}",
                    SourceLocation(document=namespace),
                )
            ],
        ) from e
    finally:
        loader.dispose()
    diagnostics = [
        make_diagnostic(
            ErrorCode.DUPLICATE_DECLARATION,
            f"Duplicate key '{key}' on line {line}",
            SourceLocation(document=namespace, path=(str(key),)),
            key=str(key),
            line=line,
        )
        for key, line in loader.duplicates
    ]
    raise_for_diagnostics(diagnostics, LoadError, f"Repeated keys in '{namespace}'")
    return data


def load_document(path: Path, root: Path, namespace: str | None = None) -> DocumentIR:
    """Read and parse one document file.

    ``namespace`` overrides the namespace derived from the path.

    Raises:
        LoadError: If the file is not valid YAML or not a valid document.
    """
    namespace = namespace or namespace_for(path, root)
    data = read_yaml(path.read_text(encoding="utf-8"), namespace)
    return parse_document(data, namespace, file=str(path))


def load_documents(paths: list[Path], root: Path) -> list[DocumentIR]:
    """Load several documents, reporting every failing document together."""
    documents: list[DocumentIR] = []
    diagnostics: list[Diagnostic] = []
    for path in paths:
        try:
            documents.append(load_document(path, root))
        except LoadError as e:
            diagnostics.extend(e.diagnostics)
    raise_for_diagnostics(diagnostics, LoadError, "Failed to load documents")
    logger.info(f"Loaded {len(documents)} document(s) from {root}")
    return documents


def parse_document(data: Any, namespace: str, file: str | None = None) -> DocumentIR:
    """Build a document from already-parsed YAML data.

    Args:
        data: Mapping produced by ``read_yaml``
        namespace: Namespace the document is registered under
        file: Optional source file path, for messages

    Returns:
        The document IR with names as written.

    Raises:
        LoadError: With every problem found in the document.
    """
    builder = _DocumentBuilder(namespace, file)
    document = builder.build(data)
    raise_for_diagnostics(builder.diagnostics, LoadError, f"Invalid document '{namespace}'")
    assert document is not None
    return document


def parse_import(entry: str) -> ImportDecl:
    """``crate::monetary::Monetary as Money`` → ImportDecl."""
    text, _, alias = entry.partition(" as ")
    path = [p.strip() for p in text.strip().split("::") if p.strip()]
    if path and path[0] == "crate":
        path = path[1:]
    glob = bool(path) and path[-1] == "*"
    if glob:
        path = path[:-1]
    return ImportDecl(path=tuple(path), alias=alias.strip() or None, glob=glob)


class _DocumentBuilder:
    """Collects declarations and diagnostics for one document."""

    def __init__(self, namespace: str, file: str | None) -> None:
        self.namespace = namespace
        self.file = file
        self.diagnostics: list[Diagnostic] = []
        self.types: list[TypeDecl] = []
        self.traits: list[TraitDecl] = []
        self.impls: list[ImplDecl] = []
        self.extensions: list[ExtensionDecl] = []
        self.functions: list[FunctionDecl] = []

    # -- helpers --

    def loc(self, *path: str | int) -> SourceLocation:
        return SourceLocation(document=self.namespace, path=tuple(str(p) for p in path))

    def error(
        self, message: str, location: SourceLocation, code: ErrorCode = ErrorCode.INVALID_DECLARATION
    ) -> None:
        self.diagnostics.append(make_diagnostic(code, message, location))

    def type_of(self, source: Any, location: SourceLocation) -> TypeExpr | None:
        if not isinstance(source, str | int | float):
            self.error(f"Expected a type, got {source!r}", location)
            return None
        try:
            return parse_type(str(source))
        except TypeParseError as e:
            self.error(f"Invalid type '{source}': {e}", location)
            return None

    # -- document --

    def build(self, data: Any) -> DocumentIR | None:
        root = self.loc()
        if not isinstance(data, dict):
            self.error("Document must be a mapping", root)
            return None
        header = data.get(HEADER_KEY)
        if not isinstance(header, dict):
            self.error(f"Missing '{HEADER_KEY}' header", root)
            return None

        try:
            kind = DocumentKind(str(header.get("type", "")))
        except ValueError:
            self.error(
                f"Unknown document type {header.get('type')!r}; expected one of "
                f"{', '.join(k.value for k in DocumentKind)}",
                self.loc(HEADER_KEY, "type"),
            )
            return None

        imports = self._imports(header.get("use"))
        sections: dict[str, tuple[str, Any]] = {}
        feeder_sink = data.get("feeder") if kind == DocumentKind.FEEDER else None
        feeder_config: dict[str, Any] | None = None
        explain = None
        process_name = None

        for key, value in data.items():
            key = str(key)
            if key == HEADER_KEY:
                continue
            if key == "explain":
                explain = value
            elif is_declaration_key(key):
                self._declaration(key, value)
            elif key in PARAM_SECTIONS:
                self._section(sections, "params", key, value)
            elif key in CHECK_SECTIONS:
                self._section(sections, "checks", key, value)
            elif key in COLUMN_SECTIONS:
                self._section(sections, "columns", key, value)
            elif key in COLUMN_CHECK_SECTIONS:
                self._section(sections, "column_checks", key, value)
            elif key in BINDING_SECTIONS and kind == DocumentKind.MAIN:
                self._section(sections, "bindings", key, value)
            elif key in PIPE_SECTIONS and kind == DocumentKind.MAIN:
                self._section(sections, "pipes", key, value)
            elif key == "name" and kind == DocumentKind.MAIN:
                process_name = str(value)
            elif key == "feeder" and kind == DocumentKind.FEEDER:
                continue
            elif feeder_sink is not None and key == str(feeder_sink):
                if not isinstance(value, dict):
                    self.error("Feeder configuration must be a mapping", self.loc(key))
                else:
                    feeder_config = value
            elif _IDENT_RE.match(key) and isinstance(value, dict):
                self._map_decl(key, value)
            else:
                self.error(f"Unknown section '{key}'", self.loc(key))

        doc_type, schema = self._schema(kind, sections)
        feeder = None
        if kind == DocumentKind.FEEDER:
            if not isinstance(feeder_sink, str):
                self.error("Feeder document must name its sink in 'feeder'", self.loc("feeder"))
            else:
                feeder = FeederDecl(
                    sink=feeder_sink,
                    config=feeder_config or {},
                    location=self.loc(feeder_sink),
                )

        process = None
        if kind == DocumentKind.MAIN:
            process = ProcessDecl(
                name=process_name or self.namespace,
                bindings=self._bindings(sections.get("bindings")),
                pipes=self._pipes(sections.get("pipes")),
            )

        return DocumentIR(
            namespace=self.namespace,
            kind=kind,
            version=str(header.get("version", "0.1")),
            file=self.file,
            explain=explain,
            imports=imports,
            types=tuple(self.types),
            traits=tuple(self.traits),
            impls=tuple(self.impls),
            extensions=tuple(self.extensions),
            functions=tuple(self.functions),
            doc_type=doc_type,
            schema_decl=schema,
            feeder=feeder,
            process=process,
        )

    def _section(
        self, sections: dict[str, tuple[str, Any]], canonical: str, key: str, value: Any
    ) -> None:
        if canonical in sections:
            previous = sections[canonical][0]
            self.error(
                f"Section '{key}' repeats '{previous}'",
                self.loc(key),
                ErrorCode.DUPLICATE_DECLARATION,
            )
            return
        sections[canonical] = (key, value)

    def _imports(self, raw: Any) -> tuple[ImportDecl, ...]:
        if raw is None:
            return ()
        entries = raw if isinstance(raw, list) else [raw]
        imports: list[ImportDecl] = []
        for i, entry in enumerate(entries):
            location = self.loc(HEADER_KEY, "use", i)
            if not isinstance(entry, str):
                self.error(f"Import must be a string, got {entry!r}", location)
                continue
            decl = parse_import(entry)
            if not decl.path:
                self.error(f"Empty import '{entry}'", location)
                continue
            imports.append(decl.model_copy(update={"location": location}))
        return tuple(imports)

    # -- schema sections --

    def _schema(
        self, kind: DocumentKind, sections: dict[str, tuple[str, Any]]
    ) -> tuple[TypeDecl | None, SchemaDecl | None]:
        params_key, params_raw = sections.get("params", ("params", None))
        checks_key, checks_raw = sections.get("checks", ("check", None))
        params = self._fields(params_raw, self.loc(params_key))
        checks = self._checks(checks_raw, self.loc(checks_key))
        location = self.loc()

        if kind == DocumentKind.SOURCE:
            columns_key, columns_raw = sections.get("columns", ("columns", None))
            column_checks_key, column_checks_raw = sections.get(
                "column_checks", ("column_check", None)
            )
            record = TypeDecl(
                name=self.namespace,
                kind=TypeKind.STRUCT,
                fields=self._fields(columns_raw, self.loc(columns_key)),
                checks=self._checks(column_checks_raw, self.loc(column_checks_key)),
                namespace=self.namespace,
                location=self.loc(columns_key),
            )
            record_type = NamedType(name=self.namespace)
            schema = SchemaDecl(
                name=self.namespace,
                kind=kind,
                params=params,
                checks=checks,
                record=record_type,
                output=NamedType(name=SOURCE, args=(record_type,)),
                location=location,
            )
            return record, schema

        for section in ("columns", "column_checks"):
            if section in sections:
                key = sections[section][0]
                self.error(f"Section '{key}' is only valid in source documents", self.loc(key))

        if kind not in SCHEMA_KINDS:
            for section in ("params", "checks"):
                if section in sections:
                    key = sections[section][0]
                    self.error(f"Section '{key}' is not valid in {kind} documents", self.loc(key))
            return None, None
        if kind == DocumentKind.TRANSFORM and "params" not in sections:
            return None, None

        doc_type = TypeDecl(
            name=self.namespace,
            kind=TypeKind.STRUCT,
            fields=params,
            namespace=self.namespace,
            location=location,
        )
        schema = SchemaDecl(
            name=self.namespace,
            kind=kind,
            params=params,
            checks=checks,
            output=NamedType(name=self.namespace),
            location=location,
        )
        return doc_type, schema

    def _fields(
        self, raw: Any, location: SourceLocation, *, private: bool = False
    ) -> tuple[FieldDecl, ...]:
        if raw is None:
            return ()
        if not isinstance(raw, dict):
            self.error("Expected a mapping of fields", location)
            return ()
        fields: list[FieldDecl] = []
        for name, spec in raw.items():
            name = str(name)
            if name == "explain":
                continue
            decl = self._field(name, spec, location.child(name), private=private)
            if decl is not None:
                fields.append(decl)
        return tuple(fields)

    def _field(
        self, name: str, spec: Any, location: SourceLocation, *, private: bool = False
    ) -> FieldDecl | None:
        if not _IDENT_RE.match(name):
            self.error(f"Invalid field name '{name}'", location)
            return None
        if isinstance(spec, str):
            field_type = self.type_of(spec, location)
            if field_type is None:
                return None
            return FieldDecl(name=name, type=field_type, private=private, location=location)
        if not isinstance(spec, dict):
            self.error(f"Field '{name}' must be a type or a mapping", location)
            return None
        raw_type = spec.get("type")
        if raw_type is None:
            self.error(f"Field '{name}' has no type", location)
            return None
        if isinstance(raw_type, dict):
            field_type = self._map_type(name, raw_type, location.child("type"))
        else:
            field_type = self.type_of(raw_type, location.child("type"))
        if field_type is None:
            return None
        check_key = next((k for k in ("check", "checks") if k in spec), "check")
        return FieldDecl(
            name=name,
            type=field_type,
            has_default="default" in spec,
            default=spec.get("default"),
            checks=self._checks(spec.get(check_key), location.child(check_key)),
            explain=spec.get("explain"),
            private=private,
            location=location,
        )

    def _map_type(self, field_name: str, raw: dict, location: SourceLocation) -> TypeExpr | None:
        """``type: {map: MyMap}`` or ``type: {map: {field: ...}}``."""
        if set(raw) != {"map"}:
            self.error("Inline field types must be written as {map: ...}", location)
            return None
        body = raw["map"]
        if isinstance(body, str):
            return self.type_of(body, location.child("map"))
        if not isinstance(body, dict):
            self.error("Map type must name a map or define its fields", location)
            return None
        name = "".join(part.capitalize() for part in field_name.split("_")) + "Map"
        self._map_decl(name, body, location.child("map"))
        return NamedType(name=name)

    def _map_decl(self, name: str, body: dict, location: SourceLocation | None = None) -> None:
        location = location or self.loc(name)
        self.types.append(
            TypeDecl(
                name=name,
                kind=TypeKind.STRUCT,
                fields=self._fields(body, location),
                explain=body.get("explain"),
                namespace=self.namespace,
                location=location,
            )
        )

    def _checks(self, raw: Any, location: SourceLocation) -> tuple[CheckDecl, ...]:
        if raw is None:
            return ()
        entries = raw if isinstance(raw, list) else [raw]
        checks: list[CheckDecl] = []
        for i, entry in enumerate(entries):
            entry_loc = location.child(i) if isinstance(raw, list) else location
            if isinstance(entry, str):
                checks.append(CheckDecl(define=entry.strip(), location=entry_loc))
            elif isinstance(entry, dict) and isinstance(entry.get("define"), str):
                checks.append(
                    CheckDecl(
                        define=entry["define"].strip(),
                        explain=entry.get("explain"),
                        location=entry_loc,
                    )
                )
            else:
                self.error(
                    "Check must be an expression or {define, explain}", entry_loc
                )
        return tuple(checks)

    # -- process sections --

    def _bindings(self, section: tuple[str, Any] | None) -> tuple[BindingDecl, ...]:
        if section is None:
            return ()
        key, raw = section
        if not isinstance(raw, dict):
            self.error("Bindings must be a mapping", self.loc(key))
            return ()
        bindings: list[BindingDecl] = []
        for index, (name, value) in enumerate(raw.items()):
            name = str(name)
            location = self.loc(key, name)
            if not _IDENT_RE.match(name):
                self.error(f"Invalid binding name '{name}'", location)
                continue
            if not isinstance(value, dict) or len(value) != 1:
                self.error(
                    f"Binding '{name}' must map exactly one type name to its fields or host code",
                    location,
                )
                continue
            type_name, body = next(iter(value.items()))
            type_name = str(type_name)
            if isinstance(body, str):
                bindings.append(
                    BindingDecl(
                        name=name,
                        type_name=type_name,
                        host_code=body.strip(),
                        index=index,
                        location=location,
                    )
                )
            elif body is None or isinstance(body, dict):
                bindings.append(
                    BindingDecl(
                        name=name,
                        type_name=type_name,
                        fields=dict(body or {}),
                        index=index,
                        location=location,
                    )
                )
            else:
                self.error(
                    f"Binding '{name}' must supply a mapping of fields or host code",
                    location.child(type_name),
                )
        return tuple(bindings)

    def _pipes(self, section: tuple[str, Any] | None) -> tuple[PipeDecl, ...]:
        if section is None:
            return ()
        key, raw = section
        entries = raw if isinstance(raw, list) else [raw]
        pipes: list[PipeDecl] = []
        for i, entry in enumerate(entries):
            location = self.loc(key, i)
            stages = [s.strip() for s in str(entry).split("->")]
            if len(stages) < 2 or not all(_IDENT_RE.match(s) for s in stages):
                self.error(f"Invalid pipe '{entry}'; expected 'a -> b'", location)
                continue
            pipes.append(PipeDecl(stages=tuple(stages), location=location))
        return tuple(pipes)

    # -- declarations --

    def _declaration(self, key: str, value: Any) -> None:
        location = self.loc(key)
        try:
            header = parse_header(key)
        except TypeParseError as e:
            self.error(f"Invalid declaration '{key}': {e}", location)
            return

        if isinstance(header, TypeHeader):
            self._type_decl(header, value, location)
        elif isinstance(header, EnumHeader):
            self._enum_decl(header, value, location)
        elif isinstance(header, TraitHeader):
            self._trait_decl(header, value, location)
        elif isinstance(header, ImplHeader):
            self._impl_decl(header, value, location)
        elif isinstance(header, FnHeader):
            method = self._method(header, value, location)
            self.functions.append(
                FunctionDecl(
                    name=header.name, method=method, namespace=self.namespace, location=location
                )
            )

    def _body(self, value: Any, location: SourceLocation) -> dict[str, Any]:
        if value is None:
            return {}
        if isinstance(value, dict):
            return value
        self.error("Declaration body must be a mapping", location)
        return {}

    def _type_decl(self, header: TypeHeader, value: Any, location: SourceLocation) -> None:
        body = self._body(value, location)
        inner = None
        if "inner" in body:
            inner = self.type_of(body["inner"], location.child("inner"))
        field_sections = [k for k in ("public", "private", "fields") if k in body]
        if inner is not None and field_sections:
            self.error(
                f"Type '{header.name}' cannot declare both 'inner' and fields", location
            )
            return
        fields = self._fields(body.get("public"), location.child("public"))
        fields += self._fields(body.get("fields"), location.child("fields"))
        fields += self._fields(body.get("private"), location.child("private"), private=True)

        if header.is_extern:
            kind = TypeKind.EXTERN
        elif inner is not None:
            kind = TypeKind.TRANSPARENT
        else:
            kind = TypeKind.STRUCT

        check_key = next((k for k in ("check", "checks") if k in body), "check")
        self.types.append(
            TypeDecl(
                name=header.name,
                kind=kind,
                generics=header.generics,
                inner=inner,
                fields=fields,
                checks=self._checks(body.get(check_key), location.child(check_key)),
                explain=body.get("explain"),
                namespace=self.namespace,
                location=location,
            )
        )

    def _enum_decl(self, header: EnumHeader, value: Any, location: SourceLocation) -> None:
        explain = None
        raw_variants = value
        if isinstance(value, dict):
            explain = value.get("explain")
            raw_variants = value.get("define", [])
        if raw_variants is None:
            raw_variants = []
        if not isinstance(raw_variants, list):
            self.error(f"Enum '{header.name}' variants must be a list", location)
            return
        variants: list[VariantDecl] = []
        for i, raw in enumerate(raw_variants):
            m = _VARIANT_RE.match(str(raw))
            if m is None:
                self.error(f"Invalid variant {raw!r}", location.child(i))
                continue
            payload: tuple[TypeExpr, ...] = ()
            if m.group(2):
                parsed = self.type_of(f"({m.group(2)},)", location.child(i))
                if parsed is None:
                    continue
                payload = parsed.items  # type: ignore[union-attr]
            variants.append(VariantDecl(name=m.group(1), payload=payload))
        self.types.append(
            TypeDecl(
                name=header.name,
                kind=TypeKind.ENUM,
                generics=header.generics,
                variants=tuple(variants),
                explain=explain,
                namespace=self.namespace,
                location=location,
            )
        )

    def _trait_decl(self, header: TraitHeader, value: Any, location: SourceLocation) -> None:
        body = self._body(value, location)
        assoc: list[AssocTypeDecl] = []
        methods: list[MethodDecl] = []
        supertraits: list[NamedType] = []
        specialization = None

        for key, item in body.items():
            key = str(key)
            item_loc = location.child(key)
            if key == "explain":
                continue
            if key == "where":
                for bound in self._where(item, item_loc):
                    if isinstance(bound.subject, SelfType):
                        supertraits.append(bound.bound)
                    else:
                        self.error("Trait 'where' clauses may only bound Self", item_loc)
                continue
            if key == "specialization":
                specialization = self._specialization(item, item_loc)
                continue
            member = self._member_header(key, item_loc)
            if isinstance(member, TypeHeader):
                explain = item.get("explain") if isinstance(item, dict) else None
                assoc.append(AssocTypeDecl(name=member.name, explain=explain))
            elif isinstance(member, FnHeader):
                methods.append(self._method(member, item, item_loc))

        self.traits.append(
            TraitDecl(
                name=header.name,
                generics=header.generics,
                assoc_types=tuple(assoc),
                methods=tuple(methods),
                supertraits=tuple(supertraits),
                specialization=specialization,
                explain=body.get("explain"),
                namespace=self.namespace,
                location=location,
            )
        )

    def _specialization(self, raw: Any, location: SourceLocation) -> SpecializationDecl | None:
        if not isinstance(raw, dict) or len(raw) != 1:
            self.error("Specialization must contain exactly one 'impl Trait' block", location)
            return None
        key, value = next(iter(raw.items()))
        block_loc = location.child(str(key))
        try:
            header = parse_header(str(key))
        except TypeParseError as e:
            self.error(f"Invalid specialization '{key}': {e}", block_loc)
            return None
        if not isinstance(header, ImplHeader) or header.extension is not None:
            self.error("Specialization block must be 'impl Trait<...>'", block_loc)
            return None
        if not isinstance(header.target, NamedType):
            self.error("Specialization block must name a trait", block_loc)
            return None
        assoc, methods = self._impl_members(self._body(value, block_loc), block_loc)
        return SpecializationDecl(trait_ref=header.target, assoc=assoc, methods=methods)

    def _impl_decl(self, header: ImplHeader, value: Any, location: SourceLocation) -> None:
        body = self._body(value, location)
        if header.extension is not None:
            _, methods = self._impl_members(body, location)
            self.extensions.append(
                ExtensionDecl(
                    name=header.extension,
                    target=header.target,
                    generics=header.generics,
                    methods=methods,
                    namespace=self.namespace,
                    location=location,
                )
            )
            return

        where = self._where(body.get("where"), location.child("where"))
        assoc, methods = self._impl_members(body, location)
        self.impls.append(
            ImplDecl(
                target=header.target,
                trait_ref=header.trait_ref,
                generics=header.generics,
                where=tuple(where),
                assoc=assoc,
                methods=methods,
                explain=body.get("explain"),
                namespace=self.namespace,
                index=len(self.impls),
                location=location,
            )
        )

    def _impl_members(
        self, body: dict[str, Any], location: SourceLocation
    ) -> tuple[tuple[tuple[str, TypeExpr], ...], tuple[MethodDecl, ...]]:
        assoc: list[tuple[str, TypeExpr]] = []
        methods: list[MethodDecl] = []
        for key, item in body.items():
            key = str(key)
            if key in ("where", "explain"):
                continue
            item_loc = location.child(key)
            member = self._member_header(key, item_loc)
            if isinstance(member, TypeHeader):
                bound = self.type_of(item, item_loc)
                if bound is not None:
                    assoc.append((member.name, bound))
            elif isinstance(member, FnHeader):
                methods.append(self._method(member, item, item_loc))
        return tuple(assoc), tuple(methods)

    def _member_header(self, key: str, location: SourceLocation) -> TypeHeader | FnHeader | None:
        try:
            header = parse_header(key)
        except TypeParseError as e:
            self.error(f"Invalid member '{key}': {e}", location)
            return None
        if isinstance(header, TypeHeader | FnHeader):
            return header
        self.error(f"Unexpected member '{key}'", location)
        return None

    def _where(self, raw: Any, location: SourceLocation) -> list[WhereBound]:
        if raw is None:
            return []
        if not isinstance(raw, dict):
            self.error("'where' must map types to bounds", location)
            return []
        bounds: list[WhereBound] = []
        for subject_src, bound_src in raw.items():
            item_loc = location.child(str(subject_src))
            subject = self.type_of(subject_src, item_loc)
            if subject is None:
                continue
            try:
                parsed = parse_bounds(str(bound_src))
            except TypeParseError as e:
                self.error(f"Invalid bound '{bound_src}': {e}", item_loc)
                continue
            bounds.extend(
                WhereBound(subject=subject, bound=bound, const_required=const)
                for bound, const in parsed
            )
        return bounds

    def _method(self, header: FnHeader, value: Any, location: SourceLocation) -> MethodDecl:
        body: str | None = None
        explain = None
        checks: tuple[CheckDecl, ...] = ()
        if isinstance(value, str):
            body = value.strip()
        elif isinstance(value, dict):
            explain = value.get("explain")
            if isinstance(value.get("define"), str):
                body = value["define"].strip()
            check_key = next((k for k in ("check", "checks") if k in value), "check")
            checks = self._checks(value.get(check_key), location.child(check_key))
        elif value is not None:
            self.error("Method body must be code or a mapping", location)
        return MethodDecl(
            name=header.name,
            generics=header.generics,
            receiver=header.receiver,
            params=header.params,
            returns=header.returns,
            is_const=header.is_const,
            is_extern=header.is_extern,
            body=body,
            checks=checks,
            explain=explain,
            location=location,
        )
