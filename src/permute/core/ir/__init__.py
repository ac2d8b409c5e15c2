"""
Permute intermediate representation.

Pydantic models for everything the core consumes and produces: type
expressions, declarations, documents, expressions and execution plans.
"""

from .declarations import (
    AssocTypeDecl,
    CheckDecl,
    ExtensionDecl,
    FieldDecl,
    FunctionDecl,
    GenericParam,
    ImplDecl,
    MethodDecl,
    ParamDecl,
    Receiver,
    SpecializationDecl,
    TraitDecl,
    TypeDecl,
    TypeKind,
    VariantDecl,
    WhereBound,
)
from .document import (
    BindingDecl,
    DocumentIR,
    DocumentKind,
    FeederDecl,
    ImportDecl,
    PipeDecl,
    ProcessDecl,
    SchemaDecl,
)
from .location import SourceLocation
from .plan import ConstructionPlan, ExecutionGraph, PlanKind, PlanStep
from .types import (
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
    TypeParam,
    named,
)

__all__ = [
    # Location
    "SourceLocation",
    # Types
    "ConstType",
    "DynType",
    "FnType",
    "InferType",
    "NamedType",
    "ParamRef",
    "Projection",
    "SelfType",
    "TupleType",
    "TypeExpr",
    "TypeParam",
    "named",
    # Declarations
    "AssocTypeDecl",
    "CheckDecl",
    "ExtensionDecl",
    "FieldDecl",
    "FunctionDecl",
    "GenericParam",
    "ImplDecl",
    "MethodDecl",
    "ParamDecl",
    "Receiver",
    "SpecializationDecl",
    "TraitDecl",
    "TypeDecl",
    "TypeKind",
    "VariantDecl",
    "WhereBound",
    # Documents
    "BindingDecl",
    "DocumentIR",
    "DocumentKind",
    "FeederDecl",
    "ImportDecl",
    "PipeDecl",
    "ProcessDecl",
    "SchemaDecl",
    # Plans
    "ConstructionPlan",
    "ExecutionGraph",
    "PlanKind",
    "PlanStep",
]
