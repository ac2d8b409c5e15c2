"""Core Permute functionality: IR, document loading, declaration store, resolvers, validation and binding."""

from . import ir
from .binder import PipelineBinder
from .errors import (
    BindError,
    DeclaredAbort,
    Diagnostic,
    ErrorCode,
    LoadError,
    PermuteError,
    ValidationError,
)
from .methods import MethodResolver
from .project import Project, bind_project, check_project, load_project
from .store import Store, load
from .traits import TraitResolver
from .validator import SchemaValidator, ValidatedParams

__all__ = [
    "ir",
    "BindError",
    "DeclaredAbort",
    "Diagnostic",
    "ErrorCode",
    "LoadError",
    "PermuteError",
    "ValidationError",
    "MethodResolver",
    "PipelineBinder",
    "Project",
    "SchemaValidator",
    "Store",
    "TraitResolver",
    "ValidatedParams",
    "bind_project",
    "check_project",
    "load",
    "load_project",
]
