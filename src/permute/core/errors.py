"""
Error types for Permute loading, validation, and binding.

All problems found while loading declarations, validating parameters, or
binding a process are collected as :class:`Diagnostic` records and raised
together, one exception per document batch. The single exception that is
not a diagnostic is :class:`DeclaredAbort`, raised when declared code calls
``panic`` or unwraps an empty optional.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .ir.location import SourceLocation


class ErrorCode(StrEnum):
    """Validation-time error taxonomy."""

    DUPLICATE_DECLARATION = "DuplicateDeclaration"
    UNKNOWN_IMPORT = "UnknownImport"
    INVALID_DECLARATION = "InvalidDeclaration"
    NOT_IMPLEMENTED = "NotImplemented"
    AMBIGUOUS = "Ambiguous"
    MISSING_REQUIRED_PARAM = "MissingRequiredParam"
    TYPE_MISMATCH = "TypeMismatch"
    CHECK_VIOLATION = "CheckViolation"
    CROSS_FIELD_CHECK_VIOLATION = "CrossFieldCheckViolation"
    UNRESOLVED_REFERENCE = "UnresolvedReference"
    CYCLIC_BINDING = "CyclicBinding"
    PIPELINE_TYPE_ERROR = "PipelineTypeError"


@dataclass(frozen=True)
class Diagnostic:
    """
    A single located problem.

    Attributes:
        code: Error taxonomy entry
        message: Human readable description
        location: Document and field path where the problem was found
        details: Structured payload (e.g. ``{"names": [...]}`` for cycles)
    """

    code: ErrorCode
    message: str
    location: SourceLocation
    details: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def format(self) -> str:
        """
        Format as a single line.

        Returns:
            String like ``"main: let.sink.Csv.header [CheckViolation] ..."``
        """
        return f"{self.location} [{self.code}] {self.message}"


class PermuteError(Exception):
    """Base exception for all Permute errors."""

    def __init__(self, message: str, diagnostics: Iterable[Diagnostic] = ()):
        self.message = message
        self.diagnostics = list(diagnostics)
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format error message with every diagnostic attached."""
        if not self.diagnostics:
            return self.message
        lines = [self.message]
        lines.extend(f"  - {d.format()}" for d in self.diagnostics)
        return "\n".join(lines)

    @property
    def codes(self) -> list[ErrorCode]:
        return [d.code for d in self.diagnostics]


class LoadError(PermuteError):
    """
    Raised when documents cannot be loaded into a declaration store.

    Examples:
    - Malformed YAML or declaration headers
    - Duplicate declarations in one namespace
    - Imports that name nothing
    """

    pass


class ValidationError(PermuteError):
    """
    Raised when supplied parameters do not satisfy a schema.

    Examples:
    - Required parameter missing
    - Value of the wrong type with no implicit conversion
    - Field or cross-field check evaluating to false
    """

    pass


class BindError(PermuteError):
    """
    Raised when a process document cannot be bound into an execution graph.

    Examples:
    - Binding referencing an unknown name
    - Cyclic bindings
    - Producer type not satisfying the consumer's expected type
    """

    pass


class DeclaredAbort(Exception):
    """
    Raised when declared code aborts (``panic`` or ``expect`` on ``None``).

    This is terminal. The core never catches it.
    """

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


def make_diagnostic(
    code: ErrorCode,
    message: str,
    location: SourceLocation,
    **details: Any,
) -> Diagnostic:
    """
    Helper to create a Diagnostic with keyword details.

    Args:
        code: Error taxonomy entry
        message: Error description
        location: Where the problem was found
        **details: Structured payload

    Returns:
        Diagnostic with details attached
    """
    return Diagnostic(code=code, message=message, location=location, details=details)


def raise_for_diagnostics(
    diagnostics: list[Diagnostic],
    error_cls: type[PermuteError],
    message: str,
) -> None:
    """Raise ``error_cls`` carrying every diagnostic, if there are any."""
    if diagnostics:
        raise error_cls(f"{message} ({len(diagnostics)} error(s))", diagnostics)
