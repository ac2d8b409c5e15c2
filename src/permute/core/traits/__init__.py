"""Trait resolution: unification, impl selection and specialization."""

from .resolver import (
    CandidateOrigin,
    ImplCandidate,
    MethodKind,
    MethodRef,
    Resolution,
    ResolutionStatus,
    TraitResolver,
    describe,
)
from .unify import substitute, types_equal, unify

__all__ = [
    "CandidateOrigin",
    "ImplCandidate",
    "MethodKind",
    "MethodRef",
    "Resolution",
    "ResolutionStatus",
    "TraitResolver",
    "describe",
    "substitute",
    "types_equal",
    "unify",
]
