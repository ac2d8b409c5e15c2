"""
Execution plan emitted by the pipeline binder.

The plan is the only output of binding: an ordered sequence of steps,
dependencies before dependents, for an external executor to construct.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .types import TypeExpr


class PlanKind(StrEnum):
    """How a binding is constructed."""

    SCHEMA = "schema"
    HOST = "host"


class ConstructionPlan(BaseModel):
    """
    How to construct one binding.

    Attributes:
        kind: Schema application or opaque host code
        schema_name: Applied schema (document type) for schema bindings
        params: Validated parameter values in JSON-friendly form
        code: Host construction code for host bindings
        feeder: Feeder whose preset was merged in, if any
        depends_on: Bindings this one consumes
    """

    kind: PlanKind
    schema_name: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)
    code: str | None = None
    feeder: str | None = None
    depends_on: list[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class PlanStep(BaseModel):
    """One (name, resolved type, construction plan) entry."""

    name: str
    resolved_type: TypeExpr
    plan: ConstructionPlan

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"{self.name}: {self.resolved_type}"


class ExecutionGraph(BaseModel):
    """Ordered construction steps plus the declared pipes."""

    process: str
    document: str
    steps: list[PlanStep] = Field(default_factory=list)
    pipes: list[list[str]] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @property
    def order(self) -> list[str]:
        return [s.name for s in self.steps]

    def step(self, name: str) -> PlanStep | None:
        for s in self.steps:
            if s.name == name:
                return s
        return None
