"""
Expression AST for Permute defaults, checks and method bodies.

Supports:
- Arithmetic: +, -, *, /, %
- Comparison: ==, !=, <, >, <=, >=
- Logic: &&, ||, ! (and the word forms and, or, not)
- Field references: self, self.header, e.employee_id
- Method calls: self.len(), self.header?.len()
- Optional chaining: ``expr?`` short-circuits on None
- Qualified calls: (e as EmploymentRecordExt).salary(), Ext::salary(e)
- Path calls: RowSequence::new(1), String::new()
- Free function calls: panic("message")
- Literals: numbers, strings, chars, true/false, None, lists
- Struct literals: RowSequence { start: 1 }
- Closures: |a, b| body
- Conditionals: if/elif/else
- Membership: x in [a, b, c]
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from .types import TypeExpr

# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


class BinaryOp(StrEnum):
    """Binary operators for expressions."""

    # Arithmetic
    ADD = "+"
    SUB = "-"
    MUL = "*"
    DIV = "/"
    MOD = "%"
    # Comparison
    EQ = "=="
    NE = "!="
    LT = "<"
    GT = ">"
    LE = "<="
    GE = ">="
    # Logical
    AND = "&&"
    OR = "||"


class UnaryOp(StrEnum):
    """Unary operators for expressions."""

    NEG = "-"
    NOT = "!"


# ---------------------------------------------------------------------------
# AST node types
# ---------------------------------------------------------------------------


class Literal(BaseModel):
    """A literal value: int, float, str, bool, or None."""

    value: int | float | str | bool | None = Field(description="The literal value")

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        if self.value is None:
            return "None"
        if isinstance(self.value, str):
            return f'"{self.value}"'
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        return str(self.value)


class ListLiteral(BaseModel):
    """List literal ``[a, b, c]``."""

    items: list[Expr] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"[{', '.join(str(i) for i in self.items)}]"


class FieldRef(BaseModel):
    """
    Reference to a name in scope, possibly through struct fields.

    Examples:
        - FieldRef(path=["self"]) → self
        - FieldRef(path=["self", "header"]) → self.header
        - FieldRef(path=["e", "employee_id"]) → e.employee_id
    """

    path: list[str] = Field(description="Field path segments")

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return ".".join(self.path)

    @property
    def is_simple(self) -> bool:
        """Single name, no field traversal."""
        return len(self.path) == 1

    @property
    def root(self) -> str:
        return self.path[0]


class FieldAccess(BaseModel):
    """Field access on a computed receiver: ``x?.meta``."""

    receiver: Expr
    name: str

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"{self.receiver}.{self.name}"


class TryExpr(BaseModel):
    """Optional chaining ``expr?``. A None operand short-circuits."""

    operand: Expr

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"{self.operand}?"


class BinaryExpr(BaseModel):
    """Binary operation: left op right."""

    op: BinaryOp
    left: Expr
    right: Expr

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"({self.left} {self.op.value} {self.right})"


class UnaryExpr(BaseModel):
    """Unary operation: op operand."""

    op: UnaryOp
    operand: Expr

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"{self.op.value}{self.operand}"


class FuncCall(BaseModel):
    """Free function call: ``name(arg1, arg2, ...)``."""

    name: str = Field(description="Function name")
    args: list[Expr] = Field(default_factory=list, description="Arguments")

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        args_str = ", ".join(str(a) for a in self.args)
        return f"{self.name}({args_str})"


class MethodCall(BaseModel):
    """Method call on a receiver: ``receiver.name(args)``."""

    receiver: Expr
    name: str
    args: list[Expr] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        args_str = ", ".join(str(a) for a in self.args)
        return f"{self.receiver}.{self.name}({args_str})"


class CastExpr(BaseModel):
    """
    Qualification ``(expr as Name)``.

    ``Name`` is an extension or a trait. A method call on the cast
    resolves against that namespace only.
    """

    operand: Expr
    target: TypeExpr

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"({self.operand} as {self.target})"


class PathCall(BaseModel):
    """
    Call through a path: ``RowSequence::new(1)`` or ``Ext::salary(e)``.

    The last segment is the function; the rest name a type, trait or
    extension.
    """

    path: list[str]
    args: list[Expr] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        args_str = ", ".join(str(a) for a in self.args)
        return f"{'::'.join(self.path)}({args_str})"

    @property
    def owner(self) -> str:
        return "::".join(self.path[:-1])

    @property
    def function(self) -> str:
        return self.path[-1]


class StructLiteral(BaseModel):
    """Struct construction ``Name { field: expr, ... }``."""

    type_name: str
    fields: list[tuple[str, Expr]] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        fields = ", ".join(f"{k}: {v}" for k, v in self.fields)
        return f"{self.type_name} {{ {fields} }}"


class Closure(BaseModel):
    """Closure ``|a, b| body``."""

    params: list[str] = Field(default_factory=list)
    body: Expr

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"|{', '.join(self.params)}| {self.body}"


class InExpr(BaseModel):
    """
    Membership test: value in [a, b, c] or value not in [a, b, c].
    """

    value: Expr = Field(description="Value to test")
    items: list[Expr] = Field(description="Items to check against")
    negated: bool = Field(default=False, description="True for 'not in'")

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        items_str = ", ".join(str(i) for i in self.items)
        op = "not in" if self.negated else "in"
        return f"({self.value} {op} [{items_str}])"


class IfExpr(BaseModel):
    """
    Conditional expression: if cond: val elif cond: val else: val.
    """

    condition: Expr = Field(description="If condition")
    then_expr: Expr = Field(description="Value when condition is true")
    elif_branches: list[tuple[Expr, Expr]] = Field(
        default_factory=list, description="(condition, value) pairs"
    )
    else_expr: Expr = Field(description="Value when all conditions are false")

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        parts = [f"if {self.condition}: {self.then_expr}"]
        for cond, val in self.elif_branches:
            parts.append(f"elif {cond}: {val}")
        parts.append(f"else: {self.else_expr}")
        return " ".join(parts)


# ---------------------------------------------------------------------------
# Union type
# ---------------------------------------------------------------------------

Expr = (
    Literal
    | ListLiteral
    | FieldRef
    | FieldAccess
    | TryExpr
    | BinaryExpr
    | UnaryExpr
    | FuncCall
    | MethodCall
    | CastExpr
    | PathCall
    | StructLiteral
    | Closure
    | InExpr
    | IfExpr
)

# Rebuild models for recursive forward references
ListLiteral.model_rebuild()
FieldAccess.model_rebuild()
TryExpr.model_rebuild()
BinaryExpr.model_rebuild()
UnaryExpr.model_rebuild()
FuncCall.model_rebuild()
MethodCall.model_rebuild()
CastExpr.model_rebuild()
PathCall.model_rebuild()
StructLiteral.model_rebuild()
Closure.model_rebuild()
InExpr.model_rebuild()
IfExpr.model_rebuild()
