"""
Permute typed expression language.

Tokenizer, type parser and expression parser shared by declaration headers,
defaults, checks and method bodies. The evaluator depends on the declaration
store and is imported from its own module.

Usage:
    from permute.core.expression_lang import parse_expr
    from permute.core.expression_lang.evaluator import EvalEnv, evaluate

    expr = parse_expr("self.header?.len() == self.write.len()")
    result = evaluate(expr, {"self": params}, EvalEnv.for_namespace(store, "Csv"))
"""

from .parser import ExpressionParseError, parse_cached, parse_expr
from .type_parser import TypeParseError, parse_bounds, parse_type

__all__ = [
    "ExpressionParseError",
    "TypeParseError",
    "parse_bounds",
    "parse_cached",
    "parse_expr",
    "parse_type",
]
