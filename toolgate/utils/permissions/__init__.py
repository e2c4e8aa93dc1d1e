"""Permission rule primitives."""

from .aliases import Alias, expand, expand_all, parse_aliases, validate_aliases
from .bool_expr import ArgsMatch, BoolExpr, evaluate, parse_args_match, parse_bool_expr
from .decision import Action, Result, combine_results
from .patterns import FlexiblePattern, Pattern, PatternKind, compile_pattern
from .rules import (
    BashRule,
    HeredocRule,
    PipeContext,
    RedirectRule,
    parse_bash_rules,
    parse_heredoc_rules,
    parse_redirect_rules,
)

__all__ = [
    "Action",
    "Alias",
    "ArgsMatch",
    "BashRule",
    "BoolExpr",
    "FlexiblePattern",
    "HeredocRule",
    "Pattern",
    "PatternKind",
    "PipeContext",
    "RedirectRule",
    "Result",
    "combine_results",
    "compile_pattern",
    "evaluate",
    "expand",
    "expand_all",
    "parse_aliases",
    "parse_args_match",
    "parse_bash_rules",
    "parse_bool_expr",
    "parse_heredoc_rules",
    "parse_redirect_rules",
    "validate_aliases",
]
