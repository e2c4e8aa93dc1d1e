"""Boolean expressions over command arguments.

Rules describe argument constraints with nested ``any``/``all``/``not``/``xor``
tables. Leaves are either pattern lists (some argument matches some pattern)
or sequences keyed by relative position (consecutive arguments match)::

    args.any = ["--force", { "0" = "-C", "1" = "path:/etc/**" }]
    args.not = ["--dry-run"]
    args.position = { "0" = ["status", "diff"] }
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Union

from toolgate.core.errors import ConfigValidationError
from toolgate.utils.path_utils import MatchContext
from toolgate.utils.permissions.aliases import Alias, expand_all
from toolgate.utils.permissions.patterns import FlexiblePattern, compile_patterns


_OPERATOR_KEYS = ("any", "all", "not", "xor")

SPECIFICITY_LEAF_PATTERN = 5
SPECIFICITY_SEQUENCE_POSITION = 10
SPECIFICITY_OPERATOR = 5
SPECIFICITY_POSITION = 20


@dataclass(frozen=True)
class PatternsExpr:
    patterns: FlexiblePattern


@dataclass(frozen=True)
class SequenceExpr:
    positions: tuple[tuple[int, FlexiblePattern], ...]


@dataclass(frozen=True)
class AnyExpr:
    children: tuple["BoolExpr", ...]


@dataclass(frozen=True)
class AllExpr:
    children: tuple["BoolExpr", ...]


@dataclass(frozen=True)
class NotExpr:
    child: "BoolExpr"


@dataclass(frozen=True)
class XorExpr:
    children: tuple["BoolExpr", ...]


BoolExpr = Union[PatternsExpr, SequenceExpr, AnyExpr, AllExpr, NotExpr, XorExpr]


def evaluate(expr: BoolExpr, args: Sequence[str], context: Optional[MatchContext] = None) -> bool:
    """Evaluate ``expr`` against an ordered argument list."""
    if isinstance(expr, PatternsExpr):
        return expr.patterns.matches_any(args, context)
    if isinstance(expr, SequenceExpr):
        return _match_sequence(expr, args, context)
    if isinstance(expr, AnyExpr):
        return any(evaluate(child, args, context) for child in expr.children)
    if isinstance(expr, AllExpr):
        return all(evaluate(child, args, context) for child in expr.children)
    if isinstance(expr, NotExpr):
        return not evaluate(expr.child, args, context)
    if isinstance(expr, XorExpr):
        return sum(1 for child in expr.children if evaluate(child, args, context)) == 1
    raise TypeError(f"unknown expression node: {type(expr).__name__}")


def _match_sequence(
    expr: SequenceExpr, args: Sequence[str], context: Optional[MatchContext]
) -> bool:
    if not expr.positions:
        return False
    span = max(position for position, _ in expr.positions)
    for offset in range(len(args) - span):
        if all(
            fp.matches(args[offset + position], context) for position, fp in expr.positions
        ):
            return True
    return False


def specificity(expr: Optional[BoolExpr]) -> int:
    """Score an expression; every extra constraint adds to the total."""
    if expr is None:
        return 0
    if isinstance(expr, PatternsExpr):
        return len(expr.patterns) * SPECIFICITY_LEAF_PATTERN
    if isinstance(expr, SequenceExpr):
        return len(expr.positions) * SPECIFICITY_SEQUENCE_POSITION
    if isinstance(expr, NotExpr):
        return SPECIFICITY_OPERATOR + specificity(expr.child)
    if isinstance(expr, XorExpr):
        return SPECIFICITY_OPERATOR + sum(specificity(child) for child in expr.children)
    return sum(specificity(child) for child in expr.children)


def leaf_pattern_count(expr: Optional[BoolExpr]) -> int:
    if expr is None:
        return 0
    if isinstance(expr, PatternsExpr):
        return len(expr.patterns)
    if isinstance(expr, SequenceExpr):
        return sum(len(fp) for _, fp in expr.positions)
    if isinstance(expr, NotExpr):
        return leaf_pattern_count(expr.child)
    return sum(leaf_pattern_count(child) for child in expr.children)


@dataclass(frozen=True)
class ArgsMatch:
    """Conjunction of boolean expressions and absolute positional matches."""

    any: Optional[BoolExpr] = None
    all: Optional[BoolExpr] = None
    not_: Optional[BoolExpr] = None
    xor: Optional[BoolExpr] = None
    position: tuple[tuple[int, FlexiblePattern], ...] = ()

    @property
    def is_empty(self) -> bool:
        return (
            self.any is None
            and self.all is None
            and self.not_ is None
            and self.xor is None
            and not self.position
        )

    def matches(self, args: Sequence[str], context: Optional[MatchContext] = None) -> bool:
        for expr in (self.any, self.all, self.xor):
            if expr is not None and not evaluate(expr, args, context):
                return False
        if self.not_ is not None and evaluate(self.not_, args, context):
            return False
        for position, fp in self.position:
            if position >= len(args) or not fp.matches(args[position], context):
                return False
        return True

    def specificity(self) -> int:
        score = len(self.position) * SPECIFICITY_POSITION
        score += specificity(self.any) + specificity(self.all) + specificity(self.xor)
        if self.not_ is not None:
            score += SPECIFICITY_OPERATOR + specificity(self.not_)
        return score

    def describe(self) -> list[str]:
        parts = []
        for name, expr in (("any", self.any), ("all", self.all), ("not", self.not_), ("xor", self.xor)):
            if expr is not None:
                parts.append(f"args.{name}")
        if self.position:
            parts.append("args.position")
        return parts


# ---------------------------------------------------------------------------
# Parsing from configuration values
# ---------------------------------------------------------------------------


def parse_args_match(raw: Any, aliases: Mapping[str, Alias], location: str) -> ArgsMatch:
    """Build an :class:`ArgsMatch` from an ``args`` table."""
    if not isinstance(raw, Mapping):
        raise ConfigValidationError("args must be a table", location=location, value=raw)
    for key in raw:
        if key not in (*_OPERATOR_KEYS, "position"):
            raise ConfigValidationError(
                "unknown args key (expected any, all, not, xor or position)",
                location=f"{location}.{key}",
                value=key,
            )

    any_expr = all_expr = not_expr = xor_expr = None
    if "any" in raw:
        any_expr = _parse_items(raw["any"], AnyExpr, aliases, f"{location}.any")
    if "all" in raw:
        all_expr = _parse_items(raw["all"], AllExpr, aliases, f"{location}.all")
    if "not" in raw:
        not_expr = _parse_items(raw["not"], AnyExpr, aliases, f"{location}.not")
    if "xor" in raw:
        xor_expr = _parse_items(raw["xor"], XorExpr, aliases, f"{location}.xor")
    position: tuple[tuple[int, FlexiblePattern], ...] = ()
    if "position" in raw:
        position = _parse_positions(raw["position"], aliases, f"{location}.position")
    return ArgsMatch(any_expr, all_expr, not_expr, xor_expr, position)


def parse_bool_expr(raw: Any, aliases: Mapping[str, Alias], location: str) -> BoolExpr:
    """Parse a standalone expression such as heredoc ``content``.

    A list (or a bare string) uses OR semantics; a table may hold operator
    keys or relative positions.
    """
    if isinstance(raw, Mapping):
        return _parse_item(raw, aliases, location)
    return _parse_items(raw, AnyExpr, aliases, location)


def _parse_items(raw: Any, combinator: type, aliases: Mapping[str, Alias], location: str) -> BoolExpr:
    items = [raw] if isinstance(raw, (str, Mapping)) else raw
    if not isinstance(items, list) or not items:
        raise ConfigValidationError(
            "expected a non-empty string, table or list", location=location, value=raw
        )
    children: list[BoolExpr] = []
    for index, item in enumerate(items):
        children.append(_parse_item(item, aliases, f"{location}[{index}]"))
    return combinator(tuple(children))


def _parse_item(item: Any, aliases: Mapping[str, Alias], location: str) -> BoolExpr:
    if isinstance(item, str):
        expanded = expand_all([item], aliases, location)
        return PatternsExpr(FlexiblePattern(compile_patterns(expanded, location)))
    if not isinstance(item, Mapping) or not item:
        raise ConfigValidationError(
            "expected a pattern string or a non-empty table", location=location, value=item
        )
    keys = list(item.keys())
    if all(key in _OPERATOR_KEYS for key in keys):
        parts: list[BoolExpr] = []
        for key in keys:
            sub_location = f"{location}.{key}"
            if key == "any":
                parts.append(_parse_items(item[key], AnyExpr, aliases, sub_location))
            elif key == "all":
                parts.append(_parse_items(item[key], AllExpr, aliases, sub_location))
            elif key == "not":
                parts.append(NotExpr(_parse_items(item[key], AnyExpr, aliases, sub_location)))
            else:
                parts.append(_parse_items(item[key], XorExpr, aliases, sub_location))
        return parts[0] if len(parts) == 1 else AllExpr(tuple(parts))
    return SequenceExpr(_parse_positions(item, aliases, location))


def _parse_positions(
    raw: Any, aliases: Mapping[str, Alias], location: str
) -> tuple[tuple[int, FlexiblePattern], ...]:
    if not isinstance(raw, Mapping):
        raise ConfigValidationError("positions must be a table", location=location, value=raw)
    positions: list[tuple[int, FlexiblePattern]] = []
    for key, value in raw.items():
        key_location = f"{location}[{key}]"
        position = _parse_position_key(key, key_location)
        if isinstance(value, str):
            values = [value]
        elif isinstance(value, list) and value and all(isinstance(v, str) for v in value):
            values = list(value)
        else:
            raise ConfigValidationError(
                "expected a pattern string or a list of pattern strings",
                location=key_location,
                value=value,
            )
        expanded = expand_all(values, aliases, key_location)
        positions.append((position, FlexiblePattern(compile_patterns(expanded, key_location))))
    positions.sort(key=lambda pair: pair[0])
    return tuple(positions)


def _parse_position_key(key: Any, location: str) -> int:
    text = str(key)
    if not text.isdigit():
        raise ConfigValidationError(
            "position keys must be non-negative integers", location=location, value=key
        )
    return int(text)
