"""Command, redirect and heredoc rules.

Command rules are declared as nested tables under ``[bash.allow]``,
``[bash.deny]`` or ``[bash.ask]``; the table path names the command and its
subcommands::

    [[bash.deny.git.push]]
    message = "Force pushes are blocked"
    args.any = ["--force", "-f"]

    [[bash.deny.curl]]
    pipe.to = ["bash", "sh"]

Redirect and heredoc rules are arrays of tables::

    [[bash.redirects.allow]]
    paths = ["path:/tmp/**"]

    [[bash.heredocs.deny]]
    content = ["re:rm -rf"]
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from toolgate.core.errors import ConfigValidationError
from toolgate.utils.path_utils import MatchContext
from toolgate.utils.permissions.aliases import Alias, expand_all
from toolgate.utils.permissions.bool_expr import (
    ArgsMatch,
    BoolExpr,
    evaluate,
    leaf_pattern_count,
    parse_args_match,
    parse_bool_expr,
)
from toolgate.utils.permissions.decision import Action
from toolgate.utils.permissions.patterns import (
    FlexiblePattern,
    Pattern,
    PatternKind,
    compile_pattern,
    compile_patterns,
)


SPECIFICITY_COMMAND = 100
SPECIFICITY_SUBCOMMAND = 150
SPECIFICITY_PIPE_EXACT = 10
SPECIFICITY_PIPE_PATTERN = 5
SPECIFICITY_REDIRECT_EXACT = 10
SPECIFICITY_REDIRECT_PATTERN = 5
SPECIFICITY_APPEND = 5
SPECIFICITY_CONTENT_MATCH = 10

RULE_ACTIONS = ("allow", "deny", "ask")
RESERVED_SECTION_KEYS = frozenset({"commands", "message", "mode"})
RESERVED_RULE_KEYS = frozenset(
    {"message", "args", "pipe", "respect_file_rules", "file_access_type"}
)
FILE_ACCESS_TYPES = ("Read", "Write", "Edit")


def _score_patterns(patterns: FlexiblePattern, exact: int, pattern: int) -> int:
    return sum(exact if p.is_literal else pattern for p in patterns.patterns)


@dataclass(frozen=True)
class PipeContext:
    """Pipeline neighbours a rule requires.

    ``to`` matches when any immediately downstream command matches; ``from``
    matches when any upstream command matches (``"*"`` means any).
    """

    to: FlexiblePattern = field(default_factory=FlexiblePattern)
    from_: FlexiblePattern = field(default_factory=FlexiblePattern)

    @property
    def is_empty(self) -> bool:
        return not self.to and not self.from_

    def matches(
        self,
        pipes_to: Sequence[str],
        pipes_from: Sequence[str],
        context: Optional[MatchContext] = None,
    ) -> bool:
        if self.to and not self.to.matches_any(pipes_to, context):
            return False
        if self.from_ and not self.from_.matches_any(pipes_from, context):
            return False
        return True

    def specificity(self) -> int:
        return _score_patterns(
            self.to, SPECIFICITY_PIPE_EXACT, SPECIFICITY_PIPE_PATTERN
        ) + _score_patterns(self.from_, SPECIFICITY_PIPE_EXACT, SPECIFICITY_PIPE_PATTERN)


@dataclass(frozen=True)
class BashRule:
    command: str
    action: Action
    subcommands: tuple[str, ...] = ()
    args: ArgsMatch = field(default_factory=ArgsMatch)
    pipe: PipeContext = field(default_factory=PipeContext)
    message: str = ""
    respect_file_rules: Optional[bool] = None
    file_access_type: str = ""
    command_pattern: Optional[Pattern] = field(default=None, compare=False, repr=False)
    subcommand_patterns: tuple[Pattern, ...] = field(default=(), compare=False, repr=False)

    @property
    def location(self) -> str:
        return ".".join(("bash", self.action.value, self.command, *self.subcommands))

    def specificity(self) -> int:
        score = 0
        if self.command_pattern is None or self.command_pattern.is_literal:
            score += SPECIFICITY_COMMAND
        score += len(self.subcommands) * SPECIFICITY_SUBCOMMAND
        score += self.args.specificity()
        score += self.pipe.specificity()
        return score

    def matches_command(
        self, name: str, resolved_path: str = "", context: Optional[MatchContext] = None
    ) -> bool:
        pattern = self.command_pattern or compile_pattern(self.command)
        if pattern.kind is PatternKind.PATH:
            return bool(resolved_path) and pattern.matches(resolved_path, context)
        if pattern.matches(name, context):
            return True
        return pattern.is_literal and bool(resolved_path) and pattern.matches(
            os.path.basename(resolved_path)
        )

    def match(
        self,
        name: str,
        args: Sequence[str],
        pipes_to: Sequence[str] = (),
        pipes_from: Sequence[str] = (),
        resolved_path: str = "",
        context: Optional[MatchContext] = None,
    ) -> bool:
        """Check the rule against a command.

        ``args`` excludes the command name. Subcommand segments must equal the
        leading arguments; argument predicates see the arguments after them.
        """
        if not self.matches_command(name, resolved_path, context):
            return False
        depth = len(self.subcommands)
        if len(args) < depth:
            return False
        patterns = self.subcommand_patterns or tuple(compile_pattern(s) for s in self.subcommands)
        for pattern, arg in zip(patterns, args):
            if not pattern.matches(arg, context):
                return False
        if not self.args.matches(list(args[depth:]), context):
            return False
        return self.pipe.matches(pipes_to, pipes_from, context)

    def describe(self) -> str:
        parts = [f"command={' '.join((self.command, *self.subcommands))}"]
        parts.extend(self.args.describe())
        if self.pipe.to:
            parts.append("pipe.to")
        if self.pipe.from_:
            parts.append("pipe.from")
        return ", ".join(parts)


@dataclass(frozen=True)
class RedirectRule:
    action: Action
    paths: FlexiblePattern = field(default_factory=FlexiblePattern)
    append: Optional[bool] = None
    message: str = ""

    def specificity(self) -> int:
        score = _score_patterns(
            self.paths, SPECIFICITY_REDIRECT_EXACT, SPECIFICITY_REDIRECT_PATTERN
        )
        if self.append is not None:
            score += SPECIFICITY_APPEND
        return score

    def match(self, target: str, append: bool, context: Optional[MatchContext] = None) -> bool:
        if self.append is not None and self.append != append:
            return False
        if not self.paths:
            return True
        basename = os.path.basename(target)
        for pattern in self.paths.patterns:
            if pattern.matches(target, context):
                return True
            if pattern.is_literal and pattern.matches(basename):
                return True
        return False


@dataclass(frozen=True)
class HeredocRule:
    action: Action
    content: Optional[BoolExpr] = None
    message: str = ""

    def specificity(self) -> int:
        return leaf_pattern_count(self.content) * SPECIFICITY_CONTENT_MATCH

    def match(self, body: str, context: Optional[MatchContext] = None) -> bool:
        if self.content is None:
            return True
        return evaluate(self.content, [body], context)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_bash_rules(bash_raw: Mapping[str, Any], aliases: Mapping[str, Alias]) -> list[BashRule]:
    """Collect command rules from ``bash.allow``, ``bash.deny`` and ``bash.ask``."""
    rules: list[BashRule] = []
    for action_name in RULE_ACTIONS:
        section = bash_raw.get(action_name)
        if section is None:
            continue
        location = f"bash.{action_name}"
        if not isinstance(section, Mapping):
            raise ConfigValidationError("expected a table", location=location, value=section)
        rules.extend(_walk_section(section, Action(action_name), [], aliases))
    return rules


def _walk_section(
    node: Mapping[str, Any], action: Action, path: list[str], aliases: Mapping[str, Alias]
) -> list[BashRule]:
    rules: list[BashRule] = []
    for key, value in node.items():
        if not path and key in RESERVED_SECTION_KEYS:
            continue
        if path and key in RESERVED_RULE_KEYS:
            continue
        child_path = [*path, key]
        location = ".".join(("bash", action.value, *child_path))
        if isinstance(value, list):
            for index, table in enumerate(value):
                if not isinstance(table, Mapping):
                    raise ConfigValidationError(
                        "expected a rule table", location=f"{location}[{index}]", value=table
                    )
                rules.extend(
                    _rules_from_table(table, action, child_path, aliases, f"{location}[{index}]")
                )
        elif isinstance(value, Mapping):
            rules.extend(_rules_from_table(value, action, child_path, aliases, location))
        else:
            raise ConfigValidationError(
                "unexpected value (expected a rule table)", location=location, value=value
            )
    return rules


def _looks_like_rule_table(table: Mapping[str, Any]) -> bool:
    return not table or any(key in RESERVED_RULE_KEYS for key in table)


def _rules_from_table(
    table: Mapping[str, Any],
    action: Action,
    path: list[str],
    aliases: Mapping[str, Alias],
    location: str,
) -> list[BashRule]:
    rules: list[BashRule] = []
    if _looks_like_rule_table(table):
        rules.append(parse_rule_table(table, action, path, aliases, location))
    nested = {k: v for k, v in table.items() if k not in RESERVED_RULE_KEYS}
    if nested:
        rules.extend(_walk_section(nested, action, path, aliases))
    return rules


def parse_rule_table(
    table: Mapping[str, Any],
    action: Action,
    path: Sequence[str],
    aliases: Mapping[str, Alias],
    location: str,
) -> BashRule:
    """Build one :class:`BashRule` for the command path ``path``."""
    if not path:
        raise ConfigValidationError("empty command path", location=location)
    command, subcommands = path[0], tuple(path[1:])
    command_pattern = compile_pattern(command, location)
    subcommand_patterns = tuple(compile_pattern(s, location) for s in subcommands)

    message = table.get("message", "")
    if not isinstance(message, str):
        raise ConfigValidationError(
            "message must be a string", location=f"{location}.message", value=message
        )

    args = ArgsMatch()
    if "args" in table:
        args = parse_args_match(table["args"], aliases, f"{location}.args")

    pipe = PipeContext()
    if "pipe" in table:
        pipe = _parse_pipe(table["pipe"], aliases, f"{location}.pipe")

    respect = table.get("respect_file_rules")
    if respect is not None and not isinstance(respect, bool):
        raise ConfigValidationError(
            "respect_file_rules must be a boolean",
            location=f"{location}.respect_file_rules",
            value=respect,
        )

    access_type = table.get("file_access_type", "")
    if access_type and access_type not in FILE_ACCESS_TYPES:
        raise ConfigValidationError(
            'invalid file_access_type (must be "Read", "Write", or "Edit")',
            location=f"{location}.file_access_type",
            value=access_type,
        )

    return BashRule(
        command=command,
        action=action,
        subcommands=subcommands,
        args=args,
        pipe=pipe,
        message=message,
        respect_file_rules=respect,
        file_access_type=access_type,
        command_pattern=command_pattern,
        subcommand_patterns=subcommand_patterns,
    )


def _string_list(raw: Any, location: str) -> list[str]:
    if isinstance(raw, str):
        return [raw]
    if isinstance(raw, list) and all(isinstance(item, str) for item in raw):
        return list(raw)
    raise ConfigValidationError(
        "expected a string or a list of strings", location=location, value=raw
    )


def _flexible(raw: Any, aliases: Mapping[str, Alias], location: str) -> FlexiblePattern:
    values = expand_all(_string_list(raw, location), aliases, location)
    return FlexiblePattern(compile_patterns(values, location))


def _parse_pipe(raw: Any, aliases: Mapping[str, Alias], location: str) -> PipeContext:
    if not isinstance(raw, Mapping):
        raise ConfigValidationError("pipe must be a table", location=location, value=raw)
    to = FlexiblePattern()
    from_ = FlexiblePattern()
    if "to" in raw:
        to = _flexible(raw["to"], aliases, f"{location}.to")
    if "from" in raw:
        from_ = _flexible(raw["from"], aliases, f"{location}.from")
    return PipeContext(to=to, from_=from_)


def _rule_arrays(raw: Any, location: str) -> list[tuple[Action, int, Mapping[str, Any]]]:
    if not isinstance(raw, Mapping):
        raise ConfigValidationError("expected a table", location=location, value=raw)
    entries: list[tuple[Action, int, Mapping[str, Any]]] = []
    for action_name in RULE_ACTIONS:
        tables = raw.get(action_name)
        if tables is None:
            continue
        if isinstance(tables, Mapping):
            tables = [tables]
        if not isinstance(tables, list):
            raise ConfigValidationError(
                "expected an array of tables", location=f"{location}.{action_name}", value=tables
            )
        for index, table in enumerate(tables):
            if not isinstance(table, Mapping):
                raise ConfigValidationError(
                    "expected a rule table",
                    location=f"{location}.{action_name}[{index}]",
                    value=table,
                )
            entries.append((Action(action_name), index, table))
    return entries


def parse_redirect_rules(raw: Any, aliases: Mapping[str, Alias]) -> list[RedirectRule]:
    rules: list[RedirectRule] = []
    for action, index, table in _rule_arrays(raw, "bash.redirects"):
        location = f"bash.redirects.{action.value}[{index}]"
        paths = FlexiblePattern()
        if "paths" in table:
            paths = _flexible(table["paths"], aliases, f"{location}.paths")
        append = table.get("append")
        if append is not None and not isinstance(append, bool):
            raise ConfigValidationError(
                "append must be a boolean", location=f"{location}.append", value=append
            )
        message = table.get("message", "")
        if not isinstance(message, str):
            raise ConfigValidationError(
                "message must be a string", location=f"{location}.message", value=message
            )
        rules.append(RedirectRule(action=action, paths=paths, append=append, message=message))
    return rules


def parse_heredoc_rules(raw: Any, aliases: Mapping[str, Alias]) -> list[HeredocRule]:
    rules: list[HeredocRule] = []
    for action, index, table in _rule_arrays(raw, "bash.heredocs"):
        location = f"bash.heredocs.{action.value}[{index}]"
        content = None
        if "content" in table:
            content = parse_bool_expr(table["content"], aliases, f"{location}.content")
        message = table.get("message", "")
        if not isinstance(message, str):
            raise ConfigValidationError(
                "message must be a string", location=f"{location}.message", value=message
            )
        rules.append(HeredocRule(action=action, content=content, message=message))
    return rules
