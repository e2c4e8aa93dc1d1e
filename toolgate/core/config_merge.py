"""Merge a chain of configuration files into one effective policy.

Every merged value remembers the file it came from so verdicts can say
which source decided them.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Generic, Iterable, Optional, Sequence, TypeVar

from toolgate.core.config import DEFAULTS_SOURCE, PATH_TOOLS, Config, PatternList
from toolgate.utils.log import NULL_LOGGER, LoggerLike
from toolgate.utils.path_utils import MatchContext
from toolgate.utils.permissions.aliases import Alias
from toolgate.utils.permissions.decision import Action
from toolgate.utils.permissions.patterns import Pattern
from toolgate.utils.permissions.rules import BashRule, HeredocRule, RedirectRule


T = TypeVar("T")

DEFAULT_BASH_MESSAGE = "Command not allowed"
REF_FILE_TOOLS = ("read", "write", "edit")
CONSTRUCT_NAMES = ("subshells", "function_definitions", "background", "heredocs")

_TOOL_DEFAULTS = {
    "read": Action.ASK,
    "write": Action.ASK,
    "edit": Action.ASK,
    "glob": Action.ALLOW,
    "grep": Action.ALLOW,
    "webfetch": Action.ASK,
}
_CONSTRUCT_DEFAULTS = {
    "subshells": Action.ASK,
    "function_definitions": Action.ASK,
    "background": Action.ASK,
    "heredocs": Action.ALLOW,
}


@dataclass(frozen=True)
class Tracked(Generic[T]):
    """A merged value and the source that set it."""

    value: Optional[T] = None
    source: str = ""

    @property
    def is_set(self) -> bool:
        return bool(self.source)


@dataclass(frozen=True)
class TrackedPattern:
    pattern: Pattern
    source: str
    message: str = ""


@dataclass
class TrackedRule:
    rule: BashRule
    source: str
    order: int = 0
    shadowed: bool = False
    shadowing: str = ""


@dataclass
class TrackedRedirectRule:
    rule: RedirectRule
    source: str
    shadowed: bool = False
    shadowing: str = ""


@dataclass
class TrackedHeredocRule:
    rule: HeredocRule
    source: str


@dataclass
class MergedToolConfig:
    default: Tracked[Action] = field(default_factory=Tracked)
    default_message: Tracked[str] = field(default_factory=Tracked)
    respect_file_rules: Tracked[bool] = field(default_factory=Tracked)
    allow: list[TrackedPattern] = field(default_factory=list)
    deny: list[TrackedPattern] = field(default_factory=list)


@dataclass
class MergedConfig:
    sources: list[str] = field(default_factory=list)

    bash_default: Tracked[Action] = field(default_factory=Tracked)
    bash_default_message: Tracked[str] = field(default_factory=Tracked)
    dynamic_commands: Tracked[Action] = field(default_factory=Tracked)
    unresolved_commands: Tracked[Action] = field(default_factory=Tracked)
    respect_file_rules: Tracked[bool] = field(default_factory=Tracked)
    allowed_paths: Tracked[list[str]] = field(default_factory=Tracked)
    constructs: Dict[str, Tracked[Action]] = field(
        default_factory=lambda: {name: Tracked() for name in CONSTRUCT_NAMES}
    )

    commands_allow: list[TrackedPattern] = field(default_factory=list)
    commands_deny: list[TrackedPattern] = field(default_factory=list)
    rules: list[TrackedRule] = field(default_factory=list)
    redirect_rules: list[TrackedRedirectRule] = field(default_factory=list)
    heredoc_rules: list[TrackedHeredocRule] = field(default_factory=list)
    redirects_respect_file_rules: Tracked[bool] = field(default_factory=Tracked)

    tools: Dict[str, MergedToolConfig] = field(
        default_factory=lambda: {name: MergedToolConfig() for name in PATH_TOOLS}
    )
    safe_browsing_enabled: Tracked[bool] = field(default_factory=Tracked)
    safe_browsing_api_key: Tracked[str] = field(default_factory=Tracked)

    aliases: Dict[str, Alias] = field(default_factory=dict)
    session_max_age: Tracked[str] = field(default_factory=Tracked)
    log_file: Tracked[str] = field(default_factory=Tracked)

    def tool(self, name: str) -> MergedToolConfig:
        return self.tools[name]

    def construct(self, name: str) -> Action:
        value = self.constructs[name].value
        return value if value is not None else _CONSTRUCT_DEFAULTS[name]

    @property
    def active_rules(self) -> list[TrackedRule]:
        return [tracked for tracked in self.rules if not tracked.shadowed]

    @property
    def active_redirect_rules(self) -> list[TrackedRedirectRule]:
        return [tracked for tracked in self.redirect_rules if not tracked.shadowed]

    def resolve_ref(self, ref_path: str) -> tuple[str, ...]:
        """Pattern strings named by a ``ref:`` path; empty when nothing matches.

        Supported paths are ``<read|write|edit>.<allow|deny>.paths``,
        ``bash.<allow|deny>.commands`` and ``aliases.<name>``.
        """
        parts = ref_path.split(".")
        if len(parts) < 2:
            return ()
        head = parts[0]
        if head == "aliases":
            alias = self.aliases.get(parts[1])
            return alias.patterns if alias is not None else ()
        if len(parts) < 3 or parts[1] not in ("allow", "deny"):
            return ()
        if head in REF_FILE_TOOLS and parts[2] == "paths":
            section = self.tool(head)
            entries = section.allow if parts[1] == "allow" else section.deny
        elif head == "bash" and parts[2] == "commands":
            entries = self.commands_allow if parts[1] == "allow" else self.commands_deny
        else:
            return ()
        return tuple(entry.pattern.raw for entry in entries)

    def match_context(self, context: MatchContext) -> MatchContext:
        """``context`` with ``ref:`` patterns resolving against this config."""
        if context.refs is not None:
            return context
        return replace(context, refs=self.resolve_ref)


# ---------------------------------------------------------------------------
# Field merge helpers
# ---------------------------------------------------------------------------


def merge_scalar(current: Tracked[T], value: Optional[T], source: str) -> Tracked[T]:
    """Later non-empty values win; empty never overwrites."""
    if value is None or value == "" or value == []:
        return current
    return Tracked(value, source)


def merge_action(current: Tracked[Action], value: Optional[str], source: str) -> Tracked[Action]:
    return merge_scalar(current, Action.parse(value), source)


def merge_monotonic(current: Tracked[bool], value: Optional[bool], source: str) -> Tracked[bool]:
    """Once set true the flag stays true."""
    if value is None:
        return current
    if current.value:
        return current
    return Tracked(value, source)


def merge_pattern_list(
    current: list[TrackedPattern], declared: PatternList, source: str
) -> list[TrackedPattern]:
    entries = [
        TrackedPattern(pattern, source, declared.message) for pattern in declared.patterns.patterns
    ]
    if declared.mode == "replace":
        return entries
    return current + entries


def rules_exact_match(a: BashRule, b: BashRule) -> bool:
    return (a.command, a.subcommands, a.args, a.pipe) == (b.command, b.subcommands, b.args, b.pipe)


def redirect_rules_exact_match(a: RedirectRule, b: RedirectRule) -> bool:
    return bool(a.append) == bool(b.append) and a.paths.raws == b.paths.raws


def merge_rules(
    merged: list[TrackedRule], new_rules: Sequence[BashRule], source: str
) -> list[TrackedRule]:
    """Append ``new_rules`` and record which identical rules shadow each other."""
    for rule in new_rules:
        tracked = TrackedRule(rule, source, order=len(merged))
        for existing in merged:
            if existing.shadowed or not rules_exact_match(existing.rule, rule):
                continue
            if rule.action.is_stricter_than(existing.rule.action):
                tracked.shadowing = existing.source
                existing.shadowed = True
            else:
                tracked.shadowed = True
            break
        merged.append(tracked)
    return merged


def merge_redirect_rules(
    merged: list[TrackedRedirectRule], new_rules: Sequence[RedirectRule], source: str
) -> list[TrackedRedirectRule]:
    for rule in new_rules:
        tracked = TrackedRedirectRule(rule, source)
        for existing in merged:
            if existing.shadowed or not redirect_rules_exact_match(existing.rule, rule):
                continue
            if rule.action.is_stricter_than(existing.rule.action):
                tracked.shadowing = existing.source
                existing.shadowed = True
            else:
                tracked.shadowed = True
            break
        merged.append(tracked)
    return merged


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


def merge_config_into(merged: MergedConfig, config: Config) -> None:
    source = config.path or DEFAULTS_SOURCE
    document = config.document
    bash = document.bash
    merged.sources.append(source)

    merged.bash_default = merge_action(merged.bash_default, bash.default, source)
    merged.bash_default_message = merge_scalar(
        merged.bash_default_message, bash.default_message, source
    )
    merged.dynamic_commands = merge_action(merged.dynamic_commands, bash.dynamic_commands, source)
    merged.unresolved_commands = merge_action(
        merged.unresolved_commands, bash.unresolved_commands, source
    )
    merged.respect_file_rules = merge_scalar(
        merged.respect_file_rules, bash.respect_file_rules, source
    )
    merged.allowed_paths = merge_scalar(merged.allowed_paths, list(bash.allowed_paths), source)
    for name in CONSTRUCT_NAMES:
        merged.constructs[name] = merge_action(
            merged.constructs[name], getattr(bash.constructs, name), source
        )

    merged.commands_deny = merge_pattern_list(
        merged.commands_deny, config.command_list("deny"), source
    )
    merged.commands_allow = merge_pattern_list(
        merged.commands_allow, config.command_list("allow"), source
    )

    merged.rules = merge_rules(merged.rules, config.bash_rules, source)
    merged.redirect_rules = merge_redirect_rules(
        merged.redirect_rules, config.redirect_rules, source
    )
    merged.heredoc_rules.extend(TrackedHeredocRule(rule, source) for rule in config.heredoc_rules)
    merged.redirects_respect_file_rules = merge_scalar(
        merged.redirects_respect_file_rules, bash.redirects.respect_file_rules, source
    )

    for name in PATH_TOOLS:
        section = document.tool(name)
        tool = merged.tools[name]
        tool.default = merge_action(tool.default, section.default, source)
        tool.default_message = merge_scalar(tool.default_message, section.default_message, source)
        tool.respect_file_rules = merge_scalar(
            tool.respect_file_rules, section.respect_file_rules, source
        )
        tool.allow = merge_pattern_list(tool.allow, config.path_list(name, "allow"), source)
        tool.deny = merge_pattern_list(tool.deny, config.path_list(name, "deny"), source)

    safe_browsing = document.webfetch.safe_browsing
    merged.safe_browsing_enabled = merge_monotonic(
        merged.safe_browsing_enabled, safe_browsing.enabled, source
    )
    merged.safe_browsing_api_key = merge_scalar(
        merged.safe_browsing_api_key, safe_browsing.api_key, source
    )

    merged.aliases.update(config.aliases)
    merged.session_max_age = merge_scalar(
        merged.session_max_age, document.settings.session_max_age, source
    )
    merged.log_file = merge_scalar(merged.log_file, document.debug.log_file, source)


def apply_defaults(merged: MergedConfig) -> None:
    """Fill every unset field with its built-in default."""

    def _default(current: Tracked[T], value: T) -> Tracked[T]:
        return current if current.is_set else Tracked(value, DEFAULTS_SOURCE)

    merged.bash_default = _default(merged.bash_default, Action.ASK)
    merged.bash_default_message = _default(merged.bash_default_message, DEFAULT_BASH_MESSAGE)
    merged.dynamic_commands = _default(merged.dynamic_commands, Action.ASK)
    merged.unresolved_commands = _default(merged.unresolved_commands, Action.ASK)
    merged.respect_file_rules = _default(merged.respect_file_rules, True)
    merged.redirects_respect_file_rules = _default(merged.redirects_respect_file_rules, False)
    for name, action in _CONSTRUCT_DEFAULTS.items():
        merged.constructs[name] = _default(merged.constructs[name], action)
    for name, action in _TOOL_DEFAULTS.items():
        tool = merged.tools[name]
        tool.default = _default(tool.default, action)
        tool.respect_file_rules = _default(tool.respect_file_rules, True)
    merged.safe_browsing_enabled = _default(merged.safe_browsing_enabled, False)


def merge_configs(
    configs: Iterable[Config], logger: LoggerLike = NULL_LOGGER
) -> MergedConfig:
    """Merge ``configs`` in chain order (most general first)."""
    merged = MergedConfig()
    for config in configs:
        merge_config_into(merged, config)
    apply_defaults(merged)
    shadowed = sum(1 for tracked in merged.rules if tracked.shadowed)
    logger.debug(
        "[config] Merged configuration chain",
        extra={
            "sources": merged.sources,
            "rules": len(merged.rules),
            "shadowed_rules": shadowed,
            "redirect_rules": len(merged.redirect_rules),
            "heredoc_rules": len(merged.heredoc_rules),
        },
    )
    return merged
