"""Shell command evaluation.

:class:`Evaluator` turns an :class:`ExtractedInfo` into one verdict. Each
command, redirect and heredoc is judged on its own and the verdicts are
combined strictest-wins, stopping at the first deny.
"""

from dataclasses import replace
from typing import Optional, Sequence, Union

from toolgate.core.config import Config
from toolgate.core.config_merge import MergedConfig, TrackedPattern, TrackedRule, merge_configs
from toolgate.core.file_rules import FileRuleEvaluator
from toolgate.utils.log import NULL_LOGGER, LoggerLike
from toolgate.utils.path_utils import (
    CommandResolver,
    MatchContext,
    ResolvedCommand,
    is_path_like,
    resolve_path,
)
from toolgate.utils.permissions.decision import Action, Result, combine_results
from toolgate.utils.permissions.patterns import Pattern, PatternKind
from toolgate.utils.permissions.rules import BashRule
from toolgate.utils.shell_extract import (
    CommandInfo,
    ExtractedInfo,
    HeredocInfo,
    RedirectInfo,
    extract_source,
)
from toolgate.utils.templates import (
    TemplateContext,
    command_context,
    heredoc_context,
    redirect_context,
    render_message,
)


# Commands whose path arguments are checked against write rules.
WRITE_COMMANDS = frozenset(
    {
        "chgrp",
        "chmod",
        "chown",
        "cp",
        "dd",
        "install",
        "ln",
        "mkdir",
        "mv",
        "rm",
        "rmdir",
        "rsync",
        "shred",
        "tee",
        "touch",
        "truncate",
        "unlink",
    }
)

UNRESOLVED_MESSAGE = "Command not found in allowed paths"

_CONSTRUCT_MESSAGES = {
    "function_definitions": ("Function definitions are not allowed", "Function definitions need approval"),
    "background": ("Background execution (&) is not allowed", "Background execution needs approval"),
    "heredocs": ("Heredocs are not allowed", "Heredocs need approval"),
    "subshells": ("Subshells are not allowed", "Subshells need approval"),
}

ConfigInput = Union[MergedConfig, Sequence[Config]]


def infer_file_access_type(command: str) -> str:
    name = command.rsplit("/", 1)[-1]
    return "Write" if name in WRITE_COMMANDS else "Read"


class Evaluator:
    """Evaluate shell input against a merged configuration chain."""

    def __init__(
        self,
        config: ConfigInput,
        *,
        context: Optional[MatchContext] = None,
        resolver: Optional[CommandResolver] = None,
        files: Optional[FileRuleEvaluator] = None,
        logger: LoggerLike = NULL_LOGGER,
    ) -> None:
        self.merged = config if isinstance(config, MergedConfig) else merge_configs(config, logger)
        self.context = self.merged.match_context(context or MatchContext.current())
        self.resolver = resolver or CommandResolver(self.merged.allowed_paths.value)
        self.files = files or FileRuleEvaluator(self.merged, self.context, logger=logger)
        self.logger = logger

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def evaluate_source(self, source: str) -> Result:
        """Parse and evaluate shell source.

        Raises:
            ShellParseError: when the source cannot be parsed.
        """
        info = extract_source(source, self.context.cwd, self.context.home, self.logger)
        return self.evaluate(info)

    def evaluate(self, info: ExtractedInfo) -> Result:
        result = self.check_constructs(info)
        if result.is_deny:
            return result

        for command in info.commands:
            result = combine_results(result, self.evaluate_command(command))
            if result.is_deny:
                return result

        for redirect in info.redirects:
            result = combine_results(result, self.evaluate_redirect(redirect))
            if result.is_deny:
                return result

        if self.merged.construct("heredocs") is Action.ALLOW:
            for heredoc in info.heredocs:
                result = combine_results(result, self.evaluate_heredoc(heredoc))
                if result.is_deny:
                    return result

        if info.is_empty:
            return Result(Action.ASK, source="no executable commands in input")
        self.logger.debug(
            "[eval] Shell verdict",
            extra={"action": result.action.value, "source": result.source},
        )
        return result

    # ------------------------------------------------------------------
    # Constructs
    # ------------------------------------------------------------------

    def check_constructs(self, info: ExtractedInfo) -> Result:
        present = {
            "function_definitions": info.constructs.has_function_definition,
            "background": info.constructs.has_background,
            "heredocs": info.constructs.has_heredoc,
            "subshells": info.constructs.has_subshell,
        }
        result = Result(Action.ALLOW)
        for name, found in present.items():
            if not found:
                continue
            tracked = self.merged.constructs[name]
            action = self.merged.construct(name)
            deny_message, ask_message = _CONSTRUCT_MESSAGES[name]
            if action is Action.DENY:
                return Result(
                    Action.DENY,
                    message=deny_message,
                    source=f"{tracked.source}: constructs.{name}=deny",
                )
            if action is Action.ASK:
                result = combine_results(
                    result,
                    Result(
                        Action.ASK,
                        message=ask_message,
                        source=f"{tracked.source}: constructs.{name}=ask",
                    ),
                )
        return result

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _context_for(self, cwd: str) -> MatchContext:
        if not cwd or cwd == self.context.cwd:
            return self.context
        return replace(self.context, cwd=cwd)

    def _template(self, command: CommandInfo, resolved: ResolvedCommand) -> TemplateContext:
        return command_context(
            command.name,
            command.args,
            cwd=command.effective_cwd,
            resolved_path=resolved.path,
            pipes_to=command.pipes_to,
            pipes_from=command.pipes_from,
            home=self.context.home,
            project_root=self.context.project_root,
        )

    def _match_list_entry(
        self, pattern: Pattern, name: str, resolved_path: str, context: MatchContext
    ) -> bool:
        if pattern.kind is PatternKind.PATH:
            return bool(resolved_path) and pattern.matches(resolved_path, context)
        if pattern.matches(name, context):
            return True
        return (
            pattern.is_literal
            and bool(resolved_path)
            and pattern.matches(resolved_path.rsplit("/", 1)[-1])
        )

    def _first_list_match(
        self, entries: list[TrackedPattern], name: str, resolved_path: str, context: MatchContext
    ) -> Optional[TrackedPattern]:
        for entry in entries:
            if self._match_list_entry(entry.pattern, name, resolved_path, context):
                return entry
        return None

    def select_rule(
        self, command: CommandInfo, resolved_path: str, context: MatchContext
    ) -> Optional[TrackedRule]:
        """Pick the matching rule with the highest specificity.

        Ties go to the stricter action, then to the earlier declaration.
        """
        matches = [
            tracked
            for tracked in self.merged.active_rules
            if tracked.rule.match(
                command.name,
                command.arguments,
                command.pipes_to,
                command.pipes_from,
                resolved_path,
                context,
            )
        ]
        if not matches:
            return None
        matches.sort(
            key=lambda tracked: (
                -tracked.rule.specificity(),
                -tracked.rule.action.strictness,
                tracked.order,
            )
        )
        for tracked in matches:
            self.logger.debug(
                "[eval] Rule matched",
                extra={
                    "command": command.name,
                    "rule": tracked.rule.location,
                    "action": tracked.rule.action.value,
                    "specificity": tracked.rule.specificity(),
                    "source": tracked.source,
                },
            )
        return matches[0]

    def evaluate_command(self, command: CommandInfo) -> Result:
        merged = self.merged
        self.logger.debug("[eval] Evaluating command", extra={"command": command.text})

        if command.is_dynamic:
            tracked = merged.dynamic_commands
            if tracked.value is Action.DENY:
                return Result(
                    Action.DENY,
                    message="Dynamic command names are not allowed",
                    command=command.name,
                    source=f"{tracked.source}: dynamic command",
                )
            if tracked.value is Action.ALLOW:
                return Result(Action.ALLOW, command=command.name)
            return Result(
                Action.ASK,
                command=command.name,
                source=f"{tracked.source}: dynamic command requires approval",
            )

        context = self._context_for(command.effective_cwd)
        resolved = self.resolver.resolve(command.name, context.cwd)
        template = self._template(command, resolved)
        default_message = merged.bash_default_message.value or ""

        if resolved.unresolved and merged.unresolved_commands.value is Action.DENY:
            return Result(
                Action.DENY,
                message=UNRESOLVED_MESSAGE,
                command=command.name,
                source=f"{merged.unresolved_commands.source}: unresolved command",
            )

        denied = self._first_list_match(merged.commands_deny, command.name, resolved.path, context)
        if denied is not None:
            return Result(
                Action.DENY,
                message=render_message(denied.message or default_message, template, self.logger),
                command=command.name,
                source=f"{denied.source}: bash.deny.commands",
            )

        winner = self.select_rule(command, resolved.path, context)
        if winner is not None:
            rule = winner.rule
            message = rule.message
            if not message and rule.action is Action.DENY:
                message = default_message
            result = Result(
                rule.action,
                message=render_message(message, template, self.logger),
                command=command.name,
                source=f"{winner.source}: rule matched ({rule.describe()})",
            )
            return self._apply_file_rules(result, command, context, rule)

        allowed = self._first_list_match(merged.commands_allow, command.name, resolved.path, context)
        if allowed is not None:
            result = Result(
                Action.ALLOW, command=command.name, source=f"{allowed.source}: bash.allow.commands"
            )
            return self._apply_file_rules(result, command, context)

        if resolved.unresolved and merged.unresolved_commands.value is Action.ASK:
            return Result(
                Action.ASK,
                message=UNRESOLVED_MESSAGE,
                command=command.name,
                source=f"{merged.unresolved_commands.source}: unresolved command requires approval",
            )

        tracked = merged.bash_default
        assert tracked.value is not None
        result = Result(
            tracked.value,
            message=render_message(default_message, template, self.logger),
            command=command.name,
            source=f"{tracked.source}: bash.default (command not in allow/deny lists)",
        )
        return self._apply_file_rules(result, command, context)

    def _apply_file_rules(
        self,
        result: Result,
        command: CommandInfo,
        context: MatchContext,
        rule: Optional[BashRule] = None,
    ) -> Result:
        """Tighten an allow using the file rules for the command's path arguments."""
        if result.action is not Action.ALLOW:
            return result
        respect = rule.respect_file_rules if rule is not None else None
        if respect is None:
            respect = bool(self.merged.respect_file_rules.value)
        if not respect:
            return result

        access_type = (rule.file_access_type if rule is not None else "") or infer_file_access_type(
            command.name
        )
        tool = access_type.lower()
        for arg in command.arguments:
            if not is_path_like(arg):
                continue
            path = resolve_path(arg, context.cwd, context.home)
            file_result = self.files.check_path(tool, path)
            if file_result.action.is_stricter_than(result.action):
                self.logger.debug(
                    "[eval] File rules tightened verdict",
                    extra={"command": command.name, "path": path, "action": file_result.action.value},
                )
                result = Result(
                    file_result.action,
                    message=file_result.message,
                    command=command.name,
                    source=f"{file_result.source} ({access_type} {path})",
                )
                if result.is_deny:
                    return result
        return result

    # ------------------------------------------------------------------
    # Redirects and heredocs
    # ------------------------------------------------------------------

    def evaluate_redirect(self, redirect: RedirectInfo) -> Result:
        merged = self.merged
        if redirect.is_fd:
            return Result(Action.ALLOW)

        if redirect.is_dynamic:
            tracked = merged.dynamic_commands
            if tracked.value is Action.DENY:
                return Result(
                    Action.DENY,
                    message="Dynamic redirect targets are not allowed",
                    source=f"{tracked.source}: dynamic redirect to {redirect.target}",
                )
            if tracked.value is Action.ALLOW:
                return Result(Action.ALLOW)
            return Result(Action.ASK, source=f"{tracked.source}: dynamic redirect requires approval")

        template = redirect_context(
            redirect.target, redirect.append, self.context.home, self.context.project_root
        )
        for tracked_rule in merged.active_redirect_rules:
            rule = tracked_rule.rule
            if not rule.match(redirect.target, redirect.append, self.context):
                continue
            message = rule.message
            if not message and rule.action is Action.DENY:
                message = merged.bash_default_message.value or ""
            details = [f"to={redirect.target}"]
            if rule.append is not None:
                details.append("append")
            if rule.paths:
                details.append("paths")
            result = Result(
                rule.action,
                message=render_message(message, template, self.logger),
                source=f"{tracked_rule.source}: redirect rule matched ({', '.join(details)})",
            )
            return self._apply_redirect_file_rules(result, redirect)

        tracked = merged.bash_default
        assert tracked.value is not None
        result = Result(
            tracked.value,
            source=f"{tracked.source}: bash.default (redirect to {redirect.target} not in rules)",
        )
        return self._apply_redirect_file_rules(result, redirect)

    def _apply_redirect_file_rules(self, result: Result, redirect: RedirectInfo) -> Result:
        if result.action is not Action.ALLOW or not self.merged.redirects_respect_file_rules.value:
            return result
        path = resolve_path(redirect.target, self.context.cwd, self.context.home)
        file_result = self.files.check_path("write", path)
        if file_result.action.is_stricter_than(result.action):
            return file_result
        return result

    def evaluate_heredoc(self, heredoc: HeredocInfo) -> Result:
        kind = "here-string" if heredoc.is_here_string else "heredoc"
        template = heredoc_context(
            heredoc.delimiter, heredoc.body, self.context.home, self.context.project_root
        )
        for tracked in self.merged.heredoc_rules:
            rule = tracked.rule
            if not rule.match(heredoc.body, self.context):
                continue
            message = rule.message
            if not message and rule.action is Action.DENY:
                message = self.merged.bash_default_message.value or ""
            source = f"{tracked.source}: {kind} rule matched"
            if rule.content is not None:
                source += " (content)"
            return Result(
                rule.action, message=render_message(message, template, self.logger), source=source
            )
        return Result(Action.ALLOW)
