"""Route hook tool calls to the right evaluator."""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from toolgate.core.config_merge import MergedConfig
from toolgate.core.errors import ShellParseError
from toolgate.core.evaluator import Evaluator
from toolgate.core.file_rules import TOOL_SECTIONS, FileRuleEvaluator, SafeBrowsingChecker
from toolgate.utils.log import NULL_LOGGER, LoggerLike
from toolgate.utils.path_utils import CommandResolver, MatchContext
from toolgate.utils.permissions.decision import Action, Result


FILE_TOOL_NAMES = ("Read", "Edit", "Write")
SEARCH_TOOL_NAMES = ("Glob", "Grep")


class ToolInput(BaseModel):
    """Tool arguments we look at; everything else is ignored."""

    command: str = ""  # Bash
    file_path: str = ""  # Read, Edit, Write
    url: str = ""  # WebFetch
    prompt: str = ""  # WebFetch
    path: str = ""  # Glob, Grep
    pattern: str = ""  # Glob, Grep

    model_config = ConfigDict(extra="ignore")


class HookInput(BaseModel):
    """PreToolUse hook payload."""

    session_id: str = ""
    tool_name: str = ""
    tool_input: ToolInput = Field(default_factory=ToolInput)
    hook_event_name: str = "PreToolUse"
    cwd: Optional[str] = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class PreToolUseHookOutput(BaseModel):
    """Hook-specific output for PreToolUse."""

    hook_event_name: Literal["PreToolUse"] = Field(default="PreToolUse", alias="hookEventName")
    permission_decision: str = Field(alias="permissionDecision")
    permission_decision_reason: Optional[str] = Field(
        default=None, alias="permissionDecisionReason"
    )

    model_config = ConfigDict(populate_by_name=True)


class HookOutput(BaseModel):
    hook_specific_output: PreToolUseHookOutput = Field(alias="hookSpecificOutput")

    model_config = ConfigDict(populate_by_name=True)


class ToolDispatcher:
    """Evaluate one hook tool call against a merged configuration."""

    def __init__(
        self,
        merged: MergedConfig,
        *,
        context: Optional[MatchContext] = None,
        resolver: Optional[CommandResolver] = None,
        safe_browsing: Optional[SafeBrowsingChecker] = None,
        logger: LoggerLike = NULL_LOGGER,
    ) -> None:
        self.merged = merged
        self.context = merged.match_context(context or MatchContext.current())
        self.logger = logger
        self.files = FileRuleEvaluator(
            merged, self.context, safe_browsing=safe_browsing, logger=logger
        )
        self.evaluator = Evaluator(
            merged, context=self.context, resolver=resolver, files=self.files, logger=logger
        )

    def dispatch(self, hook_input: HookInput) -> Result:
        tool = hook_input.tool_name
        self.logger.debug("[dispatch] Dispatching tool call", extra={"tool": tool or "Bash"})
        if tool in FILE_TOOL_NAMES:
            return self._evaluate_file(hook_input)
        if tool in SEARCH_TOOL_NAMES:
            return self._evaluate_search(hook_input)
        if tool == "WebFetch":
            return self._evaluate_webfetch(hook_input)
        if tool in ("Bash", ""):
            return self._evaluate_bash(hook_input)
        return Result(Action.ASK, source=f"unknown tool: {tool}")

    def _evaluate_file(self, hook_input: HookInput) -> Result:
        file_path = hook_input.tool_input.file_path
        if not file_path:
            return Result(Action.ASK, source="no file path")
        return self.files.check_path(TOOL_SECTIONS[hook_input.tool_name], file_path)

    def _evaluate_search(self, hook_input: HookInput) -> Result:
        # An empty search path means the working directory.
        return self.files.check_search(
            TOOL_SECTIONS[hook_input.tool_name], hook_input.tool_input.path
        )

    def _evaluate_webfetch(self, hook_input: HookInput) -> Result:
        url = hook_input.tool_input.url
        if not url:
            return Result(Action.ASK, source="no URL")
        return self.files.check_url(url)

    def _evaluate_bash(self, hook_input: HookInput) -> Result:
        command = hook_input.tool_input.command
        if not command:
            return Result(Action.ASK, source="no command")
        try:
            return self.evaluator.evaluate_source(command)
        except ShellParseError as exc:
            self.logger.debug("[dispatch] Shell parse error", extra={"error": exc.message})
            return Result(Action.ASK, source=f"parse error: {exc.message}")
