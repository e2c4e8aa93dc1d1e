"""Path and URL rules for the file, search and WebFetch tools."""

from typing import Callable, Optional

from toolgate.core.config_merge import MergedConfig, TrackedPattern
from toolgate.core.errors import SafeBrowsingError
from toolgate.core.safebrowsing import SafeBrowsingVerdict, check_url
from toolgate.utils.log import NULL_LOGGER, LoggerLike
from toolgate.utils.path_utils import MatchContext, resolve_path
from toolgate.utils.permissions.decision import Action, Result
from toolgate.utils.templates import file_context, render_message


DEFAULT_FILE_DENY_MESSAGE = "File access denied"

# Hook tool names to configuration sections.
TOOL_SECTIONS = {
    "Read": "read",
    "Write": "write",
    "Edit": "edit",
    "Glob": "glob",
    "Grep": "grep",
    "WebFetch": "webfetch",
}

SafeBrowsingChecker = Callable[[str, str], SafeBrowsingVerdict]


def _display_name(section: str) -> str:
    for tool, name in TOOL_SECTIONS.items():
        if name == section:
            return tool
    return section


class FileRuleEvaluator:
    """Evaluate path and URL lists for a merged configuration."""

    def __init__(
        self,
        merged: MergedConfig,
        context: MatchContext,
        *,
        safe_browsing: Optional[SafeBrowsingChecker] = None,
        logger: LoggerLike = NULL_LOGGER,
    ) -> None:
        self.merged = merged
        self.context = merged.match_context(context)
        self.logger = logger
        self._safe_browsing = safe_browsing or self._check_url

    def _check_url(self, url: str, api_key: str) -> SafeBrowsingVerdict:
        return check_url(url, api_key, logger=self.logger)

    def _first_match(
        self, entries: list[TrackedPattern], value: str
    ) -> Optional[TrackedPattern]:
        for entry in entries:
            if entry.pattern.matches(value, self.context):
                return entry
        return None

    def _render(self, message: str, tool: str, file_path: str) -> str:
        context = file_context(
            _display_name(tool), file_path, self.context.home, self.context.project_root
        )
        return render_message(message, context, self.logger)

    def check_path(self, tool: str, path: str) -> Result:
        """Evaluate ``path`` against ``tool``'s deny list, allow list and default.

        ``tool`` is a section name (``read``, ``write``, ``edit``, ``glob``,
        ``grep``). Relative paths resolve against the working directory.
        """
        section = self.merged.tool(tool)
        resolved = resolve_path(path, self.context.cwd, self.context.home) if path else self.context.cwd
        command = f"{_display_name(tool)} {resolved}"

        denied = self._first_match(section.deny, resolved)
        if denied is not None:
            message = denied.message or section.default_message.value or DEFAULT_FILE_DENY_MESSAGE
            self.logger.debug(
                "[files] Path denied",
                extra={"tool": tool, "path": resolved, "pattern": denied.pattern.raw},
            )
            return Result(
                Action.DENY,
                message=self._render(message, tool, resolved),
                command=command,
                source=f"{denied.source}: {tool}.deny.paths",
            )

        allowed = self._first_match(section.allow, resolved)
        if allowed is not None:
            self.logger.debug(
                "[files] Path allowed",
                extra={"tool": tool, "path": resolved, "pattern": allowed.pattern.raw},
            )
            return Result(
                Action.ALLOW, command=command, source=f"{allowed.source}: {tool}.allow.paths"
            )

        default = section.default
        assert default.value is not None
        message = section.default_message.value or ""
        if default.value is Action.DENY and not message:
            message = DEFAULT_FILE_DENY_MESSAGE
        return Result(
            default.value,
            message=self._render(message, tool, resolved),
            command=command,
            source=f"{default.source}: {tool}.default",
        )

    def check_search(self, tool: str, path: str) -> Result:
        """Evaluate a Glob/Grep search root.

        When the tool respects file rules the Read verdict for the same path
        is combined in; the stricter verdict wins.
        """
        result = self.check_path(tool, path)
        if result.is_deny or not self.merged.tool(tool).respect_file_rules.value:
            return result
        read_result = self.check_path("read", path)
        if read_result.action.is_stricter_than(result.action):
            return read_result
        return result

    def check_url(self, url: str) -> Result:
        """Evaluate a WebFetch URL: deny list, allow list, Safe Browsing, default."""
        section = self.merged.tool("webfetch")
        command = f"WebFetch {url}"

        denied = self._first_match(section.deny, url)
        if denied is not None:
            message = denied.message or section.default_message.value or "URL access denied"
            return Result(
                Action.DENY,
                message=message,
                command=command,
                source=f"{denied.source}: webfetch.deny.paths",
            )

        allowed = self._first_match(section.allow, url)
        if allowed is not None:
            return Result(
                Action.ALLOW, command=command, source=f"{allowed.source}: webfetch.allow.paths"
            )

        api_key = self.merged.safe_browsing_api_key
        if self.merged.safe_browsing_enabled.value and api_key.value:
            try:
                verdict = self._safe_browsing(url, api_key.value)
            except SafeBrowsingError as exc:
                self.logger.debug("[webfetch] Safe Browsing inconclusive", extra={"error": str(exc)})
                return Result(
                    Action.ASK,
                    message=f"Safe Browsing check failed: {exc.message}",
                    command=command,
                    source=f"{self.merged.safe_browsing_enabled.source}: webfetch.safe_browsing",
                )
            if not verdict.safe:
                return Result(
                    Action.DENY,
                    message=f"Safe Browsing: URL flagged as {verdict.threat_type}",
                    command=command,
                    source=f"{self.merged.safe_browsing_enabled.source}: webfetch.safe_browsing",
                )

        default = section.default
        assert default.value is not None
        return Result(
            default.value,
            message=section.default_message.value or "",
            command=command,
            source=f"{default.source}: webfetch.default",
        )
