"""Placeholder rendering for rule messages.

Messages may reference the matched input::

    message = "{{.Command}} may not write to {{.TargetFileName}}"
    message = "{{.Tool}} of {{.FileName}} needs review (first arg: {{.Arg 0}})"

A message that references an unknown field is returned unchanged.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, fields
from typing import Sequence

from toolgate.utils.log import NULL_LOGGER, LoggerLike


_PLACEHOLDER_RE = re.compile(r"\{\{\s*\.(\w+)(?:\s+(\d+))?\s*\}\}")

BODY_PREVIEW_LIMIT = 200


@dataclass(frozen=True)
class TemplateContext:
    command: str = ""
    args: tuple[str, ...] = ()
    resolved_path: str = ""
    cwd: str = ""
    pipes_to: tuple[str, ...] = ()
    pipes_from: tuple[str, ...] = ()
    target: str = ""
    append: bool = False
    delimiter: str = ""
    body: str = ""
    file_path: str = ""
    tool: str = ""
    home: str = ""
    project_root: str = ""

    @property
    def args_str(self) -> str:
        return " ".join(self.args)

    @property
    def file_name(self) -> str:
        return os.path.basename(self.file_path) if self.file_path else ""

    @property
    def file_dir(self) -> str:
        return os.path.dirname(self.file_path) if self.file_path else ""

    @property
    def target_file_name(self) -> str:
        return os.path.basename(self.target) if self.target else ""

    @property
    def target_dir(self) -> str:
        return os.path.dirname(self.target) if self.target else ""

    def arg(self, index: int) -> str:
        """Argument ``index`` counted after the command name."""
        if index + 1 < len(self.args):
            return self.args[index + 1]
        return ""


_FIELD_NAMES = {f.name for f in fields(TemplateContext)}
_PROPERTY_NAMES = {"args_str", "file_name", "file_dir", "target_file_name", "target_dir"}


def _snake_case(name: str) -> str:
    return re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", name).lower()


def _format_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (tuple, list)):
        return "[" + " ".join(str(item) for item in value) + "]"
    return str(value)


def render_message(
    message: str, context: TemplateContext, logger: LoggerLike = NULL_LOGGER
) -> str:
    """Substitute ``{{.Field}}`` placeholders in ``message``."""
    if not message or "{{" not in message:
        return message

    unknown: list[str] = []

    def _replace(match: "re.Match[str]") -> str:
        name = _snake_case(match.group(1))
        index = match.group(2)
        if name == "arg" and index is not None:
            return context.arg(int(index))
        if index is None and (name in _FIELD_NAMES or name in _PROPERTY_NAMES):
            return _format_value(getattr(context, name))
        unknown.append(match.group(0))
        return match.group(0)

    rendered = _PLACEHOLDER_RE.sub(_replace, message)
    if unknown:
        logger.debug(
            "[template] Could not render message",
            extra={"template": message, "unknown": unknown},
        )
        return message
    return rendered


def truncate_body(body: str, limit: int = BODY_PREVIEW_LIMIT) -> str:
    if len(body) <= limit:
        return body
    return body[:limit] + "..."


def command_context(
    name: str,
    args: Sequence[str],
    cwd: str = "",
    resolved_path: str = "",
    pipes_to: Sequence[str] = (),
    pipes_from: Sequence[str] = (),
    home: str = "",
    project_root: str = "",
) -> TemplateContext:
    return TemplateContext(
        command=name,
        args=tuple(args),
        resolved_path=resolved_path,
        cwd=cwd,
        pipes_to=tuple(pipes_to),
        pipes_from=tuple(pipes_from),
        home=home,
        project_root=project_root,
    )


def file_context(
    tool: str, file_path: str, home: str = "", project_root: str = ""
) -> TemplateContext:
    return TemplateContext(file_path=file_path, tool=tool, home=home, project_root=project_root)


def redirect_context(target: str, append: bool, home: str = "", project_root: str = "") -> TemplateContext:
    return TemplateContext(target=target, append=append, home=home, project_root=project_root)


def heredoc_context(
    delimiter: str, body: str, home: str = "", project_root: str = ""
) -> TemplateContext:
    return TemplateContext(
        delimiter=delimiter, body=truncate_body(body), home=home, project_root=project_root
    )
