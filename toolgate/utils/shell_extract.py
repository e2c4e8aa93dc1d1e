"""Extract commands, redirects and constructs from shell source.

The source is parsed with :mod:`bashlex`; :func:`extract` walks the tree once
and records what the evaluator needs. No policy decisions are made here.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

import bashlex
import bashlex.errors

from toolgate.core.errors import ShellParseError, UnsupportedShellSyntaxError
from toolgate.utils.log import NULL_LOGGER, LoggerLike


_STATIC_WORD_PARTS = {"tilde"}
_HEREDOC_TYPES = ("<<", "<<-")
_HERE_STRING_TYPE = "<<<"
_APPEND_TYPES = (">>", "&>>")
_DUP_TYPES = (">&", "<&")

# bashlex only accepts bare heredoc delimiters.
_QUOTED_HEREDOC_RE = re.compile(r"(?<!<)(<<-?)([ \t]*)(['\"])([^'\"\s]+)\3")
# Valid bash that bashlex reports as a syntax error.
_UNSUPPORTED_RE = re.compile(r"\[\[|\(\(|\bcase\b|\bselect\b|\bcoproc\b")


@dataclass(frozen=True)
class CommandInfo:
    name: str
    args: tuple[str, ...]
    is_dynamic: bool = False
    pipes_to: tuple[str, ...] = ()
    pipes_from: tuple[str, ...] = ()
    effective_cwd: str = ""

    @property
    def arguments(self) -> tuple[str, ...]:
        """Arguments without the command name."""
        return self.args[1:]

    @property
    def text(self) -> str:
        return " ".join(self.args)


@dataclass(frozen=True)
class RedirectInfo:
    target: str
    append: bool = False
    is_dynamic: bool = False
    is_fd: bool = False


@dataclass(frozen=True)
class HeredocInfo:
    body: str
    delimiter: str = ""
    is_here_string: bool = False


@dataclass
class Constructs:
    has_subshell: bool = False
    has_function_definition: bool = False
    has_background: bool = False
    has_heredoc: bool = False
    function_names: list[str] = field(default_factory=list)


@dataclass
class ExtractedInfo:
    commands: list[CommandInfo] = field(default_factory=list)
    redirects: list[RedirectInfo] = field(default_factory=list)
    heredocs: list[HeredocInfo] = field(default_factory=list)
    constructs: Constructs = field(default_factory=Constructs)

    @property
    def is_empty(self) -> bool:
        return not self.commands and not self.redirects and not self.heredocs


def _unquote_heredoc_delimiters(source: str) -> str:
    """Rewrite ``<<'EOF'`` as ``<< EOF `` without moving any other text."""

    def _replace(match: re.Match[str]) -> str:
        operator, space, _, delimiter = match.groups()
        return f"{operator}{space} {delimiter} "

    return _QUOTED_HEREDOC_RE.sub(_replace, source)


def parse_shell(source: str) -> list[Any]:
    """Parse ``source`` into bashlex nodes.

    Node positions refer to ``source`` as given.

    Raises:
        UnsupportedShellSyntaxError: for valid bash that bashlex cannot handle.
        ShellParseError: when the input is not valid shell.
    """
    if not source.strip():
        return []
    try:
        return list(bashlex.parse(_unquote_heredoc_delimiters(source)))
    except bashlex.errors.ParsingError as exc:
        text = str(exc)
        if "here-document" in text or _UNSUPPORTED_RE.search(source):
            raise UnsupportedShellSyntaxError(f"unsupported shell syntax: {text}") from exc
        raise ShellParseError(text) from exc
    except NotImplementedError as exc:
        raise UnsupportedShellSyntaxError(f"unsupported shell syntax: {exc}") from exc


def embedded_substitutions(text: str) -> list[str]:
    """Command text of every ``$(...)`` and backtick span in ``text``.

    Arithmetic ``$((...))`` is skipped. An unterminated span runs to the end.
    """
    found: list[str] = []
    index = 0
    while index < len(text):
        char = text[index]
        if char == "\\":
            index += 2
            continue
        if char == "`":
            end = text.find("`", index + 1)
            end = len(text) if end == -1 else end
            found.append(text[index + 1 : end])
            index = end + 1
            continue
        if text.startswith("$(", index):
            depth = 1
            cursor = index + 2
            while cursor < len(text) and depth:
                if text[cursor] == "(":
                    depth += 1
                elif text[cursor] == ")":
                    depth -= 1
                cursor += 1
            inner = text[index + 2 : cursor - 1 if depth == 0 else cursor]
            if not inner.startswith("("):
                found.append(inner)
            index = cursor
            continue
        index += 1
    return [span for span in found if span.strip()]


def extract(
    nodes: Iterable[Any],
    source: str,
    cwd: str,
    home: str = "",
    logger: LoggerLike = NULL_LOGGER,
) -> ExtractedInfo:
    """Walk parsed nodes and collect an :class:`ExtractedInfo`."""
    walker = _Walker(source, home, logger)
    state = cwd
    for node in nodes:
        state = walker.visit(node, state, (), ())
    logger.debug(
        "[extract] Extracted shell input",
        extra={
            "commands": [c.text for c in walker.info.commands],
            "redirects": len(walker.info.redirects),
            "heredocs": len(walker.info.heredocs),
        },
    )
    return walker.info


def extract_source(
    source: str, cwd: str, home: str = "", logger: LoggerLike = NULL_LOGGER
) -> ExtractedInfo:
    return extract(parse_shell(source), source, cwd, home, logger)


def resolve_cd_target(args: Sequence[str], cwd: str, home: str) -> str:
    """Directory a ``cd`` moves to, or ``""`` when it cannot be known."""
    if len(args) <= 1:
        return home
    target = args[1]
    if target.startswith("$") or target == "-":
        return ""
    if target == "~":
        return home
    if target.startswith("~/"):
        return os.path.join(home, target[2:]) if home else ""
    if os.path.isabs(target):
        return os.path.normpath(target)
    if not cwd:
        return ""
    return os.path.normpath(os.path.join(cwd, target))


def _is_dynamic_word(word: Any) -> bool:
    return any(part.kind not in _STATIC_WORD_PARTS for part in getattr(word, "parts", []) or [])


def _first_word(node: Any) -> Optional[Any]:
    for part in node.parts:
        if part.kind == "word":
            return part
    return None


def _command_names(node: Any) -> list[str]:
    """Names of the commands an element of a pipeline runs."""
    kind = node.kind
    if kind == "command":
        word = _first_word(node)
        return [word.word] if word is not None else []
    names: list[str] = []
    if kind == "compound":
        children = node.list
    elif kind in ("pipeline", "list", "if", "for", "while", "until"):
        children = node.parts
    else:
        return names
    for child in children:
        names.extend(_command_names(child))
    return names


class _Walker:
    def __init__(self, source: str, home: str, logger: LoggerLike) -> None:
        self.source = source
        self.home = home
        self.logger = logger
        self.info = ExtractedInfo()

    # ``cwd`` is threaded through and returned so ``cd`` affects later siblings.
    def visit(
        self, node: Any, cwd: str, pipes_to: tuple[str, ...], pipes_from: tuple[str, ...]
    ) -> str:
        kind = node.kind
        if kind == "command":
            return self._visit_command(node, cwd, pipes_to, pipes_from)
        if kind == "list":
            return self._visit_list(node, cwd, pipes_to, pipes_from)
        if kind == "pipeline":
            self._visit_pipeline(node, cwd, pipes_to, pipes_from)
            return cwd
        if kind == "compound":
            return self._visit_compound(node, cwd, pipes_to, pipes_from)
        if kind == "function":
            self.info.constructs.has_function_definition = True
            self.info.constructs.function_names.append(node.name.word)
            self.visit(node.body, cwd, (), ())
            return cwd
        if kind in ("if", "for", "while", "until"):
            for part in node.parts:
                if part.kind == "word":
                    self._visit_word_parts(part, cwd)
                elif part.kind not in ("reservedword", "operator", "pipe"):
                    self.visit(part, cwd, pipes_to, pipes_from)
            return cwd
        if kind == "word":
            self._visit_word_parts(node, cwd)
        elif kind == "redirect":
            self._visit_redirect(node, cwd)
        return cwd

    def _visit_list(
        self, node: Any, cwd: str, pipes_to: tuple[str, ...], pipes_from: tuple[str, ...]
    ) -> str:
        parts = node.parts
        for index, part in enumerate(parts):
            if part.kind == "operator":
                if part.op == "&":
                    self.info.constructs.has_background = True
                continue
            before = parts[index - 1].op if index > 0 and parts[index - 1].kind == "operator" else ""
            after = (
                parts[index + 1].op
                if index + 1 < len(parts) and parts[index + 1].kind == "operator"
                else ""
            )
            updated = self.visit(part, cwd, pipes_to, pipes_from)
            # Directory changes do not survive ``||`` branches or background jobs.
            if before != "||" and after not in ("||", "&"):
                cwd = updated
        return cwd

    def _visit_pipeline(
        self, node: Any, cwd: str, pipes_to: tuple[str, ...], pipes_from: tuple[str, ...]
    ) -> None:
        elements = [part for part in node.parts if part.kind not in ("pipe", "reservedword")]
        upstream: list[str] = list(pipes_from)
        for index, element in enumerate(elements):
            if index + 1 < len(elements):
                downstream = tuple(_command_names(elements[index + 1]))
            else:
                downstream = pipes_to
            self.visit(element, cwd, downstream, tuple(upstream))
            upstream.extend(_command_names(element))

    def _visit_compound(
        self, node: Any, cwd: str, pipes_to: tuple[str, ...], pipes_from: tuple[str, ...]
    ) -> str:
        children = list(node.list)
        is_subshell = bool(children) and children[0].kind == "reservedword" and children[0].word == "("
        if is_subshell:
            self.info.constructs.has_subshell = True
        inner = cwd
        for child in children:
            if child.kind == "reservedword":
                continue
            inner = self.visit(child, inner, pipes_to, pipes_from)
        for redirect in getattr(node, "redirects", None) or []:
            self._visit_redirect(redirect, cwd)
        return cwd if is_subshell else inner

    def _visit_command(
        self, node: Any, cwd: str, pipes_to: tuple[str, ...], pipes_from: tuple[str, ...]
    ) -> str:
        words = [part for part in node.parts if part.kind == "word"]
        command: Optional[CommandInfo] = None
        if words:
            args = tuple(word.word for word in words)
            command = CommandInfo(
                name=args[0],
                args=args,
                is_dynamic=_is_dynamic_word(words[0]),
                pipes_to=pipes_to,
                pipes_from=pipes_from,
                effective_cwd=cwd,
            )
            self.info.commands.append(command)

        # Substitutions are recorded after the command that contains them.
        for part in node.parts:
            if part.kind in ("word", "assignment"):
                self._visit_word_parts(part, cwd)
            elif part.kind == "redirect":
                self._visit_redirect(part, cwd)
        if command is None:
            return cwd

        if command.name == "cd" and not command.is_dynamic:
            new_cwd = resolve_cd_target(command.args, cwd, self.home)
            self.logger.debug(
                "[extract] Tracked directory change",
                extra={"from": cwd, "to": new_cwd or "<unknown>"},
            )
            return new_cwd
        return cwd

    def _visit_word_parts(self, word: Any, cwd: str) -> None:
        for part in getattr(word, "parts", None) or []:
            if part.kind in ("commandsubstitution", "processsubstitution"):
                self.visit(part.command, cwd, (), ())
            elif part.kind == "parameter":
                # bashlex keeps ``${x:-$(cmd)}`` as opaque parameter text.
                self._visit_embedded(getattr(part, "value", ""), cwd)
            else:
                self._visit_word_parts(part, cwd)

    def _visit_embedded(self, text: str, cwd: str) -> None:
        """Record commands hidden in text bashlex does not parse further."""
        for inner in embedded_substitutions(text):
            try:
                nodes = parse_shell(inner)
            except ShellParseError as exc:
                self.logger.debug(
                    "[extract] Unparsed substitution recorded as dynamic",
                    extra={"substitution": inner, "error": exc.message},
                )
                self.info.commands.append(
                    CommandInfo(name=inner, args=(inner,), is_dynamic=True, effective_cwd=cwd)
                )
                continue
            nested = _Walker(inner, self.home, self.logger)
            nested.info = self.info
            for node in nodes:
                nested.visit(node, cwd, (), ())

    def _visit_redirect(self, node: Any, cwd: str) -> None:
        operator = node.type
        output = node.output

        if operator in _HEREDOC_TYPES:
            self.info.constructs.has_heredoc = True
            delimiter = output.word if hasattr(output, "word") else str(output)
            heredoc = getattr(node, "heredoc", None)
            body = _heredoc_body(getattr(heredoc, "value", ""), delimiter)
            self.info.heredocs.append(HeredocInfo(body=body, delimiter=delimiter))
            # An unquoted delimiter lets the shell run substitutions in the body.
            if not self._is_quoted_delimiter(output, delimiter):
                self._visit_embedded(body, cwd)
            return

        if operator == _HERE_STRING_TYPE:
            self.info.constructs.has_heredoc = True
            self._visit_word_parts(output, cwd)
            self.info.heredocs.append(HeredocInfo(body=output.word, is_here_string=True))
            return

        if isinstance(output, int):
            self.info.redirects.append(RedirectInfo(target=str(output), is_fd=True))
            return

        self._visit_word_parts(output, cwd)
        target = output.word
        is_fd = operator in _DUP_TYPES and (target.isdigit() or target == "-")
        self.info.redirects.append(
            RedirectInfo(
                target=target,
                append=operator in _APPEND_TYPES,
                is_dynamic=_is_dynamic_word(output),
                is_fd=is_fd,
            )
        )

    def _is_quoted_delimiter(self, output: Any, delimiter: str) -> bool:
        if not hasattr(output, "pos"):
            return False
        start, end = output.pos
        if start > 0 and self.source[start - 1] in "'\"":
            return True
        return self.source[start:end] != delimiter


def _heredoc_body(value: str, delimiter: str) -> str:
    lines = value.split("\n")
    while lines and lines[-1].strip() in ("", delimiter):
        last = lines.pop()
        if last.strip() == delimiter:
            break
    return "\n".join(lines)
