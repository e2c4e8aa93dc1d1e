"""Pattern compilation and matching.

A pattern string is classified by prefix:

- ``re:<regex>``  regular expression, searched anywhere in the value
- ``glob:<glob>`` shell glob, ``*`` also matches ``/``
- ``path:<glob>`` path glob, ``**`` crosses directories, ``*`` does not
- ``flags:<chars>`` / ``flags[<delim>]:<chars>`` short or long option clusters
- ``ref:<section.path>`` the patterns of another config list, such as
  ``ref:read.deny.paths``, ``ref:bash.allow.commands`` or ``ref:aliases.NAME``
- no prefix: a glob when it contains ``*``, ``?`` or ``[``, else a literal

Explicit prefixes may be negated with a leading ``!`` (``!re:^-``). ``ref:`` may not.

``alias:`` references are expanded before compilation and are rejected here.
"""

from __future__ import annotations

import fnmatch
import re
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Iterable, Optional, Pattern as RegexPattern, Sequence

from toolgate.core.errors import InvalidPatternError
from toolgate.utils.path_utils import MatchContext, has_path_variables, is_path_like, resolve_path


_WILDCARD_CHARS = {"*", "?", "["}
_FLAG_CHARS_RE = re.compile(r"^[A-Za-z0-9]+$")

RESERVED_PREFIXES = ("re:", "glob:", "path:", "alias:", "ref:", "flags:", "flags[")


class PatternKind(str, Enum):
    LITERAL = "literal"
    GLOB = "glob"
    REGEX = "regex"
    PATH = "path"
    FLAGS = "flags"
    REF = "ref"


@dataclass(frozen=True)
class Pattern:
    """A compiled pattern."""

    kind: PatternKind
    raw: str
    body: str
    negated: bool = False
    flag_delimiter: str = ""
    _regex: Optional[RegexPattern[str]] = field(default=None, compare=False, repr=False)

    @property
    def is_literal(self) -> bool:
        return self.kind is PatternKind.LITERAL

    def matches(self, value: str, context: Optional[MatchContext] = None) -> bool:
        matched = self._match(value, context)
        return not matched if self.negated else matched

    def matches_any(self, values: Iterable[str], context: Optional[MatchContext] = None) -> bool:
        return any(self.matches(value, context) for value in values)

    def _match(self, value: str, context: Optional[MatchContext]) -> bool:
        if self.kind is PatternKind.LITERAL:
            return value == self.body
        if self.kind is PatternKind.REGEX:
            assert self._regex is not None
            return self._regex.search(value) is not None
        if self.kind is PatternKind.GLOB:
            return fnmatch.fnmatchcase(value, self.body)
        if self.kind is PatternKind.FLAGS:
            return _match_flags(value, self.flag_delimiter, self.body)
        if self.kind is PatternKind.REF:
            return _match_ref(self.body, value, context)
        return _match_path(self.body, value, context)


def is_wildcard_pattern(value: str) -> bool:
    return any(ch in value for ch in _WILDCARD_CHARS)


def compile_pattern(raw: str, location: str = "") -> Pattern:
    """Compile ``raw`` into a :class:`Pattern`.

    Raises:
        InvalidPatternError: for bad regexes, malformed flag patterns, empty
            or negated refs and alias references that were not expanded.
    """
    if not isinstance(raw, str):
        raise InvalidPatternError("pattern must be a string", location=location, value=raw)

    text = raw
    negated = False
    if text.startswith("!") and text[1:].startswith(("re:", "glob:", "path:", "flags:", "flags[")):
        negated = True
        text = text[1:]

    if text.startswith("alias:"):
        raise InvalidPatternError("unresolved alias reference", location=location, value=raw)

    if text.startswith("!ref:"):
        raise InvalidPatternError("ref patterns cannot be negated", location=location, value=raw)
    if text.startswith("ref:"):
        if not text[4:]:
            raise InvalidPatternError("empty ref path", location=location, value=raw)
        return Pattern(PatternKind.REF, raw, text[4:])

    if text.startswith("re:"):
        body = text[3:]
        try:
            regex = re.compile(body)
        except re.error as exc:
            raise InvalidPatternError(
                "invalid pattern", location=location, value=raw, cause=exc
            ) from exc
        return Pattern(PatternKind.REGEX, raw, body, negated, _regex=regex)

    if text.startswith("glob:"):
        return Pattern(PatternKind.GLOB, raw, text[5:], negated)

    if text.startswith("path:"):
        body = text[5:]
        if not has_path_variables(body):
            try:
                _path_regex(body)
            except re.error as exc:
                raise InvalidPatternError(
                    "invalid pattern", location=location, value=raw, cause=exc
                ) from exc
        return Pattern(PatternKind.PATH, raw, body, negated)

    if text.startswith(("flags:", "flags[")):
        delimiter, chars = _parse_flags(text, raw, location)
        return Pattern(PatternKind.FLAGS, raw, chars, negated, flag_delimiter=delimiter)

    if is_wildcard_pattern(text):
        return Pattern(PatternKind.GLOB, raw, text)
    return Pattern(PatternKind.LITERAL, raw, text)


def compile_patterns(raws: Sequence[str], location: str = "") -> tuple[Pattern, ...]:
    return tuple(
        compile_pattern(raw, f"{location}[{index}]" if location else "")
        for index, raw in enumerate(raws)
    )


@dataclass(frozen=True)
class FlexiblePattern:
    """Ordered set of patterns that matches when any member does."""

    patterns: tuple[Pattern, ...] = ()

    @classmethod
    def build(cls, raw: "str | Sequence[str]", location: str = "") -> "FlexiblePattern":
        if isinstance(raw, str):
            return cls((compile_pattern(raw, location),))
        return cls(compile_patterns(list(raw), location))

    @property
    def raws(self) -> tuple[str, ...]:
        return tuple(p.raw for p in self.patterns)

    def matches(self, value: str, context: Optional[MatchContext] = None) -> bool:
        return any(p.matches(value, context) for p in self.patterns)

    def matches_any(self, values: Iterable[str], context: Optional[MatchContext] = None) -> bool:
        values = list(values)
        return any(p.matches_any(values, context) for p in self.patterns)

    def __len__(self) -> int:
        return len(self.patterns)

    def __bool__(self) -> bool:
        return bool(self.patterns)


def _parse_flags(text: str, raw: str, location: str) -> tuple[str, str]:
    if text.startswith("flags["):
        close = text.find("]:")
        if close == -1:
            raise InvalidPatternError(
                "invalid flag pattern: missing ']:'", location=location, value=raw
            )
        delimiter = text[6:close]
        chars = text[close + 2 :]
        if not delimiter:
            raise InvalidPatternError(
                "flag delimiter cannot be empty", location=location, value=raw
            )
    else:
        delimiter = "-"
        chars = text[len("flags:") :]
    if not chars:
        raise InvalidPatternError(
            "flag pattern requires at least one character", location=location, value=raw
        )
    if not _FLAG_CHARS_RE.match(chars):
        raise InvalidPatternError(
            "flag chars must be alphanumeric", location=location, value=raw
        )
    return delimiter, chars


def _match_flags(value: str, delimiter: str, chars: str) -> bool:
    if not value.startswith(delimiter):
        return False
    if delimiter == "-" and value.startswith("--"):
        return False
    rest = value[len(delimiter) :]
    if not rest:
        return False
    return all(ch in rest for ch in chars)


@lru_cache(maxsize=512)
def _compile_referenced(raw: str) -> Pattern:
    return compile_pattern(raw)


def _match_ref(ref_path: str, value: str, context: Optional[MatchContext]) -> bool:
    """Match ``value`` against any pattern the ref names.

    Nested refs and patterns that fail to compile never match.
    """
    if context is None or context.refs is None:
        return False
    for raw in context.refs(ref_path):
        try:
            pattern = _compile_referenced(raw)
        except InvalidPatternError:
            continue
        if pattern.kind is PatternKind.REF:
            continue
        if pattern.matches(value, context):
            return True
    return False


def _match_path(body: str, value: str, context: Optional[MatchContext]) -> bool:
    if context is not None and has_path_variables(body) and is_path_like(value):
        expanded = context.expand(body)
        resolved = resolve_path(value, context.cwd, context.home)
        return _path_regex(expanded).fullmatch(resolved) is not None
    return _path_regex(body).fullmatch(value) is not None


@lru_cache(maxsize=512)
def _path_regex(pattern: str) -> RegexPattern[str]:
    return re.compile(_translate_path_glob(pattern), re.DOTALL)


def _translate_path_glob(pattern: str) -> str:
    """Translate a path glob into a regular expression body.

    ``**`` as a whole segment matches zero or more directories, a trailing
    ``/**`` also matches the directory itself, ``*`` and ``?`` stay within
    one segment, and ``{a,b}`` is alternation.
    """
    out: list[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        ch = pattern[i]
        if ch == "*":
            j = i
            while j < n and pattern[j] == "*":
                j += 1
            if j - i >= 2:
                starts_segment = i == 0 or pattern[i - 1] == "/"
                if starts_segment and j < n and pattern[j] == "/":
                    out.append("(?:.*/)?")
                    i = j + 1
                    continue
                if starts_segment and j == n and out and out[-1] == "/":
                    out.pop()
                    out.append("(?:/.*)?")
                    i = j
                    continue
                out.append(".*")
            else:
                out.append("[^/]*")
            i = j
        elif ch == "?":
            out.append("[^/]")
            i += 1
        elif ch == "[":
            end = _class_end(pattern, i)
            if end == -1:
                out.append(re.escape(ch))
                i += 1
                continue
            inner = pattern[i + 1 : end]
            if inner[:1] in ("!", "^"):
                inner = "^" + inner[1:]
            out.append("[" + inner.replace("\\", "\\\\") + "]")
            i = end + 1
        elif ch == "{":
            end = _brace_end(pattern, i)
            if end == -1:
                out.append(re.escape(ch))
                i += 1
                continue
            options = _split_alternatives(pattern[i + 1 : end])
            out.append("(?:" + "|".join(_translate_path_glob(opt) for opt in options) + ")")
            i = end + 1
        elif ch == "\\" and i + 1 < n:
            out.append(re.escape(pattern[i + 1]))
            i += 2
        else:
            out.append(re.escape(ch))
            i += 1
    return "".join(out)


def _class_end(pattern: str, start: int) -> int:
    j = start + 1
    if j < len(pattern) and pattern[j] in ("!", "^"):
        j += 1
    if j < len(pattern) and pattern[j] == "]":
        j += 1
    while j < len(pattern) and pattern[j] != "]":
        j += 1
    return j if j < len(pattern) else -1


def _brace_end(pattern: str, start: int) -> int:
    depth = 0
    for j in range(start, len(pattern)):
        if pattern[j] == "{":
            depth += 1
        elif pattern[j] == "}":
            depth -= 1
            if depth == 0:
                return j
    return -1


def _split_alternatives(text: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for ch in text:
        if ch == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        current.append(ch)
    parts.append("".join(current))
    return parts
