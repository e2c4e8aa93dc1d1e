"""Filesystem path helpers."""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence


PATH_VARIABLES = ("$PROJECT_ROOT", "$HOME")

# Shell builtins never resolve to an executable on disk.
SHELL_BUILTINS = frozenset(
    {
        ".",
        ":",
        "[",
        "alias",
        "bg",
        "bind",
        "break",
        "builtin",
        "caller",
        "cd",
        "command",
        "compgen",
        "complete",
        "continue",
        "declare",
        "dirs",
        "disown",
        "echo",
        "enable",
        "eval",
        "exec",
        "exit",
        "export",
        "false",
        "fc",
        "fg",
        "getopts",
        "hash",
        "help",
        "history",
        "jobs",
        "kill",
        "let",
        "local",
        "logout",
        "popd",
        "printf",
        "pushd",
        "pwd",
        "read",
        "readonly",
        "return",
        "set",
        "shift",
        "shopt",
        "source",
        "test",
        "times",
        "trap",
        "true",
        "type",
        "typeset",
        "ulimit",
        "umask",
        "unalias",
        "unset",
        "wait",
    }
)


@dataclass(frozen=True)
class MatchContext:
    """Values used to expand path variables and resolve relative paths.

    ``refs`` looks up the pattern strings a ``ref:`` pattern names.
    """

    cwd: str
    home: str = ""
    project_root: str = ""
    refs: Optional[Callable[[str], Sequence[str]]] = field(default=None, compare=False, repr=False)

    @classmethod
    def current(cls, project_root: Optional[str] = None) -> "MatchContext":
        try:
            cwd = os.getcwd()
        except OSError:
            cwd = "/"
        home = os.environ.get("HOME", "")
        return cls(cwd=cwd, home=home, project_root=project_root or "")

    def expand(self, pattern: str) -> str:
        """Substitute ``$PROJECT_ROOT`` and ``$HOME`` in a pattern."""
        expanded = pattern.replace("$PROJECT_ROOT", self.project_root or self.cwd)
        return expanded.replace("$HOME", self.home)


def has_path_variables(pattern: str) -> bool:
    return any(var in pattern for var in PATH_VARIABLES)


def is_path_like(value: str) -> bool:
    """Return True for arguments that name a filesystem location."""
    if not value or "://" in value:
        return False
    if value in (".", "..", "~"):
        return True
    return value.startswith(("/", "./", "../", "~/"))


def resolve_path(value: str, cwd: str, home: str = "") -> str:
    """Return an absolute, normalized form of ``value``.

    ``~`` is expanded with ``home``; relative paths are joined to ``cwd``.
    Symlinks are not followed.
    """
    if value == "~":
        value = home or "~"
    elif value.startswith("~/") and home:
        value = os.path.join(home, value[2:])
    if not os.path.isabs(value):
        value = os.path.join(cwd, value)
    return os.path.normpath(value)


@dataclass(frozen=True)
class ResolvedCommand:
    """Outcome of looking up a command name."""

    path: str = ""
    is_builtin: bool = False

    @property
    def unresolved(self) -> bool:
        return not self.is_builtin and not self.path


class CommandResolver:
    """Resolve command names to executables.

    Searches ``allowed_paths`` when configured, otherwise ``$PATH``.
    """

    def __init__(self, allowed_paths: Optional[Iterable[str]] = None) -> None:
        self.allowed_paths = [p for p in (allowed_paths or []) if p]

    def _search_path(self) -> Optional[str]:
        if self.allowed_paths:
            return os.pathsep.join(self.allowed_paths)
        return None

    def resolve(self, name: str, cwd: str = "") -> ResolvedCommand:
        if name in SHELL_BUILTINS:
            return ResolvedCommand(is_builtin=True)
        if "/" in name:
            candidate = Path(resolve_path(name, cwd or os.getcwd()))
            if candidate.is_file() and os.access(candidate, os.X_OK):
                return ResolvedCommand(path=str(candidate))
            return ResolvedCommand()
        found = shutil.which(name, path=self._search_path())
        if found:
            return ResolvedCommand(path=os.path.abspath(found))
        return ResolvedCommand()
