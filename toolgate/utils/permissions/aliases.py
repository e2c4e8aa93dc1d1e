"""Alias expansion for pattern lists.

An alias maps a name to one or more patterns::

    [aliases]
    secrets = ["path:$HOME/.ssh/**", "path:$HOME/.aws/**"]

and is referenced as ``alias:secrets`` anywhere a pattern is accepted.
Expansion is one level deep: an alias may not reference another alias.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from toolgate.core.errors import ConfigValidationError


ALIAS_PREFIX = "alias:"
_RESERVED_NAME_PREFIXES = ("re:", "glob:", "path:", "alias:", "flags:", "flags[")


@dataclass(frozen=True)
class Alias:
    name: str
    patterns: tuple[str, ...]


def parse_aliases(raw: Any) -> dict[str, Alias]:
    """Build and validate the ``[aliases]`` table."""
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigValidationError("aliases must be a table", location="aliases")
    aliases: dict[str, Alias] = {}
    for name, value in raw.items():
        if isinstance(value, str):
            patterns: tuple[str, ...] = (value,)
        elif isinstance(value, list) and all(isinstance(item, str) for item in value):
            patterns = tuple(value)
        else:
            raise ConfigValidationError(
                "alias must be a string or a list of strings",
                location=f"aliases.{name}",
                value=value,
            )
        aliases[name] = Alias(name, patterns)
    validate_aliases(aliases)
    return aliases


def validate_aliases(aliases: Mapping[str, Alias]) -> None:
    for name, alias in aliases.items():
        if name.startswith(_RESERVED_NAME_PREFIXES):
            raise ConfigValidationError(
                "alias name cannot start with a reserved prefix (re:, glob:, path:, flags:, alias:)",
                location=f"aliases.{name}",
                value=name,
            )
        for index, pattern in enumerate(alias.patterns):
            if pattern.startswith(ALIAS_PREFIX):
                raise ConfigValidationError(
                    "aliases cannot reference other aliases",
                    location=f"aliases.{name}[{index}]",
                    value=pattern,
                )


def expand(pattern: str, aliases: Mapping[str, Alias], location: str = "") -> list[str]:
    """Expand a single pattern; non-alias patterns are returned unchanged."""
    if not pattern.startswith(ALIAS_PREFIX):
        return [pattern]
    name = pattern[len(ALIAS_PREFIX) :]
    alias = aliases.get(name)
    if alias is None:
        raise ConfigValidationError(f"undefined alias: {name}", location=location, value=pattern)
    return list(alias.patterns)


def expand_all(
    patterns: Iterable[str], aliases: Mapping[str, Alias], location: str = ""
) -> list[str]:
    expanded: list[str] = []
    for index, pattern in enumerate(patterns):
        item_location = f"{location}[{index}]" if location else ""
        expanded.extend(expand(pattern, aliases, item_location))
    return expanded
