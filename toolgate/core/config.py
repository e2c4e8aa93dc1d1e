"""Configuration documents for toolgate.

A configuration file is TOML with a ``version = "2.0"`` marker and one section
per tool::

    version = "2.0"

    [bash]
    default = "ask"

    [bash.deny]
    commands = ["sudo", "su"]

    [[bash.allow.git]]
    args.position = { "0" = ["status", "diff", "log"] }

    [read.deny]
    paths = ["path:$HOME/.ssh/**"]

Each file is validated eagerly: actions and modes are checked, every alias
is expanded with the file's own ``[aliases]`` table and every pattern is
compiled. A file that passes :func:`parse_config` cannot fail later.
"""

import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from toolgate.core.errors import (
    ConfigNotFoundError,
    ConfigParseError,
    ConfigReadError,
    ConfigValidationError,
    LegacyConfigError,
)
from toolgate.utils.log import NULL_LOGGER, LoggerLike
from toolgate.utils.permissions.aliases import Alias, expand_all, parse_aliases
from toolgate.utils.permissions.decision import ACTION_ERROR_MESSAGE
from toolgate.utils.permissions.patterns import FlexiblePattern, compile_patterns
from toolgate.utils.permissions.rules import (
    BashRule,
    HeredocRule,
    RedirectRule,
    parse_bash_rules,
    parse_heredoc_rules,
    parse_redirect_rules,
)


CONFIG_VERSION_MAJOR = 2
CONFIG_VERSION_MINOR = 0
CONFIG_VERSION = f"{CONFIG_VERSION_MAJOR}.{CONFIG_VERSION_MINOR}"

VALID_ACTIONS = ("allow", "deny", "ask")
VALID_MODES = ("merge", "replace")
MODE_ERROR_MESSAGE = 'invalid mode (must be "merge" or "replace")'

# Top-level tables that only exist in the retired v1 schema.
LEGACY_MARKERS = ("policy", "commands", "rule", "redirect", "heredoc", "files", "constructs")

FILE_TOOLS = ("read", "write", "edit")
SEARCH_TOOLS = ("glob", "grep")
PATH_TOOLS = FILE_TOOLS + SEARCH_TOOLS + ("webfetch",)

SESSION_MAX_AGE_RE = re.compile(r"^(\d+)([dhms])$")

DEFAULTS_SOURCE = "(defaults)"


def _check_action(value: Optional[str]) -> Optional[str]:
    if value is None or value == "":
        return None
    if value not in VALID_ACTIONS:
        raise ValueError(ACTION_ERROR_MESSAGE)
    return value


def _check_mode(value: str) -> str:
    if value and value not in VALID_MODES:
        raise ValueError(MODE_ERROR_MESSAGE)
    return value


class _Section(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ConstructsSection(_Section):
    subshells: Optional[str] = None
    function_definitions: Optional[str] = None
    background: Optional[str] = None
    heredocs: Optional[str] = None

    @field_validator("subshells", "function_definitions", "background", "heredocs")
    @classmethod
    def _validate_action(cls, value: Optional[str]) -> Optional[str]:
        return _check_action(value)


class CommandListSection(_Section):
    """``[bash.allow]`` / ``[bash.deny]``; nested rule tables are parsed separately."""

    commands: list[str] = Field(default_factory=list)
    message: str = ""
    mode: str = ""

    @field_validator("mode")
    @classmethod
    def _validate_mode(cls, value: str) -> str:
        return _check_mode(value)


class RedirectsSection(_Section):
    respect_file_rules: Optional[bool] = None


class BashSection(_Section):
    default: Optional[str] = None
    default_message: str = ""
    dynamic_commands: Optional[str] = None
    unresolved_commands: Optional[str] = None
    respect_file_rules: Optional[bool] = None
    allowed_paths: list[str] = Field(default_factory=list)
    constructs: ConstructsSection = Field(default_factory=ConstructsSection)
    allow: CommandListSection = Field(default_factory=CommandListSection)
    deny: CommandListSection = Field(default_factory=CommandListSection)
    redirects: RedirectsSection = Field(default_factory=RedirectsSection)

    @field_validator("default", "dynamic_commands", "unresolved_commands")
    @classmethod
    def _validate_action(cls, value: Optional[str]) -> Optional[str]:
        return _check_action(value)


class PathListSection(_Section):
    paths: list[str] = Field(default_factory=list)
    message: str = ""
    mode: str = ""

    @field_validator("mode")
    @classmethod
    def _validate_mode(cls, value: str) -> str:
        return _check_mode(value)


class PathToolSection(_Section):
    default: Optional[str] = None
    default_message: str = ""
    respect_file_rules: Optional[bool] = None
    allow: PathListSection = Field(default_factory=PathListSection)
    deny: PathListSection = Field(default_factory=PathListSection)

    @field_validator("default")
    @classmethod
    def _validate_action(cls, value: Optional[str]) -> Optional[str]:
        return _check_action(value)


class SafeBrowsingSection(_Section):
    enabled: Optional[bool] = None
    api_key: str = ""


class WebFetchSection(PathToolSection):
    safe_browsing: SafeBrowsingSection = Field(default_factory=SafeBrowsingSection)


class SettingsSection(_Section):
    session_max_age: str = ""

    @field_validator("session_max_age")
    @classmethod
    def _validate_max_age(cls, value: str) -> str:
        if value and not SESSION_MAX_AGE_RE.match(value):
            raise ValueError('invalid duration (expected e.g. "7d", "12h", "30m" or "90s")')
        return value


class DebugSection(_Section):
    log_file: str = ""


class ConfigDocument(_Section):
    """Typed view of one configuration file."""

    version: str = ""
    bash: BashSection = Field(default_factory=BashSection)
    read: PathToolSection = Field(default_factory=PathToolSection)
    write: PathToolSection = Field(default_factory=PathToolSection)
    edit: PathToolSection = Field(default_factory=PathToolSection)
    glob: PathToolSection = Field(default_factory=PathToolSection)
    grep: PathToolSection = Field(default_factory=PathToolSection)
    webfetch: WebFetchSection = Field(default_factory=WebFetchSection)
    settings: SettingsSection = Field(default_factory=SettingsSection)
    debug: DebugSection = Field(default_factory=DebugSection)

    def tool(self, name: str) -> PathToolSection:
        return getattr(self, name)


@dataclass(frozen=True)
class PatternList:
    """A compiled allow/deny list with its message and merge mode."""

    patterns: FlexiblePattern = field(default_factory=FlexiblePattern)
    message: str = ""
    mode: str = ""


@dataclass
class Config:
    """One validated configuration file."""

    path: str
    document: ConfigDocument
    aliases: Dict[str, Alias] = field(default_factory=dict)
    bash_rules: list[BashRule] = field(default_factory=list)
    redirect_rules: list[RedirectRule] = field(default_factory=list)
    heredoc_rules: list[HeredocRule] = field(default_factory=list)
    command_lists: Dict[str, PatternList] = field(default_factory=dict)
    path_lists: Dict[tuple[str, str], PatternList] = field(default_factory=dict)

    def command_list(self, action: str) -> PatternList:
        return self.command_lists.get(action, PatternList())

    def path_list(self, tool: str, action: str) -> PatternList:
        return self.path_lists.get((tool, action), PatternList())


# ---------------------------------------------------------------------------
# Version handling
# ---------------------------------------------------------------------------


def check_version(raw: Mapping[str, Any]) -> None:
    """Reject legacy and unsupported documents.

    Raises:
        LegacyConfigError: for v1 documents.
        ConfigValidationError: for malformed or newer versions.
    """
    version = raw.get("version", "")
    markers = [key for key in LEGACY_MARKERS if key in raw]
    if markers:
        raise LegacyConfigError(location=markers[0])
    if version == "" or version is None:
        return
    if not isinstance(version, str):
        raise ConfigValidationError(
            "invalid version format (expected \"MAJOR.MINOR\")", location="version", value=version
        )
    parts = version.split(".")
    if len(parts) != 2:
        raise ConfigValidationError(
            "invalid version format (expected \"MAJOR.MINOR\")", location="version", value=version
        )
    try:
        major = int(parts[0])
    except ValueError as exc:
        raise ConfigValidationError(
            "invalid version major", location="version", value=version, cause=exc
        ) from exc
    try:
        minor = int(parts[1])
    except ValueError as exc:
        raise ConfigValidationError(
            "invalid version minor", location="version", value=version, cause=exc
        ) from exc
    if major < CONFIG_VERSION_MAJOR:
        raise LegacyConfigError(location="version", value=version)
    if (major, minor) > (CONFIG_VERSION_MAJOR, CONFIG_VERSION_MINOR):
        raise ConfigValidationError(
            f"config version {version} is not supported (max supported: {CONFIG_VERSION})",
            location="version",
        )


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _format_location(loc: tuple[Any, ...]) -> str:
    text = ""
    for part in loc:
        if isinstance(part, int):
            text += f"[{part}]"
        else:
            text += f".{part}" if text else str(part)
    return text


def _from_pydantic(exc: ValidationError) -> ConfigValidationError:
    error = exc.errors()[0]
    message = str(error.get("msg", "invalid value"))
    if message.startswith("Value error, "):
        message = message[len("Value error, ") :]
    return ConfigValidationError(
        message,
        location=_format_location(tuple(error.get("loc", ()))),
        value=error.get("input"),
    )


def _compile_list(
    values: list[str], aliases: Mapping[str, Alias], location: str
) -> FlexiblePattern:
    expanded = expand_all(values, aliases, location)
    return FlexiblePattern(compile_patterns(expanded, location))


def build_config(
    raw: Mapping[str, Any], path: str = "", logger: LoggerLike = NULL_LOGGER
) -> Config:
    """Validate a decoded TOML document and compile it into a :class:`Config`."""
    try:
        check_version(raw)
        document = ConfigDocument.model_validate(dict(raw))
    except ValidationError as exc:
        raise _from_pydantic(exc).with_path(path) from exc
    except ConfigValidationError as exc:
        raise exc.with_path(path) if path and not exc.path else exc

    try:
        aliases = parse_aliases(raw.get("aliases"))
        bash_raw = raw.get("bash") or {}

        command_lists: Dict[str, PatternList] = {}
        for action in ("allow", "deny"):
            section: CommandListSection = getattr(document.bash, action)
            command_lists[action] = PatternList(
                patterns=_compile_list(section.commands, aliases, f"bash.{action}.commands"),
                message=section.message,
                mode=section.mode,
            )

        path_lists: Dict[tuple[str, str], PatternList] = {}
        for tool in PATH_TOOLS:
            tool_section = document.tool(tool)
            for action in ("allow", "deny"):
                list_section: PathListSection = getattr(tool_section, action)
                path_lists[(tool, action)] = PatternList(
                    patterns=_compile_list(list_section.paths, aliases, f"{tool}.{action}.paths"),
                    message=list_section.message,
                    mode=list_section.mode,
                )

        bash_rules = parse_bash_rules(bash_raw, aliases)
        redirect_rules: list[RedirectRule] = []
        if "redirects" in bash_raw:
            redirect_rules = parse_redirect_rules(bash_raw["redirects"], aliases)
        heredoc_rules: list[HeredocRule] = []
        if "heredocs" in bash_raw:
            heredoc_rules = parse_heredoc_rules(bash_raw["heredocs"], aliases)
    except ConfigValidationError as exc:
        raise exc.with_path(path) if path and not exc.path else exc

    config = Config(
        path=path,
        document=document,
        aliases=aliases,
        bash_rules=bash_rules,
        redirect_rules=redirect_rules,
        heredoc_rules=heredoc_rules,
        command_lists=command_lists,
        path_lists=path_lists,
    )
    logger.debug(
        "[config] Parsed configuration",
        extra={
            "path": path,
            "bash_rules": len(bash_rules),
            "redirect_rules": len(redirect_rules),
            "heredoc_rules": len(heredoc_rules),
            "aliases": len(aliases),
        },
    )
    return config


def parse_config(text: str, path: str = "", logger: LoggerLike = NULL_LOGGER) -> Config:
    """Parse TOML text into a validated :class:`Config`.

    Raises:
        ConfigParseError: when ``text`` is not valid TOML.
        ConfigValidationError: when the document is invalid.
    """
    try:
        raw = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigParseError(f"invalid TOML: {exc}", path=path or None) from exc
    return build_config(raw, path, logger)


def load_config(path: Path, logger: LoggerLike = NULL_LOGGER) -> Config:
    """Read and parse the configuration file at ``path``."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigNotFoundError(str(path)) from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigReadError(f"cannot read config: {exc}", path=str(path)) from exc
    config = parse_config(text, str(path), logger)
    logger.debug("[config] Loaded configuration file", extra={"path": str(path)})
    return config


def default_config() -> Config:
    """An empty configuration; merged defaults supply every setting."""
    return build_config({}, DEFAULTS_SOURCE)
