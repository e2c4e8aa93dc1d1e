"""Per-session configuration files.

Session configs live in ``.config/toolgate/sessions/<session_id>.toml`` under
the project root. Old ones are pruned at startup, and an approved tool call
that other sessions also allow produces a reminder to promote the rule to the
project config.
"""

import time
from datetime import timedelta
from pathlib import Path
from typing import Iterator, Optional

from toolgate.core.config import SESSION_MAX_AGE_RE, load_config
from toolgate.core.config_merge import merge_configs
from toolgate.core.discovery import session_dir
from toolgate.core.dispatch import HookInput, ToolDispatcher
from toolgate.core.errors import ConfigError
from toolgate.utils.log import NULL_LOGGER, LoggerLike
from toolgate.utils.path_utils import MatchContext
from toolgate.utils.permissions.decision import Action

_UNITS = {"d": "days", "h": "hours", "m": "minutes", "s": "seconds"}


def parse_session_max_age(value: str) -> timedelta:
    """Parse ``"7d"``, ``"12h"``, ``"30m"`` or ``"90s"``.

    Raises:
        ValueError: for anything else.
    """
    match = SESSION_MAX_AGE_RE.match(value.strip())
    if not match:
        raise ValueError(f"invalid session max age: {value!r}")
    amount, unit = match.groups()
    return timedelta(**{_UNITS[unit]: int(amount)})


def _session_files(project_root: str) -> Iterator[Path]:
    directory = session_dir(project_root)
    try:
        entries = sorted(directory.iterdir())
    except OSError:
        return
    for entry in entries:
        if entry.name == ".gitignore" or entry.suffix != ".toml" or not entry.is_file():
            continue
        yield entry


def cleanup_session_configs(
    project_root: str,
    max_age: timedelta,
    logger: LoggerLike = NULL_LOGGER,
    *,
    now: Optional[float] = None,
) -> list[Path]:
    """Delete session configs last modified more than ``max_age`` ago.

    Returns the removed paths. Files that cannot be inspected or removed are
    left alone.
    """
    if not project_root:
        return []
    cutoff = (time.time() if now is None else now) - max_age.total_seconds()
    removed: list[Path] = []
    for path in _session_files(project_root):
        try:
            if path.stat().st_mtime >= cutoff:
                continue
            path.unlink()
        except OSError as exc:
            logger.debug(
                "[sessions] Could not remove session config",
                extra={"path": str(path), "error": str(exc)},
            )
            continue
        removed.append(path)
    if removed:
        logger.debug(
            "[sessions] Removed expired session configs",
            extra={"count": len(removed), "max_age": str(max_age)},
        )
    return removed


def count_session_matches(
    project_root: str,
    current_session_id: str,
    hook_input: HookInput,
    *,
    context: Optional[MatchContext] = None,
    logger: LoggerLike = NULL_LOGGER,
) -> int:
    """Count other sessions whose config alone would allow ``hook_input``."""
    if not project_root:
        return 0
    context = context or MatchContext.current(project_root)
    current_file = f"{current_session_id}.toml"
    count = 0
    for path in _session_files(project_root):
        if path.name == current_file:
            continue
        try:
            config = load_config(path)
        except ConfigError as exc:
            logger.debug(
                "[sessions] Skipping unusable session config",
                extra={"path": str(path), "error": str(exc)},
            )
            continue
        dispatcher = ToolDispatcher(merge_configs([config]), context=context)
        if dispatcher.dispatch(hook_input).action is Action.ALLOW:
            count += 1
    return count


def describe_tool_input(hook_input: HookInput) -> str:
    tool = hook_input.tool_name
    args = hook_input.tool_input
    if tool in ("Bash", ""):
        return f"command: `{args.command}`"
    if tool in ("Read", "Write", "Edit"):
        return f"file: `{args.file_path}`"
    if tool == "WebFetch":
        return f"URL: `{args.url}`"
    if tool in ("Glob", "Grep"):
        if args.path:
            return f"pattern='{args.pattern}' path='{args.path}'"
        return f"pattern='{args.pattern}'"
    return ""


def session_match_reminder(count: int, hook_input: HookInput) -> str:
    return (
        f"The tool use just approved ({hook_input.tool_name or 'Bash'} "
        f"{describe_tool_input(hook_input)}) is also covered by rules in {count} other "
        "session(s). Consider adding a matching rule to the project config "
        "(.config/toolgate.toml) so it applies to all sessions."
    )
