"""Command-line entry point for toolgate.

Plain mode reads shell source on stdin and reports the verdict through the
exit code. Hook mode reads a PreToolUse JSON payload and writes the hook
decision to stdout.
"""

import os
import sys
from pathlib import Path
from typing import NoReturn, Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from toolgate import __version__
from toolgate.core.config_merge import MergedConfig, merge_configs
from toolgate.core.discovery import discover, load_chain
from toolgate.core.dispatch import HookInput, HookOutput, PreToolUseHookOutput, ToolDispatcher
from toolgate.core.errors import ConfigError, ShellParseError, UnsupportedShellSyntaxError
from toolgate.core.sessions import (
    cleanup_session_configs,
    count_session_matches,
    parse_session_max_age,
    session_match_reminder,
)
from toolgate.utils.log import ToolgateLogger, enable_file_logging, init_logger
from toolgate.utils.path_utils import MatchContext
from toolgate.utils.permissions.decision import Action, Result


EXIT_ALLOW = 0
EXIT_ASK = 1
EXIT_DENY = 2
EXIT_ERROR = 3

console = Console(stderr=True, highlight=False, soft_wrap=True)


def _fail(message: str) -> NoReturn:
    console.print(f"[red]Error:[/red] {escape(message)}")
    sys.exit(EXIT_ERROR)


def _prepare_logging(logger: ToolgateLogger, merged: MergedConfig, debug: bool) -> None:
    if not debug:
        return
    configured = merged.log_file.value
    enable_file_logging(logger, Path(configured) if configured else None)


def _prune_sessions(merged: MergedConfig, project_root: str, logger: ToolgateLogger) -> None:
    max_age = merged.session_max_age.value
    if not max_age or not project_root:
        return
    try:
        cleanup_session_configs(project_root, parse_session_max_age(max_age), logger)
    except ValueError as exc:
        logger.warning("[sessions] Ignoring session_max_age: %s", exc)


def hook_output(result: Result) -> HookOutput:
    """Translate a verdict into the PreToolUse decision payload."""
    if result.action is Action.ALLOW:
        reason = "Allowed by toolgate policy"
    elif result.action is Action.DENY:
        reason = result.message or "Denied by toolgate policy"
    else:
        reason = result.source or "No toolgate rules matched"
        if result.command:
            reason = f"{result.command}: {reason}"
    return HookOutput(
        hook_specific_output=PreToolUseHookOutput(
            permission_decision=result.action.value,
            permission_decision_reason=reason,
        )
    )


def plain_exit(result: Result) -> None:
    """Report a plain-mode verdict on stderr and exit with its code."""
    if result.action is Action.ALLOW:
        sys.exit(EXIT_ALLOW)
    if result.action is Action.DENY:
        if result.message:
            if result.source:
                console.print(f"Deny: {escape(result.message)} ({escape(result.source)})")
            else:
                console.print(escape(result.message))
        sys.exit(EXIT_DENY)
    reason = result.source or "no rules matched"
    if result.command:
        console.print(f"Ask: {escape(result.command)}: {escape(reason)}")
    else:
        console.print(f"Ask: {escape(reason)}")
    sys.exit(EXIT_ASK)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="toolgate")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Additional TOML configuration file (applied last in the chain)",
)
@click.option("--hook", is_flag=True, help="Read a PreToolUse hook JSON payload from stdin")
@click.option("--session-id", default="", help="Session whose config joins the chain")
@click.option("--debug", is_flag=True, help="Log debug output to stderr and the debug log file")
def cli(config_path: Optional[Path], hook: bool, session_id: str, debug: bool) -> None:
    """Decide whether a shell command or tool call may run."""
    logger = init_logger(debug)
    try:
        try:
            raw = sys.stdin.read()
        except (OSError, UnicodeDecodeError) as exc:
            _fail(f"reading stdin: {exc}")

        hook_input: Optional[HookInput] = None
        cwd = Path.cwd()
        if hook:
            try:
                hook_input = HookInput.model_validate_json(raw)
            except ValidationError as exc:
                _fail(f"parsing hook JSON: {exc}")
            session_id = session_id or hook_input.session_id
            if hook_input.cwd:
                cwd = Path(hook_input.cwd)

        chain = discover(cwd, session_id=session_id, explicit=config_path)
        try:
            configs = load_chain(chain, logger)
        except ConfigError as exc:
            _fail(f"loading config: {exc}")
        merged = merge_configs(configs, logger)
        _prepare_logging(logger, merged, debug)
        logger.debug(
            "[cli] Configuration chain loaded",
            extra={"sources": merged.sources, "project_root": chain.project_root, "hook": hook},
        )
        _prune_sessions(merged, chain.project_root, logger)

        context = MatchContext(
            cwd=str(cwd), home=os.environ.get("HOME", ""), project_root=chain.project_root
        )
        dispatcher = ToolDispatcher(merged, context=context, logger=logger)

        if hook_input is not None:
            result = dispatcher.dispatch(hook_input)
            logger.debug(
                "[cli] Hook verdict",
                extra={"action": result.action.value, "source": result.source},
            )
            output = hook_output(result)
            if result.action is Action.ALLOW and session_id:
                matches = count_session_matches(
                    chain.project_root, session_id, hook_input, context=context, logger=logger
                )
                if matches:
                    specific = output.hook_specific_output
                    specific.permission_decision_reason = (
                        f"{specific.permission_decision_reason}. "
                        f"{session_match_reminder(matches, hook_input)}"
                    )
            click.echo(output.model_dump_json(by_alias=True, exclude_none=True))
            sys.exit(EXIT_ALLOW)

        logger.debug("[cli] Evaluating shell input", extra={"input": raw})
        try:
            result = dispatcher.evaluator.evaluate_source(raw)
        except UnsupportedShellSyntaxError as exc:
            logger.debug("[cli] Unsupported shell syntax", extra={"error": exc.message})
            result = Result(Action.ASK, source=f"parse error: {exc.message}")
        except ShellParseError as exc:
            _fail(f"parse error: {exc}")
        logger.debug(
            "[cli] Verdict",
            extra={
                "action": result.action.value,
                "result_message": result.message,
                "command": result.command,
                "source": result.source,
            },
        )
        plain_exit(result)
    finally:
        logger.close_file_handler()


def main() -> None:
    """Main entry point."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
