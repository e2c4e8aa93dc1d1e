"""Tests for message placeholders."""

from toolgate.utils.log import ToolgateLogger
from toolgate.utils.templates import (
    BODY_PREVIEW_LIMIT,
    command_context,
    file_context,
    heredoc_context,
    redirect_context,
    render_message,
)


def test_command_fields():
    context = command_context(
        "git",
        ["git", "push", "--force"],
        cwd="/work",
        resolved_path="/usr/bin/git",
        pipes_to=["tee"],
    )
    message = "{{.Command}} {{.Arg 0}} in {{.Cwd}} via {{.ResolvedPath}}; args={{.ArgsStr}}"
    assert render_message(message, context) == (
        "git push in /work via /usr/bin/git; args=git push --force"
    )
    assert render_message("{{.PipesTo}}", context) == "[tee]"


def test_missing_argument_renders_empty():
    context = command_context("ls", ["ls"])
    assert render_message("[{{.Arg 3}}]", context) == "[]"


def test_file_fields():
    context = file_context("Write", "/etc/ssh/sshd_config", home="/home/dev")
    assert render_message("{{.Tool}} {{.FileDir}} {{.FileName}}", context) == (
        "Write /etc/ssh sshd_config"
    )
    assert render_message("{{ .Home }}", context) == "/home/dev"


def test_redirect_fields():
    context = redirect_context("/var/log/app.log", True)
    assert render_message("{{.TargetDir}}/{{.TargetFileName}} {{.Append}}", context) == (
        "/var/log/app.log true"
    )


def test_heredoc_body_is_truncated():
    context = heredoc_context("EOF", "x" * (BODY_PREVIEW_LIMIT + 50))
    rendered = render_message("{{.Body}}", context)
    assert rendered == "x" * BODY_PREVIEW_LIMIT + "..."
    assert render_message("{{.Delimiter}}", context) == "EOF"


def test_unknown_field_leaves_message_unchanged():
    message = "{{.Command}} and {{.Nope}}"
    assert render_message(message, command_context("ls", ["ls"])) == message


def test_plain_messages_pass_through():
    assert render_message("no placeholders", command_context("ls", ["ls"])) == "no placeholders"
    assert render_message("", command_context("ls", ["ls"])) == ""


def test_unknown_field_with_a_real_logger(tmp_path):
    logger = ToolgateLogger(name="toolgate.test_templates")
    logger.attach_file_handler(tmp_path / "debug.log")
    try:
        message = "blocked {{.Bogus}}"
        assert render_message(message, command_context("sudo", ["sudo"]), logger) == message
    finally:
        logger.close_file_handler()
    assert "Could not render message" in (tmp_path / "debug.log").read_text(encoding="utf-8")
