"""Tests for routing hook tool calls."""

import pytest

from toolgate.core.dispatch import HookInput, HookOutput, PreToolUseHookOutput, ToolDispatcher
from toolgate.utils.permissions.decision import Action

from tests.conftest import StaticResolver


POLICY = """
[bash]
default = "allow"
[bash.deny]
commands = ["sudo"]
[read]
default = "allow"
[read.deny]
paths = ["path:$HOME/.ssh/**"]
[write]
default = "deny"
[webfetch.deny]
paths = ["re:^http://"]
"""


@pytest.fixture
def dispatcher(merged_from, context):
    return ToolDispatcher(merged_from(POLICY), context=context, resolver=StaticResolver())


def _hook(tool_name, **tool_input):
    return HookInput.model_validate({"tool_name": tool_name, "tool_input": tool_input})


@pytest.mark.parametrize(
    "tool_name, tool_input, expected",
    [
        ("Bash", {"command": "ls"}, Action.ALLOW),
        ("Bash", {"command": "sudo ls"}, Action.DENY),
        ("", {"command": "sudo ls"}, Action.DENY),
        ("Read", {"file_path": "~/.ssh/id_ed25519"}, Action.DENY),
        ("Read", {"file_path": "README.md"}, Action.ALLOW),
        ("Write", {"file_path": "README.md"}, Action.DENY),
        ("Edit", {"file_path": "README.md"}, Action.ASK),
        ("Grep", {"pattern": "key", "path": "src"}, Action.ALLOW),
        ("Glob", {"pattern": "*", "path": "~/.ssh"}, Action.DENY),
        ("Grep", {"pattern": "key", "path": "~/.ssh/keys"}, Action.DENY),
        ("WebFetch", {"url": "http://plain.test/", "prompt": "summarize"}, Action.DENY),
        ("WebFetch", {"url": "https://secure.test/"}, Action.ASK),
    ],
)
def test_routing(dispatcher, tool_name, tool_input, expected):
    assert dispatcher.dispatch(_hook(tool_name, **tool_input)).action is expected


@pytest.mark.parametrize(
    "tool_name, source",
    [
        ("Read", "no file path"),
        ("WebFetch", "no URL"),
        ("Bash", "no command"),
        ("NotebookEdit", "unknown tool: NotebookEdit"),
    ],
)
def test_missing_arguments_ask(dispatcher, tool_name, source):
    result = dispatcher.dispatch(_hook(tool_name))
    assert result.action is Action.ASK
    assert result.source == source


def test_parse_error_asks(dispatcher):
    result = dispatcher.dispatch(_hook("Bash", command="ls &&"))
    assert result.action is Action.ASK
    assert result.source.startswith("parse error:")


def test_hook_input_ignores_unknown_fields():
    hook_input = HookInput.model_validate(
        {
            "session_id": "s",
            "transcript_path": "/tmp/t.jsonl",
            "tool_name": "Bash",
            "tool_input": {"command": "ls", "timeout": 1000, "description": "list"},
        }
    )
    assert hook_input.tool_input.command == "ls"
    assert hook_input.hook_event_name == "PreToolUse"


def test_hook_output_uses_wire_names():
    output = HookOutput(
        hook_specific_output=PreToolUseHookOutput(
            permission_decision="deny", permission_decision_reason="no"
        )
    )
    assert output.model_dump(by_alias=True) == {
        "hookSpecificOutput": {
            "hookEventName": "PreToolUse",
            "permissionDecision": "deny",
            "permissionDecisionReason": "no",
        }
    }
