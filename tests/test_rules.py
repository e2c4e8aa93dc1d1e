"""Tests for rule parsing, matching and specificity."""

import pytest

from toolgate.core.errors import ConfigValidationError
from toolgate.utils.permissions.decision import Action
from toolgate.utils.permissions.rules import (
    BashRule,
    parse_bash_rules,
    parse_heredoc_rules,
    parse_redirect_rules,
    parse_rule_table,
)


def _rule(path, table=None, action=Action.ALLOW):
    return parse_rule_table(table or {}, action, path, {}, "bash." + action.value)


class TestParseBashRules:
    """Nested rule tables under bash.allow / bash.deny / bash.ask."""

    def test_array_of_tables_and_subcommands(self):
        raw = {
            "allow": {
                "commands": ["ls"],
                "git": [{"args": {"position": {"0": ["status", "diff"]}}}],
            },
            "deny": {
                "git": {"push": [{"message": "no force", "args": {"any": ["--force"]}}]},
            },
            "ask": {"npm": {"install": {}}},
        }
        rules = parse_bash_rules(raw, {})
        summary = [(r.action, r.command, r.subcommands) for r in rules]
        assert summary == [
            (Action.ALLOW, "git", ()),
            (Action.DENY, "git", ("push",)),
            (Action.ASK, "npm", ("install",)),
        ]
        assert rules[1].message == "no force"

    def test_rule_table_with_nested_subcommand(self):
        raw = {"allow": {"docker": {"message": "ok", "ps": {}}}}
        rules = parse_bash_rules(raw, {})
        assert [(r.command, r.subcommands) for r in rules] == [("docker", ()), ("docker", ("ps",))]

    def test_scalar_under_section_is_rejected(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            parse_bash_rules({"deny": {"rm": "yes"}}, {})
        assert exc_info.value.location == "bash.deny.rm"

    def test_invalid_file_access_type(self):
        with pytest.raises(ConfigValidationError, match="file_access_type"):
            parse_bash_rules({"allow": {"cat": {"file_access_type": "Execute"}}}, {})

    def test_pipe_aliases(self):
        raw = {"deny": {"curl": {"pipe": {"to": ["alias:shells"]}}}}
        from toolgate.utils.permissions.aliases import parse_aliases

        rules = parse_bash_rules(raw, parse_aliases({"shells": ["bash", "sh"]}))
        assert rules[0].pipe.to.raws == ("bash", "sh")


class TestMatching:
    def test_command_and_subcommand(self):
        rule = _rule(["git", "push"])
        assert rule.match("git", ["push", "origin"])
        assert not rule.match("git", ["pull"])
        assert not rule.match("git", [])

    def test_literal_matches_resolved_basename(self):
        rule = _rule(["python3"])
        assert rule.match("/usr/local/bin/python3", [], resolved_path="/usr/local/bin/python3")

    def test_path_command_pattern_uses_resolved_path(self):
        rule = _rule(["path:/usr/bin/*"])
        assert rule.match("ls", [], resolved_path="/usr/bin/ls")
        assert not rule.match("ls", [], resolved_path="")

    def test_pipe_context(self):
        rule = _rule(["curl"], {"pipe": {"to": ["bash", "sh"]}}, Action.DENY)
        assert rule.match("curl", ["https://x"], pipes_to=["bash"])
        assert not rule.match("curl", ["https://x"])

    def test_pipe_from_wildcard(self):
        rule = _rule(["bash"], {"pipe": {"from": ["*"]}}, Action.DENY)
        assert rule.match("bash", [], pipes_from=["curl"])
        assert not rule.match("bash", [])

    def test_args_exclude_subcommands(self):
        rule = _rule(["git", "push"], {"args": {"position": {"0": "origin"}}})
        assert rule.match("git", ["push", "origin"])
        assert not rule.match("git", ["push", "upstream"])

    def test_describe(self):
        rule = _rule(["git", "push"], {"args": {"any": ["-f"]}, "pipe": {"to": ["tee"]}})
        assert rule.describe() == "command=git push, args.any, pipe.to"


class TestSpecificity:
    def test_monotonic_in_constraints(self):
        bare = _rule(["git"])
        sub = _rule(["git", "push"])
        sub_args = _rule(["git", "push"], {"args": {"any": ["--force"]}})
        sub_args_pipe = _rule(
            ["git", "push"], {"args": {"any": ["--force"]}, "pipe": {"to": ["tee"]}}
        )
        scores = [r.specificity() for r in (bare, sub, sub_args, sub_args_pipe)]
        assert scores == sorted(scores)
        assert len(set(scores)) == len(scores)

    def test_subcommand_outweighs_command(self):
        assert _rule(["git", "push"]).specificity() - _rule(["git"]).specificity() > 100

    def test_pattern_command_scores_below_literal(self):
        assert _rule(["re:^g"]).specificity() < _rule(["git"]).specificity()

    def test_direct_construction_defaults(self):
        rule = BashRule(command="ls", action=Action.ALLOW)
        assert rule.specificity() == 100
        assert rule.match("ls", ["-la"])


class TestRedirectAndHeredocRules:
    def test_redirect_rules_keep_declared_order(self):
        rules = parse_redirect_rules(
            {"allow": [{"paths": ["/tmp/**"]}], "deny": [{"paths": ["**"]}]}, {}
        )
        assert [r.action for r in rules] == [Action.ALLOW, Action.DENY]
        assert rules[0].match("/tmp/out", append=False)
        assert rules[1].match("/etc/passwd", append=False)

    def test_redirect_append_constraint(self):
        (rule,) = parse_redirect_rules({"deny": [{"append": True}]}, {})
        assert rule.match("log.txt", append=True)
        assert not rule.match("log.txt", append=False)
        assert rule.specificity() == 5

    def test_redirect_literal_matches_basename(self):
        (rule,) = parse_redirect_rules({"deny": [{"paths": [".env"]}]}, {})
        assert rule.match("/work/project/.env", append=False)
        assert rule.specificity() == 10

    def test_redirect_append_must_be_bool(self):
        with pytest.raises(ConfigValidationError, match="append must be a boolean"):
            parse_redirect_rules({"deny": [{"append": "yes"}]}, {})

    def test_heredoc_content(self):
        (rule,) = parse_heredoc_rules({"deny": [{"content": ["re:DROP TABLE"]}]}, {})
        assert rule.match("DROP TABLE users;")
        assert not rule.match("SELECT 1;")
        assert rule.specificity() == 10

    def test_heredoc_without_content_matches_everything(self):
        (rule,) = parse_heredoc_rules({"allow": {"message": "fine"}}, {})
        assert rule.match("anything")
