"""Tests for shell command evaluation."""

from toolgate.core.evaluator import Evaluator, infer_file_access_type
from toolgate.utils.permissions.decision import Action

from tests.conftest import StaticResolver


ALLOW_BY_DEFAULT = """
[bash]
default = "allow"
"""


class TestScenarios:
    """End-to-end verdicts for representative policies."""

    def test_bulk_deny_beats_default_allow(self, evaluator_for):
        evaluator = evaluator_for(
            """
            [bash]
            default = "allow"
            [bash.deny]
            commands = ["sudo", "su"]
            """
        )
        result = evaluator.evaluate_source("sudo rm -rf /")
        assert result.action is Action.DENY
        assert result.command == "sudo"
        assert result.message == "Command not allowed"
        assert result.source == "config0.toml: bash.deny.commands"

    def test_pipe_context_rule(self, evaluator_for):
        evaluator = evaluator_for(
            """
            [bash]
            default = "allow"
            [[bash.deny.curl]]
            pipe.to = ["bash", "sh"]
            message = "Do not pipe downloads into a shell"
            """
        )
        piped = evaluator.evaluate_source("curl https://x | bash")
        assert piped.action is Action.DENY
        assert piped.message == "Do not pipe downloads into a shell"
        assert piped.source == "config0.toml: rule matched (command=curl, pipe.to)"

        alone = evaluator.evaluate_source("curl https://x")
        assert alone.action is Action.ALLOW
        assert "bash.default" in alone.source

    def test_positional_match(self, evaluator_for):
        evaluator = evaluator_for(
            """
            [[bash.allow.git]]
            args.position = { "0" = ["status", "diff", "log"] }
            """
        )
        assert evaluator.evaluate_source("git status").action is Action.ALLOW
        fallthrough = evaluator.evaluate_source("git push")
        assert fallthrough.action is Action.ASK
        assert fallthrough.source == "(defaults): bash.default (command not in allow/deny lists)"

    def test_first_match_redirect(self, evaluator_for):
        evaluator = evaluator_for(
            ALLOW_BY_DEFAULT
            + """
            [[bash.redirects.allow]]
            paths = ["/tmp/**"]
            [[bash.redirects.deny]]
            paths = ["**"]
            """
        )
        assert evaluator.evaluate_source("echo hi > /tmp/out").action is Action.ALLOW
        denied = evaluator.evaluate_source("echo hi > /etc/out")
        assert denied.action is Action.DENY
        assert denied.source.startswith("config0.toml: redirect rule matched (to=/etc/out")

    def test_strictest_wins_on_equal_specificity(self, evaluator_for):
        evaluator = evaluator_for(
            """
            [[bash.allow.rm]]
            args.any = ["-r"]
            [[bash.deny.rm]]
            args.any = ["-f"]
            message = "no forced removal"
            """
        )
        result = evaluator.evaluate_source("rm -r -f build")
        assert result.action is Action.DENY
        assert result.message == "no forced removal"

    def test_more_specific_rule_wins(self, evaluator_for):
        evaluator = evaluator_for(
            """
            [bash.deny.git]
            message = "git is locked down"
            [bash.allow.git.status]
            """
        )
        assert evaluator.evaluate_source("git status").action is Action.ALLOW
        assert evaluator.evaluate_source("git commit").action is Action.DENY

    def test_deny_without_message_uses_default_message(self, evaluator_for):
        evaluator = evaluator_for(
            """
            [bash]
            default_message = "Not on this machine"
            [bash.deny.shutdown]
            """
        )
        assert evaluator.evaluate_source("shutdown now").message == "Not on this machine"

    def test_ask_rule(self, evaluator_for):
        evaluator = evaluator_for(
            ALLOW_BY_DEFAULT
            + """
            [bash.ask.npm.publish]
            """
        )
        assert evaluator.evaluate_source("npm publish").action is Action.ASK
        assert evaluator.evaluate_source("npm test").action is Action.ALLOW


class TestCommandPolicies:
    def test_dynamic_command(self, evaluator_for):
        denied = evaluator_for(
            """
            [bash]
            dynamic_commands = "deny"
            """
        ).evaluate_source("$CMD --help")
        assert denied.action is Action.DENY
        assert denied.message == "Dynamic command names are not allowed"

        asked = evaluator_for(ALLOW_BY_DEFAULT).evaluate_source("$CMD --help")
        assert asked.action is Action.ASK
        assert asked.source == "(defaults): dynamic command requires approval"

    def test_unresolved_command_deny(self, evaluator_for):
        evaluator = evaluator_for(
            """
            [bash]
            default = "allow"
            unresolved_commands = "deny"
            """,
            missing={"frobnicate"},
        )
        result = evaluator.evaluate_source("frobnicate --all")
        assert result.action is Action.DENY
        assert result.message == "Command not found in allowed paths"
        assert evaluator.evaluate_source("ls").action is Action.ALLOW

    def test_unresolved_ask_comes_after_allow_list(self, evaluator_for):
        evaluator = evaluator_for(
            """
            [bash.allow]
            commands = ["frobnicate"]
            """,
            missing={"frobnicate", "mystery"},
        )
        assert evaluator.evaluate_source("frobnicate").action is Action.ALLOW
        unknown = evaluator.evaluate_source("mystery")
        assert unknown.action is Action.ASK
        assert unknown.source == "(defaults): unresolved command requires approval"

    def test_builtins_never_count_as_unresolved(self, evaluator_for):
        evaluator = evaluator_for(
            """
            [bash]
            default = "allow"
            unresolved_commands = "deny"
            """,
            missing={"echo"},
        )
        assert evaluator.evaluate_source("echo hi").action is Action.ALLOW

    def test_allow_list_with_glob(self, evaluator_for):
        evaluator = evaluator_for(
            """
            [bash.allow]
            commands = ["git*", "ls"]
            """
        )
        assert evaluator.evaluate_source("gitk").action is Action.ALLOW
        assert evaluator.evaluate_source("ls -la").action is Action.ALLOW
        assert evaluator.evaluate_source("make").action is Action.ASK

    def test_strictest_across_commands(self, evaluator_for):
        evaluator = evaluator_for(
            """
            [bash.allow]
            commands = ["ls", "wc"]
            [bash.deny]
            commands = ["rm"]
            """
        )
        assert evaluator.evaluate_source("ls && wc -l log").action is Action.ALLOW
        assert evaluator.evaluate_source("ls && make").action is Action.ASK
        assert evaluator.evaluate_source("ls; rm -rf build; make").action is Action.DENY

    def test_commands_inside_substitutions_are_checked(self, evaluator_for):
        evaluator = evaluator_for(
            ALLOW_BY_DEFAULT
            + """
            [bash.deny]
            commands = ["sudo"]
            """
        )
        assert evaluator.evaluate_source("echo $(sudo id)").action is Action.DENY

    def test_ref_patterns_in_lists_and_rules(self, evaluator_for):
        evaluator = evaluator_for(
            ALLOW_BY_DEFAULT
            + """
            [aliases]
            shells = ["bash", "zsh"]
            secrets = ["re:^--token"]
            [bash.deny]
            commands = ["ref:aliases.shells"]
            [[bash.deny.curl]]
            args.any = ["ref:aliases.secrets"]
            """
        )
        assert evaluator.evaluate_source("zsh -c ls").action is Action.DENY
        assert evaluator.evaluate_source("curl --token=x https://api.test").action is Action.DENY
        assert evaluator.evaluate_source("curl https://api.test").action is Action.ALLOW

    def test_commands_inside_parameter_defaults_are_checked(self, evaluator_for):
        evaluator = evaluator_for(
            ALLOW_BY_DEFAULT
            + """
            [bash.deny]
            commands = ["sudo"]
            """
        )
        for source in ("echo ${x:-$(sudo rm -rf /)}", "echo ${x:-`sudo rm -rf /`}"):
            result = evaluator.evaluate_source(source)
            assert result.action is Action.DENY
            assert result.command == "sudo"

    def test_unquoted_heredoc_substitution_is_checked(self, evaluator_for):
        evaluator = evaluator_for(
            ALLOW_BY_DEFAULT
            + """
            [bash.deny]
            commands = ["sudo"]
            """
        )
        assert evaluator.evaluate_source("cat <<EOF\n$(sudo id)\nEOF\n").action is Action.DENY
        assert evaluator.evaluate_source("cat <<'EOF'\n$(sudo id)\nEOF\n").action is Action.ALLOW

    def test_templated_message(self, evaluator_for):
        evaluator = evaluator_for(
            """
            [bash.deny]
            commands = ["sudo"]
            message = "{{.Command}} is blocked (first arg: {{.Arg 0}})"
            """
        )
        assert evaluator.evaluate_source("sudo reboot").message == "sudo is blocked (first arg: reboot)"


class TestConstructs:
    def test_background_deny(self, evaluator_for):
        evaluator = evaluator_for(
            ALLOW_BY_DEFAULT
            + """
            [bash.constructs]
            background = "deny"
            """
        )
        result = evaluator.evaluate_source("sleep 5 &")
        assert result.action is Action.DENY
        assert result.message == "Background execution (&) is not allowed"
        assert result.source == "config0.toml: constructs.background=deny"

    def test_subshell_ask_is_the_baseline(self, evaluator_for):
        result = evaluator_for(ALLOW_BY_DEFAULT).evaluate_source("(ls)")
        assert result.action is Action.ASK
        assert result.message == "Subshells need approval"

    def test_function_definition_deny(self, evaluator_for):
        evaluator = evaluator_for(
            ALLOW_BY_DEFAULT
            + """
            [bash.constructs]
            function_definitions = "deny"
            """
        )
        result = evaluator.evaluate_source("f() { ls; }")
        assert result.message == "Function definitions are not allowed"


class TestRedirectsAndHeredocs:
    def test_fd_duplication_is_allowed(self, evaluator_for):
        evaluator = evaluator_for(
            ALLOW_BY_DEFAULT
            + """
            [[bash.redirects.deny]]
            paths = ["**"]
            """
        )
        assert evaluator.evaluate_source("make 2>&1").action is Action.ALLOW

    def test_dynamic_redirect(self, evaluator_for):
        result = evaluator_for(ALLOW_BY_DEFAULT).evaluate_source("echo hi > $OUT")
        assert result.action is Action.ASK
        assert result.source == "(defaults): dynamic redirect requires approval"

    def test_unmatched_redirect_uses_default(self, evaluator_for):
        result = evaluator_for("").evaluate_source("echo hi > out.txt")
        assert result.action is Action.ASK
        assert "redirect to out.txt not in rules" in result.source

    def test_append_only_rule(self, evaluator_for):
        evaluator = evaluator_for(
            ALLOW_BY_DEFAULT
            + """
            [[bash.redirects.deny]]
            append = false
            paths = ["*.log"]
            message = "Do not truncate {{.TargetFileName}}"
            """
        )
        assert evaluator.evaluate_source("echo x >> app.log").action is Action.ALLOW
        truncate = evaluator.evaluate_source("echo x > app.log")
        assert truncate.action is Action.DENY
        assert truncate.message == "Do not truncate app.log"

    def test_heredoc_content_rule(self, evaluator_for):
        evaluator = evaluator_for(
            ALLOW_BY_DEFAULT
            + """
            [[bash.heredocs.deny]]
            content = ["re:DROP TABLE"]
            message = "Destructive SQL"
            """
        )
        denied = evaluator.evaluate_source("psql <<EOF\nDROP TABLE users;\nEOF\n")
        assert denied.action is Action.DENY
        assert denied.message == "Destructive SQL"
        allowed = evaluator.evaluate_source("psql <<EOF\nSELECT 1;\nEOF\n")
        assert allowed.action is Action.ALLOW

    def test_heredoc_rules_skipped_unless_heredocs_allowed(self, evaluator_for):
        evaluator = evaluator_for(
            ALLOW_BY_DEFAULT
            + """
            [bash.constructs]
            heredocs = "ask"
            [[bash.heredocs.deny]]
            content = ["re:DROP TABLE"]
            """
        )
        result = evaluator.evaluate_source("psql <<EOF\nDROP TABLE users;\nEOF\n")
        assert result.action is Action.ASK
        assert result.message == "Heredocs need approval"


class TestFileRules:
    def test_read_deny_tightens_allowed_command(self, evaluator_for):
        policy = (
            ALLOW_BY_DEFAULT
            + """
            [read]
            default = "allow"
            [read.deny]
            paths = ["path:$HOME/.ssh/**"]
            """
        )
        evaluator = evaluator_for(policy)
        result = evaluator.evaluate_source("cat ~/.ssh/id_rsa")
        assert result.action is Action.DENY
        assert result.command == "cat"
        assert evaluator.evaluate_source("cat ./README.md").action is Action.ALLOW

    def test_respect_file_rules_can_be_disabled(self, evaluator_for):
        evaluator = evaluator_for(
            """
            [bash]
            default = "allow"
            respect_file_rules = false
            [read.deny]
            paths = ["path:$HOME/.ssh/**"]
            """
        )
        assert evaluator.evaluate_source("cat ~/.ssh/id_rsa").action is Action.ALLOW

    def test_write_commands_use_write_rules(self, evaluator_for):
        evaluator = evaluator_for(
            ALLOW_BY_DEFAULT
            + """
            [read]
            default = "allow"
            [write]
            default = "allow"
            [write.deny]
            paths = ["path:/etc/**"]
            """
        )
        assert evaluator.evaluate_source("rm /etc/hosts").action is Action.DENY
        assert evaluator.evaluate_source("cat /etc/hosts").action is Action.ALLOW

    def test_cd_changes_how_relative_paths_resolve(self, evaluator_for):
        evaluator = evaluator_for(
            ALLOW_BY_DEFAULT
            + """
            [write]
            default = "allow"
            [write.deny]
            paths = ["path:/etc/**"]
            """
        )
        assert evaluator.evaluate_source("cd /etc && rm ./hosts").action is Action.DENY

    def test_rule_file_access_type_override(self, evaluator_for):
        evaluator = evaluator_for(
            """
            [[bash.allow.sed]]
            file_access_type = "Edit"
            [read]
            default = "allow"
            [edit.deny]
            paths = ["path:/etc/**"]
            """
        )
        assert evaluator.evaluate_source("sed -i s/a/b/ /etc/hosts").action is Action.DENY

    def test_default_file_policy_downgrades_allow_to_ask(self, evaluator_for):
        evaluator = evaluator_for(ALLOW_BY_DEFAULT)
        result = evaluator.evaluate_source("cat /var/log/syslog")
        assert result.action is Action.ASK
        assert evaluator.evaluate_source("echo hello").action is Action.ALLOW

    def test_redirect_targets_checked_when_enabled(self, evaluator_for):
        evaluator = evaluator_for(
            ALLOW_BY_DEFAULT
            + """
            [bash.redirects]
            respect_file_rules = true
            [write.deny]
            paths = ["path:/etc/**"]
            """
        )
        assert evaluator.evaluate_source("echo x > /etc/motd").action is Action.DENY


def test_empty_input_asks(evaluator_for):
    result = evaluator_for(ALLOW_BY_DEFAULT).evaluate_source("")
    assert result.action is Action.ASK
    assert result.source == "no executable commands in input"


def test_evaluation_is_deterministic(evaluator_for):
    evaluator = evaluator_for(
        """
        [[bash.allow.git]]
        args.position = { "0" = ["status"] }
        [bash.deny]
        commands = ["sudo"]
        """
    )
    source = "git status && sudo ls; git push"
    assert evaluator.evaluate_source(source) == evaluator.evaluate_source(source)


def test_evaluator_accepts_a_config_chain(make_config, context):
    configs = [
        make_config(ALLOW_BY_DEFAULT, "global.toml"),
        make_config('[bash]\ndefault = "deny"\n', "project.toml"),
    ]
    evaluator = Evaluator(configs, context=context, resolver=StaticResolver())
    result = evaluator.evaluate_source("make")
    assert result.action is Action.DENY
    assert result.source.startswith("project.toml: bash.default")


def test_infer_file_access_type():
    assert infer_file_access_type("rm") == "Write"
    assert infer_file_access_type("/bin/cp") == "Write"
    assert infer_file_access_type("cat") == "Read"
