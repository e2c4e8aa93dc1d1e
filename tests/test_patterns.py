"""Tests for pattern compilation and matching."""

import pytest

from toolgate.core.errors import InvalidPatternError
from toolgate.utils.path_utils import MatchContext
from toolgate.utils.permissions.patterns import (
    FlexiblePattern,
    PatternKind,
    compile_pattern,
)


@pytest.mark.parametrize(
    "raw, kind",
    [
        ("re:^rm$", PatternKind.REGEX),
        ("glob:*.txt", PatternKind.GLOB),
        ("path:/etc/**", PatternKind.PATH),
        ("flags:rf", PatternKind.FLAGS),
        ("*.py", PatternKind.GLOB),
        ("file?.txt", PatternKind.GLOB),
        ("[ab]c", PatternKind.GLOB),
        ("git", PatternKind.LITERAL),
    ],
)
def test_classification(raw, kind):
    assert compile_pattern(raw).kind is kind


def test_literal_is_exact():
    pattern = compile_pattern("git")
    assert pattern.matches("git")
    assert not pattern.matches("gitk")
    assert not pattern.matches("Git")


def test_regex_searches_anywhere():
    pattern = compile_pattern("re:force")
    assert pattern.matches("--force-with-lease")
    assert not pattern.matches("--dry-run")


def test_negated_pattern():
    pattern = compile_pattern("!re:^-")
    assert pattern.negated
    assert pattern.matches("file.txt")
    assert not pattern.matches("-v")


def test_path_double_star_crosses_directories():
    pattern = compile_pattern("path:/etc/**")
    assert pattern.matches("/etc/passwd")
    assert pattern.matches("/etc/ssh/sshd_config")
    assert pattern.matches("/etc")
    assert not pattern.matches("/etcetera/x")


def test_path_single_star_stays_in_segment():
    pattern = compile_pattern("path:/tmp/*.log")
    assert pattern.matches("/tmp/app.log")
    assert not pattern.matches("/tmp/sub/app.log")


def test_path_brace_alternatives():
    pattern = compile_pattern("path:/srv/{a,b}/*")
    assert pattern.matches("/srv/a/x")
    assert pattern.matches("/srv/b/y")
    assert not pattern.matches("/srv/c/z")


def test_path_variables_expand_with_context():
    context = MatchContext(cwd="/work/project", home="/home/dev", project_root="/work/project")
    secrets = compile_pattern("path:$HOME/.ssh/**")
    assert secrets.matches("/home/dev/.ssh/id_rsa", context)
    assert secrets.matches("~/.ssh/config", context)
    assert not secrets.matches("/home/other/.ssh/id_rsa", context)

    project = compile_pattern("path:$PROJECT_ROOT/**")
    assert project.matches("./src/main.py", context)
    assert not project.matches("/etc/hosts", context)


def test_glob_star_matches_slash():
    assert compile_pattern("/tmp/**").matches("/tmp/a/b")
    assert compile_pattern("glob:*").matches("a/b")


def test_flags_cluster():
    pattern = compile_pattern("flags:rf")
    assert pattern.matches("-rf")
    assert pattern.matches("-fr")
    assert pattern.matches("-Rrf")
    assert not pattern.matches("-r")
    assert not pattern.matches("--rf")


def test_flags_custom_delimiter():
    pattern = compile_pattern("flags[--]:force")
    assert pattern.flag_delimiter == "--"
    assert pattern.matches("--force")


@pytest.mark.parametrize(
    "raw",
    ["re:([a-z", "flags:", "flags[]:x", "flags[-:x", "flags:r-f", "alias:secrets"],
)
def test_invalid_patterns_raise(raw):
    with pytest.raises(InvalidPatternError):
        compile_pattern(raw, "bash.deny.commands[2]")


def test_invalid_regex_reports_location_and_value():
    with pytest.raises(InvalidPatternError) as exc_info:
        compile_pattern("re:([a-z", "bash.deny.commands[2]")
    error = exc_info.value
    assert error.location == "bash.deny.commands[2]"
    assert error.value == "re:([a-z"
    assert error.cause is not None
    assert "bash.deny.commands[2]" in str(error)


def test_flexible_pattern_matches_any_member():
    fp = FlexiblePattern.build(["bash", "re:^z?sh$"])
    assert fp.matches("bash")
    assert fp.matches("zsh")
    assert not fp.matches("fish")
    assert fp.matches_any(["fish", "sh"])
    assert fp.raws == ("bash", "re:^z?sh$")


class TestRefPatterns:
    REFS = {
        "bash.deny.commands": ("sudo", "re:^doas$"),
        "read.deny.paths": ("path:$HOME/.ssh/**",),
        "aliases.loops": ("ref:aliases.loops", "yes"),
    }

    def _context(self):
        return MatchContext(
            cwd="/work", home="/home/dev", refs=lambda path: self.REFS.get(path, ())
        )

    def test_compiles_to_ref(self):
        pattern = compile_pattern("ref:bash.deny.commands")
        assert pattern.kind is PatternKind.REF
        assert pattern.body == "bash.deny.commands"

    def test_matches_any_referenced_pattern(self):
        pattern = compile_pattern("ref:bash.deny.commands")
        context = self._context()
        assert pattern.matches("sudo", context)
        assert pattern.matches("doas", context)
        assert not pattern.matches("ls", context)

    def test_referenced_paths_use_the_context(self):
        pattern = compile_pattern("ref:read.deny.paths")
        assert pattern.matches("/home/dev/.ssh/id_rsa", self._context())
        assert not pattern.matches("/work/notes.md", self._context())

    def test_unknown_ref_and_missing_resolver_never_match(self):
        assert not compile_pattern("ref:write.allow.paths").matches("x", self._context())
        assert not compile_pattern("ref:bash.deny.commands").matches("sudo")

    def test_nested_refs_are_skipped(self):
        pattern = compile_pattern("ref:aliases.loops")
        assert pattern.matches("yes", self._context())
        assert not pattern.matches("no", self._context())

    @pytest.mark.parametrize(
        "raw, message",
        [("ref:", "empty ref path"), ("!ref:bash.deny.commands", "cannot be negated")],
    )
    def test_invalid_refs(self, raw, message):
        with pytest.raises(InvalidPatternError, match=message):
            compile_pattern(raw)
