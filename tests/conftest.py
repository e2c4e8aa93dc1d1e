"""Shared fixtures for toolgate tests."""

import textwrap
from typing import Callable, Iterable

import pytest

from toolgate.core.config import Config, parse_config
from toolgate.core.config_merge import MergedConfig, merge_configs
from toolgate.core.evaluator import Evaluator
from toolgate.utils.path_utils import SHELL_BUILTINS, CommandResolver, MatchContext, ResolvedCommand


class StaticResolver(CommandResolver):
    """Resolve every name to ``/usr/bin/<name>`` except the ``missing`` ones."""

    def __init__(self, missing: Iterable[str] = ()) -> None:
        super().__init__()
        self.missing = set(missing)

    def resolve(self, name: str, cwd: str = "") -> ResolvedCommand:
        if name in SHELL_BUILTINS:
            return ResolvedCommand(is_builtin=True)
        if name in self.missing:
            return ResolvedCommand()
        if "/" in name:
            return ResolvedCommand(path=name)
        return ResolvedCommand(path=f"/usr/bin/{name}")


@pytest.fixture
def context() -> MatchContext:
    return MatchContext(cwd="/work/project", home="/home/dev", project_root="/work/project")


@pytest.fixture
def make_config() -> Callable[..., Config]:
    """Parse a dedented TOML snippet; ``version = "2.0"`` is added when missing."""

    def _make(text: str, path: str = "") -> Config:
        body = textwrap.dedent(text)
        if "version" not in body:
            body = 'version = "2.0"\n' + body
        return parse_config(body, path)

    return _make


@pytest.fixture
def merged_from(make_config) -> Callable[..., MergedConfig]:
    def _merged(*texts: str) -> MergedConfig:
        configs = [make_config(text, f"config{index}.toml") for index, text in enumerate(texts)]
        return merge_configs(configs)

    return _merged


@pytest.fixture
def evaluator_for(merged_from, context) -> Callable[..., Evaluator]:
    def _evaluator(*texts: str, missing: Iterable[str] = ()) -> Evaluator:
        return Evaluator(
            merged_from(*texts), context=context, resolver=StaticResolver(missing)
        )

    return _evaluator
