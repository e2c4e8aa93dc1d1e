"""Verdicts and the strictest-wins combination of verdicts."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Action(str, Enum):
    ALLOW = "allow"
    ASK = "ask"
    DENY = "deny"

    @property
    def strictness(self) -> int:
        return _STRICTNESS[self]

    def is_stricter_than(self, other: "Action") -> bool:
        return self.strictness > other.strictness

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Action"]:
        if value is None or value == "":
            return None
        return cls(value)


_STRICTNESS = {Action.ALLOW: 0, Action.ASK: 1, Action.DENY: 2}

ACTION_ERROR_MESSAGE = 'invalid action (must be "allow", "deny", or "ask")'


@dataclass(frozen=True)
class Result:
    """Outcome of one evaluation.

    ``source`` says which rule or config file produced the verdict.
    """

    action: Action
    message: str = ""
    command: str = ""
    source: str = ""

    @property
    def is_deny(self) -> bool:
        return self.action is Action.DENY


def combine_results(current: Result, new: Result) -> Result:
    """Merge two results; the stricter action wins and keeps its fields.

    On a tie the newer result is kept.
    """
    if current.action.is_stricter_than(new.action):
        return current
    return new
