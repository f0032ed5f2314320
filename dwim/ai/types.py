from dataclasses import dataclass, field
from typing import Tuple, Union

from dwim.core.models.clarification import Question
from dwim.core.models.enums import FailReason

@dataclass(frozen=True, slots=True)
class Act:
    action:     str                       # shell command line to run
    intent_key: str | None = None         # optional hint from the service

@dataclass(frozen=True, slots=True)
class Clarify:
    questions: Tuple[Question, ...] = field(default_factory=tuple)

@dataclass(frozen=True, slots=True)
class Fail:
    reason: FailReason
    detail: str = ""

    def __str__(self) -> str:
        return f"{self.reason.value}: {self.detail}" if self.detail else self.reason.value

Interpretation = Union[Act, Clarify, Fail]
