from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Tuple

from .enums import Scope
from .resolution import NativeResolution

_PARAM = re.compile(r'"\$\d+"')


@dataclass(frozen=True, slots=True)
class PromotionCandidate:
    intent_key:            str
    scope:                 Scope
    scope_root:            str | None
    frequency:             int
    first_seen:            datetime
    last_seen:             datetime
    representative_action: str
    stability_score:       float
    template:              Tuple[str, ...] = ()

    @property
    def is_parametric(self) -> bool:
        return any(_PARAM.fullmatch(piece) for piece in self.template)

    def evidence(self) -> dict:
        return {
            "intent_key": self.intent_key,
            "scope": self.scope.value,
            "frequency": self.frequency,
            "stability": round(self.stability_score, 4),
            "first_seen": self.first_seen.isoformat(),
            "last_seen": self.last_seen.isoformat(),
        }

    def __str__(self) -> str:
        return (f"Candidate({self.intent_key!r}, {self.scope.value}, "
                f"freq={self.frequency}, stability={self.stability_score:.2f})")


@dataclass(slots=True)
class PromotionReport:
    materialized: List[NativeResolution] = field(default_factory=list)
    eligible:     List[PromotionCandidate] = field(default_factory=list)   # dry-run only
    suggestions:  List[PromotionCandidate] = field(default_factory=list)
    skipped:      List[Tuple[PromotionCandidate, str]] = field(default_factory=list)
