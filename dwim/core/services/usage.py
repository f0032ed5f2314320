"""
Aggregates behind ``dwim usage``: how each intent key has been resolved
and how it ended.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List

from dwim.core.models import Invocation


@dataclass(slots=True)
class UsageRow:
    intent_key: str
    scope:      str
    total:      int = 0
    paths:      Counter = field(default_factory=Counter)
    outcomes:   Counter = field(default_factory=Counter)
    last_seen:  datetime | None = None

    def to_dict(self) -> Dict:
        return {
            "intent_key": self.intent_key,
            "scope": self.scope,
            "total": self.total,
            "paths": dict(self.paths),
            "outcomes": dict(self.outcomes),
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
        }


def summarize(invocations: Iterable[Invocation]) -> List[UsageRow]:
    rows: Dict[tuple, UsageRow] = {}
    for inv in invocations:
        key = (inv.intent_key or "(none)", inv.scope.value)
        row = rows.setdefault(key, UsageRow(*key))
        row.total += 1
        row.paths[inv.resolution_path.value if inv.resolution_path else "-"] += 1
        row.outcomes[inv.outcome.value if inv.outcome else "-"] += 1
        if row.last_seen is None or inv.timestamp > row.last_seen:
            row.last_seen = inv.timestamp
    return sorted(rows.values(), key=lambda r: (-r.total, r.intent_key, r.scope))
