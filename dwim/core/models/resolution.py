from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

from .enums import CreatedFrom, Scope


@dataclass(frozen=True, slots=True)
class NativeResolution:
    intent_key:         str
    scope:              Scope
    executable_ref:     Path
    created_from:       CreatedFrom = CreatedFrom.MANUAL
    promotion_evidence: Dict[str, Any] | None = None

    @property
    def words(self) -> int:
        return len(self.intent_key.split())

    def __str__(self) -> str:
        return f"NativeResolution({self.intent_key!r}, {self.scope.value}, {self.executable_ref})"
