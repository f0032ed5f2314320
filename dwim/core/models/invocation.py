from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List
from uuid import uuid4

from .enums import Outcome, ResolutionPath, Scope

SCHEMA_VERSION = 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_ts(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(value)
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


@dataclass(slots=True)
class Invocation:
    """
    One call of the shim.

    Built up while a dispatch runs and finished exactly once with
    ``finish()``; after that it is only ever serialised.
    """
    argv:            List[str]
    cwd:             str
    id:              str = field(default_factory=lambda: uuid4().hex)
    timestamp:       datetime = field(default_factory=utcnow)
    pid:             int = field(default_factory=os.getpid)
    repo_identity:   str | None = None
    scope:           Scope = Scope.USER_LEVEL
    scope_root:      str | None = None
    intent_key:      str = ""
    resolution_path: ResolutionPath | None = None
    outcome:         Outcome | None = None
    duration:        float = 0.0
    action:          str | None = None
    exit_code:       int | None = None
    token:           str | None = None
    message:         str | None = None
    extra:           Dict[str, Any] = field(default_factory=dict)
    started:         float = field(default_factory=time.monotonic, repr=False, compare=False)

    # ------------------------------------------------------------ lifecycle
    def finish(
        self,
        outcome: Outcome,
        *,
        exit_code: int | None = None,
        message: str | None = None,
    ) -> "Invocation":
        if self.outcome is not None:
            raise RuntimeError(f"invocation {self.id} already finished as {self.outcome.value}")
        self.outcome   = outcome
        self.exit_code = exit_code if exit_code is not None else self.exit_code
        self.message   = message or self.message
        self.duration  = round(time.monotonic() - self.started, 6)
        return self

    @property
    def finished(self) -> bool:
        return self.outcome is not None

    # ------------------------------------------------------------ records
    def to_record(self) -> Dict[str, Any]:
        record = dict(self.extra)
        record.update(
            schema=SCHEMA_VERSION,
            id=self.id,
            timestamp=self.timestamp.isoformat(),
            pid=self.pid,
            cwd=self.cwd,
            repo_identity=self.repo_identity,
            argv=list(self.argv),
            scope=self.scope.value,
            scope_root=self.scope_root,
            intent_key=self.intent_key,
            resolution_path=self.resolution_path.value if self.resolution_path else None,
            outcome=self.outcome.value if self.outcome else None,
            duration=self.duration,
            action=self.action,
            exit_code=self.exit_code,
            token=self.token,
            message=self.message,
        )
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Invocation":
        """Inverse of to_record(); unknown fields survive in ``extra``."""
        data = dict(record)
        data.pop("schema", None)
        path    = data.pop("resolution_path", None)
        outcome = data.pop("outcome", None)
        inv = cls(
            argv=list(data.pop("argv")),
            cwd=data.pop("cwd"),
            id=data.pop("id"),
            timestamp=parse_ts(data.pop("timestamp")),
            pid=int(data.pop("pid", 0)),
            repo_identity=data.pop("repo_identity", None),
            scope=Scope(data.pop("scope", Scope.USER_LEVEL.value)),
            scope_root=data.pop("scope_root", None),
            intent_key=data.pop("intent_key", "") or "",
            resolution_path=ResolutionPath(path) if path else None,
            outcome=Outcome(outcome) if outcome else None,
            duration=float(data.pop("duration", 0.0) or 0.0),
            action=data.pop("action", None),
            exit_code=data.pop("exit_code", None),
            token=data.pop("token", None),
            message=data.pop("message", None),
        )
        inv.extra = data
        return inv

    def sort_key(self):
        return (self.timestamp, self.pid)
