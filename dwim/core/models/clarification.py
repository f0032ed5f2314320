from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List

from .invocation import parse_ts, utcnow


@dataclass(frozen=True, slots=True)
class Question:
    name: str
    text: str

    @classmethod
    def coerce(cls, raw: Any, position: int) -> "Question":
        """Accept a bare string or a {name, text} mapping."""
        if isinstance(raw, dict):
            text = str(raw.get("text") or raw.get("question") or "").strip()
            name = str(raw.get("name") or f"q{position}").strip()
            return cls(name=name, text=text)
        return cls(name=f"q{position}", text=str(raw).strip())


@dataclass(slots=True)
class ClarificationRequest:
    token:                  str
    original_invocation_id: str
    intent:                 str
    intent_key:             str
    argv:                   List[str]
    cwd:                    str
    scope:                  str
    scope_root:             str | None
    questions:              List[Question]
    created_at:             datetime = field(default_factory=utcnow)
    expires_after:          float = 86400.0
    resolved_answer:        List[str] | None = None
    resolved_at:            datetime | None = None
    prior:                  List[Dict[str, str]] = field(default_factory=list)

    # ------------------------------------------------------------ state
    @property
    def expires_at(self) -> datetime:
        return self.created_at + timedelta(seconds=self.expires_after)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    @property
    def is_resolved(self) -> bool:
        return self.resolved_answer is not None

    # ------------------------------------------------------------ answers so far
    def all_questions(self) -> List[Question]:
        """Questions from earlier rounds (a follow-up carries them) plus this round's."""
        earlier = [Question(f"p{i}", qa["question"]) for i, qa in enumerate(self.prior, 1)]
        return earlier + list(self.questions)

    def all_answers(self) -> List[str]:
        return [qa["answer"] for qa in self.prior] + list(self.resolved_answer or [])

    def history(self) -> List[Dict[str, str]]:
        """Every question asked so far with its answer, earliest first."""
        current = [
            {"name": q.name, "question": q.text, "answer": a}
            for q, a in zip(self.questions, self.resolved_answer or [])
        ]
        return [dict(qa) for qa in self.prior] + current

    # ------------------------------------------------------------ (de)serialise
    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "original_invocation_id": self.original_invocation_id,
            "intent": self.intent,
            "intent_key": self.intent_key,
            "argv": list(self.argv),
            "cwd": self.cwd,
            "scope": self.scope,
            "scope_root": self.scope_root,
            "questions": [{"name": q.name, "text": q.text} for q in self.questions],
            "created_at": self.created_at.isoformat(),
            "expires_after": self.expires_after,
            "resolved_answer": self.resolved_answer,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "prior": [dict(qa) for qa in self.prior],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClarificationRequest":
        return cls(
            token=data["token"],
            original_invocation_id=data["original_invocation_id"],
            intent=data["intent"],
            intent_key=data.get("intent_key", ""),
            argv=list(data.get("argv") or []),
            cwd=data.get("cwd", ""),
            scope=data.get("scope", ""),
            scope_root=data.get("scope_root"),
            questions=[Question.coerce(q, i) for i, q in enumerate(data.get("questions") or [], 1)],
            created_at=parse_ts(data["created_at"]),
            expires_after=float(data.get("expires_after", 86400.0)),
            resolved_answer=data.get("resolved_answer"),
            resolved_at=parse_ts(data["resolved_at"]) if data.get("resolved_at") else None,
            prior=[{k: str(v) for k, v in qa.items()} for qa in data.get("prior") or []],
        )


@dataclass(frozen=True, slots=True)
class CachedResolution:
    intent:     str
    intent_key: str
    questions:  List[Question]
    answers:    List[str]
    action:     str
    token:      str
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent": self.intent,
            "intent_key": self.intent_key,
            "questions": [{"name": q.name, "text": q.text} for q in self.questions],
            "answers": list(self.answers),
            "action": self.action,
            "token": self.token,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedResolution":
        return cls(
            intent=data["intent"],
            intent_key=data.get("intent_key", ""),
            questions=[Question.coerce(q, i) for i, q in enumerate(data.get("questions") or [], 1)],
            answers=[str(a) for a in data.get("answers") or []],
            action=data["action"],
            token=data.get("token", ""),
            created_at=parse_ts(data["created_at"]),
        )
