"""
ClarificationStore
==================

Durable side of the asynchronous clarification protocol.

    create()          persist questions under a fresh token, return it
    attach_answers()  the single mutation a request ever sees
    cache_resolution()/lookup_cached()
                      (intent, answers) → action, consulted by later,
                      different invocations of the same intent

On-disk layout (under settings.clarification_dir)
-------------------------------------------------
    <token>.yaml                 the request artefact
    <token>.lock                 flock target while answers are attached
    cache/<sha(intent)>/<sha(answers)>.yaml
                                 one immutable file per cached resolution

Answer matching is exact after normalisation (NFKC, whitespace collapsed,
case-folded).  The cache is keyed by the full intent phrase, so two
requests that merely share an intent-key prefix never share answers.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import logging
import os
import tempfile
import unicodedata
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, List, Sequence
from uuid import uuid4

import yaml

from dwim.core.exceptions import AnswerFormatError, ClarificationTokenInvalid
from dwim.core.models     import (
    CachedResolution,
    ClarificationRequest,
    Invocation,
    Question,
    ScopeContext,
    TokenInvalidReason,
)
from dwim.core.models.invocation import utcnow

log = logging.getLogger(__name__)


# ---------------------------------------------------------------- helpers
def intent_phrase(argv: Sequence[str]) -> str:
    """Normalised full intent text; the cache key's intent half."""
    return normalize_text(" ".join(argv))


def normalize_text(value: Any) -> str:
    text = unicodedata.normalize("NFKC", str(value))
    return " ".join(text.split()).casefold()


def parse_answers(text: str) -> Any:
    """
    Structured answer text → python object.  YAML is a superset of JSON,
    so both ``{"1": "work"}`` and ``1: work`` are accepted.
    """
    if text is None or not str(text).strip():
        raise AnswerFormatError("no answers supplied")
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise AnswerFormatError(f"answers are not valid YAML/JSON: {exc}") from exc
    if data is None:
        raise AnswerFormatError("no answers supplied")
    return data


def normalize_answers(questions: Sequence[Question], answers: Any) -> List[str]:
    """
    Map an answer structure onto the ordered question list.

    • list            positional, one entry per question
    • mapping         keys are 1-based indexes, question names or texts
    • scalar          only when there is exactly one question
    """
    count = len(questions)

    if isinstance(answers, (list, tuple)):
        if len(answers) != count:
            raise AnswerFormatError(f"expected {count} answers, got {len(answers)}")
        ordered = list(answers)

    elif isinstance(answers, dict):
        ordered: List[Any] = [None] * count
        by_name = {q.name.casefold(): i for i, q in enumerate(questions)}
        by_text = {normalize_text(q.text): i for i, q in enumerate(questions)}
        for key, value in answers.items():
            idx = _answer_index(key, count, by_name, by_text)
            if ordered[idx] is not None:
                raise AnswerFormatError(f"question {idx + 1} answered twice")
            ordered[idx] = value
        missing = [str(i + 1) for i, v in enumerate(ordered) if v is None]
        if missing:
            raise AnswerFormatError(f"missing answers for question(s) {', '.join(missing)}")

    elif count == 1:
        ordered = [answers]

    else:
        raise AnswerFormatError(f"expected {count} answers as a list or mapping")

    return [normalize_text(v) for v in ordered]


def _answer_index(key: Any, count: int, by_name: dict, by_text: dict) -> int:
    if isinstance(key, int) and not isinstance(key, bool) or str(key).isdecimal():
        try:
            idx = int(key) - 1
        except ValueError as exc:
            raise AnswerFormatError(f"bad question number {key!r}") from exc
        if not 0 <= idx < count:
            raise AnswerFormatError(f"no question number {key}")
        return idx
    for table, needle in ((by_name, str(key).casefold()), (by_text, normalize_text(key))):
        if needle in table:
            return table[needle]
    raise AnswerFormatError(f"unknown question {key!r}")


def _digest(value: Any) -> str:
    return hashlib.sha256(json.dumps(value, sort_keys=True).encode()).hexdigest()[:32]


# ---------------------------------------------------------------- store
class ClarificationStore:

    SUFFIX    = ".yaml"
    CACHE_DIR = "cache"

    def __init__(self, root: str | Path, *, ttl: float = 86400.0) -> None:
        self.root = Path(root)
        self.ttl = float(ttl)

    # ════════════════════════════════════════════════════════════════════
    #                         REQUESTS
    # ════════════════════════════════════════════════════════════════════
    def create(
        self,
        invocation: Invocation,
        questions: Sequence[Question | str | dict],
        *,
        intent: str,
        argv: Sequence[str],
        scope_ctx: ScopeContext,
        prior: Sequence[dict] = (),
    ) -> str:
        """
        ``prior`` is the answered Q&A of earlier rounds when this request is
        a follow-up; it travels with the request so nothing is asked twice.
        """
        if not questions:
            raise ValueError("a clarification needs at least one question")
        qs = [q if isinstance(q, Question) else Question.coerce(q, i) for i, q in enumerate(questions, 1)]

        self.root.mkdir(parents=True, exist_ok=True)
        while True:
            token = uuid4().hex[:12]
            request = ClarificationRequest(
                token=token,
                original_invocation_id=invocation.id,
                intent=intent,
                intent_key=invocation.intent_key,
                argv=list(argv),
                cwd=invocation.cwd,
                scope=scope_ctx.scope.value,
                scope_root=str(scope_ctx.root),
                questions=qs,
                expires_after=self.ttl,
                prior=[dict(qa) for qa in prior],
            )
            try:
                # exclusive create: a token can never be handed out twice
                with open(self._request_path(token), "x") as fp:
                    yaml.safe_dump(request.to_dict(), fp, sort_keys=False)
            except FileExistsError:
                continue
            log.info("Clarification %s created for %r (%d questions)", token, intent, len(qs))
            return token

    def get(self, token: str) -> ClarificationRequest:
        path = self._request_path(token)
        if not self._valid_token(token) or not path.exists():
            raise ClarificationTokenInvalid(TokenInvalidReason.NOT_FOUND, token)
        with open(path, "r") as fp:
            return ClarificationRequest.from_dict(yaml.safe_load(fp))

    def attach_answers(self, token: str, answers: Any) -> ClarificationRequest:
        """
        Attach answers exactly once.

        Raises ClarificationTokenInvalid (NOT_FOUND / ALREADY_RESOLVED /
        EXPIRED) or AnswerFormatError; in every failure case the artefact
        is left unchanged.
        """
        if not self._valid_token(token) or not self._request_path(token).exists():
            raise ClarificationTokenInvalid(TokenInvalidReason.NOT_FOUND, token)

        with self._locked(token):
            request = self.get(token)
            if request.is_resolved:
                raise ClarificationTokenInvalid(TokenInvalidReason.ALREADY_RESOLVED, token)
            if request.is_expired():
                raise ClarificationTokenInvalid(TokenInvalidReason.EXPIRED, token)

            request.resolved_answer = normalize_answers(request.questions, answers)
            request.resolved_at = utcnow()
            self._write_atomic(self._request_path(token), request.to_dict())

        log.info("Answers attached to clarification %s", token)
        return request

    def pending(self) -> List[ClarificationRequest]:
        out = [r for r in self._all() if not r.is_resolved and not r.is_expired()]
        return sorted(out, key=lambda r: r.created_at)

    def purge_expired(self, now: datetime | None = None) -> int:
        """Out-of-band maintenance: drop artefacts past their expiry."""
        removed = 0
        for request in self._all():
            if request.is_expired(now):
                for path in (self._request_path(request.token), self._lock_path(request.token)):
                    try:
                        path.unlink()
                    except FileNotFoundError:
                        pass
                removed += 1
        log.info("Purged %d expired clarification(s)", removed)
        return removed

    # ════════════════════════════════════════════════════════════════════
    #                         CACHE
    # ════════════════════════════════════════════════════════════════════
    def cache_resolution(self, request: ClarificationRequest, action: str) -> CachedResolution:
        if request.resolved_answer is None:
            raise ValueError(f"clarification {request.token} has no answers to cache under")
        entry = CachedResolution(
            intent=request.intent,
            intent_key=request.intent_key,
            questions=request.all_questions(),
            answers=request.all_answers(),
            action=action,
            token=request.token,
        )
        path = self._cache_dir(request.intent) / f"{_digest(entry.answers)}{self.SUFFIX}"
        path.parent.mkdir(parents=True, exist_ok=True)
        self._write_atomic(path, entry.to_dict())
        log.info("Cached resolution for %r under %s", request.intent, path.name)
        return entry

    def lookup_cached(self, intent: str, answers: Any) -> str | None:
        """
        ``answers`` may be the normalised list stored on a request or any
        raw answer structure; raw answers are interpreted against each
        cached entry's own question list.
        """
        directory = self._cache_dir(intent)
        if not directory.is_dir():
            return None
        for path in sorted(directory.glob(f"*{self.SUFFIX}")):
            try:
                with open(path, "r") as fp:
                    entry = CachedResolution.from_dict(yaml.safe_load(fp))
            except (OSError, yaml.YAMLError, KeyError, TypeError, ValueError) as exc:
                log.warning("Skipping unreadable cache entry %s (%s)", path, exc)
                continue
            if entry.intent != intent:
                continue
            try:
                candidate = normalize_answers(entry.questions, answers)
            except AnswerFormatError:
                continue
            if candidate == entry.answers:
                log.info("Clarification cache hit for %r", intent)
                return entry.action
        return None

    # ---------------------------------------------------------------- internals
    def _all(self) -> Iterator[ClarificationRequest]:
        if not self.root.is_dir():
            return
        for path in sorted(self.root.glob(f"*{self.SUFFIX}")):
            try:
                yield self.get(path.stem)
            except (ClarificationTokenInvalid, OSError, yaml.YAMLError, KeyError, TypeError, ValueError) as exc:
                log.warning("Skipping unreadable clarification %s (%s)", path, exc)

    def _request_path(self, token: str) -> Path:
        return self.root / f"{token}{self.SUFFIX}"

    def _lock_path(self, token: str) -> Path:
        return self.root / f"{token}.lock"

    def _cache_dir(self, intent: str) -> Path:
        return self.root / self.CACHE_DIR / _digest(intent)

    @staticmethod
    def _valid_token(token: str) -> bool:
        return bool(token) and token.isalnum()

    @contextmanager
    def _locked(self, token: str):
        with open(self._lock_path(token), "a") as lock:
            fcntl.flock(lock.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock.fileno(), fcntl.LOCK_UN)

    @staticmethod
    def _write_atomic(path: Path, data: dict) -> None:
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as fp:
                yaml.safe_dump(data, fp, sort_keys=False)
            os.replace(tmp, path)
        finally:
            if os.path.exists(tmp):
                os.unlink(tmp)
