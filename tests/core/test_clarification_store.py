from datetime import timedelta
from pathlib import Path

import pytest

from dwim.core.exceptions                   import AnswerFormatError, ClarificationTokenInvalid
from dwim.core.models                       import Invocation, Question, Scope, ScopeContext, TokenInvalidReason
from dwim.core.models.invocation            import utcnow
from dwim.core.services.clarification_store import (
    ClarificationStore,
    intent_phrase,
    normalize_answers,
    parse_answers,
)

QUESTIONS = [Question("calendar", "Which calendar?"), Question("event", "Which event?")]


@pytest.fixture
def store(tmp_path) -> ClarificationStore:
    return ClarificationStore(tmp_path / "clar", ttl=3600)


@pytest.fixture
def ctx(tmp_path) -> ScopeContext:
    return ScopeContext(Scope.USER_LEVEL, tmp_path, tmp_path / "commands")


def new_token(store, ctx, argv=("calendar", "delete", "standup"), questions=QUESTIONS) -> str:
    inv = Invocation(argv=list(argv), cwd="/tmp", intent_key="calendar")
    return store.create(inv, questions, intent=intent_phrase(argv), argv=argv, scope_ctx=ctx)


# ---------------------------------------------------------------- answers
def test_parse_answers_accepts_json_and_yaml():
    assert parse_answers('{"1": "work"}') == {"1": "work"}
    assert parse_answers("1: work\n2: standup") == {1: "work", 2: "standup"}
    with pytest.raises(AnswerFormatError):
        parse_answers("   ")
    with pytest.raises(AnswerFormatError):
        parse_answers("{unbalanced")


def test_normalize_answers_shapes():
    assert normalize_answers(QUESTIONS, ["Work ", "Stand  Up"]) == ["work", "stand up"]
    assert normalize_answers(QUESTIONS, {2: "b", "calendar": "a"}) == ["a", "b"]
    assert normalize_answers(QUESTIONS, {"which event?": "b", "1": "a"}) == ["a", "b"]
    assert normalize_answers(QUESTIONS[:1], "solo") == ["solo"]

    with pytest.raises(AnswerFormatError):
        normalize_answers(QUESTIONS, ["only one"])
    with pytest.raises(AnswerFormatError):
        normalize_answers(QUESTIONS, {"1": "a"})
    with pytest.raises(AnswerFormatError):
        normalize_answers(QUESTIONS, {"7": "a", "1": "b"})
    with pytest.raises(AnswerFormatError):
        normalize_answers(QUESTIONS, "scalar for two questions")


@pytest.mark.parametrize("key", ["²", "٣x", "0"])
def test_odd_question_numbers_are_format_errors(key):
    with pytest.raises(AnswerFormatError):
        normalize_answers(QUESTIONS, {key: "a", "2": "b"})


def test_superscript_key_leaves_request_untouched(store, ctx):
    cached = store.attach_answers(new_token(store, ctx), ["work", "standup"])
    store.cache_resolution(cached, "gcal delete --calendar work standup")
    token = new_token(store, ctx)
    with pytest.raises(AnswerFormatError):
        store.attach_answers(token, parse_answers('{"²": "work", "2": "standup"}'))
    assert not store.get(token).is_resolved
    assert store.lookup_cached("calendar delete standup", {"²": "work", "2": "standup"}) is None


# ---------------------------------------------------------------- lifecycle
def test_create_and_get(store, ctx):
    token = new_token(store, ctx)
    req = store.get(token)
    assert req.intent == "calendar delete standup"
    assert [q.text for q in req.questions] == ["Which calendar?", "Which event?"]
    assert not req.is_resolved
    assert [r.token for r in store.pending()] == [token]


def test_tokens_are_unique(store, ctx):
    tokens = {new_token(store, ctx) for _ in range(20)}
    assert len(tokens) == 20


def test_attach_answers_once(store, ctx):
    token = new_token(store, ctx)
    req = store.attach_answers(token, ["work", "standup"])
    assert req.resolved_answer == ["work", "standup"]
    assert store.get(token).is_resolved
    assert store.pending() == []

    with pytest.raises(ClarificationTokenInvalid) as err:
        store.attach_answers(token, ["home", "lunch"])
    assert err.value.reason is TokenInvalidReason.ALREADY_RESOLVED
    assert store.get(token).resolved_answer == ["work", "standup"]


def test_unknown_token(store):
    for bogus in ("deadbeef0000", "../etc/passwd", ""):
        with pytest.raises(ClarificationTokenInvalid) as err:
            store.attach_answers(bogus, ["x"])
        assert err.value.reason is TokenInvalidReason.NOT_FOUND


def test_expired_token_is_distinct_from_unknown(tmp_path, ctx):
    store = ClarificationStore(tmp_path / "clar", ttl=0)
    token = new_token(store, ctx)
    with pytest.raises(ClarificationTokenInvalid) as err:
        store.attach_answers(token, ["work", "standup"])
    assert err.value.reason is TokenInvalidReason.EXPIRED
    assert not store.get(token).is_resolved


def test_bad_answers_leave_request_untouched(store, ctx):
    token = new_token(store, ctx)
    with pytest.raises(AnswerFormatError):
        store.attach_answers(token, ["only one"])
    assert not store.get(token).is_resolved


def test_purge_expired(store, ctx):
    token = new_token(store, ctx)
    assert store.purge_expired() == 0
    assert store.purge_expired(now=utcnow() + timedelta(hours=2)) == 1
    assert not Path(store.root / f"{token}.yaml").exists()


# ---------------------------------------------------------------- cache
def test_cache_hit_requires_same_intent_and_answers(store, ctx):
    token = new_token(store, ctx)
    req = store.attach_answers(token, ["work", "standup"])
    store.cache_resolution(req, "gcal delete --calendar work standup")

    intent = "calendar delete standup"
    assert store.lookup_cached(intent, ["work", "standup"]) == "gcal delete --calendar work standup"
    assert store.lookup_cached(intent, {"1": " WORK ", "event": "Standup"}) is not None
    assert store.lookup_cached(intent, ["home", "standup"]) is None
    assert store.lookup_cached("calendar delete lunch", ["work", "standup"]) is None


def test_cache_needs_answers(store, ctx):
    req = store.get(new_token(store, ctx))
    with pytest.raises(ValueError):
        store.cache_resolution(req, "true")


def test_followup_request_carries_earlier_answers(store, ctx):
    first = store.attach_answers(new_token(store, ctx, questions=QUESTIONS[:1]), "work")
    inv = Invocation(argv=["calendar", "delete", "standup"], cwd="/tmp", intent_key="calendar")
    token = store.create(
        inv, ["Really delete?"], intent=first.intent, argv=first.argv, scope_ctx=ctx, prior=first.history(),
    )

    follow = store.attach_answers(token, "yes")
    assert store.get(token).prior == [{"name": "calendar", "question": "Which calendar?", "answer": "work"}]
    assert follow.all_answers() == ["work", "yes"]
    assert [q.text for q in follow.all_questions()] == ["Which calendar?", "Really delete?"]

    store.cache_resolution(follow, "gcal delete --calendar work standup")
    assert store.lookup_cached(first.intent, ["work", "yes"]) is not None
    assert store.lookup_cached(first.intent, ["yes"]) is None
