"""
Global test fixtures.

• Points DWIM_HOME (and everything derived from it) into tmp_path and
  clears any DWIM_* the developer may have exported.
• Injects a dummy OPENAI_API_KEY so Agent.__init__ succeeds.
• Stubs _make_request so no real network traffic happens.
• FakeGateway / FakeExecutor let dispatcher tests script the slow path
  and observe what would have run.
"""
import os
import stat
from pathlib import Path
from typing import List

import pytest

from dwim.ai.agent                   import Agent, _SingletonMeta
from dwim.ai.types                   import Act, Clarify, Fail
from dwim.core.config.settings       import Settings
from dwim.core.models                import FailReason, Question
from dwim.core.services.dispatcher   import Dispatcher
from dwim.core.services.executor     import ExecutionResult


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    for key in list(os.environ):
        if key.startswith("DWIM_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("DWIM_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("OPENAI_API_KEY", "unit-test-key")

    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    yield


@pytest.fixture(autouse=True)
def _stub_openai(monkeypatch):
    def _fake_make_request(self, _prompt: str, **_kw):
        self._messages.append({"role": "assistant", "content": "stubbed response"})
        return "stubbed response"

    monkeypatch.setattr(Agent, "_make_request", _fake_make_request)
    yield
    # clean up the singleton so state does not leak between tests
    _SingletonMeta._instance = None      # type: ignore[attr-defined]
    Agent._instance = None               # type: ignore[attr-defined]


# ---------------------------------------------------------------- fakes
class FakeGateway:
    """
    Returns scripted interpretations in order; the last one repeats.
    A callable entry is called with argv and its result returned.
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes) or [Fail(FailReason.FAILURE, "no script")]
        self.calls: List[dict] = []

    def interpret(self, argv, scope_ctx, cwd, *, clarification=None, answers=None):
        self.calls.append(
            dict(argv=list(argv), scope=scope_ctx.scope, cwd=str(cwd),
                 clarification=clarification, answers=answers)
        )
        out = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        return out(list(argv)) if callable(out) else out


class FakeExecutor:
    def __init__(self, exit_code: int = 0):
        self.exit_code = exit_code
        self.calls: List[tuple] = []

    def run_native(self, resolution, args, *, cwd, env=None):
        self.calls.append(("native", resolution.intent_key, list(args), env))
        return ExecutionResult(self.exit_code)

    def run_action(self, action, *, cwd, env=None):
        self.calls.append(("action", action, cwd, env))
        return ExecutionResult(self.exit_code)


def act(action: str, intent_key: str | None = None) -> Act:
    return Act(action=action, intent_key=intent_key)


def clarify(*texts: str) -> Clarify:
    return Clarify(questions=tuple(Question(name=f"q{i}", text=t) for i, t in enumerate(texts, 1)))


def make_exec(path: Path, body: str = "#!/bin/sh\nexit 0\n") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


# ---------------------------------------------------------------- fixtures
@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def project(tmp_path) -> Path:
    """A directory carrying the project marker, with a nested sub dir."""
    root = tmp_path / "proj"
    (root / ".dwim" / "commands").mkdir(parents=True)
    (root / "src" / "deep").mkdir(parents=True)
    return root


@pytest.fixture
def make_dispatcher(settings):
    def _make(*outcomes, exit_code: int = 0, **kw):
        gateway = FakeGateway(*outcomes)
        executor = FakeExecutor(exit_code)
        disp = Dispatcher(settings, gateway=gateway, executor=executor, **kw)
        return disp, gateway, executor
    return _make
