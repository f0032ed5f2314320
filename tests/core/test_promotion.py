import json
import subprocess

import pytest
from conftest import act, make_exec

from dwim.core.config.settings          import Settings
from dwim.core.models                   import (
    CreatedFrom,
    Invocation,
    Outcome,
    ResolutionPath,
    Scope,
)
from dwim.core.services.dispatcher      import Dispatcher
from dwim.core.services.executor        import Executor
from dwim.core.services.ledger          import Ledger
from dwim.core.services.native_registry import PROMOTED_MARK, NativeRegistry
from dwim.core.services.promotion       import PromotionAnalyzer, action_template, tail_args
from dwim.core.services.scope_resolver  import ScopeResolver


# ---------------------------------------------------------------- helpers
def record(ledger, argv, action, *, key, scope=Scope.USER_LEVEL, root=None,
           path=ResolutionPath.INTERPRETATION, outcome=Outcome.EXECUTED, exit_code=0):
    inv = Invocation(argv=list(argv), cwd="/tmp", intent_key=key, scope=scope, scope_root=root)
    inv.resolution_path = path
    inv.action = action
    inv.exit_code = exit_code
    ledger.append(inv.finish(outcome))


@pytest.fixture
def ledger(settings) -> Ledger:
    return Ledger(settings.ledger_path)


@pytest.fixture
def analyzer(settings, ledger) -> PromotionAnalyzer:
    return PromotionAnalyzer(ledger, NativeRegistry(), ScopeResolver(settings))


# ========================================================================
# templates
# ========================================================================
def test_tail_args():
    assert tail_args(["Calendar", "delete", "x"], "calendar delete") == ["x"]
    assert tail_args(["other", "y"], "calendar delete") == ["y"]


def test_action_template_parametrises_arguments():
    a = action_template('gcal delete "stand up"', ["stand up"])
    b = action_template("gcal delete lunch", ["lunch"])
    assert a == b == ("gcal delete ", '"$1"')
    assert action_template("ls | wc -l", []) == ("ls | wc -l",)
    assert action_template("echo 'unbalanced", []) == ("echo 'unbalanced",)


@pytest.mark.parametrize("action, args, expected", [
    ("echo x.txt $HOME", ["x.txt"], ('echo ', '"$1"', ' $HOME')),
    ("cat x.txt >x.txt.bak", ["x.txt"], ('cat ', '"$1"', ' >x.txt.bak')),
    ("ls *.txt x", ["*.txt", "x"], ('ls *.txt ', '"$2"')),
    ("cmd 2>&1 2", ["2"], ('cmd 2>&1 ', '"$1"')),
    ("echo x $(echo hi)", ["x"], ("echo x $(echo hi)",)),
    ("echo `date` x", ["x"], ("echo `date` x",)),
])
def test_action_template_keeps_shell_text_verbatim(action, args, expected):
    assert action_template(action, args) == expected


SHELL_ACTIONS = [
    "echo {a} $HOME",
    "echo \"{a}\" ~ | tr a-z A-Z",
    "echo {a} *.txt",
    "printf '%s|%s|' {a} \"$PWD\"",
]


def _sh(cmd, cwd):
    return subprocess.run(cmd, cwd=cwd, capture_output=True, text=True, check=True).stdout


@pytest.mark.parametrize("action", SHELL_ACTIONS)
def test_promoted_script_behaves_like_learned_action(analyzer, ledger, tmp_path, action):
    workdir = tmp_path / "wd"
    workdir.mkdir()
    (workdir / "notes.txt").write_text("")
    for n in range(10):
        record(ledger, ["show", f"file{n}"], action.format(a=f"file{n}"), key="show")

    (made,) = analyzer.run().materialized
    native = _sh([str(made.executable_ref), "fresh"], workdir)
    learned = _sh(["/bin/sh", "-c", action.format(a="fresh")], workdir)
    assert native == learned


def test_command_substitution_is_never_parametrised(analyzer, ledger, tmp_path):
    for n in range(10):
        record(ledger, ["show", f"file{n}"], f"echo file{n} $(echo hi)", key="show")
    report = analyzer.run()
    assert report.materialized == []
    assert report.suggestions[0].stability_score == pytest.approx(0.1)

    for _ in range(10):
        record(ledger, ["greet"], "echo hello $(echo world)", key="greet")
    (made,) = analyzer.run().materialized
    assert _sh([str(made.executable_ref)], tmp_path) == "hello world\n"


# ========================================================================
# the learning loop, end to end
# ========================================================================
def test_sixty_interpretations_become_native(settings, make_dispatcher, tmp_path):
    disp, gateway, _ = make_dispatcher(
        lambda argv: act(f"echo deleted {argv[-1]}")
    )
    for n in range(60):
        res = disp.dispatch(["calendar", "delete", f"event{n}"])
        assert res.exit_code == 0
    assert len(gateway.calls) == 60

    report = PromotionAnalyzer(disp.ledger, disp.registry, disp.resolver).run()
    (made,) = report.materialized
    assert made.intent_key == "calendar"
    assert made.scope is Scope.USER_LEVEL
    assert made.created_from is CreatedFrom.PROMOTED
    assert made.promotion_evidence["frequency"] == 60

    # the 61st call takes the native path and still does the right thing
    native = Dispatcher(settings, gateway=gateway, executor=Executor(capture=True))
    res = native.dispatch(["calendar", "delete", "event61"])
    assert res.invocation.resolution_path is ResolutionPath.NATIVE
    assert res.execution.stdout == "deleted event61\n"
    assert len(gateway.calls) == 60


def test_promotion_is_idempotent(analyzer, ledger):
    for n in range(12):
        record(ledger, ["deploy", f"v{n}"], f"./scripts/deploy.sh v{n}", key="deploy")
    first = analyzer.run()
    assert len(first.materialized) == 1

    second = analyzer.run()
    assert second.materialized == []
    assert "already resolved" in second.skipped[0][1]


def test_force_rewrites(analyzer, ledger, settings):
    make_exec(settings.user_commands / "tidy", "#!/bin/sh\necho hand-written\n")
    for _ in range(10):
        record(ledger, ["tidy"], "git clean -fdx", key="tidy")

    assert analyzer.run().materialized == []
    assert len(analyzer.run(force=True).materialized) == 1
    assert PROMOTED_MARK in (settings.user_commands / "tidy").read_text()


def test_unstable_intent_is_only_suggested(analyzer, ledger, settings):
    for n in range(10):
        action = "git status" if n % 2 else "git log -1"
        record(ledger, ["repo", "info"], action, key="repo info")

    report = analyzer.run()
    assert report.materialized == []
    (cand,) = report.suggestions
    assert cand.stability_score == pytest.approx(0.5)
    assert not (settings.user_commands / "repo").exists()


def test_thresholds(analyzer, ledger):
    for _ in range(9):
        record(ledger, ["ping"], "ping -c1 example.org", key="ping")
    assert analyzer.analyze() == []

    analyzer.min_frequency = 5
    (cand,) = analyzer.analyze()
    assert cand.frequency == 9 and cand.stability_score == 1.0


def test_only_successful_interpretations_count(analyzer, ledger):
    for _ in range(10):
        record(ledger, ["x"], "true", key="x", path=ResolutionPath.NATIVE)
        record(ledger, ["y"], "false", key="y", outcome=Outcome.FAILED, exit_code=1)
        record(ledger, ["z"], None, key="z", outcome=Outcome.CLARIFICATION_PENDING)
    assert analyzer.analyze() == []


def test_clarified_records_are_learnable(analyzer, ledger):
    for _ in range(10):
        record(ledger, ["fmt"], "black .", key="fmt",
               path=ResolutionPath.CLARIFICATION, outcome=Outcome.CLARIFICATION_RESOLVED)
    assert len(analyzer.analyze()) == 1


def test_project_records_land_in_project(settings, ledger, analyzer, project):
    for _ in range(10):
        record(ledger, ["build"], "make -j8", key="build",
               scope=Scope.PROJECT_LOCAL, root=str(project))
    (made,) = analyzer.run().materialized
    assert made.scope is Scope.PROJECT_LOCAL
    assert made.executable_ref == project / ".dwim" / "commands" / "build"
    assert not (settings.user_commands / "build").exists()


def test_vanished_project_is_skipped(ledger, analyzer, tmp_path):
    for _ in range(10):
        record(ledger, ["build"], "make", key="build",
               scope=Scope.PROJECT_LOCAL, root=str(tmp_path / "gone"))
    report = analyzer.run()
    assert report.materialized == []
    assert "no longer exists" in report.skipped[0][1]


def test_dry_run_and_review(analyzer, ledger, settings):
    for _ in range(10):
        record(ledger, ["lint"], "ruff check .", key="lint")

    dry = analyzer.run(materialize=False)
    assert [c.intent_key for c in dry.eligible] == ["lint"]
    assert not (settings.user_commands / "lint").exists()

    declined = analyzer.run(confirm=lambda _c: False)
    assert declined.skipped[0][1] == "declined"
    assert not (settings.user_commands / "lint").exists()


def test_upstream_target_merges_scopes(ledger, tmp_path, project):
    shared = tmp_path / "shared"
    settings = Settings(shared_commands=shared)
    resolver = ScopeResolver(settings)
    for _ in range(5):
        record(ledger, ["weather"], "curl -s wttr.in", key="weather")
        record(ledger, ["weather"], "curl -s wttr.in", key="weather",
               scope=Scope.PROJECT_LOCAL, root=str(project))

    analyzer = PromotionAnalyzer(ledger, NativeRegistry(), resolver)
    (made,) = analyzer.run(target=resolver.upstream()).materialized
    assert made.scope is Scope.UPSTREAM_UNIVERSAL
    assert made.executable_ref == shared / "weather"
    header = (shared / "weather").read_text().splitlines()[1]
    assert json.loads(header[len(PROMOTED_MARK):])["frequency"] == 10


def test_later_divergent_action_does_not_alter_promotion(analyzer, ledger, settings):
    analyzer.min_frequency = 50
    for _ in range(60):
        record(ledger, ["calendar"], "calcurse -D ~/.cal", key="calendar")
    (made,) = analyzer.run().materialized
    before = made.executable_ref.read_text()

    record(ledger, ["calendar"], "khal list", key="calendar")
    again = analyzer.run()
    assert again.materialized == []
    assert made.executable_ref.read_text() == before
    assert "calcurse -D ~/.cal" in before
