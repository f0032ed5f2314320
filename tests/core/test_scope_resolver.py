import pytest

from dwim.core.exceptions               import DwimError
from dwim.core.models                   import Scope
from dwim.core.services.scope_resolver  import ScopeResolver


def test_marker_in_ancestor_makes_project_scope(settings, project):
    ctx = ScopeResolver(settings).resolve(project / "src" / "deep")
    assert ctx.scope is Scope.PROJECT_LOCAL
    assert ctx.root == project.resolve()
    assert ctx.command_dir == project.resolve() / ".dwim" / "commands"
    assert [s for s, _ in ctx.search_dirs()] == [Scope.PROJECT_LOCAL, Scope.USER_LEVEL]


def test_no_marker_falls_back_to_user_scope(settings, tmp_path):
    plain = tmp_path / "plain"
    plain.mkdir()
    ctx = ScopeResolver(settings).resolve(plain)
    assert ctx.scope is Scope.USER_LEVEL
    assert ctx.root == settings.home
    assert ctx.search_dirs() == [(Scope.USER_LEVEL, settings.user_commands)]


def test_home_marker_is_not_a_project(tmp_path, monkeypatch):
    from dwim.core.config.settings import Settings

    base = tmp_path / "me"
    (base / ".dwim").mkdir(parents=True)
    monkeypatch.setenv("DWIM_HOME", str(base / ".dwim"))
    ctx = ScopeResolver(Settings()).resolve(base)
    assert ctx.scope is Scope.USER_LEVEL


def test_upstream_requires_shared_dir(settings, tmp_path):
    with pytest.raises(DwimError):
        ScopeResolver(settings).upstream()

    from dwim.core.config.settings import Settings
    ctx = ScopeResolver(Settings(shared_commands=tmp_path / "shared")).upstream()
    assert ctx.scope is Scope.UPSTREAM_UNIVERSAL
    assert ctx.search_dirs() == []


def test_repo_identity_reads_origin(project):
    git = project / ".git"
    git.mkdir()
    (git / "config").write_text(
        '[core]\n\tbare = false\n[remote "origin"]\n\turl = git@example.org:team/proj.git\n'
    )
    assert ScopeResolver.repo_identity(project / "src") == "git@example.org:team/proj.git"


def test_repo_identity_absent(tmp_path):
    lonely = tmp_path / "lonely"
    lonely.mkdir()
    assert ScopeResolver.repo_identity(lonely) is None
