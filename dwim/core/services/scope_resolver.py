"""
ScopeResolver
=============

Decides which namespace an invocation belongs to.

• ``<dir>/.dwim/`` in cwd or any ancestor  →  project-local, root = <dir>
• otherwise                                 →  user-level, root = settings.home
• upstream-universal is never picked here; ``upstream()`` hands it out on
  explicit request only (promotion into the shared command set).

Resolution always succeeds.  The repository identity (origin remote URL)
is recorded alongside but does not influence the scope.

Layer: core.services
"""

from __future__ import annotations

import configparser
import logging
from pathlib import Path

from dwim.core.config.settings import Settings
from dwim.core.exceptions      import DwimError
from dwim.core.models          import Scope, ScopeContext

log = logging.getLogger(__name__)


class ScopeResolver:

    MARKER   = ".dwim"
    COMMANDS = "commands"

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    # ------------------------------------------------------------------ public
    def resolve(self, cwd: str | Path) -> ScopeContext:
        cwd = Path(cwd).expanduser().resolve()
        repo = self.repo_identity(cwd)

        project_root = self._find_marker(cwd)
        if project_root is not None:
            log.debug("Project scope rooted at %s", project_root)
            return self.context_for(Scope.PROJECT_LOCAL, project_root, repo_identity=repo)

        return self.context_for(Scope.USER_LEVEL, self.settings.home, repo_identity=repo)

    def context_for(
        self,
        scope: Scope,
        root: str | Path | None,
        *,
        repo_identity: str | None = None,
    ) -> ScopeContext:
        """Rebuild a context from a (scope, root) pair, e.g. read back from the ledger."""
        if scope is Scope.PROJECT_LOCAL:
            if root is None:
                raise DwimError("project-local scope needs a root directory")
            root = Path(root)
            return ScopeContext(
                scope=scope,
                root=root,
                command_dir=root / self.MARKER / self.COMMANDS,
                user_command_dir=self.settings.user_commands,
                repo_identity=repo_identity,
            )
        if scope is Scope.UPSTREAM_UNIVERSAL:
            return self.upstream()
        return ScopeContext(
            scope=Scope.USER_LEVEL,
            root=self.settings.home,
            command_dir=self.settings.user_commands,
            user_command_dir=self.settings.user_commands,
            repo_identity=repo_identity,
        )

    def upstream(self) -> ScopeContext:
        shared = self.settings.shared_commands
        if shared is None:
            raise DwimError(
                "upstream-universal scope requested but no shared command directory "
                "is configured (DWIM_SHARED_COMMANDS)"
            )
        return ScopeContext(
            scope=Scope.UPSTREAM_UNIVERSAL,
            root=shared.parent,
            command_dir=shared,
        )

    # ---------------------------------------------------------------- helpers
    def _find_marker(self, cwd: Path) -> Path | None:
        for directory in (cwd, *cwd.parents):
            marker = directory / self.MARKER
            # the user config root may itself live under ~/.dwim; never treat
            # the home scope as a project
            if marker.is_dir() and marker.resolve() != self.settings.home.resolve():
                return directory
        return None

    @staticmethod
    def repo_identity(cwd: Path) -> str | None:
        """origin URL from the nearest .git/config, or None."""
        for directory in (cwd, *cwd.parents):
            dotgit = directory / ".git"
            if dotgit.is_file():
                dotgit = _follow_gitdir(dotgit)
            if dotgit is None or not dotgit.is_dir():
                continue
            config = dotgit / "config"
            if not config.exists():
                # linked worktrees keep config in the common dir
                common = dotgit / "commondir"
                if common.exists():
                    config = (dotgit / common.read_text().strip()).resolve() / "config"
            return _origin_url(config)
        return None


def _follow_gitdir(dotgit_file: Path) -> Path | None:
    try:
        first = dotgit_file.read_text().splitlines()[0]
    except (OSError, IndexError):
        return None
    if not first.startswith("gitdir:"):
        return None
    target = Path(first.split(":", 1)[1].strip())
    return target if target.is_absolute() else (dotgit_file.parent / target).resolve()


def _origin_url(config: Path) -> str | None:
    parser = configparser.ConfigParser(strict=False, interpolation=None)
    try:
        parser.read(config)
    except configparser.Error as exc:
        log.debug("Unreadable git config %s: %s", config, exc)
        return None
    section = 'remote "origin"'
    if parser.has_section(section):
        return parser.get(section, "url", fallback=None)
    return None
