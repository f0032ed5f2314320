from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

from .enums import Scope


@dataclass(frozen=True, slots=True)
class ScopeContext:
    scope:            Scope
    root:             Path
    command_dir:      Path
    user_command_dir: Path | None = None
    repo_identity:    str | None = None

    def search_dirs(self) -> List[Tuple[Scope, Path]]:
        """Directories the lookup chain searches, highest precedence first."""
        if self.scope is Scope.UPSTREAM_UNIVERSAL:
            return []
        dirs = [(self.scope, self.command_dir)]
        if self.scope is Scope.PROJECT_LOCAL and self.user_command_dir is not None:
            dirs.append((Scope.USER_LEVEL, self.user_command_dir))
        return dirs
