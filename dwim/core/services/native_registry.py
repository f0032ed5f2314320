"""
NativeRegistry
==============

The cheap path: an index from intent key to an executable on disk.

Directory layout (per scope)
----------------------------
    commands/calendar              key "calendar"
    commands/calendar/_default     key "calendar"  (when calendar/ is a dir)
    commands/calendar/delete       key "calendar delete"

Presence plus the executable bit is the only discovery mechanism; there
is no registry file.  Intent words are lower-cased before matching, so
entries are expected to carry lower-case names.

Public API
----------
lookup(argv, scope_ctx)              -> NativeResolution | None
intent_words(argv)                   -> list[str]
intent_key_for(argv, scope_ctx)      -> str
known_keys(directory)                -> set[str]
resolution_at(directory, key, scope) -> NativeResolution | None
install(directory, key, body, scope, force=False) -> NativeResolution | None
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Iterable, List, Sequence, Set

from dwim.core.exceptions import LayoutConflict
from dwim.core.models     import CreatedFrom, NativeResolution, Scope, ScopeContext

log = logging.getLogger(__name__)

PROMOTED_MARK = "# dwim-promoted:"


class NativeRegistry:

    DIR_HANDLER      = "_default"
    MAX_INTENT_WORDS = 4

    _WORD = re.compile(r"^\w[\w.+-]*$")

    # ────────────────────────────────────────────────────────── lookup
    def lookup(self, argv: Sequence[str], scope_ctx: ScopeContext) -> NativeResolution | None:
        """
        Probe the scope's directories in precedence order; the first
        directory with any match wins, and inside a directory the longest
        matching key wins.  A miss is ``None``, never an exception.
        """
        words = self.intent_words(argv)
        if not words:
            return None
        for scope, directory in scope_ctx.search_dirs():
            hit = self._longest_match(words, scope, directory)
            if hit is not None:
                log.info("Native hit %s", hit)
                return hit
        log.debug("Native miss for %s", " ".join(words))
        return None

    def intent_words(self, argv: Sequence[str]) -> List[str]:
        words: List[str] = []
        for token in argv[: self.MAX_INTENT_WORDS]:
            if not self._WORD.match(token):
                break
            words.append(token.lower())
        return words

    def intent_key_for(self, argv: Sequence[str], scope_ctx: ScopeContext) -> str:
        """
        First word, extended greedily over the keys the scope already
        knows.  Used to label invocations that missed the native chain.
        """
        words = self.intent_words(argv)
        if not words:
            return argv[0].strip().lower() if argv else ""
        known: Set[str] = set()
        for _scope, directory in scope_ctx.search_dirs():
            known |= self.known_keys(directory)
        for n in range(len(words), 1, -1):
            key = " ".join(words[:n])
            if key in known:
                return key
        return words[0]

    def known_keys(self, directory: Path) -> Set[str]:
        keys: Set[str] = set()
        if not directory.is_dir():
            return keys
        for root, dirs, files in os.walk(directory):
            dirs[:] = [d for d in dirs if not d.startswith(".")]
            rel = Path(root).relative_to(directory).parts
            for fname in files:
                if fname.startswith(".") or not _is_executable(Path(root) / fname):
                    continue
                parts = rel if fname == self.DIR_HANDLER else (*rel, fname)
                if parts:
                    keys.add(" ".join(parts))
        return keys

    def resolution_at(self, directory: Path, key: str, scope: Scope) -> NativeResolution | None:
        """Exact-key lookup (no prefix fallback)."""
        path = self._entry_path(directory, key.split())
        return self._load(key, scope, path) if path is not None else None

    # ────────────────────────────────────────────────────────── install
    def install(
        self,
        directory: Path,
        key: str,
        body: str,
        scope: Scope,
        *,
        force: bool = False,
    ) -> NativeResolution | None:
        """
        Write an executable for ``key`` so that readers only ever see the
        old file or the complete new one.

        Without ``force`` an existing entry is left alone and ``None`` is
        returned; creation uses a hard link so two concurrent promoters
        cannot both win.
        """
        words = key.split()
        if not words:
            raise ValueError("empty intent key")
        target = self._target_path(directory, words)
        target.parent.mkdir(parents=True, exist_ok=True)

        if _is_executable(target) and not force:
            log.info("Resolution for %r already present at %s – leaving it", key, target)
            return None

        fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=".dwim-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as fp:
                fp.write(body)
            os.chmod(tmp, 0o755)
            if force:
                os.replace(tmp, target)
            else:
                try:
                    os.link(tmp, target)
                except FileExistsError:
                    log.info("Lost the race for %r – %s appeared meanwhile", key, target)
                    return None
        finally:
            if os.path.exists(tmp):
                os.unlink(tmp)

        log.info("Installed native resolution %r at %s", key, target)
        return self._load(key, scope, target)

    # ────────────────────────────────────────────────────────── internals
    def _longest_match(self, words: List[str], scope: Scope, directory: Path) -> NativeResolution | None:
        if not directory.is_dir():
            return None
        for n in range(len(words), 0, -1):
            path = self._entry_path(directory, words[:n])
            if path is not None:
                return self._load(" ".join(words[:n]), scope, path)
        return None

    def _entry_path(self, directory: Path, words: Iterable[str]) -> Path | None:
        target = directory.joinpath(*words)
        if target.is_dir():
            target = target / self.DIR_HANDLER
        if target.is_file():
            if _is_executable(target):
                return target
            log.debug("Ignoring non-executable entry %s", target)
        return None

    def _target_path(self, directory: Path, words: List[str]) -> Path:
        cursor = directory
        for word in words[:-1]:
            cursor = cursor / word
            if cursor.exists() and not cursor.is_dir():
                raise LayoutConflict(
                    f"{cursor} is a file; cannot nest '{' '.join(words)}' beneath it"
                )
        leaf = cursor / words[-1]
        return leaf / self.DIR_HANDLER if leaf.is_dir() else leaf

    @staticmethod
    def _load(key: str, scope: Scope, path: Path) -> NativeResolution:
        evidence = _read_evidence(path)
        return NativeResolution(
            intent_key=key,
            scope=scope,
            executable_ref=path,
            created_from=CreatedFrom.PROMOTED if evidence is not None else CreatedFrom.MANUAL,
            promotion_evidence=evidence,
        )


# ---------------------------------------------------------------- helpers
def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def _read_evidence(path: Path) -> dict | None:
    try:
        with open(path, "rb") as fp:
            head = fp.read(4096).decode("utf-8", errors="ignore")
    except OSError:
        return None
    for line in head.splitlines()[:5]:
        if line.startswith(PROMOTED_MARK):
            try:
                return json.loads(line[len(PROMOTED_MARK):])
            except ValueError:
                return {}
    return None
