"""
Ledger
======

Append-only JSON-Lines log of every invocation; the single source of
truth for learning.

Write path
~~~~~~~~~~
• One record == one line, serialised completely in memory first.
• Written on an ``O_APPEND`` (read-write, for the tail check) descriptor with a single write loop while an
  exclusive ``flock`` is held on that same descriptor, then fsync'ed.
  The lock is held for the duration of one write only.
• If a previous writer crashed mid-record (file does not end in a
  newline) the new record starts on a fresh line; existing bytes are never
  rewritten.

Read path
~~~~~~~~~
• ``scan_since`` remembers the file size when it opens the file and never
  reads past it, so a scan is a snapshot even while other processes keep
  appending.
• Lines that do not parse (torn tail, foreign garbage) are skipped.
• Unknown fields from newer writers are kept in ``Invocation.extra``.

Rotation is an explicit, out-of-band ``rotate()``.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Iterator, List

from dwim.core.exceptions        import LedgerWriteFailure
from dwim.core.models            import Invocation
from dwim.core.models.invocation import parse_ts, utcnow

log = logging.getLogger(__name__)


class Ledger:

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    # ════════════════════════════════════════════════════════════════════
    #                              WRITE
    # ════════════════════════════════════════════════════════════════════
    def append(self, invocation: Invocation) -> None:
        if not invocation.finished:
            raise ValueError(f"refusing to log unfinished invocation {invocation.id}")

        line = (json.dumps(invocation.to_record(), sort_keys=True, separators=(",", ":")) + "\n").encode()

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_RDWR | os.O_APPEND | os.O_CREAT, 0o644)
        except OSError as exc:
            raise LedgerWriteFailure(f"cannot open ledger {self.path}: {exc}") from exc

        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            try:
                size = os.fstat(fd).st_size
                if size and os.pread(fd, 1, size - 1) != b"\n":
                    line = b"\n" + line
                view = memoryview(line)
                while view:
                    written = os.write(fd, view)
                    view = view[written:]
                os.fsync(fd)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        except OSError as exc:
            raise LedgerWriteFailure(f"cannot append to ledger {self.path}: {exc}") from exc
        finally:
            os.close(fd)

        log.debug("Logged invocation %s (%s)", invocation.id, invocation.outcome.value)

    # ════════════════════════════════════════════════════════════════════
    #                              READ
    # ════════════════════════════════════════════════════════════════════
    def scan_since(
        self,
        since: datetime | str | None = None,
        *,
        include_rotated: bool = False,
    ) -> Iterator[Invocation]:
        """
        Lazily yield invocations with ``timestamp >= since`` in file order.

        Finite (bounded by the file sizes seen at open) and restartable:
        feed the last timestamp you saw back in as the next ``since``.
        Ordering is approximate across processes; use ``snapshot`` for a
        (timestamp, pid)-sorted list.
        """
        cutoff = parse_ts(since) if since is not None else None
        for path in self._files(include_rotated):
            yield from self._scan_file(path, cutoff)

    def snapshot(
        self,
        since: datetime | str | None = None,
        *,
        include_rotated: bool = False,
    ) -> List[Invocation]:
        return sorted(self.scan_since(since, include_rotated=include_rotated), key=Invocation.sort_key)

    def count(self) -> int:
        return sum(1 for _ in self.scan_since())

    # ════════════════════════════════════════════════════════════════════
    #                           MAINTENANCE
    # ════════════════════════════════════════════════════════════════════
    def rotate(self) -> Path | None:
        """Move the live file aside; the next append starts a new one."""
        if not self.path.exists():
            return None
        stamp = utcnow().strftime("%Y%m%dT%H%M%S%fZ")
        target = self.path.with_name(f"{self.path.stem}-{stamp}{self.path.suffix}")
        os.rename(self.path, target)
        log.info("Rotated ledger to %s", target)
        return target

    # ---------------------------------------------------------------- helpers
    def _files(self, include_rotated: bool) -> List[Path]:
        files: List[Path] = []
        if include_rotated:
            files.extend(sorted(self.path.parent.glob(f"{self.path.stem}-*{self.path.suffix}")))
        files.append(self.path)
        return files

    def _scan_file(self, path: Path, cutoff: datetime | None) -> Iterator[Invocation]:
        try:
            fp = open(path, "rb")
        except FileNotFoundError:
            return
        with fp:
            limit = os.fstat(fp.fileno()).st_size
            consumed = 0
            for lineno, raw in enumerate(fp, 1):
                consumed += len(raw)
                if consumed > limit or not raw.endswith(b"\n"):
                    break                     # bytes appended after we opened / torn tail
                if not raw.strip():
                    continue
                try:
                    inv = Invocation.from_record(json.loads(raw))
                except (ValueError, KeyError, TypeError) as exc:
                    log.warning("Skipping malformed ledger line %s:%d (%s)", path, lineno, exc)
                    continue
                if cutoff is not None and inv.timestamp < cutoff:
                    continue
                yield inv

    # ---------------------------------------------------------------- repr
    def __repr__(self) -> str:  # pragma: no cover
        return f"<Ledger {self.path}>"
