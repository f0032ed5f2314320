"""
PromotionAnalyzer
=================

Offline learning pass: mines a snapshot of the ledger for intents that the
interpretation service keeps resolving the same way, and turns them into
native resolutions.

Algorithm
---------
1. Keep invocations that were resolved through interpretation or
   clarification, ran an action, and exited 0.
2. Group by (scope, project root, intent key).
3. frequency = group size.
   stability = share of the group whose *action template* equals the most
   common one.  The template of an action replaces every literal word
   equal to one of the invocation's trailing arguments (argv after the
   intent key) by a positional parameter and keeps the rest of the text
   verbatim, so ``rm "a.txt"`` for ``… a.txt`` and
   ``rm "b.txt"`` for ``… b.txt`` are the same shape.
4. frequency ≥ min_frequency and stability ≥ min_stability
        → materialise a /bin/sh script in the same scope
   frequency ≥ min_frequency only
        → surfaced as a suggestion, never written

Existing resolutions are never touched unless ``force`` is given, which
makes repeated runs over overlapping windows idempotent.  The analyzer
reads a snapshot and takes no lock that foreground invocations wait on.
"""

from __future__ import annotations

import json
import logging
from collections import Counter, defaultdict
from datetime import datetime
from typing import Callable, Dict, List, Sequence, Tuple

from dwim.core.exceptions              import DwimError, LayoutConflict
from dwim.core.models                  import (
    Invocation,
    Outcome,
    PromotionCandidate,
    PromotionReport,
    ResolutionPath,
    Scope,
    ScopeContext,
)
from dwim.core.models.invocation       import utcnow
from dwim.core.services.ledger         import Ledger
from dwim.core.services.native_registry import PROMOTED_MARK, NativeRegistry
from dwim.core.services.scope_resolver import ScopeResolver

log = logging.getLogger(__name__)

_OPERATOR_CHARS = frozenset("();<>|&")
_EXPANDING     = frozenset("$*?[~{")
_OPAQUE        = ("$(", "${", "`", "\\", "<<")


# ---------------------------------------------------------------- templates
def tail_args(argv: Sequence[str], intent_key: str) -> List[str]:
    words = intent_key.split()
    head = [a.lower() for a in argv[: len(words)]]
    return list(argv[len(words):]) if head == words else list(argv[1:])


def _words(action: str) -> List[Tuple[int, int, str, bool]] | None:
    """
    Shell words of ``action`` as (start, end, value, literal).  ``literal``
    is False for a word the shell would expand (variables, globs, tilde).
    None when the quoting does not balance.
    """
    words: List[Tuple[int, int, str, bool]] = []
    i, n = 0, len(action)
    while i < n:
        ch = action[i]
        if ch.isspace() or ch in _OPERATOR_CHARS:
            i += 1
            continue
        if ch == "#":
            break                       # comment to end of line
        start, value, literal = i, [], True
        while i < n and not (action[i].isspace() or action[i] in _OPERATOR_CHARS):
            ch = action[i]
            if ch in "'\"":
                close = action.find(ch, i + 1)
                if close < 0:
                    return None
                body = action[i + 1:close]
                if ch == '"' and "$" in body:
                    literal = False
                value.append(body)
                i = close + 1
                continue
            if ch in _EXPANDING:
                literal = False
            value.append(ch)
            i += 1
        if i < n and action[i] in "<>" and action[start:i].isdigit():
            literal = False             # file descriptor of a redirection
        words.append((start, i, "".join(value), literal))
    return words


def action_template(action: str, args: Sequence[str]) -> Tuple[str, ...]:
    """
    Split ``action`` into verbatim text and ``"$N"`` pieces; joining the
    pieces gives back a script body that runs the action unchanged for
    the same arguments.  Only whole literal words equal to an argument
    are replaced.  Actions with command substitution, escapes or here
    documents stay a single opaque piece.
    """
    action = action.strip()
    if any(mark in action for mark in _OPAQUE):
        return (action,)
    words = _words(action)
    if words is None:
        return (action,)

    params: Dict[str, str] = {}
    for i, arg in enumerate(args, 1):
        if arg:
            params.setdefault(arg, f'"${i}"')

    pieces: List[str] = []
    cursor = 0
    for start, end, value, literal in words:
        if literal and value in params:
            if start > cursor:
                pieces.append(action[cursor:start])
            pieces.append(params[value])
            cursor = end
    if cursor < len(action):
        pieces.append(action[cursor:])
    return tuple(pieces)


def render_script(candidate: PromotionCandidate, promoted_at: datetime | None = None) -> str:
    evidence = dict(candidate.evidence(), promoted_at=(promoted_at or utcnow()).isoformat())
    body = "".join(candidate.template) if candidate.is_parametric else candidate.representative_action
    return (
        "#!/bin/sh\n"
        f"{PROMOTED_MARK} {json.dumps(evidence, sort_keys=True)}\n"
        f"# learned action: {candidate.representative_action}\n"
        "# generated by `dwim promote`; edit or delete freely\n"
        f"{body}\n"
    )


# ---------------------------------------------------------------- analyzer
class PromotionAnalyzer:

    LEARNABLE_OUTCOMES = {Outcome.EXECUTED, Outcome.CLARIFICATION_RESOLVED}

    def __init__(
        self,
        ledger: Ledger,
        registry: NativeRegistry,
        resolver: ScopeResolver,
        *,
        min_frequency: int = 10,
        min_stability: float = 0.9,
    ) -> None:
        self.ledger = ledger
        self.registry = registry
        self.resolver = resolver
        self.min_frequency = int(min_frequency)
        self.min_stability = float(min_stability)

    # ────────────────────────────────────────────────────────── public
    def analyze(
        self,
        since: datetime | None = None,
        *,
        merge_scopes: bool = False,
    ) -> List[PromotionCandidate]:
        """
        Recompute candidates from a ledger snapshot.  Deterministic for a
        given window: sorted by frequency (desc), then scope, then key.
        """
        groups: Dict[tuple, List[Invocation]] = defaultdict(list)
        for inv in self.ledger.snapshot(since):
            if not self._learnable(inv):
                continue
            if merge_scopes:
                key = (Scope.UPSTREAM_UNIVERSAL, None, inv.intent_key)
            else:
                root = inv.scope_root if inv.scope is Scope.PROJECT_LOCAL else None
                key = (inv.scope, root, inv.intent_key)
            groups[key].append(inv)

        candidates = [
            self._candidate(scope, root, intent_key, invs)
            for (scope, root, intent_key), invs in groups.items()
            if len(invs) >= self.min_frequency
        ]
        candidates.sort(key=lambda c: (-c.frequency, c.scope.value, c.scope_root or "", c.intent_key))
        log.info("Promotion analysis: %d group(s), %d candidate(s)", len(groups), len(candidates))
        return candidates

    def is_stable(self, candidate: PromotionCandidate) -> bool:
        return candidate.stability_score >= self.min_stability

    def run(
        self,
        since: datetime | None = None,
        *,
        materialize: bool = True,
        force: bool = False,
        target: ScopeContext | None = None,
        confirm: Callable[[PromotionCandidate], bool] | None = None,
    ) -> PromotionReport:
        """
        Analyse and (optionally) materialise.

        target   an explicit ScopeContext (upstream-universal) to write
                 every eligible candidate into, regardless of where it
                 was observed
        confirm  callback asked before each write; False skips it
        """
        report = PromotionReport()
        merge = target is not None and target.scope is Scope.UPSTREAM_UNIVERSAL

        for cand in self.analyze(since, merge_scopes=merge):
            if not self.is_stable(cand):
                report.suggestions.append(cand)
                continue

            try:
                ctx = target or self.resolver.context_for(cand.scope, cand.scope_root)
            except DwimError as exc:
                report.skipped.append((cand, str(exc)))
                continue
            if cand.scope is Scope.PROJECT_LOCAL and not ctx.root.is_dir():
                report.skipped.append((cand, f"project root {ctx.root} no longer exists"))
                continue

            existing = self.registry.resolution_at(ctx.command_dir, cand.intent_key, ctx.scope)
            if existing is not None and not force:
                report.skipped.append((cand, f"already resolved natively at {existing.executable_ref}"))
                continue

            if not materialize:
                report.eligible.append(cand)
                continue
            if confirm is not None and not confirm(cand):
                report.skipped.append((cand, "declined"))
                continue

            try:
                made = self.registry.install(
                    ctx.command_dir, cand.intent_key, render_script(cand), ctx.scope, force=force
                )
            except (LayoutConflict, OSError) as exc:
                log.warning("Could not materialise %s: %s", cand, exc)
                report.skipped.append((cand, str(exc)))
                continue

            if made is None:
                report.skipped.append((cand, "appeared concurrently"))
            else:
                report.materialized.append(made)

        return report

    # ────────────────────────────────────────────────────────── internals
    def _learnable(self, inv: Invocation) -> bool:
        return (
            inv.resolution_path not in (None, ResolutionPath.NATIVE)
            and inv.outcome in self.LEARNABLE_OUTCOMES
            and inv.exit_code in (0, None)
            and bool(inv.action)
            and bool(inv.intent_key)
        )

    @staticmethod
    def _candidate(
        scope: Scope,
        root: str | None,
        intent_key: str,
        invs: List[Invocation],
    ) -> PromotionCandidate:
        templates = [action_template(i.action, tail_args(i.argv, intent_key)) for i in invs]
        counts = Counter(templates)
        best, hits = counts.most_common(1)[0]
        representative = next(
            inv.action for inv, tpl in zip(reversed(invs), reversed(templates)) if tpl == best
        )
        return PromotionCandidate(
            intent_key=intent_key,
            scope=scope,
            scope_root=root,
            frequency=len(invs),
            first_seen=invs[0].timestamp,
            last_seen=invs[-1].timestamp,
            representative_action=representative,
            stability_score=hits / len(invs),
            template=best,
        )
