"""
Dispatcher
==========

The request path.  One call to ``dispatch`` (or ``retry``) is one
invocation and ends in exactly one ledger record.

dispatch(argv)
    scope → native lookup ──hit──▶ execute                    (native)
                          └─miss─▶ cached answers? ─hit─▶ execute
                                                          (clarification-cache)
                                   └──────────────▶ gateway
                                        Act     ▶ execute      (interpretation)
                                        Clarify ▶ new token, PENDING
                                        Fail    ▶ FAILURE

retry(token, answers)
    attach answers ─▶ cached? ─hit─▶ execute                  (clarification-cache)
                   └──────────────▶ gateway with every Q&A so far
                                        Act     ▶ execute + cache (clarification)
                                        Clarify ▶ follow-up token, PENDING
                                        Fail    ▶ FAILURE

Ledger trouble is downgraded to a warning on the result; it never changes
the exit status.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Sequence

from dwim.ai.gateway                          import InterpretationGateway
from dwim.ai.types                            import Act, Clarify, Fail
from dwim.core.config.settings                import Settings
from dwim.core.exceptions                     import (
    AnswerFormatError,
    ClarificationTokenInvalid,
    ExecutionFailure,
    LedgerWriteFailure,
)
from dwim.core.models                         import (
    ExitCode,
    Invocation,
    NativeResolution,
    Outcome,
    Question,
    ResolutionPath,
    ScopeContext,
)
from dwim.core.services.clarification_store   import ClarificationStore, intent_phrase, parse_answers
from dwim.core.services.executor              import ExecutionResult, Executor
from dwim.core.services.ledger                import Ledger
from dwim.core.services.native_registry       import NativeRegistry
from dwim.core.services.scope_resolver        import ScopeResolver

log = logging.getLogger(__name__)


@dataclass(slots=True)
class DispatchResult:
    outcome:    Outcome
    exit_code:  int
    invocation: Invocation
    message:    str = ""
    token:      str | None = None
    questions:  List[Question] = field(default_factory=list)
    warnings:   List[str] = field(default_factory=list)
    execution:  ExecutionResult | None = None


class Dispatcher:

    def __init__(
        self,
        settings: Settings,
        *,
        resolver: ScopeResolver | None = None,
        registry: NativeRegistry | None = None,
        ledger: Ledger | None = None,
        store: ClarificationStore | None = None,
        gateway: InterpretationGateway | None = None,
        executor: Executor | None = None,
    ) -> None:
        self.settings = settings
        self.resolver = resolver or ScopeResolver(settings)
        self.registry = registry or NativeRegistry()
        self.ledger   = ledger or Ledger(settings.ledger_path)
        self.store    = store or ClarificationStore(settings.clarification_dir, ttl=settings.clarification_ttl)
        self.executor = executor or Executor()
        self._gateway = gateway

    @property
    def gateway(self) -> InterpretationGateway:
        # built lazily: the native path never touches the interpretation service
        if self._gateway is None:
            self._gateway = InterpretationGateway.from_settings(self.settings)
        return self._gateway

    # ════════════════════════════════════════════════════════════════════
    #                              DISPATCH
    # ════════════════════════════════════════════════════════════════════
    def dispatch(
        self,
        argv: Sequence[str],
        *,
        cwd: str | Path | None = None,
        answers: str | None = None,
    ) -> DispatchResult:
        argv = list(argv)
        cwd = str(Path(cwd or os.getcwd()).resolve())
        inv = Invocation(argv=argv, cwd=cwd)
        ctx = self._scope(inv, cwd)

        # 1. native lookup – the cheap, exclusive fast path
        native = self.registry.lookup(argv, ctx)
        if native is not None:
            inv.intent_key = native.intent_key
            inv.resolution_path = ResolutionPath.NATIVE
            return self._run_native(inv, native, argv, ctx)

        inv.intent_key = self.registry.intent_key_for(argv, ctx)
        intent = intent_phrase(argv)

        # 2. answers supplied up front – maybe someone already asked this
        parsed = None
        if answers is not None:
            try:
                parsed = parse_answers(answers)
            except AnswerFormatError as exc:
                inv.resolution_path = ResolutionPath.CLARIFICATION_CACHE
                return self._fail(inv, str(exc), ExitCode.USAGE)
            cached = self.store.lookup_cached(intent, parsed)
            if cached is not None:
                inv.resolution_path = ResolutionPath.CLARIFICATION_CACHE
                return self._run_action(inv, cached, cwd, ctx, Outcome.CLARIFICATION_RESOLVED)

        # 3. the slow path
        inv.resolution_path = ResolutionPath.INTERPRETATION
        result = self.gateway.interpret(argv, ctx, cwd, answers=parsed)

        if isinstance(result, Act):
            self._adopt_hint(inv, result, argv)
            return self._run_action(inv, result.action, cwd, ctx, Outcome.EXECUTED)
        if isinstance(result, Clarify):
            return self._pend(inv, result, intent, argv, ctx)
        return self._interpretation_failed(inv, result)

    # ════════════════════════════════════════════════════════════════════
    #                               RETRY
    # ════════════════════════════════════════════════════════════════════
    def retry(
        self,
        token: str,
        answers: Any,
        *,
        cwd: str | Path | None = None,
    ) -> DispatchResult:
        """
        Resume a pending clarification.  ``answers`` is structured text
        (YAML/JSON) or an already-parsed structure.
        """
        here = str(Path(cwd or os.getcwd()).resolve())
        inv = Invocation(argv=["retry", token], cwd=here, token=token)
        inv.resolution_path = ResolutionPath.CLARIFICATION

        try:
            parsed = parse_answers(answers) if isinstance(answers, str) else answers
            request = self.store.attach_answers(token, parsed)
        except ClarificationTokenInvalid as exc:
            self._scope(inv, here)
            inv.extra["token_status"] = exc.reason.value
            return self._fail(inv, str(exc), ExitCode.for_token(exc.reason))
        except AnswerFormatError as exc:
            self._scope(inv, here)
            return self._fail(inv, f"answers for {token}: {exc}", ExitCode.USAGE)

        # from here on the invocation speaks for the original request
        inv.argv = list(request.argv)
        inv.cwd = request.cwd if Path(request.cwd).is_dir() else here
        inv.intent_key = request.intent_key
        inv.extra["original_invocation_id"] = request.original_invocation_id
        inv.extra["answers"] = request.all_answers()
        ctx = self._scope(inv, inv.cwd)

        cached = self.store.lookup_cached(request.intent, request.all_answers())
        if cached is not None:
            inv.resolution_path = ResolutionPath.CLARIFICATION_CACHE
            return self._run_action(inv, cached, inv.cwd, ctx, Outcome.CLARIFICATION_RESOLVED)

        result = self.gateway.interpret(request.argv, ctx, inv.cwd, clarification=request)

        if isinstance(result, Act):
            outcome = self._run_action(inv, result.action, inv.cwd, ctx, Outcome.CLARIFICATION_RESOLVED)
            if outcome.exit_code == ExitCode.OK:
                self.store.cache_resolution(request, result.action)
            return outcome
        if isinstance(result, Clarify):
            inv.extra["follows_token"] = token
            return self._pend(inv, result, request.intent, request.argv, ctx, prior=request.history())
        return self._interpretation_failed(inv, result)

    # ════════════════════════════════════════════════════════════════════
    #                          TERMINAL STEPS
    # ════════════════════════════════════════════════════════════════════
    def _run_native(
        self,
        inv: Invocation,
        native: NativeResolution,
        argv: List[str],
        ctx: ScopeContext,
    ) -> DispatchResult:
        inv.action = str(native.executable_ref)
        inv.extra["native_scope"] = native.scope.value
        args = argv[native.words:]
        execution = self.executor.run_native(native, args, cwd=inv.cwd, env=self._child_env(inv, ctx))
        return self._executed(inv, execution, Outcome.EXECUTED)

    def _run_action(
        self,
        inv: Invocation,
        action: str,
        cwd: str,
        ctx: ScopeContext,
        success: Outcome,
    ) -> DispatchResult:
        inv.action = action
        execution = self.executor.run_action(action, cwd=cwd, env=self._child_env(inv, ctx))
        return self._executed(inv, execution, success)

    def _executed(self, inv: Invocation, execution: ExecutionResult, success: Outcome) -> DispatchResult:
        inv.exit_code = execution.exit_code
        try:
            execution.check()
        except ExecutionFailure as exc:
            # the action's own status is propagated, never masked
            inv.finish(Outcome.FAILED, message=str(exc))
            return self._record(inv, exc.exit_code, message=str(exc), execution=execution)
        inv.finish(success)
        return self._record(inv, ExitCode.OK, execution=execution)

    def _pend(
        self,
        inv: Invocation,
        clarify: Clarify,
        intent: str,
        argv: Sequence[str],
        ctx: ScopeContext,
        prior: Sequence[dict] = (),
    ) -> DispatchResult:
        token = self.store.create(
            inv, list(clarify.questions), intent=intent, argv=argv, scope_ctx=ctx, prior=prior
        )
        inv.token = token
        inv.finish(Outcome.CLARIFICATION_PENDING, message=f"clarification pending ({token})")
        return self._record(
            inv,
            ExitCode.PENDING,
            message=f"clarification needed; answer with: dwim retry {token} '<answers>'",
            token=token,
            questions=list(clarify.questions),
        )

    def _interpretation_failed(self, inv: Invocation, fail: Fail) -> DispatchResult:
        inv.extra["fail_reason"] = fail.reason.value
        return self._fail(inv, f"interpretation failed ({fail})", ExitCode.FAILURE)

    def _fail(self, inv: Invocation, message: str, code: int) -> DispatchResult:
        inv.finish(Outcome.FAILED, message=message)
        return self._record(inv, code, message=message)

    def _record(self, inv: Invocation, exit_code: int, **kw) -> DispatchResult:
        result = DispatchResult(outcome=inv.outcome, exit_code=int(exit_code), invocation=inv, **kw)
        try:
            self.ledger.append(inv)
        except LedgerWriteFailure as exc:
            log.warning("%s", exc)
            result.warnings.append(f"usage ledger not updated: {exc}")
        return result

    # ---------------------------------------------------------------- helpers
    def _scope(self, inv: Invocation, cwd: str) -> ScopeContext:
        ctx = self.resolver.resolve(cwd)
        inv.scope = ctx.scope
        inv.scope_root = str(ctx.root)
        inv.repo_identity = ctx.repo_identity
        return ctx

    def _adopt_hint(self, inv: Invocation, act: Act, argv: Sequence[str]) -> None:
        """Take the service's intent key only when it is a prefix of what was typed."""
        if not act.intent_key:
            return
        words = self.registry.intent_words(argv)
        hinted = act.intent_key.split()
        if hinted and words[: len(hinted)] == hinted:
            inv.intent_key = " ".join(hinted)

    @staticmethod
    def _child_env(inv: Invocation, ctx: ScopeContext) -> dict:
        return {
            "DWIM_INVOCATION_ID": inv.id,
            "DWIM_INTENT_KEY":    inv.intent_key,
            "DWIM_SCOPE":         ctx.scope.value,
            "DWIM_SCOPE_ROOT":    str(ctx.root),
        }
