"""
Glue between the dispatcher and the external interpretation service.

InterpretationGateway.interpret(argv, scope_ctx, cwd) makes exactly one
bounded call and always returns one of Act / Clarify / Fail – timeouts
and service errors are folded into Fail, never raised, and never retried.

Backends
~~~~~~~~
• OpenAIBackend   – the Agent singleton (default)
• CommandBackend  – any executable (DWIM_INTERPRETER) that reads a JSON
                    request on stdin and prints a JSON/YAML outcome
"""
from __future__ import annotations

import asyncio
import json
import logging
import shlex
import textwrap
from pathlib import Path
from typing import Any, Dict, Sequence

from dwim.ai.agent                   import Agent
from dwim.ai.types                   import Act, Clarify, Fail, Interpretation
from dwim.core.config.settings       import Settings
from dwim.core.exceptions            import (
    InterpretationFailure,
    InterpretationTimeout,
    StructuredParseError,
)
from dwim.core.models                import ClarificationRequest, FailReason, Question, ScopeContext
from dwim.core.services.executor     import run_process

log = logging.getLogger(__name__)


SYSTEM_PROMPT = textwrap.dedent("""
    You turn a free-form command-line request into ONE shell command line.
    You are called non-interactively; nobody can answer follow-up prompts.

    Reply with a single JSON object and nothing else, in exactly one of
    these shapes:

      {"outcome": "act", "action": "<shell command line>", "intent_key": "<leading words naming the intent>"}
      {"outcome": "clarify", "questions": ["<question>", ...]}
      {"outcome": "fail", "reason": "<why this cannot be done>"}

    Choose "clarify" only when the request is genuinely ambiguous.  When
    answers to earlier questions are supplied, you must not ask them again.
""").strip()


# ════════════════════════════════════════════════════════════════════════
#                               BACKENDS
# ════════════════════════════════════════════════════════════════════════
class OpenAIBackend:
    def __init__(self, *, model: str | None = None) -> None:
        self.model = model

    def complete(self, request: Dict[str, Any], *, timeout: float) -> Any:
        agent = Agent(model=self.model, timeout=timeout)
        agent.timeout = timeout
        prompt = "Request:\n```json\n" + json.dumps(request, indent=2) + "\n```"
        return agent.ask(prompt, system=SYSTEM_PROMPT, structured=True)


class CommandBackend:
    def __init__(self, command: str | Sequence[str]) -> None:
        self.cmd = shlex.split(command) if isinstance(command, str) else list(command)

    def complete(self, request: Dict[str, Any], *, timeout: float) -> Any:
        payload = json.dumps(request).encode()
        try:
            stdout, stderr, rc = asyncio.run(
                run_process(self.cmd, capture=True, input=payload, timeout=timeout)
            )
        except asyncio.TimeoutError as exc:
            raise InterpretationTimeout(f"{self.cmd[0]} gave no answer within {timeout:.0f}s") from exc
        except OSError as exc:
            raise InterpretationFailure(f"cannot run interpreter {self.cmd[0]}: {exc}") from exc

        if rc != 0:
            raise InterpretationFailure(
                f"interpreter {self.cmd[0]} exited with status {rc}: {stderr.strip()[:200]}"
            )
        return Agent.parse_structured(stdout)


# ════════════════════════════════════════════════════════════════════════
#                               GATEWAY
# ════════════════════════════════════════════════════════════════════════
class InterpretationGateway:

    def __init__(self, backend, *, timeout: float = 30.0) -> None:
        self.backend = backend
        self.timeout = float(timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "InterpretationGateway":
        if settings.interpreter:
            backend = CommandBackend(settings.interpreter)
        else:
            backend = OpenAIBackend(model=settings.model)
        return cls(backend, timeout=settings.interpretation_timeout)

    # ─────────────────────────────────────────────── public
    def interpret(
        self,
        argv: Sequence[str],
        scope_ctx: ScopeContext,
        cwd: str | Path,
        *,
        clarification: ClarificationRequest | None = None,
        answers: Any = None,
    ) -> Interpretation:
        request = self._build_request(argv, scope_ctx, cwd, clarification, answers)
        log.info("Interpreting %r (scope %s)", " ".join(argv), scope_ctx.scope.value)
        try:
            raw = self.backend.complete(request, timeout=self.timeout)
        except InterpretationTimeout as exc:
            return Fail(FailReason.TIMEOUT, str(exc))
        except StructuredParseError as exc:
            return Fail(FailReason.MALFORMED, str(exc))
        except InterpretationFailure as exc:
            return Fail(FailReason.FAILURE, str(exc))
        return self.parse_outcome(raw)

    # ─────────────────────────────────────────────── helpers
    @staticmethod
    def parse_outcome(raw: Any) -> Interpretation:
        """Normalise whatever the service said into the three-way outcome."""
        if not isinstance(raw, dict):
            return Fail(FailReason.MALFORMED, f"expected a mapping, got {type(raw).__name__}")

        kind = str(raw.get("outcome", "")).strip().lower()

        if kind == "act":
            action = raw.get("action")
            if not isinstance(action, str) or not action.strip():
                return Fail(FailReason.MALFORMED, "act outcome without an action")
            hint = raw.get("intent_key")
            return Act(action=action.strip(), intent_key=str(hint).strip().lower() if hint else None)

        if kind == "clarify":
            questions = raw.get("questions")
            if isinstance(questions, (str, dict)):
                questions = [questions]
            if not questions:
                return Fail(FailReason.MALFORMED, "clarify outcome without questions")
            qs = tuple(Question.coerce(q, i) for i, q in enumerate(questions, 1))
            if any(not q.text for q in qs):
                return Fail(FailReason.MALFORMED, "clarify outcome with an empty question")
            return Clarify(questions=qs)

        if kind == "fail":
            return Fail(FailReason.FAILURE, str(raw.get("reason") or "service declined"))

        return Fail(FailReason.MALFORMED, f"unknown outcome {kind!r}")

    @staticmethod
    def _build_request(argv, scope_ctx, cwd, clarification, answers) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "argv": list(argv),
            "text": " ".join(argv),
            "cwd": str(cwd),
            "scope": scope_ctx.scope.value,
            "repo": scope_ctx.repo_identity,
        }
        if clarification is not None:
            request["clarification"] = clarification.history()
        elif answers is not None:
            request["answers"] = answers
        return request
