"""
`dwim <intent…>` / `dwim run <intent…>` and `dwim retry <token> <answers>`.

Both are thin: build a Dispatcher, hand it the words, report the result
and exit with its code.  Pending clarifications exit with
ExitCode.PENDING so agents can branch on "needs more info".
"""
from __future__ import annotations

from typing import List, Optional

import typer

from .utils import build_dispatcher, report_result


# ------------------------------------------------------------------ Typer command implementation
def run_cmd(
    ctx: typer.Context,
    answers: Optional[str] = typer.Option(
        None, "--answers", "-a",
        help="Answers (YAML/JSON) to questions this intent is known to raise.",
    ),
):
    """Resolve free-form intent words to an action and run it."""
    intent: List[str] = list(ctx.args)
    if not intent:
        raise typer.BadParameter("nothing to do – give some intent words", param_hint="INTENT")

    result = build_dispatcher().dispatch(intent, answers=answers)
    report_result(result)


def retry_cmd(
    token: str = typer.Argument(..., help="Token printed by a pending invocation."),
    answers: List[str] = typer.Argument(..., help="Answers as YAML/JSON, by question number or name."),
):
    """Answer a pending clarification and run the resolved action."""
    dispatcher = build_dispatcher()
    result = dispatcher.retry(token, " ".join(answers))
    report_result(result, pending_tokens=[r.token for r in dispatcher.store.pending()])
