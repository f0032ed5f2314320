from __future__ import annotations
from datetime import timedelta
from typing import List, Optional

import questionary
import typer
from fuzzywuzzy import process
from rich.console import Console

from dwim.core.config.settings           import Settings
from dwim.core.models                    import ExitCode, Outcome
from dwim.core.models.invocation         import utcnow
from dwim.core.services.dispatcher       import Dispatcher, DispatchResult

console     = Console()
err_console = Console(stderr=True)

# ----------------------------------------------------------------------
def build_dispatcher(settings: Settings | None = None) -> Dispatcher:
    return Dispatcher(settings or Settings())


def since_days(days: Optional[int]):
    if days is None:
        return None
    if days <= 0:
        raise typer.BadParameter("--days must be positive")
    return utcnow() - timedelta(days=days)

# ----------------------------------------------------------------------
# result reporting
def report_result(result: DispatchResult, *, pending_tokens: List[str] | None = None) -> None:
    """Print what the caller needs and leave with the result's exit code."""
    for warning in result.warnings:
        err_console.print(f"[yellow]dwim: warning:[/yellow] {warning}")

    if result.outcome is Outcome.CLARIFICATION_PENDING:
        console.print(f"dwim: needs clarification [token: {result.token}]", markup=False, highlight=False)
        for idx, q in enumerate(result.questions, 1):
            console.print(f"  {idx}. {q.text}", markup=False, highlight=False)
        skeleton = ", ".join(f'"{i}": "..."' for i in range(1, len(result.questions) + 1))
        console.print(
            f"answer with: dwim retry {result.token} '{{{skeleton}}}'", markup=False, highlight=False
        )

    elif result.outcome is Outcome.FAILED and result.execution is None:
        err_console.print(f"[red]dwim:[/red] {result.message}", highlight=False)
        if result.exit_code == ExitCode.TOKEN_NOT_FOUND and pending_tokens:
            guess = did_you_mean(result.invocation.token or "", pending_tokens)
            if guess:
                err_console.print(f"did you mean [bold]{guess}[/bold]?")

    elif result.execution is not None and result.exit_code != result.execution.exit_code:
        err_console.print(f"[red]dwim:[/red] {result.message}", highlight=False)

    raise typer.Exit(code=result.exit_code)


def did_you_mean(token: str, choices: List[str], cutoff: int = 70) -> str | None:
    if not token or not choices:
        return None
    best = process.extractOne(token, choices, score_cutoff=cutoff)
    return best[0] if best else None

# ----------------------------------------------------------------------
# small UI helpers
def confirm_action(question: str) -> bool:
    return questionary.select(question, choices=["Yes", "No"]).ask() == "Yes"
