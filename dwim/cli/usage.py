"""
`dwim usage`   – summary report over the ledger
`dwim pending` – open clarification tokens
"""
from __future__ import annotations

from typing import Optional

import typer
from rich.table import Table

from dwim.core.config.settings              import Settings
from dwim.core.services.clarification_store import ClarificationStore
from dwim.core.services.ledger              import Ledger
from dwim.core.services.usage               import summarize

from .utils import console, since_days


def usage_cmd(
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Only the last N days."),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """How each intent has been resolved, and how it ended."""
    settings = Settings()
    rows = summarize(Ledger(settings.ledger_path).scan_since(since_days(days)))

    if json_output:
        console.print_json(data=[r.to_dict() for r in rows])
        return

    if not rows:
        console.print("[dim]No invocations recorded yet.[/dim]")
        return

    table = Table(title=f"dwim usage ({settings.ledger_path})")
    table.add_column("intent")
    table.add_column("scope")
    table.add_column("total", justify="right")
    table.add_column("native", justify="right")
    table.add_column("interpreted", justify="right")
    table.add_column("clarified", justify="right")
    table.add_column("failed", justify="right")
    table.add_column("last seen")
    for r in rows:
        clarified = r.paths["clarification"] + r.paths["clarification-cache"]
        table.add_row(
            r.intent_key,
            r.scope,
            str(r.total),
            str(r.paths["native"]),
            str(r.paths["interpretation"]),
            str(clarified),
            str(r.outcomes["failed"]),
            r.last_seen.strftime("%Y-%m-%d %H:%M") if r.last_seen else "",
        )
    console.print(table)


def pending_cmd(
    purge: bool = typer.Option(False, "--purge", help="Delete expired clarification artefacts."),
):
    """List clarification tokens still waiting for answers."""
    settings = Settings()
    store = ClarificationStore(settings.clarification_dir, ttl=settings.clarification_ttl)

    if purge:
        removed = store.purge_expired()
        console.print(f"Purged {removed} expired clarification(s).")

    pending = store.pending()
    if not pending:
        console.print("[dim]No pending clarifications.[/dim]")
        return

    table = Table(title="Pending clarifications")
    table.add_column("token", no_wrap=True)
    table.add_column("intent")
    table.add_column("questions")
    table.add_column("expires")
    for req in pending:
        table.add_row(
            req.token,
            req.intent,
            "\n".join(f"{i}. {q.text}" for i, q in enumerate(req.questions, 1)),
            req.expires_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)
