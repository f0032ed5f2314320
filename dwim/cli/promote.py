"""
`dwim promote`

Run the promotion analyzer over a ledger window.  Meant to be scheduled
(cron, systemd timer) or run by hand; it never blocks dispatch.
"""
from __future__ import annotations

from typing import Optional

import typer

from dwim.core.config.settings           import Settings
from dwim.core.exceptions                import DwimError
from dwim.core.models                    import ExitCode, Scope
from dwim.core.services.ledger           import Ledger
from dwim.core.services.native_registry  import NativeRegistry
from dwim.core.services.promotion        import PromotionAnalyzer
from dwim.core.services.scope_resolver   import ScopeResolver

from .utils import confirm_action, console, err_console, since_days


def promote_cmd(
    days: Optional[int] = typer.Option(30, "--days", "-d", help="Scan window in days."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report only, write nothing."),
    force: bool = typer.Option(False, "--force", help="Re-promote over existing resolutions."),
    review: bool = typer.Option(False, "--review", help="Confirm each promotion interactively."),
    min_frequency: Optional[int] = typer.Option(None, "--min-frequency"),
    min_stability: Optional[float] = typer.Option(None, "--min-stability"),
    scope: Optional[str] = typer.Option(
        None, "--scope", help="Only 'upstream-universal': write into the shared command set."
    ),
):
    """Turn stable, frequent interpretations into native commands."""
    settings = Settings()
    resolver = ScopeResolver(settings)

    target = None
    if scope is not None:
        if scope != Scope.UPSTREAM_UNIVERSAL.value:
            err_console.print("[red]dwim:[/red] --scope only accepts 'upstream-universal'")
            raise typer.Exit(code=ExitCode.USAGE)
        try:
            target = resolver.upstream()
        except DwimError as exc:
            err_console.print(f"[red]dwim:[/red] {exc}")
            raise typer.Exit(code=ExitCode.FAILURE)

    analyzer = PromotionAnalyzer(
        Ledger(settings.ledger_path),
        NativeRegistry(),
        resolver,
        min_frequency=min_frequency if min_frequency is not None else settings.promote_min_frequency,
        min_stability=min_stability if min_stability is not None else settings.promote_min_stability,
    )

    confirm = None
    if review and not dry_run:
        confirm = lambda c: confirm_action(  # noqa: E731
            f"Promote '{c.intent_key}' ({c.scope.value}, {c.frequency}x) → {c.representative_action}?"
        )

    report = analyzer.run(
        since_days(days), materialize=not dry_run, force=force, target=target, confirm=confirm
    )

    # -------------------- report ------------------------------------------
    for res in report.materialized:
        console.print(f"[green]promoted[/green]  {res.intent_key!r} → {res.executable_ref}")
    for cand in report.eligible:
        console.print(f"[cyan]eligible[/cyan]  {cand}  {cand.representative_action}")
    for cand in report.suggestions:
        console.print(
            f"[yellow]suggest[/yellow]   {cand}  varies; most common: {cand.representative_action}"
        )
    for cand, why in report.skipped:
        console.print(f"[dim]skipped   {cand}: {why}[/dim]")

    if not (report.materialized or report.eligible or report.suggestions or report.skipped):
        console.print("[dim]Nothing frequent enough to promote.[/dim]")
